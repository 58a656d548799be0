"""
Deployment orchestration: instantiate contracts and build calls against them.
"""
import logging
from typing import Optional

from .artifacts import ContractArtifact
from .core import CallDescriptor
from .crypto import from_hex
from .errors import OpaqueError, QueryError
from .submitter import TransactionSubmitter

logger = logging.getLogger(__name__)


class DeployedContract:
    def __init__(self, artifact: ContractArtifact, address: str):
        self.artifact = artifact
        self.address = address

    @property
    def name(self) -> str:
        return self.artifact.name

    def tx(self, message: str, *args, value: int = 0, gas_limit: int) -> CallDescriptor:
        """Build a state-changing call to one of the contract's messages."""
        spec = self.artifact.message(message)
        return CallDescriptor.call(
            dest=self.address,
            label=f"{self.name}.{spec.label}",
            selector=spec.selector,
            args=self.artifact.encode_arguments(spec, args),
            value=value,
            gas_limit=gas_limit,
        )

    async def query(self, node, origin: str, message: str, *args, gas_limit: int):
        """Read-only call; returns the decoded return value."""
        spec = self.artifact.message(message)
        input_data = spec.selector + self.artifact.encode_arguments(spec, args)
        response = await node.contracts_call(origin, self.address, 0, gas_limit, input_data)

        result = response.get("result", response) if isinstance(response, dict) else None
        if not isinstance(result, dict):
            raise QueryError(f"Unexpected response to {self.name}.{message}: {response!r}")
        ok = result.get("Ok", result.get("success"))
        if ok is None:
            raise QueryError(f"{self.name}.{message} failed: {result.get('Err', result.get('error'))}")
        if ok.get("flags", 0) & 1:
            raise QueryError(f"{self.name}.{message} reverted")

        return self.artifact.decode_return(spec, from_hex(ok.get("data", "0x")))

    def __repr__(self):
        return f"DeployedContract({self.name} at {self.address})"


class Deployer:
    def __init__(self, submitter: TransactionSubmitter, monitor=None):
        self.submitter = submitter
        self.monitor = monitor

    def build_instantiation(self, artifact: ContractArtifact, constructor_args, endowment: int,
                            gas_limit: int, constructor: Optional[str] = None,
                            salt: bytes = b"") -> CallDescriptor:
        spec = artifact.constructor(constructor)
        return CallDescriptor.instantiate(
            code=artifact.code,
            label=f"{artifact.name}.{spec.label}",
            selector=spec.selector,
            args=artifact.encode_arguments(spec, constructor_args),
            endowment=endowment,
            gas_limit=gas_limit,
            salt=salt,
        )

    async def deploy(self, artifact: ContractArtifact, signer, constructor_args, endowment: int,
                     gas_limit: int, nonce: Optional[int] = None, constructor: Optional[str] = None,
                     salt: bytes = b"") -> DeployedContract:
        """
        Instantiate `artifact` and wait for its address.
        Failures from the submitter are raised unchanged.
        """
        call = self.build_instantiation(artifact, constructor_args, endowment, gas_limit,
                                        constructor, salt)
        outcome = await self.submitter.submit_and_await(signer, call, nonce)
        address = outcome.unwrap()
        if not address:
            raise OpaqueError(f"{call.label} was included but no Instantiated event was seen")
        logger.debug(f"{call.label} instantiated at {address}")

        if self.monitor:
            self.monitor.record_deploy(artifact.name)
        return DeployedContract(artifact, address)
