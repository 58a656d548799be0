"""
Proxy workflow:
1. Deploy implementation v1
2. Deploy the proxy, pointing at v1
3. Insert 3, 7 and 8 through the proxy
4. Query the average (mean: 6)
5. Deploy implementation v2
6. Upgrade the proxy to v2
7. Query the average again (median: 7)
"""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from .artifacts import ArtifactLoader, ContractArtifact
from .config import DeployConfig, WorkflowConfig
from .deployer import Deployer, DeployedContract
from .errors import WorkflowAssertionError
from .signer import NonceSequencer
from .submitter import TransactionSubmitter

logger = logging.getLogger(__name__)

INSERT_VALUES = (3, 7, 8)
EXPECTED_MEAN = 6
EXPECTED_MEDIAN = 7

REFERENCE_HASH = "hash"
REFERENCE_ADDRESS = "address"


@dataclass
class WorkflowResult:
    v1: DeployedContract
    proxy: DeployedContract
    v2: Optional[DeployedContract] = None
    average_before: Optional[int] = None
    average_after: Optional[int] = None
    nonces: list = field(default_factory=list)


class ProxyWorkflow:
    def __init__(self, node, signer, submitter: TransactionSubmitter, loader: ArtifactLoader,
                 deploy_config: DeployConfig, workflow_config: WorkflowConfig, monitor=None):
        if workflow_config.proxy_reference not in (REFERENCE_HASH, REFERENCE_ADDRESS):
            raise ValueError(f"Unknown proxy reference mode: {workflow_config.proxy_reference}")

        self.node = node
        self.signer = signer
        self.submitter = submitter
        self.loader = loader
        self.deploy_config = deploy_config
        self.config = workflow_config
        self.monitor = monitor
        self.deployer = Deployer(submitter, monitor)
        self.sequencer = NonceSequencer(node, signer.address) if workflow_config.pipelined else None
        self.nonces = []

    # ------------------------------------------------------------------ #
    # Helpers
    # ------------------------------------------------------------------ #
    async def _nonce(self) -> Optional[int]:
        if self.sequencer is None:
            return None
        nonce = await self.sequencer.next()
        self.nonces.append(nonce)
        return nonce

    async def _bounded(self, awaitable):
        if self.config.step_timeout is None:
            return await awaitable
        return await asyncio.wait_for(awaitable, timeout=self.config.step_timeout)

    def _implementation_args(self, artifact: ContractArtifact) -> list:
        # Implementations that take one constructor argument get the deployer's address
        if len(artifact.constructor().args) == 1:
            return [self.signer.address]
        return []

    def _reference(self, contract: DeployedContract) -> str:
        if self.config.proxy_reference == REFERENCE_HASH:
            return contract.artifact.identity_hash
        return contract.address

    async def _deploy(self, name: str, args=None) -> DeployedContract:
        artifact = self.loader.load(name)
        if args is None:
            args = self._implementation_args(artifact)

        contract = await self._bounded(self.deployer.deploy(
            artifact,
            self.signer,
            args,
            endowment=self.deploy_config.endowment,
            gas_limit=self.deploy_config.gas_limit,
            nonce=await self._nonce(),
        ))
        logger.info(f"Deployed {name} contract:")
        logger.info(f"  hash: {artifact.identity_hash}")
        logger.info(f"  address {contract.address}")
        self._update_monitor()
        return contract

    async def _transact(self, calls: list):
        """
        Run state-changing calls. Sequential mode waits for each one; pipelined
        mode broadcasts all of them in nonce order and then waits for them together.
        """
        if self.sequencer is None:
            for call in calls:
                outcome = await self._bounded(self.submitter.submit_and_await(self.signer, call))
                outcome.unwrap()
            self._update_monitor()
            return

        pending = []
        for call in calls:
            tx = await self.submitter.submit(self.signer, call, await self._nonce())
            pending.append(tx)
            if tx.is_resolved:
                # Later nonces would be stuck behind a refused one
                break

        results = await asyncio.gather(
            *(self._bounded(self.submitter.await_outcome(tx)) for tx in pending),
            return_exceptions=True,
        )
        self._update_monitor()
        for result in results:
            if isinstance(result, BaseException):
                raise result
            result.unwrap()

    async def _check_average(self, proxy: DeployedContract, label: str, expected: int) -> int:
        average = await proxy.query(self.node, self.signer.address, "average",
                                    gas_limit=self.deploy_config.gas_limit)
        logger.info(f"avg-{label}: {average}")
        if average != expected:
            raise WorkflowAssertionError(f"avg-{label} was {average}, expected {expected}")
        return average

    def _update_monitor(self):
        if self.monitor:
            self.monitor.update()

    # ------------------------------------------------------------------ #
    # Script
    # ------------------------------------------------------------------ #
    async def run(self) -> WorkflowResult:
        gas_limit = self.deploy_config.gas_limit

        v1 = await self._deploy(self.config.implementation_v1)
        proxy = await self._deploy(self.config.proxy, [self._reference(v1)])
        result = WorkflowResult(v1=v1, proxy=proxy, nonces=self.nonces)

        await self._transact([proxy.tx("insert", value, gas_limit=gas_limit) for value in INSERT_VALUES])
        logger.info(f"Inserted {', '.join(str(v) for v in INSERT_VALUES)} through the proxy")

        if self.config.verify:
            result.average_before = await self._check_average(proxy, "v1", EXPECTED_MEAN)

        result.v2 = await self._deploy(self.config.implementation_v2)
        await self._transact([proxy.tx("upgrade", self._reference(result.v2), gas_limit=gas_limit)])
        logger.info("Upgraded the inner contract to V2")

        if self.config.verify:
            result.average_after = await self._check_average(proxy, "v2", EXPECTED_MEDIAN)

        return result
