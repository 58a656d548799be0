"""
Core data structures: call descriptors and signed extrinsics.
"""
import time
import msgpack
from typing import Optional
from .crypto import (
    Keypair,
    generate_hash,
    verify_signature,
    from_hex,
)

INSTANTIATE = "INSTANTIATE"
CALL = "CALL"


class CallDescriptor:
    """
    A state-changing contract call: either a contract instantiation or a message call.
    """
    def __init__(self,
                 kind: str,
                 label: str,
                 selector: bytes,
                 args: bytes,
                 value: int,
                 gas_limit: int,
                 code: Optional[bytes] = None,
                 dest: Optional[str] = None,
                 salt: bytes = b""):
        self.kind = kind
        self.label = label
        self.selector = selector
        self.args = args
        self.value = value
        self.gas_limit = gas_limit
        self.code = code
        self.dest = dest
        self.salt = salt

    @classmethod
    def instantiate(cls, code: bytes, label: str, selector: bytes, args: bytes,
                    endowment: int, gas_limit: int, salt: bytes = b"") -> 'CallDescriptor':
        return cls(INSTANTIATE, label, selector, args, endowment, gas_limit, code=code, salt=salt)

    @classmethod
    def call(cls, dest: str, label: str, selector: bytes, args: bytes,
             value: int, gas_limit: int) -> 'CallDescriptor':
        return cls(CALL, label, selector, args, value, gas_limit, dest=dest)

    @property
    def is_instantiation(self) -> bool:
        return self.kind == INSTANTIATE

    @property
    def input_data(self) -> bytes:
        return self.selector + self.args

    @classmethod
    def from_dict(cls, data: dict):
        return cls(
            kind=data["kind"],
            label=data["label"],
            selector=data["selector"],
            args=data["args"],
            value=data["value"],
            gas_limit=data["gas_limit"],
            code=data.get("code"),
            dest=data.get("dest"),
            salt=data.get("salt", b""),
        )

    def to_dict(self):
        data = {
            "kind": self.kind,
            "label": self.label,
            "selector": self.selector,
            "args": self.args,
            "value": self.value,
            "gas_limit": self.gas_limit,
        }
        if self.is_instantiation:
            data["code"] = self.code
            data["salt"] = self.salt
        else:
            data["dest"] = self.dest
        return data

    def validate_basic(self) -> tuple[bool, str]:
        """
        Performs basic validation checks on the call.
        Returns (is_valid, error_message)
        """
        if self.kind not in (INSTANTIATE, CALL):
            return False, f"Unknown call kind: {self.kind}"
        if len(self.selector) != 4:
            return False, "Selector must be 4 bytes"
        if self.value < 0:
            return False, "Negative value"
        if self.gas_limit <= 0:
            return False, "Gas limit must be positive"

        if self.is_instantiation:
            if not self.code:
                return False, "INSTANTIATE requires code"
        else:
            if not self.dest:
                return False, "CALL requires a destination"
            try:
                if len(from_hex(self.dest)) != 32:
                    return False, "Destination must be a 32-byte account id"
            except ValueError:
                return False, "Destination is not hex"

        return True, ""

    def __repr__(self):
        target = f"{len(self.code)} bytes of code" if self.is_instantiation else self.dest
        return f"CallDescriptor({self.kind} {self.label} -> {target})"


class Extrinsic:
    def __init__(self,
                 signer: str,
                 key_type: str,
                 public_key: bytes,
                 call: CallDescriptor,
                 nonce: int,
                 chain_id: int,
                 signature: Optional[bytes] = None,
                 timestamp: Optional[float] = None):
        self.signer = signer
        self.key_type = key_type
        self.public_key = public_key
        self.call = call
        self.nonce = nonce
        self.chain_id = chain_id
        self.timestamp = timestamp or time.time()
        self.signature = signature

    @classmethod
    def from_dict(cls, data: dict):
        """Creates an Extrinsic object from a dictionary."""
        return cls(
            signer=data["signer"],
            key_type=data["key_type"],
            public_key=data["public_key"],
            call=CallDescriptor.from_dict(data["call"]),
            nonce=data["nonce"],
            chain_id=data["chain_id"],
            signature=data.get("signature"),
            timestamp=data.get("timestamp"),
        )

    @classmethod
    def decode(cls, payload: bytes) -> 'Extrinsic':
        return cls.from_dict(msgpack.unpackb(payload, raw=False))

    def to_dict(self, include_signature=True):
        data = {
            "signer": self.signer,
            "key_type": self.key_type,
            "public_key": self.public_key,
            "call": self.call.to_dict(),
            "nonce": self.nonce,
            "chain_id": self.chain_id,
            "timestamp": self.timestamp,
        }
        if include_signature and self.signature:
            data["signature"] = self.signature
        return data

    def get_signing_data(self) -> bytes:
        """Returns the canonical byte representation for signing."""
        return msgpack.packb(self.to_dict(include_signature=False), use_bin_type=True)

    def sign(self, keypair: Keypair):
        """Signs the extrinsic."""
        self.signature = keypair.sign(self.get_signing_data())

    def verify_signature(self):
        """Verifies the extrinsic's signature."""
        if not self.signature:
            return False
        return verify_signature(
            self.key_type,
            self.public_key,
            self.signature,
            self.get_signing_data()
        )

    def encode(self) -> bytes:
        """The signed payload broadcast to the node."""
        if not self.signature:
            raise ValueError("Extrinsic is not signed")
        return msgpack.packb(self.to_dict(), use_bin_type=True)

    @property
    def id(self) -> bytes:
        """The unique hash identifier of the extrinsic."""
        return generate_hash(self.get_signing_data())
