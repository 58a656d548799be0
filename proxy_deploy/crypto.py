"""
Core cryptographic functions: hashing, dev keypairs and addresses.
"""
import binascii
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec
from cryptography.hazmat.primitives import serialization
from cryptography.exceptions import InvalidSignature
import nacl.signing
import nacl.exceptions

KEY_TYPE_ED25519 = "ed25519"
KEY_TYPE_ECDSA = "ecdsa"

# Order of the NIST P-256 group
_P256_ORDER = 0xFFFFFFFF00000000FFFFFFFFFFFFFFFFBCE6FAADA7179E84F3B9CAC2FC632551


def generate_hash(data: bytes) -> bytes:
    """Generates a BLAKE2b-256 hash."""
    from Crypto.Hash import BLAKE2b
    return BLAKE2b.new(digest_bits=256, data=data).digest()


def to_hex(data: bytes) -> str:
    return "0x" + data.hex()


def from_hex(value: str) -> bytes:
    """Decodes a hex string, with or without the 0x prefix."""
    if value.startswith(("0x", "0X")):
        value = value[2:]
    try:
        return bytes.fromhex(value)
    except ValueError as e:
        raise ValueError(f"Invalid hex string: {value!r}") from e


class Keypair:
    """
    A signing keypair derived deterministically from a secret URI such as "//Alice".

    ed25519 keys use PyNaCl; ecdsa keys use P-256 from `cryptography`.
    """

    def __init__(self, key_type: str, private_key, public_key: bytes):
        self.key_type = key_type
        self._private_key = private_key
        self.public_key = public_key

    @classmethod
    def from_uri(cls, suri: str, key_type: str = KEY_TYPE_ED25519) -> 'Keypair':
        seed = generate_hash(suri.encode('utf-8'))
        if key_type == KEY_TYPE_ED25519:
            signing_key = nacl.signing.SigningKey(seed)
            return cls(key_type, signing_key, bytes(signing_key.verify_key))
        if key_type == KEY_TYPE_ECDSA:
            secret = int.from_bytes(seed, 'big') % (_P256_ORDER - 1) + 1
            private_key = ec.derive_private_key(secret, ec.SECP256R1())
            public_key = private_key.public_key().public_bytes(
                encoding=serialization.Encoding.X962,
                format=serialization.PublicFormat.CompressedPoint
            )
            return cls(key_type, private_key, public_key)
        raise ValueError(f"Unsupported key type: {key_type}")

    @property
    def account_id(self) -> bytes:
        """32-byte account id. ed25519 keys are their own id."""
        if self.key_type == KEY_TYPE_ED25519:
            return self.public_key
        return generate_hash(self.public_key)

    @property
    def address(self) -> str:
        return to_hex(self.account_id)

    def sign(self, data: bytes) -> bytes:
        if self.key_type == KEY_TYPE_ED25519:
            return self._private_key.sign(data).signature
        return self._private_key.sign(data, ec.ECDSA(hashes.SHA256()))

    def __repr__(self):
        return f"Keypair({self.key_type}, {self.address})"


def verify_signature(key_type: str, public_key: bytes, signature: bytes, data: bytes) -> bool:
    """Verifies a signature produced by `Keypair.sign`."""
    if key_type == KEY_TYPE_ED25519:
        try:
            nacl.signing.VerifyKey(public_key).verify(data, signature)
            return True
        except (nacl.exceptions.BadSignatureError, ValueError):
            return False
    if key_type == KEY_TYPE_ECDSA:
        try:
            key = ec.EllipticCurvePublicKey.from_encoded_point(ec.SECP256R1(), public_key)
            key.verify(signature, data, ec.ECDSA(hashes.SHA256()))
            return True
        except (InvalidSignature, ValueError):
            return False
    raise ValueError(f"Unsupported key type: {key_type}")


def short(data: bytes, length: int = 16) -> str:
    """Truncated hex for log lines."""
    return binascii.hexlify(data).decode('ascii')[:length]
