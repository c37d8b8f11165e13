"""
Signing primitive - sign / verify with a 32-byte private scalar

Supports:
- Ed25519: Cho DID signing (W3C recommended)
- secp256k1: Cho Ethereum compatibility (EIP-191 personal messages)

Private keys are always the raw 32-byte seed / scalar. Expanded secret
formats of the underlying libraries never leave this module.
"""

from enum import Enum

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric import ed25519

# Ethereum compatibility
from eth_account import Account
from eth_account.messages import encode_defunct
from eth_keys import keys

from .errors import ValidationError

PRIVATE_KEY_SIZE = 32

_COMPONENT = "Signing"


class KeyType(str, Enum):
    """Supported signature key types"""
    ED25519 = "ed25519"
    SECP256K1 = "secp256k1"

    @classmethod
    def parse(cls, value) -> "KeyType":
        """Coerce a string / KeyType, raising ValidationError when unsupported"""
        try:
            return cls(value)
        except ValueError:
            raise ValidationError(
                f"Unsupported key type: {value}",
                component=_COMPONENT,
                field="key_type",
                value=value
            ) from None


PUBLIC_KEY_SIZES = {
    KeyType.ED25519: 32,
    KeyType.SECP256K1: 33,  # compressed point
}


def _check_private_key(private_key: bytes):
    if not isinstance(private_key, (bytes, bytearray)) or len(private_key) != PRIVATE_KEY_SIZE:
        raise ValidationError(
            f"Private key must be {PRIVATE_KEY_SIZE} bytes",
            component=_COMPONENT,
            field="private_key"
        )


def _check_public_key(key_type: KeyType, public_key: bytes):
    expected = PUBLIC_KEY_SIZES[key_type]
    if not isinstance(public_key, (bytes, bytearray)) or len(public_key) != expected:
        raise ValidationError(
            f"{key_type.value} public key must be {expected} bytes",
            component=_COMPONENT,
            field="public_key"
        )


# ==================== KEY MATERIAL ====================

def public_key_from_private(key_type, private_key: bytes) -> bytes:
    """
    Compute the public key for a 32-byte private key

    Args:
        key_type: KeyType of the private key
        private_key: Raw 32-byte seed (Ed25519) or scalar (secp256k1)

    Returns:
        Raw public key bytes (32 bytes Ed25519, 33 bytes compressed secp256k1)
    """
    key_type = KeyType.parse(key_type)
    _check_private_key(private_key)

    if key_type == KeyType.ED25519:
        private = ed25519.Ed25519PrivateKey.from_private_bytes(bytes(private_key))
        return private.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw
        )

    try:
        return keys.PrivateKey(bytes(private_key)).public_key.to_compressed_bytes()
    except Exception as e:
        # eth_keys rejects scalars outside [1, n-1]
        raise ValidationError(
            f"Invalid secp256k1 private key: {e}",
            component=_COMPONENT,
            field="private_key"
        ) from e


def secp256k1_public_key_coordinates(public_key: bytes) -> bytes:
    """Expand a compressed secp256k1 public key to its 64-byte x || y form"""
    _check_public_key(KeyType.SECP256K1, public_key)
    return keys.PublicKey.from_compressed_bytes(bytes(public_key)).to_bytes()


def secp256k1_public_key_from_coordinates(coordinates: bytes) -> bytes:
    """Compress a 64-byte x || y secp256k1 public key"""
    return keys.PublicKey(bytes(coordinates)).to_compressed_bytes()


# ==================== SIGNING ====================

def sign(key_type, private_key: bytes, message: bytes) -> bytes:
    """
    Sign message bytes

    Both primitives are deterministic: the same key and message always
    produce the same signature.

    Args:
        key_type: KeyType to sign with
        private_key: Raw 32-byte private key
        message: Message bytes to sign

    Returns:
        Signature bytes (64 bytes Ed25519, 65 bytes r || s || v secp256k1)
    """
    key_type = KeyType.parse(key_type)
    _check_private_key(private_key)

    if key_type == KeyType.ED25519:
        private = ed25519.Ed25519PrivateKey.from_private_bytes(bytes(private_key))
        return private.sign(bytes(message))

    # Ethereum signing
    msg = encode_defunct(primitive=bytes(message))
    signed = Account.sign_message(msg, private_key=bytes(private_key))
    return bytes(signed.signature)


# ==================== VERIFICATION ====================

def verify(key_type, public_key: bytes, message: bytes, signature: bytes) -> bool:
    """
    Verify a signature

    Args:
        key_type: KeyType of the public key
        public_key: Raw public key bytes
        message: Original message bytes
        signature: Signature bytes

    Returns:
        True if signature is valid

    Raises:
        ValidationError: if the public key is structurally malformed
    """
    key_type = KeyType.parse(key_type)
    _check_public_key(key_type, public_key)

    if key_type == KeyType.ED25519:
        try:
            pub_key = ed25519.Ed25519PublicKey.from_public_bytes(bytes(public_key))
            pub_key.verify(bytes(signature), bytes(message))
            return True
        except (InvalidSignature, ValueError):
            return False

    try:
        expected_address = keys.PublicKey.from_compressed_bytes(bytes(public_key)).to_checksum_address()
    except Exception as e:
        raise ValidationError(
            f"Invalid secp256k1 public key: {e}",
            component=_COMPONENT,
            field="public_key"
        ) from e

    try:
        msg = encode_defunct(primitive=bytes(message))
        recovered_address = Account.recover_message(msg, signature=bytes(signature))
        return recovered_address.lower() == expected_address.lower()
    except Exception:
        return False
