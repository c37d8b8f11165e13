"""
Key Manager - Deterministic key derivation cho DID System

One recoverable BIP-39 mnemonic yields a reproducible tree of signing keys:

    mnemonic -> seed -> root key pair -> child key pairs (SLIP-10 paths)

Supports:
- Ed25519: Cho DID signing (W3C recommended)
- secp256k1: Cho Ethereum compatibility
"""

import base64
import hashlib
import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Tuple

from eth_account.hdaccount import Language, Mnemonic
from eth_utils import ValidationError as EthValidationError

from .config import settings
from .derivation import DerivationPath, derive_path
from .errors import ValidationError
from .signing import (
    PRIVATE_KEY_SIZE,
    KeyType,
    public_key_from_private,
    secp256k1_public_key_coordinates,
)

logger = logging.getLogger(__name__)

_COMPONENT = "KeyDerivationEngine"

# W3C verification method types per key type
VERIFICATION_METHOD_TYPES = {
    KeyType.ED25519: "Ed25519VerificationKey2020",
    KeyType.SECP256K1: "EcdsaSecp256k1VerificationKey2019",
}


def _b64url(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).decode("utf-8").rstrip("=")


@dataclass(frozen=True)
class KeyPair:
    """Represents a cryptographic key pair"""
    key_type: KeyType
    public_key: bytes
    private_key: bytes = field(repr=False)  # Only kept locally, never shared

    def __post_init__(self):
        if len(self.private_key) != PRIVATE_KEY_SIZE:
            raise ValidationError(
                f"Private key must be {PRIVATE_KEY_SIZE} bytes",
                component=_COMPONENT,
                field="private_key"
            )

    def public_key_jwk(self) -> Dict[str, Any]:
        """Public key in JSON Web Key format"""
        if self.key_type == KeyType.ED25519:
            return {
                "kty": "OKP",
                "crv": "Ed25519",
                "alg": "EdDSA",
                "x": _b64url(self.public_key)
            }

        coordinates = secp256k1_public_key_coordinates(self.public_key)
        return {
            "kty": "EC",
            "crv": "secp256k1",
            "alg": "ES256K",
            "x": _b64url(coordinates[:32]),
            "y": _b64url(coordinates[32:])
        }

    def fingerprint(self) -> str:
        """JWK thumbprint, used as the default verification method fragment"""
        jwk = self.public_key_jwk()
        canonical = json.dumps(jwk, sort_keys=True, separators=(",", ":"))
        return _b64url(hashlib.sha256(canonical.encode("utf-8")).digest())

    def to_verification_method(self, controller: str, fragment: str = None) -> Dict[str, Any]:
        """Convert to W3C Verification Method format"""
        return {
            "id": f"{controller}#{fragment or self.fingerprint()}",
            "type": VERIFICATION_METHOD_TYPES[self.key_type],
            "controller": controller,
            "publicKeyJwk": self.public_key_jwk()
        }


def key_pair_from_seed(key_type, seed: bytes) -> KeyPair:
    """
    Build a signature key pair from seed material

    Only the first 32 bytes are used, so a 64-byte BIP-39 seed and a
    32-byte SLIP-10 sub key both produce a normalized 32-byte private key.
    """
    key_type = KeyType.parse(key_type)
    if len(seed) < PRIVATE_KEY_SIZE:
        raise ValidationError(
            f"Seed must be at least {PRIVATE_KEY_SIZE} bytes",
            component=_COMPONENT,
            field="seed"
        )
    private_key = bytes(seed[:PRIVATE_KEY_SIZE])
    return KeyPair(
        key_type=key_type,
        public_key=public_key_from_private(key_type, private_key),
        private_key=private_key
    )


class KeyDerivationEngine:
    """
    Derives key pairs from a mnemonic

    Features:
    - Generate BIP-39 mnemonics
    - Root key pair from a mnemonic
    - Child key pairs by SLIP-10 path, single or as a contiguous range
    - Name -> path hashing for per-application sub identities

    The engine holds no mutable state; derivations may run in parallel.
    """

    def __init__(self, language: str = None):
        self.language = language or settings.MNEMONIC_LANGUAGE
        try:
            self._mnemonic = Mnemonic(Language(self.language))
        except ValueError:
            raise ValidationError(
                f"Unsupported mnemonic language: {self.language}",
                component=_COMPONENT,
                field="language",
                value=self.language
            ) from None

    # ==================== MNEMONICS ====================

    def generate_mnemonic(self, num_words: int = None) -> str:
        """Generate a new random mnemonic (24 words by default)"""
        try:
            return self._mnemonic.generate(num_words or settings.MNEMONIC_WORDS)
        except EthValidationError as e:
            raise ValidationError(str(e), _COMPONENT, "num_words", num_words) from e

    def mnemonic_to_seed(self, mnemonic: str, passphrase: str = "") -> bytes:
        """
        Recover the 64-byte seed from a mnemonic

        Raises:
            ValidationError: if the mnemonic fails the word list / checksum check
        """
        if not isinstance(mnemonic, str) or not self._mnemonic.is_mnemonic_valid(mnemonic):
            raise ValidationError(
                "Invalid mnemonic phrase",
                component=_COMPONENT,
                field="mnemonic"
            )
        return self._mnemonic.to_seed(mnemonic, passphrase)

    # ==================== KEY GENERATION ====================

    def generate_key_pair(self, key_type=None) -> Tuple[str, KeyPair]:
        """
        Generate a fresh mnemonic and its root key pair

        Returns:
            Tuple of (mnemonic, key_pair)
        """
        key_type = KeyType.parse(key_type or settings.DEFAULT_KEY_TYPE)
        mnemonic = self.generate_mnemonic()
        return mnemonic, self.root_key_pair(key_type, mnemonic)

    def root_key_pair(self, key_type, mnemonic: str) -> KeyPair:
        """
        Derive the root key pair for a mnemonic

        Args:
            key_type: KeyType to derive
            mnemonic: BIP-39 mnemonic phrase

        Returns:
            KeyPair, identical for identical inputs
        """
        key_type = KeyType.parse(key_type)
        seed = self.mnemonic_to_seed(mnemonic)
        return key_pair_from_seed(key_type, seed)

    def child_key_pair(self, parent: KeyPair, path) -> KeyPair:
        """
        Derive a child key pair

        Args:
            parent: Parent key pair, its private key seeds the derivation
            path: DerivationPath or path text such as "m/44/0"

        Returns:
            KeyPair of the same key type as the parent
        """
        path = DerivationPath.parse(path)
        sub_key, _ = derive_path(parent.private_key, path, parent.key_type)
        return key_pair_from_seed(parent.key_type, sub_key)

    def child_key_pair_range(self, parent: KeyPair, path_root, start: int, count: int) -> List[KeyPair]:
        """
        Derive ``count`` children at path_root/start .. path_root/start+count-1

        Args:
            parent: Parent key pair
            path_root: Path prefix shared by every child
            start: First trailing index
            count: Number of children

        Returns:
            Ordered list of KeyPair
        """
        if isinstance(start, bool) or not isinstance(start, int) or start < 0:
            raise ValidationError("start must be a non-negative integer", _COMPONENT, "start", start)
        if isinstance(count, bool) or not isinstance(count, int) or count < 0:
            raise ValidationError("count must be a non-negative integer", _COMPONENT, "count", count)

        path = DerivationPath.parse(path_root)
        key_pairs = []
        for index in range(start, start + count):
            path.push(index)
            key_pairs.append(self.child_key_pair(parent, path))
            path.pop()
        return key_pairs

    # ==================== PATH UTILITIES ====================

    @staticmethod
    def name_to_path(name: str) -> DerivationPath:
        """
        Convert a text name to a fixed depth derivation path

        The name is hashed with BLAKE2b-256 and every digest byte becomes
        one path segment, so the path always has 32 segments.
        """
        if not isinstance(name, str) or not name:
            raise ValidationError("Name must be a non-empty string", _COMPONENT, "name", name)

        digest = hashlib.blake2b(name.encode("utf-8"), digest_size=32).digest()
        return DerivationPath(list(digest))
