"""
Hierarchical derivation paths and SLIP-10 key derivation

Paths are rendered ``m/i1/i2/...``. Every segment is hardened on use,
so derivation never needs a parent public key and works the same way
for Ed25519 and secp256k1.

Reference: https://github.com/satoshilabs/slips/blob/master/slip-0010.md
"""

import hashlib
import hmac
import re
from typing import Iterable, Iterator, List, Tuple

from .errors import ValidationError
from .signing import KeyType

HARDENED_OFFSET = 0x80000000

_SEGMENT_PATTERN = re.compile(r"[0-9]+")

SECP256K1_ORDER = 0xFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFFEBAAEDCE6AF48A03BBFD25E8CD0364141

_CURVE_SEEDS = {
    KeyType.ED25519: b"ed25519 seed",
    KeyType.SECP256K1: b"Bitcoin seed",
}

_COMPONENT = "DerivationPath"


class DerivationPath:
    """Ordered list of non-negative path segments, e.g. m/44/0/1"""

    ROOT = "m"

    def __init__(self, segments: Iterable[int] = ()):
        self._segments: List[int] = []
        for segment in segments:
            self.push(segment)

    @classmethod
    def parse(cls, path) -> "DerivationPath":
        """
        Parse ``m/1/2/3`` into a DerivationPath

        A trailing ``'`` or ``h`` on a segment is accepted; all segments
        are hardened anyway.

        Raises:
            ValidationError: on malformed path syntax
        """
        if isinstance(path, DerivationPath):
            return path.copy()
        if not isinstance(path, str) or not path:
            raise ValidationError("Path must be a non-empty string", _COMPONENT, "path", path)

        parts = path.strip().split("/")
        if parts[0] != cls.ROOT:
            raise ValidationError(f"Path must start with '{cls.ROOT}'", _COMPONENT, "path", path)

        segments = []
        for part in parts[1:]:
            text = part[:-1] if part.endswith(("'", "h")) else part
            if not _SEGMENT_PATTERN.fullmatch(text):
                raise ValidationError(f"Invalid path segment '{part}'", _COMPONENT, "path", path)
            segments.append(int(text))
        return cls(segments)

    # ==================== MUTATION ====================

    def push(self, index: int):
        """Append a trailing segment"""
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < HARDENED_OFFSET:
            raise ValidationError(
                f"Path segment must be an integer in [0, {HARDENED_OFFSET})",
                _COMPONENT,
                "index",
                index
            )
        self._segments.append(index)

    def pop(self) -> int:
        """Remove and return the trailing segment"""
        if not self._segments:
            raise ValidationError("Cannot pop from the root path", _COMPONENT)
        return self._segments.pop()

    def copy(self) -> "DerivationPath":
        return DerivationPath(self._segments)

    # ==================== ACCESSORS ====================

    @property
    def segments(self) -> Tuple[int, ...]:
        return tuple(self._segments)

    def __iter__(self) -> Iterator[int]:
        return iter(self._segments)

    def __len__(self) -> int:
        return len(self._segments)

    def __eq__(self, other) -> bool:
        if isinstance(other, str):
            return str(self) == other
        if isinstance(other, DerivationPath):
            return self._segments == other._segments
        return NotImplemented

    def __hash__(self):
        return hash(tuple(self._segments))

    def __str__(self) -> str:
        return "/".join([self.ROOT] + [str(s) for s in self._segments])

    def __repr__(self) -> str:
        return f"DerivationPath('{self}')"


# ==================== SLIP-10 ====================

def _hmac_sha512(key: bytes, data: bytes) -> bytes:
    return hmac.new(key, data, hashlib.sha512).digest()


def master_key(seed: bytes, key_type: KeyType) -> Tuple[bytes, bytes]:
    """
    Derive the SLIP-10 master key and chain code from a seed

    Returns:
        Tuple of (private_key, chain_code), 32 bytes each
    """
    curve_seed = _CURVE_SEEDS[key_type]
    digest = _hmac_sha512(curve_seed, seed)

    if key_type == KeyType.SECP256K1:
        # Retry until the scalar lands in [1, n-1]
        while True:
            scalar = int.from_bytes(digest[:32], "big")
            if 0 < scalar < SECP256K1_ORDER:
                break
            digest = _hmac_sha512(curve_seed, digest)

    return digest[:32], digest[32:]


def _child_key(key_type: KeyType, private_key: bytes, chain_code: bytes, index: int) -> Tuple[bytes, bytes]:
    hardened = index + HARDENED_OFFSET
    data = b"\x00" + private_key + hardened.to_bytes(4, "big")

    while True:
        digest = _hmac_sha512(chain_code, data)
        left, right = digest[:32], digest[32:]

        if key_type == KeyType.ED25519:
            return left, right

        left_int = int.from_bytes(left, "big")
        child = (left_int + int.from_bytes(private_key, "big")) % SECP256K1_ORDER
        if left_int < SECP256K1_ORDER and child != 0:
            return child.to_bytes(32, "big"), right
        data = b"\x01" + right + hardened.to_bytes(4, "big")


def derive_path(seed: bytes, path: DerivationPath, key_type: KeyType) -> Tuple[bytes, bytes]:
    """
    Derive the key at ``path`` from ``seed`` with hardened-only SLIP-10

    Args:
        seed: Seed bytes (the parent private key for sub keys)
        path: DerivationPath to walk
        key_type: Curve to derive for

    Returns:
        Tuple of (private_key, chain_code)
    """
    private_key, chain_code = master_key(seed, key_type)
    for index in path:
        private_key, chain_code = _child_key(key_type, private_key, chain_code, index)
    return private_key, chain_code
