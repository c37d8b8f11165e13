"""
Revocation registry - per-issuer bitmap of revoked credential indices

The registry lives in the issuer's DID document as a ``#revocation``
service of type ``BitstringStatusList``:

    serviceEndpoint = data:application/octet-stream;base64,<base64url(gzip(bits))>
    nextIndex       = first index never handed out

Index 0 is the most significant bit of the first byte.
"""

import base64
import gzip
from typing import Any, Dict

from .config import settings
from .errors import ValidationError

REVOCATION_FRAGMENT = "revocation"
REVOCATION_SERVICE_TYPE = "BitstringStatusList"
DATA_URL_PREFIX = "data:application/octet-stream;base64,"

_COMPONENT = "RevocationRegistry"


class RevocationRegistry:
    """Bitmap plus a monotonic index allocator"""

    def __init__(self, size: int = None, bits: bytes = None, next_index: int = 0):
        self.size = size or settings.REVOCATION_BITS_SIZE
        byte_length = (self.size + 7) // 8
        if bits is None:
            self._bits = bytearray(byte_length)
        else:
            # Pad / trim a stored bitmap to the configured size
            self._bits = bytearray(bits[:byte_length]).ljust(byte_length, b"\x00")
        self.next_index = next_index

    # ==================== BITS ====================

    def _check_index(self, index: int):
        if isinstance(index, bool) or not isinstance(index, int) or not 0 <= index < self.size:
            raise ValidationError(
                f"Revocation index must be in [0, {self.size})",
                component=_COMPONENT,
                field="revocation_index",
                value=index
            )

    def get(self, index: int) -> bool:
        self._check_index(index)
        return bool(self._bits[index // 8] & (0x80 >> (index % 8)))

    def set(self, index: int, revoked: bool):
        self._check_index(index)
        mask = 0x80 >> (index % 8)
        if revoked:
            self._bits[index // 8] |= mask
        else:
            self._bits[index // 8] &= ~mask & 0xFF

    def revoked_indices(self):
        """Indices whose bit is set, ascending"""
        return [i for i in range(self.next_index) if self.get(i)]

    # ==================== ALLOCATION ====================

    def allocate(self, requested: int = None) -> int:
        """
        Hand out a fresh index

        Indices are never reused: a requested index must not be below the
        watermark, and every index below the new watermark counts as used.
        """
        index = self.next_index if requested is None else requested
        self._check_index(index)
        if index < self.next_index:
            raise ValidationError(
                f"Revocation index {index} is already allocated",
                component=_COMPONENT,
                field="revocation_index",
                value=index
            )
        self.next_index = index + 1
        return index

    # ==================== SERIALIZATION ====================

    def to_service(self, did: str) -> Dict[str, Any]:
        """Render as the document's revocation service entry"""
        compressed = gzip.compress(bytes(self._bits), mtime=0)
        encoded = base64.urlsafe_b64encode(compressed).decode("utf-8").rstrip("=")
        return {
            "id": f"{did}#{REVOCATION_FRAGMENT}",
            "type": REVOCATION_SERVICE_TYPE,
            "serviceEndpoint": f"{DATA_URL_PREFIX}{encoded}",
            "nextIndex": self.next_index
        }

    @classmethod
    def from_service(cls, service: Dict[str, Any], size: int = None) -> "RevocationRegistry":
        endpoint = service.get("serviceEndpoint", "")
        if service.get("type") != REVOCATION_SERVICE_TYPE or not endpoint.startswith(DATA_URL_PREFIX):
            raise ValidationError(
                "Malformed revocation service",
                component=_COMPONENT,
                field="service",
                value=service.get("id")
            )
        encoded = endpoint[len(DATA_URL_PREFIX):]
        try:
            bits = gzip.decompress(base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)))
        except (ValueError, OSError, EOFError) as e:
            raise ValidationError(
                f"Malformed revocation bitmap: {e}",
                component=_COMPONENT,
                field="serviceEndpoint"
            ) from e
        return cls(size=size, bits=bits, next_index=int(service.get("nextIndex", 0)))

    def copy(self) -> "RevocationRegistry":
        return RevocationRegistry(self.size, bytes(self._bits), self.next_index)

    def __eq__(self, other) -> bool:
        if not isinstance(other, RevocationRegistry):
            return NotImplemented
        return (self.size, bytes(self._bits), self.next_index) == \
            (other.size, bytes(other._bits), other.next_index)
