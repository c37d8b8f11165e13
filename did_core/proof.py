"""
Proof Engine - detached signatures over caller supplied bytes

The signature covers the proof options together with the payload:

    sha256(canonicalize(options)) || sha256(payload)

where options are the proof type, created, verificationMethod and
proofPurpose. Changing any of them invalidates the proof. Canonicalizing
the payload is the caller's contract; ``canonicalize`` is provided for
the document and credential layers that need it.
"""

import base64
import hashlib
import json
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Dict

from . import signing
from .errors import ValidationError
from .signing import KeyType

_COMPONENT = "ProofEngine"

# Proof types per key type
PROOF_TYPES = {
    KeyType.ED25519: "Ed25519Signature2020",
    KeyType.SECP256K1: "EcdsaSecp256k1Signature2019",
}
_KEY_TYPES_BY_PROOF = {v: k for k, v in PROOF_TYPES.items()}


def canonicalize(obj: Any) -> bytes:
    """Canonical JSON bytes: sorted keys, compact separators, UTF-8"""
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


@dataclass
class Proof:
    """Detached proof over a payload"""
    type: str  # Ed25519Signature2020, EcdsaSecp256k1Signature2019
    verification_method_id: str
    signature_value: bytes
    created: str = ""
    proof_purpose: str = "assertionMethod"

    def __post_init__(self):
        if not self.created:
            self.created = datetime.utcnow().isoformat() + "Z"

    @property
    def key_type(self) -> KeyType:
        key_type = _KEY_TYPES_BY_PROOF.get(self.type)
        if key_type is None:
            raise ValidationError(
                f"Unsupported proof type: {self.type}",
                component=_COMPONENT,
                field="type",
                value=self.type
            )
        return key_type

    def options(self) -> Dict[str, Any]:
        """Proof fields covered by the signature"""
        return {
            "type": self.type,
            "created": self.created,
            "verificationMethod": self.verification_method_id,
            "proofPurpose": self.proof_purpose
        }

    def signing_input(self, payload: bytes) -> bytes:
        return hashlib.sha256(canonicalize(self.options())).digest() + hashlib.sha256(bytes(payload)).digest()

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "created": self.created,
            "verificationMethod": self.verification_method_id,
            "proofPurpose": self.proof_purpose,
            "proofValue": base64.urlsafe_b64encode(self.signature_value).decode("utf-8").rstrip("=")
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Proof":
        try:
            value = data["proofValue"]
            signature = base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))
            return cls(
                type=data["type"],
                verification_method_id=data["verificationMethod"],
                signature_value=signature,
                created=data.get("created", ""),
                proof_purpose=data.get("proofPurpose", "assertionMethod")
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(f"Malformed proof: {e}", component=_COMPONENT, field="proof") from e


class ProofEngine:
    """
    Creates and verifies detached proofs

    Stateless; one instance can be shared by every manager.
    """

    def create_proof(
        self,
        verification_method_id: str,
        key_type,
        private_key: bytes,
        payload: bytes,
        proof_purpose: str = "assertionMethod",
        created: str = None
    ) -> Proof:
        """
        Sign payload bytes

        Args:
            verification_method_id: Method the signature is attributed to
            key_type: KeyType of the private key
            private_key: Raw 32-byte private key
            payload: Canonical payload bytes
            proof_purpose: W3C proof purpose
            created: Timestamp to record, now by default

        Returns:
            Proof carrying the signature
        """
        key_type = KeyType.parse(key_type)
        self._check_payload(payload)

        proof = Proof(
            type=PROOF_TYPES[key_type],
            verification_method_id=verification_method_id,
            signature_value=b"",
            created=created or "",
            proof_purpose=proof_purpose
        )
        proof.signature_value = signing.sign(key_type, private_key, proof.signing_input(payload))
        return proof

    def verify_proof(self, public_key: bytes, payload: bytes, proof: Proof) -> bool:
        """
        Verify a proof against a public key and payload

        Returns:
            True iff the signature verifies, False for any mismatch

        Raises:
            ValidationError: for structurally malformed input
        """
        self._check_payload(payload)
        if not isinstance(proof, Proof):
            raise ValidationError("proof must be a Proof", component=_COMPONENT, field="proof")
        if not isinstance(proof.signature_value, (bytes, bytearray)):
            raise ValidationError("Signature must be bytes", component=_COMPONENT, field="signature_value")

        return signing.verify(proof.key_type, public_key, proof.signing_input(payload), proof.signature_value)

    @staticmethod
    def _check_payload(payload):
        if not isinstance(payload, (bytes, bytearray)):
            raise ValidationError("Payload must be bytes", component=_COMPONENT, field="payload")
