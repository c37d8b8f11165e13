"""
Verifiable Credentials Issuer
=============================

Cấp Verifiable Credentials (VC) theo chuẩn W3C Verifiable Credentials
Data Model 1.1, với lifecycle và revocation bitmap.

Lifecycle:

    PendingVerification --approve--> Issued --revoke--> Revoked
    PendingVerification --reject---> Rejected
    Revoked --unrevoke--> Issued

Every credential owns one revocation index in its issuer's DID document;
revoking flips that single bit.

Reference: https://www.w3.org/TR/vc-data-model/
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import Any, Dict, List, Optional

from .connectors import join_id, parse_did
from .did_manager import DocumentManager
from .errors import ValidationError
from .proof import Proof, ProofEngine, canonicalize
from .revocation import REVOCATION_FRAGMENT, REVOCATION_SERVICE_TYPE

logger = logging.getLogger(__name__)

_COMPONENT = "CredentialLifecycle"

DEFAULT_CONTEXTS = [
    "https://www.w3.org/2018/credentials/v1",
]
DEFAULT_TYPES = ["VerifiableCredential"]


class CredentialState(Enum):
    """Credential lifecycle states"""
    PENDING_VERIFICATION = "PendingVerification"
    ISSUED = "Issued"
    REJECTED = "Rejected"
    REVOKED = "Revoked"


class CredentialEvent(Enum):
    APPROVE = "approve"
    REJECT = "reject"
    REVOKE = "revoke"
    UNREVOKE = "unrevoke"


_TRANSITIONS = {
    (CredentialState.PENDING_VERIFICATION, CredentialEvent.APPROVE): CredentialState.ISSUED,
    (CredentialState.PENDING_VERIFICATION, CredentialEvent.REJECT): CredentialState.REJECTED,
    (CredentialState.ISSUED, CredentialEvent.REVOKE): CredentialState.REVOKED,
    (CredentialState.REVOKED, CredentialEvent.REVOKE): CredentialState.REVOKED,
    (CredentialState.REVOKED, CredentialEvent.UNREVOKE): CredentialState.ISSUED,
}


def transition(state: CredentialState, event: CredentialEvent) -> CredentialState:
    """
    Next state for an event

    Raises:
        ValidationError: if the event is not allowed in ``state``
    """
    next_state = _TRANSITIONS.get((state, event))
    if next_state is None:
        raise ValidationError(
            f"Cannot {event.value} a credential in state {state.value}",
            component=_COMPONENT,
            field="state",
            value=state.value
        )
    return next_state


@dataclass
class VerifiableCredential:
    """
    W3C Verifiable Credential

    A credential containing claims about a subject, signed by an issuer.
    ``state`` and ``verification_method_id`` are issuer side bookkeeping
    and are not part of the signed JSON.
    """
    context: List[str] = field(default_factory=lambda: list(DEFAULT_CONTEXTS))
    id: str = ""
    type: List[str] = field(default_factory=lambda: list(DEFAULT_TYPES))
    issuer: str = ""  # Issuer's DID
    issuance_date: str = ""
    expiration_date: Optional[str] = None
    credential_subject: Dict[str, Any] = field(default_factory=dict)
    revocation_index: Optional[int] = None
    proof: Optional[Proof] = None

    state: CredentialState = CredentialState.PENDING_VERIFICATION
    verification_method_id: str = ""

    def __post_init__(self):
        if not self.id:
            self.id = f"urn:uuid:{uuid.uuid4()}"
        if not self.issuance_date:
            self.issuance_date = datetime.utcnow().isoformat() + "Z"

    @property
    def credential_status(self) -> Optional[Dict[str, Any]]:
        if self.revocation_index is None:
            return None
        return {
            "id": join_id(self.issuer, REVOCATION_FRAGMENT),
            "type": REVOCATION_SERVICE_TYPE,
            "revocationBitmapIndex": str(self.revocation_index)
        }

    def to_dict(self, include_proof: bool = True) -> Dict[str, Any]:
        """Convert to W3C VC JSON format"""
        vc = {
            "@context": self.context,
            "id": self.id,
            "type": self.type,
            "issuer": self.issuer,
            "issuanceDate": self.issuance_date,
            "credentialSubject": self.credential_subject
        }

        if self.expiration_date:
            vc["expirationDate"] = self.expiration_date
        if self.credential_status:
            vc["credentialStatus"] = self.credential_status
        if include_proof and self.proof:
            vc["proof"] = self.proof.to_dict()

        return vc

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def signing_payload(self) -> bytes:
        """Canonical bytes covered by the credential proof"""
        return canonicalize(self.to_dict(include_proof=False))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerifiableCredential":
        """
        Rebuild a credential received from a holder

        A credential with a proof is taken as Issued, one without as
        PendingVerification.
        """
        status = data.get("credentialStatus") or {}
        index = status.get("revocationBitmapIndex")
        try:
            revocation_index = int(index) if index is not None else None
        except (TypeError, ValueError) as e:
            raise ValidationError(
                "Malformed revocationBitmapIndex",
                component=_COMPONENT,
                field="credentialStatus",
                value=index
            ) from e

        proof = Proof.from_dict(data["proof"]) if data.get("proof") else None
        return cls(
            context=data.get("@context", []),
            id=data.get("id", ""),
            type=data.get("type", []),
            issuer=data.get("issuer", ""),
            issuance_date=data.get("issuanceDate", ""),
            expiration_date=data.get("expirationDate"),
            credential_subject=data.get("credentialSubject", {}),
            revocation_index=revocation_index,
            proof=proof,
            state=CredentialState.ISSUED if proof else CredentialState.PENDING_VERIFICATION,
            verification_method_id=proof.verification_method_id if proof else ""
        )


class CredentialLifecycle:
    """
    Issues Verifiable Credentials and drives their lifecycle

    Features:
    - Issue credentials, signed now or after verification
    - Approve / reject pending credentials
    - Revoke / unrevoke through the issuer's revocation bitmap
    - Check credential status
    """

    def __init__(self, document_manager: DocumentManager, proof_engine: Optional[ProofEngine] = None):
        self.document_manager = document_manager
        self.proof_engine = proof_engine or document_manager.proof_engine

    # ==================== CREDENTIAL ISSUANCE ====================

    def issue(
        self,
        issuer_did: str,
        verification_method_id: str,
        private_key: bytes,
        subject: Dict[str, Any],
        credential_id: Optional[str] = None,
        types: Optional[List[str]] = None,
        contexts: Optional[List[str]] = None,
        revocation_index: Optional[int] = None,
        validity_days: Optional[int] = None,
        defer_signing: bool = False
    ) -> VerifiableCredential:
        """
        Issue a Verifiable Credential

        Args:
            issuer_did: DID of the issuer
            verification_method_id: Issuer method the proof is attributed to
            private_key: Private key of that method
            subject: credentialSubject claims
            credential_id: Credential id, a urn:uuid by default
            types: Extra credential types besides VerifiableCredential
            contexts: Extra JSON-LD contexts
            revocation_index: Explicit index, at or above the issuer's watermark
            validity_days: How long the credential is valid
            defer_signing: Leave the credential PendingVerification

        Returns:
            VerifiableCredential, Issued or PendingVerification
        """
        issuer_did = parse_did(issuer_did).did
        method_id = join_id(issuer_did, verification_method_id)
        if not isinstance(subject, dict):
            raise ValidationError("Credential subject must be a dict", _COMPONENT, "subject", subject)

        # Fails before allocation if the method is unknown or the key is wrong
        self.document_manager.get_signing_method(method_id, private_key)

        index = self.document_manager.allocate_revocation_index(issuer_did, private_key, revocation_index)

        expiration_date = None
        if validity_days is not None:
            expiration_date = (datetime.utcnow() + timedelta(days=validity_days)).isoformat() + "Z"

        credential = VerifiableCredential(
            context=DEFAULT_CONTEXTS + [c for c in (contexts or []) if c not in DEFAULT_CONTEXTS],
            id=credential_id or "",
            type=DEFAULT_TYPES + [t for t in (types or []) if t not in DEFAULT_TYPES],
            issuer=issuer_did,
            expiration_date=expiration_date,
            credential_subject=dict(subject),
            revocation_index=index,
            verification_method_id=method_id
        )

        if defer_signing:
            logger.info(f"Credential {credential.id} pending verification (index {index})")
            return credential

        return self.approve(credential, private_key)

    def approve(self, credential: VerifiableCredential, private_key: bytes) -> VerifiableCredential:
        """Sign a pending credential"""
        next_state = transition(credential.state, CredentialEvent.APPROVE)
        credential.proof = self.document_manager.create_proof(
            credential.verification_method_id,
            private_key,
            credential.signing_payload()
        )
        credential.state = next_state
        logger.info(f"Issued credential {credential.id} by {credential.issuer}")
        return credential

    def reject(self, credential: VerifiableCredential) -> VerifiableCredential:
        credential.state = transition(credential.state, CredentialEvent.REJECT)
        logger.info(f"Rejected credential {credential.id}")
        return credential

    # ==================== REVOCATION ====================

    def revoke(self, credential: VerifiableCredential, private_key: bytes) -> VerifiableCredential:
        """
        Revoke a credential by setting its bit in the issuer's bitmap

        Revoking an already revoked credential changes nothing.
        """
        next_state = transition(credential.state, CredentialEvent.REVOKE)
        if credential.state == CredentialState.REVOKED:
            return credential

        self.document_manager.set_revocation_status(
            credential.issuer, private_key, [self._revocation_index(credential)], True
        )
        credential.state = next_state
        logger.info(f"Revoked credential {credential.id} (index {credential.revocation_index})")
        return credential

    def unrevoke(self, credential: VerifiableCredential, private_key: bytes) -> VerifiableCredential:
        """
        Clear the revocation bit and return the credential to Issued

        Raises:
            ValidationError: if the credential was never revoked
        """
        next_state = transition(credential.state, CredentialEvent.UNREVOKE)
        index = self._revocation_index(credential)
        if not self.document_manager.is_revoked(credential.issuer, index):
            raise ValidationError(
                "Credential is not revoked in the issuer registry",
                component=_COMPONENT,
                field="revocation_index",
                value=index
            )

        self.document_manager.set_revocation_status(credential.issuer, private_key, [index], False)
        credential.state = next_state
        logger.info(f"Unrevoked credential {credential.id} (index {index})")
        return credential

    def is_revoked(self, credential: VerifiableCredential) -> bool:
        """Check the issuer's current bitmap"""
        if credential.revocation_index is None:
            return False
        return self.document_manager.is_revoked(credential.issuer, credential.revocation_index)

    @staticmethod
    def _revocation_index(credential: VerifiableCredential) -> int:
        if credential.revocation_index is None:
            raise ValidationError(
                "Credential has no revocation index",
                component=_COMPONENT,
                field="revocation_index",
                value=credential.id
            )
        return credential.revocation_index
