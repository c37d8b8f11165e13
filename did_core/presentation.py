"""
Verifiable Presentations
=========================

Holder ký một presentation bọc các Verifiable Credentials đã được cấp.

The holder signs with one of its own verification methods using proof
purpose ``authentication``. A presentation may carry an expiry; checking
it (see ``CredentialVerifier.verify_presentation``) re-verifies every
embedded credential against its issuer's current document.

Reference: https://www.w3.org/TR/vc-data-model/#presentations-0
"""

import json
import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from .connectors import parse_did
from .credential_issuer import DEFAULT_CONTEXTS, VerifiableCredential
from .did_manager import DocumentManager
from .errors import ValidationError
from .proof import Proof, canonicalize

logger = logging.getLogger(__name__)

_COMPONENT = "PresentationManager"

PRESENTATION_TYPE = "VerifiablePresentation"
PRESENTATION_PROOF_PURPOSE = "authentication"


@dataclass
class VerifiablePresentation:
    """W3C Verifiable Presentation"""
    context: List[str] = field(default_factory=lambda: list(DEFAULT_CONTEXTS))
    id: str = ""
    type: List[str] = field(default_factory=lambda: [PRESENTATION_TYPE])
    holder: str = ""  # Holder's DID
    verifiable_credential: List[VerifiableCredential] = field(default_factory=list)
    valid_from: str = ""
    valid_until: Optional[str] = None
    proof: Optional[Proof] = None

    def __post_init__(self):
        if not self.id:
            self.id = f"urn:uuid:{uuid.uuid4()}"
        if not self.valid_from:
            self.valid_from = datetime.utcnow().isoformat() + "Z"

    def to_dict(self, include_proof: bool = True) -> Dict[str, Any]:
        vp = {
            "@context": self.context,
            "id": self.id,
            "type": self.type,
            "holder": self.holder,
            "verifiableCredential": [vc.to_dict() for vc in self.verifiable_credential],
            "validFrom": self.valid_from
        }
        if self.valid_until:
            vp["validUntil"] = self.valid_until
        if include_proof and self.proof:
            vp["proof"] = self.proof.to_dict()
        return vp

    def to_json(self, indent: int = 2) -> str:
        return json.dumps(self.to_dict(), indent=indent)

    def signing_payload(self) -> bytes:
        """Canonical bytes covered by the holder proof"""
        return canonicalize(self.to_dict(include_proof=False))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerifiablePresentation":
        """
        Raises:
            ValidationError: if the embedded credentials are not a list of objects
        """
        credentials = data.get("verifiableCredential", [])
        if not isinstance(credentials, list) or not all(isinstance(vc, dict) for vc in credentials):
            raise ValidationError(
                "verifiableCredential must be a list of credential objects",
                component=_COMPONENT,
                field="verifiableCredential"
            )

        return cls(
            context=data.get("@context", []),
            id=data.get("id", ""),
            type=data.get("type", []),
            holder=data.get("holder", ""),
            verifiable_credential=[VerifiableCredential.from_dict(vc) for vc in credentials],
            valid_from=data.get("validFrom", ""),
            valid_until=data.get("validUntil"),
            proof=Proof.from_dict(data["proof"]) if data.get("proof") else None
        )


class PresentationManager:
    """
    Creates holder signed presentations

    Features:
    - Wrap issued credentials in a presentation
    - Optional expiry in minutes
    - Holder proof by verification method id
    """

    def __init__(self, document_manager: DocumentManager):
        self.document_manager = document_manager

    def create_presentation(
        self,
        holder_method_id: str,
        private_key: bytes,
        credentials: List[VerifiableCredential],
        presentation_id: Optional[str] = None,
        types: Optional[List[str]] = None,
        contexts: Optional[List[str]] = None,
        expires_in_minutes: Optional[int] = None
    ) -> VerifiablePresentation:
        """
        Create and sign a Verifiable Presentation

        Args:
            holder_method_id: Holder verification method, did#fragment
            private_key: Private key of that method
            credentials: Issued (signed) credentials to present
            presentation_id: Presentation id, a urn:uuid by default
            types: Extra types besides VerifiablePresentation
            contexts: Extra JSON-LD contexts
            expires_in_minutes: Lifetime of the presentation

        Returns:
            Signed VerifiablePresentation

        Raises:
            ValidationError: for an empty / unsigned credential list, a bad
                expiry or a key that does not match the method
            NotFoundError: if the holder document or method is missing
        """
        parts = parse_did(holder_method_id)
        if not isinstance(credentials, list) or not credentials:
            raise ValidationError(
                "At least one credential is required",
                component=_COMPONENT,
                field="credentials"
            )
        for credential in credentials:
            if not isinstance(credential, VerifiableCredential) or credential.proof is None:
                raise ValidationError(
                    "Only signed credentials can be presented",
                    component=_COMPONENT,
                    field="credentials",
                    value=getattr(credential, "id", credential)
                )
        if expires_in_minutes is not None and (
            isinstance(expires_in_minutes, bool)
            or not isinstance(expires_in_minutes, int)
            or expires_in_minutes <= 0
        ):
            raise ValidationError(
                "expires_in_minutes must be a positive integer",
                component=_COMPONENT,
                field="expires_in_minutes",
                value=expires_in_minutes
            )

        now = datetime.utcnow()
        valid_until = None
        if expires_in_minutes is not None:
            valid_until = (now + timedelta(minutes=expires_in_minutes)).isoformat() + "Z"

        presentation = VerifiablePresentation(
            context=DEFAULT_CONTEXTS + [c for c in (contexts or []) if c not in DEFAULT_CONTEXTS],
            id=presentation_id or "",
            type=[PRESENTATION_TYPE] + [t for t in (types or []) if t != PRESENTATION_TYPE],
            holder=parts.did,
            verifiable_credential=list(credentials),
            valid_from=now.isoformat() + "Z",
            valid_until=valid_until
        )
        presentation.proof = self.document_manager.create_proof(
            holder_method_id,
            private_key,
            presentation.signing_payload(),
            proof_purpose=PRESENTATION_PROOF_PURPOSE
        )

        logger.info(f"Created presentation {presentation.id} for holder {presentation.holder}")
        return presentation
