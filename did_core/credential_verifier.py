"""
Verifiable Credentials Verifier
================================

Xác thực Verifiable Credentials theo chuẩn W3C

Features:
- Verify credential signatures against the issuer's current DID document
- Check expiration
- Check revocation status in the issuer's bitmap
- Validate credential structure
- Verify holder signed presentations and every credential inside them
"""

import json
import logging
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from .connectors import parse_did
from .credential_issuer import VerifiableCredential
from .did_manager import DIDDocument, DocumentManager
from .errors import NotFoundError, ValidationError
from .presentation import PRESENTATION_PROOF_PURPOSE, PRESENTATION_TYPE, VerifiablePresentation

logger = logging.getLogger(__name__)

CREDENTIAL_PROOF_PURPOSE = "assertionMethod"


class VerificationStatus(Enum):
    """Credential verification status"""
    VALID = "valid"
    INVALID_SIGNATURE = "invalid_signature"
    EXPIRED = "expired"
    REVOKED = "revoked"
    ISSUER_NOT_FOUND = "issuer_not_found"
    KEY_NOT_FOUND = "key_not_found"
    MALFORMED = "malformed"
    NOT_YET_VALID = "not_yet_valid"
    UNTRUSTED_ISSUER = "untrusted_issuer"
    HOLDER_NOT_FOUND = "holder_not_found"


@dataclass
class VerificationResult:
    """Result of credential verification"""
    status: VerificationStatus
    credential_id: str
    issuer: str
    subject: str
    is_valid: bool
    checks: Dict[str, bool]
    errors: List[str]
    verified_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "credentialId": self.credential_id,
            "issuer": self.issuer,
            "subject": self.subject,
            "isValid": self.is_valid,
            "checks": self.checks,
            "errors": self.errors,
            "verifiedAt": self.verified_at
        }


@dataclass
class PresentationVerificationResult:
    """Result of presentation verification"""
    status: VerificationStatus
    presentation_id: str
    holder: str
    is_valid: bool
    revoked: bool
    credential_results: List[VerificationResult]
    errors: List[str]
    verified_at: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "presentationId": self.presentation_id,
            "holder": self.holder,
            "isValid": self.is_valid,
            "revoked": self.revoked,
            "credentials": [result.to_dict() for result in self.credential_results],
            "errors": self.errors,
            "verifiedAt": self.verified_at
        }


def _parse_date(value: str) -> datetime:
    return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)


class CredentialVerifier:
    """
    Verifies Verifiable Credentials

    Performs the following checks:
    1. Structure validation
    2. Validity period
    3. Signature verification (issuer document resolved on every call)
    4. Revocation check
    5. Issuer trust check
    """

    def __init__(self, document_manager: DocumentManager, trusted_issuers: Optional[List[str]] = None):
        self.document_manager = document_manager
        self.proof_engine = document_manager.proof_engine
        self.trusted_issuers = set(trusted_issuers or [])

    # ==================== VERIFICATION ====================

    def verify(
        self,
        credential: VerifiableCredential,
        check_revocation: bool = True,
        require_trusted_issuer: bool = False
    ) -> VerificationResult:
        """
        Verify a Verifiable Credential

        Args:
            credential: The credential to verify
            check_revocation: Whether to check revocation status
            require_trusted_issuer: Whether issuer must be in trusted list

        Returns:
            VerificationResult with detailed status
        """
        errors = []
        checks = {
            "structure": False,
            "expiration": False,
            "signature": False,
            "revocation": False,
            "trusted_issuer": False
        }

        # 1. Structure validation
        structure_valid, structure_errors = self._validate_structure(credential)
        checks["structure"] = structure_valid
        errors.extend(structure_errors)
        if not structure_valid:
            return self._create_result(VerificationStatus.MALFORMED, credential, checks, errors)

        # 2. Validity period
        now = datetime.utcnow()
        try:
            if _parse_date(credential.issuance_date) > now:
                errors.append("Credential is not yet valid")
                return self._create_result(VerificationStatus.NOT_YET_VALID, credential, checks, errors)
            if credential.expiration_date and now > _parse_date(credential.expiration_date):
                errors.append("Credential has expired")
                return self._create_result(VerificationStatus.EXPIRED, credential, checks, errors)
        except ValueError as e:
            errors.append(f"Invalid date format: {e}")
            return self._create_result(VerificationStatus.MALFORMED, credential, checks, errors)
        checks["expiration"] = True

        # 3. Resolve issuer and verify signature
        try:
            issuer_doc = self.document_manager.resolve_document(credential.issuer)
        except NotFoundError as e:
            errors.append(f"Could not resolve issuer DID: {e.message}")
            return self._create_result(VerificationStatus.ISSUER_NOT_FOUND, credential, checks, errors)

        status, sig_error = self._verify_signature(credential, issuer_doc)
        if status is not None:
            errors.append(sig_error)
            return self._create_result(status, credential, checks, errors)
        checks["signature"] = True

        # 4. Check revocation
        if check_revocation and self._check_revocation(credential, issuer_doc):
            errors.append("Credential has been revoked")
            return self._create_result(VerificationStatus.REVOKED, credential, checks, errors)
        checks["revocation"] = True

        # 5. Check trusted issuer
        if require_trusted_issuer and credential.issuer not in self.trusted_issuers:
            errors.append(f"Issuer {credential.issuer} is not trusted")
            return self._create_result(VerificationStatus.UNTRUSTED_ISSUER, credential, checks, errors)
        checks["trusted_issuer"] = True

        # All checks passed
        return self._create_result(VerificationStatus.VALID, credential, checks, errors)

    def verify_json(self, credential_json: str, **kwargs) -> VerificationResult:
        """Verify credential from JSON string"""
        try:
            data = json.loads(credential_json)
            credential = VerifiableCredential.from_dict(data)
        except (json.JSONDecodeError, ValidationError, AttributeError) as e:
            return VerificationResult(
                status=VerificationStatus.MALFORMED,
                credential_id="",
                issuer="",
                subject="",
                is_valid=False,
                checks={},
                errors=[f"Invalid credential JSON: {e}"],
                verified_at=datetime.utcnow().isoformat() + "Z"
            )
        return self.verify(credential, **kwargs)

    # ==================== PRESENTATIONS ====================

    def verify_presentation(
        self,
        presentation: VerifiablePresentation,
        check_revocation: bool = True,
        require_trusted_issuer: bool = False
    ) -> PresentationVerificationResult:
        """
        Verify a holder signed presentation

        The holder proof is checked against the holder's current document,
        then every embedded credential goes through verify(). The first
        failing credential decides the status.

        Args:
            presentation: The presentation to verify
            check_revocation: Whether to check credential revocation
            require_trusted_issuer: Whether every issuer must be trusted

        Returns:
            PresentationVerificationResult
        """
        errors = self._validate_presentation(presentation)
        if errors:
            return self._presentation_result(VerificationStatus.MALFORMED, presentation, errors)

        now = datetime.utcnow()
        try:
            if _parse_date(presentation.valid_from) > now:
                return self._presentation_result(
                    VerificationStatus.NOT_YET_VALID, presentation, ["Presentation is not yet valid"]
                )
            if presentation.valid_until and now > _parse_date(presentation.valid_until):
                return self._presentation_result(
                    VerificationStatus.EXPIRED, presentation, ["Presentation has expired"]
                )
        except ValueError as e:
            return self._presentation_result(
                VerificationStatus.MALFORMED, presentation, [f"Invalid date format: {e}"]
            )

        try:
            holder_doc = self.document_manager.resolve_document(presentation.holder)
        except NotFoundError as e:
            return self._presentation_result(
                VerificationStatus.HOLDER_NOT_FOUND,
                presentation,
                [f"Could not resolve holder DID: {e.message}"]
            )

        proof = presentation.proof
        method = holder_doc.find_method(proof.verification_method_id)
        if method is None or method.id not in holder_doc.authentication_ids():
            return self._presentation_result(
                VerificationStatus.KEY_NOT_FOUND,
                presentation,
                [f"Verification method not found: {proof.verification_method_id}"]
            )

        try:
            is_valid = self.proof_engine.verify_proof(
                method.public_key_bytes(),
                presentation.signing_payload(),
                proof
            )
        except ValidationError as e:
            return self._presentation_result(
                VerificationStatus.MALFORMED, presentation, [f"Signature verification error: {e.message}"]
            )
        if not is_valid:
            logger.warning(f"Holder signature check failed for presentation {presentation.id}")
            return self._presentation_result(
                VerificationStatus.INVALID_SIGNATURE, presentation, ["Signature verification failed"]
            )

        credential_results = [
            self.verify(credential, check_revocation, require_trusted_issuer)
            for credential in presentation.verifiable_credential
        ]
        status = VerificationStatus.VALID
        errors = []
        for result in credential_results:
            if not result.is_valid:
                if status == VerificationStatus.VALID:
                    status = result.status
                errors.extend(f"{result.credential_id}: {error}" for error in result.errors)

        return self._presentation_result(status, presentation, errors, credential_results)

    def verify_presentation_json(self, presentation_json: str, **kwargs) -> PresentationVerificationResult:
        """Verify presentation from JSON string"""
        try:
            data = json.loads(presentation_json)
            presentation = VerifiablePresentation.from_dict(data)
        except (json.JSONDecodeError, ValidationError, AttributeError) as e:
            return PresentationVerificationResult(
                status=VerificationStatus.MALFORMED,
                presentation_id="",
                holder="",
                is_valid=False,
                revoked=False,
                credential_results=[],
                errors=[f"Invalid presentation JSON: {e}"],
                verified_at=datetime.utcnow().isoformat() + "Z"
            )
        return self.verify_presentation(presentation, **kwargs)

    def _validate_presentation(self, presentation: VerifiablePresentation) -> List[str]:
        errors = []

        if not isinstance(presentation.type, list) or PRESENTATION_TYPE not in presentation.type:
            errors.append("Invalid or missing presentation type")

        if not presentation.holder or not isinstance(presentation.holder, str):
            errors.append("Missing holder")
        else:
            try:
                parse_did(presentation.holder)
            except ValidationError:
                errors.append(f"Malformed holder DID: {presentation.holder}")

        if not presentation.valid_from or not isinstance(presentation.valid_from, str):
            errors.append("Missing validFrom")
        if presentation.valid_until is not None and not isinstance(presentation.valid_until, str):
            errors.append("validUntil must be a string")

        if not presentation.verifiable_credential:
            errors.append("Presentation carries no credentials")

        if not presentation.proof:
            errors.append("Missing proof")
        elif presentation.proof.proof_purpose != PRESENTATION_PROOF_PURPOSE:
            errors.append(f"Unexpected proof purpose: {presentation.proof.proof_purpose}")

        return errors

    def _presentation_result(
        self,
        status: VerificationStatus,
        presentation: VerifiablePresentation,
        errors: List[str],
        credential_results: Optional[List[VerificationResult]] = None
    ) -> PresentationVerificationResult:
        credential_results = credential_results or []
        return PresentationVerificationResult(
            status=status,
            presentation_id=presentation.id,
            holder=presentation.holder if isinstance(presentation.holder, str) else "",
            is_valid=status == VerificationStatus.VALID,
            revoked=any(r.status == VerificationStatus.REVOKED for r in credential_results),
            credential_results=credential_results,
            errors=errors,
            verified_at=datetime.utcnow().isoformat() + "Z"
        )

    # ==================== VALIDATION HELPERS ====================

    def _validate_structure(self, credential: VerifiableCredential) -> Tuple[bool, List[str]]:
        """Validate credential structure"""
        errors = []

        # Required fields
        if not credential.id:
            errors.append("Missing credential ID")

        if not isinstance(credential.type, list) or "VerifiableCredential" not in credential.type:
            errors.append("Invalid or missing credential type")

        if not credential.issuer:
            errors.append("Missing issuer")
        elif not isinstance(credential.issuer, str):
            errors.append("Issuer must be a DID string")
        else:
            try:
                parse_did(credential.issuer)
            except ValidationError:
                errors.append(f"Malformed issuer DID: {credential.issuer}")

        if not credential.issuance_date:
            errors.append("Missing issuance date")
        elif not isinstance(credential.issuance_date, str):
            errors.append("Issuance date must be a string")

        if credential.expiration_date is not None and not isinstance(credential.expiration_date, str):
            errors.append("Expiration date must be a string")

        if not credential.credential_subject:
            errors.append("Missing credential subject")
        elif not isinstance(credential.credential_subject, dict):
            errors.append("Credential subject must be an object")

        if not credential.proof:
            errors.append("Missing proof")

        return len(errors) == 0, errors

    def _verify_signature(
        self,
        credential: VerifiableCredential,
        issuer_doc: DIDDocument
    ) -> Tuple[Optional[VerificationStatus], Optional[str]]:
        """Verify credential signature, returning a failure status or None"""
        proof = credential.proof
        if proof.proof_purpose != CREDENTIAL_PROOF_PURPOSE:
            return VerificationStatus.INVALID_SIGNATURE, \
                f"Unexpected proof purpose: {proof.proof_purpose}"

        method = issuer_doc.find_method(proof.verification_method_id)
        if method is None or method.id not in issuer_doc.assertion_method_ids():
            return VerificationStatus.KEY_NOT_FOUND, \
                f"Verification method not found: {proof.verification_method_id}"

        try:
            is_valid = self.proof_engine.verify_proof(
                method.public_key_bytes(),
                credential.signing_payload(),
                proof
            )
        except ValidationError as e:
            return VerificationStatus.MALFORMED, f"Signature verification error: {e.message}"

        if not is_valid:
            logger.warning(f"Signature check failed for credential {credential.id}")
            return VerificationStatus.INVALID_SIGNATURE, "Signature verification failed"
        return None, None

    def _check_revocation(self, credential: VerifiableCredential, issuer_doc: DIDDocument) -> bool:
        """Check the credential's bit in the issuer's bitmap"""
        if credential.revocation_index is None or issuer_doc.revocation_registry is None:
            return False
        try:
            return issuer_doc.revocation_registry.get(credential.revocation_index)
        except ValidationError:
            # Out of range index can never have been allocated
            return False

    def _create_result(
        self,
        status: VerificationStatus,
        credential: VerifiableCredential,
        checks: Dict[str, bool],
        errors: List[str]
    ) -> VerificationResult:
        """Create verification result"""
        subject = ""
        if isinstance(credential.credential_subject, dict):
            subject = credential.credential_subject.get("id", "")

        return VerificationResult(
            status=status,
            credential_id=credential.id,
            issuer=credential.issuer,
            subject=subject,
            is_valid=status == VerificationStatus.VALID,
            checks=checks,
            errors=errors,
            verified_at=datetime.utcnow().isoformat() + "Z"
        )

    # ==================== TRUST MANAGEMENT ====================

    def add_trusted_issuer(self, issuer_did: str):
        """Add issuer to trusted list"""
        self.trusted_issuers.add(issuer_did)

    def remove_trusted_issuer(self, issuer_did: str):
        """Remove issuer from trusted list"""
        self.trusted_issuers.discard(issuer_did)

    def is_trusted_issuer(self, issuer_did: str) -> bool:
        return issuer_did in self.trusted_issuers
