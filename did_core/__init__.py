"""
Decentralized Identity (DID) Core
==================================

Hệ thống định danh phi tập trung theo chuẩn W3C DID Core 1.0

Components:
- KeyDerivationEngine: Mnemonic -> root key -> child keys (SLIP-10)
- ConnectorRegistry: Namespace -> ledger connector
- DocumentManager: Tạo và quản lý DID Documents
- ProofEngine: Ký và xác thực proofs
- CredentialLifecycle: Cấp, thu hồi Verifiable Credentials
- PresentationManager: Holder ký Verifiable Presentations
- CredentialVerifier: Xác thực Verifiable Credentials
- DIDService: Service tích hợp chính

Standards:
- W3C DID Core 1.0: https://www.w3.org/TR/did-core/
- W3C Verifiable Credentials: https://www.w3.org/TR/vc-data-model/
"""

from .config import IdentitySettings, configure_logging, settings
from .connectors import ConnectorRegistry, InMemoryConnector, VersionConflictError, parse_did
from .credential_issuer import CredentialLifecycle, CredentialState, VerifiableCredential
from .credential_verifier import (
    CredentialVerifier,
    PresentationVerificationResult,
    VerificationResult,
    VerificationStatus,
)
from .derivation import DerivationPath
from .did_manager import DIDDocument, DocumentManager, ServiceEndpoint, VerificationMethod
from .did_service import DIDService, InMemorySecretSource, SecretSource
from .errors import GeneralError, IdentityError, NotFoundError, ValidationError
from .key_manager import KeyDerivationEngine, KeyPair
from .presentation import PresentationManager, VerifiablePresentation
from .proof import Proof, ProofEngine, canonicalize
from .revocation import RevocationRegistry
from .signing import KeyType

__version__ = "1.0.0"
__all__ = [
    # Keys
    "KeyDerivationEngine",
    "KeyPair",
    "KeyType",
    "DerivationPath",

    # Ledger
    "ConnectorRegistry",
    "InMemoryConnector",
    "VersionConflictError",
    "parse_did",

    # Core DID
    "DocumentManager",
    "DIDDocument",
    "VerificationMethod",
    "ServiceEndpoint",
    "RevocationRegistry",

    # Proofs
    "ProofEngine",
    "Proof",
    "canonicalize",

    # Credentials
    "CredentialLifecycle",
    "CredentialState",
    "VerifiableCredential",
    "CredentialVerifier",
    "VerificationResult",
    "VerificationStatus",

    # Presentations
    "PresentationManager",
    "VerifiablePresentation",
    "PresentationVerificationResult",

    # Service
    "DIDService",
    "SecretSource",
    "InMemorySecretSource",

    # Errors / config
    "IdentityError",
    "ValidationError",
    "NotFoundError",
    "GeneralError",
    "IdentitySettings",
    "settings",
    "configure_logging",
]
