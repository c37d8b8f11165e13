"""
DID System Integration Service
===============================

Tích hợp các thành phần của DID core thành một interface:
- Secret source (mnemonic lookup)
- Key derivation
- DID documents qua connector registry
- Credential issuance / verification
"""

import logging
import threading
from typing import Dict, Optional, Protocol, Tuple

from .config import settings
from .connectors import ConnectorRegistry, InMemoryConnector
from .credential_issuer import CredentialLifecycle
from .credential_verifier import CredentialVerifier
from .did_manager import DIDDocument, DocumentManager
from .errors import NotFoundError
from .key_manager import KeyDerivationEngine, KeyPair
from .presentation import PresentationManager
from .proof import ProofEngine

logger = logging.getLogger(__name__)


class SecretSource(Protocol):
    """Where mnemonics live; the core never persists them"""

    def get_secret(self, identifier: str) -> str: ...


class InMemorySecretSource:
    """Dict backed secret source for tests and local development"""

    def __init__(self, secrets: Optional[Dict[str, str]] = None):
        self._secrets: Dict[str, str] = dict(secrets or {})
        self._lock = threading.Lock()

    def set_secret(self, identifier: str, mnemonic: str):
        with self._lock:
            self._secrets[identifier] = mnemonic

    def get_secret(self, identifier: str) -> str:
        with self._lock:
            mnemonic = self._secrets.get(identifier)
        if mnemonic is None:
            raise NotFoundError("SecretSource", "Secret", identifier)
        return mnemonic


class DIDService:
    """
    Main service class for DID operations

    Provides a unified interface for:
    - Identity creation from a stored mnemonic
    - Per-application sub keys
    - Credential issuance and verification
    - Holder signed presentations
    """

    def __init__(
        self,
        secret_source: SecretSource,
        registry: Optional[ConnectorRegistry] = None,
        key_engine: Optional[KeyDerivationEngine] = None
    ):
        """
        Initialize DID Service

        Args:
            secret_source: Source of mnemonics by identifier
            registry: Connector registry; one with an in-memory connector
                for the default namespace is built when omitted
            key_engine: Key derivation engine
        """
        if registry is None:
            registry = ConnectorRegistry()
            registry.register(settings.DEFAULT_NAMESPACE, InMemoryConnector)

        self.secret_source = secret_source
        self.registry = registry
        self.key_engine = key_engine or KeyDerivationEngine()
        self.proof_engine = ProofEngine()
        self.document_manager = DocumentManager(registry, self.proof_engine)
        self.credentials = CredentialLifecycle(self.document_manager)
        self.presentations = PresentationManager(self.document_manager)
        self.verifier = CredentialVerifier(self.document_manager)

    # ==================== KEYS ====================

    def root_key_pair(self, secret_id: str, key_type=None) -> KeyPair:
        mnemonic = self.secret_source.get_secret(secret_id)
        return self.key_engine.root_key_pair(key_type or settings.DEFAULT_KEY_TYPE, mnemonic)

    def application_key_pair(self, secret_id: str, application_name: str, key_type=None) -> KeyPair:
        """
        Key pair dedicated to one application

        The application name is hashed into a derivation path below the
        root key, so the same name always yields the same key.
        """
        root = self.root_key_pair(secret_id, key_type)
        return self.key_engine.child_key_pair(root, self.key_engine.name_to_path(application_name))

    # ==================== IDENTITIES ====================

    def create_identity(
        self,
        secret_id: str,
        namespace: str = None,
        key_type=None,
        path=None
    ) -> Tuple[DIDDocument, KeyPair]:
        """
        Create a DID whose controller key is derived from a stored mnemonic

        Args:
            secret_id: Identifier of the mnemonic in the secret source
            namespace: Ledger namespace
            key_type: KeyType, settings.DEFAULT_KEY_TYPE by default
            path: Optional derivation path below the root key

        Returns:
            Tuple of (document, controller key pair)
        """
        key_pair = self.root_key_pair(secret_id, key_type)
        if path is not None:
            key_pair = self.key_engine.child_key_pair(key_pair, path)

        document = self.document_manager.create_document(key_pair, namespace)
        logger.info(f"Created identity {document.id} for secret '{secret_id}'")
        return document, key_pair

    def resolve(self, did: str) -> DIDDocument:
        return self.document_manager.resolve_document(did)
