"""
DID Manager - Tạo và quản lý DID Documents theo chuẩn W3C DID Core 1.0

DID Format: did:<method>:<namespace>:<identifier>

Every mutation is a read-modify-publish cycle: resolve the current
document, change it in memory, re-sign it with a controller key and hand
it to the namespace's connector. Nothing is cached between calls.

Reference: https://www.w3.org/TR/did-core/
"""

import base64
import copy
import json
import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Union

from .config import settings
from .connectors import ConnectorRegistry, join_id, parse_did
from .errors import GeneralError, IdentityError, NotFoundError, ValidationError
from .key_manager import VERIFICATION_METHOD_TYPES, KeyPair
from .proof import Proof, ProofEngine, canonicalize
from .revocation import REVOCATION_FRAGMENT, REVOCATION_SERVICE_TYPE, RevocationRegistry
from .signing import KeyType, public_key_from_private, secp256k1_public_key_from_coordinates

logger = logging.getLogger(__name__)

_COMPONENT = "DocumentManager"

_KEY_TYPES_BY_METHOD = {v: k for k, v in VERIFICATION_METHOD_TYPES.items()}


def _utc_now() -> str:
    return datetime.utcnow().isoformat() + "Z"


def _b64url_decode(value: str) -> bytes:
    return base64.urlsafe_b64decode(value + "=" * (-len(value) % 4))


@dataclass
class VerificationMethod:
    """Public key entry of a DID Document"""
    id: str
    type: str  # Ed25519VerificationKey2020, EcdsaSecp256k1VerificationKey2019
    controller: str
    public_key_jwk: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def from_key_pair(cls, key_pair: KeyPair, controller: str = "", fragment: str = None) -> "VerificationMethod":
        return cls.from_dict(key_pair.to_verification_method(controller, fragment))

    @property
    def key_type(self) -> KeyType:
        key_type = _KEY_TYPES_BY_METHOD.get(self.type)
        if key_type is None:
            raise ValidationError(
                f"Unsupported verification method type: {self.type}",
                component=_COMPONENT,
                field="type",
                value=self.type
            )
        return key_type

    def public_key_bytes(self) -> bytes:
        """Raw public key in the form the signing primitive expects"""
        try:
            if self.key_type == KeyType.ED25519:
                return _b64url_decode(self.public_key_jwk["x"])
            coordinates = _b64url_decode(self.public_key_jwk["x"]) + _b64url_decode(self.public_key_jwk["y"])
            return secp256k1_public_key_from_coordinates(coordinates)
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError(
                f"Malformed publicKeyJwk on {self.id}: {e}",
                component=_COMPONENT,
                field="publicKeyJwk",
                value=self.id
            ) from e

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type,
            "controller": self.controller,
            "publicKeyJwk": dict(self.public_key_jwk)
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "VerificationMethod":
        return cls(
            id=data["id"],
            type=data["type"],
            controller=data.get("controller", ""),
            public_key_jwk=dict(data.get("publicKeyJwk", {}))
        )


@dataclass
class ServiceEndpoint:
    """Service endpoint in DID Document"""
    id: str
    type: str
    service_endpoint: str
    description: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {
            "id": self.id,
            "type": self.type,
            "serviceEndpoint": self.service_endpoint
        }
        if self.description:
            result["description"] = self.description
        return result

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ServiceEndpoint":
        return cls(
            id=data["id"],
            type=data["type"],
            service_endpoint=data["serviceEndpoint"],
            description=data.get("description")
        )


@dataclass
class DIDDocument:
    """
    W3C DID Document

    ``version`` is ledger bookkeeping for optimistic concurrency and is
    not part of the signed JSON.

    Reference: https://www.w3.org/TR/did-core/#core-properties
    """
    id: str  # The DID
    verification_method: List[VerificationMethod] = field(default_factory=list)
    service: List[ServiceEndpoint] = field(default_factory=list)
    revocation_registry: Optional[RevocationRegistry] = None
    proof: Optional[Proof] = None
    created: str = ""
    updated: str = ""
    version: int = 0

    def __post_init__(self):
        if not self.created:
            self.created = _utc_now()
        if not self.updated:
            self.updated = self.created

    # ==================== LOOKUPS ====================

    def find_method(self, method_id: str) -> Optional[VerificationMethod]:
        for vm in self.verification_method:
            if vm.id == method_id:
                return vm
        return None

    def find_service(self, service_id: str) -> Optional[ServiceEndpoint]:
        for svc in self.service:
            if svc.id == service_id:
                return svc
        return None

    def authentication_ids(self) -> List[str]:
        return [vm.id for vm in self.verification_method]

    def assertion_method_ids(self) -> List[str]:
        return [vm.id for vm in self.verification_method]

    @property
    def revocation_service_id(self) -> str:
        return join_id(self.id, REVOCATION_FRAGMENT)

    # ==================== BINDING ====================

    def bind(self, did: str):
        """Attach the ledger assigned DID to a freshly built document"""
        self.id = did
        for vm in self.verification_method:
            if vm.id.startswith("#"):
                vm.id = did + vm.id
            if not vm.controller:
                vm.controller = did
        for svc in self.service:
            if svc.id.startswith("#"):
                svc.id = did + svc.id

    # ==================== SERIALIZATION ====================

    def to_dict(self, include_proof: bool = True) -> Dict[str, Any]:
        """Convert to W3C DID Document JSON format"""
        services = [svc.to_dict() for svc in self.service]
        if self.revocation_registry is not None:
            services.append(self.revocation_registry.to_service(self.id))

        doc = {
            "@context": [
                "https://www.w3.org/ns/did/v1",
                "https://w3id.org/security/suites/jws-2020/v1"
            ],
            "id": self.id,
            "verificationMethod": [vm.to_dict() for vm in self.verification_method],
            "authentication": self.authentication_ids(),
            "assertionMethod": self.assertion_method_ids(),
        }
        if services:
            doc["service"] = services

        # Metadata
        doc["created"] = self.created
        doc["updated"] = self.updated

        if include_proof and self.proof is not None:
            doc["proof"] = self.proof.to_dict()
        return doc

    def to_json(self, indent: int = 2) -> str:
        """Convert to JSON string"""
        return json.dumps(self.to_dict(), indent=indent)

    def signing_payload(self) -> bytes:
        """Canonical bytes covered by the document proof"""
        return canonicalize(self.to_dict(include_proof=False))

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DIDDocument":
        """Create DIDDocument from dictionary"""
        services = []
        registry = None
        for svc in data.get("service", []):
            if svc.get("type") == REVOCATION_SERVICE_TYPE and svc["id"].endswith("#" + REVOCATION_FRAGMENT):
                registry = RevocationRegistry.from_service(svc)
            else:
                services.append(ServiceEndpoint.from_dict(svc))

        return cls(
            id=data["id"],
            verification_method=[VerificationMethod.from_dict(vm) for vm in data.get("verificationMethod", [])],
            service=services,
            revocation_registry=registry,
            proof=Proof.from_dict(data["proof"]) if data.get("proof") else None,
            created=data.get("created", ""),
            updated=data.get("updated", "")
        )

    def copy(self) -> "DIDDocument":
        return copy.deepcopy(self)


class DocumentManager:
    """
    Manages DID Documents through namespace connectors

    Features:
    - Create documents from a controller key pair
    - Resolve documents (always a fresh ledger read)
    - Add / remove verification methods and services
    - Allocate and flip revocation bits for the issuer's credentials
    - Create / verify proofs by verification method id
    """

    def __init__(self, registry: ConnectorRegistry, proof_engine: Optional[ProofEngine] = None):
        self.registry = registry
        self.proof_engine = proof_engine or ProofEngine()

    # ==================== LEDGER CALLS ====================

    def _ledger_call(self, operation: str, func: Callable, *args):
        """Run a connector call, wrapping ledger specific failures"""
        try:
            return func(*args)
        except IdentityError:
            raise
        except Exception as e:
            logger.error(f"{operation} failed: {e}")
            raise GeneralError(f"{operation} failed", component=_COMPONENT, cause=e) from e

    # ==================== DID CREATION ====================

    def create_document(self, controller_key_pair: KeyPair, namespace: str = None) -> DIDDocument:
        """
        Create and publish a new DID Document

        Args:
            controller_key_pair: Key pair that controls the document
            namespace: Ledger namespace to publish to

        Returns:
            The published DIDDocument as the ledger now holds it

        Raises:
            NotFoundError: if no connector is registered for the namespace
        """
        namespace = namespace or settings.DEFAULT_NAMESPACE
        connector = self.registry.resolve(namespace)

        document = DIDDocument(
            id="",
            verification_method=[VerificationMethod.from_key_pair(controller_key_pair)],
            revocation_registry=RevocationRegistry()
        )

        did = self._ledger_call("publishDocument", connector.publish_document, document)
        logger.info(f"Published DID document {did} in namespace '{namespace}'")

        # The ledger's copy carries the stored version
        return self.resolve_document(did)

    # ==================== DID RESOLUTION ====================

    def resolve_document(self, did: str) -> DIDDocument:
        """
        Resolve DID to DID Document

        Raises:
            NotFoundError: if the connector has no such document
            GeneralError: for any other connector failure
        """
        parts = parse_did(did)
        connector = self.registry.resolve(parts.namespace)
        document = self._ledger_call("resolveDocument", connector.resolve_document, parts.did)
        if document is None:
            raise NotFoundError(_COMPONENT, "DID document", parts.did)
        return document

    # ==================== AUTHORIZATION ====================

    def _controlling_method(self, document: DIDDocument, private_key: bytes) -> VerificationMethod:
        """Find the verification method the private key belongs to"""
        for vm in document.verification_method:
            try:
                if public_key_from_private(vm.key_type, private_key) == vm.public_key_bytes():
                    return vm
            except ValidationError:
                continue

        logger.warning(f"Rejected mutation of {document.id}: signing key is not a verification method")
        raise ValidationError(
            "Signing key does not control the document",
            component=_COMPONENT,
            field="controller_private_key",
            value=document.id
        )

    def _sign_and_update(self, document: DIDDocument, method: VerificationMethod, private_key: bytes):
        document.proof = None
        document.updated = _utc_now()
        document.proof = self.proof_engine.create_proof(
            method.id,
            method.key_type,
            private_key,
            document.signing_payload(),
            proof_purpose="capabilityInvocation"
        )
        connector = self.registry.connector_for_did(document.id)
        self._ledger_call("updateDocument", connector.update_document, document)
        logger.info(f"Updated DID document {document.id}")

    # ==================== VERIFICATION METHODS ====================

    def add_verification_method(
        self,
        did: str,
        controller_private_key: bytes,
        new_method: Union[VerificationMethod, KeyPair],
        fragment: str = None
    ) -> VerificationMethod:
        """
        Add new verification method to DID Document

        Args:
            did: The DID to update
            controller_private_key: Private key of a method already present
            new_method: VerificationMethod, or a KeyPair to build one from
            fragment: Method fragment when new_method is a KeyPair

        Returns:
            The added VerificationMethod
        """
        document = self.resolve_document(did)
        controller = self._controlling_method(document, controller_private_key)

        if isinstance(new_method, KeyPair):
            method = VerificationMethod.from_key_pair(new_method, document.id, fragment)
        else:
            method = copy.deepcopy(new_method)
            method.id = join_id(document.id, method.id)
            method.controller = method.controller or document.id
        method.public_key_bytes()  # rejects unsupported types and malformed JWKs

        if document.find_method(method.id) is not None:
            raise ValidationError(
                f"Verification method already exists: {method.id}",
                component=_COMPONENT,
                field="verification_method_id",
                value=method.id
            )

        document.verification_method.append(method)
        self._sign_and_update(document, controller, controller_private_key)
        return method

    def remove_verification_method(self, did: str, controller_private_key: bytes, method_id: str):
        """
        Remove a verification method

        Raises:
            NotFoundError: if the method is not in the document
            ValidationError: if it is the last method, or the key is unauthorized
        """
        document = self.resolve_document(did)
        controller = self._controlling_method(document, controller_private_key)

        method_id = join_id(document.id, method_id)
        method = document.find_method(method_id)
        if method is None:
            raise NotFoundError(_COMPONENT, "Verification method", method_id)
        if len(document.verification_method) == 1:
            raise ValidationError(
                "Cannot remove the last verification method",
                component=_COMPONENT,
                field="verification_method_id",
                value=method_id
            )

        document.verification_method.remove(method)
        self._sign_and_update(document, controller, controller_private_key)

    # ==================== SERVICES ====================

    def add_service(
        self,
        did: str,
        controller_private_key: bytes,
        service_id: str,
        service_type: str,
        service_endpoint: str,
        description: Optional[str] = None
    ) -> ServiceEndpoint:
        """
        Add service endpoint to DID Document

        Returns:
            The added ServiceEndpoint
        """
        document = self.resolve_document(did)
        controller = self._controlling_method(document, controller_private_key)

        full_id = join_id(document.id, service_id)
        if document.find_service(full_id) is not None or full_id == document.revocation_service_id:
            raise ValidationError(
                f"Service already exists: {full_id}",
                component=_COMPONENT,
                field="service_id",
                value=full_id
            )

        service = ServiceEndpoint(
            id=full_id,
            type=service_type,
            service_endpoint=service_endpoint,
            description=description
        )
        document.service.append(service)
        self._sign_and_update(document, controller, controller_private_key)
        return service

    def remove_service(self, did: str, controller_private_key: bytes, service_id: str):
        """Remove a service endpoint from DID Document"""
        document = self.resolve_document(did)
        controller = self._controlling_method(document, controller_private_key)

        full_id = join_id(document.id, service_id)
        if full_id == document.revocation_service_id:
            raise ValidationError(
                "The revocation service cannot be removed",
                component=_COMPONENT,
                field="service_id",
                value=full_id
            )
        service = document.find_service(full_id)
        if service is None:
            raise NotFoundError(_COMPONENT, "Service", full_id)

        document.service.remove(service)
        self._sign_and_update(document, controller, controller_private_key)

    # ==================== REVOCATION REGISTRY ====================

    def allocate_revocation_index(self, did: str, controller_private_key: bytes, requested: int = None) -> int:
        """Reserve a fresh, never reused revocation index in the issuer document"""
        document = self.resolve_document(did)
        controller = self._controlling_method(document, controller_private_key)

        if document.revocation_registry is None:
            document.revocation_registry = RevocationRegistry()
        index = document.revocation_registry.allocate(requested)

        self._sign_and_update(document, controller, controller_private_key)
        return index

    def set_revocation_status(self, did: str, controller_private_key: bytes, indices: List[int], revoked: bool) -> bool:
        """
        Set or clear revocation bits

        Returns:
            True if the document changed, False if every bit already had
            the requested value (no ledger write happens then)
        """
        document = self.resolve_document(did)
        controller = self._controlling_method(document, controller_private_key)

        registry = document.revocation_registry
        if registry is None:
            raise NotFoundError(_COMPONENT, "Revocation registry", document.id)

        changed = False
        for index in indices:
            if index >= registry.next_index:
                raise ValidationError(
                    f"Revocation index {index} was never allocated",
                    component=_COMPONENT,
                    field="revocation_index",
                    value=index
                )
            if registry.get(index) != revoked:
                registry.set(index, revoked)
                changed = True

        if changed:
            self._sign_and_update(document, controller, controller_private_key)
        return changed

    def get_revocation_registry(self, did: str) -> RevocationRegistry:
        document = self.resolve_document(did)
        if document.revocation_registry is None:
            raise NotFoundError(_COMPONENT, "Revocation registry", document.id)
        return document.revocation_registry

    def is_revoked(self, did: str, index: int) -> bool:
        """Check a revocation bit in the issuer's current document"""
        return self.get_revocation_registry(did).get(index)

    # ==================== PROOFS ====================

    def get_verification_method(self, method_id: str) -> VerificationMethod:
        """Resolve the document a method id belongs to and return the method"""
        parts = parse_did(method_id)
        if not parts.fragment:
            raise ValidationError(
                "Verification method id needs a #fragment",
                component=_COMPONENT,
                field="verification_method_id",
                value=method_id
            )
        document = self.resolve_document(parts.did)
        method = document.find_method(method_id)
        if method is None:
            raise NotFoundError(_COMPONENT, "Verification method", method_id)
        return method

    def get_signing_method(self, method_id: str, private_key: bytes) -> VerificationMethod:
        """Resolve a method and check that the private key belongs to it"""
        method = self.get_verification_method(method_id)
        if public_key_from_private(method.key_type, private_key) != method.public_key_bytes():
            raise ValidationError(
                "Private key does not match the verification method",
                component=_COMPONENT,
                field="private_key",
                value=method_id
            )
        return method

    def create_proof(
        self,
        method_id: str,
        private_key: bytes,
        payload: bytes,
        proof_purpose: str = "assertionMethod"
    ) -> Proof:
        """Sign payload bytes with the named verification method"""
        method = self.get_signing_method(method_id, private_key)
        return self.proof_engine.create_proof(method.id, method.key_type, private_key, payload, proof_purpose)

    def verify_proof(self, method_id: str, payload: bytes, proof: Proof) -> bool:
        """Verify a proof with the named verification method's public key"""
        method = self.get_verification_method(method_id)
        return self.proof_engine.verify_proof(method.public_key_bytes(), payload, proof)

    def verify_document(self, document: DIDDocument) -> bool:
        """Check the document proof against the document's own methods"""
        if document.proof is None:
            return False
        method = document.find_method(document.proof.verification_method_id)
        if method is None:
            return False
        return self.proof_engine.verify_proof(method.public_key_bytes(), document.signing_payload(), document.proof)
