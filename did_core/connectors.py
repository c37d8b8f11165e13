"""
Ledger connectors and the namespace registry

DID format: did:<method>:<namespace>:<identifier>

The namespace segment picks the connector for every document operation,
so the managers run unchanged against any number of ledger backends.
A connector only has to provide three operations (see ``Connector``).
"""

import logging
import re
import secrets
import threading
from typing import Callable, Dict, List, NamedTuple, Optional, Protocol

from .config import settings
from .errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

_DID_PATTERN = re.compile(
    r"^did:(?P<method>[a-z0-9]+):(?P<namespace>[A-Za-z0-9._-]+):(?P<identifier>[^#?/\s]+)"
    r"(?:#(?P<fragment>[^\s]+))?$"
)


class DIDParts(NamedTuple):
    method: str
    namespace: str
    identifier: str
    fragment: Optional[str]

    @property
    def did(self) -> str:
        return f"did:{self.method}:{self.namespace}:{self.identifier}"


def parse_did(did: str) -> DIDParts:
    """
    Split a DID (optionally with a #fragment) into its parts

    Raises:
        ValidationError: if the DID is malformed
    """
    match = _DID_PATTERN.match(did) if isinstance(did, str) else None
    if not match:
        raise ValidationError("Malformed DID", component="DID", field="did", value=did)
    return DIDParts(**match.groupdict())


def join_id(did: str, fragment: str) -> str:
    """Build a full method / service id from a DID and a fragment"""
    if fragment.startswith(did + "#"):
        return fragment
    return f"{did}#{fragment.lstrip('#')}"


# ==================== CONNECTOR CONTRACT ====================

class Connector(Protocol):
    """Capabilities every namespace backend must provide"""

    def resolve_document(self, did: str): ...
    def publish_document(self, document) -> str: ...
    def update_document(self, document) -> None: ...


class VersionConflictError(Exception):
    """A write was based on a stale copy of the document"""

    def __init__(self, did: str, expected: int, actual: int):
        super().__init__(f"Version conflict for {did}: wrote {expected}, ledger has {actual}")
        self.did = did
        self.expected = expected
        self.actual = actual


# ==================== REGISTRY ====================

class ConnectorRegistry:
    """
    Maps a namespace to a lazily constructed connector

    Usage::

        registry = ConnectorRegistry()
        registry.register("mem", lambda: InMemoryConnector("mem"))
        connector = registry.resolve("mem")
    """

    def __init__(self):
        self._factories: Dict[str, Callable[[], Connector]] = {}
        self._instances: Dict[str, Connector] = {}
        self._lock = threading.Lock()

    def register(self, namespace: str, factory: Callable[[], Connector]):
        """Install a zero-argument factory; last write wins"""
        if not namespace or not callable(factory):
            raise ValidationError(
                "register needs a namespace and a callable factory",
                component="ConnectorRegistry",
                field="namespace",
                value=namespace
            )
        with self._lock:
            self._factories[namespace] = factory
            self._instances.pop(namespace, None)
        logger.debug(f"Registered connector factory for namespace '{namespace}'")

    def unregister(self, namespace: str):
        with self._lock:
            self._factories.pop(namespace, None)
            self._instances.pop(namespace, None)

    def resolve(self, namespace: str) -> Connector:
        """
        Get the connector for a namespace, constructing it on first use

        Raises:
            NotFoundError: if no factory is registered for the namespace
        """
        connector = self._instances.get(namespace)
        if connector is not None:
            return connector

        with self._lock:
            connector = self._instances.get(namespace)
            if connector is None:
                factory = self._factories.get(namespace)
                if factory is None:
                    raise NotFoundError("ConnectorRegistry", "Connector namespace", namespace)
                connector = factory()
                self._instances[namespace] = connector
                logger.info(f"Created connector for namespace '{namespace}'")
        return connector

    def connector_for_did(self, did: str) -> Connector:
        return self.resolve(parse_did(did).namespace)

    def namespaces(self) -> List[str]:
        return sorted(self._factories)


# ==================== IN-MEMORY CONNECTOR ====================

class InMemoryConnector:
    """
    Reference connector keeping documents in a dict

    Suitable for tests and local development. Every write bumps the
    stored version; writing a stale copy raises VersionConflictError.
    """

    def __init__(self, namespace: str = None, method: str = None):
        self.namespace = namespace or settings.DEFAULT_NAMESPACE
        self.method = method or settings.DID_METHOD
        self._store = {}
        self._deactivated = set()
        self._lock = threading.Lock()

    def resolve_document(self, did: str):
        with self._lock:
            document = self._store.get(did)
            if document is None or did in self._deactivated:
                raise NotFoundError("InMemoryConnector", "DID document", did)
            return document.copy()

    def publish_document(self, document) -> str:
        did = f"did:{self.method}:{self.namespace}:{secrets.token_hex(32)}"
        stored = document.copy()
        stored.bind(did)
        with self._lock:
            stored.version = 1
            self._store[did] = stored
        return did

    def update_document(self, document) -> None:
        with self._lock:
            current = self._store.get(document.id)
            if current is None or document.id in self._deactivated:
                raise NotFoundError("InMemoryConnector", "DID document", document.id)
            if document.version != current.version:
                raise VersionConflictError(document.id, document.version, current.version)
            stored = document.copy()
            stored.version = current.version + 1
            self._store[document.id] = stored
        document.version = stored.version

    def deactivate_document(self, did: str):
        with self._lock:
            if did not in self._store:
                raise NotFoundError("InMemoryConnector", "DID document", did)
            self._deactivated.add(did)

    def list_dids(self) -> List[str]:
        return [did for did in self._store if did not in self._deactivated]
