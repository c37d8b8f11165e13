"""
Errors raised by the DID core

Every error carries the component that raised it plus the offending
input, so callers (REST / CLI layers) can report failures without
losing context.
"""

from typing import Any, Dict, Optional


class IdentityError(Exception):
    """Base class for all did_core errors"""

    def __init__(
        self,
        message: str,
        component: str = "",
        details: Optional[Dict[str, Any]] = None
    ):
        self.message = message
        self.component = component
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for JSON serialization"""
        return {
            "error": self.__class__.__name__,
            "component": self.component,
            "message": self.message,
            "details": self.details
        }


class ValidationError(IdentityError):
    """
    Malformed input or an invariant violation

    Raised when:
    - A derivation path or DID is malformed
    - A key type is not supported
    - A mutation would leave a document without verification methods
    - The signing key does not control the document
    - A credential state transition is not allowed
    """

    def __init__(
        self,
        message: str,
        component: str = "",
        field: Optional[str] = None,
        value: Any = None
    ):
        details = {}
        if field:
            details["field"] = field
        if value is not None:
            details["value"] = str(value)
        super().__init__(message, component, details)
        self.field = field
        self.value = value


class NotFoundError(IdentityError):
    """An unresolvable DID, method, service or namespace"""

    def __init__(self, component: str, resource_type: str, resource_id: str):
        message = f"{resource_type} not found: {resource_id}"
        super().__init__(message, component, {
            "resource_type": resource_type,
            "resource_id": resource_id
        })
        self.resource_type = resource_type
        self.resource_id = resource_id


class GeneralError(IdentityError):
    """
    A connector / ledger failure

    The original exception is kept on ``cause`` (and chained as
    ``__cause__`` by the raiser) so ledger specific payloads survive.
    """

    def __init__(
        self,
        message: str,
        component: str = "",
        cause: Optional[BaseException] = None
    ):
        details = {}
        if cause is not None:
            details["cause"] = f"{cause.__class__.__name__}: {cause}"
        super().__init__(message, component, details)
        self.cause = cause
