"""
Shared error handling for the Access Policy core.

Every exception carries a stable machine-readable ``code`` so transport
layers can react without parsing messages. Messages of errors that reach
untrusted clients stay generic; diagnostics go to the structured log.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel

from shared.logging import request_id_var


class ErrorResponse(BaseModel):
    """Standard error response format."""

    request_id: Optional[str] = None
    code: str
    message: str
    details: Dict[str, Any] = {}


class AccessLayerException(Exception):
    """Base exception for Access Layer services."""

    http_status = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            request_id=request_id_var.get(),
            code=self.code,
            message=self.message,
            details=self.details
        )


class PermissionDenied(AccessLayerException):
    """Operation denied by policy.

    The message is fixed and no details are attached: the internal reason
    is logged by whoever raised it, never returned.
    """

    http_status = 403

    def __init__(self):
        super().__init__("PERMISSION_DENIED", "Permission denied")


class InvalidRequest(AccessLayerException):
    """Malformed administrative arguments."""

    def __init__(self, message: str = "Invalid request", details: Optional[Dict[str, Any]] = None):
        super().__init__("INVALID_REQUEST", message, details)


class ConfigCorrupt(AccessLayerException):
    """Persisted configuration could not be parsed or failed validation."""

    http_status = 500

    def __init__(self, message: str = "Persisted configuration is corrupt",
                 quarantined_path: Optional[str] = None):
        details = {"quarantined_path": quarantined_path} if quarantined_path else {}
        super().__init__("CONFIG_CORRUPT", message, details)
        self.quarantined_path = quarantined_path


class ConfigWriteFailure(AccessLayerException):
    """Configuration could not be persisted; the mutation is not committed."""

    http_status = 500

    def __init__(self, message: str = "Failed to persist configuration",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("CONFIG_WRITE_FAILURE", message, details)


class UnsafeStoragePath(ConfigWriteFailure):
    """A configured storage path escapes its base directory."""

    def __init__(self, label: str, reason: str):
        super().__init__(f"Rejected {label}: {reason}", {"label": label})
        self.code = "UNSAFE_STORAGE_PATH"


class AuditWriteFailure(AccessLayerException):
    """An audit entry could not be appended, or rotation failed."""

    http_status = 500

    def __init__(self, message: str = "Failed to write audit entry",
                 details: Optional[Dict[str, Any]] = None):
        super().__init__("AUDIT_WRITE_FAILURE", message, details)


class OperationResolutionError(AccessLayerException):
    """An inbound operation could not be mapped to a policy decision."""

    http_status = 403

    def __init__(self, message: str = "Unable to resolve operation"):
        super().__init__("OPERATION_UNRESOLVED", message)
