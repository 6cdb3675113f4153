"""
Policy data models for the Policy Service.
"""

import re
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, Mapping, Optional


class PermissionLevel(str, Enum):
    """Closed set of permission levels a service can carry."""
    DISABLED = "disabled"
    READ_ONLY = "read-only"
    READ_WRITE = "read-write"


class OperationType(str, Enum):
    """Kinds of data access an operation performs."""
    READ = "read"
    WRITE = "write"


class DenialReason(str, Enum):
    """Structured reasons for a denied evaluation."""
    UNKNOWN_SERVICE = "unknown_service"
    SERVICE_DISABLED = "service_disabled"
    OPERATION_NOT_PERMITTED = "operation_not_permitted"
    UNKNOWN_PERMISSION_LEVEL = "unknown_permission_level"
    UNKNOWN_OPERATION = "unknown_operation"


@dataclass(frozen=True)
class PolicyState:
    """Live policy for one service.

    Instances are immutable; the registry swaps whole states on change.
    ``extensions`` carries service-specific fields (e.g. ``maxResults``)
    that the core persists but does not interpret.
    """
    service_id: str
    enabled: bool = False
    permission_level: PermissionLevel = PermissionLevel.DISABLED
    enable_anonymization: bool = True
    extensions: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def secure_default(cls, service_id: str, extensions: Optional[Mapping[str, Any]] = None) -> "PolicyState":
        """Disabled, no access, anonymization on."""
        return cls(service_id=service_id, extensions=dict(extensions or {}))

    def evolve(self, **changes: Any) -> "PolicyState":
        return replace(self, **changes)

    def core_values(self) -> Dict[str, Any]:
        """The fields administrative operations change, in wire form."""
        level = self.permission_level
        return {
            "enabled": self.enabled,
            "permissionLevel": level.value if isinstance(level, PermissionLevel) else str(level),
            "enableAnonymization": self.enable_anonymization,
        }

    def to_dict(self) -> Dict[str, Any]:
        data = dict(self.extensions)
        data.update(self.core_values())
        data["serviceId"] = self.service_id
        return data


@dataclass(frozen=True)
class PermissionDecision:
    """Outcome of one evaluation. Never cached."""
    allowed: bool
    reason: str
    denial: Optional[DenialReason] = None

    @classmethod
    def allow(cls, reason: str = "allowed") -> "PermissionDecision":
        return cls(allowed=True, reason=reason)

    @classmethod
    def deny(cls, denial: DenialReason, reason: str) -> "PermissionDecision":
        return cls(allowed=False, reason=reason, denial=denial)


_UNSAFE_ID_CHARS = re.compile(r"[^a-zA-Z0-9_\-]")


def sanitize_service_id(service_id: Any) -> str:
    """Make an untrusted identifier safe to echo in messages and logs."""
    return _UNSAFE_ID_CHARS.sub("", str(service_id)[:50])
