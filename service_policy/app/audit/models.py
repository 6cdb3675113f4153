"""
Audit data models for the Policy Service.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict


class AuditAction(str, Enum):
    """Audited events."""
    SERVICE_ENABLE = "service.enable"
    SERVICE_DISABLE = "service.disable"
    PERMISSION_CHANGE = "permission.change"
    PII_TOGGLE = "pii.toggle"
    CONFIG_RESET = "config.reset"
    STARTUP = "system.startup"


@dataclass(frozen=True)
class AuditEvent:
    """What a caller asks the logger to record; the logger adds the timestamp."""
    action: AuditAction
    service_id: str
    previous_value: Any
    new_value: Any
    source: str


@dataclass(frozen=True)
class AuditEntry:
    """A written audit record."""
    timestamp: str
    action: AuditAction
    service_id: str
    previous_value: Any
    new_value: Any
    source: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "action": self.action.value,
            "serviceId": self.service_id,
            "previousValue": self.previous_value,
            "newValue": self.new_value,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AuditEntry":
        return cls(
            timestamp=str(data["timestamp"]),
            action=AuditAction(data["action"]),
            service_id=str(data["serviceId"]),
            previous_value=data.get("previousValue"),
            new_value=data.get("newValue"),
            source=str(data.get("source", "")),
        )


@dataclass(frozen=True)
class IntegrityReport:
    """Result of walking the hash chain over retained audit files."""
    valid: bool
    entries: int
    error: str = ""
    remnants: int = 0
