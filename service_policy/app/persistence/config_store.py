"""
File-backed configuration store for the Policy Service.

The whole registry is stored as one human-readable JSON document:

    {
      "schemaVersion": 1,
      "lastModified": "2024-01-01T00:00:00+00:00",
      "services": {
        "eventlog": {"enabled": true, "permissionLevel": "read-only",
                     "enableAnonymization": true, "maxResults": 5000}
      }
    }

Writes go to a uniquely named temporary file in the target directory and
are renamed over the target, so readers only ever see a complete document.
Loads are validated strictly; an invalid document is moved aside under a
``.corrupt.<millis>`` suffix and reported as ``ConfigCorrupt``.
"""

import json
import os
import tempfile
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, StrictBool, StrictInt, field_validator

from shared.errors import ConfigCorrupt, ConfigWriteFailure
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..permissions.models import PermissionLevel, PolicyState
from .paths import validate_storage_path


SCHEMA_VERSION = 1
CORE_FIELDS = ("enabled", "permissionLevel", "enableAnonymization")


@dataclass
class PersistedConfig:
    """On-disk mirror of the policy registry."""
    services: Dict[str, PolicyState] = field(default_factory=dict)
    schema_version: int = SCHEMA_VERSION
    last_modified: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def from_states(cls, states: Dict[str, PolicyState]) -> "PersistedConfig":
        return cls(services=dict(states))


class PersistedServiceEntry(BaseModel):
    """Validation model for one service entry; unknown keys are extensions."""

    model_config = ConfigDict(extra="allow")

    enabled: StrictBool
    permissionLevel: PermissionLevel
    enableAnonymization: StrictBool


class PersistedConfigDocument(BaseModel):
    """Validation model for the whole document."""

    model_config = ConfigDict(extra="ignore")

    schemaVersion: StrictInt
    lastModified: datetime
    services: Dict[str, PersistedServiceEntry]

    @field_validator("schemaVersion")
    @classmethod
    def _supported_version(cls, value: int) -> int:
        if value != SCHEMA_VERSION:
            raise ValueError(f"unsupported schema version {value}")
        return value


class ConfigStore:
    """Atomic JSON storage of the policy configuration."""

    def __init__(self, path: Union[str, Path], base_dir: Union[str, Path],
                 metrics: Optional[MetricsCollector] = None):
        self.path = validate_storage_path(path, base_dir, "config path")
        self.metrics = metrics
        self.logger = get_logger("policy.config_store")
        self._lock = threading.Lock()

    def exists(self) -> bool:
        return self.path.exists()

    def load(self) -> Optional[PersistedConfig]:
        """Load and validate the persisted configuration.

        Returns None when no file exists. Raises ``ConfigCorrupt`` after
        moving an unreadable or invalid file aside; the caller is expected to
        continue with secure defaults.
        """
        with self._lock:
            if not self.path.exists():
                return None

            try:
                content = self.path.read_text(encoding="utf-8")
                document = PersistedConfigDocument.model_validate_json(content)
            except (OSError, ValueError) as e:
                quarantined = self._quarantine()
                self.logger.error(
                    "Persisted configuration is corrupt",
                    path=str(self.path),
                    quarantined_path=quarantined,
                    error=str(e)
                )
                raise ConfigCorrupt(quarantined_path=quarantined) from e

        services = {
            service_id: PolicyState(
                service_id=service_id,
                enabled=entry.enabled,
                permission_level=entry.permissionLevel,
                enable_anonymization=entry.enableAnonymization,
                extensions=dict(entry.model_extra or {}),
            )
            for service_id, entry in document.services.items()
        }
        self.logger.info("Loaded persisted configuration", path=str(self.path), services=len(services))
        return PersistedConfig(
            services=services,
            schema_version=document.schemaVersion,
            last_modified=document.lastModified,
        )

    def save(self, config: PersistedConfig) -> PersistedConfig:
        """Persist ``config`` atomically and return it with a fresh ``last_modified``.

        Raises ``ConfigWriteFailure`` if anything prevents the new document
        from replacing the old one; the previous file is then left intact.
        """
        saved = PersistedConfig(
            services=dict(config.services),
            schema_version=SCHEMA_VERSION,
            last_modified=datetime.now(timezone.utc),
        )
        try:
            content = json.dumps(self._to_document(saved), indent=2)
        except (TypeError, ValueError) as e:
            raise ConfigWriteFailure("Configuration is not serializable", {"error": str(e)}) from e

        with self._lock:
            self._write_atomic(content)

        self.logger.info("Persisted configuration", path=str(self.path), services=len(saved.services))
        return saved

    @staticmethod
    def _to_document(config: PersistedConfig) -> Dict[str, Any]:
        services: Dict[str, Any] = {}
        for service_id, state in config.services.items():
            entry = {k: v for k, v in state.extensions.items() if k not in CORE_FIELDS}
            entry.update(state.core_values())
            services[service_id] = entry
        return {
            "schemaVersion": config.schema_version,
            "lastModified": config.last_modified.isoformat(),
            "services": services,
        }

    def _write_atomic(self, content: str) -> None:
        directory = self.path.parent
        tmp_path: Optional[str] = None
        try:
            directory.mkdir(parents=True, exist_ok=True)
            # mkstemp names are unique even for calls within one clock tick
            fd, tmp_path = tempfile.mkstemp(prefix=f".{self.path.name}.", suffix=".tmp", dir=str(directory))
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            self._restrict_permissions(tmp_path)
            os.replace(tmp_path, self.path)
            tmp_path = None
            self._fsync_directory(directory)
        except OSError as e:
            self.logger.error("Failed to persist configuration", path=str(self.path), error=str(e))
            raise ConfigWriteFailure(details={"error": e.strerror or str(e)}) from e
        finally:
            if tmp_path is not None:
                try:
                    os.unlink(tmp_path)
                except FileNotFoundError:
                    pass

    def _restrict_permissions(self, path: str) -> None:
        if os.name == "nt":
            # Owner-only ACLs are not applied on Windows; documented residual risk.
            self.logger.warning("Owner-only file permissions not enforced on this platform", path=path)
            return
        os.chmod(path, 0o600)

    def _fsync_directory(self, directory: Path) -> None:
        # The rename already happened; a failed directory sync only weakens durability
        if os.name == "nt":
            return
        try:
            fd = os.open(str(directory), os.O_RDONLY)
            try:
                os.fsync(fd)
            finally:
                os.close(fd)
        except OSError as e:
            self.logger.warning("Directory fsync failed", path=str(directory), error=str(e))

    def _quarantine(self) -> Optional[str]:
        """Rename the current file aside; never deletes it."""
        stamp = int(time.time() * 1000)
        target = Path(f"{self.path}.corrupt.{stamp}")
        counter = 1
        while target.exists():
            target = Path(f"{self.path}.corrupt.{stamp}-{counter}")
            counter += 1
        try:
            os.replace(self.path, target)
        except OSError as e:
            self.logger.error("Failed to move corrupt configuration aside", path=str(self.path), error=str(e))
            return None
        if self.metrics:
            self.metrics.increment_counter("config_quarantined_total")
        return str(target)
