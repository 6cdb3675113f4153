"""
Administrative operation handler for the Policy Service.

The only component holding the registry writer. Each mutation runs under
one asyncio lock, end to end:

    validate -> read current state -> persist snapshot -> apply -> audit

The snapshot containing the new state is written before the registry is
updated, so a failed write leaves memory and disk at the previous state and
surfaces ``ConfigWriteFailure``. Persist, apply and audit run as one
task; a cancelled caller, however often cancelled, waits for it to finish
(or fail) before the lock is released.
"""

import asyncio
from contextlib import nullcontext
from typing import Any, Callable, List, Optional, Union

from shared.errors import AuditWriteFailure, ConfigWriteFailure, InvalidRequest
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..audit.logger import AuditLogger
from ..audit.models import AuditAction, AuditEntry, AuditEvent
from ..permissions.models import PermissionLevel, PolicyState, sanitize_service_id
from ..permissions.registry import PolicyRegistry
from ..persistence.config_store import ConfigStore, PersistedConfig


DEFAULT_SOURCE = "admin"
MAX_AUDIT_ENTRIES = 1000


class AdminOperationHandler:
    """Applies configuration changes with persistence and audit."""

    def __init__(
        self,
        registry: PolicyRegistry,
        store: ConfigStore,
        audit_logger: AuditLogger,
        metrics: Optional[MetricsCollector] = None,
    ):
        if registry is None or store is None or audit_logger is None:
            raise ValueError("AdminOperationHandler requires a registry, a config store and an audit logger")

        self._writer = registry.claim_writer()
        self.registry = registry
        self.store = store
        self.audit_logger = audit_logger
        self.metrics = metrics
        self.logger = get_logger("policy.admin")
        self._lock = asyncio.Lock()

    # Mutations

    async def enable_service(self, service_id: str, source: str = DEFAULT_SOURCE) -> PolicyState:
        """Enable a service at READ_ONLY."""
        return await self._mutate(
            "enable", AuditAction.SERVICE_ENABLE, service_id, source,
            lambda state: state.evolve(enabled=True, permission_level=PermissionLevel.READ_ONLY),
            _core_snapshot,
        )

    async def disable_service(self, service_id: str, source: str = DEFAULT_SOURCE) -> PolicyState:
        """Disable a service and drop its permission level to DISABLED."""
        return await self._mutate(
            "disable", AuditAction.SERVICE_DISABLE, service_id, source,
            lambda state: state.evolve(enabled=False, permission_level=PermissionLevel.DISABLED),
            _core_snapshot,
        )

    async def set_permission_level(self, service_id: str, level: Union[str, PermissionLevel],
                                   source: str = DEFAULT_SOURCE) -> PolicyState:
        """Set the permission level; any level other than DISABLED enables the service."""
        parsed = parse_permission_level(level)
        return await self._mutate(
            "set_permission_level", AuditAction.PERMISSION_CHANGE, service_id, source,
            lambda state: state.evolve(permission_level=parsed, enabled=parsed != PermissionLevel.DISABLED),
            lambda state: state.permission_level.value,
        )

    async def set_pii_anonymization(self, service_id: str, enabled: bool,
                                    source: str = DEFAULT_SOURCE) -> PolicyState:
        if not isinstance(enabled, bool):
            raise InvalidRequest("enableAnonymization must be a boolean")
        return await self._mutate(
            "set_pii_anonymization", AuditAction.PII_TOGGLE, service_id, source,
            lambda state: state.evolve(enable_anonymization=enabled),
            lambda state: state.enable_anonymization,
        )

    async def reset_service_config(self, service_id: str, source: str = DEFAULT_SOURCE) -> PolicyState:
        """Back to secure defaults; extension fields are kept."""
        return await self._mutate(
            "reset", AuditAction.CONFIG_RESET, service_id, source,
            lambda state: PolicyState.secure_default(state.service_id, state.extensions),
            lambda state: state.core_values(),
        )

    # Reads

    def get_service_config(self, service_id: str) -> PolicyState:
        return self.registry.get(self._require_known(service_id))

    def all_service_configs(self) -> List[PolicyState]:
        return self.registry.all()

    async def recent_audit_entries(self, count: int = 100) -> List[AuditEntry]:
        if isinstance(count, bool) or not isinstance(count, int) or not 1 <= count <= MAX_AUDIT_ENTRIES:
            raise InvalidRequest(f"count must be an integer between 1 and {MAX_AUDIT_ENTRIES}")
        return await asyncio.to_thread(self.audit_logger.recent, count)

    # Internals

    def _require_known(self, service_id: Any) -> str:
        if not isinstance(service_id, str) or service_id not in self.registry:
            raise InvalidRequest(
                f"Unknown service: {sanitize_service_id(service_id)}",
                {"serviceId": sanitize_service_id(service_id)}
            )
        return service_id

    async def _mutate(
        self,
        action: str,
        audit_action: AuditAction,
        service_id: str,
        source: str,
        change: Callable[[PolicyState], PolicyState],
        audit_value: Callable[[PolicyState], Any],
    ) -> PolicyState:
        try:
            service_id = self._require_known(service_id)
        except InvalidRequest:
            self._count(action, "invalid")
            raise

        async with self._lock:
            timer = self.metrics.time_operation("admin_operation_duration_seconds", action=action) \
                if self.metrics else nullcontext()
            with timer:
                previous = self.registry.get(service_id)
                updated = change(previous)
                event = AuditEvent(
                    action=audit_action,
                    service_id=service_id,
                    previous_value=audit_value(previous),
                    new_value=audit_value(updated),
                    source=source or DEFAULT_SOURCE,
                )

                commit = asyncio.ensure_future(self._commit(service_id, updated, event))
                # The lock is held until the commit settles, however often the caller is cancelled
                cancelled = await _settle(commit)
                error = None if commit.cancelled() else commit.exception()
                if isinstance(error, ConfigWriteFailure):
                    self._count(action, "write_failure")

                if cancelled:
                    if error is not None:
                        self.logger.error(
                            "Administrative operation failed after caller cancelled",
                            action=action,
                            service_id=service_id,
                            error=str(error)
                        )
                    raise asyncio.CancelledError()
                commit.result()

        self._count(action, "success")
        self.logger.info(
            "Administrative operation applied",
            action=action,
            service_id=service_id,
            source=event.source,
            state=updated.core_values()
        )
        return updated

    async def _commit(self, service_id: str, updated: PolicyState, event: AuditEvent) -> None:
        snapshot = self.registry.snapshot()
        snapshot[service_id] = updated
        await asyncio.to_thread(self.store.save, PersistedConfig.from_states(snapshot))
        self._writer.set(service_id, updated)

        try:
            await asyncio.to_thread(self.audit_logger.log, event)
        except AuditWriteFailure as e:
            # The change is committed; the failure is visible through logs and metrics
            self.logger.error(
                "Administrative change committed without audit entry",
                action=event.action.value,
                service_id=service_id,
                error=e.message,
                details=e.details
            )

    def _count(self, action: str, outcome: str) -> None:
        if self.metrics:
            self.metrics.increment_counter("admin_operations_total", action=action, outcome=outcome)


async def _settle(task: "asyncio.Future") -> bool:
    """Wait for ``task`` to finish; True when the waiter was cancelled meanwhile."""
    cancelled = False
    while not task.done():
        try:
            await asyncio.wait({task})
        except asyncio.CancelledError:
            cancelled = True
    return cancelled


def parse_permission_level(value: Union[str, PermissionLevel]) -> PermissionLevel:
    """Strict parse of a permission level from its value (``read-only``) or name (``READ_ONLY``)."""
    if isinstance(value, PermissionLevel):
        return value
    if isinstance(value, str):
        if value in PermissionLevel.__members__:
            return PermissionLevel[value]
        try:
            return PermissionLevel(value)
        except ValueError:
            pass
    raise InvalidRequest(
        "Invalid permission level",
        {"allowed": [level.value for level in PermissionLevel]}
    )


def _core_snapshot(state: PolicyState) -> dict:
    values = state.core_values()
    return {"enabled": values["enabled"], "permissionLevel": values["permissionLevel"]}

