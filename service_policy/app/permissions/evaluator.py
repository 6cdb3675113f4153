"""
Permission evaluator for the Policy Service.
"""

from typing import Dict, FrozenSet, Mapping, Optional

from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .models import (
    DenialReason, OperationType, PermissionDecision, PermissionLevel, PolicyState,
    sanitize_service_id
)
from .registry import PolicyRegistry


# Operations granted per level. Every level is listed; a level missing from
# this table, or a value that is not a PermissionLevel, grants nothing.
PERMISSION_TABLE: Dict[PermissionLevel, FrozenSet[OperationType]] = {
    PermissionLevel.DISABLED: frozenset(),
    PermissionLevel.READ_ONLY: frozenset({OperationType.READ}),
    PermissionLevel.READ_WRITE: frozenset({OperationType.READ, OperationType.WRITE}),
}


class PermissionEvaluator:
    """Pure allow/deny decisions over the live registry.

    ``overrides`` replaces registry lookups for the listed services and is
    meant for test harnesses only; it is rejected unless the caller also
    passes ``allow_test_overrides=True``.
    """

    def __init__(
        self,
        registry: PolicyRegistry,
        metrics: Optional[MetricsCollector] = None,
        *,
        overrides: Optional[Mapping[str, PolicyState]] = None,
        allow_test_overrides: bool = False,
    ) -> None:
        if registry is None:
            raise ValueError("PermissionEvaluator requires a PolicyRegistry")
        if overrides and not allow_test_overrides:
            raise ValueError("Policy overrides require allow_test_overrides=True")

        self.registry = registry
        self.metrics = metrics
        self.logger = get_logger("policy.evaluator")
        self._overrides: Dict[str, PolicyState] = dict(overrides or {})

    @property
    def has_overrides(self) -> bool:
        return bool(self._overrides)

    def evaluate(self, service_id: str, operation: OperationType) -> PermissionDecision:
        """Decide whether ``operation`` is allowed for ``service_id`` right now."""
        state = None
        if isinstance(service_id, str):
            state = self._overrides.get(service_id) or self.registry.get(service_id)
        if state is None:
            decision = PermissionDecision.deny(
                DenialReason.UNKNOWN_SERVICE,
                f"Unknown service: {sanitize_service_id(service_id)}"
            )
        else:
            decision = self._apply_policy(state, operation)

        if self.metrics:
            self.metrics.increment_counter(
                "permission_decisions_total",
                decision="allow" if decision.allowed else "deny",
                reason=decision.denial.value if decision.denial else "granted"
            )
        return decision

    def is_allowed(self, service_id: str, operation: OperationType) -> bool:
        return self.evaluate(service_id, operation).allowed

    def _apply_policy(self, state: PolicyState, operation: OperationType) -> PermissionDecision:
        service_id = state.service_id

        if not isinstance(operation, OperationType):
            return PermissionDecision.deny(
                DenialReason.UNKNOWN_OPERATION,
                f"Unknown operation for service '{service_id}'"
            )

        level = state.permission_level
        granted = PERMISSION_TABLE.get(level) if isinstance(level, PermissionLevel) else None
        if granted is None:
            self.logger.error("Unrecognized permission level; denying", service_id=service_id)
            return PermissionDecision.deny(
                DenialReason.UNKNOWN_PERMISSION_LEVEL,
                f"Unknown permission level for service '{service_id}'"
            )

        if state.enabled is not True or not granted:
            return PermissionDecision.deny(
                DenialReason.SERVICE_DISABLED,
                f"Service '{service_id}' is disabled"
            )

        if operation not in granted:
            return PermissionDecision.deny(
                DenialReason.OPERATION_NOT_PERMITTED,
                f"Service '{service_id}' does not permit {operation.value} operations"
            )

        return PermissionDecision.allow()
