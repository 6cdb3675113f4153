"""
Unit tests for the Permission Evaluator.
"""

import pytest
from unittest.mock import MagicMock

import sys
import os
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_policy.app.permissions.evaluator import PERMISSION_TABLE, PermissionEvaluator
from service_policy.app.permissions.models import (
    DenialReason, OperationType, PermissionLevel, PolicyState
)
from service_policy.app.permissions.registry import PolicyRegistry
from shared.metrics import MetricsCollector


def _registry_with(state: PolicyState) -> PolicyRegistry:
    registry = PolicyRegistry([state.service_id])
    registry.claim_writer().set(state.service_id, state)
    return registry


class TestPermissionEvaluator:
    """Test cases for PermissionEvaluator."""

    @pytest.fixture
    def registry(self):
        """Registry with the default known services."""
        return PolicyRegistry(["eventlog", "filesearch"])

    @pytest.fixture
    def evaluator(self, registry):
        """Create evaluator over the registry."""
        return PermissionEvaluator(registry)

    @pytest.mark.parametrize("level,enabled,read,write", [
        (PermissionLevel.DISABLED, True, False, False),
        (PermissionLevel.DISABLED, False, False, False),
        (PermissionLevel.READ_ONLY, True, True, False),
        (PermissionLevel.READ_ONLY, False, False, False),
        (PermissionLevel.READ_WRITE, True, True, True),
        (PermissionLevel.READ_WRITE, False, False, False),
    ])
    def test_decision_table(self, level, enabled, read, write):
        """Test every row of the decision table."""
        state = PolicyState("eventlog", enabled=enabled, permission_level=level)
        evaluator = PermissionEvaluator(_registry_with(state))

        assert evaluator.evaluate("eventlog", OperationType.READ).allowed is read
        assert evaluator.evaluate("eventlog", OperationType.WRITE).allowed is write

    def test_every_level_is_in_table(self):
        """Test the grant table covers the whole enum."""
        assert set(PERMISSION_TABLE) == set(PermissionLevel)

    def test_default_state_denies(self, evaluator):
        """Test services start disabled."""
        decision = evaluator.evaluate("eventlog", OperationType.READ)

        assert decision.allowed is False
        assert decision.denial == DenialReason.SERVICE_DISABLED
        assert "disabled" in decision.reason

    def test_unknown_service_denied(self, evaluator):
        """Test unknown identifiers are denied as unknown."""
        decision = evaluator.evaluate("payroll", OperationType.READ)

        assert decision.allowed is False
        assert decision.denial == DenialReason.UNKNOWN_SERVICE
        assert decision.reason == "Unknown service: payroll"

    def test_unknown_service_reason_is_sanitized(self, evaluator):
        """Test hostile identifiers are not echoed verbatim."""
        decision = evaluator.evaluate("../../etc/passwd<script>" + "x" * 80, OperationType.READ)

        assert decision.allowed is False
        assert "/" not in decision.reason
        assert "<" not in decision.reason
        assert len(decision.reason) <= len("Unknown service: ") + 50

    @pytest.mark.parametrize("service_id", [["eventlog"], {"id": "eventlog"}, None, 7])
    def test_non_string_service_id_denied(self, evaluator, service_id):
        """Test identifiers that are not strings are unknown services."""
        decision = evaluator.evaluate(service_id, OperationType.READ)

        assert decision.allowed is False
        assert decision.denial == DenialReason.UNKNOWN_SERVICE

    @pytest.mark.parametrize("raw_level", ["read-write", "READ_WRITE", "admin", None, 2, "read-only"])
    def test_unrecognized_level_denies_everything(self, raw_level):
        """Test values outside the enum never grant access, even their raw string forms."""
        registry = PolicyRegistry(["eventlog"])
        # Bypass the writer's validation to simulate a corrupted in-memory value
        registry._states["eventlog"] = PolicyState("eventlog", enabled=True, permission_level=raw_level)
        evaluator = PermissionEvaluator(registry)

        for operation in OperationType:
            decision = evaluator.evaluate("eventlog", operation)
            assert decision.allowed is False
            assert decision.denial == DenialReason.UNKNOWN_PERMISSION_LEVEL

    def test_enabled_must_be_true(self):
        """Test truthy non-bool values do not count as enabled."""
        registry = PolicyRegistry(["eventlog"])
        registry._states["eventlog"] = PolicyState(
            "eventlog", enabled="yes", permission_level=PermissionLevel.READ_WRITE
        )
        evaluator = PermissionEvaluator(registry)

        assert evaluator.is_allowed("eventlog", OperationType.READ) is False

    def test_unknown_operation_denied(self):
        """Test raw strings are not accepted as operations."""
        state = PolicyState("eventlog", enabled=True, permission_level=PermissionLevel.READ_WRITE)
        evaluator = PermissionEvaluator(_registry_with(state))

        decision = evaluator.evaluate("eventlog", "read")

        assert decision.allowed is False
        assert decision.denial == DenialReason.UNKNOWN_OPERATION

    def test_decision_reflects_latest_state(self, registry):
        """Test decisions are not cached across policy changes."""
        evaluator = PermissionEvaluator(registry)
        writer = registry.claim_writer()

        assert evaluator.is_allowed("eventlog", OperationType.READ) is False

        writer.set("eventlog", PolicyState("eventlog", True, PermissionLevel.READ_ONLY))
        assert evaluator.is_allowed("eventlog", OperationType.READ) is True

        writer.reset_to_default("eventlog")
        assert evaluator.is_allowed("eventlog", OperationType.READ) is False

    def test_requires_registry(self):
        """Test a missing registry is a construction error."""
        with pytest.raises(ValueError):
            PermissionEvaluator(None)

    def test_overrides_require_flag(self, registry):
        """Test overrides are rejected without the construction-time flag."""
        overrides = {"eventlog": PolicyState("eventlog", True, PermissionLevel.READ_WRITE)}

        with pytest.raises(ValueError):
            PermissionEvaluator(registry, overrides=overrides)

    def test_overrides_with_flag(self, registry):
        """Test overrides replace registry lookups when explicitly allowed."""
        overrides = {"eventlog": PolicyState("eventlog", True, PermissionLevel.READ_WRITE)}
        evaluator = PermissionEvaluator(registry, overrides=overrides, allow_test_overrides=True)

        assert evaluator.has_overrides is True
        assert evaluator.is_allowed("eventlog", OperationType.WRITE) is True
        assert evaluator.is_allowed("filesearch", OperationType.READ) is False

    def test_records_decision_metrics(self, registry):
        """Test decisions are counted by outcome."""
        metrics = MetricsCollector("policy")
        evaluator = PermissionEvaluator(registry, metrics)

        evaluator.evaluate("eventlog", OperationType.READ)
        evaluator.evaluate("unknown", OperationType.READ)

        value = metrics.registry.get_sample_value(
            "permission_decisions_total",
            {"decision": "deny", "reason": "service_disabled"}
        )
        assert value == 1.0
        value = metrics.registry.get_sample_value(
            "permission_decisions_total",
            {"decision": "deny", "reason": "unknown_service"}
        )
        assert value == 1.0

    def test_evaluate_does_not_touch_writer(self):
        """Test evaluation only reads the registry."""
        registry = MagicMock(spec=PolicyRegistry)
        registry.get.return_value = PolicyState("eventlog", True, PermissionLevel.READ_ONLY)
        evaluator = PermissionEvaluator(registry)

        assert evaluator.is_allowed("eventlog", OperationType.READ) is True
        registry.get.assert_called_once_with("eventlog")
        registry.claim_writer.assert_not_called()
