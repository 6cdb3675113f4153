"""
Request interceptor for the Policy Service.

Every inbound operation passes through ``RequestInterceptor.authorize``
before any resolver runs. The interceptor is fail-closed: an operation it
cannot classify, a policy it cannot evaluate, or any unexpected error ends
in a denial. Denials carry the single code ``PERMISSION_DENIED``; the
internal reason is logged, never returned.
"""

from dataclasses import dataclass
from typing import Any, List, Optional

from shared.errors import OperationResolutionError, PermissionDenied
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..permissions.evaluator import PermissionEvaluator
from ..permissions.models import sanitize_service_id
from .admin_gate import AdminAuthorizer, CallerContext
from .operations import (
    DEFAULT_OPERATION_TABLE, OperationClass, OperationTable, OperationTarget,
    extract_top_level_fields
)


DENIAL_CODE = "PERMISSION_DENIED"
DENIAL_MESSAGE = "Permission denied"


@dataclass(frozen=True)
class InterceptionDecision:
    """Allow or a generic denial."""
    allowed: bool
    code: Optional[str] = None
    message: Optional[str] = None

    @classmethod
    def allow(cls) -> "InterceptionDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls) -> "InterceptionDecision":
        return cls(allowed=False, code=DENIAL_CODE, message=DENIAL_MESSAGE)

    def raise_for_denial(self) -> None:
        if not self.allowed:
            raise PermissionDenied()


class RequestInterceptor:
    """Gate in front of every resolver."""

    def __init__(
        self,
        evaluator: PermissionEvaluator,
        admin_authorizer: AdminAuthorizer,
        table: OperationTable = DEFAULT_OPERATION_TABLE,
        metrics: Optional[MetricsCollector] = None,
    ):
        if evaluator is None:
            raise ValueError("RequestInterceptor requires a PermissionEvaluator")
        if admin_authorizer is None:
            raise ValueError("RequestInterceptor requires an AdminAuthorizer")

        self.evaluator = evaluator
        self.admin_authorizer = admin_authorizer
        self.table = table
        self.metrics = metrics
        self.logger = get_logger("policy.interceptor")

    def authorize(self, document: Any, caller: Optional[CallerContext] = None) -> InterceptionDecision:
        """Decide a whole operation document.

        All top-level fields must be allowed for the document to pass.
        """
        caller = caller or CallerContext()
        try:
            names = extract_top_level_fields(document)
        except OperationResolutionError as e:
            return self._deny("unresolved", e.message)
        except Exception as e:
            self.logger.exception("Operation extraction failed")
            return self._deny("unresolved", f"extraction error: {type(e).__name__}")

        return self._authorize_names(names, caller)

    def authorize_operation(self, name: str, caller: Optional[CallerContext] = None) -> InterceptionDecision:
        """Decide a single named operation (REST-style transports)."""
        return self._authorize_names([name], caller or CallerContext())

    def enforce(self, document: Any, caller: Optional[CallerContext] = None) -> None:
        """Raise ``PermissionDenied`` unless ``document`` is allowed."""
        self.authorize(document, caller).raise_for_denial()

    def enforce_operation(self, name: str, caller: Optional[CallerContext] = None) -> None:
        self.authorize_operation(name, caller).raise_for_denial()

    def _authorize_names(self, names: List[str], caller: CallerContext) -> InterceptionDecision:
        for name in names:
            try:
                target = self.table.resolve(name)
            except OperationResolutionError as e:
                return self._deny("unresolved", e.message)
            except Exception as e:
                self.logger.exception("Operation lookup failed")
                return self._deny("unresolved", f"lookup error: {type(e).__name__}")

            try:
                allowed, reason = self._check(target, caller)
            except Exception as e:
                # Evaluation errors never let an operation through
                self.logger.exception("Authorization check failed", operation=name)
                return self._deny(target.operation_class.value, f"check error: {type(e).__name__}")

            if not allowed:
                return self._deny(target.operation_class.value, reason, operation=name)

        return InterceptionDecision.allow()

    def _check(self, target: OperationTarget, caller: CallerContext):
        if target.operation_class == OperationClass.ALWAYS_ALLOWED:
            return True, "always allowed"

        if target.operation_class == OperationClass.ADMINISTRATIVE:
            if self.admin_authorizer.is_authorized(caller, target.name) is True:
                return True, "admin authorized"
            return False, "caller is not authorized for administrative operations"

        if target.operation_class == OperationClass.DATA_ACCESS:
            decision = self.evaluator.evaluate(target.service_id, target.operation)
            return decision.allowed, decision.reason

        return False, "unclassified operation"

    def _deny(self, operation_class: str, reason: str, operation: Optional[str] = None) -> InterceptionDecision:
        self.logger.warning(
            "Operation denied",
            operation=sanitize_service_id(operation) if operation else None,
            operation_class=operation_class,
            reason=reason
        )
        if self.metrics:
            self.metrics.increment_counter("interceptor_denials_total", operation_class=operation_class)
        return InterceptionDecision.deny()
