"""
Resolver-level permission guard.

A second check inside data resolvers, so a resolver reached without going
through the interceptor still refuses to run.
"""

import functools
import inspect
from typing import Optional

from shared.errors import PermissionDenied
from shared.logging import get_logger
from ..permissions.evaluator import PermissionEvaluator
from ..permissions.models import OperationType, PermissionDecision


logger = get_logger("policy.guard")


def require_permission(evaluator: Optional[PermissionEvaluator], service_id: str,
                       operation: OperationType) -> PermissionDecision:
    """Raise ``PermissionDenied`` unless ``operation`` is allowed for ``service_id``.

    A missing evaluator is a denial, not a pass.
    """
    if evaluator is None:
        logger.error("Resolver reached without a permission evaluator", service_id=service_id)
        raise PermissionDenied()

    try:
        decision = evaluator.evaluate(service_id, operation)
    except Exception as e:
        logger.exception("Permission evaluation failed in resolver", service_id=service_id)
        raise PermissionDenied() from e

    if not decision.allowed:
        logger.warning("Resolver access denied", service_id=service_id, reason=decision.reason)
        raise PermissionDenied()
    return decision


def requires_permission(service_id: str, operation: OperationType):
    """Decorator for resolvers that receive the evaluator as ``evaluator=``."""

    def decorator(func):
        if inspect.iscoroutinefunction(func):
            @functools.wraps(func)
            async def async_wrapper(*args, evaluator: Optional[PermissionEvaluator] = None, **kwargs):
                require_permission(evaluator, service_id, operation)
                return await func(*args, evaluator=evaluator, **kwargs)
            return async_wrapper

        @functools.wraps(func)
        def sync_wrapper(*args, evaluator: Optional[PermissionEvaluator] = None, **kwargs):
            require_permission(evaluator, service_id, operation)
            return func(*args, evaluator=evaluator, **kwargs)
        return sync_wrapper

    return decorator
