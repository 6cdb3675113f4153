"""
Caller authorization for administrative operations.

Authentication lives outside this package; the interceptor only requires
that an ``AdminAuthorizer`` is present and consulted for every
administrative operation. The bundled implementation admits callers
connecting from a configured set of hosts (loopback by default).
"""

from dataclasses import dataclass, field
from typing import Any, Iterable, Mapping, Optional, Protocol, runtime_checkable

from shared.config import LOOPBACK_HOSTS


@dataclass(frozen=True)
class CallerContext:
    """What the transport knows about who sent a request."""
    remote_address: Optional[str] = None
    principal: Optional[str] = None
    attributes: Mapping[str, Any] = field(default_factory=dict)


@runtime_checkable
class AdminAuthorizer(Protocol):
    """Decides whether a caller may run an administrative operation."""

    def is_authorized(self, caller: CallerContext, operation: str) -> bool:
        ...


class LoopbackAdminAuthorizer:
    """Admits callers whose remote address is in ``allowed_hosts``."""

    def __init__(self, allowed_hosts: Iterable[str] = LOOPBACK_HOSTS):
        self.allowed_hosts = frozenset(allowed_hosts)

    def is_authorized(self, caller: CallerContext, operation: str) -> bool:
        if caller is None or not caller.remote_address:
            return False
        return caller.remote_address in self.allowed_hosts


class DenyAllAdminAuthorizer:
    """Refuses every administrative operation."""

    def is_authorized(self, caller: CallerContext, operation: str) -> bool:
        return False
