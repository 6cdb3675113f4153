"""
In-memory policy registry for the Policy Service.

Reads are plain dictionary lookups of immutable ``PolicyState`` values and
are safe from any number of concurrent evaluations. Writes replace whole
states and are only reachable through the ``RegistryWriter`` handed out once
by ``PolicyRegistry.claim_writer()``; the administrative handler claims it
at startup so every mutation goes through persistence and audit.
"""

from typing import Dict, Iterable, List, Mapping, Optional

from shared.logging import get_logger
from .models import PermissionLevel, PolicyState, sanitize_service_id


class RegistryWriterClaimed(RuntimeError):
    """Raised when a second component tries to obtain the registry writer."""


class PolicyRegistry:
    """Mapping from service identifier to its live policy state."""

    def __init__(self, known_services: Iterable[str],
                 persisted: Optional[Mapping[str, PolicyState]] = None):
        self.logger = get_logger("policy.registry")
        self._states: Dict[str, PolicyState] = {}
        self._writer_claimed = False

        for service_id in known_services:
            self._states[service_id] = PolicyState.secure_default(service_id)

        if persisted:
            self._apply_persisted(persisted)

    def _apply_persisted(self, persisted: Mapping[str, PolicyState]) -> None:
        for service_id, state in persisted.items():
            if service_id not in self._states:
                self.logger.warning(
                    "Ignoring persisted policy for unknown service",
                    service_id=sanitize_service_id(service_id)
                )
                continue
            if not isinstance(state.permission_level, PermissionLevel):
                # The store validates on load; anything else stays at the default
                self.logger.error(
                    "Ignoring persisted policy with invalid permission level",
                    service_id=service_id
                )
                continue
            self._states[service_id] = state.evolve(service_id=service_id)

    def get(self, service_id: str) -> Optional[PolicyState]:
        """Current state for ``service_id``, or None for unknown services."""
        return self._states.get(service_id)

    def all(self) -> List[PolicyState]:
        """All states in registration order."""
        return list(self._states.values())

    def known_services(self) -> List[str]:
        return list(self._states.keys())

    def __contains__(self, service_id: object) -> bool:
        return service_id in self._states

    def snapshot(self) -> Dict[str, PolicyState]:
        """Point-in-time copy of every state."""
        return dict(self._states)

    def claim_writer(self) -> "RegistryWriter":
        """Hand out the only mutation handle. Can be called once."""
        if self._writer_claimed:
            raise RegistryWriterClaimed("Policy registry writer already claimed")
        self._writer_claimed = True
        return RegistryWriter(self)


class RegistryWriter:
    """Mutation handle for a ``PolicyRegistry``."""

    def __init__(self, registry: PolicyRegistry):
        self._registry = registry

    @property
    def registry(self) -> PolicyRegistry:
        return self._registry

    def set(self, service_id: str, state: PolicyState) -> PolicyState:
        """Replace the state of a known service and return the previous one."""
        states = self._registry._states
        previous = states.get(service_id)
        if previous is None:
            raise KeyError(service_id)
        if not isinstance(state.permission_level, PermissionLevel):
            raise ValueError("permission_level must be a PermissionLevel")
        states[service_id] = state.evolve(service_id=service_id)
        return previous

    def reset_to_default(self, service_id: str) -> PolicyState:
        """Reset a service to secure defaults, keeping its extension fields."""
        previous = self._registry._states.get(service_id)
        if previous is None:
            raise KeyError(service_id)
        return self.set(service_id, PolicyState.secure_default(service_id, previous.extensions))
