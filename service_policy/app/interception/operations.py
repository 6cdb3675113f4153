"""
Closed mapping from inbound operation names to policy targets.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple

from shared.errors import OperationResolutionError
from ..permissions.models import OperationType


class OperationClass(str, Enum):
    """How an operation is authorized."""
    DATA_ACCESS = "data_access"
    ADMINISTRATIVE = "administrative"
    ALWAYS_ALLOWED = "always_allowed"


@dataclass(frozen=True)
class OperationTarget:
    """Resolved classification of one operation name."""
    name: str
    operation_class: OperationClass
    service_id: Optional[str] = None
    operation: Optional[OperationType] = None


class OperationTable:
    """Static classification of every operation the interceptor accepts.

    A name may appear in exactly one category; names not in the table are
    unresolvable and therefore denied.
    """

    def __init__(
        self,
        data_access: Mapping[str, Tuple[str, OperationType]],
        always_allowed: Iterable[str],
        administrative: Iterable[str],
    ):
        self._targets: Dict[str, OperationTarget] = {}

        for name, (service_id, operation) in data_access.items():
            if not isinstance(operation, OperationType):
                raise ValueError(f"Operation {name!r} has no valid operation type")
            self._add(OperationTarget(name, OperationClass.DATA_ACCESS, service_id, operation))
        for name in always_allowed:
            self._add(OperationTarget(name, OperationClass.ALWAYS_ALLOWED))
        for name in administrative:
            self._add(OperationTarget(name, OperationClass.ADMINISTRATIVE))

    def _add(self, target: OperationTarget) -> None:
        if target.name in self._targets:
            raise ValueError(f"Operation {target.name!r} is classified more than once")
        self._targets[target.name] = target

    def resolve(self, name: str) -> OperationTarget:
        target = self._targets.get(name)
        if target is None:
            raise OperationResolutionError(f"Unmapped operation: {name!r}")
        return target

    def names(self, operation_class: OperationClass) -> List[str]:
        return [t.name for t in self._targets.values() if t.operation_class == operation_class]


DEFAULT_OPERATION_TABLE = OperationTable(
    data_access={
        "eventLogs": ("eventlog", OperationType.READ),
        "fileSearch": ("filesearch", OperationType.READ),
    },
    always_allowed=[
        "services",
        "service",
        "health",
        "serviceConfig",
        "allServiceConfigs",
        "__schema",
        "__type",
    ],
    administrative=[
        "registerService",
        "startService",
        "stopService",
        "restartService",
        "enableService",
        "disableService",
        "setPermissionLevel",
        "setPiiAnonymization",
        "resetServiceConfig",
        "auditLog",
    ],
)


def extract_top_level_fields(document: Any) -> List[str]:
    """Top-level field names of a GraphQL-style operation document.

    Expects the JSON form of a parsed document::

        {"definitions": [{"kind": "OperationDefinition",
                          "selectionSet": {"selections": [
                              {"kind": "Field", "name": {"value": "eventLogs"}}]}}]}

    Anything that cannot be read unambiguously, including top-level
    fragment spreads whose fields are not visible here, raises
    ``OperationResolutionError``.
    """
    if not isinstance(document, Mapping):
        raise OperationResolutionError("Operation document must be an object")

    definitions = document.get("definitions")
    if not isinstance(definitions, list) or not definitions:
        raise OperationResolutionError("Operation document has no definitions")

    fields: List[str] = []
    for definition in definitions:
        if not isinstance(definition, Mapping):
            raise OperationResolutionError("Malformed definition")
        if definition.get("kind") != "OperationDefinition":
            continue

        selection_set = definition.get("selectionSet")
        selections = selection_set.get("selections") if isinstance(selection_set, Mapping) else None
        if not isinstance(selections, list) or not selections:
            raise OperationResolutionError("Operation has no selections")

        for selection in selections:
            if not isinstance(selection, Mapping) or selection.get("kind") != "Field":
                raise OperationResolutionError("Only plain fields are allowed at the top level")
            name = selection.get("name")
            value = name.get("value") if isinstance(name, Mapping) else None
            if not isinstance(value, str) or not value:
                raise OperationResolutionError("Field without a name")
            fields.append(value)

    if not fields:
        raise OperationResolutionError("Document contains no operation")
    return fields
