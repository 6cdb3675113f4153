"""
Startup assembly of the policy core.

Components are built once, in dependency order, and handed to each other
explicitly. Nothing here is global: tests and embedding applications call
``build_policy_core`` with their own settings.
"""

from dataclasses import dataclass
from typing import Optional

from shared.config import PolicySettings
from shared.errors import AuditWriteFailure, ConfigCorrupt
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from .admin.handler import AdminOperationHandler
from .audit.logger import AuditLogger
from .audit.models import AuditAction, AuditEvent
from .interception.admin_gate import AdminAuthorizer, LoopbackAdminAuthorizer
from .interception.interceptor import RequestInterceptor
from .interception.operations import DEFAULT_OPERATION_TABLE, OperationTable
from .permissions.evaluator import PermissionEvaluator
from .permissions.registry import PolicyRegistry
from .persistence.config_store import ConfigStore


SOURCE_PERSISTED = "persisted"
SOURCE_DEFAULTS = "defaults"
SOURCE_DEFAULTS_AFTER_CORRUPT = "defaults-after-corrupt"

STARTUP_SERVICE_ID = "system"


@dataclass
class PolicyCore:
    """Wired policy components."""
    settings: PolicySettings
    registry: PolicyRegistry
    store: ConfigStore
    audit_logger: AuditLogger
    evaluator: PermissionEvaluator
    admin: AdminOperationHandler
    interceptor: RequestInterceptor
    policy_source: str


def build_policy_core(
    settings: PolicySettings,
    metrics: Optional[MetricsCollector] = None,
    admin_authorizer: Optional[AdminAuthorizer] = None,
    operation_table: OperationTable = DEFAULT_OPERATION_TABLE,
) -> PolicyCore:
    """Load persisted policy (or secure defaults) and wire every component.

    Rejected storage paths raise ``UnsafeStoragePath``; a corrupt config file
    is moved aside and the registry starts from secure defaults.
    """
    logger = get_logger("policy.core")
    root = settings.policy_storage_root

    store = ConfigStore(settings.policy_config_path, root, metrics)
    audit_logger = AuditLogger(
        settings.policy_audit_log_path,
        root,
        max_file_size=settings.policy_audit_max_file_size,
        max_files=settings.policy_audit_max_files,
        metrics=metrics,
    )

    persisted = None
    try:
        persisted = store.load()
        policy_source = SOURCE_PERSISTED if persisted is not None else SOURCE_DEFAULTS
    except ConfigCorrupt as e:
        logger.warning(
            "Starting from secure defaults after corrupt configuration",
            quarantined_path=e.quarantined_path
        )
        policy_source = SOURCE_DEFAULTS_AFTER_CORRUPT

    registry = PolicyRegistry(
        settings.policy_known_services,
        persisted.services if persisted is not None else None
    )
    evaluator = PermissionEvaluator(registry, metrics)
    admin = AdminOperationHandler(registry, store, audit_logger, metrics)
    interceptor = RequestInterceptor(
        evaluator,
        admin_authorizer or LoopbackAdminAuthorizer(settings.policy_admin_allowed_hosts),
        operation_table,
        metrics,
    )

    try:
        audit_logger.log(AuditEvent(
            action=AuditAction.STARTUP,
            service_id=STARTUP_SERVICE_ID,
            previous_value=None,
            new_value={
                "policySource": policy_source,
                "services": {s.service_id: s.core_values() for s in registry.all()},
            },
            source="startup",
        ))
    except AuditWriteFailure:
        logger.error("Startup audit entry could not be written")

    logger.info(
        "Policy core ready",
        policy_source=policy_source,
        services=registry.known_services(),
        config_path=str(store.path),
        audit_path=str(audit_logger.path)
    )
    return PolicyCore(
        settings=settings,
        registry=registry,
        store=store,
        audit_logger=audit_logger,
        evaluator=evaluator,
        admin=admin,
        interceptor=interceptor,
        policy_source=policy_source,
    )
