"""
Policy service for the Access Policy core.

A thin HTTP surface over the policy core: operation authorization for the
transport layer, service configuration reads, and host-gated
administrative mutations.
"""

import sys
import os
from typing import Any, Dict, Optional

# Add shared directory to path
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from fastapi import Query, Request
from pydantic import BaseModel

from shared.base_service import BaseService
from shared.config import PolicySettings, get_config

from .core import PolicyCore, build_policy_core
from .interception.admin_gate import AdminAuthorizer, CallerContext


class AuthorizeRequest(BaseModel):
    """Either a parsed operation document or a single operation name."""
    document: Optional[Dict[str, Any]] = None
    operation: Optional[str] = None


class PermissionLevelRequest(BaseModel):
    permissionLevel: Any = None


class AnonymizationRequest(BaseModel):
    enableAnonymization: Any = None


class PolicyService(BaseService):
    """Policy service implementation."""

    def __init__(self, config: Optional[PolicySettings] = None,
                 admin_authorizer: Optional[AdminAuthorizer] = None):
        super().__init__("policy", config or get_config())

        self.core: PolicyCore = build_policy_core(
            self.config,
            metrics=self.metrics,
            admin_authorizer=admin_authorizer,
        )
        self.app.state.policy_core = self.core

        self._setup_policy_routes()

    @staticmethod
    def _caller(request: Request) -> CallerContext:
        return CallerContext(remote_address=request.client.host if request.client else None)

    def _require_admin(self, request: Request, operation: str) -> CallerContext:
        caller = self._caller(request)
        self.core.interceptor.enforce_operation(operation, caller)
        return caller

    @staticmethod
    def _source(caller: CallerContext) -> str:
        return f"http:{caller.remote_address or 'unknown'}"

    def _setup_policy_routes(self):
        """Set up policy-specific routes."""
        admin = self.core.admin

        @self.app.get("/")
        async def root():
            """Root endpoint."""
            return {
                "service": "policy",
                "message": "Access Policy - Policy Service",
                "version": "1.0.0",
                "capabilities": ["permission_evaluation", "config_persistence", "audit_log"]
            }

        @self.app.post("/operations/authorize")
        async def authorize_operation(body: AuthorizeRequest, request: Request):
            """Decide an inbound operation; denials are generic."""
            caller = self._caller(request)
            if body.document is not None:
                decision = self.core.interceptor.authorize(body.document, caller)
            elif body.operation:
                decision = self.core.interceptor.authorize_operation(body.operation, caller)
            else:
                decision = self.core.interceptor.authorize(None, caller)

            if decision.allowed:
                return {"allowed": True}
            return {"allowed": False, "code": decision.code, "message": decision.message}

        @self.app.get("/services/config")
        async def all_service_configs(request: Request):
            self.core.interceptor.enforce_operation("allServiceConfigs", self._caller(request))
            return {"services": [state.to_dict() for state in admin.all_service_configs()]}

        @self.app.get("/services/{service_id}/config")
        async def service_config(service_id: str, request: Request):
            self.core.interceptor.enforce_operation("serviceConfig", self._caller(request))
            return admin.get_service_config(service_id).to_dict()

        @self.app.post("/services/{service_id}/enable")
        async def enable_service(service_id: str, request: Request):
            caller = self._require_admin(request, "enableService")
            state = await admin.enable_service(service_id, source=self._source(caller))
            return state.to_dict()

        @self.app.post("/services/{service_id}/disable")
        async def disable_service(service_id: str, request: Request):
            caller = self._require_admin(request, "disableService")
            state = await admin.disable_service(service_id, source=self._source(caller))
            return state.to_dict()

        @self.app.put("/services/{service_id}/permission-level")
        async def set_permission_level(service_id: str, body: PermissionLevelRequest, request: Request):
            caller = self._require_admin(request, "setPermissionLevel")
            state = await admin.set_permission_level(
                service_id, body.permissionLevel, source=self._source(caller)
            )
            return state.to_dict()

        @self.app.put("/services/{service_id}/anonymization")
        async def set_anonymization(service_id: str, body: AnonymizationRequest, request: Request):
            caller = self._require_admin(request, "setPiiAnonymization")
            state = await admin.set_pii_anonymization(
                service_id, body.enableAnonymization, source=self._source(caller)
            )
            return state.to_dict()

        @self.app.post("/services/{service_id}/reset")
        async def reset_service_config(service_id: str, request: Request):
            caller = self._require_admin(request, "resetServiceConfig")
            state = await admin.reset_service_config(service_id, source=self._source(caller))
            return state.to_dict()

        @self.app.get("/audit/recent")
        async def recent_audit_entries(request: Request, count: int = Query(100)):
            self._require_admin(request, "auditLog")
            entries = await admin.recent_audit_entries(count)
            return {"entries": [entry.to_dict() for entry in entries], "count": len(entries)}

    async def _check_dependencies(self) -> Dict[str, str]:
        """Report storage state."""
        return {
            "policy_source": self.core.policy_source,
            "config_file": "present" if self.core.store.exists() else "absent",
        }


def create_app(config: Optional[PolicySettings] = None,
               admin_authorizer: Optional[AdminAuthorizer] = None):
    """Create the FastAPI application."""
    service = PolicyService(config, admin_authorizer)
    return service.app


if __name__ == "__main__":
    service = PolicyService()
    service.run()
