"""
Test helper functions and factory methods for the Access Policy core.
"""

from typing import Dict, Any, Iterable, List, Optional
from pathlib import Path

from shared.config import PolicySettings


class TestDataFactory:
    """Factory for creating test data."""

    @staticmethod
    def create_operation_document(*fields: str, kind: str = "Field") -> Dict[str, Any]:
        """Create a parsed GraphQL-style document selecting ``fields`` at the top level."""
        return {
            "kind": "Document",
            "definitions": [
                {
                    "kind": "OperationDefinition",
                    "operation": "query",
                    "selectionSet": {
                        "kind": "SelectionSet",
                        "selections": [
                            {"kind": kind, "name": {"kind": "Name", "value": name}}
                            for name in fields
                        ],
                    },
                }
            ],
        }

    @staticmethod
    def create_persisted_document(services: Optional[Dict[str, Dict[str, Any]]] = None,
                                  schema_version: Any = 1) -> Dict[str, Any]:
        """Create a raw on-disk configuration document."""
        if services is None:
            services = {
                "eventlog": {
                    "enabled": True,
                    "permissionLevel": "read-only",
                    "enableAnonymization": True,
                    "maxResults": 5000,
                }
            }
        return {
            "schemaVersion": schema_version,
            "lastModified": "2024-01-01T00:00:00+00:00",
            "services": services,
        }


class TestEnvironment:
    """Test environment configuration."""

    @staticmethod
    def get_settings(storage_root: Path, known_services: Optional[Iterable[str]] = None,
                     admin_hosts: Optional[List[str]] = None, **overrides) -> PolicySettings:
        """Settings rooted in ``storage_root`` (normally pytest's ``tmp_path``)."""
        values: Dict[str, Any] = {
            "env": "test",
            "log_level": "info",
            "policy_storage_root": storage_root,
        }
        if known_services is not None:
            values["policy_known_services"] = list(known_services)
        if admin_hosts is not None:
            values["policy_admin_allowed_hosts"] = admin_hosts
        values.update(overrides)
        return PolicySettings(**values)
