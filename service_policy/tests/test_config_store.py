"""
Unit tests for the Config Store and storage path validation.
"""

import json
import os
import stat
import threading
import pytest
from unittest.mock import patch

import sys
sys.path.append(os.path.join(os.path.dirname(__file__), '..', '..'))

from service_policy.app.permissions.models import PermissionLevel, PolicyState
from service_policy.app.persistence.config_store import ConfigStore, PersistedConfig, SCHEMA_VERSION
from service_policy.app.persistence.paths import validate_storage_path
from shared.errors import ConfigCorrupt, ConfigWriteFailure, UnsafeStoragePath
from shared.metrics import MetricsCollector
from shared.test_helpers import TestDataFactory


def _states():
    return {
        "eventlog": PolicyState("eventlog", True, PermissionLevel.READ_ONLY, True, {"maxResults": 5000}),
        "filesearch": PolicyState("filesearch", False, PermissionLevel.DISABLED, False),
    }


class TestConfigStore:
    """Test cases for ConfigStore."""

    @pytest.fixture
    def store(self, tmp_path):
        """Create store rooted in a temporary directory."""
        return ConfigStore("config/policy-config.json", tmp_path)

    def _write_raw(self, store, content):
        store.path.parent.mkdir(parents=True, exist_ok=True)
        store.path.write_text(content, encoding="utf-8")

    def test_load_missing_returns_none(self, store):
        """Test a missing file is not found, not an error."""
        assert store.exists() is False
        assert store.load() is None

    def test_save_then_load_round_trip(self, store):
        """Test saved configuration loads back equal."""
        original = PersistedConfig.from_states(_states())

        saved = store.save(original)
        loaded = store.load()

        assert loaded.services == original.services
        assert loaded.schema_version == SCHEMA_VERSION
        assert loaded.last_modified == saved.last_modified
        assert saved.last_modified >= original.last_modified

    def test_saved_file_is_readable_json(self, store):
        """Test the document uses wire field names and keeps extensions."""
        store.save(PersistedConfig.from_states(_states()))

        document = json.loads(store.path.read_text(encoding="utf-8"))

        assert document["schemaVersion"] == 1
        assert "lastModified" in document
        assert document["services"]["eventlog"] == {
            "enabled": True,
            "permissionLevel": "read-only",
            "enableAnonymization": True,
            "maxResults": 5000,
        }

    @pytest.mark.skipif(os.name == "nt", reason="POSIX permissions")
    def test_saved_file_is_owner_only(self, store):
        """Test file permissions are restricted."""
        store.save(PersistedConfig.from_states(_states()))

        mode = stat.S_IMODE(os.stat(store.path).st_mode)
        assert mode == 0o600

    def test_no_temp_files_left_behind(self, store):
        """Test the temporary file is renamed into place."""
        store.save(PersistedConfig.from_states(_states()))
        store.save(PersistedConfig.from_states(_states()))

        assert sorted(p.name for p in store.path.parent.iterdir()) == ["policy-config.json"]

    @pytest.mark.parametrize("content", [
        "",
        '{"schemaVersion": 1, "lastModified": "2024-01-01T00:00:00+00:00", "servi',
        "not json at all",
        "[]",
    ])
    def test_unparseable_file_is_quarantined(self, store, content):
        """Test unreadable content is moved aside and reported."""
        self._write_raw(store, content)

        with pytest.raises(ConfigCorrupt) as exc_info:
            store.load()

        quarantined = exc_info.value.quarantined_path
        assert quarantined is not None
        assert ".corrupt." in quarantined
        assert not store.path.exists()
        with open(quarantined, encoding="utf-8") as f:
            assert f.read() == content

    def test_load_after_quarantine_is_not_found(self, store):
        """Test the next load after corruption starts clean."""
        self._write_raw(store, "{truncated")

        with pytest.raises(ConfigCorrupt):
            store.load()

        assert store.load() is None

    @pytest.mark.parametrize("services,schema_version", [
        ({"eventlog": {"enabled": True, "permissionLevel": "admin", "enableAnonymization": True}}, 1),
        ({"eventlog": {"enabled": True, "permissionLevel": "READ_ONLY", "enableAnonymization": True}}, 1),
        ({"eventlog": {"enabled": "true", "permissionLevel": "read-only", "enableAnonymization": True}}, 1),
        ({"eventlog": {"enabled": 1, "permissionLevel": "read-only", "enableAnonymization": True}}, 1),
        ({"eventlog": {"enabled": True, "permissionLevel": "read-only", "enableAnonymization": "no"}}, 1),
        ({"eventlog": {"enabled": True, "enableAnonymization": True}}, 1),
        ({"eventlog": {"enabled": True, "permissionLevel": "read-only", "enableAnonymization": True}}, 2),
        ({"eventlog": {"enabled": True, "permissionLevel": "read-only", "enableAnonymization": True}}, "1"),
    ])
    def test_invalid_content_is_corruption(self, store, services, schema_version):
        """Test semantic violations are not coerced."""
        document = TestDataFactory.create_persisted_document(services, schema_version)
        self._write_raw(store, json.dumps(document))

        with pytest.raises(ConfigCorrupt):
            store.load()

    def test_valid_document_loads(self, store):
        """Test a hand-written valid document is accepted."""
        self._write_raw(store, json.dumps(TestDataFactory.create_persisted_document()))

        config = store.load()

        state = config.services["eventlog"]
        assert state.enabled is True
        assert state.permission_level is PermissionLevel.READ_ONLY
        assert state.extensions == {"maxResults": 5000}

    def test_quarantine_names_are_unique(self, store):
        """Test two corrupt files in the same millisecond keep distinct names."""
        quarantined = []
        with patch("service_policy.app.persistence.config_store.time.time", return_value=1700000000.0):
            for _ in range(2):
                self._write_raw(store, "garbage")
                with pytest.raises(ConfigCorrupt) as exc_info:
                    store.load()
                quarantined.append(exc_info.value.quarantined_path)

        assert quarantined[0] != quarantined[1]
        assert all(os.path.exists(p) for p in quarantined)

    def test_quarantine_counted(self, tmp_path):
        """Test quarantines are visible in metrics."""
        metrics = MetricsCollector("policy")
        store = ConfigStore("policy-config.json", tmp_path, metrics)
        store.path.write_text("garbage", encoding="utf-8")

        with pytest.raises(ConfigCorrupt):
            store.load()

        assert metrics.registry.get_sample_value("config_quarantined_total") == 1.0

    def test_write_failure_keeps_previous_file(self, store):
        """Test a failed replace leaves the old document intact."""
        store.save(PersistedConfig.from_states(_states()))
        before = store.path.read_text(encoding="utf-8")

        with patch("service_policy.app.persistence.config_store.os.replace", side_effect=OSError(28, "No space left on device")):
            with pytest.raises(ConfigWriteFailure):
                store.save(PersistedConfig.from_states({}))

        assert store.path.read_text(encoding="utf-8") == before
        assert sorted(p.name for p in store.path.parent.iterdir()) == ["policy-config.json"]

    def test_unserializable_extension_fails_cleanly(self, store):
        """Test serialization errors surface as write failures."""
        states = {"eventlog": PolicyState("eventlog", True, PermissionLevel.READ_ONLY, True, {"bad": object()})}

        with pytest.raises(ConfigWriteFailure):
            store.save(PersistedConfig.from_states(states))
        assert not store.path.exists()

    def test_concurrent_saves_leave_a_complete_document(self, store):
        """Test overlapping saves never interleave."""
        errors = []

        def worker(level):
            try:
                for _ in range(10):
                    store.save(PersistedConfig.from_states({
                        "eventlog": PolicyState("eventlog", True, level)
                    }))
            except Exception as e:
                errors.append(e)

        threads = [
            threading.Thread(target=worker, args=(level,))
            for level in (PermissionLevel.READ_ONLY, PermissionLevel.READ_WRITE)
        ]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        assert errors == []
        loaded = store.load()
        assert loaded.services["eventlog"].permission_level in (
            PermissionLevel.READ_ONLY, PermissionLevel.READ_WRITE
        )


class TestStoragePathValidation:
    """Test cases for validate_storage_path."""

    def test_relative_path_resolved_under_base(self, tmp_path):
        """Test relative paths are joined to the base."""
        path = validate_storage_path("config/policy.json", tmp_path)

        assert path == tmp_path.resolve() / "config" / "policy.json"
        assert path.is_absolute()

    def test_absolute_path_inside_base(self, tmp_path):
        """Test absolute paths inside the base are accepted."""
        target = tmp_path / "audit.jsonl"

        assert validate_storage_path(str(target), tmp_path) == target.resolve()

    @pytest.mark.parametrize("raw", [
        "../outside.json",
        "config/../../outside.json",
        "/etc/passwd",
        "",
        "   ",
        "config/\x00evil.json",
        ".",
    ])
    def test_rejected_paths(self, tmp_path, raw):
        """Test traversal, empty and NUL paths are rejected."""
        with pytest.raises(UnsafeStoragePath):
            validate_storage_path(raw, tmp_path)

    def test_directory_rejected(self, tmp_path):
        """Test a directory cannot be used as a file path."""
        (tmp_path / "config").mkdir()

        with pytest.raises(UnsafeStoragePath):
            validate_storage_path("config", tmp_path)

    @pytest.mark.skipif(not hasattr(os, "symlink") or os.name == "nt", reason="symlinks")
    def test_symlink_escape_rejected(self, tmp_path):
        """Test a link pointing outside the base is rejected."""
        base = tmp_path / "base"
        outside = tmp_path / "outside"
        base.mkdir()
        outside.mkdir()
        os.symlink(outside, base / "link")

        with pytest.raises(UnsafeStoragePath):
            validate_storage_path("link/policy.json", base)

    def test_store_rejects_unsafe_path(self, tmp_path):
        """Test the store validates its path at construction."""
        with pytest.raises(UnsafeStoragePath) as exc_info:
            ConfigStore("../policy.json", tmp_path)

        assert exc_info.value.code == "UNSAFE_STORAGE_PATH"
        assert isinstance(exc_info.value, ConfigWriteFailure)
