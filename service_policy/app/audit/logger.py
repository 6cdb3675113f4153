"""
Append-only audit logger for the Policy Service.

Each entry is one JSON object per line. The logger stamps the timestamp
itself and chains entries with SHA-256:

    hash = sha256(previousHash + canonical_json(entry))

so edits or deletions inside the retained files are detectable with
``verify_integrity()``. When the active file reaches ``max_file_size`` it is
renamed to ``<name>.1<ext>``, older backups shift up by one, and backups
beyond ``max_files`` are deleted. Rotation and appends share one lock, so no
entry is split, lost, or duplicated across a rotation boundary.
"""

import hashlib
import json
import os
import re
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Union

from shared.errors import AuditWriteFailure
from shared.logging import get_logger
from shared.metrics import MetricsCollector
from ..persistence.paths import validate_storage_path
from .models import AuditEntry, AuditEvent, IntegrityReport


DEFAULT_MAX_FILE_SIZE = 10 * 1024 * 1024
DEFAULT_MAX_FILES = 5
GENESIS_HASH = "0" * 64
HASH_FIELDS = ("previousHash", "hash")


def _canonical_json(data: Dict[str, Any]) -> str:
    return json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)


def _chain_hash(previous_hash: str, body: Dict[str, Any]) -> str:
    return hashlib.sha256((previous_hash + _canonical_json(body)).encode("utf-8")).hexdigest()


class AuditLogger:
    """JSON Lines audit trail with size-based rotation."""

    def __init__(
        self,
        path: Union[str, Path],
        base_dir: Union[str, Path],
        max_file_size: int = DEFAULT_MAX_FILE_SIZE,
        max_files: int = DEFAULT_MAX_FILES,
        metrics: Optional[MetricsCollector] = None,
    ):
        if max_file_size <= 0:
            raise ValueError("max_file_size must be positive")
        if max_files < 1:
            raise ValueError("max_files must be at least 1")

        self.path = validate_storage_path(path, base_dir, "audit log path")
        self.max_file_size = max_file_size
        self.max_files = max_files
        self.metrics = metrics
        self.logger = get_logger("policy.audit")

        self._lock = threading.Lock()
        self._tail_loaded = False
        self._last_hash = GENESIS_HASH
        self._last_timestamp: Optional[datetime] = None

    def log(self, event: AuditEvent) -> AuditEntry:
        """Append one entry and return it as written.

        Raises ``AuditWriteFailure`` when the entry could not be appended.
        """
        with self._lock:
            try:
                self.path.parent.mkdir(parents=True, exist_ok=True)
                self._load_tail_state()
                self._rotate_if_needed()

                entry = AuditEntry(
                    timestamp=self._next_timestamp(),
                    action=event.action,
                    service_id=event.service_id,
                    previous_value=event.previous_value,
                    new_value=event.new_value,
                    source=event.source,
                )
                body = entry.to_dict()
                digest = _chain_hash(self._last_hash, body)
                record = dict(body, previousHash=self._last_hash, hash=digest)
                self._append(json.dumps(record, separators=(",", ":"), ensure_ascii=False) + "\n")
            except (OSError, TypeError, ValueError, AttributeError) as e:
                if self.metrics:
                    self.metrics.increment_counter("audit_write_failures_total")
                self.logger.error("Audit write failed", path=str(self.path), error=str(e))
                raise AuditWriteFailure(details={"error": str(e)}) from e

            self._last_hash = digest
            self._last_timestamp = datetime.fromisoformat(entry.timestamp)
        return entry

    def recent(self, count: int) -> List[AuditEntry]:
        """Last ``count`` entries in write order, most recent last."""
        if count <= 0:
            return []

        with self._lock:
            collected: List[AuditEntry] = []
            for path in self._files_newest_first():
                collected = self._read_entries(path) + collected
                if len(collected) >= count:
                    break
        return collected[-count:]

    def verify_integrity(self) -> IntegrityReport:
        """Walk the hash chain over every retained file, oldest first.

        A line that is not JSON at all is what an interrupted append leaves
        behind once the next append terminates it. Such remnants are counted
        and skipped, provided a chained entry follows them in the same file
        and that entry links to the hash before the remnant.
        """
        with self._lock:
            files = list(reversed(self._files_newest_first()))
            expected: Optional[str] = None
            count = 0
            remnants = 0
            for path in files:
                pending = 0
                for line in self._complete_lines(path):
                    try:
                        record = json.loads(line)
                    except ValueError:
                        pending += 1
                        continue

                    count += 1
                    if not isinstance(record, dict) or any(field not in record for field in HASH_FIELDS):
                        return IntegrityReport(False, count, f"Entry {count} is missing hash fields", remnants)
                    previous_hash = record.pop("previousHash")
                    stored_hash = record.pop("hash")
                    if not isinstance(previous_hash, str) or not isinstance(stored_hash, str):
                        return IntegrityReport(False, count, f"Entry {count} has malformed hash fields", remnants)

                    if pending and expected is None and previous_hash != GENESIS_HASH:
                        return IntegrityReport(False, count, f"Unreadable line before entry {count}", remnants)
                    # Pruned backups take the oldest chain links with them
                    if expected is not None and previous_hash != expected:
                        return IntegrityReport(False, count, f"Entry {count} breaks the hash chain", remnants)
                    if _chain_hash(previous_hash, record) != stored_hash:
                        return IntegrityReport(False, count, f"Entry {count} has an invalid hash", remnants)
                    expected = stored_hash
                    remnants += pending
                    pending = 0

                if pending:
                    return IntegrityReport(False, count, f"Unreadable line after entry {count} in {path.name}", remnants)

        if remnants:
            self.logger.warning("Audit trail contains interrupted appends", path=str(self.path), remnants=remnants)
        return IntegrityReport(True, count, remnants=remnants)

    def rotated_path(self, index: int) -> Path:
        """Path of backup number ``index`` (1 is the most recent)."""
        suffix = self.path.suffix
        stem = self.path.name[: -len(suffix)] if suffix else self.path.name
        return self.path.with_name(f"{stem}.{index}{suffix}")

    def _files_newest_first(self) -> List[Path]:
        paths = [self.path] + [self.rotated_path(i) for i in range(1, self.max_files + 1)]
        return [p for p in paths if p.exists()]

    def _rotate_if_needed(self) -> None:
        try:
            size = self.path.stat().st_size
        except FileNotFoundError:
            return
        if size < self.max_file_size:
            return

        oldest = self.rotated_path(self.max_files)
        if oldest.exists():
            oldest.unlink()
        for index in range(self.max_files - 1, 0, -1):
            source = self.rotated_path(index)
            if source.exists():
                os.replace(source, self.rotated_path(index + 1))
        os.replace(self.path, self.rotated_path(1))
        self._prune_beyond_retention()

        self.logger.info("Rotated audit log", path=str(self.path), rotated_size=size)

    def _prune_beyond_retention(self) -> None:
        suffix = re.escape(self.path.suffix)
        stem = self.path.name[: -len(self.path.suffix)] if self.path.suffix else self.path.name
        pattern = re.compile(rf"^{re.escape(stem)}\.(\d+){suffix}$")
        for candidate in self.path.parent.iterdir():
            match = pattern.match(candidate.name)
            if match and int(match.group(1)) > self.max_files:
                candidate.unlink()

    def _append(self, line: str) -> None:
        with open(self.path, "a+b") as f:
            # Terminate a partial line left by a crash or failed write
            f.seek(0, os.SEEK_END)
            if f.tell() > 0:
                f.seek(-1, os.SEEK_END)
                if f.read(1) != b"\n":
                    f.write(b"\n")
            f.write(line.encode("utf-8"))
            f.flush()
            os.fsync(f.fileno())

    def _load_tail_state(self) -> None:
        """Pick up the chain head and last timestamp left by a previous process."""
        if self._tail_loaded:
            return
        for path in self._files_newest_first():
            lines = self._complete_lines(path)
            for line in reversed(lines):
                try:
                    record = json.loads(line)
                    self._last_hash = str(record["hash"])
                    self._last_timestamp = datetime.fromisoformat(record["timestamp"])
                except (ValueError, KeyError, TypeError):
                    continue
                self._tail_loaded = True
                return
        self._tail_loaded = True

    def _next_timestamp(self) -> str:
        now = datetime.now(timezone.utc)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            # Keep timestamps strictly increasing in write order
            now = self._last_timestamp + timedelta(microseconds=1)
        return now.isoformat()

    def _complete_lines(self, path: Path) -> List[str]:
        try:
            data = path.read_bytes()
        except FileNotFoundError:
            return []
        text = data.decode("utf-8", errors="replace")
        lines = text.split("\n")
        # Whatever follows the last newline is an unterminated append
        if lines and lines[-1]:
            self.logger.warning("Discarding partial trailing audit line", path=str(path))
        return [line for line in lines[:-1] if line.strip()]

    def _read_entries(self, path: Path) -> List[AuditEntry]:
        entries: List[AuditEntry] = []
        for line in self._complete_lines(path):
            try:
                entries.append(AuditEntry.from_dict(json.loads(line)))
            except (ValueError, KeyError, TypeError, AttributeError):
                self.logger.warning("Skipping unreadable audit line", path=str(path))
        return entries
