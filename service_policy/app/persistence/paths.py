"""
Storage path validation.
"""

import os
from pathlib import Path
from typing import Union

from shared.errors import UnsafeStoragePath


def validate_storage_path(raw: Union[str, os.PathLike], base_dir: Union[str, os.PathLike],
                          label: str = "storage path") -> Path:
    """Resolve ``raw`` to a canonical absolute path inside ``base_dir``.

    Relative paths are taken relative to ``base_dir``. Symbolic links are
    resolved for both the candidate and the base before comparing, so a
    link pointing outside the base is rejected like a ``..`` traversal.
    """
    text = os.fspath(raw) if raw is not None else ""
    if not str(text).strip():
        raise UnsafeStoragePath(label, "path is empty")
    if "\x00" in str(text):
        raise UnsafeStoragePath(label, "path contains a NUL byte")

    base = Path(os.path.realpath(os.path.abspath(os.fspath(base_dir))))
    candidate = Path(text)
    if not candidate.is_absolute():
        candidate = base / candidate

    resolved = Path(os.path.realpath(candidate))
    if resolved == base:
        raise UnsafeStoragePath(label, "path is the base directory itself")
    if base not in resolved.parents:
        raise UnsafeStoragePath(label, "path resolves outside the storage root")
    if resolved.is_dir():
        raise UnsafeStoragePath(label, "path is a directory")

    return resolved
