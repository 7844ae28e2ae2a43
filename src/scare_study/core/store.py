"""Key/document persistence used by the timer, session tracker and cache.

Every persisted structure in scare-study is a JSON object addressed by a
short key (``session``, ``questions``). Components depend on the
:class:`DocumentStore` protocol only, so tests can swap in
:class:`MemoryStore` and never touch the filesystem.
"""

from __future__ import annotations

import copy
import json
import os
import re
import tempfile
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Protocol

__all__ = [
    "StoreError",
    "DocumentStore",
    "JsonFileStore",
    "MemoryStore",
    "update_section",
]

_KEY_PATTERN = re.compile(r"^[A-Za-z0-9_.-]+$")


class StoreError(RuntimeError):
    """Raised when a persisted document cannot be read or written."""


class DocumentStore(Protocol):
    def load(self, key: str) -> Optional[Dict[str, Any]]:
        """Return the stored document, ``None`` when absent."""

    def save(self, key: str, value: Mapping[str, Any]) -> None:
        """Replace the stored document."""


class JsonFileStore:
    """Store each key as ``<root>/<key>.json`` with atomic replacement."""

    def __init__(self, root: Path) -> None:
        self._root = Path(root)

    @property
    def root(self) -> Path:
        return self._root

    def path_for(self, key: str) -> Path:
        if not _KEY_PATTERN.match(key):
            raise StoreError(f"Invalid store key: {key!r}")
        return self._root / f"{key}.json"

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        target = self.path_for(key)
        if not target.is_file():
            return None
        try:
            payload = json.loads(target.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError) as exc:
            raise StoreError(f"Failed to read {target}: {exc}") from exc
        except json.JSONDecodeError as exc:
            raise StoreError(f"Failed to parse {target}: {exc}") from exc
        if not isinstance(payload, dict):
            raise StoreError(f"Expected a JSON object in {target}")
        return payload

    def save(self, key: str, value: Mapping[str, Any]) -> None:
        target = self.path_for(key)
        try:
            _atomic_write_json(target, value)
        except (OSError, TypeError, ValueError) as exc:
            raise StoreError(f"Failed to write {target}: {exc}") from exc


class MemoryStore:
    """In-process store; values are deep-copied in and out like JSON would."""

    def __init__(
        self, initial: Optional[Mapping[str, Mapping[str, Any]]] = None
    ) -> None:
        self._data: Dict[str, Dict[str, Any]] = {
            key: copy.deepcopy(dict(value))
            for key, value in (initial or {}).items()
        }
        self.fail_loads = False
        self.fail_saves = False
        self.save_count = 0

    def load(self, key: str) -> Optional[Dict[str, Any]]:
        if self.fail_loads:
            raise StoreError(f"Simulated read failure for {key!r}")
        value = self._data.get(key)
        return copy.deepcopy(value) if value is not None else None

    def save(self, key: str, value: Mapping[str, Any]) -> None:
        if self.fail_saves:
            raise StoreError(f"Simulated write failure for {key!r}")
        self._data[key] = json.loads(json.dumps(dict(value)))
        self.save_count += 1

    def raw(self, key: str) -> Optional[Dict[str, Any]]:
        return self._data.get(key)


def update_section(
    store: DocumentStore, key: str, section: str, value: Mapping[str, Any]
) -> None:
    """Replace one top-level section of a shared document.

    The session document holds both ``timerState`` and ``statistics``; each
    owner rewrites only its own section. An unreadable document is replaced.
    """

    try:
        current: MutableMapping[str, Any] = store.load(key) or {}
    except StoreError:
        current = {}
    current[section] = dict(value)
    store.save(key, current)


def _atomic_write_json(path: Path, payload: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    handle = tempfile.NamedTemporaryFile(
        "w",
        delete=False,
        encoding="utf-8",
        dir=str(path.parent),
        suffix=".tmp",
    )
    try:
        try:
            json.dump(payload, handle, indent=2)
            handle.flush()
            os.fsync(handle.fileno())
        finally:
            handle.close()
        os.replace(handle.name, path)
    except BaseException:
        Path(handle.name).unlink(missing_ok=True)
        raise
    try:
        path.chmod(0o600)
    except PermissionError:  # pragma: no cover - depends on filesystem
        pass
