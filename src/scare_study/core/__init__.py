"""Core shared helpers for scare-study components."""

from __future__ import annotations

from .events import EventBus
from .logging import JsonLogFormatter, configure_logger, get_logger
from .scheduler import SchedScheduler, Scheduler
from .store import (
    DocumentStore,
    JsonFileStore,
    MemoryStore,
    StoreError,
    update_section,
)
from .workspace import (
    WORKSPACE_ENV,
    WorkspaceError,
    WorkspaceLayout,
    ensure_workspace,
)

# files depends on the question models, so it is imported last.
from .files import (  # noqa: E402
    iter_text_files,
    load_documents,
    parse_extensions,
    read_text_file,
)

__all__ = [
    "EventBus",
    "JsonLogFormatter",
    "configure_logger",
    "get_logger",
    "SchedScheduler",
    "Scheduler",
    "DocumentStore",
    "JsonFileStore",
    "MemoryStore",
    "StoreError",
    "update_section",
    "WORKSPACE_ENV",
    "WorkspaceError",
    "WorkspaceLayout",
    "ensure_workspace",
    "iter_text_files",
    "load_documents",
    "parse_extensions",
    "read_text_file",
]
