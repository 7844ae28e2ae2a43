"""Shared testing fixtures for the scare-study test suite."""

from .presenter import RecordingPresenter  # noqa: F401
from .questions import cache_payload, make_question  # noqa: F401
from .scheduler import EPOCH, ManualScheduler  # noqa: F401
from .workspace import STUDY_NOTES, WorkspaceBuilder, build_tree  # noqa: F401

__all__ = [
    "EPOCH",
    "ManualScheduler",
    "RecordingPresenter",
    "STUDY_NOTES",
    "WorkspaceBuilder",
    "build_tree",
    "cache_payload",
    "make_question",
]
