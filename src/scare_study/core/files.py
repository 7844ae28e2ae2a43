"""Plain-text document discovery and loading.

This is the default Document collaborator: it walks files and directories,
keeps the configured text extensions and turns each file into a
:class:`~scare_study.questions.models.Document`. Binary formats (PDF, Word)
are not parsed here; convert them to text first.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterable, Iterator, List, Optional, Sequence, Set

from ..questions.models import Document
from .logging import get_logger

__all__ = [
    "DEFAULT_EXTENSIONS",
    "parse_extensions",
    "iter_text_files",
    "read_text_file",
    "load_documents",
]

DEFAULT_EXTENSIONS = frozenset({"txt", "md", "markdown"})


def parse_extensions(
    values: Optional[Sequence[str]],
    *,
    default: Optional[Iterable[str]] = None,
) -> Set[str]:
    """Normalize extension strings to a lowercase set without leading dots."""
    fallback = set(default or DEFAULT_EXTENSIONS)
    if not values:
        return fallback

    normalized: Set[str] = set()
    for item in values:
        if not isinstance(item, str):
            continue
        candidate = item.strip().lower().lstrip(".")
        if candidate:
            normalized.add(candidate)
    return normalized or fallback


def iter_text_files(
    paths: Sequence[Path],
    extensions: Set[str],
) -> Iterator[Path]:
    """Yield matching files from ``paths``, preserving input order.

    Directories are walked recursively in case-insensitive name order.
    Missing inputs raise :class:`FileNotFoundError`.
    """
    for raw in paths:
        path = Path(raw).expanduser()
        if path.is_file():
            if _matches_extension(path, extensions):
                yield path
            continue
        if not path.exists():
            raise FileNotFoundError(f"Input not found: {path}")
        children = sorted(
            (child for child in path.rglob("*") if child.is_file()),
            key=lambda p: str(p.relative_to(path)).lower(),
        )
        for child in children:
            if _matches_extension(child, extensions):
                yield child


def _matches_extension(path: Path, extensions: Set[str]) -> bool:
    return path.suffix.lower().lstrip(".") in extensions


def read_text_file(path: Path) -> str:
    """Read a text file as UTF-8 with replacement for decode errors."""
    with Path(path).open("r", encoding="utf-8", errors="replace") as fh:
        return fh.read()


def load_documents(
    paths: Sequence[Path],
    *,
    extensions: Optional[Set[str]] = None,
    logger: Optional[logging.Logger] = None,
) -> List[Document]:
    """Read every matching file under ``paths`` into a document list.

    Unreadable files are logged and skipped so one bad file does not block
    question generation for the rest.
    """
    log = logger or get_logger("files")
    documents: List[Document] = []
    for path in iter_text_files(paths, extensions or set(DEFAULT_EXTENSIONS)):
        try:
            content = read_text_file(path)
        except OSError as exc:
            log.warning(
                "Skipping unreadable document",
                extra={"path": str(path), "error": str(exc)},
            )
            continue
        documents.append(
            Document(
                file_path=str(path),
                content=content,
                metadata={
                    "title": path.stem,
                    "wordCount": len(content.split()),
                },
            )
        )
    log.info("Loaded documents", extra={"count": len(documents)})
    return documents
