"""Settings loader for scare-study.

Values resolve with precedence CLI overrides > environment > TOML file >
built-in defaults. The TOML file lives at
``<workspace>/config/scare_study.toml`` unless ``SCARE_STUDY_CONFIG`` or an
explicit path points elsewhere.
"""

from __future__ import annotations

import copy
import os
import tomllib
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Mapping, MutableMapping, Optional, Sequence

from .core import workspace as workspace_mod
from .core.files import parse_extensions

CONFIG_FILENAME = "scare_study.toml"
CONFIG_ENV = "SCARE_STUDY_CONFIG"
ENV_PREFIX = "SCARE_STUDY_"

MIN_INTERVAL = 5
MAX_INTERVAL = 120
DEFAULT_INTERVAL = 30

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")

CONFIG_TEMPLATE = """\
# scare-study configuration

[timer]
# Minutes between interruptions (5-120).
interval = 30

[documents]
# Files or directories holding plain-text study notes.
paths = []
extensions = ["txt", "md", "markdown"]

[questions]
max_questions = 20
max_cached_questions = 100
min_keyword_length = 4
max_keywords = 20
min_keyword_frequency = 2

[logging]
level = "INFO"
verbose = false
"""

_DEFAULTS: Dict[str, Dict[str, Any]] = {
    "timer": {"interval": DEFAULT_INTERVAL},
    "documents": {"paths": [], "extensions": ["txt", "md", "markdown"]},
    "questions": {
        "max_questions": 20,
        "max_cached_questions": 100,
        "min_keyword_length": 4,
        "max_keywords": 20,
        "min_keyword_frequency": 2,
    },
    "logging": {"level": "INFO", "verbose": False},
}


class SettingsError(ValueError):
    """Raised when configuration is malformed or out of range."""


@dataclass(frozen=True)
class QuestionSettings:
    max_questions: int = 20
    max_cached_questions: int = 100
    min_keyword_length: int = 4
    max_keywords: int = 20
    min_keyword_frequency: int = 2


@dataclass(frozen=True)
class Settings:
    """Fully resolved runtime settings."""

    interval: int = DEFAULT_INTERVAL
    document_paths: tuple[Path, ...] = ()
    extensions: frozenset[str] = frozenset({"txt", "md", "markdown"})
    questions: QuestionSettings = QuestionSettings()
    log_level: str = "INFO"
    verbose: bool = False

    def with_interval(self, minutes: Any) -> "Settings":
        return replace(self, interval=validate_interval(minutes))


@dataclass(frozen=True)
class SettingsOverrides:
    """CLI-sourced overrides applied on top of file and env values."""

    interval: Optional[int] = None
    document_paths: Optional[Sequence[Path]] = None
    log_level: Optional[str] = None
    verbose: Optional[bool] = None


@dataclass(frozen=True)
class LoadResult:
    settings: Settings
    layout: workspace_mod.WorkspaceLayout
    config_path: Optional[Path]


def validate_interval(value: Any) -> int:
    """Return ``value`` as minutes, rejecting anything outside 5-120."""

    if isinstance(value, bool) or not isinstance(value, int):
        raise SettingsError(
            f"interval must be an integer number of minutes, got {value!r}."
        )
    if not MIN_INTERVAL <= value <= MAX_INTERVAL:
        raise SettingsError(
            f"interval must be between {MIN_INTERVAL} and {MAX_INTERVAL} "
            f"minutes, got {value}."
        )
    return value


def load_settings(
    *,
    config_path: Optional[Path] = None,
    overrides: Optional[SettingsOverrides] = None,
    env: Optional[Mapping[str, str]] = None,
    workspace_path: Optional[Path] = None,
) -> LoadResult:
    overrides = overrides or SettingsOverrides()
    env_map = os.environ if env is None else env

    try:
        layout = workspace_mod.ensure_workspace(env=env_map, path=workspace_path)
    except workspace_mod.WorkspaceError as exc:
        raise SettingsError(str(exc)) from exc

    requested = _resolve_config_path(
        config_path=config_path,
        env_map=env_map,
        default_path=layout.path_for("config") / CONFIG_FILENAME,
    )
    table = copy.deepcopy(_DEFAULTS)
    loaded_path: Optional[Path] = None
    if requested.exists():
        for section, values in read_config_file(requested).items():
            table[section].update(values)
        loaded_path = requested
    elif config_path is not None or env_map.get(CONFIG_ENV):
        raise SettingsError(f"Config file not found: {requested}")

    interval = _pick_first(
        overrides.interval,
        _parse_env_int(env_map, "INTERVAL"),
        table["timer"]["interval"],
    )
    log_level = _pick_first(
        overrides.log_level,
        _parse_env_string(env_map, "LOG_LEVEL"),
        table["logging"]["level"],
    )
    verbose = _pick_first(overrides.verbose, table["logging"]["verbose"])
    raw_paths = _pick_first(
        overrides.document_paths, table["documents"]["paths"]
    )

    settings = Settings(
        interval=validate_interval(interval),
        document_paths=_resolve_paths(raw_paths, base=layout.home),
        extensions=frozenset(
            parse_extensions(
                _require_str_list(
                    table["documents"]["extensions"], "documents.extensions"
                )
            )
        ),
        questions=_question_settings(table["questions"]),
        log_level=_validate_log_level(log_level),
        verbose=_require_bool(verbose, "logging.verbose"),
    )
    return LoadResult(settings=settings, layout=layout, config_path=loaded_path)


def read_config_file(path: Path) -> Dict[str, Dict[str, Any]]:
    """Parse a scare_study.toml and return the sections it sets.

    Only the ``[timer]``, ``[documents]``, ``[questions]`` and ``[logging]``
    tables are accepted, each limited to the keys the template documents.
    Value types are checked later, once every layer has been applied.
    """

    try:
        with path.open("rb") as handle:
            document = tomllib.load(handle)
    except FileNotFoundError as exc:
        raise SettingsError(f"Config file not found: {path}") from exc
    except tomllib.TOMLDecodeError as exc:
        raise SettingsError(f"Failed to parse {path}: {exc}") from exc
    except OSError as exc:
        raise SettingsError(f"Cannot read config {path}: {exc}") from exc

    sections: Dict[str, Dict[str, Any]] = {}
    for section, values in document.items():
        known = _DEFAULTS.get(section)
        if known is None:
            raise SettingsError(f"Unknown configuration section [{section}].")
        if not isinstance(values, dict):
            raise SettingsError(
                f"'{section}' must be a table, found {type(values).__name__}."
            )
        unknown = sorted(set(values) - set(known))
        if unknown:
            raise SettingsError(
                f"Unknown configuration key '{section}.{unknown[0]}'."
            )
        sections[section] = dict(values)
    return sections


def write_default_config(path: Path, *, overwrite: bool = False) -> Path:
    """Write the commented template, leaving an existing file alone."""

    path = path.expanduser()
    if path.exists() and not overwrite:
        raise SettingsError(f"Config already exists: {path}")
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(CONFIG_TEMPLATE, encoding="utf-8")
    path.chmod(0o600)
    return path


def _question_settings(section: MutableMapping[str, Any]) -> QuestionSettings:
    values = {
        key: _require_positive_int(section[key], f"questions.{key}")
        for key in (
            "max_questions",
            "max_cached_questions",
            "min_keyword_length",
            "max_keywords",
            "min_keyword_frequency",
        )
    }
    return QuestionSettings(**values)


def _resolve_config_path(
    *, config_path: Optional[Path], env_map: Mapping[str, str], default_path: Path
) -> Path:
    if config_path is not None:
        return config_path.expanduser()
    env_candidate = (env_map.get(CONFIG_ENV) or "").strip()
    if env_candidate:
        return Path(env_candidate).expanduser()
    return default_path


def _resolve_paths(value: Any, *, base: Path) -> tuple[Path, ...]:
    resolved = []
    for item in _require_str_list(value, "documents.paths"):
        candidate = Path(item).expanduser()
        if not candidate.is_absolute():
            candidate = base / candidate
        resolved.append(candidate)
    return tuple(resolved)


def _require_str_list(value: Any, field: str) -> list[str]:
    if not isinstance(value, (list, tuple)):
        raise SettingsError(f"'{field}' must be a list of strings.")
    items = []
    for item in value:
        if isinstance(item, Path):
            item = str(item)
        if not isinstance(item, str):
            raise SettingsError(f"'{field}' must be a list of strings.")
        items.append(item)
    return items


def _require_positive_int(value: Any, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise SettingsError(f"'{field}' must be a positive integer.")
    return value


def _require_bool(value: Any, field: str) -> bool:
    if not isinstance(value, bool):
        raise SettingsError(f"'{field}' must be a boolean.")
    return value


def _validate_log_level(value: Any) -> str:
    if not isinstance(value, str) or value.strip().upper() not in _LOG_LEVELS:
        raise SettingsError(
            "logging.level must be one of " + ", ".join(_LOG_LEVELS) + "."
        )
    return value.strip().upper()


def _parse_env_string(env_map: Mapping[str, str], key: str) -> Optional[str]:
    raw = env_map.get(f"{ENV_PREFIX}{key}")
    if raw is None:
        return None
    return raw.strip() or None


def _parse_env_int(env_map: Mapping[str, str], key: str) -> Optional[int]:
    raw = _parse_env_string(env_map, key)
    if raw is None:
        return None
    try:
        return int(raw)
    except ValueError as exc:
        raise SettingsError(
            f"{ENV_PREFIX}{key} must be an integer, got {raw!r}."
        ) from exc


def _pick_first(*candidates: Any) -> Any:
    for candidate in candidates:
        if candidate is not None:
            return candidate
    return None
