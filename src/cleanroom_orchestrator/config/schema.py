"""
cleanroom-orchestrator: configuration schema and validation.

File: src/cleanroom_orchestrator/config/schema.py

Purpose
- Define authoritative configuration defaults and strict validation rules.
- Build the frozen ``OrchestratorSettings`` view that components consume.

Functional requirements
- Validate config payloads and return structured errors (field path + message).
- Reject unknown sections and fields so typos never silently fall back to defaults.

Non-functional requirements
- Keep rules deterministic and easy to audit.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Final, Literal, TypedDict, cast

from cleanroom_orchestrator.constants import (
    CONFIG_SCHEMA_VERSION,
    DEFAULT_CONTEXT_MAX_BYTES,
    DEFAULT_FULL_FILE_LINE_LIMIT,
    OUTPUT_DIR,
    SPECS_DIR,
    WORKSPACES_DIR,
)
from cleanroom_orchestrator.domain.models import ModelRoute, RebaseThresholds
from cleanroom_orchestrator.utils.retry import BackoffConfig

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION
MODEL_ROUTE_NAMES: Final[tuple[str, ...]] = (
    "planning",
    "implementation",
    "review",
    "documentation",
    "rebase",
)
LOG_LEVELS: Final[tuple[str, ...]] = ("DEBUG", "INFO", "WARNING", "ERROR")

# Config paths that should be normalized relative to config file location.
PATH_FIELDS: Final[tuple[tuple[str, ...], ...]] = (
    ("paths", "output_dir"),
    ("paths", "workspace_dir"),
    ("paths", "specs_dir"),
    ("observability", "log_dir"),
)

# Optional fields whose default is ``None``; env overrides still need a type.
OPTIONAL_FIELDS: Final[dict[tuple[str, ...], Literal["str", "int", "float", "bool"]]] = {
    ("git", "trunk_branch"): "str",
    ("observability", "log_dir"): "str",
}


class MetaConfig(TypedDict):
    schema_version: int


class ContextConfig(TypedDict):
    max_bytes: int
    full_file_line_limit: int
    planning_keywords: list[str]


class TimeoutsConfig(TypedDict):
    planning_seconds: float
    implementation_seconds: float
    poll_interval_seconds: float
    deletion_check_delay_seconds: float


class ConcurrencyConfig(TypedDict):
    max_workers: int


class DriftConfig(TypedDict):
    max_growth: float


class RebaseConfig(TypedDict):
    max_attempts: int
    max_context_size: int
    max_duration_seconds: float
    max_commits: int


class RetryConfig(TypedDict):
    max_retries: int
    initial_delay_seconds: float
    multiplier: float
    max_delay_seconds: float


class PathsConfig(TypedDict):
    output_dir: str
    workspace_dir: str
    specs_dir: str


class GitConfig(TypedDict):
    trunk_branch: str | None


class ModelRouteConfig(TypedDict):
    provider: str
    model: str
    cost_per_token: float


class ObservabilityConfig(TypedDict):
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    log_dir: str | None


class OrchestratorConfig(TypedDict):
    meta: MetaConfig
    context: ContextConfig
    timeouts: TimeoutsConfig
    concurrency: ConcurrencyConfig
    drift: DriftConfig
    rebase: RebaseConfig
    retry: RetryConfig
    paths: PathsConfig
    git: GitConfig
    models: dict[str, ModelRouteConfig]
    observability: ObservabilityConfig


DEFAULT_PLANNING_KEYWORDS: Final[tuple[str, ...]] = (
    "TODO:",
    "FIXME:",
    "NOTE:",
    "CONSIDER:",
    "EXPLORE:",
    "OPTION:",
    "ALTERNATIVE:",
    "BRAINSTORM:",
    "IDEA:",
    "MAYBE:",
)

DEFAULT_CONFIG: Final[OrchestratorConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "context": {
        "max_bytes": DEFAULT_CONTEXT_MAX_BYTES,
        "full_file_line_limit": DEFAULT_FULL_FILE_LINE_LIMIT,
        "planning_keywords": list(DEFAULT_PLANNING_KEYWORDS),
    },
    "timeouts": {
        "planning_seconds": 600.0,
        "implementation_seconds": 1800.0,
        "poll_interval_seconds": 2.0,
        "deletion_check_delay_seconds": 0.5,
    },
    "concurrency": {
        "max_workers": 3,
    },
    "drift": {
        "max_growth": 0.5,
    },
    "rebase": {
        "max_attempts": 3,
        "max_context_size": 2500,
        "max_duration_seconds": 1200.0,
        "max_commits": 10,
    },
    "retry": {
        "max_retries": 3,
        "initial_delay_seconds": 1.0,
        "multiplier": 2.0,
        "max_delay_seconds": 30.0,
    },
    "paths": {
        "output_dir": OUTPUT_DIR.as_posix(),
        "workspace_dir": WORKSPACES_DIR.as_posix(),
        "specs_dir": SPECS_DIR.as_posix(),
    },
    "git": {
        "trunk_branch": None,
    },
    "models": {
        "planning": {"provider": "google", "model": "gemini-2.0-flash-exp", "cost_per_token": 0.0},
        "implementation": {"provider": "openai", "model": "gpt-4", "cost_per_token": 0.00003},
        "review": {"provider": "openai", "model": "gpt-4", "cost_per_token": 0.00003},
        "documentation": {
            "provider": "google",
            "model": "gemini-2.0-flash-exp",
            "cost_per_token": 0.0,
        },
        "rebase": {"provider": "openai", "model": "gpt-4", "cost_per_token": 0.00003},
    },
    "observability": {
        "log_level": "INFO",
        "log_dir": None,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_items",)

    def __init__(self) -> None:
        self._items: list[ConfigValidationIssue] = []

    def add(self, path: str, message: str) -> None:
        self._items.append(ConfigValidationIssue(path=path, message=message))

    def items(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._items)


_FieldValidator = Callable[[object, str, _IssueCollector], object | None]


def default_config() -> OrchestratorConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deterministically deep-merge ``overlay`` onto ``base``."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(config: Mapping[str, object] | object) -> tuple[ConfigValidationIssue, ...]:
    """Return every validation issue found in ``config`` (empty when valid)."""

    issues = _IssueCollector()
    root = _as_object(config, "<root>", issues)
    if root is None:
        return issues.items()

    _reject_unknown_keys(root, set(_SECTIONS) | {"models"}, "", issues)
    for section_name in sorted(_SECTIONS):
        raw = root.get(section_name)
        if raw is None:
            issues.add(section_name, "missing required section")
            continue
        section = _as_object(raw, section_name, issues)
        if section is None:
            continue
        fields = _SECTIONS[section_name]
        _reject_unknown_keys(section, set(fields), section_name, issues)
        for key in sorted(fields):
            key_path = _join(section_name, key)
            if key not in section:
                issues.add(key_path, "missing required field")
                continue
            fields[key](section[key], key_path, issues)

    _validate_models(root.get("models"), issues)
    _validate_cross_fields(root, issues)
    return issues.items()


def assert_valid_config(config: Mapping[str, object] | object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    issues = validate_config(config)
    if issues:
        raise ConfigValidationError(issues)
    return _deep_copy_mapping(cast("Mapping[str, object]", config))


@dataclass(frozen=True, slots=True)
class OrchestratorSettings:
    """Typed, immutable view of a validated configuration mapping."""

    context_max_bytes: int = DEFAULT_CONTEXT_MAX_BYTES
    full_file_line_limit: int = DEFAULT_FULL_FILE_LINE_LIMIT
    planning_keywords: tuple[str, ...] = DEFAULT_PLANNING_KEYWORDS
    planning_timeout_seconds: float = 600.0
    implementation_timeout_seconds: float = 1800.0
    poll_interval_seconds: float = 2.0
    deletion_check_delay_seconds: float = 0.5
    max_workers: int = 3
    drift_max_growth: float = 0.5
    rebase: RebaseThresholds = field(default_factory=RebaseThresholds)
    retry: BackoffConfig = field(default_factory=BackoffConfig)
    output_dir: str = OUTPUT_DIR.as_posix()
    workspace_dir: str = WORKSPACES_DIR.as_posix()
    specs_dir: str = SPECS_DIR.as_posix()
    trunk_branch: str | None = None
    models: Mapping[str, ModelRoute] = field(
        default_factory=lambda: _model_routes(DEFAULT_CONFIG["models"])
    )
    log_level: str = "INFO"
    log_dir: str | None = None

    @classmethod
    def from_config(cls, config: Mapping[str, Any]) -> OrchestratorSettings:
        validated = assert_valid_config(config)
        context = validated["context"]
        timeouts = validated["timeouts"]
        rebase = validated["rebase"]
        retry = validated["retry"]
        paths = validated["paths"]
        observability = validated["observability"]
        return cls(
            context_max_bytes=context["max_bytes"],
            full_file_line_limit=context["full_file_line_limit"],
            planning_keywords=tuple(context["planning_keywords"]),
            planning_timeout_seconds=float(timeouts["planning_seconds"]),
            implementation_timeout_seconds=float(timeouts["implementation_seconds"]),
            poll_interval_seconds=float(timeouts["poll_interval_seconds"]),
            deletion_check_delay_seconds=float(timeouts["deletion_check_delay_seconds"]),
            max_workers=validated["concurrency"]["max_workers"],
            drift_max_growth=float(validated["drift"]["max_growth"]),
            rebase=RebaseThresholds(
                max_attempts=rebase["max_attempts"],
                max_context_size=rebase["max_context_size"],
                max_duration_seconds=float(rebase["max_duration_seconds"]),
                max_commits=rebase["max_commits"],
            ),
            retry=BackoffConfig(
                max_retries=retry["max_retries"],
                initial_delay_seconds=float(retry["initial_delay_seconds"]),
                multiplier=float(retry["multiplier"]),
                max_delay_seconds=float(retry["max_delay_seconds"]),
            ),
            output_dir=paths["output_dir"],
            workspace_dir=paths["workspace_dir"],
            specs_dir=paths["specs_dir"],
            trunk_branch=validated["git"]["trunk_branch"],
            models=_model_routes(validated["models"]),
            log_level=observability["log_level"],
            log_dir=observability["log_dir"],
        )

    def model_for(self, route: str) -> ModelRoute:
        try:
            return self.models[route]
        except KeyError as exc:
            raise KeyError(f"no model route configured for {route!r}") from exc


def _model_routes(raw: Mapping[str, Any]) -> dict[str, ModelRoute]:
    return {
        name: ModelRoute(
            provider=str(raw[name]["provider"]),
            model=str(raw[name]["model"]),
            cost_per_token=float(raw[name].get("cost_per_token", 0.0)),
        )
        for name in sorted(raw)
    }


def _validate_models(raw: object, issues: _IssueCollector) -> None:
    if raw is None:
        issues.add("models", "missing required section")
        return
    models = _as_object(raw, "models", issues)
    if models is None:
        return
    _reject_unknown_keys(models, set(MODEL_ROUTE_NAMES), "models", issues)
    for name in MODEL_ROUTE_NAMES:
        route_path = _join("models", name)
        if name not in models:
            issues.add(route_path, "missing required field")
            continue
        route = _as_object(models[name], route_path, issues)
        if route is None:
            continue
        _reject_unknown_keys(route, {"provider", "model", "cost_per_token"}, route_path, issues)
        for key in ("provider", "model"):
            if key not in route:
                issues.add(_join(route_path, key), "missing required field")
            else:
                _as_str(route[key], _join(route_path, key), issues)
        if "cost_per_token" in route:
            cost_path = _join(route_path, "cost_per_token")
            _as_float(route["cost_per_token"], cost_path, issues, minimum=0)


def _validate_cross_fields(root: Mapping[str, object], issues: _IssueCollector) -> None:
    retry = root.get("retry")
    if isinstance(retry, Mapping):
        initial = retry.get("initial_delay_seconds")
        maximum = retry.get("max_delay_seconds")
        if (
            isinstance(initial, (int, float))
            and isinstance(maximum, (int, float))
            and initial > maximum
        ):
            issues.add("retry.initial_delay_seconds", "must be <= retry.max_delay_seconds")


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_optional_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if value is None:
        return None
    return _as_str(value, path, issues)


def _as_str_list(value: object, path: str, issues: _IssueCollector) -> list[str] | None:
    if not isinstance(value, (list, tuple)):
        issues.add(path, f"expected list of strings, got {type(value).__name__}")
        return None
    parsed: list[str] = []
    for index, item in enumerate(value):
        text = _as_str(item, f"{path}[{index}]", issues)
        if text is not None:
            parsed.append(text)
    return parsed


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: int | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {minimum}")
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
    exclusive_minimum: bool = False,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    parsed = float(value)
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if minimum is not None:
        if exclusive_minimum and parsed <= minimum:
            issues.add(path, f"must be > {minimum}")
            return None
        if parsed < minimum:
            issues.add(path, f"must be >= {minimum}")
            return None
    return parsed


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _int_at_least(minimum: int) -> _FieldValidator:
    return lambda value, path, issues: _as_int(value, path, issues, minimum=minimum)


def _positive_float() -> _FieldValidator:
    return lambda value, path, issues: _as_float(
        value, path, issues, minimum=0.0, exclusive_minimum=True
    )


def _non_negative_float() -> _FieldValidator:
    return lambda value, path, issues: _as_float(value, path, issues, minimum=0.0)


_SECTIONS: Final[dict[str, dict[str, _FieldValidator]]] = {
    "meta": {
        "schema_version": lambda value, path, issues: _check_schema_version(value, path, issues),
    },
    "context": {
        "max_bytes": _int_at_least(1),
        "full_file_line_limit": _int_at_least(1),
        "planning_keywords": _as_str_list,
    },
    "timeouts": {
        "planning_seconds": _positive_float(),
        "implementation_seconds": _positive_float(),
        "poll_interval_seconds": _positive_float(),
        "deletion_check_delay_seconds": _non_negative_float(),
    },
    "concurrency": {
        "max_workers": _int_at_least(1),
    },
    "drift": {
        "max_growth": _non_negative_float(),
    },
    "rebase": {
        "max_attempts": _int_at_least(1),
        "max_context_size": _int_at_least(1),
        "max_duration_seconds": _positive_float(),
        "max_commits": _int_at_least(0),
    },
    "retry": {
        "max_retries": _int_at_least(0),
        "initial_delay_seconds": _non_negative_float(),
        "multiplier": lambda value, path, issues: _as_float(value, path, issues, minimum=1.0),
        "max_delay_seconds": _non_negative_float(),
    },
    "paths": {
        "output_dir": _as_str,
        "workspace_dir": _as_str,
        "specs_dir": _as_str,
    },
    "git": {
        "trunk_branch": _as_optional_str,
    },
    "observability": {
        "log_level": lambda value, path, issues: _as_enum(
            value, path, issues, allowed_values=LOG_LEVELS
        ),
        "log_dir": _as_optional_str,
    },
}


def _check_schema_version(value: object, path: str, issues: _IssueCollector) -> int | None:
    parsed = _as_int(value, path, issues, minimum=1)
    if parsed is not None and parsed != ConfigSchemaVersion:
        issues.add(
            path,
            f"schema version {parsed} is not supported (expected {ConfigSchemaVersion})",
        )
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        existing = target.get(key)
        if isinstance(value, Mapping) and isinstance(existing, dict):
            _merge_into(existing, value)
        else:
            target[key] = _deep_copy_value(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    return {key: _deep_copy_value(value[key]) for key in sorted(value)}


def _deep_copy_value(value: object) -> Any:
    if isinstance(value, Mapping):
        return {key: _deep_copy_value(item) for key, item in value.items() if isinstance(key, str)}
    if isinstance(value, (list, tuple)):
        return [_deep_copy_value(item) for item in value]
    return copy.deepcopy(value)


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "DEFAULT_CONFIG",
    "DEFAULT_PLANNING_KEYWORDS",
    "LOG_LEVELS",
    "MODEL_ROUTE_NAMES",
    "OPTIONAL_FIELDS",
    "OrchestratorConfig",
    "OrchestratorSettings",
    "PATH_FIELDS",
    "assert_valid_config",
    "default_config",
    "merge_config",
    "validate_config",
]
