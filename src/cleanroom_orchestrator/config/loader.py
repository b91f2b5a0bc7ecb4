"""
cleanroom-orchestrator: layered runtime config loading.

File: src/cleanroom_orchestrator/config/loader.py

Layers, lowest to highest precedence:
- built-in defaults (``config.schema.DEFAULT_CONFIG``);
- ``cleanroom.toml`` (or the file passed explicitly);
- ``CLEANROOM_<SECTION>_<KEY>`` environment variables;
- dotted CLI overrides such as ``{"context.max_bytes": 2048}``.

Environment values are parsed according to the type of the built-in default
for the same key. Path fields are resolved against the config file directory.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from cleanroom_orchestrator.config.schema import (
    OPTIONAL_FIELDS,
    PATH_FIELDS,
    OrchestratorSettings,
    assert_valid_config,
    default_config,
    merge_config,
)

DEFAULT_CONFIG_FILE: Final[str] = "cleanroom.toml"
ENV_PREFIX: Final[str] = "CLEANROOM_"

KeyPath = tuple[str, ...]
EnvParser = Callable[[str], object]


class ConfigLoadError(ValueError):
    """Raised when config cannot be loaded or overrides cannot be coerced."""


def _parse_bool(raw: str) -> bool:
    lowered = raw.lower()
    if lowered in {"1", "true", "t", "yes", "y", "on"}:
        return True
    if lowered in {"0", "false", "f", "no", "n", "off"}:
        return False
    raise ValueError(raw)


def _parse_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


# Keyed by the exact type of the default value.
_ENV_PARSERS: Final[dict[type, tuple[EnvParser, str]]] = {
    bool: (_parse_bool, "a boolean (true/false/1/0/yes/no/on/off)"),
    int: (int, "an integer"),
    float: (float, "a number"),
    str: (str, "a string"),
    list: (_parse_list, "a comma-separated list"),
}
_OPTIONAL_TYPES: Final[dict[str, type]] = {"str": str, "int": int, "float": float, "bool": bool}


def load_config(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """
    Return the validated effective config as a plain mapping.

    An explicit ``config_path`` must exist; the implicit ``./cleanroom.toml``
    is optional. File values are validated before env and CLI layers are
    applied so a typo in the file is reported against the file.
    """

    source = (
        Path.cwd() / DEFAULT_CONFIG_FILE
        if config_path is None
        else Path(config_path).expanduser()
    ).resolve()
    env = os.environ if environ is None else environ

    effective = assert_valid_config(
        merge_config(default_config(), _read_toml(source, required=config_path is not None))
    )
    for overlay in (_env_layer(env), _cli_layer(cli_overrides or {})):
        effective = merge_config(effective, overlay)
    effective = assert_valid_config(effective)

    return normalize_paths(effective, base_dir=source.parent)


def load_settings(
    config_path: str | Path | None = None,
    *,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> OrchestratorSettings:
    """Load config and return the typed settings view."""

    return OrchestratorSettings.from_config(
        load_config(config_path, cli_overrides=cli_overrides, environ=environ)
    )


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve configured path fields relative to ``base_dir``; unset fields stay unset."""

    resolved: dict[str, Any] = merge_config({}, config)
    for key_path in PATH_FIELDS:
        raw = _lookup(resolved, key_path)
        if not isinstance(raw, str):
            continue
        candidate = Path(os.path.expandvars(raw)).expanduser()
        if not candidate.is_absolute():
            candidate = base_dir / candidate
        resolved = merge_config(
            resolved, _nest(key_path, Path(os.path.normpath(candidate)).as_posix())
        )
    return resolved


def dump_effective_config(config: Mapping[str, object]) -> str:
    """Return deterministic JSON dump of the effective config."""

    return json.dumps(config, sort_keys=True, indent=2, ensure_ascii=False)


def env_var_name(key_path: KeyPath) -> str:
    return ENV_PREFIX + "_".join(part.upper() for part in key_path)


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.exists():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


def _env_layer(environ: Mapping[str, str]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for name, (key_path, value_type) in sorted(_env_bindings().items()):
        raw = environ.get(name)
        if raw is None:
            continue
        parser, expected = _ENV_PARSERS[value_type]
        try:
            value = parser(raw.strip())
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {'.'.join(key_path)} must be {expected}") from exc
        layer = merge_config(layer, _nest(key_path, value))
    return layer


def _env_bindings() -> dict[str, tuple[KeyPath, type]]:
    """Env var name -> (config key path, type of its default)."""

    bindings = {
        env_var_name(key_path): (key_path, type(value))
        for key_path, value in _leaves(default_config())
        if type(value) in _ENV_PARSERS
    }
    for key_path, kind in OPTIONAL_FIELDS.items():
        bindings.setdefault(env_var_name(key_path), (key_path, _OPTIONAL_TYPES[kind]))
    return bindings


def _cli_layer(cli_overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted, value in sorted(cli_overrides.items()):
        if value is None:
            continue
        key_path = tuple(part for part in dotted.split(".") if part)
        if not key_path:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        layer = merge_config(layer, _nest(key_path, value))
    return layer


def _leaves(
    payload: Mapping[str, object], prefix: KeyPath = ()
) -> Iterator[tuple[KeyPath, object]]:
    for key, value in payload.items():
        if isinstance(value, Mapping):
            yield from _leaves(value, (*prefix, key))
        else:
            yield (*prefix, key), value


def _lookup(payload: Mapping[str, object], key_path: KeyPath) -> object | None:
    node: object = payload
    for key in key_path:
        if not isinstance(node, Mapping):
            return None
        node = node.get(key)
    return node


def _nest(key_path: KeyPath, value: object) -> dict[str, Any]:
    nested: dict[str, Any] = {key_path[-1]: value}
    for key in reversed(key_path[:-1]):
        nested = {key: nested}
    return nested


__all__ = [
    "ConfigLoadError",
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "dump_effective_config",
    "env_var_name",
    "load_config",
    "load_settings",
    "normalize_paths",
]
