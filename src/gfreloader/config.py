"""Configuration loader for gf-provisioning-reloader.

This module centralises the logic for reading configuration values from
multiple sources, lowest precedence first:

1. Built-in defaults.
2. ``/etc/gf-provisioning-reloader/config.yml`` (or an override path).
3. The Grafana container environment (``GF_SERVER_DOMAIN``,
   ``GF_PATHS_PROVISIONING`` and friends) so the reloader can run as a
   drop-in sidecar next to Grafana.
4. Environment variables prefixed with ``GFRELOADER_``.
5. Explicit overrides supplied programmatically (reserved for CLI flags).

Prefixed environment keys use double underscores to express nesting, e.g.::

    export GFRELOADER_GRAFANA__PORT=3001
    export GFRELOADER_DEBOUNCE_WINDOW=1.5

Values are coerced via PyYAML's ``safe_load`` so that booleans and numbers are
parsed naturally; credentials are always kept verbatim. The resulting
configuration is exposed as immutable ``dataclasses`` which are constructed
once at startup and handed to each component explicitly.
"""
from __future__ import annotations

import os
import socket
from collections.abc import Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import cast

try:  # PyYAML is a runtime dependency (declared in pyproject.toml).
    import yaml
except Exception as exc:  # pragma: no cover - import failure covered in tests
    raise RuntimeError(
        "PyYAML is required to load reloader configuration. Install with "
        "`pip install gf-provisioning-reloader` or ensure PyYAML>=6.0 is available."
    ) from exc

from .classifier import CATEGORY_CATALOGUE
from .identity.credential import derive_node_id

ENV_PREFIX = "GFRELOADER_"
CONFIG_ENV_VAR = f"{ENV_PREFIX}CONFIG_FILE"
RESERVED_ENV_KEYS = {CONFIG_ENV_VAR}

# Variables understood by the Grafana image itself, mapped onto config keys.
GRAFANA_ENV_KEYS: dict[str, tuple[str, ...]] = {
    "GF_SERVER_PROTOCOL": ("grafana", "protocol"),
    "GF_SERVER_DOMAIN": ("grafana", "domain"),
    "GF_SERVER_HTTP_PORT": ("grafana", "port"),
    "GF_SECURITY_ADMIN_USER": ("grafana", "admin_user"),
    "GF_SECURITY_ADMIN_PASSWORD": ("grafana", "admin_password"),
    "GF_PATHS_PROVISIONING": ("provisioning_dir",),
    "GRAFANA_PROVISIONING_CONFIG_RELOADER_NODE_ID": ("node_id",),
    "GRAFANA_PROVISIONING_CONFIG_RELOADER_DATA_DIR": ("data_dir",),
}

# Never run through YAML coercion: "0123" must stay a password, not an octal.
VERBATIM_KEYS = {
    ("grafana", "admin_user"),
    ("grafana", "admin_password"),
    ("node_id",),
}

SERVICE_ACCOUNT_FILENAME = "serviceaccount.json"


class ConfigError(RuntimeError):
    """Raised when configuration parsing fails."""


@dataclass(frozen=True)
class GrafanaConfig:
    """Connection settings for the Grafana HTTP API."""

    protocol: str = "http"
    domain: str = "localhost"
    port: int = 3000
    admin_user: str = "grafana"
    admin_password: str = "grafana"
    timeout: float = 30.0

    @property
    def root_url(self) -> str:
        """Return the server root URL, e.g. ``http://localhost:3000``."""
        return f"{self.protocol}://{self.domain}:{self.port}"

    @property
    def api_url(self) -> str:
        """Return the base URL of the HTTP API."""
        return f"{self.root_url}/api/"

    def to_dict(self) -> dict[str, object]:
        """Return a serialisable representation with the password redacted."""
        return {
            "protocol": self.protocol,
            "domain": self.domain,
            "port": self.port,
            "admin_user": self.admin_user,
            "admin_password": "********",
            "timeout": self.timeout,
        }


@dataclass(frozen=True)
class AppConfig:
    """Resolved configuration values for the reloader."""

    config_file: Path
    provisioning_dir: Path
    data_dir: Path
    service_account_file: Path
    node_id: str
    debounce_window: float
    initial_reload: bool
    categories: tuple[str, ...]
    log_level: str
    grafana: GrafanaConfig

    def to_dict(self) -> dict[str, object]:
        """Return a JSON-serialisable representation of the config."""
        return {
            "config_file": str(self.config_file),
            "provisioning_dir": str(self.provisioning_dir),
            "data_dir": str(self.data_dir),
            "service_account_file": str(self.service_account_file),
            "node_id": self.node_id,
            "debounce_window": self.debounce_window,
            "initial_reload": self.initial_reload,
            "categories": list(self.categories),
            "log_level": self.log_level,
            "grafana": self.grafana.to_dict(),
        }


DEFAULTS: dict[str, object] = {
    "config_file": "/etc/gf-provisioning-reloader/config.yml",
    "provisioning_dir": "/etc/grafana/provisioning",
    "data_dir": "/data",
    "service_account_file": None,  # derived from data_dir when absent
    "node_id": None,  # derived from the hostname when absent
    "debounce_window": 0.5,
    "initial_reload": True,
    "categories": ["dashboards", "datasources"],
    "log_level": "INFO",
    "grafana": {
        "protocol": "http",
        "domain": "localhost",
        "port": 3000,
        "admin_user": "grafana",
        "admin_password": "grafana",
        "timeout": 30.0,
    },
}

ALLOWED_TOP_LEVEL_KEYS = set(DEFAULTS.keys())
ALLOWED_GRAFANA_KEYS = set(cast(Mapping[str, object], DEFAULTS["grafana"]).keys())
ALLOWED_PROTOCOLS = {"http", "https"}
ALLOWED_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def load_config(
    config_file: str | os.PathLike[str] | None = None,
    *,
    env: Mapping[str, str] | None = None,
    overrides: Mapping[str, object] | None = None,
    hostname: str | None = None,
) -> AppConfig:
    """Load and merge configuration sources into an :class:`AppConfig`."""
    merged: dict[str, object] = _deep_copy(DEFAULTS)
    resolved_env = dict(os.environ if env is None else env)

    config_default = _expect_str(merged["config_file"], "config_file")
    config_path = _determine_config_path(config_default, config_file, resolved_env)

    file_values = _load_yaml_file(config_path)
    if file_values:
        _deep_merge(merged, file_values)

    grafana_values = _build_grafana_env_overrides(resolved_env)
    if grafana_values:
        _deep_merge(merged, grafana_values)

    env_values = _build_env_overrides(resolved_env)
    if env_values:
        _deep_merge(merged, env_values)

    if overrides:
        _deep_merge(merged, dict(overrides))

    merged["config_file"] = str(config_path)

    _validate_structure(merged)

    return _build_app_config(merged, hostname=hostname)


def _determine_config_path(
    default_path: str,
    cli_override: str | os.PathLike[str] | None,
    env: Mapping[str, str],
) -> Path:
    if cli_override:
        return Path(cli_override)
    if CONFIG_ENV_VAR in env:
        return Path(env[CONFIG_ENV_VAR])
    return Path(default_path)


def _load_yaml_file(path: Path) -> dict[str, object]:
    if not path.exists():
        return {}
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except yaml.YAMLError as exc:  # pragma: no cover - PyYAML owns detailed error
        raise ConfigError(f"Failed to parse config file {path}: {exc}") from exc
    if not isinstance(data, Mapping):
        raise ConfigError(f"Config file {path} must contain a mapping at the top level.")
    return _as_dict(data, f"file:{path}")


def _validate_structure(raw: Mapping[str, object]) -> None:
    unknown_keys = set(raw.keys()) - ALLOWED_TOP_LEVEL_KEYS
    if unknown_keys:
        joined = ", ".join(sorted(unknown_keys))
        raise ConfigError(f"Unknown configuration keys: {joined}.")

    grafana = raw.get("grafana")
    if grafana is not None:
        grafana_map = _as_dict(grafana, "grafana")
        unknown = set(grafana_map.keys()) - ALLOWED_GRAFANA_KEYS
        if unknown:
            joined = ", ".join(sorted(unknown))
            raise ConfigError(f"Unknown grafana configuration keys: {joined}.")
        protocol = grafana_map.get("protocol")
        if protocol is not None and str(protocol).lower() not in ALLOWED_PROTOCOLS:
            allowed = ", ".join(sorted(ALLOWED_PROTOCOLS))
            raise ConfigError(f"Unsupported grafana protocol '{protocol}'. Allowed: {allowed}.")

    log_level = raw.get("log_level")
    if log_level is not None and str(log_level).upper() not in ALLOWED_LOG_LEVELS:
        allowed = ", ".join(sorted(ALLOWED_LOG_LEVELS))
        raise ConfigError(f"Unsupported log_level '{log_level}'. Allowed: {allowed}.")


def _build_app_config(raw: Mapping[str, object], *, hostname: str | None) -> AppConfig:
    config_file = _to_path(raw.get("config_file"))
    provisioning_dir = _to_path(raw.get("provisioning_dir"))
    data_dir = _to_path(raw.get("data_dir"))

    account_file_value = raw.get("service_account_file")
    service_account_file = (
        _to_path(account_file_value)
        if account_file_value
        else data_dir / SERVICE_ACCOUNT_FILENAME
    )

    node_id_value = raw.get("node_id")
    if node_id_value is None or str(node_id_value).strip() == "":
        node_id = derive_node_id(hostname if hostname is not None else socket.gethostname())
    else:
        node_id = str(node_id_value).strip()

    debounce_window = _expect_positive_float(
        raw.get("debounce_window"), "debounce_window", default=0.5
    )
    initial_reload = _expect_bool(raw.get("initial_reload"), "initial_reload", default=True)
    categories = _build_categories(raw.get("categories"))

    grafana_mapping = _as_dict(raw.get("grafana"), "grafana")
    port = _expect_int(grafana_mapping.get("port"), "grafana.port", default=3000)
    if not 0 < port < 65536:
        raise ConfigError(f"grafana.port must be between 1 and 65535. Got {port}.")
    grafana = GrafanaConfig(
        protocol=str(grafana_mapping.get("protocol", "http")).lower(),
        domain=str(grafana_mapping.get("domain", "localhost")),
        port=port,
        admin_user=str(grafana_mapping.get("admin_user", "grafana")),
        admin_password=str(grafana_mapping.get("admin_password", "grafana")),
        timeout=_expect_positive_float(
            grafana_mapping.get("timeout"), "grafana.timeout", default=30.0
        ),
    )

    return AppConfig(
        config_file=config_file,
        provisioning_dir=provisioning_dir,
        data_dir=data_dir,
        service_account_file=service_account_file,
        node_id=node_id,
        debounce_window=debounce_window,
        initial_reload=initial_reload,
        categories=categories,
        log_level=str(raw.get("log_level", "INFO")).upper(),
        grafana=grafana,
    )


def _build_categories(value: object) -> tuple[str, ...]:
    if value is None:
        names: list[str] = ["dashboards", "datasources"]
    elif isinstance(value, str):
        names = [item.strip() for item in value.split(",") if item.strip()]
    else:
        names = [str(item).strip() for item in _as_sequence(value, "categories")]

    if not names:
        raise ConfigError("At least one reload category must be enabled.")

    unknown = [name for name in names if name not in CATEGORY_CATALOGUE]
    if unknown:
        allowed = ", ".join(sorted(CATEGORY_CATALOGUE))
        raise ConfigError(
            f"Unknown reload categories: {', '.join(unknown)}. Allowed: {allowed}."
        )
    return tuple(dict.fromkeys(names))


def _build_grafana_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, path in GRAFANA_ENV_KEYS.items():
        value = env.get(key)
        if value is None or value == "":
            continue
        _assign_nested(overrides, list(path), value)
    return overrides


def _build_env_overrides(env: Mapping[str, str]) -> dict[str, object]:
    overrides: dict[str, object] = {}
    for key, value in env.items():
        if key in RESERVED_ENV_KEYS:
            continue
        if not key.startswith(ENV_PREFIX):
            continue
        suffix = key[len(ENV_PREFIX) :]
        path_segments = [segment.lower() for segment in suffix.split("__") if segment]
        if not path_segments:
            continue
        if tuple(path_segments) in VERBATIM_KEYS:
            _assign_nested(overrides, path_segments, value)
        else:
            _assign_nested(overrides, path_segments, _coerce_value(value))
    return overrides


def _assign_nested(tree: MutableMapping[str, object], path: list[str], value: object) -> None:
    current: MutableMapping[str, object] = tree
    for segment in path[:-1]:
        existing = current.get(segment)
        if existing is None:
            new_child: MutableMapping[str, object] = {}
            current[segment] = new_child
            current = new_child
            continue
        if isinstance(existing, MutableMapping):
            current = cast(MutableMapping[str, object], existing)
            continue
        raise ConfigError(
            "Environment overrides conflict with existing scalar value at "
            f"{'.'.join(path)}"
        )
    current[path[-1]] = value


def _deep_merge(target: MutableMapping[str, object], overrides: Mapping[str, object]) -> None:
    for key, value in overrides.items():
        existing = target.get(key)
        if isinstance(existing, MutableMapping) and isinstance(value, Mapping):
            _deep_merge(existing, _as_dict(value, f"merge.{key}"))
            continue
        target[key] = value


def _deep_copy(source: Mapping[str, object]) -> dict[str, object]:
    result: dict[str, object] = {}
    for key, value in source.items():
        if isinstance(value, Mapping):
            result[key] = _deep_copy(_as_dict(value, f"copy.{key}"))
        elif isinstance(value, list):
            result[key] = list(value)
        else:
            result[key] = value
    return result


def _as_sequence(value: object, label: str) -> Sequence[object]:
    if isinstance(value, (str, bytes)):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    if not isinstance(value, Sequence):
        raise ConfigError(f"Expected {label} to be a sequence. Got {type(value).__name__}.")
    return value


def _coerce_value(raw: str) -> object:
    raw = raw.strip()
    try:
        parsed = yaml.safe_load(raw)
    except yaml.YAMLError:  # pragma: no cover - treat as string if parsing fails
        return raw
    return parsed


def _to_path(value: object) -> Path:
    if value is None:
        raise ConfigError("Expected a filesystem path, received None.")
    if isinstance(value, Path):
        return value.expanduser()
    if isinstance(value, str):
        return Path(value).expanduser()
    raise ConfigError(f"Cannot convert value {value!r} to Path.")


def _expect_int(value: object | None, label: str, *, default: int) -> int:
    if value is None:
        return default
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be an integer. Got boolean {value!r}.")
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        try:
            return int(value, 10)
        except ValueError as exc:
            raise ConfigError(f"Invalid integer for {label}: {value!r}.") from exc
    raise ConfigError(f"Expected {label} to be an integer. Got {type(value).__name__}.")


def _expect_bool(value: object | None, label: str, *, default: bool) -> bool:
    if value is None:
        return default
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        text = value.strip().lower()
        if text in {"1", "true", "yes", "on"}:
            return True
        if text in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"Expected {label} to be a boolean. Got {value!r}.")


def _expect_str(value: object, key: str) -> str:
    if isinstance(value, str):
        return value
    raise ConfigError(f"Expected {key} to resolve to a string. Got {value!r}.")


def _expect_positive_float(
    value: object | None,
    label: str,
    *,
    default: float,
) -> float:
    if value is None:
        return float(default)
    if isinstance(value, bool):
        raise ConfigError(f"Expected {label} to be a number. Got boolean {value!r}.")
    if isinstance(value, (int, float)):
        numeric = float(value)
    elif isinstance(value, str):
        try:
            numeric = float(value)
        except ValueError as exc:
            raise ConfigError(f"Invalid number for {label}: {value!r}.") from exc
    else:
        raise ConfigError(
            f"Expected {label} to be numeric. Got {type(value).__name__}."
        )
    if numeric <= 0:
        raise ConfigError(f"{label} must be greater than zero. Got {numeric}.")
    return numeric


def _as_dict(value: object | None, label: str) -> dict[str, object]:
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise ConfigError(f"Expected {label} to be a mapping. Got {type(value).__name__}.")
    result: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise ConfigError(f"Mapping {label} must use string keys. Got {key!r}.")
        result[key] = item
    return result


__all__ = [
    "AppConfig",
    "ConfigError",
    "GrafanaConfig",
    "load_config",
]
