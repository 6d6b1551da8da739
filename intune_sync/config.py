"""Configuration loading utilities for the Intune policy sync toolkit."""
from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional

import yaml


DEFAULT_CONFIG_PATH = Path("config/settings.yaml")
ENV_CONFIG_PATH = "INTUNE_SYNC_CONFIG"
ENV_PREFIX = "INTUNE_SYNC_"
_TRUTHY = frozenset({"1", "true", "yes", "on"})


@dataclass
class GraphConfig:
    """Settings for the Microsoft Graph / Intune integration."""

    tenant_id: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    base_url: str = "https://graph.microsoft.com/beta"
    timeout: int = 30
    endpoints: Dict[str, str] = field(default_factory=dict)

    @property
    def has_credentials(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)


@dataclass
class StorageConfig:
    """Where backups and identity mapping tables are read and written."""

    backup_dir: Path = Path("data/backups")
    mapping_file: Optional[Path] = None


@dataclass
class EngineConfig:
    """Defaults for import and clone runs."""

    default_mode: str = "skip"
    max_depth: int = 256
    check_duplicates: bool = True


@dataclass
class LoggingConfig:
    level: str = "INFO"
    file: Optional[Path] = None


@dataclass
class AppConfig:
    """Every configuration section, as loaded from YAML and the environment."""

    graph: GraphConfig = field(default_factory=GraphConfig)
    storage: StorageConfig = field(default_factory=StorageConfig)
    engine: EngineConfig = field(default_factory=EngineConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)


class ConfigurationError(RuntimeError):
    """Raised when the configuration file or environment variables are invalid."""


def _load_from_file(path: Path) -> Dict[str, Any]:
    try:
        with path.open("r", encoding="utf-8") as file:
            payload = yaml.safe_load(file) or {}
    except yaml.YAMLError as exc:
        raise ConfigurationError(f"Configuration file '{path}' is not valid YAML: {exc}") from exc
    if not isinstance(payload, dict):
        raise ConfigurationError(f"Configuration file '{path}' must contain a mapping.")
    return payload


def _apply_environment_overrides(config_dict: Dict[str, Any]) -> Dict[str, Any]:
    """Overlay ``INTUNE_SYNC_GRAPH__TENANT_ID`` style variables onto the file contents."""

    overrides: Dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX) or key == ENV_CONFIG_PATH:
            continue
        path = key[len(ENV_PREFIX) :].lower().split("__")
        node = overrides
        for part in path[:-1]:
            node = node.setdefault(part, {})
        node[path[-1]] = value

    if overrides:
        config_dict = _deep_merge(config_dict, overrides)
    return config_dict


def _deep_merge(base: Dict[str, Any], overrides: Dict[str, Any]) -> Dict[str, Any]:
    result = dict(base)
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            result[key] = _deep_merge(base[key], value)
        else:
            result[key] = value
    return result


def _resolve_config_path(path: Optional[Path] = None) -> Path:
    if path is not None:
        return Path(path)
    env_path = os.environ.get(ENV_CONFIG_PATH)
    if env_path:
        return Path(env_path)
    return DEFAULT_CONFIG_PATH


def _load_config_dict(path: Optional[Path] = None) -> Dict[str, Any]:
    resolved_path = _resolve_config_path(path)
    if resolved_path.exists():
        config_dict = _load_from_file(resolved_path)
    elif path is not None:
        raise ConfigurationError(f"Configuration file '{resolved_path}' does not exist.")
    else:
        # Comparing backups needs no settings at all.
        config_dict = {}
    return _apply_environment_overrides(config_dict)


def _section(config_dict: Dict[str, Any], key: str) -> Dict[str, Any]:
    value = config_dict.get(key) or {}
    if not isinstance(value, dict):
        raise ConfigurationError(f"Configuration section '{key}' must be a mapping.")
    return value


def _optional_str(value: Any) -> Optional[str]:
    text = "" if value is None else str(value).strip()
    return text or None


def _optional_path(raw: Any) -> Optional[Path]:
    text = _optional_str(raw)
    return Path(text) if text else None


def _flag(value: Any) -> bool:
    # Environment overrides arrive as strings.
    if isinstance(value, str):
        return value.strip().lower() in _TRUTHY
    return bool(value)


def _number(value: Any) -> int:
    return value if isinstance(value, int) and not isinstance(value, bool) else int(str(value).strip())


def load_config(path: Optional[Path] = None) -> AppConfig:
    """Read settings from YAML, then apply ``INTUNE_SYNC_<SECTION>__<KEY>`` overrides."""

    config_dict = _load_config_dict(path)

    graph_section = _section(config_dict, "graph")
    default_graph = GraphConfig()
    endpoints = graph_section.get("endpoints") or {}
    if not isinstance(endpoints, dict):
        raise ConfigurationError("'graph.endpoints' must map policy types to resource paths.")
    try:
        graph_config = GraphConfig(
            tenant_id=_optional_str(graph_section.get("tenant_id")),
            client_id=_optional_str(graph_section.get("client_id")),
            client_secret=_optional_str(graph_section.get("client_secret")),
            base_url=_optional_str(graph_section.get("base_url")) or default_graph.base_url,
            timeout=_number(graph_section.get("timeout", default_graph.timeout)),
            endpoints={str(key): str(value) for key, value in endpoints.items() if value},
        )
    except ValueError as exc:
        raise ConfigurationError(f"Invalid graph configuration: {exc}.") from exc

    storage_section = _section(config_dict, "storage")
    storage_config = StorageConfig(
        backup_dir=_optional_path(storage_section.get("backup_dir")) or StorageConfig().backup_dir,
        mapping_file=_optional_path(storage_section.get("mapping_file")),
    )

    engine_section = _section(config_dict, "engine")
    default_engine = EngineConfig()
    try:
        engine_config = EngineConfig(
            default_mode=_optional_str(engine_section.get("default_mode")) or default_engine.default_mode,
            max_depth=_number(engine_section.get("max_depth", default_engine.max_depth)),
            check_duplicates=_flag(
                engine_section.get("check_duplicates", default_engine.check_duplicates)
            ),
        )
    except ValueError as exc:
        raise ConfigurationError(f"Invalid engine configuration: {exc}.") from exc

    logging_section = _section(config_dict, "logging")
    logging_config = LoggingConfig(
        level=(_optional_str(logging_section.get("level")) or LoggingConfig().level).upper(),
        file=_optional_path(logging_section.get("file")),
    )

    return AppConfig(
        graph=graph_config,
        storage=storage_config,
        engine=engine_config,
        logging=logging_config,
    )


def config_to_dict(config: AppConfig) -> Dict[str, Any]:
    """Turn an :class:`AppConfig` into plain YAML-safe values."""

    return {
        "graph": {
            "tenant_id": config.graph.tenant_id or "",
            "client_id": config.graph.client_id or "",
            "client_secret": config.graph.client_secret or "",
            "base_url": config.graph.base_url,
            "timeout": config.graph.timeout,
            "endpoints": dict(config.graph.endpoints),
        },
        "storage": {
            "backup_dir": str(config.storage.backup_dir),
            **(
                {"mapping_file": str(config.storage.mapping_file)}
                if config.storage.mapping_file
                else {}
            ),
        },
        "engine": {
            "default_mode": config.engine.default_mode,
            "max_depth": config.engine.max_depth,
            "check_duplicates": config.engine.check_duplicates,
        },
        "logging": {
            "level": config.logging.level,
            **({"file": str(config.logging.file)} if config.logging.file else {}),
        },
    }


def save_config(config: AppConfig, path: Optional[Path] = None) -> Path:
    """Write settings as YAML and return the path written."""

    target = _resolve_config_path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    payload = config_to_dict(config)
    with target.open("w", encoding="utf-8") as handle:
        yaml.safe_dump(payload, handle, sort_keys=False, indent=2)
    return target


__all__ = [
    "AppConfig",
    "ConfigurationError",
    "EngineConfig",
    "GraphConfig",
    "LoggingConfig",
    "StorageConfig",
    "config_to_dict",
    "load_config",
    "save_config",
]
