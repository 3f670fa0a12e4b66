"""Configuration loading utilities for the node observer."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import yaml # type: ignore

from .events import MessageType

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when the configuration file is missing or invalid."""


@dataclass
class ObserverConfig:
    """Options describing which ensemble to watch and how deep."""

    hosts: str
    session_timeout: float = 30.0
    connect_timeout: float = 15.0
    root_path: str = "/"
    depth: int = 3


@dataclass
class ListenerConfig:
    """Listener callback definition loaded from the configuration file."""

    name: str
    module: str
    function: str
    types: List[MessageType] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class AppConfig:
    """Top-level configuration structure."""

    observer: ObserverConfig
    listeners: List[ListenerConfig] = field(default_factory=list)


def load_config(path: Path) -> AppConfig:
    """Load and validate the YAML configuration file."""

    if not path.exists():
        raise ConfigError(f"Configuration file not found: {path}")

    try:
        data = yaml.safe_load(path.read_text())
    except yaml.YAMLError as exc:  # pragma: no cover - logging helper
        raise ConfigError(f"Failed to parse YAML configuration: {exc}") from exc

    if not isinstance(data, dict):
        raise ConfigError("Configuration root must be a mapping")

    observer_cfg = _parse_observer_config(data.get("observer"))
    listeners_cfg = _parse_listeners_config(data.get("listeners", []))

    return AppConfig(observer=observer_cfg, listeners=listeners_cfg)


def _parse_observer_config(raw: Any) -> ObserverConfig:
    if not isinstance(raw, dict):
        raise ConfigError("'observer' section must be a mapping")

    hosts = raw.get("hosts")
    if not isinstance(hosts, str) or not hosts.strip():
        raise ConfigError("observer.hosts must be a non-empty string")

    session_timeout = _parse_positive_float(raw.get("session_timeout", 30.0), "observer.session_timeout")
    connect_timeout = _parse_positive_float(raw.get("connect_timeout", 15.0), "observer.connect_timeout")

    root_path = raw.get("root_path", "/")
    if not isinstance(root_path, str) or not root_path.startswith("/"):
        raise ConfigError("observer.root_path must be an absolute node path")
    if len(root_path) > 1:
        root_path = root_path.rstrip("/")

    depth = raw.get("depth", 3)
    if isinstance(depth, bool) or not isinstance(depth, int):
        raise ConfigError("observer.depth must be an integer")
    if depth < 0:
        raise ConfigError("observer.depth must not be negative")

    return ObserverConfig(
        hosts=hosts.strip(),
        session_timeout=session_timeout,
        connect_timeout=connect_timeout,
        root_path=root_path,
        depth=depth,
    )


def _parse_listeners_config(raw: Any) -> List[ListenerConfig]:
    if raw is None:
        return []
    if not isinstance(raw, list):
        raise ConfigError("'listeners' section must be a list")

    listeners: List[ListenerConfig] = []
    for index, item in enumerate(raw):
        if not isinstance(item, dict):
            raise ConfigError(f"listeners[{index}] must be a mapping")

        name = item.get("name") or f"listener_{index}"
        module = item.get("module")
        function = item.get("function")
        options = item.get("options", {})

        if not isinstance(module, str) or not isinstance(function, str):
            raise ConfigError(f"listeners[{index}] must include 'module' and 'function' strings")
        if options is None:
            options = {}
        if not isinstance(options, dict):
            raise ConfigError(f"listeners[{index}].options must be a mapping if provided")

        types = _parse_message_types(item.get("types"), field_name=f"listeners[{index}].types")

        listener_cfg = ListenerConfig(
            name=str(name),
            module=module,
            function=function,
            types=types,
            options=options,
        )
        logger.info(
            "Loaded listener '%s' (%s.%s) types=%s",
            listener_cfg.name,
            listener_cfg.module,
            listener_cfg.function,
            ",".join(t.value for t in listener_cfg.types) or "all",
        )
        listeners.append(listener_cfg)

    return listeners


def _parse_message_types(value: Any, *, field_name: str) -> List[MessageType]:
    types: List[MessageType] = []
    for raw_type in _ensure_str_list(value, field_name):
        try:
            types.append(MessageType(raw_type.strip().lower()))
        except ValueError as exc:
            allowed = ", ".join(option.value for option in MessageType)
            raise ConfigError(f"{field_name} entries must be one of: {allowed}") from exc
    return types


def _parse_positive_float(value: Any, field_name: str) -> float:
    if isinstance(value, bool):
        raise ConfigError(f"{field_name} must be numeric")
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{field_name} must be numeric") from exc
    if number <= 0:
        raise ConfigError(f"{field_name} must be positive")
    return number


def _ensure_str_list(value: Any, field_name: str) -> List[str]:
    if value is None:
        return []
    if isinstance(value, str):
        return [value]
    if not isinstance(value, list):
        raise ConfigError(f"{field_name} must be a list of strings")
    items: List[str] = []
    for elem in value:
        if not isinstance(elem, str):
            raise ConfigError(f"{field_name} must contain only strings")
        items.append(elem)
    return items
