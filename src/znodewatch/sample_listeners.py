"""Example listener callbacks that can be referenced from configuration."""
from __future__ import annotations

import json
import logging
import threading
from pathlib import Path
from typing import Any, Dict

from .events import ChangeMessage, MessageType

logger = logging.getLogger(__name__)

_write_lock = threading.Lock()


def log_message(message: ChangeMessage, options: Dict[str, Any]) -> None:
    """Log every change message at the configured level."""

    level_name = str(options.get("level", "INFO")).upper()
    level = getattr(logging, level_name, logging.INFO)
    prefix = options.get("message", "Node change")
    logger.log(level, "%s: %s", prefix, _describe_message(message))


def write_json_lines(message: ChangeMessage, options: Dict[str, Any]) -> None:
    """Append each change message as one JSON document to ``options['path']``."""

    target = options.get("path")
    if not target:
        logger.error("write_json_lines requires a 'path' option")
        return

    line = json.dumps(message.to_dict(), sort_keys=True)
    with _write_lock:
        with Path(target).open("a", encoding="utf-8") as handle:
            handle.write(line + "\n")


def _describe_message(message: ChangeMessage) -> str:
    payload = message.to_dict()
    details = [f"type={payload.pop('type')}"]
    payload.pop("data", None)
    stat = payload.pop("stat", None)
    details.extend(f"{key}={value}" for key, value in payload.items())
    if message.message_type is MessageType.DATA:
        details.append(f"bytes={len(getattr(message, 'data', b''))}")
    if stat:
        details.append(f"version={stat['version']}")
        details.append(f"children={stat['num_children']}")
    return ", ".join(details)
