"""Command-line entry point for the node observer."""
from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import List, Optional

from .client import ConnectError
from .config import ConfigError, load_config
from .listeners import ListenerRegistry
from .observer import StateObserver


def main(argv: Optional[List[str]] = None) -> None:
    parser = argparse.ArgumentParser(description="Observe a ZooKeeper tree and report node changes")
    parser.add_argument(
        "--config",
        default="config.yaml",
        help="Path to the YAML configuration file (default: %(default)s)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        help="Logging level (DEBUG, INFO, WARNING, ERROR)",
    )
    parser.add_argument(
        "--fetch",
        metavar="ZNODE",
        help="Print the (truncated) data of a single node and exit",
    )
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s - %(message)s",
    )

    config_path = Path(args.config)
    try:
        app_config = load_config(config_path)
    except ConfigError as exc:
        logging.error("%s", exc)
        raise SystemExit(2) from exc

    registry = ListenerRegistry.from_config(app_config.listeners)
    observer = StateObserver(app_config.observer, registry)

    try:
        if args.fetch:
            _fetch(observer, args.fetch)
        else:
            observer.run()
    except ConnectError as exc:
        logging.error("%s", exc)
        raise SystemExit(1) from exc


def _fetch(observer: StateObserver, path: str) -> None:
    observer.start()
    try:
        payload = observer.fetch_node_data(path)
    finally:
        observer.stop()
    if payload is None:
        raise SystemExit(1)
    print(payload.data.decode("utf-8", errors="replace"))


if __name__ == "__main__":
    main()
