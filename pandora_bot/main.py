"""Entry point for running the chat bot."""
from __future__ import annotations

import argparse
import logging
import os
from pathlib import Path
from typing import List, Optional

from .chat.client import build_client
from .client import DataClient
from .config import SettingsLoader

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Run the Pandora factoid bot.")
    parser.add_argument("--config", type=Path, help="Path to a settings YAML file.")
    parser.add_argument("--db", type=Path, help="Override the factoid database path.")
    parser.add_argument("--token", type=str, help="Bot token (default: read from the environment).")
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO).")
    return parser


def main(argv: Optional[List[str]] = None) -> None:
    args = build_parser().parse_args(argv)
    logging.basicConfig(level=getattr(logging, str(args.log_level).upper(), logging.INFO))
    settings = SettingsLoader(args.config).load()
    token = args.token or os.environ.get(settings.token_env)
    if not token:
        raise RuntimeError(f"{settings.token_env} environment variable or --token must be set")

    data = DataClient.from_settings(settings)
    if args.db is not None:
        data.path = args.db
    with data:
        client = build_client(settings, data.service())
        logger.info("Starting bot with database %s", data.path)
        client.run(token, log_handler=None)


if __name__ == "__main__":  # pragma: no cover - CLI entry point
    main()
