#!/usr/bin/env python3
"""
Pestwatch Review Server

Usage:
    pestwatch-server                                  # Settings from environment
    pestwatch-server --port 8080 --store json --data-file ./data/store.json
    pestwatch-server --seed-detections ./exports/detections.jsonl
"""

import argparse
import logging
import sys
from pathlib import Path

import uvicorn

from .api import create_app
from .config import get_config
from .logging_config import configure_logging
from .storage import DETECTIONS, USERS, create_store, load_jsonl

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Pest detection review server")
    parser.add_argument("--host", default=None, help="Host to bind to (default: $HOST)")
    parser.add_argument("--port", type=int, default=None, help="Port to run on (default: $PORT)")
    parser.add_argument(
        "--store",
        choices=["json", "sql"],
        default=None,
        help="Document store backend (default: $STORE_BACKEND)",
    )
    parser.add_argument("--database-url", default=None, help="SQLAlchemy URL for the sql store")
    parser.add_argument("--data-file", type=Path, default=None, help="State file for the json store")
    parser.add_argument(
        "--seed-detections",
        type=Path,
        help="JSON Lines export of detections to load before serving",
    )
    parser.add_argument(
        "--seed-users",
        type=Path,
        help="JSON Lines export of users to load before serving",
    )
    parser.add_argument("--log-level", default=None, help="Log level (default: $LOG_LEVEL)")
    parser.add_argument("--log-json", action="store_true", help="Emit JSON logs")
    return parser


def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        config = get_config()
    except ValueError as e:
        print(f"Configuration error: {e}", file=sys.stderr)
        sys.exit(1)

    log_level = args.log_level or config.LOG_LEVEL
    configure_logging(level=log_level, json_format=args.log_json or config.LOG_JSON)

    backend = args.store or config.STORE_BACKEND
    store_config = config.store_config() if backend == config.STORE_BACKEND else {}
    if args.database_url:
        store_config["database_url"] = args.database_url
    if args.data_file:
        store_config["state_file"] = args.data_file

    store = create_store(backend, store_config)
    logger.info(f"Using {backend} document store")

    if args.seed_users:
        load_jsonl(store, USERS, args.seed_users)
    if args.seed_detections:
        load_jsonl(store, DETECTIONS, args.seed_detections)

    app = create_app(store=store)

    host = args.host or config.HOST
    port = args.port or config.PORT

    print(f"\n{'='*60}")
    print("  Pestwatch Review Server")
    print(f"{'='*60}")
    print(f"  URL: http://{host}:{port}")
    print(f"  Environment: {config.ENVIRONMENT}")
    print(f"  Store: {backend}")
    if config.ENVIRONMENT == "development":
        print(f"  API docs: http://{host}:{port}/docs")
    print(f"{'='*60}\n")

    uvicorn.run(app, host=host, port=port, log_level=log_level.lower())


if __name__ == "__main__":
    main()
