from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parent
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))
os.chdir(ROOT)

from repair_pricing.app import create_app
from repair_pricing.app.config import load_config

DEFAULT_CONFIG = ROOT / "config.json"


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Run the repair pricing API")
    parser.add_argument(
        "--config",
        type=Path,
        default=DEFAULT_CONFIG if DEFAULT_CONFIG.exists() else None,
        help=(
            "Optional path to a JSON/YAML/TOML config file (defaults to config.json when "
            "present, otherwise environment variables and built-in defaults)"
        ),
    )
    parser.add_argument("--host", default=None, help="Host interface to bind (default: SERVER_HOST)")
    parser.add_argument("--port", type=int, default=None, help="Port to listen on (default: SERVER_PORT)")
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable Flask debug mode (includes auto-reload)",
    )
    return parser.parse_args()


def configure_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, str(level).upper(), logging.INFO),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def main() -> None:
    args = parse_args()
    config_path = str(args.config) if args.config else None
    config = load_config(config_path)
    configure_logging(config["LOG_LEVEL"])

    app = create_app(config_path)
    app.run(
        host=args.host or config["SERVER_HOST"],
        port=args.port or int(config["SERVER_PORT"]),
        debug=args.debug or bool(config["DEBUG"]),
    )


if __name__ == "__main__":
    main()
