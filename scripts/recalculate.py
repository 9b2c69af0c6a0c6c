from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.append(str(ROOT))

from repair_pricing.app.config import get_cascade_settings, get_default_pricing, load_config
from repair_pricing.app.database import init_engine, session_scope
from repair_pricing.app.services import RECALCULATION_SCOPES, PricingService


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Recalculate derived repair prices")
    parser.add_argument("scope", choices=RECALCULATION_SCOPES, nargs="?", default="all")
    parser.add_argument("ids", nargs="*", help="Material, process or task ids for the scope")
    parser.add_argument("--config", type=Path, default=None, help="Path to config file")
    parser.add_argument("--export", action="store_true", help="Also write the task price list workbook")
    args = parser.parse_args()

    config = load_config(str(args.config) if args.config else None)
    logging.basicConfig(level=getattr(logging, str(config["LOG_LEVEL"]).upper(), logging.INFO))
    init_engine(config["DATABASE_URL"], bool(config["DATABASE_ECHO"]))

    with session_scope() as session:
        service = PricingService(session, get_cascade_settings(config), get_default_pricing(config))
        summary = service.recalculate(args.scope, args.ids)
        print(json.dumps(summary.to_dict(), indent=2))
        if args.export:
            print(f"Wrote {service.export_task_prices(config['EXPORT_DIR'])}")
    sys.exit(0 if summary.status.value != "aborted" else 1)
