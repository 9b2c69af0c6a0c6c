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
from repair_pricing.app.services import PricingService


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Analyze legacy materials for variant migration")
    parser.add_argument("--config", type=Path, default=None, help="Path to config file")
    parser.add_argument("--output", type=Path, default=None, help="Output directory (default: EXPORT_DIR)")
    parser.add_argument("--no-xlsx", action="store_true", help="Only write the JSON report")
    args = parser.parse_args()

    config = load_config(str(args.config) if args.config else None)
    logging.basicConfig(level=getattr(logging, str(config["LOG_LEVEL"]).upper(), logging.INFO))
    init_engine(config["DATABASE_URL"], bool(config["DATABASE_ECHO"]))

    output_dir = args.output or Path(config["EXPORT_DIR"])
    output_dir.mkdir(parents=True, exist_ok=True)
    with session_scope() as session:
        service = PricingService(session, get_cascade_settings(config), get_default_pricing(config))
        report = service.analyze_migration()
        json_path = output_dir / "material-migration.json"
        json_path.write_text(json.dumps(report.to_dict(), indent=2), encoding="utf-8")
        print(f"Wrote {json_path} ({len(report.candidates)} candidate groups)")
        if not args.no_xlsx:
            xlsx_path = service.export_migration_report(output_dir)
            print(f"Wrote {xlsx_path}")
        print(f"Recommendation: {report.recommendation}")
