from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Dict, Iterable, List, Sequence

from openpyxl import Workbook
from openpyxl.styles import Font

from .migration import MigrationReport

logger = logging.getLogger(__name__)


SUMMARY_ROWS = (
    ("Total materials", "totalMaterials"),
    ("Already variants", "alreadyVariants"),
    ("Candidate groups", "candidatesCount"),
    ("Potential savings", "potentialSavings"),
    ("Recommendation", "migrationRecommendation"),
)

CANDIDATE_HEADERS = (
    "Base key", "Base name", "Category", "Materials", "Metals",
    "Potential savings", "Priority", "Donor", "Archive", "Risks",
)

TASK_HEADERS = (
    "Task", "Title", "Category", "Metal", "Labor minutes", "Material cost",
    "Base cost", "Retail", "Wholesale", "Rush", "Calculated at",
)

_TASK_PRICING_FIELDS = (
    "totalLaborMinutes", "markedUpMaterialCost", "baseCost",
    "retailPrice", "wholesalePrice", "rushPrice", "calculatedAt",
)


def _header(ws, headers: Sequence[str]) -> None:
    ws.append(list(headers))
    for cell in ws[ws.max_row]:
        cell.font = Font(bold=True)


class ReportWorkbookWriter:
    """Writes migration reports and task price lists as ``.xlsx`` files."""

    def write_migration_report(self, report: MigrationReport, output_path: Path) -> Path:
        path = Path(output_path).with_suffix(".xlsx")
        payload = report.to_dict()
        wb = Workbook()

        summary = wb.active
        summary.title = "Summary"
        for label, key in SUMMARY_ROWS:
            summary.append([label, payload["summary"][key]])
        summary.column_dimensions["A"].width = 22

        candidates = wb.create_sheet("Candidates")
        _header(candidates, CANDIDATE_HEADERS)
        for group in payload["candidateGroups"]:
            strategy = group["strategy"]
            candidates.append(
                [
                    group["baseKey"],
                    group["baseName"],
                    group["category"],
                    group["materialCount"],
                    ", ".join(group["metalTypes"]),
                    group["potentialSavings"],
                    group["priority"],
                    strategy["baseMaterialId"],
                    ", ".join(strategy["materialsToArchive"]),
                    "; ".join(strategy["risks"]),
                ]
            )

        timeline = wb.create_sheet("Timeline")
        _header(timeline, ("Phase", "Name", "Duration", "Description", "Candidates"))
        for phase in payload["timeline"]:
            timeline.append(
                [phase["phase"], phase["name"], phase["duration"], phase["description"],
                 ", ".join(phase["candidates"])]
            )

        wb.save(path)
        logger.info("Saved migration report to %s", path)
        return path

    def write_task_prices(self, tasks: Iterable[Dict[str, Any]], output_path: Path) -> Path:
        path = Path(output_path).with_suffix(".xlsx")
        wb = Workbook()
        ws = wb.active
        ws.title = "Task Prices"
        _header(ws, TASK_HEADERS)
        for task in tasks:
            pricing = task.get("pricing") or {}
            row: List[Any] = [
                task.get("id"),
                task.get("title"),
                task.get("category"),
                task.get("metalKey") or "",
            ]
            row.extend(pricing.get(name) for name in _TASK_PRICING_FIELDS)
            ws.append(row)
        wb.save(path)
        logger.info("Saved task price list to %s", path)
        return path
