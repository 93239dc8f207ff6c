"""
CSV export of daily, session and summary reports.
"""

import csv
import logging
from pathlib import Path
from typing import Dict, Union

from claudelytics.core.reports import DailyReport, SessionReport

logger = logging.getLogger(__name__)

TOKEN_HEADERS = [
    "Input Tokens",
    "Output Tokens",
    "Cache Creation Tokens",
    "Cache Read Tokens",
    "Total Tokens",
    "Cost USD",
]


def _usage_cells(usage) -> list:
    return [
        usage.input_tokens,
        usage.output_tokens,
        usage.cache_creation_tokens,
        usage.cache_read_tokens,
        usage.total_tokens,
        f"{usage.total_cost:.6f}",
    ]


def export_daily_to_csv(report: DailyReport, path: Union[str, Path]) -> Path:
    path = Path(path)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["Date"] + TOKEN_HEADERS)
        for row in report.daily:
            writer.writerow([row.date] + _usage_cells(row.usage))
    return path


def export_sessions_to_csv(report: SessionReport, path: Union[str, Path]) -> Path:
    path = Path(path)
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["Session Path", "Last Activity"] + TOKEN_HEADERS)
        for row in report.sessions:
            session_path = f"{row.project_path}/{row.session_id}" if row.project_path else row.session_id
            writer.writerow([session_path, row.last_activity] + _usage_cells(row.usage))
    return path


def export_summary_to_csv(daily: DailyReport, sessions: SessionReport, path: Union[str, Path]) -> Path:
    path = Path(path)
    totals = daily.totals
    with open(path, "w", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        writer.writerow(["Metric", "Value"])
        writer.writerow(["Total Days", len(daily.daily)])
        writer.writerow(["Total Input Tokens", totals.input_tokens])
        writer.writerow(["Total Output Tokens", totals.output_tokens])
        writer.writerow(["Total Cache Creation Tokens", totals.cache_creation_tokens])
        writer.writerow(["Total Cache Read Tokens", totals.cache_read_tokens])
        writer.writerow(["Total Cost (USD)", f"{totals.total_cost:.6f}"])
        writer.writerow(["Total Sessions", len(sessions.sessions)])
    return path


def export_reports(
    daily: DailyReport,
    sessions: SessionReport,
    base: Union[str, Path],
    include_daily: bool = True,
    include_sessions: bool = True,
    include_summary: bool = True,
) -> Dict[str, Path]:
    """Write ``<base>.daily.csv``, ``<base>.sessions.csv`` and ``<base>.summary.csv``."""
    base = Path(base)
    if base.suffix == ".csv":
        base = base.with_suffix("")
    base.parent.mkdir(parents=True, exist_ok=True)

    written: Dict[str, Path] = {}
    if include_daily:
        written["daily"] = export_daily_to_csv(daily, f"{base}.daily.csv")
    if include_sessions:
        written["sessions"] = export_sessions_to_csv(sessions, f"{base}.sessions.csv")
    if include_summary:
        written["summary"] = export_summary_to_csv(daily, sessions, f"{base}.summary.csv")
    for kind, path in written.items():
        logger.info("Exported %s report to %s", kind, path)
    return written
