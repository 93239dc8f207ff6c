"""
Line-oriented log parser.

Decodes one JSONL file into usage events. Blank lines are skipped; malformed
lines and invalid records are counted and the rest of the file is still read.
"""

import json
import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Iterator, List, Optional, Tuple

from claudelytics.core.token_usage import TokenUsage, UsageEvent
from claudelytics.errors import FileProcessingError
from .records import InvalidRecord, ParsedRecord, RecordFilter, validate_record

logger = logging.getLogger(__name__)

CostResolver = Callable[[Optional[str], TokenUsage, Optional[float]], Optional[float]]


def session_id_for(path: Path, projects: Path) -> str:
    """Session id from the file's directory relative to ``projects``.

    ``projects/my-project/abc123/chat.jsonl`` yields ``my-project/abc123``.

    Raises:
        FileProcessingError: If the file is not inside a subdirectory of
            ``projects``
    """
    try:
        relative = path.relative_to(projects)
    except ValueError:
        raise FileProcessingError(str(path), "not under the projects directory")
    parts = relative.parent.parts
    if not parts:
        raise FileProcessingError(str(path), "log file is not inside a project directory")
    return "/".join(parts)


def split_session_path(session_path: str) -> Tuple[str, str]:
    """Split a session id into ``(project_path, session_id)`` on the last ``/``."""
    project, sep, session = session_path.rpartition("/")
    if not sep:
        return "", session_path
    return project, session


@dataclass
class ParseStats:
    """Per-file counters and diagnostic lines."""
    malformed_lines: int = 0
    skipped_records: int = 0
    filtered_records: int = 0
    warnings: List[str] = field(default_factory=list)


class LogParser:
    """Parse JSONL files into priced usage events."""

    def __init__(self, record_filter: Optional[RecordFilter] = None, cost_resolver: Optional[CostResolver] = None):
        self.record_filter = record_filter or RecordFilter()
        self.cost_resolver = cost_resolver

    def _cost(self, record: ParsedRecord) -> Optional[float]:
        if self.cost_resolver is None:
            return record.cost_usd
        return self.cost_resolver(record.model, record.usage, record.cost_usd)

    @staticmethod
    def _malformed(stats: ParseStats, message: str) -> None:
        stats.malformed_lines += 1
        stats.warnings.append(message)
        logger.warning(message)

    def parse_lines(self, lines, path: str, session_id: str, stats: ParseStats) -> Iterator[UsageEvent]:
        for line_number, line in enumerate(lines, start=1):
            if not line.strip():
                continue
            try:
                raw = json.loads(line)
            except json.JSONDecodeError as e:
                self._malformed(stats, f"{path}:{line_number}: invalid JSON: {e.msg}")
                continue
            except (ValueError, RecursionError) as e:
                # integer digit limit, nesting depth
                self._malformed(stats, f"{path}:{line_number}: invalid JSON: {type(e).__name__}")
                continue
            if not isinstance(raw, dict):
                self._malformed(stats, f"{path}:{line_number}: expected a JSON object")
                continue

            try:
                record = validate_record(raw)
            except InvalidRecord as e:
                stats.skipped_records += 1
                logger.debug("%s:%d: skipped record: %s", path, line_number, e)
                continue

            if not self.record_filter.accepts(record):
                stats.filtered_records += 1
                continue

            yield record.to_event(session_id, self._cost(record))

    def parse_file(self, path: Path, projects: Path, stats: ParseStats) -> Iterator[UsageEvent]:
        """Yield events from one file.

        Raises:
            FileProcessingError: If the file is misplaced
            OSError, UnicodeDecodeError: If the file cannot be read
        """
        session_id = session_id_for(path, projects)
        with open(path, "r", encoding="utf-8") as f:
            yield from self.parse_lines(f, str(path), session_id, stats)
