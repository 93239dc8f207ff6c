"""
Parallel ingestion driver.

Fans file parsing out over a thread pool. Each file is reduced into its own
FileAggregates; the results are then merged on the calling thread in input
order. All merges are sums, min/max or set unions, so totals do not depend
on file order or worker count.
"""

import logging
import os
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from datetime import date, datetime
from functools import partial
from pathlib import Path
from typing import List, Optional

from claudelytics.core.aggregators import DailyAggregator, SessionAggregator, TimelineAggregator
from claudelytics.core.billing_blocks import BillingBlockManager, BillingBlockReport
from claudelytics.core.pricing import CompositeCostCalculator, build_cost_calculator, resolve_event_cost
from claudelytics.core.pricing_cache import PricingCache
from claudelytics.core.projections import ProjectionCalculator, TokenProjection, UsageProjection
from claudelytics.core.realtime import BudgetConfig, RealtimeAnalytics, RealtimeAnalyticsReport
from claudelytics.core.reports import (
    DailyReport,
    MonthlyReport,
    SessionReport,
    SortField,
    SortOrder,
    generate_daily_report,
    generate_monthly_report,
    generate_session_report,
)
from claudelytics.core.session_analytics import DEFAULT_COST_THRESHOLD, PatternReport, SessionAnalytics
from claudelytics.core.session_blocks import SessionBlockConfig, SessionBlockManager, SessionBlockReport
from claudelytics.core.token_usage import UsageEvent
from claudelytics.errors import ConfigurationError, FileProcessingError
from .discovery import find_jsonl_files, projects_dir
from .parser import LogParser, ParseStats
from .records import RecordFilter

logger = logging.getLogger(__name__)

MIN_WORKERS = 1
MAX_WORKERS = 256
DEFAULT_WORKERS = min(32, (os.cpu_count() or 1) + 4)


@dataclass
class Diagnostics:
    """Non-fatal problems seen during a run. Order of entries is not stable."""
    files_processed: int = 0
    malformed_lines: int = 0
    skipped_records: int = 0
    filtered_records: int = 0
    failed_files: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)

    def record_stats(self, stats: ParseStats) -> None:
        self.malformed_lines += stats.malformed_lines
        self.skipped_records += stats.skipped_records
        self.filtered_records += stats.filtered_records
        self.warnings.extend(stats.warnings)

    def merge(self, other: "Diagnostics") -> None:
        self.files_processed += other.files_processed
        self.malformed_lines += other.malformed_lines
        self.skipped_records += other.skipped_records
        self.filtered_records += other.filtered_records
        self.failed_files.extend(other.failed_files)
        self.warnings.extend(other.warnings)


class FileAggregates:
    """All aggregators for one file, or the merged result of many."""

    def __init__(self, session_block_config: Optional[SessionBlockConfig] = None):
        self.daily = DailyAggregator()
        self.sessions = SessionAggregator()
        self.billing_blocks = BillingBlockManager()
        self.session_blocks = SessionBlockManager(session_block_config)
        self.timeline = TimelineAggregator()
        self.diagnostics = Diagnostics()

    def add_event(self, event: UsageEvent) -> None:
        self.daily.add_event(event)
        self.sessions.add_event(event)
        self.billing_blocks.add_event(event)
        self.session_blocks.add_event(event)
        self.timeline.add_event(event)

    def merge(self, other: "FileAggregates") -> None:
        self.daily.merge(other.daily)
        self.sessions.merge(other.sessions)
        self.billing_blocks.merge(other.billing_blocks)
        self.session_blocks.merge(other.session_blocks)
        self.timeline.merge(other.timeline)
        self.diagnostics.merge(other.diagnostics)


@dataclass(frozen=True)
class EngineOptions:
    """Inputs for one engine run.

    ``since``/``until`` are ``YYYYMMDD`` strings, inclusive, on UTC dates.
    """
    root: Path
    since: Optional[str] = None
    until: Optional[str] = None
    model: Optional[str] = None
    workers: int = DEFAULT_WORKERS
    pricing_file: Optional[str] = None
    strict_pricing: bool = True
    use_pricing_cache: bool = False
    cache_dir: Optional[Path] = None
    session_blocks: SessionBlockConfig = field(default_factory=SessionBlockConfig)


@dataclass
class EngineResult:
    """Merged aggregates of a run. Treat as read-only once returned."""
    aggregates: FileAggregates
    files: List[Path] = field(default_factory=list)

    @property
    def daily(self) -> DailyAggregator:
        return self.aggregates.daily

    @property
    def sessions(self) -> SessionAggregator:
        return self.aggregates.sessions

    @property
    def billing_blocks(self) -> BillingBlockManager:
        return self.aggregates.billing_blocks

    @property
    def session_blocks(self) -> SessionBlockManager:
        return self.aggregates.session_blocks

    @property
    def timeline(self) -> TimelineAggregator:
        return self.aggregates.timeline

    @property
    def diagnostics(self) -> Diagnostics:
        return self.aggregates.diagnostics

    def is_empty(self) -> bool:
        return len(self.daily) == 0

    def daily_report(self, sort_field: Optional[SortField] = None, sort_order: Optional[SortOrder] = None) -> DailyReport:
        return generate_daily_report(self.daily.items(), sort_field, sort_order)

    def session_report(self, sort_field: Optional[SortField] = None, sort_order: Optional[SortOrder] = None) -> SessionReport:
        return generate_session_report(dict(self.sessions.items()), sort_field, sort_order)

    def monthly_report(self, sort_field: Optional[SortField] = None, sort_order: Optional[SortOrder] = None) -> MonthlyReport:
        return generate_monthly_report(self.daily.items(), sort_field, sort_order)

    def billing_block_report(self) -> BillingBlockReport:
        return self.billing_blocks.generate_report()

    def session_block_report(self, now: datetime) -> SessionBlockReport:
        return self.session_blocks.generate_report(now)

    def realtime_report(self, now: datetime, budget: Optional[BudgetConfig] = None) -> RealtimeAnalyticsReport:
        analytics = RealtimeAnalytics(
            dict(self.daily.items()),
            dict(self.sessions.items()),
            budget=budget,
            timeline=self.timeline,
        )
        return analytics.generate_report(now)

    def projections(self, today: date, calculator: Optional[ProjectionCalculator] = None) -> UsageProjection:
        return (calculator or ProjectionCalculator()).calculate_projections(self.daily.items(), today)

    def token_projections(self, today: date, calculator: Optional[ProjectionCalculator] = None) -> TokenProjection:
        return (calculator or ProjectionCalculator()).calculate_token_projections(self.daily.items(), today)

    def pattern_report(self, today: date, cost_threshold: float = DEFAULT_COST_THRESHOLD) -> PatternReport:
        return SessionAnalytics(dict(self.sessions.items())).generate_report(today, cost_threshold)


class UsageEngine:
    """Discover, parse, price and aggregate usage logs."""

    def __init__(self, options: EngineOptions, calculator: Optional[CompositeCostCalculator] = None):
        self.options = options
        self._calculator = calculator

    def _validate(self) -> RecordFilter:
        workers = self.options.workers
        if isinstance(workers, bool) or not isinstance(workers, int) or not MIN_WORKERS <= workers <= MAX_WORKERS:
            raise ConfigurationError(f"workers must be between {MIN_WORKERS} and {MAX_WORKERS}, got {workers}")
        return RecordFilter.from_strings(self.options.since, self.options.until, self.options.model)

    def _build_calculator(self) -> CompositeCostCalculator:
        if self._calculator is not None:
            return self._calculator
        cached = None
        if self.options.use_pricing_cache:
            cached = PricingCache(self.options.cache_dir).load()
        return build_cost_calculator(
            override_path=self.options.pricing_file,
            cached_prices=cached,
            strict=self.options.strict_pricing,
        )

    def run(self) -> EngineResult:
        """Run the pipeline.

        Returns:
            EngineResult with merged aggregates and diagnostics

        Raises:
            ConfigurationError: Bad filters, worker count or pricing file
            DirectoryNotFoundError: Missing root or projects directory
        """
        record_filter = self._validate()
        calculator = self._build_calculator()
        projects = projects_dir(self.options.root)
        files = find_jsonl_files(self.options.root)

        result = EngineResult(FileAggregates(self.options.session_blocks), files)
        if not files:
            message = f"No JSONL files found under {projects}"
            logger.warning(message)
            result.diagnostics.warnings.append(message)
            return result

        parser = LogParser(record_filter, partial(resolve_event_cost, calculator))
        worker = partial(self._process_file, parser, projects)
        with ThreadPoolExecutor(max_workers=self.options.workers) as executor:
            partials = list(executor.map(worker, files))

        for file_result in partials:
            result.aggregates.merge(file_result)

        logger.debug(
            "Processed %d files: %d malformed lines, %d skipped records",
            result.diagnostics.files_processed,
            result.diagnostics.malformed_lines,
            result.diagnostics.skipped_records,
        )
        return result

    def _process_file(self, parser: LogParser, projects: Path, path: Path) -> FileAggregates:
        aggregates = FileAggregates(self.options.session_blocks)
        stats = ParseStats()
        try:
            for event in parser.parse_file(path, projects, stats):
                aggregates.add_event(event)
        except (OSError, UnicodeDecodeError, FileProcessingError) as e:
            logger.warning("Skipping %s: %s", path, e)
            failed = FileAggregates(self.options.session_blocks)
            failed.diagnostics.failed_files.append(str(path))
            failed.diagnostics.warnings.append(f"{path}: {e}")
            return failed

        aggregates.diagnostics.files_processed = 1
        aggregates.diagnostics.record_stats(stats)
        return aggregates


def run_engine(options: EngineOptions) -> EngineResult:
    return UsageEngine(options).run()
