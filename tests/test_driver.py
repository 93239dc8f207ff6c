"""
End-to-end tests for the ingestion engine.

Builds small log trees on disk and checks merged aggregates, reports and
diagnostics.
"""

import json
import math
import random
import shutil
import tempfile
from datetime import date, datetime, timezone
from functools import partial
from pathlib import Path

import pytest

from claudelytics.core.aggregators import DailyAggregator, SessionAggregator, TimelineAggregator
from claudelytics.core.billing_blocks import BillingBlockManager, normalize_to_block_start
from claudelytics.core.pricing import build_cost_calculator, resolve_event_cost
from claudelytics.core.session_blocks import SessionBlockConfig, SessionBlockManager
from claudelytics.core.token_usage import TokenUsage, UsageEvent
from claudelytics.errors import ConfigurationError, DirectoryNotFoundError
from claudelytics.ingest.driver import EngineOptions, FileAggregates, UsageEngine, run_engine
from claudelytics.ingest.parser import LogParser

HAIKU = "claude-3-5-haiku-20241022"


def _line(timestamp, input_tokens, output_tokens, model=HAIKU):
    return json.dumps({
        "timestamp": timestamp,
        "message": {"usage": {"input_tokens": input_tokens, "output_tokens": output_tokens}, "model": model},
    })


class EngineTestCase:
    """Shared log-tree helpers."""

    def setup_method(self):
        """Set up test environment."""
        self.root = Path(tempfile.mkdtemp())
        (self.root / "projects").mkdir()

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.root, ignore_errors=True)

    def _write(self, relative: str, lines) -> Path:
        path = self.root / "projects" / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(lines) + "\n", encoding="utf-8")
        return path

    def _run(self, **options):
        return UsageEngine(EngineOptions(root=self.root, **options)).run()


class TestSingleFile(EngineTestCase):
    """Single file, two events, default pricing."""

    LINES = [
        _line("2024-01-01T02:30:00Z", 100, 200),
        _line("2024-01-01T07:45:00Z", 150, 250),
    ]

    def test_daily_totals(self):
        self._write("p/s/x.jsonl", self.LINES)
        result = self._run()
        usage = result.daily.get(date(2024, 1, 1))
        assert usage.input_tokens == 250
        assert usage.output_tokens == 450
        assert usage.cache_creation_tokens == 0
        assert usage.cache_read_tokens == 0
        assert usage.total_tokens == 700
        assert usage.total_cost == pytest.approx(0.002)

    def test_billing_blocks(self):
        self._write("p/s/x.jsonl", self.LINES)
        blocks = self._run().billing_blocks.get_blocks_for_date(date(2024, 1, 1))
        assert len(blocks) == 5
        assert [b.usage.total_tokens for b in blocks] == [300, 400, 0, 0, 0]

    def test_session(self):
        self._write("p/s/x.jsonl", self.LINES)
        report = self._run().session_report()
        assert len(report.sessions) == 1
        row = report.sessions[0]
        assert (row.project_path, row.session_id) == ("p", "s")
        assert row.last_activity == "2024-01-01"

    def test_diagnostics_are_clean(self):
        self._write("p/s/x.jsonl", self.LINES)
        diagnostics = self._run().diagnostics
        assert diagnostics.files_processed == 1
        assert diagnostics.malformed_lines == 0
        assert diagnostics.warnings == []

    def test_malformed_line_mid_file(self):
        """Verify a bad line leaves totals unchanged and yields one diagnostic."""
        path = self._write("p/s/x.jsonl", [self.LINES[0], "{not json}", self.LINES[1]])
        result = self._run()
        assert result.daily.get(date(2024, 1, 1)).total_tokens == 700
        assert result.daily.get(date(2024, 1, 1)).total_cost == pytest.approx(0.002)
        assert result.diagnostics.malformed_lines == 1
        assert len(result.diagnostics.warnings) == 1
        assert f"{path}:2:" in result.diagnostics.warnings[0]

    def test_date_filter(self):
        self._write("p/s/x.jsonl", self.LINES + [_line("2024-01-02T00:00:00Z", 5, 5)])
        result = self._run(since="20240101", until="20240101")
        assert [d for d, _ in result.daily.items()] == [date(2024, 1, 1)]
        assert result.diagnostics.filtered_records == 1

    def test_date_filter_is_idempotent(self):
        self._write("p/s/x.jsonl", self.LINES + [_line("2024-01-02T00:00:00Z", 5, 5)])
        once = self._run(since="20240101", until="20240102").daily.items()
        twice = self._run(since="20240101", until="20240102").daily.items()
        assert once == twice


class TestBlockNormalization:
    """Billing-block boundaries."""

    @pytest.mark.parametrize("clock,expected_hour", [
        ("00:30:00", 0),
        ("04:59:59", 0),
        ("05:00:00", 5),
        ("09:30:00", 5),
        ("14:45:00", 10),
        ("15:00:00", 15),
        ("19:59:59", 15),
        ("20:00:00", 20),
        ("23:59:59", 20),
    ])
    def test_normalize(self, clock, expected_hour):
        ts = datetime.fromisoformat(f"2024-01-01T{clock}+00:00")
        assert normalize_to_block_start(ts) == datetime(2024, 1, 1, expected_hour, tzinfo=timezone.utc)


class TestOrderIndependence(EngineTestCase):
    """Totals must not depend on worker count or file order."""

    def _build_tree(self):
        rng = random.Random(7)
        for project in range(3):
            for session in range(4):
                lines = []
                for _ in range(20):
                    day = rng.randint(1, 5)
                    hour = rng.randint(0, 23)
                    lines.append(_line(f"2024-03-0{day}T{hour:02d}:{rng.randint(0, 59):02d}:00Z",
                                       rng.randint(1, 500), rng.randint(1, 500)))
                self._write(f"proj{project}/sess{session}/log.jsonl", lines)
                self._write(f"proj{project}/sess{session}/more.jsonl", lines[:5])

    def _snapshot(self, result):
        return (
            result.daily.items(),
            [(k, b.usage, b.first_activity, b.last_activity) for k, b in result.sessions.items()],
            [(d, b.start_time, b.usage, sorted(b.session_ids)) for d, b in result.billing_blocks.get_all_blocks()],
            [(b.start_time, b.usage, sorted(b.session_ids)) for b in result.session_blocks.get_all_blocks()],
        )

    def test_worker_count_does_not_change_totals(self):
        self._build_tree()
        baseline = self._snapshot(self._run(workers=1))
        for workers in (2, 4, 16):
            assert self._snapshot(self._run(workers=workers)) == baseline

    def test_file_order_does_not_change_totals(self):
        """Verify merging per-file aggregates in any order gives the same result."""
        self._build_tree()
        result = self._run(workers=4)
        engine = UsageEngine(EngineOptions(root=self.root, workers=1))
        parser = LogParser(cost_resolver=partial(resolve_event_cost, build_cost_calculator()))
        parts = [engine._process_file(parser, self.root / "projects", f) for f in result.files]
        random.Random(3).shuffle(parts)
        merged = FileAggregates()
        for part in parts:
            merged.merge(part)

        assert len(merged.daily) == len(result.daily)
        for (day, ours), (_, theirs) in zip(merged.daily.items(), result.daily.items()):
            assert ours.total_tokens == theirs.total_tokens
            assert ours.total_cost == pytest.approx(theirs.total_cost)
        for (sid, ours), (_, theirs) in zip(merged.sessions.items(), result.sessions.items()):
            assert ours.usage.total_tokens == theirs.usage.total_tokens
            assert (ours.first_activity, ours.last_activity) == (theirs.first_activity, theirs.last_activity)

    def test_billing_blocks_cover_daily_usage(self):
        self._build_tree()
        result = self._run()
        for day, usage in result.daily.items():
            blocks = result.billing_blocks.get_blocks_for_date(day)
            assert len(blocks) == 5
            total = TokenUsage()
            for block in blocks:
                total.add(block.usage)
            assert total.total_tokens == usage.total_tokens
            assert total.total_cost == pytest.approx(usage.total_cost)

    def test_report_totals_equal_row_sums(self):
        self._build_tree()
        result = self._run()
        for report, rows in (
            (result.daily_report(), lambda r: r.daily),
            (result.session_report(), lambda r: r.sessions),
            (result.monthly_report(), lambda r: r.monthly),
        ):
            assert report.totals.total_tokens == sum(row.usage.total_tokens for row in rows(report))
            assert report.totals.input_tokens == sum(row.usage.input_tokens for row in rows(report))
            assert report.totals.total_cost == pytest.approx(sum(row.usage.total_cost for row in rows(report)))


class TestEngineBoundaries(EngineTestCase):
    """Empty inputs, bad files and fatal configuration errors."""

    def test_empty_projects(self):
        result = self._run()
        assert result.is_empty()
        assert result.daily_report().daily == []
        assert len(result.diagnostics.warnings) == 1
        assert "No JSONL files" in result.diagnostics.warnings[0]

    def test_blank_file_contributes_nothing(self):
        self._write("p/s/x.jsonl", ["", "", ""])
        result = self._run()
        assert result.is_empty()
        assert result.diagnostics.files_processed == 1
        assert result.diagnostics.warnings == []

    def test_file_directly_in_projects_is_skipped(self):
        self._write("p/s/x.jsonl", [_line("2024-01-01T00:00:00Z", 1, 1)])
        stray = self._write("stray.jsonl", [_line("2024-01-01T00:00:00Z", 100, 100)])
        result = self._run()
        assert result.daily.get(date(2024, 1, 1)).total_tokens == 2
        assert result.diagnostics.failed_files == [str(stray)]

    def test_undecodable_file_contributes_nothing(self):
        self._write("p/s/x.jsonl", [_line("2024-01-01T00:00:00Z", 1, 1)])
        bad = self.root / "projects" / "p" / "t" / "bad.jsonl"
        bad.parent.mkdir(parents=True)
        bad.write_bytes(_line("2024-01-01T00:00:00Z", 50, 50).encode() + b"\n\xff\xfe\n")
        result = self._run()
        assert result.daily.get(date(2024, 1, 1)).total_tokens == 2
        assert result.diagnostics.failed_files == [str(bad)]
        assert "p/t" not in result.sessions.sessions

    def test_missing_root(self):
        with pytest.raises(DirectoryNotFoundError):
            run_engine(EngineOptions(root=self.root / "nowhere"))

    def test_missing_projects(self):
        shutil.rmtree(self.root / "projects")
        with pytest.raises(DirectoryNotFoundError):
            self._run()

    @pytest.mark.parametrize("workers", [0, -1, 257, True])
    def test_bad_worker_count(self, workers):
        with pytest.raises(ConfigurationError, match="workers"):
            self._run(workers=workers)

    def test_since_after_until(self):
        with pytest.raises(ConfigurationError):
            self._run(since="20240102", until="20240101")

    def test_bad_pricing_file_is_fatal(self):
        with pytest.raises(ConfigurationError):
            self._run(pricing_file=str(self.root / "missing.yaml"))

    def test_bad_pricing_file_non_strict(self):
        self._write("p/s/x.jsonl", [_line("2024-01-01T00:00:00Z", 1, 1)])
        result = self._run(pricing_file=str(self.root / "missing.yaml"), strict_pricing=False)
        assert result.daily.get(date(2024, 1, 1)).total_tokens == 2


class TestUnusableLines(EngineTestCase):
    """Lines that must be skipped without aborting the run."""

    GOOD = [
        _line("2024-01-01T02:30:00Z", 100, 200),
        _line("2024-01-01T07:45:00Z", 150, 250),
    ]

    @pytest.mark.parametrize("bad_line,malformed,skipped", [
        ("[" * 100000 + "]" * 100000, 1, 0),
        (_line("9999-12-31T23:30:00Z", 5, 5), 0, 1),
        (_line("0001-01-01T00:30:00+01:00", 5, 5), 0, 1),
    ])
    def test_bad_line_is_skipped(self, bad_line, malformed, skipped):
        self._write("p/s/x.jsonl", [self.GOOD[0], bad_line, self.GOOD[1]])
        result = self._run(workers=2)
        usage = result.daily.get(date(2024, 1, 1))
        assert usage.total_tokens == 700
        assert usage.total_cost == pytest.approx(0.002)
        assert len(result.daily) == 1
        assert result.diagnostics.malformed_lines == malformed
        assert result.diagnostics.skipped_records == skipped
        assert result.diagnostics.failed_files == []

    @pytest.mark.parametrize("constant", ["NaN", "Infinity", "-Infinity"])
    def test_non_finite_wire_cost_keeps_totals_finite(self, constant):
        nan_line = (
            '{"timestamp":"2024-01-01T03:00:00Z","costUSD":' + constant
            + ',"message":{"usage":{"input_tokens":1}}}'
        )
        self._write("p/s/x.jsonl", [self.GOOD[0], nan_line, self.GOOD[1]])
        result = self._run()
        usage = result.daily.get(date(2024, 1, 1))
        assert usage.total_tokens == 701
        assert math.isfinite(usage.total_cost)
        assert usage.total_cost == pytest.approx(0.002)
        for _, block in result.billing_blocks.get_all_blocks():
            assert math.isfinite(block.usage.total_cost)
        assert math.isfinite(result.sessions.sessions["p/s"].usage.total_cost)


class TestCostMonotonicity:
    """Adding a valid event never lowers any aggregate cost."""

    EVENTS = [
        UsageEvent(datetime(2024, 1, 1, 2, 30, tzinfo=timezone.utc), "p/a", TokenUsage(input_tokens=10), cost=0.5),
        UsageEvent(datetime(2024, 1, 1, 2, 30, tzinfo=timezone.utc), "p/b", TokenUsage(output_tokens=5), cost=0.0),
        UsageEvent(datetime(2024, 1, 1, 23, 59, tzinfo=timezone.utc), "p/a", TokenUsage(input_tokens=1), cost=None),
        UsageEvent(datetime(2024, 1, 2, 0, 0, tzinfo=timezone.utc), "p/c", TokenUsage(cache_read_tokens=7), cost=1.25),
        UsageEvent(datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc), "p/b", TokenUsage(input_tokens=3), cost=0.0),
    ]

    AGGREGATORS = {
        "daily": (DailyAggregator, lambda a: sum(u.total_cost for _, u in a.items())),
        "sessions": (SessionAggregator, lambda a: sum(b.usage.total_cost for _, b in a.items())),
        "billing_blocks": (BillingBlockManager, lambda a: sum(b.usage.total_cost for _, b in a.get_all_blocks())),
        "session_blocks": (
            lambda: SessionBlockManager(SessionBlockConfig(block_hours=5)),
            lambda a: sum(b.usage.total_cost for b in a.get_all_blocks()),
        ),
        "timeline": (TimelineAggregator, lambda a: sum(u.total_cost for _, u in a.points())),
    }

    @pytest.mark.parametrize("name", sorted(AGGREGATORS))
    def test_total_cost_never_decreases(self, name):
        factory, total_cost = self.AGGREGATORS[name]
        aggregator = factory()
        previous = total_cost(aggregator)
        assert previous == 0.0
        for event in self.EVENTS:
            aggregator.add_event(event)
            current = total_cost(aggregator)
            assert current >= previous
            previous = current
        assert previous == pytest.approx(1.75)

    @pytest.mark.parametrize("name", sorted(AGGREGATORS))
    def test_merge_never_decreases(self, name):
        factory, total_cost = self.AGGREGATORS[name]
        left, right = factory(), factory()
        for event in self.EVENTS[:2]:
            left.add_event(event)
        for event in self.EVENTS[2:]:
            right.add_event(event)
        before = total_cost(left)
        left.merge(right)
        assert total_cost(left) >= before
        assert total_cost(left) == pytest.approx(1.75)


class TestAggregatorMerge:
    """Merging aggregators keeps first/last activity bounds."""

    def test_session_merge(self):
        first = SessionAggregator()
        second = SessionAggregator()
        early = datetime(2024, 1, 1, 1, tzinfo=timezone.utc)
        late = datetime(2024, 1, 1, 9, tzinfo=timezone.utc)
        first.add_event(UsageEvent(late, "p/s", TokenUsage(input_tokens=1), cost=0.1))
        second.add_event(UsageEvent(early, "p/s", TokenUsage(output_tokens=2), cost=0.2))
        first.merge(second)
        bucket = first.sessions["p/s"]
        assert bucket.first_activity == early
        assert bucket.last_activity == late
        assert bucket.usage.total_tokens == 3
        assert bucket.usage.total_cost == pytest.approx(0.3)
