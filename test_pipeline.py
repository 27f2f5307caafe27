#!/usr/bin/env python3
"""
Test Suite for the Forora stat pipeline
Tests the driver: call order, error isolation, finalize order, metrics
"""

import unittest
from datetime import datetime, timedelta, timezone

from forora import (
    CommitRecord,
    FileOperation,
    GitStatsReport,
    LineChange,
    OperationKind,
    ProgressReporter,
    StatCollector,
    StatsPipeline,
    SummaryRow,
    SummaryStatsCollector,
    TotalCommitsByDayCollector,
    create_stat_collectors,
)


class RecordingCollector(StatCollector):
    """Records every call it receives into a shared log"""

    def __init__(self, name, log):
        self.name = name
        self.log = log
        self.seen = []

    def process_commit(self, commit):
        self.seen.append(commit.hash)
        self.log.append(("process", self.name, commit.hash))

    def finalize(self, report):
        self.log.append(("finalize", self.name))
        report.summary.append(SummaryRow(self.name, str(len(self.seen))))


class FailingCollector(StatCollector):
    name = "failing"

    def process_commit(self, commit):
        raise RuntimeError("boom")


def build_history(count, start=datetime(2024, 1, 1, 9, 0, tzinfo=timezone.utc)):
    """One commit every 7 hours, newest last"""
    return [
        CommitRecord(
            hash=f"h{i:03d}",
            author=f"author{i % 3}",
            timestamp=start + timedelta(hours=7 * i),
            message=f"commit {i}",
            line_changes=(LineChange(i, i % 2),),
            file_operations=(
                FileOperation(f"src/file{i}.py", "py", OperationKind.MODIFIED),
            ),
        )
        for i in range(count)
    ]


class TestStatsPipeline(unittest.TestCase):
    """Tests for the single-pass driver"""

    def setUp(self):
        self.reporter = ProgressReporter(quiet=True)
        self.commits = build_history(10)

    def test_every_collector_sees_every_commit_in_order(self):
        log = []
        first = RecordingCollector("first", log)
        second = RecordingCollector("second", log)
        pipeline = StatsPipeline(reporter=self.reporter)
        pipeline.add_collector(first)
        pipeline.add_collector(second)

        pipeline.run(self.commits)

        expected = [c.hash for c in self.commits]
        self.assertEqual(first.seen, expected)
        self.assertEqual(second.seen, expected)
        # Commit-major fan-out: both collectors see commit N before commit N+1
        process_calls = [entry for entry in log if entry[0] == "process"]
        self.assertEqual(process_calls[:2], [
            ("process", "first", "h000"),
            ("process", "second", "h000"),
        ])

    def test_finalize_runs_once_in_registration_order(self):
        log = []
        pipeline = StatsPipeline(reporter=self.reporter)
        for name in ["c", "a", "b"]:
            pipeline.add_collector(RecordingCollector(name, log))

        report = pipeline.run(self.commits)

        finalize_calls = [entry for entry in log if entry[0] == "finalize"]
        self.assertEqual(finalize_calls, [("finalize", "c"), ("finalize", "a"), ("finalize", "b")])
        self.assertEqual([row.name for row in report.summary], ["c", "a", "b"])
        # All process calls happen before the first finalize
        self.assertEqual(log.index(("finalize", "c")), 3 * len(self.commits))

    def test_duplicates_are_not_filtered(self):
        log = []
        collector = RecordingCollector("dup", log)
        pipeline = StatsPipeline(reporter=self.reporter)
        pipeline.add_collector(collector)

        pipeline.run([self.commits[0], self.commits[0]])

        self.assertEqual(collector.seen, ["h000", "h000"])

    def test_failing_collector_does_not_abort_pass(self):
        summary = SummaryStatsCollector()
        pipeline = StatsPipeline(reporter=self.reporter)
        pipeline.add_collector(FailingCollector())
        pipeline.add_collector(summary)

        report = pipeline.run(self.commits)

        self.assertEqual(summary.commit_count, 10)
        self.assertEqual(len(pipeline.errors), 10)
        self.assertIn("FailingCollector failed on h000: boom", pipeline.errors[0])
        self.assertIn(SummaryRow("Number of commits", "10"), report.summary)

    def test_accepts_unsized_iterables(self):
        collector = TotalCommitsByDayCollector()
        pipeline = StatsPipeline(reporter=self.reporter)
        pipeline.add_collector(collector)

        report = pipeline.run(commit for commit in self.commits)

        self.assertEqual(pipeline.metrics.commits_processed, 10)
        self.assertEqual(sum(row.value for row in report.total_commits_by_day), 10)

    def test_empty_history(self):
        pipeline = StatsPipeline(reporter=self.reporter)
        for collector in create_stat_collectors():
            pipeline.add_collector(collector)

        report = pipeline.run([])

        summary = {row.name: row.value for row in report.summary}
        self.assertEqual(summary["Number of commits"], "0")
        self.assertEqual(summary["First committer"], "")
        self.assertEqual(summary["Avg size of a commit message"], "0 B")
        self.assertEqual(report.total_commits_by_day, [])
        self.assertEqual(report.punch_data, [])
        self.assertEqual(report.json_items[0].data, [])

    def test_metrics_record_each_collector(self):
        pipeline = StatsPipeline(reporter=self.reporter)
        for collector in create_stat_collectors():
            pipeline.add_collector(collector)

        pipeline.run(self.commits)

        metrics = pipeline.metrics.to_dict()
        self.assertEqual(metrics["commits_processed"], 10)
        self.assertEqual(
            sorted(metrics["collector_times"]),
            sorted(c.name for c in pipeline.collectors),
        )


class TestAggregationProperties(unittest.TestCase):
    """Totals must not depend on how the history is ordered"""

    def run_all(self, commits):
        pipeline = StatsPipeline()
        for collector in create_stat_collectors():
            pipeline.add_collector(collector)
        return pipeline.run(commits)

    def test_day_series_reproduce_summary_totals(self):
        commits = build_history(40)
        report = self.run_all(commits)
        summary = {row.name: row.value for row in report.summary}

        self.assertEqual(
            sum(row.lines_added for row in report.total_lines_by_day),
            int(summary["Total lines added"]),
        )
        self.assertEqual(
            sum(row.lines_deleted for row in report.total_lines_by_day),
            int(summary["Total lines deleted"]),
        )
        self.assertEqual(
            sum(row.value for row in report.total_commits_by_day), len(commits)
        )
        self.assertEqual(
            sum(row.files_modified for row in report.total_files_by_day), len(commits)
        )

    def test_output_does_not_depend_on_input_order(self):
        commits = build_history(25)
        forward = self.run_all(commits)
        backward = self.run_all(list(reversed(commits)))

        self.assertEqual(forward.total_commits_by_day, backward.total_commits_by_day)
        self.assertEqual(forward.total_lines_by_day, backward.total_lines_by_day)
        self.assertEqual(forward.total_files_by_day, backward.total_files_by_day)
        keys = [row.key for row in backward.total_commits_by_day]
        self.assertEqual(keys, sorted(keys))

        # Only "first" differs: it follows the supplied order
        forward_summary = {row.name: row.value for row in forward.summary}
        backward_summary = {row.name: row.value for row in backward.summary}
        self.assertEqual(forward_summary["First committer"], "author0")
        self.assertEqual(backward_summary["First committer"], "author0")
        self.assertEqual(
            backward_summary["Date of first commit"], str(commits[-1].timestamp)
        )
        self.assertEqual(
            forward_summary["Total lines added"], backward_summary["Total lines added"]
        )

    def test_punch_card_covers_every_commit(self):
        commits = build_history(50)
        report = self.run_all(commits)
        self.assertEqual(sum(row.commits for row in report.punch_data), 50)
        for row in report.punch_data:
            self.assertTrue(0 <= row.weekday <= 6)
            self.assertTrue(0 <= row.hour <= 23)


if __name__ == "__main__":
    unittest.main()
