"""
Unit tests for the run summary.

Tests cover:
- Stage counters
- Wait warnings
- Totals and JSON output
"""

import json

from cv_lifecycle.summary import RunSummary
from cv_lifecycle.watcher import WaitOutcome, WatchState


class TestRunSummary:
    """Tests for RunSummary."""

    def test_stage_counters(self):
        """Successes and failures are attempts, skips are not."""
        summary = RunSummary()
        stage = summary.stage("publish-cv")
        stage.record_success("OS-Base")
        stage.record_failure("Apps", RuntimeError("boom"))
        stage.record_skip()

        assert stage.attempted == 2
        assert stage.succeeded == 1
        assert stage.failed == 1
        assert stage.skipped == 1
        assert summary.stage("publish-cv") is stage

    def test_unconfirmed_wait_adds_warning(self):
        """Exhausted waits are reported as warnings."""
        summary = RunSummary()
        summary.add_wait(WaitOutcome("publish", WatchState.COMPLETED, 1))
        summary.add_wait(WaitOutcome("promote", WatchState.EXHAUSTED, 60))

        assert len(summary.waits) == 2
        assert summary.warnings == ["Tasks 'promote' not confirmed finished after 60 polls"]

    def test_totals(self):
        """Totals aggregate across stages."""
        summary = RunSummary()
        summary.stage("publish-cv").record_success("A")
        summary.stage("publish-ccv").record_success("B")
        summary.stage("promote").record_success("B", version="2.0")
        summary.stage("cleanup-cv").record_success("A", version="1.0")
        summary.stage("cleanup-ccv").record_failure("B", "refused", version="1.0")

        assert summary.totals == {"published": 2, "promoted": 1, "deleted": 1, "failed": 1}
        assert summary.has_failures

    def test_abort(self):
        """Abort records the fatal error."""
        summary = RunSummary()
        summary.abort(RuntimeError("server down"))

        assert summary.aborted
        assert summary.fatal_error == "server down"

    def test_to_json(self):
        """JSON output is machine readable."""
        summary = RunSummary()
        summary.stage("cleanup-cv").record_failure("OS-Base", "refused", version="3.0")
        data = json.loads(summary.finish().to_json())

        assert data["aborted"] is False
        assert data["finished_at"] is not None
        assert data["stages"]["cleanup-cv"]["failed"] == 1
        assert data["stages"]["cleanup-cv"]["failures"] == [
            {"entity": "OS-Base", "version": "3.0", "error": "refused", "attempts": 1}
        ]
        assert data["totals"]["failed"] == 1
