"""Tests for the run report."""

import os

from workspace_archiver.models import RunContext
from workspace_archiver.report import (
    COMPLETED,
    INTERRUPTED,
    archives_for_run,
    generate_report,
    render_report,
    report_path,
    report_safely,
)

TS = "20240102_030405"


def finished_context():
    ctx = RunContext("/FormerEmployees", run_timestamp=TS, log_file="/var/log/archive_20240102_030405.log")
    ctx.total = 4
    ctx.succeeded = 1
    ctx.skipped_existing = 1
    ctx.skipped_ineligible = 1
    ctx.record_failure("c@x.com", "GYB backup failed for c@x.com (exit 2)")
    return ctx


class TestRender:

    def test_summary_counters(self, settings):
        text = render_report(finished_context(), settings)

        assert "Status: COMPLETED" in text
        assert "OU: /FormerEmployees" in text
        assert "  Total Users: 4" in text
        assert "  Successful: 1" in text
        assert "  Failed: 1" in text
        assert "  Skipped: 2" in text
        assert "    Already Archived: 1" in text
        assert "    No Gmail License: 1" in text
        assert "Not Processed" not in text

    def test_failures_listed_with_reason(self, settings):
        text = render_report(finished_context(), settings)
        assert "Errors Encountered:" in text
        assert "  c@x.com: GYB backup failed for c@x.com (exit 2)" in text
        assert "Full log: /var/log/archive_20240102_030405.log" in text

    def test_only_this_runs_archives_listed(self, settings, make_archive):
        make_archive("a@x.com", run_timestamp="20230101_000000")
        make_archive("b@x.com", run_timestamp=TS, content=b"x" * 2048)

        text = render_report(finished_context(), settings)

        assert "b@x.com_20240102_030405.tar.gz - 2.00 KB" in text
        assert "a@x.com_20230101_000000" not in text
        assert archives_for_run(settings.archive_dir, TS) == [("b@x.com_20240102_030405.tar.gz", 2048)]

    def test_no_archives_placeholder(self, settings):
        ctx = RunContext("/FormerEmployees", run_timestamp=TS)
        text = render_report(ctx, settings)
        assert "(No new archives created)" in text
        assert "Errors Encountered:" not in text

    def test_interrupted_run_shows_remaining(self, settings):
        ctx = RunContext("/FormerEmployees", run_timestamp=TS)
        ctx.total = 5
        ctx.succeeded = 2

        text = render_report(ctx, settings, INTERRUPTED)

        assert "Status: INTERRUPTED" in text
        assert "  Not Processed: 3" in text

    def test_dry_run_marked(self, settings):
        ctx = RunContext("/FormerEmployees", dry_run=True, run_timestamp=TS)
        assert "Mode: DRY RUN" in render_report(ctx, settings)


class TestGenerate:

    def test_written_to_reports_dir(self, settings, capsys):
        path = generate_report(finished_context(), settings, COMPLETED)

        assert path == report_path(settings, TS)
        assert os.path.basename(path) == "archive_report_20240102_030405.txt"
        with open(path) as f:
            assert "Total Users: 4" in f.read()
        assert "Google Workspace Archive Report" in capsys.readouterr().out

    def test_creates_missing_report_dir(self, settings):
        os.rmdir(settings.report_dir)
        assert os.path.exists(generate_report(finished_context(), settings))

    def test_report_safely_never_raises(self, settings, caplog):
        with open(os.path.join(settings.base_dir, "blocker"), "w"):
            pass
        settings.report_dir = os.path.join(settings.base_dir, "blocker", "reports")

        assert report_safely(finished_context(), settings) is None
        assert "Could not write interrupted report" in caplog.text
