import os
import logging
from datetime import datetime

from workspace_archiver.log import log_success
from workspace_archiver.packager import ARCHIVE_EXT, format_bytes

logger = logging.getLogger(__name__)

COMPLETED = "COMPLETED"
INTERRUPTED = "INTERRUPTED"

RULE = "=" * 38
THIN_RULE = "-" * 38


def report_path(settings, run_timestamp):
    return os.path.join(settings.report_dir, f"archive_report_{run_timestamp}.txt")


def archives_for_run(archive_dir, run_timestamp):
    """(name, size) of every artifact stamped with this run's timestamp."""
    suffix = f"_{run_timestamp}{ARCHIVE_EXT}"
    if not os.path.isdir(archive_dir):
        return []
    found = []
    for name in sorted(os.listdir(archive_dir)):
        path = os.path.join(archive_dir, name)
        if name.endswith(suffix) and os.path.isfile(path):
            found.append((name, os.path.getsize(path)))
    return found


def render_report(context, settings, status=COMPLETED):
    lines = [
        RULE,
        "Google Workspace Archive Report",
        RULE,
        f"Timestamp: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}",
        f"Status: {status}",
        f"OU: {context.group_path}",
    ]
    if context.dry_run:
        lines.append("Mode: DRY RUN (no archives written)")
    lines += ["", "Archives Created:", THIN_RULE]

    created = archives_for_run(settings.archive_dir, context.run_timestamp)
    for name, size in created:
        lines.append(f"  {name} - {format_bytes(size)}")
    if not created:
        lines.append("  (No new archives created)")

    lines += [
        "",
        "Summary:",
        f"  Total Users: {context.total}",
        f"  Successful: {context.succeeded}",
        f"  Failed: {context.failed}",
        f"  Skipped: {context.skipped}",
        f"    Already Archived: {context.skipped_existing}",
        f"    No Gmail License: {context.skipped_ineligible}",
    ]
    unprocessed = context.total - context.processed
    if unprocessed > 0:
        lines.append(f"  Not Processed: {unprocessed}")
    lines.append("")

    if context.failures:
        lines.append("Errors Encountered:")
        for identifier, reason in context.failures:
            lines.append(f"  {identifier}: {reason}")
        lines.append("  Check log file for details")
        lines.append("")

    lines.append(f"Full log: {context.log_file or '(not logged to file)'}")
    lines.append(RULE)
    return "\n".join(lines) + "\n"


def generate_report(context, settings, status=COMPLETED):
    """Writes the summary report to reports/, echoes it to stdout and returns its path."""
    logger.info("Generating report...")
    text = render_report(context, settings, status)
    path = report_path(settings, context.run_timestamp)

    os.makedirs(settings.report_dir, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        f.write(text)

    print(text)
    log_success(logger, "Report saved to: %s", path)
    return path


def report_safely(context, settings, status=INTERRUPTED):
    """generate_report() for the interruption path: failures are logged, never raised."""
    try:
        return generate_report(context, settings, status)
    except Exception as e:
        logger.error("Could not write %s report: %s", status.lower(), e)
        return None
