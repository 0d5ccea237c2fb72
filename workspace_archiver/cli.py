import os
import sys
import signal
import socket
import getpass
import logging
import argparse

from workspace_archiver import VERSION
from workspace_archiver.backup import GybBackupRunner
from workspace_archiver.config import load_settings
from workspace_archiver.confirm import confirm_batch, confirm_single
from workspace_archiver.discovery import discover, gam_version, remove_user_lists
from workspace_archiver.errors import (
    ConfigError, DependencyError, DiscoveryError, RunInterrupted, ValidationError,
)
from workspace_archiver.log import log_separator, setup_logging
from workspace_archiver.models import EntityRecord, RunContext
from workspace_archiver.packager import ArchivePackager
from workspace_archiver.pipeline import ArchivePipeline
from workspace_archiver.preflight import check_dependencies, create_directories
from workspace_archiver.report import COMPLETED, INTERRUPTED, generate_report, report_safely
from workspace_archiver.validation import validate_account_identifier, validate_group_path

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INTERRUPTED = 130

EPILOG = """\
examples:
  # Archive all users in the FormerEmployees OU
  archive-workspace-users

  # Dry run to see what would happen
  archive-workspace-users --dry-run

  # Archive a specific user
  archive-workspace-users --user user@domain.com

  # Use a custom OU
  archive-workspace-users --ou "/SuspendedUsers"

configuration:
  Settings come from archiver.cfg (or --config / $ARCHIVER_CONFIG). These
  environment variables override it: FORMER_EMPLOYEES_OU, ARCHIVE_BASE_DIR,
  TEMP_DIR, LOG_DIR, REPORT_DIR, GAM_BIN, GYB_BIN.

  GAM and GYB must already be configured with OAuth / service account
  credentials. This tool does not manage authentication.
"""


def build_parser():
    parser = argparse.ArgumentParser(
        prog="archive-workspace-users",
        description="Back up the Gmail data of every user in a Google Workspace OU with GYB.",
        epilog=EPILOG,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--dry-run", action="store_true", help="Show what would be done without executing")
    parser.add_argument("--user", metavar="EMAIL", help="Archive only the specified user")
    parser.add_argument("--ou", metavar="PATH", help="Use a custom organizational unit path")
    parser.add_argument("--config", metavar="FILE", help="Path to archiver.cfg")
    parser.add_argument("--version", action="version", version=f"%(prog)s {VERSION}")
    return parser


class InterruptGuard:
    """
    Turns SIGINT/SIGTERM into the run's cooperative cancel event.

    The first signal asks the pipeline to stop after tearing down the current
    GYB process; a second one raises KeyboardInterrupt immediately.
    """

    SIGNALS = (signal.SIGINT, signal.SIGTERM)

    def __init__(self, cancel_event):
        self.cancel = cancel_event
        self.previous = {}

    def _handle(self, signum, frame):
        if self.cancel.is_set():
            raise KeyboardInterrupt
        logger.warning("Interrupt received (%s). Stopping after the current step...", signal.Signals(signum).name)
        self.cancel.set()

    def __enter__(self):
        for sig in self.SIGNALS:
            self.previous[sig] = signal.signal(sig, self._handle)
        return self

    def __exit__(self, exc_type, exc, tb):
        for sig, handler in self.previous.items():
            signal.signal(sig, handler)
        return False


def log_audit_trail(settings, context):
    log_separator(logger, "Google Workspace User Archive Script Started")
    try:
        user = getpass.getuser()
    except (KeyError, OSError):
        user = "unknown"
    logger.info("Executed by: %s on %s", user, socket.gethostname())
    logger.info("Working directory: %s", os.getcwd())
    logger.info("GAM version: %s", gam_version(settings))
    if context.dry_run:
        logger.info("Running in DRY RUN mode - no changes will be made")


def build_pipeline(settings, context):
    vault = None
    if settings.vault_enabled and not context.dry_run:
        from workspace_archiver.vault import S3Vault
        vault = S3Vault(settings)
    runner = GybBackupRunner(settings, context.cancel)
    packager = ArchivePackager(settings, heartbeat=sys.stdout.isatty())
    return ArchivePipeline(settings, context, runner, packager, vault=vault)


def run_single_user(args, settings, context):
    identifier = validate_account_identifier(args.user.strip())
    logger.info("Single user mode: %s", identifier)

    if not confirm_single(identifier, context.dry_run):
        logger.info("Operation cancelled by user")
        return EXIT_OK

    pipeline = build_pipeline(settings, context)
    with InterruptGuard(context.cancel):
        pipeline.run([EntityRecord(identifier, "")])

    generate_report(context, settings, COMPLETED)
    log_separator(logger, "Script Completed")
    return EXIT_OK


def run_batch(settings, context):
    validate_group_path(context.group_path)
    entities = discover(context.group_path, settings, context.run_timestamp)

    if not confirm_batch(entities, context.group_path, context.dry_run):
        logger.info("Operation cancelled by user")
        remove_user_lists(settings, context.run_timestamp)
        return EXIT_OK

    pipeline = build_pipeline(settings, context)
    with InterruptGuard(context.cancel):
        pipeline.run(entities)

    remove_user_lists(settings, context.run_timestamp)

    log_separator(logger, "Processing Complete")
    generate_report(context, settings, COMPLETED)
    log_separator(logger, "Script Completed Successfully")
    logger.info("Total: %d | Success: %d | Failed: %d | Skipped: %d",
                context.total, context.succeeded, context.failed, context.skipped)
    return EXIT_OK


def handle_interrupt(settings, context):
    logger.warning("Script interrupted. Cleaning up...")
    report_safely(context, settings, INTERRUPTED)
    remove_user_lists(settings, context.run_timestamp)
    logger.info("Cleanup complete. Exiting.")
    return EXIT_INTERRUPTED


def main(argv=None):
    args = build_parser().parse_args(argv)

    try:
        settings = load_settings(args.config)
    except ConfigError as e:
        print(f"[FATAL] {e}", file=sys.stderr)
        return EXIT_FAILURE

    context = RunContext(args.ou or settings.group_path, dry_run=args.dry_run)

    # Log and report dirs come first so every later failure is recorded
    os.makedirs(settings.log_dir, exist_ok=True)
    os.makedirs(settings.report_dir, exist_ok=True)
    context.log_file = os.path.join(settings.log_dir, f"archive_{context.run_timestamp}.log")
    setup_logging(context.log_file)

    try:
        log_audit_trail(settings, context)
        check_dependencies(settings)
        create_directories(settings)

        if args.user:
            return run_single_user(args, settings, context)
        return run_batch(settings, context)

    except DependencyError:
        logger.error("Dependency check failed. Exiting.")
        return EXIT_FAILURE
    except ValidationError as e:
        logger.error("%s", e)
        return EXIT_FAILURE
    except DiscoveryError as e:
        logger.error("%s", e)
        logger.error("User discovery failed. Exiting.")
        return EXIT_FAILURE
    except OSError as e:
        logger.error("Filesystem error: %s", e)
        return EXIT_FAILURE
    except (RunInterrupted, KeyboardInterrupt):
        return handle_interrupt(settings, context)
