import os
import logging

from workspace_archiver.errors import BackupError, PackagingError, RunInterrupted, VaultError
from workspace_archiver.ledger import log_archive_transaction
from workspace_archiver.log import log_separator, log_success
from workspace_archiver.models import JobState
from workspace_archiver.packager import find_existing_archives, format_bytes

logger = logging.getLogger(__name__)


class ArchivePipeline:
    """
    Drives users one at a time through existence check, GYB backup, packaging
    and bookkeeping.

    Per-user failures are recorded on the RunContext and never stop the batch.
    Only RunInterrupted leaves run().
    """

    def __init__(self, settings, context, runner, packager, vault=None):
        self.settings = settings
        self.context = context
        self.runner = runner
        self.packager = packager
        self.vault = vault

    def check_existing_archive(self, identifier):
        existing = find_existing_archives(self.settings.archive_dir, identifier)
        if existing:
            logger.info("Archive already exists for %s:", identifier)
            for path in existing:
                logger.info("  - %s (%s)", os.path.basename(path), format_bytes(os.path.getsize(path)))
        return bool(existing)

    def process_entity(self, entity):
        """Runs one user end to end and returns the JobState it finished in."""
        ctx = self.context
        identifier = entity.identifier
        log_separator(logger, f"Processing: {identifier}")

        # 1. Resume check
        if self.check_existing_archive(identifier):
            logger.info("Skipping %s (already archived)", identifier)
            ctx.skipped_existing += 1
            return JobState.SKIPPED_EXISTING

        # 2. Backup
        try:
            state = self.runner.run(entity, ctx.run_timestamp, dry_run=ctx.dry_run)
        except BackupError as e:
            logger.error("Backup failed for: %s", identifier)
            ctx.record_failure(identifier, str(e))
            return JobState.FAILED

        if state == JobState.SKIPPED_INELIGIBLE:
            logger.info("Skipping %s (no Gmail license)", identifier)
            ctx.skipped_ineligible += 1
            return state

        # 3. Package
        try:
            record = self.packager.package(entity, ctx.run_timestamp, dry_run=ctx.dry_run)
        except PackagingError as e:
            logger.error("Compression failed for: %s (%s)", identifier, e)
            ctx.record_failure(identifier, str(e))
            return JobState.FAILED
        except OSError as e:
            logger.error("Filesystem error while packaging %s: %s", identifier, e)
            ctx.record_failure(identifier, f"Filesystem error: {e}")
            return JobState.FAILED

        # 4. Bookkeeping
        ctx.succeeded += 1
        if record is not None:
            ctx.archives.append(record)
            log_archive_transaction(self.settings.ledger_file, "ARCHIVE", identifier,
                                    record.path, record.size_bytes, ctx.run_timestamp)
            self._vault(record)

        log_success(logger, "Successfully processed: %s", identifier)
        return JobState.SUCCEEDED

    def _vault(self, record):
        if self.vault is None:
            return
        try:
            self.vault.upload(record, self.context.run_timestamp)
        except VaultError as e:
            # The local artifact stays the resume marker; a re-upload is a manual step
            logger.warning("Off-site copy failed: %s", e)

    def run(self, entities):
        ctx = self.context
        ctx.total = len(entities)
        log_separator(logger, "Beginning Sequential Processing")

        for index, entity in enumerate(entities, 1):
            if ctx.cancel.is_set():
                raise RunInterrupted("Run interrupted before processing " + entity.identifier)

            logger.info("Processing user %d of %d", index, ctx.total)
            self.process_entity(entity)

            delay = self.settings.delay_between_users
            if index < ctx.total and delay > 0 and not ctx.dry_run:
                logger.info("Waiting %ss before next user (rate limiting)...", delay)
                if ctx.cancel.wait(delay):
                    raise RunInterrupted("Run interrupted during inter-user delay")

        return ctx
