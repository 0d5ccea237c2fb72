import os
import re
import logging
import subprocess

from workspace_archiver.errors import BackupError, RateLimitError, RunInterrupted
from workspace_archiver.log import log_success
from workspace_archiver.models import JobState
from workspace_archiver.monitor import GybProgressMonitor

logger = logging.getLogger(__name__)

# GYB exits non-zero for users without a Gmail license; that is a skip, not a failure
INELIGIBLE_PATTERN = re.compile(r"mail service not enabled|failedPrecondition", re.IGNORECASE)
# HTTP 429 only counts next to a status word; progress lines like "backed up 1429 of 3000" must not match
RATE_LIMIT_PATTERN = re.compile(r"rate ?limit|quota|\b(?:httperror|http|status|code|error)\W{0,3}429\b", re.IGNORECASE)

WAIT_SLICE = 0.5
TERMINATE_GRACE = 10
MONITOR_JOIN_TIMEOUT = 5


def classify_failure(text):
    """Maps the log text of a failed attempt to INELIGIBLE, RATE_LIMIT or None."""
    if INELIGIBLE_PATTERN.search(text):
        return "INELIGIBLE"
    if RATE_LIMIT_PATTERN.search(text):
        return "RATE_LIMIT"
    return None


def count_files(directory):
    total = 0
    for _root, _dirs, files in os.walk(directory):
        total += len(files)
    return total


class GybBackupRunner:
    """Runs GYB for one user at a time and decides what its exit meant."""

    def __init__(self, settings, cancel_event, emit=None):
        self.settings = settings
        self.cancel = cancel_event
        self.emit = emit
        self.state = JobState.PENDING

    def work_dir(self, identifier):
        return os.path.join(self.settings.temp_dir, identifier)

    def log_path(self, identifier, run_timestamp):
        return os.path.join(self.settings.log_dir, f"gyb_{identifier}_{run_timestamp}.log")

    def build_command(self, identifier, work_dir):
        return [self.settings.gyb_bin,
                "--email", identifier,
                "--service-account",
                "--action", "backup",
                "--local-folder", work_dir]

    def run(self, entity, run_timestamp, dry_run=False):
        """
        Backs up one user. Returns JobState.SUCCEEDED or JobState.SKIPPED_INELIGIBLE.

        Rate limits are retried up to max_attempts with retry_delay between
        attempts. Anything else raises BackupError. Raises RunInterrupted if the
        run is cancelled while GYB is running or during a retry wait.
        """
        identifier = entity.identifier
        work_dir = self.work_dir(identifier)
        max_attempts = self.settings.max_attempts

        if dry_run:
            cmd = " ".join(self.build_command(identifier, work_dir))
            logger.info("[DRY RUN] Would execute: %s", cmd)
            self.state = JobState.SUCCEEDED
            return self.state

        log_path = self.log_path(identifier, run_timestamp)
        attempt = 1
        while True:
            logger.info("Starting GYB backup for: %s (Attempt %d/%d)", identifier, attempt, max_attempts)
            try:
                self.state = self._attempt(identifier, work_dir, log_path)
                return self.state
            except OSError as e:
                self.state = JobState.FAILED
                raise BackupError(f"GYB backup failed for {identifier}: {e}", log_path=log_path)
            except RateLimitError as e:
                logger.warning("Rate limit detected for %s", identifier)
                if attempt >= max_attempts:
                    self.state = JobState.FAILED
                    raise BackupError(
                        f"GYB backup failed for {identifier}: still rate limited after {attempt} attempt(s)",
                        log_path=e.log_path,
                    )

            self.state = JobState.RETRY_WAIT
            logger.info("Waiting %ss before retry...", self.settings.retry_delay)
            if self.cancel.wait(self.settings.retry_delay):
                raise RunInterrupted(f"Interrupted while waiting to retry {identifier}")
            attempt += 1

    def _attempt(self, identifier, work_dir, log_path):
        os.makedirs(work_dir, exist_ok=True)
        os.makedirs(os.path.dirname(log_path), exist_ok=True)

        # Only this attempt's output counts for classification and progress
        start_offset = os.path.getsize(log_path) if os.path.exists(log_path) else 0

        monitor = GybProgressMonitor(
            log_path, identifier,
            start_offset=start_offset,
            emit=self.emit,
            poll_interval=self.settings.poll_interval,
            appear_timeout=self.settings.appear_timeout,
            report_every=self.settings.report_every,
        )

        self.state = JobState.RUNNING
        with open(log_path, "ab") as log_stream:
            try:
                proc = subprocess.Popen(self.build_command(identifier, work_dir),
                                        stdout=log_stream, stderr=subprocess.STDOUT)
            except OSError as e:
                raise BackupError(f"Could not start GYB ({self.settings.gyb_bin}): {e}", log_path=log_path)

            monitor.start()
            try:
                returncode = self._wait(proc, identifier)
            finally:
                monitor.stop()
                monitor.join(MONITOR_JOIN_TIMEOUT)

        if returncode == 0:
            self._drain(monitor)
            log_success(logger, "GYB backup completed for: %s", identifier)
            file_count = count_files(work_dir)
            if file_count == 0:
                logger.warning("No files backed up for %s (empty mailbox?)", identifier)
            else:
                logger.info("Backed up %d file(s) for %s", file_count, identifier)
            return JobState.SUCCEEDED

        text = self._read_from(log_path, start_offset)
        verdict = classify_failure(text)

        if verdict == "INELIGIBLE":
            logger.warning("User %s has no Gmail license (mail service not enabled)", identifier)
            logger.warning("Skipping backup - mailbox may have been deleted when license was removed")
            return JobState.SKIPPED_INELIGIBLE

        if verdict == "RATE_LIMIT":
            raise RateLimitError(f"GYB hit a rate limit for {identifier}", log_path=log_path)

        self.state = JobState.FAILED
        logger.error("GYB backup failed for: %s (exit %d)", identifier, returncode)
        logger.error("Check log file: %s", log_path)
        raise BackupError(f"GYB backup failed for {identifier} (exit {returncode})", log_path=log_path)

    def _wait(self, proc, identifier):
        """Waits for GYB in short slices so a cancellation is noticed promptly."""
        while True:
            try:
                return proc.wait(timeout=WAIT_SLICE)
            except subprocess.TimeoutExpired:
                pass
            if self.cancel.is_set():
                logger.warning("Stopping GYB for %s (run interrupted)", identifier)
                proc.terminate()
                try:
                    proc.wait(timeout=TERMINATE_GRACE)
                except subprocess.TimeoutExpired:
                    proc.kill()
                    proc.wait()
                raise RunInterrupted(f"Interrupted during backup of {identifier}")

    @staticmethod
    def _drain(monitor):
        """Final poll once the monitor thread is gone, so a job that ends between polls still reports 100%."""
        if monitor.finished or monitor.is_alive():
            return
        try:
            monitor.poll_once()
        except Exception:
            logger.debug("Final progress poll failed for %s", monitor.identifier, exc_info=True)

    @staticmethod
    def _read_from(path, offset):
        try:
            with open(path, "rb") as f:
                f.seek(offset)
                return f.read().decode("utf-8", errors="replace")
        except OSError:
            return ""
