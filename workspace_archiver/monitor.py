import os
import re
import time
import logging
import threading

from workspace_archiver.models import ProgressSample

logger = logging.getLogger(__name__)

TOTAL_PATTERN = re.compile(r"GYB needs to backup (\d+) messages")
PROGRESS_PATTERN = re.compile(r"backed up (\d+) of (\d+) messages")

APPEAR_CHECK_INTERVAL = 0.5


def default_emit(kind, identifier, sample):
    if kind == "total":
        logger.info("Found %d message(s) to backup for %s", sample.units_total, identifier)
    else:
        logger.info("Progress: %d/%d messages (%d%%)", sample.units_done, sample.units_total, sample.percent)


class GybProgressMonitor(threading.Thread):
    """
    Polls a GYB log and reports how far the backup has got.

    GYB rewrites its progress in place with carriage returns, so each poll
    rereads the log and keeps only the latest "backed up K of N" marker.
    Events go to `emit(kind, identifier, sample)` where kind is "total" or
    "progress". The thread never touches the job itself; the runner stops it.
    """

    def __init__(self, log_path, identifier, start_offset=0, emit=None,
                 poll_interval=2.0, appear_timeout=10.0, report_every=500):
        super().__init__(name=f"gyb-monitor-{identifier}")
        self.daemon = True
        self.log_path = log_path
        self.identifier = identifier
        self.start_offset = start_offset
        self.emit = emit or default_emit
        self.poll_interval = poll_interval
        self.appear_timeout = appear_timeout
        self.report_every = report_every
        self.stop_signal = threading.Event()

        self.total = 0
        self.last_reported = 0
        self.last_sample = None
        self.finished = False

    def stop(self):
        self.stop_signal.set()

    def wait_for_log(self):
        """True once the log exists. Gives up after appear_timeout or on stop()."""
        deadline = time.monotonic() + self.appear_timeout
        while not os.path.exists(self.log_path):
            if self.stop_signal.is_set() or time.monotonic() >= deadline:
                return False
            self.stop_signal.wait(APPEAR_CHECK_INTERVAL)
        return True

    def read_log(self):
        try:
            with open(self.log_path, "rb") as f:
                f.seek(self.start_offset)
                return f.read().decode("utf-8", errors="replace")
        except OSError:
            return None

    def poll_once(self):
        """One monitoring pass. Returns False when monitoring should end."""
        text = self.read_log()
        if text is None:
            return False

        # 1. Total discovered
        if not self.total:
            totals = TOTAL_PATTERN.findall(text)
            if totals and int(totals[-1]) > 0:
                self.total = int(totals[-1])
                self.emit("total", self.identifier, ProgressSample(0, self.total))

        # 2. Latest progress marker only
        markers = PROGRESS_PATTERN.findall(text)
        if not markers:
            return True

        current, total = (int(n) for n in markers[-1])
        if total <= 0 or current < self.last_reported:
            return True

        sample = ProgressSample(current, total)
        if current - self.last_reported >= self.report_every or sample.complete:
            self.emit("progress", self.identifier, sample)
            self.last_sample = sample
            self.last_reported = current

        if sample.complete:
            self.finished = True
            return False
        return True

    def run(self):
        if not self.wait_for_log():
            return

        while not self.stop_signal.is_set():
            if not os.path.exists(self.log_path):
                break
            try:
                if not self.poll_once():
                    break
            except Exception:
                # Progress reporting is best-effort and must never fail the job
                logger.debug("Progress monitor for %s stopped on error", self.identifier, exc_info=True)
                break
            self.stop_signal.wait(self.poll_interval)
