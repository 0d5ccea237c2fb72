import enum
import threading
from collections import namedtuple
from datetime import datetime

EntityRecord = namedtuple("EntityRecord", ["identifier", "display_name"])

ArchiveRecord = namedtuple("ArchiveRecord", ["entity_identifier", "created_at", "size_bytes", "path"])


class JobState(enum.Enum):
    PENDING = "pending"
    SKIPPED_EXISTING = "skipped_existing"
    SKIPPED_INELIGIBLE = "skipped_ineligible"
    RUNNING = "running"
    RETRY_WAIT = "retry_wait"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


class ProgressSample(namedtuple("ProgressSample", ["units_done", "units_total"])):
    __slots__ = ()

    @property
    def percent(self):
        if self.units_total <= 0:
            return 0
        return self.units_done * 100 // self.units_total

    @property
    def complete(self):
        return self.units_total > 0 and self.units_done >= self.units_total


def make_run_timestamp(now=None):
    return (now or datetime.now()).strftime("%Y%m%d_%H%M%S")


class RunContext:
    """
    State for one archival run, owned by the pipeline controller.

    The counters are only touched from the main thread. `cancel` is the
    cooperative interruption signal shared with the in-flight backup job.
    """

    def __init__(self, group_path, dry_run=False, run_timestamp=None, log_file=None):
        self.group_path = group_path
        self.dry_run = dry_run
        self.started_at = datetime.now()
        self.run_timestamp = run_timestamp or make_run_timestamp(self.started_at)
        self.log_file = log_file
        self.cancel = threading.Event()

        self.total = 0
        self.succeeded = 0
        self.failed = 0
        self.skipped_existing = 0
        self.skipped_ineligible = 0
        self.failures = []
        self.archives = []

    @property
    def skipped(self):
        return self.skipped_existing + self.skipped_ineligible

    @property
    def processed(self):
        return self.succeeded + self.failed + self.skipped

    def record_failure(self, identifier, reason):
        self.failed += 1
        self.failures.append((identifier, reason))

    def counters(self):
        return {
            "total": self.total,
            "succeeded": self.succeeded,
            "failed": self.failed,
            "skipped": self.skipped,
        }
