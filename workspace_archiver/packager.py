import os
import re
import time
import shutil
import logging
import threading
import subprocess
from datetime import datetime

from workspace_archiver.errors import PackagingError
from workspace_archiver.log import log_success
from workspace_archiver.models import ArchiveRecord

logger = logging.getLogger(__name__)

ARCHIVE_EXT = ".tar.gz"
# Compressed mail typically lands around 60% of the raw size
COMPRESSION_RATIO = 0.6

# Length of "[DISK: TAR]" is 11. We add 2 for spacing.
STATUS_WIDTH = 13


def format_bytes(size):
    """Converts raw bytes to human readable format."""
    power = 2**10
    n = float(size)
    power_labels = {0: 'B', 1: 'KB', 2: 'MB', 3: 'GB', 4: 'TB'}
    loop = 0
    while n >= power and loop < 4:
        n /= power
        loop += 1
    return f"{n:.2f} {power_labels[loop]}"


def get_tree_size(path):
    """Sum of file sizes under path using scandir."""
    total = 0
    try:
        if os.path.isdir(path):
            for entry in os.scandir(path):
                if entry.is_file(follow_symlinks=False):
                    total += entry.stat().st_size
                elif entry.is_dir(follow_symlinks=False):
                    total += get_tree_size(entry.path)
        elif os.path.exists(path):
            total = os.path.getsize(path)
    except OSError:
        pass
    return total


def archive_name(identifier, run_timestamp):
    return f"{identifier}_{run_timestamp}{ARCHIVE_EXT}"


def find_existing_archives(archive_dir, identifier):
    """Artifacts named exactly <identifier>_YYYYMMDD_HHMMSS.tar.gz, sorted by name."""
    if not os.path.isdir(archive_dir):
        return []
    pattern = re.compile(re.escape(identifier) + r"_\d{8}_\d{6}" + re.escape(ARCHIVE_EXT))
    return sorted(
        os.path.join(archive_dir, name)
        for name in os.listdir(archive_dir)
        if pattern.fullmatch(name)
    )


def is_strictly_inside(path, root):
    """True when path resolves to somewhere below root (never root itself)."""
    real_path = os.path.realpath(path)
    real_root = os.path.realpath(root)
    if real_path == real_root:
        return False
    try:
        return os.path.commonpath([real_path, real_root]) == real_root
    except ValueError:
        return False


class Heartbeat(threading.Thread):
    """Prints the growing size of a file while an external tool writes it."""

    def __init__(self, filepath, target_size, status="DISK: TAR", interval=0.5):
        super().__init__()
        self.daemon = True
        self.filepath = filepath
        self.target_size = target_size
        self.interval = interval
        self.stop_signal = threading.Event()
        self.tag = f"[{status}]"
        self.last_line = ""
        self.started = time.monotonic()

    def run(self):
        while not self.stop_signal.is_set():
            if os.path.exists(self.filepath):
                try:
                    current = os.path.getsize(self.filepath)
                    divisor = (self.target_size * COMPRESSION_RATIO) if self.target_size > 0 else 1
                    pct = min(100.0, (current / divisor) * 100)
                    self.last_line = f"  {self.tag:<{STATUS_WIDTH}}: {pct:.1f}% compressing ({format_bytes(current)})    "
                    print(f"{self.last_line:<100}", end="\r", flush=True)
                except (OSError, ZeroDivisionError):
                    pass
            else:
                self.last_line = f"  {self.tag:<{STATUS_WIDTH}}: Preparing stream..."
                print(f"{self.last_line:<100}", end="\r", flush=True)
            self.stop_signal.wait(self.interval)

    def stop(self, done=True):
        self.stop_signal.set()
        if done and self.last_line:
            elapsed = time.monotonic() - self.started
            print(f"\r{f'  {self.tag:<{STATUS_WIDTH}}: 100.0% compressed [DONE] ({elapsed:.1f}s)':<100}")


class ArchivePackager:
    """Turns a finished GYB working directory into one locked-down .tar.gz."""

    def __init__(self, settings, heartbeat=True):
        self.settings = settings
        self.heartbeat = heartbeat

    def package(self, entity, run_timestamp, dry_run=False):
        identifier = entity.identifier
        temp_root = self.settings.temp_dir
        work_dir = os.path.join(temp_root, identifier)
        name = archive_name(identifier, run_timestamp)
        archive_path = os.path.join(self.settings.archive_dir, name)

        logger.info("Compressing backup for: %s", identifier)

        if dry_run:
            logger.info("[DRY RUN] Would create archive: %s", archive_path)
            return None

        if not is_strictly_inside(work_dir, temp_root):
            raise PackagingError(f"Unsafe temp directory path: {work_dir}")

        # An empty archive still marks the user as processed for future runs
        try:
            if not os.path.isdir(work_dir):
                logger.warning("Temp directory not found for %s, creating empty archive", identifier)
                os.makedirs(work_dir, exist_ok=True)
            elif not any(files for _r, _d, files in os.walk(work_dir)):
                logger.warning("No files to compress for %s", identifier)
            os.makedirs(self.settings.archive_dir, exist_ok=True)
        except OSError as e:
            raise PackagingError(f"Cannot prepare archive for {identifier}: {e}")
        partial_path = archive_path + ".partial"
        cmd = ["tar", "-czf", partial_path, "-C", temp_root, "--", identifier]

        hb = None
        result = None
        if self.heartbeat:
            hb = Heartbeat(partial_path, get_tree_size(work_dir))
            hb.start()

        try:
            result = subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.PIPE)
        except OSError as e:
            self._discard(partial_path)
            raise PackagingError(f"Could not run tar: {e}")
        except BaseException:
            # Second Ctrl-C while tar runs
            self._discard(partial_path)
            raise
        finally:
            if hb:
                hb.stop(done=result is not None and result.returncode == 0)
                hb.join()

        if result.returncode != 0:
            self._discard(partial_path)
            stderr = result.stderr.decode(errors="replace").strip()
            raise PackagingError(f"Failed to create archive for {identifier}: {stderr or 'tar exit ' + str(result.returncode)}")

        try:
            os.chmod(partial_path, 0o600)
            os.replace(partial_path, archive_path)
        except OSError as e:
            self._discard(partial_path)
            raise PackagingError(f"Failed to finalize archive for {identifier}: {e}")

        size = os.path.getsize(archive_path)
        log_success(logger, "Archive created: %s (%s)", name, format_bytes(size))

        self._cleanup_work_dir(work_dir, identifier)

        return ArchiveRecord(identifier, datetime.now(), size, archive_path)

    def _cleanup_work_dir(self, work_dir, identifier):
        if is_strictly_inside(work_dir, self.settings.temp_dir) and os.path.isdir(work_dir):
            try:
                shutil.rmtree(work_dir)
            except OSError as e:
                raise PackagingError(
                    f"Archive created for {identifier} but temp directory {work_dir} could not be removed: {e}")
            logger.info("Cleaned up temporary files for: %s", identifier)
        else:
            logger.error("Unsafe temp directory path: %s - skipping cleanup", work_dir)

    @staticmethod
    def _discard(path):
        if os.path.exists(path):
            try:
                os.remove(path)
            except OSError as e:
                logger.warning("Could not remove partial archive %s: %s", path, e)
