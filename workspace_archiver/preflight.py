import os
import shutil
import logging
import subprocess

from workspace_archiver.errors import DependencyError
from workspace_archiver.log import log_success

logger = logging.getLogger(__name__)

REQUIRED_UTILITIES = ["tar"]


def _runs_cleanly(cmd):
    try:
        result = subprocess.run(cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL)
    except OSError:
        return False
    return result.returncode == 0


def check_dependencies(settings):
    """Verifies tar, GAM and GYB are usable. Raises DependencyError listing what is missing."""
    logger.info("Checking dependencies...")
    missing = [cmd for cmd in REQUIRED_UTILITIES if shutil.which(cmd) is None]

    # Fails when GAM is missing or its OAuth setup is broken
    logger.info("Verifying GAM configuration...")
    if _runs_cleanly([settings.gam_bin, "version"]):
        log_success(logger, "GAM verified: %s", settings.gam_bin)
    else:
        logger.error("GAM is not properly configured or accessible")
        logger.error("Tried to run: %s", settings.gam_bin)
        missing.append("GAM (Google Apps Manager)")

    logger.info("Verifying GYB configuration...")
    if _runs_cleanly([settings.gyb_bin, "--version"]):
        log_success(logger, "GYB verified: %s", settings.gyb_bin)
    else:
        logger.error("GYB is not properly configured or accessible")
        logger.error("Tried to run: %s", settings.gyb_bin)
        logger.error("If you have gyb aliased, set the actual path: export GYB_BIN=/path/to/gyb")
        missing.append("GYB (Got Your Back)")

    if missing:
        for dep in missing:
            logger.error("  - missing: %s", dep)
        raise DependencyError(missing)

    log_success(logger, "All dependencies satisfied")


def create_directories(settings):
    """Creates archives/, temp/, logs/ and reports/ with owner-only permissions."""
    logger.info("Creating directory structure...")
    for directory in settings.directories():
        if not os.path.isdir(directory):
            os.makedirs(directory)
            log_success(logger, "Created directory: %s", directory)
        else:
            logger.info("Directory exists: %s", directory)
        os.chmod(directory, 0o700)
