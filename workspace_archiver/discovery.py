import os
import csv
import logging
import subprocess

from workspace_archiver.errors import DiscoveryError
from workspace_archiver.log import log_success
from workspace_archiver.models import EntityRecord
from workspace_archiver.validation import validate_group_path, is_valid_account_identifier

logger = logging.getLogger(__name__)


def build_query_command(gam_bin, group_path):
    """
    The one GAM command this tool ever runs against the directory. It is read-only.
    The OU path must already have passed validate_group_path().
    """
    return [gam_bin, "print", "users", "query", f"orgUnitPath='{group_path}'",
            "fields", "primaryEmail,fullname"]


def user_list_path(settings, run_timestamp):
    return os.path.join(settings.temp_dir, f"users_{run_timestamp}.csv")


def parse_user_list(text):
    """Parses GAM's CSV output. The first row is a header; malformed emails are dropped."""
    entities = []
    rows = csv.reader(text.splitlines())
    next(rows, None)

    for row in rows:
        if not row or not any(cell.strip() for cell in row):
            continue
        email = row[0].strip().strip('"')
        fullname = row[1].strip().strip('"') if len(row) > 1 else ""

        if not is_valid_account_identifier(email):
            logger.warning("Invalid email format: %s - skipping", email)
            continue
        entities.append(EntityRecord(email, fullname))

    return entities


def discover(group_path, settings, run_timestamp):
    """
    Lists the users of an OU through GAM.

    The raw CSV is kept at temp/users_<ts>.csv for the audit trail. Raises
    DiscoveryError when GAM fails or nothing usable comes back.
    """
    validate_group_path(group_path)
    logger.info("Discovering users in OU: %s", group_path)

    cmd = build_query_command(settings.gam_bin, group_path)
    list_file = user_list_path(settings, run_timestamp)

    try:
        result = subprocess.run(cmd, capture_output=True, text=True)
    except OSError as e:
        raise DiscoveryError(f"Failed to run GAM ({settings.gam_bin}): {e}")

    if result.stderr:
        for line in result.stderr.strip().splitlines():
            logger.info("GAM: %s", line)

    if result.returncode != 0:
        raise DiscoveryError(f"Failed to retrieve user list from GAM (exit {result.returncode})")

    os.makedirs(settings.temp_dir, exist_ok=True)
    with open(list_file, "w", encoding="utf-8") as f:
        f.write(result.stdout)

    entities = parse_user_list(result.stdout)
    if not entities:
        raise DiscoveryError(f"No users found in OU: {group_path}")

    log_success(logger, "Found %d user(s) to process", len(entities))
    return entities


def remove_user_lists(settings, run_timestamp=None):
    """Deletes discovery CSVs left in temp/. Only this run's file when a timestamp is given."""
    if not os.path.isdir(settings.temp_dir):
        return
    target = f"users_{run_timestamp}.csv" if run_timestamp else None
    for name in os.listdir(settings.temp_dir):
        if not (name.startswith("users_") and name.endswith(".csv")):
            continue
        if target and name != target:
            continue
        try:
            os.remove(os.path.join(settings.temp_dir, name))
        except OSError as e:
            logger.warning("Could not remove %s: %s", name, e)


def gam_version(settings):
    """First line of `gam version`, or 'unknown'. Used for the audit trail."""
    try:
        result = subprocess.run([settings.gam_bin, "version"], capture_output=True, text=True)
    except OSError:
        return "unknown"
    output = (result.stdout or result.stderr).strip()
    return output.splitlines()[0] if output else "unknown"
