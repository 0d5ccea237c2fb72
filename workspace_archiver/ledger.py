import os
import json
import socket
from datetime import datetime, timezone

from workspace_archiver import SYSTEM_NAME, VERSION


def log_archive_transaction(ledger_file, action, identifier, archive_path, size_bytes,
                            run_timestamp, extra=None):
    """
    Appends a permanent, auditable NDJSON record to the archive ledger.

    The ledger is an audit trail only; whether a user is already archived is
    decided by the artifact on disk, never by this file.
    """
    entry = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "action": action.upper(),
        "identifier": identifier,
        "archive": os.path.basename(archive_path) if archive_path else None,
        "size_bytes": size_bytes,
        "run_timestamp": run_timestamp,
        "system": SYSTEM_NAME,
        "version": VERSION,
        "local_host": socket.gethostname(),
    }
    if extra:
        entry.update(extra)

    try:
        os.makedirs(os.path.dirname(ledger_file), exist_ok=True)
        with open(ledger_file, "a") as f:
            f.write(json.dumps(entry) + "\n")
            f.flush()
    except OSError as e:
        # Ledger failure must not abort the batch
        print(f"\n    [!] LEDGER ERROR: Could not write to {ledger_file} ({e})")
        return False
    return True


def read_ledger(ledger_file):
    """Returns all ledger entries, skipping lines that are not valid JSON."""
    entries = []
    if not os.path.exists(ledger_file):
        return entries
    with open(ledger_file, "r") as f:
        for line in f:
            line = line.strip()
            if not line:
                continue
            try:
                entries.append(json.loads(line))
            except json.JSONDecodeError:
                continue
    return entries
