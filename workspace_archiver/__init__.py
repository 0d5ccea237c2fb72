"""Batch archival of Google Workspace users with GAM and GYB."""

VERSION = "1.3.0"
SYSTEM_NAME = "Workspace Archiver (GAM discovery + GYB mailbox backup)"
