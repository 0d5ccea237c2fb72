class ArchiverError(Exception):
    """Base class for every error raised by the archiver."""


class ConfigError(ArchiverError):
    pass


class DependencyError(ArchiverError):
    """A required external tool is missing or not configured."""

    def __init__(self, missing):
        self.missing = list(missing)
        super().__init__("Missing required dependencies: " + ", ".join(self.missing))


class ValidationError(ArchiverError):
    """A group path or account identifier is malformed."""


class DiscoveryError(ArchiverError):
    """The directory query failed or matched no users. Fatal to the run."""


class BackupError(ArchiverError):
    """GYB failed for a reason other than ineligibility."""

    def __init__(self, message, log_path=None):
        super().__init__(message)
        self.log_path = log_path


class RateLimitError(BackupError):
    """Transient quota/rate-limit failure. Retried before escalating."""


class PackagingError(ArchiverError):
    pass


class VaultError(ArchiverError):
    pass


class RunInterrupted(ArchiverError):
    """Operator cancellation observed between or during entities."""
