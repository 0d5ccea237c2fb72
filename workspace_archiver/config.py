import os
import configparser

from workspace_archiver.errors import ConfigError

DEFAULT_CONFIG_NAME = "archiver.cfg"
DEFAULT_GROUP_PATH = "/FormerEmployees"

# Common GYB install locations, checked in order when GYB_BIN is not set
GYB_CANDIDATES = ["/usr/local/bin/gyb/gyb", "/usr/local/bin/gyb"]

# Environment variable -> (section, key)
ENV_OVERRIDES = {
    "FORMER_EMPLOYEES_OU": ("settings", "group_path"),
    "ARCHIVE_BASE_DIR": ("settings", "archive_dir"),
    "TEMP_DIR": ("settings", "temp_dir"),
    "LOG_DIR": ("settings", "log_dir"),
    "REPORT_DIR": ("settings", "report_dir"),
    "GAM_BIN": ("tools", "gam_bin"),
    "GYB_BIN": ("tools", "gyb_bin"),
}


def detect_gyb_bin():
    """Returns the first executable GYB found in the usual places, else 'gyb'."""
    for candidate in GYB_CANDIDATES:
        if os.path.isfile(candidate) and os.access(candidate, os.X_OK):
            return candidate
    return "gyb"


class Settings:
    """Resolved runtime configuration. Built by load_settings() or directly in tests."""

    def __init__(self, base_dir=None, group_path=DEFAULT_GROUP_PATH,
                 archive_dir=None, temp_dir=None, log_dir=None, report_dir=None,
                 delay_between_users=0, gam_bin="gam", gyb_bin=None,
                 max_attempts=3, retry_delay=60,
                 poll_interval=2.0, appear_timeout=10.0, report_every=500,
                 s3_bucket="", s3_prefix="", storage_class="DEEP_ARCHIVE",
                 upload_limit_mb=0):
        base_dir = os.path.abspath(base_dir or os.getcwd())
        self.base_dir = base_dir
        self.group_path = group_path
        self.archive_dir = os.path.abspath(archive_dir or os.path.join(base_dir, "archives"))
        self.temp_dir = os.path.abspath(temp_dir or os.path.join(base_dir, "temp"))
        self.log_dir = os.path.abspath(log_dir or os.path.join(base_dir, "logs"))
        self.report_dir = os.path.abspath(report_dir or os.path.join(base_dir, "reports"))
        self.delay_between_users = delay_between_users

        self.gam_bin = gam_bin
        self.gyb_bin = gyb_bin or detect_gyb_bin()

        self.max_attempts = max_attempts
        self.retry_delay = retry_delay

        self.poll_interval = poll_interval
        self.appear_timeout = appear_timeout
        self.report_every = report_every

        self.s3_bucket = s3_bucket
        self.s3_prefix = s3_prefix
        self.storage_class = storage_class
        self.upload_limit_mb = upload_limit_mb

    @property
    def vault_enabled(self):
        return bool(self.s3_bucket)

    @property
    def ledger_file(self):
        return os.path.join(self.log_dir, "archive_ledger.log")

    def directories(self):
        return [self.archive_dir, self.temp_dir, self.log_dir, self.report_dir]


def _resolve_config_path(path, environ):
    if path:
        if not os.path.exists(path):
            raise ConfigError(f"Configuration file not found at {path}")
        return path

    env_path = environ.get("ARCHIVER_CONFIG")
    if env_path:
        if not os.path.exists(env_path):
            raise ConfigError(f"ARCHIVER_CONFIG points to a missing file: {env_path}")
        return env_path

    local = os.path.join(os.getcwd(), DEFAULT_CONFIG_NAME)
    return local if os.path.exists(local) else None


def load_settings(path=None, environ=None):
    """
    Builds Settings from an INI file plus environment overrides.

    Lookup order for the file: explicit path, $ARCHIVER_CONFIG, ./archiver.cfg.
    With no file at all the built-in defaults are used.
    """
    environ = os.environ if environ is None else environ
    config = configparser.ConfigParser(interpolation=None)
    config_path = _resolve_config_path(path, environ)

    if config_path:
        try:
            config.read(config_path)
        except configparser.Error as e:
            raise ConfigError(f"Configuration file {config_path} is malformed: {e}")

    for section in ("settings", "tools", "retry", "monitor", "vault"):
        if not config.has_section(section):
            config.add_section(section)

    for var, (section, key) in ENV_OVERRIDES.items():
        value = environ.get(var)
        if value:
            config.set(section, key, value)

    s = config["settings"]
    t = config["tools"]
    r = config["retry"]
    m = config["monitor"]
    v = config["vault"]

    # Relative paths in the file are anchored at the file's own directory
    default_base = os.path.dirname(os.path.abspath(config_path)) if config_path else os.getcwd()
    base_dir = s.get("base_dir", "").strip() or default_base

    def _dir(key):
        value = s.get(key, "").strip()
        return os.path.join(base_dir, value) if value else None

    try:
        settings = Settings(
            base_dir=base_dir,
            group_path=s.get("group_path", DEFAULT_GROUP_PATH).strip(),
            archive_dir=_dir("archive_dir"),
            temp_dir=_dir("temp_dir"),
            log_dir=_dir("log_dir"),
            report_dir=_dir("report_dir"),
            delay_between_users=s.getfloat("delay_between_users", fallback=0),
            gam_bin=t.get("gam_bin", "gam").strip() or "gam",
            gyb_bin=t.get("gyb_bin", "").strip() or None,
            max_attempts=r.getint("max_attempts", fallback=3),
            retry_delay=r.getfloat("retry_delay", fallback=60),
            poll_interval=m.getfloat("poll_interval", fallback=2.0),
            appear_timeout=m.getfloat("appear_timeout", fallback=10.0),
            report_every=m.getint("report_every", fallback=500),
            s3_bucket=v.get("s3_bucket", "").strip(),
            s3_prefix=v.get("s3_prefix", "").strip(),
            storage_class=v.get("storage_class", "DEEP_ARCHIVE").strip() or "DEEP_ARCHIVE",
            upload_limit_mb=v.getint("upload_limit_mb", fallback=0),
        )
    except ValueError as e:
        raise ConfigError(f"Invalid configuration value: {e}")

    if settings.max_attempts < 1:
        raise ConfigError("max_attempts must be at least 1")
    if settings.delay_between_users < 0 or settings.retry_delay < 0:
        raise ConfigError("Delays cannot be negative")

    return settings
