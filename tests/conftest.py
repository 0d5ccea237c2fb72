"""
Shared fixtures for the workspace archiver test suite.

GAM and GYB are replaced by small executable Python scripts written into
tmp_path, so every test runs without Google credentials or network access.
"""

import os
import sys
import logging
import textwrap

import pytest

from workspace_archiver.config import Settings
from workspace_archiver.log import LOGGER_NAME
from workspace_archiver.models import EntityRecord, RunContext


def write_tool(path, body):
    """Write an executable Python script and return its path as a string."""
    path.write_text(f"#!{sys.executable}\n" + textwrap.dedent(body))
    path.chmod(0o755)
    return str(path)


# ---------------------------------------------------------------------------
# Logging isolation
# ---------------------------------------------------------------------------

@pytest.fixture(autouse=True)
def _reset_package_logger():
    """setup_logging() detaches the package logger; put it back after each test."""
    yield
    logger = logging.getLogger(LOGGER_NAME)
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.propagate = True
    logger.setLevel(logging.NOTSET)


# ---------------------------------------------------------------------------
# Settings / context
# ---------------------------------------------------------------------------

@pytest.fixture
def settings(tmp_path):
    """Settings rooted in tmp_path with fast timings and no retry delay."""
    s = Settings(
        base_dir=str(tmp_path / "run"),
        gam_bin=str(tmp_path / "missing-gam"),
        gyb_bin=str(tmp_path / "missing-gyb"),
        retry_delay=0,
        poll_interval=0.01,
        appear_timeout=0.5,
    )
    for directory in s.directories():
        os.makedirs(directory, exist_ok=True)
    return s


@pytest.fixture
def context():
    return RunContext("/FormerEmployees", run_timestamp="20240102_030405")


@pytest.fixture
def entity():
    return EntityRecord("b@x.com", "Bee User")


# ---------------------------------------------------------------------------
# Fake external tools
# ---------------------------------------------------------------------------

@pytest.fixture
def fake_gyb(tmp_path):
    """
    Factory for a fake GYB.

    The first `fail_times` invocations print `fail_output` and exit 1; later
    ones write `files` messages into --local-folder, print `output` and exit
    with `exit_code`. Invocations are counted in tmp_path/gyb_calls.
    """
    calls_file = tmp_path / "gyb_calls"

    def _make(files=3, exit_code=0, output="", fail_times=0, fail_output="", sleep=0):
        body = f'''
        import os
        import sys
        import time

        args = sys.argv[1:]
        if "--version" in args:
            print("GYB 1.82")
            sys.exit(0)

        folder = args[args.index("--local-folder") + 1]
        calls_file = {str(calls_file)!r}
        calls = int(open(calls_file).read()) if os.path.exists(calls_file) else 0
        calls += 1
        with open(calls_file, "w") as f:
            f.write(str(calls))

        if calls <= {fail_times}:
            sys.stdout.write({fail_output!r})
            sys.stdout.flush()
            sys.exit(1)

        time.sleep({sleep})
        os.makedirs(folder, exist_ok=True)
        for i in range({files}):
            with open(os.path.join(folder, "msg%d.eml" % i), "w") as f:
                f.write("Subject: message %d" % i)
        sys.stdout.write({output!r})
        sys.stdout.flush()
        sys.exit({exit_code})
        '''
        return write_tool(tmp_path / "gyb", body)

    _make.calls = lambda: int(calls_file.read_text()) if calls_file.exists() else 0
    return _make


@pytest.fixture
def fake_gam(tmp_path):
    """Factory for a fake GAM that prints `csv_text` and records its argv."""
    argv_file = tmp_path / "gam_argv"

    def _make(csv_text="primaryEmail,fullName\n", exit_code=0):
        body = f'''
        import sys

        if sys.argv[1:2] == ["version"]:
            print("GAM 6.58 - https://github.com/GAM-team/GAM")
            sys.exit(0)

        with open({str(argv_file)!r}, "w") as f:
            f.write("\\n".join(sys.argv[1:]))
        sys.stdout.write({csv_text!r})
        sys.exit({exit_code})
        '''
        return write_tool(tmp_path / "gam", body)

    _make.argv = lambda: argv_file.read_text().split("\n")
    return _make


@pytest.fixture
def make_archive(settings):
    """Drop a pre-existing artifact for an identifier into archives/."""
    def _make(identifier, run_timestamp="20230101_000000", content=b"old"):
        path = os.path.join(settings.archive_dir, f"{identifier}_{run_timestamp}.tar.gz")
        with open(path, "wb") as f:
            f.write(content)
        return path
    return _make
