"""Production implementations of dependency injection protocols.

This module provides real implementations that wrap actual external dependencies
(console, subprocess, filesystem, time). These are used in production code.

For testing, use mocks or test doubles instead of these implementations.
"""

import logging
import os
import subprocess
import sys
import time
from pathlib import Path
from typing import Dict, Any, Optional, List, Union

from gitdeploy.core.protocols import ProcessResult

LOG_DATE_FORMAT = "%d/%m/%Y %H:%M:%S"
DEFAULT_LOG_FILE = "/tmp/gitdeploy.log"

file_log = logging.getLogger("gitdeploy")


def configure_file_logging(log_file: Optional[str] = DEFAULT_LOG_FILE) -> Optional[logging.Handler]:
    """Attach an append-mode file handler to the ``gitdeploy`` logger.

    Every console message is mirrored into this file at DEBUG level, so the
    file keeps a full trace even when the console is quiet.

    Args:
        log_file: Path to the log file, or None to disable file logging

    Returns:
        The installed handler, or None if the file could not be opened
    """
    file_log.setLevel(logging.DEBUG)
    file_log.propagate = False
    if not log_file:
        return None

    for handler in list(file_log.handlers):
        if isinstance(handler, logging.FileHandler):
            file_log.removeHandler(handler)
            handler.close()

    try:
        handler = logging.FileHandler(log_file, mode='a')
    except OSError as e:
        print(f"WARNING: cannot open log file {log_file}: {e}", file=sys.stderr)
        return None

    # Shared log file: several operators may deploy from the same host
    try:
        os.chmod(log_file, 0o666)
    except OSError:
        pass

    handler.setFormatter(logging.Formatter(
        "%(asctime)s [%(process)d] :: %(message)s",
        datefmt=LOG_DATE_FORMAT
    ))
    file_log.addHandler(handler)
    return handler


class ConsoleLogger:
    """Production logger that prints to console and mirrors to the log file."""

    def __init__(self, debug: bool = False):
        self.show_debug = debug

    def info(self, message: str) -> None:
        """Print info message to stdout."""
        print(message, flush=True)
        file_log.debug(f"INFO::{message}")

    def warning(self, message: str) -> None:
        """Print warning message to stdout."""
        # \r: overwrite a pending progress line
        print(f"\rWARNING: {message}", flush=True)
        file_log.debug(f"WARN::{message}")

    def error(self, message: str) -> None:
        """Print error message to stderr."""
        print(f"FATAL: {message}", file=sys.stderr, flush=True)
        file_log.debug(f"FATAL::{message}")

    def debug(self, message: str) -> None:
        """Print debug message to stdout (only with --debug)."""
        if self.show_debug:
            stamp = time.strftime(LOG_DATE_FORMAT)
            print(f"\r{stamp} :: {message}", flush=True)
        file_log.debug(message)


class SubprocessExecutor:
    """Production process executor using real subprocess."""

    def popen(
        self,
        cmd: List[str],
        stdin: Optional[Any] = None,
        stdout: Optional[Any] = None,
        stderr: Optional[Any] = None,
        cwd: Optional[str] = None,
        env: Optional[Dict[str, str]] = None,
        text: bool = False,
        errors: Optional[str] = None
    ) -> subprocess.Popen:
        """Start command and return the Popen handle.

        Text-mode handles are line buffered; binary handles are unbuffered so
        that select()-style readers see data as soon as it is written.
        """
        return subprocess.Popen(
            cmd,
            stdin=stdin,
            stdout=stdout,
            stderr=stderr,
            cwd=cwd,
            env=env,
            text=text,
            errors=errors if text else None,
            bufsize=1 if text else 0
        )

    def run(
        self,
        cmd: List[str],
        cwd: Optional[str] = None,
        capture_output: bool = False
    ) -> ProcessResult:
        """Run command to completion."""
        result = subprocess.run(cmd, cwd=cwd, capture_output=capture_output, text=True)
        return ProcessResult(
            returncode=result.returncode,
            stdout=result.stdout or "",
            stderr=result.stderr or ""
        )


class RealFileSystemService:
    """Production filesystem service using os and pathlib."""

    def exists(self, path: Union[str, Path]) -> bool:
        return Path(path).exists()

    def is_dir(self, path: Union[str, Path]) -> bool:
        return Path(path).is_dir()

    def is_executable(self, path: Union[str, Path]) -> bool:
        return Path(path).is_file() and os.access(path, os.X_OK)

    def realpath(self, path: Union[str, Path]) -> Optional[str]:
        resolved = Path(path).expanduser()
        if not resolved.exists():
            return None
        return os.path.realpath(resolved)

    def getcwd(self) -> str:
        return os.getcwd()

    def chdir(self, path: Union[str, Path]) -> None:
        os.chdir(path)


class SystemTimeProvider:
    """Production time provider using real time module."""

    def current_time(self) -> float:
        """Get current time in seconds since epoch."""
        return time.time()

    def sleep(self, seconds: float) -> None:
        """Sleep for specified seconds."""
        time.sleep(seconds)
