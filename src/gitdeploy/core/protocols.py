"""Protocol definitions for dependency injection.

This module defines Protocol-based abstractions for every external dependency
the deployment engine touches: console/log output, subprocesses, the local
filesystem and the clock. Protocols use structural typing, so any object that
implements the methods satisfies the Protocol without explicit inheritance.

Benefits:
- Easy to mock in tests (just implement the methods)
- No component reads ambient process state directly
- Clear interface contracts between the orchestrator and its collaborators
"""

from typing import Protocol, Dict, Any, Optional, List, IO, Union
from dataclasses import dataclass
from pathlib import Path


class Logger(Protocol):
    """Abstraction for operator-visible logging.

    Replaces direct print() statements throughout the codebase.
    """

    def info(self, message: str) -> None:
        """Log informational message."""
        ...

    def warning(self, message: str) -> None:
        """Log warning message."""
        ...

    def error(self, message: str) -> None:
        """Log error message."""
        ...

    def debug(self, message: str) -> None:
        """Log debug message."""
        ...


class ProcessHandle(Protocol):
    """Abstraction for a running subprocess.

    Mirrors the subset of subprocess.Popen used by the transfer runner, the
    control channel and the hook runner.
    """

    stdin: Optional[IO[Any]]
    stdout: Optional[IO[Any]]
    stderr: Optional[IO[Any]]
    pid: int

    def poll(self) -> Optional[int]:
        """Check if process has terminated. Returns exit code or None."""
        ...

    def wait(self, timeout: Optional[float] = None) -> int:
        """Wait for process to terminate and return exit code."""
        ...

    def terminate(self) -> None:
        """Ask the process to stop (SIGTERM)."""
        ...

    def kill(self) -> None:
        """Force the process to stop (SIGKILL)."""
        ...


@dataclass
class ProcessResult:
    """Outcome of a process run to completion."""
    returncode: int
    stdout: str = ""
    stderr: str = ""


class ProcessExecutor(Protocol):
    """Abstraction for process execution.

    Wraps subprocess to enable testing without spawning real processes.
    """

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
    ) -> ProcessHandle:
        """Start command and return process handle."""
        ...

    def run(
        self,
        cmd: List[str],
        cwd: Optional[str] = None,
        capture_output: bool = False
    ) -> ProcessResult:
        """Run command to completion and return its result."""
        ...


class FileSystemService(Protocol):
    """Abstraction for the local filesystem operations the engine needs."""

    def exists(self, path: Union[str, Path]) -> bool:
        """Check if path exists."""
        ...

    def is_dir(self, path: Union[str, Path]) -> bool:
        """Check if path is a directory."""
        ...

    def is_executable(self, path: Union[str, Path]) -> bool:
        """Check if path is a file the current user may execute."""
        ...

    def realpath(self, path: Union[str, Path]) -> Optional[str]:
        """Resolve path to an absolute canonical path, or None if missing."""
        ...

    def getcwd(self) -> str:
        """Return the current working directory."""
        ...

    def chdir(self, path: Union[str, Path]) -> None:
        """Change the current working directory."""
        ...


class TimeProvider(Protocol):
    """Abstraction for time operations.

    Enables deterministic testing of retry backoff.
    """

    def current_time(self) -> float:
        """Get current time in seconds since epoch."""
        ...

    def sleep(self, seconds: float) -> None:
        """Sleep for specified number of seconds."""
        ...
