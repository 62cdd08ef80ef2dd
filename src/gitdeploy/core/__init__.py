"""Core dependency injection infrastructure for gitdeploy.

Protocol-based abstractions for every external dependency (console,
subprocess, filesystem, time) with production implementations. Components
receive these through their constructors; only the command layer wires the
production implementations together.
"""

from gitdeploy.core.protocols import (
    Logger,
    ProcessExecutor,
    ProcessHandle,
    ProcessResult,
    FileSystemService,
    TimeProvider,
)

from gitdeploy.core.implementations import (
    ConsoleLogger,
    SubprocessExecutor,
    RealFileSystemService,
    SystemTimeProvider,
    configure_file_logging,
)

__all__ = [
    # Protocols
    "Logger",
    "ProcessExecutor",
    "ProcessHandle",
    "ProcessResult",
    "FileSystemService",
    "TimeProvider",
    # Implementations
    "ConsoleLogger",
    "SubprocessExecutor",
    "RealFileSystemService",
    "SystemTimeProvider",
    "configure_file_logging",
]
