"""
Deployment data model.

DeployContext is built once at startup and threaded through every component;
the remaining types describe one transfer, its outcome and the status events
produced by fan-out workers.
"""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Optional, Tuple

# Static configuration
DEFAULT_TUNNEL_PORT = 8731
DAEMON_PORT = 873
DEFAULT_HOOKS_DIR = ".hooks"
DEFAULT_REMOTE_PYTHON = "python3"
DEFAULT_RSYNC_BINARY = "rsync"
MAX_TRANSFER_RETRIES = 2


class HookType(str, Enum):
    """Lifecycle checkpoints at which a project hook may run."""
    MID = "mid"
    POST = "post"
    REPORT = "report"


@dataclass(frozen=True)
class DeployContext:
    """
    Immutable configuration of one deployment session.

    Attributes:
        repo: Repository name (passed to hooks)
        stage: Deployment stage/slot name
        source_dir: Tree to push (local checkout in Mode A, master copy in Mode B)
        transfer_module: rsync daemon module receiving the tree
        transfer_user: SSH user on the master
        master: Master staging host (Mode A target, excluded from fan-out)
        servers: Production hosts the master fans out to
        debug: Verbose transfer output and debug console logging
        dry_run: Ask rsync not to change anything
        deploy_mode: True on the master (Mode B, fan-out)
        remote_transfer_path: Module path on the master, if known up front
    """
    repo: str
    stage: str
    source_dir: str
    transfer_module: str
    transfer_user: str
    master: Optional[str] = None
    servers: Tuple[str, ...] = ()
    debug: bool = False
    dry_run: bool = False
    deploy_mode: bool = False
    remote_transfer_path: Optional[str] = None
    hooks_dir: str = DEFAULT_HOOKS_DIR
    tunnel_port: int = DEFAULT_TUNNEL_PORT
    remote_python: str = DEFAULT_REMOTE_PYTHON
    rsync_binary: str = DEFAULT_RSYNC_BINARY

    def with_changes(self, **changes) -> "DeployContext":
        """Return a copy with some fields replaced."""
        return replace(self, **changes)


@dataclass
class TransferJob:
    """One (source, destination host) transfer.

    stage=None targets the module root (used for the self-deploy upload).
    """
    source_path: str
    destination_host: str
    stage_name: Optional[str]
    transfer_module: str
    attempt_count: int = 0


@dataclass
class TransferOutcome:
    """Counters and verdict parsed from one transfer's output."""
    success: bool = False
    files_transferred: int = 0
    files_deleted: int = 0
    files_considered: int = 0
    total_bytes: int = 0
    transferred_bytes: int = 0
    excluded_count: int = 0
    error_count: int = 0
    raw_exit_code: int = 0
    attempts: int = 1


@dataclass(frozen=True)
class HostStatusEvent:
    """One line of status from a fan-out worker."""
    host_id: str
    message: str
    is_failure_marker: bool = False


def short_host(host: str) -> str:
    """Shorten a fully-qualified host name to its first label.

    IP addresses are returned unchanged.
    """
    host = host.strip()
    if not host or host[0].isdigit() or "." not in host:
        return host
    return host.split(".", 1)[0]


def same_host(host: str, master: Optional[str]) -> bool:
    """True if host designates the master (hostname-prefix match)."""
    if not master:
        return False
    return short_host(host) == short_host(master)


def split_hosts(value) -> Tuple[str, ...]:
    """Normalize a comma string or a sequence of host names into a tuple."""
    if not value:
        return ()
    if isinstance(value, str):
        value = value.split(",")
    return tuple(h.strip() for h in value if h and h.strip())
