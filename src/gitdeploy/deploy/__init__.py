"""
Two-hop deployment engine.

Pushes a source tree to a master staging server through an SSH tunnel, then
has the master fan the same tree out to every production server in parallel.

Public API:
    - DeployContext, TransferJob, TransferOutcome, HostStatusEvent, HookType
    - TransferRunner: rsync invocation, output classification, retries
    - ControlChannel: persistent command channel to the master
    - HookRunner: optional lifecycle hooks
    - FanoutCoordinator: master-side parallel sync
    - SessionOrchestrator: Mode A / Mode B control flow
    - DeploymentError and subclasses
"""

from .context import DeployContext, TransferJob, TransferOutcome, HostStatusEvent, HookType
from .exceptions import (
    DeploymentError,
    ConfigurationError,
    ChannelError,
    HookError,
    SyncFailedError,
    SessionInterrupted,
)
from .transfer import TransferRunner
from .channel import ControlChannel, ChannelResponse, StreamKind
from .hooks import HookRunner
from .fanout import FanoutCoordinator, FanoutReport
from .session import SessionOrchestrator, RemoteResult

__all__ = [
    # Data model
    "DeployContext",
    "TransferJob",
    "TransferOutcome",
    "HostStatusEvent",
    "HookType",

    # Components
    "TransferRunner",
    "ControlChannel",
    "ChannelResponse",
    "StreamKind",
    "HookRunner",
    "FanoutCoordinator",
    "FanoutReport",
    "SessionOrchestrator",
    "RemoteResult",

    # Exceptions
    "DeploymentError",
    "ConfigurationError",
    "ChannelError",
    "HookError",
    "SyncFailedError",
    "SessionInterrupted",
]
