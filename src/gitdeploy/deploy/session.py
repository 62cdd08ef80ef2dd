"""
SessionOrchestrator - top-level control flow of a deployment.

Mode A (operator -> master), DeployContext.deploy_mode == False:
    open channel -> [self-deploy] -> sync to master
    -> [re-run gitdeploy on the master in Mode B, read its report back]
    -> report hook -> done

Mode B (master -> servers), DeployContext.deploy_mode == True:
    mid hook -> fan-out -> post hook -> done
"""

import re
import shlex
import signal
import tempfile
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Tuple

from gitdeploy.core.protocols import Logger
from .artifact import artifact_name, build_artifact
from .channel import ControlChannel, StreamKind
from .context import DeployContext, HookType, TransferJob, TransferOutcome
from .exceptions import ChannelError, ConfigurationError, SessionInterrupted, SyncFailedError
from .fanout import FanoutCoordinator
from .hooks import HookRunner
from .transfer import TransferRunner
from .wire import DoneLine, HostLogLine, HostsLine, done_command, parse_line

RSYNCD_CONF = "/etc/rsyncd.conf"
REMOTE_QUERY_TIMEOUT = 5.0
HANDLED_SIGNALS = ("SIGINT", "SIGTERM", "SIGQUIT", "SIGHUP")
SIGNAL_CLOSE_WAIT = 1.0

_PATH_RE = re.compile(r"^\s*path\s*=\s*(.+)$")


def lookup_module_path(channel: ControlChannel, module: str) -> str:
    """Ask the master for the `path =` of an rsync module in its rsyncd.conf.

    Raises:
        ChannelError: If no path came back
    """
    query = (
        f"grep -A 20 -F {shlex.quote('[' + module + ']')} {RSYNCD_CONF}"
        f" | grep '^[[:space:]]*path =' | head -1"
    )
    response = channel.send(query, single_line=True, timeout=REMOTE_QUERY_TIMEOUT)
    match = _PATH_RE.match(response.stdout or "")
    if not match:
        raise ChannelError(f"Unable to find remote path of [{module}] from {RSYNCD_CONF}")
    return match.group(1).strip().rstrip("/")


@dataclass
class RemoteResult:
    """What Mode A learned from the Mode B run on the master."""
    hosts: List[str] = field(default_factory=list)
    failed_hosts: List[str] = field(default_factory=list)
    exit_code: Optional[int] = None
    completed: bool = False


class SessionOrchestrator:
    """
    Drives one deployment session in Mode A or Mode B.

    Args:
        context: Session configuration
        runner: Transfer runner (source -> master, or master -> servers)
        hooks: Lifecycle hook runner
        logger: Console logger
        channel: Control channel to the master (Mode A only)
        fanout: Fan-out coordinator (Mode B only)
        version: gitdeploy version shipped to the master
        artifact_builder: Builds the self-deploy zipapp
    """

    def __init__(
        self,
        context: DeployContext,
        runner: TransferRunner,
        hooks: HookRunner,
        logger: Logger,
        channel: Optional[ControlChannel] = None,
        fanout: Optional[FanoutCoordinator] = None,
        version: str = "0",
        artifact_builder: Callable[..., object] = build_artifact
    ):
        self.context = context
        self.runner = runner
        self.hooks = hooks
        self.log = logger
        self.channel = channel
        self.fanout = fanout
        self.version = version
        self.artifact_builder = artifact_builder
        self._remote_path: Optional[str] = None

    def run(self) -> int:
        """Run the session for the configured mode; returns the exit code.

        Raises:
            DeploymentError: Any fatal condition (configuration, channel,
                hook, aggregate failure, interruption)
        """
        if self.context.deploy_mode:
            return self.deploy()
        return self.sync()

    # ------------------------------------------------------------------
    # Mode A

    def sync(self) -> int:
        if self.channel is None:
            raise ConfigurationError("Mode A needs a control channel to the master")
        self.runner.resolve_source(self.context.source_dir)

        previous = self._install_signal_handlers()
        remote = RemoteResult(completed=True, exit_code=0)
        try:
            self.channel.open()

            if self.context.servers:
                self.resolve_remote_path()
                self.deploy_self()

            self.log.info(f"Sync to {self.context.master}...")
            outcome = self.runner.run(TransferJob(
                source_path=self.context.source_dir,
                destination_host=self.context.master,
                stage_name=self.context.stage,
                transfer_module=self.context.transfer_module
            ))

            if not outcome.success:
                self.log.warning(f"Error while syncing to {self.context.master}")
            elif not self.context.servers:
                self.log.debug("No servers configured.")
            else:
                remote = self.run_remote_deploy()
        finally:
            self.channel.close()
            self._restore_signal_handlers(previous)

        return self.finish(outcome, remote)

    def finish(self, outcome: TransferOutcome, remote: RemoteResult) -> int:
        """Turn the master outcome and the remote report into a verdict."""
        if remote.failed_hosts:
            raise SyncFailedError(
                f"Failed to sync on {len(remote.failed_hosts)} servers: "
                f"{','.join(remote.failed_hosts)}\n"
                f"Project={self.context.repo} Stage={self.context.stage}",
                failed_hosts=remote.failed_hosts
            )
        if not outcome.success:
            raise SyncFailedError("Failed to sync on master.")
        if not remote.completed:
            raise SyncFailedError(f"Lost the connection to {self.context.master} during deploy")
        if remote.exit_code:
            raise SyncFailedError(
                f"Remote deploy on {self.context.master} exited with code {remote.exit_code}"
            )

        self.hooks.run(HookType.REPORT)
        self.log.info("Sync Successful.")
        return 0

    def resolve_remote_path(self) -> str:
        """Module path on the master, from config or from its rsyncd.conf.

        Raises:
            ChannelError: If the master does not report a path
        """
        if self._remote_path:
            return self._remote_path
        if self.context.remote_transfer_path:
            self._remote_path = self.context.remote_transfer_path.rstrip("/")
            return self._remote_path

        self._remote_path = lookup_module_path(self.channel, self.context.transfer_module)
        self.log.info(f"Remote path: {self._remote_path}")
        return self._remote_path

    def deploy_self(self) -> None:
        """Upload this gitdeploy version to the module root on the master."""
        self.log.info("Check myself ...")
        with tempfile.TemporaryDirectory(prefix="gitdeploy_") as tmp:
            artifact = self.artifact_builder(self.version, tmp)
            outcome = self.runner.run(TransferJob(
                source_path=str(artifact),
                destination_host=self.context.master,
                stage_name=None,
                transfer_module=self.context.transfer_module
            ))
        if not outcome.success:
            raise SyncFailedError("Unable to upload myself :(")

    def remote_command(self) -> str:
        """Shell command re-running gitdeploy in Mode B on the master."""
        remote_path = self.resolve_remote_path()
        ctx = self.context
        argv = [
            ctx.remote_python,
            f"{remote_path}/{artifact_name(self.version)}",
            "sync",
            "--deploy",
            f"--repo={ctx.repo}",
            f"--stage={ctx.stage}",
            f"--source-dir={remote_path}/{ctx.stage}/",
            f"--rsync-module={ctx.transfer_module}",
            f"--rsync-user={ctx.transfer_user}",
            f"--master={ctx.master}",
            f"--servers={','.join(ctx.servers)}",
            f"--hooks-dir={ctx.hooks_dir}",
        ]
        if ctx.debug:
            argv.append("--debug")
        if ctx.dry_run:
            argv.append("--dry-run")
        return " ".join(shlex.quote(arg) for arg in argv) + "; " + done_command()

    def run_remote_deploy(self) -> RemoteResult:
        command = self.remote_command()
        self.log.debug(f"Exec {command}")
        self.channel.write_line(command)
        return self.aggregate(self.channel.iter_lines())

    def aggregate(self, lines: Iterable[Tuple[StreamKind, str]]) -> RemoteResult:
        """Fold the master's output into a RemoteResult, echoing it to the operator."""
        result = RemoteResult()
        for kind, raw in lines:
            text = raw.replace("\r", "")
            if kind is StreamKind.STDERR:
                if text.strip():
                    self.log.warning(f"[{self.context.master}] {text.strip()}")
                continue

            line = parse_line(text)
            if isinstance(line, HostLogLine):
                if line.is_failure:
                    if line.host not in result.failed_hosts:
                        result.failed_hosts.append(line.host)
                    self.log.warning(f"[{line.host}] {line.text}")
                elif line.text and not line.is_progress:
                    self.log.info(f"[{line.host}]\t{line.text}")
            elif isinstance(line, HostsLine):
                result.hosts = list(line.hosts)
            elif isinstance(line, DoneLine):
                result.completed = True
                result.exit_code = line.exit_code
                break
            elif line.text.strip():
                self.log.info(line.text)
        return result

    # ------------------------------------------------------------------
    # Mode B

    def deploy(self) -> int:
        if self.fanout is None:
            raise ConfigurationError("Mode B needs a fan-out coordinator")

        self.hooks.run(HookType.MID)
        report = self.fanout.fanout()
        self.hooks.run(HookType.POST)
        return 0 if report.success else 1

    # ------------------------------------------------------------------
    # signals

    def _on_signal(self, signum, frame) -> None:
        self.log.warning(f"Signal {signum} received, closing the control channel")
        if self.channel is not None:
            self.channel.close(wait=SIGNAL_CLOSE_WAIT)
        self.runner.cancel_all()
        raise SessionInterrupted(signum)

    def _install_signal_handlers(self) -> Dict[int, object]:
        previous: Dict[int, object] = {}
        if threading.current_thread() is not threading.main_thread():
            return previous
        for name in HANDLED_SIGNALS:
            signum = getattr(signal, name, None)
            if signum is not None:
                previous[signum] = signal.signal(signum, self._on_signal)
        return previous

    def _restore_signal_handlers(self, previous: Dict[int, object]) -> None:
        for signum, handler in previous.items():
            # None: the previous handler was not installed from Python
            signal.signal(signum, handler if handler is not None else signal.SIG_DFL)
