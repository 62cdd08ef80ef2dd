"""
TransferRunner - push a tree to one host with rsync.

Two modes:
    - tunnel (source -> master): rsync://localhost:<tunnel_port>/<module>/...
      through the SSH port forward held by the control channel, compressed
    - daemon (master -> server, fan-out): rsync://<host>/<module>/<stage>/

rsync output is streamed line by line and classified into counters, progress
and error reports. Transfer failures never raise: they come back as a
non-success TransferOutcome.
"""

import re
import subprocess
import threading
from typing import Callable, List, Optional

from gitdeploy.core.protocols import (
    FileSystemService,
    Logger,
    ProcessExecutor,
    ProcessHandle,
    TimeProvider,
)
from .context import MAX_TRANSFER_RETRIES, DeployContext, TransferJob, TransferOutcome, short_host
from .exceptions import ConfigurationError

RSYNC_OPTIONS = [
    "-rlptgoD",
    "--checksum",
    "--progress",
    "--stats",
    "--human-readable",
    "--chmod=Du=rwx,Fug+r,Dg=rwxs",
    "--one-file-system",
    "--delay-updates",
    "--delete-delay",
    "--exclude=.git/",
    "--exclude=*/lost+found/**",
    "--exclude=*.LCK",
    "--exclude=*.working",
    "--exclude=*.pyo",
    "--exclude=*.pyc",
]
TUNNEL_OPTIONS = ["--compress", "--compress-level=9"]
EXCLUDES_FILE = ".rsync_excludes"
RETRY_BACKOFF_SECONDS = 1

# rsync exit codes
RSYNC_OK = 0
RSYNC_START_CLIENT_SERVER = 5
RSYNC_SOCKET_IO = 10
RSYNC_PROTOCOL_STREAM = 12
RSYNC_SIGNAL = 20
RSYNC_PARTIAL = 23
RSYNC_VANISHED = 24
RSYNC_NOT_FOUND = 127

EXCLUSION_TOLERATED = (RSYNC_PARTIAL, RSYNC_VANISHED, RSYNC_PROTOCOL_STREAM)

PROGRESS_CHARS = ["|", "/", "-", "\\"]

_ERROR_RE = re.compile(r"^(rsync(?: \w+)?:)\s?(.+)")
_BENIGN_ERROR_RE = re.compile(r"(to connect to localhost)|(error in socket IO )")
_EXCLUDED_ERROR_RE = re.compile(r"errors selecting input/output files, dirs \(code 3\)")
_AFTER_EXCLUSION_RE = re.compile(
    r"(some files could not be transferred)|(connection unexpectedly closed)|"
    r"(error in rsync protocol data stream)"
)
_DAEMON_EXCLUDED_RE = re.compile(r"^skipping daemon-excluded ")
_TO_CONSIDER_RE = re.compile(r"([\d,.]+) files to consider")
_DELETING_RE = re.compile(r"^\s*deleting\s+")
_FILES_TRANSFERRED_RE = re.compile(r"Number of (?:regular )?files transferred: ([\d,.]+)")
_TOTAL_SIZE_RE = re.compile(r"Total file size: ([\d,.]+\w*) bytes")
_TRANSFERRED_SIZE_RE = re.compile(r"Total transferred file size: ([\d,.]+\w*) bytes")
_TRANSFER_LINE_RE = re.compile(r"^[\w.-]+?/.+")
_SIZE_RE = re.compile(r"^([\d,]+(?:\.\d+)?)([KMGTP]?)", re.IGNORECASE)

_SIZE_UNITS = {"": 1, "K": 10 ** 3, "M": 10 ** 6, "G": 10 ** 9, "T": 10 ** 12, "P": 10 ** 15}


def parse_size(value: str) -> int:
    """Convert an rsync --human-readable number ("1,234", "21.96M") to an int."""
    match = _SIZE_RE.match(value.strip())
    if not match:
        return 0
    number = float(match.group(1).replace(",", ""))
    return int(number * _SIZE_UNITS[match.group(2).upper()])


def parse_count(value: str) -> int:
    return int(value.replace(",", "").replace(".", ""))


class TransferRunner:
    """
    Runs rsync for one TransferJob and reports a TransferOutcome.

    Output destination:
        - emit callback given (fan-out worker): every message, progress
          included, goes to the callback and nowhere else
        - no callback: messages go to the logger prefixed with the host,
          progress is drawn in place on stdout

    Args:
        context: Session configuration
        process_executor: Subprocess abstraction
        filesystem: Filesystem abstraction (source resolution)
        time_provider: Clock used for the retry backoff
        logger: Console logger
    """

    def __init__(
        self,
        context: DeployContext,
        process_executor: ProcessExecutor,
        filesystem: FileSystemService,
        time_provider: TimeProvider,
        logger: Logger
    ):
        self.context = context
        self.process = process_executor
        self.fs = filesystem
        self.time = time_provider
        self.log = logger
        self._active: List[ProcessHandle] = []
        self._active_lock = threading.Lock()

    # ------------------------------------------------------------------
    # command construction

    def resolve_source(self, source_path: str) -> str:
        """Resolve the source to an absolute path, directories with a trailing '/'.

        Raises:
            ConfigurationError: If the source does not exist
        """
        resolved = self.fs.realpath(source_path)
        if not resolved:
            raise ConfigurationError(f"Source dir '{source_path}' not found.")
        if self.fs.is_dir(resolved) and not resolved.endswith("/"):
            resolved += "/"
        return resolved

    def base_options(self) -> List[str]:
        options = list(RSYNC_OPTIONS)
        if self.context.debug:
            options.insert(0, "--verbose")
        if self.context.dry_run:
            options.insert(0, "--dry-run")
        return options

    def build_command(self, job: TransferJob, source: str) -> List[str]:
        """Build the rsync argv for a job whose source is already resolved."""
        cmd = [self.context.rsync_binary] + self.base_options()

        if self.context.deploy_mode:
            destination = f"rsync://{job.destination_host}/{job.transfer_module}/{job.stage_name}/"
        else:
            if source.endswith("/"):
                excludes = source + EXCLUDES_FILE
                if self.fs.exists(excludes):
                    cmd.append(f"--exclude-from={excludes}")
            # compression only over the internet, not between servers
            cmd.extend(TUNNEL_OPTIONS)
            destination = f"rsync://localhost:{self.context.tunnel_port}/{job.transfer_module}/"
            if job.stage_name:
                destination += f"{job.stage_name}/"

        cmd.extend([source, destination])
        return cmd

    # ------------------------------------------------------------------
    # execution

    def run(self, job: TransferJob, emit: Optional[Callable[[str], None]] = None) -> TransferOutcome:
        """Run a transfer, retrying refused connections in tunnel mode.

        Args:
            job: Transfer to perform; attempt_count is updated in place
            emit: Per-host message sink for fan-out workers

        Returns:
            TransferOutcome (never raises for transfer failures)

        Raises:
            ConfigurationError: If the source path cannot be resolved
        """
        source = self.resolve_source(job.source_path)
        put = self._output(job, emit)

        if self.context.debug:
            put(f"RSYNC {source} TO {job.destination_host}")

        cmd = self.build_command(job, source)
        while True:
            job.attempt_count += 1
            outcome = self._attempt(job, cmd, put, emit is not None)
            outcome.attempts = job.attempt_count

            retryable = (
                outcome.raw_exit_code == RSYNC_SOCKET_IO
                and not self.context.deploy_mode
                and job.attempt_count <= MAX_TRANSFER_RETRIES
            )
            if not retryable:
                break
            self.log.debug(f"[{short_host(job.destination_host)}] connection refused, retrying")
            self.time.sleep(RETRY_BACKOFF_SECONDS)

        self._report(job, outcome, put)
        return outcome

    def cancel_all(self) -> None:
        """Terminate every rsync process still running."""
        with self._active_lock:
            handles = list(self._active)
        for handle in handles:
            if handle.poll() is None:
                try:
                    handle.terminate()
                except OSError:
                    pass

    def _output(self, job: TransferJob, emit: Optional[Callable[[str], None]]) -> Callable[[str], None]:
        if emit is not None:
            return emit
        prefix = f"[{short_host(job.destination_host)}]\t"

        def put(message: str) -> None:
            self.log.info(prefix + message)
        return put

    def _attempt(self, job: TransferJob, cmd: List[str], put, remote: bool) -> TransferOutcome:
        if self.context.debug:
            put(" ".join(cmd))

        outcome = TransferOutcome()
        try:
            handle = self.process.popen(
                cmd,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                text=True,
                errors="replace"
            )
        except OSError as e:
            put(f"Unable to start {cmd[0]}: {e}")
            outcome.raw_exit_code = RSYNC_NOT_FOUND
            return outcome

        with self._active_lock:
            self._active.append(handle)

        progress = _Progress(short_host(job.destination_host), put if remote else None)
        try:
            for line in handle.stdout:
                self._classify(line.rstrip("\r\n"), outcome, progress, put)
            returncode = handle.wait()
        finally:
            with self._active_lock:
                self._active.remove(handle)
            progress.clear()

        outcome.raw_exit_code = returncode
        if self.context.debug:
            put(f"RSYNC RC = {returncode}")
        return outcome

    def _classify(self, line: str, outcome: TransferOutcome, progress: "_Progress", put) -> None:
        if self.context.debug and line:
            put(line)

        match = _ERROR_RE.match(line)
        if match:
            kind, message = match.group(1), match.group(2)
            if _BENIGN_ERROR_RE.search(message):
                return
            if _EXCLUDED_ERROR_RE.search(message):
                outcome.excluded_count += 1
                return
            if outcome.excluded_count and _AFTER_EXCLUSION_RE.search(message):
                return
            outcome.error_count += 1
            progress.clear()
            put(f"{outcome.excluded_count} [{kind}] {message}")
            return

        if _DAEMON_EXCLUDED_RE.match(line):
            outcome.excluded_count += 1
            return

        match = _TO_CONSIDER_RE.search(line)
        if match:
            outcome.files_considered = parse_count(match.group(1))
            return

        if _DELETING_RE.match(line):
            outcome.files_deleted += 1
            return

        match = _FILES_TRANSFERRED_RE.search(line)
        if match:
            outcome.files_transferred = parse_count(match.group(1))
            return

        match = _TOTAL_SIZE_RE.search(line)
        if match:
            outcome.total_bytes = parse_size(match.group(1))
            return

        match = _TRANSFERRED_SIZE_RE.search(line)
        if match:
            outcome.transferred_bytes = parse_size(match.group(1))
            return

        if _TRANSFER_LINE_RE.match(line):
            progress.step(outcome.files_considered)

    def _report(self, job: TransferJob, outcome: TransferOutcome, put) -> None:
        """Apply the exit-code policy and tell the operator what happened."""
        code = outcome.raw_exit_code
        excluded = outcome.excluded_count > 0

        if code == RSYNC_OK or (excluded and code in EXCLUSION_TOLERATED):
            outcome.success = True
            outcome.raw_exit_code = RSYNC_OK
            put(
                f"Transfered: {outcome.files_transferred}"
                f" / Deleted: {outcome.files_deleted}"
                f" / Total: {outcome.files_considered}"
                f" | Size: {outcome.transferred_bytes}/{outcome.total_bytes}"
                + (" (some were excluded)" if excluded else "")
            )
        elif code in (RSYNC_START_CLIENT_SERVER, RSYNC_PROTOCOL_STREAM):
            put(f"Check that rsyncd is started on {job.destination_host}")
            put(f"Need destination folder: {job.destination_host} {job.transfer_module}")
        elif code == RSYNC_SIGNAL or code < 0:
            put("CANCELED")
        else:
            put(f"rsync error code try={job.attempt_count}: {code}")


class _Progress:
    """Rotating progress indicator for one transfer."""

    def __init__(self, host: str, emit: Optional[Callable[[str], None]]):
        self.host = host
        self.emit = emit
        self.count = 0
        self.spin = 0
        self.drawn = False

    def step(self, total: int) -> None:
        self.count += 1
        self.spin = (self.spin + 1) % len(PROGRESS_CHARS)
        percent = int(self.count / total * 100) if total > 0 else 0
        text = f"{PROGRESS_CHARS[self.spin]} {self.count}/{total} [{percent}%]"
        if self.emit is not None:
            self.emit(text)
        else:
            # Direct print keeps the indicator on one terminal line
            print(f"\r[{self.host}]\t{text}" + " " * 40 + "\r", end="", flush=True)
            self.drawn = True

    def clear(self) -> None:
        if self.drawn:
            print("\r" + " " * 80 + "\r", end="", flush=True)
            self.drawn = False
