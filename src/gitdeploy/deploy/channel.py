"""
ControlChannel - persistent command channel to the master.

One long-lived ssh process runs a small read/execute loop on the master and
forwards a local port to the master's rsync daemon. Commands are written one
per line on its stdin; a blank line makes the loop print EXIT and stop.
Responses are read from stdout and stderr through a selector, each chunk
tagged with the StreamKind that produced it, so error text never ends up in a
command's result.
"""

import os
import selectors
import subprocess
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from gitdeploy.core.protocols import Logger, ProcessExecutor, ProcessHandle, TimeProvider
from .context import DAEMON_PORT, DeployContext
from .exceptions import ChannelError

REMOTE_LOOP = """
while read CMD
do
    if [ "$CMD" = "" ]
    then
        echo EXIT; break;
    fi
    bash -c "$CMD"
done
"""
READY_TOKEN = "READY"
READY_TIMEOUT = 10.0
DEFAULT_SEND_TIMEOUT = 1.0
CLOSE_WAIT_SECONDS = 5.0
READ_CHUNK = 4096

# Known-harmless ssh chatter seen while the tunnel comes up. Exact wording
# depends on the ssh client version and locale.
BENIGN_STARTUP_NOISE = (
    "Pseudo-terminal will not be allocated because stdin is not a terminal.",
)


class StreamKind(Enum):
    """Which output stream of the remote shell produced some data."""
    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass
class ChannelResponse:
    """Result of ControlChannel.send().

    stdout/stderr are None when nothing arrived on that stream before the
    timeout.
    """
    stdout: Optional[str]
    stderr: Optional[str]
    byte_count: int

    def __iter__(self):
        return iter((self.stdout, self.stderr, self.byte_count))

    def stderr_lines(self) -> List[str]:
        if not self.stderr:
            return []
        return [line for line in self.stderr.splitlines() if line.strip()]


def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


class ControlChannel:
    """
    Owns the ssh process and its three streams.

    Nothing outside this class touches the streams; callers use send(),
    write_line() and iter_lines().

    Args:
        context: Session configuration (master, user, tunnel port)
        process_executor: Subprocess abstraction
        time_provider: Clock for send() deadlines
        logger: Console logger
        ready_timeout: Seconds to wait for the readiness token
        selector_factory: Builds the selector used for multiplexed reads
    """

    def __init__(
        self,
        context: DeployContext,
        process_executor: ProcessExecutor,
        time_provider: TimeProvider,
        logger: Logger,
        ready_timeout: float = READY_TIMEOUT,
        selector_factory: Callable[[], selectors.BaseSelector] = selectors.DefaultSelector
    ):
        self.context = context
        self.process = process_executor
        self.time = time_provider
        self.log = logger
        self.ready_timeout = ready_timeout
        self.selector_factory = selector_factory

        self.ready = False
        self._handle: Optional[ProcessHandle] = None
        self._selector: Optional[selectors.BaseSelector] = None
        self._buffers: Dict[StreamKind, bytearray] = {
            StreamKind.STDOUT: bytearray(),
            StreamKind.STDERR: bytearray(),
        }
        self._closed = False

    @property
    def endpoint(self) -> str:
        return f"{self.context.transfer_user}@{self.context.master}"

    @property
    def pid(self) -> Optional[int]:
        return self._handle.pid if self._handle else None

    def tunnel_command(self) -> List[str]:
        """ssh argv: port forward to the rsync daemon plus the command loop."""
        return [
            "ssh",
            "-C",
            "-o", "StrictHostKeyChecking=no",
            "-t",
            "-L", f"{self.context.tunnel_port}:localhost:{DAEMON_PORT}",
            self.endpoint,
            REMOTE_LOOP,
        ]

    # ------------------------------------------------------------------
    # lifecycle

    def open(self) -> "ControlChannel":
        """Spawn the remote shell and wait for it to answer.

        Raises:
            ChannelError: If the shell cannot be spawned or does not echo the
                readiness token within ready_timeout
        """
        self.log.info(f"Starting secure tunnel : {self.endpoint}...")
        try:
            self._handle = self.process.popen(
                self.tunnel_command(),
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE
            )
        except OSError as e:
            raise ChannelError(f"Unable to start secured tunnel: {e}")

        self._selector = self.selector_factory()
        self._selector.register(self._handle.stdout, selectors.EVENT_READ, StreamKind.STDOUT)
        self._selector.register(self._handle.stderr, selectors.EVENT_READ, StreamKind.STDERR)

        self.log.info("Waiting for connection...")
        response = self.send(f"echo {READY_TOKEN}", single_line=True, timeout=self.ready_timeout)

        if response.stdout is not None:
            self.log.debug(f"WAIT: {response.stdout}")
        for line in response.stderr_lines():
            if not any(noise in line for noise in BENIGN_STARTUP_NOISE):
                self.log.warning(f"[{self.context.master}] {line}")

        if response.stdout != READY_TOKEN:
            self.close()
            reason = response.stderr.strip() if response.stderr else "no answer"
            raise ChannelError(f"Unable to start secured tunnel to {self.endpoint}: {reason}")

        self.ready = True
        self.log.info("connection ready.")
        return self

    def close(self, wait: float = CLOSE_WAIT_SECONDS) -> None:
        """Stop the remote loop and release the streams.

        Safe to call more than once, and from a signal handler.
        """
        if self._closed or self._handle is None:
            return
        self._closed = True
        self.ready = False
        self.log.debug("Close SSH.")

        try:
            self._handle.stdin.write(b"\n")
            self._handle.stdin.flush()
        except (OSError, ValueError):
            pass

        if self._selector is not None:
            self._selector.close()
        for stream in (self._handle.stdin, self._handle.stdout, self._handle.stderr):
            try:
                stream.close()
            except OSError:
                pass

        try:
            self._handle.wait(timeout=wait)
        except subprocess.TimeoutExpired:
            self.log.debug(f"ssh {self._handle.pid} still running, killing it")
            self._handle.kill()

    def __enter__(self) -> "ControlChannel":
        return self.open()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    # ------------------------------------------------------------------
    # I/O

    def write_line(self, command: str) -> None:
        """Submit one command to the remote loop.

        An empty command ends the remote loop.
        """
        if "\n" in command:
            raise ValueError("remote commands must fit on a single line")
        if self._closed or self._handle is None:
            raise ChannelError("control channel is not open")
        try:
            self._handle.stdin.write(command.encode("utf-8") + b"\n")
            self._handle.stdin.flush()
        except (BrokenPipeError, ValueError) as e:
            raise ChannelError(f"control channel lost: {e}")

    def send(
        self,
        command: str,
        single_line: bool = True,
        timeout: float = DEFAULT_SEND_TIMEOUT
    ) -> ChannelResponse:
        """Run a command on the master and collect its output.

        Reads until a full stdout line arrived (single_line) or until the
        timeout elapsed. Never raises on timeout: streams that stayed silent
        come back as None.
        """
        self.write_line(command)
        deadline = self.time.current_time() + timeout
        received = 0

        while not (single_line and b"\n" in self._buffers[StreamKind.STDOUT]):
            remaining = deadline - self.time.current_time()
            if remaining <= 0:
                break
            chunks = self._read_ready(remaining)
            if not chunks:
                break
            for kind, data in chunks:
                received += len(data)
                self._buffers[kind] += data

        if single_line:
            stdout = self._pop_line(StreamKind.STDOUT, partial=True)
        else:
            stdout = self._pop_all(StreamKind.STDOUT)
        stderr = self._pop_all(StreamKind.STDERR)

        return ChannelResponse(
            stdout=stdout.rstrip("\r\n") if stdout else None,
            stderr=stderr.rstrip("\r\n") if stderr else None,
            byte_count=received
        )

    def iter_lines(self, timeout: Optional[float] = None) -> Iterator[Tuple[StreamKind, str]]:
        """Yield complete output lines as they arrive, tagged by stream.

        Stops when both streams reached end of file, or when nothing arrived
        for `timeout` seconds (None waits forever).
        """
        while True:
            for kind in (StreamKind.STDERR, StreamKind.STDOUT):
                line = self._pop_line(kind)
                while line is not None:
                    yield kind, line.rstrip("\r\n")
                    line = self._pop_line(kind)

            chunks = self._read_ready(timeout)
            if chunks is None:
                for kind in (StreamKind.STDERR, StreamKind.STDOUT):
                    rest = self._pop_all(kind)
                    if rest:
                        yield kind, rest.rstrip("\r\n")
                return
            if not chunks:
                return
            for kind, data in chunks:
                self._buffers[kind] += data

    def _read_ready(self, timeout: Optional[float]) -> Optional[List[Tuple[StreamKind, bytes]]]:
        """Wait for data on either stream.

        Returns:
            List of (stream, data) chunks; [] on timeout; None once both
            streams are at end of file
        """
        if self._selector is None or self._closed:
            return None

        while self._selector.get_map():
            events = self._selector.select(timeout)
            if not events:
                return []
            chunks = []
            for key, _ in events:
                data = os.read(key.fileobj.fileno(), READ_CHUNK)
                if data:
                    chunks.append((key.data, data))
                else:
                    self._selector.unregister(key.fileobj)
            if chunks:
                return chunks
            # only end-of-file notifications: wait on the remaining stream
        return None

    def _pop_line(self, kind: StreamKind, partial: bool = False) -> Optional[str]:
        buffer = self._buffers[kind]
        index = buffer.find(b"\n")
        if index < 0:
            if partial and buffer:
                return self._pop_all(kind)
            return None
        line = bytes(buffer[:index + 1])
        del buffer[:index + 1]
        return _decode(line)

    def _pop_all(self, kind: StreamKind) -> Optional[str]:
        buffer = self._buffers[kind]
        if not buffer:
            return None
        data = bytes(buffer)
        buffer.clear()
        return _decode(data)
