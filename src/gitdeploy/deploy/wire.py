"""
Line-oriented wire format spoken across the control channel.

Mode B (on the master) writes to its stdout:

    HOSTS=web1,web2,web3
    HOST=web1|LOG=Transfered: 3 / Deleted: 0 / ...
    HOST=web2|LOG=FAILED

and the shell command that launched it appends the completion sentinel:

    GITDEPLOY-DONE 0

Mode A parses those lines back with parse_line().
"""

import re
from dataclasses import dataclass
from typing import Iterable, Optional, Union

from .context import HostStatusEvent

DONE_SENTINEL = "GITDEPLOY-DONE"
FAILURE_MARKER = "FAILED"

_HOST_RE = re.compile(r"HOST=(.+?)\|LOG=(.*)")
_HOSTS_RE = re.compile(r"HOSTS=(.*)")
_DONE_RE = re.compile(re.escape(DONE_SENTINEL) + r"(?:\s+(-?\d+))?\s*$")
_PROGRESS_RE = re.compile(r"\[\d+%\]")


@dataclass(frozen=True)
class HostsLine:
    hosts: tuple


@dataclass(frozen=True)
class HostLogLine:
    host: str
    text: str

    @property
    def is_failure(self) -> bool:
        return self.text == FAILURE_MARKER

    @property
    def is_progress(self) -> bool:
        return bool(_PROGRESS_RE.search(self.text))


@dataclass(frozen=True)
class DoneLine:
    exit_code: Optional[int]


@dataclass(frozen=True)
class TextLine:
    text: str


RemoteLine = Union[HostsLine, HostLogLine, DoneLine, TextLine]


def clean_text(text: str) -> str:
    """Drop carriage returns and surrounding whitespace from a log message."""
    return text.replace("\r", "").strip()


def render_hosts(hosts: Iterable[str]) -> str:
    return "HOSTS=" + ",".join(hosts)


def render_event(event: HostStatusEvent) -> str:
    """Render one status event as a single wire line."""
    text = clean_text(event.message).replace("\n", " ")
    return f"HOST={event.host_id}|LOG={text}"


def done_command(exit_status_expr: str = "$?") -> str:
    """Shell snippet that prints the completion sentinel with an exit status."""
    return f"echo {DONE_SENTINEL} {exit_status_expr}"


def parse_line(line: str) -> RemoteLine:
    """Classify one line of remote output.

    Unknown lines (the remote process' own console output) come back as
    TextLine so they can be passed through to the operator.
    """
    line = line.rstrip("\r\n")

    match = _HOST_RE.match(line)
    if match:
        return HostLogLine(host=match.group(1), text=clean_text(match.group(2)))

    match = _HOSTS_RE.match(line)
    if match:
        hosts = tuple(h.strip() for h in match.group(1).split(",") if h.strip())
        return HostsLine(hosts=hosts)

    match = _DONE_RE.search(line)
    if match:
        code = match.group(1)
        return DoneLine(exit_code=int(code) if code is not None else None)

    return TextLine(text=line)
