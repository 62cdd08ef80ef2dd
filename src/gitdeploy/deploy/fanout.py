"""
FanoutCoordinator - master-side parallel sync to every production server.

One thread per target host runs a TransferRunner; every worker pushes its
HostStatusEvents onto a single queue. One aggregator thread drains that queue
and is the only writer of the output sink, so lines from different hosts
never interleave mid-line. The Done marker is queued only after every worker
has been joined, so the aggregator sees every event before it stops.
"""

import queue
import threading
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional, Union

from gitdeploy.core.protocols import Logger
from .context import DeployContext, HostStatusEvent, TransferJob, TransferOutcome, same_host, split_hosts
from .transfer import TransferRunner
from .wire import FAILURE_MARKER, clean_text, render_event, render_hosts


@dataclass(frozen=True)
class FanoutDone:
    """End of the event stream."""


QueueItem = Union[HostStatusEvent, FanoutDone]


@dataclass
class FanoutReport:
    """Per-host result of one fan-out pass."""
    hosts: List[str]
    failed: List[str] = field(default_factory=list)
    outcomes: Dict[str, Optional[TransferOutcome]] = field(default_factory=dict)

    @property
    def success(self) -> bool:
        return not self.failed


def print_line(line: str) -> None:
    print(line, flush=True)


class _HostWorker(threading.Thread):
    """Syncs one host and reports through the shared event queue.

    Success is implicit: only a failure produces a marker event.
    """

    def __init__(self, host: str, context: DeployContext, runner: TransferRunner, events: "queue.Queue[QueueItem]"):
        super().__init__(name=f"sync-{host}", daemon=True)
        self.host = host
        self.context = context
        self.runner = runner
        self.events = events
        self.outcome: Optional[TransferOutcome] = None

    def emit(self, message: str) -> None:
        text = clean_text(message)
        if text:
            self.events.put(HostStatusEvent(self.host, text))

    def run(self) -> None:
        job = TransferJob(
            source_path=self.context.source_dir,
            destination_host=self.host,
            stage_name=self.context.stage,
            transfer_module=self.context.transfer_module
        )
        try:
            self.outcome = self.runner.run(job, emit=self.emit)
        except Exception as e:
            # a dying thread would otherwise leave no failure marker behind
            self.emit(f"{type(e).__name__}: {e}")
            self.outcome = None

        if self.outcome is None or not self.outcome.success:
            self.events.put(HostStatusEvent(self.host, FAILURE_MARKER, is_failure_marker=True))


class _Aggregator(threading.Thread):
    """Single consumer of the event queue and single writer of the sink."""

    def __init__(self, events: "queue.Queue[QueueItem]", sink: Callable[[str], None]):
        super().__init__(name="fanout-aggregator", daemon=True)
        self.events = events
        self.sink = sink
        self.failed: List[str] = []

    def run(self) -> None:
        while True:
            item = self.events.get()
            if isinstance(item, FanoutDone):
                break
            if item.is_failure_marker and item.host_id not in self.failed:
                self.failed.append(item.host_id)
            self.sink(render_event(item))


class FanoutCoordinator:
    """
    Syncs the master's copy of the tree to every server concurrently.

    Args:
        context: Session configuration (Mode B)
        runner: Transfer runner shared by all workers
        logger: Console logger
        sink: Receives each wire line (defaults to stdout, flushed per line)
    """

    def __init__(
        self,
        context: DeployContext,
        runner: TransferRunner,
        logger: Logger,
        sink: Callable[[str], None] = print_line
    ):
        self.context = context
        self.runner = runner
        self.log = logger
        self.sink = sink

    def targets(self, hosts: Optional[Iterable[str]] = None) -> List[str]:
        """Hosts to sync: configured servers minus the master, without duplicates."""
        targets: List[str] = []
        for host in split_hosts(hosts if hosts is not None else self.context.servers):
            if same_host(host, self.context.master):
                self.log.debug(f"Skipping master {host}")
                continue
            if host not in targets:
                targets.append(host)
        return targets

    def fanout(self, hosts: Optional[Iterable[str]] = None) -> FanoutReport:
        """Sync every target host and wait for all of them.

        Never raises for transfer failures; they show up in report.failed and
        as FAILED lines on the sink.
        """
        targets = self.targets(hosts)
        self.log.info(f"Deploy to {len(targets)} servers ...")
        self.sink(render_hosts(targets))

        events: "queue.Queue[QueueItem]" = queue.Queue()
        aggregator = _Aggregator(events, self.sink)
        aggregator.start()

        workers = [_HostWorker(host, self.context, self.runner, events) for host in targets]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        events.put(FanoutDone())
        aggregator.join()

        return FanoutReport(
            hosts=targets,
            failed=list(aggregator.failed),
            outcomes={worker.host: worker.outcome for worker in workers}
        )
