"""Unit tests for FanoutCoordinator: one worker per host, one aggregated stream."""
import threading
from unittest.mock import Mock

from gitdeploy.core.protocols import Logger
from gitdeploy.deploy.context import DeployContext, TransferOutcome
from gitdeploy.deploy.fanout import FanoutCoordinator
from gitdeploy.deploy.transfer import TransferRunner
from gitdeploy.deploy.wire import HostLogLine, HostsLine, parse_line


def make_context(servers=("web1", "web2", "web3"), master="stage1"):
    return DeployContext(
        repo="www",
        stage="prod",
        source_dir="/srv/www/prod",
        transfer_module="www",
        transfer_user="deploy",
        master=master,
        servers=servers,
        deploy_mode=True,
    )


class FakeRunner:
    """Stands in for TransferRunner; records calls, emits a few messages per host."""

    def __init__(self, failing=(), messages=("starting", "halfway", "done"), raising=()):
        self.failing = set(failing)
        self.raising = set(raising)
        self.messages = messages
        self.calls = []
        self.lock = threading.Lock()

    def run(self, job, emit=None):
        with self.lock:
            self.calls.append(job)
        if job.destination_host in self.raising:
            raise RuntimeError("boom")
        for message in self.messages:
            emit(f"{message} {job.destination_host}")
        return TransferOutcome(success=job.destination_host not in self.failing)


class TestFanoutTargets:
    """Test target selection."""

    def setup_method(self):
        self.mock_logger = Mock(spec=Logger)

    def test_master_is_excluded(self):
        coordinator = FanoutCoordinator(
            make_context(servers=("stage1", "web1")), Mock(spec=TransferRunner), self.mock_logger
        )
        assert coordinator.targets() == ["web1"]

    def test_master_fqdn_is_excluded(self):
        coordinator = FanoutCoordinator(
            make_context(servers=("stage1.example.com", "web1.example.com")),
            Mock(spec=TransferRunner),
            self.mock_logger
        )
        assert coordinator.targets() == ["web1.example.com"]

    def test_duplicates_are_dropped(self):
        coordinator = FanoutCoordinator(
            make_context(servers=("web1", "web2", "web1")), Mock(spec=TransferRunner), self.mock_logger
        )
        assert coordinator.targets() == ["web1", "web2"]

    def test_explicit_hosts_string(self):
        coordinator = FanoutCoordinator(make_context(), Mock(spec=TransferRunner), self.mock_logger)
        assert coordinator.targets("web9, stage1 ,web8") == ["web9", "web8"]


class TestFanoutRun:
    """Test the concurrent fan-out and its aggregated output."""

    def setup_method(self):
        self.mock_logger = Mock(spec=Logger)
        self.lines = []

    def run_fanout(self, runner, **context_args):
        coordinator = FanoutCoordinator(
            make_context(**context_args), runner, self.mock_logger, sink=self.lines.append
        )
        return coordinator.fanout()

    def test_each_target_synced_exactly_once(self):
        runner = FakeRunner()

        report = self.run_fanout(runner, servers=("stage1", "web1", "web2", "web3"))

        hosts = sorted(job.destination_host for job in runner.calls)
        assert hosts == ["web1", "web2", "web3"]
        assert all(job.stage_name == "prod" for job in runner.calls)
        assert all(job.source_path == "/srv/www/prod" for job in runner.calls)
        assert report.hosts == ["web1", "web2", "web3"]
        assert report.success is True
        self.mock_logger.info.assert_called_with("Deploy to 3 servers ...")

    def test_hosts_line_comes_first(self):
        self.run_fanout(FakeRunner())

        first = parse_line(self.lines[0])
        assert isinstance(first, HostsLine)
        assert first.hosts == ("web1", "web2", "web3")

    def test_every_event_delivered_once_in_per_host_order(self):
        self.run_fanout(FakeRunner())

        events = [parse_line(line) for line in self.lines[1:]]
        assert all(isinstance(event, HostLogLine) for event in events)
        for host in ("web1", "web2", "web3"):
            texts = [e.text for e in events if e.host == host]
            assert texts == [f"starting {host}", f"halfway {host}", f"done {host}"]
        assert len(events) == 9

    def test_one_failing_host(self):
        runner = FakeRunner(failing=("web2",))

        report = self.run_fanout(runner)

        assert report.success is False
        assert report.failed == ["web2"]
        assert len(runner.calls) == 3
        assert "HOST=web2|LOG=FAILED" in self.lines
        assert "HOST=web1|LOG=FAILED" not in self.lines
        assert report.outcomes["web1"].success is True

    def test_worker_exception_becomes_failure(self):
        runner = FakeRunner(raising=("web3",))

        report = self.run_fanout(runner)

        assert report.failed == ["web3"]
        assert report.outcomes["web3"] is None
        assert "HOST=web3|LOG=RuntimeError: boom" in self.lines
        assert self.lines.index("HOST=web3|LOG=RuntimeError: boom") < self.lines.index("HOST=web3|LOG=FAILED")

    def test_blank_messages_are_dropped(self):
        def run(job, emit=None):
            for message in ("", "  \r", "ok\r"):
                emit(message)
            return TransferOutcome(success=True)

        runner = Mock(spec=TransferRunner)
        runner.run.side_effect = run

        self.run_fanout(runner, servers=("web1",))

        assert self.lines == ["HOSTS=web1", "HOST=web1|LOG=ok"]

    def test_no_targets(self):
        runner = FakeRunner()

        report = self.run_fanout(runner, servers=("stage1",))

        assert runner.calls == []
        assert report.success is True
        assert self.lines == ["HOSTS="]
