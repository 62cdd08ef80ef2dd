"""Unit tests for HookRunner with mocked filesystem and process executor."""
import pytest
from pathlib import Path
from unittest.mock import Mock, call

from gitdeploy.core.protocols import FileSystemService, Logger, ProcessExecutor, ProcessResult
from gitdeploy.deploy.context import DeployContext, HookType
from gitdeploy.deploy.exceptions import HookError
from gitdeploy.deploy.hooks import HookRunner


def make_context(**overrides):
    values = dict(
        repo="www",
        stage="prod",
        source_dir="/src/www",
        transfer_module="www",
        transfer_user="deploy",
        master="stage1",
    )
    values.update(overrides)
    return DeployContext(**values)


class TestHookRunner:
    """Test hook lookup and execution."""

    def setup_method(self):
        self.mock_process = Mock(spec=ProcessExecutor)
        self.mock_fs = Mock(spec=FileSystemService)
        self.mock_fs.getcwd.return_value = "/home/operator"
        self.mock_fs.realpath.side_effect = lambda path: path
        self.mock_logger = Mock(spec=Logger)

    def make_runner(self, **overrides):
        return HookRunner(make_context(**overrides), self.mock_process, self.mock_fs, self.mock_logger)

    def test_hook_path(self):
        runner = self.make_runner()
        assert runner.hook_path(HookType.MID) == Path("/src/www/.hooks/mid-deploy")

    def test_hook_path_custom_dir(self):
        runner = self.make_runner(hooks_dir="deploy/hooks")
        assert runner.hook_path(HookType.REPORT) == Path("/src/www/deploy/hooks/report-deploy")

    def test_relative_source_dir_is_resolved(self):
        self.mock_fs.realpath.side_effect = lambda path: "/home/operator/build"
        self.mock_fs.is_executable.return_value = True
        self.mock_process.run.return_value = ProcessResult(returncode=0)
        runner = self.make_runner(source_dir="./build")

        runner.run(HookType.REPORT)

        self.mock_process.run.assert_called_once_with(
            ["/home/operator/build/.hooks/report-deploy", "prod", "www"]
        )
        assert self.mock_fs.chdir.call_args_list == [call("/home/operator/build"), call("/home/operator")]

    def test_missing_hook_is_noop(self):
        self.mock_fs.is_executable.return_value = False
        runner = self.make_runner()

        runner.run(HookType.POST)

        self.mock_process.run.assert_not_called()
        self.mock_fs.chdir.assert_not_called()

    def test_hook_runs_from_source_root_with_stage_and_repo(self):
        self.mock_fs.is_executable.return_value = True
        self.mock_process.run.return_value = ProcessResult(returncode=0)
        runner = self.make_runner()

        runner.run(HookType.MID)

        self.mock_process.run.assert_called_once_with(["/src/www/.hooks/mid-deploy", "prod", "www"])
        assert self.mock_fs.chdir.call_args_list == [call("/src/www"), call("/home/operator")]

    def test_accepts_hook_type_value(self):
        self.mock_fs.is_executable.return_value = True
        self.mock_process.run.return_value = ProcessResult(returncode=0)
        runner = self.make_runner()

        runner.run("report")

        assert self.mock_process.run.call_args.args[0][0] == "/src/www/.hooks/report-deploy"

    def test_failing_hook_raises_and_restores_cwd(self):
        self.mock_fs.is_executable.return_value = True
        self.mock_process.run.return_value = ProcessResult(returncode=3)
        runner = self.make_runner()

        with pytest.raises(HookError) as exc_info:
            runner.run(HookType.POST)

        assert exc_info.value.returncode == 3
        assert str(exc_info.value) == "Hook 'post' FAILED: exitcode=3"
        self.mock_fs.chdir.assert_called_with("/home/operator")

    def test_unrunnable_hook_raises(self):
        self.mock_fs.is_executable.return_value = True
        self.mock_process.run.side_effect = PermissionError("denied")
        runner = self.make_runner()

        with pytest.raises(HookError) as exc_info:
            runner.run(HookType.MID)

        assert exc_info.value.returncode == 126
        self.mock_fs.chdir.assert_called_with("/home/operator")
