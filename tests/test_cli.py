"""CLI smoke tests: argument parsing, dispatch and exit codes."""
import pytest
from unittest.mock import patch

import gitdeploy
from gitdeploy import main
from gitdeploy.deploy.exceptions import SessionInterrupted, SyncFailedError


BASE_ARGS = [
    '--repo', 'www', '--stage', 'prod', '--source-dir', '/src/www',
    '--rsync-module', 'www', '--rsync-user', 'deploy',
    '--master', 'stage1', '--servers', 'web1,web2',
]


def run_main(argv):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestCli:

    def test_no_command_prints_help(self, capsys):
        assert run_main([]) == 1
        assert 'usage: gitdeploy' in capsys.readouterr().out

    def test_version(self, capsys):
        assert run_main(['--version']) == 0
        assert gitdeploy.__version__ in capsys.readouterr().out

    def test_missing_required_options(self, tmp_path, capsys, monkeypatch):
        monkeypatch.delenv('GITDEPLOY_CONFIG', raising=False)

        code = run_main(['sync', '--repo', 'www', '--log-file', str(tmp_path / 'gitdeploy.log')])

        assert code == 1
        assert 'FATAL: --repo and --stage are required.' in capsys.readouterr().err

    @patch('gitdeploy.commands.sync.build_session')
    def test_sync_dispatch(self, mock_build, tmp_path):
        mock_build.return_value.run.return_value = 0

        code = run_main(['sync'] + BASE_ARGS + ['--dry-run', '--log-file', str(tmp_path / 'g.log')])

        assert code == 0
        context, _, version = mock_build.call_args.args
        assert context.dry_run is True
        assert context.deploy_mode is False
        assert context.servers == ('web1', 'web2')
        assert version == gitdeploy.__version__

    @patch('gitdeploy.commands.sync.build_session')
    def test_deploy_mode_flag(self, mock_build, tmp_path):
        mock_build.return_value.run.return_value = 0

        run_main(['sync', '--deploy'] + BASE_ARGS + ['--log-file', str(tmp_path / 'g.log')])

        assert mock_build.call_args.args[0].deploy_mode is True

    @patch('gitdeploy.commands.sync.build_session')
    def test_sync_failure_exit_code(self, mock_build, tmp_path, capsys):
        mock_build.return_value.run.side_effect = SyncFailedError("Failed to sync on master.")

        code = run_main(['sync'] + BASE_ARGS + ['--log-file', str(tmp_path / 'g.log')])

        assert code == 1
        assert 'FATAL: Failed to sync on master.' in capsys.readouterr().err

    @patch('gitdeploy.commands.sync.build_session')
    def test_interrupted_exit_code(self, mock_build, tmp_path):
        mock_build.return_value.run.side_effect = SessionInterrupted(2)

        code = run_main(['sync'] + BASE_ARGS + ['--log-file', str(tmp_path / 'g.log')])

        assert code == 130

    @patch('gitdeploy.commands.sync.build_session')
    def test_messages_mirrored_to_log_file(self, mock_build, tmp_path):
        log_file = tmp_path / 'g.log'
        mock_build.return_value.run.side_effect = SyncFailedError("Failed to sync on master.")

        run_main(['sync'] + BASE_ARGS + ['--log-file', str(log_file)])

        assert 'FATAL::Failed to sync on master.' in log_file.read_text()

    @patch('gitdeploy.commands.check.DeployChecker.run_all_checks')
    def test_check_dispatch(self, mock_checks, tmp_path):
        mock_checks.return_value = ([], False)

        code = run_main(['check'] + BASE_ARGS + ['--log-file', str(tmp_path / 'g.log')])

        assert code == 1


if __name__ == '__main__':
    pytest.main([__file__, '-v'])
