"""Unit tests for configuration loading and validation."""
import argparse

import pytest

from gitdeploy.deploy.exceptions import ConfigurationError
from gitdeploy.utils.config import (
    CONFIG_ENV_VAR,
    build_context,
    context_from_args,
    load_config_file,
    merge_options,
    resolve_config_path,
)


def valid_options(**overrides):
    options = {
        'repo': 'www',
        'stage': 'prod',
        'source_dir': '/src/www',
        'rsync_module': 'www',
        'rsync_user': 'deploy',
        'master': 'stage1',
        'servers': 'web1,web2',
    }
    options.update(overrides)
    return options


def make_args(**values):
    defaults = dict(
        config=None, repo=None, stage=None, source_dir=None, rsync_module=None,
        rsync_user=None, rsync_remote_path=None, master=None, servers=None,
        hooks_dir=None, deploy=False, debug=False, dry_run=False,
    )
    defaults.update(values)
    return argparse.Namespace(**defaults)


class TestBuildContext:
    """Test validation of merged options."""

    def test_valid_mode_a(self):
        context = build_context(merge_options({}, valid_options()))

        assert context.repo == 'www'
        assert context.transfer_module == 'www'
        assert context.transfer_user == 'deploy'
        assert context.servers == ('web1', 'web2')
        assert context.tunnel_port == 8731
        assert context.hooks_dir == '.hooks'
        assert context.deploy_mode is False

    def test_repo_and_stage_required(self):
        with pytest.raises(ConfigurationError, match="--repo and --stage are required."):
            build_context(valid_options(stage=None))

    def test_unconfigured_project(self):
        with pytest.raises(ConfigurationError, match="Project 'www' is not yet configured to be deployed."):
            build_context(valid_options(rsync_user=''))

    def test_master_or_servers_required(self):
        with pytest.raises(ConfigurationError, match="At least a master or some servers are necessary."):
            build_context(valid_options(master=None, servers=None))

    def test_deploy_mode_needs_servers(self):
        with pytest.raises(ConfigurationError, match="--deploy needs --servers."):
            build_context(valid_options(servers=''), deploy_mode=True)

    def test_mode_a_needs_master(self):
        with pytest.raises(ConfigurationError, match="A master is necessary"):
            build_context(valid_options(master=None))

    def test_deploy_mode_without_master(self):
        context = build_context(valid_options(master=None), deploy_mode=True)

        assert context.master is None
        assert context.deploy_mode is True

    def test_servers_list(self):
        context = build_context(valid_options(servers=['web1', ' web2 ', '']))

        assert context.servers == ('web1', 'web2')

    def test_invalid_tunnel_port(self):
        with pytest.raises(ConfigurationError, match="Invalid tunnel_port"):
            build_context(valid_options(tunnel_port='eighty'))


class TestConfigFile:
    """Test YAML config file loading."""

    def test_load_yaml(self, tmp_path):
        config = tmp_path / "deploy.yaml"
        config.write_text(
            "repo: www\n"
            "stage: prod\n"
            "servers:\n"
            "  - web1\n"
            "  - web2\n"
            "tunnel_port: 9000\n"
        )

        loaded = load_config_file(str(config))

        assert loaded == {'repo': 'www', 'stage': 'prod', 'servers': ['web1', 'web2'], 'tunnel_port': 9000}

    def test_empty_file(self, tmp_path):
        config = tmp_path / "deploy.yaml"
        config.write_text("")

        assert load_config_file(str(config)) == {}

    def test_unknown_keys_rejected(self, tmp_path):
        config = tmp_path / "deploy.yaml"
        config.write_text("repo: www\nservres: web1\n")

        with pytest.raises(ConfigurationError, match="servres"):
            load_config_file(str(config))

    def test_not_a_mapping(self, tmp_path):
        config = tmp_path / "deploy.yaml"
        config.write_text("- web1\n- web2\n")

        with pytest.raises(ConfigurationError, match="expected a mapping"):
            load_config_file(str(config))

    def test_invalid_yaml(self, tmp_path):
        config = tmp_path / "deploy.yaml"
        config.write_text("repo: [www\n")

        with pytest.raises(ConfigurationError, match="Invalid YAML"):
            load_config_file(str(config))

    def test_missing_file(self, tmp_path):
        with pytest.raises(ConfigurationError, match="Cannot read config file"):
            load_config_file(str(tmp_path / "absent.yaml"))


class TestMerge:
    """Test precedence: defaults < file < command line."""

    def test_cli_overrides_file(self):
        merged = merge_options({'stage': 'preprod', 'master': 'stage1'}, {'stage': 'prod', 'master': None})

        assert merged['stage'] == 'prod'
        assert merged['master'] == 'stage1'
        assert merged['hooks_dir'] == '.hooks'

    def test_explicit_config_wins_over_environment(self):
        environ = {CONFIG_ENV_VAR: '/etc/gitdeploy.yaml'}

        assert resolve_config_path('./deploy.yaml', environ) == './deploy.yaml'
        assert resolve_config_path(None, environ) == '/etc/gitdeploy.yaml'
        assert resolve_config_path(None, {}) is None

    def test_context_from_args_with_env_config(self, tmp_path):
        config = tmp_path / "deploy.yaml"
        config.write_text(
            "repo: www\nstage: prod\nsource_dir: /src/www\n"
            "rsync_module: www\nrsync_user: deploy\nmaster: stage1\n"
        )
        args = make_args(servers='web1', debug=True)

        context = context_from_args(args, environ={CONFIG_ENV_VAR: str(config)})

        assert context.master == 'stage1'
        assert context.servers == ('web1',)
        assert context.debug is True
