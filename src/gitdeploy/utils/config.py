"""Configuration loading: optional YAML file + command-line overrides -> DeployContext"""
import os
import yaml
from typing import Any, Dict, Mapping, Optional

from gitdeploy.deploy.context import (
    DEFAULT_HOOKS_DIR,
    DEFAULT_REMOTE_PYTHON,
    DEFAULT_RSYNC_BINARY,
    DEFAULT_TUNNEL_PORT,
    DeployContext,
    split_hosts,
)
from gitdeploy.deploy.exceptions import ConfigurationError

CONFIG_ENV_VAR = "GITDEPLOY_CONFIG"

# option name -> DeployContext field
OPTION_FIELDS = {
    'repo': 'repo',
    'stage': 'stage',
    'source_dir': 'source_dir',
    'rsync_module': 'transfer_module',
    'rsync_user': 'transfer_user',
    'rsync_remote_path': 'remote_transfer_path',
    'master': 'master',
    'servers': 'servers',
    'hooks_dir': 'hooks_dir',
    'tunnel_port': 'tunnel_port',
    'remote_python': 'remote_python',
    'rsync_binary': 'rsync_binary',
}

DEFAULTS = {
    'hooks_dir': DEFAULT_HOOKS_DIR,
    'tunnel_port': DEFAULT_TUNNEL_PORT,
    'remote_python': DEFAULT_REMOTE_PYTHON,
    'rsync_binary': DEFAULT_RSYNC_BINARY,
}


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load a YAML deployment config.

    Args:
        config_path: Path to the YAML file

    Returns:
        Mapping of option name to value (empty for an empty file)

    Raises:
        ConfigurationError: If the file is unreadable, not a mapping, or has
            unknown keys
    """
    try:
        with open(config_path, 'r') as f:
            config = yaml.safe_load(f)
    except OSError as e:
        raise ConfigurationError(f"Cannot read config file {config_path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {config_path}: {e}")

    if config is None:
        return {}
    if not isinstance(config, dict):
        raise ConfigurationError(f"{config_path}: expected a mapping of options")

    unknown = sorted(set(config) - set(OPTION_FIELDS))
    if unknown:
        raise ConfigurationError(f"{config_path}: unknown option(s): {', '.join(unknown)}")
    return config


def resolve_config_path(explicit: Optional[str], environ: Mapping[str, str]) -> Optional[str]:
    """--config wins over $GITDEPLOY_CONFIG; None when neither is set."""
    if explicit:
        return explicit
    return environ.get(CONFIG_ENV_VAR) or None


def merge_options(file_config: Mapping[str, Any], cli_options: Mapping[str, Any]) -> Dict[str, Any]:
    """Defaults, then file values, then command-line values that were given."""
    merged: Dict[str, Any] = dict(DEFAULTS)
    merged.update({k: v for k, v in file_config.items() if v is not None})
    merged.update({k: v for k, v in cli_options.items() if k in OPTION_FIELDS and v is not None})
    return merged


def build_context(
    options: Mapping[str, Any],
    deploy_mode: bool = False,
    debug: bool = False,
    dry_run: bool = False
) -> DeployContext:
    """Validate merged options and freeze them into a DeployContext.

    Raises:
        ConfigurationError: On any missing or malformed setting
    """
    repo = options.get('repo')
    stage = options.get('stage')
    if not repo or not stage:
        raise ConfigurationError("--repo and --stage are required.")

    for name in ('stage', 'source_dir', 'rsync_module', 'rsync_user'):
        value = options.get(name)
        if value is None or len(str(value)) == 0:
            raise ConfigurationError(f"Project '{repo}' is not yet configured to be deployed.")

    master = options.get('master') or None
    servers = split_hosts(options.get('servers'))
    if not master and not servers:
        raise ConfigurationError("At least a master or some servers are necessary.")
    if deploy_mode and not servers:
        raise ConfigurationError("--deploy needs --servers.")
    if not deploy_mode and not master:
        raise ConfigurationError("A master is necessary to sync from the source.")

    try:
        tunnel_port = int(options.get('tunnel_port', DEFAULT_TUNNEL_PORT))
    except (TypeError, ValueError):
        raise ConfigurationError(f"Invalid tunnel_port: {options.get('tunnel_port')!r}")

    return DeployContext(
        repo=str(repo),
        stage=str(stage),
        source_dir=str(options['source_dir']),
        transfer_module=str(options['rsync_module']),
        transfer_user=str(options['rsync_user']),
        master=master,
        servers=servers,
        debug=debug,
        dry_run=dry_run,
        deploy_mode=deploy_mode,
        remote_transfer_path=options.get('rsync_remote_path') or None,
        hooks_dir=str(options.get('hooks_dir') or DEFAULT_HOOKS_DIR),
        tunnel_port=tunnel_port,
        remote_python=str(options.get('remote_python') or DEFAULT_REMOTE_PYTHON),
        rsync_binary=str(options.get('rsync_binary') or DEFAULT_RSYNC_BINARY),
    )


def context_from_args(args, environ: Optional[Mapping[str, str]] = None) -> DeployContext:
    """Build the session context from parsed command-line arguments."""
    environ = os.environ if environ is None else environ
    config_path = resolve_config_path(getattr(args, 'config', None), environ)
    file_config = load_config_file(config_path) if config_path else {}

    cli_options = {name: getattr(args, name, None) for name in OPTION_FIELDS}
    options = merge_options(file_config, cli_options)

    return build_context(
        options,
        deploy_mode=bool(getattr(args, 'deploy', False)),
        debug=bool(getattr(args, 'debug', False)),
        dry_run=bool(getattr(args, 'dry_run', False))
    )
