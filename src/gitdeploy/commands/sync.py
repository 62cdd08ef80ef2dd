"""Sync command: push a tree to the master and fan it out (Mode A), or fan out from the master (Mode B, --deploy)"""
from gitdeploy.core import (
    ConsoleLogger,
    RealFileSystemService,
    SubprocessExecutor,
    SystemTimeProvider,
    configure_file_logging,
)
from gitdeploy.core.implementations import DEFAULT_LOG_FILE
from gitdeploy.deploy import (
    ControlChannel,
    DeployContext,
    DeploymentError,
    FanoutCoordinator,
    HookRunner,
    SessionInterrupted,
    SessionOrchestrator,
    TransferRunner,
)
from gitdeploy.core.protocols import Logger
from gitdeploy.utils.config import context_from_args


def add_context_arguments(parser):
    """Options shared by every command that needs a deployment context"""
    parser.add_argument('--config', help='YAML file with default option values')
    parser.add_argument('--repo', help='Repository name')
    parser.add_argument('--stage', help='Deployment stage (e.g., prod, preprod)')
    parser.add_argument('--source-dir', dest='source_dir', help='Tree to deploy')
    parser.add_argument('--rsync-module', dest='rsync_module', help='rsync daemon module on the targets')
    parser.add_argument('--rsync-user', dest='rsync_user', help='SSH user on the master')
    parser.add_argument(
        '--rsync-remote-path',
        dest='rsync_remote_path',
        help='Module path on the master (default: read from its /etc/rsyncd.conf)'
    )
    parser.add_argument('--master', help='Master staging host')
    parser.add_argument('--servers', help='Comma-separated production hosts')
    parser.add_argument('--hooks-dir', dest='hooks_dir', help='Hooks directory, relative to the source dir')
    parser.add_argument('--debug', action='store_true', help='Verbose transfers and debug output')
    parser.add_argument(
        '--log-file',
        dest='log_file',
        default=DEFAULT_LOG_FILE,
        help=f'Debug log file (default: {DEFAULT_LOG_FILE})'
    )


def setup_parser(parser):
    """Setup argument parser for sync command"""
    add_context_arguments(parser)
    parser.add_argument(
        '--deploy',
        action='store_true',
        help='Fan out from this host to --servers (runs on the master)'
    )
    parser.add_argument(
        '--dry-run',
        dest='dry_run',
        action='store_true',
        help='Show what would be transferred without changing anything'
    )


def build_session(context: DeployContext, logger: Logger, version: str) -> SessionOrchestrator:
    """Wire a SessionOrchestrator with production dependencies."""
    process = SubprocessExecutor()
    filesystem = RealFileSystemService()
    clock = SystemTimeProvider()

    runner = TransferRunner(context, process, filesystem, clock, logger)
    hooks = HookRunner(context, process, filesystem, logger)

    channel = None
    fanout = None
    if context.deploy_mode:
        fanout = FanoutCoordinator(context, runner, logger)
    else:
        channel = ControlChannel(context, process, clock, logger)

    return SessionOrchestrator(
        context,
        runner,
        hooks,
        logger,
        channel=channel,
        fanout=fanout,
        version=version
    )


def execute(args):
    """Execute sync command"""
    from gitdeploy import __version__

    configure_file_logging(args.log_file)
    logger = ConsoleLogger(debug=args.debug)

    try:
        context = context_from_args(args)
        session = build_session(context, logger, __version__)
        return session.run()
    except SessionInterrupted as e:
        logger.error(str(e))
        return 130
    except DeploymentError as e:
        logger.error(str(e))
        return 1
