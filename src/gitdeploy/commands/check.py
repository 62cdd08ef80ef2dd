"""Pre-flight checker: is this project ready to be deployed?

Validates the source tree, the control channel to the master, the rsync
module on the master, and the lifecycle hooks, without transferring anything.
"""
from typing import List, Optional, Tuple

from gitdeploy.core import FileSystemService, Logger
from gitdeploy.deploy import ChannelError, ControlChannel, DeployContext, HookRunner, HookType
from gitdeploy.deploy.context import same_host
from gitdeploy.deploy.session import lookup_module_path


class PreflightCheck:
    """Represents a single pre-flight check"""
    def __init__(self, name: str, status: str, message: str, critical: bool = False):
        self.name = name
        self.status = status  # 'pass', 'warn', 'fail'
        self.message = message
        self.critical = critical


class DeployChecker:
    """Pre-flight checker with dependency injection.

    Args:
        context: Session configuration to check
        filesystem: Filesystem operations abstraction
        hooks: Hook runner (only used to locate hooks)
        channel: Control channel to the master, None to skip remote checks
        logger: Logging abstraction
    """

    def __init__(
        self,
        context: DeployContext,
        filesystem: FileSystemService,
        hooks: HookRunner,
        channel: Optional[ControlChannel],
        logger: Logger
    ):
        self.context = context
        self.fs = filesystem
        self.hooks = hooks
        self.channel = channel
        self.log = logger

    def check_source_dir(self) -> PreflightCheck:
        source = self.context.source_dir
        if self.fs.is_dir(source):
            return PreflightCheck('Source Dir', 'pass', source)
        if self.fs.exists(source):
            return PreflightCheck('Source Dir', 'pass', f'{source} (single file)')
        return PreflightCheck('Source Dir', 'fail', f"'{source}' not found", critical=True)

    def check_targets(self) -> PreflightCheck:
        servers = [h for h in self.context.servers if not same_host(h, self.context.master)]
        if not servers:
            return PreflightCheck('Servers', 'warn', 'None configured (master only)')
        return PreflightCheck('Servers', 'pass', f'{len(servers)}: {", ".join(servers)}')

    def check_channel(self) -> PreflightCheck:
        if self.channel is None:
            return PreflightCheck('Control Channel', 'warn', 'Skipped (no master)')
        try:
            self.channel.open()
        except ChannelError as e:
            return PreflightCheck('Control Channel', 'fail', str(e), critical=True)
        return PreflightCheck('Control Channel', 'pass', f'{self.channel.endpoint} is ready')

    def check_remote_path(self) -> PreflightCheck:
        """Only meaningful once check_channel() passed."""
        if self.context.remote_transfer_path:
            return PreflightCheck(
                'Remote Path', 'pass', f'{self.context.remote_transfer_path} (configured)'
            )
        if self.channel is None or not self.channel.ready:
            return PreflightCheck('Remote Path', 'warn', 'Skipped (channel not open)')
        try:
            path = lookup_module_path(self.channel, self.context.transfer_module)
        except ChannelError as e:
            return PreflightCheck('Remote Path', 'fail', str(e), critical=True)
        return PreflightCheck('Remote Path', 'pass', path)

    def check_hook(self, hook_type: HookType) -> PreflightCheck:
        name = f'Hook {hook_type.value}'
        path = self.hooks.hook_path(hook_type)
        if self.hooks.find(hook_type):
            return PreflightCheck(name, 'pass', str(path))
        if self.fs.exists(path):
            return PreflightCheck(name, 'warn', f'{path} exists but is not executable')
        return PreflightCheck(name, 'pass', 'Not present (skipped)')

    def run_all_checks(self) -> Tuple[List[PreflightCheck], bool]:
        """Run all pre-flight checks.

        Returns:
            Tuple of (list of checks, all_pass boolean)
        """
        checks = [self.check_source_dir(), self.check_targets()]
        try:
            checks.append(self.check_channel())
            checks.append(self.check_remote_path())
        finally:
            if self.channel is not None:
                self.channel.close()
        checks.extend(self.check_hook(hook_type) for hook_type in HookType)

        all_pass = all(check.status != 'fail' for check in checks)
        return checks, all_pass

    def print_results(self, checks: List[PreflightCheck]) -> None:
        """Print check results in a formatted table using logger."""
        self.log.info("=" * 80)
        self.log.info(f"DEPLOY CHECK: {self.context.repo} ({self.context.stage})")
        self.log.info("=" * 80)
        self.log.info("")

        symbols = {
            'pass': '✓',
            'warn': '⚠',
            'fail': '✗'
        }

        for check in checks:
            symbol = symbols.get(check.status, '?')
            critical_marker = ' [CRITICAL]' if check.critical else ''
            self.log.info(f"{symbol} {check.name}: {check.message}{critical_marker}")

        self.log.info("")
        self.log.info("=" * 80)

        pass_count = sum(1 for c in checks if c.status == 'pass')
        warn_count = sum(1 for c in checks if c.status == 'warn')
        fail_count = sum(1 for c in checks if c.status == 'fail')
        self.log.info(f"Summary: {pass_count} passed, {warn_count} warnings, {fail_count} failed")
        self.log.info("=" * 80)


def setup_parser(parser):
    """Setup argument parser for check command"""
    from gitdeploy.commands.sync import add_context_arguments
    add_context_arguments(parser)


def execute(args):
    """Execute the pre-flight check.

    Returns:
        Exit code: 0 if no check failed, 1 otherwise
    """
    from gitdeploy.core import (
        ConsoleLogger,
        RealFileSystemService,
        SubprocessExecutor,
        SystemTimeProvider,
        configure_file_logging,
    )
    from gitdeploy.deploy import ConfigurationError
    from gitdeploy.utils.config import context_from_args

    configure_file_logging(args.log_file)
    logger = ConsoleLogger(debug=args.debug)

    try:
        context = context_from_args(args)
    except ConfigurationError as e:
        logger.error(str(e))
        return 1

    process = SubprocessExecutor()
    filesystem = RealFileSystemService()
    channel = None
    if context.master:
        channel = ControlChannel(context, process, SystemTimeProvider(), logger)

    checker = DeployChecker(
        context=context,
        filesystem=filesystem,
        hooks=HookRunner(context, process, filesystem, logger),
        channel=channel,
        logger=logger
    )

    checks, all_pass = checker.run_all_checks()
    checker.print_results(checks)

    return 0 if all_pass else 1
