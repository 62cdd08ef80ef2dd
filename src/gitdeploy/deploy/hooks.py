"""Lifecycle hooks: optional project executables run at fixed checkpoints."""

import os
from pathlib import Path
from typing import Optional

from gitdeploy.core.protocols import FileSystemService, Logger, ProcessExecutor
from .context import DeployContext, HookType
from .exceptions import HookError

HOOK_NOT_RUNNABLE = 126


class HookRunner:
    """Runs `<source_dir>/<hooks_dir>/<type>-deploy <stage> <repo>` if present.

    A missing or non-executable hook is a silent no-op. An executable hook
    that exits non-zero raises HookError, which aborts the session.
    """

    def __init__(
        self,
        context: DeployContext,
        process_executor: ProcessExecutor,
        filesystem: FileSystemService,
        logger: Logger
    ):
        self.context = context
        self.process = process_executor
        self.fs = filesystem
        self.log = logger

    def source_root(self) -> str:
        """Source dir as an absolute path (hooks run with it as cwd)."""
        return self.fs.realpath(self.context.source_dir) or os.path.abspath(self.context.source_dir)

    def hook_path(self, hook_type: HookType) -> Path:
        return Path(self.source_root()) / self.context.hooks_dir / f"{HookType(hook_type).value}-deploy"

    def find(self, hook_type: HookType) -> Optional[Path]:
        """Return the hook path if it exists and is executable."""
        path = self.hook_path(hook_type)
        if self.fs.is_executable(path):
            return path
        return None

    def run(self, hook_type: HookType) -> None:
        """Execute a hook from the source root, restoring the working directory.

        Raises:
            HookError: If the hook exists, is executable and exits non-zero
        """
        hook_type = HookType(hook_type)
        path = self.hook_path(hook_type)
        self.log.debug(f"Run hook {path} if exists")

        hook = self.find(hook_type)
        if hook is None:
            return

        previous = self.fs.getcwd()
        self.fs.chdir(self.source_root())
        try:
            self.log.info(f"Execute {hook_type.value}-deploy hook ...")
            result = self.process.run([str(hook), self.context.stage, self.context.repo])
        except OSError as e:
            # not runnable despite the exec bit (bad interpreter line, ...)
            raise HookError(hook_type.value, HOOK_NOT_RUNNABLE) from e
        finally:
            self.fs.chdir(previous)

        if result.returncode != 0:
            raise HookError(hook_type.value, result.returncode)
