"""
Deployment exceptions.

Every fatal condition of a deployment session derives from DeploymentError;
the command layer turns them into a "FATAL:" line and a non-zero exit code.
Per-host transfer failures are not exceptions: they travel as outcomes and
status events so that one host never stops its siblings.
"""


class DeploymentError(Exception):
    """Base class for fatal deployment failures."""
    pass


class ConfigurationError(DeploymentError):
    """
    Raised before any remote action when the deployment is misconfigured.

    Examples:
        - Missing repo/stage/module/user
        - Neither master nor servers configured
        - Source directory cannot be resolved
    """
    pass


class ChannelError(DeploymentError):
    """
    Raised when the control channel to the master cannot be used.

    Examples:
        - Remote shell could not be spawned
        - Readiness token not seen within the timeout
        - Remote module path lookup returned nothing
    """
    pass


class HookError(DeploymentError):
    """Raised when an existing, executable lifecycle hook exits non-zero."""

    def __init__(self, hook_type: str, returncode: int):
        self.hook_type = hook_type
        self.returncode = returncode
        super().__init__(f"Hook '{hook_type}' FAILED: exitcode={returncode}")


class SyncFailedError(DeploymentError):
    """
    Raised when the session as a whole failed.

    Attributes:
        failed_hosts: Hosts whose fan-out transfer failed (may be empty when
            the master sync itself or the remote run failed)
    """

    def __init__(self, message: str, failed_hosts=None):
        self.failed_hosts = list(failed_hosts or [])
        super().__init__(message)


class SessionInterrupted(DeploymentError):
    """Raised from the signal handler once the channel has been closed."""

    def __init__(self, signum: int):
        self.signum = signum
        super().__init__(f"Interrupted by signal {signum}")
