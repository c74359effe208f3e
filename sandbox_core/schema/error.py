class SandboxCoreError(Exception):
    """Base class for every error raised by sandbox_core."""


class ProvisioningError(SandboxCoreError):
    """The remote provider failed to create a sandbox."""


class SandboxUnavailableError(SandboxCoreError):
    """The sandbox is not tracked locally and could not be reattached."""

    def __init__(self, sandbox_id: str, reason: str = ""):
        self.sandbox_id = sandbox_id
        self.reason = reason
        msg = f"Sandbox {sandbox_id} is unavailable"
        if reason:
            msg = f"{msg}: {reason}"
        super().__init__(msg)


class InvalidDescriptorError(SandboxCoreError):
    """The MCP server descriptor cannot be deployed as given."""


class DeploymentError(SandboxCoreError):
    """The MCP server could not be brought up inside its sandbox."""


class DeploymentTimeoutError(DeploymentError):
    """The MCP server never answered its readiness probe."""


class ExecutionFailedError(SandboxCoreError):
    """A streamed run failed; the error was already reported on the stream."""

    def __init__(
        self, execution_id: str, sandbox_id: str, error: str, duration_ms: int = 0
    ):
        self.execution_id = execution_id
        self.sandbox_id = sandbox_id
        self.error = error
        self.duration_ms = duration_ms
        super().__init__(
            f"Execution {execution_id} in sandbox {sandbox_id} failed: {error}"
        )
