import asyncio
import shlex
from typing import Any, Mapping, Optional
import httpx
from ..env import LOG, DEFAULT_CORE_CONFIG
from ..infra.sandbox.backend.base import SandboxHandle
from ..schema.config import CoreConfig
from ..schema.error import (
    DeploymentError,
    DeploymentTimeoutError,
    InvalidDescriptorError,
    SandboxUnavailableError,
)
from ..schema.mcp import DeploymentResult, MCPServerDescriptor, McpServerStatus
from ..schema.sandbox import SandboxStatus
from ..telemetry.log import bound_logging_vars
from ..telemetry.otel import sandbox_span
from ..util.ids import track_process
from .lifecycle import SandboxLifecycleManager
from .reconcile import SandboxReconciler
from .stream import normalize_output

MCP_SERVER_PURPOSE = "mcp-server"


def build_gateway_command(start_command: str, port: int) -> str:
    # supergateway bridges the server's stdio to HTTP/SSE on `port`
    return f"supergateway --stdio {shlex.quote(start_command)} --port {port}"


def validate_descriptor(
    descriptor: MCPServerDescriptor, env_vars: Mapping[str, str]
) -> None:
    if not descriptor.start_command or not descriptor.start_command.strip():
        raise InvalidDescriptorError(
            f"MCP server {descriptor.title} has no start command"
        )
    missing = [k for k in descriptor.required_env if not env_vars.get(k)]
    if missing:
        raise InvalidDescriptorError(
            f"MCP server {descriptor.title} is missing required env: {', '.join(missing)}"
        )


class McpServerManager:
    """Runs stdio MCP servers inside sandboxes, exposed over HTTP."""

    def __init__(
        self,
        lifecycle: SandboxLifecycleManager,
        reconciler: SandboxReconciler,
        config: CoreConfig = DEFAULT_CORE_CONFIG,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.lifecycle = lifecycle
        self.reconciler = reconciler
        self.config = config
        self.__transport = transport
        self.__deploying: set[str] = set()

    def _clamp_timeout(self, timeout_seconds: Optional[int]) -> int:
        timeout = timeout_seconds or self.config.mcp_default_timeout_seconds
        return min(timeout, self.config.sandbox_max_timeout_seconds)

    async def _run_checked(
        self,
        handle: SandboxHandle,
        cmd: str,
        envs: Optional[Mapping[str, str]] = None,
    ) -> None:
        LOG.info(f"Running `{cmd}`")
        with sandbox_span("run_command", id=handle.sandbox_id):
            output = await handle.run_command(
                cmd, envs=envs, timeout_seconds=self.config.mcp_install_timeout_seconds
            )
        if output.exit_code != 0:
            raise DeploymentError(
                f"`{cmd}` exited with code {output.exit_code}: {output.stderr.strip()}"
            )

    def _process_logger(self, sandbox_id: str, stream: str):
        def log_output(raw: Any) -> None:
            with bound_logging_vars(sandbox_id=sandbox_id):
                LOG.debug(f"MCP server {stream}: {normalize_output(raw).rstrip()}")

        return log_output

    async def _launch(
        self,
        handle: SandboxHandle,
        descriptor: MCPServerDescriptor,
        env_vars: Mapping[str, str],
        port: int,
    ) -> str:
        hostname = self.config.mcp_server_hostname
        with sandbox_span("start_proxy", id=handle.sandbox_id, port=port):
            server_url = await handle.start_proxy(port, hostname, "http")

        if descriptor.install_command:
            await self._run_checked(handle, descriptor.install_command, env_vars)
        await self._run_checked(handle, self.config.mcp_gateway_install_command)

        envs = {
            **env_vars,
            "MCP_SUPERGATEWAY": "true",
            "MCP_HOST": hostname,
            "MCP_PORT": str(port),
        }
        with sandbox_span("start_process", id=handle.sandbox_id):
            process = await handle.start_process(
                build_gateway_command(descriptor.start_command, port),
                envs=envs,
                on_stdout=self._process_logger(handle.sandbox_id, "stdout"),
                on_stderr=self._process_logger(handle.sandbox_id, "stderr"),
            )
        LOG.info(f"Started MCP server process {process.pid} on port {port}")
        return server_url

    async def _wait_for_server_ready(self, server_url: str) -> bool:
        max_attempts = self.config.mcp_ready_max_attempts
        async with httpx.AsyncClient(
            transport=self.__transport,
            timeout=self.config.mcp_ready_request_timeout_seconds,
        ) as client:
            for attempt in range(1, max_attempts + 1):
                try:
                    response = await client.get(server_url)
                    if response.status_code == 200:
                        LOG.info(f"MCP server ready after {attempt} attempts")
                        return True
                    LOG.debug(
                        f"Server not ready (attempt {attempt}), status: {response.status_code}"
                    )
                except httpx.HTTPError as e:
                    LOG.debug(f"Server connection failed (attempt {attempt}): {e}")
                if attempt < max_attempts:
                    await asyncio.sleep(self.config.mcp_ready_poll_interval_seconds)
        return False

    @track_process
    async def deploy_server(
        self,
        descriptor: MCPServerDescriptor,
        env_vars: Optional[Mapping[str, str]] = None,
        credential: Optional[str] = None,
    ) -> DeploymentResult:
        """Deploy an MCP server in a fresh sandbox and wait until it answers.

        Raises:
            InvalidDescriptorError: Before any remote call, on a bad descriptor.
            ProvisioningError: The sandbox could not be created.
            DeploymentTimeoutError: The server never answered HTTP 200.
            DeploymentError: Any other failure after the sandbox was created.
        """
        env_vars = dict(env_vars or {})
        validate_descriptor(descriptor, env_vars)

        timeout = self._clamp_timeout(descriptor.default_timeout_seconds)
        port = descriptor.port or self.config.mcp_server_port
        handle, sandbox_id = await self.lifecycle.create_sandbox(
            MCP_SERVER_PURPOSE, credential=credential, timeout_seconds=timeout
        )

        self.__deploying.add(sandbox_id)
        try:
            with bound_logging_vars(sandbox_id=sandbox_id, mcp_title=descriptor.title):
                try:
                    server_url = await self._launch(handle, descriptor, env_vars, port)
                    ready = await self._wait_for_server_ready(server_url)
                except asyncio.CancelledError:
                    LOG.warning(f"Deploy of MCP server {descriptor.title} cancelled")
                    await self.lifecycle.release_sandbox(sandbox_id)
                    raise
                except Exception as e:
                    LOG.error(f"Failed to deploy MCP server {descriptor.title}: {e}")
                    await self.lifecycle.release_sandbox(sandbox_id)
                    if isinstance(e, DeploymentError):
                        raise
                    raise DeploymentError(
                        f"Failed to deploy MCP server {descriptor.title}: {e}"
                    ) from e

                if not ready:
                    LOG.error(f"MCP server {descriptor.title} never became ready")
                    await self.lifecycle.release_sandbox(sandbox_id)
                    raise DeploymentTimeoutError(
                        f"MCP server {descriptor.title} is not responding after "
                        f"{self.config.mcp_ready_max_attempts} attempts"
                    )

                self.lifecycle.setup_keep_alive(
                    sandbox_id,
                    interval_seconds=self.config.sandbox_keepalive_interval_seconds,
                    timeout_seconds=timeout,
                )
                LOG.info(f"MCP server {descriptor.title} running at {server_url}")
                return DeploymentResult(
                    sandbox_id=sandbox_id, server_url=server_url, handle=handle
                )
        finally:
            self.__deploying.discard(sandbox_id)

    async def get_status(
        self, sandbox_id: str, credential: Optional[str] = None
    ) -> McpServerStatus:
        if sandbox_id in self.__deploying:
            return McpServerStatus.STARTING
        try:
            record = await self.reconciler.resolve(
                sandbox_id, credential, purpose=MCP_SERVER_PURPOSE
            )
        except SandboxUnavailableError as e:
            LOG.warning(f"Cannot get status of MCP server {sandbox_id}: {e}")
            return McpServerStatus.ERROR

        if await self.lifecycle.is_sandbox_running(sandbox_id):
            return McpServerStatus.RUNNING
        if record.status == SandboxStatus.ERROR:
            return McpServerStatus.ERROR
        return McpServerStatus.STOPPED

    async def stop(self, sandbox_id: str, credential: Optional[str] = None) -> bool:
        """Stop the server and release its sandbox. Never raises."""
        try:
            await self.reconciler.resolve(
                sandbox_id, credential, purpose=MCP_SERVER_PURPOSE
            )
        except SandboxUnavailableError as e:
            LOG.warning(f"Cannot stop MCP server {sandbox_id}: {e}")
            return False

        await self.lifecycle.release_sandbox(sandbox_id)
        LOG.info(f"Stopped MCP server in sandbox {sandbox_id}")
        return True

    async def extend_timeout(
        self,
        sandbox_id: str,
        timeout_seconds: Optional[int] = None,
        credential: Optional[str] = None,
    ) -> int:
        """Push the sandbox timeout out, clamped to the configured maximum.

        Returns the timeout that was applied.
        """
        timeout = self._clamp_timeout(timeout_seconds)
        record = await self.reconciler.resolve(
            sandbox_id, credential, purpose=MCP_SERVER_PURPOSE
        )
        if not await self.lifecycle.is_sandbox_running(sandbox_id):
            raise SandboxUnavailableError(sandbox_id, "sandbox is not running")

        try:
            with sandbox_span("set_timeout", id=sandbox_id):
                await record.handle.set_timeout(timeout)
        except Exception as e:
            LOG.error(f"Failed to extend timeout for sandbox {sandbox_id}: {e}")
            raise SandboxUnavailableError(
                sandbox_id, f"failed to extend timeout: {e}"
            ) from e

        self.lifecycle.update_last_used(sandbox_id)
        LOG.debug(f"Extended timeout for sandbox {sandbox_id} to {timeout}s")
        return timeout
