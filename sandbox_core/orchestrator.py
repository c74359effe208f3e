from typing import Mapping, Optional
from .env import LOG, DEFAULT_CORE_CONFIG
from .infra.sandbox.backend.base import SandboxBackend, SandboxHandle
from .infra.sandbox.client import SandboxClient
from .schema.config import CoreConfig, post_validate_core_config_sanity
from .schema.execution import ExecutionSummary
from .schema.mcp import DeploymentResult, MCPServerDescriptor, McpServerStatus
from .schema.sandbox import SandboxRecord, SandboxStats
from .service.lifecycle import SandboxLifecycleManager
from .service.mcp import McpServerManager
from .service.reconcile import SandboxReconciler
from .service.sink import ChannelHub, OutputSink
from .service.stream import ExecutionStreamCoordinator


class SandboxOrchestrator:
    """Wires the sandbox services together behind one caller-facing object.

    Build it with `from_default()` for the configured provider, or pass a
    backend directly. Call `init()` before use and `shutdown()` at exit.
    """

    def __init__(
        self,
        backend: SandboxBackend,
        config: CoreConfig = DEFAULT_CORE_CONFIG,
        sink: Optional[OutputSink] = None,
        client: Optional[SandboxClient] = None,
    ):
        self.config = config
        self.client = client
        self.sink = (
            sink
            if sink is not None
            else ChannelHub(max_queue_size=config.client_channel_max_messages)
        )
        self.lifecycle = SandboxLifecycleManager(backend, config)
        self.reconciler = SandboxReconciler(self.lifecycle)
        self.coordinator = ExecutionStreamCoordinator(
            self.lifecycle, self.reconciler, self.sink, config
        )
        self.mcp = McpServerManager(self.lifecycle, self.reconciler, config)

    @classmethod
    def from_default(
        cls, config: CoreConfig = DEFAULT_CORE_CONFIG
    ) -> "SandboxOrchestrator":
        post_validate_core_config_sanity(config)
        client = SandboxClient(config)
        backend = client.init()
        return cls(backend, config, client=client)

    async def init(self) -> None:
        await self.lifecycle.init()
        LOG.info(f"Sandbox orchestrator started with {self.lifecycle.backend.type}")

    async def shutdown(self) -> None:
        await self.lifecycle.shutdown()
        if self.client is not None:
            self.client.close()
        LOG.info("Sandbox orchestrator stopped")

    async def create_sandbox(
        self,
        purpose: str,
        credential: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
        template: Optional[str] = None,
    ) -> tuple[SandboxHandle, str]:
        return await self.lifecycle.create_sandbox(
            purpose, credential, timeout_seconds, template
        )

    def get_sandbox(self, sandbox_id: str) -> Optional[SandboxRecord]:
        return self.lifecycle.get_sandbox(sandbox_id)

    async def run_and_stream(
        self,
        sandbox_id: str,
        code: str,
        client_id: str,
        timeout_seconds: Optional[float] = None,
        credential: Optional[str] = None,
    ) -> ExecutionSummary:
        return await self.coordinator.run_and_stream(
            sandbox_id, code, client_id, timeout_seconds, credential
        )

    async def deploy_server(
        self,
        descriptor: MCPServerDescriptor,
        env_vars: Optional[Mapping[str, str]] = None,
        credential: Optional[str] = None,
    ) -> DeploymentResult:
        return await self.mcp.deploy_server(descriptor, env_vars, credential)

    async def get_mcp_server_status(
        self, sandbox_id: str, credential: Optional[str] = None
    ) -> McpServerStatus:
        return await self.mcp.get_status(sandbox_id, credential)

    async def stop_mcp_server(
        self, sandbox_id: str, credential: Optional[str] = None
    ) -> bool:
        return await self.mcp.stop(sandbox_id, credential)

    async def extend_mcp_server_timeout(
        self,
        sandbox_id: str,
        timeout_seconds: Optional[int] = None,
        credential: Optional[str] = None,
    ) -> int:
        return await self.mcp.extend_timeout(sandbox_id, timeout_seconds, credential)

    async def release_sandbox(self, sandbox_id: str) -> None:
        await self.lifecycle.release_sandbox(sandbox_id)

    async def cleanup_all_sandboxes(self) -> None:
        await self.lifecycle.cleanup_all_sandboxes()

    def get_stats(self) -> SandboxStats:
        return self.lifecycle.get_stats()
