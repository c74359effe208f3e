"""
Shared test fixtures.

Provides an in-memory sandbox backend whose handles record every call and can
be told to fail, so the services can be driven without a provider account.
"""

import uuid
from typing import Any, Mapping, Optional

import httpx
import pytest

from sandbox_core.infra.sandbox.backend.base import (
    SandboxBackend,
    SandboxHandle,
    SandboxProcess,
    OutputHandler,
)
from sandbox_core.schema.config import CoreConfig
from sandbox_core.schema.sandbox import (
    SandboxCreateConfig,
    SandboxCommandOutput,
    SandboxExecutionError,
    SandboxExecutionResult,
)
from sandbox_core.service.lifecycle import SandboxLifecycleManager
from sandbox_core.service.reconcile import SandboxReconciler
from sandbox_core.service.sink import CollectingSink
from sandbox_core.service.stream import ExecutionStreamCoordinator
from sandbox_core.service.mcp import McpServerManager


class MockSandboxProcess(SandboxProcess):
    def __init__(self, pid: int):
        self.pid = pid
        self.killed = False

    async def wait(self) -> int:
        return 0

    async def kill(self) -> bool:
        self.killed = True
        return True


class MockSandboxHandle(SandboxHandle):
    """Mock sandbox handle for testing."""

    def __init__(self, sandbox_id: str, template: Optional[str] = None):
        self.sandbox_id = sandbox_id
        self.template = template
        self.running = True

        # failure toggles
        self.is_running_error: Optional[Exception] = None
        self.set_timeout_error: Optional[Exception] = None
        self.kill_error: Optional[Exception] = None
        self.run_code_error: Optional[Exception] = None
        self.execution_error: Optional[SandboxExecutionError] = None
        self.command_exit_codes: dict[str, int] = {}

        # (stream, raw chunk) pairs replayed by run_code
        self.output: list[tuple[str, Any]] = []

        # call history
        self.is_running_calls = 0
        self.kill_calls = 0
        self.set_timeout_calls: list[int] = []
        self.run_code_calls: list[str] = []
        self.commands: list[str] = []
        self.processes: list[tuple[str, dict[str, str]]] = []
        self.proxies: list[tuple[int, str, str]] = []

    async def is_running(self) -> bool:
        self.is_running_calls += 1
        if self.is_running_error is not None:
            raise self.is_running_error
        return self.running

    async def set_timeout(self, timeout_seconds: int) -> None:
        self.set_timeout_calls.append(timeout_seconds)
        if self.set_timeout_error is not None:
            raise self.set_timeout_error

    async def kill(self) -> bool:
        self.kill_calls += 1
        if self.kill_error is not None:
            raise self.kill_error
        self.running = False
        return True

    async def run_code(
        self,
        code: str,
        on_stdout: Optional[OutputHandler] = None,
        on_stderr: Optional[OutputHandler] = None,
        timeout_seconds: Optional[float] = None,
    ) -> SandboxExecutionResult:
        self.run_code_calls.append(code)
        stdout, stderr = [], []
        for stream, chunk in self.output:
            if stream == "stdout":
                stdout.append(chunk)
                if on_stdout is not None:
                    on_stdout(chunk)
            else:
                stderr.append(chunk)
                if on_stderr is not None:
                    on_stderr(chunk)
        if self.run_code_error is not None:
            raise self.run_code_error
        return SandboxExecutionResult(
            text=None,
            stdout=[str(c) for c in stdout],
            stderr=[str(c) for c in stderr],
            error=self.execution_error,
        )

    async def run_command(
        self,
        cmd: str,
        envs: Optional[Mapping[str, str]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> SandboxCommandOutput:
        self.commands.append(cmd)
        exit_code = self.command_exit_codes.get(cmd, 0)
        return SandboxCommandOutput(
            stdout=f"executed: {cmd}",
            stderr="" if exit_code == 0 else "command failed",
            exit_code=exit_code,
        )

    async def start_process(
        self,
        cmd: str,
        envs: Optional[Mapping[str, str]] = None,
        on_stdout: Optional[OutputHandler] = None,
        on_stderr: Optional[OutputHandler] = None,
    ) -> SandboxProcess:
        self.processes.append((cmd, dict(envs or {})))
        if on_stdout is not None:
            on_stdout("listening")
        return MockSandboxProcess(pid=len(self.processes))

    async def start_proxy(
        self, port: int, hostname: str = "0.0.0.0", protocol: str = "http"
    ) -> str:
        self.proxies.append((port, hostname, protocol))
        return f"https://{port}-{self.sandbox_id}.mock.dev"


class MockSandboxBackend(SandboxBackend):
    """Mock sandbox backend; `handles` plays the provider's set of live sandboxes."""

    type = "mock"

    def __init__(self):
        self.handles: dict[str, MockSandboxHandle] = {}
        self.create_calls: list[tuple[SandboxCreateConfig, Optional[str]]] = []
        self.connect_calls: list[str] = []
        self.create_error: Optional[Exception] = None

    @classmethod
    def from_config(cls, config):
        return cls()

    def spawn(
        self, sandbox_id: Optional[str] = None, template: Optional[str] = None
    ) -> MockSandboxHandle:
        """Make a sandbox exist remotely without going through `create`."""
        sandbox_id = sandbox_id or f"mock-sandbox-{uuid.uuid4().hex[:8]}"
        handle = MockSandboxHandle(sandbox_id, template=template)
        self.handles[sandbox_id] = handle
        return handle

    async def create(
        self, create_config: SandboxCreateConfig, credential: Optional[str] = None
    ) -> SandboxHandle:
        self.create_calls.append((create_config, credential))
        if self.create_error is not None:
            raise self.create_error
        return self.spawn(template=create_config.template or "code-interpreter-v1")

    async def connect(
        self, sandbox_id: str, credential: Optional[str] = None
    ) -> SandboxHandle:
        self.connect_calls.append(sandbox_id)
        handle = self.handles.get(sandbox_id)
        if handle is None or not handle.running:
            raise RuntimeError(f"Sandbox {sandbox_id} not found")
        return handle


class ReadinessProbe:
    """httpx transport handler answering readiness polls with a fixed status."""

    def __init__(self, status_code: int = 200):
        self.status_code = status_code
        self.error: Optional[Exception] = None
        self.requests: list[httpx.Request] = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.error is not None:
            raise self.error
        return httpx.Response(self.status_code)


@pytest.fixture
def test_config() -> CoreConfig:
    return CoreConfig(
        e2b_api_key="test-key",
        sandbox_keepalive_interval_seconds=0.01,
        sandbox_cleanup_interval_seconds=0.01,
        sandbox_auto_start_cleanup=False,
        mcp_ready_poll_interval_seconds=0,
        mcp_ready_max_attempts=3,
    )


@pytest.fixture
def backend() -> MockSandboxBackend:
    return MockSandboxBackend()


@pytest.fixture
async def lifecycle(backend, test_config):
    manager = SandboxLifecycleManager(backend, test_config)
    yield manager
    await manager.shutdown()


@pytest.fixture
def reconciler(lifecycle) -> SandboxReconciler:
    return SandboxReconciler(lifecycle)


@pytest.fixture
def collecting_sink() -> CollectingSink:
    return CollectingSink()


@pytest.fixture
def coordinator(lifecycle, reconciler, collecting_sink, test_config):
    return ExecutionStreamCoordinator(
        lifecycle, reconciler, collecting_sink, test_config
    )


@pytest.fixture
def readiness_probe() -> ReadinessProbe:
    return ReadinessProbe()


@pytest.fixture
def mcp_manager(lifecycle, reconciler, test_config, readiness_probe):
    return McpServerManager(
        lifecycle,
        reconciler,
        test_config,
        transport=httpx.MockTransport(readiness_probe),
    )
