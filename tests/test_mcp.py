"""
Tests for MCP server deployment inside sandboxes.
"""

import asyncio

import httpx
import pytest

from sandbox_core.schema.error import (
    DeploymentError,
    DeploymentTimeoutError,
    InvalidDescriptorError,
    ProvisioningError,
    SandboxUnavailableError,
)
from sandbox_core.schema.mcp import MCPServerDescriptor, McpServerStatus
from sandbox_core.service.mcp import McpServerManager, build_gateway_command


def _descriptor(**kwargs) -> MCPServerDescriptor:
    fields = {
        "title": "github",
        "start_command": "npx -y @modelcontextprotocol/server-github",
        "required_env": ["GITHUB_TOKEN"],
    }
    fields.update(kwargs)
    return MCPServerDescriptor(**fields)


def test_gateway_command_quotes_start_command():
    assert (
        build_gateway_command("npx -y server --flag 'x y'", 3000)
        == "supergateway --stdio 'npx -y server --flag '\"'\"'x y'\"'\"'' --port 3000"
    )


class TestDeployValidation:
    @pytest.mark.asyncio
    async def test_missing_start_command(self, mcp_manager, backend):
        with pytest.raises(InvalidDescriptorError):
            await mcp_manager.deploy_server(
                _descriptor(start_command=None), {"GITHUB_TOKEN": "t"}
            )
        assert backend.create_calls == []

    @pytest.mark.asyncio
    async def test_missing_required_env(self, mcp_manager, backend):
        with pytest.raises(InvalidDescriptorError, match="GITHUB_TOKEN"):
            await mcp_manager.deploy_server(_descriptor(), {})
        assert backend.create_calls == []


class TestDeploy:
    @pytest.mark.asyncio
    async def test_successful_deploy(
        self, mcp_manager, lifecycle, backend, readiness_probe, test_config
    ):
        result = await mcp_manager.deploy_server(
            _descriptor(install_command="npm install -g @modelcontextprotocol/server-github"),
            {"GITHUB_TOKEN": "secret"},
            credential="user-key",
        )

        handle = backend.handles[result.sandbox_id]
        assert result.handle is handle
        assert result.server_url == f"https://3000-{result.sandbox_id}.mock.dev"
        assert handle.proxies == [(3000, "0.0.0.0", "http")]
        assert handle.commands == [
            "npm install -g @modelcontextprotocol/server-github",
            "npm install -g supergateway",
        ]

        cmd, envs = handle.processes[0]
        assert cmd.startswith("supergateway --stdio ")
        assert cmd.endswith("--port 3000")
        assert envs == {
            "GITHUB_TOKEN": "secret",
            "MCP_SUPERGATEWAY": "true",
            "MCP_HOST": "0.0.0.0",
            "MCP_PORT": "3000",
        }

        create_config, credential = backend.create_calls[0]
        assert create_config.timeout_seconds == test_config.mcp_default_timeout_seconds
        assert create_config.metadata == {"purpose": "mcp-server"}
        assert credential == "user-key"

        assert len(readiness_probe.requests) == 1
        assert str(readiness_probe.requests[0].url).startswith(result.server_url)

        record = lifecycle.get_sandbox(result.sandbox_id)
        assert record.purpose == "mcp-server"
        assert record.keepalive_task is not None
        assert handle.kill_calls == 0

    @pytest.mark.asyncio
    async def test_descriptor_port_and_timeout(self, mcp_manager, backend):
        result = await mcp_manager.deploy_server(
            _descriptor(port=8080, default_timeout_seconds=600, required_env=[]), {}
        )
        handle = backend.handles[result.sandbox_id]
        assert handle.proxies[0][0] == 8080
        assert handle.processes[0][1]["MCP_PORT"] == "8080"
        assert backend.create_calls[0][0].timeout_seconds == 600

    @pytest.mark.asyncio
    async def test_never_ready_releases_sandbox(
        self, mcp_manager, lifecycle, backend, readiness_probe
    ):
        readiness_probe.status_code = 503

        with pytest.raises(DeploymentTimeoutError):
            await mcp_manager.deploy_server(_descriptor(), {"GITHUB_TOKEN": "t"})

        assert len(readiness_probe.requests) == 3
        (handle,) = backend.handles.values()
        assert handle.kill_calls == 1
        assert lifecycle.get_stats().total == 0

    @pytest.mark.asyncio
    async def test_cancelled_deploy_releases_sandbox(
        self, lifecycle, reconciler, backend, test_config, readiness_probe
    ):
        readiness_probe.status_code = 503
        config = test_config.model_copy(
            update={"mcp_ready_poll_interval_seconds": 10}
        )
        manager = McpServerManager(
            lifecycle,
            reconciler,
            config,
            transport=httpx.MockTransport(readiness_probe),
        )

        task = asyncio.create_task(
            manager.deploy_server(_descriptor(), {"GITHUB_TOKEN": "t"})
        )
        while not readiness_probe.requests:
            await asyncio.sleep(0.01)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        (handle,) = backend.handles.values()
        assert handle.kill_calls == 1
        assert lifecycle.get_stats().total == 0
        assert await manager.get_status(handle.sandbox_id) != McpServerStatus.STARTING

    @pytest.mark.asyncio
    async def test_unreachable_server_times_out(
        self, mcp_manager, lifecycle, backend, readiness_probe
    ):
        readiness_probe.error = httpx.ConnectError("connection refused")

        with pytest.raises(DeploymentTimeoutError):
            await mcp_manager.deploy_server(_descriptor(), {"GITHUB_TOKEN": "t"})

        (handle,) = backend.handles.values()
        assert handle.kill_calls == 1
        assert lifecycle.get_stats().total == 0

    @pytest.mark.asyncio
    async def test_gateway_install_failure(
        self, mcp_manager, lifecycle, backend, readiness_probe
    ):
        original_spawn = backend.spawn

        def spawn_failing(*args, **kwargs):
            handle = original_spawn(*args, **kwargs)
            handle.command_exit_codes["npm install -g supergateway"] = 1
            return handle

        backend.spawn = spawn_failing

        with pytest.raises(DeploymentError) as exc_info:
            await mcp_manager.deploy_server(_descriptor(), {"GITHUB_TOKEN": "t"})

        assert not isinstance(exc_info.value, DeploymentTimeoutError)
        (handle,) = backend.handles.values()
        assert handle.kill_calls == 1
        assert handle.processes == []
        assert readiness_probe.requests == []
        assert lifecycle.get_stats().total == 0

    @pytest.mark.asyncio
    async def test_provisioning_failure_propagates(self, mcp_manager, backend):
        backend.create_error = RuntimeError("quota exceeded")
        with pytest.raises(ProvisioningError):
            await mcp_manager.deploy_server(_descriptor(), {"GITHUB_TOKEN": "t"})


class TestStatus:
    @pytest.mark.asyncio
    async def test_unknown_sandbox_is_error(self, mcp_manager):
        assert await mcp_manager.get_status("sb-gone") == McpServerStatus.ERROR

    @pytest.mark.asyncio
    async def test_running_and_stopped(self, mcp_manager, backend):
        result = await mcp_manager.deploy_server(
            _descriptor(), {"GITHUB_TOKEN": "t"}
        )
        assert await mcp_manager.get_status(result.sandbox_id) == McpServerStatus.RUNNING

        backend.handles[result.sandbox_id].running = False
        assert await mcp_manager.get_status(result.sandbox_id) == McpServerStatus.STOPPED

    @pytest.mark.asyncio
    async def test_query_failure_is_error(self, mcp_manager, backend):
        result = await mcp_manager.deploy_server(
            _descriptor(), {"GITHUB_TOKEN": "t"}
        )
        backend.handles[result.sandbox_id].is_running_error = RuntimeError("boom")
        assert await mcp_manager.get_status(result.sandbox_id) == McpServerStatus.ERROR

    @pytest.mark.asyncio
    async def test_untracked_server_is_reconciled(self, mcp_manager, lifecycle, backend):
        backend.spawn("sb-earlier")
        assert await mcp_manager.get_status("sb-earlier") == McpServerStatus.RUNNING
        assert lifecycle.get_sandbox("sb-earlier").purpose == "mcp-server"


class TestStop:
    @pytest.mark.asyncio
    async def test_stop_unknown_returns_false(self, mcp_manager):
        assert await mcp_manager.stop("sb-gone") is False

    @pytest.mark.asyncio
    async def test_stop_releases(self, mcp_manager, lifecycle, backend):
        result = await mcp_manager.deploy_server(
            _descriptor(), {"GITHUB_TOKEN": "t"}
        )
        assert await mcp_manager.stop(result.sandbox_id) is True
        assert backend.handles[result.sandbox_id].kill_calls == 1
        assert lifecycle.get_sandbox(result.sandbox_id) is None


class TestExtendTimeout:
    @pytest.mark.asyncio
    async def test_timeout_is_clamped(self, mcp_manager, lifecycle, backend, test_config):
        handle = backend.spawn("sb-mcp")
        applied = await mcp_manager.extend_timeout("sb-mcp", 2 * 60 * 60)

        assert applied == test_config.sandbox_max_timeout_seconds
        assert handle.set_timeout_calls == [test_config.sandbox_max_timeout_seconds]
        assert lifecycle.get_sandbox("sb-mcp") is not None

    @pytest.mark.asyncio
    async def test_default_timeout(self, mcp_manager, backend, test_config):
        handle = backend.spawn("sb-mcp")
        await mcp_manager.extend_timeout("sb-mcp")
        assert handle.set_timeout_calls == [test_config.mcp_default_timeout_seconds]

    @pytest.mark.asyncio
    async def test_unknown_sandbox(self, mcp_manager):
        with pytest.raises(SandboxUnavailableError):
            await mcp_manager.extend_timeout("sb-gone", 600)

    @pytest.mark.asyncio
    async def test_not_running(self, mcp_manager, lifecycle, backend):
        handle, sandbox_id = await lifecycle.create_sandbox("mcp-server")
        handle.running = False
        with pytest.raises(SandboxUnavailableError, match="not running"):
            await mcp_manager.extend_timeout(sandbox_id, 600)
        assert handle.set_timeout_calls == []

    @pytest.mark.asyncio
    async def test_provider_failure(self, mcp_manager, lifecycle):
        handle, sandbox_id = await lifecycle.create_sandbox("mcp-server")
        handle.set_timeout_error = RuntimeError("rejected")
        with pytest.raises(SandboxUnavailableError, match="rejected"):
            await mcp_manager.extend_timeout(sandbox_id, 600)
