from typing import Optional
from fastapi import APIRouter, Body, Depends, Path, Query
from fastapi.exceptions import HTTPException
from sandbox_core.orchestrator import SandboxOrchestrator
from sandbox_core.schema.api.request import McpDeployRequest, McpTimeoutRequest
from sandbox_core.schema.api.response import (
    Flag,
    McpDeployResponse,
    McpStatusResponse,
    McpTimeoutResponse,
)
from sandbox_core.schema.error import (
    DeploymentError,
    DeploymentTimeoutError,
    InvalidDescriptorError,
    ProvisioningError,
    SandboxUnavailableError,
)
from .deps import use_orchestrator

router = APIRouter(prefix="/api/v1/mcp", tags=["mcp"])


@router.post("/deploy")
async def deploy_server(
    request: McpDeployRequest = Body(..., description="MCP server to deploy"),
    orchestrator: SandboxOrchestrator = Depends(use_orchestrator),
) -> McpDeployResponse:
    """
    Deploy an MCP server in a new sandbox and wait for it to be reachable.
    """
    try:
        result = await orchestrator.deploy_server(
            request.descriptor, request.env_vars, credential=request.credential
        )
    except InvalidDescriptorError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ProvisioningError as e:
        raise HTTPException(status_code=503, detail=str(e))
    except DeploymentTimeoutError as e:
        raise HTTPException(status_code=504, detail=str(e))
    except DeploymentError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return McpDeployResponse(sandbox_id=result.sandbox_id, server_url=result.server_url)


@router.get("/{sandbox_id}/status")
async def get_status(
    sandbox_id: str = Path(..., description="Sandbox ID of the MCP server"),
    credential: Optional[str] = Query(None, description="Provider API key"),
    orchestrator: SandboxOrchestrator = Depends(use_orchestrator),
) -> McpStatusResponse:
    status = await orchestrator.get_mcp_server_status(sandbox_id, credential)
    return McpStatusResponse(sandbox_id=sandbox_id, status=status)


@router.delete("/{sandbox_id}")
async def stop_server(
    sandbox_id: str = Path(..., description="Sandbox ID of the MCP server"),
    credential: Optional[str] = Query(None, description="Provider API key"),
    orchestrator: SandboxOrchestrator = Depends(use_orchestrator),
) -> Flag:
    if await orchestrator.stop_mcp_server(sandbox_id, credential):
        return Flag(status=0, errmsg="")
    return Flag(status=1, errmsg=f"Failed to stop MCP server {sandbox_id}")


@router.patch("/{sandbox_id}/timeout")
async def extend_timeout(
    sandbox_id: str = Path(..., description="Sandbox ID of the MCP server"),
    request: McpTimeoutRequest = Body(..., description="Timeout extension"),
    orchestrator: SandboxOrchestrator = Depends(use_orchestrator),
) -> McpTimeoutResponse:
    try:
        timeout = await orchestrator.extend_mcp_server_timeout(
            sandbox_id, request.timeout_seconds, credential=request.credential
        )
    except SandboxUnavailableError as e:
        raise HTTPException(status_code=404, detail=str(e))
    return McpTimeoutResponse(sandbox_id=sandbox_id, timeout_seconds=timeout)
