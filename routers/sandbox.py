from fastapi import APIRouter, Body, Depends, Path
from fastapi.exceptions import HTTPException
from sandbox_core.env import LOG
from sandbox_core.orchestrator import SandboxOrchestrator
from sandbox_core.schema.api.request import SandboxCreateRequest, ExecuteStreamRequest
from sandbox_core.schema.api.response import (
    Flag,
    SandboxCreated,
    ExecuteStreamResponse,
)
from sandbox_core.schema.error import (
    ExecutionFailedError,
    ProvisioningError,
    SandboxUnavailableError,
)
from sandbox_core.schema.sandbox import SandboxRecordView, SandboxStats
from .deps import use_orchestrator

router = APIRouter(prefix="/api/v1/sandbox", tags=["sandbox"])


@router.post("")
async def create_sandbox(
    request: SandboxCreateRequest = Body(..., description="Sandbox create request"),
    orchestrator: SandboxOrchestrator = Depends(use_orchestrator),
) -> SandboxCreated:
    """
    Create and start a new sandbox.
    """
    try:
        handle, sandbox_id = await orchestrator.create_sandbox(
            request.purpose,
            credential=request.credential,
            timeout_seconds=request.timeout_seconds,
            template=request.template,
        )
    except ProvisioningError as e:
        raise HTTPException(status_code=503, detail=str(e))
    return SandboxCreated(
        sandbox_id=sandbox_id, purpose=request.purpose, template=handle.template
    )


@router.get("/stats")
async def get_stats(
    orchestrator: SandboxOrchestrator = Depends(use_orchestrator),
) -> SandboxStats:
    return orchestrator.get_stats()


@router.get("/{sandbox_id}")
async def get_sandbox(
    sandbox_id: str = Path(..., description="Sandbox ID to query"),
    orchestrator: SandboxOrchestrator = Depends(use_orchestrator),
) -> SandboxRecordView:
    """
    Get the tracked state of a sandbox.
    """
    record = orchestrator.get_sandbox(sandbox_id)
    if record is None:
        raise HTTPException(status_code=404, detail=f"Sandbox {sandbox_id} not found")
    return SandboxRecordView.from_record(record)


@router.delete("/{sandbox_id}")
async def release_sandbox(
    sandbox_id: str = Path(..., description="Sandbox ID to release"),
    orchestrator: SandboxOrchestrator = Depends(use_orchestrator),
) -> Flag:
    """
    Kill a sandbox and stop tracking it.
    """
    if orchestrator.get_sandbox(sandbox_id) is None:
        return Flag(status=1, errmsg=f"Sandbox {sandbox_id} not found")
    await orchestrator.release_sandbox(sandbox_id)
    return Flag(status=0, errmsg="")


@router.post("/{sandbox_id}/execute-stream")
async def execute_stream(
    sandbox_id: str = Path(..., description="Sandbox ID to run in"),
    request: ExecuteStreamRequest = Body(..., description="Code to run"),
    orchestrator: SandboxOrchestrator = Depends(use_orchestrator),
) -> ExecuteStreamResponse:
    """
    Run code in a sandbox; output is streamed to the client's channel.
    """
    try:
        summary = await orchestrator.run_and_stream(
            sandbox_id,
            request.code,
            request.client_id,
            timeout_seconds=request.timeout_seconds,
            credential=request.credential,
        )
    except SandboxUnavailableError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ExecutionFailedError as e:
        LOG.info(f"Execution {e.execution_id} failed: {e.error}")
        return ExecuteStreamResponse(
            execution_id=e.execution_id,
            sandbox_id=sandbox_id,
            status="error",
            duration_ms=e.duration_ms,
            error=e.error,
        )
    return ExecuteStreamResponse(**summary.model_dump())
