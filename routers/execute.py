from typing import Optional
from fastapi import APIRouter, Body, Depends
from fastapi.exceptions import HTTPException
from sandbox_core.orchestrator import SandboxOrchestrator
from sandbox_core.schema.api.request import ExecuteRequest
from sandbox_core.schema.api.response import ExecuteResponse
from sandbox_core.schema.error import ExecutionFailedError, ProvisioningError
from sandbox_core.service.sink import CollectingSink
from sandbox_core.service.stream import ExecutionStreamCoordinator
from sandbox_core.util.ids import generate_client_id
from .deps import use_orchestrator

router = APIRouter(prefix="/api/v1", tags=["execute"])


@router.post("/execute")
async def execute(
    request: ExecuteRequest = Body(..., description="Code to run"),
    orchestrator: SandboxOrchestrator = Depends(use_orchestrator),
) -> ExecuteResponse:
    """
    Run code in a throwaway sandbox and return everything it printed.
    """
    sink = CollectingSink()
    coordinator = ExecutionStreamCoordinator(
        orchestrator.lifecycle, orchestrator.reconciler, sink, orchestrator.config
    )
    client_id = generate_client_id()

    try:
        _, sandbox_id = await orchestrator.create_sandbox(
            "code-exec", credential=request.credential, template=request.template
        )
    except ProvisioningError as e:
        raise HTTPException(status_code=503, detail=str(e))

    error: Optional[str] = None
    try:
        await coordinator.run_and_stream(
            sandbox_id,
            request.code,
            client_id,
            timeout_seconds=request.timeout_seconds,
            credential=request.credential,
        )
    except ExecutionFailedError as e:
        error = e.error
    finally:
        await orchestrator.release_sandbox(sandbox_id)

    return ExecuteResponse(
        sandbox_id=sandbox_id,
        status="error" if error is not None else "completed",
        stdout=sink.stdout(client_id),
        stderr=sink.stderr(client_id),
        error=error,
        messages=sink.messages(client_id),
    )
