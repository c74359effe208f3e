from fastapi import Request
from sandbox_core.orchestrator import SandboxOrchestrator


def use_orchestrator(request: Request) -> SandboxOrchestrator:
    return request.app.state.orchestrator
