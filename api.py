from contextlib import asynccontextmanager
from typing import Optional
from fastapi import FastAPI
from sandbox_core.env import LOG, DEFAULT_CORE_CONFIG
from sandbox_core.orchestrator import SandboxOrchestrator
from sandbox_core.telemetry.otel import enable_tracing, disable_tracing
from routers import sandbox_router, execute_router, mcp_router, ws_router


def create_app(orchestrator: Optional[SandboxOrchestrator] = None) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        # Startup
        app.state.orchestrator = orchestrator or SandboxOrchestrator.from_default()
        await app.state.orchestrator.init()
        yield
        # Shutdown
        await app.state.orchestrator.shutdown()
        if DEFAULT_CORE_CONFIG.otel_enabled:
            disable_tracing()

    app = FastAPI(lifespan=lifespan)
    if orchestrator is not None:
        app.state.orchestrator = orchestrator
    if enable_tracing(DEFAULT_CORE_CONFIG, app) is not None:
        LOG.info(
            f"Tracing enabled, exporting to {DEFAULT_CORE_CONFIG.otel_exporter_otlp_endpoint}"
        )

    @app.get("/health")
    async def health():
        return {"status": "healthy"}

    app.include_router(sandbox_router)
    app.include_router(execute_router)
    app.include_router(mcp_router)
    app.include_router(ws_router)
    return app


app = create_app()
