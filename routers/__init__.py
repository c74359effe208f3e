from .sandbox import router as sandbox_router
from .execute import router as execute_router
from .mcp import router as mcp_router
from .ws import router as ws_router

__all__ = [
    "sandbox_router",
    "execute_router",
    "mcp_router",
    "ws_router",
]
