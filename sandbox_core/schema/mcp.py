from enum import StrEnum
from dataclasses import dataclass
from typing import TYPE_CHECKING, Optional
from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from ..infra.sandbox.backend.base import SandboxHandle


class McpServerStatus(StrEnum):
    STARTING = "mcpStarting"
    RUNNING = "mcpRunning"
    STOPPED = "mcpStopped"
    ERROR = "mcpError"


class MCPServerDescriptor(BaseModel):
    title: str = "mcp-server"
    start_command: Optional[str] = None
    default_timeout_seconds: Optional[int] = None
    required_env: list[str] = Field(default_factory=list)
    install_command: Optional[str] = None
    port: Optional[int] = None


@dataclass
class DeploymentResult:
    sandbox_id: str
    server_url: str
    handle: "SandboxHandle"
