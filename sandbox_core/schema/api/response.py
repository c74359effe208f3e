from pydantic import BaseModel, Field
from typing import Literal, Optional
from ..execution import ExecutionMessage
from ..mcp import McpServerStatus


class Flag(BaseModel):
    status: int = Field(0, description="0 on success")
    errmsg: str = ""


class SandboxCreated(BaseModel):
    sandbox_id: str
    purpose: str
    template: Optional[str] = None


class ExecuteStreamResponse(BaseModel):
    execution_id: str
    sandbox_id: str
    status: Literal["completed", "error"]
    duration_ms: int
    error: Optional[str] = None


class ExecuteResponse(BaseModel):
    sandbox_id: str
    status: Literal["completed", "error"]
    stdout: str = ""
    stderr: str = ""
    error: Optional[str] = None
    messages: list[ExecutionMessage] = Field(default_factory=list)


class McpDeployResponse(BaseModel):
    sandbox_id: str
    server_url: str
    status: McpServerStatus = McpServerStatus.RUNNING


class McpStatusResponse(BaseModel):
    sandbox_id: str
    status: McpServerStatus


class McpTimeoutResponse(BaseModel):
    sandbox_id: str
    timeout_seconds: int
