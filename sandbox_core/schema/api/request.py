from pydantic import BaseModel, Field
from typing import Optional
from ..mcp import MCPServerDescriptor


class SandboxCreateRequest(BaseModel):
    purpose: str = Field("code-exec", description="Free-form tag for the sandbox")
    template: Optional[str] = Field(None, description="Provider template to boot")
    timeout_seconds: Optional[int] = Field(
        None, ge=1, description="Provider-side timeout, config default if not set"
    )
    credential: Optional[str] = Field(
        None, description="Provider API key, server key if not set"
    )


class ExecuteStreamRequest(BaseModel):
    code: str = Field(..., description="Code or shell command to run")
    client_id: str = Field(..., description="Channel that receives the output")
    timeout_seconds: Optional[float] = Field(None, gt=0)
    credential: Optional[str] = None


class ExecuteRequest(BaseModel):
    code: str = Field(..., description="Code or shell command to run")
    template: Optional[str] = None
    timeout_seconds: Optional[float] = Field(None, gt=0)
    credential: Optional[str] = None


class McpDeployRequest(BaseModel):
    descriptor: MCPServerDescriptor
    env_vars: dict[str, str] = Field(default_factory=dict)
    credential: Optional[str] = None


class McpTimeoutRequest(BaseModel):
    timeout_seconds: Optional[int] = Field(
        None, ge=1, description="New timeout, clamped to the configured maximum"
    )
    credential: Optional[str] = None
