from typing import Annotated, Any, Literal, Optional, Union
from pydantic import BaseModel, Field, TypeAdapter


class _ExecutionMessageBase(BaseModel):
    execution_id: str
    sandbox_id: str


class StatusMessage(_ExecutionMessageBase):
    type: Literal["status"] = "status"
    status: str
    message: str = ""
    duration_ms: Optional[int] = None


class StdoutMessage(_ExecutionMessageBase):
    type: Literal["stdout"] = "stdout"
    data: str


class StderrMessage(_ExecutionMessageBase):
    type: Literal["stderr"] = "stderr"
    data: str


class ResultMessage(_ExecutionMessageBase):
    type: Literal["result"] = "result"
    data: dict[str, Any] = Field(default_factory=dict)
    duration_ms: int = 0


class ErrorMessage(_ExecutionMessageBase):
    type: Literal["error"] = "error"
    error: str


ExecutionMessage = Annotated[
    Union[StatusMessage, StdoutMessage, StderrMessage, ResultMessage, ErrorMessage],
    Field(discriminator="type"),
]

EXECUTION_MESSAGE_ADAPTER: TypeAdapter[ExecutionMessage] = TypeAdapter(ExecutionMessage)


class ExecutionSummary(BaseModel):
    execution_id: str
    sandbox_id: str
    status: Literal["completed", "error"]
    duration_ms: int
    error: Optional[str] = None
