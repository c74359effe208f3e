import asyncio
from enum import StrEnum
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional
from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from ..infra.sandbox.backend.base import SandboxHandle


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SandboxStatus(StrEnum):
    RUNNING = "running"
    STOPPED = "stopped"
    ERROR = "error"


class SandboxCreateConfig(BaseModel):
    timeout_seconds: int = 60 * 30  # 30 minutes
    template: str | None = None
    metadata: dict[str, str] = Field(default_factory=dict)


class SandboxCommandOutput(BaseModel):
    stdout: str
    stderr: str
    exit_code: int


class SandboxExecutionError(BaseModel):
    name: str
    value: str
    traceback: str = ""


class SandboxExecutionResult(BaseModel):
    """Provider-independent outcome of a code run."""

    text: Optional[str] = None
    results: list[str] = Field(default_factory=list)
    stdout: list[str] = Field(default_factory=list)
    stderr: list[str] = Field(default_factory=list)
    error: Optional[SandboxExecutionError] = None


@dataclass
class SandboxRecord:
    id: str
    purpose: str
    handle: "SandboxHandle"
    status: SandboxStatus = SandboxStatus.RUNNING
    template: Optional[str] = None
    created_at: datetime = field(default_factory=utc_now)
    last_used_at: datetime = field(default_factory=utc_now)
    keepalive_task: Optional[asyncio.Task] = field(default=None, repr=False)

    def touch(self, now: Optional[datetime] = None) -> None:
        now = now or utc_now()
        # last_used_at never moves backwards
        if now > self.last_used_at:
            self.last_used_at = now

    def idle_seconds(self, now: Optional[datetime] = None) -> float:
        now = now or utc_now()
        return (now - self.last_used_at).total_seconds()


class SandboxRecordView(BaseModel):
    id: str
    purpose: str
    status: SandboxStatus
    template: Optional[str] = None
    created_at: datetime
    last_used_at: datetime
    keepalive_active: bool = False

    @classmethod
    def from_record(cls, record: SandboxRecord) -> "SandboxRecordView":
        return cls(
            id=record.id,
            purpose=record.purpose,
            status=record.status,
            template=record.template,
            created_at=record.created_at,
            last_used_at=record.last_used_at,
            keepalive_active=record.keepalive_task is not None
            and not record.keepalive_task.done(),
        )


class SandboxStats(BaseModel):
    total: int = 0
    running: int = 0
    stopped: int = 0
    error: int = 0
    by_purpose: dict[str, int] = Field(default_factory=dict)
