from abc import abstractmethod, ABC
from typing import Any, Callable, Mapping, Optional, Type
from ....env import DEFAULT_CORE_CONFIG
from ....schema.config import CoreConfig
from ....schema.sandbox import (
    SandboxCreateConfig,
    SandboxCommandOutput,
    SandboxExecutionResult,
)

OutputHandler = Callable[[Any], None]


class SandboxProcess(ABC):
    """A background process started inside a sandbox."""

    pid: int | None = None

    @abstractmethod
    async def wait(self) -> int:
        """Block until the process exits and return its exit code."""
        ...

    @abstractmethod
    async def kill(self) -> bool: ...


class SandboxHandle(ABC):
    """Live capability object for one remote sandbox."""

    sandbox_id: str
    template: str | None = None

    @abstractmethod
    async def is_running(self) -> bool: ...

    @abstractmethod
    async def set_timeout(self, timeout_seconds: int) -> None:
        """Reset the provider-side timeout, counted from now."""
        ...

    @abstractmethod
    async def kill(self) -> bool: ...

    @abstractmethod
    async def run_code(
        self,
        code: str,
        on_stdout: Optional[OutputHandler] = None,
        on_stderr: Optional[OutputHandler] = None,
        timeout_seconds: Optional[float] = None,
    ) -> SandboxExecutionResult:
        """Execute code with the template's interpreter.

        Output handlers are called with the raw provider output objects, in
        the order the provider delivers them.
        """
        ...

    @abstractmethod
    async def run_command(
        self,
        cmd: str,
        envs: Optional[Mapping[str, str]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> SandboxCommandOutput:
        """Run a shell command to completion. Non-zero exit codes are returned, not raised."""
        ...

    @abstractmethod
    async def start_process(
        self,
        cmd: str,
        envs: Optional[Mapping[str, str]] = None,
        on_stdout: Optional[OutputHandler] = None,
        on_stderr: Optional[OutputHandler] = None,
    ) -> SandboxProcess: ...

    @abstractmethod
    async def start_proxy(
        self, port: int, hostname: str = "0.0.0.0", protocol: str = "http"
    ) -> str:
        """Expose `port` inside the sandbox and return the external URL."""
        ...


class SandboxBackend(ABC):
    type: str

    @classmethod
    @abstractmethod
    def from_config(cls: Type["SandboxBackend"], config: CoreConfig) -> "SandboxBackend": ...

    @classmethod
    def from_default(cls: Type["SandboxBackend"]) -> "SandboxBackend":
        return cls.from_config(DEFAULT_CORE_CONFIG)

    @abstractmethod
    async def create(
        self, create_config: SandboxCreateConfig, credential: Optional[str] = None
    ) -> SandboxHandle: ...

    @abstractmethod
    async def connect(
        self, sandbox_id: str, credential: Optional[str] = None
    ) -> SandboxHandle:
        """Reattach to a live sandbox by id. Raises if the provider does not know it."""
        ...
