from typing import Any, Mapping, Optional, Type
from e2b_code_interpreter import AsyncSandbox
from .base import SandboxBackend, SandboxHandle, SandboxProcess, OutputHandler
from ....schema.config import CoreConfig
from ....schema.sandbox import (
    SandboxCreateConfig,
    SandboxCommandOutput,
    SandboxExecutionError,
    SandboxExecutionResult,
)


def _command_output_from_exit(e: Exception) -> SandboxCommandOutput | None:
    # CommandExitException carries the finished command's output
    exit_code = getattr(e, "exit_code", None)
    if exit_code is None:
        return None
    return SandboxCommandOutput(
        stdout=getattr(e, "stdout", "") or "",
        stderr=getattr(e, "stderr", "") or "",
        exit_code=exit_code,
    )


def _convert_execution(execution: Any) -> SandboxExecutionResult:
    error = None
    if execution.error is not None:
        error = SandboxExecutionError(
            name=execution.error.name,
            value=execution.error.value,
            traceback=execution.error.traceback or "",
        )
    return SandboxExecutionResult(
        text=execution.text,
        results=[r.text for r in execution.results if r.text is not None],
        stdout=list(execution.logs.stdout),
        stderr=list(execution.logs.stderr),
        error=error,
    )


class CodeInterpreterProcess(SandboxProcess):
    def __init__(self, command_handle: Any):
        self.__handle = command_handle
        self.pid = command_handle.pid

    async def wait(self) -> int:
        try:
            result = await self.__handle.wait()
        except Exception as e:
            output = _command_output_from_exit(e)
            if output is None:
                raise
            return output.exit_code
        return result.exit_code

    async def kill(self) -> bool:
        return await self.__handle.kill()


class CodeInterpreterSandboxHandle(SandboxHandle):
    """Handle over an E2B-compatible `AsyncSandbox` instance.

    Novita ships the same SDK surface, so both backends share this class.
    """

    def __init__(self, sandbox: Any, template: str | None = None):
        self.__sandbox = sandbox
        self.sandbox_id = sandbox.sandbox_id
        self.template = template

    async def is_running(self) -> bool:
        return await self.__sandbox.is_running()

    async def set_timeout(self, timeout_seconds: int) -> None:
        await self.__sandbox.set_timeout(timeout_seconds)

    async def kill(self) -> bool:
        return await self.__sandbox.kill()

    async def run_code(
        self,
        code: str,
        on_stdout: Optional[OutputHandler] = None,
        on_stderr: Optional[OutputHandler] = None,
        timeout_seconds: Optional[float] = None,
    ) -> SandboxExecutionResult:
        execution = await self.__sandbox.run_code(
            code,
            on_stdout=on_stdout,
            on_stderr=on_stderr,
            timeout=timeout_seconds,
        )
        return _convert_execution(execution)

    async def run_command(
        self,
        cmd: str,
        envs: Optional[Mapping[str, str]] = None,
        timeout_seconds: Optional[float] = None,
    ) -> SandboxCommandOutput:
        try:
            result = await self.__sandbox.commands.run(
                cmd,
                envs=dict(envs or {}),
                timeout=timeout_seconds,
            )
        except Exception as e:
            output = _command_output_from_exit(e)
            if output is None:
                raise
            return output
        return SandboxCommandOutput(
            stdout=result.stdout, stderr=result.stderr, exit_code=result.exit_code
        )

    async def start_process(
        self,
        cmd: str,
        envs: Optional[Mapping[str, str]] = None,
        on_stdout: Optional[OutputHandler] = None,
        on_stderr: Optional[OutputHandler] = None,
    ) -> SandboxProcess:
        # timeout=0 keeps the command stream open for long-running servers
        command_handle = await self.__sandbox.commands.run(
            cmd,
            background=True,
            envs=dict(envs or {}),
            on_stdout=on_stdout,
            on_stderr=on_stderr,
            timeout=0,
        )
        return CodeInterpreterProcess(command_handle)

    async def start_proxy(
        self, port: int, hostname: str = "0.0.0.0", protocol: str = "http"
    ) -> str:
        # The provider routes every port through its TLS edge; the server
        # itself must listen on `hostname` inside the sandbox.
        host = self.__sandbox.get_host(port)
        scheme = "wss" if protocol in ("ws", "wss") else "https"
        return f"{scheme}://{host}"


class E2BSandboxBackend(SandboxBackend):
    """E2B Sandbox Backend using the e2b_code_interpreter SDK."""

    type: str = "e2b"
    sdk: Any = AsyncSandbox

    def __init__(
        self,
        api_key: str | None,
        default_template: str,
        domain_base_url: str | None = None,
    ):
        """
        Args:
            api_key: Default provider key, used when no credential is passed per call.
            default_template: Template used when the create config does not name one.
            domain_base_url: Provider domain for self-hosted deployments. None for the public cloud.
        """
        self.__api_key = api_key
        self.__default_template = default_template
        self.__domain_base_url = domain_base_url

    @classmethod
    def from_config(
        cls: Type["E2BSandboxBackend"], config: CoreConfig
    ) -> "E2BSandboxBackend":
        return cls(
            api_key=config.e2b_api_key,
            default_template=config.sandbox_default_template,
            domain_base_url=config.e2b_domain_base_url,
        )

    def _auth(self, credential: Optional[str]) -> dict[str, Any]:
        return {"api_key": credential or self.__api_key, "domain": self.__domain_base_url}

    def _connect_options(self) -> dict[str, Any]:
        return {}

    async def create(
        self, create_config: SandboxCreateConfig, credential: Optional[str] = None
    ) -> SandboxHandle:
        template = create_config.template or self.__default_template
        sandbox = await self.sdk.create(
            template=template,
            timeout=create_config.timeout_seconds,
            metadata=create_config.metadata,
            **self._auth(credential),
        )
        return CodeInterpreterSandboxHandle(sandbox, template=template)

    async def connect(
        self, sandbox_id: str, credential: Optional[str] = None
    ) -> SandboxHandle:
        sandbox = await self.sdk.connect(
            sandbox_id=sandbox_id, **self._auth(credential), **self._connect_options()
        )
        return CodeInterpreterSandboxHandle(sandbox)
