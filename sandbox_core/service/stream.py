import asyncio
import time
from typing import Any, Mapping, Optional
from ..env import LOG, DEFAULT_CORE_CONFIG
from ..schema.config import CoreConfig
from ..schema.error import ExecutionFailedError
from ..schema.execution import (
    ExecutionMessage,
    ExecutionSummary,
    StatusMessage,
    StdoutMessage,
    StderrMessage,
    ResultMessage,
    ErrorMessage,
)
from ..telemetry.log import bound_logging_vars
from ..telemetry.otel import sandbox_span
from ..util.ids import generate_execution_id, track_process
from .lifecycle import SandboxLifecycleManager
from .reconcile import SandboxReconciler
from .shell import prepare_code
from .sink import OutputSink


def normalize_output(raw: Any) -> str:
    """Flatten a provider output chunk into text.

    Providers hand back plain strings, objects with `line`/`text`, or
    mappings carrying the same keys.
    """
    if isinstance(raw, str):
        return raw
    for attr in ("line", "text"):
        value = getattr(raw, attr, None)
        if isinstance(value, str):
            return value
    if isinstance(raw, Mapping):
        for key in ("line", "text"):
            value = raw.get(key)
            if isinstance(value, str):
                return value
    return str(raw)


class ExecutionStreamCoordinator:
    def __init__(
        self,
        lifecycle: SandboxLifecycleManager,
        reconciler: SandboxReconciler,
        sink: OutputSink,
        config: CoreConfig = DEFAULT_CORE_CONFIG,
    ):
        self.lifecycle = lifecycle
        self.reconciler = reconciler
        self.sink = sink
        self.config = config

    async def _forward(self, queue: asyncio.Queue, client_id: str) -> None:
        while True:
            message: Optional[ExecutionMessage] = await queue.get()
            if message is None:
                return
            try:
                delivered = await self.sink.send(client_id, message)
            except Exception as e:
                LOG.warning(f"Failed to deliver {message.type} message to {client_id}: {e}")
                continue
            if not delivered:
                LOG.debug(f"Dropped {message.type} message for client {client_id}")

    @track_process
    async def run_and_stream(
        self,
        sandbox_id: str,
        code: str,
        client_id: str,
        timeout_seconds: Optional[float] = None,
        credential: Optional[str] = None,
    ) -> ExecutionSummary:
        """Run `code` in the sandbox and stream its output to `client_id`.

        Messages go out as `status(starting)`, then stdout/stderr in provider
        order, then `result` and `status(completed)`. A failed run sends
        `error` and `status(error)` instead and then raises.

        Raises:
            SandboxUnavailableError: The sandbox cannot be resolved. Nothing is sent.
            ExecutionFailedError: The provider call failed or the code raised.
        """
        record = await self.reconciler.resolve(sandbox_id, credential)
        execution_id = generate_execution_id()
        timeout = timeout_seconds or self.config.execution_default_timeout_seconds

        with bound_logging_vars(sandbox_id=sandbox_id, execution_id=execution_id):
            queue: asyncio.Queue = asyncio.Queue()
            forwarder = asyncio.create_task(self._forward(queue, client_id))

            def emit(message: ExecutionMessage) -> None:
                queue.put_nowait(message)

            def on_stdout(raw: Any) -> None:
                emit(
                    StdoutMessage(
                        execution_id=execution_id,
                        sandbox_id=sandbox_id,
                        data=normalize_output(raw),
                    )
                )

            def on_stderr(raw: Any) -> None:
                emit(
                    StderrMessage(
                        execution_id=execution_id,
                        sandbox_id=sandbox_id,
                        data=normalize_output(raw),
                    )
                )

            error: Optional[str] = None
            cause: Optional[Exception] = None
            try:
                self.lifecycle.update_last_used(sandbox_id)
                prepared, rewritten = prepare_code(code, record.template)
                if rewritten:
                    LOG.info(
                        f"Formatted shell command for template {record.template or 'default'}"
                    )

                emit(
                    StatusMessage(
                        execution_id=execution_id,
                        sandbox_id=sandbox_id,
                        status="starting",
                        message="Running code...",
                    )
                )
                start = time.monotonic()
                try:
                    with sandbox_span(
                        "run_code", id=sandbox_id, execution_id=execution_id
                    ):
                        result = await record.handle.run_code(
                            prepared,
                            on_stdout=on_stdout,
                            on_stderr=on_stderr,
                            timeout_seconds=timeout,
                        )
                    if result.error is not None:
                        error = f"{result.error.name}: {result.error.value}"
                except Exception as e:
                    LOG.error(f"Error running code in sandbox {sandbox_id}: {e}")
                    error = str(e) or type(e).__name__
                    cause = e
                duration_ms = int((time.monotonic() - start) * 1000)

                if error is None:
                    emit(
                        ResultMessage(
                            execution_id=execution_id,
                            sandbox_id=sandbox_id,
                            data={
                                "message": "Execution completed successfully",
                                "text": result.text,
                                "results": result.results,
                            },
                            duration_ms=duration_ms,
                        )
                    )
                    emit(
                        StatusMessage(
                            execution_id=execution_id,
                            sandbox_id=sandbox_id,
                            status="completed",
                            message=f"Execution completed in {duration_ms}ms",
                            duration_ms=duration_ms,
                        )
                    )
                else:
                    emit(
                        ErrorMessage(
                            execution_id=execution_id,
                            sandbox_id=sandbox_id,
                            error=error,
                        )
                    )
                    emit(
                        StatusMessage(
                            execution_id=execution_id,
                            sandbox_id=sandbox_id,
                            status="error",
                            message=f"Execution failed: {error}",
                            duration_ms=duration_ms,
                        )
                    )
                queue.put_nowait(None)
                await forwarder
            finally:
                if not forwarder.done():
                    forwarder.cancel()
                self.lifecycle.update_last_used(sandbox_id)

        if error is not None:
            raise ExecutionFailedError(
                execution_id, sandbox_id, error, duration_ms=duration_ms
            ) from cause
        return ExecutionSummary(
            execution_id=execution_id,
            sandbox_id=sandbox_id,
            status="completed",
            duration_ms=duration_ms,
        )
