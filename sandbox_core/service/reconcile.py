from typing import Optional
from ..env import LOG
from ..infra.sandbox.backend.base import SandboxHandle
from ..schema.error import SandboxUnavailableError
from ..schema.sandbox import SandboxRecord
from ..telemetry.otel import sandbox_span
from .lifecycle import SandboxLifecycleManager


class SandboxReconciler:
    """Turns a sandbox id into a tracked record, reattaching when needed.

    Sandboxes created by an earlier process (or lost from the registry) are
    still alive at the provider; `resolve` reconnects to them and registers
    the handle through the lifecycle manager.
    """

    def __init__(self, lifecycle: SandboxLifecycleManager):
        self.lifecycle = lifecycle

    async def resolve(
        self,
        sandbox_id: str,
        credential: Optional[str] = None,
        purpose: str = "reconciled",
    ) -> SandboxRecord:
        record = self.lifecycle.get_sandbox(sandbox_id)
        if record is not None:
            return record

        LOG.info(f"Sandbox {sandbox_id} not tracked, reconnecting")
        try:
            with sandbox_span("connect", id=sandbox_id):
                handle = await self.lifecycle.backend.connect(sandbox_id, credential)
        except Exception as e:
            LOG.warning(f"Failed to reconnect to sandbox {sandbox_id}: {e}")
            raise SandboxUnavailableError(sandbox_id, str(e)) from e

        return self.lifecycle.track_sandbox(handle, purpose)

    async def resolve_handle(
        self,
        sandbox_id: str,
        credential: Optional[str] = None,
        purpose: str = "reconciled",
    ) -> SandboxHandle:
        record = await self.resolve(sandbox_id, credential, purpose)
        return record.handle
