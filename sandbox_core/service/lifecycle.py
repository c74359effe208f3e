import asyncio
from contextlib import suppress
from typing import Optional
from ..env import LOG, DEFAULT_CORE_CONFIG
from ..infra.sandbox.backend.base import SandboxBackend, SandboxHandle
from ..schema.config import CoreConfig
from ..schema.error import ProvisioningError
from ..schema.sandbox import (
    SandboxCreateConfig,
    SandboxRecord,
    SandboxStats,
    SandboxStatus,
    utc_now,
)
from ..telemetry.log import bound_logging_vars
from ..telemetry.otel import sandbox_span
from .registry import SandboxRegistry


class SandboxLifecycleManager:
    """Creates, tracks, keeps alive and reclaims sandboxes.

    The manager is the only writer of its registry. Keep-alive heartbeats and
    the idle sweep are `asyncio.Task`s owned by the manager; `shutdown()`
    stops the sweep and releases every tracked sandbox.
    """

    def __init__(
        self,
        backend: SandboxBackend,
        config: CoreConfig = DEFAULT_CORE_CONFIG,
        registry: Optional[SandboxRegistry] = None,
    ):
        self.backend = backend
        self.config = config
        self.__registry = registry if registry is not None else SandboxRegistry()
        self.__cleanup_task: Optional[asyncio.Task] = None

    # -------------------------- lifecycle -------------------------- #

    async def init(self) -> None:
        if self.config.sandbox_auto_start_cleanup:
            self.start_cleanup_interval()

    async def shutdown(self) -> None:
        task = self.__cleanup_task
        self.stop_cleanup_interval()
        if task is not None:
            with suppress(asyncio.CancelledError):
                await task
        await self.cleanup_all_sandboxes()

    # -------------------------- tracking -------------------------- #

    async def create_sandbox(
        self,
        purpose: str,
        credential: Optional[str] = None,
        timeout_seconds: Optional[int] = None,
        template: Optional[str] = None,
    ) -> tuple[SandboxHandle, str]:
        """Create a remote sandbox and start tracking it.

        Args:
            purpose: Free-form tag, e.g. "code-exec" or "mcp-server".
            credential: Provider API key; the backend's configured key when None.
            timeout_seconds: Provider-side timeout; the configured default when None.
            template: Provider template; the backend's default when None.

        Returns:
            The live handle and the provider-assigned sandbox id.

        Raises:
            ProvisioningError: If the provider call fails. Not retried here.
        """
        create_config = SandboxCreateConfig(
            timeout_seconds=timeout_seconds
            or self.config.sandbox_default_timeout_seconds,
            template=template,
            metadata={"purpose": purpose},
        )
        LOG.debug(f"Creating new sandbox for {purpose}")
        try:
            with sandbox_span("create", purpose=purpose, template=template):
                handle = await self.backend.create(create_config, credential)
        except Exception as e:
            LOG.error(f"Failed to create sandbox for {purpose}: {e}")
            raise ProvisioningError(
                f"Failed to create sandbox for {purpose}: {e}"
            ) from e

        record = self.track_sandbox(handle, purpose)
        return handle, record.id

    def track_sandbox(
        self, handle: SandboxHandle, purpose: str, template: Optional[str] = None
    ) -> SandboxRecord:
        """Register a live handle. An already tracked id keeps its record."""
        record = self.__registry.insert(
            SandboxRecord(
                id=handle.sandbox_id,
                purpose=purpose,
                handle=handle,
                template=template or handle.template,
            )
        )
        LOG.debug(f"Tracking sandbox {record.id} for {record.purpose}")
        return record

    def get_sandbox(self, sandbox_id: str) -> Optional[SandboxRecord]:
        return self.__registry.get(sandbox_id)

    def list_sandboxes(self) -> list[SandboxRecord]:
        return self.__registry.records()

    def update_last_used(self, sandbox_id: str) -> None:
        record = self.__registry.get(sandbox_id)
        if record is None:
            return
        record.touch()

    async def is_sandbox_running(self, sandbox_id: str) -> bool:
        """Ask the provider whether the sandbox is alive. Never raises.

        Success moves the record to running/stopped; a failed query moves it
        to error and reports False.
        """
        record = self.__registry.get(sandbox_id)
        if record is None:
            return False

        try:
            running = await record.handle.is_running()
        except Exception as e:
            LOG.error(f"Error checking if sandbox {sandbox_id} is running: {e}")
            record.status = SandboxStatus.ERROR
            return False

        record.status = SandboxStatus.RUNNING if running else SandboxStatus.STOPPED
        return running

    # -------------------------- keep-alive -------------------------- #

    def setup_keep_alive(
        self,
        sandbox_id: str,
        interval_seconds: Optional[float] = None,
        timeout_seconds: Optional[int] = None,
    ) -> bool:
        """Start extending the sandbox timeout every `interval_seconds`.

        Any heartbeat already running for this sandbox is cancelled first.
        Returns False when the sandbox is not tracked.
        """
        record = self.__registry.get(sandbox_id)
        if record is None:
            LOG.warning(f"Cannot setup keep-alive for unknown sandbox {sandbox_id}")
            return False

        interval = interval_seconds or self.config.sandbox_keepalive_interval_seconds
        timeout = timeout_seconds or self.config.sandbox_default_timeout_seconds

        self._cancel_keep_alive(record)
        record.keepalive_task = asyncio.create_task(
            self._keep_alive_loop(record, interval, timeout),
            name=f"sandbox-keepalive-{sandbox_id}",
        )
        LOG.debug(f"Setup keep-alive for sandbox {sandbox_id} every {interval}s")
        return True

    async def _keep_alive_loop(
        self, record: SandboxRecord, interval: float, timeout: int
    ) -> None:
        sandbox_id = record.id
        with bound_logging_vars(sandbox_id=sandbox_id):
            while True:
                await asyncio.sleep(interval)
                if self.__registry.get(sandbox_id) is not record:
                    return

                if not await self.is_sandbox_running(sandbox_id):
                    LOG.warning(
                        f"Sandbox {sandbox_id} is no longer running, clearing keep-alive"
                    )
                    if record.keepalive_task is asyncio.current_task():
                        record.keepalive_task = None
                    return

                try:
                    with sandbox_span("set_timeout", id=sandbox_id):
                        await record.handle.set_timeout(timeout)
                except Exception as e:
                    LOG.error(f"Failed to extend timeout for sandbox {sandbox_id}: {e}")
                    continue

                self.update_last_used(sandbox_id)
                LOG.debug(f"Extended timeout for sandbox {sandbox_id}")

    def _cancel_keep_alive(self, record: SandboxRecord) -> None:
        task = record.keepalive_task
        record.keepalive_task = None
        if task is None or task.done():
            return
        if task is not asyncio.current_task():
            task.cancel()

    # -------------------------- release -------------------------- #

    async def release_sandbox(self, sandbox_id: str) -> None:
        """Cancel keep-alive, kill the sandbox and forget it. Never raises.

        A failed kill is logged; the record is dropped regardless.
        """
        record = self.__registry.get(sandbox_id)
        if record is None:
            LOG.debug(f"Sandbox {sandbox_id} not found for release")
            return

        self._cancel_keep_alive(record)
        try:
            LOG.debug(f"Releasing sandbox {sandbox_id}")
            with sandbox_span("kill", id=sandbox_id):
                await record.handle.kill()
            LOG.debug(f"Successfully released sandbox {sandbox_id}")
        except Exception as e:
            LOG.error(f"Error releasing sandbox {sandbox_id}: {e}")
        finally:
            if self.__registry.get(sandbox_id) is record:
                self.__registry.remove(sandbox_id)

    async def _release_many(self, sandbox_ids: list[str]) -> None:
        results = await asyncio.gather(
            *(self.release_sandbox(sid) for sid in sandbox_ids),
            return_exceptions=True,
        )
        for sid, r in zip(sandbox_ids, results):
            if isinstance(r, BaseException):
                LOG.error(f"Error releasing sandbox {sid}: {r}")

    # -------------------------- idle sweep -------------------------- #

    async def cleanup_idle_sandboxes(
        self, max_idle_seconds: Optional[float] = None
    ) -> list[str]:
        """Release every sandbox idle for longer than `max_idle_seconds`.

        Returns the released ids.
        """
        max_idle = (
            max_idle_seconds
            if max_idle_seconds is not None
            else self.config.sandbox_max_idle_seconds
        )
        now = utc_now()
        idle_ids = [
            record.id
            for record in self.__registry.records()
            if record.idle_seconds(now) > max_idle
        ]
        if not idle_ids:
            return []

        LOG.info(f"Cleaning up {len(idle_ids)} idle sandboxes")
        await self._release_many(idle_ids)
        return idle_ids

    def start_cleanup_interval(
        self,
        interval_seconds: Optional[float] = None,
        max_idle_seconds: Optional[float] = None,
    ) -> None:
        if self.__cleanup_task is not None and not self.__cleanup_task.done():
            LOG.debug("Cleanup interval already running")
            return

        interval = interval_seconds or self.config.sandbox_cleanup_interval_seconds
        max_idle = (
            max_idle_seconds
            if max_idle_seconds is not None
            else self.config.sandbox_max_idle_seconds
        )
        LOG.info(
            f"Starting cleanup interval ({interval}s) with max idle time of {max_idle}s"
        )
        self.__cleanup_task = asyncio.create_task(
            self._cleanup_loop(interval, max_idle), name="sandbox-idle-sweep"
        )

    def stop_cleanup_interval(self) -> None:
        task = self.__cleanup_task
        self.__cleanup_task = None
        if task is not None and not task.done():
            task.cancel()
            LOG.debug("Stopped cleanup interval")

    @property
    def cleanup_running(self) -> bool:
        return self.__cleanup_task is not None and not self.__cleanup_task.done()

    async def _cleanup_loop(self, interval: float, max_idle: float) -> None:
        while True:
            await asyncio.sleep(interval)
            try:
                await self.cleanup_idle_sandboxes(max_idle)
            except Exception as e:
                LOG.error(f"Error during idle sandbox cleanup: {e}")

    async def cleanup_all_sandboxes(self) -> None:
        """Release every tracked sandbox. Used at shutdown; never raises."""
        self.stop_cleanup_interval()
        sandbox_ids = self.__registry.ids()
        if not sandbox_ids:
            return

        LOG.info(f"Cleaning up all {len(sandbox_ids)} sandboxes")
        await self._release_many(sandbox_ids)

    # -------------------------- stats -------------------------- #

    def get_stats(self) -> SandboxStats:
        stats = SandboxStats()
        for record in self.__registry.records():
            stats.total += 1
            if record.status == SandboxStatus.RUNNING:
                stats.running += 1
            elif record.status == SandboxStatus.STOPPED:
                stats.stopped += 1
            elif record.status == SandboxStatus.ERROR:
                stats.error += 1

            purpose = record.purpose or "unknown"
            stats.by_purpose[purpose] = stats.by_purpose.get(purpose, 0) + 1
        return stats
