import asyncio
from abc import ABC, abstractmethod
from typing import Any, Optional
from ..env import LOG
from ..schema.execution import ExecutionMessage


class OutputSink(ABC):
    """Delivers execution messages to an addressed client channel."""

    @abstractmethod
    async def send(self, client_id: str, message: ExecutionMessage) -> bool:
        """Deliver one message. Returns False when the channel is unreachable."""
        ...


class ChannelHub(OutputSink):
    """Per-client message queues, drained by whatever transport the client holds.

    A client that is not connected (or whose queue is full) loses the
    message; the producer is never blocked.
    """

    def __init__(self, max_queue_size: int = 1000):
        self.__max_queue_size = max_queue_size
        self.__channels: dict[str, asyncio.Queue] = {}

    def connect(self, client_id: str) -> asyncio.Queue:
        channel = self.__channels.get(client_id)
        if channel is None:
            channel = asyncio.Queue(maxsize=self.__max_queue_size)
            self.__channels[client_id] = channel
            LOG.info(f"Client {client_id} connected")
        return channel

    def disconnect(self, client_id: str) -> None:
        if self.__channels.pop(client_id, None) is not None:
            LOG.info(f"Client {client_id} disconnected")

    def is_connected(self, client_id: str) -> bool:
        return client_id in self.__channels

    @property
    def client_ids(self) -> list[str]:
        return list(self.__channels.keys())

    def publish(self, client_id: str, payload: dict[str, Any]) -> bool:
        channel = self.__channels.get(client_id)
        if channel is None:
            LOG.warning(f"Cannot send message to client {client_id}, channel not open")
            return False
        try:
            channel.put_nowait(payload)
        except asyncio.QueueFull:
            LOG.warning(f"Channel for client {client_id} is full, dropping message")
            return False
        return True

    async def send(self, client_id: str, message: ExecutionMessage) -> bool:
        return self.publish(client_id, message.model_dump(mode="json"))


class CollectingSink(OutputSink):
    """Keeps every message in memory, grouped by client."""

    def __init__(self):
        self.__messages: dict[str, list[ExecutionMessage]] = {}

    async def send(self, client_id: str, message: ExecutionMessage) -> bool:
        self.__messages.setdefault(client_id, []).append(message)
        return True

    def messages(self, client_id: Optional[str] = None) -> list[ExecutionMessage]:
        if client_id is not None:
            return list(self.__messages.get(client_id, []))
        return [m for msgs in self.__messages.values() for m in msgs]

    def stdout(self, client_id: str) -> str:
        return "".join(
            m.data for m in self.__messages.get(client_id, []) if m.type == "stdout"
        )

    def stderr(self, client_id: str) -> str:
        return "".join(
            m.data for m in self.__messages.get(client_id, []) if m.type == "stderr"
        )
