import asyncio
from typing import Optional
from fastapi import APIRouter, Query, WebSocket, WebSocketDisconnect
from sandbox_core.env import LOG
from sandbox_core.service.sink import ChannelHub
from sandbox_core.util.ids import generate_client_id

router = APIRouter(tags=["ws"])


async def _pump(websocket: WebSocket, channel: asyncio.Queue) -> None:
    while True:
        payload = await channel.get()
        await websocket.send_json(payload)


async def _drain(websocket: WebSocket) -> None:
    # inbound messages are ignored; this only detects the disconnect
    while True:
        await websocket.receive_text()


@router.websocket("/ws")
async def client_channel(
    websocket: WebSocket,
    client_id: Optional[str] = Query(None, description="Channel to register"),
):
    hub = websocket.app.state.orchestrator.sink
    if not isinstance(hub, ChannelHub):
        await websocket.close(code=1011, reason="Streaming channels are not enabled")
        return

    client_id = client_id or generate_client_id()
    if hub.is_connected(client_id):
        LOG.warning(f"Rejected second channel for client {client_id}")
        await websocket.close(code=1008, reason=f"Client {client_id} is already connected")
        return

    # claimed before the first await so a concurrent socket sees it
    channel = hub.connect(client_id)
    tasks: list[asyncio.Task] = []
    try:
        await websocket.accept()
        await websocket.send_json(
            {
                "type": "status",
                "execution_id": "system",
                "sandbox_id": "",
                "status": "connected",
                "message": f"Connected as client {client_id}",
            }
        )

        tasks = [
            asyncio.create_task(_pump(websocket, channel)),
            asyncio.create_task(_drain(websocket)),
        ]
        done, _ = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for t in done:
            e = t.exception()
            if e is not None and not isinstance(e, WebSocketDisconnect):
                LOG.warning(f"Channel for client {client_id} closed with error: {e}")
    finally:
        for t in tasks:
            t.cancel()
        hub.disconnect(client_id)
