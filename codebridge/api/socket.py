"""WebSocket endpoint carrying collaboration and run events."""

import asyncio
import json

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..dependencies.services import GatewayDep
from ..models.errors import ProtocolError
from ..models.events import parse_inbound_event
from ..services.gateway import Connection

logger = structlog.get_logger(__name__)
router = APIRouter()


async def _send_loop(websocket: WebSocket, connection: Connection) -> None:
    """Drain the connection's outbound queue onto the socket."""
    while True:
        frame = await connection.queue.get()
        if frame is None:
            return
        try:
            await websocket.send_json(frame)
        except (WebSocketDisconnect, RuntimeError) as e:
            logger.debug(
                "Socket send failed",
                connection_id=connection.connection_id[:12],
                error=str(e),
            )
            return


@router.websocket("/ws")
async def socket_endpoint(websocket: WebSocket, gateway: GatewayDep):
    await websocket.accept()
    connection = gateway.connect()
    sender = asyncio.create_task(_send_loop(websocket, connection))

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                break

            raw = message.get("text")
            if raw is None and message.get("bytes") is not None:
                raw = message["bytes"].decode("utf-8", errors="replace")

            try:
                event = parse_inbound_event(json.loads(raw or ""))
            except json.JSONDecodeError:
                gateway.send_error(connection, ProtocolError("Event frame is not valid JSON"))
                continue
            except ProtocolError as e:
                gateway.send_error(connection, e)
                continue

            await gateway.dispatch(connection, event)
    except WebSocketDisconnect:
        pass
    finally:
        await gateway.disconnect(connection.connection_id)
        if not sender.done():
            sender.cancel()
        try:
            await sender
        except asyncio.CancelledError:
            pass
