"""WebSocket route for the sports stream."""
import json
import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from sports_ingest.gateway.fanout import SportsGateway

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stream"])


def get_gateway(websocket: WebSocket) -> SportsGateway:
    return websocket.app.state.gateway


@router.websocket("/ws/sports")
async def sports_stream(websocket: WebSocket):
    """
    Real-time sports updates.

    After the greeting, the client sends join/leave commands and receives
    ``sports.update`` and ``market.update`` messages for its rooms.
    """
    gateway = get_gateway(websocket)
    await websocket.accept()
    await gateway.connect(websocket)

    try:
        while True:
            text = await websocket.receive_text()
            try:
                message = json.loads(text)
            except json.JSONDecodeError:
                logger.warning("Invalid JSON received from WebSocket client")
                await websocket.send_json({"event": "error", "data": "Invalid JSON"})
                continue
            await websocket.send_json(gateway.handle_command(websocket, message))
    except WebSocketDisconnect:
        pass
    finally:
        gateway.disconnect(websocket)
