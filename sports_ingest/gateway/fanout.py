"""
Room-scoped fan-out of sports updates to WebSocket clients.

Rooms:
- ``sport:<sport>``: every update for one sport
- ``event:<event_id>``: one event and its markets
- ``sport:live``: events currently LIVE or at HALFTIME

Client commands are JSON ``{"event": <command>, "data": <sport or event id>}``
with commands join-sport, leave-sport, join-event and leave-event.
"""
from typing import Any, Dict, Set

from starlette.websockets import WebSocketDisconnect

from sports_ingest.core.logging import get_logger
from sports_ingest.events.bus import EventBus, create_event_handler
from sports_ingest.events.domain_event import DomainEvent
from sports_ingest.events.sports_events import SportsRoutingKey
from sports_ingest.models.canonical import EventStatus

logger = get_logger(__name__)

LIVE_ROOM = "sport:live"
SPORTS_UPDATE = "sports.update"
MARKET_UPDATE = "market.update"

_LIVE_STATUSES = {EventStatus.LIVE.value, EventStatus.HALFTIME.value}

_COMMANDS = {
    "join-sport": ("joined", "sport"),
    "leave-sport": ("left", "sport"),
    "join-event": ("joined", "event"),
    "leave-event": ("left", "event"),
}


def sport_room(sport: str) -> str:
    return f"sport:{sport}"


def event_room(event_id: str) -> str:
    return f"event:{event_id}"


class SportsGateway:
    """
    Tracks connections and room membership, and relays bus events.

    Connections are anything with an async ``send_json`` (a Starlette
    ``WebSocket`` in production). A connection whose send fails is dropped
    from every room.

    Example:
        gateway = SportsGateway()
        gateway.register(event_bus)
    """

    def __init__(self):
        self.connections: Set[Any] = set()
        self.rooms: Dict[str, Set[Any]] = {}

    # ========================================================================
    # CONNECTIONS
    # ========================================================================

    async def connect(self, connection: Any) -> None:
        """Track an accepted connection and greet it."""
        self.connections.add(connection)
        logger.debug(f"Client connected ({len(self.connections)} active)")
        await self._send(connection, {
            "event": "connection",
            "data": {"status": "connected", "message": "Welcome to Sports Stream"},
        })

    def disconnect(self, connection: Any) -> None:
        self.connections.discard(connection)
        for room in list(self.rooms):
            members = self.rooms[room]
            members.discard(connection)
            if not members:
                del self.rooms[room]
        logger.debug(f"Client disconnected ({len(self.connections)} active)")

    def join(self, connection: Any, room: str) -> None:
        self.rooms.setdefault(room, set()).add(connection)

    def leave(self, connection: Any, room: str) -> None:
        members = self.rooms.get(room)
        if members is None:
            return
        members.discard(connection)
        if not members:
            del self.rooms[room]

    def room_size(self, room: str) -> int:
        return len(self.rooms.get(room, ()))

    def handle_command(self, connection: Any, message: Any) -> Dict[str, Any]:
        """
        Apply a client command.

        Returns:
            Reply ``{"event": "joined"|"left", "data": room}``, or an error reply
            for unknown commands and missing arguments
        """
        if not isinstance(message, dict):
            return {"event": "error", "data": "Expected a JSON object"}
        command = message.get("event")
        target = message.get("data")
        if command not in _COMMANDS:
            return {"event": "error", "data": f"Unknown command: {command}"}
        if not target:
            return {"event": "error", "data": f"{command} requires data"}

        reply, kind = _COMMANDS[command]
        room = sport_room(str(target).lower()) if kind == "sport" else event_room(str(target))
        if reply == "joined":
            self.join(connection, room)
        else:
            self.leave(connection, room)
        logger.debug(f"Client {reply} {room}")
        return {"event": reply, "data": room}

    # ========================================================================
    # FAN-OUT
    # ========================================================================

    async def broadcast_event_update(self, message: Dict[str, Any]) -> int:
        """Send ``sports.update`` to the sport, event and (when in play) live rooms."""
        rooms = [event_room(message["event_id"])]
        if message.get("sport"):
            rooms.append(sport_room(message["sport"]))
        if message.get("status") in _LIVE_STATUSES:
            rooms.append(LIVE_ROOM)
        return await self._emit(rooms, SPORTS_UPDATE, message)

    async def broadcast_market_update(self, message: Dict[str, Any]) -> int:
        """Send ``market.update`` to the market's event room."""
        return await self._emit([event_room(message["event_id"])], MARKET_UPDATE, message)

    async def _emit(self, rooms, name: str, data: Dict[str, Any]) -> int:
        # a connection in several matching rooms receives the update once
        targets: Set[Any] = set()
        for room in rooms:
            targets |= self.rooms.get(room, set())

        delivered = 0
        for connection in list(targets):
            if await self._send(connection, {"event": name, "data": data}):
                delivered += 1
        return delivered

    async def _send(self, connection: Any, payload: Dict[str, Any]) -> bool:
        try:
            await connection.send_json(payload)
        except (WebSocketDisconnect, RuntimeError, ConnectionError) as e:
            logger.info(f"Dropping dead connection: {type(e).__name__}")
            self.disconnect(connection)
            return False
        return True

    # ========================================================================
    # BUS SUBSCRIPTIONS
    # ========================================================================

    def register(self, event_bus: EventBus) -> None:
        """Subscribe the relays to the event and market routing keys."""
        for key in SportsRoutingKey.EVENT_KEYS:
            event_bus.subscribe(key, create_event_handler(f"gateway:{key}", key, self._on_event_message))
        for key in SportsRoutingKey.MARKET_KEYS:
            event_bus.subscribe(key, create_event_handler(f"gateway:{key}", key, self._on_market_message))
        logger.info("Sports gateway subscribed to event and market updates")

    def unregister(self, event_bus: EventBus) -> None:
        for key in (*SportsRoutingKey.EVENT_KEYS, *SportsRoutingKey.MARKET_KEYS):
            event_bus.unsubscribe(f"gateway:{key}")

    async def _on_event_message(self, event: DomainEvent) -> None:
        await self.broadcast_event_update(event.payload)

    async def _on_market_message(self, event: DomainEvent) -> None:
        await self.broadcast_market_update(event.payload)

    def stats(self) -> Dict[str, int]:
        return {"connections": len(self.connections), "rooms": len(self.rooms)}
