"""Room presence over websockets: who is in which room, and telling rooms their member count."""
import asyncio
import uuid
from typing import Dict, Optional, Set
from fastapi import WebSocket, WebSocketDisconnect
from pydantic import ValidationError
from logging_config import get_logger
from schemas import JoinRoomIn, WsEvent

logger = get_logger(__name__)

ROOM_COUNT_EVENT = "update_room_count_{}"


class Connection:
    def __init__(self, connection_id: str, ws: Optional[WebSocket] = None):
        self.id = connection_id
        self.ws = ws
        self.rooms: Set[str] = set()
        self.outbox: asyncio.Queue = asyncio.Queue()
        self.closed = False

    def deliver(self, event: str, data) -> bool:
        if self.closed:
            return False
        self.outbox.put_nowait({"event": event, "data": data})
        return True

    async def pump(self):
        while True:
            frame = await self.outbox.get()
            try:
                await self.ws.send_json(frame)
            except Exception as e:
                logger.debug(f"Dropped {frame['event']} for connection {self.id}: {e}")

    def __repr__(self):
        return f"<Connection {self.id} rooms={sorted(self.rooms)}>"


class ConnectionRegistry:
    def __init__(self):
        self._connections: Dict[str, Connection] = {}

    @property
    def online(self) -> int:
        return len(self._connections)

    def get(self, connection_id: str) -> Optional[Connection]:
        return self._connections.get(connection_id)

    def connect(self, ws: Optional[WebSocket] = None) -> Connection:
        conn = Connection(uuid.uuid4().hex, ws)
        self._connections[conn.id] = conn
        logger.info(f"Num of users: {self.online}")
        return conn

    def disconnect(self, conn: Connection) -> bool:
        """Drop ``conn``. A second call for the same connection is a no-op and returns False."""
        if self._connections.pop(conn.id, None) is None:
            return False
        conn.closed = True
        logger.info(f"User disconnected, num of users: {self.online}")
        return True


class RoomTracker:
    def __init__(self):
        self._rooms: Dict[str, Set[str]] = {}

    @property
    def rooms(self) -> Set[str]:
        return set(self._rooms)

    def join(self, conn: Connection, room_id: str) -> bool:
        if conn.closed:
            return False
        members = self._rooms.setdefault(room_id, set())
        if conn.id in members:
            return False
        members.add(conn.id)
        conn.rooms.add(room_id)
        return True

    def leave_all(self, conn: Connection) -> Set[str]:
        # walk the connection's own rooms, not the whole table
        affected = set()
        for room_id in conn.rooms:
            members = self._rooms.get(room_id)
            if not members or conn.id not in members:
                continue
            members.discard(conn.id)
            affected.add(room_id)
            if not members:
                del self._rooms[room_id]
        conn.rooms.clear()
        return affected

    def member_count(self, room_id: str) -> int:
        return len(self._rooms.get(room_id, ()))

    def members(self, room_id: str) -> frozenset:
        return frozenset(self._rooms.get(room_id, ()))


class PresenceBroadcaster:
    def __init__(self, registry: ConnectionRegistry, tracker: RoomTracker):
        self.registry = registry
        self.tracker = tracker

    def announce(self, room_id: str, count: int) -> int:
        event = ROOM_COUNT_EVENT.format(room_id)
        sent = 0
        for connection_id in self.tracker.members(room_id):
            conn = self.registry.get(connection_id)
            if conn is not None and conn.deliver(event, count):
                sent += 1
        return sent


class PresenceHub:
    def __init__(self, registry: Optional[ConnectionRegistry] = None, tracker: Optional[RoomTracker] = None,
                 broadcaster: Optional[PresenceBroadcaster] = None):
        self.registry = registry or ConnectionRegistry()
        self.tracker = tracker or RoomTracker()
        self.broadcaster = broadcaster or PresenceBroadcaster(self.registry, self.tracker)

    def connect(self, ws: Optional[WebSocket] = None) -> Connection:
        return self.registry.connect(ws)

    def join_room(self, conn: Connection, room_id: str) -> int:
        changed = self.tracker.join(conn, room_id)
        count = self.tracker.member_count(room_id)
        if changed:
            logger.info(f"Connection {conn.id} joined room {room_id}, count {count}")
            self.broadcaster.announce(room_id, count)
        else:
            # already a member: only the asker needs the current figure
            conn.deliver(ROOM_COUNT_EVENT.format(room_id), count)
        return count

    def disconnect(self, conn: Connection) -> Dict[str, int]:
        # post-removal counts, sent to the remaining members only
        if self.registry.get(conn.id) is None:
            return {}
        counts = {}
        for room_id in self.tracker.leave_all(conn):
            counts[room_id] = self.tracker.member_count(room_id)
            logger.info(f"updating Room ID {room_id} {counts[room_id]}")
            self.broadcaster.announce(room_id, counts[room_id])
        self.registry.disconnect(conn)
        return counts

    def handle(self, conn: Connection, raw: str):
        try:
            msg = WsEvent.model_validate_json(raw)
        except ValidationError:
            logger.warning(f"Ignoring malformed frame from connection {conn.id}")
            return
        if msg.event == "join_room":
            try:
                p = JoinRoomIn.model_validate(msg.data)
            except ValidationError:
                logger.warning(f"Ignoring join_room without roomID from connection {conn.id}")
                return
            self.join_room(conn, p.roomID)
        else:
            logger.debug(f"Ignoring unknown event {msg.event!r} from connection {conn.id}")

    async def serve(self, ws: WebSocket):
        await ws.accept()
        conn = self.connect(ws)
        writer = asyncio.create_task(conn.pump())
        try:
            while True:
                msg = await ws.receive()
                if msg["type"] == "websocket.disconnect":
                    raise WebSocketDisconnect(msg.get("code", 1000))
                text = msg.get("text")
                if text is None:
                    logger.warning(f"Ignoring binary frame from connection {conn.id}")
                    continue
                self.handle(conn, text)
        except WebSocketDisconnect:
            pass
        finally:
            self.disconnect(conn)
            writer.cancel()
            try:
                await writer
            except asyncio.CancelledError:
                pass


hub = PresenceHub()

def get_hub() -> PresenceHub:
    return hub
