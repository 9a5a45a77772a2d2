import asyncio
from typing import Any, Dict, List, Optional

from fastapi import WebSocket
from starlette.websockets import WebSocketState

from marketchat.utils.logger import get_logger


logger = get_logger(__name__)


class Connection:
    """One client socket plus the frames waiting to be written to it."""

    def __init__(self, user_id: str, websocket: WebSocket) -> None:
        self.user_id = user_id
        self.websocket = websocket
        self.viewer = None
        self._outbox: asyncio.Queue = asyncio.Queue()

    def push(self, frame: Dict[str, Any]) -> None:
        self._outbox.put_nowait(frame)

    async def pump(self) -> None:
        while True:
            frame = await self._outbox.get()
            if frame is None:
                return
            if self.websocket.client_state is not WebSocketState.CONNECTED:
                return
            await self.websocket.send_json(frame)

    def stop(self) -> None:
        self._outbox.put_nowait(None)


class ConnectionManager:

    def __init__(self) -> None:
        self.active_connections: Dict[str, List[Connection]] = {}

    async def connect(self, user_id: str, websocket: WebSocket) -> Connection:
        await websocket.accept()
        connection = Connection(user_id, websocket)
        self.active_connections.setdefault(user_id, []).append(connection)
        return connection

    async def disconnect(self, connection: Connection) -> None:
        connections = self.active_connections.get(connection.user_id)
        if connections is not None:
            try:
                connections.remove(connection)
            except ValueError:
                pass
            if not connections:
                del self.active_connections[connection.user_id]
        connection.stop()
        if connection.viewer is not None:
            await connection.viewer.sign_out()

    def connections_for(self, user_id: str) -> List[Connection]:
        return list(self.active_connections.get(user_id, ()))

    def get(self, user_id: str) -> Optional[Connection]:
        connections = self.active_connections.get(user_id)
        return connections[-1] if connections else None
