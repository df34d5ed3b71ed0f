"""WebSocket handler for real-time article updates."""
import asyncio
import json
import logging
from typing import Set, Dict
from fastapi import WebSocket, WebSocketDisconnect
import redis.asyncio as redis
from shared.config import settings

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections for article updates."""

    def __init__(self):
        # Map of article_id to set of WebSocket connections
        self.article_connections: Dict[str, Set[WebSocket]] = {}
        # Connections watching every article
        self.all_connections: Set[WebSocket] = set()

    async def connect(self, websocket: WebSocket, article_id: str = None):
        """Accept a new WebSocket connection."""
        await websocket.accept()
        if article_id:
            self.article_connections.setdefault(article_id, set()).add(websocket)
        else:
            self.all_connections.add(websocket)

    def disconnect(self, websocket: WebSocket, article_id: str = None):
        """Remove a WebSocket connection."""
        self.all_connections.discard(websocket)

        if article_id and article_id in self.article_connections:
            self.article_connections[article_id].discard(websocket)
            if not self.article_connections[article_id]:
                del self.article_connections[article_id]

    async def _send(self, connections: Set[WebSocket], message: dict) -> Set[WebSocket]:
        disconnected = set()
        for connection in list(connections):
            try:
                await connection.send_json(message)
            except Exception:
                disconnected.add(connection)
        return disconnected

    async def send_to_article(self, article_id: str, message: dict):
        """Send message to all connections watching a specific article."""
        connections = self.article_connections.get(article_id)
        if not connections:
            return
        for conn in await self._send(connections, message):
            self.disconnect(conn, article_id)

    async def broadcast(self, message: dict):
        """Send message to connections watching every article."""
        for conn in await self._send(self.all_connections, message):
            self.all_connections.discard(conn)

    async def dispatch(self, message: dict):
        article_id = message.get("article_id")
        if article_id:
            await self.send_to_article(article_id, message)
        await self.broadcast(message)


# Global connection manager
manager = ConnectionManager()


async def redis_subscriber(redis_client: redis.Redis):
    """Subscribe to the article event channel and forward events to WebSocket clients."""
    channel = settings.redis_event_channel
    pubsub = redis_client.pubsub()
    await pubsub.subscribe(channel)

    try:
        async for message in pubsub.listen():
            if message["type"] != "message":
                continue
            try:
                data = json.loads(message["data"])
            except json.JSONDecodeError:
                logger.warning(f"Ignoring malformed event on {channel}")
                continue
            await manager.dispatch(data)
    except asyncio.CancelledError:
        pass
    finally:
        await pubsub.unsubscribe(channel)
        await pubsub.close()


async def websocket_endpoint(websocket: WebSocket, article_id: str = None):
    """WebSocket endpoint for article updates."""
    await manager.connect(websocket, article_id)

    try:
        while True:
            # Keep connection alive with heartbeat
            try:
                data = await asyncio.wait_for(
                    websocket.receive_text(),
                    timeout=settings.ws_heartbeat_interval
                )
                if data == "ping":
                    await websocket.send_text("pong")
            except asyncio.TimeoutError:
                await websocket.send_json({"type": "heartbeat"})
    except WebSocketDisconnect:
        manager.disconnect(websocket, article_id)
