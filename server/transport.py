"""
Outbound message delivery over WebSockets.

The game core only needs two primitives from the transport:

    send_to(connection_id, event, payload)
    send_to_session(session_id, event, payload)

ConnectionHub provides them on top of live FastAPI WebSocket objects,
grouping connections per session the way a pub/sub channel would.
Messages go out as ``{"type": event, **payload}``.

Sends are fire-and-forget: a failed send is logged and never propagates
into game logic, which has already committed its state.
"""

import logging
from typing import Optional

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionHub:
    """Registry of live WebSocket connections and per-session groups."""

    def __init__(self) -> None:
        self.connections: dict[str, WebSocket] = {}
        self.groups: dict[str, set[str]] = {}

    def register(self, connection_id: str, websocket: WebSocket) -> None:
        self.connections[connection_id] = websocket

    def unregister(self, connection_id: str) -> None:
        """Forget a connection and drop it from every group."""
        self.connections.pop(connection_id, None)
        for members in self.groups.values():
            members.discard(connection_id)

    def join_group(self, session_id: str, connection_id: str) -> None:
        self.groups.setdefault(session_id, set()).add(connection_id)

    def leave_group(self, session_id: str, connection_id: str) -> None:
        members = self.groups.get(session_id)
        if members is not None:
            members.discard(connection_id)

    def discard_group(self, session_id: str) -> None:
        self.groups.pop(session_id, None)

    def group_members(self, session_id: str) -> set[str]:
        return set(self.groups.get(session_id, ()))

    async def send_to(self, connection_id: Optional[str], event: str, payload: Optional[dict] = None) -> None:
        """
        Send an event to a single connection.

        Args:
            connection_id: Recipient connection (ignored if None or unknown).
            event: Event name, sent as the message "type".
            payload: JSON-serializable event fields.
        """
        if connection_id is None:
            return
        websocket = self.connections.get(connection_id)
        if websocket is None:
            return
        try:
            await websocket.send_json({"type": getattr(event, "value", event), **(payload or {})})
        except Exception as e:
            logger.debug(f"Send of {event} to {connection_id} failed: {e}")

    async def send_to_session(self, session_id: str, event: str, payload: Optional[dict] = None) -> None:
        """
        Send an event to every connection currently in a session's group.

        Args:
            session_id: Target session.
            event: Event name, sent as the message "type".
            payload: JSON-serializable event fields.
        """
        for connection_id in sorted(self.group_members(session_id)):
            await self.send_to(connection_id, event, payload)

    async def close_all(self, code: int = 1001, reason: str = "Server shutting down") -> None:
        """Close all active WebSocket connections gracefully."""
        for connection_id, websocket in list(self.connections.items()):
            try:
                await websocket.close(code=code, reason=reason)
            except Exception as e:
                logger.debug(f"Close of {connection_id} failed: {e}")
        self.connections.clear()
        self.groups.clear()
