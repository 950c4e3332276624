"""WebSocket fan-out of committed domain events for cache invalidation."""

import json
import logging
import uuid as uuid_mod
from typing import Optional

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from haul_dispatch.domain.events import DomainEvent

logger = logging.getLogger(__name__)
router = APIRouter(tags=["websocket"])


class ConnectionManager:
    """Manages WebSocket connections with group support.

    Each client joins the group of the company it acts for
    ("company_<id>") and of the user ("owner_<id>"). Broadcasting targets a
    group so clients only hear about rows they can see.
    """

    def __init__(self):
        # client_id -> WebSocket (for direct messaging)
        self.active_connections: dict[str, WebSocket] = {}
        # group_name -> set of client_ids
        self.groups: dict[str, set[str]] = {}

    async def connect(
        self, websocket: WebSocket, client_id: str, groups: Optional[list[str]] = None
    ):
        """Accept a WebSocket and add it to its groups."""
        await websocket.accept()
        self.active_connections[client_id] = websocket
        for group in groups or []:
            self.add_to_group(client_id, group)

    def add_to_group(self, client_id: str, group: str):
        if group not in self.groups:
            self.groups[group] = set()
        self.groups[group].add(client_id)

    def disconnect(self, client_id: str):
        """Remove a client from all groups and drop its connection."""
        self.active_connections.pop(client_id, None)
        for group_members in self.groups.values():
            group_members.discard(client_id)

    async def send_json(self, client_id: str, data: dict):
        ws = self.active_connections.get(client_id)
        if ws:
            try:
                await ws.send_json(data)
            except Exception:
                logger.warning("Failed to send to client %s, removing", client_id)
                self.disconnect(client_id)

    async def broadcast_to_group(self, group: str, data: dict):
        """Broadcast a JSON message to every client in a group."""
        client_ids = list(self.groups.get(group, set()))
        disconnected: list[str] = []
        for cid in client_ids:
            ws = self.active_connections.get(cid)
            if ws:
                try:
                    await ws.send_json(data)
                except Exception:
                    logger.warning("Broadcast failed for %s, removing", cid)
                    disconnected.append(cid)
        for cid in disconnected:
            self.disconnect(cid)


manager = ConnectionManager()


def groups_for(company_id: Optional[str], owner_id: Optional[str]) -> list[str]:
    groups = []
    if company_id:
        groups.append(f"company_{company_id}")
    if owner_id:
        groups.append(f"owner_{owner_id}")
    return groups


async def broadcast_change(event: DomainEvent):
    """Change-notifier sink: push an event to the company and owner it concerns."""
    message = {"type": "change", "data": event.to_dict()}
    for group in groups_for(event.company_id, event.owner_id):
        await manager.broadcast_to_group(group, message)


@router.websocket("/ws/changes")
async def change_feed(
    websocket: WebSocket,
    company_id: Optional[str] = None,
    owner_id: Optional[str] = None,
):
    """WebSocket endpoint for change notifications.

    Clients connect with `?company_id=...&owner_id=...`; the server pushes
    {"type": "change", "data": {...}} after every committed mutation.
    Supported incoming messages:
        {"type": "ping"}  ->  server replies {"type": "pong"}
    """
    client_id = f"changes_{uuid_mod.uuid4().hex[:8]}"
    await manager.connect(websocket, client_id, groups=groups_for(company_id, owner_id))
    logger.info("Change feed client connected: %s (company=%s)", client_id, company_id)

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                msg = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if msg.get("type") == "ping":
                await manager.send_json(client_id, {"type": "pong"})
    except WebSocketDisconnect:
        manager.disconnect(client_id)
        logger.info("Change feed client disconnected: %s", client_id)
    except Exception as e:
        logger.error("Change feed error for %s: %s", client_id, e)
        manager.disconnect(client_id)
