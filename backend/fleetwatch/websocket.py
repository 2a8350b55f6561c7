# backend/fleetwatch/websocket.py
from fastapi import WebSocket, status
from typing import Awaitable, Callable, Dict, Iterable, List, Optional, Set
import logging
import time
from collections import defaultdict

from sqlalchemy import select

from . import crud
from .database import AuthSessionLocal, FleetSessionLocal
from .models import auth as model_auth

logger = logging.getLogger(__name__)

ScopeResolver = Callable[[Iterable[int]], Awaitable[Dict[int, Set[int]]]]

async def load_vehicle_scopes(account_ids: Iterable[int]) -> Dict[int, Set[int]]:
    """
    Vehicles each account may see right now.
    Deleted or disabled accounts are missing from the result.
    """
    ids = list(account_ids)
    if not ids:
        return {}
    scopes: Dict[int, Set[int]] = {}
    async with AuthSessionLocal() as auth_db, FleetSessionLocal() as fleet_db:
        result = await auth_db.execute(
            select(model_auth.Account).where(model_auth.Account.id.in_(ids))
        )
        for account in result.scalars().all():
            if account.is_active:
                scopes[account.id] = set(await crud.visible_vehicle_ids(account, fleet_db))
    return scopes

class ConnectionManager:
    """
    Dashboard connections, one per logged-in account.
    The vehicles a connection may see are looked up on every broadcast, so
    assignment changes apply to sockets that are already open.
    Alerts go out immediately; position updates are throttled per vehicle.
    """
    def __init__(self, resolve_scopes: Optional[ScopeResolver] = None):
        # websocket -> account id
        self.active_connections: Dict[WebSocket, int] = {}
        self.resolve_scopes = resolve_scopes or load_vehicle_scopes

        self.last_broadcast_time = defaultdict(float)
        self.throttle_intervals = {
            'position': 0.5,   # at most 2 updates/s per vehicle
            'alert': 0.0       # never throttled
        }

    async def connect(self, websocket: WebSocket, account_id: int):
        await websocket.accept()
        self.active_connections[websocket] = account_id
        logger.info(f"✅ WebSocket connected. Total: {len(self.active_connections)}")

    def disconnect(self, websocket: WebSocket):
        if websocket in self.active_connections:
            del self.active_connections[websocket]
            logger.info(f"❌ WebSocket disconnected. Total: {len(self.active_connections)}")

    async def broadcast(self, message: dict):
        """
        Send a message about one vehicle to every connection that can see it.
        Message types listed in throttle_intervals are dropped when the same
        vehicle was pushed less than the interval ago.
        """
        msg_type = message.get('type')
        vehicle_id = message.get('vehicle_id')

        interval = self.throttle_intervals.get(msg_type, 0.0)
        if interval > 0:
            key = f"{msg_type}_{vehicle_id}"
            current_time = time.time()
            if current_time - self.last_broadcast_time[key] < interval:
                return
            self.last_broadcast_time[key] = current_time

        await self._send_to_scope(vehicle_id, message)

    async def _send_to_scope(self, vehicle_id: int, message: dict):
        if not self.active_connections:
            return
        scopes = await self.resolve_scopes(set(self.active_connections.values()))

        disconnected: List[WebSocket] = []
        revoked: List[WebSocket] = []
        for connection, account_id in list(self.active_connections.items()):
            scope = scopes.get(account_id)
            if scope is None:
                revoked.append(connection)
                continue
            if vehicle_id not in scope:
                continue
            try:
                await connection.send_json(message)
            except Exception as e:
                logger.error(f"❌ WS send error: {e}")
                disconnected.append(connection)

        # Accounts deleted or disabled since they connected
        for conn in revoked:
            self.disconnect(conn)
            try:
                await conn.close(code=status.WS_1008_POLICY_VIOLATION)
            except Exception as e:
                logger.debug(f"WS close after revoke failed: {e}")

        # Drop broken connections
        for conn in disconnected:
            self.disconnect(conn)

# Global instance
manager = ConnectionManager()
