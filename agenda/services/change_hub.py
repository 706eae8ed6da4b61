import asyncio
import itertools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set, Tuple

import structlog
from fastapi import WebSocket

logger = structlog.get_logger(__name__)

# (field, value) equality filter on the changed row
EqFilter = Optional[Tuple[str, Any]]


@dataclass(frozen=True)
class ChangeEvent:
    table: str
    event: str  # INSERT|UPDATE|DELETE
    row: Dict[str, Any]


ChangeCallback = Callable[[ChangeEvent], Awaitable[None]]


def _matches(eq: EqFilter, row: Dict[str, Any]) -> bool:
    if eq is None:
        return True
    field, value = eq
    return str(row.get(field)) == str(value)


class ChangeHub:
    def __init__(self) -> None:
        # table -> token -> (filter, callback)
        self._listeners: Dict[str, Dict[int, Tuple[EqFilter, ChangeCallback]]] = {}
        # table -> set of (websocket, filter)
        self._sockets: Dict[str, Set[Tuple[WebSocket, EqFilter]]] = {}
        self._tokens = itertools.count(1)
        self._lock = asyncio.Lock()

    async def listen(self, table: str, callback: ChangeCallback, eq: EqFilter = None) -> int:
        async with self._lock:
            token = next(self._tokens)
            self._listeners.setdefault(table, {})[token] = (eq, callback)
            return token

    async def unlisten(self, table: str, token: int) -> bool:
        async with self._lock:
            listeners = self._listeners.get(table)
            if listeners is None or token not in listeners:
                return False
            del listeners[token]
            if not listeners:
                self._listeners.pop(table, None)
            return True

    async def connect(self, table: str, ws: WebSocket, eq: EqFilter = None) -> None:
        async with self._lock:
            self._sockets.setdefault(table, set()).add((ws, eq))

    async def disconnect(self, table: str, ws: WebSocket, eq: EqFilter = None) -> None:
        async with self._lock:
            conns = self._sockets.get(table)
            if conns is not None:
                conns.discard((ws, eq))
                if not conns:
                    self._sockets.pop(table, None)

    def listener_count(self, table: Optional[str] = None) -> int:
        if table is not None:
            return len(self._listeners.get(table, {}))
        return sum(len(v) for v in self._listeners.values())

    async def publish(self, table: str, event: str, row: Dict[str, Any]) -> None:
        change = ChangeEvent(table=table, event=event, row=row)
        async with self._lock:
            callbacks: List[Tuple[int, ChangeCallback]] = [
                (token, cb) for token, (eq, cb) in self._listeners.get(table, {}).items() if _matches(eq, row)
            ]
            sockets = [(ws, eq) for ws, eq in self._sockets.get(table, set()) if _matches(eq, row)]

        for token, cb in callbacks:
            try:
                await cb(change)
            except Exception as e:
                # best-effort; a failing listener never blocks the writer
                logger.warning("change_listener_failed", table=table, change_event=event, error=str(e))
                await self.unlisten(table, token)

        # Remote clients only learn that something changed, then refetch
        data = {"event": event, "table": table, "data": {"id": str(row.get("id"))}}
        for ws, eq in sockets:
            try:
                await ws.send_json(data)
            except Exception as e:
                logger.info("change_socket_dropped", table=table, change_event=event, error=str(e))
                await self.disconnect(table, ws, eq)
