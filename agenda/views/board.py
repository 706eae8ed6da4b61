"""
Weekly board: service orders partitioned into one column per weekday.
"""
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import structlog

from ..models.models import DAYS, STATUS_LABELS
from ..schemas.board import DropResult
from ..schemas.records import ServiceOrderRow
from ..session.screens import can_reschedule
from ..stores.service_orders import ServiceOrderStore

logger = structlog.get_logger(__name__)


@dataclass
class BoardColumn:
    day: str
    orders: List[ServiceOrderRow]

    @property
    def count(self) -> int:
        return len(self.orders)


def order_card(order: ServiceOrderRow) -> Dict[str, Any]:
    client = order.clients
    return {
        "id": str(order.id),
        "os_number": order.os_number,
        "day": order.day,
        "status": order.status,
        "status_label": STATUS_LABELS.get(order.status, order.status),
        "type": order.type,
        "assignee": order.assignee,
        "client": {
            "name": client.name if client else None,
            "phone": (client.phone if client else None) or "N/A",
            "address": (client.address if client else None) or "N/A",
        },
    }


class BoardView:
    def __init__(self, store: ServiceOrderStore, role: Optional[str], week_label: Optional[str] = None) -> None:
        self.store = store
        self.role = role
        self.week_label = week_label

    @property
    def can_drag(self) -> bool:
        return can_reschedule(self.role)

    async def load(self) -> None:
        if not self.store.mounted:
            await self.store.mount()

    def columns(self) -> List[BoardColumn]:
        # One pass over the cached orders; no read per column
        buckets: Dict[str, List[ServiceOrderRow]] = {day: [] for day in DAYS}
        for order in self.store.orders:
            if order.day in buckets:
                buckets[order.day].append(order)
        return [BoardColumn(day=day, orders=buckets[day]) for day in DAYS]

    async def handle_drag_end(self, result: DropResult) -> bool:
        """Apply a finished drag gesture. Returns True when a reschedule was written."""
        if not self.can_drag:
            logger.info("drag_ignored", reason="role", role=self.role)
            return False
        destination = result.destination
        if destination is None or destination not in DAYS:
            return False
        order = self.store.get(result.draggable_id)
        if order is None:
            logger.info("drag_ignored", reason="unknown_order", order_id=result.draggable_id)
            return False
        if order.day == destination:
            return False
        return await self.store.reschedule(order.id, destination)

    def render(self) -> Dict[str, Any]:
        return {
            "title": "Agenda da Semana",
            "week_label": self.week_label,
            "can_drag": self.can_drag,
            "loading": self.store.loading,
            "columns": [
                {
                    "day": col.day,
                    "count": col.count,
                    "orders": [order_card(o) for o in col.orders],
                }
                for col in self.columns()
            ],
        }
