from typing import List, Optional

import structlog

from ..models.models import DAYS
from ..schemas.records import ServiceOrderRow
from .base import RecordStore

logger = structlog.get_logger(__name__)


class ServiceOrderStore(RecordStore):
    """All service orders with their client, for the board and the field view."""

    tables = ("service_orders",)
    parent_field = None
    read_error_title = "Erro ao carregar ordens de serviço"

    rows: List[ServiceOrderRow]

    async def _read(self):
        return await self.backend.select("service_orders", join="clients", order_by="created_at")

    @property
    def orders(self) -> List[ServiceOrderRow]:
        return self.rows

    def get(self, order_id) -> Optional[ServiceOrderRow]:
        key = str(order_id)
        return next((o for o in self.rows if str(o.id) == key), None)

    def orders_for_day(self, day: str) -> List[ServiceOrderRow]:
        return [o for o in self.rows if o.day == day]

    async def reschedule(self, order_id, day: str) -> bool:
        """Move an order to `day`, reflecting the new column before the write lands."""
        if day not in DAYS:
            self.notifier.error("Erro ao reagendar", f"Dia inválido: {day}")
            return False

        key = str(order_id)

        def optimistic():
            self.rows = [o.model_copy(update={"day": day}) if str(o.id) == key else o for o in self.rows]

        ok = await self._mutate(
            optimistic,
            lambda: self.backend.update("service_orders", order_id, {"day": day}),
            "Erro ao reagendar",
        )
        if ok:
            logger.info("order_rescheduled", order_id=key, day=day)
            self.notifier.notify("Ordem reagendada", "A ordem de serviço foi movida com sucesso.")
        return ok
