import asyncio
from typing import List, Optional

from ..schemas.records import ChecklistItemRow
from .base import RecordStore

MATERIALS = "materials_checklist"
PROCESSES = "processes_checklist"


class ChecklistStore(RecordStore):
    """Material and process checklists of one order."""

    tables = (MATERIALS, PROCESSES)
    state_attrs = ("materials", "processes")
    read_error_title = "Erro ao carregar checklists"

    def _reset(self) -> None:
        self.materials: List[ChecklistItemRow] = []
        self.processes: List[ChecklistItemRow] = []

    async def _read(self):
        eq = {"os_id": self.parent_key}
        return await asyncio.gather(
            self.backend.select(MATERIALS, eq=eq, order_by="created_at"),
            self.backend.select(PROCESSES, eq=eq, order_by="created_at"),
        )

    def _apply(self, result) -> None:
        materials, processes = result
        self.materials = list(materials)
        self.processes = list(processes)

    async def toggle_material(self, item_id) -> bool:
        return await self._toggle(MATERIALS, "materials", item_id, "Erro ao atualizar material")

    async def toggle_process(self, item_id) -> bool:
        return await self._toggle(PROCESSES, "processes", item_id, "Erro ao atualizar processo")

    async def _toggle(self, table: str, attr: str, item_id, error_title: str) -> bool:
        key = str(item_id)
        current: Optional[ChecklistItemRow] = next((i for i in getattr(self, attr) if str(i.id) == key), None)
        if current is None:
            self.notifier.error(error_title, "Item não encontrado")
            return False
        done = not current.done

        def optimistic():
            setattr(
                self,
                attr,
                [i.model_copy(update={"done": done}) if str(i.id) == key else i for i in getattr(self, attr)],
            )

        return await self._mutate(
            optimistic,
            lambda: self.backend.update(table, item_id, {"done": done}),
            error_title,
        )

    @staticmethod
    def _all_done(items: List[ChecklistItemRow]) -> bool:
        return bool(items) and all(i.done for i in items)

    @property
    def all_materials_done(self) -> bool:
        return self._all_done(self.materials)

    @property
    def all_processes_done(self) -> bool:
        return self._all_done(self.processes)
