"""
Local cache of one or more tables, scoped to an optional parent key.

A store reads on mount, refetches whenever the change hub reports a change
for its key, and applies mutations optimistically before the remote write.
When a write fails the pre-mutation state is restored, the user is told,
and the authoritative read runs again.
"""
import copy
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import structlog

from ..backend.client import BackendClient, Subscription
from ..errors import AgendaError
from ..notifier import Notifier
from ..services.change_hub import ChangeEvent

logger = structlog.get_logger(__name__)


class RecordStore:
    tables: Tuple[str, ...] = ()
    # Column holding the parent key; None for stores that read a whole table
    parent_field: Optional[str] = "os_id"
    # Attributes restored when a mutation fails
    state_attrs: Tuple[str, ...] = ("rows",)
    read_error_title = "Erro ao carregar dados"

    def __init__(self, backend: BackendClient, notifier: Notifier) -> None:
        self.backend = backend
        self.notifier = notifier
        self.parent_key: Optional[Any] = None
        self.loading = True
        self.mounted = False
        self._subscriptions: List[Subscription] = []
        self._generation = 0
        self._closed = False
        self._reset()

    # -- lifecycle ------------------------------------------------------

    def _reset(self) -> None:
        self.rows: List[Any] = []

    @property
    def scoped(self) -> bool:
        return self.parent_field is not None

    async def mount(self, parent_key: Optional[Any] = None) -> None:
        """(Re)bind the store to `parent_key`: release old listeners, subscribe, read."""
        if self._closed:
            raise RuntimeError(f"{type(self).__name__} is closed")
        await self._release_subscriptions()
        self._generation += 1
        self.parent_key = parent_key
        self.loading = True
        self.mounted = True
        self._reset()

        if self.scoped and parent_key is None:
            self.loading = False
            return

        eq = (self.parent_field, parent_key) if self.scoped else None
        for table in self.tables:
            try:
                sub = await self.backend.subscribe(table, self._on_change, eq=eq)
            except AgendaError as e:
                # No live updates, reads still work
                logger.warning("store_subscribe_failed", table=table, error=str(e))
                continue
            self._subscriptions.append(sub)
        await self.refetch()

    async def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        await self._release_subscriptions()

    async def _release_subscriptions(self) -> None:
        subs, self._subscriptions = self._subscriptions, []
        for sub in subs:
            await sub.release()

    @property
    def subscriptions(self) -> List[Subscription]:
        return list(self._subscriptions)

    def _is_current(self, generation: int) -> bool:
        return not self._closed and generation == self._generation

    async def _on_change(self, change: ChangeEvent) -> None:
        logger.debug("store_change_received", store=type(self).__name__, table=change.table, change_event=change.event)
        await self.refetch()

    # -- reads ----------------------------------------------------------

    async def _read(self) -> Any:
        raise NotImplementedError

    def _apply(self, result: Any) -> None:
        self.rows = list(result)

    async def refetch(self) -> None:
        if not self.mounted or (self.scoped and self.parent_key is None):
            self.loading = False
            return
        generation = self._generation
        try:
            result = await self._read()
        except AgendaError as e:
            if self._is_current(generation):
                self.loading = False
                self.notifier.error(self.read_error_title, str(e))
            return
        if not self._is_current(generation):
            # Unmounted or re-keyed while the read was in flight
            logger.debug("store_stale_read_dropped", store=type(self).__name__)
            return
        self._apply(result)
        self.loading = False

    # -- writes ---------------------------------------------------------

    def _snapshot(self) -> Dict[str, Any]:
        return {attr: copy.copy(getattr(self, attr)) for attr in self.state_attrs}

    def _restore(self, snapshot: Dict[str, Any]) -> None:
        for attr, value in snapshot.items():
            setattr(self, attr, value)

    async def _mutate(
        self,
        optimistic: Callable[[], None],
        write: Callable[[], Awaitable[Any]],
        error_title: str,
    ) -> bool:
        snapshot = self._snapshot()
        generation = self._generation
        optimistic()
        try:
            await write()
        except AgendaError as e:
            logger.warning("store_write_failed", store=type(self).__name__, error=str(e))
            if self._is_current(generation):
                self._restore(snapshot)
                self.notifier.error(error_title, str(e))
                await self.refetch()
            return False
        return True
