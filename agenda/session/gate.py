"""
Top-level gate: nothing role-specific renders until identity, role and
approval are resolved, then exactly one view is chosen.
"""
from typing import Any, Dict, Optional, Union

import structlog

from ..config import settings
from ..stores.checklists import ChecklistStore
from ..stores.photos import PhotoStore
from ..stores.reports import ReportStore
from ..stores.service_orders import ServiceOrderStore
from ..views.board import BoardView
from ..views.field_work import FieldWorkView
from .context import AppContext
from .screens import Screen

logger = structlog.get_logger(__name__)


class SessionGate:
    def __init__(self, ctx: AppContext, week_label: Optional[str] = None) -> None:
        self.ctx = ctx
        self.week_label = week_label if week_label is not None else settings.week_label
        self.view: Optional[Union[BoardView, FieldWorkView]] = None
        self._view_screen: Optional[Screen] = None

    def _build_view(self, screen: Screen) -> Union[BoardView, FieldWorkView]:
        backend, notifier = self.ctx.backend, self.ctx.notifier
        orders = ServiceOrderStore(backend, notifier)
        if screen is Screen.BOARD:
            return BoardView(orders, self.ctx.role, week_label=self.week_label)
        return FieldWorkView(
            orders,
            ChecklistStore(backend, notifier),
            PhotoStore(backend, notifier),
            ReportStore(backend, notifier),
            notifier,
        )

    async def _close_view(self) -> None:
        view, self.view, self._view_screen = self.view, None, None
        if view is None:
            return
        if isinstance(view, FieldWorkView):
            await view.close()
        else:
            await view.store.close()

    async def current_view(self, order_id: Optional[str] = None) -> Optional[Union[BoardView, FieldWorkView]]:
        """Return the view for the current screen, replacing it when the screen changed.

        `order_id` selects the field-work order; the board ignores it.
        """
        screen = self.ctx.screen
        if screen not in (Screen.BOARD, Screen.FIELD_WORK):
            await self._close_view()
            return None
        if self._view_screen is not screen:
            await self._close_view()
            self.view = self._build_view(screen)
            self._view_screen = screen
            logger.info("view_selected", screen=screen.value, role=self.ctx.role)
        if isinstance(self.view, BoardView):
            self.view.role = self.ctx.role
            await self.view.load()
        else:
            await self.view.load(order_id)
        return self.view

    async def render(self) -> Dict[str, Any]:
        screen = self.ctx.screen
        out: Dict[str, Any] = {"screen": screen.value}
        if screen is Screen.SIGN_IN:
            out["sign_in"] = {"provider": "google", "label": "Entrar com Google"}
        elif screen is Screen.WAITING:
            user = self.ctx.user
            out["waiting"] = {
                "message": "Aguardando aprovação do administrador",
                "email": user.email if user else None,
                "user_id": str(user.id) if user else None,
                "can_sign_out": True,
            }
        view = await self.current_view()
        if isinstance(view, FieldWorkView):
            out["view"] = await view.render()
        elif view is not None:
            out["view"] = view.render()
        return out

    async def close(self) -> None:
        await self._close_view()
        await self.ctx.teardown()
