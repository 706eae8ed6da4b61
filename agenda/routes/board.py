from fastapi import APIRouter, Depends

from ..auth.security import require_screen
from ..schemas.board import DropResult
from ..session.gate import SessionGate
from ..session.screens import Screen
from .deps import envelope, get_gate


router = APIRouter(prefix="/api/board", tags=["board"])


@router.get("")
async def get_board(_=Depends(require_screen(Screen.BOARD)), gate: SessionGate = Depends(get_gate)):
    view = await gate.current_view()
    return envelope(gate, True, view.render())


@router.post("/drag")
async def drag_end(
    result: DropResult,
    _=Depends(require_screen(Screen.BOARD)),
    gate: SessionGate = Depends(get_gate),
):
    view = await gate.current_view()
    written = await view.handle_drag_end(result)
    # An inert gesture is not a failure; a rejected write is
    failed = not written and bool(gate.ctx.notifier.errors)
    return envelope(gate, not failed, view.render())
