from enum import Enum
from typing import Any, Optional


class Screen(str, Enum):
    LOADING = "loading"
    SIGN_IN = "sign_in"
    WAITING = "waiting"
    BOARD = "board"
    FIELD_WORK = "field_work"


BOARD_ROLES = ("Admin", "Secretary")
FIELD_WORK_ROLES = ("Collaborator",)


def resolve_screen(user: Optional[Any], role: Optional[str], is_approved: bool, loading: bool = False) -> Screen:
    """Pick the single screen a signed-in identity may see.

    Approval and role are both required; an approved user with no role is
    blocked exactly like an unapproved one.
    """
    if loading:
        return Screen.LOADING
    if user is None:
        return Screen.SIGN_IN
    if not is_approved or not role:
        return Screen.WAITING
    if role in BOARD_ROLES:
        return Screen.BOARD
    if role in FIELD_WORK_ROLES:
        return Screen.FIELD_WORK
    return Screen.WAITING


def can_reschedule(role: Optional[str]) -> bool:
    return role in BOARD_ROLES
