"""
Transient user notifications ("toasts").

Views never raise to the user; they leave a toast here and keep rendering.
"""
from collections import deque
from dataclasses import asdict, dataclass
from typing import Deque, List

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class Toast:
    title: str
    description: str = ""
    variant: str = "default"  # default|destructive

    def to_dict(self) -> dict:
        return asdict(self)


class Notifier:
    def __init__(self, history: int = 50) -> None:
        self._toasts: Deque[Toast] = deque(maxlen=history)

    def notify(self, title: str, description: str = "") -> Toast:
        toast = Toast(title=title, description=description)
        self._toasts.append(toast)
        logger.info("toast", title=title, description=description)
        return toast

    def error(self, title: str, description: str = "") -> Toast:
        toast = Toast(title=title, description=description, variant="destructive")
        self._toasts.append(toast)
        logger.warning("toast_error", title=title, description=description)
        return toast

    @property
    def toasts(self) -> List[Toast]:
        return list(self._toasts)

    @property
    def errors(self) -> List[Toast]:
        return [t for t in self._toasts if t.variant == "destructive"]

    def drain(self) -> List[Toast]:
        toasts = list(self._toasts)
        self._toasts.clear()
        return toasts
