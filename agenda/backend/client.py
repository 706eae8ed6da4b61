"""
Backend client interface consumed by the stores and the session context.

Every call is a coroutine: these are the only points where the view layer
suspends.
"""
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import structlog
from pydantic import BaseModel

from ..services.change_hub import ChangeCallback

logger = structlog.get_logger(__name__)


class AuthUser(BaseModel):
    id: uuid.UUID
    email: Optional[str] = None


class AuthSession(BaseModel):
    access_token: str
    refresh_token: Optional[str] = None
    user: AuthUser


# SIGNED_IN | SIGNED_OUT | TOKEN_REFRESHED
AuthCallback = Callable[[str, Optional[AuthSession]], Awaitable[None]]


class Subscription:
    """Handle for a standing listener. Released at most once."""

    def __init__(self, name: str, release: Callable[[], Awaitable[Any]]):
        self.name = name
        self._release = release
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    async def release(self) -> None:
        if self._released:
            return
        self._released = True
        try:
            await self._release()
        except Exception as e:
            # Nothing the user can do about it
            logger.warning("subscription_release_failed", subscription=self.name, error=str(e))


class BackendClient:
    # Reads and writes

    async def select(
        self,
        table: str,
        eq: Optional[Dict[str, Any]] = None,
        join: Optional[str] = None,
        order_by: Optional[str] = None,
    ) -> List[BaseModel]:
        raise NotImplementedError

    async def insert(self, table: str, values: Dict[str, Any]) -> BaseModel:
        raise NotImplementedError

    async def update(self, table: str, row_id: Any, values: Dict[str, Any]) -> BaseModel:
        raise NotImplementedError

    async def upsert(self, table: str, values: Dict[str, Any], on_conflict: str) -> BaseModel:
        raise NotImplementedError

    # Change notifications

    async def subscribe(
        self, table: str, callback: ChangeCallback, eq: Optional[Tuple[str, Any]] = None
    ) -> Subscription:
        raise NotImplementedError

    # Object storage

    async def upload(self, bucket: str, path: str, data: bytes, content_type: str) -> None:
        raise NotImplementedError

    async def signed_url(self, bucket: str, path: str, expires_s: int) -> Optional[str]:
        raise NotImplementedError

    async def download(self, bucket: str, path: str) -> Optional[bytes]:
        raise NotImplementedError

    async def delete(self, bucket: str, path: str) -> None:
        raise NotImplementedError

    # Identity

    async def sign_in_with_oauth(self, provider: str, redirect_to: Optional[str] = None) -> str:
        raise NotImplementedError

    async def set_session(self, access_token: str, refresh_token: Optional[str] = None) -> AuthSession:
        raise NotImplementedError

    async def get_session(self) -> Optional[AuthSession]:
        raise NotImplementedError

    async def sign_out(self) -> None:
        raise NotImplementedError

    async def on_auth_state_change(self, callback: AuthCallback) -> Subscription:
        raise NotImplementedError
