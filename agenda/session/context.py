"""
Application context: who is signed in, their role and whether they are approved.

Built explicitly and handed to the views; it is refreshed only when the
identity provider reports a session change, never on a timer.
"""
from typing import Optional

import structlog

from ..backend.client import AuthSession, AuthUser, BackendClient, Subscription
from ..errors import AgendaError, IdentityError
from ..notifier import Notifier
from .screens import Screen, resolve_screen

logger = structlog.get_logger(__name__)

MISCONFIGURED_TITLE = "Google OAuth não configurado"
MISCONFIGURED_DESCRIPTION = (
    "O login com Google não está habilitado no servidor. "
    "Verifique GOOGLE_CLIENT_ID e GOOGLE_CLIENT_SECRET e a URL de retorno cadastrada."
)


class AppContext:
    def __init__(self, backend: BackendClient, notifier: Notifier) -> None:
        self.backend = backend
        self.notifier = notifier
        self.session: Optional[AuthSession] = None
        self.role: Optional[str] = None
        self.is_approved = False
        self.loading = True
        self._auth_subscription: Optional[Subscription] = None

    @property
    def user(self) -> Optional[AuthUser]:
        return self.session.user if self.session else None

    @property
    def screen(self) -> Screen:
        return resolve_screen(self.user, self.role, self.is_approved, loading=self.loading)

    async def initialize(self) -> None:
        self.loading = True
        if self._auth_subscription is None:
            self._auth_subscription = await self.backend.on_auth_state_change(self._on_auth_event)
        try:
            self.session = await self.backend.get_session()
            await self._load_access()
        finally:
            self.loading = False

    async def _on_auth_event(self, event: str, session: Optional[AuthSession]) -> None:
        logger.info("auth_state_changed", auth_event=event)
        self.loading = True
        try:
            self.session = session
            await self._load_access()
        finally:
            self.loading = False

    async def _load_access(self) -> None:
        """Read role and approval for the current identity from the store."""
        self.role = None
        self.is_approved = False
        user = self.user
        if user is None:
            return
        try:
            roles = await self.backend.select("user_roles", eq={"user_id": user.id})
            profiles = await self.backend.select("profiles", eq={"id": user.id})
        except AgendaError as e:
            # Fails closed: no role, not approved
            self.notifier.error("Erro ao carregar permissões", str(e))
            return
        self.role = roles[0].role if roles else None
        self.is_approved = bool(profiles and profiles[0].approved_at)

    async def sign_in_with_google(self, redirect_to: Optional[str] = None) -> Optional[str]:
        try:
            return await self.backend.sign_in_with_oauth("google", redirect_to=redirect_to)
        except IdentityError as e:
            if e.provider_misconfigured:
                self.notifier.error(MISCONFIGURED_TITLE, f"{MISCONFIGURED_DESCRIPTION} ({e})")
            else:
                self.notifier.error("Erro ao fazer login", str(e))
            return None

    async def sign_out(self) -> bool:
        try:
            await self.backend.sign_out()
        except AgendaError as e:
            self.notifier.error("Erro ao sair", str(e))
            return False
        # The auth event normally clears these; a backend without events still signs out
        self.session = None
        self.role = None
        self.is_approved = False
        return True

    async def teardown(self) -> None:
        if self._auth_subscription is not None:
            await self._auth_subscription.release()
            self._auth_subscription = None
