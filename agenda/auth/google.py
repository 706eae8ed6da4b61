"""
Google OAuth 2.0 sign-in (authorization code flow).
"""
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx
import structlog

from ..config import settings
from ..errors import IdentityError

logger = structlog.get_logger(__name__)

AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://openidconnect.googleapis.com/v1/userinfo"
SUPPORTED_PROVIDERS = ("google",)


@dataclass
class GoogleProfile:
    sub: str
    email: Optional[str]
    email_verified: bool = False


def _redirect_uri() -> str:
    return settings.google_redirect_uri or f"{settings.public_base_url}/auth/google/callback"


def ensure_configured(provider: str = "google") -> None:
    if provider not in SUPPORTED_PROVIDERS:
        raise IdentityError(f"Unsupported provider: {provider}", provider_misconfigured=True)
    if not settings.google_client_id or not settings.google_client_secret:
        raise IdentityError(
            "Provider not enabled: GOOGLE_CLIENT_ID and GOOGLE_CLIENT_SECRET must be set",
            provider_misconfigured=True,
        )


def authorization_url(state: Optional[str] = None) -> str:
    ensure_configured()
    params = {
        "client_id": settings.google_client_id,
        "redirect_uri": _redirect_uri(),
        "response_type": "code",
        "scope": "openid email profile",
        "access_type": "online",
        "prompt": "select_account",
    }
    if state:
        params["state"] = state
    return f"{AUTHORIZE_URL}?{urlencode(params)}"


async def exchange_code(code: str, client: Optional[httpx.AsyncClient] = None) -> GoogleProfile:
    """Trade an authorization code for the signed-in Google profile."""
    ensure_configured()
    owns_client = client is None
    client = client or httpx.AsyncClient(timeout=30.0)
    try:
        token_resp = await client.post(
            TOKEN_URL,
            data={
                "code": code,
                "client_id": settings.google_client_id,
                "client_secret": settings.google_client_secret,
                "redirect_uri": _redirect_uri(),
                "grant_type": "authorization_code",
            },
        )
        if token_resp.status_code != 200:
            body = token_resp.json() if token_resp.headers.get("content-type", "").startswith("application/json") else {}
            error = body.get("error", token_resp.status_code)
            logger.warning("google_token_exchange_failed", error=str(error))
            raise IdentityError(
                f"Google rejected the sign-in: {error}",
                provider_misconfigured=error in ("invalid_client", "unauthorized_client"),
            )
        access_token = token_resp.json().get("access_token")
        info_resp = await client.get(USERINFO_URL, headers={"Authorization": f"Bearer {access_token}"})
        info_resp.raise_for_status()
        info = info_resp.json()
    except httpx.HTTPError as e:
        raise IdentityError(f"Google sign-in failed: {e}")
    finally:
        if owns_client:
            await client.aclose()
    return GoogleProfile(sub=info["sub"], email=info.get("email"), email_verified=bool(info.get("email_verified")))
