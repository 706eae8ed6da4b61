from pydantic import BaseModel
from typing import List, Optional


class TokenResponse(BaseModel):
    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    screen: Optional[str] = None


class RefreshRequest(BaseModel):
    refresh_token: str


class LogoutRequest(BaseModel):
    refresh_token: Optional[str] = None


class Notification(BaseModel):
    title: str
    description: str = ""
    variant: str = "default"


class SignInStartResponse(BaseModel):
    ok: bool
    url: Optional[str] = None
    notifications: List[Notification] = []


class MeResponse(BaseModel):
    id: str
    email: Optional[str] = None
    role: Optional[str] = None
    is_approved: bool
    screen: str
