from typing import Optional

from pydantic import BaseModel, Field

from database_models import Plan


class RegisterRequest(BaseModel):
    name: str
    email: str
    password: str


class LoginRequest(BaseModel):
    email: str
    password: str


class Identity(BaseModel):
    """Request-scoped identity decoded from a session token."""
    user_id: int
    plan: Plan = Plan.FREE


class SessionGrant(BaseModel):
    identity: Identity
    token: str


class OAuthProfile(BaseModel):
    """OpenID Connect userinfo as returned by the provider."""
    sub: str
    email: Optional[str] = None
    name: Optional[str] = None
    picture: Optional[str] = None
    email_verified: bool = Field(default=False)
