"""
Authentication routes and dependencies
"""

import logging
from typing import Optional

from fastapi import APIRouter, Cookie, Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings, IS_PRODUCTION
from database import get_db
from models.user import Identity, LoginRequest, RegisterRequest
from services.auth_service import AuthService, CREDENTIALS_PROVIDER
from utils.responses import success_response

logger = logging.getLogger(__name__)

AUTH_COOKIE_NAME = "auth_token"
COOKIE_SECURE = IS_PRODUCTION or settings.get_app_url().startswith("https://")

# Create auth router
auth_router = APIRouter(prefix="/api/auth", tags=["auth"])


def set_auth_cookie(response, token: str) -> None:
    """Attach the session token as an httpOnly cookie."""
    response.set_cookie(
        key=AUTH_COOKIE_NAME,
        value=token,
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
        path="/",
        max_age=settings.jwt_expire_seconds,
    )


def _extract_token(auth_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    # Cookie first (browser clients), then Bearer header (API consumers)
    if auth_token:
        return auth_token
    if authorization and authorization.startswith("Bearer "):
        return authorization[len("Bearer "):].strip()
    return None


# Dependency for protected routes
async def get_current_user(
    auth_token: Optional[str] = Cookie(None),
    authorization: Optional[str] = Header(None, alias="Authorization"),
) -> Identity:
    """
    Dependency function to get the current authenticated identity.

    The identity comes from the token alone; no database lookup is made,
    so the plan reflects the state at the time the token was issued.
    """
    token = _extract_token(auth_token, authorization)
    return AuthService.decode_session(token)


@auth_router.post("/register")
async def register(request: RegisterRequest, db: AsyncSession = Depends(get_db)):
    """Create a new credentials account"""
    user = await AuthService(db).register_user(request.name, request.email, request.password)
    return success_response({"user_id": str(user.id)}, message="Registered", status=201)


@auth_router.post("/login")
async def login(request: LoginRequest, db: AsyncSession = Depends(get_db)):
    """Sign in with email and password and receive a session cookie"""
    grant = await AuthService(db).authenticate(
        CREDENTIALS_PROVIDER,
        {"email": request.email, "password": request.password},
    )

    response = success_response({
        "user_id": str(grant.identity.user_id),
        "plan": grant.identity.plan.value,
    })
    set_auth_cookie(response, grant.token)
    return response


@auth_router.get("/me")
async def get_current_user_info(current_user: Identity = Depends(get_current_user)):
    """Identity carried by the current session token"""
    return success_response({
        "user_id": str(current_user.user_id),
        "plan": current_user.plan.value,
    })


@auth_router.post("/refresh")
async def refresh(
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Re-issue the session token with the user's current plan"""
    grant = await AuthService(db).refresh_session(current_user)

    response = success_response({
        "user_id": str(grant.identity.user_id),
        "plan": grant.identity.plan.value,
    })
    set_auth_cookie(response, grant.token)
    return response


@auth_router.post("/logout")
async def logout():
    """Logout and clear auth token cookie"""
    response = success_response(message="Logged out successfully")
    response.delete_cookie(
        key=AUTH_COOKIE_NAME,
        path="/",
        httponly=True,
        secure=COOKIE_SECURE,
        samesite="lax",
    )
    return response
