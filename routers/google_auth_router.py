"""
Google Single Sign-On (SSO) Router
Handles Google OAuth authentication flow
"""

import logging

from authlib.integrations.starlette_client import OAuth, OAuthError
from fastapi import APIRouter, Depends, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.ext.asyncio import AsyncSession

from auth import set_auth_cookie
from config.settings import settings
from database import get_db
from dependencies import get_oauth
from services.auth_service import AuthService, GOOGLE_PROVIDER
from utils.errors import AuthenticationFailure

logger = logging.getLogger(__name__)

# Create Google auth router
google_auth_router = APIRouter(prefix="/api/auth/google", tags=["google-auth"])


def _sign_in_error_redirect() -> RedirectResponse:
    return RedirectResponse(url=f"{settings.get_app_url()}/sign-in?error=OAuthSignin", status_code=303)


@google_auth_router.get("/login")
async def google_login(request: Request, oauth: OAuth = Depends(get_oauth)):
    """
    Initiate Google OAuth login flow.
    Redirects user to Google consent screen; Authlib keeps the state in
    the signed session cookie.
    """
    return await oauth.google.authorize_redirect(request, settings.google_redirect_uri)


@google_auth_router.get("/callback")
async def google_auth_callback(
    request: Request,
    oauth: OAuth = Depends(get_oauth),
    db: AsyncSession = Depends(get_db),
):
    """
    Handle Google OAuth callback.
    Exchanges the code, resolves or creates the user, sets the session cookie
    and redirects to the dashboard.
    """
    try:
        token = await oauth.google.authorize_access_token(request)
    except OAuthError as e:
        logger.warning(f"Google OAuth exchange failed: {e.error}")
        return _sign_in_error_redirect()

    userinfo = token.get("userinfo")
    if not userinfo:
        userinfo = await oauth.google.userinfo(token=token)

    try:
        grant = await AuthService(db).authenticate(GOOGLE_PROVIDER, dict(userinfo))
    except AuthenticationFailure as e:
        logger.warning(f"Google sign-in rejected: {e.message}")
        return _sign_in_error_redirect()

    response = RedirectResponse(url=f"{settings.get_app_url()}/dashboard", status_code=303)
    set_auth_cookie(response, grant.token)
    return response
