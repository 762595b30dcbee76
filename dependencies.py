"""
Process-wide clients and the FastAPI dependencies that hand them out

build_clients() runs once at startup; routes receive the clients through
get_stripe_gateway / get_oauth. Tests replace get_optional_stripe_gateway and
get_oauth via dependency_overrides.
"""

import logging
from typing import Optional

from authlib.integrations.starlette_client import OAuth
from fastapi import Depends, FastAPI, Request

from config.settings import settings
from services.stripe_gateway import StripeGateway
from utils.errors import ConfigurationError

logger = logging.getLogger(__name__)

GOOGLE_METADATA_URL = "https://accounts.google.com/.well-known/openid-configuration"


def build_stripe_gateway() -> Optional[StripeGateway]:
    if not settings.stripe_secret_key:
        logger.warning("STRIPE_SECRET_KEY is not set. Stripe functionality will be unavailable.")
        return None
    return StripeGateway.from_api_key(settings.stripe_secret_key)


def build_oauth() -> Optional[OAuth]:
    if not (settings.google_client_id and settings.google_client_secret and settings.google_redirect_uri):
        logger.warning("Google OAuth credentials not configured. Google SSO will be unavailable.")
        return None

    oauth = OAuth()
    oauth.register(
        name="google",
        client_id=settings.google_client_id,
        client_secret=settings.google_client_secret,
        server_metadata_url=GOOGLE_METADATA_URL,
        client_kwargs={
            "scope": "openid email profile"
        }
    )
    return oauth


def build_clients(app: FastAPI) -> None:
    """Construct the shared clients once and keep them on app.state."""
    app.state.stripe_gateway = build_stripe_gateway()
    app.state.oauth = build_oauth()


def get_optional_stripe_gateway(request: Request) -> Optional[StripeGateway]:
    """The shared gateway, or None when Stripe is not configured."""
    return getattr(request.app.state, "stripe_gateway", None)


def get_stripe_gateway(
    gateway: Optional[StripeGateway] = Depends(get_optional_stripe_gateway),
) -> StripeGateway:
    if gateway is None:
        raise ConfigurationError("Billing is not configured")
    return gateway


def get_oauth(request: Request) -> OAuth:
    oauth = getattr(request.app.state, "oauth", None)
    if oauth is None:
        raise ConfigurationError("Google sign-in is not configured")
    return oauth
