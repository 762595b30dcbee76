"""
Billing Router - API endpoints for Stripe billing integration
Webhook is defined FIRST; it authenticates by signature, not by session
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from auth import get_current_user
from config.settings import settings
from database import get_db
from dependencies import get_optional_stripe_gateway, get_stripe_gateway
from models.user import Identity
from services.billing_service import BillingService
from services.stripe_gateway import StripeGateway
from services.webhook_service import SubscriptionEventProcessor
from utils.errors import SignatureVerificationFailure, ValidationFailure
from utils.responses import success_response

logger = logging.getLogger(__name__)

# Create billing router
billing_router = APIRouter(prefix="/api/billing", tags=["billing"])


class CheckoutRequest(BaseModel):
    price_id: str


@billing_router.post("/webhook")
async def stripe_webhook(
    request: Request,
    db: AsyncSession = Depends(get_db),
    gateway: Optional[StripeGateway] = Depends(get_optional_stripe_gateway),
):
    """
    Handle Stripe webhook events with signature verification.

    Responses follow Stripe's delivery contract:
    - 200 {"received": true} once the event is handled or deliberately skipped
    - 400 when the signature is missing or invalid (body is never parsed)
    - 500 when applying the event failed, so Stripe redelivers it later
    """
    # Raw body is required for signature verification
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    processor = SubscriptionEventProcessor(
        db,
        gateway,
        webhook_secret=settings.stripe_webhook_secret,
        tolerance=settings.stripe_webhook_tolerance,
    )

    try:
        await processor.handle(payload, signature)
    except (SignatureVerificationFailure, ValidationFailure) as e:
        return JSONResponse(status_code=400, content={"error": e.message})
    except Exception as e:
        logger.error(f"Webhook handler failed: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Webhook handler failed"})

    return JSONResponse(status_code=200, content={"received": True})


@billing_router.post("/checkout")
async def create_checkout_session(
    request: CheckoutRequest,
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    """
    Create a Stripe Checkout session for the signed-in user.

    Returns:
        {"session_id", "url"} of the hosted checkout page
    """
    session = await BillingService(db, gateway).checkout_for_user(current_user.user_id, request.price_id)
    return success_response(session.model_dump())


@billing_router.post("/portal")
async def create_billing_portal_session(
    current_user: Identity = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
    gateway: StripeGateway = Depends(get_stripe_gateway),
):
    """
    Create a Stripe Billing Portal session for the signed-in user.

    Returns:
        {"url"} of the hosted portal page
    """
    session = await BillingService(db, gateway).portal_for_user(current_user.user_id)
    return success_response(session.model_dump())
