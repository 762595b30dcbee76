"""
Billing Service - Stripe Checkout and Billing Portal sessions
"""

import logging
from typing import Dict, Optional

from pydantic import BaseModel
from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from crud.user import UserRepository
from database_models import Plan
from models.billing_event import USER_ID_METADATA_KEY
from services.stripe_gateway import StripeGateway
from utils.errors import AuthenticationFailure, ValidationFailure

logger = logging.getLogger(__name__)


def plan_for_price_id(price_id: Optional[str], prices: Optional[Dict[str, Plan]] = None) -> Plan:
    """
    Map a Stripe price id to the plan it grants.

    Args:
        price_id: Stripe price id (may be None)
        prices: price id -> Plan lookup; defaults to the configured prices

    Returns:
        The matching paid plan, or Plan.FREE for anything unrecognised
    """
    if prices is None:
        prices = settings.price_plan_map()
    if not price_id:
        return Plan.FREE
    return prices.get(price_id, Plan.FREE)


class CheckoutSession(BaseModel):
    session_id: str
    url: Optional[str] = None


class PortalSession(BaseModel):
    url: str


class BillingService:
    """
    Service class for starting and managing subscriptions on Stripe.
    Nothing is written locally here; the webhook processor records the
    outcome once Stripe reports it.
    """

    def __init__(self, db: AsyncSession, gateway: StripeGateway):
        """
        Initialize the billing service.

        Args:
            db: AsyncSession instance for database operations
            gateway: Process-wide Stripe gateway
        """
        self.db = db
        self.gateway = gateway

    async def start_checkout(self, user_id: int, user_email: str, price_id: str) -> CheckoutSession:
        """
        Create a subscription-mode Checkout session for a user.

        The internal user id is attached twice: as client_reference_id on the
        session and as user_id metadata on the resulting subscription, so
        later webhook events can be correlated without a mapping table.

        Raises:
            ValidationFailure: price_id is not one of the configured plans
            DownstreamFailure: Stripe rejected the request
        """
        if not price_id or plan_for_price_id(price_id) == Plan.FREE:
            raise ValidationFailure("Unknown price")

        app_url = settings.get_app_url()
        params = {
            "payment_method_types": ["card"],
            "mode": "subscription",
            "customer_email": user_email,
            "client_reference_id": str(user_id),
            "line_items": [{
                "price": price_id,
                "quantity": 1,
            }],
            "success_url": f"{app_url}/dashboard?session_id={{CHECKOUT_SESSION_ID}}",
            "cancel_url": f"{app_url}/pricing",
            "subscription_data": {
                "metadata": {USER_ID_METADATA_KEY: str(user_id)},
            },
        }

        session = await self.gateway.create_checkout_session(params)
        logger.info(f"Checkout session {session['id']} created for user {user_id}")
        return CheckoutSession(session_id=session["id"], url=session.get("url"))

    async def open_portal(self, customer_id: Optional[str]) -> PortalSession:
        """
        Create a Billing Portal session for an existing Stripe customer.

        Raises:
            ValidationFailure: no customer id
            DownstreamFailure: Stripe rejected the request
        """
        if not customer_id:
            raise ValidationFailure("No billing account found for this user")

        session = await self.gateway.create_portal_session({
            "customer": customer_id,
            "return_url": f"{settings.get_app_url()}/dashboard/billing",
        })
        return PortalSession(url=session["url"])

    async def _get_user(self, user_id: int):
        user = await UserRepository(self.db).get_user_by_id(user_id)
        if not user:
            raise AuthenticationFailure("Unauthenticated")
        return user

    async def checkout_for_user(self, user_id: int, price_id: str) -> CheckoutSession:
        """Start checkout for a signed-in user, using their stored email."""
        user = await self._get_user(user_id)
        return await self.start_checkout(user.id, user.email, price_id)

    async def portal_for_user(self, user_id: int) -> PortalSession:
        """Open the billing portal for a signed-in user's Stripe customer."""
        user = await self._get_user(user_id)
        return await self.open_portal(user.stripe_customer_id)
