"""
Stripe Gateway - the process-wide Stripe API client

Constructed once at startup and handed to the billing services, so tests
can swap in a fake. Blocking SDK calls run in a worker thread.
"""

import asyncio
import logging
from typing import Any, Dict

import stripe

from models.billing_event import SubscriptionPayload
from utils.errors import DownstreamFailure

logger = logging.getLogger(__name__)


class StripeGateway:
    """Thin async wrapper over the Stripe calls the billing service makes."""

    def __init__(self, client: stripe.StripeClient):
        self.client = client

    @classmethod
    def from_api_key(cls, api_key: str) -> "StripeGateway":
        return cls(stripe.StripeClient(api_key))

    async def create_checkout_session(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Create a hosted Checkout session. Returns {"id", "url"}."""
        try:
            session = await asyncio.to_thread(self.client.v1.checkout.sessions.create, params)
        except stripe.StripeError as e:
            logger.error(f"Stripe checkout session creation failed: {e}")
            raise DownstreamFailure("Payment provider request failed") from e
        return {"id": session.id, "url": session.url}

    async def create_portal_session(self, params: Dict[str, Any]) -> Dict[str, Any]:
        """Create a Billing Portal session. Returns {"url"}."""
        try:
            session = await asyncio.to_thread(self.client.v1.billing_portal.sessions.create, params)
        except stripe.StripeError as e:
            logger.error(f"Stripe billing portal session creation failed: {e}")
            raise DownstreamFailure("Payment provider request failed") from e
        return {"url": session.url}

    async def retrieve_subscription(self, subscription_id: str) -> SubscriptionPayload:
        """Fetch the current state of a subscription."""
        try:
            subscription = await asyncio.to_thread(self.client.v1.subscriptions.retrieve, subscription_id)
        except stripe.StripeError as e:
            logger.error(f"Stripe subscription retrieval failed for {subscription_id}: {e}")
            raise DownstreamFailure("Payment provider request failed") from e
        return SubscriptionPayload.model_validate(subscription.to_dict())
