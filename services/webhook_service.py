"""
Subscription Event Processor - applies Stripe webhook events to user records

Each delivery is verified against the webhook signing secret before the
body is parsed, classified into one of the known event kinds, correlated
to a local user, and applied as a single-row overwrite.
"""

import logging
from typing import Optional, Union

import stripe
from pydantic import BaseModel, ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from crud.user import UserRepository
from database_models import Plan, User
from models.billing_event import (
    BillingEvent,
    CheckoutCompletedEvent,
    InvoicePaidEvent,
    InvoicePaymentFailedEvent,
    SubscriptionCreatedEvent,
    SubscriptionDeletedEvent,
    SubscriptionPayload,
    SubscriptionUpdatedEvent,
    parse_billing_event,
)
from services.billing_service import plan_for_price_id
from services.stripe_gateway import StripeGateway
from utils.errors import (
    ConfigurationError,
    CorrelationMiss,
    SignatureVerificationFailure,
    ValidationFailure,
)

logger = logging.getLogger(__name__)

APPLIED = "applied"
IGNORED = "ignored"
UNCORRELATED = "uncorrelated"
STALE = "stale"


class WebhookOutcome(BaseModel):
    event_id: str
    event_type: str
    status: str
    user_id: Optional[int] = None


def subscription_fields(subscription: SubscriptionPayload, plan: Optional[Plan] = None) -> dict:
    """User columns overwritten from a subscription snapshot."""
    return {
        "stripe_subscription_id": subscription.id,
        "stripe_customer_id": subscription.customer,
        "stripe_price_id": subscription.price_id,
        "stripe_current_period_end": subscription.period_end,
        "stripe_subscription_status": subscription.status,
        "plan": plan if plan is not None else plan_for_price_id(subscription.price_id),
    }


class SubscriptionEventProcessor:
    """
    Handles a single Stripe webhook delivery.

    Instances are per-request; the gateway is the process-wide Stripe client,
    or None when billing is not configured. Only events that need a
    subscription lookup touch it.
    """

    def __init__(
        self,
        db: AsyncSession,
        gateway: Optional[StripeGateway],
        webhook_secret: Optional[str],
        tolerance: int = stripe.Webhook.DEFAULT_TOLERANCE,
    ):
        self.db = db
        self.users = UserRepository(db)
        self.gateway = gateway
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    def verify(self, raw_body: bytes, signature_header: Optional[str]) -> BillingEvent:
        """
        Check the Stripe-Signature header against the raw body, then parse it.

        Raises:
            SignatureVerificationFailure: secret or header missing, or mismatch
            ValidationFailure: signed body is not a well-formed event
        """
        if not self.webhook_secret:
            logger.error("STRIPE_WEBHOOK_SECRET is not set. Rejecting webhook delivery.")
            raise SignatureVerificationFailure("Webhook secret not configured")
        if not signature_header:
            logger.warning("Webhook delivery without Stripe-Signature header")
            raise SignatureVerificationFailure("Missing signature header")

        # The signature covers the text of the body, not its bytes repr
        try:
            payload = raw_body.decode("utf-8") if isinstance(raw_body, (bytes, bytearray)) else raw_body
        except UnicodeDecodeError as e:
            logger.warning("Webhook body is not valid UTF-8")
            raise SignatureVerificationFailure("Invalid signature") from e

        try:
            stripe.WebhookSignature.verify_header(
                payload, signature_header, self.webhook_secret, self.tolerance
            )
        except (stripe.SignatureVerificationError, ValueError) as e:
            logger.warning(f"Stripe webhook signature verification failed: {e}")
            raise SignatureVerificationFailure("Invalid signature") from e

        try:
            return parse_billing_event(payload)
        except ValidationError as e:
            logger.error(f"Signed webhook body could not be parsed: {e}")
            raise ValidationFailure("Invalid payload") from e

    async def handle(self, raw_body: bytes, signature_header: Optional[str]) -> WebhookOutcome:
        """
        Verify, classify and apply one delivery.

        Errors raised while applying roll back the session and propagate so
        the caller can report failure and Stripe redelivers.
        """
        event = self.verify(raw_body, signature_header)
        logger.info(f"Processing Stripe webhook event: {event.type} (id={event.id})")

        try:
            outcome = await self.dispatch(event)
            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Stripe event {event.id} {outcome.status} (user={outcome.user_id})")
        return outcome

    async def dispatch(self, event: BillingEvent) -> WebhookOutcome:
        try:
            return await self._dispatch(event)
        except CorrelationMiss as miss:
            logger.info(f"Stripe event {event.id} skipped: {miss.message}")
            return self._outcome(event, UNCORRELATED)

    async def _dispatch(self, event: BillingEvent) -> WebhookOutcome:
        if isinstance(event, CheckoutCompletedEvent):
            return await self._on_checkout_completed(event)
        if isinstance(event, (SubscriptionCreatedEvent, SubscriptionUpdatedEvent)):
            return await self._on_subscription_changed(event)
        if isinstance(event, SubscriptionDeletedEvent):
            return await self._on_subscription_deleted(event)
        if isinstance(event, InvoicePaidEvent):
            return await self._on_invoice_paid(event)
        if isinstance(event, InvoicePaymentFailedEvent):
            return await self._on_invoice_payment_failed(event)

        logger.info(f"Ignoring Stripe event type {event.type}")
        return self._outcome(event, IGNORED)

    # ------------------------------------------------------------------
    # Event handlers
    # ------------------------------------------------------------------

    async def _on_checkout_completed(self, event: CheckoutCompletedEvent) -> WebhookOutcome:
        session = event.payload
        if session.mode != "subscription" or not session.subscription:
            logger.info(f"Checkout session {session.id} is not a subscription checkout")
            return self._outcome(event, IGNORED)

        user = await self._correlate(session.user_id)
        subscription = await self._retrieve_subscription(session.subscription)
        return await self._apply(event, user, subscription_fields(subscription))

    async def _on_subscription_changed(
        self, event: Union[SubscriptionCreatedEvent, SubscriptionUpdatedEvent]
    ) -> WebhookOutcome:
        subscription = event.payload
        user = await self._correlate(subscription.user_id)
        return await self._apply(event, user, subscription_fields(subscription))

    async def _on_subscription_deleted(self, event: SubscriptionDeletedEvent) -> WebhookOutcome:
        subscription = event.payload
        user = await self._correlate(subscription.user_id)
        return await self._apply(event, user, subscription_fields(subscription, plan=Plan.FREE))

    async def _on_invoice_paid(self, event: InvoicePaidEvent) -> WebhookOutcome:
        subscription_id = event.payload.subscription_id
        if not subscription_id:
            logger.info(f"Invoice {event.payload.id} is not tied to a subscription")
            return self._outcome(event, IGNORED)

        subscription = await self._retrieve_subscription(subscription_id)
        user = await self._correlate(subscription.user_id)
        return await self._apply(event, user, {
            "stripe_price_id": subscription.price_id,
            "stripe_current_period_end": subscription.period_end,
            "stripe_subscription_status": subscription.status,
            "plan": plan_for_price_id(subscription.price_id),
        })

    async def _on_invoice_payment_failed(self, event: InvoicePaymentFailedEvent) -> WebhookOutcome:
        subscription_id = event.payload.subscription_id
        if not subscription_id:
            logger.info(f"Invoice {event.payload.id} is not tied to a subscription")
            return self._outcome(event, IGNORED)

        subscription = await self._retrieve_subscription(subscription_id)
        user = await self._correlate(subscription.user_id)

        # Plan stays as is; Stripe's dunning ends in subscription.updated/deleted
        logger.warning(
            f"Invoice payment failed for user {user.id}, subscription {subscription.id} "
            f"(status={subscription.status})"
        )
        return await self._apply(event, user, {
            "stripe_subscription_status": subscription.status,
        })

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _retrieve_subscription(self, subscription_id: str) -> SubscriptionPayload:
        if self.gateway is None:
            raise ConfigurationError("Billing is not configured")
        return await self.gateway.retrieve_subscription(subscription_id)

    async def _correlate(self, user_id: Optional[int]) -> User:
        if user_id is None:
            raise CorrelationMiss("no user reference")

        user = await self.users.get_user_by_id(user_id)
        if user is None:
            raise CorrelationMiss(f"unknown user {user_id}")
        return user

    async def _apply(self, event: BillingEvent, user: User, updates: dict) -> WebhookOutcome:
        last_applied = user.stripe_event_created
        if last_applied is not None and event.created < last_applied:
            logger.info(
                f"Stripe event {event.id} (created={event.created}) is older than the last "
                f"applied event ({last_applied}) for user {user.id}; skipping"
            )
            return self._outcome(event, STALE, user.id)

        updates["stripe_event_created"] = event.created
        await self.users.update_user(user, updates)
        return self._outcome(event, APPLIED, user.id)

    @staticmethod
    def _outcome(event: BillingEvent, status: str, user_id: Optional[int] = None) -> WebhookOutcome:
        return WebhookOutcome(event_id=event.id, event_type=event.type, status=status, user_id=user_id)
