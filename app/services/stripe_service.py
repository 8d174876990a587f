"""Stripe payment service: checkout sessions on organizations' Connect accounts."""

import stripe

from core.config import config as settings
from core.logging import get_logger

logger = get_logger(__name__)

# Initialize Stripe
stripe.api_key = settings.STRIPE_SECRET_KEY


class StripeService:
    """Service for interacting with Stripe API."""

    # ============== Customer Management ==============

    @staticmethod
    async def create_customer(
        email: str,
        stripe_account: str,
        name: str = None,
        metadata: dict = None,
    ) -> str:
        """Create a customer on a connected account."""
        try:
            customer = stripe.Customer.create(
                email=email,
                name=name or None,
                metadata=metadata or {},
                stripe_account=stripe_account,
            )
            logger.info(f"Created Stripe customer {customer.id} on account {stripe_account}")
            return customer.id
        except stripe.StripeError as e:
            logger.error(f"Failed to create Stripe customer: {e}")
            raise

    # ============== Checkout ==============

    @staticmethod
    async def create_checkout_session(
        amount_cents: int,
        currency: str,
        product_name: str,
        metadata: dict,
        stripe_account: str,
        success_url: str,
        cancel_url: str,
        customer_id: str = None,
        description: str = None,
        image_url: str = None,
        application_fee_amount: int = 0,
    ) -> dict:
        """
        Create a one-time payment Checkout Session as a direct charge.

        The same metadata is stored on the session and on its PaymentIntent so
        the enrollment can be replayed from either webhook object.
        """
        product_data = {"name": product_name}
        if description:
            product_data["description"] = description
        if image_url:
            product_data["images"] = [image_url]

        payment_intent_data = {"metadata": metadata}
        if application_fee_amount > 0:
            payment_intent_data["application_fee_amount"] = application_fee_amount

        try:
            session = stripe.checkout.Session.create(
                mode="payment",
                payment_method_types=["card"],
                line_items=[
                    {
                        "price_data": {
                            "currency": currency,
                            "product_data": product_data,
                            "unit_amount": amount_cents,
                        },
                        "quantity": 1,
                    }
                ],
                customer=customer_id,
                metadata=metadata,
                payment_intent_data=payment_intent_data,
                success_url=success_url,
                cancel_url=cancel_url,
                stripe_account=stripe_account,
            )
            logger.info(f"Created Checkout Session {session.id} on account {stripe_account}")
            return {"id": session.id, "url": session.url}
        except stripe.StripeError as e:
            logger.error(f"Failed to create Checkout Session: {e}")
            raise

    @staticmethod
    async def retrieve_checkout_session(
        session_id: str, stripe_account: str = None
    ) -> dict:
        """Fetch a Checkout Session as a plain dict."""
        try:
            session = stripe.checkout.Session.retrieve(
                session_id, stripe_account=stripe_account
            )
            return {
                "id": session.id,
                "payment_status": session.payment_status,
                "amount_total": session.amount_total,
                "payment_intent": session.get("payment_intent"),
                "metadata": dict(session.get("metadata") or {}),
            }
        except stripe.StripeError as e:
            logger.error(f"Failed to retrieve Checkout Session {session_id}: {e}")
            raise

    # ============== Webhook ==============

    @staticmethod
    def construct_event(payload: bytes, sig_header: str) -> stripe.Event:
        """Construct and verify a Stripe webhook event."""
        try:
            return stripe.Webhook.construct_event(
                payload, sig_header, settings.STRIPE_WEBHOOK_SECRET
            )
        except ValueError as e:
            logger.error(f"Invalid webhook payload: {e}")
            raise
        except stripe.SignatureVerificationError as e:
            logger.error(f"Invalid webhook signature: {e}")
            raise
