"""Stripe card payments for domain mints."""
import json
import logging
import uuid
from typing import Optional

import stripe
from pydantic import BaseModel

from . import config

logger = logging.getLogger(__name__)

SUCCEEDED_EVENT = "payment_intent.succeeded"


class WebhookVerificationError(Exception):
    """Raised when a webhook cannot be trusted."""


class MissingMetadataError(Exception):
    """Raised when a succeeded PaymentIntent carries no domain/category."""

    def __init__(self, payment_intent_id: str, missing: list[str]):
        self.payment_intent_id = payment_intent_id
        self.missing = missing
        super().__init__(f"PaymentIntent {payment_intent_id} missing metadata: {', '.join(missing)}")


class MintRequest(BaseModel):
    payment_intent_id: str
    event_id: Optional[str] = None
    domain: str
    category: str
    amount: int = 0
    currency: str = config.PRICE_CURRENCY
    wallet: Optional[str] = None


class StripeGateway:
    """Create PaymentIntents and verify Stripe webhook deliveries."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        webhook_secret: Optional[str] = None,
        mock_mode: bool = False,
    ):
        self.secret_key = secret_key or config.STRIPE_SECRET_KEY
        self.webhook_secret = webhook_secret if webhook_secret is not None else config.WEBHOOK_SECRET_KEY
        self.mock_mode = mock_mode or not self.secret_key

        if self.secret_key:
            stripe.api_key = self.secret_key
            stripe.api_version = config.STRIPE_API_VERSION
        else:
            logger.warning("Stripe gateway initialized without secret key (mock mode)")

    def create_intent(
        self,
        domain: str,
        category: str,
        wallet: Optional[str] = None,
    ) -> dict:
        """
        Create a PaymentIntent whose metadata carries the name to mint.

        Returns:
            {"id": str, "client_secret": str, "amount": int, "currency": str}
        """
        metadata = {"domain": domain, "category": category}
        if wallet:
            metadata["wallet"] = wallet

        if self.mock_mode:
            return self._mock_intent()

        intent = stripe.PaymentIntent.create(
            amount=config.PRICE_CENTS,
            currency=config.PRICE_CURRENCY,
            automatic_payment_methods={"enabled": True},
            metadata=metadata,
        )
        logger.info(f"Created PaymentIntent {intent['id']} for {domain} ({category})")
        return {
            "id": intent["id"],
            "client_secret": intent["client_secret"],
            "amount": intent["amount"],
            "currency": intent["currency"],
        }

    def construct_event(self, payload: bytes, sig_header: Optional[str]) -> dict:
        """Verify the Stripe-Signature header and decode the event body."""
        if not payload or not sig_header:
            raise WebhookVerificationError("Missing payload or Stripe-Signature header")
        if not self.webhook_secret:
            raise WebhookVerificationError("Webhook signing secret is not configured")

        try:
            stripe.Webhook.construct_event(payload, sig_header, self.webhook_secret)
        except stripe.SignatureVerificationError as e:
            raise WebhookVerificationError(str(e)) from e
        except ValueError as e:
            raise WebhookVerificationError(f"Invalid payload: {e}") from e

        # Signature checked above, work with plain dicts from here on
        return json.loads(payload)

    def extract_mint_request(self, event: dict) -> MintRequest:
        """Pull the mint parameters out of a payment_intent.succeeded event."""
        intent = event["data"]["object"]
        metadata = intent.get("metadata") or {}

        missing = [key for key in ("domain", "category") if not metadata.get(key)]
        if missing:
            raise MissingMetadataError(intent["id"], missing)

        return MintRequest(
            payment_intent_id=intent["id"],
            event_id=event.get("id"),
            domain=metadata["domain"],
            category=metadata["category"],
            amount=intent.get("amount") or 0,
            currency=intent.get("currency") or config.PRICE_CURRENCY,
            wallet=metadata.get("wallet"),
        )

    def _mock_intent(self) -> dict:
        """Mock PaymentIntent for development without Stripe keys."""
        intent_id = "pi_mock_" + uuid.uuid4().hex[:24]
        return {
            "id": intent_id,
            "client_secret": f"{intent_id}_secret_{uuid.uuid4().hex[:24]}",
            "amount": config.PRICE_CENTS,
            "currency": config.PRICE_CURRENCY,
            "mock": True,
        }


# Global gateway instance
gateway = StripeGateway()
