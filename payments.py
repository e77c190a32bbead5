import logging
from functools import lru_cache
from typing import Any, Dict, Optional

import stripe

from config import CLIENT_DOMAIN, PREMIUM_CURRENCY, STRIPE_SECRET_KEY

logger = logging.getLogger(__name__)


class StripeGateway:
    """Thin wrapper over Stripe Checkout; all calls block and belong in a threadpool."""

    def __init__(self, api_key: Optional[str]):
        self.api_key = api_key

    def create_checkout_session(self, params: Dict[str, Any]):
        return stripe.checkout.Session.create(api_key=self.api_key, **params)

    def retrieve_session(self, session_id: str):
        return stripe.checkout.Session.retrieve(session_id, api_key=self.api_key)


@lru_cache
def get_payments() -> StripeGateway:
    if not STRIPE_SECRET_KEY:
        logger.warning("STRIPE_SECRET_KEY not set; checkout calls will fail")
    return StripeGateway(STRIPE_SECRET_KEY)


def premium_checkout_params(email: str, name: Optional[str], price: int) -> Dict[str, Any]:
    return {
        "payment_method_types": ["card"],
        "line_items": [{
            "price_data": {
                "currency": PREMIUM_CURRENCY,
                "product_data": {
                    "name": "Digital Life Lessons Premium",
                    "description": "Lifetime access to premium lessons",
                },
                "unit_amount": price * 100,
            },
            "quantity": 1,
        }],
        "mode": "payment",
        "customer_email": email,
        "metadata": {"email": email, "name": name or ""},
        "success_url": CLIENT_DOMAIN + "/payment-success?session_id={CHECKOUT_SESSION_ID}",
        "cancel_url": CLIENT_DOMAIN + "/pricing",
    }


def session_email(session) -> Optional[str]:
    email = getattr(session, "customer_email", None)
    if email:
        return email
    details = getattr(session, "customer_details", None)
    return getattr(details, "email", None) if details else None
