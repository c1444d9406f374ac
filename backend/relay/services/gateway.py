import logging

import stripe

from relay.core.config import RelayConfig
from relay.schemas.events import CheckoutSession
from relay.services.reservation import ReservationRequest

logger = logging.getLogger(__name__)


class GatewayError(Exception):
    pass


def build_client(config: RelayConfig) -> stripe.StripeClient:
    """One Stripe client per process, with a bounded timeout and no SDK retries."""
    return stripe.StripeClient(
        config.stripe_secret_key,
        http_client=stripe.RequestsClient(timeout=config.http_timeout),
        max_network_retries=0,
    )


class StripeGateway:
    def __init__(self, config: RelayConfig, client: stripe.StripeClient | None = None):
        self.config = config
        self.client = client or build_client(config)

    def find_session_by_payment_intent(
        self, payment_intent_id: str
    ) -> CheckoutSession | None:
        try:
            sessions = self.client.checkout.sessions.list(
                params={"payment_intent": payment_intent_id, "limit": 1}
            )
        except stripe.StripeError as e:
            logger.error(f"Checkout session lookup for {payment_intent_id} failed: {e}")
            raise GatewayError(f"Checkout session lookup failed: {e.user_message or e}")

        if not sessions.data:
            return None
        return CheckoutSession.model_validate(sessions.data[0].to_dict())

    def create_checkout_session(self, reservation: ReservationRequest) -> CheckoutSession:
        params = {
            "mode": "payment",
            "payment_method_types": list(self.config.payment_method_types),
            "line_items": [
                {
                    "price_data": {
                        "currency": self.config.currency,
                        "product_data": {"name": self.config.product_name},
                        "unit_amount": reservation.amount,
                    },
                    "quantity": 1,
                }
            ],
            "success_url": self.config.success_url,
            "cancel_url": self.config.cancel_url,
            "metadata": dict(reservation.metadata),
        }
        if reservation.email:
            params["customer_email"] = reservation.email

        try:
            session = self.client.checkout.sessions.create(params=params)
        except stripe.StripeError as e:
            logger.error(f"Checkout session creation failed: {e}")
            raise GatewayError(e.user_message or "Checkout session creation failed")

        logger.info(f"Created checkout session {session.id}")
        return CheckoutSession.model_validate(session.to_dict())
