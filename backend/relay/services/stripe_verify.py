import logging

import stripe
from pydantic import ValidationError

from relay.schemas.events import ProviderEvent

logger = logging.getLogger(__name__)


class WebhookError(Exception):
    pass


class StripeSignatureError(WebhookError):
    pass


class InvalidPayloadError(WebhookError):
    pass


def verify(
    raw_body: bytes, header: str | None, secret: str, tolerance: int = 300
) -> ProviderEvent:
    """
    Verify the Stripe-Signature header over the exact request bytes, then
    parse them. Raise WebhookError if either step fails.
    """
    if not header:
        raise StripeSignatureError("Missing Stripe signature")
    if not secret:
        # an empty key would let anyone sign events
        raise StripeSignatureError("Webhook signing secret not configured")

    try:
        payload = raw_body.decode("utf-8")
    except UnicodeDecodeError:
        raise InvalidPayloadError("Body is not valid UTF-8")

    try:
        stripe.WebhookSignature.verify_header(payload, header, secret, tolerance)
    except stripe.SignatureVerificationError as e:
        logger.warning(f"Stripe signature verification failed: {e.user_message}")
        raise StripeSignatureError(e.user_message or "Invalid Stripe signature")

    try:
        event = ProviderEvent.model_validate_json(raw_body)
        event.check_object()
    except ValidationError as ve:
        logger.warning(f"Signed webhook body is not an event: {ve.error_count()} errors")
        raise InvalidPayloadError("Invalid payload")

    logger.info(f"Verified Stripe event {event.id} ({event.type})")
    return event
