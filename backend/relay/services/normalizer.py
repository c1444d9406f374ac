import logging
from collections.abc import Callable

from relay.schemas.events import CheckoutSession, EventKind, ProviderEvent
from relay.schemas.payloads import (
    CancellationPayload,
    CanonicalPayload,
    CheckoutPayload,
    CheckoutPayloadType,
)

logger = logging.getLogger(__name__)

# convenience-store payment; settles days after the session completes
PAY_AT_STORE_METHOD = "konbini"

ASYNC_PAYMENT_SUCCEEDED = "checkout.session.async_payment_succeeded"
PROVISIONAL_RESERVATION = "provisional_reservation"

SessionLookup = Callable[[str], CheckoutSession | None]


def is_pay_at_store(session: CheckoutSession) -> bool:
    return PAY_AT_STORE_METHOD in session.payment_method_types


def build_checkout_payload(
    payload_type: CheckoutPayloadType,
    session: CheckoutSession,
    pending: bool,
    payment_intent: str = "",
) -> CheckoutPayload:
    if pending and is_pay_at_store(session):
        method = PAY_AT_STORE_METHOD
    else:
        method = session.payment_method_types[0] if session.payment_method_types else ""
    return CheckoutPayload(
        type=payload_type,
        session_id=session.id,
        payment_intent=session.payment_intent or payment_intent,
        payment_status="pending" if pending else "complete",
        payment_method=method,
        metadata=dict(session.metadata),
    )


def build_provisional_payload(session: CheckoutSession) -> CheckoutPayload:
    return build_checkout_payload(PROVISIONAL_RESERVATION, session, pending=True)


def normalize(event: ProviderEvent, find_session: SessionLookup) -> CanonicalPayload | None:
    """Map a verified event to the downstream payload, or None when there is
    nothing to forward.

    Payment-intent events carry no booking metadata, so a succeeded intent is
    matched back to the checkout session that created it via find_session.
    """
    kind = event.kind

    if kind is EventKind.CHECKOUT_SESSION_COMPLETED:
        session = event.session()
        return build_checkout_payload(
            EventKind.CHECKOUT_SESSION_COMPLETED.value,
            session,
            pending=is_pay_at_store(session),
        )

    if kind is EventKind.PAYMENT_SUCCEEDED:
        intent = event.payment_intent()
        session = find_session(intent.id)
        if session is None:
            logger.info(f"No checkout session found for payment intent {intent.id}")
            return None
        return build_checkout_payload(
            ASYNC_PAYMENT_SUCCEEDED, session, pending=False, payment_intent=intent.id
        )

    if kind is EventKind.PAYMENT_CANCELED:
        intent = event.payment_intent()
        email = intent.receipt_email or intent.metadata.get("email") or ""
        logger.info(f"Payment intent {intent.id} canceled")
        return CancellationPayload(email=email, payment_intent=intent.id)

    logger.debug(f"Nothing to forward for event type {event.type}")
    return None
