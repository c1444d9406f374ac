"""Payloads sent to the downstream ingestion endpoint.

Contract version 1: flat fields, a single ``payment_method`` string and the
relay's own ``pending``/``complete`` status. Bump ``CONTRACT_VERSION`` when the
shape changes so the downstream script can tell revisions apart.

Ordering: sessions offer both card and konbini, so every
``checkout.session.completed`` arrives as ``pending``, and a card payment is
confirmed by a separate ``checkout.session.async_payment_succeeded`` payload
with status ``complete``. Stripe does not order webhook deliveries, so the
``complete`` payload may arrive first. The downstream script must key
reservations on ``sessionId`` and never move a ``complete`` reservation back
to ``pending``.
"""
from typing import Literal, Union

from pydantic import BaseModel, ConfigDict, Field

CONTRACT_VERSION = 1

CheckoutPayloadType = Literal[
    "checkout.session.completed",
    "checkout.session.async_payment_succeeded",
    "provisional_reservation",
]
PaymentStatus = Literal["pending", "complete"]


class CheckoutPayload(BaseModel):
    model_config = ConfigDict(populate_by_name=True, frozen=True)

    type: CheckoutPayloadType
    session_id: str = Field(..., alias="sessionId")
    payment_intent: str = ""
    payment_status: PaymentStatus
    payment_method: str = ""
    metadata: dict[str, str] = Field(default_factory=dict)
    contract_version: int = CONTRACT_VERSION


class CancellationPayload(BaseModel):
    model_config = ConfigDict(frozen=True)

    type: Literal["cancel_reservation"] = "cancel_reservation"
    email: str = ""
    payment_intent: str
    contract_version: int = CONTRACT_VERSION


CanonicalPayload = Union[CheckoutPayload, CancellationPayload]
