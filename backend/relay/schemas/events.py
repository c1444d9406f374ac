from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class EventKind(str, Enum):
    CHECKOUT_SESSION_COMPLETED = "checkout.session.completed"
    PAYMENT_SUCCEEDED = "payment_intent.succeeded"
    PAYMENT_CANCELED = "payment_intent.canceled"
    OTHER = "other"


class CustomerDetails(BaseModel):
    email: str | None = None


class StripeResource(BaseModel):
    """Fields shared by checkout sessions and payment intents."""

    id: str
    payment_intent: str | None = None
    payment_status: str | None = None
    payment_method_types: list[str] = Field(default_factory=list)
    metadata: dict[str, str] = Field(default_factory=dict)

    @field_validator("payment_intent", mode="before")
    @classmethod
    def _expanded_intent_id(cls, value):
        # an expanded payment_intent arrives as the full object
        if isinstance(value, dict):
            return value.get("id")
        return value

    @field_validator("payment_method_types", "metadata", mode="before")
    @classmethod
    def _null_is_empty(cls, value, info):
        if value is None:
            return {} if info.field_name == "metadata" else []
        return value

    @field_validator("metadata", mode="before")
    @classmethod
    def _metadata_as_strings(cls, value):
        if isinstance(value, dict):
            return {str(k): "" if v is None else str(v) for k, v in value.items()}
        return value


class CheckoutSession(StripeResource):
    url: str | None = None
    customer_email: str | None = None
    customer_details: CustomerDetails | None = None
    amount_total: int | None = None


class PaymentIntent(StripeResource):
    receipt_email: str | None = None
    amount: int | None = None


class EventData(BaseModel):
    object: dict[str, Any]


class ProviderEvent(BaseModel):
    id: str
    type: str
    data: EventData
    created: int | None = None
    livemode: bool = False

    @property
    def kind(self) -> EventKind:
        try:
            return EventKind(self.type)
        except ValueError:
            return EventKind.OTHER

    def session(self) -> CheckoutSession:
        return CheckoutSession.model_validate(self.data.object)

    def payment_intent(self) -> PaymentIntent:
        return PaymentIntent.model_validate(self.data.object)

    def check_object(self) -> None:
        """Parse data.object for the kinds the relay acts on, so a malformed
        object fails here rather than mid-normalization."""
        if self.kind is EventKind.CHECKOUT_SESSION_COMPLETED:
            self.session()
        elif self.kind is not EventKind.OTHER:
            self.payment_intent()
