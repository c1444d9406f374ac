import json
import os
import time
from typing import Iterator

import pytest
import stripe
from fastapi.testclient import TestClient

# Set test environment variables
for var in (
    "STRIPE_MODE",
    "GAS_ENDPOINT",
    "BOOKING_CUTOFF",
    "BOOKING_TIMEZONE",
    "FORWARD_PROVISIONAL_RESERVATIONS",
):
    os.environ.pop(var, None)
os.environ.update(
    {
        "STRIPE_SECRET_KEY": "sk_test_relay",
        "STRIPE_WEBHOOK_SECRET": "whsec_test",
        "FORWARD_URL": "https://downstream.test/ingest",
        "ALLOWED_ORIGINS": "http://localhost:5500",
    }
)

from relay.core.config import RelayConfig, get_config
from relay.main import app, get_forwarder, get_gateway
from relay.schemas.events import CheckoutSession
from relay.schemas.payloads import CanonicalPayload
from relay.services.forwarder import ForwardResult
from relay.services.gateway import GatewayError
from relay.services.reservation import ReservationRequest

WEBHOOK_SECRET = "whsec_test"


class FakeGateway:
    def __init__(self):
        self.sessions: dict[str, CheckoutSession] = {}
        self.lookups: list[str] = []
        self.created: list[ReservationRequest] = []
        self.fail_lookup = False
        self.fail_create = False

    def find_session_by_payment_intent(self, payment_intent_id: str):
        self.lookups.append(payment_intent_id)
        if self.fail_lookup:
            raise GatewayError("Checkout session lookup failed: timeout")
        return self.sessions.get(payment_intent_id)

    def create_checkout_session(self, reservation: ReservationRequest) -> CheckoutSession:
        self.created.append(reservation)
        if self.fail_create:
            raise GatewayError("Your card was declined.")
        session_id = f"cs_test_{len(self.created)}"
        return CheckoutSession(
            id=session_id,
            url=f"https://checkout.stripe.com/c/pay/{session_id}",
            payment_status="unpaid",
            payment_method_types=["card", "konbini"],
            metadata=reservation.metadata,
        )


class RecordingForwarder:
    def __init__(self):
        self.payloads: list[CanonicalPayload] = []
        self.result = ForwardResult(ok=True, status_code=200, body="ok")

    async def forward(self, payload: CanonicalPayload) -> ForwardResult:
        self.payloads.append(payload)
        return self.result


def stripe_header(body: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    ts = timestamp if timestamp is not None else int(time.time())
    signature = stripe.WebhookSignature._compute_signature(f"{ts}.{body.decode()}", secret)
    return f"t={ts},v1={signature}"


def make_event(event_type: str, obj: dict, event_id: str = "evt_test_1") -> dict:
    return {
        "id": event_id,
        "object": "event",
        "type": event_type,
        "created": 1748736000,
        "livemode": False,
        "data": {"object": obj},
    }


@pytest.fixture
def config() -> RelayConfig:
    return get_config()


@pytest.fixture
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def forwarder() -> RecordingForwarder:
    return RecordingForwarder()


@pytest.fixture
def client(gateway: FakeGateway, forwarder: RecordingForwarder) -> Iterator[TestClient]:
    app.dependency_overrides[get_gateway] = lambda: gateway
    app.dependency_overrides[get_forwarder] = lambda: forwarder
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def post_event(client: TestClient):
    """Sign an event dict the way Stripe does and POST it to /webhook."""

    def _post(event: dict, secret: str = WEBHOOK_SECRET):
        body = json.dumps(event).encode()
        return client.post(
            "/webhook",
            content=body,
            headers={
                "Stripe-Signature": stripe_header(body, secret),
                "Content-Type": "application/json",
            },
        )

    return _post
