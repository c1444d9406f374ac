import logging
from collections.abc import Callable
from datetime import datetime
from functools import lru_cache

import uvicorn
from fastapi import Depends, FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from starlette.concurrency import run_in_threadpool

from relay.core.config import RelayConfig, get_config, get_settings
from relay.middleware.body_size import BodySizeLimitMiddleware
from relay.services import normalizer, reservation, stripe_verify
from relay.services.forwarder import Forwarder
from relay.services.gateway import GatewayError, StripeGateway

settings = get_settings()
logging.basicConfig(level=settings.log_level.upper())
logger = logging.getLogger(__name__)

app = FastAPI(
    title="Reservation Checkout Relay",
    description="Creates Stripe checkout sessions and relays payment events",
    version="1.0.0",
)

app.add_middleware(BodySizeLimitMiddleware, max_body_size=settings.max_body_size)

app.add_middleware(
    CORSMiddleware,
    allow_origins=[o.strip() for o in settings.allowed_origins.split(",") if o.strip()],
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    """Resolve configuration up front; a missing secret key stops the server."""
    config = get_config()
    mode = config.mode.value if config.mode else "default"
    logger.info(f"Relay starting in {mode} mode")


# ---------- dependencies ----------
@lru_cache
def get_gateway() -> StripeGateway:
    return StripeGateway(get_config())


@lru_cache
def get_forwarder() -> Forwarder:
    config = get_config()
    return Forwarder(config.forward_url, timeout=config.http_timeout)


def get_clock() -> Callable[[], datetime]:
    return reservation.utc_now


# ---------- pages ----------
@app.get("/health", include_in_schema=False)
async def health():
    return {"status": "ok"}


@app.get("/success", response_class=PlainTextResponse)
async def success():
    return "Payment completed."


@app.get("/cancel", response_class=PlainTextResponse)
async def cancel():
    return "Payment was canceled."


# ---------- stripe webhook ----------
@app.post("/webhook")
async def stripe_webhook(
    request: Request,
    config: RelayConfig = Depends(get_config),
    gateway: StripeGateway = Depends(get_gateway),
    forwarder: Forwarder = Depends(get_forwarder),
):
    # signature covers the exact bytes, so the body is read raw here
    raw = await request.body()
    try:
        event = stripe_verify.verify(
            raw_body=raw,
            header=request.headers.get("stripe-signature"),
            secret=config.webhook_secret,
            tolerance=config.webhook_tolerance,
        )
    except stripe_verify.WebhookError as e:
        return PlainTextResponse(f"Webhook Error: {e}", status_code=400)

    try:
        payload = await run_in_threadpool(
            normalizer.normalize, event, gateway.find_session_by_payment_intent
        )
    except GatewayError as e:
        return PlainTextResponse(f"Webhook Error: {e}", status_code=500)

    if payload is not None:
        result = await forwarder.forward(payload)
        if not result.ok:
            return PlainTextResponse(
                f"Forwarding failed with status {result.status_code}", status_code=500
            )

    return {"received": True}


# ---------- checkout ----------
@app.post("/create-checkout-session")
async def create_checkout_session(
    request: Request,
    config: RelayConfig = Depends(get_config),
    gateway: StripeGateway = Depends(get_gateway),
    forwarder: Forwarder = Depends(get_forwarder),
    clock: Callable[[], datetime] = Depends(get_clock),
):
    try:
        booking = await reservation.read_reservation(request)
        reservation.check_cutoff(booking, config, now=clock())
    except reservation.ReservationError as e:
        logger.info(f"Rejected checkout request: {e}")
        return JSONResponse({"error": str(e)}, status_code=400)

    try:
        session = await run_in_threadpool(gateway.create_checkout_session, booking)
    except GatewayError as e:
        return JSONResponse({"error": str(e)}, status_code=500)

    if config.forward_provisional_reservations:
        result = await forwarder.forward(normalizer.build_provisional_payload(session))
        if not result.ok:
            logger.warning(f"Provisional reservation for {session.id} was not delivered")

    return {"id": session.id, "url": session.url}


def run() -> None:
    uvicorn.run("relay.main:app", host="0.0.0.0", port=settings.port)
