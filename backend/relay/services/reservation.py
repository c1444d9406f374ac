"""Request-boundary handling for checkout session creation.

The booking front-end has posted reservations in several shapes over time:
flat fields, a nested ``metadata`` object, bracketed ``metadata[key]`` form
fields and a ``reservationData`` object (sometimes JSON-encoded). Everything is
folded here into one ``ReservationRequest`` with string metadata before the
amount and cutoff rules run.
"""
import json
import logging
import math
import re
from collections.abc import Mapping
from datetime import UTC, date, datetime, timedelta
from typing import Any
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field
from starlette.requests import Request

from relay.core.config import RelayConfig

logger = logging.getLogger(__name__)

# Stripe metadata limits
MAX_METADATA_KEYS = 50
MAX_KEY_LENGTH = 40
MAX_VALUE_LENGTH = 500

_RESERVED_FIELDS = {"amount", "email", "metadata", "reservationData"}
_BRACKETED_KEY = re.compile(r"metadata\[([^\]]+)\]")


class ReservationError(Exception):
    pass


class InvalidBodyError(ReservationError):
    pass


class InvalidAmountError(ReservationError):
    def __init__(self, message: str = "Invalid amount"):
        super().__init__(message)


class InvalidMetadataError(ReservationError):
    pass


class CutoffError(ReservationError):
    pass


class ReservationRequest(BaseModel):
    amount: int
    email: str = ""
    metadata: dict[str, str] = Field(default_factory=dict)

    @property
    def checkin(self) -> date | None:
        raw = self.metadata.get("checkin", "")
        if not raw:
            return None
        try:
            return date.fromisoformat(raw)
        except ValueError:
            logger.info(f"Ignoring unparseable checkin date {raw!r}")
            return None


def stringify(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value
    return json.dumps(value, ensure_ascii=False)


def parse_amount(value: Any) -> int:
    """Finite positive number, rounded half-up to whole currency units."""
    if value is None or isinstance(value, bool):
        raise InvalidAmountError()
    if isinstance(value, str):
        value = value.strip()
    try:
        number = float(value)
    except (TypeError, ValueError, OverflowError):
        raise InvalidAmountError()
    if not math.isfinite(number) or number <= 0:
        raise InvalidAmountError()
    amount = math.floor(number + 0.5)
    if amount < 1:
        raise InvalidAmountError()
    return amount


def _decode_json_object(value: Any, field: str) -> Mapping[str, Any]:
    if isinstance(value, Mapping):
        return value
    if isinstance(value, str) and value.strip():
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            logger.warning(f"Could not decode {field} as JSON; ignoring it")
            return {}
        if isinstance(decoded, Mapping):
            return decoded
        logger.warning(f"{field} is not a JSON object; ignoring it")
    return {}


def _fit_metadata_limits(metadata: dict[str, str]) -> dict[str, str]:
    if len(metadata) > MAX_METADATA_KEYS:
        raise InvalidMetadataError(
            f"Too many reservation fields (limit {MAX_METADATA_KEYS})"
        )
    fitted = {}
    for key, value in metadata.items():
        if len(key) > MAX_KEY_LENGTH:
            raise InvalidMetadataError(f"Field name too long: {key[:MAX_KEY_LENGTH]}...")
        if len(value) > MAX_VALUE_LENGTH:
            logger.warning(f"Truncating metadata field {key} to {MAX_VALUE_LENGTH} chars")
            value = value[:MAX_VALUE_LENGTH]
        fitted[key] = value
    return fitted


def parse_reservation(body: Mapping[str, Any]) -> ReservationRequest:
    fields = dict(body)
    nested = _decode_json_object(fields.pop("reservationData", None), "reservationData")
    fields.update(nested)

    bag: dict[str, Any] = {}
    bracketed: dict[str, Any] = {}
    for key, value in fields.items():
        match = _BRACKETED_KEY.fullmatch(key)
        if match:
            bracketed[match.group(1)] = value
        elif key not in _RESERVED_FIELDS:
            bag[key] = value
    bag.update(_decode_json_object(fields.get("metadata"), "metadata"))
    bag.update(bracketed)

    amount = parse_amount(fields.get("amount"))
    metadata = {str(k): stringify(v) for k, v in bag.items()}
    email = stringify(fields.get("email")) or metadata.get("email", "")
    metadata["email"] = email
    metadata["total"] = str(amount)

    return ReservationRequest(
        amount=amount, email=email, metadata=_fit_metadata_limits(metadata)
    )


async def read_reservation(request: Request) -> ReservationRequest:
    """Parse a JSON, urlencoded or multipart request into a ReservationRequest."""
    content_type = request.headers.get("content-type", "")
    if "json" in content_type:
        try:
            body = await request.json()
        except ValueError:
            raise InvalidBodyError("Invalid JSON body")
        if not isinstance(body, Mapping):
            raise InvalidBodyError("Request body must be an object")
    else:
        form = await request.form()
        body = {key: value for key, value in form.multi_items() if isinstance(value, str)}
    return parse_reservation(body)


def utc_now() -> datetime:
    return datetime.now(UTC)


def check_cutoff(
    reservation: ReservationRequest, config: RelayConfig, now: datetime | None = None
) -> None:
    """Reject a check-in for tomorrow once today's cutoff has passed.

    Both "tomorrow" and the cutoff are taken in the booking timezone and
    compared as calendar dates, so a UTC date boundary never shifts the rule.
    """
    if config.booking_cutoff is None:
        return
    checkin = reservation.checkin
    if checkin is None:
        return

    tz = ZoneInfo(config.booking_timezone)
    local_now = (now or utc_now()).astimezone(tz)
    tomorrow = local_now.date() + timedelta(days=1)
    if checkin != tomorrow:
        return
    if local_now.time() >= config.booking_cutoff:
        cutoff = config.booking_cutoff.strftime("%H:%M")
        logger.info(f"Rejecting check-in {checkin} requested after {cutoff}")
        raise CutoffError(
            f"Reservations for tomorrow must be made before {cutoff} "
            f"({config.booking_timezone}). Please contact us directly."
        )
