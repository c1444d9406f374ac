from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo

import pytest
from freezegun import freeze_time

from relay.services.reservation import (
    CutoffError,
    InvalidAmountError,
    check_cutoff,
    parse_amount,
    parse_reservation,
)

TOKYO = ZoneInfo("Asia/Tokyo")


@pytest.mark.parametrize(
    "value, expected",
    [(25000, 25000), (25000.4, 25000), (25000.5, 25001), ("  1200 ", 1200), ("3e3", 3000)],
)
def test_parse_amount(value, expected):
    assert parse_amount(value) == expected


@pytest.mark.parametrize(
    "value", [None, "", "12abc", [], {}, False, float("inf"), -1, 0.49, 10**400]
)
def test_parse_amount_rejects(value):
    with pytest.raises(InvalidAmountError, match="Invalid amount"):
        parse_amount(value)


def test_encodings_override_in_order():
    reservation = parse_reservation(
        {
            "amount": 1000,
            "name": "flat",
            "phone": "flat",
            "metadata": {"name": "nested", "phone": "nested"},
            "metadata[phone]": "bracketed",
        }
    )

    assert reservation.metadata["name"] == "nested"
    assert reservation.metadata["phone"] == "bracketed"
    assert "metadata" not in reservation.metadata


def test_email_falls_back_to_metadata():
    reservation = parse_reservation({"amount": 1000, "metadata": {"email": "m@example.com"}})

    assert reservation.email == "m@example.com"
    assert reservation.metadata["email"] == "m@example.com"


def test_broken_reservation_data_is_ignored():
    reservation = parse_reservation({"amount": 1000, "reservationData": "{oops"})

    assert reservation.amount == 1000
    assert reservation.metadata == {"email": "", "total": "1000"}


def test_unparseable_checkin_has_no_date():
    reservation = parse_reservation({"amount": 1000, "checkin": "next friday"})

    assert reservation.checkin is None


def test_cutoff_compares_calendar_dates_in_booking_timezone(config):
    reservation = parse_reservation({"amount": 1000, "checkin": "2025-06-02"})

    # 03:30 UTC on June 1st is 12:30 on June 1st in Tokyo
    with pytest.raises(CutoffError):
        check_cutoff(reservation, config, now=datetime(2025, 6, 1, 3, 30, tzinfo=timezone.utc))

    # 15:30 UTC on June 1st is already June 2nd in Tokyo, so the check-in is today
    check_cutoff(reservation, config, now=datetime(2025, 6, 1, 15, 30, tzinfo=timezone.utc))


def test_cutoff_ignores_later_checkins(config):
    reservation = parse_reservation({"amount": 1000, "checkin": "2025-06-03"})

    check_cutoff(reservation, config, now=datetime(2025, 6, 1, 23, 0, tzinfo=TOKYO))


def test_cutoff_can_be_disabled(config):
    reservation = parse_reservation({"amount": 1000, "checkin": "2025-06-02"})
    disabled = config.model_copy(update={"booking_cutoff": None})

    check_cutoff(reservation, disabled, now=datetime(2025, 6, 1, 23, 0, tzinfo=TOKYO))


def test_cutoff_respects_configured_time(config):
    reservation = parse_reservation({"amount": 1000, "checkin": "2025-06-02"})
    evening = config.model_copy(update={"booking_cutoff": time(18, 0)})

    check_cutoff(reservation, evening, now=datetime(2025, 6, 1, 17, 59, tzinfo=TOKYO))
    with pytest.raises(CutoffError, match="18:00"):
        check_cutoff(reservation, evening, now=datetime(2025, 6, 1, 18, 0, tzinfo=TOKYO))


@freeze_time("2025-06-01T12:00:00+09:00")
def test_cutoff_uses_wall_clock_by_default(config):
    reservation = parse_reservation({"amount": 1000, "checkin": "2025-06-02"})

    with pytest.raises(CutoffError):
        check_cutoff(reservation, config)


@freeze_time("2025-06-01T11:59:00+09:00")
def test_wall_clock_before_cutoff(config):
    reservation = parse_reservation({"amount": 1000, "checkin": "2025-06-02"})

    check_cutoff(reservation, config)
