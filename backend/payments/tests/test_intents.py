from datetime import date, time

import pytest

from payments.exceptions import MalformedIntent
from payments.intents import (
    SHAPE_DAYS_INFO,
    SHAPE_PAIRS,
    SHAPE_SELECTED_DATES,
    SHAPE_SINGLE_DAY,
    DateSlotPair,
    decode_booking_intent,
)

USER = {"email": "Swimmer@Example.com", "name": "Asha", "phone": "98450 00000"}


def _intent(**extra):
    data = {"userDetails": USER, "startTime": "09:00", "endTime": "10:00"}
    data.update(extra)
    return data


def test_single_day_shape_yields_one_pair():
    intent = decode_booking_intent(_intent(date="2025-06-25", slot={"id": "s1"}))

    assert intent.shape == SHAPE_SINGLE_DAY
    assert intent.date_slot_pairs == (DateSlotPair(date(2025, 6, 25), "s1"),)
    assert intent.start_time == time(9, 0)
    assert intent.end_time == time(10, 0)
    assert intent.user_details.email == "swimmer@example.com"


def test_single_day_accepts_flat_slot_id():
    intent = decode_booking_intent(_intent(date="2025-06-25", slotId="s1"))

    assert intent.date_slot_pairs == (DateSlotPair(date(2025, 6, 25), "s1"),)


def test_date_slot_pairs_keep_order():
    intent = decode_booking_intent(
        _intent(
            dateSlotPairs=[
                {"date": "2025-06-26", "slotId": "s2"},
                {"date": "2025-06-25", "slotId": "s1"},
            ]
        )
    )

    assert intent.shape == SHAPE_PAIRS
    assert [pair.slot_id for pair in intent.date_slot_pairs] == ["s2", "s1"]
    assert len(intent) == 2


def test_selected_dates_share_one_slot():
    intent = decode_booking_intent(_intent(selectedDates=["2025-06-25", "2025-06-27"], slotId="s1"))

    assert intent.shape == SHAPE_SELECTED_DATES
    assert intent.date_slot_pairs == (
        DateSlotPair(date(2025, 6, 25), "s1"),
        DateSlotPair(date(2025, 6, 27), "s1"),
    )


def test_days_info_reads_nested_slot():
    intent = decode_booking_intent(
        _intent(daysInfo=[{"date": "2025-06-25", "slot": {"id": "s1"}}, {"date": "2025-06-26", "slot": {"id": "s3"}}])
    )

    assert intent.shape == SHAPE_DAYS_INFO
    assert [str(pair.date) for pair in intent.date_slot_pairs] == ["2025-06-25", "2025-06-26"]


def test_pairs_take_priority_over_legacy_fields():
    intent = decode_booking_intent(
        _intent(
            dateSlotPairs=[{"date": "2025-06-25", "slotId": "s1"}],
            date="2025-07-01",
            slotId="s9",
        )
    )

    assert intent.date_slot_pairs == (DateSlotPair(date(2025, 6, 25), "s1"),)


def test_decoding_json_text_is_deterministic():
    raw = '{"userDetails": {"email": "a@b.co"}, "date": "2025-06-25", "slotId": "s1", "startTime": "7:30", "endTime": "8:15:00"}'

    first = decode_booking_intent(raw)
    second = decode_booking_intent(raw.encode())

    assert first == second
    assert first.start_time == time(7, 30)
    assert first.end_time == time(8, 15)


@pytest.mark.parametrize(
    "raw",
    [
        "not json",
        ["2025-06-25"],
        {"date": "2025-06-25", "slotId": "s1", "startTime": "09:00", "endTime": "10:00"},
        _intent(),
        _intent(dateSlotPairs=[]),
        _intent(selectedDates=["2025-06-25"]),
        _intent(date="25/06/2025", slotId="s1"),
        _intent(date="2025-02-30", slotId="s1"),
        _intent(date="2025-06-25", slotId="../etc"),
        _intent(date="2025-06-25", slotId=True),
        _intent(date="2025-06-25", slotId="s1", startTime=True, endTime="10:00"),
        _intent(date="2025-06-25", slotId="s1", startTime="10:00", endTime="09:00"),
        _intent(date="2025-06-25", slotId="s1", startTime="25:00"),
        _intent(dateSlotPairs=[{"date": "2025-06-25", "slotId": "s1"}, {"date": "2025-06-25", "slotId": "s1"}]),
    ],
)
def test_malformed_metadata_is_rejected(raw):
    with pytest.raises(MalformedIntent):
        decode_booking_intent(raw)


def test_missing_email_is_rejected():
    raw = _intent(date="2025-06-25", slotId="s1")
    raw["userDetails"] = {"name": "No Email"}

    with pytest.raises(MalformedIntent, match="email"):
        decode_booking_intent(raw)
