"""
Decoding of the booking-intent metadata captured when a payment is created.

Checkout clients have sent several shapes over time. All of them are normalised
here into a single `BookingIntent`, so nothing downstream has to probe for
fields:

* ``dateSlotPairs``: ``[{"date": "2025-06-25", "slotId": "..."}]``
* ``selectedDates`` + ``slotId``: one slot booked on several dates
* ``daysInfo``: ``[{"date": "2025-06-25", "slot": {"id": "..."}}]``
* single day: ``{"date": "2025-06-25", "slot": {"id": "..."}}`` (or ``slotId``)

Every shape also carries ``userDetails`` (email required) and the
``startTime``/``endTime`` window. Decoding never touches the database.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from datetime import date, time
from typing import Any, Mapping

from django.core.exceptions import ValidationError
from django.core.validators import validate_email

from payments.exceptions import MalformedIntent

SHAPE_PAIRS = "dateSlotPairs"
SHAPE_SELECTED_DATES = "selectedDates"
SHAPE_DAYS_INFO = "daysInfo"
SHAPE_SINGLE_DAY = "singleDay"

_SLOT_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_-]{0,63}$")
_TIME_RE = re.compile(r"^(\d{1,2}):(\d{2})(?::(\d{2}))?$")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


@dataclass(frozen=True)
class UserDetails:
    email: str
    name: str = ""
    phone: str = ""


@dataclass(frozen=True)
class DateSlotPair:
    date: date
    slot_id: str


@dataclass(frozen=True)
class BookingIntent:
    user_details: UserDetails
    date_slot_pairs: tuple[DateSlotPair, ...]
    start_time: time
    end_time: time
    shape: str = field(default=SHAPE_PAIRS, compare=False)

    def __len__(self) -> int:
        return len(self.date_slot_pairs)


def _text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool) or not isinstance(value, (str, int)):
        raise MalformedIntent(f"Expected text, got {type(value).__name__}.")
    return str(value).strip()


def decode_user_details(raw: Any) -> UserDetails:
    if not isinstance(raw, Mapping):
        raise MalformedIntent("userDetails is missing.")
    email = _text(raw.get("email")).lower()
    if not email:
        raise MalformedIntent("userDetails.email is missing.")
    try:
        validate_email(email)
    except ValidationError:
        raise MalformedIntent(f"userDetails.email {email!r} is not a valid address.") from None
    return UserDetails(
        email=email,
        name=_text(raw.get("name")),
        phone=_text(raw.get("phone")),
    )


def parse_time_of_day(value: Any, label: str) -> time:
    text = _text(value)
    match = _TIME_RE.match(text)
    if not match:
        raise MalformedIntent(f"{label} {value!r} is not a time of day.")
    hour, minute, second = (int(part) if part else 0 for part in match.groups())
    try:
        return time(hour, minute, second)
    except ValueError:
        raise MalformedIntent(f"{label} {value!r} is not a time of day.") from None


def _parse_date(value: Any) -> date:
    text = _text(value)
    if not _DATE_RE.match(text):
        raise MalformedIntent(f"Booking date {value!r} is not an ISO date.")
    try:
        return date.fromisoformat(text)
    except ValueError:
        raise MalformedIntent(f"Booking date {value!r} is not an ISO date.") from None


def _parse_slot_id(value: Any) -> str:
    text = _text(value)
    if not _SLOT_ID_RE.match(text):
        raise MalformedIntent(f"Slot id {value!r} is malformed.")
    return text


def _nested_slot_id(entry: Mapping) -> Any:
    slot = entry.get("slot")
    if isinstance(slot, Mapping):
        return slot.get("id")
    return entry.get("slotId")


def _raw_pairs(raw: Mapping) -> tuple[str, list[tuple[Any, Any]]]:
    if "dateSlotPairs" in raw:
        entries = raw["dateSlotPairs"]
        if not isinstance(entries, list):
            raise MalformedIntent("dateSlotPairs must be a list.")
        pairs = []
        for entry in entries:
            if not isinstance(entry, Mapping):
                raise MalformedIntent("dateSlotPairs entries must be objects.")
            pairs.append((entry.get("date"), entry.get("slotId")))
        return SHAPE_PAIRS, pairs

    if "selectedDates" in raw:
        dates = raw["selectedDates"]
        if not isinstance(dates, list):
            raise MalformedIntent("selectedDates must be a list.")
        return SHAPE_SELECTED_DATES, [(value, raw.get("slotId")) for value in dates]

    if "daysInfo" in raw:
        days = raw["daysInfo"]
        if not isinstance(days, list):
            raise MalformedIntent("daysInfo must be a list.")
        pairs = []
        for entry in days:
            if not isinstance(entry, Mapping):
                raise MalformedIntent("daysInfo entries must be objects.")
            pairs.append((entry.get("date"), _nested_slot_id(entry)))
        return SHAPE_DAYS_INFO, pairs

    if "date" in raw:
        return SHAPE_SINGLE_DAY, [(raw.get("date"), _nested_slot_id(raw))]

    raise MalformedIntent("No booking dates found in intent metadata.")


def decode_booking_intent(raw: Any) -> BookingIntent:
    """
    Validate and normalise stored intent metadata.

    Raises `MalformedIntent` for anything that cannot be turned into at least
    one (date, slot) pair with a payer email and a time window. The same input
    always yields an equal `BookingIntent`.
    """

    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw)
        except ValueError:
            raise MalformedIntent("Intent metadata is not valid JSON.") from None
    if not isinstance(raw, Mapping):
        raise MalformedIntent("Intent metadata must be an object.")

    user_details = decode_user_details(raw.get("userDetails"))
    shape, raw_pairs = _raw_pairs(raw)
    if not raw_pairs:
        raise MalformedIntent("Intent metadata does not name any booking dates.")

    pairs = []
    seen = set()
    for raw_date, raw_slot_id in raw_pairs:
        pair = DateSlotPair(date=_parse_date(raw_date), slot_id=_parse_slot_id(raw_slot_id))
        if pair in seen:
            raise MalformedIntent(f"Slot {pair.slot_id} is listed twice for {pair.date.isoformat()}.")
        seen.add(pair)
        pairs.append(pair)

    start_time = parse_time_of_day(raw.get("startTime"), "startTime")
    end_time = parse_time_of_day(raw.get("endTime"), "endTime")
    if end_time <= start_time:
        raise MalformedIntent("endTime must be after startTime.")

    return BookingIntent(
        user_details=user_details,
        date_slot_pairs=tuple(pairs),
        start_time=start_time,
        end_time=end_time,
        shape=shape,
    )
