"""
QloApps payload mappers
Conversion between local PMS snapshots and QloApps webservice records
"""

import re
from datetime import date, datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, Iterable, List, Optional

from dateutil import parser as date_parser

from channel_sync.contracts import (
    AvailabilitySnapshot,
    EntityKind,
    EntitySource,
    LocalGuest,
    LocalReservation,
    LocalRoomType,
    RateSnapshot,
    RemoteRecord,
    ReservationStatus,
    RoomStatus,
    normalize_amount,
)
from channel_sync.errors import ValidationError
from channel_sync.utils.timeutils import as_utc

REMOTE_DATETIME_FORMAT = "%Y-%m-%d %H:%M:%S"
EMPTY_REMOTE_DATES = {"", "0000-00-00", "0000-00-00 00:00:00"}

BOOKING_STATUS_TO_LOCAL = {
    0: ReservationStatus.PENDING,
    1: ReservationStatus.CONFIRMED,
    2: ReservationStatus.CHECKED_IN,
    3: ReservationStatus.CHECKED_OUT,
    4: ReservationStatus.CANCELLED,
    5: ReservationStatus.NO_SHOW,
}
BOOKING_STATUS_TO_REMOTE = {status: code for code, status in BOOKING_STATUS_TO_LOCAL.items()}

ROOM_STATUS_TO_LOCAL = {
    1: RoomStatus.AVAILABLE,
    2: RoomStatus.OCCUPIED,
    3: RoomStatus.CLEANING,
    4: RoomStatus.OUT_OF_SERVICE,
}

FLOOR_WORDS = {
    "ground": 0,
    "first": 1,
    "second": 2,
    "third": 3,
    "fourth": 4,
    "fifth": 5,
    "sixth": 6,
    "seventh": 7,
    "eighth": 8,
    "ninth": 9,
    "tenth": 10,
}

PMS_SOURCE_TAG = "pms"


# ---------------------------------------------------------------------------
# Field helpers
# ---------------------------------------------------------------------------

def parse_remote_datetime(value: Any) -> Optional[datetime]:
    """Parse a remote timestamp (server time is treated as UTC)."""
    if value is None or str(value).strip() in EMPTY_REMOTE_DATES:
        return None
    try:
        return as_utc(date_parser.parse(str(value)))
    except (ValueError, OverflowError):
        raise ValidationError(f"Invalid remote timestamp: {value!r}")


def parse_remote_date(value: Any, field_name: str) -> date:
    if value is None or str(value).strip() in EMPTY_REMOTE_DATES:
        raise ValidationError(f"Missing {field_name}")
    try:
        return date_parser.parse(str(value)).date()
    except (ValueError, OverflowError):
        raise ValidationError(f"Invalid {field_name}: {value!r}")


def format_remote_datetime(value: datetime) -> str:
    return as_utc(value).strftime(REMOTE_DATETIME_FORMAT)


def parse_floor(value: Any) -> int:
    """Floor number from strings like '3', '1st', 'Ground', 'Second floor'; defaults to 1."""
    if value is None:
        return 1
    if isinstance(value, int):
        return value

    text = str(value).strip().lower()
    for word, number in FLOOR_WORDS.items():
        if text.startswith(word):
            return number

    match = re.match(r"^(\d+)", text)
    if match:
        return int(match.group(1))
    return 1


def _remote_id(data: Dict[str, Any], kind: str) -> str:
    remote_id = data.get("id")
    if remote_id in (None, "", 0, "0"):
        raise ValidationError(f"Remote {kind} record has no id")
    return str(remote_id)


def _optional_ref(value: Any) -> Optional[str]:
    if value in (None, "", 0, "0"):
        return None
    return str(value)


def _int(value: Any, default: int, field_name: str) -> int:
    if value in (None, ""):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        raise ValidationError(f"Invalid {field_name}: {value!r}")


def _amount(value: Any, field_name: str) -> Decimal:
    if value in (None, ""):
        return Decimal("0.00")
    try:
        return normalize_amount(value)
    except InvalidOperation:
        raise ValidationError(f"Invalid {field_name}: {value!r}")


def _clean(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


# ---------------------------------------------------------------------------
# Remote -> local
# ---------------------------------------------------------------------------

def room_type_from_remote(data: Dict[str, Any]) -> RemoteRecord:
    remote_id = _remote_id(data, "room type")
    name = _clean(data.get("name"))
    if not name:
        raise ValidationError(f"Remote room type {remote_id} has no name")

    return RemoteRecord(
        remote_id=remote_id,
        modified_at=parse_remote_datetime(data.get("date_upd")),
        natural_key=name,
        fields={
            "name": name,
            "description": _clean(data.get("description")),
            "base_price": _amount(data.get("price"), "price"),
            "max_occupancy": _int(data.get("max_occupancy"), 2, "max_occupancy"),
            "source": EntitySource.CHANNEL,
        },
    )


def room_from_remote(data: Dict[str, Any]) -> RemoteRecord:
    remote_id = _remote_id(data, "room")
    room_number = _clean(data.get("room_num"))
    if not room_number:
        raise ValidationError(f"Remote room {remote_id} has no room number")

    status_code = _int(data.get("id_status"), 1, "id_status")
    references = {}
    room_type_ref = _optional_ref(data.get("id_product"))
    if room_type_ref:
        references[EntityKind.ROOM_TYPE] = room_type_ref

    return RemoteRecord(
        remote_id=remote_id,
        modified_at=parse_remote_datetime(data.get("date_upd")),
        natural_key=room_number,
        references=references,
        fields={
            "room_number": room_number,
            "floor": parse_floor(data.get("floor")),
            "status": ROOM_STATUS_TO_LOCAL.get(status_code, RoomStatus.AVAILABLE),
            "source": EntitySource.CHANNEL,
        },
    )


def customer_from_remote(data: Dict[str, Any]) -> RemoteRecord:
    remote_id = _remote_id(data, "customer")
    email = _clean(data.get("email"))
    email = email.lower() if email else None

    return RemoteRecord(
        remote_id=remote_id,
        modified_at=parse_remote_datetime(data.get("date_upd")),
        natural_key=email,
        fields={
            "first_name": _clean(data.get("firstname")) or "Unknown",
            "last_name": _clean(data.get("lastname")) or "Guest",
            "email": email,
            "phone": _clean(data.get("phone")),
            "source": EntitySource.CHANNEL,
        },
    )


def booking_from_remote(data: Dict[str, Any]) -> RemoteRecord:
    remote_id = _remote_id(data, "booking")
    check_in = parse_remote_date(data.get("date_from"), "date_from")
    check_out = parse_remote_date(data.get("date_to"), "date_to")
    if check_out <= check_in:
        raise ValidationError(f"Remote booking {remote_id} has check-out {check_out} not after check-in {check_in}")

    customer_ref = _optional_ref(data.get("id_customer"))
    room_type_ref = _optional_ref(data.get("id_room_type"))
    if not customer_ref or not room_type_ref:
        raise ValidationError(f"Remote booking {remote_id} is missing its customer or room type")

    references = {EntityKind.GUEST: customer_ref, EntityKind.ROOM_TYPE: room_type_ref}
    room_ref = _optional_ref(data.get("id_room"))
    if room_ref:
        references[EntityKind.ROOM] = room_ref

    status_code = _int(data.get("booking_status"), 1, "booking_status")
    if status_code not in BOOKING_STATUS_TO_LOCAL:
        raise ValidationError(f"Remote booking {remote_id} has unknown status {status_code}")

    reference = _clean(data.get("reference"))
    return RemoteRecord(
        remote_id=remote_id,
        modified_at=parse_remote_datetime(data.get("date_upd")),
        natural_key=reference,
        references=references,
        fields={
            "check_in": check_in,
            "check_out": check_out,
            "status": BOOKING_STATUS_TO_LOCAL[status_code],
            "adults": _int(data.get("adults"), 1, "adults"),
            "children": _int(data.get("children"), 0, "children"),
            "total_amount": _amount(data.get("total_price"), "total_price"),
            "confirmation_number": reference,
            "special_requests": _clean(data.get("comment")),
            "source": EntitySource.CHANNEL,
        },
    )


# ---------------------------------------------------------------------------
# Local -> remote
# ---------------------------------------------------------------------------

def booking_payload(
    reservation: LocalReservation,
    remote_customer_id: str,
    remote_room_type_id: str,
    remote_hotel_id: str,
    remote_room_id: Optional[str] = None,
) -> Dict[str, Any]:
    payload = {
        "id_customer": int(remote_customer_id),
        "id_hotel": int(remote_hotel_id),
        "id_room_type": int(remote_room_type_id),
        "date_from": reservation.check_in.isoformat(),
        "date_to": reservation.check_out.isoformat(),
        "adults": reservation.adults,
        "children": reservation.children,
        "total_price": str(normalize_amount(reservation.total_amount)),
        "booking_status": BOOKING_STATUS_TO_REMOTE[reservation.status],
        "reference": reservation.confirmation_number or reservation.id,
        "source": PMS_SOURCE_TAG,
    }
    if remote_room_id:
        payload["id_room"] = int(remote_room_id)
    if reservation.special_requests:
        payload["comment"] = reservation.special_requests
    return payload


def customer_payload(guest: LocalGuest) -> Dict[str, Any]:
    payload = {
        "firstname": guest.first_name,
        "lastname": guest.last_name,
        "email": guest.email.lower() if guest.email else None,
    }
    if guest.phone:
        payload["phone"] = guest.phone
    return payload


def room_type_payload(room_type: LocalRoomType, remote_hotel_id: str) -> Dict[str, Any]:
    return {
        "id_hotel": int(remote_hotel_id),
        "name": room_type.name,
        "description": room_type.description or "",
        "price": str(normalize_amount(room_type.base_price)),
        "max_occupancy": room_type.max_occupancy,
        "active": 1,
    }


def availability_payload(snapshots: Iterable[AvailabilitySnapshot]) -> List[Dict[str, Any]]:
    return [
        {"date": snapshot.date.isoformat(), "available": max(0, snapshot.available)}
        for snapshot in snapshots
    ]


def rates_payload(snapshots: Iterable[RateSnapshot]) -> List[Dict[str, Any]]:
    return [
        {"date": snapshot.date.isoformat(), "price": str(normalize_amount(snapshot.price))}
        for snapshot in snapshots
    ]
