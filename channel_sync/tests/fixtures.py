"""
Test doubles shared by the sync engine tests
In-memory PMS store, controllable clocks and canned remote payloads
"""

import dataclasses
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional

from channel_sync.contracts import (
    AvailabilitySnapshot,
    EntitySource,
    LocalGuest,
    LocalReservation,
    LocalRoom,
    LocalRoomType,
    RateSnapshot,
)


class FakeClock:
    """Monotonic-style float clock that only moves when told to"""

    def __init__(self, start: float = 1_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeDateTimeClock:
    def __init__(self, start: Optional[datetime] = None):
        self.now = start or datetime(2025, 1, 15, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class SleepRecorder:
    """Replacement for asyncio.sleep in retry policies"""

    def __init__(self):
        self.delays: List[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


class InMemoryPMSStore:
    """Dict-backed PMSStore used in place of the PMS CRUD layer"""

    def __init__(self):
        self.reservations: Dict[str, LocalReservation] = {}
        self.guests: Dict[str, LocalGuest] = {}
        self.room_types: Dict[str, LocalRoomType] = {}
        self.rooms: Dict[str, LocalRoom] = {}
        self.availability: Dict[str, List[AvailabilitySnapshot]] = {}
        self.rates: Dict[str, List[RateSnapshot]] = {}
        self._seq = 0

    def _next_id(self, prefix: str) -> str:
        self._seq += 1
        return f"{prefix}-{self._seq}"

    # reservations

    async def get_reservation(self, reservation_id: str) -> Optional[LocalReservation]:
        return self.reservations.get(reservation_id)

    async def find_reservation_by_reference(self, reference: str) -> Optional[LocalReservation]:
        return next((r for r in self.reservations.values() if r.confirmation_number == reference), None)

    async def create_reservation(self, fields: Dict[str, Any]) -> LocalReservation:
        reservation = LocalReservation(id=self._next_id("res"), **fields)
        self.reservations[reservation.id] = reservation
        return reservation

    async def update_reservation(self, reservation_id: str, fields: Dict[str, Any]) -> LocalReservation:
        reservation = dataclasses.replace(self.reservations[reservation_id], **fields)
        self.reservations[reservation_id] = reservation
        return reservation

    # guests

    async def get_guest(self, guest_id: str) -> Optional[LocalGuest]:
        return self.guests.get(guest_id)

    async def find_guest_by_email(self, email: str) -> Optional[LocalGuest]:
        return next((g for g in self.guests.values() if g.email and g.email.lower() == email.lower()), None)

    async def create_guest(self, fields: Dict[str, Any]) -> LocalGuest:
        guest = LocalGuest(id=self._next_id("guest"), **fields)
        self.guests[guest.id] = guest
        return guest

    async def update_guest(self, guest_id: str, fields: Dict[str, Any]) -> LocalGuest:
        guest = dataclasses.replace(self.guests[guest_id], **fields)
        self.guests[guest_id] = guest
        return guest

    # room types

    async def get_room_type(self, room_type_id: str) -> Optional[LocalRoomType]:
        return self.room_types.get(room_type_id)

    async def find_room_type_by_name(self, name: str) -> Optional[LocalRoomType]:
        return next((rt for rt in self.room_types.values() if rt.name == name), None)

    async def create_room_type(self, fields: Dict[str, Any]) -> LocalRoomType:
        room_type = LocalRoomType(id=self._next_id("rt"), **fields)
        self.room_types[room_type.id] = room_type
        return room_type

    async def update_room_type(self, room_type_id: str, fields: Dict[str, Any]) -> LocalRoomType:
        room_type = dataclasses.replace(self.room_types[room_type_id], **fields)
        self.room_types[room_type_id] = room_type
        return room_type

    # rooms

    async def get_room(self, room_id: str) -> Optional[LocalRoom]:
        return self.rooms.get(room_id)

    async def find_room_by_number(self, room_number: str) -> Optional[LocalRoom]:
        return next((r for r in self.rooms.values() if r.room_number == room_number), None)

    async def create_room(self, fields: Dict[str, Any]) -> LocalRoom:
        room = LocalRoom(id=self._next_id("room"), **fields)
        self.rooms[room.id] = room
        return room

    async def update_room(self, room_id: str, fields: Dict[str, Any]) -> LocalRoom:
        room = dataclasses.replace(self.rooms[room_id], **fields)
        self.rooms[room_id] = room
        return room

    # inventory

    async def get_availability(self, room_type_id: str, date_from: date, date_to: date) -> List[AvailabilitySnapshot]:
        return [s for s in self.availability.get(room_type_id, []) if date_from <= s.date <= date_to]

    async def get_rates(self, room_type_id: str, date_from: date, date_to: date) -> List[RateSnapshot]:
        return [s for s in self.rates.get(room_type_id, []) if date_from <= s.date <= date_to]

    # seeding helpers

    def add_guest(self, guest_id: str, email: Optional[str] = "john@example.com", **kwargs) -> LocalGuest:
        guest = LocalGuest(
            id=guest_id,
            first_name=kwargs.pop("first_name", "John"),
            last_name=kwargs.pop("last_name", "Doe"),
            email=email,
            **kwargs,
        )
        self.guests[guest_id] = guest
        return guest

    def add_room_type(self, room_type_id: str, name: str = "Deluxe Room", **kwargs) -> LocalRoomType:
        room_type = LocalRoomType(id=room_type_id, name=name, base_price=kwargs.pop("base_price", Decimal("120.00")), **kwargs)
        self.room_types[room_type_id] = room_type
        return room_type

    def add_reservation(self, reservation_id: str, guest_id: str, room_type_id: str, **kwargs) -> LocalReservation:
        reservation = LocalReservation(
            id=reservation_id,
            guest_id=guest_id,
            room_type_id=room_type_id,
            check_in=kwargs.pop("check_in", date(2025, 3, 1)),
            check_out=kwargs.pop("check_out", date(2025, 3, 3)),
            total_amount=kwargs.pop("total_amount", Decimal("240.00")),
            source=kwargs.pop("source", EntitySource.DIRECT),
            **kwargs,
        )
        self.reservations[reservation_id] = reservation
        return reservation


def remote_room_type(remote_id: int, name: str, date_upd: str = "2025-01-10 08:00:00") -> Dict[str, Any]:
    return {
        "id": remote_id,
        "id_hotel": 1,
        "name": name,
        "description": f"{name} description",
        "price": "150.00",
        "max_occupancy": 3,
        "date_upd": date_upd,
    }


def remote_customer(remote_id: int, email: str, date_upd: str = "2025-01-10 09:00:00") -> Dict[str, Any]:
    return {
        "id": remote_id,
        "firstname": "Jane",
        "lastname": "Roe",
        "email": email,
        "date_upd": date_upd,
    }


def remote_booking(
    remote_id: int,
    customer_id: int = 42,
    room_type_id: int = 7,
    date_upd: str = "2025-01-10 10:00:00",
    **overrides,
) -> Dict[str, Any]:
    booking = {
        "id": remote_id,
        "id_customer": customer_id,
        "id_room_type": room_type_id,
        "id_hotel": 1,
        "date_from": "2025-02-01",
        "date_to": "2025-02-04",
        "booking_status": 1,
        "adults": 2,
        "children": 0,
        "total_price": "450.00",
        "reference": f"QLO{remote_id}",
        "date_upd": date_upd,
    }
    booking.update(overrides)
    return booking
