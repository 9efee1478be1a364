"""
Domain contracts for the channel sync engine
Local entity snapshots, sync enums and the PMS storage protocol the workers call into
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, runtime_checkable


class EntityKind(str, Enum):
    RESERVATION = "reservation"
    GUEST = "guest"
    ROOM_TYPE = "room_type"
    ROOM = "room"


class SyncDirection(str, Enum):
    INBOUND = "inbound"
    OUTBOUND = "outbound"


class SyncOperation(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    CANCEL = "cancel"
    SKIP = "skip"


class SyncMode(str, Enum):
    FULL = "full"
    INCREMENTAL = "incremental"


class SyncStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


class TriggerSource(str, Enum):
    SCHEDULED = "scheduled"
    MANUAL = "manual"
    EVENT = "event"


class MatchType(str, Enum):
    """How a mapping was established"""
    CREATED = "created"
    NATURAL_KEY = "natural_key"
    LINKED = "linked"


class EntitySource(str, Enum):
    """Where a local record originated; CHANNEL means it came from the remote system"""
    DIRECT = "direct"
    PHONE = "phone"
    WALK_IN = "walk_in"
    WEBSITE = "website"
    CHANNEL = "channel"


class ReservationStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    CHECKED_IN = "checked_in"
    CHECKED_OUT = "checked_out"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class RoomStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    CLEANING = "cleaning"
    MAINTENANCE = "maintenance"
    OUT_OF_SERVICE = "out_of_service"


@dataclass
class LocalGuest:
    id: str
    first_name: str
    last_name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    nationality: Optional[str] = None
    address: Optional[str] = None
    source: EntitySource = EntitySource.DIRECT
    hotel_id: Optional[str] = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()


@dataclass
class LocalRoomType:
    id: str
    name: str
    description: Optional[str] = None
    base_price: Decimal = Decimal("0.00")
    max_occupancy: int = 2
    source: EntitySource = EntitySource.DIRECT
    hotel_id: Optional[str] = None


@dataclass
class LocalRoom:
    id: str
    room_number: str
    room_type_id: Optional[str]
    floor: int = 1
    status: RoomStatus = RoomStatus.AVAILABLE
    source: EntitySource = EntitySource.DIRECT
    hotel_id: Optional[str] = None


@dataclass
class LocalReservation:
    id: str
    guest_id: str
    room_type_id: str
    check_in: date
    check_out: date
    status: ReservationStatus = ReservationStatus.CONFIRMED
    adults: int = 1
    children: int = 0
    total_amount: Decimal = Decimal("0.00")
    room_id: Optional[str] = None
    confirmation_number: Optional[str] = None
    special_requests: Optional[str] = None
    source: EntitySource = EntitySource.DIRECT
    hotel_id: Optional[str] = None

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days


@dataclass
class AvailabilitySnapshot:
    room_type_id: str
    date: date
    available: int


@dataclass
class RateSnapshot:
    room_type_id: str
    date: date
    price: Decimal


@dataclass
class RemoteRecord:
    """A remote entity normalized for the pull handlers"""
    remote_id: str
    modified_at: Optional[datetime]
    fields: Dict[str, Any]
    natural_key: Optional[str] = None
    # Remote ids of related records, keyed by entity kind
    references: Dict[EntityKind, str] = field(default_factory=dict)


@dataclass
class SyncCounts:
    processed: int = 0
    created: int = 0
    updated: int = 0
    failed: int = 0

    def merge(self, other: "SyncCounts") -> None:
        self.processed += other.processed
        self.created += other.created
        self.updated += other.updated
        self.failed += other.failed


def is_remote_sourced(entity: Any) -> bool:
    """True when the local record was created from the remote system."""
    return getattr(entity, "source", None) == EntitySource.CHANNEL


def normalize_amount(amount: Any) -> Decimal:
    return Decimal(str(amount)).quantize(Decimal("0.01"), rounding=ROUND_HALF_UP)


@runtime_checkable
class PMSStore(Protocol):
    """
    Storage of the local PMS as seen by the sync engine.

    The CRUD layer owns these records; the sync engine only reads snapshots
    and upserts fields coming from the remote system. ``create_*`` and
    ``update_*`` receive plain field dicts produced by the adapters.
    """

    async def get_reservation(self, reservation_id: str) -> Optional[LocalReservation]: ...

    async def find_reservation_by_reference(self, reference: str) -> Optional[LocalReservation]: ...

    async def create_reservation(self, fields: Dict[str, Any]) -> LocalReservation: ...

    async def update_reservation(self, reservation_id: str, fields: Dict[str, Any]) -> LocalReservation: ...

    async def get_guest(self, guest_id: str) -> Optional[LocalGuest]: ...

    async def find_guest_by_email(self, email: str) -> Optional[LocalGuest]: ...

    async def create_guest(self, fields: Dict[str, Any]) -> LocalGuest: ...

    async def update_guest(self, guest_id: str, fields: Dict[str, Any]) -> LocalGuest: ...

    async def get_room_type(self, room_type_id: str) -> Optional[LocalRoomType]: ...

    async def find_room_type_by_name(self, name: str) -> Optional[LocalRoomType]: ...

    async def create_room_type(self, fields: Dict[str, Any]) -> LocalRoomType: ...

    async def update_room_type(self, room_type_id: str, fields: Dict[str, Any]) -> LocalRoomType: ...

    async def get_room(self, room_id: str) -> Optional[LocalRoom]: ...

    async def find_room_by_number(self, room_number: str) -> Optional[LocalRoom]: ...

    async def create_room(self, fields: Dict[str, Any]) -> LocalRoom: ...

    async def update_room(self, room_id: str, fields: Dict[str, Any]) -> LocalRoom: ...

    async def get_availability(self, room_type_id: str, date_from: date, date_to: date) -> List[AvailabilitySnapshot]: ...

    async def get_rates(self, room_type_id: str, date_from: date, date_to: date) -> List[RateSnapshot]: ...
