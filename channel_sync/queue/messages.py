"""
Queue message types
Outbound messages are a tagged union keyed by ``kind``; inbound triggers start pull runs
"""

from datetime import date, datetime
from enum import Enum
from typing import Annotated, Any, Dict, Literal, Union
from uuid import uuid4

from pydantic import BaseModel, Field, TypeAdapter, model_validator

from channel_sync.contracts import EntityKind, SyncMode, TriggerSource
from channel_sync.utils.timeutils import utcnow


class MessageKind(str, Enum):
    RESERVATION_CREATE = "reservation.create"
    RESERVATION_UPDATE = "reservation.update"
    RESERVATION_CANCEL = "reservation.cancel"
    GUEST_CREATE = "guest.create"
    GUEST_UPDATE = "guest.update"
    ROOM_TYPE_UPDATE = "room_type.update"
    AVAILABILITY_UPDATE = "availability.update"
    RATE_UPDATE = "rate.update"

    @property
    def entity_kind(self) -> EntityKind:
        prefix = self.value.split(".", 1)[0]
        if prefix in ("availability", "rate"):
            return EntityKind.ROOM_TYPE
        return EntityKind(prefix)


class _OutboundBase(BaseModel):
    config_id: str
    entity_id: str
    message_id: str = Field(default_factory=lambda: str(uuid4()))
    enqueued_at: datetime = Field(default_factory=utcnow)

    @property
    def message_kind(self) -> MessageKind:
        return MessageKind(self.kind)


class _DateRangeMixin(BaseModel):
    date_from: date
    date_to: date

    @model_validator(mode="after")
    def validate_range(self):
        if self.date_to < self.date_from:
            raise ValueError("date_to must not be before date_from")
        return self


class ReservationCreateMessage(_OutboundBase):
    kind: Literal["reservation.create"] = "reservation.create"


class ReservationUpdateMessage(_OutboundBase):
    kind: Literal["reservation.update"] = "reservation.update"


class ReservationCancelMessage(_OutboundBase):
    kind: Literal["reservation.cancel"] = "reservation.cancel"


class GuestCreateMessage(_OutboundBase):
    kind: Literal["guest.create"] = "guest.create"


class GuestUpdateMessage(_OutboundBase):
    kind: Literal["guest.update"] = "guest.update"


class RoomTypeUpdateMessage(_OutboundBase):
    kind: Literal["room_type.update"] = "room_type.update"


class AvailabilityUpdateMessage(_OutboundBase, _DateRangeMixin):
    kind: Literal["availability.update"] = "availability.update"


class RateUpdateMessage(_OutboundBase, _DateRangeMixin):
    kind: Literal["rate.update"] = "rate.update"


OutboundMessage = Annotated[
    Union[
        ReservationCreateMessage,
        ReservationUpdateMessage,
        ReservationCancelMessage,
        GuestCreateMessage,
        GuestUpdateMessage,
        RoomTypeUpdateMessage,
        AvailabilityUpdateMessage,
        RateUpdateMessage,
    ],
    Field(discriminator="kind"),
]

MESSAGE_TYPES = {
    MessageKind.RESERVATION_CREATE: ReservationCreateMessage,
    MessageKind.RESERVATION_UPDATE: ReservationUpdateMessage,
    MessageKind.RESERVATION_CANCEL: ReservationCancelMessage,
    MessageKind.GUEST_CREATE: GuestCreateMessage,
    MessageKind.GUEST_UPDATE: GuestUpdateMessage,
    MessageKind.ROOM_TYPE_UPDATE: RoomTypeUpdateMessage,
    MessageKind.AVAILABILITY_UPDATE: AvailabilityUpdateMessage,
    MessageKind.RATE_UPDATE: RateUpdateMessage,
}

_outbound_adapter = TypeAdapter(OutboundMessage)


def build_outbound_message(kind: MessageKind, **fields: Any) -> BaseModel:
    return MESSAGE_TYPES[kind](**fields)


def parse_outbound_message(data: Union[str, bytes, Dict[str, Any]]) -> BaseModel:
    """Decode a queue payload; raises pydantic.ValidationError on unknown kinds or bad fields."""
    if isinstance(data, (str, bytes)):
        return _outbound_adapter.validate_json(data)
    return _outbound_adapter.validate_python(data)


class InboundTrigger(BaseModel):
    """Request to run an inbound pull for one configuration"""
    config_id: str
    mode: SyncMode = SyncMode.INCREMENTAL
    trigger_source: TriggerSource = TriggerSource.SCHEDULED
    message_id: str = Field(default_factory=lambda: str(uuid4()))
    enqueued_at: datetime = Field(default_factory=utcnow)
