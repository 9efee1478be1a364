"""
QloApps webservice API
Typed resource calls (bookings, customers, room types, rooms, inventory) over a ResilientClient
"""

import secrets
from datetime import datetime
from typing import Any, Dict, List, Optional

from channel_sync.client import ConnectionTestResult, ResilientClient
from channel_sync.errors import MappingError, NotFoundError, ServerError
from channel_sync.adapters.qloapps.mappers import BOOKING_STATUS_TO_REMOTE, format_remote_datetime
from channel_sync.contracts import EntityKind, ReservationStatus
from channel_sync.utils.logging import get_safe_logger

logger = get_safe_logger("channel_sync.qloapps")


def _numeric_id(remote_id: str, entity_kind: EntityKind) -> int:
    """Webservice ids are integers; anything else is a corrupt mapping."""
    try:
        return int(remote_id)
    except (TypeError, ValueError):
        raise MappingError(
            f"Stored remote {entity_kind.value} id {remote_id!r} is not numeric",
            entity_kind=entity_kind.value,
            remote_id=str(remote_id),
        ) from None


class QloAppsAPI:
    """Resource-level access to one QloApps hotel"""

    BOOKINGS = "bookings"
    CUSTOMERS = "customers"
    ROOM_TYPES = "room_types"
    ROOMS = "hotel_rooms"
    HOTELS = "hotels"

    def __init__(self, client: ResilientClient, remote_hotel_id: str):
        self.client = client
        self.remote_hotel_id = str(remote_hotel_id)

    # -- helpers -----------------------------------------------------------

    @staticmethod
    def _unwrap_list(payload: Any, key: str) -> List[Dict[str, Any]]:
        # Empty result sets come back as [] instead of {key: []}
        if isinstance(payload, dict):
            items = payload.get(key) or []
            return items if isinstance(items, list) else [items]
        return []

    @staticmethod
    def _created_id(payload: Any, key: str) -> str:
        record = payload.get(key) if isinstance(payload, dict) else None
        if not isinstance(record, dict) or record.get("id") in (None, ""):
            raise ServerError(f"Remote API did not return an id for the new {key}")
        return str(record["id"])

    async def _list(
        self,
        resource: str,
        key: str,
        modified_since: Optional[datetime] = None,
        offset: int = 0,
        limit: int = 100,
        filters: Optional[Dict[str, Any]] = None,
    ) -> List[Dict[str, Any]]:
        params: Dict[str, Any] = {
            "display": "full",
            "limit": f"{offset},{limit}",
            "sort": "[date_upd_ASC,id_ASC]",
        }
        if modified_since is not None:
            params["filter[date_upd]"] = f">[{format_remote_datetime(modified_since)}]"
            params["date"] = 1
        params.update(filters or {})

        payload = await self.client.get(resource, params=params)
        return self._unwrap_list(payload, key)

    async def _get(self, resource: str, key: str, remote_id: str) -> Optional[Dict[str, Any]]:
        try:
            payload = await self.client.get(f"{resource}/{remote_id}")
        except NotFoundError:
            return None
        record = payload.get(key) if isinstance(payload, dict) else None
        return record if isinstance(record, dict) else None

    # -- bookings ----------------------------------------------------------

    async def list_bookings(self, modified_since: Optional[datetime] = None, offset: int = 0, limit: int = 100) -> List[Dict[str, Any]]:
        return await self._list(
            self.BOOKINGS, "bookings", modified_since, offset, limit,
            filters={"filter[id_hotel]": self.remote_hotel_id},
        )

    async def get_booking(self, remote_id: str) -> Optional[Dict[str, Any]]:
        return await self._get(self.BOOKINGS, "booking", remote_id)

    async def create_booking(self, booking: Dict[str, Any]) -> str:
        payload = await self.client.post(self.BOOKINGS, json={"booking": booking})
        remote_id = self._created_id(payload, "booking")
        logger.info("remote_booking_created", remote_id=remote_id, hotel=self.remote_hotel_id)
        return remote_id

    async def update_booking(self, remote_id: str, booking: Dict[str, Any]) -> None:
        body = {"id": _numeric_id(remote_id, EntityKind.RESERVATION), **booking}
        await self.client.put(f"{self.BOOKINGS}/{remote_id}", json={"booking": body})

    async def cancel_booking(self, remote_id: str) -> None:
        await self.update_booking(remote_id, {"booking_status": BOOKING_STATUS_TO_REMOTE[ReservationStatus.CANCELLED]})

    # -- customers ---------------------------------------------------------

    async def list_customers(self, modified_since: Optional[datetime] = None, offset: int = 0, limit: int = 100) -> List[Dict[str, Any]]:
        return await self._list(self.CUSTOMERS, "customers", modified_since, offset, limit)

    async def get_customer(self, remote_id: str) -> Optional[Dict[str, Any]]:
        return await self._get(self.CUSTOMERS, "customer", remote_id)

    async def find_customer_by_email(self, email: str) -> Optional[Dict[str, Any]]:
        payload = await self.client.get(
            self.CUSTOMERS,
            params={"display": "full", "filter[email]": f"[{email.lower()}]", "limit": "0,1"},
        )
        customers = self._unwrap_list(payload, "customers")
        return customers[0] if customers else None

    async def create_customer(self, customer: Dict[str, Any]) -> str:
        # The webservice requires a password; guests never log in with it
        body = {"passwd": secrets.token_urlsafe(16), "active": 1, **customer}
        payload = await self.client.post(self.CUSTOMERS, json={"customer": body})
        return self._created_id(payload, "customer")

    async def update_customer(self, remote_id: str, customer: Dict[str, Any]) -> None:
        body = {"id": _numeric_id(remote_id, EntityKind.GUEST), **customer}
        await self.client.put(f"{self.CUSTOMERS}/{remote_id}", json={"customer": body})

    # -- room types and rooms ----------------------------------------------

    async def list_room_types(self, modified_since: Optional[datetime] = None, offset: int = 0, limit: int = 100) -> List[Dict[str, Any]]:
        return await self._list(
            self.ROOM_TYPES, "room_types", modified_since, offset, limit,
            filters={"filter[id_hotel]": self.remote_hotel_id},
        )

    async def get_room_type(self, remote_id: str) -> Optional[Dict[str, Any]]:
        return await self._get(self.ROOM_TYPES, "room_type", remote_id)

    async def create_room_type(self, room_type: Dict[str, Any]) -> str:
        payload = await self.client.post(self.ROOM_TYPES, json={"room_type": room_type})
        return self._created_id(payload, "room_type")

    async def update_room_type(self, remote_id: str, room_type: Dict[str, Any]) -> None:
        body = {"id": _numeric_id(remote_id, EntityKind.ROOM_TYPE), **room_type}
        await self.client.put(f"{self.ROOM_TYPES}/{remote_id}", json={"room_type": body})

    async def list_rooms(self, modified_since: Optional[datetime] = None, offset: int = 0, limit: int = 100) -> List[Dict[str, Any]]:
        return await self._list(
            self.ROOMS, "hotel_rooms", modified_since, offset, limit,
            filters={"filter[id_hotel]": self.remote_hotel_id},
        )

    # -- inventory ---------------------------------------------------------

    async def update_availability(self, remote_room_type_id: str, entries: List[Dict[str, Any]]) -> None:
        await self.client.put(
            f"{self.ROOM_TYPES}/{remote_room_type_id}/availability",
            json={"availability": entries},
        )

    async def update_rates(self, remote_room_type_id: str, entries: List[Dict[str, Any]]) -> None:
        await self.client.put(
            f"{self.ROOM_TYPES}/{remote_room_type_id}/rates",
            json={"rates": entries},
        )

    # -- account -----------------------------------------------------------

    async def get_hotel(self) -> Optional[Dict[str, Any]]:
        return await self._get(self.HOTELS, "hotel", self.remote_hotel_id)

    async def test_connection(self) -> ConnectionTestResult:
        return await self.client.test_connection()
