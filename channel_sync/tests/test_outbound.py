"""
End-to-end tests for the outbound dispatcher against a mocked QloApps webservice
"""

import json
import re
from datetime import date

import pytest
from pytest_httpx import HTTPXMock

from channel_sync.contracts import (
    AvailabilitySnapshot,
    EntityKind,
    EntitySource,
    MatchType,
    SyncDirection,
    SyncOperation,
)
from channel_sync.outbound import OutboundDispatcher
from channel_sync.queue import InMemoryQueue, MessageKind, build_outbound_message

from .conftest import BASE_URL
from .fixtures import FakeClock

CHANNEL = "sync.outbound"
CUSTOMER_SEARCH = re.compile(re.escape(f"{BASE_URL}/customers?") + ".*")


@pytest.fixture
def queue():
    return InMemoryQueue(clock=FakeClock())


@pytest.fixture
def dispatcher(queue, configurations, registry, store, mappings, audit_log):
    return OutboundDispatcher(
        queue,
        CHANNEL,
        configurations,
        registry,
        store,
        mappings,
        audit_log,
        max_attempts=3,
        retry_base_delay=2.0,
    )


async def publish(queue, kind, config_id, entity_id, **fields):
    message = build_outbound_message(kind, config_id=config_id, entity_id=entity_id, **fields)
    await queue.publish(CHANNEL, message.model_dump_json())
    return message


def sent_json(request):
    return json.loads(request.content)


class TestReservationPush:

    @pytest.mark.asyncio
    async def test_new_reservation_creates_customer_then_booking(
        self, dispatcher, queue, sync_config, store, mappings, audit_log, mapped_room_type, httpx_mock: HTTPXMock
    ):
        store.add_guest("guest-1", email="John@Example.com")
        store.add_reservation("R1", "guest-1", "rt-1", confirmation_number="R1")
        httpx_mock.add_response(url=CUSTOMER_SEARCH, method="GET", json=[])
        httpx_mock.add_response(url=f"{BASE_URL}/customers", method="POST", json={"customer": {"id": 42}})
        httpx_mock.add_response(url=f"{BASE_URL}/bookings", method="POST", json={"booking": {"id": 555}})

        await publish(queue, MessageKind.RESERVATION_CREATE, sync_config.id, "R1")
        assert await dispatcher.process_next(timeout=0) is True

        search, create_customer, create_booking = httpx_mock.get_requests()
        assert search.url.params["filter[email]"] == "[john@example.com]"
        assert sent_json(create_customer)["customer"]["email"] == "john@example.com"
        booking = sent_json(create_booking)["booking"]
        assert booking["id_customer"] == 42
        assert booking["id_room_type"] == 7
        assert booking["id_hotel"] == 1
        assert booking["source"] == "pms"

        guest_mapping = await mappings.get_by_local(sync_config.id, EntityKind.GUEST, "guest-1")
        assert guest_mapping.remote_id == "42"
        assert guest_mapping.match_type == MatchType.CREATED
        booking_mapping = await mappings.get_by_local(sync_config.id, EntityKind.RESERVATION, "R1")
        assert booking_mapping.remote_id == "555"

        [entry] = await audit_log.recent(sync_config.id)
        assert entry.direction == SyncDirection.OUTBOUND
        assert entry.operation == SyncOperation.CREATE
        assert entry.success is True
        assert (entry.local_id, entry.remote_id) == ("R1", "555")
        assert queue.pending(CHANNEL) == 0

    @pytest.mark.asyncio
    async def test_update_of_mapped_reservation_uses_put(
        self, dispatcher, queue, sync_config, store, mappings, audit_log, mapped_room_type, httpx_mock: HTTPXMock
    ):
        store.add_guest("guest-1")
        store.add_reservation("R1", "guest-1", "rt-1", adults=3)
        await mappings.upsert(sync_config.id, EntityKind.GUEST, "guest-1", "42")
        await mappings.upsert(sync_config.id, EntityKind.RESERVATION, "R1", "555")
        httpx_mock.add_response(url=f"{BASE_URL}/bookings/555", method="PUT", json={"booking": {"id": 555}})

        await publish(queue, MessageKind.RESERVATION_UPDATE, sync_config.id, "R1")
        await dispatcher.process_next(timeout=0)

        [request] = httpx_mock.get_requests()
        booking = sent_json(request)["booking"]
        assert booking["id"] == 555
        assert booking["adults"] == 3

        [entry] = await audit_log.recent(sync_config.id)
        assert entry.operation == SyncOperation.UPDATE

    @pytest.mark.asyncio
    async def test_redelivered_create_does_not_duplicate_booking(
        self, dispatcher, queue, sync_config, store, mappings, mapped_room_type, httpx_mock: HTTPXMock
    ):
        store.add_guest("guest-1")
        store.add_reservation("R1", "guest-1", "rt-1")
        await mappings.upsert(sync_config.id, EntityKind.GUEST, "guest-1", "42")
        httpx_mock.add_response(url=f"{BASE_URL}/bookings", method="POST", json={"booking": {"id": 555}})
        httpx_mock.add_response(url=f"{BASE_URL}/bookings/555", method="PUT", json={})

        message = await publish(queue, MessageKind.RESERVATION_CREATE, sync_config.id, "R1")
        await queue.publish(CHANNEL, message.model_dump_json())
        await dispatcher.process_next(timeout=0)
        await dispatcher.process_next(timeout=0)

        methods = [request.method for request in httpx_mock.get_requests()]
        assert methods == ["POST", "PUT"]
        assert len(await mappings.list_for_config(sync_config.id, EntityKind.RESERVATION)) == 1

    @pytest.mark.asyncio
    async def test_channel_sourced_reservation_is_not_echoed(
        self, dispatcher, queue, sync_config, store, audit_log, mapped_room_type, httpx_mock: HTTPXMock
    ):
        store.add_guest("guest-1")
        store.add_reservation("R2", "guest-1", "rt-1", source=EntitySource.CHANNEL)

        await publish(queue, MessageKind.RESERVATION_UPDATE, sync_config.id, "R2")
        await dispatcher.process_next(timeout=0)

        assert httpx_mock.get_requests() == []
        [entry] = await audit_log.recent(sync_config.id)
        assert entry.operation == SyncOperation.SKIP
        assert entry.success is True
        assert entry.error_message == "remote_sourced"
        assert queue.pending(CHANNEL) == 0

    @pytest.mark.asyncio
    async def test_missing_room_type_mapping_is_audited_and_dropped(
        self, dispatcher, queue, sync_config, store, audit_log, httpx_mock: HTTPXMock
    ):
        store.add_guest("guest-1")
        store.add_room_type("rt-2", "Suite")
        store.add_reservation("R3", "guest-1", "rt-2")

        await publish(queue, MessageKind.RESERVATION_CREATE, sync_config.id, "R3")
        await dispatcher.process_next(timeout=0)

        assert httpx_mock.get_requests() == []
        [entry] = await audit_log.recent(sync_config.id)
        assert entry.success is False
        assert entry.error_code == "mapping_error"
        assert entry.operation == SyncOperation.CREATE
        assert queue.pending(CHANNEL) == 0
        assert queue.dead_letters(CHANNEL) == []

    @pytest.mark.asyncio
    async def test_remote_rejection_is_dead_lettered(
        self, dispatcher, queue, sync_config, store, mappings, audit_log, mapped_room_type, httpx_mock: HTTPXMock
    ):
        store.add_guest("guest-1")
        store.add_reservation("R1", "guest-1", "rt-1")
        await mappings.upsert(sync_config.id, EntityKind.GUEST, "guest-1", "42")
        httpx_mock.add_response(
            url=f"{BASE_URL}/bookings",
            method="POST",
            status_code=400,
            json={"errors": [{"code": 90, "message": "Room type is not available"}]},
        )

        await publish(queue, MessageKind.RESERVATION_CREATE, sync_config.id, "R1")
        await dispatcher.process_next(timeout=0)

        [dead] = queue.dead_letters(CHANNEL)
        assert dead["reason"].startswith("validation_error")
        [entry] = await audit_log.recent(sync_config.id, success=False)
        assert entry.error_message == "Room type is not available"

    @pytest.mark.asyncio
    async def test_server_errors_are_redelivered(
        self, dispatcher, queue, sync_config, store, mappings, sleeper, mapped_room_type, httpx_mock: HTTPXMock
    ):
        store.add_guest("guest-1")
        store.add_reservation("R1", "guest-1", "rt-1")
        await mappings.upsert(sync_config.id, EntityKind.GUEST, "guest-1", "42")
        for _ in range(3):
            httpx_mock.add_response(url=f"{BASE_URL}/bookings", method="POST", status_code=503)

        await publish(queue, MessageKind.RESERVATION_CREATE, sync_config.id, "R1")
        await dispatcher.process_next(timeout=0)

        assert sleeper.delays == [1.0, 2.0]
        assert queue.pending(CHANNEL) == 1
        assert queue.dead_letters(CHANNEL) == []
        assert await mappings.get_by_local(sync_config.id, EntityKind.RESERVATION, "R1") is None


class TestCancellation:

    @pytest.mark.asyncio
    async def test_cancel_mapped_booking(self, dispatcher, queue, sync_config, mappings, audit_log, httpx_mock: HTTPXMock):
        await mappings.upsert(sync_config.id, EntityKind.RESERVATION, "R1", "555")
        httpx_mock.add_response(url=f"{BASE_URL}/bookings/555", method="PUT", json={})

        await publish(queue, MessageKind.RESERVATION_CANCEL, sync_config.id, "R1")
        await dispatcher.process_next(timeout=0)

        [request] = httpx_mock.get_requests()
        assert sent_json(request) == {"booking": {"id": 555, "booking_status": 4}}
        [entry] = await audit_log.recent(sync_config.id)
        assert entry.operation == SyncOperation.CANCEL

    @pytest.mark.asyncio
    async def test_cancel_unmapped_is_noop(self, dispatcher, queue, sync_config, audit_log, httpx_mock: HTTPXMock):
        await publish(queue, MessageKind.RESERVATION_CANCEL, sync_config.id, "R9")
        await dispatcher.process_next(timeout=0)

        assert httpx_mock.get_requests() == []
        [entry] = await audit_log.recent(sync_config.id)
        assert (entry.operation, entry.error_message) == (SyncOperation.SKIP, "not_mapped")

    @pytest.mark.asyncio
    async def test_cancel_of_channel_sourced_booking_is_not_echoed(
        self, dispatcher, queue, sync_config, store, mappings, audit_log, httpx_mock: HTTPXMock
    ):
        store.add_guest("guest-1", source=EntitySource.CHANNEL)
        store.add_reservation("R4", "guest-1", "rt-1", source=EntitySource.CHANNEL)
        await mappings.upsert(sync_config.id, EntityKind.RESERVATION, "R4", "556")

        await publish(queue, MessageKind.RESERVATION_CANCEL, sync_config.id, "R4")
        await dispatcher.process_next(timeout=0)

        assert httpx_mock.get_requests() == []
        [entry] = await audit_log.recent(sync_config.id)
        assert (entry.operation, entry.error_message) == (SyncOperation.SKIP, "remote_sourced")
        assert queue.pending(CHANNEL) == 0


class TestGuestAndInventoryPush:

    @pytest.mark.asyncio
    async def test_guest_matched_by_email_is_updated(
        self, dispatcher, sync_config, store, mappings, httpx_mock: HTTPXMock
    ):
        store.add_guest("guest-1", email="john@example.com", phone="+15551234")
        httpx_mock.add_response(url=CUSTOMER_SEARCH, method="GET", json={"customers": [{"id": 42, "email": "john@example.com"}]})
        httpx_mock.add_response(url=f"{BASE_URL}/customers/42", method="PUT", json={})

        message = build_outbound_message(MessageKind.GUEST_UPDATE, config_id=sync_config.id, entity_id="guest-1")
        outcome = await dispatcher.dispatch(message)

        assert outcome.operation == SyncOperation.UPDATE
        assert outcome.remote_id == "42"
        mapping = await mappings.get_by_local(sync_config.id, EntityKind.GUEST, "guest-1")
        assert mapping.match_type == MatchType.NATURAL_KEY
        assert sent_json(httpx_mock.get_requests()[-1])["customer"]["phone"] == "+15551234"

    @pytest.mark.asyncio
    async def test_room_type_without_mapping_is_created(
        self, dispatcher, sync_config, store, mappings, httpx_mock: HTTPXMock
    ):
        store.add_room_type("rt-5", "Family Suite")
        httpx_mock.add_response(url=f"{BASE_URL}/room_types", method="POST", json={"room_type": {"id": 12}})

        message = build_outbound_message(MessageKind.ROOM_TYPE_UPDATE, config_id=sync_config.id, entity_id="rt-5")
        outcome = await dispatcher.dispatch(message)

        assert outcome.operation == SyncOperation.CREATE
        assert (await mappings.get_by_local(sync_config.id, EntityKind.ROOM_TYPE, "rt-5")).remote_id == "12"

    @pytest.mark.asyncio
    async def test_availability_pushed_for_date_range(
        self, dispatcher, sync_config, store, mapped_room_type, httpx_mock: HTTPXMock
    ):
        store.availability["rt-1"] = [
            AvailabilitySnapshot("rt-1", date(2025, 3, 1), 4),
            AvailabilitySnapshot("rt-1", date(2025, 3, 2), 2),
            AvailabilitySnapshot("rt-1", date(2025, 3, 9), 5),
        ]
        httpx_mock.add_response(url=f"{BASE_URL}/room_types/7/availability", method="PUT", json={})

        message = build_outbound_message(
            MessageKind.AVAILABILITY_UPDATE,
            config_id=sync_config.id,
            entity_id="rt-1",
            date_from=date(2025, 3, 1),
            date_to=date(2025, 3, 3),
        )
        await dispatcher.dispatch(message)

        assert sent_json(httpx_mock.get_requests()[0]) == {
            "availability": [
                {"date": "2025-03-01", "available": 4},
                {"date": "2025-03-02", "available": 2},
            ]
        }

    @pytest.mark.asyncio
    async def test_channel_sourced_guest_skip_is_audited(
        self, dispatcher, queue, sync_config, store, audit_log, httpx_mock: HTTPXMock
    ):
        store.add_guest("guest-7", source=EntitySource.CHANNEL)

        await publish(queue, MessageKind.GUEST_UPDATE, sync_config.id, "guest-7")
        await dispatcher.process_next(timeout=0)

        assert httpx_mock.get_requests() == []
        [entry] = await audit_log.recent(sync_config.id)
        assert entry.entity_kind == EntityKind.GUEST
        assert (entry.operation, entry.success) == (SyncOperation.SKIP, True)
        assert (entry.local_id, entry.error_message) == ("guest-7", "remote_sourced")

    @pytest.mark.asyncio
    async def test_non_numeric_remote_id_is_a_mapping_error(
        self, dispatcher, queue, sync_config, store, mappings, audit_log, mapped_room_type, httpx_mock: HTTPXMock
    ):
        store.add_guest("guest-1")
        store.add_reservation("R1", "guest-1", "rt-1")
        await mappings.upsert(sync_config.id, EntityKind.GUEST, "guest-1", "42")
        await mappings.upsert(sync_config.id, EntityKind.RESERVATION, "R1", "QLO-555")

        await publish(queue, MessageKind.RESERVATION_UPDATE, sync_config.id, "R1")
        await dispatcher.process_next(timeout=0)

        assert httpx_mock.get_requests() == []
        [entry] = await audit_log.recent(sync_config.id)
        assert entry.success is False
        assert entry.error_code == "mapping_error"
        assert entry.remote_id == "QLO-555"
        assert queue.pending(CHANNEL) == 0
        assert queue.dead_letters(CHANNEL) == []


class TestDispatcherGuards:

    @pytest.mark.asyncio
    async def test_disabled_configuration_is_skipped(self, dispatcher, configurations, audit_log, httpx_mock: HTTPXMock):
        config = await configurations.create(
            hotel_id="hotel-2",
            base_url=BASE_URL,
            api_key="KEY",
            remote_hotel_id="2",
            sync_enabled=False,
        )
        message = build_outbound_message(MessageKind.GUEST_CREATE, config_id=config.id, entity_id="guest-1")

        outcome = await dispatcher.dispatch(message)

        assert outcome.skipped is True
        assert outcome.reason == "sync_disabled"
        [entry] = await audit_log.recent(config.id)
        assert entry.operation == SyncOperation.SKIP
        assert entry.error_message == "sync_disabled"

    @pytest.mark.asyncio
    async def test_unknown_configuration_is_dead_lettered(self, dispatcher, queue):
        await publish(queue, MessageKind.GUEST_CREATE, "missing-config", "guest-1")

        await dispatcher.process_next(timeout=0)

        assert queue.dead_letters(CHANNEL)[0]["reason"].startswith("configuration_error")

    @pytest.mark.asyncio
    async def test_malformed_message_is_dead_lettered(self, dispatcher, queue):
        await queue.publish(CHANNEL, json.dumps({"kind": "reservation.create"}))

        await dispatcher.process_next(timeout=0)

        assert queue.dead_letters(CHANNEL)[0]["reason"].startswith("validation_error")

    @pytest.mark.asyncio
    async def test_every_kind_needs_a_handler(self, queue, configurations, registry, store, mappings, audit_log):
        with pytest.raises(ValueError):
            OutboundDispatcher(
                queue, CHANNEL, configurations, registry, store, mappings, audit_log,
                handlers={MessageKind.GUEST_CREATE: None},
            )
