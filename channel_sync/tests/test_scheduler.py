"""
Tests for the inbound sync scheduler
"""

from datetime import timedelta

import pytest

from channel_sync.contracts import SyncMode, TriggerSource
from channel_sync.queue import InboundTrigger, InMemoryQueue
from channel_sync.scheduler import SyncScheduler

from .conftest import BASE_URL
from .fixtures import FakeClock, FakeDateTimeClock

CHANNEL = "sync.inbound"


@pytest.fixture
def clock():
    return FakeDateTimeClock()


@pytest.fixture
def queue():
    return InMemoryQueue(clock=FakeClock())


@pytest.fixture
def scheduler(configurations, queue, clock):
    return SyncScheduler(configurations, queue, CHANNEL, tick_seconds=60, clock=clock)


async def triggers(queue):
    found = []
    while True:
        delivery = await queue.receive(CHANNEL, timeout=0)
        if delivery is None:
            return found
        found.append(InboundTrigger.model_validate_json(delivery.body))


@pytest.mark.asyncio
async def test_never_synced_configuration_is_due(scheduler, queue, sync_config):
    assert await scheduler.tick() == [sync_config.id]

    [trigger] = await triggers(queue)
    assert trigger.mode == SyncMode.INCREMENTAL
    assert trigger.trigger_source == TriggerSource.SCHEDULED


@pytest.mark.asyncio
async def test_not_enqueued_twice_within_interval(scheduler, queue, sync_config, clock):
    await scheduler.tick()
    clock.advance(minutes=5)
    assert await scheduler.tick() == []

    clock.advance(minutes=10)
    assert await scheduler.tick() == [sync_config.id]
    assert len(await triggers(queue)) == 2


@pytest.mark.asyncio
async def test_recent_success_is_not_due(scheduler, configurations, sync_config, clock):
    await configurations.mark_success(sync_config.id, at=clock() - timedelta(minutes=10))
    assert await scheduler.tick() == []

    clock.advance(minutes=5)
    assert await scheduler.tick() == [sync_config.id]


@pytest.mark.asyncio
async def test_respects_per_configuration_interval(scheduler, configurations, clock):
    hourly = await configurations.create(
        hotel_id="hotel-3",
        base_url=BASE_URL,
        api_key="KEY",
        remote_hotel_id="3",
        sync_enabled=True,
        sync_interval_minutes=60,
    )
    await configurations.mark_success(hourly.id, at=clock() - timedelta(minutes=30))

    assert await scheduler.tick() == []


@pytest.mark.asyncio
async def test_disabled_configurations_are_ignored(scheduler, configurations):
    await configurations.create(
        hotel_id="hotel-4",
        base_url=BASE_URL,
        api_key="KEY",
        remote_hotel_id="4",
        sync_enabled=False,
    )

    assert await scheduler.tick() == []
