"""
Pytest configuration for channel sync tests
"""

import pytest
import pytest_asyncio
from cryptography.fernet import Fernet
from sqlalchemy.ext.asyncio import create_async_engine
from sqlalchemy.pool import StaticPool

from channel_sync.client import ResilientClient
from channel_sync.config import SyncSettings
from channel_sync.contracts import EntityKind, MatchType
from channel_sync.registry import ClientRegistry
from channel_sync.resilience import RetryPolicy
from channel_sync.storage.audit_log import SyncAuditLog
from channel_sync.storage.configurations import SyncConfigurationRepository
from channel_sync.storage.database import create_session_factory, create_tables
from channel_sync.storage.mappings import EntityMappingStore
from channel_sync.storage.sync_state import SyncStateTracker
from channel_sync.utils.crypto import CredentialCipher

from .fixtures import InMemoryPMSStore, SleepRecorder

BASE_URL = "https://pms.example.com/api"
API_KEY = "WSKEY1234567890"


@pytest.fixture
def encryption_key() -> str:
    return Fernet.generate_key().decode()


@pytest.fixture
def settings(encryption_key) -> SyncSettings:
    return SyncSettings(
        database_url="sqlite+aiosqlite://",
        encryption_key=encryption_key,
        max_retries=2,
        queue_max_attempts=3,
        queue_retry_base_delay_seconds=2.0,
        inbound_page_size=100,
        log_json=False,
    )


@pytest_asyncio.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_tables(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def cipher(encryption_key) -> CredentialCipher:
    return CredentialCipher(encryption_key)


@pytest.fixture
def configurations(session_factory, cipher) -> SyncConfigurationRepository:
    return SyncConfigurationRepository(session_factory, cipher)


@pytest.fixture
def mappings(session_factory) -> EntityMappingStore:
    return EntityMappingStore(session_factory)


@pytest.fixture
def tracker(session_factory) -> SyncStateTracker:
    return SyncStateTracker(session_factory)


@pytest.fixture
def audit_log(session_factory) -> SyncAuditLog:
    return SyncAuditLog(session_factory)


@pytest.fixture
def store() -> InMemoryPMSStore:
    return InMemoryPMSStore()


@pytest.fixture
def sleeper() -> SleepRecorder:
    return SleepRecorder()


@pytest_asyncio.fixture
async def sync_config(configurations):
    """Enabled configuration for hotel-1 linked to remote hotel 1"""
    return await configurations.create(
        hotel_id="hotel-1",
        base_url=BASE_URL,
        api_key=API_KEY,
        remote_hotel_id="1",
        sync_enabled=True,
    )


@pytest_asyncio.fixture
async def registry(settings, configurations, sleeper):
    def build(config, api_key):
        return ResilientClient(
            account=f"{config.hotel_id}:{config.remote_hotel_id}",
            base_url=config.base_url,
            api_key=api_key,
            retry_policy=RetryPolicy(max_retries=2, sleep=sleeper),
        )

    registry = ClientRegistry(settings, configurations, builder=build)
    yield registry
    await registry.aclose()


@pytest_asyncio.fixture
async def mapped_room_type(sync_config, store, mappings):
    """Local room type rt-1 already paired with remote room type 7"""
    store.add_room_type("rt-1", "Deluxe Room")
    await mappings.upsert(sync_config.id, EntityKind.ROOM_TYPE, "rt-1", "7", MatchType.LINKED)
    return store.room_types["rt-1"]


def pytest_configure(config):
    """Configure custom markers"""
    config.addinivalue_line("markers", "integration: mark test as requiring external services")
    config.addinivalue_line("markers", "slow: mark test as slow running")
