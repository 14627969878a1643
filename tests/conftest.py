"""
Pytest configuration and shared fixtures for orderflow tests

Every test gets fresh in-memory SQLite databases (one per service) and a
fresh in-memory event bus, so tests never share state.
"""

import pytest
import pytest_asyncio

from orderflow.bus.memory import InMemoryEventBus
from orderflow.core.config import ConsumerConfig, ServiceConfig
from orderflow.deadletter import DeadLetterRouter
from orderflow.ledger.store import ConsumerLedger
from orderflow.outbox.store import OutboxStore
from orderflow.outbox.types import OutboxConfig
from orderflow.services import InventoryServiceRuntime, OrderServiceRuntime
from orderflow.storage.schema import INVENTORY_SERVICE_TABLES, ORDER_SERVICE_TABLES
from orderflow.storage.sqlite import SQLiteDatabase

# Fast timings for tests: no real backoff waits
FAST_OUTBOX = OutboxConfig(
    batch_size=100,
    poll_interval_seconds=0.01,
    max_retries=3,
    backoff_base_seconds=0.0,
    backoff_max_seconds=0.0,
)
FAST_CONSUMER = ConsumerConfig(
    poll_timeout_seconds=0.01,
    max_records=50,
    max_attempts=3,
    backoff_base_seconds=0.0,
    backoff_max_seconds=0.0,
)


@pytest_asyncio.fixture
async def bus():
    bus = InMemoryEventBus(partitions=4)
    await bus.connect()
    yield bus
    await bus.close()


@pytest_asyncio.fixture
async def order_db():
    db = SQLiteDatabase(":memory:")
    await db.initialize(ORDER_SERVICE_TABLES)
    yield db
    await db.close()


@pytest_asyncio.fixture
async def inventory_db():
    db = SQLiteDatabase(":memory:")
    await db.initialize(INVENTORY_SERVICE_TABLES)
    yield db
    await db.close()


@pytest.fixture
def order_outbox(order_db):
    return OutboxStore(order_db)


@pytest.fixture
def order_ledger(order_db):
    return ConsumerLedger(order_db)


@pytest.fixture
def inventory_outbox(inventory_db):
    return OutboxStore(inventory_db)


@pytest.fixture
def inventory_ledger(inventory_db):
    return ConsumerLedger(inventory_db)


@pytest.fixture
def dead_letters(bus):
    return DeadLetterRouter(bus)


def service_config(name: str) -> ServiceConfig:
    return ServiceConfig(
        service_name=name,
        database_url="sqlite:///:memory:",
        outbox=FAST_OUTBOX,
        consumer=FAST_CONSUMER,
    )


@pytest_asyncio.fixture
async def order_service(bus):
    runtime = OrderServiceRuntime(service_config("order"), bus)
    await runtime.initialize()
    yield runtime
    await runtime.close()


@pytest_asyncio.fixture
async def inventory_service(bus):
    runtime = InventoryServiceRuntime(service_config("inventory"), bus)
    await runtime.initialize()
    yield runtime
    await runtime.close()


async def _settle(*runtimes, max_rounds: int = 20) -> int:
    total = 0
    for _ in range(max_rounds):
        moved = 0
        for runtime in runtimes:
            moved += await runtime.pump()
        total += moved
        if moved == 0:
            return total
    return total


@pytest.fixture
def settle():
    """Pump publishers and consumers until a round moves nothing."""
    return _settle


@pytest.fixture
def fast_outbox_config():
    return FAST_OUTBOX


@pytest.fixture
def fast_consumer_config():
    return FAST_CONSUMER
