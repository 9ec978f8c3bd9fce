from __future__ import annotations

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncEngine, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

from apps.api.notifications import NotificationDispatcher
from apps.api.tickets.engine import LifecycleEngine
from apps.api.tickets.models import Actor, ActorKind, StaffRole
from apps.api.tickets.stats import StatsAggregator
from packages.db.models import StaffMemberTable, TicketCategoryTable

HOSTEL = 1
HOSTEL_PLUMBING = 11
HOSTEL_RETIRED_SUB = 12
ACADEMICS = 2
WIFI = 3
RETIRED = 4

STUDENT = Actor(id="stu-1", kind=ActorKind.STUDENT, name="Asha")
OTHER_STUDENT = Actor(id="stu-2", kind=ActorKind.STUDENT, name="Bilal")
ADMIN = Actor(id="admin-1", kind=ActorKind.STAFF, name="Admin", role=StaffRole.ADMIN)
MANAGER = Actor(id="mgr-7", kind=ActorKind.STAFF, name="Maya", role=StaffRole.MANAGER)
WORKER = Actor(id="wrk-1", kind=ActorKind.STAFF, name="Wen", role=StaffRole.WORKER)


class RecordingBridge:
    def __init__(self) -> None:
        self.sent = []

    async def send(self, notification) -> None:
        self.sent.append(notification)


def _reference_rows():
    return [
        TicketCategoryTable(id=HOSTEL, name="Hostel", parent_id=None, is_active=True),
        TicketCategoryTable(id=HOSTEL_PLUMBING, name="Plumbing", parent_id=HOSTEL, is_active=True),
        TicketCategoryTable(id=HOSTEL_RETIRED_SUB, name="Laundry", parent_id=HOSTEL, is_active=False),
        TicketCategoryTable(id=ACADEMICS, name="Academics", parent_id=None, is_active=True),
        TicketCategoryTable(id=WIFI, name="Campus WiFi", parent_id=None, is_active=True, is_high_priority=True),
        TicketCategoryTable(id=RETIRED, name="Parking", parent_id=None, is_active=False),
        StaffMemberTable(id="admin-1", name="Admin", role="admin"),
        StaffMemberTable(id="mgr-7", name="Maya", role="manager"),
        StaffMemberTable(id="wrk-1", name="Wen", role="worker"),
        StaffMemberTable(id="wrk-2", name="Ola", role="worker"),
        StaffMemberTable(id="wrk-3", name="Tariq", role="worker"),
        StaffMemberTable(id="wrk-off", name="Former", role="worker", is_active=False),
    ]


@pytest_asyncio.fixture
async def db_engine() -> AsyncEngine:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    try:
        yield engine
    finally:
        await engine.dispose()


@pytest_asyncio.fixture
async def session_factory(db_engine: AsyncEngine) -> async_sessionmaker:
    factory = async_sessionmaker(db_engine, expire_on_commit=False)
    async with factory() as session:
        async with session.begin():
            session.add_all(_reference_rows())
    return factory


@pytest.fixture
def bridge() -> RecordingBridge:
    return RecordingBridge()


@pytest.fixture
def dispatcher(bridge: RecordingBridge) -> NotificationDispatcher:
    return NotificationDispatcher(bridge)


@pytest.fixture
def lifecycle(session_factory: async_sessionmaker, dispatcher: NotificationDispatcher) -> LifecycleEngine:
    return LifecycleEngine(session_factory, dispatcher=dispatcher)


@pytest.fixture
def stats(session_factory: async_sessionmaker) -> StatsAggregator:
    return StatsAggregator(session_factory)
