# tests/conftest.py

import os

# Configure before any leadsync import builds settings / the engine
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ENABLE_SCHEDULER"] = "False"
os.environ["REPORTING_TIMEZONE"] = "UTC"

import pytest
import pytest_asyncio
from datetime import date
from uuid import uuid4

import httpx
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import NullPool

from leadsync import events
from leadsync.database import Base
from leadsync.locks import reset_locks
from leadsync.models import (
    Tenant, LeadRecord, EmailSequence, SequenceStep, SuppressionEntry
)
from leadsync.fields import FieldBag
from leadsync.services.sheet_fetcher import SheetFetcher

SHEET_ID = "1AbCdEfGhIjKlMnOpQrStUvWxYz0123456789"
SHEET_URL = f"https://docs.google.com/spreadsheets/d/{SHEET_ID}/edit#gid=42"

SAMPLE_CSV = (
    "Name,Company,Email,Phone,Date,Channel of Lead,Outcome,Company Size\n"
    "Alice Smith,Acme Ltd,Alice@Acme.com,07700 900123,03.03.25,Referral,Qualified,1000+\n"
    "Bob Jones,,bob@example.org,,04.03.25,Website,Interested,\n"
    "w/c 03.03.25,,,,,,,\n"
    ",,,,,,,\n"
    "Carol White,Globex,,,10.02.25,Email,,\n"
)


# ============================================================================
# DATABASE
# ============================================================================

@pytest_asyncio.fixture
async def session_factory(tmp_path):
    """Fresh SQLite database per test; each session gets its own connection."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'leadsync.db'}",
        poolclass=NullPool
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture(autouse=True)
def clean_registries():
    """Locks and event subscribers are process-wide."""
    reset_locks()
    subscribers = list(events._subscribers)
    yield
    reset_locks()
    events._subscribers[:] = subscribers


# ============================================================================
# SAMPLE DATA
# ============================================================================

@pytest_asyncio.fixture
async def tenant(db):
    tenant = Tenant(id=uuid4(), name="Acme Sales", sheet_url=SHEET_URL)
    db.add(tenant)
    await db.commit()
    return tenant


@pytest_asyncio.fixture
async def other_tenant(db):
    tenant = Tenant(id=uuid4(), name="Other Co", sheet_url=None)
    db.add(tenant)
    await db.commit()
    return tenant


def make_lead(tenant_id, row_key="lead_test", status="new", **fields) -> LeadRecord:
    """Stored lead whose fields come from keyword arguments (underscores become spaces)."""
    bag = FieldBag([(key.replace("_", " "), value) for key, value in fields.items()])
    return LeadRecord(
        id=uuid4(),
        tenant_id=tenant_id,
        row_key=row_key,
        account_label="Acme Sales",
        fields=bag.to_pairs(),
        status=status
    )


@pytest_asyncio.fixture
async def sequence(db, tenant):
    sequence = EmailSequence(id=uuid4(), tenant_id=tenant.id, name="Welcome")
    sequence.steps = [
        SequenceStep(id=uuid4(), step_order=2, delay_days_from_previous=5),
        SequenceStep(id=uuid4(), step_order=1, delay_days_from_previous=2),
    ]
    db.add(sequence)
    await db.commit()
    return sequence


@pytest_asyncio.fixture
async def suppressions(db, tenant):
    entries = [
        SuppressionEntry(tenant_id=tenant.id, type="email", value="blocked@acme.com", reason="Unsubscribed"),
        SuppressionEntry(tenant_id=tenant.id, type="domain", value="competitor.io", reason="Competitor"),
    ]
    db.add_all(entries)
    await db.commit()
    return entries


@pytest.fixture
def reporting_day():
    """A Wednesday: week runs 03.03.25 - 09.03.25."""
    return date(2025, 3, 5)


# ============================================================================
# FAKE SHEET
# ============================================================================

def sheet_transport(routes, calls=None):
    """
    MockTransport answering by gid: ``routes`` maps gid -> (status, body).
    Unknown gids answer 404.
    """
    def handler(request: httpx.Request) -> httpx.Response:
        gid = request.url.params.get("gid")
        if calls is not None:
            calls.append(gid)
        status, body = routes.get(gid, (404, "Not Found"))
        return httpx.Response(status, text=body)

    return httpx.MockTransport(handler)


async def no_sleep(delay):
    return None


def make_fetcher(routes, calls=None, **kwargs) -> SheetFetcher:
    client = httpx.AsyncClient(transport=sheet_transport(routes, calls))
    kwargs.setdefault("initial_retry_delay", 0)
    kwargs.setdefault("sleep", no_sleep)
    return SheetFetcher(client=client, **kwargs)


def pytest_configure(config):
    config.addinivalue_line("markers", "unit: unit tests")
    config.addinivalue_line("markers", "integration: integration tests")
    config.addinivalue_line("markers", "slow: slow running tests")
