"""
Shared test fixtures — in-memory SQLite async database + FastAPI TestClient.

Strategy:
1. Set DATABASE_URL to SQLite before anything loads
2. Inject a test harmonizer.database module into sys.modules before harmonizer.main imports
3. All routers then resolve Depends(get_session) to the test session
"""
import os
import sys
import types
from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# ── 1. Environment ──
os.environ["DATABASE_URL"] = "sqlite+aiosqlite://"
os.environ["DEBUG"] = "false"

# ── 2. Test engine (SQLite in-memory, one shared connection) ──
TEST_ENGINE = create_async_engine(
    "sqlite+aiosqlite://",
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

TestSession = async_sessionmaker(
    TEST_ENGINE,
    class_=AsyncSession,
    expire_on_commit=False,
)


# ── 3. Replace harmonizer.database BEFORE harmonizer.main is imported ──
async def _test_get_session() -> AsyncGenerator[AsyncSession, None]:
    async with TestSession() as session:
        yield session


async def _test_check_db() -> bool:
    return True


_fake_db = types.ModuleType("harmonizer.database")
_fake_db.engine = TEST_ENGINE
_fake_db.async_session = TestSession
_fake_db.get_session = _test_get_session
_fake_db.check_db_connection = _test_check_db
sys.modules["harmonizer.database"] = _fake_db

# ── 4. Now import the app — all routers will see the test database ──
from harmonizer.models import Base  # noqa: E402
from harmonizer.models import *  # noqa: E402, F401, F403
from harmonizer.main import app as fastapi_app  # noqa: E402
from harmonizer.services.harmonization import (  # noqa: E402
    integrity_warnings,
    mapping_index_cache,
)


# ── Fixtures ──

@pytest_asyncio.fixture(autouse=True)
async def setup_database():
    """Create all tables before each test, drop after; start with a cold index cache."""
    mapping_index_cache.invalidate()
    integrity_warnings.reset()
    async with TEST_ENGINE.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with TEST_ENGINE.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    mapping_index_cache.invalidate()


@pytest_asyncio.fixture
async def client() -> AsyncGenerator[AsyncClient, None]:
    transport = ASGITransport(app=fastapi_app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture
async def db() -> AsyncGenerator[AsyncSession, None]:
    async with TestSession() as session:
        yield session


# ── Seed data helpers ──

@pytest_asyncio.fixture
async def seed_frameworks(db: AsyncSession):
    """ISO 27001 and SOC 2 with a handful of controls; returns ids by code."""
    from harmonizer.models.framework import Control, Framework

    iso = Framework(name="ISO 27001", code="iso27001", version="2022")
    soc = Framework(name="SOC 2", code="soc2", version="2017")
    db.add_all([iso, soc])
    await db.flush()

    controls = {}
    for fw, code, title in [
        (iso, "A.5.1", "Policies for information security"),
        (iso, "A.8.1", "User endpoint devices"),
        (iso, "A.9.1", "Access control policy"),
        (soc, "CC1.1", "COSO Principle 1"),
        (soc, "CC6.1", "Logical access security"),
    ]:
        c = Control(framework_id=fw.id, control_code=code, title=title)
        db.add(c)
        await db.flush()
        controls[code] = c.id

    await db.commit()
    return {"iso": iso.id, "soc": soc.id, "controls": controls}


@pytest_asyncio.fixture
async def seed_scenario(db: AsyncSession, seed_frameworks):
    """One client with an ISO target plan, an active SOC 2 donor and an idle SOC 2 plan,
    plus a second client whose done work must never leak across.

    Expected analysis of the target plan:
      T2 (A.8.1, 12h) ← CC6.1 ai_medium
      T1 (A.5.1,  8h) ← CC1.1 manual
      T4 (no code, 6h) ← title match "Access Control Policy"
      T3 is already done; D4 (CC9.9) is not in the catalog.
    """
    from harmonizer.models.compliance import ControlMapping
    from harmonizer.models.implementation import ImplementationPlan, ImplementationTask

    fw = seed_frameworks
    ctl = fw["controls"]
    db.add_all([
        ControlMapping(source_control_id=ctl["CC1.1"], target_control_id=ctl["A.5.1"],
                       confidence="manual"),
        ControlMapping(source_control_id=ctl["CC6.1"], target_control_id=ctl["A.8.1"],
                       confidence="ai_medium"),
    ])

    target = ImplementationPlan(client_id=1, framework_id=fw["iso"], title="ISO rollout",
                                status="in_progress", estimated_hours=100)
    donor = ImplementationPlan(client_id=1, framework_id=fw["soc"], title="SOC 2 Type II",
                               status="in_progress", estimated_hours=80)
    idle = ImplementationPlan(client_id=1, framework_id=fw["soc"], title="SOC 2 draft",
                              status="not_started")
    other = ImplementationPlan(client_id=2, framework_id=fw["soc"], title="Other tenant SOC 2",
                               status="completed")
    db.add_all([target, donor, idle, other])
    await db.flush()

    def task(plan, title, status, code=None, hours=None):
        t = ImplementationTask(implementation_plan_id=plan.id, title=title, status=status,
                               control_code=code, estimated_hours=hours)
        db.add(t)
        return t

    t1 = task(target, "Write security policy", "todo", "A.5.1", 8)
    t2 = task(target, "Harden endpoints", "in_progress", "A.8.1", 12)
    t3 = task(target, "Define access policy", "done", "A.9.1", 5)
    t4 = task(target, "Access Control Policy", "todo", None, 6)

    d1 = task(donor, "Board oversight charter", "done", "CC1.1", 3)
    d2 = task(donor, "Logical access review", "done", "CC6.1", 4)
    d3 = task(donor, "Access Control Policy", "done", None, 2)
    d4 = task(donor, "Legacy control", "done", "CC9.9", 1)
    d5 = task(donor, "Board oversight follow-up", "todo", "CC1.1", 1)

    task(idle, "Logical access review", "done", "CC6.1", 4)
    task(other, "Board oversight charter", "done", "CC1.1", 3)
    task(other, "Access Control Policy", "done", None, 2)

    await db.commit()
    return {
        "target": target.id, "donor": donor.id, "idle": idle.id, "other": other.id,
        "t1": t1.id, "t2": t2.id, "t3": t3.id, "t4": t4.id,
        "d1": d1.id, "d2": d2.id, "d3": d3.id, "d4": d4.id, "d5": d5.id,
        **fw,
    }
