# tests/conftest.py
from datetime import timedelta
from typing import Optional

import pytest
import pytest_asyncio

from competition_engine.config import Settings
from competition_engine.db.database import DataBase
from competition_engine.db.enums import Level, TimingType, UserRole, UserStatus
from competition_engine.db.schemas.competition_round import CompetitionRoundCreate
from competition_engine.db.schemas.submission import SubmissionCreate
from competition_engine.db.schemas.user import UserCreate
from competition_engine.engine import CompetitionEngine
from competition_engine.services.broadcast import LocalMemoryBroadcaster
from competition_engine.utils.clock import utc_now

YEAR = 2025


@pytest_asyncio.fixture
async def database(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite+aiosqlite:///{tmp_path}/engine.db")
    Settings._instance = None
    DataBase._instance = None

    db = DataBase()
    await db.create_all()
    yield db
    await db.dispose()

    Settings._instance = None
    DataBase._instance = None


@pytest.fixture
def broadcaster():
    return LocalMemoryBroadcaster()


@pytest_asyncio.fixture
async def engine(database, broadcaster):
    return CompetitionEngine(database, broadcaster=broadcaster)


@pytest.fixture
def make_judge(database):
    async def _make(
        level: Level = Level.COUNCIL,
        region: Optional[str] = "North",
        council: Optional[str] = "Alpha",
        name: str = "Judge",
        status: UserStatus = UserStatus.ACTIVE,
    ):
        return await database.create_user(
            UserCreate(
                name=name,
                role=UserRole.JUDGE,
                status=status,
                assigned_level=level,
                assigned_region=region if level != Level.NATIONAL else None,
                assigned_council=council if level == Level.COUNCIL else None,
            )
        )
    return _make


@pytest.fixture
def make_submission(engine):
    async def _make(
        level: Level = Level.COUNCIL,
        region: Optional[str] = "North",
        council: Optional[str] = "Alpha",
        area: str = "Mathematics",
        teacher: str = "Teacher",
        year: int = YEAR,
    ):
        return await engine.submissions.create_submission(
            SubmissionCreate(
                teacher_name=teacher,
                year=year,
                area_of_focus=area,
                level=level,
                region=region if level != Level.NATIONAL else None,
                council=council if level == Level.COUNCIL else None,
            )
        )
    return _make


@pytest.fixture
def make_round(engine):
    async def _make(
        level: Level = Level.COUNCIL,
        region: Optional[str] = "North",
        council: Optional[str] = "Alpha",
        hours: float = 1,
        **extra,
    ):
        payload = {
            "year": YEAR,
            "level": level,
            "region": region,
            "council": council,
            "timing_type": TimingType.FIXED_TIME,
            "end_time": utc_now() + timedelta(hours=hours),
        }
        payload.update(extra)
        return await engine.rounds.create_round(CompetitionRoundCreate(**payload))
    return _make
