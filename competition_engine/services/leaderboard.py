# services/leaderboard.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Optional, Sequence
from uuid import UUID

from competition_engine.db.database import DataBase
from competition_engine.db.enums import LeaderboardVisibility, Level, SubmissionStatus
from competition_engine.db.schemas.competition_round import CompetitionRoundRead
from competition_engine.db.schemas.leaderboard import (
    LeaderboardEntryRead, LeaderboardRead, LeaderboardSnapshot, LeaderboardView,
)
from competition_engine.db.schemas.submission import SubmissionRead
from competition_engine.errors import NotFoundError
from competition_engine.services.audit_log import instrument_service_class
from competition_engine.services.quota import QuotaService
from competition_engine.utils.clock import resolve_now
from competition_engine.utils.location import location_key as encode_location_key, parse_location_key
from competition_engine.utils.sentinels import MISSING

logger = logging.getLogger(__name__)

# everything that has been scored; promoted/eliminated stay on the board so ranks do not shift
RANKED_STATUSES = (SubmissionStatus.EVALUATED, SubmissionStatus.PROMOTED, SubmissionStatus.ELIMINATED)


def rank_entries(submissions: Sequence[SubmissionRead]) -> list[LeaderboardEntryRead]:
    """
    Standard competition ranking ("1224"): equal scores share a rank and the
    next distinct score continues at ``tied_rank + group_size``.
    Equal scores are listed in submission order so positions are reproducible.
    """
    ordered = sorted(submissions, key=lambda s: (-s.average_score, s.created_at, str(s.id)))
    entries: list[LeaderboardEntryRead] = []
    rank = 0
    previous_score: Optional[float] = None
    for position, submission in enumerate(ordered, start=1):
        if previous_score is None or submission.average_score != previous_score:
            rank = position
            previous_score = submission.average_score
        entries.append(
            LeaderboardEntryRead(
                submission_id=submission.id,
                teacher_name=submission.teacher_name,
                position=position,
                rank=rank,
                average_score=submission.average_score,
                status=submission.status,
            )
        )
    return entries


def _location_filter(level: Level, key: str) -> dict[str, Any]:
    region, council = parse_location_key(level, key)
    if level == Level.NATIONAL:
        return {"region": MISSING, "council": MISSING}
    if level == Level.REGIONAL:
        return {"region": region, "council": MISSING}
    return {"region": region, "council": council}


class LeaderboardBuilder:
    """Materialises per-location rankings for (year, area of focus, level)."""

    def __init__(self, database: Optional[DataBase] = None, quotas: Optional[QuotaService] = None) -> None:
        self.database = database or DataBase()
        self.quotas = quotas or QuotaService(self.database)

    async def build(self, year: int, area_of_focus: str, level: Level, location_key: str) -> LeaderboardRead:
        """
        Rank evaluated, non-disqualified submissions of one location and replace the stored
        leaderboard for that key. A finalized leaderboard is returned as stored.
        """
        level = Level(level)
        submissions = await self.database.list_submissions(
            year=year,
            level=level,
            area_of_focus=area_of_focus,
            statuses=RANKED_STATUSES,
            disqualified=False,
            **_location_filter(level, location_key),
        )
        quota = await self.quotas.get_quota(year, level)
        board = await self.database.replace_leaderboard(
            year=year,
            area_of_focus=area_of_focus,
            level=level,
            location_key=location_key,
            quota=quota.quota if quota else 0,
            entries=rank_entries(submissions),
        )
        logger.debug("Leaderboard %s/%s/%s/%s rebuilt with %d entries", year, area_of_focus, level, location_key, len(board.entries))
        return board

    async def build_for_submission(self, submission: SubmissionRead) -> LeaderboardRead:
        key = encode_location_key(submission.level, submission.region, submission.council)
        return await self.build(submission.year, submission.area_of_focus, submission.level, key)

    async def get_leaderboard(self, year: int, area_of_focus: str, level: Level, location_key: str) -> Optional[LeaderboardRead]:
        return await self.database.get_leaderboard(
            year=year, area_of_focus=area_of_focus, level=Level(level), location_key=location_key,
        )

    async def list_leaderboards(self, **filters: Any) -> list[LeaderboardRead]:
        return await self.database.list_leaderboards(**filters)

    async def list_locations(
        self,
        year: int,
        area_of_focus: Optional[str],
        level: Level,
        region: Any = MISSING,
        council: Any = MISSING,
    ) -> list[tuple[str, str]]:
        """Sorted (area_of_focus, location_key) pairs that currently have ranked submissions."""
        level = Level(level)
        rows = await self.database.list_submission_locations(
            year=year,
            level=level,
            area_of_focus=area_of_focus,
            region=region,
            council=council,
            statuses=RANKED_STATUSES,
        )
        return sorted({(area, encode_location_key(level, r, c)) for area, r, c in rows})

    async def finalize(self, leaderboard_id: UUID) -> LeaderboardRead:
        try:
            return await self.database.finalize_leaderboard(leaderboard_id)
        except LookupError as exc:
            raise NotFoundError(str(exc)) from exc

    async def snapshot(
        self,
        year: int,
        level: Level,
        region: Optional[str] = None,
        council: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> LeaderboardSnapshot:
        """Current ranking of every (area, location) inside a round scope."""
        level = Level(level)
        pairs = await self.list_locations(
            year,
            None,
            level,
            region=region if region else MISSING,
            council=council if council else MISSING,
        )
        areas: dict[str, dict[str, list[LeaderboardEntryRead]]] = {}
        for area, key in pairs:
            board = await self.build(year, area, level, key)
            areas.setdefault(area, {})[key] = list(board.entries)
        return LeaderboardSnapshot(captured_at=resolve_now(now), year=year, level=level, areas=areas)

    async def view(
        self,
        round_: Optional[CompetitionRoundRead],
        year: int,
        area_of_focus: str,
        level: Level,
        location_key: str,
    ) -> LeaderboardView:
        """What viewers see: the frozen snapshot when the governing round is frozen, else a live build."""
        level = Level(level)
        if (
            round_ is not None
            and round_.leaderboard_visibility == LeaderboardVisibility.FROZEN
            and round_.frozen_leaderboard_snapshot is not None
        ):
            snapshot = round_.frozen_leaderboard_snapshot
            return LeaderboardView(
                year=year,
                level=level,
                area_of_focus=area_of_focus,
                location_key=location_key,
                visibility=LeaderboardVisibility.FROZEN,
                entries=snapshot.entries_for(area_of_focus, location_key),
                captured_at=snapshot.captured_at,
                round_id=round_.id,
            )

        board = await self.build(year, area_of_focus, level, location_key)
        return LeaderboardView(
            year=year,
            level=level,
            area_of_focus=area_of_focus,
            location_key=location_key,
            visibility=LeaderboardVisibility.LIVE,
            entries=list(board.entries),
            round_id=round_.id if round_ is not None else None,
        )


instrument_service_class(
    LeaderboardBuilder,
    prefix="services.leaderboard",
    exclude={"build", "build_for_submission", "get_leaderboard", "list_leaderboards", "list_locations", "snapshot", "view"},
)
