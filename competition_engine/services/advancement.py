# services/advancement.py
"""
Promotion and elimination against per-(year, level) quotas.

Only submissions still ``evaluated`` are ever moved, so re-running a location
is idempotent. A tie that straddles the quota boundary is never split
arbitrarily: the tied group is handed to a tie-break vote and stays
``evaluated`` until that vote is applied. A tie-break whose tied set no longer
matches the standings is superseded on the next run.

Every promoted submission enters the next level as a new pending entry
linked back through ``promoted_from_id`` and, below National, gets a judge.
"""
from __future__ import annotations

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from typing import AsyncIterator, Optional, Sequence
from uuid import UUID

from competition_engine.db.database import DataBase
from competition_engine.db.enums import Level, SubmissionStatus, TieBreakStatus
from competition_engine.db.schemas.competition_round import CompetitionRoundRead
from competition_engine.db.schemas.leaderboard import LeaderboardEntryRead, LeaderboardRead
from competition_engine.db.schemas.submission import SubmissionRead
from competition_engine.db.schemas.tie_break import TieBreakRead
from competition_engine.errors import EngineError, InvalidStateError, NoEligibleJudgeError, NotFoundError
from competition_engine.services.assignment import JudgeAssignmentAllocator
from competition_engine.services.audit_log import instrument_service_class
from competition_engine.services.leaderboard import LeaderboardBuilder
from competition_engine.services.notifications import NotificationService, notifier
from competition_engine.services.quota import QuotaService
from competition_engine.services.tie_break import TieBreakResolver
from competition_engine.services.tier_policy import next_level, policy_for
from competition_engine.utils.sentinels import MISSING

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class AdvancementPlan:
    promote: list[UUID] = field(default_factory=list)
    eliminate: list[UUID] = field(default_factory=list)
    tied: list[UUID] = field(default_factory=list)
    tie_slots: int = 0

    @property
    def requires_tie_break(self) -> bool:
        return bool(self.tied)


@dataclass(slots=True)
class LocationAdvancement:
    year: int
    area_of_focus: str
    level: Level
    location_key: str
    quota: int
    promoted: list[UUID] = field(default_factory=list)
    eliminated: list[UUID] = field(default_factory=list)
    tie_break_id: Optional[UUID] = None
    # next-level entries created for ``promoted``; ids that could not be carried over
    next_tier_ids: list[UUID] = field(default_factory=list)
    intake_failed: list[UUID] = field(default_factory=list)

    @property
    def requires_tie_break(self) -> bool:
        return self.tie_break_id is not None


@dataclass(slots=True)
class GlobalAdvancement:
    year: int
    area_of_focus: str
    level: Level
    locations: dict[str, LocationAdvancement] = field(default_factory=dict)
    failed: dict[str, dict[str, str]] = field(default_factory=dict)

    @property
    def total_promoted(self) -> int:
        return sum(len(r.promoted) for r in self.locations.values())

    @property
    def total_eliminated(self) -> int:
        return sum(len(r.eliminated) for r in self.locations.values())

    @property
    def tie_break_locations(self) -> list[str]:
        return [key for key, r in self.locations.items() if r.requires_tie_break]


def plan_advancement(entries: Sequence[LeaderboardEntryRead], quota: int) -> AdvancementPlan:
    """
    Split the still-evaluated entries of a ranked leaderboard into promote /
    eliminate / tied. Already-promoted entries use up quota slots.
    """
    already_promoted = sum(1 for e in entries if e.status == SubmissionStatus.PROMOTED)
    candidates = [e for e in entries if e.status == SubmissionStatus.EVALUATED]
    slots = max(quota - already_promoted, 0)

    if len(candidates) <= slots:
        return AdvancementPlan(promote=[e.submission_id for e in candidates])
    if slots == 0:
        return AdvancementPlan(eliminate=[e.submission_id for e in candidates])

    boundary = candidates[slots - 1].average_score
    if candidates[slots].average_score != boundary:
        return AdvancementPlan(
            promote=[e.submission_id for e in candidates[:slots]],
            eliminate=[e.submission_id for e in candidates[slots:]],
        )

    above = [e.submission_id for e in candidates if e.average_score > boundary]
    return AdvancementPlan(
        promote=above,
        eliminate=[e.submission_id for e in candidates if e.average_score < boundary],
        tied=[e.submission_id for e in candidates if e.average_score == boundary],
        tie_slots=slots - len(above),
    )


@dataclass(slots=True)
class _KeyLock:
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)
    users: int = 0


class AdvancementEngine:
    """Sole writer of promoted/eliminated submission status."""

    def __init__(
        self,
        database: Optional[DataBase] = None,
        leaderboards: Optional[LeaderboardBuilder] = None,
        quotas: Optional[QuotaService] = None,
        tie_breaks: Optional[TieBreakResolver] = None,
        notifications: Optional[NotificationService] = None,
        allocator: Optional[JudgeAssignmentAllocator] = None,
    ) -> None:
        self.database = database or DataBase()
        self.quotas = quotas or QuotaService(self.database)
        self.leaderboards = leaderboards or LeaderboardBuilder(self.database, self.quotas)
        self.tie_breaks = tie_breaks or TieBreakResolver(self.database)
        self.notifications = notifications or notifier
        self.allocator = allocator or JudgeAssignmentAllocator(self.database, self.notifications)
        # one lock per (year, area, level, location) while someone holds or waits on it
        self._locks: dict[tuple, _KeyLock] = {}

    async def advance_location(
        self,
        year: int,
        area_of_focus: str,
        level: Level,
        location_key: str,
    ) -> LocationAdvancement:
        level = Level(level)
        target = self._target_level(level)
        quota = await self.quotas.require_quota(year, level)

        async with self._locked((year, area_of_focus, level, location_key)):
            board = await self.leaderboards.build(year, area_of_focus, level, location_key)
            plan = plan_advancement(board.entries, quota)
            result = LocationAdvancement(
                year=year, area_of_focus=area_of_focus, level=level, location_key=location_key, quota=quota,
            )

            tie_break = await self._sync_tie_breaks(board, plan)
            if tie_break is not None:
                result.tie_break_id = tie_break.id

            await self._apply(result, board, plan.promote, plan.eliminate, target)

        logger.info(
            "Advanced %s/%s/%s/%s: promoted=%d eliminated=%d tie_break=%s",
            year, area_of_focus, level, location_key,
            len(result.promoted), len(result.eliminated), result.tie_break_id or "-",
        )
        return result

    async def advance_global(self, year: int, area_of_focus: str, level: Level) -> GlobalAdvancement:
        """Every known location of (year, area, level); one failing location does not stop the rest."""
        level = Level(level)
        self._target_level(level)
        pairs = await self.leaderboards.list_locations(year, area_of_focus, level)
        return await self._advance_pairs(year, area_of_focus, level, [key for _, key in pairs])

    async def advance_round(self, round_: CompetitionRoundRead) -> list[GlobalAdvancement]:
        """All (area, location) pairs inside a round's scope, grouped per area of focus."""
        level = Level(round_.level)
        self._target_level(level)
        pairs = await self.leaderboards.list_locations(
            round_.year,
            None,
            level,
            region=round_.region if round_.region else MISSING,
            council=round_.council if round_.council else MISSING,
        )
        by_area: dict[str, list[str]] = {}
        for area, key in pairs:
            by_area.setdefault(area, []).append(key)

        return [
            await self._advance_pairs(round_.year, area, level, keys)
            for area, keys in by_area.items()
        ]

    async def apply_tie_break(self, tie_break_id: UUID) -> LocationAdvancement:
        """
        Promote the winners of a resolved tie-break and eliminate the rest of its group.

        Slots are recounted against the current quota and the promotions already
        on the board, so a quota lowered after the tie-break opened is still honoured.
        """
        tie_break = await self.tie_breaks.get(tie_break_id)
        if tie_break.status != TieBreakStatus.RESOLVED:
            raise InvalidStateError("Tie-break has not been resolved yet.")

        level = Level(tie_break.level)
        target = self._target_level(level)
        quota = await self.quotas.require_quota(tie_break.year, level)
        result = LocationAdvancement(
            year=tie_break.year,
            area_of_focus=tie_break.area_of_focus,
            level=level,
            location_key=tie_break.location_key,
            quota=quota,
            tie_break_id=tie_break.id,
        )

        async with self._locked((tie_break.year, tie_break.area_of_focus, level, tie_break.location_key)):
            board = await self.leaderboards.build(
                tie_break.year, tie_break.area_of_focus, level, tie_break.location_key,
            )
            statuses = {e.submission_id: e.status for e in board.entries}
            promoted_count = sum(1 for s in statuses.values() if s == SubmissionStatus.PROMOTED)
            slots = max(quota - promoted_count, 0)

            open_winners = [w for w in tie_break.winners if statuses.get(w) == SubmissionStatus.EVALUATED]
            winners = open_winners[:slots]
            if len(winners) < len(open_winners):
                logger.warning(
                    "Tie-break %s: only %d of %d winner(s) fit the remaining quota of %s/%s/%s",
                    tie_break.id, len(winners), len(open_winners), tie_break.year, level, tie_break.location_key,
                )
            chosen = set(winners)
            losers = [sid for sid in tie_break.submission_ids if sid not in chosen]
            await self._apply(result, board, winners, losers, target)
        return result

    async def enter_next_tier(self, submission_id: UUID) -> SubmissionRead:
        """
        Carry a promoted submission into the next level as a pending entry and,
        where that level assigns judges, give it one. Calling again returns the
        same entry and only retries a missing assignment.
        """
        source = await self.database.get_submission(submission_id)
        if source is None:
            raise NotFoundError("Submission not found.")
        if source.status != SubmissionStatus.PROMOTED:
            raise InvalidStateError("Only promoted submissions move to the next level.")

        target = self._target_level(source.level)
        entry, created = await self.database.create_next_tier_submission(source, target)
        if created:
            logger.info("Submission %s entered %s as %s", source.id, target, entry.id)

        if policy_for(target).requires_assignment:
            try:
                await self.allocator.assign(entry)
            except NoEligibleJudgeError as exc:
                # picked up by the next backlog allocation once a judge exists
                logger.warning("Next-level entry %s has no judge yet: %s", entry.id, exc.message)
        return entry

    # --- helpers ---

    @staticmethod
    def _target_level(level: Level) -> Level:
        target = next_level(level)
        if target is None:
            raise InvalidStateError(f"{level} is the final level; there is no level to advance to.")
        return target

    @asynccontextmanager
    async def _locked(self, key: tuple) -> AsyncIterator[None]:
        entry = self._locks.get(key)
        if entry is None:
            entry = self._locks[key] = _KeyLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._locks[key]

    async def _advance_pairs(self, year: int, area_of_focus: str, level: Level, keys: Sequence[str]) -> GlobalAdvancement:
        summary = GlobalAdvancement(year=year, area_of_focus=area_of_focus, level=level)
        for key in keys:
            try:
                summary.locations[key] = await self.advance_location(year, area_of_focus, level, key)
            except EngineError as exc:
                logger.warning("Advancement failed for %s/%s/%s/%s: %s", year, area_of_focus, level, key, exc.message)
                summary.failed[key] = exc.to_dict()
            except Exception as exc:
                logger.exception("Advancement crashed for %s/%s/%s/%s", year, area_of_focus, level, key)
                summary.failed[key] = {"kind": type(exc).__name__, "message": str(exc)}
        return summary

    async def _sync_tie_breaks(self, board: LeaderboardRead, plan: AdvancementPlan) -> Optional[TieBreakRead]:
        """
        Keep at most one open tie-break per location, matching the current plan.
        Open tie-breaks over a different set or slot count are superseded.
        """
        current: Optional[TieBreakRead] = None
        for existing in await self.tie_breaks.list_open(board.year, board.area_of_focus, board.level, board.location_key):
            matches = (
                plan.requires_tie_break
                and set(existing.submission_ids) == set(plan.tied)
                and existing.quota == plan.tie_slots
            )
            if matches and current is None:
                current = existing
            else:
                await self.tie_breaks.supersede(existing.id)

        if current is None and plan.requires_tie_break:
            current = await self.tie_breaks.open(
                board.year, board.area_of_focus, board.level, board.location_key, plan.tied, plan.tie_slots,
            )
        return current

    async def _apply(
        self,
        result: LocationAdvancement,
        board: LeaderboardRead,
        promote: Sequence[UUID],
        eliminate: Sequence[UUID],
        target: Level,
    ) -> None:
        result.promoted = await self.database.transition_submissions(
            promote, from_status=SubmissionStatus.EVALUATED, to_status=SubmissionStatus.PROMOTED,
        )
        result.eliminated = await self.database.transition_submissions(
            eliminate, from_status=SubmissionStatus.EVALUATED, to_status=SubmissionStatus.ELIMINATED,
        )
        if not result.promoted and not result.eliminated:
            return

        statuses = {sid: SubmissionStatus.PROMOTED for sid in result.promoted}
        statuses.update({sid: SubmissionStatus.ELIMINATED for sid in result.eliminated})
        await self.database.set_leaderboard_entry_statuses(board.id, statuses)

        for sid in result.promoted:
            try:
                entry = await self.enter_next_tier(sid)
            except Exception:
                logger.exception("Could not carry submission %s into %s", sid, target)
                result.intake_failed.append(sid)
            else:
                result.next_tier_ids.append(entry.id)
            submission = await self.database.get_submission(sid)
            if submission is not None:
                await self.notifications.submission_promoted(submission, target)
        for sid in result.eliminated:
            submission = await self.database.get_submission(sid)
            if submission is not None:
                await self.notifications.submission_eliminated(submission)


instrument_service_class(AdvancementEngine, prefix="services.advancement")
