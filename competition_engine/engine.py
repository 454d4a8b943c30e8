# engine.py
"""
Wiring for the competition services.

The engine owns one instance of every service, all sharing the same
database facade, notifier and broadcaster, and adds the few flows that
cross service boundaries.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Mapping, Optional
from uuid import UUID

from competition_engine.db.database import DataBase
from competition_engine.db.enums import Level
from competition_engine.db.schemas.evaluation import EvaluationRead
from competition_engine.db.schemas.leaderboard import LeaderboardView
from competition_engine.db.schemas.tie_break import TieBreakRead
from competition_engine.errors import NotFoundError
from competition_engine.services.advancement import AdvancementEngine, LocationAdvancement
from competition_engine.services.assignment import JudgeAssignmentAllocator
from competition_engine.services.broadcast import Broadcaster, NullBroadcaster
from competition_engine.services.leaderboard import LeaderboardBuilder
from competition_engine.services.notifications import NotificationService, notifier
from competition_engine.services.quota import QuotaService
from competition_engine.services.rounds import RoundLifecycleManager
from competition_engine.services.scheduler import RoundScheduler
from competition_engine.services.scoring import ScoreAggregator
from competition_engine.services.submissions import SubmissionService
from competition_engine.services.tie_break import TieBreakResolver
from competition_engine.services.users import UserService
from competition_engine.utils.clock import resolve_now
from competition_engine.utils.location import parse_location_key

logger = logging.getLogger(__name__)


class CompetitionEngine:
    def __init__(
        self,
        database: Optional[DataBase] = None,
        broadcaster: Optional[Broadcaster] = None,
        notifications: Optional[NotificationService] = None,
    ) -> None:
        self.database = database or DataBase()
        self.broadcaster = broadcaster or NullBroadcaster()
        self.notifications = notifications or notifier

        self.quotas = QuotaService(self.database)
        self.allocator = JudgeAssignmentAllocator(self.database, self.notifications)
        self.users = UserService(self.database, self.allocator)
        self.submissions = SubmissionService(self.database, self.allocator)
        self.scoring = ScoreAggregator(self.database, self.broadcaster)
        self.leaderboards = LeaderboardBuilder(self.database, self.quotas)
        self.tie_breaks = TieBreakResolver(self.database)
        self.advancement = AdvancementEngine(
            self.database, self.leaderboards, self.quotas, self.tie_breaks, self.notifications, self.allocator,
        )
        self.rounds = RoundLifecycleManager(
            self.database, self.notifications, self.broadcaster, self.leaderboards, self.advancement,
        )
        self.scheduler = RoundScheduler(self.rounds)

    async def submit_evaluation(
        self,
        submission_id: UUID,
        judge_id: UUID,
        scores: Mapping[str, float],
        comments: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> EvaluationRead:
        """Gate by round and judge, record the scores, then refresh the submission's leaderboard."""
        now = resolve_now(now)
        submission = await self.database.get_submission(submission_id)
        if submission is None:
            raise NotFoundError("Submission not found.")

        await self.rounds.ensure_evaluation_open(submission, now)
        await self.allocator.ensure_assigned_judge(submission, judge_id)

        evaluation = await self.scoring.record_evaluation(submission_id, judge_id, scores, comments)

        refreshed = await self.database.get_submission(submission_id)
        if refreshed is not None and not refreshed.disqualified:
            try:
                await self.leaderboards.build_for_submission(refreshed)
            except Exception:
                logger.exception("Leaderboard refresh failed after evaluation of %s", submission_id)
        return evaluation

    async def cast_tie_break_vote(
        self,
        tie_break_id: UUID,
        judge_id: UUID,
        submission_id: UUID,
        now: Optional[datetime] = None,
    ) -> TieBreakRead:
        """Record a vote; the last eligible vote resolves the tie-break and applies its outcome."""
        tie_break = await self.tie_breaks.vote(tie_break_id, judge_id, submission_id)
        resolved = await self.tie_breaks.resolve_if_complete(tie_break.id, now=now)
        if resolved is None:
            return tie_break
        await self.advancement.apply_tie_break(resolved.id)
        return resolved

    async def resolve_tie_break(self, tie_break_id: UUID, now: Optional[datetime] = None) -> tuple[TieBreakRead, LocationAdvancement]:
        """Admin override: close voting with the votes cast so far."""
        resolved = await self.tie_breaks.resolve(tie_break_id, now=now)
        return resolved, await self.advancement.apply_tie_break(resolved.id)

    async def leaderboard(
        self,
        year: int,
        area_of_focus: str,
        level: Level,
        location_key: str,
    ) -> LeaderboardView:
        """The governing round decides between its frozen snapshot and a live build."""
        level = Level(level)
        region, council = parse_location_key(level, location_key)
        round_ = await self.rounds.governing_round(year, level, region, council)
        return await self.leaderboards.view(round_, year, area_of_focus, level, location_key)
