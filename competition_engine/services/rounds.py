# services/rounds.py
"""
Round lifecycle: pending -> active -> ended -> closed.

Every status change goes through a compare-and-set on the stored status, so
two admins (or an admin and the scheduler) cannot both apply the same
transition. The effective end time is derived on read; no timer is needed
for correctness.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import TYPE_CHECKING, Any, Iterable, Optional
from uuid import UUID

from competition_engine.config import Settings
from competition_engine.db.database import DataBase
from competition_engine.db.enums import (
    LeaderboardVisibility, Level, RoundStatus, SubmissionStatus, TimingType, UserRole,
)
from competition_engine.db.schemas.competition_round import (
    CompetitionRoundCreate, CompetitionRoundRead, CompetitionRoundUpdate,
)
from competition_engine.db.schemas.submission import SubmissionRead
from competition_engine.db.schemas.user import UserRead
from competition_engine.errors import (
    InvalidStateError, NotEligibleError, NotFoundError, ValidationError,
)
from competition_engine.services.audit_log import instrument_service_class
from competition_engine.services.broadcast import (
    Broadcaster, LEADERBOARD_MODE_CHANGED, ROUND_STATE_CHANGED, publish_safely,
)
from competition_engine.services.notifications import NotificationService, notifier
from competition_engine.services.tier_policy import policy_for
from competition_engine.utils.clock import resolve_now
from competition_engine.utils.location import normalize
from competition_engine.utils.sentinels import MISSING, provided_fields

if TYPE_CHECKING:
    from competition_engine.services.advancement import AdvancementEngine, GlobalAdvancement
    from competition_engine.services.leaderboard import LeaderboardBuilder

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[RoundStatus, frozenset[RoundStatus]] = {
    RoundStatus.PENDING: frozenset({RoundStatus.ACTIVE, RoundStatus.CLOSED}),
    RoundStatus.ACTIVE: frozenset({RoundStatus.ENDED, RoundStatus.CLOSED}),
    RoundStatus.ENDED: frozenset({RoundStatus.CLOSED}),
    RoundStatus.CLOSED: frozenset(),
}

NATIONWIDE_FALLBACK_PRIORITY: dict[Level, int] = {
    Level.NATIONAL: 90,
    Level.REGIONAL: 50,
    Level.COUNCIL: 30,
}


def sources_for(target: RoundStatus) -> list[RoundStatus]:
    return [status for status, targets in ALLOWED_TRANSITIONS.items() if target in targets]


def compute_effective_end_time(round_: CompetitionRoundRead) -> Optional[datetime]:
    """Fixed rounds end at ``end_time``; countdown rounds at ``(start_time or created_at) + duration``."""
    if round_.timing_type == TimingType.COUNTDOWN and round_.countdown_duration:
        start = round_.start_time or round_.created_at
        return start + timedelta(seconds=round_.countdown_duration)
    return round_.end_time


def should_end(round_: CompetitionRoundRead, now: datetime) -> bool:
    if round_.status != RoundStatus.ACTIVE:
        return False
    end = compute_effective_end_time(round_)
    return end is not None and resolve_now(now) >= end


def time_remaining(round_: CompetitionRoundRead, now: datetime) -> Optional[timedelta]:
    end = compute_effective_end_time(round_)
    if end is None:
        return None
    return max(end - resolve_now(now), timedelta(0))


def match_priority(round_: CompetitionRoundRead, level: Level, region: Optional[str], council: Optional[str]) -> int:
    """
    How well a round covers a submission's (level, region, council); -1 means not at all.
    Exact location matches score 100 (80 for a whole-region Council round);
    nationwide rounds of another level act as a fallback.
    """
    round_region = normalize(round_.region)
    round_council = normalize(round_.council)
    sub_region = normalize(region)
    sub_council = normalize(council)
    nationwide = not round_region and not round_council

    priority = -1
    if round_.level == level:
        if level == Level.COUNCIL:
            if round_region == sub_region and round_council == sub_council:
                priority = 100
            elif round_region == sub_region and not round_council:
                priority = 80
        elif level == Level.REGIONAL:
            if round_region == sub_region and not round_council:
                priority = 100
        elif nationwide:
            priority = 100

    if nationwide and priority == -1:
        priority = NATIONWIDE_FALLBACK_PRIORITY[Level(level)]
    return priority


def best_matching_round(
    rounds: Iterable[CompetitionRoundRead],
    level: Level,
    region: Optional[str],
    council: Optional[str],
) -> Optional[CompetitionRoundRead]:
    """``rounds`` must be most-recent first; only a strictly higher priority replaces the pick."""
    best: Optional[CompetitionRoundRead] = None
    best_priority = -1
    for round_ in rounds:
        priority = match_priority(round_, level, region, council)
        if priority > best_priority:
            best, best_priority = round_, priority
    return best


def round_scope_filter(round_: CompetitionRoundRead) -> dict[str, Any]:
    """Submission/judge filter for a round; an unset region or council covers all of them."""
    return {
        "level": round_.level,
        "region": round_.region if round_.region else MISSING,
        "council": round_.council if round_.council else MISSING,
    }


@dataclass(slots=True)
class JudgeCompletion:
    total_submissions: int = 0
    total_judges: int = 0
    expected: int = 0
    completed: int = 0
    unassigned: int = 0

    @property
    def pending(self) -> int:
        return max(self.expected - self.completed, 0)

    @property
    def all_completed(self) -> bool:
        return self.pending == 0


@dataclass(slots=True)
class JudgeProgress:
    judge_id: UUID
    name: str
    expected: int = 0
    completed: int = 0
    # false for judges deactivated or moved after their submissions were assigned
    active: bool = True

    @property
    def pending(self) -> int:
        return max(self.expected - self.completed, 0)


@dataclass(slots=True)
class RoundCloseResult:
    round: CompetitionRoundRead
    advancement: list["GlobalAdvancement"] = field(default_factory=list)


def _reminder_text(message: Optional[str]) -> str:
    text = (message or "").strip()
    if not text:
        raise ValidationError("Reminder message is required.")
    return text


class RoundLifecycleManager:
    """Owns round status transitions and gates evaluation writes by time and status."""

    def __init__(
        self,
        database: Optional[DataBase] = None,
        notifications: Optional[NotificationService] = None,
        broadcaster: Optional[Broadcaster] = None,
        leaderboards: Optional["LeaderboardBuilder"] = None,
        advancement: Optional["AdvancementEngine"] = None,
    ) -> None:
        self.database = database or DataBase()
        self.notifications = notifications or notifier
        self.broadcaster = broadcaster
        self.leaderboards = leaderboards
        self.advancement = advancement

    # --- CRUD ---

    async def create_round(self, payload: CompetitionRoundCreate) -> CompetitionRoundRead:
        self._validate_definition(payload)
        clashing = await self.database.list_rounds(
            statuses=[RoundStatus.PENDING, RoundStatus.ACTIVE],
            year=payload.year,
            level=payload.level,
            region=payload.region,
            council=payload.council,
        )
        if clashing:
            raise InvalidStateError("A pending or active round already exists for this level and location.")

        created = await self.database.create_round(payload)
        logger.info("Round %s created for %s %s", created.id, created.year, created.level)
        return created

    async def update_round(self, payload: CompetitionRoundUpdate) -> CompetitionRoundRead:
        """Timing and flags can only change while the round is pending; use :meth:`extend` afterwards."""
        current = await self.get_round(payload.id)
        if current.status != RoundStatus.PENDING:
            raise InvalidStateError(f"Round is {current.status}; only pending rounds can be edited.")

        merged = CompetitionRoundCreate.model_validate(
            {**current.model_dump(include=set(CompetitionRoundCreate.model_fields)), **provided_fields(payload)}
        )
        self._validate_definition(merged)
        return await self.database.update_round(payload)

    async def get_round(self, round_id: UUID) -> CompetitionRoundRead:
        round_ = await self.database.get_round(round_id)
        if round_ is None:
            raise NotFoundError("Round not found.")
        return round_

    async def list_rounds(self, **filters: Any) -> list[CompetitionRoundRead]:
        return await self.database.list_rounds(**filters)

    # --- transitions ---

    async def activate(self, round_id: UUID, now: Optional[datetime] = None) -> CompetitionRoundRead:
        now = resolve_now(now)
        round_ = await self.get_round(round_id)
        if round_.status != RoundStatus.PENDING:
            raise InvalidStateError(f"Round is {round_.status}; only pending rounds can be activated.")

        judges = await self.scope_judges(round_)
        if not judges:
            raise NotEligibleError("No active judges found for this round's level and location.")

        start_time = round_.start_time or now
        end_time = compute_effective_end_time(round_.model_copy(update={"start_time": start_time}))
        if end_time is not None and end_time <= now:
            raise InvalidStateError("Round end time has already passed.")

        pending = await self.database.list_submissions(
            year=round_.year,
            statuses=[SubmissionStatus.PENDING],
            **round_scope_filter(round_),
        )
        activated = await self.database.transition_round(
            round_.id,
            from_statuses=sources_for(RoundStatus.ACTIVE),
            to_status=RoundStatus.ACTIVE,
            start_time=start_time,
            pending_submissions_snapshot=[str(s.id) for s in pending],
            snapshot_created_at=now,
        )
        if activated is None:
            raise InvalidStateError("Round was changed concurrently; reload and try again.")

        logger.info("Round %s activated with %d pending submissions", activated.id, len(pending))
        await self.notifications.round_started(judges, activated, end_time)
        await self._broadcast_state(activated)
        return activated

    async def end(self, round_id: UUID, now: Optional[datetime] = None) -> CompetitionRoundRead:
        now = resolve_now(now)
        ended = await self.database.transition_round(
            round_id,
            from_statuses=[RoundStatus.ACTIVE],
            to_status=RoundStatus.ENDED,
            ended_at=now,
        )
        if ended is None:
            current = await self.get_round(round_id)
            raise InvalidStateError(f"Round is {current.status}; only active rounds can end.")

        logger.info("Round %s ended", ended.id)
        await self.notifications.round_ended(await self.scope_judges(ended), ended)
        await self._broadcast_state(ended)
        return ended

    async def close(
        self,
        round_id: UUID,
        actor_id: Optional[UUID] = None,
        *,
        force: bool = False,
        advance: Optional[bool] = None,
        now: Optional[datetime] = None,
    ) -> RoundCloseResult:
        """
        Terminal transition. Without ``force`` the round must be ended and, when it
        waits for all judges, every expected evaluation must be in. Advancement of
        the round's scope runs first when ``advance`` (default: ``auto_advance``).
        """
        now = resolve_now(now)
        round_ = await self.get_round(round_id)
        if round_.status == RoundStatus.CLOSED:
            raise InvalidStateError("Round is already closed.")
        if not force and round_.status != RoundStatus.ENDED:
            raise InvalidStateError(f"Round is {round_.status}; it must end before it can be closed.")

        if round_.wait_for_all_judges and not force:
            completion = await self.judge_completion(round_)
            if not completion.all_completed:
                raise InvalidStateError(
                    f"Cannot close round: {completion.pending} evaluation(s) are still pending."
                )

        results: list["GlobalAdvancement"] = []
        if round_.auto_advance if advance is None else advance:
            if self.advancement is None:
                raise InvalidStateError("Advancement is not configured for this round manager.")
            results = await self.advancement.advance_round(round_)
            failed = sorted(key for result in results for key in result.failed)
            if failed and not force:
                # advanced locations stay advanced; a retry only touches what is still evaluated
                raise InvalidStateError(
                    f"Advancement failed for {len(failed)} location(s): {', '.join(failed)}. Round left {round_.status}."
                )

        sources = sources_for(RoundStatus.CLOSED) if force else [RoundStatus.ENDED]
        closed = await self.database.transition_round(
            round_.id,
            from_statuses=sources,
            to_status=RoundStatus.CLOSED,
            closed_at=now,
            closed_by=actor_id,
            ended_at=round_.ended_at or now,
        )
        if closed is None:
            raise InvalidStateError("Round was changed concurrently; reload and try again.")

        logger.info("Round %s closed by %s", closed.id, actor_id or "system")
        await self._broadcast_state(closed)
        return RoundCloseResult(round=closed, advancement=results)

    async def extend(self, round_id: UUID, seconds: int) -> CompetitionRoundRead:
        """Push the effective end time later. Never moves it earlier and never reopens a round."""
        if isinstance(seconds, bool) or not isinstance(seconds, int) or seconds <= 0:
            raise ValidationError("Extension must be a positive number of seconds.")

        round_ = await self.get_round(round_id)
        if round_.status not in (RoundStatus.PENDING, RoundStatus.ACTIVE):
            raise InvalidStateError(f"Round is {round_.status}; only pending or active rounds can be extended.")

        fields: dict[str, Any] = {}
        if round_.timing_type == TimingType.COUNTDOWN and round_.countdown_duration:
            fields["countdown_duration"] = round_.countdown_duration + seconds
        if round_.end_time is not None:
            fields["end_time"] = round_.end_time + timedelta(seconds=seconds)

        extended = await self.database.transition_round(
            round_.id,
            from_statuses=[RoundStatus.PENDING, RoundStatus.ACTIVE],
            **fields,
        )
        if extended is None:
            raise InvalidStateError("Round is no longer open; it cannot be extended.")
        await self._broadcast_state(extended)
        return extended

    async def set_leaderboard_visibility(
        self,
        round_id: UUID,
        mode: LeaderboardVisibility,
        now: Optional[datetime] = None,
    ) -> CompetitionRoundRead:
        """
        ``frozen`` captures the current ranking of every location in the round's scope;
        ``live`` discards the snapshot. Setting the current mode again is a no-op.
        """
        mode = LeaderboardVisibility(mode)
        round_ = await self.get_round(round_id)
        if round_.leaderboard_visibility == mode:
            return round_

        if mode == LeaderboardVisibility.FROZEN:
            if self.leaderboards is None:
                raise InvalidStateError("Leaderboards are not configured for this round manager.")
            snapshot = await self.leaderboards.snapshot(
                round_.year, round_.level, round_.region, round_.council, now=now,
            )
            fields = {"frozen_leaderboard_snapshot": snapshot.model_dump(mode="json")}
        else:
            fields = {"frozen_leaderboard_snapshot": None}

        updated = await self.database.transition_round(
            round_.id,
            from_statuses=list(RoundStatus),
            leaderboard_visibility=mode,
            **fields,
        )
        if updated is None:
            raise NotFoundError("Round not found.")

        logger.info("Round %s leaderboard is now %s", updated.id, mode)
        await publish_safely(
            self.broadcaster,
            updated.year,
            updated.level,
            LEADERBOARD_MODE_CHANGED,
            {"roundId": str(updated.id), "mode": str(mode)},
        )
        return updated

    # --- queries ---

    async def find_active_round(self, submission: SubmissionRead) -> Optional[CompetitionRoundRead]:
        rounds = await self.database.list_rounds(
            statuses=[RoundStatus.ACTIVE],
            year=submission.year,
            limit=Settings().active_round_scan_limit,
        )
        return best_matching_round(rounds, submission.level, submission.region, submission.council)

    async def ensure_evaluation_open(
        self,
        submission: SubmissionRead,
        now: Optional[datetime] = None,
    ) -> CompetitionRoundRead:
        """Return the round governing this evaluation, or raise if evaluating is not allowed right now."""
        now = resolve_now(now)
        if submission.round_id is not None:
            round_ = await self.database.get_round(submission.round_id)
            if round_ is None:
                raise NotFoundError("Submission is associated with a round that no longer exists.")
            if round_.status != RoundStatus.ACTIVE:
                raise InvalidStateError(
                    f"Round is {round_.status}. Evaluations are only allowed while the round is active."
                )
        else:
            round_ = await self.find_active_round(submission)
            if round_ is None:
                raise InvalidStateError("No active round found for this submission.")

        end_time = compute_effective_end_time(round_)
        if end_time is not None and now >= end_time:
            raise InvalidStateError("Round has ended; evaluations are no longer accepted.")
        return round_

    async def governing_round(
        self,
        year: int,
        level: Level,
        region: Optional[str],
        council: Optional[str],
    ) -> Optional[CompetitionRoundRead]:
        """Latest started round covering a location; leaderboard readers consult it first."""
        rounds = await self.database.list_rounds(
            statuses=[RoundStatus.ACTIVE, RoundStatus.ENDED, RoundStatus.CLOSED],
            year=year,
            level=level,
        )
        return best_matching_round(rounds, level, region, council)

    async def scope_judges(self, round_: CompetitionRoundRead) -> list[UserRead]:
        return await self.database.list_judges(**round_scope_filter(round_))

    async def judge_completion(self, round_: CompetitionRoundRead) -> JudgeCompletion:
        """
        Council/Regional expect one evaluation per assigned submission (by the assigned
        judge); National expects one per active National judge per submission.
        """
        submissions, evaluated_pairs = await self._scope_work(round_)
        ids = [s.id for s in submissions]
        completion = JudgeCompletion(total_submissions=len(submissions))

        if round_.level == Level.NATIONAL:
            judges = await self.scope_judges(round_)
            completion.total_judges = len(judges)
            completion.expected = len(judges) * len(submissions)
            completion.completed = sum(
                1 for s in submissions for j in judges if (s.id, j.id) in evaluated_pairs
            )
            return completion

        assignments = await self.database.list_assignments(ids)
        completion.total_judges = len({a.judge_id for a in assignments.values()})
        completion.unassigned = len(ids) - len(assignments)
        completion.expected = len(assignments)
        completion.completed = sum(
            1 for a in assignments.values() if (a.submission_id, a.judge_id) in evaluated_pairs
        )
        return completion

    async def judge_progress(self, round_id: UUID) -> list[JudgeProgress]:
        """
        Per-judge workload of a round. Council/Regional count each judge's assigned
        submissions, including judges that left the scope after being assigned;
        National expects every submission from every active National judge.
        """
        round_ = await self.get_round(round_id)
        submissions, evaluated_pairs = await self._scope_work(round_)
        judges = await self.scope_judges(round_)

        if round_.level == Level.NATIONAL:
            return [
                JudgeProgress(
                    judge_id=j.id,
                    name=j.name,
                    expected=len(submissions),
                    completed=sum(1 for s in submissions if (s.id, j.id) in evaluated_pairs),
                )
                for j in judges
            ]

        progress = {j.id: JudgeProgress(judge_id=j.id, name=j.name) for j in judges}
        assignments = await self.database.list_assignments([s.id for s in submissions])
        for assignment in assignments.values():
            row = progress.get(assignment.judge_id)
            if row is None:
                judge = await self.database.get_user(assignment.judge_id)
                row = progress[assignment.judge_id] = JudgeProgress(
                    judge_id=assignment.judge_id,
                    name=judge.name if judge else "",
                    active=False,
                )
            row.expected += 1
            if (assignment.submission_id, assignment.judge_id) in evaluated_pairs:
                row.completed += 1
        return list(progress.values())

    async def remind_judge(self, round_id: UUID, judge_id: UUID, message: str) -> int:
        """Send an admin-written reminder to one judge of the round's scope."""
        message = _reminder_text(message)
        round_ = await self.get_round(round_id)
        judge = await self.database.get_user(judge_id)
        if judge is None or judge.role != UserRole.JUDGE:
            raise NotFoundError("Judge not found.")
        if not any(j.id == judge.id for j in await self.scope_judges(round_)):
            raise NotEligibleError("Judge is not an active judge of this round's level and location.")

        sent = await self.notifications.custom_reminder([judge.id], round_, message)
        logger.info("Round %s: reminder sent to judge %s", round_.id, judge.id)
        return sent

    async def remind_location(
        self,
        round_id: UUID,
        message: str,
        region: Optional[str] = None,
        council: Optional[str] = None,
    ) -> int:
        """
        Send an admin-written reminder to every active judge of one location
        inside the round's scope. Unset parts default to the round's own.
        """
        message = _reminder_text(message)
        round_ = await self.get_round(round_id)
        if round_.region:
            if region and normalize(region) != normalize(round_.region):
                raise ValidationError("Region is outside this round's scope.")
            region = round_.region
        if round_.council:
            if council and normalize(council) != normalize(round_.council):
                raise ValidationError("Council is outside this round's scope.")
            council = round_.council
        if round_.level != Level.NATIONAL and not region:
            raise ValidationError("A region is required for this round's level.")
        if round_.level == Level.COUNCIL and not council:
            raise ValidationError("A council is required for Council rounds.")

        scope = policy_for(round_.level).judge_scope(region, council)
        judges = await self.database.list_judges(**scope.as_filter())
        if not judges:
            raise NotEligibleError("No active judges found for this location.")

        sent = await self.notifications.custom_reminder((j.id for j in judges), round_, message)
        logger.info("Round %s: reminder sent to %d judge(s) in %s", round_.id, sent, scope.as_filter())
        return sent

    async def remind_ending_soon(self, now: Optional[datetime] = None, window: Optional[timedelta] = None) -> list[CompetitionRoundRead]:
        """Send one ``round_ending_soon`` per active round whose end falls inside the reminder window."""
        now = resolve_now(now)
        window = window or timedelta(hours=Settings().reminder_window_hours)
        reminded: list[CompetitionRoundRead] = []
        for round_ in await self.database.list_rounds(statuses=[RoundStatus.ACTIVE]):
            if not round_.reminder_enabled or round_.reminder_sent_at is not None:
                continue
            end_time = compute_effective_end_time(round_)
            if end_time is None or not (now < end_time <= now + window):
                continue
            marked = await self.database.transition_round(
                round_.id, from_statuses=[RoundStatus.ACTIVE], reminder_sent_at=now,
            )
            if marked is None:
                continue
            await self.notifications.round_ending_soon(await self.scope_judges(marked), marked, end_time)
            reminded.append(marked)
        return reminded

    # --- helpers ---

    async def _scope_work(self, round_: CompetitionRoundRead) -> tuple[list[SubmissionRead], set[tuple[UUID, UUID]]]:
        """Non-disqualified submissions of the round's scope and their evaluated (submission, judge) pairs."""
        submissions = await self.database.list_submissions(
            year=round_.year,
            disqualified=False,
            **round_scope_filter(round_),
        )
        evaluations = await self.database.list_evaluations(submission_ids=[s.id for s in submissions])
        return submissions, {(e.submission_id, e.judge_id) for e in evaluations}

    @staticmethod
    def _validate_definition(payload: CompetitionRoundCreate) -> None:
        if payload.timing_type == TimingType.COUNTDOWN:
            if not payload.countdown_duration or payload.countdown_duration <= 0:
                raise ValidationError("Countdown rounds need a positive countdown duration.")
        elif payload.end_time is None:
            raise ValidationError("Fixed-time rounds need an end time.")
        if payload.start_time and payload.end_time and payload.end_time <= payload.start_time:
            raise ValidationError("End time must be after start time.")
        if payload.council and not payload.region:
            raise ValidationError("A council round must also name its region.")
        if payload.level == Level.REGIONAL and payload.council:
            raise ValidationError("Regional rounds cannot be limited to a council.")
        if payload.level == Level.NATIONAL and (payload.region or payload.council):
            raise ValidationError("National rounds are nationwide.")

    async def _broadcast_state(self, round_: CompetitionRoundRead) -> None:
        await publish_safely(
            self.broadcaster,
            round_.year,
            round_.level,
            ROUND_STATE_CHANGED,
            {
                "roundId": str(round_.id),
                "status": str(round_.status),
                "region": round_.region,
                "council": round_.council,
            },
        )


instrument_service_class(
    RoundLifecycleManager,
    prefix="services.rounds",
    actor_fields=("actor_id",),
    exclude={
        "get_round", "list_rounds", "find_active_round", "ensure_evaluation_open",
        "governing_round", "scope_judges", "judge_completion", "judge_progress",
    },
)
