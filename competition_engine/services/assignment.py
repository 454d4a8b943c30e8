# services/assignment.py
from __future__ import annotations

import logging
from typing import Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from competition_engine.db.database import DataBase
from competition_engine.db.enums import Level, SubmissionStatus
from competition_engine.db.schemas.assignment import SubmissionAssignmentCreate, SubmissionAssignmentRead
from competition_engine.db.schemas.submission import SubmissionRead
from competition_engine.db.schemas.user import UserRead
from competition_engine.errors import (
    DuplicateAssignmentError, NoEligibleJudgeError, NotEligibleError, NotFoundError, ValidationError,
)
from competition_engine.services.audit_log import instrument_service_class
from competition_engine.services.notifications import NotificationService, notifier
from competition_engine.services.tier_policy import JudgeScope, policy_for

logger = logging.getLogger(__name__)

_BACKLOG_STATUSES = (SubmissionStatus.PENDING, SubmissionStatus.EVALUATED)


def pick_judge(judges: Sequence[UserRead], counts: dict[UUID, int]) -> UserRead:
    """Least-loaded judge; the first in query order wins ties."""
    best = judges[0]
    best_count = counts.get(best.id, 0)
    for judge in judges[1:]:
        count = counts.get(judge.id, 0)
        if count < best_count:
            best, best_count = judge, count
    return best


class JudgeAssignmentAllocator:
    """
    Round-robin allocation of exactly one judge per Council/Regional submission.

    Uniqueness is guaranteed by the store (``submission_assignment.submission_id``),
    so two racing calls for the same submission end with the same assignment.
    """

    def __init__(
        self,
        database: Optional[DataBase] = None,
        notifications: Optional[NotificationService] = None,
    ) -> None:
        self.database = database or DataBase()
        self.notifications = notifications or notifier

    async def get_assignment(self, submission_id: UUID) -> Optional[SubmissionAssignmentRead]:
        return await self.database.get_assignment(submission_id)

    async def eligible_judges(self, submission: SubmissionRead) -> list[UserRead]:
        scope = policy_for(submission.level).judge_scope(submission.region, submission.council)
        return await self.database.list_judges(**scope.as_filter())

    async def assign(self, submission: SubmissionRead | UUID) -> Optional[SubmissionAssignmentRead]:
        """
        Idempotent: returns the existing assignment if there is one, ``None`` for National.
        Raises NoEligibleJudgeError when the location has no active judge.
        """
        submission = await self._load(submission)
        policy = policy_for(submission.level)
        if not policy.requires_assignment:
            return None

        existing = await self.database.get_assignment(submission.id)
        if existing is not None:
            return existing

        judges = await self.eligible_judges(submission)
        if not judges:
            raise NoEligibleJudgeError(
                f"No eligible {submission.level} judges for location "
                f"{policy.location_key(submission.region, submission.council)}."
            )

        scope = policy.judge_scope(submission.region, submission.council)
        counts = await self._counts(scope)
        judge = pick_judge(judges, counts)
        return await self._persist(submission, judge)

    async def assign_backlog(
        self,
        level: Level,
        region: Optional[str] = None,
        council: Optional[str] = None,
    ) -> list[SubmissionAssignmentRead]:
        """
        Batch mode: distribute every unassigned, still-open submission of a scope
        with the same least-loaded rule, updating counts as it goes.
        """
        policy = policy_for(level)
        if not policy.requires_assignment:
            return []

        scope = policy.judge_scope(region, council)
        judges = await self.database.list_judges(**scope.as_filter())
        if not judges:
            return []

        backlog = await self.database.list_submissions(
            level=scope.level,
            region=scope.region,
            council=scope.council,
            statuses=_BACKLOG_STATUSES,
            unassigned_only=True,
        )
        if not backlog:
            return []

        counts = await self._counts(scope)
        created: list[SubmissionAssignmentRead] = []
        for submission in backlog:
            judge = pick_judge(judges, counts)
            assignment = await self._persist(submission, judge)
            if assignment.judge_id == judge.id:
                counts[judge.id] = counts.get(judge.id, 0) + 1
                created.append(assignment)

        logger.info(
            "Backlog allocation for %s: %d of %d submissions assigned across %d judges",
            policy.location_key(region, council), len(created), len(backlog), len(judges),
        )
        return created

    async def assign_to_judge(self, submission_id: UUID, judge_id: UUID) -> SubmissionAssignmentRead:
        """Manual pick for a submission that has no judge yet."""
        submission = await self._load(submission_id)
        if not policy_for(submission.level).requires_assignment:
            raise ValidationError("National submissions are judged by every National judge.")

        if await self.database.get_assignment(submission.id) is not None:
            raise DuplicateAssignmentError()

        judge = await self.database.get_user(judge_id)
        if judge is None:
            raise NotFoundError("Judge not found.")
        if not any(j.id == judge.id for j in await self.eligible_judges(submission)):
            raise NotEligibleError("Judge is not assigned to this submission's level and location.")

        assignment = await self._persist(submission, judge)
        if assignment.judge_id != judge.id:
            raise DuplicateAssignmentError()
        return assignment

    async def ensure_assigned_judge(self, submission: SubmissionRead, judge_id: UUID) -> None:
        """Council/Regional: only the assigned judge may act. National: any active National judge."""
        if policy_for(submission.level).requires_assignment:
            assignment = await self.database.get_assignment(submission.id)
            if assignment is None or assignment.judge_id != judge_id:
                raise NotEligibleError("You are not assigned to evaluate this submission.")
            return

        judge = await self.database.get_user(judge_id)
        if judge is None or not judge.is_active_judge or judge.assigned_level != submission.level:
            raise NotEligibleError("Only active National judges can evaluate National submissions.")

    async def _counts(self, scope: JudgeScope) -> dict[UUID, int]:
        return await self.database.count_assignments_by_judge(
            level=scope.level, region=scope.region, council=scope.council,
        )

    async def _persist(self, submission: SubmissionRead, judge: UserRead) -> SubmissionAssignmentRead:
        try:
            assignment = await self.database.create_assignment(
                SubmissionAssignmentCreate(
                    submission_id=submission.id,
                    judge_id=judge.id,
                    level=submission.level,
                    region=submission.region,
                    council=submission.council,
                )
            )
        except IntegrityError:
            existing = await self.database.get_assignment(submission.id)
            if existing is None:
                raise
            logger.info("Submission %s was assigned concurrently; keeping %s", submission.id, existing.judge_id)
            return existing

        logger.info("Submission %s assigned to judge %s", submission.id, judge.id)
        if await self.notifications.judge_assigned(judge.id, submission) is not None:
            await self.database.mark_assignment_notified(assignment.id)
            assignment = assignment.model_copy(update={"judge_notified": True})
        return assignment

    async def _load(self, submission: SubmissionRead | UUID) -> SubmissionRead:
        if isinstance(submission, SubmissionRead):
            return submission
        found = await self.database.get_submission(submission)
        if found is None:
            raise NotFoundError("Submission not found.")
        return found


instrument_service_class(
    JudgeAssignmentAllocator,
    prefix="services.assignment",
    exclude={"get_assignment", "eligible_judges", "ensure_assigned_judge"},
)
