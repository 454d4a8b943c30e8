# services/submissions.py
from __future__ import annotations

import logging
from typing import Any, Optional
from uuid import UUID

from competition_engine.db.database import DataBase
from competition_engine.db.enums import Level
from competition_engine.db.schemas.submission import SubmissionCreate, SubmissionRead, SubmissionUpdate
from competition_engine.errors import (
    InvalidStateError, NoEligibleJudgeError, NotFoundError, ValidationError,
)
from competition_engine.services.assignment import JudgeAssignmentAllocator
from competition_engine.services.audit_log import instrument_service_class
from competition_engine.utils.clock import utc_now

logger = logging.getLogger(__name__)


class SubmissionService:
    def __init__(
        self,
        database: Optional[DataBase] = None,
        allocator: Optional[JudgeAssignmentAllocator] = None,
    ) -> None:
        self.database = database or DataBase()
        self.allocator = allocator or JudgeAssignmentAllocator(self.database)

    async def create_submission(self, data: SubmissionCreate) -> SubmissionRead:
        """
        Store the submission and try to hand it to a judge right away.
        A location without judges leaves it unassigned until a judge is activated there.
        """
        if not data.area_of_focus:
            raise ValidationError("Area of focus is required.")
        if data.level == Level.COUNCIL and not (data.region and data.council):
            raise ValidationError("Council submissions need both a region and a council.")
        if data.level == Level.REGIONAL and not data.region:
            raise ValidationError("Regional submissions need a region.")
        if data.round_id is not None and await self.database.get_round(data.round_id) is None:
            raise NotFoundError("Round not found.")

        submission = await self.database.create_submission(data)
        logger.info("Submission %s created for %s %s", submission.id, submission.year, submission.level)

        try:
            await self.allocator.assign(submission)
        except NoEligibleJudgeError as exc:
            logger.warning("Submission %s left unassigned: %s", submission.id, exc.message)
        return submission

    async def get_submission(self, submission_id: UUID) -> SubmissionRead:
        submission = await self.database.get_submission(submission_id)
        if submission is None:
            raise NotFoundError("Submission not found.")
        return submission

    async def list_submissions(self, **filters: Any) -> list[SubmissionRead]:
        return await self.database.list_submissions(**filters)

    async def disqualify(self, submission_id: UUID, judge_id: UUID, reason: str) -> SubmissionRead:
        """Only the assigned judge (any active National judge at National) may disqualify."""
        reason = (reason or "").strip()
        if not reason:
            raise ValidationError("A disqualification reason is required.")

        submission = await self.get_submission(submission_id)
        if submission.disqualified:
            raise InvalidStateError("Submission is already disqualified.")
        await self.allocator.ensure_assigned_judge(submission, judge_id)

        updated = await self.database.update_submission(
            SubmissionUpdate(
                id=submission.id,
                disqualified=True,
                disqualification_reason=reason,
                disqualified_by=judge_id,
                disqualified_at=utc_now(),
            )
        )
        logger.info("Submission %s disqualified by %s", submission.id, judge_id)
        return updated


instrument_service_class(
    SubmissionService,
    prefix="services.submissions",
    exclude={"get_submission", "list_submissions"},
)
