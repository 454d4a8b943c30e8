# services/tie_break.py
from __future__ import annotations

import logging
from collections import Counter
from datetime import datetime
from typing import Mapping, Optional, Sequence
from uuid import UUID

from sqlalchemy.exc import IntegrityError

from competition_engine.db.database import DataBase
from competition_engine.db.enums import Level, TieBreakStatus
from competition_engine.db.schemas.tie_break import TieBreakCreate, TieBreakRead, TieBreakVoteRead
from competition_engine.db.schemas.user import UserRead
from competition_engine.errors import (
    DuplicateVoteError, InvalidStateError, NotEligibleError, NotFoundError, ValidationError,
)
from competition_engine.services.audit_log import instrument_service_class
from competition_engine.services.tier_policy import policy_for
from competition_engine.utils.clock import resolve_now
from competition_engine.utils.location import parse_location_key

logger = logging.getLogger(__name__)


def tally_votes(
    submission_ids: Sequence[UUID],
    votes: Sequence[TieBreakVoteRead],
    scores: Mapping[UUID, float] | None = None,
) -> list[UUID]:
    """Order tied submissions by votes, then canonical score, then their order in the tied set."""
    counts = Counter(v.submission_id for v in votes)
    scores = scores or {}
    indexed = list(enumerate(submission_ids))
    indexed.sort(key=lambda item: (-counts.get(item[1], 0), -scores.get(item[1], 0.0), item[0]))
    return [sid for _, sid in indexed]


def _require_open(tie_break: TieBreakRead) -> None:
    if tie_break.status == TieBreakStatus.RESOLVED:
        raise InvalidStateError("Tie-break has already been resolved.")
    if tie_break.status != TieBreakStatus.OPEN:
        raise InvalidStateError("Tie-break was superseded by a later standing.")


class TieBreakResolver:
    """
    Judge vote over a fixed set of tied submissions: open -> resolved, or
    open -> superseded when the standings change under it. One vote per judge,
    no revisions.
    """

    def __init__(self, database: Optional[DataBase] = None) -> None:
        self.database = database or DataBase()

    async def open(
        self,
        year: int,
        area_of_focus: str,
        level: Level,
        location_key: str,
        submission_ids: Sequence[UUID],
        quota: int,
    ) -> TieBreakRead:
        ids = list(dict.fromkeys(submission_ids))
        if len(ids) < 2:
            raise ValidationError("A tie-break needs at least two submissions.")
        if not 1 <= quota < len(ids):
            raise ValidationError("Tie-break quota must be at least 1 and less than the number of tied submissions.")

        tie_break = await self.database.create_tie_break(
            TieBreakCreate(
                year=year,
                area_of_focus=area_of_focus,
                level=Level(level),
                location_key=location_key,
                submission_ids=ids,
                quota=quota,
            )
        )
        logger.info(
            "Tie-break %s opened for %s/%s/%s over %d submissions (%d slot(s))",
            tie_break.id, year, level, location_key, len(ids), quota,
        )
        return tie_break

    async def get(self, tie_break_id: UUID) -> TieBreakRead:
        tie_break = await self.database.get_tie_break(tie_break_id)
        if tie_break is None:
            raise NotFoundError("Tie-break not found.")
        return tie_break

    async def list_open(
        self,
        year: int,
        area_of_focus: str,
        level: Level,
        location_key: str,
    ) -> list[TieBreakRead]:
        return await self.database.list_tie_breaks(
            year=year,
            area_of_focus=area_of_focus,
            level=Level(level),
            location_key=location_key,
            status=TieBreakStatus.OPEN,
        )

    async def eligible_judges(self, tie_break: TieBreakRead) -> list[UserRead]:
        region, council = parse_location_key(tie_break.level, tie_break.location_key)
        scope = policy_for(tie_break.level).judge_scope(region, council)
        return await self.database.list_judges(**scope.as_filter())

    async def vote(self, tie_break_id: UUID, judge_id: UUID, submission_id: UUID) -> TieBreakRead:
        tie_break = await self.get(tie_break_id)
        _require_open(tie_break)
        if submission_id not in tie_break.submission_ids:
            raise ValidationError("Submission is not part of this tie-break.")
        if any(v.judge_id == judge_id for v in tie_break.votes):
            raise DuplicateVoteError()
        if not any(j.id == judge_id for j in await self.eligible_judges(tie_break)):
            raise NotEligibleError("Judge is not eligible to vote in this tie-break.")

        try:
            await self.database.add_tie_break_vote(tie_break.id, judge_id, submission_id)
        except IntegrityError as exc:
            raise DuplicateVoteError() from exc

        logger.info("Judge %s voted in tie-break %s", judge_id, tie_break.id)
        return await self.get(tie_break.id)

    async def resolve(self, tie_break_id: UUID, now: Optional[datetime] = None) -> TieBreakRead:
        tie_break = await self.get(tie_break_id)
        _require_open(tie_break)
        if not tie_break.votes:
            raise InvalidStateError("No votes have been cast yet.")

        scores: dict[UUID, float] = {}
        for sid in tie_break.submission_ids:
            submission = await self.database.get_submission(sid)
            if submission is not None:
                scores[sid] = submission.average_score

        ordered = tally_votes(tie_break.submission_ids, tie_break.votes, scores)
        winners = ordered[: tie_break.quota]
        resolved = await self.database.resolve_tie_break(tie_break.id, winners, resolve_now(now))
        if resolved is None:
            raise InvalidStateError("Tie-break is no longer open.")

        logger.info("Tie-break %s resolved; winners=%s", resolved.id, [str(w) for w in winners])
        return resolved

    async def resolve_if_complete(self, tie_break_id: UUID, now: Optional[datetime] = None) -> Optional[TieBreakRead]:
        """Resolve once every eligible judge has voted; otherwise return None."""
        tie_break = await self.get(tie_break_id)
        if tie_break.status != TieBreakStatus.OPEN:
            return None
        eligible = {j.id for j in await self.eligible_judges(tie_break)}
        voted = {v.judge_id for v in tie_break.votes}
        if not eligible or not eligible <= voted:
            return None
        return await self.resolve(tie_break.id, now=now)

    async def supersede(self, tie_break_id: UUID) -> bool:
        """Retire an open tie-break whose tied set no longer matches the standings."""
        superseded = await self.database.supersede_tie_break(tie_break_id)
        if superseded:
            logger.info("Tie-break %s superseded", tie_break_id)
        return superseded


instrument_service_class(
    TieBreakResolver,
    prefix="services.tie_break",
    exclude={"get", "list_open", "eligible_judges"},
)
