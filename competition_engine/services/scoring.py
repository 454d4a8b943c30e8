# services/scoring.py
from __future__ import annotations

import logging
import math
from typing import Any, Mapping, Optional
from uuid import UUID

from competition_engine.db.database import DataBase
from competition_engine.db.schemas.evaluation import EvaluationCreate, EvaluationRead
from competition_engine.db.schemas.submission import SubmissionRead
from competition_engine.errors import NotFoundError, ValidationError
from competition_engine.services.audit_log import instrument_service_class
from competition_engine.services.broadcast import Broadcaster, SCORE_UPDATED, publish_safely
from competition_engine.services.tier_policy import policy_for

logger = logging.getLogger(__name__)


def summarize_scores(scores: Any) -> tuple[dict[str, float], float, float]:
    """
    Validate a criterion -> value mapping and return ``(scores, total, average)``.
    An empty mapping averages to 0.
    """
    if not isinstance(scores, Mapping):
        raise ValidationError("Scores must be a mapping of criterion to numeric value.")

    cleaned: dict[str, float] = {}
    for key, value in scores.items():
        if not isinstance(key, str) or not key.strip():
            raise ValidationError("Score criteria must be non-empty strings.")
        name = key.strip()
        if name in cleaned:
            raise ValidationError(f"Duplicate score criterion {name!r}.")
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise ValidationError(f"Score for {name!r} must be a number.")
        if not math.isfinite(value):
            raise ValidationError(f"Score for {name!r} must be finite.")
        cleaned[name] = float(value)

    total = sum(cleaned.values())
    average = total / len(cleaned) if cleaned else 0.0
    return cleaned, total, average


class ScoreAggregator:
    """
    Sole writer of a submission's canonical ``average_score``.

    Callers gate evaluation writes (active round, assigned judge) before
    calling :meth:`record_evaluation`.
    """

    def __init__(self, database: Optional[DataBase] = None, broadcaster: Optional[Broadcaster] = None) -> None:
        self.database = database or DataBase()
        self.broadcaster = broadcaster

    async def record_evaluation(
        self,
        submission_id: UUID,
        judge_id: UUID,
        scores: Mapping[str, float],
        comments: Optional[str] = None,
    ) -> EvaluationRead:
        cleaned, total, average = summarize_scores(scores)

        if await self.database.get_submission(submission_id) is None:
            raise NotFoundError("Submission not found.")

        evaluation, created = await self.database.upsert_evaluation(
            EvaluationCreate(
                submission_id=submission_id,
                judge_id=judge_id,
                scores=cleaned,
                total_score=total,
                average_score=average,
                comments=comments,
            )
        )
        logger.info(
            "Evaluation %s %s for submission %s by judge %s (avg=%.4f)",
            evaluation.id, "created" if created else "revised", submission_id, judge_id, average,
        )

        try:
            submission = await self.recompute(submission_id)
        except Exception:
            logger.exception("Score recompute failed for submission %s", submission_id)
            return evaluation

        await publish_safely(
            self.broadcaster,
            submission.year,
            submission.level,
            SCORE_UPDATED,
            {
                "submissionId": str(submission.id),
                "areaOfFocus": submission.area_of_focus,
                "averageScore": submission.average_score,
                "status": str(submission.status),
            },
        )
        return evaluation

    async def recompute(self, submission_id: UUID) -> SubmissionRead:
        """Re-derive the canonical score from every stored evaluation of the submission."""

        def rule(submission: SubmissionRead, evaluations: list[EvaluationRead]) -> float:
            return policy_for(submission.level).canonical_score(evaluations)

        try:
            return await self.database.recompute_submission_score(submission_id, rule)
        except LookupError as exc:
            raise NotFoundError(str(exc)) from exc


instrument_service_class(ScoreAggregator, prefix="services.scoring", exclude={"recompute"})
