# services/scheduler.py
"""Periodic tick that ends due rounds, settles ended ones and sends reminders."""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional
from uuid import UUID

from competition_engine.db.enums import RoundStatus
from competition_engine.db.schemas.competition_round import CompetitionRoundRead
from competition_engine.services.rounds import RoundLifecycleManager, should_end
from competition_engine.services.tier_policy import next_level
from competition_engine.utils.clock import resolve_now

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class SchedulerReport:
    ended: list[UUID] = field(default_factory=list)
    closed: list[UUID] = field(default_factory=list)
    waiting: list[UUID] = field(default_factory=list)
    reminded: list[UUID] = field(default_factory=list)
    failed: dict[UUID, str] = field(default_factory=dict)


class RoundScheduler:
    def __init__(self, rounds: RoundLifecycleManager) -> None:
        self.rounds = rounds

    async def process_due_rounds(self, now: Optional[datetime] = None) -> SchedulerReport:
        now = resolve_now(now)
        report = SchedulerReport()

        for round_ in await self.rounds.list_rounds(statuses=[RoundStatus.ACTIVE]):
            if not should_end(round_, now):
                continue
            try:
                ended = await self.rounds.end(round_.id, now=now)
            except Exception as exc:
                logger.exception("Failed to end round %s", round_.id)
                report.failed[round_.id] = str(exc)
                continue
            report.ended.append(ended.id)

        # rounds ended on this tick, by an admin, or on an earlier tick while judges were still busy
        for round_ in await self.rounds.list_rounds(statuses=[RoundStatus.ENDED]):
            if not round_.auto_advance:
                continue
            try:
                await self._settle(round_, now, report)
            except Exception as exc:
                logger.exception("Failed to settle round %s", round_.id)
                report.failed[round_.id] = str(exc)

        try:
            report.reminded = [r.id for r in await self.rounds.remind_ending_soon(now=now)]
        except Exception:
            logger.exception("Failed to send round reminders")

        if report.ended or report.closed or report.failed:
            logger.info(
                "Scheduler tick: ended=%d closed=%d waiting=%d failed=%d",
                len(report.ended), len(report.closed), len(report.waiting), len(report.failed),
            )
        return report

    async def _settle(self, round_: CompetitionRoundRead, now: datetime, report: SchedulerReport) -> None:
        if round_.wait_for_all_judges:
            completion = await self.rounds.judge_completion(round_)
            if not completion.all_completed:
                logger.info("Round %s waits for %d evaluation(s)", round_.id, completion.pending)
                report.waiting.append(round_.id)
                return

        # National is the top tier: nothing to advance, just close
        advance = next_level(round_.level) is not None
        result = await self.rounds.close(round_.id, advance=advance, now=now)
        report.closed.append(result.round.id)
