# tests/test_scheduler.py
from datetime import datetime, timedelta, timezone

import pytest

from competition_engine.db.enums import Level, RoundStatus, SubmissionStatus
from competition_engine.db.schemas.competition_round import CompetitionRoundCreate
from competition_engine.utils.clock import as_naive_utc, resolve_now, utc_now

YEAR = 2025


class TestClock:
    def test_aware_values_become_naive_utc(self):
        plus_two = timezone(timedelta(hours=2))
        assert as_naive_utc(datetime(2025, 3, 1, 12, 0, tzinfo=plus_two)) == datetime(2025, 3, 1, 10, 0)

    def test_naive_values_and_none_pass_through(self):
        naive = datetime(2025, 3, 1, 12, 0)
        assert as_naive_utc(naive) is naive
        assert as_naive_utc(None) is None
        assert resolve_now(None).tzinfo is None

    def test_round_times_are_stored_naive(self):
        payload = CompetitionRoundCreate(
            year=YEAR,
            level=Level.NATIONAL,
            end_time=datetime(2025, 3, 1, 12, 0, tzinfo=timezone(timedelta(hours=-5))),
        )
        assert payload.end_time == datetime(2025, 3, 1, 17, 0)


class TestRoundScheduler:
    @pytest.mark.asyncio
    async def test_ends_due_rounds_only(self, engine, make_judge, make_round):
        await make_judge(council="Alpha")
        await make_judge(council="Beta")
        due = await make_round(council="Alpha", hours=1)
        later = await make_round(council="Beta", hours=5)
        await engine.rounds.activate(due.id)
        await engine.rounds.activate(later.id)

        report = await engine.scheduler.process_due_rounds(now=utc_now() + timedelta(hours=2))

        assert report.ended == [due.id]
        assert (await engine.rounds.get_round(due.id)).status == RoundStatus.ENDED
        assert (await engine.rounds.get_round(later.id)).status == RoundStatus.ACTIVE

    @pytest.mark.asyncio
    async def test_auto_advance_waits_for_judges(self, engine, make_judge, make_submission, make_round):
        judge = await make_judge()
        first = await make_submission(teacher="A")
        second = await make_submission(teacher="B")
        await engine.quotas.set_quota(YEAR, Level.COUNCIL, 1)
        round_ = await make_round(auto_advance=True)
        await engine.rounds.activate(round_.id)
        await engine.submit_evaluation(first.id, judge.id, {"a": 9})

        report = await engine.scheduler.process_due_rounds(now=utc_now() + timedelta(hours=2))
        assert report.ended == [round_.id]
        assert report.waiting == [round_.id]
        assert report.closed == []

        await engine.scoring.record_evaluation(second.id, judge.id, {"a": 4})
        report = await engine.scheduler.process_due_rounds(now=utc_now() + timedelta(hours=3))

        assert report.closed == [round_.id]
        assert (await engine.rounds.get_round(round_.id)).status == RoundStatus.CLOSED
        assert (await engine.submissions.get_submission(first.id)).status == SubmissionStatus.PROMOTED
        assert (await engine.submissions.get_submission(second.id)).status == SubmissionStatus.ELIMINATED

    @pytest.mark.asyncio
    async def test_rounds_without_auto_advance_stay_ended(self, engine, make_judge, make_round):
        await make_judge()
        round_ = await make_round()
        await engine.rounds.activate(round_.id)

        report = await engine.scheduler.process_due_rounds(now=utc_now() + timedelta(hours=2))

        assert report.closed == []
        assert (await engine.rounds.get_round(round_.id)).status == RoundStatus.ENDED

    @pytest.mark.asyncio
    async def test_failing_round_does_not_block_others(self, engine, make_judge, make_submission, make_round):
        judge_a = await make_judge(council="Alpha")
        await make_judge(council="Beta")
        sub = await make_submission(council="Alpha")
        # no quota configured: advancing the Alpha round fails
        broken = await make_round(council="Alpha", auto_advance=True)
        healthy = await make_round(council="Beta", auto_advance=True)
        await engine.rounds.activate(broken.id)
        await engine.rounds.activate(healthy.id)
        await engine.submit_evaluation(sub.id, judge_a.id, {"a": 5})

        report = await engine.scheduler.process_due_rounds(now=utc_now() + timedelta(hours=2))

        assert set(report.ended) == {broken.id, healthy.id}
        assert report.closed == [healthy.id]
        assert broken.id in report.failed
        assert (await engine.rounds.get_round(broken.id)).status == RoundStatus.ENDED
        assert (await engine.rounds.get_round(healthy.id)).status == RoundStatus.CLOSED

    @pytest.mark.asyncio
    async def test_national_round_closes_without_advancing(self, engine, make_judge, make_round):
        await make_judge(Level.NATIONAL)
        round_ = await make_round(Level.NATIONAL, region=None, council=None, auto_advance=True)
        await engine.rounds.activate(round_.id)

        report = await engine.scheduler.process_due_rounds(now=utc_now() + timedelta(hours=2))

        assert report.closed == [round_.id]

    @pytest.mark.asyncio
    async def test_timezone_aware_tick(self, engine, make_judge, make_round):
        await make_judge()
        round_ = await make_round()
        await engine.rounds.activate(round_.id, now=datetime.now(timezone.utc))

        report = await engine.scheduler.process_due_rounds(now=datetime.now(timezone.utc) + timedelta(hours=2))

        assert report.ended == [round_.id]
        assert report.failed == {}
