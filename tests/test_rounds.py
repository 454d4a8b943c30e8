# tests/test_rounds.py
import uuid
from datetime import datetime, timedelta

import pytest

from competition_engine.db.enums import (
    LeaderboardVisibility, Level, NotificationType, RoundStatus, SubmissionStatus, TimingType,
)
from competition_engine.db.schemas.competition_round import CompetitionRoundRead, CompetitionRoundUpdate
from competition_engine.db.schemas.user import UserUpdate
from competition_engine.errors import InvalidStateError, NotEligibleError, NotFoundError, ValidationError
from competition_engine.services.broadcast import ROUND_STATE_CHANGED, leaderboard_channel
from competition_engine.services.rounds import (
    best_matching_round, compute_effective_end_time, match_priority, should_end, time_remaining,
)
from competition_engine.utils.clock import utc_now

YEAR = 2025
T0 = datetime(2025, 3, 1, 9, 0)


def _round(**fields) -> CompetitionRoundRead:
    data = {
        "id": uuid.uuid4(),
        "year": YEAR,
        "level": Level.COUNCIL,
        "status": RoundStatus.ACTIVE,
        "created_at": T0,
        "updated_at": T0,
    }
    data.update(fields)
    return CompetitionRoundRead(**data)


class TestEffectiveEndTime:
    def test_fixed_time_uses_end_time(self):
        round_ = _round(end_time=T0 + timedelta(hours=5))
        assert compute_effective_end_time(round_) == T0 + timedelta(hours=5)

    def test_countdown_starts_from_start_time(self):
        round_ = _round(
            timing_type=TimingType.COUNTDOWN,
            start_time=T0 + timedelta(hours=1),
            countdown_duration=3600,
        )
        assert compute_effective_end_time(round_) == T0 + timedelta(hours=2)

    def test_countdown_falls_back_to_created_at(self):
        round_ = _round(timing_type=TimingType.COUNTDOWN, countdown_duration=600)
        assert compute_effective_end_time(round_) == T0 + timedelta(minutes=10)
        assert compute_effective_end_time(round_) == compute_effective_end_time(round_)

    def test_should_end(self):
        round_ = _round(end_time=T0 + timedelta(hours=1))
        assert not should_end(round_, T0)
        assert should_end(round_, T0 + timedelta(hours=1))
        assert not should_end(round_.model_copy(update={"status": RoundStatus.ENDED}), T0 + timedelta(hours=2))

    def test_time_remaining_never_negative(self):
        round_ = _round(end_time=T0 + timedelta(minutes=30))
        assert time_remaining(round_, T0) == timedelta(minutes=30)
        assert time_remaining(round_, T0 + timedelta(hours=1)) == timedelta(0)


class TestRoundMatching:
    def test_priorities(self):
        exact = _round(region="North", council="Alpha")
        region_wide = _round(region="North")
        nationwide_council = _round()
        nationwide_national = _round(level=Level.NATIONAL)

        assert match_priority(exact, Level.COUNCIL, "north ", "ALPHA") == 100
        assert match_priority(region_wide, Level.COUNCIL, "North", "Alpha") == 80
        assert match_priority(nationwide_council, Level.COUNCIL, "North", "Alpha") == 30
        assert match_priority(nationwide_national, Level.NATIONAL, None, None) == 100
        assert match_priority(nationwide_national, Level.REGIONAL, "North", None) == 50
        assert match_priority(_round(region="South"), Level.COUNCIL, "North", "Alpha") == -1

    def test_best_match_prefers_priority_then_first_seen(self):
        newest_region = _round(region="North")
        older_exact = _round(region="North", council="Alpha")
        other_exact = _round(region="North", council="Alpha")

        assert best_matching_round([newest_region, older_exact], Level.COUNCIL, "North", "Alpha") is older_exact
        assert best_matching_round([older_exact, other_exact], Level.COUNCIL, "North", "Alpha") is older_exact
        assert best_matching_round([_round(region="South")], Level.COUNCIL, "North", "Alpha") is None


class TestRoundLifecycle:
    @pytest.mark.asyncio
    async def test_full_lifecycle(self, engine, make_judge, make_submission, make_round, broadcaster):
        judge = await make_judge()
        submission = await make_submission()
        round_ = await make_round()
        events = []

        async def listener(event):
            events.append(event)

        await broadcaster.subscribe(leaderboard_channel(YEAR, Level.COUNCIL), listener)

        active = await engine.rounds.activate(round_.id)
        assert active.status == RoundStatus.ACTIVE
        assert active.start_time is not None
        assert active.pending_submissions_snapshot == [submission.id]

        ended = await engine.rounds.end(round_.id)
        assert ended.status == RoundStatus.ENDED

        with pytest.raises(InvalidStateError):
            await engine.rounds.close(round_.id)

        await engine.rounds.close(round_.id, force=True, advance=False)
        closed = await engine.rounds.get_round(round_.id)
        assert closed.status == RoundStatus.CLOSED
        assert closed.closed_at is not None

        with pytest.raises(InvalidStateError):
            await engine.rounds.activate(round_.id)
        with pytest.raises(InvalidStateError):
            await engine.rounds.close(round_.id, force=True)

        kinds = [n.type for n in await engine.database.list_notifications(judge.id)]
        assert NotificationType.ROUND_STARTED in kinds
        assert NotificationType.ROUND_ENDED in kinds
        assert [e["status"] for e in events if e["type"] == ROUND_STATE_CHANGED] == ["active", "ended", "closed"]

    @pytest.mark.asyncio
    async def test_close_waits_for_judges(self, engine, make_judge, make_submission, make_round):
        judge = await make_judge()
        submission = await make_submission()
        round_ = await make_round()
        await engine.rounds.activate(round_.id)
        await engine.rounds.end(round_.id)

        completion = await engine.rounds.judge_completion(await engine.rounds.get_round(round_.id))
        assert (completion.expected, completion.completed, completion.pending) == (1, 0, 1)
        with pytest.raises(InvalidStateError):
            await engine.rounds.close(round_.id, advance=False)

        await engine.scoring.record_evaluation(submission.id, judge.id, {"a": 5})
        result = await engine.rounds.close(round_.id, actor_id=judge.id, advance=False)
        assert result.round.status == RoundStatus.CLOSED
        assert result.round.closed_by == judge.id

    @pytest.mark.asyncio
    async def test_activation_requires_judges(self, engine, make_round):
        round_ = await make_round()
        with pytest.raises(NotEligibleError):
            await engine.rounds.activate(round_.id)

    @pytest.mark.asyncio
    async def test_activation_rejects_past_end_time(self, engine, make_judge, make_round):
        await make_judge()
        round_ = await make_round(hours=1)
        with pytest.raises(InvalidStateError):
            await engine.rounds.activate(round_.id, now=utc_now() + timedelta(hours=2))

    @pytest.mark.asyncio
    async def test_create_round_validation(self, engine, make_round):
        with pytest.raises(ValidationError):
            await make_round(timing_type=TimingType.COUNTDOWN, end_time=None, countdown_duration=0)
        with pytest.raises(ValidationError):
            await make_round(end_time=None)
        with pytest.raises(ValidationError):
            await make_round(region=None, council="Alpha")

        await make_round()
        with pytest.raises(InvalidStateError):
            await make_round()

    @pytest.mark.asyncio
    async def test_update_only_while_pending(self, engine, make_judge, make_round):
        await make_judge()
        round_ = await make_round()
        updated = await engine.rounds.update_round(CompetitionRoundUpdate(id=round_.id, auto_advance=True))
        assert updated.auto_advance is True

        await engine.rounds.activate(round_.id)
        with pytest.raises(InvalidStateError):
            await engine.rounds.update_round(CompetitionRoundUpdate(id=round_.id, auto_advance=False))

    @pytest.mark.asyncio
    async def test_extend_countdown(self, engine, make_judge, make_round):
        await make_judge()
        round_ = await make_round(timing_type=TimingType.COUNTDOWN, end_time=None, countdown_duration=600)
        active = await engine.rounds.activate(round_.id)
        before = compute_effective_end_time(active)

        extended = await engine.rounds.extend(round_.id, 300)
        assert compute_effective_end_time(extended) == before + timedelta(seconds=300)

        with pytest.raises(ValidationError):
            await engine.rounds.extend(round_.id, 0)
        await engine.rounds.end(round_.id)
        with pytest.raises(InvalidStateError):
            await engine.rounds.extend(round_.id, 60)

    @pytest.mark.asyncio
    async def test_submission_without_round_id_uses_best_match(self, engine, make_judge, make_submission, make_round):
        await make_judge()
        submission = await make_submission()
        regional_fallback = await make_round(region="North", council=None)
        await engine.rounds.activate(regional_fallback.id)

        governing = await engine.rounds.ensure_evaluation_open(submission)
        assert governing.id == regional_fallback.id

    @pytest.mark.asyncio
    async def test_reminder_is_sent_once(self, engine, make_judge, make_round):
        judge = await make_judge()
        round_ = await make_round(hours=2)
        await engine.rounds.activate(round_.id)

        first = await engine.rounds.remind_ending_soon(window=timedelta(hours=3))
        second = await engine.rounds.remind_ending_soon(window=timedelta(hours=3))

        assert [r.id for r in first] == [round_.id]
        assert second == []
        kinds = [n.type for n in await engine.database.list_notifications(judge.id)]
        assert kinds.count(NotificationType.ROUND_ENDING_SOON) == 1


class TestJudgeProgressAndReminders:
    @pytest.mark.asyncio
    async def test_progress_per_assigned_judge(self, engine, make_judge, make_submission, make_round):
        first = await make_judge(name="first")
        second = await make_judge(name="second")
        subs = [await make_submission(teacher=f"T{i}") for i in range(3)]
        round_ = await make_round()
        await engine.scoring.record_evaluation(subs[0].id, first.id, {"a": 7})
        # moved to another council after being assigned
        await engine.database.update_user(UserUpdate(id=second.id, assigned_council="Beta"))

        progress = {p.judge_id: p for p in await engine.rounds.judge_progress(round_.id)}

        assert set(progress) == {first.id, second.id}
        assert (progress[first.id].expected, progress[first.id].completed, progress[first.id].pending) == (2, 1, 1)
        assert progress[first.id].active
        assert (progress[second.id].expected, progress[second.id].completed) == (1, 0)
        assert progress[second.id].name == "second"
        assert not progress[second.id].active

    @pytest.mark.asyncio
    async def test_national_progress_expects_every_submission(self, engine, make_judge, make_submission, make_round):
        judges = [await make_judge(Level.NATIONAL, name=f"N{i}") for i in range(2)]
        subs = [await make_submission(Level.NATIONAL, teacher=f"T{i}") for i in range(2)]
        round_ = await make_round(Level.NATIONAL, region=None, council=None)
        await engine.scoring.record_evaluation(subs[0].id, judges[0].id, {"a": 7})

        progress = {p.judge_id: p for p in await engine.rounds.judge_progress(round_.id)}

        assert [(progress[j.id].expected, progress[j.id].completed) for j in judges] == [(2, 1), (2, 0)]

    @pytest.mark.asyncio
    async def test_remind_judge(self, engine, make_judge, make_round):
        judge = await make_judge()
        outsider = await make_judge(council="Beta")
        round_ = await make_round()

        assert await engine.rounds.remind_judge(round_.id, judge.id, "  Two submissions left.  ") == 1
        notes = await engine.database.list_notifications(judge.id)
        assert [(n.type, n.message) for n in notes] == [(NotificationType.CUSTOM_REMINDER, "Two submissions left.")]

        with pytest.raises(ValidationError):
            await engine.rounds.remind_judge(round_.id, judge.id, "   ")
        with pytest.raises(NotFoundError):
            await engine.rounds.remind_judge(round_.id, uuid.uuid4(), "hello")
        with pytest.raises(NotEligibleError):
            await engine.rounds.remind_judge(round_.id, outsider.id, "hello")

    @pytest.mark.asyncio
    async def test_remind_location(self, engine, make_judge, make_round):
        alpha = await make_judge(council="Alpha")
        beta = await make_judge(council="Beta")
        round_ = await make_round(council=None)

        assert await engine.rounds.remind_location(round_.id, "Please finish.", council="Alpha") == 1
        assert len(await engine.database.list_notifications(alpha.id)) == 1
        assert await engine.database.list_notifications(beta.id) == []

        with pytest.raises(ValidationError):
            await engine.rounds.remind_location(round_.id, "Please finish.")
        with pytest.raises(ValidationError):
            await engine.rounds.remind_location(round_.id, "Please finish.", region="South", council="Alpha")
        with pytest.raises(NotEligibleError):
            await engine.rounds.remind_location(round_.id, "Please finish.", council="Gamma")


class TestFrozenLeaderboard:
    @pytest.mark.asyncio
    async def test_freeze_hides_new_scores_until_live(self, engine, make_judge, make_submission, make_round):
        judge = await make_judge()
        first = await make_submission(teacher="First")
        second = await make_submission(teacher="Second")
        round_ = await make_round()
        await engine.rounds.activate(round_.id)
        await engine.submit_evaluation(first.id, judge.id, {"a": 6})

        frozen = await engine.rounds.set_leaderboard_visibility(round_.id, LeaderboardVisibility.FROZEN)
        assert frozen.frozen_leaderboard_snapshot is not None

        await engine.submit_evaluation(second.id, judge.id, {"a": 9})

        view = await engine.leaderboard(YEAR, "Mathematics", Level.COUNCIL, "North::Alpha")
        assert view.visibility == LeaderboardVisibility.FROZEN
        assert [(e.submission_id, e.average_score) for e in view.entries] == [(first.id, 6.0)]

        await engine.rounds.set_leaderboard_visibility(round_.id, LeaderboardVisibility.LIVE)
        view = await engine.leaderboard(YEAR, "Mathematics", Level.COUNCIL, "North::Alpha")
        assert view.visibility == LeaderboardVisibility.LIVE
        assert [e.submission_id for e in view.entries] == [second.id, first.id]
        assert all(e.status == SubmissionStatus.EVALUATED for e in view.entries)
