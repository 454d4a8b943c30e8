# tests/test_leaderboard.py
import uuid
from datetime import datetime, timedelta

import pytest

from competition_engine.db.enums import Level, SubmissionStatus
from competition_engine.db.schemas.submission import SubmissionRead
from competition_engine.services.leaderboard import rank_entries

YEAR = 2025
T0 = datetime(2025, 3, 1, 9, 0)


def _submission(score: float, minutes: int = 0, status: SubmissionStatus = SubmissionStatus.EVALUATED) -> SubmissionRead:
    return SubmissionRead(
        id=uuid.uuid4(),
        teacher_name=f"T{score}",
        year=YEAR,
        area_of_focus="Mathematics",
        level=Level.COUNCIL,
        region="North",
        council="Alpha",
        average_score=score,
        status=status,
        created_at=T0 + timedelta(minutes=minutes),
    )


class TestRankEntries:
    def test_standard_competition_ranking(self):
        a, b, c, d = _submission(90), _submission(85, 1), _submission(85, 2), _submission(80, 3)
        entries = rank_entries([d, c, b, a])

        assert [e.submission_id for e in entries] == [a.id, b.id, c.id, d.id]
        assert [e.rank for e in entries] == [1, 2, 2, 4]
        assert [e.position for e in entries] == [1, 2, 3, 4]

    def test_ranking_is_stable_across_input_order(self):
        subs = [_submission(s, i) for i, s in enumerate((70, 90, 70, 70, 60))]
        first = rank_entries(subs)
        second = rank_entries(list(reversed(subs)))
        assert first == second
        assert [e.rank for e in first] == [1, 2, 2, 2, 5]

    def test_empty(self):
        assert rank_entries([]) == []


class TestLeaderboardBuilder:
    @pytest.mark.asyncio
    async def test_build_excludes_pending_and_disqualified(self, engine, make_judge, make_submission):
        judge = await make_judge()
        scored = await make_submission(teacher="Scored")
        disqualified = await make_submission(teacher="Cheater")
        await make_submission(teacher="Unscored")

        await engine.scoring.record_evaluation(scored.id, judge.id, {"a": 7})
        await engine.scoring.record_evaluation(disqualified.id, judge.id, {"a": 10})
        await engine.submissions.disqualify(disqualified.id, judge.id, "copied")

        board = await engine.leaderboards.build(YEAR, "Mathematics", Level.COUNCIL, "North::Alpha")
        assert [e.submission_id for e in board.entries] == [scored.id]
        assert board.total_submissions == 1

    @pytest.mark.asyncio
    async def test_rebuild_replaces_previous_board(self, engine, make_judge, make_submission):
        judge = await make_judge()
        first = await make_submission(teacher="A")
        second = await make_submission(teacher="B")
        await engine.scoring.record_evaluation(first.id, judge.id, {"a": 5})

        before = await engine.leaderboards.build(YEAR, "Mathematics", Level.COUNCIL, "North::Alpha")
        await engine.scoring.record_evaluation(second.id, judge.id, {"a": 8})
        after = await engine.leaderboards.build(YEAR, "Mathematics", Level.COUNCIL, "North::Alpha")

        assert before.id == after.id
        assert [e.submission_id for e in after.entries] == [second.id, first.id]
        assert len(await engine.leaderboards.list_leaderboards(year=YEAR)) == 1

    @pytest.mark.asyncio
    async def test_locations_are_separate(self, engine, make_judge, make_submission):
        alpha_judge = await make_judge(council="Alpha")
        beta_judge = await make_judge(council="Beta")
        alpha = await make_submission(council="Alpha")
        beta = await make_submission(council="Beta")
        await engine.scoring.record_evaluation(alpha.id, alpha_judge.id, {"a": 5})
        await engine.scoring.record_evaluation(beta.id, beta_judge.id, {"a": 6})

        locations = await engine.leaderboards.list_locations(YEAR, "Mathematics", Level.COUNCIL)
        assert locations == [("Mathematics", "North::Alpha"), ("Mathematics", "North::Beta")]

        board = await engine.leaderboards.build(YEAR, "Mathematics", Level.COUNCIL, "North::Beta")
        assert [e.submission_id for e in board.entries] == [beta.id]

    @pytest.mark.asyncio
    async def test_finalized_board_is_not_rebuilt(self, engine, make_judge, make_submission):
        judge = await make_judge()
        first = await make_submission(teacher="A")
        second = await make_submission(teacher="B")
        await engine.scoring.record_evaluation(first.id, judge.id, {"a": 5})

        board = await engine.leaderboards.build(YEAR, "Mathematics", Level.COUNCIL, "North::Alpha")
        finalized = await engine.leaderboards.finalize(board.id)
        assert finalized.is_finalized

        await engine.scoring.record_evaluation(second.id, judge.id, {"a": 9})
        again = await engine.leaderboards.build(YEAR, "Mathematics", Level.COUNCIL, "North::Alpha")
        assert [e.submission_id for e in again.entries] == [first.id]

    @pytest.mark.asyncio
    async def test_national_uses_single_key(self, engine, make_judge, make_submission):
        judges = [await make_judge(Level.NATIONAL, name=f"N{i}") for i in range(2)]
        submission = await make_submission(Level.NATIONAL)
        for judge in judges:
            await engine.scoring.record_evaluation(submission.id, judge.id, {"a": 7})

        assert await engine.leaderboards.list_locations(YEAR, None, Level.NATIONAL) == [("Mathematics", "national")]
