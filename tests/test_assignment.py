# tests/test_assignment.py
import uuid
from collections import Counter
from datetime import datetime

import pytest

from competition_engine.db.enums import Level, NotificationType, UserRole, UserStatus
from competition_engine.db.schemas.assignment import SubmissionAssignmentCreate
from competition_engine.db.schemas.user import UserCreate, UserRead
from competition_engine.errors import (
    DuplicateAssignmentError, NoEligibleJudgeError, NotEligibleError, ValidationError,
)
from competition_engine.services.assignment import pick_judge


def _judge(name: str) -> UserRead:
    return UserRead(
        id=uuid.uuid4(),
        name=name,
        role=UserRole.JUDGE,
        status=UserStatus.ACTIVE,
        assigned_level=Level.COUNCIL,
        created_at=datetime(2025, 1, 1),
    )


def test_pick_judge_prefers_least_loaded_then_query_order():
    a, b, c = _judge("a"), _judge("b"), _judge("c")
    assert pick_judge([a, b, c], {}) is a
    assert pick_judge([a, b, c], {a.id: 2, b.id: 1, c.id: 1}) is b
    assert pick_judge([a, b, c], {a.id: 1, b.id: 1, c.id: 0}) is c


class TestJudgeAssignmentAllocator:
    @pytest.mark.asyncio
    async def test_round_robin_keeps_loads_within_one(self, engine, make_judge, make_submission):
        judges = [await make_judge(name=f"J{i}") for i in range(3)]
        for i in range(7):
            await make_submission(teacher=f"T{i}")

        submissions = await engine.submissions.list_submissions(level=Level.COUNCIL)
        assignments = await engine.database.list_assignments([s.id for s in submissions])
        assert len(assignments) == 7

        loads = Counter(a.judge_id for a in assignments.values())
        assert set(loads) == {j.id for j in judges}
        assert max(loads.values()) - min(loads.values()) <= 1

    @pytest.mark.asyncio
    async def test_assign_is_idempotent(self, engine, make_judge, make_submission):
        await make_judge(name="J1")
        submission = await make_submission()
        await make_judge(name="J2")

        first = await engine.allocator.get_assignment(submission.id)
        again = await engine.allocator.assign(submission.id)
        assert again.id == first.id
        assert again.judge_id == first.judge_id

    @pytest.mark.asyncio
    async def test_concurrent_assignment_keeps_the_stored_judge(self, engine, make_judge, make_submission, monkeypatch):
        submission = await make_submission()
        first = await make_judge(name="J1")
        second = await make_judge(name="J2")
        stored = await engine.database.create_assignment(
            SubmissionAssignmentCreate(
                submission_id=submission.id,
                judge_id=second.id,
                level=Level.COUNCIL,
                region="North",
                council="Alpha",
            )
        )

        real_get = engine.database.get_assignment
        calls = []

        async def stale_first_read(submission_id):
            calls.append(submission_id)
            if len(calls) == 1:
                return None
            return await real_get(submission_id)

        monkeypatch.setattr(engine.database, "get_assignment", stale_first_read)
        result = await engine.allocator.assign(submission)

        assert result.id == stored.id
        assert result.judge_id == second.id
        assert len(calls) == 2
        counts = await engine.database.count_assignments_by_judge(level=Level.COUNCIL, region="North", council="Alpha")
        assert counts == {second.id: 1}
        assert await engine.database.list_notifications(first.id) == []

    @pytest.mark.asyncio
    async def test_assignment_notifies_judge(self, engine, make_judge, make_submission):
        judge = await make_judge()
        submission = await make_submission()

        assignment = await engine.allocator.get_assignment(submission.id)
        assert assignment.judge_notified is True
        notifications = await engine.database.list_notifications(judge.id)
        assert [n.type for n in notifications] == [NotificationType.JUDGE_ASSIGNED]

    @pytest.mark.asyncio
    async def test_national_needs_no_assignment(self, engine, make_judge, make_submission):
        await make_judge(Level.NATIONAL)
        submission = await make_submission(Level.NATIONAL)
        assert await engine.allocator.assign(submission) is None

    @pytest.mark.asyncio
    async def test_no_eligible_judge(self, engine, make_judge, make_submission):
        await make_judge(council="Beta")
        submission = await make_submission(council="Alpha")

        assert await engine.allocator.get_assignment(submission.id) is None
        with pytest.raises(NoEligibleJudgeError):
            await engine.allocator.assign(submission)

    @pytest.mark.asyncio
    async def test_inactive_judges_are_not_eligible(self, engine, make_judge, make_submission):
        await make_judge(status=UserStatus.INACTIVE)
        submission = await make_submission()
        assert await engine.allocator.get_assignment(submission.id) is None

    @pytest.mark.asyncio
    async def test_regional_matches_region_only(self, engine, make_judge, make_submission):
        judge = await make_judge(Level.REGIONAL, region="North")
        submission = await make_submission(Level.REGIONAL, region="North", council="Anything")
        assignment = await engine.allocator.get_assignment(submission.id)
        assert assignment.judge_id == judge.id

    @pytest.mark.asyncio
    async def test_activating_a_judge_assigns_backlog(self, engine, make_submission):
        for i in range(4):
            await make_submission(teacher=f"T{i}")

        judge = await engine.users.create_user(
            UserCreate(
                name="Late judge",
                role=UserRole.JUDGE,
                status=UserStatus.PENDING,
                assigned_level=Level.COUNCIL,
                assigned_region="North",
                assigned_council="Alpha",
            )
        )
        activated, created = await engine.users.activate_judge(judge.id)

        assert activated.status == UserStatus.ACTIVE
        assert len(created) == 4
        assert {a.judge_id for a in created} == {judge.id}

    @pytest.mark.asyncio
    async def test_backlog_is_shared_between_active_judges(self, engine, make_judge, make_submission):
        for i in range(6):
            await make_submission(teacher=f"T{i}")
        first = await make_judge(name="first")
        second = await make_judge(name="second", status=UserStatus.PENDING)

        _, created = await engine.users.activate_judge(second.id)

        assert len(created) == 6
        assert Counter(a.judge_id for a in created) == {first.id: 3, second.id: 3}

    @pytest.mark.asyncio
    async def test_backlog_skips_assigned_submissions(self, engine, make_judge, make_submission):
        first = await make_judge(name="first")
        for i in range(4):
            await make_submission(teacher=f"T{i}")
        second = await make_judge(name="second", status=UserStatus.PENDING)

        _, created = await engine.users.activate_judge(second.id)

        assert created == []
        loads = await engine.database.count_assignments_by_judge(level=Level.COUNCIL)
        assert loads == {first.id: 4}

    @pytest.mark.asyncio
    async def test_manual_assignment(self, engine, make_judge, make_submission):
        submission = await make_submission()
        stranger = await make_judge(council="Beta")
        judge = await make_judge()

        with pytest.raises(NotEligibleError):
            await engine.allocator.assign_to_judge(submission.id, stranger.id)

        assignment = await engine.allocator.assign_to_judge(submission.id, judge.id)
        assert assignment.judge_id == judge.id
        with pytest.raises(DuplicateAssignmentError):
            await engine.allocator.assign_to_judge(submission.id, judge.id)

    @pytest.mark.asyncio
    async def test_manual_assignment_rejects_national(self, engine, make_judge, make_submission):
        judge = await make_judge(Level.NATIONAL)
        submission = await make_submission(Level.NATIONAL)
        with pytest.raises(ValidationError):
            await engine.allocator.assign_to_judge(submission.id, judge.id)


class TestDisqualify:
    @pytest.mark.asyncio
    async def test_only_assigned_judge_can_disqualify(self, engine, make_judge, make_submission):
        judge = await make_judge(name="assigned")
        submission = await make_submission()
        other = await make_judge(name="other")

        with pytest.raises(NotEligibleError):
            await engine.submissions.disqualify(submission.id, other.id, "plagiarism")
        with pytest.raises(ValidationError):
            await engine.submissions.disqualify(submission.id, judge.id, "  ")

        updated = await engine.submissions.disqualify(submission.id, judge.id, "plagiarism")
        assert updated.disqualified is True
        assert updated.disqualified_by == judge.id
        assert updated.disqualification_reason == "plagiarism"
