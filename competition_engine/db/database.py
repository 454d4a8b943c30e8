# db/database.py
import uuid
from contextlib import asynccontextmanager
from datetime import datetime
from typing import AsyncIterator, Callable, Iterable, Optional, ClassVar, Self, Any, List, Sequence, Tuple

from sqlalchemy import select, func, update
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.exc import IntegrityError

from competition_engine.config import Settings
from competition_engine.db.models._base import Base
from competition_engine.db.models.user import User
from competition_engine.db.models.submission import Submission
from competition_engine.db.models.competition_round import CompetitionRound
from competition_engine.db.models.submission_assignment import SubmissionAssignment
from competition_engine.db.models.evaluation import Evaluation
from competition_engine.db.models.leaderboard import Leaderboard, LeaderboardEntry
from competition_engine.db.models.quota import Quota
from competition_engine.db.models.tie_break import TieBreak, TieBreakVote
from competition_engine.db.models.notification import Notification
from competition_engine.db.models.audit_log import AuditLog
from competition_engine.db.schemas.user import UserCreate, UserRead, UserUpdate
from competition_engine.db.schemas.submission import SubmissionCreate, SubmissionRead, SubmissionUpdate
from competition_engine.db.schemas.competition_round import (
    CompetitionRoundCreate, CompetitionRoundRead, CompetitionRoundUpdate,
)
from competition_engine.db.schemas.assignment import SubmissionAssignmentCreate, SubmissionAssignmentRead
from competition_engine.db.schemas.evaluation import EvaluationCreate, EvaluationRead
from competition_engine.db.schemas.leaderboard import LeaderboardEntryRead, LeaderboardRead
from competition_engine.db.schemas.quota import QuotaRead
from competition_engine.db.schemas.tie_break import TieBreakCreate, TieBreakRead, TieBreakVoteRead
from competition_engine.db.schemas.notification import NotificationCreate, NotificationRead
from competition_engine.db.schemas.audit_log import AuditLogCreate, AuditLogRead
from competition_engine.db.enums import (
    Level, RoundStatus, SubmissionStatus, TieBreakStatus, UserRole, UserStatus,
)
from competition_engine.utils.clock import utc_now
from competition_engine.utils.sentinels import MISSING, provided, provided_fields


ScoreRule = Callable[[SubmissionRead, list[EvaluationRead]], float]


class DataBase():
    """
    Async SQLAlchemy database singleton.
    Usage:
        db = DataBase()  # same instance everywhere
        async with db.session() as s:
            ...
    """
    _instance: ClassVar[Optional["DataBase"]] = None

    def __new__(cls, *args: Any, **kwargs: Any) -> Self:
        if cls._instance is None:
            cls._instance = super().__new__(cls)

        return cls._instance

    def __init__(self, echo: Optional[bool] = None) -> None:
        if getattr(self, "_initialized", False):
            return

        settings = Settings()
        self._engine: AsyncEngine = create_async_engine(
            settings.database_url,
            echo=settings.db_echo if echo is None else echo,
            pool_pre_ping=True,
        )
        self._sessionmaker: async_sessionmaker[AsyncSession] = async_sessionmaker(
            bind=self._engine,
            expire_on_commit=False,
            autoflush=False,
        )

        self._initialized = True

    @property
    def engine(self) -> AsyncEngine:
        return self._engine

    @asynccontextmanager
    async def session(self) -> AsyncIterator[AsyncSession]:
        """
        Provides an AsyncSession with safe commit/rollback semantics.
        """
        session: AsyncSession = self._sessionmaker()
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()

    # --- schema management helpers (optional) ---

    async def create_all(self) -> None:
        """
        Create tables based on Base metadata. Use only in dev/tests; prefer Alembic in prod.
        """
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.create_all)

    async def drop_all(self) -> None:
        async with self._engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)

    async def dispose(self) -> None:
        await self._engine.dispose()

    # --- users / judge directory ---

    async def create_user(self, data: UserCreate) -> UserRead:
        """
        Create a user and return the stored row.
        On unique-constraint violation (tg_id), re-raises IntegrityError for the caller to handle.
        """
        user = User(
            tg_id=data.tg_id,
            name=data.name,
            email=str(data.email) if data.email is not None else None,
            role=data.role,
            status=data.status,
            assigned_level=data.assigned_level,
            assigned_region=data.assigned_region,
            assigned_council=data.assigned_council,
        )
        async with self.session() as s:
            s.add(user)
            await s.flush()

        return UserRead.model_validate(user)

    async def get_user(self, uid: uuid.UUID) -> Optional[UserRead]:
        async with self.session() as s:
            row = await s.get(User, uid)
        return UserRead.model_validate(row) if row else None

    async def update_user(self, payload: UserUpdate) -> UserRead:
        async with self.session() as s:
            db_obj = await s.get(User, payload.id)
            if db_obj is None:
                raise LookupError("User not found.")

            for name, value in provided_fields(payload).items():
                if name == "email" and value is not None:
                    value = str(value)
                setattr(db_obj, name, value)

            await s.flush()

        return UserRead.model_validate(db_obj)

    async def list_judges(
        self,
        *,
        level: Level | None = None,
        region: str | None | Any = MISSING,
        council: str | None | Any = MISSING,
        active_only: bool = True,
    ) -> list[UserRead]:
        """
        Judges ordered by (created_at, id) so tie-breaking in round-robin is reproducible.
        ``MISSING`` means "do not filter"; ``None`` matches unset columns.
        """
        stmt = select(User).where(User.role == UserRole.JUDGE)
        if active_only:
            stmt = stmt.where(User.status == UserStatus.ACTIVE)
        if level is not None:
            stmt = stmt.where(User.assigned_level == level)
        stmt = _filter_optional(stmt, User.assigned_region, region)
        stmt = _filter_optional(stmt, User.assigned_council, council)
        stmt = stmt.order_by(User.created_at.asc(), User.id.asc())

        async with self.session() as s:
            rows: List[User] = (await s.execute(stmt)).scalars().all()
        return [UserRead.model_validate(r) for r in rows]

    # --- submissions ---

    async def create_submission(self, data: SubmissionCreate) -> SubmissionRead:
        row = Submission(**data.model_dump())
        async with self.session() as s:
            s.add(row)
            await s.flush()
        return SubmissionRead.model_validate(row)

    async def get_submission(self, submission_id: uuid.UUID) -> Optional[SubmissionRead]:
        async with self.session() as s:
            row = await s.get(Submission, submission_id)
        return SubmissionRead.model_validate(row) if row else None

    async def update_submission(self, payload: SubmissionUpdate) -> SubmissionRead:
        async with self.session() as s:
            db_obj = await s.get(Submission, payload.id)
            if db_obj is None:
                raise LookupError("Submission not found.")
            for name, value in provided_fields(payload).items():
                setattr(db_obj, name, value)
            await s.flush()
        return SubmissionRead.model_validate(db_obj)

    async def get_next_tier_submission(self, source_id: uuid.UUID) -> Optional[SubmissionRead]:
        stmt = select(Submission).where(Submission.promoted_from_id == source_id)
        async with self.session() as s:
            row = (await s.execute(stmt)).scalar_one_or_none()
        return SubmissionRead.model_validate(row) if row else None

    async def create_next_tier_submission(self, source: SubmissionRead, level: Level) -> Tuple[SubmissionRead, bool]:
        """
        Copy a promoted submission into ``level`` as a fresh pending entry.
        Returns (row, created); the unique ``promoted_from_id`` makes a second
        call for the same source return the existing copy.
        """
        existing = await self.get_next_tier_submission(source.id)
        if existing is not None:
            return existing, False

        row = Submission(
            teacher_id=source.teacher_id,
            teacher_name=source.teacher_name,
            title=source.title,
            year=source.year,
            area_of_focus=source.area_of_focus,
            level=level,
            region=source.region,
            council=source.council,
            promoted_from_id=source.id,
        )
        try:
            async with self.session() as s:
                s.add(row)
                await s.flush()
        except IntegrityError:
            existing = await self.get_next_tier_submission(source.id)
            if existing is None:
                raise
            return existing, False
        return SubmissionRead.model_validate(row), True

    async def list_submissions(
        self,
        *,
        year: int | None = None,
        level: Level | None = None,
        area_of_focus: str | None = None,
        region: str | None | Any = MISSING,
        council: str | None | Any = MISSING,
        statuses: Iterable[SubmissionStatus] | None = None,
        disqualified: bool | None = None,
        round_id: uuid.UUID | None = None,
        unassigned_only: bool = False,
    ) -> list[SubmissionRead]:
        """
        Generic submission query. Results are ordered by (created_at, id).
        ``region``/``council`` follow the MISSING convention of :meth:`list_judges`.
        """
        stmt = select(Submission)
        if year is not None:
            stmt = stmt.where(Submission.year == year)
        if level is not None:
            stmt = stmt.where(Submission.level == level)
        if area_of_focus is not None:
            stmt = stmt.where(Submission.area_of_focus == area_of_focus)
        stmt = _filter_optional(stmt, Submission.region, region)
        stmt = _filter_optional(stmt, Submission.council, council)
        if statuses is not None:
            stmt = stmt.where(Submission.status.in_(list(statuses)))
        if disqualified is not None:
            stmt = stmt.where(Submission.disqualified.is_(disqualified))
        if round_id is not None:
            stmt = stmt.where(Submission.round_id == round_id)
        if unassigned_only:
            assigned = select(SubmissionAssignment.submission_id)
            stmt = stmt.where(Submission.id.not_in(assigned))
        stmt = stmt.order_by(Submission.created_at.asc(), Submission.id.asc())

        async with self.session() as s:
            rows: List[Submission] = (await s.execute(stmt)).scalars().all()
        return [SubmissionRead.model_validate(r) for r in rows]

    async def list_submission_locations(
        self,
        *,
        year: int,
        level: Level,
        area_of_focus: str | None = None,
        region: str | None | Any = MISSING,
        council: str | None | Any = MISSING,
        statuses: Iterable[SubmissionStatus],
    ) -> list[Tuple[str, Optional[str], Optional[str]]]:
        """Distinct (area_of_focus, region, council) triples of ranked, non-disqualified submissions."""
        stmt = (
            select(Submission.area_of_focus, Submission.region, Submission.council)
            .distinct()
            .where(
                Submission.year == year,
                Submission.level == level,
                Submission.status.in_(list(statuses)),
                Submission.disqualified.is_(False),
            )
        )
        if area_of_focus is not None:
            stmt = stmt.where(Submission.area_of_focus == area_of_focus)
        stmt = _filter_optional(stmt, Submission.region, region)
        stmt = _filter_optional(stmt, Submission.council, council)

        async with self.session() as s:
            rows = (await s.execute(stmt)).all()
        return [(r[0], r[1], r[2]) for r in rows]

    async def recompute_submission_score(self, submission_id: uuid.UUID, rule: ScoreRule) -> SubmissionRead:
        """
        Read every evaluation and write the canonical score in one transaction.
        Status moves pending -> evaluated only; promoted/eliminated rows and
        disqualified submissions keep their status.
        """
        async with self.session() as s:
            db_obj = await s.get(Submission, submission_id)
            if db_obj is None:
                raise LookupError("Submission not found.")

            stmt = (
                select(Evaluation)
                .where(Evaluation.submission_id == submission_id)
                .order_by(Evaluation.created_at.asc(), Evaluation.id.asc())
            )
            evaluations = [EvaluationRead.model_validate(e) for e in (await s.execute(stmt)).scalars().all()]

            db_obj.average_score = rule(SubmissionRead.model_validate(db_obj), evaluations)
            if evaluations and db_obj.status == SubmissionStatus.PENDING and not db_obj.disqualified:
                db_obj.status = SubmissionStatus.EVALUATED
            await s.flush()

        return SubmissionRead.model_validate(db_obj)

    async def transition_submissions(
        self,
        submission_ids: Sequence[uuid.UUID],
        *,
        from_status: SubmissionStatus,
        to_status: SubmissionStatus,
    ) -> list[uuid.UUID]:
        """
        Status guard: only rows still in ``from_status`` are moved.
        Returns the ids that actually changed, in input order.
        """
        if not submission_ids:
            return []

        async with self.session() as s:
            sel = (
                select(Submission.id)
                .where(Submission.id.in_(list(submission_ids)), Submission.status == from_status)
                .with_for_update()
            )
            changed = set((await s.execute(sel)).scalars().all())
            if changed:
                await s.execute(
                    update(Submission)
                    .where(Submission.id.in_(list(changed)), Submission.status == from_status)
                    .values(status=to_status, updated_at=utc_now())
                )
        return [sid for sid in submission_ids if sid in changed]

    # --- rounds ---

    async def create_round(self, data: CompetitionRoundCreate) -> CompetitionRoundRead:
        row = CompetitionRound(**data.model_dump())
        async with self.session() as s:
            s.add(row)
            await s.flush()
        return CompetitionRoundRead.model_validate(row)

    async def get_round(self, round_id: uuid.UUID) -> Optional[CompetitionRoundRead]:
        async with self.session() as s:
            row = await s.get(CompetitionRound, round_id)
        return CompetitionRoundRead.model_validate(row) if row else None

    async def update_round(self, payload: CompetitionRoundUpdate) -> CompetitionRoundRead:
        async with self.session() as s:
            db_obj = await s.get(CompetitionRound, payload.id)
            if db_obj is None:
                raise LookupError("Round not found.")
            for name, value in provided_fields(payload).items():
                setattr(db_obj, name, value)
            await s.flush()
        return CompetitionRoundRead.model_validate(db_obj)

    async def list_rounds(
        self,
        *,
        statuses: Iterable[RoundStatus] | None = None,
        year: int | None = None,
        level: Level | None = None,
        region: str | None | Any = MISSING,
        council: str | None | Any = MISSING,
        limit: int | None = None,
    ) -> list[CompetitionRoundRead]:
        """Most recently created first."""
        stmt = select(CompetitionRound)
        if statuses is not None:
            stmt = stmt.where(CompetitionRound.status.in_(list(statuses)))
        if year is not None:
            stmt = stmt.where(CompetitionRound.year == year)
        if level is not None:
            stmt = stmt.where(CompetitionRound.level == level)
        stmt = _filter_optional(stmt, CompetitionRound.region, region)
        stmt = _filter_optional(stmt, CompetitionRound.council, council)
        stmt = stmt.order_by(CompetitionRound.created_at.desc(), CompetitionRound.id.desc())
        if limit is not None:
            stmt = stmt.limit(max(0, int(limit)))

        async with self.session() as s:
            rows: List[CompetitionRound] = (await s.execute(stmt)).scalars().all()
        return [CompetitionRoundRead.model_validate(r) for r in rows]

    async def transition_round(
        self,
        round_id: uuid.UUID,
        *,
        from_statuses: Iterable[RoundStatus],
        to_status: RoundStatus | None = None,
        **fields: Any,
    ) -> Optional[CompetitionRoundRead]:
        """
        Compare-and-set on round status. Returns the updated round, or None when the
        round was no longer in one of ``from_statuses``.
        """
        values = dict(fields)
        if to_status is not None:
            values["status"] = to_status
        values["updated_at"] = utc_now()

        async with self.session() as s:
            stmt = (
                update(CompetitionRound)
                .where(CompetitionRound.id == round_id, CompetitionRound.status.in_(list(from_statuses)))
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            result = await s.execute(stmt)
            if result.rowcount == 0:
                return None
            row = await s.get(CompetitionRound, round_id)

        return CompetitionRoundRead.model_validate(row)

    # --- assignments ---

    async def get_assignment(self, submission_id: uuid.UUID) -> Optional[SubmissionAssignmentRead]:
        stmt = select(SubmissionAssignment).where(SubmissionAssignment.submission_id == submission_id)
        async with self.session() as s:
            row = (await s.execute(stmt)).scalar_one_or_none()
        return SubmissionAssignmentRead.model_validate(row) if row else None

    async def create_assignment(self, data: SubmissionAssignmentCreate) -> SubmissionAssignmentRead:
        """Raises IntegrityError when the submission already has a judge."""
        row = SubmissionAssignment(**data.model_dump())
        async with self.session() as s:
            s.add(row)
            await s.flush()
        return SubmissionAssignmentRead.model_validate(row)

    async def mark_assignment_notified(self, assignment_id: uuid.UUID) -> None:
        async with self.session() as s:
            await s.execute(
                update(SubmissionAssignment)
                .where(SubmissionAssignment.id == assignment_id)
                .values(judge_notified=True)
            )

    async def count_assignments_by_judge(
        self,
        *,
        level: Level,
        region: str | None | Any = MISSING,
        council: str | None | Any = MISSING,
    ) -> dict[uuid.UUID, int]:
        stmt = (
            select(SubmissionAssignment.judge_id, func.count(SubmissionAssignment.id))
            .where(SubmissionAssignment.level == level)
            .group_by(SubmissionAssignment.judge_id)
        )
        stmt = _filter_optional(stmt, SubmissionAssignment.region, region)
        stmt = _filter_optional(stmt, SubmissionAssignment.council, council)

        async with self.session() as s:
            rows = (await s.execute(stmt)).all()
        return {judge_id: int(count) for judge_id, count in rows}

    async def list_assignments(self, submission_ids: Sequence[uuid.UUID]) -> dict[uuid.UUID, SubmissionAssignmentRead]:
        if not submission_ids:
            return {}
        stmt = select(SubmissionAssignment).where(SubmissionAssignment.submission_id.in_(list(submission_ids)))
        async with self.session() as s:
            rows = (await s.execute(stmt)).scalars().all()
        return {r.submission_id: SubmissionAssignmentRead.model_validate(r) for r in rows}

    # --- evaluations ---

    async def upsert_evaluation(self, data: EvaluationCreate) -> Tuple[EvaluationRead, bool]:
        """
        Insert or revise the (submission, judge) evaluation. Returns (row, created).
        A concurrent insert of the same pair is retried once as an update.
        """
        for attempt in range(2):
            try:
                async with self.session() as s:
                    stmt = select(Evaluation).where(
                        Evaluation.submission_id == data.submission_id,
                        Evaluation.judge_id == data.judge_id,
                    )
                    db_obj = (await s.execute(stmt)).scalar_one_or_none()
                    created = db_obj is None
                    if created:
                        db_obj = Evaluation(**data.model_dump())
                        s.add(db_obj)
                    else:
                        db_obj.scores = dict(data.scores)
                        db_obj.total_score = data.total_score
                        db_obj.average_score = data.average_score
                        db_obj.comments = data.comments
                        db_obj.updated_at = utc_now()
                    await s.flush()
                return EvaluationRead.model_validate(db_obj), created
            except IntegrityError:
                if attempt:
                    raise
        raise RuntimeError("unreachable")

    async def list_evaluations(
        self,
        *,
        submission_ids: Sequence[uuid.UUID] | None = None,
        judge_id: uuid.UUID | None = None,
    ) -> list[EvaluationRead]:
        stmt = select(Evaluation)
        if submission_ids is not None:
            if not submission_ids:
                return []
            stmt = stmt.where(Evaluation.submission_id.in_(list(submission_ids)))
        if judge_id is not None:
            stmt = stmt.where(Evaluation.judge_id == judge_id)
        stmt = stmt.order_by(Evaluation.created_at.asc(), Evaluation.id.asc())
        async with self.session() as s:
            rows = (await s.execute(stmt)).scalars().all()
        return [EvaluationRead.model_validate(r) for r in rows]

    # --- leaderboards ---

    async def get_leaderboard(
        self,
        *,
        year: int,
        area_of_focus: str,
        level: Level,
        location_key: str,
    ) -> Optional[LeaderboardRead]:
        stmt = select(Leaderboard).where(
            Leaderboard.year == year,
            Leaderboard.area_of_focus == area_of_focus,
            Leaderboard.level == level,
            Leaderboard.location_key == location_key,
        )
        async with self.session() as s:
            row = (await s.execute(stmt)).scalar_one_or_none()
        return LeaderboardRead.model_validate(row) if row else None

    async def get_leaderboard_by_id(self, leaderboard_id: uuid.UUID) -> Optional[LeaderboardRead]:
        async with self.session() as s:
            row = await s.get(Leaderboard, leaderboard_id)
        return LeaderboardRead.model_validate(row) if row else None

    async def replace_leaderboard(
        self,
        *,
        year: int,
        area_of_focus: str,
        level: Level,
        location_key: str,
        quota: int,
        entries: Sequence[LeaderboardEntryRead],
    ) -> LeaderboardRead:
        """
        Last writer wins for a location. A finalized leaderboard is returned untouched.
        """
        for attempt in range(2):
            try:
                async with self.session() as s:
                    stmt = select(Leaderboard).where(
                        Leaderboard.year == year,
                        Leaderboard.area_of_focus == area_of_focus,
                        Leaderboard.level == level,
                        Leaderboard.location_key == location_key,
                    )
                    board = (await s.execute(stmt)).scalar_one_or_none()
                    if board is None:
                        board = Leaderboard(
                            year=year,
                            area_of_focus=area_of_focus,
                            level=level,
                            location_key=location_key,
                            entries=[],
                        )
                        s.add(board)
                    elif board.is_finalized:
                        return LeaderboardRead.model_validate(board)

                    board.entries = [LeaderboardEntry(**entry.model_dump()) for entry in entries]
                    board.quota = quota
                    board.total_submissions = len(entries)
                    board.last_updated = utc_now()
                    await s.flush()
                return LeaderboardRead.model_validate(board)
            except IntegrityError:
                if attempt:
                    raise
        raise RuntimeError("unreachable")

    async def set_leaderboard_entry_statuses(
        self,
        leaderboard_id: uuid.UUID,
        statuses: dict[uuid.UUID, SubmissionStatus],
    ) -> Optional[LeaderboardRead]:
        """Patch entry statuses after advancement; ranks are left alone."""
        async with self.session() as s:
            board = await s.get(Leaderboard, leaderboard_id)
            if board is None:
                return None
            for entry in board.entries:
                if entry.submission_id in statuses:
                    entry.status = statuses[entry.submission_id]
            board.last_updated = utc_now()
            await s.flush()
        return LeaderboardRead.model_validate(board)

    async def finalize_leaderboard(self, leaderboard_id: uuid.UUID) -> LeaderboardRead:
        async with self.session() as s:
            board = await s.get(Leaderboard, leaderboard_id)
            if board is None:
                raise LookupError("Leaderboard not found.")
            board.is_finalized = True
            board.last_updated = utc_now()
            await s.flush()
        return LeaderboardRead.model_validate(board)

    async def list_leaderboards(
        self,
        *,
        year: int | None = None,
        level: Level | None = None,
        area_of_focus: str | None = None,
    ) -> list[LeaderboardRead]:
        stmt = select(Leaderboard)
        if year is not None:
            stmt = stmt.where(Leaderboard.year == year)
        if level is not None:
            stmt = stmt.where(Leaderboard.level == level)
        if area_of_focus is not None:
            stmt = stmt.where(Leaderboard.area_of_focus == area_of_focus)
        stmt = stmt.order_by(Leaderboard.area_of_focus.asc(), Leaderboard.location_key.asc())
        async with self.session() as s:
            rows = (await s.execute(stmt)).scalars().all()
        return [LeaderboardRead.model_validate(r) for r in rows]

    # --- quotas ---

    async def get_quota(self, year: int, level: Level) -> Optional[QuotaRead]:
        stmt = select(Quota).where(Quota.year == year, Quota.level == level)
        async with self.session() as s:
            row = (await s.execute(stmt)).scalar_one_or_none()
        return QuotaRead.model_validate(row) if row else None

    async def upsert_quota(self, year: int, level: Level, quota: int) -> QuotaRead:
        for attempt in range(2):
            try:
                async with self.session() as s:
                    stmt = select(Quota).where(Quota.year == year, Quota.level == level)
                    row = (await s.execute(stmt)).scalar_one_or_none()
                    if row is None:
                        row = Quota(year=year, level=level, quota=quota)
                        s.add(row)
                    else:
                        row.quota = quota
                        row.updated_at = utc_now()
                    await s.flush()
                return QuotaRead.model_validate(row)
            except IntegrityError:
                if attempt:
                    raise
        raise RuntimeError("unreachable")

    async def list_quotas(self, year: int | None = None) -> list[QuotaRead]:
        stmt = select(Quota)
        if year is not None:
            stmt = stmt.where(Quota.year == year)
        stmt = stmt.order_by(Quota.year.desc(), Quota.level.asc())
        async with self.session() as s:
            rows = (await s.execute(stmt)).scalars().all()
        return [QuotaRead.model_validate(r) for r in rows]

    # --- tie-breaks ---

    async def create_tie_break(self, data: TieBreakCreate) -> TieBreakRead:
        row = TieBreak(
            year=data.year,
            area_of_focus=data.area_of_focus,
            level=data.level,
            location_key=data.location_key,
            submission_ids=[str(sid) for sid in data.submission_ids],
            quota=data.quota,
            votes=[],
        )
        async with self.session() as s:
            s.add(row)
            await s.flush()
        return TieBreakRead.model_validate(row)

    async def get_tie_break(self, tie_break_id: uuid.UUID) -> Optional[TieBreakRead]:
        async with self.session() as s:
            row = await s.get(TieBreak, tie_break_id)
        return TieBreakRead.model_validate(row) if row else None

    async def list_tie_breaks(
        self,
        *,
        year: int | None = None,
        level: Level | None = None,
        area_of_focus: str | None = None,
        location_key: str | None = None,
        status: TieBreakStatus | None = None,
    ) -> list[TieBreakRead]:
        stmt = select(TieBreak)
        if year is not None:
            stmt = stmt.where(TieBreak.year == year)
        if level is not None:
            stmt = stmt.where(TieBreak.level == level)
        if area_of_focus is not None:
            stmt = stmt.where(TieBreak.area_of_focus == area_of_focus)
        if location_key is not None:
            stmt = stmt.where(TieBreak.location_key == location_key)
        if status is not None:
            stmt = stmt.where(TieBreak.status == status)
        stmt = stmt.order_by(TieBreak.created_at.desc(), TieBreak.id.desc())
        async with self.session() as s:
            rows = (await s.execute(stmt)).scalars().all()
        return [TieBreakRead.model_validate(r) for r in rows]

    async def add_tie_break_vote(
        self,
        tie_break_id: uuid.UUID,
        judge_id: uuid.UUID,
        submission_id: uuid.UUID,
    ) -> TieBreakVoteRead:
        """Raises IntegrityError when the judge already voted."""
        row = TieBreakVote(tie_break_id=tie_break_id, judge_id=judge_id, submission_id=submission_id)
        async with self.session() as s:
            s.add(row)
            await s.flush()
        return TieBreakVoteRead.model_validate(row)

    async def resolve_tie_break(
        self,
        tie_break_id: uuid.UUID,
        winners: Sequence[uuid.UUID],
        resolved_at: datetime,
    ) -> Optional[TieBreakRead]:
        """Compare-and-set open -> resolved; None if it was already resolved."""
        async with self.session() as s:
            result = await s.execute(
                update(TieBreak)
                .where(TieBreak.id == tie_break_id, TieBreak.status == TieBreakStatus.OPEN)
                .values(
                    status=TieBreakStatus.RESOLVED,
                    winners=[str(w) for w in winners],
                    resolved_at=resolved_at,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                return None
            row = await s.get(TieBreak, tie_break_id)
        return TieBreakRead.model_validate(row)

    async def supersede_tie_break(self, tie_break_id: uuid.UUID) -> bool:
        """Compare-and-set open -> superseded; False if it was no longer open."""
        async with self.session() as s:
            result = await s.execute(
                update(TieBreak)
                .where(TieBreak.id == tie_break_id, TieBreak.status == TieBreakStatus.OPEN)
                .values(status=TieBreakStatus.SUPERSEDED)
                .execution_options(synchronize_session=False)
            )
        return result.rowcount > 0

    # --- notifications ---

    async def create_notification(self, data: NotificationCreate) -> NotificationRead:
        row = Notification(**data.model_dump())
        async with self.session() as s:
            s.add(row)
            await s.flush()
        return NotificationRead.model_validate(row)

    async def list_notifications(self, user_id: uuid.UUID, *, unread_only: bool = False) -> list[NotificationRead]:
        stmt = select(Notification).where(Notification.user_id == user_id)
        if unread_only:
            stmt = stmt.where(Notification.read.is_(False))
        stmt = stmt.order_by(Notification.created_at.asc(), Notification.id.asc())
        async with self.session() as s:
            rows = (await s.execute(stmt)).scalars().all()
        return [NotificationRead.model_validate(r) for r in rows]

    # --- audit log ---

    async def create_audit_log(self, payload: AuditLogCreate) -> AuditLogRead:
        """Persist a new audit log entry."""
        entry = AuditLog(
            actor_id=payload.actor_id,
            action=payload.action,
            payload=payload.payload,
        )
        async with self.session() as s:
            s.add(entry)
            await s.flush()
        return AuditLogRead.model_validate(entry)

    async def list_audit_logs(
        self,
        *,
        limit: int,
        offset: int,
        actor_id: Optional[uuid.UUID] = None,
        action: Optional[str] = None,
    ) -> Tuple[list[AuditLogRead], int]:
        """Return paginated audit log entries filtered by actor/action."""
        limit = max(0, int(limit))
        offset = max(0, int(offset))

        async with self.session() as s:
            base_stmt = select(AuditLog)
            count_stmt = select(func.count(AuditLog.id))
            if actor_id is not None:
                base_stmt = base_stmt.where(AuditLog.actor_id == actor_id)
                count_stmt = count_stmt.where(AuditLog.actor_id == actor_id)
            if action is not None:
                base_stmt = base_stmt.where(AuditLog.action == action)
                count_stmt = count_stmt.where(AuditLog.action == action)

            total = int((await s.execute(count_stmt)).scalar_one())
            if limit == 0:
                return [], total

            stmt = base_stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).limit(limit).offset(offset)
            rows = (await s.execute(stmt)).scalars().all()

        return [AuditLogRead.model_validate(r) for r in rows], total


def _filter_optional(stmt, column, value):
    if not provided(value):
        return stmt
    if value is None:
        return stmt.where(column.is_(None))
    return stmt.where(column == value)
