# services/users.py
from __future__ import annotations

import logging
from typing import Optional
from uuid import UUID

from competition_engine.db.database import DataBase
from competition_engine.db.enums import Level, UserRole, UserStatus
from competition_engine.db.schemas.assignment import SubmissionAssignmentRead
from competition_engine.db.schemas.user import UserCreate, UserRead, UserUpdate
from competition_engine.errors import NotFoundError, ValidationError
from competition_engine.services.assignment import JudgeAssignmentAllocator
from competition_engine.services.audit_log import instrument_service_class
from competition_engine.services.tier_policy import policy_for
from competition_engine.utils.sentinels import MISSING

logger = logging.getLogger(__name__)


class UserService:
    """Judge directory. Activating a judge hands them a fair share of the unassigned backlog."""

    def __init__(
        self,
        database: Optional[DataBase] = None,
        allocator: Optional[JudgeAssignmentAllocator] = None,
    ) -> None:
        self.database = database or DataBase()
        self.allocator = allocator or JudgeAssignmentAllocator(self.database)

    async def create_user(self, user: UserCreate) -> UserRead:
        if user.role == UserRole.JUDGE:
            self._validate_judge_scope(user.assigned_level, user.assigned_region, user.assigned_council)
        created = await self.database.create_user(user)
        if created.is_active_judge:
            await self._assign_backlog(created)
        return created

    async def get_user(self, user_id: UUID) -> UserRead:
        user = await self.database.get_user(user_id)
        if user is None:
            raise NotFoundError("User not found.")
        return user

    async def update_user(self, user: UserUpdate) -> UserRead:
        try:
            return await self.database.update_user(user)
        except LookupError as exc:
            raise NotFoundError(str(exc)) from exc

    async def list_judges(
        self,
        level: Optional[Level] = None,
        region: Optional[str] = MISSING,
        council: Optional[str] = MISSING,
        active_only: bool = True,
    ) -> list[UserRead]:
        return await self.database.list_judges(
            level=level, region=region, council=council, active_only=active_only,
        )

    async def activate_judge(self, judge_id: UUID) -> tuple[UserRead, list[SubmissionAssignmentRead]]:
        """Mark a judge active and run backlog allocation for their scope."""
        judge = await self.get_user(judge_id)
        if judge.role != UserRole.JUDGE:
            raise ValidationError("Only judges can be activated for judging.")
        self._validate_judge_scope(judge.assigned_level, judge.assigned_region, judge.assigned_council)

        if judge.status != UserStatus.ACTIVE:
            judge = await self.update_user(UserUpdate(id=judge.id, status=UserStatus.ACTIVE))
            logger.info("Judge %s activated for %s", judge.id, judge.assigned_level)

        return judge, await self._assign_backlog(judge)

    async def deactivate_judge(self, judge_id: UUID) -> UserRead:
        """Existing assignments are kept; the judge simply stops receiving new ones."""
        judge = await self.get_user(judge_id)
        if judge.status == UserStatus.INACTIVE:
            return judge
        return await self.update_user(UserUpdate(id=judge.id, status=UserStatus.INACTIVE))

    @staticmethod
    def _validate_judge_scope(level: Optional[Level], region: Optional[str], council: Optional[str]) -> None:
        if level is None:
            raise ValidationError("A judge needs an assigned level.")
        if level == Level.COUNCIL and not (region and council):
            raise ValidationError("Council judges need both a region and a council.")
        if level == Level.REGIONAL and not region:
            raise ValidationError("Regional judges need a region.")

    async def _assign_backlog(self, judge: UserRead) -> list[SubmissionAssignmentRead]:
        if not policy_for(judge.assigned_level).requires_assignment:
            return []
        return await self.allocator.assign_backlog(
            judge.assigned_level, judge.assigned_region, judge.assigned_council,
        )


instrument_service_class(
    UserService,
    prefix="services.users",
    exclude={"get_user", "list_judges"},
)
