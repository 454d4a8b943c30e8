# services/notifications.py
"""Notification emitter: persists engine events per user and optionally delivers them over Telegram."""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, ClassVar, Iterable, Optional
from uuid import UUID

from aiogram import Bot
from aiogram.exceptions import TelegramBadRequest, TelegramForbiddenError

from competition_engine.db.database import DataBase
from competition_engine.db.enums import Level, NotificationType
from competition_engine.db.schemas.competition_round import CompetitionRoundRead
from competition_engine.db.schemas.notification import NotificationCreate, NotificationRead
from competition_engine.db.schemas.submission import SubmissionRead
from competition_engine.db.schemas.user import UserRead

logger = logging.getLogger(__name__)


def _round_scope(round_: CompetitionRoundRead) -> str:
	parts = [str(round_.level)]
	if round_.region:
		parts.append(round_.region)
	if round_.council:
		parts.append(round_.council)
	return " / ".join(parts)


class NotificationService:
	"""Singleton that turns engine events into notifications. Never raises to the caller."""

	_instance: ClassVar[Optional["NotificationService"]] = None

	def __new__(cls) -> "NotificationService":
		if cls._instance is None:
			cls._instance = super().__new__(cls)
		return cls._instance

	def __init__(self) -> None:
		if getattr(self, "_initialized", False):
			return
		self._initialized = True
		self._bot: Optional[Bot] = None

	@property
	def _database(self) -> DataBase:
		return DataBase()

	def bind_bot(self, bot: Optional[Bot]) -> None:
		"""Provide the active bot instance so messages can be delivered."""
		self._bot = bot
		logger.info("Notifier bound to bot %s", getattr(bot, "id", None))

	async def emit(
		self,
		user_id: Optional[UUID],
		type_: NotificationType,
		title: str,
		message: str,
		payload: Optional[dict[str, Any]] = None,
	) -> Optional[NotificationRead]:
		"""Persist one notification and try to deliver it. Failures are logged and dropped."""
		if user_id is None:
			logger.debug("Notification %s has no recipient; skipping", type_)
			return None
		try:
			stored = await self._database.create_notification(
				NotificationCreate(
					user_id=user_id,
					type=type_,
					title=title,
					message=message,
					payload=payload or {},
				)
			)
		except Exception:
			logger.exception("Failed to store %s notification for user %s", type_, user_id)
			return None

		try:
			await self._deliver(user_id, f"{title}\n{message}")
		except Exception:
			logger.exception("Failed to deliver %s notification to user %s", type_, user_id)
		return stored

	async def emit_many(
		self,
		user_ids: Iterable[UUID],
		type_: NotificationType,
		title: str,
		message: str,
		payload: Optional[dict[str, Any]] = None,
	) -> int:
		sent = 0
		for user_id in user_ids:
			if await self.emit(user_id, type_, title, message, payload) is not None:
				sent += 1
		return sent

	# --- event builders ---

	async def judge_assigned(self, judge_id: UUID, submission: SubmissionRead) -> Optional[NotificationRead]:
		return await self.emit(
			judge_id,
			NotificationType.JUDGE_ASSIGNED,
			"New submission assigned",
			f"A new {submission.level} submission in {submission.area_of_focus} from {submission.teacher_name} is waiting for your evaluation.",
			{"submissionId": str(submission.id), "level": str(submission.level)},
		)

	async def round_started(self, judges: Iterable[UserRead], round_: CompetitionRoundRead, end_time: Optional[datetime]) -> int:
		until = f" until {end_time.isoformat(timespec='minutes')} UTC" if end_time else ""
		return await self.emit_many(
			(j.id for j in judges),
			NotificationType.ROUND_STARTED,
			"Evaluation round started",
			f"The {round_.year} {_round_scope(round_)} round is open for evaluation{until}.",
			{"roundId": str(round_.id)},
		)

	async def round_ending_soon(self, judges: Iterable[UserRead], round_: CompetitionRoundRead, end_time: datetime) -> int:
		return await self.emit_many(
			(j.id for j in judges),
			NotificationType.ROUND_ENDING_SOON,
			"Evaluation round ending soon",
			f"The {round_.year} {_round_scope(round_)} round closes at {end_time.isoformat(timespec='minutes')} UTC. Please finish pending evaluations.",
			{"roundId": str(round_.id), "endTime": end_time.isoformat()},
		)

	async def round_ended(self, judges: Iterable[UserRead], round_: CompetitionRoundRead) -> int:
		return await self.emit_many(
			(j.id for j in judges),
			NotificationType.ROUND_ENDED,
			"Evaluation round ended",
			f"The {round_.year} {_round_scope(round_)} round has ended; evaluations are no longer accepted.",
			{"roundId": str(round_.id)},
		)

	async def submission_promoted(self, submission: SubmissionRead, target_level: Optional[Level]) -> Optional[NotificationRead]:
		return await self.emit(
			submission.teacher_id,
			NotificationType.SUBMISSION_PROMOTED,
			"Congratulations!",
			f"Your submission advanced from the {submission.level} level to the {target_level} level.",
			{
				"submissionId": str(submission.id),
				"fromLevel": str(submission.level),
				"nextLevel": str(target_level) if target_level else None,
			},
		)

	async def submission_eliminated(self, submission: SubmissionRead) -> Optional[NotificationRead]:
		return await self.emit(
			submission.teacher_id,
			NotificationType.SUBMISSION_ELIMINATED,
			"Competition result",
			f"Your submission did not advance beyond the {submission.level} level. Thank you for taking part.",
			{"submissionId": str(submission.id), "level": str(submission.level)},
		)

	async def custom_reminder(self, user_ids: Iterable[UUID], round_: CompetitionRoundRead, message: str) -> int:
		return await self.emit_many(
			user_ids,
			NotificationType.CUSTOM_REMINDER,
			f"Reminder: {round_.year} {_round_scope(round_)} round",
			message,
			{"roundId": str(round_.id)},
		)

	async def _deliver(self, user_id: UUID, text: str) -> None:
		bot = self._bot
		if bot is None:
			return

		user = await self._database.get_user(user_id)
		chat_id = getattr(user, "tg_id", None)
		if not isinstance(chat_id, int):
			logger.debug("User %s has no tg_id; skipping delivery", user_id)
			return

		try:
			await bot.send_message(chat_id=chat_id, text=text)
		except (TelegramForbiddenError, TelegramBadRequest):
			logger.warning("Telegram refused notification for user %s", user_id, exc_info=True)


notifier = NotificationService()
