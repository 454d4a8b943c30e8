# services/quota.py
from typing import Optional

from competition_engine.config import Settings
from competition_engine.db.database import DataBase
from competition_engine.db.enums import Level
from competition_engine.db.schemas.quota import QuotaRead
from competition_engine.errors import InvalidStateError, ValidationError
from competition_engine.services.audit_log import instrument_service_class


class QuotaService:
	"""Per-(year, level) promotion slots available to every location of that level."""

	def __init__(self, database: Optional[DataBase] = None) -> None:
		self.database = database or DataBase()

	async def set_quota(self, year: int, level: Level, quota: int) -> QuotaRead:
		max_quota = Settings().max_quota
		if isinstance(quota, bool) or not isinstance(quota, int) or not 1 <= quota <= max_quota:
			raise ValidationError(f"Quota must be an integer between 1 and {max_quota}.")
		return await self.database.upsert_quota(year, Level(level), quota)

	async def get_quota(self, year: int, level: Level) -> Optional[QuotaRead]:
		return await self.database.get_quota(year, Level(level))

	async def require_quota(self, year: int, level: Level) -> int:
		quota = await self.get_quota(year, level)
		if quota is None:
			raise InvalidStateError(f"No quota set for {level} level in {year}.")
		return quota.quota

	async def list_quotas(self, year: Optional[int] = None) -> list[QuotaRead]:
		return await self.database.list_quotas(year)


instrument_service_class(QuotaService, prefix="services.quota", exclude={"get_quota", "require_quota", "list_quotas"})
