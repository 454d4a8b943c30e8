# tests/test_quota_audit.py
import uuid

import pytest

from competition_engine.db.enums import Level
from competition_engine.errors import InvalidStateError, ValidationError
from competition_engine.services.audit_log import audit_logger

YEAR = 2025


class TestQuotaService:
    @pytest.mark.asyncio
    async def test_set_and_update(self, engine):
        created = await engine.quotas.set_quota(YEAR, Level.COUNCIL, 3)
        updated = await engine.quotas.set_quota(YEAR, Level.COUNCIL, 5)

        assert created.id == updated.id
        assert await engine.quotas.require_quota(YEAR, Level.COUNCIL) == 5
        assert len(await engine.quotas.list_quotas(YEAR)) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("value", [0, -1, True, 2.5])
    async def test_rejects_invalid_quota(self, engine, value):
        with pytest.raises(ValidationError):
            await engine.quotas.set_quota(YEAR, Level.COUNCIL, value)

    @pytest.mark.asyncio
    async def test_missing_quota(self, engine):
        assert await engine.quotas.get_quota(YEAR, Level.REGIONAL) is None
        with pytest.raises(InvalidStateError):
            await engine.quotas.require_quota(YEAR, Level.REGIONAL)


class TestAuditTrail:
    @pytest.mark.asyncio
    async def test_mutating_calls_are_recorded(self, engine):
        await engine.quotas.set_quota(YEAR, Level.COUNCIL, 2)

        entries, total = await audit_logger.list_entries(action="services.quota.set_quota")
        assert total == 1
        payload = entries[0].payload
        assert payload["arguments"] == {"year": YEAR, "level": "Council", "quota": 2}
        assert payload["result"]["quota"] == 2
        assert payload["subject"] == payload["result"]["id"]
        assert payload["_meta"]["service"] == "QuotaService"

    @pytest.mark.asyncio
    async def test_bound_actor_is_recorded(self, engine):
        actor = uuid.uuid4()
        with audit_logger.acting_as(actor):
            await engine.quotas.set_quota(YEAR, Level.REGIONAL, 2)

        entries, total = await audit_logger.list_entries(actor_id=actor)
        assert total == 1
        assert entries[0].action == "services.quota.set_quota"

    @pytest.mark.asyncio
    async def test_failures_are_recorded_with_error_suffix(self, engine):
        with pytest.raises(ValidationError):
            await engine.quotas.set_quota(YEAR, Level.COUNCIL, 0)

        entries, total = await audit_logger.list_entries(action="services.quota.set_quota.error")
        assert total == 1
        assert "ValidationError" in entries[0].payload["error"]

    @pytest.mark.asyncio
    async def test_read_only_calls_are_not_recorded(self, engine):
        await engine.quotas.get_quota(YEAR, Level.COUNCIL)
        _, total = await audit_logger.list_entries()
        assert total == 0
