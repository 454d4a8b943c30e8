# services/audit_log.py
"""
Audit trail for engine mutations.

Every public coroutine of an instrumented service writes one ``audit_log`` row
holding its named arguments and its result, or ``<action>.error`` with the
exception when the call fails. The acting user is the bound actor, else the
first ``actor_id``/``judge_id`` argument. Each row also names the entity the
call was about (round, submission, tie-break, ...) under ``subject``.
"""
from __future__ import annotations

import inspect
import logging
import time
import uuid
from contextlib import contextmanager
from contextvars import ContextVar, Token
from dataclasses import asdict, is_dataclass
from datetime import date, datetime
from enum import Enum
from functools import wraps
from typing import Any, ClassVar, Iterable, Iterator, Mapping, Optional, Sequence

from competition_engine.db.database import DataBase
from competition_engine.db.schemas.audit_log import AuditLogCreate, AuditLogRead

logger = logging.getLogger(__name__)

ACTOR_FIELDS = ("actor_id", "judge_id")
SUBJECT_FIELDS = ("round_id", "submission_id", "tie_break_id", "leaderboard_id", "user_id", "judge_id")

_current_actor: ContextVar[Optional[uuid.UUID]] = ContextVar("audit_actor", default=None)


def to_jsonable(value: Any) -> Any:
    """Enums by value, ids and timestamps as strings, DTOs and dataclasses as plain dicts."""
    if isinstance(value, Enum):
        return value.value
    if value is None or isinstance(value, (str, int, float, bool)):
        return value
    if isinstance(value, uuid.UUID):
        return str(value)
    if isinstance(value, (datetime, date)):
        return value.isoformat()
    if hasattr(value, "model_dump"):
        return to_jsonable(value.model_dump())
    if is_dataclass(value) and not isinstance(value, type):
        return to_jsonable(asdict(value))
    if isinstance(value, Mapping):
        return {str(k): to_jsonable(v) for k, v in value.items()}
    if isinstance(value, (Sequence, set, frozenset)) and not isinstance(value, (str, bytes, bytearray)):
        return [to_jsonable(v) for v in value]
    return str(value)


class AuditLogService:
    _instance: ClassVar[Optional["AuditLogService"]] = None

    def __new__(cls) -> "AuditLogService":
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    @property
    def _database(self) -> DataBase:
        # looked up per call; tests rebuild the database singleton
        return DataBase()

    async def record(
        self,
        action: str,
        *,
        actor_id: uuid.UUID | None = None,
        payload: Mapping[str, Any] | None = None,
    ) -> AuditLogRead:
        """
        Persist one entry.

        :param action: dotted label, e.g. ``services.rounds.activate``
        :param actor_id: who did it; defaults to the bound actor
        :param payload: details, serialised with :func:`to_jsonable`
        """
        if actor_id is None:
            actor_id = self.current_actor()
        entry = await self._database.create_audit_log(
            AuditLogCreate(action=action, actor_id=actor_id, payload=to_jsonable(payload or {}))
        )
        logger.info("AUDIT action=%s actor=%s entry=%s", action, actor_id or "-", entry.id)
        return entry

    async def list_entries(
        self,
        *,
        limit: int = 100,
        offset: int = 0,
        actor_id: uuid.UUID | None = None,
        action: str | None = None,
    ) -> tuple[list[AuditLogRead], int]:
        return await self._database.list_audit_logs(
            limit=limit,
            offset=offset,
            actor_id=actor_id,
            action=action,
        )

    # actor context

    def bind_actor(self, actor_id: Optional[uuid.UUID]) -> Token:
        return _current_actor.set(actor_id)

    def unbind_actor(self, token: Token) -> None:
        _current_actor.reset(token)

    def current_actor(self) -> Optional[uuid.UUID]:
        return _current_actor.get()

    @contextmanager
    def acting_as(self, actor_id: Optional[uuid.UUID]) -> Iterator[None]:
        token = self.bind_actor(actor_id)
        try:
            yield
        finally:
            self.unbind_actor(token)


audit_logger = AuditLogService()


def _first_uuid(arguments: Mapping[str, Any], fields: Iterable[str]) -> uuid.UUID | None:
    for field in fields:
        value = arguments.get(field)
        if isinstance(value, uuid.UUID):
            return value
    return None


def _subject(arguments: Mapping[str, Any], result: Any = None) -> str | None:
    found = _first_uuid(arguments, SUBJECT_FIELDS)
    if found is None:
        # creations: the new entity is the subject
        found = getattr(result, "id", None)
    return str(found) if isinstance(found, uuid.UUID) else None


def _audited(fn, action: str, service: str, actor_fields: Sequence[str]):
    signature = inspect.signature(fn)

    @wraps(fn)
    async def wrapper(*args, **kwargs):
        bound = signature.bind_partial(*args, **kwargs)
        arguments = {k: v for k, v in bound.arguments.items() if k != "self"}
        actor = audit_logger.current_actor() or _first_uuid(arguments, actor_fields)
        meta = {"service": service, "method": fn.__name__}
        started = time.perf_counter()
        try:
            result = await fn(*args, **kwargs)
        except Exception as exc:
            meta["duration_ms"] = round((time.perf_counter() - started) * 1000, 3)
            await audit_logger.record(
                f"{action}.error",
                actor_id=actor,
                payload={"arguments": arguments, "subject": _subject(arguments), "error": repr(exc), "_meta": meta},
            )
            raise
        meta["duration_ms"] = round((time.perf_counter() - started) * 1000, 3)
        await audit_logger.record(
            action,
            actor_id=actor,
            payload={"arguments": arguments, "subject": _subject(arguments, result), "result": result, "_meta": meta},
        )
        return result

    wrapper.__audited__ = True  # type: ignore[attr-defined]
    return wrapper


def instrument_service_class(
    cls,
    *,
    prefix: str | None = None,
    exclude: Iterable[str] | None = None,
    actor_fields: Sequence[str] = ACTOR_FIELDS,
) -> None:
    """Audit every public coroutine method of ``cls`` not named in ``exclude``."""
    action_prefix = prefix or cls.__name__
    excluded = set(exclude or ())

    for name, attr in list(cls.__dict__.items()):
        if name.startswith("_") or name in excluded:
            continue
        if inspect.iscoroutinefunction(attr) and not getattr(attr, "__audited__", False):
            setattr(cls, name, _audited(attr, f"{action_prefix}.{name}", cls.__name__, actor_fields))


__all__ = [
    "AuditLogService",
    "audit_logger",
    "instrument_service_class",
    "to_jsonable",
]
