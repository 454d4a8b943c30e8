# services/broadcast.py
"""
Real-time broadcast layer for leaderboard viewers.

The engine depends only on :class:`Broadcaster`. ``LocalMemoryBroadcaster``
serves single-process deployments; ``NullBroadcaster`` is used when nothing
listens. Publishing never fails the write that triggered it.
"""
from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from competition_engine.db.enums import Level
from competition_engine.utils.clock import utc_now

logger = logging.getLogger(__name__)

SCORE_UPDATED = "score-updated"
ROUND_STATE_CHANGED = "round-state-changed"
LEADERBOARD_MODE_CHANGED = "leaderboard-mode-changed"

Subscriber = Callable[[Dict[str, Any]], Awaitable[None]]


def leaderboard_channel(year: int, level: Level | str) -> str:
    return f"leaderboard:{year}:{level}"


class Broadcaster(ABC):

    @abstractmethod
    async def publish(self, channel: str, event: Dict[str, Any]) -> None:
        """Deliver ``event`` to every subscriber of ``channel``."""

    @abstractmethod
    async def subscribe(self, channel: str, callback: Subscriber) -> None:
        ...

    @abstractmethod
    async def unsubscribe(self, channel: str, callback: Subscriber) -> None:
        ...

    @abstractmethod
    def subscriber_count(self, channel: str) -> int:
        ...


class LocalMemoryBroadcaster(Broadcaster):
    """
    In-memory fan-out for a single process.

    Subscribers that raise are dropped from the channel.
    """

    def __init__(self) -> None:
        self._subscribers: Dict[str, Set[Subscriber]] = {}
        self._lock = asyncio.Lock()

    async def publish(self, channel: str, event: Dict[str, Any]) -> None:
        async with self._lock:
            subscribers = self._subscribers.get(channel, set()).copy()

        event_with_meta = {
            **event,
            "_meta": {
                "channel": channel,
                "published_at": utc_now().isoformat(),
                "publisher_node": "local",
            },
        }

        disconnected = []
        for callback in subscribers:
            try:
                await callback(event_with_meta)
            except Exception:
                logger.warning("Dropping failing subscriber on %s", channel, exc_info=True)
                disconnected.append(callback)

        if disconnected:
            async with self._lock:
                if channel in self._subscribers:
                    for callback in disconnected:
                        self._subscribers[channel].discard(callback)

    async def subscribe(self, channel: str, callback: Subscriber) -> None:
        async with self._lock:
            self._subscribers.setdefault(channel, set()).add(callback)

    async def unsubscribe(self, channel: str, callback: Subscriber) -> None:
        async with self._lock:
            if channel in self._subscribers:
                self._subscribers[channel].discard(callback)
                if not self._subscribers[channel]:
                    del self._subscribers[channel]

    def subscriber_count(self, channel: str) -> int:
        return len(self._subscribers.get(channel, set()))


class NullBroadcaster(Broadcaster):
    async def publish(self, channel: str, event: Dict[str, Any]) -> None:
        return None

    async def subscribe(self, channel: str, callback: Subscriber) -> None:
        return None

    async def unsubscribe(self, channel: str, callback: Subscriber) -> None:
        return None

    def subscriber_count(self, channel: str) -> int:
        return 0


async def publish_safely(
    broadcaster: Optional[Broadcaster],
    year: int,
    level: Level | str,
    event_type: str,
    data: Dict[str, Any],
) -> None:
    """Fire-and-forget publish to ``leaderboard:{year}:{level}``; failures are logged and dropped."""
    if broadcaster is None:
        return
    channel = leaderboard_channel(year, level)
    event = {"type": event_type, **data, "timestamp": utc_now().isoformat()}
    try:
        await broadcaster.publish(channel, event)
    except Exception:
        logger.exception("Failed to broadcast %s on %s", event_type, channel)
