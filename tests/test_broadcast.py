# tests/test_broadcast.py
import pytest

from competition_engine.db.enums import Level
from competition_engine.services.broadcast import (
    LocalMemoryBroadcaster, NullBroadcaster, SCORE_UPDATED, leaderboard_channel, publish_safely,
)


def test_channel_name():
    assert leaderboard_channel(2025, Level.REGIONAL) == "leaderboard:2025:Regional"


@pytest.mark.asyncio
async def test_publish_reaches_subscribers_with_meta():
    broadcaster = LocalMemoryBroadcaster()
    received = []

    async def listener(event):
        received.append(event)

    channel = leaderboard_channel(2025, Level.COUNCIL)
    await broadcaster.subscribe(channel, listener)
    await publish_safely(broadcaster, 2025, Level.COUNCIL, SCORE_UPDATED, {"submissionId": "s1"})

    assert len(received) == 1
    event = received[0]
    assert event["type"] == SCORE_UPDATED
    assert event["submissionId"] == "s1"
    assert "timestamp" in event
    assert event["_meta"]["channel"] == channel


@pytest.mark.asyncio
async def test_failing_subscriber_is_dropped():
    broadcaster = LocalMemoryBroadcaster()
    channel = leaderboard_channel(2025, Level.COUNCIL)

    async def broken(event):
        raise RuntimeError("socket closed")

    await broadcaster.subscribe(channel, broken)
    await broadcaster.publish(channel, {"type": SCORE_UPDATED})

    assert broadcaster.subscriber_count(channel) == 0


@pytest.mark.asyncio
async def test_publish_failures_never_propagate():
    class Exploding(NullBroadcaster):
        async def publish(self, channel, event):
            raise ConnectionError("hub is down")

    await publish_safely(Exploding(), 2025, Level.COUNCIL, SCORE_UPDATED, {})
    await publish_safely(None, 2025, Level.COUNCIL, SCORE_UPDATED, {})
