"""
Tests for the outbound notification queue
"""

import asyncio

import pytest

from src.core.enums import NotificationType
from src.services.notification_service import NotificationDispatcher


@pytest.mark.asyncio
async def test_events_reach_every_sink():
    dispatcher = NotificationDispatcher(maxsize=10)
    received = []
    done = asyncio.Event()

    async def broken_sink(event):
        raise RuntimeError("SMS gateway down")

    async def recording_sink(event):
        received.append(event)
        done.set()

    dispatcher.subscribe(broken_sink)
    dispatcher.subscribe(recording_sink)
    dispatcher.start()
    try:
        assert dispatcher.publish(NotificationType.LEAD_UNLOCKED, agentId=1, leadId=2)
        await asyncio.wait_for(done.wait(), timeout=5)
    finally:
        await dispatcher.stop()

    assert len(received) == 1
    assert received[0].to_dict()["type"] == NotificationType.LEAD_UNLOCKED.value
    assert received[0].payload == {"agentId": 1, "leadId": 2}


def test_full_queue_drops_without_raising():
    dispatcher = NotificationDispatcher(maxsize=1)

    first = dispatcher.publish(NotificationType.REFERRAL_CREDITED, referrerId=1)
    second = dispatcher.publish(NotificationType.REFERRAL_CREDITED, referrerId=2)

    assert first is True
    assert second is False
    assert dispatcher.dropped == 1
    assert dispatcher.pending() == 1


@pytest.mark.asyncio
async def test_deliver_counts_accepting_sinks():
    dispatcher = NotificationDispatcher(maxsize=10)

    async def ok(event):
        return None

    async def failing(event):
        raise ValueError("bad payload")

    dispatcher.subscribe(ok)
    dispatcher.subscribe(failing)
    dispatcher.publish(NotificationType.REPORT_RESOLVED, reportId=7)

    [event] = dispatcher.drain_nowait()

    assert await dispatcher.deliver(event) == 1
    assert dispatcher.pending() == 0
