"""Tests for src.core.notifier — change event fan-out."""

import logging

import pytest

from src.core.notifier import DROPPED, ChangeHub
from src.ports.notification_port import TIMESLOTS_UPDATED, TimeslotsUpdated


class TestChangeHub:
    @pytest.mark.asyncio
    async def test_unscoped_subscriber_gets_everything(self):
        hub = ChangeHub()
        sub = hub.subscribe()
        hub.publish(TimeslotsUpdated(project_id=1))
        hub.publish(TimeslotsUpdated(project_id=2))
        assert [sub.queue.get_nowait().project_id for _ in range(2)] == [1, 2]

    @pytest.mark.asyncio
    async def test_scoped_subscriber_filters(self):
        hub = ChangeHub()
        sub = hub.subscribe(project_ids={2})
        hub.publish(TimeslotsUpdated(project_id=1))
        hub.publish(TimeslotsUpdated(project_id=2, user_id=5))
        event = sub.queue.get_nowait()
        assert event.project_id == 2
        assert sub.queue.empty()

    @pytest.mark.asyncio
    async def test_follow_and_unfollow(self):
        hub = ChangeHub()
        sub = hub.subscribe(project_ids={1})
        hub.follow(sub, 3)
        hub.unfollow(sub, 1)
        hub.publish(TimeslotsUpdated(project_id=1))
        hub.publish(TimeslotsUpdated(project_id=3))
        assert sub.queue.get_nowait().project_id == 3
        assert sub.queue.empty()

    @pytest.mark.asyncio
    async def test_unsubscribe(self):
        hub = ChangeHub()
        sub = hub.subscribe()
        hub.unsubscribe(sub)
        hub.unsubscribe(sub)
        hub.publish(TimeslotsUpdated(project_id=1))
        assert sub.queue.empty()
        assert hub.subscriber_count == 0
        assert sub.closed is True

    @pytest.mark.asyncio
    async def test_slow_subscriber_dropped(self, caplog):
        hub = ChangeHub(queue_size=1)
        slow = hub.subscribe(name="slow")
        fast = hub.subscribe(name="fast", project_ids={9})
        with caplog.at_level(logging.WARNING, logger="src.core.notifier"):
            hub.publish(TimeslotsUpdated(project_id=1))
            hub.publish(TimeslotsUpdated(project_id=1))
        assert hub.subscriber_count == 1
        assert slow.closed is True
        assert slow.queue.get_nowait() is DROPPED
        assert "slow" in caplog.text
        hub.publish(TimeslotsUpdated(project_id=9))
        assert fast.queue.qsize() == 1

    @pytest.mark.asyncio
    async def test_dropped_subscriber_stays_dropped(self):
        hub = ChangeHub(queue_size=1)
        sub = hub.subscribe(name="ws")
        hub.publish(TimeslotsUpdated(project_id=1))
        hub.publish(TimeslotsUpdated(project_id=1))
        assert sub.queue.get_nowait() is DROPPED

        # catching up does not bring the stream back
        hub.follow(sub, 1)
        hub.publish(TimeslotsUpdated(project_id=1))
        assert sub.queue.empty()
        assert sub.closed is True


def test_event_wire_format():
    assert TIMESLOTS_UPDATED == "timeslots_updated"
    assert TimeslotsUpdated(project_id=10).to_wire() == {"projectId": 10}
    assert TimeslotsUpdated(project_id=10, user_id=1).to_wire() == {"projectId": 10, "userId": 1}
