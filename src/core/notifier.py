"""
Overlay Plans — Change notification hub.

In-process fan-out of `timeslots_updated` events. Every subscriber owns a
bounded queue; `publish` never blocks the store. A subscriber whose queue is
full or broken is dropped: it is marked closed and `DROPPED` is queued as its
last item, so the reader learns it lost the stream and can tell its client
to reconnect and refetch.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field

from src.ports.notification_port import TimeslotsUpdated

logger = logging.getLogger(__name__)

DEFAULT_QUEUE_SIZE = 256

# Last item a dropped subscriber reads from its queue
DROPPED = object()


@dataclass(eq=False)
class Subscription:
    """One observer. An empty `project_ids` set means "every project"."""

    queue: asyncio.Queue
    project_ids: set[int] = field(default_factory=set)
    name: str = ""
    closed: bool = False

    def wants(self, project_id: int) -> bool:
        return not self.project_ids or project_id in self.project_ids


class ChangeHub:
    """NotificationPort implementation backed by asyncio queues."""

    def __init__(self, queue_size: int = DEFAULT_QUEUE_SIZE) -> None:
        self._queue_size = queue_size
        self._subscriptions: list[Subscription] = []

    def subscribe(self, project_ids: set[int] | None = None, name: str = "") -> Subscription:
        sub = Subscription(
            queue=asyncio.Queue(maxsize=self._queue_size),
            project_ids=set(project_ids or ()),
            name=name,
        )
        self._subscriptions.append(sub)
        logger.debug("Subscriber %s added (projects=%s)", name or id(sub), sorted(sub.project_ids))
        return sub

    def unsubscribe(self, sub: Subscription) -> None:
        sub.closed = True
        if sub in self._subscriptions:
            self._subscriptions.remove(sub)
            logger.debug("Subscriber %s removed", sub.name or id(sub))

    def follow(self, sub: Subscription, project_id: int) -> None:
        sub.project_ids.add(project_id)

    def unfollow(self, sub: Subscription, project_id: int) -> None:
        sub.project_ids.discard(project_id)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def _drop(self, sub: Subscription) -> None:
        self.unsubscribe(sub)
        # the oldest pending item gives way to the end marker
        if sub.queue.full():
            sub.queue.get_nowait()
        sub.queue.put_nowait(DROPPED)

    def publish(self, event: TimeslotsUpdated) -> None:
        """Queue `event` for every interested subscriber."""
        for sub in list(self._subscriptions):
            if not sub.wants(event.project_id):
                continue
            try:
                sub.queue.put_nowait(event)
            except asyncio.QueueFull:
                logger.warning(
                    "Subscriber %s is not keeping up; dropping it", sub.name or id(sub),
                )
                self._drop(sub)
            except Exception as exc:
                logger.error("Failed to notify subscriber %s: %s", sub.name or id(sub), exc)
                self._drop(sub)
