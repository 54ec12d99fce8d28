"""LiveBus: in-process publish/subscribe of room events.

Topics are per room (`room.<id>`). Each subscription owns a bounded
queue; when a slow subscriber's queue is full the oldest event is
discarded and counted. Publishing never blocks on subscribers.

Publishers inside a database transaction do not publish directly: they
call `publish_after_commit`, which reserves the topic's next slot and
parks the event on the session. The event is handed to the bus only once
the transaction commits; a transaction that ends any other way releases
its slots, so subscribers never see a message that a later history read
would not return.

Slots are filled in reservation order. Writers reserve while holding the
room row lock, so subscribers observe events in append order even when
the committing threads reach the bus in a different order.

Per-process only. A multi-process deployment needs a shared broker behind
the same subscribe/unsubscribe/publish surface.
"""

import itertools
import threading
from collections import deque
from collections.abc import Callable
from typing import Any

from sqlalchemy import event
from sqlalchemy.orm import Session

from talentlink.logging import get_logger

logger = get_logger(__name__)

# Session.info key for events waiting on commit
PENDING_EVENTS_KEY = "live_bus_pending"

DEFAULT_QUEUE_SIZE = 256


def room_topic(room_id: int) -> str:
    return f"room.{room_id}"


def parse_room_topic(topic: str) -> int | None:
    """Return the room id of a `room.<id>` topic, or None if malformed."""
    prefix, _, raw_id = topic.partition(".")
    if prefix != "room" or not raw_id.isdigit():
        return None
    return int(raw_id)


class Subscription:
    """Handle returned by LiveBus.subscribe.

    Events are buffered until the owner drains them. `notify` (if given) is
    called after each delivered event, from the publisher's thread.
    """

    def __init__(
        self,
        subscription_id: int,
        topic: str,
        max_queue: int,
        notify: Callable[[], None] | None = None,
    ):
        self.id = subscription_id
        self.topic = topic
        self.dropped = 0
        self.closed = False
        self._queue: deque[dict[str, Any]] = deque()
        self._max_queue = max_queue
        self._notify = notify
        self._lock = threading.Lock()

    def deliver(self, payload: dict[str, Any]) -> None:
        with self._lock:
            if self.closed:
                return
            if len(self._queue) >= self._max_queue:
                self._queue.popleft()
                self.dropped += 1
                logger.warning(
                    "live_bus_dropped",
                    topic=self.topic,
                    subscription_id=self.id,
                    dropped=self.dropped,
                )
            self._queue.append(payload)
        if self._notify is not None:
            self._notify()

    def drain(self) -> tuple[list[dict[str, Any]], int]:
        """Take all buffered events plus the number dropped since the last drain."""
        with self._lock:
            events = list(self._queue)
            self._queue.clear()
            dropped, self.dropped = self.dropped, 0
        return events, dropped

    def close(self) -> None:
        with self._lock:
            self.closed = True
            self._queue.clear()


class _TopicSlots:
    """Reserved publish slots of one topic, settled in reservation order."""

    def __init__(self):
        self.next_slot = 0
        self.next_to_settle = 0
        # slot -> payload (None for a released slot)
        self.settled: dict[int, dict[str, Any] | None] = {}
        self.skipped: set[int] = set()

    @property
    def idle(self) -> bool:
        return self.next_to_settle == self.next_slot and not self.settled and not self.skipped


class LiveBus:
    """Thread-safe topic registry with drop-oldest fan-out."""

    def __init__(self, max_queue: int = DEFAULT_QUEUE_SIZE):
        if max_queue < 1:
            raise ValueError("max_queue must be >= 1")
        self.max_queue = max_queue
        self._topics: dict[str, dict[int, Subscription]] = {}
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self._slots: dict[str, _TopicSlots] = {}
        self._slots_lock = threading.Lock()

    def subscribe(self, topic: str, notify: Callable[[], None] | None = None) -> Subscription:
        with self._lock:
            subscription = Subscription(next(self._ids), topic, self.max_queue, notify)
            self._topics.setdefault(topic, {})[subscription.id] = subscription
        logger.debug("live_bus_subscribed", topic=topic, subscription_id=subscription.id)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        """Invalidate a handle. Safe to call more than once."""
        subscription.close()
        with self._lock:
            subscribers = self._topics.get(subscription.topic)
            if subscribers is not None:
                subscribers.pop(subscription.id, None)
                if not subscribers:
                    del self._topics[subscription.topic]

    def publish(self, topic: str, payload: dict[str, Any]) -> int:
        """Deliver `payload` to every current subscriber of `topic`.

        Returns:
            Number of subscriptions the event was handed to.
        """
        with self._lock:
            subscribers = list(self._topics.get(topic, {}).values())
        for subscription in subscribers:
            subscription.deliver(payload)
        return len(subscribers)

    def subscriber_count(self, topic: str) -> int:
        with self._lock:
            return len(self._topics.get(topic, {}))

    # -------------------------------------------------------------------------
    # Ordered publishing
    # -------------------------------------------------------------------------

    def reserve(self, topic: str) -> int:
        """Take the next publish slot of `topic`.

        Every reserved slot must later be settled with `publish_reserved` or
        `release`. Events are delivered in slot order: a slot settled early
        is held back until all earlier slots are settled.
        """
        with self._slots_lock:
            slots = self._slots.setdefault(topic, _TopicSlots())
            slot = slots.next_slot
            slots.next_slot += 1
        return slot

    def publish_reserved(self, topic: str, slot: int, payload: dict[str, Any]) -> None:
        self._settle(topic, slot, payload)

    def release(self, topic: str, slot: int) -> None:
        """Give up a reserved slot without publishing (the write rolled back)."""
        self._settle(topic, slot, None)

    def _settle(self, topic: str, slot: int, payload: dict[str, Any] | None) -> None:
        # Delivery happens under the slots lock so two settling threads
        # cannot interleave their fan-out
        with self._slots_lock:
            slots = self._slots.get(topic)
            if slots is None or slot < slots.next_to_settle:
                self._settle_late(topic, slots, slot, payload)
                return

            slots.settled[slot] = payload
            if len(slots.settled) >= self.max_queue:
                # An earlier slot is never coming back; stop holding the topic
                oldest = min(slots.settled)
                slots.skipped.update(range(slots.next_to_settle, oldest))
                logger.warning(
                    "live_bus_slots_skipped",
                    topic=topic,
                    skipped=oldest - slots.next_to_settle,
                )
                slots.next_to_settle = oldest

            while slots.next_to_settle in slots.settled:
                ready = slots.settled.pop(slots.next_to_settle)
                slots.next_to_settle += 1
                if ready is not None:
                    self.publish(topic, ready)

            if slots.idle:
                del self._slots[topic]

    def _settle_late(
        self,
        topic: str,
        slots: _TopicSlots | None,
        slot: int,
        payload: dict[str, Any] | None,
    ) -> None:
        if slots is not None:
            slots.skipped.discard(slot)
            if slots.idle:
                del self._slots[topic]
        if payload is not None:
            logger.warning("live_bus_late_event", topic=topic, slot=slot)
            self.publish(topic, payload)


# =============================================================================
# Publish-after-commit
# =============================================================================


def publish_after_commit(db: Session, bus: LiveBus, topic: str, payload: dict[str, Any]) -> None:
    """Reserve `topic`'s next slot and publish `payload` when `db` commits.

    Call while holding the lock that orders writes to the topic (the room
    row), so slot order matches write order.
    """
    if not db.in_transaction():
        db.begin()
    slot = bus.reserve(topic)
    db.info.setdefault(PENDING_EVENTS_KEY, []).append((bus, topic, slot, payload))


@event.listens_for(Session, "after_commit")
def _publish_pending(session: Session) -> None:
    pending = session.info.pop(PENDING_EVENTS_KEY, None)
    if not pending:
        return
    for bus, topic, slot, payload in pending:
        try:
            bus.publish_reserved(topic, slot, payload)
        except Exception:
            # The write is durable; subscribers catch up on the next history read
            logger.exception("live_bus_publish_failed", topic=topic)


@event.listens_for(Session, "after_transaction_end")
def _release_pending(session: Session, transaction) -> None:
    # Savepoints ending (even rolled back) leave the outer transaction's events parked
    if transaction.parent is not None:
        return
    pending = session.info.pop(PENDING_EVENTS_KEY, None)
    if not pending:
        return
    for bus, topic, slot, _ in pending:
        bus.release(topic, slot)
