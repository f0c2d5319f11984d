# ============================================================================
# IN-MEMORY BROKER
# ============================================================================
# STATUS: Infrastructure - In-process transport for tests and local runs
# PURPOSE: Queue/topic broker with peek-lock, scheduling, TTL and fault injection
# CREATED: 19 OCT 2026
# ============================================================================
"""
In-Memory Broker

A TransportProvider that keeps queues and topic subscriptions in process.
It follows Service Bus semantics closely enough to exercise the Sender,
Receiver pump and provisioner without a namespace:

    - Peek-lock with a lock duration; unsettled messages reappear after expiry
    - Delivery count incremented on every delivery
    - Scheduled enqueue time hides a message until the clock reaches it
    - Time-to-live drops expired messages
    - Topics fan out to every subscription
    - Creating an existing entity raises EntityAlreadyExistsError

Time comes from a clock object. Use ManualClock to control it:

    clock = ManualClock()
    broker = InMemoryBroker(clock=clock)
    broker.add_queue("orders")
    clock.advance(timedelta(minutes=5))

Transient faults can be injected per operation; handles apply their
RetryPolicy to them through run_with_retry.
"""

import asyncio
import itertools
import uuid
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional, Sequence, Union

from busbridge.core.errors import (
    EntityAlreadyExistsError,
    TransientTransportError,
    TransportError,
)
from busbridge.core.logging import ComponentType, get_logger
from busbridge.core.models import (
    AckMode,
    CredentialVariant,
    EntityReference,
    Envelope,
    InFlightMessage,
    RetryPolicy,
    TransportType,
)
from busbridge.infrastructure.credentials import validate_credential
from busbridge.infrastructure.retry import run_with_retry

logger = get_logger(__name__, ComponentType.TRANSPORT)


# ============================================================================
# CLOCKS
# ============================================================================

class SystemClock:
    """Wall clock in UTC."""

    def now(self) -> datetime:
        return datetime.now(timezone.utc)


class ManualClock:
    """Clock that only moves when advanced."""

    def __init__(self, start: Optional[datetime] = None):
        self._now = start or datetime(2026, 1, 1, tzinfo=timezone.utc)

    def now(self) -> datetime:
        return self._now

    def advance(self, delta: Union[timedelta, float]) -> datetime:
        if not isinstance(delta, timedelta):
            delta = timedelta(seconds=delta)
        self._now += delta
        return self._now


# ============================================================================
# STORAGE
# ============================================================================

@dataclass(eq=False)
class _StoredMessage:
    envelope: Envelope
    sequence_number: int
    visible_at: datetime
    expires_at: Optional[datetime] = None
    delivery_count: int = 0
    lock_token: Optional[str] = None
    locked_until: Optional[datetime] = None


@dataclass
class _MessageStore:
    """Messages of one queue or one topic subscription, in enqueue order."""
    path: str
    messages: List[_StoredMessage] = field(default_factory=list)
    completed: List[Envelope] = field(default_factory=list)
    expired: int = 0

    def take(
        self,
        now: datetime,
        max_count: int,
        ack_mode: AckMode,
        lock_duration: timedelta,
    ) -> List[InFlightMessage]:
        picked: List[InFlightMessage] = []
        for stored in list(self.messages):
            if len(picked) >= max_count:
                break
            if stored.expires_at is not None and stored.expires_at <= now:
                self.messages.remove(stored)
                self.expired += 1
                continue
            if stored.visible_at > now:
                continue
            if stored.locked_until is not None and stored.locked_until > now:
                continue

            stored.delivery_count += 1
            if ack_mode == AckMode.RECEIVE_AND_DELETE:
                self.messages.remove(stored)
                stored.lock_token = None
                stored.locked_until = None
            else:
                stored.lock_token = str(uuid.uuid4())
                stored.locked_until = now + lock_duration

            picked.append(InFlightMessage(
                envelope=stored.envelope,
                lock_token=stored.lock_token,
                delivery_count=stored.delivery_count,
                raw=stored,
            ))
        return picked


# ============================================================================
# BROKER
# ============================================================================

class InMemoryBroker:
    """
    In-process broker implementing TransportProvider.

    Attributes for assertions:
        calls: Counter of transport/admin operations performed
        handles_opened / handles_closed: handle lifecycle counts
    """

    def __init__(
        self,
        clock=None,
        lock_duration: timedelta = timedelta(seconds=30),
        poll_interval: float = 0.005,
    ):
        self.clock = clock or SystemClock()
        self.lock_duration = lock_duration
        self.poll_interval = poll_interval

        self._queues: Dict[str, _MessageStore] = {}
        self._topics: Dict[str, Dict[str, _MessageStore]] = {}
        self._faults: Dict[str, List[Exception]] = {}
        self._sequence = itertools.count(1)

        self.calls: Counter = Counter()
        self.handles_opened = 0
        self.handles_closed = 0

    # ------------------------------------------------------------------
    # Topology (synchronous helpers for setup)
    # ------------------------------------------------------------------

    def add_queue(self, name: str) -> None:
        if name in self._queues:
            raise EntityAlreadyExistsError(name)
        self._queues[name] = _MessageStore(path=name)

    def add_topic(self, name: str, *subscriptions: str) -> None:
        if name in self._topics:
            raise EntityAlreadyExistsError(name)
        self._topics[name] = {}
        for subscription in subscriptions:
            self.add_subscription(name, subscription)

    def add_subscription(self, topic_name: str, subscription_name: str) -> None:
        subscriptions = self._topics.get(topic_name)
        if subscriptions is None:
            raise TransportError(f"Topic '{topic_name}' does not exist")
        if subscription_name in subscriptions:
            raise EntityAlreadyExistsError(f"{topic_name}/subscriptions/{subscription_name}")
        subscriptions[subscription_name] = _MessageStore(
            path=f"{topic_name}/subscriptions/{subscription_name}"
        )

    def has_queue(self, name: str) -> bool:
        return name in self._queues

    def has_topic(self, name: str) -> bool:
        return name in self._topics

    def has_subscription(self, topic_name: str, subscription_name: str) -> bool:
        return subscription_name in self._topics.get(topic_name, {})

    # ------------------------------------------------------------------
    # Inspection
    # ------------------------------------------------------------------

    def _store(self, name: str, subscription_name: Optional[str] = None) -> _MessageStore:
        if subscription_name is None:
            store = self._queues.get(name)
        else:
            store = self._topics.get(name, {}).get(subscription_name)
        if store is None:
            path = name if subscription_name is None else f"{name}/subscriptions/{subscription_name}"
            raise TransportError(f"Entity '{path}' does not exist")
        return store

    def pending(self, name: str, subscription_name: Optional[str] = None) -> List[Envelope]:
        """Envelopes not yet settled, including locked and scheduled ones."""
        return [m.envelope for m in self._store(name, subscription_name).messages]

    def completed(self, name: str, subscription_name: Optional[str] = None) -> List[Envelope]:
        return list(self._store(name, subscription_name).completed)

    # ------------------------------------------------------------------
    # Fault injection
    # ------------------------------------------------------------------

    def fail_next(self, operation: str, count: int = 1, error: Optional[Exception] = None) -> None:
        """Make the next `count` calls of `operation` raise `error`."""
        error = error or TransientTransportError(f"injected {operation} fault")
        self._faults.setdefault(operation, []).extend([error] * count)

    def _check_fault(self, operation: str) -> None:
        self.calls[operation] += 1
        pending = self._faults.get(operation)
        if pending:
            raise pending.pop(0)

    # ------------------------------------------------------------------
    # Primitives
    # ------------------------------------------------------------------

    async def _send(self, entity: EntityReference, envelopes: Sequence[Envelope]) -> None:
        await asyncio.sleep(0)
        self._check_fault("send")

        if entity.is_topic:
            subscriptions = self._topics.get(entity.name)
            if subscriptions is None:
                raise TransportError(f"Entity '{entity.name}' does not exist")
            stores = list(subscriptions.values())
        else:
            stores = [self._store(entity.name)]

        now = self.clock.now()
        for envelope in envelopes:
            visible_at = envelope.scheduled_enqueue_time_utc or now
            expires_at = visible_at + envelope.time_to_live if envelope.time_to_live else None
            sequence_number = next(self._sequence)
            for store in stores:
                store.messages.append(_StoredMessage(
                    envelope=envelope,
                    sequence_number=sequence_number,
                    visible_at=visible_at,
                    expires_at=expires_at,
                ))

    async def _receive(
        self,
        entity: EntityReference,
        max_count: int,
        max_wait_time: float,
        ack_mode: AckMode,
    ) -> List[InFlightMessage]:
        self._check_fault("receive")
        store = self._store(entity.name, entity.subscription_name if entity.is_topic else None)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + max_wait_time
        while True:
            picked = store.take(self.clock.now(), max_count, ack_mode, self.lock_duration)
            if picked:
                return picked
            remaining = deadline - loop.time()
            if remaining <= 0:
                return []
            await asyncio.sleep(min(self.poll_interval, remaining))

    async def _complete(self, entity: EntityReference, message: InFlightMessage) -> None:
        await asyncio.sleep(0)
        self._check_fault("complete")
        store = self._store(entity.name, entity.subscription_name if entity.is_topic else None)
        stored: _StoredMessage = message.raw

        lock_valid = (
            stored in store.messages
            and stored.lock_token == message.lock_token
            and stored.locked_until is not None
            and stored.locked_until > self.clock.now()
        )
        if not lock_valid:
            raise TransportError(f"Lock lost for message on {store.path}")

        store.messages.remove(stored)
        store.completed.append(stored.envelope)

    # ------------------------------------------------------------------
    # TransportProvider
    # ------------------------------------------------------------------

    def open_handle(
        self,
        credential: CredentialVariant,
        entity: EntityReference,
        retry: RetryPolicy,
        ack_mode: AckMode = AckMode.LOCK_AND_COMPLETE,
        transport_type: TransportType = TransportType.AMQP_TCP,
    ) -> "InMemoryTransportHandle":
        validate_credential(credential)
        self.handles_opened += 1
        return InMemoryTransportHandle(self, entity, retry, ack_mode, transport_type)

    def open_administration(self, credential: CredentialVariant) -> "InMemoryAdministrationClient":
        validate_credential(credential)
        return InMemoryAdministrationClient(self)


class InMemoryTransportHandle:
    """TransportHandle over an InMemoryBroker entity."""

    def __init__(
        self,
        broker: InMemoryBroker,
        entity: EntityReference,
        retry: RetryPolicy,
        ack_mode: AckMode,
        transport_type: TransportType = TransportType.AMQP_TCP,
    ):
        self.broker = broker
        self.entity = entity
        self.retry = retry
        self.ack_mode = ack_mode
        # Recorded only; the in-process broker has no wire
        self.transport_type = transport_type
        self.closed = False

    def _ensure_open(self) -> None:
        if self.closed:
            raise TransportError(f"Transport for {self.entity.path} is closed")

    async def send_envelopes(self, envelopes: Sequence[Envelope]) -> None:
        self._ensure_open()
        await run_with_retry(
            self.retry,
            lambda: self.broker._send(self.entity, envelopes),
            f"send to {self.entity.path}",
        )

    async def receive(self, max_message_count: int, max_wait_time: float) -> List[InFlightMessage]:
        self._ensure_open()
        return await run_with_retry(
            self.retry,
            lambda: self.broker._receive(self.entity, max_message_count, max_wait_time, self.ack_mode),
            f"receive from {self.entity.path}",
        )

    async def complete(self, message: InFlightMessage) -> None:
        self._ensure_open()
        if self.ack_mode == AckMode.RECEIVE_AND_DELETE:
            return
        await run_with_retry(
            self.retry,
            lambda: self.broker._complete(self.entity, message),
            f"complete on {self.entity.path}",
        )

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.broker.handles_closed += 1


class InMemoryAdministrationClient:
    """AdministrationClient over an InMemoryBroker."""

    def __init__(self, broker: InMemoryBroker):
        self.broker = broker
        self.closed = False

    async def _call(self, operation: str) -> None:
        # Yield so concurrent provisioners interleave like real network calls
        await asyncio.sleep(0)
        self.broker._check_fault(operation)

    async def queue_exists(self, queue_name: str) -> bool:
        await self._call("queue_exists")
        return self.broker.has_queue(queue_name)

    async def create_queue(self, queue_name: str) -> None:
        await self._call("create_queue")
        self.broker.add_queue(queue_name)

    async def topic_exists(self, topic_name: str) -> bool:
        await self._call("topic_exists")
        return self.broker.has_topic(topic_name)

    async def create_topic(self, topic_name: str) -> None:
        await self._call("create_topic")
        self.broker.add_topic(topic_name)

    async def subscription_exists(self, topic_name: str, subscription_name: str) -> bool:
        await self._call("subscription_exists")
        return self.broker.has_subscription(topic_name, subscription_name)

    async def create_subscription(self, topic_name: str, subscription_name: str) -> None:
        await self._call("create_subscription")
        self.broker.add_subscription(topic_name, subscription_name)

    async def close(self) -> None:
        self.closed = True


__all__ = [
    "SystemClock",
    "ManualClock",
    "InMemoryBroker",
    "InMemoryTransportHandle",
    "InMemoryAdministrationClient",
]
