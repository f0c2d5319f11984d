# ============================================================================
# SENDER
# ============================================================================
# STATUS: Messaging - JSON message publisher
# PURPOSE: Serialize domain objects and send them singly or as a batch
# CREATED: 19 OCT 2026
# ============================================================================
"""
Sender

Publishes JSON-encoded domain objects to one queue or topic.

    async with await factory.create_queue_sender(credential, "orders", data_type=OrderPlaced) as sender:
        await sender.send_as_json(order)
        await sender.send_as_json(reminder, enqueue_after=timedelta(hours=1))
        await sender.send_batch_as_json([a, b, c], ttl=timedelta(minutes=10))

One send_* call is exactly one transport call; nothing is buffered.
"""

from datetime import datetime, timedelta, timezone
from typing import Callable, Generic, Iterable, List, Optional, TypeVar

from busbridge.core.errors import ArgumentError, HandleClosedError
from busbridge.core.logging import ComponentType, get_logger
from busbridge.core.models import JSON_CONTENT_TYPE, EntityReference, Envelope
from busbridge.core.serialization import JsonCodec
from busbridge.infrastructure.transport import TransportHandle

logger = get_logger(__name__, ComponentType.SENDER)

T = TypeVar("T")


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class Sender(Generic[T]):
    """
    Sends values of type T to a bound entity.

    The Sender exclusively owns its transport handle and releases it exactly
    once in close().
    """

    def __init__(
        self,
        handle: TransportHandle,
        entity: EntityReference,
        codec: Optional[JsonCodec] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.entity = entity
        self.codec: JsonCodec = codec or JsonCodec()
        self._handle: Optional[TransportHandle] = handle
        self._clock = clock

    @property
    def is_closed(self) -> bool:
        return self._handle is None

    def _resolve_schedule(
        self,
        scheduled_at: Optional[datetime],
        enqueue_after: Optional[timedelta],
    ) -> Optional[datetime]:
        if scheduled_at is not None and enqueue_after is not None:
            raise ArgumentError(
                "Pass either scheduled_at or enqueue_after, not both",
                argument="scheduled_at",
            )

        now = self._clock()
        if enqueue_after is not None:
            scheduled_at = now + enqueue_after

        if scheduled_at is None:
            return None
        if scheduled_at.tzinfo is None:
            scheduled_at = scheduled_at.replace(tzinfo=timezone.utc)
        # Past or present timestamps mean "available now"
        return scheduled_at if scheduled_at > now else None

    def create_envelope(
        self,
        data: T,
        ttl: Optional[timedelta] = None,
        scheduled_at: Optional[datetime] = None,
    ) -> Envelope:
        """Serialize one value into an envelope. scheduled_at must already be resolved."""
        return Envelope(
            payload=self.codec.encode(data),
            content_type=JSON_CONTENT_TYPE,
            scheduled_enqueue_time_utc=scheduled_at,
            time_to_live=ttl if ttl is not None and ttl > timedelta(0) else None,
        )

    def _require_handle(self) -> TransportHandle:
        if self._handle is None:
            raise HandleClosedError(f"Sender for {self.entity.path} is closed")
        return self._handle

    async def send_as_json(
        self,
        data: T,
        ttl: Optional[timedelta] = None,
        scheduled_at: Optional[datetime] = None,
        enqueue_after: Optional[timedelta] = None,
    ) -> None:
        """
        Send one value as a JSON message.

        Args:
            data: Value to serialize
            ttl: Message lifetime; zero/None means the entity default
            scheduled_at: Absolute UTC time before which the message is hidden
            enqueue_after: Relative alternative to scheduled_at

        Raises:
            SerializationError: data cannot be encoded (nothing is sent)
            TransportError: Broker rejected the message or retries ran out
        """
        handle = self._require_handle()
        scheduled = self._resolve_schedule(scheduled_at, enqueue_after)
        envelope = self.create_envelope(data, ttl, scheduled)

        await handle.send_envelopes([envelope])

        logger.info(
            f"Message sent to {self.entity.path}",
            extra={
                "entity": self.entity.path,
                "message_type": type(data).__name__,
                "scheduled": scheduled.isoformat() if scheduled else None,
            },
        )

    async def send_batch_as_json(
        self,
        items: Optional[Iterable[T]],
        ttl: Optional[timedelta] = None,
        scheduled_at: Optional[datetime] = None,
        enqueue_after: Optional[timedelta] = None,
    ) -> None:
        """
        Send several values in one transport call.

        The batch is accepted or rejected as a whole.

        Raises:
            ArgumentError: items is None or empty (no network call is made)
            SerializationError: any item cannot be encoded (nothing is sent)
            TransportError: Broker rejected the batch or retries ran out
        """
        if items is None:
            raise ArgumentError("Batch must not be None", argument="items")
        batch: List[T] = list(items)
        if not batch:
            raise ArgumentError("Batch must contain at least one item", argument="items")

        handle = self._require_handle()
        scheduled = self._resolve_schedule(scheduled_at, enqueue_after)
        envelopes = [self.create_envelope(item, ttl, scheduled) for item in batch]

        await handle.send_envelopes(envelopes)

        logger.info(f"Batch of {len(envelopes)} messages sent to {self.entity.path}")

    async def close(self) -> None:
        """Release the transport handle. A second call does nothing."""
        handle, self._handle = self._handle, None
        if handle is None:
            return
        await handle.close()
        logger.info(f"Sender closed for {self.entity.path}")

    async def __aenter__(self) -> "Sender[T]":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


__all__ = ["Sender"]
