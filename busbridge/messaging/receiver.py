# ============================================================================
# RECEIVER PUMP
# ============================================================================
# STATUS: Messaging - Bounded-concurrency message consumer
# PURPOSE: Pull, decode, deliver and acknowledge messages for a subscriber
# CREATED: 19 OCT 2026
# ============================================================================
"""
Receiver Pump

Delivers decoded messages to a subscriber callback from up to
max_concurrent_calls worker tasks.

Per worker, strictly sequential:
    pull one message -> decode -> on_message -> complete

Delivery guarantee is at-least-once. A message is completed only after
on_message returns. If decoding or the callback fails, the error goes to
on_error and the message is left locked (not abandoned); the broker
redelivers it once the lock expires. In RECEIVE_AND_DELETE mode the broker
has already removed the message, so a failure there loses it.

Pull failures also go to on_error; the worker pauses and keeps pulling.
Nothing raised inside the pump terminates it. Only cancellation does.

States:
    IDLE -> PROCESSING -> STOPPED (terminal)

Usage:
    receiver = await factory.create_queue_receiver(credential, "orders", data_type=OrderPlaced)

    subscription = receiver.subscribe(handle_order, on_error=log_error)
    ...
    subscription.cancel()
    await subscription.wait()     # in-flight callbacks have finished
    await receiver.close()
"""

import asyncio
import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Generic, List, Optional, TypeVar

from busbridge.core.errors import HandleClosedError, ProcessingError, ReceiverStateError, SerializationError
from busbridge.core.logging import ComponentType, get_logger, log_context
from busbridge.core.models import AckMode, EntityReference, InFlightMessage, ReceiverConfig
from busbridge.core.serialization import JsonCodec
from busbridge.infrastructure.transport import TransportHandle

logger = get_logger(__name__, ComponentType.RECEIVER)

T = TypeVar("T")

MessageCallback = Callable[[Any], Any]
ErrorCallback = Callable[[Exception], Any]


class ReceiverState(str, Enum):
    """Receiver pump lifecycle."""
    IDLE = "idle"
    PROCESSING = "processing"
    STOPPED = "stopped"


@dataclass
class ReceiverStats:
    received: int = 0
    completed: int = 0
    failed: int = 0
    pull_errors: int = 0


async def _invoke(callback: Callable[..., Any], *args: Any) -> None:
    """Call a plain or coroutine callback."""
    result = callback(*args)
    if inspect.isawaitable(result):
        await result


# ============================================================================
# SUBSCRIPTION HANDLE
# ============================================================================

class Subscription:
    """
    Handle returned when a subscriber registers with a Receiver.

    cancel() stops new pulls; wait() resolves once in-flight callbacks have
    finished and the pump is STOPPED.
    """

    def __init__(self, receiver: "Receiver", cancel_event: asyncio.Event, pump: "asyncio.Task[None]"):
        self._receiver = receiver
        self._cancel_event = cancel_event
        self._pump = pump

    @property
    def cancelled(self) -> bool:
        return self._cancel_event.is_set()

    @property
    def state(self) -> ReceiverState:
        return self._receiver.state

    def cancel(self) -> None:
        self._cancel_event.set()

    async def wait(self) -> None:
        await asyncio.shield(self._pump)

    async def __aenter__(self) -> "Subscription":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.cancel()
        await self.wait()


# ============================================================================
# RECEIVER
# ============================================================================

class Receiver(Generic[T]):
    """
    Push-based consumer for one queue or topic subscription.

    The Receiver exclusively owns its transport handle. close() stops the
    pump if it is running, then releases the handle exactly once.
    """

    def __init__(
        self,
        handle: TransportHandle,
        entity: EntityReference,
        config: Optional[ReceiverConfig] = None,
        codec: Optional[JsonCodec] = None,
    ):
        self.entity = entity
        self.config = config or ReceiverConfig()
        self.codec: JsonCodec = codec or JsonCodec()
        self.stats = ReceiverStats()

        self._handle: Optional[TransportHandle] = handle
        self._state = ReceiverState.IDLE
        self._cancel_event: Optional[asyncio.Event] = None
        self._pump: Optional[asyncio.Task] = None
        self._workers: List[asyncio.Task] = []
        self._release_on_stop = False
        self._in_flight = 0

    @property
    def state(self) -> ReceiverState:
        return self._state

    @property
    def in_flight(self) -> int:
        """Subscriber invocations currently outstanding."""
        return self._in_flight

    # ------------------------------------------------------------------
    # Subscription
    # ------------------------------------------------------------------

    def receive(
        self,
        on_message: MessageCallback,
        on_error: Optional[ErrorCallback] = None,
        cancel: Optional[asyncio.Event] = None,
    ) -> Subscription:
        """
        Start the pump and deliver messages to on_message.

        Must be called from a running event loop.

        Args:
            on_message: Called with each decoded T (plain or async)
            on_error: Called with every fault the pump observes (plain or async)
            cancel: Optional external signal; setting it stops the pump

        Raises:
            ReceiverStateError: The pump was already started
            HandleClosedError: The receiver was closed
        """
        if self._handle is None:
            raise HandleClosedError(f"Receiver for {self.entity.path} is closed")
        if self._state != ReceiverState.IDLE:
            raise ReceiverStateError(
                f"Receiver for {self.entity.path} is {self._state.value}; it can only be started once"
            )

        self._cancel_event = cancel or asyncio.Event()
        self._state = ReceiverState.PROCESSING
        self._pump = asyncio.get_running_loop().create_task(
            self._run(self._handle, self._cancel_event, on_message, on_error)
        )

        logger.info(
            f"Receiver started for {self.entity.path} "
            f"(max_concurrent_calls={self.config.max_concurrent_calls}, "
            f"ack_mode={self.config.ack_mode.value})"
        )
        return Subscription(self, self._cancel_event, self._pump)

    def subscribe(
        self,
        on_message: MessageCallback,
        on_error: Optional[ErrorCallback] = None,
    ) -> Subscription:
        """Start the pump; cancel through the returned Subscription."""
        return self.receive(on_message, on_error)

    # ------------------------------------------------------------------
    # Pump
    # ------------------------------------------------------------------

    async def _run(
        self,
        handle: TransportHandle,
        cancel: asyncio.Event,
        on_message: MessageCallback,
        on_error: Optional[ErrorCallback],
    ) -> None:
        self._workers = workers = [
            asyncio.create_task(self._worker(index, handle, cancel, on_message, on_error))
            for index in range(self.config.max_concurrent_calls)
        ]
        try:
            await asyncio.gather(*workers)
        finally:
            for worker in workers:
                if not worker.done():
                    worker.cancel()
            self._state = ReceiverState.STOPPED
            logger.info(
                f"Receiver stopped for {self.entity.path}. Stats: "
                f"received={self.stats.received}, completed={self.stats.completed}, "
                f"failed={self.stats.failed}, pull_errors={self.stats.pull_errors}"
            )
            if self._release_on_stop:
                await self._release_handle()

    async def _worker(
        self,
        index: int,
        handle: TransportHandle,
        cancel: asyncio.Event,
        on_message: MessageCallback,
        on_error: Optional[ErrorCallback],
    ) -> None:
        with log_context(
            entity=self.entity.name,
            subscription=self.entity.subscription_name,
            worker=index,
            component="receiver",
        ):
            while not cancel.is_set():
                try:
                    messages = await handle.receive(
                        max_message_count=1,
                        max_wait_time=self.config.max_wait_time_seconds,
                    )
                except Exception as e:
                    self.stats.pull_errors += 1
                    logger.warning(f"Receive failed on {self.entity.path}: {e}")
                    await self._report(on_error, e)
                    await self._pause(cancel)
                    continue

                # A pulled message is always processed, even if cancel arrived
                # during the pull
                for message in messages:
                    try:
                        await self._process(handle, message, on_message, on_error)
                    except Exception as e:
                        self.stats.failed += 1
                        logger.exception(f"Unexpected fault processing message on {self.entity.path}: {e}")
                        await self._report(on_error, e)

    async def _pause(self, cancel: asyncio.Event) -> None:
        try:
            await asyncio.wait_for(cancel.wait(), timeout=self.config.error_backoff_seconds)
        except asyncio.TimeoutError:
            pass

    async def _process(
        self,
        handle: TransportHandle,
        message: InFlightMessage,
        on_message: MessageCallback,
        on_error: Optional[ErrorCallback],
    ) -> None:
        self.stats.received += 1

        with log_context(lock_token=message.lock_token, delivery_count=message.delivery_count):
            try:
                data = self.codec.decode(message.envelope.payload)
            except Exception as e:
                # Validators on T may raise anything; all of it is a decode fault
                error = e
                if not isinstance(e, SerializationError):
                    error = SerializationError(
                        f"Cannot decode payload as {self.codec.type_name}: {type(e).__name__}: {e}"
                    )
                    error.__cause__ = e
                self.stats.failed += 1
                logger.error(f"Undecodable message on {self.entity.path}: {error}")
                await self._report(on_error, error)
                return

            self._in_flight += 1
            try:
                await _invoke(on_message, data)
            except Exception as e:
                self.stats.failed += 1
                logger.exception(f"Subscriber failed for message on {self.entity.path}: {e}")
                error = ProcessingError(
                    f"Subscriber failed for message on {self.entity.path}: {e}",
                    lock_token=message.lock_token,
                    delivery_count=message.delivery_count,
                )
                error.__cause__ = e
                await self._report(on_error, error)
                return
            finally:
                self._in_flight -= 1

            if self.config.ack_mode == AckMode.LOCK_AND_COMPLETE:
                try:
                    await handle.complete(message)
                except Exception as e:
                    self.stats.failed += 1
                    logger.warning(f"Complete failed on {self.entity.path}: {e}")
                    await self._report(on_error, e)
                    return

            self.stats.completed += 1
            logger.debug(f"Message completed on {self.entity.path}")

    async def _report(self, on_error: Optional[ErrorCallback], error: Exception) -> None:
        if on_error is None:
            return
        try:
            await _invoke(on_error, error)
        except Exception:
            logger.exception(f"on_error callback raised for {self.entity.path}")

    # ------------------------------------------------------------------
    # Disposal
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """
        Stop the pump (letting in-flight callbacks finish) and release the handle.

        Called from inside on_message, close() only signals cancellation and
        returns; the handle is released once the pump has stopped.
        """
        if self._pump is not None and not self._pump.done():
            self._cancel_event.set()
            if asyncio.current_task() in self._workers:
                self._release_on_stop = True
                return
            await asyncio.shield(self._pump)
        self._state = ReceiverState.STOPPED
        await self._release_handle()

    async def _release_handle(self) -> None:
        handle, self._handle = self._handle, None
        if handle is None:
            return
        await handle.close()
        logger.info(f"Receiver closed for {self.entity.path}")

    async def __aenter__(self) -> "Receiver[T]":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()


__all__ = [
    "ReceiverState",
    "ReceiverStats",
    "Subscription",
    "Receiver",
]
