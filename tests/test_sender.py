# ============================================================================
# SENDER TESTS
# ============================================================================
# STATUS: Tests - JSON publishing, scheduling, batching, disposal
# PURPOSE: Verify single and batch sends against the in-memory broker
# CREATED: 19 OCT 2026
# ============================================================================
"""
Sender Tests

Covers:
1. send_as_json payload and content type
2. TTL and scheduled enqueue time handling
3. send_batch_as_json: one transport call, empty/None rejected
4. Transport faults and retry
5. close() idempotency and use-after-close

Run with:
    pytest tests/test_sender.py -v
"""

import asyncio
import json
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
from pydantic import BaseModel

from busbridge.core.errors import (
    ArgumentError,
    HandleClosedError,
    SerializationError,
    TransientTransportError,
    TransportError,
)
from busbridge.core.models import (
    JSON_CONTENT_TYPE,
    ConnectionSecret,
    EntityReference,
    RetryPolicy,
)
from busbridge.core.serialization import JsonCodec
from busbridge.infrastructure.memory_bus import InMemoryBroker, ManualClock
from busbridge.messaging.sender import Sender

CREDENTIAL = ConnectionSecret("Endpoint=sb://test.servicebus.windows.net/;SharedAccessKeyName=k;SharedAccessKey=v")
NO_DELAY = RetryPolicy(initial_delay_seconds=0, max_delay_seconds=0, max_retries=2)


class OrderPlaced(BaseModel):
    order_id: str
    quantity: int


# ============================================================================
# FIXTURES
# ============================================================================

@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def broker(clock):
    broker = InMemoryBroker(clock=clock)
    broker.add_queue("orders")
    return broker


def make_sender(broker, clock, retry: RetryPolicy = NO_DELAY) -> Sender:
    entity = EntityReference.queue("orders")
    handle = broker.open_handle(CREDENTIAL, entity, retry)
    return Sender(handle, entity, codec=JsonCodec(OrderPlaced), clock=clock.now)


def order(n: int = 1) -> OrderPlaced:
    return OrderPlaced(order_id=f"o-{n}", quantity=n)


# ============================================================================
# SINGLE SEND
# ============================================================================

class TestSendAsJson:

    def test_payload_and_content_type(self, broker, clock):
        asyncio.run(make_sender(broker, clock).send_as_json(order(7)))

        [envelope] = broker.pending("orders")
        assert envelope.content_type == JSON_CONTENT_TYPE
        assert json.loads(envelope.payload) == {"order_id": "o-7", "quantity": 7}
        assert envelope.time_to_live is None
        assert envelope.scheduled_enqueue_time_utc is None

    def test_one_transport_call_per_send(self, broker, clock):
        async def run_test():
            sender = make_sender(broker, clock)
            await sender.send_as_json(order(1))
            await sender.send_as_json(order(2))

        asyncio.run(run_test())

        assert broker.calls["send"] == 2
        assert len(broker.pending("orders")) == 2

    def test_positive_ttl_is_set(self, broker, clock):
        asyncio.run(make_sender(broker, clock).send_as_json(order(), ttl=timedelta(minutes=5)))

        assert broker.pending("orders")[0].time_to_live == timedelta(minutes=5)

    @pytest.mark.parametrize("ttl", [timedelta(0), timedelta(seconds=-1), None])
    def test_non_positive_ttl_is_omitted(self, broker, clock, ttl):
        asyncio.run(make_sender(broker, clock).send_as_json(order(), ttl=ttl))

        assert broker.pending("orders")[0].time_to_live is None

    def test_expired_ttl_drops_message(self, broker, clock):
        asyncio.run(make_sender(broker, clock).send_as_json(order(), ttl=timedelta(seconds=10)))
        clock.advance(11)

        async def pull():
            handle = broker.open_handle(CREDENTIAL, EntityReference.queue("orders"), NO_DELAY)
            return await handle.receive(max_message_count=1, max_wait_time=0.01)

        assert asyncio.run(pull()) == []
        assert broker.pending("orders") == []

    def test_serialization_failure_sends_nothing(self, broker, clock):
        with pytest.raises(SerializationError):
            asyncio.run(make_sender(broker, clock).send_as_json({"order_id": object()}))

        assert broker.calls["send"] == 0


# ============================================================================
# SCHEDULING
# ============================================================================

class TestScheduling:

    def test_future_time_is_set(self, broker, clock):
        when = clock.now() + timedelta(hours=1)

        asyncio.run(make_sender(broker, clock).send_as_json(order(), scheduled_at=when))

        assert broker.pending("orders")[0].scheduled_enqueue_time_utc == when

    def test_past_time_means_available_now(self, broker, clock):
        when = clock.now() - timedelta(minutes=1)

        asyncio.run(make_sender(broker, clock).send_as_json(order(), scheduled_at=when))

        assert broker.pending("orders")[0].scheduled_enqueue_time_utc is None

    def test_naive_time_treated_as_utc(self, broker, clock):
        when = (clock.now() + timedelta(hours=2)).replace(tzinfo=None)

        asyncio.run(make_sender(broker, clock).send_as_json(order(), scheduled_at=when))

        scheduled = broker.pending("orders")[0].scheduled_enqueue_time_utc
        assert scheduled.tzinfo == timezone.utc
        assert scheduled == clock.now() + timedelta(hours=2)

    def test_enqueue_after_is_relative_to_clock(self, broker, clock):
        asyncio.run(make_sender(broker, clock).send_as_json(order(), enqueue_after=timedelta(minutes=30)))

        assert broker.pending("orders")[0].scheduled_enqueue_time_utc == clock.now() + timedelta(minutes=30)

    def test_both_schedule_arguments_rejected(self, broker, clock):
        with pytest.raises(ArgumentError) as exc_info:
            asyncio.run(make_sender(broker, clock).send_as_json(
                order(),
                scheduled_at=datetime(2030, 1, 1, tzinfo=timezone.utc),
                enqueue_after=timedelta(minutes=1),
            ))

        assert exc_info.value.argument == "scheduled_at"
        assert broker.calls["send"] == 0

    def test_scheduled_message_hidden_until_due(self, broker, clock):
        handle = broker.open_handle(CREDENTIAL, EntityReference.queue("orders"), NO_DELAY)

        async def pull():
            return await handle.receive(max_message_count=1, max_wait_time=0.01)

        asyncio.run(make_sender(broker, clock).send_as_json(order(), enqueue_after=timedelta(minutes=10)))

        assert asyncio.run(pull()) == []
        clock.advance(timedelta(minutes=10))
        [message] = asyncio.run(pull())
        assert json.loads(message.envelope.payload)["order_id"] == "o-1"


# ============================================================================
# BATCH SEND
# ============================================================================

class TestSendBatch:

    def test_batch_is_one_transport_call(self, broker, clock):
        asyncio.run(make_sender(broker, clock).send_batch_as_json([order(1), order(2), order(3)]))

        assert broker.calls["send"] == 1
        payloads = [json.loads(e.payload)["order_id"] for e in broker.pending("orders")]
        assert payloads == ["o-1", "o-2", "o-3"]

    def test_batch_applies_ttl_and_schedule_to_every_item(self, broker, clock):
        asyncio.run(make_sender(broker, clock).send_batch_as_json(
            [order(1), order(2)],
            ttl=timedelta(minutes=1),
            enqueue_after=timedelta(seconds=30),
        ))

        for envelope in broker.pending("orders"):
            assert envelope.time_to_live == timedelta(minutes=1)
            assert envelope.scheduled_enqueue_time_utc == clock.now() + timedelta(seconds=30)

    def test_generator_is_accepted(self, broker, clock):
        asyncio.run(make_sender(broker, clock).send_batch_as_json(order(n) for n in range(4)))

        assert len(broker.pending("orders")) == 4
        assert broker.calls["send"] == 1

    @pytest.mark.parametrize("items", [None, [], iter(())])
    def test_empty_batch_rejected_without_network_call(self, broker, clock, items):
        with pytest.raises(ArgumentError) as exc_info:
            asyncio.run(make_sender(broker, clock).send_batch_as_json(items))

        assert exc_info.value.argument == "items"
        assert broker.calls["send"] == 0

    def test_bad_item_sends_nothing(self, broker, clock):
        with pytest.raises(SerializationError):
            asyncio.run(make_sender(broker, clock).send_batch_as_json([order(1), {"order_id": object()}]))

        assert broker.calls["send"] == 0
        assert broker.pending("orders") == []

    def test_rejected_batch_leaves_nothing(self, broker, clock):
        broker.fail_next("send", error=TransportError("message too large"))

        with pytest.raises(TransportError, match="message too large"):
            asyncio.run(make_sender(broker, clock).send_batch_as_json([order(1), order(2)]))

        assert broker.pending("orders") == []


# ============================================================================
# FAULTS AND RETRY
# ============================================================================

class TestSendFaults:

    def test_transient_fault_is_retried(self, broker, clock):
        broker.fail_next("send", count=2)

        asyncio.run(make_sender(broker, clock).send_as_json(order()))

        assert broker.calls["send"] == 3
        assert len(broker.pending("orders")) == 1

    def test_retries_exhausted(self, broker, clock):
        broker.fail_next("send", count=5)

        with pytest.raises(TransportError) as exc_info:
            asyncio.run(make_sender(broker, clock).send_as_json(order()))

        assert isinstance(exc_info.value.__cause__, TransientTransportError)
        assert broker.calls["send"] == 3
        assert broker.pending("orders") == []

    def test_missing_entity(self, clock):
        broker = InMemoryBroker(clock=clock)

        with pytest.raises(TransportError, match="does not exist"):
            asyncio.run(make_sender(broker, clock).send_as_json(order()))

    def test_topic_fans_out_to_subscriptions(self, clock):
        broker = InMemoryBroker(clock=clock)
        broker.add_topic("orders", "billing", "shipping")
        entity = EntityReference.topic("orders")
        sender = Sender(broker.open_handle(CREDENTIAL, entity, NO_DELAY), entity, clock=clock.now)

        asyncio.run(sender.send_as_json({"id": 1}))

        assert len(broker.pending("orders", "billing")) == 1
        assert len(broker.pending("orders", "shipping")) == 1


# ============================================================================
# DISPOSAL
# ============================================================================

class TestSenderClose:

    def test_close_is_idempotent(self, broker, clock):
        async def run_test():
            sender = make_sender(broker, clock)
            await sender.close()
            await sender.close()
            return sender

        sender = asyncio.run(run_test())

        assert sender.is_closed
        assert broker.handles_closed == 1

    def test_send_after_close_raises(self, broker, clock):
        async def run_test():
            sender = make_sender(broker, clock)
            await sender.close()
            await sender.send_as_json(order())

        with pytest.raises(HandleClosedError):
            asyncio.run(run_test())

        assert broker.calls["send"] == 0

    def test_context_manager_closes_handle(self):
        handle = AsyncMock()
        sender = Sender(handle, EntityReference.queue("orders"))

        async def run_test():
            async with sender:
                await sender.send_as_json({"id": 1})

        asyncio.run(run_test())

        handle.send_envelopes.assert_awaited_once()
        handle.close.assert_awaited_once()
        assert sender.is_closed
