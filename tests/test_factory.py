# ============================================================================
# SERVICE BUS FACTORY TESTS
# ============================================================================
# STATUS: Tests - Construction, validation, provisioning, end to end
# PURPOSE: Verify factory fails fast and wires Senders/Receivers correctly
# CREATED: 19 OCT 2026
# ============================================================================
"""
Service Bus Factory Tests

Covers:
1. ConfigurationError before any transport is opened
2. Provisioning on construction; handle closed when it fails
3. One transport handle per Sender/Receiver
4. Every credential variant x entity kind combination
5. End-to-end send -> receive through the factory

Run with:
    pytest tests/test_factory.py -v
"""

import asyncio
from datetime import timedelta
from typing import List
from unittest.mock import MagicMock, patch

import pytest
from pydantic import BaseModel

from busbridge.core.errors import ConfigurationError, ProvisioningError, TransportError
from busbridge.core.models import (
    ConnectionSecret,
    EntityKind,
    EntityReference,
    NamespaceSas,
    NamespaceSharedKey,
    NamespaceToken,
    ProvisioningPolicy,
    ReceiverConfig,
    RetryPolicy,
    SenderConfig,
    TransportType,
)
from busbridge.infrastructure.memory_bus import InMemoryBroker, ManualClock
from busbridge.messaging import factory as factory_module
from busbridge.messaging.factory import ServiceBusFactory, get_factory, validate_entity
from busbridge.messaging.receiver import Receiver
from busbridge.messaging.sender import Sender

CREDENTIAL = ConnectionSecret("Endpoint=sb://test.servicebus.windows.net/;SharedAccessKeyName=k;SharedAccessKey=v")
FAST_RETRY = RetryPolicy(initial_delay_seconds=0, max_delay_seconds=0, max_retries=0)
CAN_CREATE = ProvisioningPolicy(can_create=True)

CREDENTIAL_VARIANTS = [
    CREDENTIAL,
    NamespaceSharedKey("test", "RootManageSharedAccessKey", "c2VjcmV0"),
    NamespaceToken("test.servicebus.windows.net", MagicMock()),
    NamespaceSas("test", "SharedAccessSignature sr=test&sig=abc"),
]


class InvoiceIssued(BaseModel):
    invoice_id: str
    amount: float


def receiver_config(**overrides) -> ReceiverConfig:
    return ReceiverConfig(
        max_wait_time_seconds=0.02,
        error_backoff_seconds=0.01,
        retry=FAST_RETRY,
        **overrides,
    )


async def wait_until(predicate, timeout: float = 2.0) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout
    while not predicate():
        if loop.time() > deadline:
            raise AssertionError("condition not met before timeout")
        await asyncio.sleep(0.005)


@pytest.fixture
def clock():
    return ManualClock()


@pytest.fixture
def broker(clock):
    return InMemoryBroker(clock=clock)


@pytest.fixture
def factory(broker, clock):
    return ServiceBusFactory(broker, clock=clock.now)


# ============================================================================
# VALIDATION
# ============================================================================

class TestValidation:

    @pytest.mark.parametrize("entity,receiving,field", [
        (None, False, "entity"),
        (EntityReference.queue(""), False, "name"),
        (EntityReference.queue("   "), True, "name"),
        (EntityReference(EntityKind.QUEUE, "orders", "billing"), False, "subscription_name"),
        (EntityReference.topic("orders"), True, "subscription_name"),
        (EntityReference.topic("orders", " "), True, "subscription_name"),
        (EntityReference("stream", "orders"), False, "kind"),
    ])
    def test_invalid_entity(self, entity, receiving, field):
        with pytest.raises(ConfigurationError) as exc_info:
            validate_entity(entity, receiving=receiving)
        assert exc_info.value.field == field

    def test_topic_without_subscription_is_valid_for_sending(self):
        validate_entity(EntityReference.topic("orders"), receiving=False)

    def test_missing_credential_field_opens_nothing(self, factory, broker):
        with pytest.raises(ConfigurationError) as exc_info:
            asyncio.run(factory.create_sender(ConnectionSecret(""), EntityReference.queue("orders")))

        assert exc_info.value.field == "connection_string"
        assert broker.handles_opened == 0

    def test_topic_receiver_without_subscription_opens_nothing(self, factory, broker):
        with pytest.raises(ConfigurationError):
            asyncio.run(factory.create_receiver(CREDENTIAL, EntityReference.topic("orders")))

        assert broker.handles_opened == 0

    def test_blank_queue_name(self, factory, broker):
        with pytest.raises(ConfigurationError):
            asyncio.run(factory.create_queue_receiver(CREDENTIAL, ""))

        assert broker.handles_opened == 0


# ============================================================================
# PROVISIONING
# ============================================================================

class TestFactoryProvisioning:

    def test_sender_creates_missing_queue(self, factory, broker):
        config = SenderConfig(provisioning=CAN_CREATE)

        sender = asyncio.run(factory.create_queue_sender(CREDENTIAL, "orders", config))

        assert isinstance(sender, Sender)
        assert broker.has_queue("orders")

    def test_receiver_creates_topic_and_subscription(self, factory, broker):
        config = receiver_config(provisioning=CAN_CREATE)

        receiver = asyncio.run(factory.create_topic_receiver(CREDENTIAL, "orders", "billing", config=config))

        assert isinstance(receiver, Receiver)
        assert broker.has_topic("orders")
        assert broker.has_subscription("orders", "billing")

    def test_no_provisioning_by_default(self, factory, broker):
        asyncio.run(factory.create_queue_sender(CREDENTIAL, "orders"))

        assert not broker.has_queue("orders")
        assert broker.calls["queue_exists"] == 0

    def test_provisioning_failure_closes_handle(self, factory, broker):
        broker.fail_next("create_queue", error=TransportError("403 Forbidden"))

        with pytest.raises(ProvisioningError) as exc_info:
            asyncio.run(factory.create_queue_receiver(
                CREDENTIAL, "orders", config=receiver_config(provisioning=CAN_CREATE)
            ))

        assert exc_info.value.entity == "orders"
        assert broker.handles_opened == 1
        assert broker.handles_closed == 1

    def test_administration_client_closed_after_provisioning(self, broker, clock):
        admin_clients = []
        original = broker.open_administration

        def tracking_open(credential):
            client = original(credential)
            admin_clients.append(client)
            return client

        broker.open_administration = tracking_open
        factory = ServiceBusFactory(broker, clock=clock.now)

        asyncio.run(factory.create_queue_sender(CREDENTIAL, "orders", SenderConfig(provisioning=CAN_CREATE)))

        [admin] = admin_clients
        assert admin.closed


    def test_administration_open_failure_closes_handle(self, broker, clock):
        def failing_open(credential):
            raise TransportError("admin endpoint unreachable")

        broker.open_administration = failing_open
        factory = ServiceBusFactory(broker, clock=clock.now)

        with pytest.raises(TransportError):
            asyncio.run(factory.create_queue_sender(CREDENTIAL, "orders", SenderConfig(provisioning=CAN_CREATE)))

        assert broker.handles_opened == 1
        assert broker.handles_closed == 1


# ============================================================================
# HANDLE OWNERSHIP
# ============================================================================

class TestHandleOwnership:

    def test_each_call_opens_its_own_handle(self, factory, broker):
        broker.add_queue("orders")

        async def run_test():
            first = await factory.create_queue_sender(CREDENTIAL, "orders")
            second = await factory.create_queue_sender(CREDENTIAL, "orders")
            await first.close()
            # Closing one does not affect the other
            await second.send_as_json({"id": 1})
            await second.close()

        asyncio.run(run_test())

        assert broker.handles_opened == 2
        assert broker.handles_closed == 2
        assert len(broker.pending("orders")) == 1

    def test_sender_ignores_subscription_on_topic(self, factory, broker):
        broker.add_topic("orders", "billing")

        sender = asyncio.run(factory.create_sender(CREDENTIAL, EntityReference.topic("orders", "billing")))

        assert sender.entity == EntityReference.topic("orders")

    def test_receiver_gets_config(self, factory, broker):
        broker.add_queue("orders")
        config = receiver_config(max_concurrent_calls=4)

        receiver = asyncio.run(factory.create_queue_receiver(CREDENTIAL, "orders", config=config))

        assert receiver.config.max_concurrent_calls == 4

    def test_transport_type_reaches_handles(self, factory, broker):
        broker.add_queue("orders")

        async def run_test():
            sender = await factory.create_queue_sender(
                CREDENTIAL, "orders", SenderConfig(transport_type=TransportType.AMQP_WEBSOCKETS)
            )
            receiver = await factory.create_queue_receiver(
                CREDENTIAL, "orders", config=receiver_config(transport_type=TransportType.AMQP_WEBSOCKETS)
            )
            return sender, receiver

        sender, receiver = asyncio.run(run_test())

        assert sender._handle.transport_type == TransportType.AMQP_WEBSOCKETS
        assert receiver._handle.transport_type == TransportType.AMQP_WEBSOCKETS


# ============================================================================
# CREDENTIAL x ENTITY MATRIX
# ============================================================================

class TestCredentialMatrix:

    @pytest.mark.parametrize("credential", CREDENTIAL_VARIANTS, ids=lambda c: type(c).__name__)
    @pytest.mark.parametrize("topic", [False, True], ids=["queue", "topic"])
    def test_send_and_receive(self, factory, broker, credential, topic):
        received: List[InvoiceIssued] = []
        invoice = InvoiceIssued(invoice_id="inv-1", amount=12.5)

        async def run_test():
            if topic:
                sender = await factory.create_topic_sender(
                    credential, "invoices", SenderConfig(provisioning=CAN_CREATE), InvoiceIssued
                )
                receiver = await factory.create_topic_receiver(
                    credential, "invoices", "ledger", InvoiceIssued,
                    receiver_config(provisioning=CAN_CREATE),
                )
            else:
                sender = await factory.create_queue_sender(
                    credential, "invoices", SenderConfig(provisioning=CAN_CREATE), InvoiceIssued
                )
                receiver = await factory.create_queue_receiver(
                    credential, "invoices", InvoiceIssued, receiver_config(provisioning=CAN_CREATE),
                )

            async with sender, receiver:
                await sender.send_as_json(invoice)
                async with receiver.subscribe(received.append):
                    await wait_until(lambda: received)

        asyncio.run(run_test())

        assert received == [invoice]
        assert broker.handles_closed == 2


# ============================================================================
# END TO END
# ============================================================================

class TestEndToEnd:

    def test_scheduled_message_delivered_when_due(self, factory, broker, clock):
        received: List[InvoiceIssued] = []

        async def run_test():
            sender = await factory.create_queue_sender(
                CREDENTIAL, "invoices", SenderConfig(provisioning=CAN_CREATE), InvoiceIssued
            )
            receiver = await factory.create_queue_receiver(CREDENTIAL, "invoices", InvoiceIssued, receiver_config())

            async with sender, receiver:
                await sender.send_as_json(
                    InvoiceIssued(invoice_id="later", amount=1),
                    enqueue_after=timedelta(minutes=15),
                )
                async with receiver.subscribe(received.append):
                    await asyncio.sleep(0.05)
                    assert received == []
                    clock.advance(timedelta(minutes=15))
                    await wait_until(lambda: received)

        asyncio.run(run_test())

        assert [r.invoice_id for r in received] == ["later"]

    def test_batch_to_topic_reaches_every_subscription(self, factory, broker):
        broker.add_topic("invoices", "ledger", "audit")
        ledger: List[InvoiceIssued] = []
        audit: List[InvoiceIssued] = []

        async def run_test():
            sender = await factory.create_topic_sender(CREDENTIAL, "invoices", data_type=InvoiceIssued)
            ledger_receiver = await factory.create_topic_receiver(
                CREDENTIAL, "invoices", "ledger", InvoiceIssued, receiver_config()
            )
            audit_receiver = await factory.create_topic_receiver(
                CREDENTIAL, "invoices", "audit", InvoiceIssued, receiver_config()
            )

            async with sender, ledger_receiver, audit_receiver:
                await sender.send_batch_as_json(
                    InvoiceIssued(invoice_id=f"inv-{n}", amount=n) for n in range(3)
                )
                async with ledger_receiver.subscribe(ledger.append), audit_receiver.subscribe(audit.append):
                    await wait_until(lambda: len(ledger) == 3 and len(audit) == 3)

        asyncio.run(run_test())

        assert broker.calls["send"] == 1
        assert sorted(i.invoice_id for i in ledger) == ["inv-0", "inv-1", "inv-2"]


# ============================================================================
# GLOBAL FACTORY
# ============================================================================

class TestGetFactory:

    def test_singleton(self):
        with patch.object(factory_module, "_factory", None):
            first = get_factory()
            second = get_factory()

        assert first is second
        assert type(first.provider).__name__ == "AzureTransportProvider"
