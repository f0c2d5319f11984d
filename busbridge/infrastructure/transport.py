# ============================================================================
# TRANSPORT PROTOCOLS
# ============================================================================
# STATUS: Infrastructure - Broker client boundary
# PURPOSE: Primitives the Sender, Receiver and Provisioner rely on
# CREATED: 19 OCT 2026
# ============================================================================
"""
Transport Protocols

The messaging layer never touches a broker SDK directly. It talks to:

    TransportHandle       - send / receive / complete for ONE entity
    AdministrationClient  - existence checks and creates (provisioning)
    TransportProvider     - builds both from a credential variant

Implementations:
    infrastructure.azure_bus.AzureTransportProvider  - Azure Service Bus
    infrastructure.memory_bus.InMemoryBroker         - in-process broker
"""

from typing import List, Protocol, Sequence, runtime_checkable

from busbridge.core.models import (
    AckMode,
    CredentialVariant,
    EntityReference,
    Envelope,
    InFlightMessage,
    RetryPolicy,
    TransportType,
)


@runtime_checkable
class TransportHandle(Protocol):
    """Live connection bound to one entity. Safe for concurrent use."""

    async def send_envelopes(self, envelopes: Sequence[Envelope]) -> None:
        """Send all envelopes in one call (atomic batch)."""
        ...

    async def receive(self, max_message_count: int, max_wait_time: float) -> List[InFlightMessage]:
        """Pull up to max_message_count messages; empty list on timeout."""
        ...

    async def complete(self, message: InFlightMessage) -> None:
        """Settle a locked message so it is removed from the entity."""
        ...

    async def close(self) -> None:
        ...


@runtime_checkable
class AdministrationClient(Protocol):
    """Management operations used by the entity provisioner."""

    async def queue_exists(self, queue_name: str) -> bool: ...

    async def create_queue(self, queue_name: str) -> None: ...

    async def topic_exists(self, topic_name: str) -> bool: ...

    async def create_topic(self, topic_name: str) -> None: ...

    async def subscription_exists(self, topic_name: str, subscription_name: str) -> bool: ...

    async def create_subscription(self, topic_name: str, subscription_name: str) -> None: ...

    async def close(self) -> None: ...


class TransportProvider(Protocol):
    """Builds transport objects from a credential variant."""

    def open_handle(
        self,
        credential: CredentialVariant,
        entity: EntityReference,
        retry: RetryPolicy,
        ack_mode: AckMode = AckMode.LOCK_AND_COMPLETE,
        transport_type: TransportType = TransportType.AMQP_TCP,
    ) -> TransportHandle: ...

    def open_administration(self, credential: CredentialVariant) -> AdministrationClient: ...


__all__ = ["TransportHandle", "AdministrationClient", "TransportProvider"]
