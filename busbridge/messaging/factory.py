# ============================================================================
# SERVICE BUS FACTORY
# ============================================================================
# STATUS: Messaging - Sender/Receiver construction
# PURPOSE: Validate inputs, open a transport handle, provision, bind wrapper
# CREATED: 19 OCT 2026
# ============================================================================
"""
Service Bus Factory

Single construction surface for Senders and Receivers:

    factory = get_factory()                    # Azure Service Bus
    factory = ServiceBusFactory(broker)        # any TransportProvider

    sender = await factory.create_sender(credential, EntityReference.queue("orders"))
    receiver = await factory.create_receiver(
        credential,
        EntityReference.topic("orders", "billing"),
        data_type=OrderPlaced,
        config=ReceiverConfig(max_concurrent_calls=4),
    )

Construction order:
    1. Validate credential and entity (ConfigurationError, no network)
    2. Open one transport handle for this Sender/Receiver only
    3. Provision the entity if the config allows creation
    4. Bind the handle into the Sender/Receiver

If provisioning fails the handle is closed and ProvisioningError propagates.
"""

from datetime import datetime
from typing import Any, Callable, Optional

from busbridge.core.errors import ConfigurationError
from busbridge.core.logging import ComponentType, get_logger
from busbridge.core.models import (
    CredentialVariant,
    EntityKind,
    EntityReference,
    ProvisioningPolicy,
    ReceiverConfig,
    SenderConfig,
)
from busbridge.core.serialization import JsonCodec
from busbridge.infrastructure.azure_bus import AzureTransportProvider
from busbridge.infrastructure.credentials import validate_credential
from busbridge.infrastructure.transport import TransportHandle, TransportProvider
from busbridge.messaging.provisioner import EntityProvisioner
from busbridge.messaging.receiver import Receiver
from busbridge.messaging.sender import Sender, utc_now

logger = get_logger(__name__, ComponentType.FACTORY)

# Global factory instance
_factory: Optional["ServiceBusFactory"] = None


def _is_blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def validate_entity(entity: EntityReference, receiving: bool) -> None:
    """Raise ConfigurationError if the entity cannot be used for this direction."""
    if entity is None:
        raise ConfigurationError("entity is required", field="entity")
    if not isinstance(entity.kind, EntityKind):
        raise ConfigurationError(f"Unknown entity kind: {entity.kind!r}", field="kind")
    if _is_blank(entity.name):
        raise ConfigurationError("entity name is required", field="name")

    if entity.kind == EntityKind.QUEUE and entity.subscription_name is not None:
        raise ConfigurationError(
            f"Queue '{entity.name}' cannot have a subscription name",
            field="subscription_name",
        )
    if receiving and entity.is_topic and _is_blank(entity.subscription_name):
        raise ConfigurationError(
            f"Receiving from topic '{entity.name}' requires a subscription name",
            field="subscription_name",
        )


class ServiceBusFactory:
    """Builds Senders and Receivers bound to a TransportProvider."""

    def __init__(
        self,
        provider: Optional[TransportProvider] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.provider = provider or AzureTransportProvider()
        self._clock = clock

    async def _provision(
        self,
        credential: CredentialVariant,
        entity: EntityReference,
        policy: ProvisioningPolicy,
        handle: TransportHandle,
    ) -> None:
        if not policy.can_create:
            return

        admin = None
        try:
            admin = self.provider.open_administration(credential)
            await EntityProvisioner(admin, policy).ensure_entity(entity)
        except BaseException:
            await handle.close()
            raise
        finally:
            if admin is not None:
                await admin.close()

    # ------------------------------------------------------------------
    # Senders
    # ------------------------------------------------------------------

    async def create_sender(
        self,
        credential: CredentialVariant,
        entity: EntityReference,
        config: Optional[SenderConfig] = None,
        data_type: Any = Any,
    ) -> Sender:
        """
        Create a Sender for a queue or topic.

        Raises:
            ConfigurationError: Missing credential field or entity name
            ProvisioningError: Entity could not be created
        """
        validate_credential(credential)
        validate_entity(entity, receiving=False)
        config = config or SenderConfig()
        codec = JsonCodec(data_type)

        # Senders address the topic itself, never a subscription
        if entity.is_topic and entity.subscription_name is not None:
            entity = EntityReference.topic(entity.name)

        handle = self.provider.open_handle(
            credential, entity, config.retry, transport_type=config.transport_type
        )
        await self._provision(credential, entity, config.provisioning, handle)

        logger.info(f"Sender created for {entity.kind.value} {entity.path}")
        return Sender(handle, entity, codec=codec, clock=self._clock)

    async def create_queue_sender(
        self,
        credential: CredentialVariant,
        queue_name: str,
        config: Optional[SenderConfig] = None,
        data_type: Any = Any,
    ) -> Sender:
        return await self.create_sender(credential, EntityReference.queue(queue_name), config, data_type)

    async def create_topic_sender(
        self,
        credential: CredentialVariant,
        topic_name: str,
        config: Optional[SenderConfig] = None,
        data_type: Any = Any,
    ) -> Sender:
        return await self.create_sender(credential, EntityReference.topic(topic_name), config, data_type)

    # ------------------------------------------------------------------
    # Receivers
    # ------------------------------------------------------------------

    async def create_receiver(
        self,
        credential: CredentialVariant,
        entity: EntityReference,
        data_type: Any = Any,
        config: Optional[ReceiverConfig] = None,
    ) -> Receiver:
        """
        Create a Receiver for a queue or topic subscription.

        Raises:
            ConfigurationError: Missing credential field, entity name, or
                subscription name for a topic
            ProvisioningError: Entity could not be created
        """
        validate_credential(credential)
        validate_entity(entity, receiving=True)
        config = config or ReceiverConfig()
        codec = JsonCodec(data_type)

        handle = self.provider.open_handle(
            credential, entity, config.retry, config.ack_mode, transport_type=config.transport_type
        )
        await self._provision(credential, entity, config.provisioning, handle)

        logger.info(f"Receiver created for {entity.kind.value} {entity.path}")
        return Receiver(handle, entity, config=config, codec=codec)

    async def create_queue_receiver(
        self,
        credential: CredentialVariant,
        queue_name: str,
        data_type: Any = Any,
        config: Optional[ReceiverConfig] = None,
    ) -> Receiver:
        return await self.create_receiver(credential, EntityReference.queue(queue_name), data_type, config)

    async def create_topic_receiver(
        self,
        credential: CredentialVariant,
        topic_name: str,
        subscription_name: str,
        data_type: Any = Any,
        config: Optional[ReceiverConfig] = None,
    ) -> Receiver:
        return await self.create_receiver(
            credential,
            EntityReference.topic(topic_name, subscription_name),
            data_type,
            config,
        )


def get_factory() -> ServiceBusFactory:
    """Get the global ServiceBusFactory bound to Azure Service Bus."""
    global _factory

    if _factory is None:
        _factory = ServiceBusFactory(AzureTransportProvider())

    return _factory


__all__ = [
    "ServiceBusFactory",
    "validate_entity",
    "get_factory",
]
