# ============================================================================
# AZURE SERVICE BUS TRANSPORT
# ============================================================================
# STATUS: Infrastructure - Azure Service Bus messaging and administration
# PURPOSE: TransportHandle / AdministrationClient over the azure-servicebus SDK
# CREATED: 19 OCT 2026
# ============================================================================
"""
Azure Service Bus Transport

Async implementation of the transport protocols on top of
azure.servicebus.aio.

Key Design Decisions:
    - One ServiceBusClient per handle; the handle is bound to one entity
    - Retry is delegated to the SDK (RetryPolicy.to_client_kwargs)
    - Sender/receiver links are created lazily and opened once
    - Receives are serialized per handle; settlement is not
    - SDK errors are categorized and surfaced as TransportError
    - ResourceExistsError on create surfaces as EntityAlreadyExistsError

Usage:
    provider = AzureTransportProvider()
    handle = provider.open_handle(credential, EntityReference.queue("orders"), RetryPolicy())
    await handle.send_envelopes([envelope])
    await handle.close()
"""

import asyncio
from contextlib import contextmanager
from typing import Any, Dict, List, Optional, Sequence

from azure.core.exceptions import AzureError, ResourceExistsError, ResourceNotFoundError
from azure.servicebus import ServiceBusMessage, ServiceBusReceiveMode
from azure.servicebus import TransportType as AmqpTransportType
from azure.servicebus.aio import ServiceBusClient as AsyncServiceBusClient
from azure.servicebus.aio.management import ServiceBusAdministrationClient
from azure.servicebus.exceptions import (
    MessageAlreadySettled,
    MessageLockLostError,
    MessageSizeExceededError,
    MessagingEntityNotFoundError,
    OperationTimeoutError,
    ServiceBusAuthenticationError,
    ServiceBusAuthorizationError,
    ServiceBusCommunicationError,
    ServiceBusConnectionError,
    ServiceBusError,
    ServiceBusQuotaExceededError,
    ServiceBusServerBusyError,
)

from busbridge.core.errors import EntityAlreadyExistsError, TransportError
from busbridge.core.logging import ComponentType, get_logger
from busbridge.core.models import (
    JSON_CONTENT_TYPE,
    AckMode,
    CredentialVariant,
    EntityReference,
    Envelope,
    InFlightMessage,
    RetryPolicy,
    TransportType,
)
from busbridge.infrastructure.credentials import ResolvedCredential, resolve_credential

logger = get_logger(__name__, ComponentType.TRANSPORT)

_RECEIVE_MODES = {
    AckMode.LOCK_AND_COMPLETE: ServiceBusReceiveMode.PEEK_LOCK,
    AckMode.RECEIVE_AND_DELETE: ServiceBusReceiveMode.RECEIVE_AND_DELETE,
}

_TRANSPORT_TYPES = {
    TransportType.AMQP_TCP: AmqpTransportType.Amqp,
    TransportType.AMQP_WEBSOCKETS: AmqpTransportType.AmqpOverWebsocket,
}


# ============================================================================
# ERROR CATEGORIZATION
# ============================================================================

@contextmanager
def _translate_errors(operation: str, entity: str):
    """Map azure-servicebus exceptions onto TransportError."""
    try:
        yield
    except (ServiceBusAuthenticationError, ServiceBusAuthorizationError) as e:
        # Permanent: auth failures won't resolve with retry
        logger.error(f"Auth failed during {operation} on {entity}: {e}")
        raise TransportError(f"Service Bus auth failed for {entity}: {e}") from e
    except MessageSizeExceededError as e:
        logger.error(f"Message too large for {entity}: {e}")
        raise TransportError(f"Message exceeds size limit for {entity}: {e}") from e
    except MessagingEntityNotFoundError as e:
        logger.error(f"Entity '{entity}' not found: {e}")
        raise TransportError(f"Entity '{entity}' does not exist: {e}") from e
    except ServiceBusQuotaExceededError as e:
        logger.error(f"Service Bus quota exceeded for {entity}: {e}")
        raise TransportError(f"Service Bus quota exceeded: {e}") from e
    except (MessageLockLostError, MessageAlreadySettled) as e:
        logger.warning(f"Cannot settle message on {entity}: {type(e).__name__}")
        raise TransportError(f"{operation} failed on {entity}: {e}") from e
    except (OperationTimeoutError, ServiceBusServerBusyError,
            ServiceBusConnectionError, ServiceBusCommunicationError) as e:
        # Transient, but the SDK has already exhausted its retry budget
        logger.warning(f"Transient error during {operation} on {entity}: {type(e).__name__}")
        raise TransportError(f"{operation} failed on {entity} after retries: {e}") from e
    except ServiceBusError as e:
        logger.warning(f"ServiceBusError during {operation} on {entity}: {type(e).__name__}")
        raise TransportError(f"{operation} failed on {entity}: {e}") from e


def _to_service_bus_message(envelope: Envelope) -> ServiceBusMessage:
    return ServiceBusMessage(
        body=envelope.payload,
        content_type=envelope.content_type,
        message_id=envelope.message_id,
        time_to_live=envelope.time_to_live,
        scheduled_enqueue_time_utc=envelope.scheduled_enqueue_time_utc,
        application_properties=dict(envelope.application_properties) or None,
    )


def _decode_property(value: Any) -> Any:
    return value.decode("utf-8") if isinstance(value, bytes) else value


def _to_in_flight(message: Any) -> InFlightMessage:
    """Convert a ServiceBusReceivedMessage into an InFlightMessage."""
    body = message.body
    payload = body if isinstance(body, bytes) else b"".join(body)

    properties: Dict[str, Any] = {}
    for key, value in (message.application_properties or {}).items():
        properties[_decode_property(key)] = _decode_property(value)

    envelope = Envelope(
        payload=payload,
        content_type=message.content_type or JSON_CONTENT_TYPE,
        scheduled_enqueue_time_utc=message.scheduled_enqueue_time_utc,
        time_to_live=message.time_to_live,
        message_id=message.message_id,
        application_properties=properties,
    )
    lock_token = message.lock_token
    return InFlightMessage(
        envelope=envelope,
        lock_token=str(lock_token) if lock_token is not None else None,
        delivery_count=message.delivery_count or 1,
        raw=message,
    )


# ============================================================================
# CLIENT CONSTRUCTION
# ============================================================================

def _build_client(
    resolved: ResolvedCredential,
    retry: RetryPolicy,
    transport_type: TransportType = TransportType.AMQP_TCP,
) -> AsyncServiceBusClient:
    client_kwargs = retry.to_client_kwargs()
    client_kwargs["transport_type"] = _TRANSPORT_TYPES[transport_type]
    if resolved.use_connection_string:
        logger.info("Using connection string authentication")
        return AsyncServiceBusClient.from_connection_string(
            resolved.connection_string,
            **client_kwargs,
        )

    logger.info(f"Using credential authentication for namespace: {resolved.fully_qualified_namespace}")
    return AsyncServiceBusClient(
        fully_qualified_namespace=resolved.fully_qualified_namespace,
        credential=resolved.credential,
        **client_kwargs,
    )


# The administration client speaks HTTPS on port 443 and has no AMQP transport
def _build_admin_client(resolved: ResolvedCredential) -> ServiceBusAdministrationClient:
    if resolved.use_connection_string:
        return ServiceBusAdministrationClient.from_connection_string(resolved.connection_string)
    return ServiceBusAdministrationClient(
        fully_qualified_namespace=resolved.fully_qualified_namespace,
        credential=resolved.credential,
    )


# ============================================================================
# TRANSPORT HANDLE
# ============================================================================

class AzureTransportHandle:
    """
    TransportHandle bound to one queue, topic, or topic subscription.

    The SDK sender/receiver links are opened on first use and reused for the
    handle's lifetime.
    """

    def __init__(
        self,
        client: AsyncServiceBusClient,
        entity: EntityReference,
        ack_mode: AckMode = AckMode.LOCK_AND_COMPLETE,
    ):
        self.entity = entity
        self.ack_mode = ack_mode
        self._client: Optional[AsyncServiceBusClient] = client
        self._sender = None
        self._receiver = None
        self._link_lock = asyncio.Lock()
        self._receive_lock = asyncio.Lock()

    def _require_client(self) -> AsyncServiceBusClient:
        if self._client is None:
            raise TransportError(f"Transport for {self.entity.path} is closed")
        return self._client

    async def _get_sender(self):
        if self._sender is not None:
            return self._sender

        async with self._link_lock:
            if self._sender is None:
                client = self._require_client()
                if self.entity.is_topic:
                    sender = client.get_topic_sender(topic_name=self.entity.name)
                else:
                    sender = client.get_queue_sender(queue_name=self.entity.name)
                logger.debug(f"Created sender for {self.entity.path}")
                self._sender = sender
        return self._sender

    async def _get_receiver(self, max_wait_time: float):
        if self._receiver is not None:
            return self._receiver

        async with self._link_lock:
            if self._receiver is None:
                client = self._require_client()
                receive_mode = _RECEIVE_MODES[self.ack_mode]
                if self.entity.is_topic:
                    receiver = client.get_subscription_receiver(
                        topic_name=self.entity.name,
                        subscription_name=self.entity.subscription_name,
                        receive_mode=receive_mode,
                        max_wait_time=max_wait_time,
                    )
                else:
                    receiver = client.get_queue_receiver(
                        queue_name=self.entity.name,
                        receive_mode=receive_mode,
                        max_wait_time=max_wait_time,
                    )
                logger.debug(f"Created receiver for {self.entity.path} ({self.ack_mode.value})")
                self._receiver = receiver
        return self._receiver

    async def send_envelopes(self, envelopes: Sequence[Envelope]) -> None:
        sender = await self._get_sender()
        messages = [_to_service_bus_message(e) for e in envelopes]

        with _translate_errors("send", self.entity.path):
            if len(messages) == 1:
                await sender.send_messages(messages[0])
            else:
                # A list is sent as a single batch; oversize raises MessageSizeExceededError
                await sender.send_messages(messages)

    async def receive(self, max_message_count: int, max_wait_time: float) -> List[InFlightMessage]:
        receiver = await self._get_receiver(max_wait_time)

        async with self._receive_lock:
            with _translate_errors("receive", self.entity.path):
                received = await receiver.receive_messages(
                    max_message_count=max_message_count,
                    max_wait_time=max_wait_time,
                )

        return [_to_in_flight(m) for m in received]

    async def complete(self, message: InFlightMessage) -> None:
        if self.ack_mode == AckMode.RECEIVE_AND_DELETE:
            return
        if self._receiver is None:
            raise TransportError(f"No receiver link open for {self.entity.path}")

        with _translate_errors("complete", self.entity.path):
            await self._receiver.complete_message(message.raw)

    async def close(self) -> None:
        """Close links and client. Safe to call more than once."""
        if self._sender is not None:
            try:
                await self._sender.close()
            except AzureError as e:
                logger.warning(f"Error closing sender for {self.entity.path}: {e}")
            self._sender = None

        if self._receiver is not None:
            try:
                await self._receiver.close()
            except AzureError as e:
                logger.warning(f"Error closing receiver for {self.entity.path}: {e}")
            self._receiver = None

        if self._client is not None:
            try:
                await self._client.close()
            except AzureError as e:
                logger.warning(f"Error closing client for {self.entity.path}: {e}")
            self._client = None
            logger.info(f"Transport closed for {self.entity.path}")


# ============================================================================
# ADMINISTRATION CLIENT
# ============================================================================

class AzureAdministrationClient:
    """AdministrationClient over the async ServiceBusAdministrationClient."""

    def __init__(self, admin: ServiceBusAdministrationClient):
        self._admin: Optional[ServiceBusAdministrationClient] = admin

    @contextmanager
    def _translate(self, operation: str, entity: str):
        try:
            yield
        except ResourceExistsError as e:
            raise EntityAlreadyExistsError(entity) from e
        except AzureError as e:
            raise TransportError(f"{operation} failed for {entity}: {e}") from e

    async def _exists(self, operation: str, entity: str, lookup) -> bool:
        try:
            await lookup()
        except ResourceNotFoundError:
            return False
        except AzureError as e:
            raise TransportError(f"{operation} failed for {entity}: {e}") from e
        return True

    async def queue_exists(self, queue_name: str) -> bool:
        return await self._exists(
            "get_queue", queue_name, lambda: self._admin.get_queue(queue_name)
        )

    async def create_queue(self, queue_name: str) -> None:
        with self._translate("create_queue", queue_name):
            await self._admin.create_queue(
                queue_name,
                enable_batched_operations=True,
                enable_partitioning=True,
            )

    async def topic_exists(self, topic_name: str) -> bool:
        return await self._exists(
            "get_topic", topic_name, lambda: self._admin.get_topic(topic_name)
        )

    async def create_topic(self, topic_name: str) -> None:
        with self._translate("create_topic", topic_name):
            await self._admin.create_topic(
                topic_name,
                enable_batched_operations=True,
                enable_partitioning=True,
            )

    async def subscription_exists(self, topic_name: str, subscription_name: str) -> bool:
        path = f"{topic_name}/subscriptions/{subscription_name}"
        return await self._exists(
            "get_subscription",
            path,
            lambda: self._admin.get_subscription(topic_name, subscription_name),
        )

    async def create_subscription(self, topic_name: str, subscription_name: str) -> None:
        path = f"{topic_name}/subscriptions/{subscription_name}"
        with self._translate("create_subscription", path):
            await self._admin.create_subscription(topic_name, subscription_name)

    async def close(self) -> None:
        if self._admin is not None:
            try:
                await self._admin.close()
            except AzureError as e:
                logger.warning(f"Error closing administration client: {e}")
            self._admin = None


# ============================================================================
# PROVIDER
# ============================================================================

class AzureTransportProvider:
    """TransportProvider backed by Azure Service Bus."""

    def open_handle(
        self,
        credential: CredentialVariant,
        entity: EntityReference,
        retry: RetryPolicy,
        ack_mode: AckMode = AckMode.LOCK_AND_COMPLETE,
        transport_type: TransportType = TransportType.AMQP_TCP,
    ) -> AzureTransportHandle:
        resolved = resolve_credential(credential)
        logger.info(
            f"Opening Service Bus transport for {entity.path} "
            f"({resolved.display_name}, {transport_type.value})"
        )
        return AzureTransportHandle(_build_client(resolved, retry, transport_type), entity, ack_mode)

    def open_administration(self, credential: CredentialVariant) -> AzureAdministrationClient:
        resolved = resolve_credential(credential)
        return AzureAdministrationClient(_build_admin_client(resolved))


__all__ = [
    "AzureTransportHandle",
    "AzureAdministrationClient",
    "AzureTransportProvider",
]
