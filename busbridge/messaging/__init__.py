# ============================================================================
# MESSAGING MODULE
# ============================================================================
# STATUS: Core - Send/receive execution engine
# PURPOSE: Factory, provisioner, Sender and Receiver pump
# CREATED: 19 OCT 2026
# ============================================================================
"""
Messaging Module

Uniform send and receive over queues and topic subscriptions.

Usage:
    from busbridge.messaging import get_factory

    factory = get_factory()
    sender = await factory.create_queue_sender(credential, "orders")
    await sender.send_as_json({"order_id": "o-1"})
"""

from .factory import ServiceBusFactory, get_factory, validate_entity
from .provisioner import EntityProvisioner
from .receiver import Receiver, ReceiverState, ReceiverStats, Subscription
from .sender import Sender

__all__ = [
    "ServiceBusFactory",
    "get_factory",
    "validate_entity",
    "EntityProvisioner",
    "Receiver",
    "ReceiverState",
    "ReceiverStats",
    "Subscription",
    "Sender",
]
