# ============================================================================
# ENTITY PROVISIONER
# ============================================================================
# STATUS: Messaging - Idempotent queue/topic/subscription creation
# PURPOSE: Ensure an entity exists before the first send or receive
# CREATED: 19 OCT 2026
# ============================================================================
"""
Entity Provisioner

ensure_entity() is a no-op unless the ProvisioningPolicy allows creation.
When it does:

    queue:              exists? else create (batched + partitioned)
    topic:              exists? else create (batched + partitioned)
    topic+subscription: topic first, then subscription

A create that loses a race with another caller ("already exists") counts as
success. Any other administration fault becomes ProvisioningError.
"""

from typing import Awaitable, Callable

from busbridge.core.errors import EntityAlreadyExistsError, ProvisioningError, TransportError
from busbridge.core.logging import ComponentType, get_logger
from busbridge.core.models import EntityReference, ProvisioningPolicy
from busbridge.infrastructure.transport import AdministrationClient

logger = get_logger(__name__, ComponentType.PROVISIONER)


class EntityProvisioner:
    """Creates missing entities through an AdministrationClient."""

    def __init__(self, admin: AdministrationClient, policy: ProvisioningPolicy):
        self.admin = admin
        self.policy = policy

    async def ensure_entity(self, ref: EntityReference) -> None:
        """
        Ensure the referenced entity exists.

        Raises:
            ProvisioningError: Existence check or create failed for a reason
                other than the entity already existing
        """
        if not self.policy.can_create:
            return

        if ref.is_topic:
            await self._ensure(
                ref.name,
                lambda: self.admin.topic_exists(ref.name),
                lambda: self.admin.create_topic(ref.name),
            )
            if ref.subscription_name:
                await self._ensure(
                    ref.path,
                    lambda: self.admin.subscription_exists(ref.name, ref.subscription_name),
                    lambda: self.admin.create_subscription(ref.name, ref.subscription_name),
                )
        else:
            await self._ensure(
                ref.name,
                lambda: self.admin.queue_exists(ref.name),
                lambda: self.admin.create_queue(ref.name),
            )

    async def _ensure(
        self,
        path: str,
        exists: Callable[[], Awaitable[bool]],
        create: Callable[[], Awaitable[None]],
    ) -> None:
        try:
            if await exists():
                logger.debug(f"Entity exists: {path}")
                return

            logger.info(f"Creating entity: {path}")
            try:
                await create()
            except EntityAlreadyExistsError:
                logger.info(f"Entity created concurrently by another caller: {path}")
                return
            logger.info(f"Entity created: {path}")

        except TransportError as e:
            logger.error(f"Provisioning failed for {path}: {e}")
            raise ProvisioningError(f"Failed to provision '{path}': {e}", entity=path) from e


__all__ = ["EntityProvisioner"]
