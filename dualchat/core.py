# dualchat/core.py
import logging
from dataclasses import dataclass
from typing import Optional

import httpx

from dualchat.nucleus.content_store import ContentStoreAdapter, create_content_store
from dualchat.nucleus.dispatcher import DeliveryDispatcher
from dualchat.nucleus.errors import ContentStoreError
from dualchat.nucleus.health import TransportHealthMonitor
from dualchat.nucleus.live_channel import LiveChannelAdapter
from dualchat.nucleus.registry import ConnectionRegistry
from dualchat.settings import Settings

logger = logging.getLogger(__name__)


@dataclass
class DeliveryCore:
    """Every long-lived component of the delivery core, wired together once."""
    settings: Settings
    registry: ConnectionRegistry
    live_channel: LiveChannelAdapter
    content_store: ContentStoreAdapter
    monitor: TransportHealthMonitor
    dispatcher: DeliveryDispatcher

    async def check_store_connection(self) -> bool:
        """Asks the content store daemon for its version once, at startup."""
        if not self.content_store.enabled:
            return False
        try:
            info = await self.content_store.version()
        except ContentStoreError as e:
            logger.warning(f"IPFS service connection failed: {e}")
            return False
        logger.info(f"IPFS service connected (version {info.get('Version', 'unknown')}).")
        return True

    async def aclose(self) -> None:
        await self.monitor.stop()
        await self.content_store.aclose()


def build_core(
    settings: Settings,
    ipfs_transport: Optional[httpx.AsyncBaseTransport] = None,
    accepting: bool = False,
) -> DeliveryCore:
    """
    Builds the core from explicit settings. `ipfs_transport` swaps the HTTP
    transport under the content store client (tests pass an httpx.MockTransport).
    """
    registry = ConnectionRegistry()
    live_channel = LiveChannelAdapter(registry, send_timeout=settings.LIVE_SEND_TIMEOUT, accepting=accepting)
    content_store = create_content_store(settings, transport=ipfs_transport)
    monitor = TransportHealthMonitor(
        live_channel,
        content_store,
        interval=settings.HEALTH_INTERVAL,
        probe_timeout=settings.IPFS_TIMEOUT,
    )
    dispatcher = DeliveryDispatcher(
        live_channel,
        content_store,
        monitor,
        dispatch_timeout=settings.DISPATCH_TIMEOUT,
        publish_timeout=settings.PUBSUB_TIMEOUT,
    )
    if settings.DISPATCH_TIMEOUT < settings.IPFS_TIMEOUT + settings.PUBSUB_TIMEOUT:
        logger.warning(
            f"DISPATCH_TIMEOUT ({settings.DISPATCH_TIMEOUT}s) is shorter than IPFS_TIMEOUT + PUBSUB_TIMEOUT "
            f"({settings.IPFS_TIMEOUT + settings.PUBSUB_TIMEOUT}s); slow fallback deliveries will be cut off."
        )
    logger.info(f"Delivery core built (content store: {'enabled' if content_store.enabled else 'disabled'}).")
    return DeliveryCore(
        settings=settings,
        registry=registry,
        live_channel=live_channel,
        content_store=content_store,
        monitor=monitor,
        dispatcher=dispatcher,
    )
