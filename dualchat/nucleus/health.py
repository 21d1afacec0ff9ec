# dualchat/nucleus/health.py
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Optional

from dualchat.nucleus.content_store import ContentStoreAdapter
from dualchat.nucleus.live_channel import LiveChannelAdapter
from dualchat.nucleus.protocol import PRIMARY, FALLBACK, HealthState, TransportHealth

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class HealthSnapshot:
    """The pair of transport health records, published and read as one unit."""
    primary: TransportHealth = field(default_factory=TransportHealth.unknown)
    fallback: TransportHealth = field(default_factory=TransportHealth.unknown)


class TransportHealthMonitor:
    """
    Polls both transports on an interval and keeps the latest snapshot.

    The monitor is the only writer. Each poll builds a brand new snapshot and
    publishes it with a single attribute assignment, so readers never see a
    half-updated pair and never need a lock.
    """

    def __init__(
        self,
        live_channel: LiveChannelAdapter,
        content_store: ContentStoreAdapter,
        interval: float = 30.0,
        probe_timeout: float = 15.0,
    ):
        self._live_channel = live_channel
        self._content_store = content_store
        self.interval = interval
        self.probe_timeout = probe_timeout
        self._snapshot = HealthSnapshot()
        self._task: Optional[asyncio.Task] = None
        logger.info(f"TransportHealthMonitor initialized (interval: {interval}s).")

    def snapshot(self) -> HealthSnapshot:
        return self._snapshot

    async def check_now(self) -> HealthSnapshot:
        """Runs one poll of both transports and publishes the result."""
        primary, fallback = await asyncio.gather(
            self._probe_live_channel(),
            self._probe_content_store(),
        )
        previous = self._snapshot
        self._snapshot = HealthSnapshot(primary=primary, fallback=fallback)
        self._log_transition(PRIMARY, previous.primary, primary)
        self._log_transition(FALLBACK, previous.fallback, fallback)
        return self._snapshot

    def start(self) -> asyncio.Task:
        if self._task is None or self._task.done():
            self._task = asyncio.create_task(self._run(), name="transport-health-monitor")
        return self._task

    async def stop(self) -> None:
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("TransportHealthMonitor stopped.")

    async def _run(self) -> None:
        while True:
            try:
                await self.check_now()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"Health poll failed unexpectedly: {e}", exc_info=True)
            await asyncio.sleep(self.interval)

    async def _probe_live_channel(self) -> TransportHealth:
        try:
            count = self._live_channel.connection_count()
        except Exception as e:
            return TransportHealth.unhealthy(f"{type(e).__name__}: {e}")
        if count < 0:
            return TransportHealth.unhealthy("live channel is not accepting connections")
        return TransportHealth.healthy({"connections": count})

    async def _probe_content_store(self) -> TransportHealth:
        store = self._content_store
        try:
            info, peers = await asyncio.wait_for(
                asyncio.gather(store.node_info(), store.peers()),
                timeout=self.probe_timeout,
            )
        except asyncio.TimeoutError:
            return TransportHealth.unhealthy(f"StoreUnavailable: health probe timed out after {self.probe_timeout}s")
        except Exception as e:
            return TransportHealth.unhealthy(f"{type(e).__name__}: {e}")
        return TransportHealth.healthy({
            "node_id": info.get("ID"),
            "agent_version": info.get("AgentVersion"),
            "peer_count": len(peers),
            "pubsub_enabled": store.pubsub_enabled,
        })

    @staticmethod
    def _log_transition(name: str, before: TransportHealth, after: TransportHealth) -> None:
        if before.state == after.state:
            return
        if after.state == HealthState.UNHEALTHY:
            logger.warning(f"[Health] Transport '{name}' is unhealthy: {after.error}")
        else:
            logger.info(f"[Health] Transport '{name}' is {after.state.value}.")
