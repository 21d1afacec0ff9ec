# dualchat/nucleus/dispatcher.py
import asyncio
import base64
import logging
from typing import Any, Awaitable, Dict

from dualchat.nucleus.content_store import ContentStoreAdapter
from dualchat.nucleus.envelope import build_envelope, pubsub_topic
from dualchat.nucleus.errors import DeliveryError, StoreUnavailable
from dualchat.nucleus.health import HealthSnapshot, TransportHealthMonitor
from dualchat.nucleus.live_channel import LiveChannelAdapter
from dualchat.nucleus.protocol import (
    FALLBACK,
    PRIMARY,
    TRANSPORTS,
    ChannelFrame,
    DeliveryResult,
    HealthState,
    Message,
    Recommendation,
    TransportMode,
    TransportOutcome,
)

logger = logging.getLogger(__name__)


def recommend(primary_ok: bool, fallback_ok: bool) -> Recommendation:
    """
    Derives the transport recommendation from the two health flags.
    The checks run in this order and the first match wins.
    """
    if primary_ok and fallback_ok:
        return Recommendation.PRIMARY
    if primary_ok:
        # Exactly one transport is up and it is the live channel.
        return Recommendation.DEGRADED
    if fallback_ok:
        return Recommendation.FALLBACK
    return Recommendation.DISCONNECTED


def _failed(error: DeliveryError | Exception, attempted: bool = True) -> TransportOutcome:
    kind = error.kind if isinstance(error, DeliveryError) else type(error).__name__
    return TransportOutcome(attempted=attempted, succeeded=False, detail=str(error), error=str(error), error_kind=kind)


class DeliveryDispatcher:
    """
    The selection policy. Runs the transports a message asks for, records
    each transport's outcome on its own, and merges them into one result.

    A failure on one transport is never raised across to the other: each
    branch turns its own errors into a TransportOutcome.
    """

    def __init__(
        self,
        live_channel: LiveChannelAdapter,
        content_store: ContentStoreAdapter,
        monitor: TransportHealthMonitor,
        dispatch_timeout: float = 20.0,
        publish_timeout: float = 2.0,
    ):
        self._live_channel = live_channel
        self._content_store = content_store
        self._monitor = monitor
        self.dispatch_timeout = dispatch_timeout
        self.publish_timeout = publish_timeout
        logger.info(f"DeliveryDispatcher initialized (dispatch timeout: {dispatch_timeout}s).")

    def check_admission(self, mode: TransportMode) -> None:
        """
        Rejects a fallback-only request up front when the content store is
        known to be unavailable. Primary and dual requests are always admitted.
        """
        if mode != TransportMode.FALLBACK:
            return
        if not self._content_store.enabled:
            raise StoreUnavailable("content store disabled")
        health = self._monitor.snapshot().fallback
        if health.state == HealthState.UNHEALTHY:
            raise StoreUnavailable(health.error or "content store unavailable")

    async def deliver(self, message: Message) -> DeliveryResult:
        mode = message.transport_mode
        branches: Dict[str, Awaitable[TransportOutcome]] = {}
        if mode in (TransportMode.PRIMARY, TransportMode.DUAL):
            branches[PRIMARY] = self._deliver_primary(message)
        if mode in (TransportMode.FALLBACK, TransportMode.DUAL):
            branches[FALLBACK] = self._deliver_fallback(message)

        outcomes: Dict[str, TransportOutcome] = {name: TransportOutcome() for name in TRANSPORTS}
        tasks = {name: asyncio.ensure_future(coro) for name, coro in branches.items()}
        done, pending = await asyncio.wait(tasks.values(), timeout=self.dispatch_timeout)

        for name, task in tasks.items():
            if task in done:
                outcomes[name] = task.result()
            else:
                task.cancel()
                outcomes[name] = TransportOutcome(
                    attempted=True,
                    succeeded=False,
                    detail="timed out",
                    error=f"{name} transport did not finish within {self.dispatch_timeout}s",
                    error_kind="Timeout",
                )
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
            logger.warning(f"Message {message.id}: {len(pending)} transport(s) cut off by the dispatch timeout.")

        result = DeliveryResult(message_id=message.id, per_transport=outcomes, timed_out=bool(pending))
        logger.info(
            f"Message {message.id} ({mode.value}) to '{message.recipient_id}': "
            f"primary={outcomes[PRIMARY].succeeded} fallback={outcomes[FALLBACK].succeeded}"
        )
        return result

    async def _deliver_primary(self, message: Message) -> TransportOutcome:
        frame = ChannelFrame(
            type="new_encrypted_message",
            sender=message.sender_id,
            recipient=message.recipient_id,
            timestamp=message.created_at,
            payload={
                "message_id": str(message.id),
                "sender_id": message.sender_id,
                "recipient_id": message.recipient_id,
                "encrypted_content": base64.b64encode(message.payload).decode("ascii"),
                "transport": PRIMARY,
            },
        )
        try:
            await self._live_channel.send_to(message.recipient_id, frame)
        except DeliveryError as e:
            logger.info(f"Live channel delivery of {message.id} failed: {e.kind}: {e}")
            return _failed(e)
        except Exception as e:
            logger.error(f"Unexpected live channel error for {message.id}: {e}", exc_info=True)
            return _failed(e)
        return TransportOutcome(attempted=True, succeeded=True, detail="delivered")

    async def _deliver_fallback(self, message: Message) -> TransportOutcome:
        store = self._content_store
        if not store.enabled:
            return _failed(StoreUnavailable(getattr(store, "reason", "content store disabled")), attempted=False)

        envelope = build_envelope(message)
        try:
            cid = await store.add_json(envelope.model_dump(), filename="envelope.json")
        except DeliveryError as e:
            logger.warning(f"Content store add for {message.id} failed: {e.kind}: {e}")
            return _failed(e)
        except Exception as e:
            logger.error(f"Unexpected content store error for {message.id}: {e}", exc_info=True)
            return _failed(e)

        # Publishing only announces the envelope; the add above is what must succeed.
        try:
            published = await asyncio.wait_for(
                store.publish(pubsub_topic(message.recipient_id), envelope.to_bytes()),
                timeout=self.publish_timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(f"Pub/sub announce for {message.id} timed out after {self.publish_timeout}s")
            published = False
        except Exception as e:
            logger.warning(f"Pub/sub announce for {message.id} failed: {e}")
            published = False

        urls = store.gateway_urls(cid)
        local_url = store.local_gateway_url(cid)
        if local_url:
            urls.append(local_url)
        return TransportOutcome(
            attempted=True,
            succeeded=True,
            detail=cid,
            cid=cid,
            gateway_urls=urls,
            published=published,
        )


def describe_transport_status(snapshot: HealthSnapshot) -> Dict[str, Any]:
    """The read-only view served to status callers: recommendation plus both snapshots."""
    return {
        "recommendation": recommend(snapshot.primary.available, snapshot.fallback.available).value,
        PRIMARY: snapshot.primary.model_dump(mode="json"),
        FALLBACK: snapshot.fallback.model_dump(mode="json"),
    }
