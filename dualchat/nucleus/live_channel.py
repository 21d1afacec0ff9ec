# dualchat/nucleus/live_channel.py
import asyncio
import logging

from websockets.exceptions import ConnectionClosed

from dualchat.nucleus.errors import ChannelSendFailed, ChannelUnavailable
from dualchat.nucleus.protocol import ChannelFrame
from dualchat.nucleus.registry import ConnectionRegistry

logger = logging.getLogger(__name__)


class LiveChannelAdapter:
    """
    Thin facade over the per-connection send primitive of the live channel.

    `send_to` distinguishes a recipient that is simply not connected
    (ChannelUnavailable) from a connection that failed mid-send
    (ChannelSendFailed).
    """

    def __init__(self, registry: ConnectionRegistry, send_timeout: float = 2.0, accepting: bool = False):
        self._registry = registry
        self.send_timeout = send_timeout
        # Flipped by the gateway once its listener is bound, and back on shutdown.
        self.accepting = accepting

    def connection_count(self) -> int:
        """Number of registered connections, or -1 while the listener is down."""
        if not self.accepting:
            return -1
        return len(self._registry)

    async def send_to(self, recipient_id: str, frame: ChannelFrame) -> None:
        websocket = self._registry.get(recipient_id)
        if websocket is None:
            raise ChannelUnavailable(f"recipient '{recipient_id}' is not connected")

        data = frame.model_dump_json()
        try:
            await asyncio.wait_for(websocket.send(data), timeout=self.send_timeout)
        except asyncio.TimeoutError as e:
            raise ChannelSendFailed(f"send to '{recipient_id}' timed out after {self.send_timeout}s") from e
        except ConnectionClosed as e:
            self._registry.unregister(recipient_id, websocket)
            raise ChannelSendFailed(f"connection to '{recipient_id}' closed during send (code: {e.rcvd.code if e.rcvd else 'n/a'})") from e
        except Exception as e:
            raise ChannelSendFailed(f"send to '{recipient_id}' failed: {type(e).__name__}: {e}") from e
        logger.debug(f"Frame {frame.frame_id} delivered to '{recipient_id}' over the live channel.")


async def send_frame(websocket, frame: ChannelFrame) -> bool:
    """Replies on a specific connection. A peer that already left is logged, not raised."""
    try:
        await websocket.send(frame.model_dump_json())
    except ConnectionClosed:
        logger.info(f"Could not reply with '{frame.type}': connection already closed.")
        return False
    return True
