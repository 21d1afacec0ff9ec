# dualchat/electrons/logger.py
import logging
from typing import Callable, Awaitable

from websockets.asyncio.server import ServerConnection

from dualchat.electrons.base import BaseElectron
from dualchat.nucleus.protocol import ChannelFrame

logger = logging.getLogger(__name__)


class LoggerElectron(BaseElectron):
    """
    Logs the routing fields of each inbound frame. Payloads are opaque and
    never logged.
    """

    async def process(
        self,
        frame: ChannelFrame,
        websocket: ServerConnection,
        next_electron: Callable[[], Awaitable[None]],
    ) -> None:
        logger.info(
            f"[LoggerElectron] Processing frame {frame.frame_id} "
            f"(type: {frame.type}, from: {frame.sender}, to: {frame.recipient}) "
            f"for client {getattr(websocket, 'remote_address', None)}"
        )
        await next_electron()
