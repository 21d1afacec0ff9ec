# dualchat/electrons/validator.py
import logging
from typing import Callable, Awaitable

from websockets.asyncio.server import ServerConnection

from dualchat.electrons.base import BaseElectron
from dualchat.nucleus.errors import ValidationError
from dualchat.nucleus.live_channel import send_frame
from dualchat.nucleus.protocol import ChannelFrame
from dualchat.nucleus.requests import build_message

logger = logging.getLogger(__name__)

# Frames a client may send once registered. Everything else is server-to-client.
CLIENT_FRAME_TYPES = {"send_encrypted_message", "get_transport_status"}


class ValidationElectron(BaseElectron):
    """
    Rejects malformed frames before they reach the nucleus. A rejected frame
    is answered with an 'error' frame and the connection stays open.
    """

    async def process(
        self,
        frame: ChannelFrame,
        websocket: ServerConnection,
        next_electron: Callable[[], Awaitable[None]],
    ) -> None:
        try:
            self._validate(frame)
        except ValidationError as e:
            logger.warning(f"[ValidationElectron] Rejected frame {frame.frame_id} from '{frame.sender}': {e}")
            await send_frame(websocket, ChannelFrame(
                type="error",
                recipient=frame.sender,
                request_id=frame.frame_id,
                payload={"message": str(e), "error_kind": e.kind},
            ))
            return

        await next_electron()

    @staticmethod
    def _validate(frame: ChannelFrame) -> None:
        if frame.type not in CLIENT_FRAME_TYPES:
            raise ValidationError(f"frame type '{frame.type}' cannot be sent by a client")
        if frame.type == "send_encrypted_message":
            build_message(
                sender_id=frame.sender or "",
                recipient_id=frame.recipient or frame.payload.get("recipient_id"),
                payload_b64=frame.payload.get("encrypted_content"),
                mode=frame.payload.get("transport_preference"),
            )
