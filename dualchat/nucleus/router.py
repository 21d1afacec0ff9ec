# dualchat/nucleus/router.py
import logging

from websockets.asyncio.server import ServerConnection

from dualchat.nucleus.dispatcher import DeliveryDispatcher, describe_transport_status
from dualchat.nucleus.errors import DeliveryError
from dualchat.nucleus.health import TransportHealthMonitor
from dualchat.nucleus.live_channel import send_frame
from dualchat.nucleus.protocol import ChannelFrame
from dualchat.nucleus.requests import build_message

logger = logging.getLogger(__name__)


class Router:
    """
    The Nucleus Router. The final destination in the pipeline.
    It turns validated client frames into delivery requests and status replies.
    """
    def __init__(self, dispatcher: DeliveryDispatcher, monitor: TransportHealthMonitor):
        self._dispatcher = dispatcher
        self._monitor = monitor

    async def route(self, frame: ChannelFrame, websocket: ServerConnection) -> None:
        if frame.type == "send_encrypted_message":
            await self._send_encrypted_message(frame, websocket)
        elif frame.type == "get_transport_status":
            await send_frame(websocket, ChannelFrame(
                type="transport_status",
                recipient=frame.sender,
                request_id=frame.frame_id,
                payload=describe_transport_status(self._monitor.snapshot()),
            ))
        else:
            logger.warning(f"Frame {frame.frame_id} of type '{frame.type}' has no route. Dropping.")

    async def _send_encrypted_message(self, frame: ChannelFrame, websocket: ServerConnection) -> None:
        try:
            message = build_message(
                sender_id=frame.sender or "",
                recipient_id=frame.recipient or frame.payload.get("recipient_id"),
                payload_b64=frame.payload.get("encrypted_content"),
                mode=frame.payload.get("transport_preference"),
            )
            self._dispatcher.check_admission(message.transport_mode)
        except DeliveryError as e:
            await send_frame(websocket, ChannelFrame(
                type="error",
                recipient=frame.sender,
                request_id=frame.frame_id,
                payload={"message": str(e), "error_kind": e.kind},
            ))
            return

        result = await self._dispatcher.deliver(message)
        await send_frame(websocket, ChannelFrame(
            type="message_sent",
            recipient=frame.sender,
            request_id=frame.frame_id,
            payload={
                "message_id": str(result.message_id),
                "timestamp": message.created_at.isoformat(),
                **result.model_dump(mode="json", exclude={"message_id"}),
            },
        ))
