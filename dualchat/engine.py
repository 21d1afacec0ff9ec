# dualchat/engine.py
import json
import logging
from typing import List, Callable, Awaitable

import pydantic
from websockets.asyncio.server import ServerConnection

from dualchat.electrons.base import BaseElectron
from dualchat.nucleus.live_channel import send_frame
from dualchat.nucleus.protocol import ChannelFrame

logger = logging.getLogger(__name__)


class PipelineEngine:
    """
    The engine that runs the middleware pipeline for inbound live-channel frames.

    It takes a list of Electrons (middleware) and a final Nucleus handler,
    and chains them together to process each frame.
    """

    def __init__(
        self,
        electrons: List[BaseElectron],
        nucleus_handler: Callable[[ChannelFrame, ServerConnection], Awaitable[None]],
    ):
        self._electrons = electrons
        self._nucleus_handler = nucleus_handler
        logger.info(f"PipelineEngine initialized with {len(self._electrons)} electrons.")

    async def process_message(self, raw: str | bytes, websocket: ServerConnection, sender: str) -> None:
        """
        Parses one raw frame from a registered connection and runs it through
        the pipeline. The frame's `sender` is always overwritten with the name
        the connection registered under.
        """
        try:
            data = json.loads(raw)
            frame = ChannelFrame.model_validate(data)
        except (json.JSONDecodeError, UnicodeDecodeError, pydantic.ValidationError) as e:
            logger.warning(f"Received malformed frame from '{sender}': {e}")
            await send_frame(websocket, ChannelFrame(
                type="error",
                recipient=sender,
                payload={"message": "malformed frame", "error_kind": "ValidationError"},
            ))
            return

        frame = frame.model_copy(update={"sender": sender})
        try:
            await self._execute_pipeline(frame, websocket)
        except Exception as e:
            logger.error(f"Error processing frame {frame.frame_id}: {e}", exc_info=True)
            await send_frame(websocket, ChannelFrame(
                type="error",
                recipient=sender,
                request_id=frame.frame_id,
                payload={"message": "Failed to send message"},
            ))

    async def _execute_pipeline(self, frame: ChannelFrame, websocket: ServerConnection) -> None:
        """
        Constructs and executes the chain of electron calls for a single frame.
        """
        # Start with the nucleus handler as the final step in the chain.
        async def nucleus():
            await self._nucleus_handler(frame, websocket)

        next_handler = nucleus

        # Wrap the handlers in reverse order. Each electron gets the *next*
        # handler in the chain as an argument.
        for electron in reversed(self._electrons):
            def create_closure(current_electron, next_step):
                async def closure():
                    await current_electron.process(frame, websocket, next_step)
                return closure

            next_handler = create_closure(electron, next_handler)

        await next_handler()
