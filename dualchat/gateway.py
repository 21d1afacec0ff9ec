# dualchat/gateway.py
import asyncio
import json
import logging

import pydantic
from websockets.asyncio.server import serve, ServerConnection
from websockets.exceptions import ConnectionClosed

from dualchat.engine import PipelineEngine
from dualchat.nucleus.dispatcher import describe_transport_status
from dualchat.nucleus.health import TransportHealthMonitor
from dualchat.nucleus.live_channel import LiveChannelAdapter, send_frame
from dualchat.nucleus.protocol import ChannelFrame
from dualchat.nucleus.registry import ConnectionRegistry

logger = logging.getLogger(__name__)

MAX_FRAME_BYTES = 10 * 1024 * 1024


class ClientGateway:
    """
    The live channel's entry point for clients. It listens for websocket
    connections, registers each under its user id, and funnels the frames
    that follow into the pipeline engine.
    """
    def __init__(
        self,
        host: str,
        port: int,
        registry: ConnectionRegistry,
        live_channel: LiveChannelAdapter,
        pipeline: PipelineEngine,
        monitor: TransportHealthMonitor,
    ):
        self.host = host
        self.port = port
        self._registry = registry
        self._live_channel = live_channel
        self._pipeline = pipeline
        self._monitor = monitor
        self.ready = asyncio.Event()
        registry.add_disconnect_listener(self._on_disconnect)
        logger.info("ClientGateway initialized.")

    def _on_disconnect(self, user_id: str) -> None:
        logger.info(f"User disconnected: '{user_id}'")

    async def start(self):
        """Starts the websocket server and serves until cancelled."""
        logger.info(f"ClientGateway starting on {self.host}:{self.port}")
        async with serve(
            self.handle_connection,
            self.host,
            self.port,
            max_size=MAX_FRAME_BYTES,
        ) as server:
            sockets = server.sockets or []
            if sockets:
                self.port = sockets[0].getsockname()[1]
            self._live_channel.accepting = True
            self.ready.set()
            try:
                await asyncio.Future()  # Run forever
            finally:
                self._live_channel.accepting = False
                self.ready.clear()
                logger.info("ClientGateway stopped accepting connections.")

    async def handle_connection(self, websocket: ServerConnection):
        """
        Manages a single client connection. The first frame must be a
        'register' frame naming the user; anything else closes the connection.
        """
        user_id = None
        try:
            message = await websocket.recv()
            frame = ChannelFrame.model_validate(json.loads(message))

            if frame.type == "register" and frame.sender:
                user_id = frame.sender
                self._registry.register(user_id, websocket)
                logger.info(f"User connected: '{user_id}' from {websocket.remote_address}")
                await send_frame(websocket, ChannelFrame(
                    type="transport_status",
                    recipient=user_id,
                    request_id=frame.frame_id,
                    payload=describe_transport_status(self._monitor.snapshot()),
                ))

                async for message in websocket:
                    await self._pipeline.process_message(message, websocket, user_id)
            else:
                logger.warning(f"First frame from client {websocket.remote_address} was not 'register'.")
                await websocket.close(1008, "Registration required.")

        except (ConnectionClosed, json.JSONDecodeError, UnicodeDecodeError, pydantic.ValidationError) as e:
            logger.warning(f"Client connection from {websocket.remote_address} ended. Error: {e}")
        finally:
            if user_id:
                self._registry.unregister(user_id, websocket)
