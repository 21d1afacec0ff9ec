# dualchat/electrons/base.py
from abc import ABC, abstractmethod
from typing import Callable, Awaitable

from websockets.asyncio.server import ServerConnection

from dualchat.nucleus.protocol import ChannelFrame


class BaseElectron(ABC):
    """
    Abstract base class for all "Electrons" (middleware components).

    An Electron is a processing unit in the pipeline that can inspect, reject,
    or halt an inbound live-channel frame before it reaches the Nucleus
    (the router that hands it to the delivery core).
    """

    @abstractmethod
    async def process(
        self,
        frame: ChannelFrame,
        websocket: ServerConnection,
        next_electron: Callable[[], Awaitable[None]],
    ) -> None:
        """
        Processes an inbound frame.

        Args:
            frame: The frame to be processed. Its `sender` has already been
                   set to the user the connection is registered as.
            websocket: The connection the frame arrived on, allowing for a
                       direct reply (e.g., an immediate error frame).
            next_electron: An awaitable callable that invokes the next electron
                           in the pipeline. If it is not awaited, the chain
                           is halted.
        """
        pass
