# dualchat/nucleus/registry.py
import logging
from typing import Callable, Dict, List

from websockets.asyncio.server import ServerConnection

logger = logging.getLogger(__name__)

DisconnectListener = Callable[[str], None]


class ConnectionRegistry:
    """
    Maps user ids to their live websocket connection. The gateway is the only
    writer; the live channel adapter reads it to route sends.
    """

    def __init__(self):
        self._connections: Dict[str, ServerConnection] = {}
        self._disconnect_listeners: List[DisconnectListener] = []
        logger.info("ConnectionRegistry initialized.")

    def add_disconnect_listener(self, listener: DisconnectListener) -> None:
        self._disconnect_listeners.append(listener)

    def register(self, name: str, websocket: ServerConnection):
        previous = self._connections.get(name)
        if previous is not None and previous is not websocket:
            logger.info(f"[Registry] Connection '{name}' replaced by a newer one.")
        self._connections[name] = websocket
        logger.info(f"[Registry] Connection '{name}' registered.")

    def unregister(self, name: str, websocket: ServerConnection | None = None) -> ServerConnection | None:
        """
        Removes a connection. When `websocket` is given, only that exact
        connection is removed, so a stale socket closing late cannot evict
        its replacement.
        """
        current = self._connections.get(name)
        if current is None or (websocket is not None and current is not websocket):
            return None
        ws = self._connections.pop(name)
        logger.info(f"[Registry] Connection '{name}' unregistered.")
        for listener in list(self._disconnect_listeners):
            try:
                listener(name)
            except Exception as e:
                logger.error(f"[Registry] Disconnect listener failed for '{name}': {e}", exc_info=True)
        return ws

    def get(self, name: str) -> ServerConnection | None:
        return self._connections.get(name)

    def __len__(self) -> int:
        return len(self._connections)
