# dualchat/nucleus/content_store.py
import base64
import json
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

import httpx

from dualchat.nucleus.envelope import gateway_url, gateway_urls
from dualchat.nucleus.errors import NotFound, StoreRejected, StoreUnavailable
from dualchat.nucleus.protocol import canonical_json
from dualchat.settings import Settings

logger = logging.getLogger(__name__)

# Fragments the IPFS daemon uses in error bodies for content it cannot resolve.
_NOT_FOUND_MARKERS = ("not found", "no link named", "could not find", "invalid path")


class ContentStoreAdapter(ABC):
    """
    Narrow interface over the content-addressed fallback network.

    Calls are fail-fast: a single failed call is a single failure, and retry
    policy (if any) belongs to the caller.
    """
    enabled: bool = True

    def __init__(self, gateways: List[str], local_gateway: str = "", pubsub_enabled: bool = False):
        self._gateways = list(gateways)
        self._local_gateway = local_gateway
        self.pubsub_enabled = pubsub_enabled

    @abstractmethod
    async def add(self, data: bytes, filename: str = "payload.bin", pin: bool = True) -> str:
        pass

    @abstractmethod
    async def fetch(self, cid: str) -> bytes:
        pass

    @abstractmethod
    async def publish(self, topic: str, data: bytes) -> bool:
        pass

    @abstractmethod
    async def version(self) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def node_info(self) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def peers(self) -> List[str]:
        pass

    async def add_json(self, data: Any, filename: str = "data.json") -> str:
        return await self.add(canonical_json(data), filename=filename)

    def gateway_urls(self, cid: str) -> List[str]:
        """Public retrieval URLs for a CID, one per configured gateway."""
        return gateway_urls(self._gateways, cid)

    def local_gateway_url(self, cid: str) -> Optional[str]:
        if not self._local_gateway:
            return None
        return gateway_url(self._local_gateway, cid)

    @property
    def local_gateway(self) -> str:
        return self._local_gateway

    async def aclose(self) -> None:
        pass


class IpfsContentStore(ContentStoreAdapter):
    """
    Talks to an IPFS (kubo) daemon through its HTTP RPC API. Every endpoint
    of that API is a POST. One httpx.AsyncClient is shared by all in-flight
    requests.
    """

    def __init__(
        self,
        api_url: str,
        timeout: float = 15.0,
        gateways: Optional[List[str]] = None,
        local_gateway: str = "",
        pubsub_enabled: bool = False,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(gateways or [], local_gateway, pubsub_enabled)
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self._client = httpx.AsyncClient(
            base_url=self.api_url,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )
        logger.info(f"IpfsContentStore initialized for {self.api_url} (timeout: {timeout}s).")

    async def _post(self, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.post(path, **kwargs)
        except httpx.TimeoutException as e:
            raise StoreUnavailable(f"content store timed out on {path} after {self.timeout}s") from e
        except httpx.TransportError as e:
            raise StoreUnavailable(f"content store unreachable: {type(e).__name__}: {e}") from e
        if response.is_success:
            return response
        message = _error_message(response)
        if path == "/cat" and (response.status_code == 404 or _looks_like_not_found(message)):
            raise NotFound(message)
        raise StoreRejected(f"{path} rejected with HTTP {response.status_code}: {message}")

    async def add(self, data: bytes, filename: str = "payload.bin", pin: bool = True) -> str:
        response = await self._post(
            "/add",
            params={"pin": "true" if pin else "false", "progress": "false"},
            files={"file": (filename or "payload.bin", data, "application/octet-stream")},
        )
        cid = _parse_add_response(response.text)
        logger.info(f"Added {len(data)} bytes to content store: {cid}")
        return cid

    async def fetch(self, cid: str) -> bytes:
        response = await self._post("/cat", params={"arg": cid})
        return response.content

    async def publish(self, topic: str, data: bytes) -> bool:
        """
        Fire-and-forget publish. Never raises: pub/sub is an optional
        enhancement on top of `add`, so failures are logged and reported
        through the return value only.
        """
        if not self.pubsub_enabled:
            logger.debug(f"Pub/sub disabled; not publishing to {topic}")
            return False
        try:
            await self._post(
                "/pubsub/pub",
                params={"arg": _multibase_topic(topic)},
                files={"file": ("data", data, "application/octet-stream")},
            )
        except (StoreUnavailable, StoreRejected) as e:
            logger.warning(f"Pub/sub publish to {topic} failed: {e}")
            return False
        logger.info(f"Published to {topic}")
        return True

    async def version(self) -> Dict[str, Any]:
        response = await self._post("/version")
        return response.json()

    async def node_info(self) -> Dict[str, Any]:
        response = await self._post("/id")
        return response.json()

    async def peers(self) -> List[str]:
        response = await self._post("/swarm/peers")
        body = response.json()
        return [p.get("Peer", "") for p in (body.get("Peers") or [])]

    async def aclose(self) -> None:
        await self._client.aclose()
        logger.info("IpfsContentStore cleanup completed.")


class DisabledContentStore(ContentStoreAdapter):
    """
    Stands in when no content store could be configured. Required operations
    fail with StoreUnavailable; publish is a logged no-op.
    """
    enabled = False

    def __init__(self, reason: str = "content store disabled"):
        super().__init__([], "", False)
        self.reason = reason

    async def add(self, data: bytes, filename: str = "payload.bin", pin: bool = True) -> str:
        raise StoreUnavailable(self.reason)

    async def fetch(self, cid: str) -> bytes:
        raise StoreUnavailable(self.reason)

    async def publish(self, topic: str, data: bytes) -> bool:
        logger.debug(f"Content store disabled; not publishing to {topic}")
        return False

    async def version(self) -> Dict[str, Any]:
        raise StoreUnavailable(self.reason)

    async def node_info(self) -> Dict[str, Any]:
        raise StoreUnavailable(self.reason)

    async def peers(self) -> List[str]:
        raise StoreUnavailable(self.reason)


def create_content_store(
    settings: Settings,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ContentStoreAdapter:
    """
    Builds the content store adapter. Never raises: any construction failure
    yields a DisabledContentStore and the rest of the system keeps running.
    """
    if not settings.content_store_enabled:
        logger.warning("IPFS_API_URL is empty; content store disabled.")
        return DisabledContentStore("content store disabled")
    try:
        return IpfsContentStore(
            api_url=settings.IPFS_API_URL,
            timeout=settings.IPFS_TIMEOUT,
            gateways=settings.gateway_list,
            local_gateway=settings.IPFS_LOCAL_GATEWAY,
            pubsub_enabled=settings.IPFS_PUBSUB_ENABLE,
            transport=transport,
        )
    except Exception as e:
        logger.warning(f"Content store not available: {e}")
        return DisabledContentStore(f"content store unavailable: {e}")


def _parse_add_response(text: str) -> str:
    """
    /add answers with NDJSON, one object per added entry. The last object
    carrying a Hash is the root we asked for.
    """
    cid = ""
    for line in text.splitlines():
        line = line.strip()
        if not line:
            continue
        try:
            obj = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(obj, dict) and obj.get("Hash"):
            cid = str(obj["Hash"]).strip()
    if not cid:
        raise StoreRejected(f"add response carried no hash: {text[:200]!r}")
    return cid


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict) and body.get("Message"):
        return str(body["Message"])
    return response.text[:200]


def _looks_like_not_found(message: str) -> bool:
    lowered = message.lower()
    return any(marker in lowered for marker in _NOT_FOUND_MARKERS)


def _multibase_topic(topic: str) -> str:
    # kubo expects pub/sub topics as multibase base64url ("u" prefix, no padding).
    return "u" + base64.urlsafe_b64encode(topic.encode("utf-8")).decode("ascii").rstrip("=")
