"""Shared test fixtures."""

import asyncio
import hashlib
import json
from typing import Any, Dict, List, Optional, Tuple

import httpx
import pytest
from websockets.exceptions import ConnectionClosed

from dualchat.core import DeliveryCore, build_core
from dualchat.settings import Settings

IPFS_API = "http://ipfs.test:5001/api/v0"


def _fake_cid(data: bytes) -> str:
    return "bafy" + hashlib.sha256(data).hexdigest()[:52]


def _file_part(request: httpx.Request) -> bytes:
    """Pulls the bytes of the 'file' field out of a multipart request body."""
    content_type = request.headers["content-type"]
    boundary = content_type.split("boundary=", 1)[1].encode()
    for part in request.content.split(b"--" + boundary):
        if b'name="file"' not in part:
            continue
        _, body = part.split(b"\r\n\r\n", 1)
        return body[:-2] if body.endswith(b"\r\n") else body
    raise AssertionError("no file part in request")


class FakeIpfsDaemon:
    """
    An in-memory stand-in for the IPFS HTTP API. Content addressed: the CID
    is derived from a hash of the added bytes.
    """

    def __init__(self) -> None:
        self.blobs: Dict[str, bytes] = {}
        self.add_calls = 0
        self.published: List[Tuple[str, bytes]] = []
        self.down = False
        self.reject = False
        self.pubsub_fails = False
        self.hang: Optional[float] = None
        self.slow_paths: Dict[str, float] = {}
        self.peers = ["12D3KooWPeerA", "12D3KooWPeerB"]

    async def handler(self, request: httpx.Request) -> httpx.Response:
        if self.hang is not None:
            await asyncio.sleep(self.hang)
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path.removeprefix("/api/v0")
        if path in self.slow_paths:
            await asyncio.sleep(self.slow_paths[path])
        if self.reject:
            return httpx.Response(500, json={"Message": "operation rejected", "Code": 0, "Type": "error"})

        if path == "/add":
            data = _file_part(request)
            cid = _fake_cid(data)
            self.add_calls += 1
            self.blobs[cid] = data
            line = json.dumps({"Name": cid, "Hash": cid, "Size": str(len(data))})
            return httpx.Response(200, text=line + "\n")
        if path == "/cat":
            cid = request.url.params.get("arg")
            if cid not in self.blobs:
                return httpx.Response(500, json={"Message": "block was not found locally (offline)", "Code": 0, "Type": "error"})
            return httpx.Response(200, content=self.blobs[cid])
        if path == "/pubsub/pub":
            if self.pubsub_fails:
                return httpx.Response(500, json={"Message": "experimental pubsub feature not enabled", "Code": 0, "Type": "error"})
            self.published.append((request.url.params.get("arg"), _file_part(request)))
            return httpx.Response(200)
        if path == "/id":
            return httpx.Response(200, json={"ID": "12D3KooWNodeSelf", "AgentVersion": "kubo/0.29.0"})
        if path == "/swarm/peers":
            return httpx.Response(200, json={"Peers": [{"Peer": p} for p in self.peers]})
        if path == "/version":
            return httpx.Response(200, json={"Version": "0.29.0"})
        return httpx.Response(404, text="404 page not found")


class FakeWebSocket:
    """Records frames sent to it; can be told to fail or stall."""

    def __init__(self, remote_address: Any = ("127.0.0.1", 50000)) -> None:
        self.remote_address = remote_address
        self.sent: List[Dict[str, Any]] = []
        self.closed = False
        self.hang: Optional[float] = None

    async def send(self, data: str) -> None:
        if self.hang is not None:
            await asyncio.sleep(self.hang)
        if self.closed:
            raise ConnectionClosed(None, None)
        self.sent.append(json.loads(data))

    async def close(self, code: int = 1000, reason: str = "") -> None:
        self.closed = True

    def frames(self, type: str) -> List[Dict[str, Any]]:
        return [f for f in self.sent if f["type"] == type]


@pytest.fixture
def settings() -> Settings:
    return Settings(
        _env_file=None,
        IPFS_API_URL=IPFS_API,
        IPFS_PUBSUB_ENABLE=True,
        IPFS_GATEWAYS="https://ipfs.io/,https://dweb.link",
        IPFS_LOCAL_GATEWAY="http://localhost:8080",
        HEALTH_INTERVAL=0.05,
        LIVE_SEND_TIMEOUT=0.2,
        DISPATCH_TIMEOUT=2.0,
    )


@pytest.fixture
def ipfs() -> FakeIpfsDaemon:
    return FakeIpfsDaemon()


@pytest.fixture
async def core(settings: Settings, ipfs: FakeIpfsDaemon) -> DeliveryCore:
    """A fully wired core talking to the fake daemon, cleaned up after use."""
    c = build_core(settings, ipfs_transport=httpx.MockTransport(ipfs.handler), accepting=True)
    yield c  # type: ignore[misc]
    await c.aclose()
