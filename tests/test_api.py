"""Tests for the HTTP surface, driven in-process through the ASGI app."""

import httpx
import pytest

from dualchat.api import create_app
from dualchat.core import DeliveryCore, build_core
from dualchat.settings import Settings

from conftest import FakeIpfsDaemon, FakeWebSocket


@pytest.fixture
async def client(core: DeliveryCore) -> httpx.AsyncClient:
    app = create_app(core)
    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
        yield c  # type: ignore[misc]


class TestDeliver:
    async def test_scenario_a_fallback(self, client: httpx.AsyncClient, core: DeliveryCore):
        await core.monitor.check_now()
        response = await client.post("/api/deliver", json={"recipient_id": "u1", "payload": "SGVsbG8=", "mode": "fallback"})

        assert response.status_code == 200
        body = response.json()
        cid = body["per_transport"]["fallback"]["cid"]
        assert cid
        assert body["cid"] == cid
        assert body["gateway_urls"]
        assert all(url.endswith(cid) for url in body["gateway_urls"])
        assert body["succeeded"] is True
        assert body["message_id"]

    async def test_scenario_b_store_unreachable_mid_request(self, client: httpx.AsyncClient, ipfs: FakeIpfsDaemon):
        # The monitor has not seen the outage yet, so the request is admitted.
        ipfs.down = True
        response = await client.post("/api/deliver", json={"recipient_id": "u1", "payload": "SGVsbG8=", "mode": "fallback"})

        assert response.status_code == 200
        fallback = response.json()["per_transport"]["fallback"]
        assert fallback["succeeded"] is False
        assert fallback["error_kind"] == "StoreUnavailable"
        assert fallback["error"]

    async def test_fallback_refused_when_store_known_down(self, client: httpx.AsyncClient, core: DeliveryCore, ipfs: FakeIpfsDaemon):
        ipfs.down = True
        await core.monitor.check_now()
        response = await client.post("/api/deliver", json={"recipient_id": "u1", "payload": "SGVsbG8=", "mode": "fallback"})

        assert response.status_code == 503
        assert "unavailable" in response.json()["detail"]["error"]

    async def test_dual_still_admitted_when_store_down(self, client: httpx.AsyncClient, core: DeliveryCore, ipfs: FakeIpfsDaemon):
        ipfs.down = True
        await core.monitor.check_now()
        core.registry.register("u1", FakeWebSocket())  # type: ignore[arg-type]
        response = await client.post("/api/deliver", json={"recipient_id": "u1", "payload": "SGVsbG8=", "mode": "dual"})

        assert response.status_code == 200
        body = response.json()
        assert body["per_transport"]["primary"]["succeeded"] is True
        assert body["per_transport"]["fallback"]["succeeded"] is False

    async def test_scenario_c_primary_not_connected(self, client: httpx.AsyncClient):
        response = await client.post("/api/deliver", json={"recipient_id": "u1", "payload": "SGVsbG8=", "mode": "primary"})

        assert response.status_code == 200
        primary = response.json()["per_transport"]["primary"]
        assert primary["succeeded"] is False
        assert primary["error_kind"] == "ChannelUnavailable"
        assert "not connected" in primary["detail"]

    async def test_missing_payload(self, client: httpx.AsyncClient, ipfs: FakeIpfsDaemon):
        response = await client.post("/api/deliver", json={"recipient_id": "u1", "mode": "fallback"})
        assert response.status_code == 400
        assert ipfs.add_calls == 0

    async def test_invalid_mode(self, client: httpx.AsyncClient):
        response = await client.post("/api/deliver", json={"recipient_id": "u1", "payload": "SGVsbG8=", "mode": "smoke-signals"})
        assert response.status_code == 400

    async def test_sender_defaults(self, client: httpx.AsyncClient):
        response = await client.post("/api/deliver", json={"recipient_id": "u1", "payload": "SGVsbG8=", "mode": "fallback"})
        assert response.json()["sender_id"] == "demo-user"

    async def test_legacy_messages_endpoint(self, client: httpx.AsyncClient):
        response = await client.post(
            "/api/messages",
            json={"recipient_id": "u1", "encrypted_content": "SGVsbG8=", "transport_mode": "ipfs"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["transport_mode"] == "fallback"
        assert body["cid"]


class TestStatus:
    async def test_transport_status_before_first_poll(self, client: httpx.AsyncClient):
        response = await client.get("/api/transport/status")
        assert response.status_code == 200
        body = response.json()
        assert body["recommendation"] == "disconnected"
        assert body["primary"]["state"] == "unknown"

    async def test_transport_status_all_healthy(self, client: httpx.AsyncClient, core: DeliveryCore):
        await core.monitor.check_now()
        body = (await client.get("/api/transport/status")).json()
        assert body["recommendation"] == "primary"
        assert body["fallback"]["detail"]["peer_count"] == 2

    async def test_transport_status_store_down(self, client: httpx.AsyncClient, core: DeliveryCore, ipfs: FakeIpfsDaemon):
        ipfs.down = True
        await core.monitor.check_now()
        response = await client.get("/api/transport/status")
        assert response.status_code == 200
        body = response.json()
        assert body["recommendation"] == "degraded"
        assert body["fallback"]["error"]
        assert body["fallback"]["detail"] == {}

    async def test_content_status(self, client: httpx.AsyncClient, core: DeliveryCore):
        await core.monitor.check_now()
        body = (await client.get("/api/ipfs/status")).json()
        assert body["status"] == "healthy"
        assert body["node_id"] == "12D3KooWNodeSelf"
        assert body["peer_count"] == 2
        assert body["gateway"] == "http://localhost:8080"

    async def test_content_status_disabled(self):
        core = build_core(Settings(_env_file=None, IPFS_API_URL=""), accepting=True)
        app = create_app(core)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
            response = await c.get("/api/ipfs/status")
        assert response.status_code == 200
        assert response.json()["status"] == "disabled"
        await core.aclose()

    async def test_fallback_refused_when_store_disabled(self):
        core = build_core(Settings(_env_file=None, IPFS_API_URL=""), accepting=True)
        app = create_app(core)
        async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://testserver") as c:
            response = await c.post("/api/deliver", json={"recipient_id": "u1", "payload": "SGVsbG8=", "mode": "fallback"})
        assert response.status_code == 503
        await core.aclose()

    async def test_health(self, client: httpx.AsyncClient, core: DeliveryCore):
        await core.monitor.check_now()
        body = (await client.get("/health")).json()
        assert body["status"] == "healthy"
        assert body["transports"]["recommendation"] == "primary"

    async def test_root(self, client: httpx.AsyncClient):
        body = (await client.get("/")).json()
        assert body["endpoints"]["deliver"] == "/api/deliver"


class TestContentAdd:
    async def test_add(self, client: httpx.AsyncClient, core: DeliveryCore, ipfs: FakeIpfsDaemon):
        await core.monitor.check_now()
        response = await client.post("/api/ipfs/add", json={"payload_b64": "SGVsbG8=", "filename": "hello.txt"})

        assert response.status_code == 200
        body = response.json()
        assert ipfs.blobs[body["cid"]] == b"Hello"
        assert body["size"] == 5
        assert body["local_gateway"] == f"http://localhost:8080/ipfs/{body['cid']}"
        assert body["gateways"] == [
            f"https://ipfs.io/ipfs/{body['cid']}",
            f"https://dweb.link/ipfs/{body['cid']}",
        ]

    async def test_add_missing_payload(self, client: httpx.AsyncClient):
        response = await client.post("/api/ipfs/add", json={})
        assert response.status_code == 400

    async def test_add_when_store_down(self, client: httpx.AsyncClient, core: DeliveryCore, ipfs: FakeIpfsDaemon):
        ipfs.down = True
        await core.monitor.check_now()
        response = await client.post("/api/ipfs/add", json={"payload_b64": "SGVsbG8="})
        assert response.status_code == 503

    async def test_add_rejected_mid_call(self, client: httpx.AsyncClient, ipfs: FakeIpfsDaemon):
        ipfs.reject = True
        response = await client.post("/api/ipfs/add", json={"payload_b64": "SGVsbG8="})
        assert response.status_code == 502
