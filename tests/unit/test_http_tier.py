"""
Unit tests for the HTTP tier.

Tests cover:
- Request routing and payloads against a mock storage server
- Error mapping (413, 5xx, transport failures)
- Local key name validation
"""

import json

import httpx
import pytest
import pytest_asyncio

from replica.docsync.tier.base import TierConnectionError, TierError, TierQuotaExceededError
from replica.docsync.tier.http import HttpTier, is_storage_key_name


class FakeStorageServer:
    """Minimal storage server behind httpx.MockTransport."""

    def __init__(self, max_bytes: int = 8192) -> None:
        self.data = {}
        self.max_bytes = max_bytes
        self.requests = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if request.method == "GET" and path.startswith("/api/storage/get/"):
            key = path.rsplit("/", 1)[-1]
            if key in self.data:
                return httpx.Response(200, json={"found": True, "value": self.data[key]})
            return httpx.Response(200, json={"found": False})
        body = json.loads(request.content)
        if path == "/api/storage/set":
            if len(request.content) > self.max_bytes:
                return httpx.Response(413, text="value too large")
            self.data[body["key"]] = body["value"]
            return httpx.Response(200, json={"ok": True})
        if path == "/api/storage/remove":
            self.data.pop(body["key"], None)
            return httpx.Response(200, json={"ok": True})
        return httpx.Response(404)


class TestHttpTier:
    """Tests for HttpTier."""

    @pytest.fixture
    def server(self):
        return FakeStorageServer(max_bytes=256)

    @pytest_asyncio.fixture
    async def tier(self, server):
        tier = HttpTier(
            "cloud",
            base_url="http://storage.test/",
            token="secret",
            transport=httpx.MockTransport(server.handler),
        )
        yield tier
        await tier.close()

    @pytest.mark.asyncio
    async def test_set_get_remove(self, tier, server):
        """Values round trip through the storage server."""
        await tier.set("quickLaunchGroups", [{"id": "g1"}])
        assert server.data == {"quickLaunchGroups": [{"id": "g1"}]}

        assert await tier.get("quickLaunchGroups") == [{"id": "g1"}]

        await tier.remove("quickLaunchGroups")
        assert await tier.get("quickLaunchGroups") is None

    @pytest.mark.asyncio
    async def test_bearer_token(self, tier, server):
        """The token is sent as a bearer header."""
        await tier.get("k")
        assert server.requests[0].headers["Authorization"] == "Bearer secret"

    @pytest.mark.asyncio
    async def test_payload_too_large(self, tier):
        """413 maps to TierQuotaExceededError."""
        with pytest.raises(TierQuotaExceededError) as exc_info:
            await tier.set("k", "x" * 1000)
        assert exc_info.value.key == "k"

    @pytest.mark.asyncio
    async def test_server_error(self):
        """5xx maps to TierError."""
        transport = httpx.MockTransport(lambda request: httpx.Response(500))
        async with HttpTier("cloud", base_url="http://storage.test", transport=transport) as tier:
            with pytest.raises(TierError):
                await tier.get("k")

    @pytest.mark.asyncio
    async def test_transport_error(self):
        """Connection failures map to TierConnectionError."""

        def refuse(request):
            raise httpx.ConnectError("connection refused", request=request)

        async with HttpTier("cloud", base_url="http://storage.test", transport=httpx.MockTransport(refuse)) as tier:
            with pytest.raises(TierConnectionError):
                await tier.set("k", 1)

    @pytest.mark.asyncio
    async def test_invalid_json_response(self):
        """A non-JSON body is a TierError."""
        transport = httpx.MockTransport(lambda request: httpx.Response(200, text="<html>"))
        async with HttpTier("cloud", base_url="http://storage.test", transport=transport) as tier:
            with pytest.raises(TierError):
                await tier.get("k")

    @pytest.mark.asyncio
    async def test_invalid_key_rejected_locally(self, tier, server):
        """Invalid key names never reach the server."""
        with pytest.raises(TierError):
            await tier.set("bad-key", 1)
        assert server.requests == []


class TestStorageKeyName:
    """Tests for is_storage_key_name."""

    @pytest.mark.parametrize(
        "key",
        ["quickLaunchGroups", "_private", "quickLaunchGroups_chunk_lx2k9a_abc123_0"],
    )
    def test_valid(self, key):
        """Identifier-like keys are accepted."""
        assert is_storage_key_name(key)

    @pytest.mark.parametrize("key", ["", "1abc", "has-dash", "a" * 129, "__proto__", "constructor"])
    def test_invalid(self, key):
        """Other names are rejected."""
        assert not is_storage_key_name(key)
