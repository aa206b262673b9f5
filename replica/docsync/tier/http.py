"""
HTTP key-value tier for docsync.

Client for a remote key-value storage server exposing:
    GET  {base}/api/storage/get/{key}   -> {"found": bool, "value": any}
    POST {base}/api/storage/set         <- {"key": str, "value": any}
    POST {base}/api/storage/remove      <- {"key": str}

The server enforces its own per-item size limit and answers 413 when a
value is too large.

Invariants:
    - Key names are validated locally before any request is sent
    - Transport errors surface as TierConnectionError, HTTP errors as TierError
    - The token is sent as a bearer header and never logged

How to change safely:
    - Route changes must be coordinated with the storage server
    - Keep the response parsing tolerant of extra fields
"""

from __future__ import annotations

import logging
import re
from typing import Any, Optional

import httpx

from .base import TierConnectionError, TierError, TierQuotaExceededError

logger = logging.getLogger(__name__)

STORAGE_KEY_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]{0,127}$")
RESERVED_KEYS = frozenset({"__proto__", "constructor", "prototype"})


def is_storage_key_name(key: str) -> bool:
    """Whether the storage server accepts this key name."""
    return bool(STORAGE_KEY_RE.match(key)) and key not in RESERVED_KEYS


class HttpTier:
    """Remote storage server implementation of KeyValueTier.

    Attributes:
        name: Tier name
        base_url: Server base URL
        quota_bytes_per_item: Per-item quota the server enforces (0 = none)

    Example:
        >>> tier = HttpTier("cloud", base_url="http://localhost:3001", token="...")
        >>> await tier.set("quickLaunchGroups", {"__chunked": False, ...})
        >>> await tier.close()
    """

    def __init__(
        self,
        name: str,
        base_url: str,
        token: Optional[str] = None,
        timeout_seconds: float = 10.0,
        quota_bytes_per_item: int = 8192,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """Initialize the HTTP tier.

        Args:
            name: Tier name
            base_url: Server base URL
            token: Bearer token (optional)
            timeout_seconds: Per-request timeout
            quota_bytes_per_item: Per-item quota the server enforces
            transport: Custom httpx transport (tests use httpx.MockTransport)
        """
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.quota_bytes_per_item = quota_bytes_per_item

        headers = {"Content-Type": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"

        self._client = httpx.AsyncClient(
            base_url=self.base_url,
            headers=headers,
            timeout=timeout_seconds,
            transport=transport,
        )

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    async def __aenter__(self) -> HttpTier:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    def _check_key(self, key: str) -> None:
        if not is_storage_key_name(key):
            raise TierError(f"Invalid storage key for tier {self.name}: {key!r}")

    async def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            raise TierConnectionError(f"Tier {self.name} unreachable: {e}") from e

        if response.status_code == 413:
            raise TierQuotaExceededError(
                f"Tier {self.name} rejected oversized value: {response.text}",
                key=(kwargs.get("json") or {}).get("key"),
            )
        if response.status_code >= 400:
            raise TierError(
                f"Tier {self.name} {method} {path} failed: HTTP {response.status_code}"
            )
        return response

    async def get(self, key: str) -> Any:
        """Read a value."""
        self._check_key(key)
        response = await self._request("GET", f"/api/storage/get/{key}")
        try:
            body = response.json()
        except ValueError as e:
            raise TierError(f"Tier {self.name} returned invalid JSON for {key}") from e
        if not body.get("found"):
            return None
        return body.get("value")

    async def set(self, key: str, value: Any) -> None:
        """Store a value."""
        self._check_key(key)
        await self._request("POST", "/api/storage/set", json={"key": key, "value": value})
        logger.debug("Item stored in http tier", extra={"tier": self.name, "key": key})

    async def remove(self, key: str) -> None:
        """Remove a value."""
        self._check_key(key)
        await self._request("POST", "/api/storage/remove", json={"key": key})
