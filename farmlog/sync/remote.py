"""HTTP client for the farmOS REST server."""

import asyncio
import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

AREA_VOCABULARY = "farm_areas"
UNITS_VOCABULARY = "farm_quantity_units"
CATEGORIES_VOCABULARY = "farm_log_categories"

# Upper bound on pages fetched from one list endpoint
MAX_PAGES = 1000


class FarmClient:
    """Client for the farmOS log, asset and taxonomy endpoints.

    Transport errors (connection failures, timeouts, non-2xx responses)
    surface as ``httpx.HTTPError``; retries are left to the caller.
    """

    def __init__(self, host: str, timeout: float = 30.0):
        """Initialize the client.

        Args:
            host: Base URL of the farmOS server.
            timeout: Request timeout in seconds.
        """
        self.host = host.rstrip("/")
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.host,
                timeout=self.timeout,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "FarmClient":
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def _get_all(self, path: str, params: dict[str, Any] | None = None) -> list[dict]:
        """Fetch every page of a list endpoint."""
        client = await self._get_client()

        results: list[dict] = []
        page = 0
        while True:
            query = dict(params or {})
            if page:
                query["page"] = page
            response = await client.get(path, params=query)
            response.raise_for_status()
            data = response.json()
            items = data.get("list", [])
            results.extend(items)
            if not items or not data.get("next"):
                break
            if page + 1 >= MAX_PAGES:
                logger.warning(f"GET {path} stopped after {MAX_PAGES} pages")
                break
            page += 1

        logger.debug(f"GET {path} returned {len(results)} items over {page + 1} pages")
        return results

    async def get_logs(self, filters: dict[str, Any] | None = None) -> list[dict]:
        """Fetch the logs matching the given filters."""
        return await self._get_all("/log.json", filters)

    async def get_logs_by_id(self, ids: list[Any]) -> list[dict]:
        """Fetch specific logs by server id."""
        if not ids:
            return []

        client = await self._get_client()

        async def fetch(log_id: Any) -> dict:
            response = await client.get(f"/log/{log_id}.json")
            response.raise_for_status()
            return response.json()

        return list(await asyncio.gather(*(fetch(log_id) for log_id in ids)))

    async def send(self, log: dict[str, Any], token: str | None) -> dict[str, Any]:
        """Create or update a log on the server.

        Logs that already have a server id are updated in place, others
        are created.

        Returns:
            ``{"id": ..., "uri": ...}`` for the stored log.
        """
        client = await self._get_client()
        headers = {"X-CSRF-Token": token} if token else {}

        log_id = log.get("id")
        if log_id:
            response = await client.put(f"/log/{log_id}", json=log, headers=headers)
        else:
            response = await client.post("/log", json=log, headers=headers)
        response.raise_for_status()

        data = response.json() if response.content else {}
        log_id = data.get("id", log_id)
        return {
            "id": log_id,
            "uri": data.get("uri") or f"{self.host}/log/{log_id}",
        }

    async def get_areas(self) -> list[dict]:
        return await self.get_terms(AREA_VOCABULARY)

    async def get_assets(self) -> list[dict]:
        return await self._get_all("/farm_asset.json")

    async def get_terms(self, vocabulary: str) -> list[dict]:
        """Fetch all taxonomy terms of a vocabulary."""
        return await self._get_all("/taxonomy_term.json", {"bundle": vocabulary})
