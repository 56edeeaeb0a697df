from __future__ import annotations

import structlog
import httpx
from pydantic import ValidationError

from leadwatch.config import get_settings
from leadwatch.errors import SourceFetchError
from leadwatch.sources.base import SourceMessage

logger = structlog.get_logger()


class HttpSourceClient:
    """Talks to a JSON bridge in front of the channel provider.

    Endpoints:
      GET /channels/{source}                           -> {"has_comments": bool}
      GET /channels/{source}/posts?limit=N             -> {"messages": [...]}
      GET /channels/{source}/posts/{id}/replies?limit=N -> {"messages": [...]}
    """

    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        settings = get_settings()
        self.base_url = (base_url or settings.source_api_base_url).rstrip("/")
        key = settings.source_api_key if api_key is None else api_key
        self._headers = {"x-api-key": key} if key else {}
        self._client = client
        self._owns_client = client is None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def aclose(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    async def _get_json(self, path: str, params: dict | None = None) -> httpx.Response:
        client = await self._get_client()
        try:
            resp = await client.get(f"{self.base_url}{path}", params=params, headers=self._headers)
        except httpx.HTTPError as e:
            raise SourceFetchError(f"GET {path} failed: {e}") from e
        return resp

    async def has_threads(self, source: str) -> bool:
        resp = await self._get_json(f"/channels/{source}")
        if resp.status_code == 404:
            logger.warning("source_not_found", source=source)
            return False
        if resp.status_code != 200:
            raise SourceFetchError(f"channel info for {source} returned {resp.status_code}")
        return bool(resp.json().get("has_comments", False))

    async def recent_top_level_items(self, source: str, limit: int) -> list[SourceMessage]:
        resp = await self._get_json(f"/channels/{source}/posts", params={"limit": limit})
        if resp.status_code != 200:
            raise SourceFetchError(f"posts for {source} returned {resp.status_code}")
        return _parse_messages(resp.json(), keep_empty=True)[:limit]

    async def replies(self, source: str, item_id: int, limit: int) -> list[SourceMessage]:
        resp = await self._get_json(
            f"/channels/{source}/posts/{item_id}/replies", params={"limit": limit}
        )
        # Posts without a discussion thread or private discussions
        if resp.status_code in (403, 404):
            return []
        if resp.status_code != 200:
            raise SourceFetchError(f"replies for {source}/{item_id} returned {resp.status_code}")
        return _parse_messages(resp.json(), keep_empty=False)[:limit]


def _parse_messages(payload: dict, keep_empty: bool) -> list[SourceMessage]:
    messages = []
    for raw in payload.get("messages", []):
        try:
            msg = SourceMessage(**{**raw, "author": raw.get("author") or "Anonymous"})
        except (ValidationError, TypeError, AttributeError) as e:
            logger.warning("source_message_invalid", error=str(e)[:200])
            continue
        if not keep_empty and not msg.text:
            continue
        messages.append(msg)
    return messages
