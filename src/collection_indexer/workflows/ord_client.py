"""Thin client for the ordinals content service.

Only the endpoints the indexer and simulations need are wrapped; every
request goes through whatever ``fetch`` object it is given (normally a
ContentCache), so cacheability is decided there and not here.
"""

from __future__ import annotations

from typing import Any, Dict, Optional, Protocol
from urllib.parse import quote

from .indexer_config import BLOCKHEIGHT_PATH, ORDINALS_HOST
from .web_fetch import FetchResponse


class Fetches(Protocol):
    async def fetch(self, target: Any, options: Optional[Dict[str, Any]] = None) -> FetchResponse: ...


class OrdClient:
    def __init__(
        self,
        fetch: Fetches,
        *,
        host: str = ORDINALS_HOST,
        blockheight_path: str = BLOCKHEIGHT_PATH,
        fetch_options: Optional[Dict[str, Any]] = None,
    ) -> None:
        self._fetch = fetch
        self.host = host.rstrip("/")
        self.blockheight_path = blockheight_path
        self.fetch_options = dict(fetch_options or {})

    def url(self, path: str) -> str:
        if not path.startswith("/"):
            path = "/" + path
        return f"{self.host}{path}"

    async def get(self, path: str) -> FetchResponse:
        return await self._fetch.fetch(self.url(path), dict(self.fetch_options))

    async def get_json(self, path: str) -> Any:
        response = await self.get(path)
        return response.json()

    async def get_text(self, path: str) -> str:
        response = await self.get(path)
        return response.text()

    async def blockheight(self) -> int:
        value = await self.get_json(self.blockheight_path)
        if isinstance(value, bool) or not isinstance(value, int) or value < 0:
            raise ValueError(f"Unexpected blockheight payload: {value!r}")
        return value

    async def inscription(self, inscription_id: str) -> Dict[str, Any]:
        return await self.get_json(f"/r/inscription/{quote(inscription_id, safe='')}")

    async def children(self, inscription_id: str, page: int = 0) -> Dict[str, Any]:
        return await self.get_json(f"/r/children/{quote(inscription_id, safe='')}/{int(page)}")

    async def content(self, inscription_id: str) -> str:
        return await self.get_text(f"/content/{quote(inscription_id, safe='')}")
