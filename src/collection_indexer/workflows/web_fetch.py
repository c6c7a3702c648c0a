from __future__ import annotations

import asyncio
import hashlib
import json
import logging
import os
import random
import tempfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional
from urllib.parse import urlparse

import aiohttp

from .indexer_config import (
    BACKOFF_MAX_SECONDS,
    BACKOFF_MIN_SECONDS,
    BLOCKHEIGHT_PATH,
    HDR_CONTENT_TYPE,
    JSON_CONTENT_TYPE,
    MAX_ATTEMPTS,
    REQUEST_TIMEOUT_SECONDS,
)

logger = logging.getLogger(__name__)

SleepFunc = Callable[[float], Awaitable[Any]]
BypassFunc = Callable[[str], bool]


class TransportFailure(Exception):
    """Raised once every attempt for a target has failed."""

    def __init__(self, url: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{url} failed after {attempts} attempt(s): {last_error}")
        self.url = url
        self.attempts = attempts
        self.last_error = last_error


class HTTPStatusError(Exception):
    def __init__(self, url: str, status: int, reason: str = "") -> None:
        super().__init__(f"HTTP error {status} - {reason}".rstrip(" -"))
        self.url = url
        self.status = status
        self.reason = reason


def jittered_delay(low: float = BACKOFF_MIN_SECONDS, high: float = BACKOFF_MAX_SECONDS) -> float:
    """Return a backoff delay drawn uniformly from ``[low, high]`` seconds."""

    return random.uniform(low, high)


def target_url(target: Any) -> str:
    """Coerce a string or request-like object (anything with ``.url``) to a URL string."""

    if isinstance(target, str):
        return target
    url = getattr(target, "url", None)
    if url is not None:
        return str(url)
    if target is None:
        raise ValueError("fetch target is missing")
    return str(target)


def path_bypass(*paths: str) -> BypassFunc:
    """Build a predicate matching targets whose URL path is one of ``paths``."""

    wanted = {p.rstrip("/") for p in paths}

    def _bypass(url: str) -> bool:
        return urlparse(url).path.rstrip("/") in wanted

    return _bypass


is_blockheight_url = path_bypass(BLOCKHEIGHT_PATH)


@dataclass
class FetchConfig:
    """Configuration parameters for outbound requests."""

    timeout: float = REQUEST_TIMEOUT_SECONDS
    max_attempts: int = MAX_ATTEMPTS
    backoff_min: float = BACKOFF_MIN_SECONDS
    backoff_max: float = BACKOFF_MAX_SECONDS
    headers: Dict[str, str] = field(default_factory=lambda: {HDR_CONTENT_TYPE: JSON_CONTENT_TYPE})


@dataclass
class FetchResponse:
    """Body and status of one fetch, either live or synthesized from the content cache."""

    url: str
    status: int
    body: str
    from_cache: bool = False

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300

    def text(self) -> str:
        return self.body

    def json(self) -> Any:
        return json.loads(self.body)


@dataclass
class FetchMetrics:
    cache_hits: int = 0
    http_requests: int = 0
    http_failures: int = 0

    def snapshot(self) -> Dict[str, int]:
        return {
            "cache_hits": self.cache_hits,
            "http_requests": self.http_requests,
            "http_failures": self.http_failures,
        }


class RetryingFetcher:
    """Issues one request with a bounded number of attempts and jittered backoff.

    Use as an async context manager so the underlying ``aiohttp`` session is
    opened once per run and closed afterwards. A session can also be injected.
    """

    def __init__(
        self,
        config: Optional[FetchConfig] = None,
        *,
        session: Optional[aiohttp.ClientSession] = None,
        metrics: Optional[FetchMetrics] = None,
        sleep: SleepFunc = asyncio.sleep,
    ) -> None:
        self.config = config or FetchConfig()
        self.metrics = metrics if metrics is not None else FetchMetrics()
        self._session = session
        self._owns_session = False
        self._sleep = sleep

    async def __aenter__(self) -> "RetryingFetcher":
        if self._session is None:
            self._session = aiohttp.ClientSession(headers=dict(self.config.headers))
            self._owns_session = True
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
        self._session = None
        self._owns_session = False

    async def fetch(self, target: Any, options: Optional[Dict[str, Any]] = None) -> FetchResponse:
        url = target_url(target)
        attempts = max(1, self.config.max_attempts)
        last_exc: Optional[BaseException] = None
        for attempt in range(1, attempts + 1):
            self.metrics.http_requests += 1
            try:
                response = await self._fetch_once(url, options or {})
                if not response.ok:
                    raise HTTPStatusError(url, response.status)
                return response
            except (HTTPStatusError, aiohttp.ClientError, asyncio.TimeoutError) as exc:
                self.metrics.http_failures += 1
                last_exc = exc
                logger.warning("fetch attempt #%d for %s failed: %s", attempt, url, exc)
                if attempt < attempts:
                    await self._sleep(jittered_delay(self.config.backoff_min, self.config.backoff_max))
        if last_exc:
            raise TransportFailure(url, attempts, last_exc) from last_exc
        raise RuntimeError("unexpected retry state")

    async def _fetch_once(self, url: str, options: Dict[str, Any]) -> FetchResponse:
        if self._session is None:
            raise RuntimeError("RetryingFetcher must be entered before fetching")
        request_kwargs = dict(options)
        method = str(request_kwargs.pop("method", "GET")).upper()
        async with self._session.request(
            method,
            url,
            timeout=aiohttp.ClientTimeout(total=self.config.timeout),
            **request_kwargs,
        ) as resp:
            body = await resp.text(errors="replace")
            if not 200 <= resp.status < 300:
                raise HTTPStatusError(url, resp.status, resp.reason or "")
            return FetchResponse(
                url=url,
                status=resp.status,
                body=body,
            )


class ContentCache:
    """Cache-aside wrapper around :class:`RetryingFetcher`.

    Bodies are stored verbatim, one file per target, named by the sha256 of
    the target URL. Targets matched by ``bypass`` never touch the store.
    """

    def __init__(
        self,
        fetcher: RetryingFetcher,
        cache_dir: Path,
        *,
        bypass: Optional[BypassFunc] = None,
        enabled: bool = True,
    ) -> None:
        self.fetcher = fetcher
        self.cache_dir = Path(cache_dir)
        self.bypass = bypass or is_blockheight_url
        self.enabled = enabled
        if self.enabled:
            self.cache_dir.mkdir(parents=True, exist_ok=True)

    @property
    def metrics(self) -> FetchMetrics:
        return self.fetcher.metrics

    def cache_file(self, url: str) -> Path:
        digest = hashlib.sha256(url.encode("utf-8")).hexdigest()
        return self.cache_dir / f"{digest}.json"

    async def fetch(self, target: Any, options: Optional[Dict[str, Any]] = None) -> FetchResponse:
        url = target_url(target)
        cache_file: Optional[Path] = None
        if self.enabled and not self.bypass(url):
            cache_file = self.cache_file(url)
            cached = self._read(cache_file)
            if cached is not None:
                self.metrics.cache_hits += 1
                logger.debug("cache hit %s", url)
                return FetchResponse(url=url, status=200, body=cached, from_cache=True)

        response = await self.fetcher.fetch(url, options)
        if cache_file is not None:
            self._write(cache_file, response.body)
        return response

    def _read(self, path: Path) -> Optional[str]:
        try:
            return path.read_text(encoding="utf-8")
        except FileNotFoundError:
            return None

    def _write(self, path: Path, body: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=path.parent, prefix=".tmp-", suffix=".json")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(body)
            os.replace(tmp_name, path)
        except BaseException:
            try:
                os.remove(tmp_name)
            except OSError:
                pass
            raise
