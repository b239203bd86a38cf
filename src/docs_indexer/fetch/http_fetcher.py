from __future__ import annotations

import asyncio
import logging
from typing import Optional

import aiohttp

from docs_indexer.cache.models import Validators
from docs_indexer.config.models import FetchSettings
from docs_indexer.errors import FetchFailure
from docs_indexer.fetch.interfaces import FetchResult, ProbeResult

logger = logging.getLogger(__name__)


def _response_validators(response: aiohttp.ClientResponse) -> Validators:
    return Validators(
        etag=response.headers.get("ETag"),
        last_modified=response.headers.get("Last-Modified"),
    )


def _decode_body(raw: bytes, charset: Optional[str]) -> str:
    try:
        return raw.decode(charset or "utf-8", errors="replace")
    except LookupError:
        return raw.decode("utf-8", errors="replace")


class HttpFetcher:
    """
    aiohttp-backed fetch collaborator.

    Use as an async context manager so one connection pool serves a whole run.
    """

    def __init__(self, settings: FetchSettings) -> None:
        self._settings = settings
        self._session: Optional[aiohttp.ClientSession] = None

    async def __aenter__(self) -> HttpFetcher:
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()

    async def start(self) -> None:
        if self._session is not None:
            return
        self._session = aiohttp.ClientSession(headers={"User-Agent": self._settings.user_agent})

    async def stop(self) -> None:
        if self._session is not None:
            await self._session.close()
            self._session = None

    def _require_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            raise RuntimeError("HttpFetcher is not started; use it as an async context manager")
        return self._session

    async def probe(self, url: str) -> ProbeResult:
        session = self._require_session()
        timeout = aiohttp.ClientTimeout(total=self._settings.probe_timeout_seconds)
        try:
            async with session.head(url, allow_redirects=True, timeout=timeout) as response:
                status = response.status
                validators = _response_validators(response) if 200 <= status < 300 else Validators()
        except asyncio.TimeoutError as e:
            raise FetchFailure(f"Probe timed out: {url}", resource_id=url) from e
        except aiohttp.ClientError as e:
            raise FetchFailure(f"Probe failed: {url}: {e}", resource_id=url) from e
        logger.debug("Probe finished. url=%s status=%s etag=%s", url, status, validators.etag)
        return ProbeResult(http_status=status, validators=validators)

    async def fetch(self, url: str, *, validators: Optional[Validators] = None) -> FetchResult:
        session = self._require_session()
        headers = {}
        if validators is not None:
            if validators.etag:
                headers["If-None-Match"] = validators.etag
            if validators.last_modified:
                headers["If-Modified-Since"] = validators.last_modified

        timeout = aiohttp.ClientTimeout(total=self._settings.timeout_seconds)
        try:
            async with session.get(
                url,
                headers=headers,
                timeout=timeout,
                max_redirects=self._settings.max_redirects,
            ) as response:
                status = response.status
                response_validators = _response_validators(response)
                if status == 304:
                    logger.debug("Fetch not modified. url=%s", url)
                    return FetchResult(status="not_modified", http_status=status, validators=response_validators)
                if status >= 400:
                    raise FetchFailure(f"HTTP {status} fetching {url}", resource_id=url)
                raw = await response.read()
                if len(raw) > self._settings.max_body_bytes:
                    raise FetchFailure(
                        f"Body of {url} exceeds {self._settings.max_body_bytes} bytes",
                        resource_id=url,
                    )
                body = _decode_body(raw, response.charset)
        except asyncio.TimeoutError as e:
            raise FetchFailure(f"Fetch timed out: {url}", resource_id=url) from e
        except aiohttp.ClientError as e:
            raise FetchFailure(f"Fetch failed: {url}: {e}", resource_id=url) from e

        logger.debug("Fetch finished. url=%s status=%s size=%d", url, status, len(raw))
        return FetchResult(status="fresh", http_status=status, body=body, validators=response_validators)
