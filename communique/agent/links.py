"""Link verification for generated release notes.

Extracts http(s) URLs from text and probes each one. A 404 or a
transport error marks a link broken; servers that reject HEAD with 405
get a GET instead. Uses its own httpx client (no API credentials).
"""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

import httpx

from communique.providers.base import USER_AGENT

logger = logging.getLogger(__name__)

# Best-effort: stops at whitespace and markdown/HTML closers
_URL_PATTERN = re.compile(r"https?://[^\s)\]>]+")
_TRAILING_PUNCTUATION = ".,;"


def extract_urls(texts: Iterable[str]) -> list[str]:
    """Unique URLs across texts, in order of first appearance."""
    seen: dict[str, None] = {}
    for text in texts:
        for match in _URL_PATTERN.finditer(text):
            url = match.group(0).rstrip(_TRAILING_PUNCTUATION)
            seen.setdefault(url, None)
    return list(seen)


class LinkVerifier:
    """Probes URLs with HEAD (GET on 405) and reports the broken ones."""

    def __init__(
        self,
        timeout: float = 10.0,
        max_redirects: int = 5,
        *,
        http_client: httpx.AsyncClient | None = None,
    ) -> None:
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(
            headers={"user-agent": f"{USER_AGENT} link-checker"},
            timeout=timeout,
            follow_redirects=True,
            max_redirects=max_redirects,
        )

    async def close(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    async def verify(self, texts: Iterable[str]) -> list[tuple[str, str]]:
        """Return (url, reason) for every broken link. Empty means all healthy."""
        urls = extract_urls(texts)
        if not urls:
            return []

        logger.info("Verifying %d link(s)", len(urls))
        broken: list[tuple[str, str]] = []
        for url in urls:
            reason = await self._check(url)
            if reason is not None:
                logger.warning("broken link: %s (%s)", url, reason)
                broken.append((url, reason))
        return broken

    async def _check(self, url: str) -> str | None:
        """Reason the URL is broken, or None if it is fine."""
        try:
            response = await self._http.head(url)
            if response.status_code == 405:
                response = await self._http.get(url)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            return str(e) or type(e).__name__
        if response.status_code == 404:
            return "404"
        return None
