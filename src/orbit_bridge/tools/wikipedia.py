"""``search_wikipedia`` handler: MediaWiki search + intro extracts over httpx."""

from __future__ import annotations

import asyncio
import logging
import re
import time
from collections import OrderedDict
from typing import Any, Callable, Optional
from urllib.parse import quote

import httpx

from orbit_bridge._exceptions import ToolExecutionError
from orbit_bridge.types import ToolContext

from .base import HttpToolMixin, ProgressReporter

_TAG = re.compile(r"<[^>]*>")
_ENTITY = re.compile(r"&[^;\s]+;")

LANGUAGES = ("ko", "en", "ja", "zh")
MAX_EXTRACT_CHARS = 500
MAX_CACHE_ENTRIES = 1000


def _clean_snippet(snippet: str) -> str:
    return _ENTITY.sub(" ", _TAG.sub("", snippet or "")).strip()


class WikipediaSearch(HttpToolMixin):
    """
    Two-step lookup: ``list=search`` for page ids, then ``prop=extracts`` for
    the intro text of the top hits.

    Results are cached per (language, query, limit) for ``cache_ttl`` seconds.
    A stale entry is still served when the live lookup fails.
    """

    name = "search_wikipedia"

    def __init__(
        self,
        *,
        cache_ttl: float = 3600,
        fallback_language: str = "en",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
        clock: Callable[[], float] = time.monotonic,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        super().__init__(timeout=timeout, client=client)
        self.cache_ttl = cache_ttl
        self.fallback_language = fallback_language
        self.clock = clock
        self.logger = logger or logging.getLogger(__name__)
        self._cache: OrderedDict[tuple[str, str, int], tuple[float, list[dict[str, Any]]]] = OrderedDict()
        self._lock = asyncio.Lock()

    @staticmethod
    def api_url(language: str) -> str:
        return f"https://{language}.wikipedia.org/w/api.php"

    async def __call__(
        self,
        args: dict[str, Any],
        context: ToolContext,
        report: ProgressReporter,
    ) -> dict[str, Any]:
        query = str(args.get("query") or "").strip()
        if not query:
            raise ToolExecutionError("search_wikipedia needs a non-empty query")
        language = str(args.get("language") or "ko").lower()
        if language not in LANGUAGES:
            language = "ko"
        try:
            limit = max(1, min(int(args.get("limit") or 5), 10))
        except (TypeError, ValueError):
            limit = 5

        await report(f"Searching {language}.wikipedia.org for '{query}'")
        results, used_language = await self.search(query, limit, language)
        return {
            "query": query,
            "language": used_language,
            "results": [
                {
                    "title": r["title"],
                    "summary": r["extract"] or r["snippet"],
                    "url": r["url"],
                    "wordcount": r.get("wordcount"),
                }
                for r in results
            ],
            "count": len(results),
            "source": "Wikipedia",
        }

    async def search(self, query: str, limit: int, language: str) -> tuple[list[dict[str, Any]], str]:
        """Search *language*, falling back to ``fallback_language`` on no hits or failure."""
        try:
            results = await self._search_cached(query, limit, language)
        except httpx.HTTPError as exc:
            if language == self.fallback_language:
                raise ToolExecutionError(f"Wikipedia search failed: {exc}", exc) from exc
            self.logger.warning("Wikipedia %s search failed (%s), retrying in %s", language, exc, self.fallback_language)
            results = []

        if results or language == self.fallback_language:
            return results, language

        self.logger.info("No %s results for %r, trying %s", language, query, self.fallback_language)
        try:
            return await self._search_cached(query, limit, self.fallback_language), self.fallback_language
        except httpx.HTTPError as exc:
            raise ToolExecutionError(f"Wikipedia search failed: {exc}", exc) from exc

    async def _search_cached(self, query: str, limit: int, language: str) -> list[dict[str, Any]]:
        key = (language, query, limit)
        now = self.clock()
        async with self._lock:
            cached = self._cache.get(key)
        if cached and now - cached[0] < self.cache_ttl:
            self.logger.debug("Wikipedia cache hit for %s", key)
            return cached[1]

        try:
            results = await self._fetch(query, limit, language)
        except httpx.HTTPError:
            if cached:
                self.logger.warning("Serving stale Wikipedia result for %s", key)
                return cached[1]
            raise

        async with self._lock:
            self._cache[key] = (now, results)
            self._cache.move_to_end(key)
            while len(self._cache) > MAX_CACHE_ENTRIES:
                self._cache.popitem(last=False)
        return results

    async def _fetch(self, query: str, limit: int, language: str) -> list[dict[str, Any]]:
        url = self.api_url(language)
        search = await self.get_json(
            url,
            params={
                "action": "query",
                "format": "json",
                "list": "search",
                "srsearch": query,
                "srlimit": min(limit * 2, 50),
                "srprop": "snippet|size|wordcount|timestamp",
                "utf8": 1,
            },
        )
        hits = ((search or {}).get("query") or {}).get("search") or []
        hits = hits[:limit]
        if not hits:
            return []

        details = await self.get_json(
            url,
            params={
                "action": "query",
                "format": "json",
                "prop": "extracts|info",
                "pageids": "|".join(str(h["pageid"]) for h in hits),
                "exintro": 1,
                "explaintext": 1,
                "inprop": "url",
                "utf8": 1,
            },
        )
        pages = ((details or {}).get("query") or {}).get("pages") or {}

        results = []
        for hit in hits:
            page = pages.get(str(hit["pageid"])) or {}
            snippet = _clean_snippet(hit.get("snippet", ""))
            extract = page.get("extract") or snippet
            if len(extract) > MAX_EXTRACT_CHARS:
                extract = extract[:MAX_EXTRACT_CHARS] + "..."
            results.append(
                {
                    "title": hit["title"],
                    "pageid": hit["pageid"],
                    "url": page.get("fullurl")
                    or f"https://{language}.wikipedia.org/wiki/{quote(hit['title'].replace(' ', '_'))}",
                    "extract": extract,
                    "snippet": snippet,
                    "wordcount": hit.get("wordcount"),
                    "language": language,
                }
            )
        return results

    def clear_cache(self) -> int:
        count = len(self._cache)
        self._cache.clear()
        return count
