# =============================================================================
# Search & performance backends: thin httpx wrappers
# =============================================================================
#
# Each client makes exactly one HTTP request per call and raises a
# ProviderError subclass on timeout, non-2xx or an unusable payload.
# Serper and SerpAPI responses are normalised into one SerpPage shape so the
# adapters in providers.py never look at vendor JSON.
# =============================================================================

import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urlparse

import httpx

logger = logging.getLogger("seo-analyzer")

SERPER_SEARCH_URL = "https://google.serper.dev/search"
SERPER_IMAGES_URL = "https://google.serper.dev/images"
SERPAPI_URL = "https://serpapi.com/search"
DATAFORSEO_VOLUME_URL = "https://api.dataforseo.com/v3/keywords_data/google_ads/search_volume/live"
PAGESPEED_URL = "https://www.googleapis.com/pagespeedonline/v5/runPagespeed"

DATAFORSEO_US_LOCATION = 2840


# ---------------------------------------------------------------------------
# Errors
# ---------------------------------------------------------------------------

class ProviderError(Exception):
    """A single backend call failed. Carries the backend name for logging."""

    def __init__(self, provider: str, message: str):
        super().__init__(f"{provider}: {message}")
        self.provider = provider


class ProviderTimeout(ProviderError):
    pass


class ProviderHTTPError(ProviderError):
    def __init__(self, provider: str, status_code: int):
        super().__init__(provider, f"HTTP {status_code}")
        self.status_code = status_code


class ProviderPayloadError(ProviderError):
    pass


class NoResultsError(ProviderError):
    pass


async def request_json(
    provider: str,
    method: str,
    url: str,
    *,
    timeout: float,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    **kwargs,
) -> dict:
    """One HTTP round trip returning a JSON object, with failures mapped to ProviderError."""
    start = time.monotonic()
    try:
        async with httpx.AsyncClient(timeout=timeout, transport=transport) as http:
            resp = await http.request(method, url, **kwargs)
    except httpx.TimeoutException as e:
        raise ProviderTimeout(provider, f"timed out after {timeout:.0f}s") from e
    except httpx.HTTPError as e:
        raise ProviderError(provider, f"{type(e).__name__}: {e}") from e

    if resp.status_code // 100 != 2:
        raise ProviderHTTPError(provider, resp.status_code)
    try:
        data = resp.json()
    except ValueError as e:
        raise ProviderPayloadError(provider, "response is not valid JSON") from e
    if not isinstance(data, dict):
        raise ProviderPayloadError(provider, f"expected a JSON object, got {type(data).__name__}")

    logger.info(f"{provider} call completed in {(time.monotonic() - start) * 1000:.0f} ms")
    return data


def _list(data: dict, *keys: str) -> list[dict]:
    """First present list under any of the keys, keeping only dict items."""
    for key in keys:
        value = data.get(key)
        if isinstance(value, dict):
            value = value.get("places")
        if isinstance(value, list):
            return [v for v in value if isinstance(v, dict)]
    return []


def host_of(link: str) -> str:
    """Hostname without a leading www., or '' for malformed links."""
    if not isinstance(link, str):
        return ""
    try:
        host = urlparse(link).hostname or ""
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


# ---------------------------------------------------------------------------
# Normalised SERP page
# ---------------------------------------------------------------------------

@dataclass
class SerpPage:
    organic: list[dict] = field(default_factory=list)          # {link, title, snippet}
    ads: list[dict] = field(default_factory=list)              # {link, title, description}
    places: list[dict] = field(default_factory=list)           # {title, address, rating}
    questions: list[str] = field(default_factory=list)
    answer_box: Optional[dict] = None                          # {type, content}
    knowledge_graph: Optional[dict] = None                     # {type, content}
    news: list[dict] = field(default_factory=list)             # {title, source, date}
    videos: list[dict] = field(default_factory=list)           # {title, platform, link}
    related_searches: list[str] = field(default_factory=list)

    def distinct_hosts(self) -> int:
        return len({h for h in (host_of(r.get("link", "")) for r in self.organic) if h})


def _text(value: Any) -> str:
    return value if isinstance(value, str) else ""


def _organic(items: list[dict]) -> list[dict]:
    return [
        {"link": r["link"], "title": _text(r.get("title")), "snippet": _text(r.get("snippet"))}
        for r in items
        if isinstance(r.get("link"), str) and r["link"]
    ]


def parse_serper(data: dict) -> SerpPage:
    answer = data.get("answerBox")
    graph = data.get("knowledgeGraph")
    return SerpPage(
        organic=_organic(_list(data, "organic")),
        ads=[
            {"link": _text(a.get("link")), "title": _text(a.get("title")), "description": _text(a.get("description"))}
            for a in _list(data, "ads")
        ],
        places=[
            {"title": _text(p.get("title")), "address": _text(p.get("address")), "rating": _rating(p.get("rating"))}
            for p in _list(data, "places")
        ],
        questions=[_text(q.get("question")) for q in _list(data, "peopleAlsoAsk") if _text(q.get("question"))],
        answer_box={
            "type": _text(answer.get("type")) or "paragraph",
            "content": _text(answer.get("answer")) or _text(answer.get("snippet")),
        } if isinstance(answer, dict) else None,
        knowledge_graph={
            "type": _text(graph.get("type")) or "business",
            "content": _text(graph.get("description")),
        } if isinstance(graph, dict) else None,
        news=[
            {"title": _text(n.get("title")), "source": _source_name(n.get("source")), "date": _text(n.get("date"))}
            for n in _list(data, "news", "topStories")
        ],
        videos=[
            {"title": _text(v.get("title")), "platform": _text(v.get("source")) or "YouTube", "link": _text(v.get("link"))}
            for v in _list(data, "videos")
        ],
        related_searches=[_text(r.get("query")) for r in _list(data, "relatedSearches") if _text(r.get("query"))],
    )


def _source_name(source: Any) -> str:
    # SerpAPI news sources are either a plain string or {"name": ..., "icon": ...}
    if isinstance(source, dict):
        return _text(source.get("name"))
    return str(source) if source else ""


def _rating(value: Any) -> Optional[float]:
    try:
        return float(value) if value is not None else None
    except (TypeError, ValueError):
        return None


def parse_serpapi(data: dict) -> SerpPage:
    answer = data.get("answer_box")
    graph = data.get("knowledge_graph")
    return SerpPage(
        organic=_organic(_list(data, "organic_results")),
        ads=[
            {"link": _text(a.get("link")), "title": _text(a.get("title")), "description": _text(a.get("description"))}
            for a in _list(data, "ads")
        ],
        places=[
            {"title": _text(p.get("title")), "address": _text(p.get("address")), "rating": _rating(p.get("rating"))}
            for p in _list(data, "local_results")
        ],
        questions=[_text(q.get("question")) for q in _list(data, "related_questions") if _text(q.get("question"))],
        answer_box={
            "type": _text(answer.get("type")) or "paragraph",
            "content": _text(answer.get("answer")) or _text(answer.get("snippet")),
        } if isinstance(answer, dict) else None,
        knowledge_graph={
            "type": _text(graph.get("type")) or "business",
            "content": _text(graph.get("description")),
        } if isinstance(graph, dict) else None,
        news=[
            {"title": _text(n.get("title")), "source": _source_name(n.get("source")), "date": _text(n.get("date"))}
            for n in _list(data, "news_results", "top_stories")
        ],
        videos=[
            {"title": _text(v.get("title")), "platform": _text(v.get("platform")) or "YouTube", "link": _text(v.get("link"))}
            for v in _list(data, "inline_videos", "video_results")
        ],
        related_searches=[_text(r.get("query")) for r in _list(data, "related_searches") if _text(r.get("query"))],
    )


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------

class SerperClient:
    name = "Serper"

    def __init__(self, api_key: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self._transport = transport

    def _headers(self) -> dict:
        return {"X-API-KEY": self.api_key, "Content-Type": "application/json"}

    async def search(self, query: str, *, num: int = 10, timeout: float = 8.0, gl: str = "us") -> SerpPage:
        data = await request_json(
            self.name, "POST", SERPER_SEARCH_URL,
            timeout=timeout, transport=self._transport,
            headers=self._headers(),
            json={"q": query, "num": num, "gl": gl, "hl": "en"},
        )
        return parse_serper(data)

    async def images(self, query: str, *, num: int = 10, timeout: float = 8.0) -> list[dict]:
        data = await request_json(
            self.name, "POST", SERPER_IMAGES_URL,
            timeout=timeout, transport=self._transport,
            headers=self._headers(),
            json={"q": query, "num": num},
        )
        return [{"link": _text(i.get("link")), "title": _text(i.get("title"))} for i in _list(data, "images")]


class SerpApiClient:
    name = "SerpAPI"

    def __init__(self, api_key: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self._transport = transport

    async def search(self, query: str, *, num: int = 10, timeout: float = 10.0, gl: str = "us") -> SerpPage:
        data = await request_json(
            self.name, "GET", SERPAPI_URL,
            timeout=timeout, transport=self._transport,
            params={"q": query, "api_key": self.api_key, "engine": "google", "num": num, "gl": gl, "hl": "en"},
        )
        if data.get("error"):
            raise ProviderPayloadError(self.name, str(data["error"]))
        return parse_serpapi(data)

    async def images(self, query: str, *, num: int = 10, timeout: float = 10.0) -> list[dict]:
        data = await request_json(
            self.name, "GET", SERPAPI_URL,
            timeout=timeout, transport=self._transport,
            params={"q": query, "api_key": self.api_key, "engine": "google_images", "num": num},
        )
        return [{"link": _text(i.get("link")), "title": _text(i.get("title"))} for i in _list(data, "images_results")]


class DataForSeoClient:
    name = "DataForSEO"

    def __init__(self, login: str, password: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.login = login
        self.password = password
        self._transport = transport

    async def search_volume(self, keyword: str, *, timeout: float = 12.0) -> dict:
        """Returns {"search_volume": int, "competition_level": str | None} for one keyword."""
        data = await request_json(
            self.name, "POST", DATAFORSEO_VOLUME_URL,
            timeout=timeout, transport=self._transport,
            auth=(self.login, self.password),
            json=[{"keywords": [keyword], "location_code": DATAFORSEO_US_LOCATION, "language_code": "en"}],
        )
        try:
            result = data["tasks"][0]["result"][0]
        except (KeyError, IndexError, TypeError) as e:
            raise NoResultsError(self.name, f"no volume data for '{keyword}'") from e
        if not isinstance(result, dict):
            raise ProviderPayloadError(self.name, "unexpected result shape")
        try:
            volume = int(result.get("search_volume") or 0)
        except (TypeError, ValueError, OverflowError) as e:
            raise ProviderPayloadError(self.name, f"bad search_volume {result.get('search_volume')!r}") from e
        level = result.get("competition_level") or result.get("competition")
        return {
            "search_volume": volume,
            "competition_level": level if isinstance(level, str) else None,
        }


class PageSpeedClient:
    name = "PageSpeed Insights"

    def __init__(self, api_key: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.api_key = api_key
        self._transport = transport

    async def run(self, url: str, strategy: str, *, timeout: float = 15.0) -> dict[str, Any]:
        """Parsed lighthouse metrics for one strategy ("mobile" or "desktop")."""
        data = await request_json(
            self.name, "GET", PAGESPEED_URL,
            timeout=timeout, transport=self._transport,
            params={"url": url, "strategy": strategy, "key": self.api_key},
        )
        return parse_lighthouse(data, self.name)


def parse_lighthouse(data: dict, provider: str = "PageSpeed Insights") -> dict[str, Any]:
    lighthouse = data.get("lighthouseResult")
    if not isinstance(lighthouse, dict):
        raise ProviderPayloadError(provider, "missing lighthouseResult")
    categories = lighthouse.get("categories")
    performance = categories.get("performance") if isinstance(categories, dict) else None
    if not isinstance(performance, dict) or performance.get("score") is None:
        raise ProviderPayloadError(provider, "missing performance score")
    score = performance["score"]
    if isinstance(score, bool) or not isinstance(score, (int, float)) or not 0 <= score <= 1:
        raise ProviderPayloadError(provider, f"performance score out of range: {score!r}")
    audits = lighthouse.get("audits")
    if not isinstance(audits, dict):
        audits = {}

    def numeric(audit_id: str) -> Optional[float]:
        audit = audits.get(audit_id)
        value = audit.get("numericValue") if isinstance(audit, dict) else None
        if isinstance(value, bool) or not isinstance(value, (int, float)) or value < 0:
            return None
        return float(value)

    fcp, lcp = numeric("first-contentful-paint"), numeric("largest-contentful-paint")
    return {
        "performance": round(score * 100),
        "fcp": round(fcp / 1000, 2) if fcp is not None else None,
        "lcp": round(lcp / 1000, 2) if lcp is not None else None,
        "cls": round(numeric("cumulative-layout-shift") or 0.0, 3),
    }
