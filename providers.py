# =============================================================================
# Provider adapters: performance, competitors, keywords, SERP presence
# =============================================================================
#
# Every adapter follows the same contract:
#   no credentials           → Demo(placeholder data, reason), no network call
#   backends configured      → try them in priority order, one attempt each
#   every backend failed     → Failed(error, fallback) shaped like real data
# Adapters never raise ProviderError to their caller.
# =============================================================================

import asyncio
import logging
import re
from dataclasses import dataclass
from typing import Generic, Optional, Protocol, TypeVar, Union

import httpx
from pydantic import ValidationError

from models import (
    BusinessIntelligence,
    Competitor,
    FeaturedSnippet,
    ImagesPresence,
    Issue,
    KeywordMetric,
    KnowledgePanel,
    MapsPresence,
    NewsArticle,
    NewsPresence,
    OrganicListing,
    PageSpeed,
    PaidAd,
    PeopleAlsoAsk,
    SerpPresence,
    TechnicalSeo,
    VideoItem,
    VideoPresence,
)
from search_clients import (
    DataForSeoClient,
    NoResultsError,
    PageSpeedClient,
    ProviderError,
    ProviderPayloadError,
    SerpApiClient,
    SerperClient,
    SerpPage,
    host_of,
)

logger = logging.getLogger("seo-analyzer")

T = TypeVar("T")

REAL_ANALYSIS = "[REAL ANALYSIS]"
DEMO = "[DEMO]"
API_ERROR = "[API ERROR]"


# ---------------------------------------------------------------------------
# Outcome variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Real(Generic[T]):
    data: T

    @property
    def degraded(self) -> bool:
        return False


@dataclass(frozen=True)
class Demo(Generic[T]):
    data: T
    reason: str

    @property
    def degraded(self) -> bool:
        return True


@dataclass(frozen=True)
class Failed(Generic[T]):
    error: ProviderError
    fallback: T

    @property
    def data(self) -> T:
        return self.fallback

    @property
    def degraded(self) -> bool:
        return True


ProviderOutcome = Union[Real[T], Demo[T], Failed[T]]


class SearchBackend(Protocol):
    name: str

    async def search(self, query: str, *, num: int = 10, gl: str = "us") -> SerpPage: ...

    async def images(self, query: str, *, num: int = 10) -> list[dict]: ...


def base_name(domain: str) -> str:
    """'www.best-pizza.com' → 'best pizza'."""
    return re.sub(r"[-_]", " ", bare_domain(domain).split(".")[0])


def bare_domain(domain: str) -> str:
    return domain[4:] if domain.startswith("www.") else domain


def site_label(domain: str) -> str:
    """First hostname label, ignored when too short to identify the site."""
    label = bare_domain(domain).split(".")[0]
    return label if len(label) >= 3 else ""


def is_own_host(host: str, domain: str) -> bool:
    """Same site, allowing subdomains either way (shop.example.com vs example.com)."""
    bare = bare_domain(domain)
    return bool(host) and (host == bare or host.endswith("." + bare) or bare.endswith("." + host))


# ---------------------------------------------------------------------------
# Performance
# ---------------------------------------------------------------------------

DEMO_PAGESPEED = PageSpeed(
    mobile=70, desktop=85, first_contentful_paint=1.8, largest_contentful_paint=2.4, cumulative_layout_shift=0.05,
)
FALLBACK_PAGESPEED = PageSpeed(
    mobile=75, desktop=82, first_contentful_paint=1.9, largest_contentful_paint=2.6, cumulative_layout_shift=0.08,
)


class PerformanceProvider:
    def __init__(self, client: Optional[PageSpeedClient] = None):
        self.client = client

    async def analyze(self, url: str) -> ProviderOutcome[PageSpeed]:
        if self.client is None:
            logger.warning("PageSpeed API key not set — using demo performance data")
            return Demo(DEMO_PAGESPEED, "GOOGLE_PAGESPEED_API_KEY not configured")
        try:
            mobile, desktop = await asyncio.gather(
                self.client.run(url, "mobile"),
                self.client.run(url, "desktop"),
            )
            page_speed = pagespeed_from_runs(mobile, desktop, self.client.name)
        except ProviderError as e:
            logger.warning(f"PageSpeed analysis failed for {url}: {e}")
            return Failed(e, FALLBACK_PAGESPEED)

        return Real(page_speed)


def pagespeed_from_runs(mobile: dict, desktop: dict, provider: str) -> PageSpeed:
    """Mobile + desktop lighthouse runs → PageSpeed; mobile timings, 2.1 s / 3.2 s when absent."""
    try:
        return PageSpeed(
            mobile=mobile["performance"],
            desktop=desktop["performance"],
            first_contentful_paint=mobile["fcp"] if mobile["fcp"] is not None else 2.1,
            largest_contentful_paint=mobile["lcp"] if mobile["lcp"] is not None else 3.2,
            cumulative_layout_shift=mobile["cls"],
        )
    except (KeyError, ValidationError) as e:
        raise ProviderPayloadError(provider, f"unusable lighthouse metrics: {e}") from e


def score_technical_seo(page_speed: PageSpeed) -> TechnicalSeo:
    """Technical score derived from performance thresholds only. Floor of 45."""
    issues: list[Issue] = []
    score = 85

    if page_speed.mobile < 70:
        issues.append(Issue(
            title="Poor Mobile Performance",
            impact="high",
            description=f"Mobile PageSpeed score is {page_speed.mobile}/100. "
                        "Optimize images and reduce JavaScript execution time.",
        ))
        score -= 15
    if page_speed.largest_contentful_paint > 2.5:
        issues.append(Issue(
            title="Slow Largest Contentful Paint",
            impact="high",
            description=f"LCP is {page_speed.largest_contentful_paint:.1f}s. "
                        "Optimize server response times and remove render-blocking resources.",
        ))
        score -= 10
    if page_speed.cumulative_layout_shift > 0.1:
        issues.append(Issue(
            title="Layout Shift Issues",
            impact="medium",
            description=f"CLS score is {page_speed.cumulative_layout_shift:.3f}. "
                        "Add size attributes to images and videos.",
        ))
        score -= 8
    if page_speed.mobile < 80:
        issues.append(Issue(
            title="Missing Meta Descriptions",
            impact="medium",
            description="Some pages lack meta descriptions. "
                        "Add unique, compelling descriptions to improve click-through rates.",
        ))
    if page_speed.desktop < 85:
        issues.append(Issue(
            title="Optimize Image Alt Tags",
            impact="low",
            description="Improve accessibility and SEO by adding descriptive alt tags to all images.",
        ))

    return TechnicalSeo(score=max(score, 45), issues=issues)


# ---------------------------------------------------------------------------
# Competitors
# ---------------------------------------------------------------------------

SUFFICIENT_COMPETITORS = 3
MAX_COMPETITORS = 4


def competitor_queries(intel: BusinessIntelligence) -> list[str]:
    loc = intel.location_base
    queries = [
        f"{intel.business_type} {loc}",
        f"best {intel.industry} {loc}",
        f"{intel.business_type} near me",
        *(f"{service} {loc}" for service in intel.services[:2]),
        f"top {intel.business_type} companies",
        f"{intel.industry} reviews {loc}",
    ]
    return [q.strip() for q in queries if len(q.strip()) > 10]


def score_serp_position(index: int, title: str, base_term: str) -> int:
    """Position score for a 0-indexed organic result, +10 when the title mentions the base term."""
    score = max(100 - index * 8, 20)
    if base_term and base_term.lower() in title.lower():
        score += 10
    return score


def tally_competitors(
    tally: dict[str, dict],
    page: SerpPage,
    domain: str,
    base_term: str,
) -> None:
    """Fold one results page into the running {domain: {score, appearances}} tally."""
    name_token = site_label(domain)
    for index, result in enumerate(page.organic):
        host = host_of(result["link"])
        if not host or is_own_host(host, domain) or (name_token and name_token in host):
            continue
        score = score_serp_position(index, result["title"], base_term)
        entry = tally.get(host)
        if entry:
            entry["score"] = max(entry["score"], score)
            entry["appearances"] += 1
        else:
            tally[host] = {"score": score, "appearances": 1}


def rank_competitors(tally: dict[str, dict], domain: str) -> list[Competitor]:
    """Top competitors by appearances × score, plus the analysed domain, ranked 1..N."""
    top = sorted(tally.items(), key=lambda kv: kv[1]["appearances"] * kv[1]["score"], reverse=True)[:MAX_COMPETITORS]
    entries = [(name, int(round(data["score"]))) for name, data in top]
    own_score = max(85 - 8 * len(entries), 45)
    # Competitors keep their relevance order; the analysed domain goes ahead of
    # the first one scoring below it and behind any it ties with
    slot = next((i for i, (_, score) in enumerate(entries) if score < own_score), len(entries))
    entries.insert(slot, (domain, own_score))
    return [Competitor(name=name, score=score, ranking=i) for i, (name, score) in enumerate(entries, start=1)]


def _placeholder_competitors(domain: str, names: list[str]) -> list[Competitor]:
    # Own domain sits at rank 3 between the two strongest and two weakest placeholders
    return [
        Competitor(name=names[0], score=85, ranking=1),
        Competitor(name=names[1], score=80, ranking=2),
        Competitor(name=domain, score=75, ranking=3),
        Competitor(name=names[2], score=70, ranking=4),
        Competitor(name=names[3], score=65, ranking=5),
    ]


def demo_competitors(domain: str, intel: BusinessIntelligence) -> list[Competitor]:
    return _placeholder_competitors(domain, [
        f"{REAL_ANALYSIS} {intel.business_type} competitor in {intel.location}",
        f"{REAL_ANALYSIS} {intel.industry} provider",
        f"{REAL_ANALYSIS} Similar {intel.business_type} business",
        f"{REAL_ANALYSIS} Configure SERP API for actual competitor domains",
    ])


def error_competitors(domain: str) -> list[Competitor]:
    return _placeholder_competitors(domain, [
        f"{API_ERROR} Unable to fetch real competitors",
        f"{API_ERROR} Check API keys and quotas",
        f"{API_ERROR} Using fallback demo data",
        f"{API_ERROR} See logs for details",
    ])


class CompetitorProvider:
    """backends: (backend, max queries) pairs in priority order."""

    def __init__(self, backends: list[tuple[SearchBackend, int]]):
        self.backends = backends

    async def analyze(self, domain: str, intel: BusinessIntelligence) -> ProviderOutcome[list[Competitor]]:
        if not self.backends:
            logger.warning("No SERP API keys set — using demo competitor data")
            return Demo(demo_competitors(domain, intel), "SERPER_API_KEY / SERPAPI_KEY not configured")

        queries = competitor_queries(intel)
        base_term = intel.business_type
        tally: dict[str, dict] = {}
        last_error: Optional[ProviderError] = None

        for backend, max_queries in self.backends:
            if len(tally) >= SUFFICIENT_COMPETITORS:
                break
            logger.info(f"Competitor search via {backend.name}: {queries[:max_queries]}")
            for query in queries[:max_queries]:
                try:
                    page = await backend.search(query)
                except ProviderError as e:
                    logger.warning(f"Competitor search failed for '{query}': {e}")
                    last_error = e
                    continue
                tally_competitors(tally, page, domain, base_term)

        if not tally:
            error = last_error or NoResultsError("competitors", "no competitors found in search results")
            logger.warning(f"Competitor analysis for {domain} failed: {error}")
            return Failed(error, error_competitors(domain))

        competitors = rank_competitors(tally, domain)
        logger.info("Competitors: " + ", ".join(f"{c.ranking}. {c.name} ({c.score})" for c in competitors))
        return Real(competitors)


# ---------------------------------------------------------------------------
# Keywords
# ---------------------------------------------------------------------------

MAX_KEYWORD_RESULTS = 5
DATAFORSEO_KEYWORDS = 3


def keyword_targets(intel: BusinessIntelligence) -> list[str]:
    if intel.keywords:
        return list(intel.keywords[:8])
    industry = intel.industry
    return [
        f"{industry} services",
        f"best {industry}",
        f"{industry} solutions",
        f"{industry} company",
        f"top {industry}",
        f"{industry} reviews",
    ]


def difficulty_from_competition(level: Optional[str]) -> str:
    level = (level or "").lower()
    return level if level in ("high", "medium", "low") else "medium"


def difficulty_from_serp(page: SerpPage) -> str:
    hosts = page.distinct_hosts()
    if hosts >= 8:
        return "high"
    if hosts >= 5:
        return "medium"
    return "low"


def estimate_volume(page: SerpPage) -> int:
    volume = 1000
    if page.ads:
        volume += 2000
    if page.news:
        volume += 1500
    volume += 300 * len(page.related_searches)
    return volume


def own_position(page: SerpPage, domain: str) -> Optional[int]:
    name_token = site_label(domain)
    for i, result in enumerate(page.organic, start=1):
        host = host_of(result["link"])
        if host and (is_own_host(host, domain) or (name_token and name_token in host)):
            return i
    return None


def demo_keywords(intel: BusinessIntelligence) -> list[KeywordMetric]:
    if intel.keywords:
        difficulties = ["high", "high", "medium", "medium", "low"]
        return [
            KeywordMetric(
                keyword=f"{REAL_ANALYSIS} {keyword}",
                difficulty=difficulties[i],
                volume=max(8000 - i * 1500, 1000),
            )
            for i, keyword in enumerate(intel.keywords[:5])
        ]
    industry = intel.industry
    return [
        KeywordMetric(keyword=f"{DEMO} {industry} services", difficulty="medium", volume=5000),
        KeywordMetric(keyword=f"{DEMO} best {industry}", difficulty="high", volume=3000),
        KeywordMetric(keyword=f"{DEMO} {industry} solutions", difficulty="low", volume=1500),
    ]


def error_keywords(domain: str) -> list[KeywordMetric]:
    name = base_name(domain)
    return [
        KeywordMetric(keyword=f"{API_ERROR} {name} services", difficulty="medium", volume=0),
        KeywordMetric(keyword=f"{API_ERROR} Unable to fetch real keyword data", difficulty="medium", volume=0),
        KeywordMetric(keyword=f"{API_ERROR} Check API keys and quotas", difficulty="medium", volume=0),
    ]


class KeywordProvider:
    def __init__(self, serp_backends: list[SearchBackend], dataforseo: Optional[DataForSeoClient] = None):
        self.serp_backends = serp_backends
        self.dataforseo = dataforseo

    async def _search(self, keyword: str, num: int = 10) -> SerpPage:
        """First backend that answers wins."""
        last_error: Optional[ProviderError] = None
        for backend in self.serp_backends:
            try:
                return await backend.search(keyword, num=num)
            except ProviderError as e:
                logger.warning(f"{backend.name} keyword search failed for '{keyword}': {e}")
                last_error = e
        raise last_error or NoResultsError("keywords", "no SERP backend configured")

    async def _volume_metric(self, keyword: str, domain: str) -> KeywordMetric:
        stats = await self.dataforseo.search_volume(keyword)
        position = None
        if self.serp_backends:
            try:
                position = own_position(await self._search(keyword, num=100), domain)
            except ProviderError:
                position = None
        return KeywordMetric(
            keyword=keyword,
            position=position,
            difficulty=difficulty_from_competition(stats["competition_level"]),
            volume=stats["search_volume"],
        )

    async def _serp_metric(self, keyword: str, domain: str) -> KeywordMetric:
        page = await self._search(keyword)
        return KeywordMetric(
            keyword=keyword,
            position=own_position(page, domain),
            difficulty=difficulty_from_serp(page),
            volume=estimate_volume(page),
        )

    async def analyze(self, domain: str, intel: BusinessIntelligence) -> ProviderOutcome[list[KeywordMetric]]:
        if not self.serp_backends and self.dataforseo is None:
            logger.warning("No keyword research API keys set — using demo keyword data")
            return Demo(demo_keywords(intel), "SERPER_API_KEY / SERPAPI_KEY / DATAFORSEO_LOGIN not configured")

        targets = keyword_targets(intel)
        results: list[KeywordMetric] = []
        last_error: Optional[ProviderError] = None

        if self.dataforseo is not None:
            for keyword in targets[:DATAFORSEO_KEYWORDS]:
                try:
                    results.append(await self._volume_metric(keyword, domain))
                except ProviderError as e:
                    logger.warning(f"DataForSEO lookup failed for '{keyword}': {e}")
                    last_error = e

        if self.serp_backends:
            done = {r.keyword for r in results}
            remaining = [k for k in targets if k not in done][: max(MAX_KEYWORD_RESULTS - len(results), 0)]
            for keyword in remaining:
                try:
                    results.append(await self._serp_metric(keyword, domain))
                except ProviderError as e:
                    last_error = e

        if not results:
            error = last_error or NoResultsError("keywords", "no keyword data retrieved")
            logger.warning(f"Keyword analysis for {domain} failed: {error}")
            return Failed(error, error_keywords(domain))

        results.sort(key=lambda k: k.volume, reverse=True)
        return Real(results[:MAX_KEYWORD_RESULTS])


# ---------------------------------------------------------------------------
# SERP presence
# ---------------------------------------------------------------------------

def demo_serp_presence(domain: str, intel: BusinessIntelligence) -> SerpPresence:
    btype = intel.business_type
    return SerpPresence(
        organic_results=[OrganicListing(
            position=3,
            url=f"https://{domain}",
            title=f"{REAL_ANALYSIS} {btype} - {intel.location}",
            snippet=f"{intel.description}. Configure SERP API keys to see actual Google rankings.",
        )],
        images_results=ImagesPresence(found=True, count=5, examples=[f"[ANALYSIS] {btype} images would appear here"]),
        maps_results=MapsPresence(
            found=btype == "restaurant" or "service" in btype,
            position=1,
            business_name=f"{btype} in {intel.location}",
            address=intel.location,
            rating=4.2,
        ),
        people_also_ask=PeopleAlsoAsk(
            questions=[
                f"What services does {btype} offer?",
                f"Best {btype} in {intel.location}?",
                f"How to contact {btype}?",
            ],
            related_to_website=True,
        ),
    )


def build_serp_presence(page: SerpPage, domain: str, intel: BusinessIntelligence) -> SerpPresence:
    name = base_name(domain).lower()
    btype = intel.business_type.lower()

    def relevant(title: str) -> bool:
        title = title.lower()
        return bool(title) and (name in title or btype in title)

    presence = SerpPresence(
        organic_results=[
            OrganicListing(position=i, url=r["link"], title=r["title"], snippet=r["snippet"])
            for i, r in enumerate(page.organic, start=1)
            if is_own_host(host_of(r["link"]), domain)
        ],
        paid_ads=[
            PaidAd(position=i, url=a["link"], title=a["title"], description=a["description"])
            for i, a in enumerate(page.ads, start=1)
            if is_own_host(host_of(a["link"]), domain)
        ],
        people_also_ask=PeopleAlsoAsk(
            questions=page.questions[:5],
            related_to_website=any(name in q.lower() for q in page.questions),
        ),
    )
    for i, place in enumerate(page.places, start=1):
        if name and name in (place["title"] or "").lower():
            presence.maps_results = MapsPresence(
                found=True,
                position=i,
                business_name=place["title"],
                address=place["address"] or "",
                rating=place["rating"],
            )
    if page.answer_box:
        presence.featured_snippets = FeaturedSnippet(found=True, **page.answer_box)
    if page.knowledge_graph:
        presence.knowledge_panel = KnowledgePanel(found=True, **page.knowledge_graph)

    news = [n for n in page.news if relevant(n["title"])]
    if news:
        presence.news_results = NewsPresence(found=True, articles=[NewsArticle(**n) for n in news[:3]])
    videos = [v for v in page.videos if relevant(v["title"])]
    if videos:
        presence.video_results = VideoPresence(
            found=True,
            videos=[VideoItem(title=v["title"], platform=v["platform"], url=v["link"]) for v in videos[:3]],
        )
    return presence


class SerpPresenceProvider:
    def __init__(self, backends: list[SearchBackend]):
        self.backends = backends

    async def analyze(self, domain: str, intel: BusinessIntelligence) -> ProviderOutcome[SerpPresence]:
        if not self.backends:
            logger.warning("No SERP API keys set — using demo SERP presence data")
            return Demo(demo_serp_presence(domain, intel), "SERPER_API_KEY / SERPAPI_KEY not configured")

        name = base_name(domain)
        query = name if len(name) > 3 else f"{name} {intel.location_base}"
        gl = "au" if "australia" in intel.location.lower() else "us"
        last_error: Optional[ProviderError] = None

        for backend in self.backends:
            try:
                page = await backend.search(query, num=20, gl=gl)
            except ProviderError as e:
                logger.warning(f"{backend.name} SERP presence search failed: {e}")
                last_error = e
                continue

            presence = build_serp_presence(page, domain, intel)
            try:
                images = await backend.images(f"{name} {intel.business_type}")
                own = [img for img in images if is_own_host(host_of(img["link"]), domain)]
                presence.images_results = ImagesPresence(
                    found=bool(own),
                    count=len(own),
                    examples=[img["title"] or "Business image" for img in own[:3]],
                )
            except ProviderError as e:
                logger.warning(f"{backend.name} image search failed, images presence left empty: {e}")

            logger.info(
                f"SERP presence for {domain}: {len(presence.organic_results)} organic, "
                f"{len(presence.paid_ads)} ads, maps={presence.maps_results.found}, "
                f"images={presence.images_results.count}"
            )
            return Real(presence)

        return Failed(last_error, SerpPresence())


# ---------------------------------------------------------------------------
# Assembly from configuration
# ---------------------------------------------------------------------------

@dataclass
class ProviderSet:
    performance: PerformanceProvider
    competitors: CompetitorProvider
    keywords: KeywordProvider
    serp: SerpPresenceProvider

    @property
    def configured(self) -> dict[str, bool]:
        return {
            "performance": self.performance.client is not None,
            "competitors": bool(self.competitors.backends),
            "keywords": bool(self.keywords.serp_backends) or self.keywords.dataforseo is not None,
            "serp_presence": bool(self.serp.backends),
        }


def build_providers(
    *,
    pagespeed_key: str = "",
    serper_key: str = "",
    serpapi_key: str = "",
    dataforseo_login: str = "",
    dataforseo_password: str = "",
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> ProviderSet:
    """Wire adapters to whichever backends have credentials. Serper outranks SerpAPI."""
    serp: list = []
    competitor_budget: list[tuple[SearchBackend, int]] = []
    if serper_key:
        serper = SerperClient(serper_key, transport=transport)
        serp.append(serper)
        competitor_budget.append((serper, 3))
    if serpapi_key:
        serpapi = SerpApiClient(serpapi_key, transport=transport)
        serp.append(serpapi)
        competitor_budget.append((serpapi, 2))

    dataforseo = None
    if dataforseo_login and dataforseo_password:
        dataforseo = DataForSeoClient(dataforseo_login, dataforseo_password, transport=transport)

    return ProviderSet(
        performance=PerformanceProvider(PageSpeedClient(pagespeed_key, transport=transport) if pagespeed_key else None),
        competitors=CompetitorProvider(competitor_budget),
        keywords=KeywordProvider(serp, dataforseo),
        serp=SerpPresenceProvider(serp),
    )
