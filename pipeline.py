"""
pipeline.py: the basic SEO analysis run shared by both endpoints.

business intelligence → (performance ∥ competitors ∥ keywords ∥ SERP presence)
→ technical scoring → score blend → AnalysisResult, cached per domain.
"""

import asyncio
import logging
from typing import Optional
from urllib.parse import urlparse

from cache import ResultCache, SingleFlight
from crawler import BusinessIntelligenceExtractor, extract_domain
from models import (
    AnalysisResult,
    BusinessProfile,
    Issue,
    MarketPosition,
)
from providers import ProviderOutcome, ProviderSet, score_technical_seo

logger = logging.getLogger("seo-analyzer")

DEFAULT_OWN_SCORE = 70
DEFAULT_MARKET_RANK = 3
UNSEEN_COMPETITORS = 12

# Stage label and the variables that switch it to real data
STAGE_KEYS = {
    "performance": "GOOGLE_PAGESPEED_API_KEY",
    "competitors": "SERPER_API_KEY or SERPAPI_KEY",
    "keywords": "SERPER_API_KEY, SERPAPI_KEY or DATAFORSEO_LOGIN/DATAFORSEO_PASSWORD",
    "SERP presence": "SERPER_API_KEY or SERPAPI_KEY",
}


class InvalidURLError(ValueError):
    pass


def normalize_url(raw: str) -> str:
    """Prefix https:// when no scheme is given and reject anything without a plausible host."""
    url = (raw or "").strip()
    if not url:
        raise InvalidURLError("URL is required")
    if not url.startswith(("http://", "https://")):
        url = f"https://{url}"
    try:
        parsed = urlparse(url)
        host = parsed.hostname or ""
    except ValueError as e:
        raise InvalidURLError("Invalid URL format") from e
    if not host or " " in url or "." not in host.strip("."):
        raise InvalidURLError("Invalid URL format")
    return url


def blend_seo_score(mobile: int, desktop: int, technical: int, own_score: int) -> int:
    score = round(0.3 * mobile + 0.2 * desktop + 0.3 * technical + 0.2 * own_score)
    return max(0, min(100, score))


def market_share(rank: int) -> int:
    return round(max(100 / (rank * 2.5), 1))


def build_improvements(technical_issues: list[Issue]) -> list[Issue]:
    improvements = [
        *technical_issues,
        Issue(
            title="Improve Content Quality",
            impact="medium",
            description="Create more comprehensive, valuable content that answers user questions.",
        ),
        Issue(
            title="Build Quality Backlinks",
            impact="high",
            description="Develop a strategy to earn links from reputable websites in your industry.",
        ),
    ]
    return improvements[:4]


def demo_message(outcomes: dict[str, ProviderOutcome]) -> Optional[str]:
    degraded = [stage for stage, outcome in outcomes.items() if outcome.degraded]
    if not degraded:
        return None
    keys = "; ".join(f"{stage}: {STAGE_KEYS[stage]}" for stage in degraded)
    return (
        f"Demo mode active for {', '.join(degraded)}. "
        f"Configure API keys for real data ({keys})."
    )


class AnalysisPipeline:
    """
    Single entry point for a basic analysis.

    Only ``run`` writes to the cache; callers read. A cache hit returns the
    very object stored by the earlier run.
    """

    def __init__(
        self,
        providers: ProviderSet,
        extractor: Optional[BusinessIntelligenceExtractor] = None,
        cache: Optional[ResultCache] = None,
        single_flight: Optional[SingleFlight] = None,
    ):
        self.providers = providers
        self.extractor = extractor or BusinessIntelligenceExtractor()
        self.cache = cache if cache is not None else ResultCache()
        self.single_flight = single_flight or SingleFlight()

    async def run(self, url: str) -> AnalysisResult:
        url = normalize_url(url)
        domain = extract_domain(url)

        cached = self.cache.get(domain)
        if cached is not None:
            return cached

        return await self.single_flight.do(domain, lambda: self._analyze(url, domain))

    async def _analyze(self, url: str, domain: str) -> AnalysisResult:
        logger.info(f"Starting SEO analysis for {domain}")

        intel = await self.extractor.analyze(url)
        logger.info(f"Business profile for {domain}: {intel.business_type} / {intel.industry} / {intel.location}")

        performance, competitors, keywords, serp = await asyncio.gather(
            self.providers.performance.analyze(url),
            self.providers.competitors.analyze(domain, intel),
            self.providers.keywords.analyze(domain, intel),
            self.providers.serp.analyze(domain, intel),
        )
        page_speed = performance.data
        technical = score_technical_seo(page_speed)

        own = next((c for c in competitors.data if c.name == domain), None)
        seo_score = blend_seo_score(
            page_speed.mobile,
            page_speed.desktop,
            technical.score,
            own.score if own else DEFAULT_OWN_SCORE,
        )
        rank = own.ranking if own else DEFAULT_MARKET_RANK

        outcomes = {
            "performance": performance,
            "competitors": competitors,
            "keywords": keywords,
            "SERP presence": serp,
        }
        is_demo = any(outcome.degraded for outcome in outcomes.values())

        result = AnalysisResult(
            seo_score=seo_score,
            domain=domain,
            page_speed=page_speed,
            technical_seo=technical,
            competitors=competitors.data,
            keywords=keywords.data,
            improvements=build_improvements(technical.issues),
            market_position=MarketPosition(
                rank=rank,
                total_competitors=len(competitors.data) + UNSEEN_COMPETITORS,
                market_share=market_share(rank),
            ),
            serp_presence=serp.data,
            business_intelligence=BusinessProfile.from_intel(intel),
            is_demo_mode=is_demo,
            demo_message=demo_message(outcomes),
        )

        self.cache.set(domain, result)
        logger.info(f"Analysis complete for {domain}: score {seo_score}{' (demo mode)' if is_demo else ''}")
        return result
