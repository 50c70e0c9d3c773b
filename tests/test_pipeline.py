import asyncio

import pytest

from cache import ResultCache
from crawler import BusinessIntelligenceExtractor, hostname_profile
from models import Issue
from pipeline import (
    AnalysisPipeline,
    InvalidURLError,
    blend_seo_score,
    build_improvements,
    demo_message,
    market_share,
    normalize_url,
)
from providers import DEMO_PAGESPEED, Demo, Real, build_providers


class CountingExtractor(BusinessIntelligenceExtractor):
    def __init__(self):
        super().__init__()
        self.calls = 0

    async def analyze(self, url):
        self.calls += 1
        await asyncio.sleep(0)
        return hostname_profile(url)


@pytest.fixture
def counting_pipeline(clock):
    extractor = CountingExtractor()
    return AnalysisPipeline(build_providers(), extractor=extractor, cache=ResultCache(clock=clock)), extractor


@pytest.mark.parametrize(
    "raw, expected",
    [
        ("example.com", "https://example.com"),
        ("  http://example.com/page ", "http://example.com/page"),
        ("https://sub.example.co.uk", "https://sub.example.co.uk"),
    ],
)
def test_normalize_url_accepts(raw, expected):
    assert normalize_url(raw) == expected


@pytest.mark.parametrize("raw", ["not a url", "localhost", "https://", "http://exa mple.com"])
def test_normalize_url_rejects(raw):
    with pytest.raises(InvalidURLError, match="Invalid URL format"):
        normalize_url(raw)


@pytest.mark.parametrize("raw", ["", "   ", None])
def test_normalize_url_requires_value(raw):
    with pytest.raises(InvalidURLError, match="URL is required"):
        normalize_url(raw)


def test_blend_seo_score_weights_and_clamps():
    assert blend_seo_score(70, 85, 85, 75) == 78
    assert blend_seo_score(100, 100, 100, 100) == 100
    assert blend_seo_score(0, 0, 0, 0) == 0


def test_market_share_by_rank():
    assert market_share(1) == 40
    assert market_share(3) == 13
    assert market_share(100) == 1


def test_improvements_capped_at_four():
    issues = [Issue(title=f"Issue {i}", impact="low", description="") for i in range(3)]
    improvements = build_improvements(issues)
    assert len(improvements) == 4
    assert improvements[-1].title == "Improve Content Quality"


def test_demo_message_lists_degraded_stages_only():
    outcomes = {
        "performance": Real(DEMO_PAGESPEED),
        "competitors": Demo([], "no key"),
        "SERP presence": Demo(None, "no key"),
    }
    message = demo_message(outcomes)
    assert message.startswith("Demo mode active for competitors, SERP presence.")
    assert "GOOGLE_PAGESPEED_API_KEY" not in message
    assert demo_message({"performance": Real(DEMO_PAGESPEED)}) is None


@pytest.mark.asyncio
async def test_demo_run_is_fully_populated(demo_pipeline):
    result = await demo_pipeline.run("example.com")

    assert result.domain == "example.com"
    assert result.is_demo_mode
    assert result.demo_message
    assert result.seo_score == 78
    assert result.page_speed == DEMO_PAGESPEED
    assert [c.ranking for c in result.competitors] == [1, 2, 3, 4, 5]
    assert next(c for c in result.competitors if c.name == "example.com").ranking == 3
    assert result.market_position.rank == 3
    assert result.market_position.total_competitors == 17
    assert result.market_position.market_share == 13
    assert 1 <= len(result.improvements) <= 4
    assert result.business_intelligence.business_type == "example business"


@pytest.mark.asyncio
async def test_cache_hit_returns_same_object_without_reanalysing(counting_pipeline):
    pipeline, extractor = counting_pipeline

    first = await pipeline.run("https://example.com")
    second = await pipeline.run("example.com/")

    assert second is first
    assert extractor.calls == 1


@pytest.mark.asyncio
async def test_cache_expiry_triggers_fresh_run(counting_pipeline, clock):
    pipeline, extractor = counting_pipeline

    first = await pipeline.run("example.com")
    clock.advance(pipeline.cache.ttl_seconds + 1)
    second = await pipeline.run("example.com")

    assert second is not first
    assert extractor.calls == 2


@pytest.mark.asyncio
async def test_concurrent_requests_share_one_analysis(counting_pipeline):
    pipeline, extractor = counting_pipeline

    results = await asyncio.gather(*(pipeline.run("example.com") for _ in range(3)))

    assert extractor.calls == 1
    assert all(r is results[0] for r in results)


@pytest.mark.asyncio
async def test_failed_run_is_not_cached(clock):
    class ExplodingExtractor(CountingExtractor):
        async def analyze(self, url):
            self.calls += 1
            if self.calls == 1:
                raise RuntimeError("crawler crashed")
            return hostname_profile(url)

    extractor = ExplodingExtractor()
    pipeline = AnalysisPipeline(build_providers(), extractor=extractor, cache=ResultCache(clock=clock))

    with pytest.raises(RuntimeError):
        await pipeline.run("example.com")
    assert len(pipeline.cache) == 0

    result = await pipeline.run("example.com")
    assert result.domain == "example.com"


@pytest.mark.asyncio
async def test_invalid_url_raises_before_any_work(counting_pipeline):
    pipeline, extractor = counting_pipeline
    with pytest.raises(InvalidURLError):
        await pipeline.run("not a url")
    assert extractor.calls == 0
