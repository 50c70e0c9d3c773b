"""
Shared fixtures. Environment is pinned before any app module is imported:
no provider credentials, a throwaway SQLite file, and a generous rate limit.
"""

import os
import tempfile

_DB_DIR = tempfile.mkdtemp(prefix="seo-analyzer-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_DB_DIR, 'analyses.db')}"
os.environ["RATE_LIMIT_PER_MIN"] = "10000"
for _key in (
    "GOOGLE_PAGESPEED_API_KEY",
    "PAGESPEED_API_KEY",
    "SERPER_API_KEY",
    "SERPAPI_KEY",
    "DATAFORSEO_LOGIN",
    "DATAFORSEO_PASSWORD",
    "ANTHROPIC_API_KEY",
):
    # Empty rather than unset so a local .env cannot switch providers on
    os.environ[_key] = ""

import httpx
import pytest

from cache import ResultCache
from crawler import BusinessIntelligenceExtractor, ContentFetcher
from models import BusinessIntelligence
from pipeline import AnalysisPipeline
from providers import build_providers
from synthesis import Synthesizer

RESTAURANT_HOME = """
<html><head><title>Gurkha Kitchen</title><script>var x = 1;</script></head>
<body>
  <nav><a href="/about">About us</a> <a href="/menu">Menu</a> <a href="https://other.com/services">Partner</a></nav>
  <h1>Authentic Nepalese restaurant</h1>
  <p>Fresh momo, curry and dal bhat cooked by our chef. Book a table for lunch or dinner.</p>
  <p>Located in Brisbane, QLD. Takeaway and delivery available.</p>
  <footer>Copyright Gurkha Kitchen</footer>
</body></html>
"""

RESTAURANT_ABOUT = """
<html><body><h2>About</h2><p>Our restaurant serves traditional Himalayan cuisine and catering for events.</p></body></html>
"""


class FakeClock:
    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def site_transport(pages: dict[str, str]) -> httpx.MockTransport:
    """Serve the given {url: html} map; anything else is a 404."""

    def handler(request: httpx.Request) -> httpx.Response:
        url = str(request.url).rstrip("/")
        for page_url, html in pages.items():
            if page_url.rstrip("/") == url:
                return httpx.Response(200, text=html, headers={"Content-Type": "text/html"})
        return httpx.Response(404, text="not found")

    return httpx.MockTransport(handler)


def offline_transport() -> httpx.MockTransport:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("offline", request=request)

    return httpx.MockTransport(handler)


class ScriptedSynthesizer(Synthesizer):
    """Returns canned model text chosen by a substring of the system prompt."""

    def __init__(self, replies: dict[str, str] = None, default: str = None):
        self.replies = replies or {}
        self.default = default
        self.calls: list[dict] = []

    async def complete(self, prompt: str, *, system: str, max_tokens: int):
        self.calls.append({"prompt": prompt, "system": system, "max_tokens": max_tokens})
        for marker, reply in self.replies.items():
            if marker in system or marker in prompt:
                return reply
        return self.default


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def restaurant_intel() -> BusinessIntelligence:
    return BusinessIntelligence(
        business_type="restaurant",
        industry="nepalese",
        location="Brisbane, QLD",
        products=["momo", "curry", "dal bhat"],
        services=["dine-in", "takeaway", "catering"],
        keywords=["restaurant", "nepalese", "restaurant Brisbane", "nepalese Brisbane", "best restaurant Brisbane", "momo"],
        description="Restaurant based in Brisbane, QLD offering momo, curry, dal bhat",
    )


@pytest.fixture
def offline_extractor() -> BusinessIntelligenceExtractor:
    """Crawls nothing, so every analysis uses the hostname profile."""
    return BusinessIntelligenceExtractor(ContentFetcher(transport=offline_transport()))


@pytest.fixture
def demo_pipeline(offline_extractor, clock) -> AnalysisPipeline:
    """No credentials and no network: every stage is demo data."""
    return AnalysisPipeline(
        build_providers(),
        extractor=offline_extractor,
        cache=ResultCache(clock=clock),
    )
