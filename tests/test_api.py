import time

import httpx
import pytest
from fastapi.testclient import TestClient

import main
from cache import ResultCache
from jobs import JobStore
from pipeline import AnalysisPipeline
from providers import build_providers
from synthesis import UnavailableSynthesizer

POLL_TIMEOUT = 10.0


class BrokenPipeline(AnalysisPipeline):
    async def run(self, url):
        raise RuntimeError("unexpected crash")


@pytest.fixture
def job_store():
    return JobStore()


@pytest.fixture
def client(offline_extractor, job_store):
    pipeline = AnalysisPipeline(build_providers(), extractor=offline_extractor, cache=ResultCache())
    main.app.dependency_overrides[main.get_pipeline] = lambda: pipeline
    main.app.dependency_overrides[main.get_job_store] = lambda: job_store
    main.app.dependency_overrides[main.get_synthesizer] = UnavailableSynthesizer
    main._rate_buckets.clear()
    with TestClient(main.app) as test_client:
        yield test_client
    main.app.dependency_overrides.clear()


def poll(client, analysis_id, until):
    deadline = time.monotonic() + POLL_TIMEOUT
    while True:
        resp = client.get(f"/analyze-comprehensive/{analysis_id}")
        if until(resp):
            return resp
        assert time.monotonic() < deadline, f"gave up polling {analysis_id}: {resp.json()}"
        time.sleep(0.05)


# ---------------------------------------------------------------------------
# Basic analysis
# ---------------------------------------------------------------------------

def test_analyze_seo_demo_mode(client):
    resp = client.post("/analyze-seo", json={"url": "example.com"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["domain"] == "example.com"
    assert body["isDemoMode"] is True
    assert body["demoMessage"].startswith("Demo mode active for performance")
    assert body["seoScore"] == 78
    assert body["pageSpeed"]["mobile"] == 70
    assert body["marketPosition"] == {"rank": 3, "totalCompetitors": 17, "marketShare": 13}
    assert sorted(c["ranking"] for c in body["competitors"]) == [1, 2, 3, 4, 5]
    assert body["businessIntelligence"]["businessType"] == "example business"
    assert "mapsResults" in body["serpPresence"]


def test_analyze_seo_repeat_is_served_from_cache(client):
    first = client.post("/analyze-seo", json={"url": "https://example.com"}).json()
    second = client.post("/analyze-seo", json={"url": "example.com/"}).json()
    assert first == second


@pytest.mark.parametrize(
    "payload, message",
    [
        ({}, "URL is required"),
        ({"url": ""}, "URL is required"),
        ({"url": "not a url"}, "Invalid URL format"),
        ({"url": "localhost"}, "Invalid URL format"),
    ],
)
def test_analyze_seo_rejects_bad_input(client, payload, message):
    resp = client.post("/analyze-seo", json=payload)
    assert resp.status_code == 400
    assert resp.json() == {"error": message}


def test_analyze_seo_unexpected_failure_is_500(client):
    main.app.dependency_overrides[main.get_pipeline] = lambda: BrokenPipeline(build_providers())

    resp = client.post("/analyze-seo", json={"url": "example.com"})

    assert resp.status_code == 500
    assert resp.json() == {"error": "Failed to analyze SEO. Please try again."}


def test_malformed_pagespeed_payload_degrades_instead_of_500(client, offline_extractor):
    broken = httpx.MockTransport(
        lambda request: httpx.Response(200, json={"lighthouseResult": {"categories": {"performance": None}}}),
    )
    pipeline = AnalysisPipeline(
        build_providers(pagespeed_key="key", transport=broken), extractor=offline_extractor, cache=ResultCache(),
    )
    main.app.dependency_overrides[main.get_pipeline] = lambda: pipeline

    resp = client.post("/analyze-seo", json={"url": "example.com"})

    assert resp.status_code == 200
    body = resp.json()
    assert body["isDemoMode"] is True
    assert body["pageSpeed"]["mobile"] == 75
    assert "performance" in body["demoMessage"]


def test_post_requests_are_rate_limited(client, monkeypatch):
    monkeypatch.setattr(main, "RATE_LIMIT", 2)

    codes = [client.post("/analyze-seo", json={"url": "example.com"}).status_code for _ in range(3)]

    assert codes == [200, 200, 429]
    assert client.get("/health").status_code == 200


# ---------------------------------------------------------------------------
# Comprehensive analysis
# ---------------------------------------------------------------------------

def test_comprehensive_analysis_runs_to_completion(client):
    resp = client.post("/analyze-comprehensive", json={"url": "example.com"})

    assert resp.status_code == 200
    started = resp.json()
    assert started["status"] == "started"
    assert started["analysisId"].startswith("comprehensive_example.com_")

    done = poll(client, started["analysisId"], lambda r: r.json()["status"] != "running").json()

    assert done["status"] == "completed"
    assert done["progress"] == 100
    assert done["basicAnalysis"]["seoScore"] == 78
    assert [a["agentType"] for a in done["agentResults"]] == main.AGENT_TYPES
    assert len(done["actionPlan"]["items"]) == 5
    assert done["actionPlan"]["items"][0]["expectedImprovement"]
    assert len(done["progressTracking"]["kpis"]) == 5


def test_finished_analysis_is_served_from_database(client):
    analysis_id = client.post("/analyze-comprehensive", json={"url": "example.com"}).json()["analysisId"]
    poll(client, analysis_id, lambda r: r.json()["status"] == "completed")

    # A fresh store has forgotten the job; the poll must fall back to the saved snapshot
    fresh_store = JobStore()
    main.app.dependency_overrides[main.get_job_store] = lambda: fresh_store
    resp = poll(client, analysis_id, lambda r: r.status_code == 200)

    assert resp.json()["id"] == analysis_id
    assert resp.json()["status"] == "completed"


def test_comprehensive_rejects_bad_url(client, job_store):
    resp = client.post("/analyze-comprehensive", json={"url": "not a url"})
    assert resp.status_code == 400
    assert len(job_store) == 0


def test_unknown_analysis_is_404(client):
    resp = client.get("/analyze-comprehensive/comprehensive_nowhere.com_000000000000")
    assert resp.status_code == 404
    assert resp.json() == {"error": "Analysis not found"}


# ---------------------------------------------------------------------------
# Service endpoints
# ---------------------------------------------------------------------------

def test_health_reports_configuration(client):
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert body["providers"] == {
        "performance": False,
        "competitors": False,
        "keywords": False,
        "serp_presence": False,
    }
    assert body["synthesis_available"] is False


def test_info_lists_agents(client):
    body = client.get("/info").json()
    assert body["agents"] == main.AGENT_TYPES
    assert body["endpoints"]["analyze_seo"] == "POST /analyze-seo"
