import pytest
import pytest_asyncio

from agents import (
    AGENT_TYPES,
    AgentCoordinator,
    ContentAnalysisAgent,
    TechnicalSeoAgent,
    core_web_vitals_grade,
    page_speed_grade,
    parse_sections,
    ux_score,
)
from conftest import ScriptedSynthesizer
from crawler import hostname_profile
from models import PageSpeed
from providers import DEMO_PAGESPEED
from synthesis import UnavailableSynthesizer

MODEL_REPLY = """
## Key Findings
1. **Slow LCP** on mobile
2. Missing alt text on gallery images

## Recommendations:
- Compress hero images
- Add descriptive alt text
"""


@pytest_asyncio.fixture
async def basic(demo_pipeline):
    return await demo_pipeline.run("example.com")


@pytest.fixture
def intel():
    return hostname_profile("https://example.com")


def test_parse_sections_splits_by_heading():
    findings, recommendations = parse_sections(MODEL_REPLY, ("finding",), ("recommendation",))
    assert findings == ["Slow LCP on mobile", "Missing alt text on gallery images"]
    assert recommendations == ["Compress hero images", "Add descriptive alt text"]


def test_parse_sections_accepts_numbered_headings():
    text = "1. Content gaps:\n- No menu page\n2. **Optimization recommendations**\n- Add a menu page"
    findings, recommendations = parse_sections(text, ("gap",), ("recommendation",))
    assert findings == ["No menu page"]
    assert recommendations == ["Add a menu page"]


def test_parse_sections_caps_each_list():
    bullets = "\n".join(f"- item {i}" for i in range(9))
    findings, _ = parse_sections(f"Findings\n{bullets}", ("finding",), ("recommendation",))
    assert len(findings) == 5


def test_prose_without_headings_yields_nothing():
    assert parse_sections("Everything looks fine.", ("finding",), ("recommendation",)) == ([], [])


@pytest.mark.parametrize("score, grade", [(95, "A"), (80, "B"), (70, "C"), (65, "D"), (10, "F")])
def test_page_speed_grade(score, grade):
    assert page_speed_grade(score) == grade


def test_ux_and_core_web_vitals():
    assert ux_score(DEMO_PAGESPEED) == 70
    assert core_web_vitals_grade(DEMO_PAGESPEED) == "A"

    slow = PageSpeed(mobile=15, desktop=40, first_contentful_paint=3.5,
                     largest_contentful_paint=5.0, cumulative_layout_shift=0.4)
    assert ux_score(slow) == 0
    assert core_web_vitals_grade(slow) == "D"


@pytest.mark.asyncio
async def test_agent_uses_model_sections(basic, intel):
    synth = ScriptedSynthesizer(default=MODEL_REPLY)
    result = await TechnicalSeoAgent("example.com", intel, basic, synth).analyze()

    assert result.status == "completed"
    assert result.progress == 100
    assert result.findings[0] == "Slow LCP on mobile"
    assert result.data == {"technicalScore": 85, "criticalIssues": 0, "pageSpeedGrade": "C"}
    assert "example.com" in synth.calls[0]["prompt"]


@pytest.mark.asyncio
async def test_agent_falls_back_to_rules_without_model(basic, intel):
    result = await ContentAnalysisAgent("example.com", intel, basic, UnavailableSynthesizer()).analyze()

    assert result.status == "completed"
    assert result.data["contentScore"] == 60 + 15 + 3
    assert result.findings[0] == "Content score is 78/100"
    assert result.recommendations


@pytest.mark.asyncio
async def test_agent_falls_back_when_reply_has_no_sections(basic, intel):
    synth = ScriptedSynthesizer(default="Looks great overall.")
    result = await TechnicalSeoAgent("example.com", intel, basic, synth).analyze()
    assert result.findings[0].startswith("Technical SEO score is 85/100")


@pytest.mark.asyncio
async def test_coordinator_runs_all_agents_in_order(basic, intel):
    results = await AgentCoordinator(UnavailableSynthesizer()).run("example.com", intel, basic)

    assert [r.agent_type for r in results] == AGENT_TYPES
    assert all(r.status == "completed" for r in results)
    assert all(r.findings for r in results)


@pytest.mark.asyncio
async def test_coordinator_isolates_a_crashing_agent(basic, intel):
    class CrashOnUx(ScriptedSynthesizer):
        async def complete(self, prompt, *, system, max_tokens):
            if prompt.startswith("User experience analysis"):
                raise RuntimeError("model client exploded")
            return await super().complete(prompt, system=system, max_tokens=max_tokens)

    results = await AgentCoordinator(CrashOnUx(default=MODEL_REPLY)).run("example.com", intel, basic)

    by_type = {r.agent_type: r for r in results}
    assert by_type["user_experience"].status == "failed"
    assert by_type["user_experience"].error == "model client exploded"
    assert by_type["technical_seo"].status == "completed"
    assert sum(r.status == "completed" for r in results) == 5
