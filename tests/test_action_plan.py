import json
from datetime import date
from types import SimpleNamespace

import pytest
import pytest_asyncio

from action_plan import (
    FALLBACK_ACTION_ITEMS,
    ActionPlanGenerator,
    benchmark_scores,
    build_kpis,
    build_milestones,
    build_timeline,
    fallback_action_items,
    long_term_goals,
    overall_score,
    potential_improvement,
    prune_dependencies,
    quick_wins,
)
from agents import AgentCoordinator
from conftest import ScriptedSynthesizer
from crawler import hostname_profile
from models import AgentAnalysis
from synthesis import ClaudeSynthesizer, UnavailableSynthesizer


def make_item(n, **overrides):
    item = {
        "id": f"action_{n}",
        "title": f"Action {n}",
        "description": "Do the thing",
        "priority": "high",
        "impact": "high",
        "effort": "low",
        "category": "technical",
        "timeframe": "this_week",
        "steps": ["Step 1: open Search Console", "Step 2: fix it"],
        "tools": ["Google Search Console"],
        "expectedImprovement": "Better rankings",
        "dependencies": [],
    }
    item.update(overrides)
    return item


def items_reply(count, **overrides):
    return "Here is your plan:\n" + json.dumps([make_item(n, **overrides) for n in range(1, count + 1)])


@pytest.fixture
def intel():
    return hostname_profile("https://example.com")


@pytest_asyncio.fixture
async def basic(demo_pipeline):
    return await demo_pipeline.run("example.com")


@pytest_asyncio.fixture
async def agent_results(basic, intel):
    return await AgentCoordinator(UnavailableSynthesizer()).run("example.com", intel, basic)


def generator(synth, intel, basic, agent_results):
    return ActionPlanGenerator(synth, "example.com", agent_results, intel, basic)


# ---------------------------------------------------------------------------
# Deterministic parts
# ---------------------------------------------------------------------------

def test_fallback_items_are_valid():
    items = fallback_action_items()
    assert len(items) == len(FALLBACK_ACTION_ITEMS) == 5
    assert all(len(i.steps) == 12 for i in items)


def test_prune_dependencies_keeps_only_earlier_items():
    items = fallback_action_items()
    items[0] = items[0].model_copy(update={"dependencies": ["action_2"]})
    items[2] = items[2].model_copy(update={"dependencies": ["action_1", "action_9", "action_4"]})

    pruned = prune_dependencies(items)

    assert pruned[0].dependencies == []
    assert pruned[2].dependencies == ["action_1"]
    assert pruned[1].dependencies is None


def test_timeline_quick_wins_and_goals_from_fallback_items():
    items = fallback_action_items()
    assert build_timeline(items) == "3 this week, 2 this month"
    assert quick_wins(items) == ["Fix Critical Technical SEO Issues"]
    assert long_term_goals(items) == [
        "Create SEO-Optimized Content for Target Keywords",
        "Build Local Citations and Business Listings",
    ]
    assert build_timeline([]) == "4-6 weeks for full implementation"


def test_milestones_are_dated_from_today():
    milestones = build_milestones(fallback_action_items(), date(2026, 1, 1))

    assert [m.due_date for m in milestones] == ["2026-01-08", "2026-01-22", "2026-01-31", "2026-04-01"]
    assert milestones[0].action_items == ["action_1", "action_2", "action_4"]
    assert milestones[1].action_items == ["action_2", "action_4"]
    assert len(milestones[3].action_items) == 5
    assert all(m.status == "not_started" for m in milestones)


@pytest.mark.asyncio
async def test_scores_blend_agent_data(basic, agent_results):
    overall = overall_score(basic, agent_results)
    assert overall == 75
    assert potential_improvement(overall, agent_results) == 90


def test_overall_score_ignores_failed_agents():
    failed_agent = AgentAnalysis(
        agent_type="technical_seo", status="failed", data={"technicalScore": 10}, start_time="t",
    )
    assert overall_score(None, [failed_agent]) == 60


def test_potential_improvement_is_capped():
    ux = AgentAnalysis(agent_type="user_experience", status="completed",
                       data={"mobileOptimization": 20}, start_time="t")
    tech = AgentAnalysis(agent_type="technical_seo", status="completed",
                         data={"criticalIssues": 3}, start_time="t")
    assert potential_improvement(80, [ux, tech]) == 95


@pytest.mark.asyncio
async def test_benchmarks_and_kpis(basic, agent_results):
    scores = benchmark_scores(basic, agent_results)
    assert scores.content == 78
    assert scores.user_experience == 70
    assert scores.technical == round(85 * 0.9)
    assert scores.authority <= 90

    kpis = {k.metric: k for k in build_kpis(basic)}
    assert kpis["Overall SEO Score"].target == 90
    assert kpis["Mobile Speed Score"].target == 85
    assert kpis["Keyword Rankings (Top 10)"].target == 6
    assert kpis["Technical SEO Score"].current == 85


# ---------------------------------------------------------------------------
# Synthesized parts
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_action_plan_without_model_uses_fallbacks(intel, basic, agent_results):
    plan = await generator(UnavailableSynthesizer(), intel, basic, agent_results).generate_action_plan()

    assert [i.id for i in plan.items] == [f"action_{n}" for n in range(1, 6)]
    assert plan.overall_score == 75
    assert plan.potential_improvement == 90
    assert plan.summary.startswith("Your website currently scores 75/100")
    assert plan.quick_wins == ["Fix Critical Technical SEO Issues"]


@pytest.mark.asyncio
async def test_action_plan_uses_valid_model_items(intel, basic, agent_results):
    reply = json.loads(items_reply(9))
    reply[0]["dependencies"] = ["action_3"]
    reply[4]["dependencies"] = ["action_1", "action_2", "action_7"]
    synth = ScriptedSynthesizer({
        "SEO strategist": json.dumps(reply),
        "executive summaries": "Fixing speed issues unlocks the biggest gains.",
    })

    plan = await generator(synth, intel, basic, agent_results).generate_action_plan()

    assert len(plan.items) == 9
    assert plan.items[0].dependencies == []
    assert plan.items[4].dependencies == ["action_1", "action_2"]
    assert plan.items[0].expected_improvement == "Better rankings"
    assert plan.summary == "Fixing speed issues unlocks the biggest gains."
    assert plan.timeline == "9 this week"
    assert len(plan.quick_wins) == 5


@pytest.mark.asyncio
async def test_out_of_vocabulary_priority_falls_back(intel, basic, agent_results):
    synth = ScriptedSynthesizer({"SEO strategist": items_reply(9, priority="urgent")})
    items = await generator(synth, intel, basic, agent_results).generate_action_items()
    assert len(items) == 5
    assert items[0].title == FALLBACK_ACTION_ITEMS[0]["title"]


@pytest.mark.asyncio
async def test_too_few_items_falls_back(intel, basic, agent_results):
    synth = ScriptedSynthesizer({"SEO strategist": items_reply(3)})
    items = await generator(synth, intel, basic, agent_results).generate_action_items()
    assert len(items) == 5


@pytest.mark.asyncio
async def test_prompt_carries_agent_findings(intel, basic, agent_results):
    synth = ScriptedSynthesizer()
    await generator(synth, intel, basic, agent_results).generate_action_items()

    prompt = synth.calls[0]["prompt"]
    assert "example.com" in prompt
    assert agent_results[0].findings[0] in prompt


@pytest.mark.asyncio
async def test_competitive_intelligence_from_model(intel, basic, agent_results):
    reply = json.dumps({
        "marketPosition": "Challenger",
        "competitiveAdvantages": ["Fast site"],
        "competitiveGaps": ["Few reviews"],
        "opportunityAreas": ["Local pages"],
    })
    synth = ScriptedSynthesizer({"competitive intelligence expert": reply})

    intelligence = await generator(synth, intel, basic, agent_results).generate_competitive_intelligence()

    assert intelligence.market_position == "Challenger"
    assert intelligence.competitive_gaps == ["Few reviews"]
    assert intelligence.benchmark_scores.content == 78


@pytest.mark.asyncio
async def test_competitive_intelligence_fallback(intel, basic, agent_results):
    intelligence = await generator(
        ScriptedSynthesizer(default="{}"), intel, basic, agent_results,
    ).generate_competitive_intelligence()

    assert "example business" in intelligence.market_position
    assert len(intelligence.opportunity_areas) == 3


@pytest.mark.asyncio
async def test_content_strategy_from_model(intel, basic, agent_results):
    reply = json.dumps({
        "contentGaps": ["No pricing page"],
        "topicClusters": [{"topic": "Pricing", "keywords": ["cost"], "priority": "high"}],
        "contentCalendar": [
            {"week": "Week 1", "contentType": "Landing Page", "topic": "Pricing", "targetKeyword": "cost"},
        ],
    })
    synth = ScriptedSynthesizer({"content strategy expert": reply})

    strategy = await generator(synth, intel, basic, agent_results).generate_content_strategy()

    assert strategy.content_gaps == ["No pricing page"]
    assert strategy.content_calendar[0].target_keyword == "cost"


@pytest.mark.asyncio
async def test_content_strategy_fallback_when_gaps_empty(intel, basic, agent_results):
    synth = ScriptedSynthesizer({"content strategy expert": '{"contentGaps": []}'})
    strategy = await generator(synth, intel, basic, agent_results).generate_content_strategy()

    assert len(strategy.content_gaps) == 5
    assert [e.week for e in strategy.content_calendar] == ["Week 1", "Week 2", "Week 3", "Week 4"]
    assert strategy.topic_clusters[0].keywords == ["example services"]


@pytest.mark.asyncio
async def test_progress_tracking(intel, basic, agent_results):
    tracking = generator(UnavailableSynthesizer(), intel, basic, agent_results).generate_progress_tracking(
        fallback_action_items(), today=date(2026, 3, 1),
    )
    assert tracking.milestones[0].due_date == "2026-03-08"
    assert len(tracking.kpis) == 5


@pytest.mark.asyncio
async def test_empty_model_reply_falls_back_to_default_items(intel, basic, agent_results):
    class EmptyMessages:
        async def create(self, **kwargs):
            return SimpleNamespace(content=[])

    synth = ClaudeSynthesizer(SimpleNamespace(messages=EmptyMessages()))
    items = await generator(synth, intel, basic, agent_results).generate_action_items()

    assert [i.title for i in items] == [entry["title"] for entry in FALLBACK_ACTION_ITEMS]
