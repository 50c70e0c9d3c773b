import re

import pytest

from conftest import ScriptedSynthesizer
from database import init_db, load_analysis, save_analysis
from jobs import JOB_TTL_SECONDS, JobNotFound, JobStore, intel_from_result, run_comprehensive_analysis
from pipeline import AnalysisPipeline
from providers import build_providers
from synthesis import UnavailableSynthesizer


@pytest.fixture
def store(clock):
    return JobStore(clock=clock)


class BrokenPipeline(AnalysisPipeline):
    def __init__(self):
        super().__init__(build_providers())

    async def run(self, url):
        raise RuntimeError("search backend exploded")


class StrategistDown(ScriptedSynthesizer):
    async def complete(self, prompt, *, system, max_tokens):
        if "SEO strategist" in system:
            raise RuntimeError("model client exploded")
        return None


# ---------------------------------------------------------------------------
# JobStore
# ---------------------------------------------------------------------------

def test_create_starts_running_at_ten(store):
    job = store.create("example.com")

    assert re.fullmatch(r"comprehensive_example\.com_[0-9a-f]{12}", job.id)
    assert job.status == "running"
    assert job.progress == 10
    assert store.get(job.id).domain == "example.com"


def test_ids_are_unique(store):
    assert store.create("example.com").id != store.create("example.com").id


def test_get_returns_independent_copy(store):
    job = store.create("example.com")
    copy = store.get(job.id)
    copy.progress = 99
    copy.agent_results.append(None)

    fresh = store.get(job.id)
    assert fresh.progress == 10
    assert fresh.agent_results == []


def test_progress_never_goes_backwards(store):
    job = store.create("example.com")
    store.advance(job.id, 25)

    with pytest.raises(ValueError):
        store.advance(job.id, 20)
    with pytest.raises(ValueError):
        store.advance(job.id, 100)
    assert store.get(job.id).progress == 25


def test_complete_is_terminal(store):
    job = store.create("example.com")
    store.complete(job.id)

    done = store.get(job.id)
    assert done.status == "completed"
    assert done.progress == 100
    assert done.completed_at is not None
    with pytest.raises(ValueError):
        store.advance(job.id, 50)


def test_fail_freezes_progress(store):
    job = store.create("example.com")
    store.advance(job.id, 50)
    store.fail(job.id, "boom")

    failed = store.get(job.id)
    assert failed.status == "failed"
    assert failed.progress == 50
    assert failed.error == "boom"


def test_fail_after_completion_is_ignored(store):
    job = store.create("example.com")
    store.complete(job.id)
    store.fail(job.id, "late error")
    assert store.get(job.id).status == "completed"


def test_unknown_job(store):
    assert store.get("comprehensive_nothing_000000000000") is None
    with pytest.raises(JobNotFound):
        store.advance("comprehensive_nothing_000000000000", 25)


def test_finished_jobs_expire_running_jobs_do_not(store, clock):
    running = store.create("running.com")
    finished = store.create("finished.com")
    store.complete(finished.id)

    clock.advance(JOB_TTL_SECONDS + 1)

    assert store.get(finished.id) is None
    assert store.get(running.id) is not None


def test_create_sweeps_expired_jobs(store, clock):
    old = store.create("old.com")
    store.fail(old.id, "boom")
    clock.advance(JOB_TTL_SECONDS + 1)

    store.create("new.com")
    assert len(store) == 1


# ---------------------------------------------------------------------------
# Background continuation
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_comprehensive_run_completes_in_demo_mode(store, demo_pipeline):
    saved = []
    job = store.create("example.com")

    await run_comprehensive_analysis(
        job.id, "https://example.com", store, demo_pipeline, UnavailableSynthesizer(), persist=saved.append,
    )

    done = store.get(job.id)
    assert done.status == "completed"
    assert done.progress == 100
    assert done.basic_analysis.is_demo_mode
    assert len(done.agent_results) == 6
    assert len(done.action_plan.items) == 5
    assert done.competitive_intelligence.market_position
    assert len(done.content_strategy.content_calendar) == 4
    assert len(done.progress_tracking.milestones) == 4
    assert [s.id for s in saved] == [job.id]


@pytest.mark.asyncio
async def test_basic_analysis_failure_fails_job_at_ten(store):
    saved = []
    job = store.create("example.com")

    await run_comprehensive_analysis(
        job.id, "https://example.com", store, BrokenPipeline(), UnavailableSynthesizer(), persist=saved.append,
    )

    failed = store.get(job.id)
    assert failed.status == "failed"
    assert failed.progress == 10
    assert failed.error == "search backend exploded"
    assert saved == []


@pytest.mark.asyncio
async def test_action_plan_failure_keeps_agent_results(store, demo_pipeline):
    job = store.create("example.com")

    await run_comprehensive_analysis(job.id, "https://example.com", store, demo_pipeline, StrategistDown())

    failed = store.get(job.id)
    assert failed.status == "failed"
    assert failed.progress == 50
    assert len(failed.agent_results) == 6


@pytest.mark.asyncio
async def test_intel_from_result_uses_analysed_keywords(demo_pipeline):
    basic = await demo_pipeline.run("example.com")
    intel = intel_from_result(basic)

    assert intel.business_type == basic.business_intelligence.business_type
    assert intel.keywords == [k.keyword for k in basic.keywords]


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_saved_job_round_trips_through_database(store, demo_pipeline):
    init_db()
    job = store.create("example.com")
    await run_comprehensive_analysis(job.id, "https://example.com", store, demo_pipeline, UnavailableSynthesizer())
    snapshot = store.get(job.id)

    save_analysis(snapshot)
    loaded = load_analysis(job.id)

    assert loaded.model_dump() == snapshot.model_dump()
    assert load_analysis("comprehensive_missing_000000000000") is None
