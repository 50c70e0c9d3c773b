"""
jobs.py: comprehensive analysis jobs and their background continuation.

Each job is written only by its own continuation; pollers get deep copies.
Progress checkpoints: 10 created → 25 basic analysis → 50 agents →
70 action plan → 85 competitive intelligence → 95 content strategy →
100 completed. A failure freezes progress where it was.
"""

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from typing import Callable, Optional

from action_plan import ActionPlanGenerator
from agents import AgentCoordinator
from models import AnalysisJob, AnalysisResult, BusinessIntelligence
from pipeline import AnalysisPipeline
from synthesis import Synthesizer

logger = logging.getLogger("seo-analyzer")

JOB_TTL_SECONDS = 2 * 60 * 60


class JobNotFound(KeyError):
    pass


class JobStore:
    """In-memory job map. Terminal jobs are dropped ``ttl_seconds`` after finishing."""

    def __init__(self, ttl_seconds: float = JOB_TTL_SECONDS, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self._clock = clock
        self._jobs: dict[str, AnalysisJob] = {}
        self._finished_at: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._jobs)

    def create(self, domain: str) -> AnalysisJob:
        self.cleanup()
        job = AnalysisJob(
            id=f"comprehensive_{domain}_{uuid.uuid4().hex[:12]}",
            domain=domain,
            progress=10,
            created_at=datetime.now(timezone.utc).isoformat(),
        )
        self._jobs[job.id] = job
        return job.model_copy(deep=True)

    def get(self, job_id: str) -> Optional[AnalysisJob]:
        job = self._jobs.get(job_id)
        if job is None:
            return None
        if self._expired(job_id):
            self._drop(job_id)
            return None
        return job.model_copy(deep=True)

    def _require(self, job_id: str) -> AnalysisJob:
        job = self._jobs.get(job_id)
        if job is None:
            raise JobNotFound(job_id)
        if job.status != "running":
            raise ValueError(f"Job {job_id} is already {job.status}")
        return job

    def advance(self, job_id: str, progress: int, **fields) -> None:
        """Record a checkpoint. Progress may not go backwards and 100 is reserved for ``complete``."""
        job = self._require(job_id)
        if progress < job.progress or progress >= 100:
            raise ValueError(f"Invalid progress {progress} for job at {job.progress}")
        for name, value in fields.items():
            setattr(job, name, value)
        job.progress = progress

    def complete(self, job_id: str, **fields) -> None:
        job = self._require(job_id)
        for name, value in fields.items():
            setattr(job, name, value)
        job.progress = 100
        job.status = "completed"
        job.completed_at = datetime.now(timezone.utc).isoformat()
        self._finished_at[job_id] = self._clock()

    def fail(self, job_id: str, error: str) -> None:
        job = self._jobs.get(job_id)
        if job is None or job.status != "running":
            logger.warning(f"[{job_id}] Ignoring failure for job that is no longer running: {error}")
            return
        job.status = "failed"
        job.error = error
        self._finished_at[job_id] = self._clock()

    def _expired(self, job_id: str) -> bool:
        finished = self._finished_at.get(job_id)
        return finished is not None and self._clock() - finished > self.ttl_seconds

    def _drop(self, job_id: str) -> None:
        self._jobs.pop(job_id, None)
        self._finished_at.pop(job_id, None)

    def cleanup(self) -> int:
        expired = [job_id for job_id in self._finished_at if self._expired(job_id)]
        for job_id in expired:
            self._drop(job_id)
        if expired:
            logger.info(f"Job store cleanup removed {len(expired)} finished jobs")
        return len(expired)


def intel_from_result(basic: AnalysisResult) -> BusinessIntelligence:
    """Agent-facing profile: the basic profile plus the analysed keywords."""
    profile = basic.business_intelligence
    return BusinessIntelligence(
        business_type=profile.business_type,
        industry=profile.industry,
        location=profile.location,
        products=profile.products,
        services=profile.services,
        keywords=[k.keyword for k in basic.keywords][:15],
        description=profile.description,
    )


async def run_comprehensive_analysis(
    job_id: str,
    url: str,
    store: JobStore,
    pipeline: AnalysisPipeline,
    synthesizer: Synthesizer,
    persist: Optional[Callable[[AnalysisJob], None]] = None,
) -> None:
    """Background continuation for one job. Never raises; failures mark the job failed."""
    try:
        basic = await pipeline.run(url)
        store.advance(job_id, 25, basic_analysis=basic)

        domain = basic.domain
        intel = intel_from_result(basic)
        agent_results = await AgentCoordinator(synthesizer).run(domain, intel, basic)
        store.advance(job_id, 50, agent_results=agent_results)

        generator = ActionPlanGenerator(synthesizer, domain, agent_results, intel, basic)
        action_plan = await generator.generate_action_plan()
        store.advance(job_id, 70, action_plan=action_plan)

        competitive = await generator.generate_competitive_intelligence()
        store.advance(job_id, 85, competitive_intelligence=competitive)

        content = await generator.generate_content_strategy()
        store.advance(job_id, 95, content_strategy=content)

        tracking = generator.generate_progress_tracking(action_plan.items)
        store.complete(job_id, progress_tracking=tracking)
        logger.info(f"[{job_id}] Comprehensive analysis completed")

    except Exception as e:
        logger.error(f"[{job_id}] Comprehensive analysis failed: {e}", exc_info=True)
        store.fail(job_id, str(e) or type(e).__name__)
        return

    if persist is not None:
        snapshot = store.get(job_id)
        if snapshot is not None:
            # Run in thread pool so the DB write does not block the event loop
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, persist, snapshot)
