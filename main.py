# =============================================================================
# SEO Analyzer - FastAPI Backend
# =============================================================================
# Website SEO analysis with graceful demo mode
#
#   POST /analyze-seo                    basic analysis, cached per domain
#   POST /analyze-comprehensive          starts agents + action plan job
#   GET  /analyze-comprehensive/{id}     poll job progress / result
#
# Run:  python main.py
# Test: curl http://localhost:8000/health
# =============================================================================

import asyncio
import logging
import os
import time
from collections import defaultdict
from datetime import datetime

from dotenv import load_dotenv
from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, field_validator

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------

load_dotenv()                       # ← reads .env into os.environ

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s  %(levelname)-8s  %(message)s",
)
logger = logging.getLogger("seo-analyzer")

PAGESPEED_API_KEY = os.getenv("GOOGLE_PAGESPEED_API_KEY") or os.getenv("PAGESPEED_API_KEY", "")
SERPER_API_KEY = os.getenv("SERPER_API_KEY", "")
SERPAPI_KEY = os.getenv("SERPAPI_KEY", "")
DATAFORSEO_LOGIN = os.getenv("DATAFORSEO_LOGIN", "")
DATAFORSEO_PASSWORD = os.getenv("DATAFORSEO_PASSWORD", "")
ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY", "")
CLAUDE_MODEL = os.getenv("CLAUDE_MODEL", "claude-sonnet-4-6")
CACHE_TTL_SECONDS = int(os.getenv("CACHE_TTL_SECONDS", "1800"))
CACHE_MAX_ENTRIES = int(os.getenv("CACHE_MAX_ENTRIES", "100"))
JOB_TTL_SECONDS = int(os.getenv("JOB_TTL_SECONDS", "7200"))

if not PAGESPEED_API_KEY:
    logger.warning("⚠️  GOOGLE_PAGESPEED_API_KEY is not set — performance data will be demo data")
if not (SERPER_API_KEY or SERPAPI_KEY):
    logger.warning("⚠️  SERPER_API_KEY / SERPAPI_KEY are not set — competitor and SERP data will be demo data")
if not (DATAFORSEO_LOGIN and DATAFORSEO_PASSWORD):
    logger.info("DATAFORSEO_LOGIN / DATAFORSEO_PASSWORD not set — keyword volumes are estimated from SERP data")

# ---------------------------------------------------------------------------
# Analysis services
# ---------------------------------------------------------------------------

from agents import AGENT_TYPES
from cache import ResultCache, SingleFlight
from crawler import extract_domain
from database import init_db, load_analysis, save_analysis
from jobs import JobStore, run_comprehensive_analysis
from pipeline import AnalysisPipeline, InvalidURLError, normalize_url
from providers import build_providers
from synthesis import Synthesizer, build_synthesizer

_providers = build_providers(
    pagespeed_key=PAGESPEED_API_KEY,
    serper_key=SERPER_API_KEY,
    serpapi_key=SERPAPI_KEY,
    dataforseo_login=DATAFORSEO_LOGIN,
    dataforseo_password=DATAFORSEO_PASSWORD,
)
_pipeline = AnalysisPipeline(
    _providers,
    cache=ResultCache(ttl_seconds=CACHE_TTL_SECONDS, cleanup_threshold=CACHE_MAX_ENTRIES),
    single_flight=SingleFlight(),
)
_job_store = JobStore(ttl_seconds=JOB_TTL_SECONDS)
_synthesizer = build_synthesizer(ANTHROPIC_API_KEY, CLAUDE_MODEL)

# Strong references so running continuations are not garbage collected
_background_tasks: set[asyncio.Task] = set()


def get_pipeline() -> AnalysisPipeline:
    return _pipeline


def get_job_store() -> JobStore:
    return _job_store


def get_synthesizer() -> Synthesizer:
    return _synthesizer


# ---------------------------------------------------------------------------
# FastAPI app
# ---------------------------------------------------------------------------

app = FastAPI(
    title="SEO Analyzer API",
    version="1.0.0",
    description="Website SEO analysis with AI action plans",
)

# CORS: open for development, lock down for production
ALLOWED_ORIGINS = os.getenv(
    "ALLOWED_ORIGINS",
    "http://localhost:3000,http://localhost:5173",
).split(",")

app.add_middleware(
    CORSMiddleware,
    allow_origins=ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup_event():
    init_db()
    logger.info("Database tables ready")


# ---------------------------------------------------------------------------
# Simple in-memory rate limiter (swap for Redis in production)
# ---------------------------------------------------------------------------

_rate_buckets: dict[str, list[float]] = defaultdict(list)
RATE_LIMIT = int(os.getenv("RATE_LIMIT_PER_MIN", "10"))


@app.middleware("http")
async def rate_limit_middleware(request: Request, call_next):
    # Polling and service endpoints are never limited
    if request.method != "POST":
        return await call_next(request)

    ip = request.client.host if request.client else "unknown"
    now = time.time()
    _rate_buckets[ip] = [t for t in _rate_buckets[ip] if now - t < 60]

    if len(_rate_buckets[ip]) >= RATE_LIMIT:
        return JSONResponse(status_code=429, content={"error": "Rate limit exceeded — try again in a minute"})

    _rate_buckets[ip].append(now)
    return await call_next(request)


# =============================================================================
# Request models & input errors
# =============================================================================

class AnalyzeRequest(BaseModel):
    url: str

    @field_validator("url")
    @classmethod
    def url_valid(cls, v: str) -> str:
        try:
            return normalize_url(v)
        except InvalidURLError as e:
            raise ValueError(str(e)) from e


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError):
    """Input errors are reported as 400 {"error": ...}."""
    errors = exc.errors()
    first = errors[0] if errors else {}
    if first.get("type") == "missing":
        message = "URL is required"
    else:
        message = str(first.get("msg", "Invalid request")).removeprefix("Value error, ")
    return JSONResponse(status_code=400, content={"error": message})


@app.exception_handler(HTTPException)
async def http_error_handler(request: Request, exc: HTTPException):
    return JSONResponse(status_code=exc.status_code, content={"error": exc.detail})


# =============================================================================
# Analysis endpoints
# =============================================================================

@app.post("/analyze-seo")
async def analyze_seo(request: AnalyzeRequest, pipeline: AnalysisPipeline = Depends(get_pipeline)):
    """Basic analysis. Served from cache when the domain was analysed within the TTL."""
    try:
        result = await pipeline.run(request.url)
    except Exception as e:
        logger.error(f"SEO analysis failed for {request.url}: {e}", exc_info=True)
        return JSONResponse(status_code=500, content={"error": "Failed to analyze SEO. Please try again."})
    return result.model_dump(mode="json", by_alias=True)


@app.post("/analyze-comprehensive")
async def analyze_comprehensive(
    request: AnalyzeRequest,
    pipeline: AnalysisPipeline = Depends(get_pipeline),
    store: JobStore = Depends(get_job_store),
    synthesizer: Synthesizer = Depends(get_synthesizer),
):
    """
    Comprehensive analysis. Returns immediately with analysisId, runs in background.
    Poll GET /analyze-comprehensive/{analysisId} for progress and results.
    """
    job = store.create(extract_domain(request.url))
    logger.info(f"[{job.id}] Comprehensive analysis queued for {request.url}")
    task = asyncio.create_task(
        run_comprehensive_analysis(job.id, request.url, store, pipeline, synthesizer, persist=save_analysis)
    )
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)
    return {
        "analysisId": job.id,
        "status": "started",
        "message": "Comprehensive analysis started. Use the analysis ID to track progress.",
    }


@app.get("/analyze-comprehensive/{analysis_id}")
async def get_comprehensive_analysis(analysis_id: str, store: JobStore = Depends(get_job_store)):
    job = store.get(analysis_id)
    if job is None:
        # Not in memory, so check DB (finished jobs outlive the in-memory TTL)
        loop = asyncio.get_running_loop()
        job = await loop.run_in_executor(None, load_analysis, analysis_id)
    if job is None:
        raise HTTPException(status_code=404, detail="Analysis not found")
    return job.model_dump(mode="json", by_alias=True)


# =============================================================================
# Health & info
# =============================================================================

@app.get("/health")
async def health():
    return {
        "status": "ok",
        "timestamp": datetime.now().isoformat(),
        "providers": _providers.configured,
        "synthesis_available": _synthesizer.available,
    }


@app.get("/info")
async def info():
    return {
        "name": "SEO Analyzer API",
        "version": "1.0.0",
        "model": CLAUDE_MODEL,
        "agents": AGENT_TYPES,
        "endpoints": {
            "analyze_seo": "POST /analyze-seo",
            "analyze_comprehensive": "POST /analyze-comprehensive",
            "comprehensive_status": "GET /analyze-comprehensive/{analysisId}",
            "health": "GET /health",
        },
    }


# =============================================================================
# Run
# =============================================================================

if __name__ == "__main__":
    import uvicorn

    port = int(os.getenv("PORT", "8000"))
    uvicorn.run(app, host="0.0.0.0", port=port)
