"""
database.py: SQLAlchemy models and session management.

Completed comprehensive analyses are stored as JSON snapshots so a poll for
an id that has already left the in-memory job store can still be answered.
Uses PostgreSQL in production (via DATABASE_URL) and SQLite locally.
"""

import json
import logging
import os
from datetime import datetime
from typing import Optional

from sqlalchemy import Boolean, Column, DateTime, Integer, String, Text, create_engine
from sqlalchemy.orm import DeclarativeBase, sessionmaker

from models import AnalysisJob

logger = logging.getLogger("seo-analyzer")

# ---------------------------------------------------------------------------
# Connection
# ---------------------------------------------------------------------------

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./seo_analyses.db")

# Some hosts expose postgres:// but SQLAlchemy requires postgresql://
if DATABASE_URL.startswith("postgres://"):
    DATABASE_URL = DATABASE_URL.replace("postgres://", "postgresql://", 1)

engine = create_engine(
    DATABASE_URL,
    # SQLite needs this flag; ignored by Postgres
    connect_args={"check_same_thread": False} if DATABASE_URL.startswith("sqlite") else {},
    pool_pre_ping=True,
)

SessionLocal = sessionmaker(bind=engine, autocommit=False, autoflush=False)

# ---------------------------------------------------------------------------
# Models
# ---------------------------------------------------------------------------

class Base(DeclarativeBase):
    pass


class Analysis(Base):
    __tablename__ = "analyses"

    id            = Column(String(128), primary_key=True)
    domain        = Column(String(255), nullable=False, index=True)
    status        = Column(String(50), default="completed")
    seo_score     = Column(Integer, nullable=True)
    is_demo_mode  = Column(Boolean, default=False)
    # Full AnalysisJob snapshot; plain text behaves the same on SQLite and Postgres
    results_json  = Column(Text, nullable=False)
    created_at    = Column(DateTime, default=datetime.utcnow, index=True)
    completed_at  = Column(DateTime, nullable=True)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def init_db() -> None:
    """Create all tables. Safe to call on every startup."""
    Base.metadata.create_all(bind=engine)


def save_analysis(job: AnalysisJob) -> None:
    """Synchronous DB write, called via run_in_executor. Failures are logged, never raised."""
    db = SessionLocal()
    try:
        # PostgreSQL rejects \x00 in text columns
        results_str = job.model_dump_json(by_alias=True).replace("\\u0000", "")
        basic = job.basic_analysis
        db.merge(Analysis(
            id=job.id,
            domain=job.domain,
            status=job.status,
            seo_score=basic.seo_score if basic else None,
            is_demo_mode=basic.is_demo_mode if basic else False,
            results_json=results_str,
            completed_at=datetime.utcnow(),
        ))
        db.commit()
        logger.info(f"[{job.id}] Saved to database")
    except Exception as e:
        db.rollback()
        logger.error(f"[{job.id}] DB save failed: {type(e).__name__}: {e}", exc_info=True)
    finally:
        db.close()


def load_analysis(analysis_id: str) -> Optional[AnalysisJob]:
    db = SessionLocal()
    try:
        row = db.query(Analysis).filter(Analysis.id == analysis_id).first()
        if row is None or not row.results_json:
            return None
        return AnalysisJob.model_validate(json.loads(row.results_json))
    finally:
        db.close()
