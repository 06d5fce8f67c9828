"""FastAPI surface exposing the classifier, aggregator and scorer.

The service does no probing of its own: callers post already-collected
sandbox requests and check results and get plain data back.
"""

from __future__ import annotations

import logging
import os

from fastapi import FastAPI
from pydantic import Field

from . import aggregator, classifier, scoring
from .models import (
    Classification,
    Deduction,
    FrozenModel,
    NetworkRequestRecord,
    RequestSetAnalysis,
    ScanResult,
)
from .policy import default_policy

logger = logging.getLogger(__name__)

MAX_WORKERS_ENV = "TRUSTSCAN_MAX_WORKERS"
DEFAULT_MAX_WORKERS = 4

app = FastAPI(
    title="URL Trust Scanner",
    description="Risk scoring for sandboxed page loads and URL scan results",
    version="0.1.0",
)


def _env_int(name: str, default: int, *, min_value: int = 1) -> int:
    """Read an integer from the environment, falling back on invalid values."""
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r", name, raw)
        return default
    return value if value >= min_value else default


class ClassifyRequest(FrozenModel):
    record: NetworkRequestRecord
    origin_domain: str = Field(description="Hostname of the URL under scan")


class AggregateRequest(FrozenModel):
    records: list[NetworkRequestRecord] = Field(default_factory=list)
    origin_domain: str = Field(description="Hostname of the URL under scan")
    scan_completed: bool = True
    error: str | None = None


class ScoreResponse(FrozenModel):
    url: str
    score: int
    verdict: str
    fail_fast: bool
    deductions: list[Deduction] = Field(default_factory=list)


@app.get("/health")
def health():
    """Health check endpoint."""
    return {"status": "ok", "policy_version": default_policy().version}


@app.post("/api/classify", response_model=Classification)
def classify_request(req: ClassifyRequest) -> Classification:
    """Classify a single sandbox request."""
    return classifier.classify(req.record, req.origin_domain, default_policy())


@app.post("/api/aggregate", response_model=RequestSetAnalysis)
def aggregate_requests(req: AggregateRequest) -> RequestSetAnalysis:
    """Classify a finalized request set and summarize it."""
    return aggregator.aggregate(
        req.records,
        req.origin_domain,
        default_policy(),
        max_workers=_env_int(MAX_WORKERS_ENV, DEFAULT_MAX_WORKERS),
        scan_completed=req.scan_completed,
        error=req.error,
    )


@app.post("/api/score", response_model=ScoreResponse)
def score_scan(result: ScanResult) -> ScoreResponse:
    """Score a scan result and return the deductions behind it."""
    report = scoring.explain(result, default_policy())
    return ScoreResponse(
        url=report.url,
        score=report.score,
        verdict=scoring.verdict_for(report.score),
        fail_fast=report.fail_fast,
        deductions=list(report.deductions),
    )
