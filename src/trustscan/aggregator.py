"""Fold a sandbox request set into a risk summary.

Classification is embarrassingly parallel and the summary is a commutative,
associative fold (``SandboxSummary.merge``), so a request set can be
classified on a thread pool and summarized shard by shard in any order.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from functools import reduce
from urllib.parse import urlsplit

from .classifier import classify, is_same_site
from .models import (
    ClassifiedRequest,
    NetworkRequestRecord,
    OverallRisk,
    RequestSetAnalysis,
    RiskLevel,
    SandboxSummary,
)
from .policy import RiskPolicy, default_policy

logger = logging.getLogger(__name__)


def _hostname(url: str) -> str:
    try:
        return urlsplit(url).hostname or ""
    except ValueError:
        return ""


def summarize_one(item: ClassifiedRequest, origin_domain: str) -> SandboxSummary:
    """Summary of a single classified request (the unit of the fold)."""
    origin = origin_domain.strip().lower()
    domain = (item.record.domain or _hostname(item.record.url)).strip().lower()
    third_party = (domain,) if domain and not is_same_site(domain, origin) else ()

    c = item.classification
    if not c.is_suspicious:
        return SandboxSummary(total_requests=1, third_party_domains=third_party)
    return SandboxSummary(
        total_requests=1,
        suspicious_count=1,
        critical_count=int(c.risk_level is RiskLevel.critical),
        high_count=int(c.risk_level is RiskLevel.high),
        category_histogram={tag: 1 for tag in c.categories},
        overall_risk=OverallRisk.from_level(c.risk_level),
        total_risk_score=c.risk_score,
        third_party_domains=third_party,
    )


def summarize(items: Iterable[ClassifiedRequest], origin_domain: str) -> SandboxSummary:
    """Merge per-request summaries; empty input yields a ``safe`` summary."""
    return reduce(
        SandboxSummary.merge,
        (summarize_one(item, origin_domain) for item in items),
        SandboxSummary(),
    )


def aggregate(
    records: Sequence[NetworkRequestRecord],
    origin_domain: str,
    policy: RiskPolicy | None = None,
    *,
    max_workers: int | None = None,
    scan_completed: bool = True,
    error: str | None = None,
) -> RequestSetAnalysis:
    """Classify every record and reduce the results into a sandbox summary.

    Args:
        records: Finalized request set from the sandbox run.
        origin_domain: Hostname of the URL under scan.
        policy: Policy to apply (default: ``default_policy()``).
        max_workers: Classify on a thread pool of this size when > 1.
        scan_completed: False when the sandbox run did not finish.
        error: Sandbox error message, if any.

    Returns:
        All classifications, the suspicious subset, and the summary.
    """
    policy = policy or default_policy()

    def _classify(record: NetworkRequestRecord) -> ClassifiedRequest:
        return ClassifiedRequest(
            record=record, classification=classify(record, origin_domain, policy)
        )

    if max_workers and max_workers > 1 and len(records) > 1:
        with ThreadPoolExecutor(max_workers=max_workers) as pool:
            classified = tuple(pool.map(_classify, records))
    else:
        classified = tuple(_classify(r) for r in records)

    suspicious = tuple(c for c in classified if c.classification.is_suspicious)
    summary = summarize(classified, origin_domain)
    if not scan_completed or error:
        summary = summary.model_copy(update={"scan_completed": False, "error": error})
        logger.warning("Sandbox run for %s did not complete: %s", origin_domain, error)

    logger.info(
        "Sandbox analysis for %s: %d requests, %d suspicious, overall=%s",
        origin_domain,
        summary.total_requests,
        summary.suspicious_count,
        summary.overall_risk.value,
    )
    return RequestSetAnalysis(classified=classified, suspicious=suspicious, summary=summary)
