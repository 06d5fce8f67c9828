"""Final safety score for a scan.

Starts at 100 and subtracts the deductions of every check that produced a
result, then clamps to [0, 100]. An unsafe Safe Browsing verdict forces 0
before anything else is looked at.

Absent checks deduct nothing, except the certificate: a scan that ran probes
but produced no certificate result loses ``ssl_missing`` points.
"""

from __future__ import annotations

import logging
from collections.abc import Callable

from .models import (
    AdminPanelsResult,
    CookieSecurityResult,
    Deduction,
    IpReputationResult,
    PortScanResult,
    ReverseDnsResult,
    SandboxSummary,
    ScanChecks,
    ScanResult,
    ScoreReport,
    SecurityHeadersResult,
    SensitiveFilesResult,
    SslResult,
    VersionDisclosureResult,
    WhoisResult,
)
from .policy import RiskPolicy, ScoringWeights, default_policy

logger = logging.getLogger(__name__)

MAX_SCORE = 100
MIN_SCORE = 0


def _above(value: float, ladder: tuple[tuple[float, int], ...]) -> int:
    """Points of the first rung whose threshold ``value`` exceeds."""
    for threshold, points in ladder:
        if value > threshold:
            return points
    return 0


def _below(value: float, ladder: tuple[tuple[float, int], ...]) -> int:
    """Points of the first rung whose threshold ``value`` is under."""
    for threshold, points in ladder:
        if value < threshold:
            return points
    return 0


def clamp(score: int) -> int:
    return max(MIN_SCORE, min(MAX_SCORE, score))


def grade_for(score: int) -> str:
    """Letter grade of a 0-100 security-header score."""
    if score >= 90:
        return "A"
    if score >= 75:
        return "B"
    if score >= 60:
        return "C"
    if score >= 40:
        return "D"
    return "F"


def verdict_for(score: int) -> str:
    """Status band of a final score: success, warning or error."""
    if score >= 70:
        return "success"
    if score >= 40:
        return "warning"
    return "error"


# ---------------------------------------------------------------------------
# Per-check deductions
# ---------------------------------------------------------------------------


def _whois(r: WhoisResult, w: ScoringWeights) -> list[Deduction]:
    points = _below(r.age_in_days, w.domain_age)
    if not points:
        return []
    return [Deduction(check="whois", reason=f"Domain is {r.age_in_days} days old", points=points)]


def _ssl(r: SslResult, w: ScoringWeights) -> list[Deduction]:
    out: list[Deduction] = []
    if not r.valid:
        out.append(Deduction(check="ssl", reason="Certificate is invalid", points=w.ssl_invalid))
    elif r.days_until_expiry is not None and r.days_until_expiry < w.ssl_expiring_days:
        out.append(Deduction(
            check="ssl",
            reason=f"Certificate expires in {r.days_until_expiry} days",
            points=w.ssl_expiring,
        ))
    if r.cipher_strength and w.cipher_strength.get(r.cipher_strength):
        out.append(Deduction(
            check="ssl",
            reason=f"{r.cipher_strength.capitalize()} cipher suite",
            points=w.cipher_strength[r.cipher_strength],
        ))
    if r.protocol and r.protocol not in w.accepted_tls_versions:
        out.append(Deduction(check="ssl", reason=f"Outdated TLS version ({r.protocol})",
                             points=w.outdated_tls))
    return out


def _reverse_dns(r: ReverseDnsResult, w: ScoringWeights) -> list[Deduction]:
    if r.matches:
        return []
    return [Deduction(check="reverse_dns", reason="Reverse DNS does not match hostname",
                      points=w.reverse_dns_mismatch)]


def _port_scan(r: PortScanResult, w: ScoringWeights) -> list[Deduction]:
    if not r.has_suspicious_ports:
        return []
    ports = ", ".join(str(p) for p in r.suspicious_ports) or "unknown"
    return [Deduction(check="port_scan", reason=f"Suspicious ports open ({ports})",
                      points=w.suspicious_ports)]


def _ip_reputation(r: IpReputationResult, w: ScoringWeights) -> list[Deduction]:
    out: list[Deduction] = []
    points = _above(r.abuse_confidence_score, w.abuse_confidence)
    if points:
        out.append(Deduction(check="ip_reputation",
                             reason=f"Abuse confidence score {r.abuse_confidence_score}",
                             points=points))
    points = _above(r.total_reports, w.abuse_reports)
    if points:
        out.append(Deduction(check="ip_reputation",
                             reason=f"{r.total_reports} abuse reports", points=points))
    return out


def _sandbox(r: SandboxSummary, w: ScoringWeights) -> list[Deduction]:
    out: list[Deduction] = []
    points = _above(r.suspicious_count, w.sandbox_suspicious)
    if points:
        out.append(Deduction(check="sandbox",
                             reason=f"{r.suspicious_count} suspicious requests", points=points))
    points = _above(len(r.third_party_domains), w.sandbox_third_party)
    if points:
        out.append(Deduction(check="sandbox",
                             reason=f"{len(r.third_party_domains)} third-party domains",
                             points=points))
    if not r.scan_completed:
        out.append(Deduction(check="sandbox",
                             reason=f"Sandbox run failed: {r.error or 'unknown error'}",
                             points=w.sandbox_failed))
    return out


def _security_headers(r: SecurityHeadersResult, w: ScoringWeights) -> list[Deduction]:
    grade = r.grade or grade_for(r.score)
    points = w.header_grade.get(grade, 0)
    if not points:
        return []
    return [Deduction(check="security_headers", reason=f"Security headers grade {grade}",
                      points=points)]


def _cookie_security(r: CookieSecurityResult, w: ScoringWeights) -> list[Deduction]:
    if not r.has_issues:
        return []
    points = _below(r.secure_ratio, w.cookie_secure_ratio)
    if not points:
        return []
    return [Deduction(check="cookie_security",
                      reason=f"{r.secure_cookies}/{r.total_cookies} cookies marked Secure",
                      points=points)]


def _sensitive_files(r: SensitiveFilesResult, w: ScoringWeights) -> list[Deduction]:
    other = max(len(r.exposed_files) - r.critical_count - r.high_count, 0)
    points = (
        r.critical_count * w.sensitive_file["critical"]
        + r.high_count * w.sensitive_file["high"]
        + other * w.sensitive_file["other"]
    )
    if not points:
        return []
    return [Deduction(
        check="sensitive_files",
        reason=(f"Exposed files: {r.critical_count} critical, "
                f"{r.high_count} high, {other} other"),
        points=points,
    )]


def _version_disclosure(r: VersionDisclosureResult, w: ScoringWeights) -> list[Deduction]:
    if not r.has_disclosure and r.risk_level == "none":
        return []
    points = w.version_disclosure.get(r.risk_level, w.version_disclosure["other"])
    return [Deduction(check="version_disclosure",
                      reason=f"Server version disclosed (risk {r.risk_level})", points=points)]


def _admin_panels(r: AdminPanelsResult, w: ScoringWeights) -> list[Deduction]:
    debug = sum(1 for p in r.found_panels if p.type == "debug")
    other = len(r.found_panels) - debug
    points = debug * w.admin_panel["debug"] + other * w.admin_panel["other"]
    if not points:
        return []
    return [Deduction(check="admin_panels",
                      reason=f"Exposed panels: {debug} debug, {other} other", points=points)]


_CHECK_RULES: tuple[tuple[str, Callable[..., list[Deduction]]], ...] = (
    ("whois", _whois),
    ("ssl", _ssl),
    ("reverse_dns", _reverse_dns),
    ("port_scan", _port_scan),
    ("ip_reputation", _ip_reputation),
    ("sandbox", _sandbox),
    ("security_headers", _security_headers),
    ("cookie_security", _cookie_security),
    ("sensitive_files", _sensitive_files),
    ("version_disclosure", _version_disclosure),
    ("admin_panels", _admin_panels),
)


def deductions_for(checks: ScanChecks, weights: ScoringWeights) -> list[Deduction]:
    """Every deduction the present checks earn, in table order.

    A missing certificate result costs ``ssl_missing`` once any other check
    has reported, so a scan reporting only exposed files still loses those
    points. A scan with no checks at all loses nothing.
    """
    out: list[Deduction] = []
    for name, rule in _CHECK_RULES:
        result = getattr(checks, name)
        if result is not None:
            out.extend(rule(result, weights))
        elif name == "ssl" and checks.present():
            out.append(Deduction(check="ssl", reason="No certificate data",
                                 points=weights.ssl_missing))
    return out


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def explain(result: ScanResult, policy: RiskPolicy | None = None) -> ScoreReport:
    """Score a scan and keep the deductions that produced the score."""
    policy = policy or default_policy()
    checks = result.checks

    safe_browsing = checks.safe_browsing
    if safe_browsing is not None and not safe_browsing.is_safe:
        threats = ", ".join(safe_browsing.threats) or "unspecified threat"
        logger.info("Safe Browsing flagged %s (%s); score forced to 0", result.url, threats)
        return ScoreReport(
            url=result.url,
            score=MIN_SCORE,
            fail_fast=True,
            deductions=(Deduction(check="safe_browsing",
                                  reason=f"Listed by threat database: {threats}",
                                  points=MAX_SCORE),),
        )

    deductions = deductions_for(checks, policy.scoring)
    final = clamp(MAX_SCORE - sum(d.points for d in deductions))
    logger.info(
        "Scored %s: %d (%d deductions from %d checks)",
        result.url, final, len(deductions), len(checks.present()),
    )
    return ScoreReport(url=result.url, score=final, deductions=tuple(deductions))


def score(result: ScanResult, policy: RiskPolicy | None = None) -> int:
    """Final safety score in [0, 100]; higher is safer."""
    return explain(result, policy).score


def evaluate(result: ScanResult, policy: RiskPolicy | None = None) -> ScanResult:
    """Copy of ``result`` with its score filled in."""
    return result.model_copy(update={"score": score(result, policy)})
