"""Per-request classifier for sandbox network traffic.

Each rule is an independent function of one request and the policy. It
returns zero or more ``RuleHit`` triples ``(category, weight, reason)``.
``classify`` runs every rule and reduces the collected hits once:
  - categories: deduplicated set of hit categories
  - reasons: hit reasons in rule order
  - risk score: sum of hit weights

Rule order only affects the order of ``reasons``. A URL that cannot be
parsed short-circuits to a fixed low-weight ``malformed`` verdict.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import NamedTuple
from urllib.parse import urlsplit

from .models import CategoryTag, Classification, NetworkRequestRecord, RiskLevel
from .policy import RiskPolicy, RiskThresholds, default_policy

logger = logging.getLogger(__name__)

_IPV4_RE = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")
_PERCENT_ENCODED_RE = re.compile(r"%[0-9A-Fa-f]{2}")
_WORD_SPLIT_RE = re.compile(r"[\W_]+")
_LABEL_SPLIT_RE = re.compile(r"[.\-_]")
_BAD_HOST_CHARS_RE = re.compile(r"[\s<>\"{}|\\^`]")


class RuleHit(NamedTuple):
    """One triggered rule."""

    category: CategoryTag
    weight: int
    reason: str


@dataclass(frozen=True)
class RequestView:
    """Parsed, normalized view of a request used by the rules."""

    url: str
    scheme: str
    hostname: str
    domain: str
    path: str
    query: str
    origin: str
    resource_type: str


def _parse(record: NetworkRequestRecord, origin_domain: str) -> RequestView | None:
    try:
        parts = urlsplit(record.url.strip())
        hostname = parts.hostname
    except ValueError:
        return None
    if not parts.scheme or not hostname or _BAD_HOST_CHARS_RE.search(hostname):
        return None
    domain = (record.domain or hostname).strip().lower().rstrip(".")
    return RequestView(
        url=record.url,
        scheme=parts.scheme.lower(),
        hostname=hostname.lower(),
        domain=domain,
        path=parts.path,
        query=parts.query,
        origin=origin_domain.strip().lower().rstrip("."),
        resource_type=record.resource_type.lower(),
    )


def matches_domain(domain: str, candidates: Iterable[str]) -> bool:
    """True when ``domain`` equals or is a subdomain of any candidate."""
    return any(domain == c or domain.endswith("." + c) for c in candidates)


def is_same_site(domain: str, origin: str) -> bool:
    return bool(origin) and (domain == origin or domain.endswith("." + origin))


def risk_level_for(score: int, thresholds: RiskThresholds) -> RiskLevel:
    if score >= thresholds.critical:
        return RiskLevel.critical
    if score >= thresholds.high:
        return RiskLevel.high
    if score >= thresholds.medium:
        return RiskLevel.medium
    return RiskLevel.low


def phishing_keywords(view: RequestView, policy: RiskPolicy) -> list[str]:
    """Distinct keyword-denylist words in the URL that the origin does not contain."""
    words = set(_WORD_SPLIT_RE.split(view.url.lower()))
    return sorted(
        w for w in words & policy.phishing_keywords if w not in view.origin
    )


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

Rule = Callable[[RequestView, RiskPolicy], tuple[RuleHit, ...]]


def _rule_suspicious_tld(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    tld = view.domain.rsplit(".", 1)[-1]
    if tld in policy.suspicious_tlds:
        return (RuleHit(CategoryTag.suspicious_tld, policy.classifier.suspicious_tld,
                        f"Suspicious TLD: .{tld}"),)
    return ()


def _rule_ip_host(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    if _IPV4_RE.match(view.hostname):
        return (RuleHit(CategoryTag.ip_based, policy.classifier.ip_host,
                        f"Direct IP address request ({view.hostname})"),)
    return ()


def _rule_url_length(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    length = len(view.url)
    if length > policy.limits.extreme_url_length:
        return (RuleHit(CategoryTag.obfuscation, policy.classifier.extreme_length,
                        f"Extremely long URL ({length} chars)"),)
    if length > policy.limits.long_url_length:
        return (RuleHit(CategoryTag.obfuscation, policy.classifier.long_length,
                        f"Long URL ({length} chars)"),)
    return ()


def _rule_phishing_keywords(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    hits = phishing_keywords(view, policy)
    if not hits:
        return ()
    weight = min(len(hits) * policy.classifier.phishing_keyword,
                 policy.classifier.phishing_keyword_cap)
    return (RuleHit(CategoryTag.phishing_keywords, weight,
                    f"Phishing keywords in URL: {', '.join(hits)}"),)


def _rule_malware_extension(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    path = view.path.lower()
    url = view.url.lower()
    for ext in policy.malware_extensions:
        if path.endswith(ext) or f"{ext}?" in url:
            return (RuleHit(CategoryTag.malware_download, policy.classifier.malware_extension,
                            f"Executable download ({ext})"),)
    return ()


def _rule_malicious_pattern(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    for pattern in policy.malicious_patterns:
        match = pattern.search(view.url)
        if match:
            return (RuleHit(CategoryTag.malicious_pattern, policy.classifier.malicious_pattern,
                            f"Malicious pattern in URL ({match.group(0)[:40]})"),)
    return ()


def _rule_heavy_encoding(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    count = len(_PERCENT_ENCODED_RE.findall(view.url))
    if count > policy.limits.max_percent_encoded:
        return (RuleHit(CategoryTag.obfuscation, policy.classifier.heavy_encoding,
                        f"Heavy URL encoding ({count} encoded bytes)"),)
    return ()


def _rule_long_query(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    if len(view.query) > policy.limits.long_query_length:
        return (RuleHit(CategoryTag.data_exfiltration, policy.classifier.long_query,
                        f"Unusually long query string ({len(view.query)} chars)"),)
    return ()


def _rule_embedded_base64(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    run = policy.limits.base64_run_length
    if re.search(rf"[A-Za-z0-9+/]{{{run},}}={{0,2}}", view.query):
        return (RuleHit(CategoryTag.data_exfiltration, policy.classifier.embedded_base64,
                        "Base64-encoded payload in query string"),)
    return ()


def _rule_punycode(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    if any(label.startswith("xn--") for label in view.domain.split(".")):
        return (RuleHit(CategoryTag.homograph, policy.classifier.punycode,
                        f"Punycode domain ({view.domain})"),)
    return ()


def _rule_excessive_subdomains(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    if _IPV4_RE.match(view.domain):
        return ()
    labels = view.domain.split(".")
    registrable = 3 if ".".join(labels[-2:]) in policy.compound_tld_suffixes else 2
    depth = len(labels) - registrable
    if depth > policy.limits.max_subdomain_labels:
        return (RuleHit(CategoryTag.subdomain_abuse, policy.classifier.excessive_subdomains,
                        f"Excessive subdomains ({depth} levels)"),)
    return ()


def _rule_brand_impersonation(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    # Whole labels and their hyphen/underscore parts only
    tokens = set(_LABEL_SPLIT_RE.split(view.domain))
    for brand in sorted(policy.brand_domains):
        if brand not in tokens:
            continue
        if matches_domain(view.domain, policy.brand_domains[brand]):
            continue
        return (RuleHit(CategoryTag.brand_impersonation, policy.classifier.brand_impersonation,
                        f"Possible {brand} impersonation ({view.domain})"),)
    return ()


def _rule_tracker(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    if matches_domain(view.domain, policy.tracker_domains):
        return (RuleHit(CategoryTag.tracking, policy.classifier.tracker,
                        f"Known tracker ({view.domain})"),)
    return ()


def _rule_cryptominer(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    if matches_domain(view.domain, policy.cryptominer_domains):
        return (RuleHit(CategoryTag.cryptominer, policy.classifier.cryptominer,
                        f"Known cryptominer ({view.domain})"),)
    return ()


def _rule_insecure_http(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    if view.scheme == "http" and phishing_keywords(view, policy):
        return (RuleHit(CategoryTag.insecure_http, policy.classifier.insecure_http,
                        "Sensitive operation over plain HTTP"),)
    return ()


def _rule_cross_origin(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    if view.resource_type not in policy.limits.api_resource_types:
        return ()
    if is_same_site(view.domain, view.origin):
        return ()
    if matches_domain(view.domain, policy.tracker_domains):
        return ()
    return (RuleHit(CategoryTag.cross_origin, policy.classifier.cross_origin,
                    f"Cross-origin API call to {view.domain}"),)


RULES: tuple[Rule, ...] = (
    _rule_suspicious_tld,
    _rule_ip_host,
    _rule_url_length,
    _rule_phishing_keywords,
    _rule_malware_extension,
    _rule_malicious_pattern,
    _rule_heavy_encoding,
    _rule_long_query,
    _rule_embedded_base64,
    _rule_punycode,
    _rule_excessive_subdomains,
    _rule_brand_impersonation,
    _rule_tracker,
    _rule_cryptominer,
    _rule_insecure_http,
    _rule_cross_origin,
)


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


def collect_hits(view: RequestView, policy: RiskPolicy) -> tuple[RuleHit, ...]:
    return tuple(hit for rule in RULES for hit in rule(view, policy))


def reduce_hits(hits: Iterable[RuleHit], thresholds: RiskThresholds) -> Classification:
    """Fold rule hits into a classification."""
    hits = tuple(hits)
    score = sum(h.weight for h in hits)
    return Classification(
        categories=frozenset(h.category for h in hits),
        reasons=tuple(h.reason for h in hits),
        risk_score=score,
        risk_level=risk_level_for(score, thresholds),
        is_suspicious=score >= thresholds.suspicious,
    )


def malformed(policy: RiskPolicy) -> Classification:
    return Classification(
        categories=frozenset({CategoryTag.malformed}),
        reasons=("Malformed URL",),
        risk_score=policy.classifier.malformed,
        risk_level=RiskLevel.low,
        is_suspicious=False,
    )


def classify(
    record: NetworkRequestRecord,
    origin_domain: str,
    policy: RiskPolicy | None = None,
) -> Classification:
    """Classify one sandbox request relative to the scanned origin.

    Args:
        record: Captured request.
        origin_domain: Hostname of the URL under scan.
        policy: Policy to apply (default: ``default_policy()``).

    Returns:
        Classification with categories, reasons, score and level.
    """
    policy = policy or default_policy()
    view = _parse(record, origin_domain)
    if view is None:
        logger.warning("Malformed request URL: %.200s", record.url)
        return malformed(policy)

    hits = collect_hits(view, policy)
    result = reduce_hits(hits, policy.thresholds)
    if hits:
        logger.debug(
            "Classified %.120s: score=%d level=%s categories=%s",
            view.url,
            result.risk_score,
            result.risk_level.value,
            sorted(c.value for c in result.categories),
        )
    return result
