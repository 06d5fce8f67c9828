"""Risk policy: denylists, keyword sets, brand map, regex set and weights.

The policy is process-wide static configuration. It is built once
(``default_policy()``), never mutated, and passed explicitly into the
classifier, the aggregator and the scorer so tests can substitute their own.

A YAML overlay can replace any field::

    classifier:
      cryptominer: 60
    scoring:
      ssl_missing: 10
    suspicious_tlds: [tk, ml, ga]

Set ``TRUSTSCAN_POLICY_PATH`` to apply an overlay to the default policy.
"""

from __future__ import annotations

import logging
import os
import re
from functools import lru_cache
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .models import frozen_mapping

logger = logging.getLogger(__name__)

POLICY_PATH_ENV = "TRUSTSCAN_POLICY_PATH"

# ---------------------------------------------------------------------------
# Built-in denylists
# ---------------------------------------------------------------------------

# TLDs frequently abused in phishing/malware
# Sources: Spamhaus Domain Report, Unit42 TLD Tracker, APWG Phishing Trends
SUSPICIOUS_TLDS = frozenset({
    # Freenom free domains
    "tk", "ml", "ga", "cf", "gq",
    # Spamhaus most abused gTLDs
    "top", "xyz", "buzz", "icu", "click", "link", "work",
    "surf", "rest", "monster", "sbs", "cfd", "cyou",
    "bond", "mom", "lol", "skin", "cam",
    # Other high-abuse gTLDs
    "loan", "bid", "stream", "download", "racing", "win", "gdn",
    "review", "accountant", "date", "faith", "party", "trade", "webcam",
})

# Words that signal credential or payment handling in a URL
PHISHING_KEYWORDS = frozenset({
    "login", "logon", "signin", "verify", "verification", "secure",
    "account", "update", "confirm", "password", "passwd", "credential",
    "billing", "invoice", "payment", "banking", "wallet", "crypto",
    "suspended", "suspend", "unlock", "recover", "restore", "validate",
    "webscr", "authenticate", "authorize", "expire", "urgent",
})

MALWARE_EXTENSIONS = (
    ".exe", ".scr", ".jar", ".ps1", ".bat", ".cmd", ".vbs", ".vbe",
    ".msi", ".dll", ".hta", ".pif", ".wsf", ".apk", ".dmg", ".lnk",
)

MALICIOUS_PATTERNS = (
    # script injection
    r"(?i)<\s*script|javascript:|on(?:error|load)\s*=",
    # SQL injection
    r"(?i)union(?:\s|%20|\+)+select|(?:'|%27)\s*or\s*(?:'|%27)?1(?:'|%27)?\s*=\s*(?:'|%27)?1|;\s*drop\s+table",
    # path traversal
    r"(?i)(?:\.\./|\.\.\\|%2e%2e(?:%2f|/|%5c))",
    # C2-style hash parameter
    r"(?i)[?&](?:id|h|hash|key|bot|uid)=[0-9a-f]{32,}(?:&|$)",
    # WordPress internals fetched directly
    r"(?i)/wp-(?:includes|admin/includes|content/plugins)/[^?#]*\.php",
    # data URI
    r"(?i)data:[a-z0-9.+-]+/[a-z0-9.+-]+;base64,",
    # eval in URL
    r"(?i)eval(?:\(|%28)|atob(?:\(|%28)|fromcharcode",
)

# Protected brand token -> domains the brand legitimately serves from
BRAND_DOMAINS = MappingProxyType({
    "paypal": ("paypal.com", "paypalobjects.com", "paypal.me"),
    "google": (
        "google.com", "googleapis.com", "googleusercontent.com",
        "googletagmanager.com", "google-analytics.com",
        "googlesyndication.com", "googleadservices.com", "googlevideo.com",
    ),
    "apple": ("apple.com", "icloud.com", "apple-cloudkit.com", "cdn-apple.com"),
    "microsoft": ("microsoft.com", "microsoftonline.com", "live.com", "office.com"),
    "amazon": (
        "amazon.com", "amazon.co.uk", "amazon.co.jp", "amazon.de",
        "amazonaws.com", "media-amazon.com", "ssl-images-amazon.com",
    ),
    "facebook": ("facebook.com", "facebook.net", "fbcdn.net"),
    "instagram": ("instagram.com", "cdninstagram.com"),
    "netflix": ("netflix.com", "nflxext.com", "nflxvideo.net", "nflximg.net"),
    "linkedin": ("linkedin.com", "licdn.com"),
    "github": ("github.com", "githubusercontent.com", "githubassets.com", "github.io"),
    "twitter": ("twitter.com", "twimg.com"),
    "spotify": ("spotify.com", "scdn.co", "spotifycdn.com"),
    "dropbox": ("dropbox.com", "dropboxusercontent.com", "dropboxstatic.com"),
    "docusign": ("docusign.com", "docusign.net"),
    "coinbase": ("coinbase.com",),
    "binance": ("binance.com",),
    "chase": ("chase.com",),
    "wellsfargo": ("wellsfargo.com",),
    "citibank": ("citibank.com", "citi.com"),
    "hsbc": ("hsbc.com", "hsbc.co.uk"),
    "fedex": ("fedex.com",),
    "dhl": ("dhl.com", "dhl.de"),
})

# Known analytics / advertising domains
TRACKER_DOMAINS = frozenset({
    "google-analytics.com",
    "googletagmanager.com",
    "googlesyndication.com",
    "googleadservices.com",
    "doubleclick.net",
    "facebook.net",
    "connect.facebook.net",
    "hotjar.com",
    "segment.com",
    "segment.io",
    "amplitude.com",
    "mixpanel.com",
    "intercom.io",
    "cloudflareinsights.com",
    "sentry.io",
    "newrelic.com",
    "nr-data.net",
    "datadoghq.com",
    "hubspot.com",
    "hs-analytics.net",
    "bat.bing.com",
    "clarity.ms",
    "snap.licdn.com",
    "ads-twitter.com",
    "criteo.com",
    "scorecardresearch.com",
})

# In-browser cryptocurrency miners
CRYPTOMINER_DOMAINS = frozenset({
    "coinhive.com",
    "coin-hive.com",
    "authedmine.com",
    "crypto-loot.com",
    "cryptoloot.pro",
    "coinimp.com",
    "jsecoin.com",
    "minero.cc",
    "webmine.cz",
    "webminepool.com",
    "monerominer.rocks",
    "ppoi.org",
    "coinhave.com",
    "minr.pw",
})

# Two-part public suffixes (registrable domain is one label deeper)
COMPOUND_TLD_SUFFIXES = frozenset({
    "co.jp", "or.jp", "ne.jp", "ac.jp", "go.jp",
    "co.uk", "org.uk", "ac.uk", "gov.uk",
    "co.kr", "or.kr", "co.in", "org.in",
    "co.za", "org.za", "co.nz", "org.nz",
    "com.au", "org.au", "edu.au", "gov.au",
    "com.br", "org.br", "com.sg", "com.tw",
    "com.hk", "com.mx", "com.ar", "com.cn",
})


# ---------------------------------------------------------------------------
# Policy models
# ---------------------------------------------------------------------------


class PolicyError(ValueError):
    """Raised when a policy overlay cannot be loaded or validated."""


PointsMap = frozen_mapping(str, int)
BrandMap = frozen_mapping(str, tuple[str, ...])


class _PolicyModel(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")


class ClassifierWeights(_PolicyModel):
    """Score added by each request rule."""

    malformed: int = 10
    suspicious_tld: int = 15
    ip_host: int = 30
    extreme_length: int = 25
    long_length: int = 10
    phishing_keyword: int = 5
    phishing_keyword_cap: int = 25
    malware_extension: int = 35
    malicious_pattern: int = 30
    heavy_encoding: int = 20
    long_query: int = 25
    embedded_base64: int = 20
    punycode: int = 25
    excessive_subdomains: int = 15
    brand_impersonation: int = 40
    tracker: int = 5
    cryptominer: int = 50
    insecure_http: int = 30
    cross_origin: int = 10


class ClassifierLimits(_PolicyModel):
    """Size thresholds used by the request rules."""

    extreme_url_length: int = 1000
    long_url_length: int = 500
    max_percent_encoded: int = 10
    long_query_length: int = 500
    base64_run_length: int = 50
    max_subdomain_labels: int = 3
    api_resource_types: frozenset[str] = frozenset({"xhr", "fetch"})


class RiskThresholds(_PolicyModel):
    """Score floors for each risk level."""

    critical: int = 50
    high: int = 30
    medium: int = 15
    suspicious: int = 15


class ScoringWeights(_PolicyModel):
    """Deduction table applied by the scan scorer.

    Ladders are ``(threshold, points)`` pairs checked in order; the first
    matching rung wins.
    """

    domain_age: tuple[tuple[int, int], ...] = ((7, 40), (30, 20), (90, 10))
    ssl_missing: int = 20
    ssl_invalid: int = 30
    ssl_expiring: int = 15
    ssl_expiring_days: int = 7
    cipher_strength: PointsMap = Field(
        default_factory=lambda: MappingProxyType({"weak": 20, "moderate": 5})
    )
    accepted_tls_versions: frozenset[str] = frozenset({"TLSv1.2", "TLSv1.3"})
    outdated_tls: int = 15
    reverse_dns_mismatch: int = 5
    suspicious_ports: int = 15
    abuse_confidence: tuple[tuple[int, int], ...] = ((75, 40), (50, 25), (25, 10))
    abuse_reports: tuple[tuple[int, int], ...] = ((100, 15), (50, 10), (10, 5))
    sandbox_suspicious: tuple[tuple[int, int], ...] = ((5, 30), (2, 20), (0, 10))
    sandbox_third_party: tuple[tuple[int, int], ...] = ((20, 10), (10, 5))
    sandbox_failed: int = 5
    header_grade: PointsMap = Field(
        default_factory=lambda: MappingProxyType({"F": 20, "D": 15, "C": 10, "B": 5})
    )
    cookie_secure_ratio: tuple[tuple[float, int], ...] = ((0.5, 10), (1.0, 5))
    sensitive_file: PointsMap = Field(
        default_factory=lambda: MappingProxyType({"critical": 25, "high": 15, "other": 5})
    )
    version_disclosure: PointsMap = Field(
        default_factory=lambda: MappingProxyType({"high": 15, "medium": 8, "other": 3})
    )
    admin_panel: PointsMap = Field(
        default_factory=lambda: MappingProxyType({"debug": 10, "other": 3})
    )


class RiskPolicy(_PolicyModel):
    """Everything the classifier and the scorer need to decide."""

    version: str = "1"
    suspicious_tlds: frozenset[str] = SUSPICIOUS_TLDS
    phishing_keywords: frozenset[str] = PHISHING_KEYWORDS
    malware_extensions: tuple[str, ...] = MALWARE_EXTENSIONS
    malicious_patterns: tuple[re.Pattern[str], ...] = tuple(
        re.compile(p) for p in MALICIOUS_PATTERNS
    )
    brand_domains: BrandMap = Field(default_factory=lambda: BRAND_DOMAINS)
    tracker_domains: frozenset[str] = TRACKER_DOMAINS
    cryptominer_domains: frozenset[str] = CRYPTOMINER_DOMAINS
    compound_tld_suffixes: frozenset[str] = COMPOUND_TLD_SUFFIXES
    classifier: ClassifierWeights = Field(default_factory=ClassifierWeights)
    limits: ClassifierLimits = Field(default_factory=ClassifierLimits)
    thresholds: RiskThresholds = Field(default_factory=RiskThresholds)
    scoring: ScoringWeights = Field(default_factory=ScoringWeights)


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def _deep_merge(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    merged = dict(base)
    for key, value in overlay.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


def apply_overlay(base: RiskPolicy, overlay: dict[str, Any]) -> RiskPolicy:
    """Return a new policy with ``overlay`` merged over ``base``."""
    if not isinstance(overlay, dict):
        raise PolicyError("policy overlay must be a mapping")
    data = _deep_merge(base.model_dump(mode="json"), overlay)
    try:
        return RiskPolicy.model_validate(data)
    except ValidationError as exc:
        raise PolicyError(f"invalid policy overlay: {exc}") from exc


def load_policy(path: str | Path, base: RiskPolicy | None = None) -> RiskPolicy:
    """Load a YAML overlay from ``path`` on top of ``base`` (or the built-in policy)."""
    path = Path(path)
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as exc:
        raise PolicyError(f"cannot read policy file {path}: {exc}") from exc
    except yaml.YAMLError as exc:
        raise PolicyError(f"cannot parse policy file {path}: {exc}") from exc
    policy = apply_overlay(base or RiskPolicy(), raw or {})
    logger.info("Loaded policy overlay from %s (version %s)", path, policy.version)
    return policy


@lru_cache(maxsize=1)
def default_policy() -> RiskPolicy:
    """Built-in policy, with the ``TRUSTSCAN_POLICY_PATH`` overlay when set."""
    overlay_path = os.getenv(POLICY_PATH_ENV, "").strip()
    if overlay_path:
        return load_policy(overlay_path)
    return RiskPolicy()
