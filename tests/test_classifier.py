"""Tests for the per-request classifier."""

from __future__ import annotations

from urllib.parse import urlsplit

import pytest

from trustscan.classifier import classify, risk_level_for
from trustscan.models import CategoryTag, NetworkRequestRecord, RiskLevel
from trustscan.policy import ClassifierWeights, RiskPolicy, RiskThresholds

ORIGIN = "example.com"


def _rec(url: str, resource_type: str = "script", domain: str | None = None) -> NetworkRequestRecord:
    if domain is None:
        domain = urlsplit(url).hostname or ""
    return NetworkRequestRecord(url=url, domain=domain, resource_type=resource_type)


# ---- Malformed input ----


class TestMalformed:
    """Unparseable URLs short-circuit to a fixed verdict."""

    @pytest.mark.parametrize("url", ["not a url", "http://", "http://[::1", "//no-scheme.com/x"])
    def test_malformed_url(self, url: str, policy: RiskPolicy) -> None:
        """Malformed URLs are low risk, never suspicious."""
        result = classify(NetworkRequestRecord(url=url), ORIGIN, policy)
        assert result.categories == frozenset({CategoryTag.malformed})
        assert result.reasons == ("Malformed URL",)
        assert result.risk_score == 10
        assert result.risk_level == RiskLevel.low
        assert result.is_suspicious is False

    def test_malformed_does_not_raise_on_bad_host(self, policy: RiskPolicy) -> None:
        """Hosts with whitespace are treated as malformed."""
        result = classify(NetworkRequestRecord(url="http://exa mple.com/"), ORIGIN, policy)
        assert CategoryTag.malformed in result.categories


# ---- Individual rules ----


class TestRules:
    """Each rule in isolation."""

    def test_clean_same_origin_request(self, policy: RiskPolicy) -> None:
        """A plain first-party asset scores zero."""
        result = classify(_rec("https://example.com/static/app.js"), ORIGIN, policy)
        assert result.risk_score == 0
        assert result.categories == frozenset()
        assert result.reasons == ()
        assert result.risk_level == RiskLevel.low
        assert result.is_suspicious is False

    def test_suspicious_tld(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://cdn.evil.tk/lib.js"), ORIGIN, policy)
        assert result.categories == frozenset({CategoryTag.suspicious_tld})
        assert result.risk_score == 15
        assert result.risk_level == RiskLevel.medium
        assert result.is_suspicious is True

    def test_direct_ip_host(self, policy: RiskPolicy) -> None:
        result = classify(_rec("http://192.168.10.5/payload"), ORIGIN, policy)
        assert result.categories == frozenset({CategoryTag.ip_based})
        assert result.risk_score == 30
        assert result.risk_level == RiskLevel.high

    def test_long_url(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://example.com/" + "a" * 600), ORIGIN, policy)
        assert result.categories == frozenset({CategoryTag.obfuscation})
        assert result.risk_score == 10
        assert result.is_suspicious is False

    def test_extreme_url(self, policy: RiskPolicy) -> None:
        """Only the extreme-length tier applies above 1000 chars."""
        result = classify(_rec("https://example.com/" + "a" * 1100), ORIGIN, policy)
        assert result.risk_score == 25
        assert result.risk_level == RiskLevel.medium

    def test_phishing_keywords_per_keyword(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://cdn.other.com/account/login/verify"), ORIGIN, policy)
        assert result.categories == frozenset({CategoryTag.phishing_keywords})
        assert result.risk_score == 15

    def test_phishing_keywords_capped(self, policy: RiskPolicy) -> None:
        url = "https://cdn.other.com/login/verify/secure/account/update/confirm/password"
        result = classify(_rec(url), ORIGIN, policy)
        assert result.risk_score == 25

    def test_phishing_keywords_repeated_count_once(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://cdn.other.com/login/login?next=login"), ORIGIN, policy)
        assert result.risk_score == 5

    def test_phishing_keywords_in_origin_ignored(self, policy: RiskPolicy) -> None:
        """Words that are part of the origin domain are not phishing evidence."""
        url = "https://secure-login.example.com/login"
        result = classify(_rec(url), "secure-login.example.com", policy)
        assert result.risk_score == 0

    def test_sensitive_operation_over_http(self, policy: RiskPolicy) -> None:
        result = classify(_rec("http://other.com/login"), ORIGIN, policy)
        assert result.categories == frozenset(
            {CategoryTag.phishing_keywords, CategoryTag.insecure_http}
        )
        assert result.risk_score == 35
        assert result.risk_level == RiskLevel.high

    def test_https_keyword_is_not_insecure(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://other.com/login"), ORIGIN, policy)
        assert CategoryTag.insecure_http not in result.categories

    @pytest.mark.parametrize(
        "url",
        [
            "https://files.other.com/setup.exe",
            "https://files.other.com/dl/tool.scr?x=1",
            "https://files.other.com/run.ps1",
        ],
    )
    def test_malware_extension(self, url: str, policy: RiskPolicy) -> None:
        result = classify(_rec(url), ORIGIN, policy)
        assert result.categories == frozenset({CategoryTag.malware_download})
        assert result.risk_score == 35

    def test_malware_extension_first_match_only(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://a.com/x.exe?next=y.jar"), ORIGIN, policy)
        assert result.risk_score == 35

    def test_script_injection_pattern(self, policy: RiskPolicy) -> None:
        url = "https://other.com/search?q=<script>alert(1)</script>"
        result = classify(_rec(url), ORIGIN, policy)
        assert result.categories == frozenset({CategoryTag.malicious_pattern})
        assert result.risk_score == 30

    def test_path_traversal_pattern(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://other.com/static/../../etc/hosts"), ORIGIN, policy)
        assert result.categories == frozenset({CategoryTag.malicious_pattern})
        assert result.risk_score == 30

    def test_malicious_pattern_first_match_only(self, policy: RiskPolicy) -> None:
        """Several matching patterns still add a single hit."""
        url = "https://other.com/x?q=<script>eval(1)</script>&p=../../a"
        result = classify(_rec(url), ORIGIN, policy)
        assert result.risk_score == 30

    def test_heavy_encoding(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://other.com/p?d=" + "%41" * 11), ORIGIN, policy)
        assert result.categories == frozenset({CategoryTag.obfuscation})
        assert result.risk_score == 20

    def test_ten_encoded_bytes_allowed(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://other.com/p?d=" + "%41" * 10), ORIGIN, policy)
        assert result.risk_score == 0

    def test_long_query_string(self, policy: RiskPolicy) -> None:
        """Long query, base64-shaped run and long URL stack."""
        result = classify(_rec("https://other.com/collect?d=" + "x" * 600), ORIGIN, policy)
        assert result.categories == frozenset(
            {CategoryTag.data_exfiltration, CategoryTag.obfuscation}
        )
        assert result.risk_score == 25 + 20 + 10
        assert result.risk_level == RiskLevel.critical

    def test_embedded_base64(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://other.com/c?token=" + "QUJD" * 15), ORIGIN, policy)
        assert result.categories == frozenset({CategoryTag.data_exfiltration})
        assert result.risk_score == 20

    def test_punycode_domain(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://xn--pypal-4ve.com/"), ORIGIN, policy)
        assert result.categories == frozenset({CategoryTag.homograph})
        assert result.risk_score == 25

    @pytest.mark.parametrize(
        ("host", "flagged"),
        [
            ("a.b.c.d.example.com", True),
            ("a.b.c.example.com", False),
            ("a.b.c.d.example.co.uk", True),
            ("a.b.c.example.co.uk", False),
        ],
    )
    def test_excessive_subdomains(self, host: str, flagged: bool, policy: RiskPolicy) -> None:
        result = classify(_rec(f"https://{host}/"), ORIGIN, policy)
        assert (CategoryTag.subdomain_abuse in result.categories) is flagged
        assert result.risk_score == (15 if flagged else 0)

    def test_brand_impersonation(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://paypal-secure-login.com/"), ORIGIN, policy)
        assert result.categories == frozenset(
            {CategoryTag.brand_impersonation, CategoryTag.phishing_keywords}
        )
        assert result.risk_score == 40 + 10
        assert result.risk_level == RiskLevel.critical

    def test_brand_on_legitimate_domain(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://www.paypal.com/checkout"), "shop.com", policy)
        assert result.risk_score == 0

    def test_brand_as_prefix_of_foreign_domain(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://paypal.com.evil.net/"), ORIGIN, policy)
        assert CategoryTag.brand_impersonation in result.categories
        assert result.risk_score == 40

    def test_brand_inside_word_not_flagged(self, policy: RiskPolicy) -> None:
        """'purchase' must not read as the 'chase' brand."""
        result = classify(_rec("https://purchase.other.com/"), ORIGIN, policy)
        assert CategoryTag.brand_impersonation not in result.categories

    @pytest.mark.parametrize(
        "url", ["https://www.applebees.com/menu", "https://chaser.net/", "https://paypallets.com/"]
    )
    def test_brand_prefix_of_word_not_flagged(self, url: str, policy: RiskPolicy) -> None:
        """A word that merely starts with a brand name is not the brand."""
        result = classify(_rec(url), ORIGIN, policy)
        assert result.risk_score == 0
        assert result.is_suspicious is False

    def test_brand_as_hyphenated_part(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://apple-id-help.net/"), ORIGIN, policy)
        assert result.categories == frozenset({CategoryTag.brand_impersonation})
        assert result.risk_score == 40

    def test_known_tracker(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://www.google-analytics.com/collect"), ORIGIN, policy)
        assert result.categories == frozenset({CategoryTag.tracking})
        assert result.risk_score == 5
        assert result.is_suspicious is False

    def test_tracker_xhr_is_not_cross_origin(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://www.google-analytics.com/g", "xhr"), ORIGIN, policy)
        assert result.categories == frozenset({CategoryTag.tracking})

    def test_cryptominer_subdomain(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://ws.coinhive.com/proxy"), ORIGIN, policy)
        assert CategoryTag.cryptominer in result.categories
        assert result.risk_score == 50

    def test_cross_origin_fetch(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://api.other.com/v1/data", "fetch"), ORIGIN, policy)
        assert result.categories == frozenset({CategoryTag.cross_origin})
        assert result.risk_score == 10

    @pytest.mark.parametrize(
        "url", ["https://example.com/api/data", "https://api.example.com/data"]
    )
    def test_same_site_fetch_not_cross_origin(self, url: str, policy: RiskPolicy) -> None:
        result = classify(_rec(url, "fetch"), ORIGIN, policy)
        assert CategoryTag.cross_origin not in result.categories
        assert result.risk_score == 0

    def test_cross_origin_script_not_flagged(self, policy: RiskPolicy) -> None:
        result = classify(_rec("https://cdn.other.com/lib.js", "script"), ORIGIN, policy)
        assert result.risk_score == 0


# ---- Composition ----


class TestComposition:
    """Additive scoring, reason ordering, determinism and policy injection."""

    def test_cryptominer_scenario(self, policy: RiskPolicy) -> None:
        """A miner script is critical and suspicious on its own."""
        record = NetworkRequestRecord(
            url="http://coinhive.com/miner.js", domain="coinhive.com", resource_type="script"
        )
        result = classify(record, ORIGIN, policy)
        assert CategoryTag.cryptominer in result.categories
        assert result.risk_score >= 50
        assert result.risk_level == RiskLevel.critical
        assert result.is_suspicious is True

    def test_reasons_follow_rule_order(self, policy: RiskPolicy) -> None:
        result = classify(_rec("http://login.evil.tk/verify"), ORIGIN, policy)
        assert result.risk_score == 15 + 10 + 30
        assert len(result.reasons) == 3
        assert result.reasons[0].startswith("Suspicious TLD")
        assert result.reasons[1].startswith("Phishing keywords")
        assert result.reasons[2] == "Sensitive operation over plain HTTP"

    def test_deterministic(self, policy: RiskPolicy) -> None:
        record = _rec("http://paypal-verify.tk/login?x=" + "A" * 80, "fetch")
        assert classify(record, ORIGIN, policy) == classify(record, ORIGIN, policy)

    def test_domain_falls_back_to_hostname(self, policy: RiskPolicy) -> None:
        record = NetworkRequestRecord(url="https://coinhive.com/lib.js", domain="")
        assert classify(record, ORIGIN, policy).risk_score == 50

    def test_custom_policy_weights(self) -> None:
        policy = RiskPolicy(classifier=ClassifierWeights(cryptominer=60))
        result = classify(_rec("https://coinhive.com/lib.js"), ORIGIN, policy)
        assert result.risk_score == 60

    def test_custom_policy_denylist(self) -> None:
        policy = RiskPolicy(cryptominer_domains=frozenset({"miner.example.net"}))
        assert classify(_rec("https://coinhive.com/lib.js"), ORIGIN, policy).risk_score == 0
        assert classify(_rec("https://miner.example.net/x.js"), ORIGIN, policy).risk_score == 50

    def test_default_policy_used_when_omitted(self) -> None:
        assert classify(_rec("https://coinhive.com/lib.js"), ORIGIN).risk_score == 50


class TestRiskLevels:
    """Score to level thresholds."""

    @pytest.mark.parametrize(
        ("score", "level"),
        [
            (0, RiskLevel.low),
            (14, RiskLevel.low),
            (15, RiskLevel.medium),
            (29, RiskLevel.medium),
            (30, RiskLevel.high),
            (49, RiskLevel.high),
            (50, RiskLevel.critical),
            (200, RiskLevel.critical),
        ],
    )
    def test_thresholds(self, score: int, level: RiskLevel) -> None:
        assert risk_level_for(score, RiskThresholds()) == level
