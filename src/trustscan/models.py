"""Data model shared by the classifier, the aggregator and the scorer.

Every record that crosses a component boundary lives here:
  - captured sandbox requests and their classifications
  - the sandbox summary produced by the aggregator
  - the check results produced by the external probes
  - the scan result handed to the scorer

Models are frozen: they are built once per scan and never mutated. JSON uses
camelCase field names (``resourceType``, ``ageInDays``); both camelCase and
snake_case are accepted on input.
"""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum
from types import MappingProxyType
from typing import Annotated, Any, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, PlainSerializer
from pydantic.alias_generators import to_camel


class FrozenModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
    )


def _freeze(value: Mapping) -> MappingProxyType:
    return MappingProxyType(dict(value))


def frozen_mapping(key_type: Any, value_type: Any) -> Any:
    """Read-only mapping field type; dumps as a plain dict."""
    return Annotated[
        Mapping[key_type, value_type],
        AfterValidator(_freeze),
        PlainSerializer(dict, return_type=dict[key_type, value_type]),
    ]


ERROR_SEPARATOR = "; "


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class CategoryTag(str, Enum):  # noqa: UP042
    """Closed set of request categories emitted by the classifier."""

    malformed = "malformed"
    suspicious_tld = "suspicious-tld"
    ip_based = "ip-based"
    obfuscation = "obfuscation"
    phishing_keywords = "phishing-keywords"
    malware_download = "malware-download"
    malicious_pattern = "malicious-pattern"
    data_exfiltration = "data-exfiltration"
    homograph = "homograph"
    subdomain_abuse = "subdomain-abuse"
    brand_impersonation = "brand-impersonation"
    tracking = "tracking"
    cryptominer = "cryptominer"
    insecure_http = "insecure-http"
    cross_origin = "cross-origin"


class RiskLevel(str, Enum):  # noqa: UP042
    """Per-request severity bucket."""

    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self.value]


class OverallRisk(str, Enum):  # noqa: UP042
    """Severity of a whole request set; ``safe`` when nothing is suspicious."""

    safe = "safe"
    low = "low"
    medium = "medium"
    high = "high"
    critical = "critical"

    @property
    def rank(self) -> int:
        return _RISK_RANK[self.value]

    @classmethod
    def from_level(cls, level: RiskLevel) -> OverallRisk:
        return cls(level.value)


_RISK_RANK = {"safe": 0, "low": 1, "medium": 2, "high": 3, "critical": 4}

CategoryHistogram = frozen_mapping(CategoryTag, int)


# ---------------------------------------------------------------------------
# Sandbox requests
# ---------------------------------------------------------------------------


class NetworkRequestRecord(FrozenModel):
    """A request observed during the sandboxed page load."""

    url: str = Field(description="Full request URL")
    domain: str = Field(default="", description="Request hostname")
    resource_type: str = Field(
        default="other", description="Browser resource type: document, script, xhr, fetch..."
    )
    status: int | None = Field(default=None, description="HTTP response status")


class Classification(FrozenModel):
    """Classifier verdict for one request."""

    categories: frozenset[CategoryTag] = Field(default_factory=frozenset)
    reasons: tuple[str, ...] = Field(default=())
    risk_score: int = Field(default=0, ge=0)
    risk_level: RiskLevel = RiskLevel.low
    is_suspicious: bool = False


class ClassifiedRequest(FrozenModel):
    """A sandbox request paired with its classification."""

    record: NetworkRequestRecord
    classification: Classification


class SandboxSummary(FrozenModel):
    """Reduction of a classified request set."""

    total_requests: int = Field(default=0, ge=0)
    suspicious_count: int = Field(default=0, ge=0)
    critical_count: int = Field(default=0, ge=0)
    high_count: int = Field(default=0, ge=0)
    category_histogram: CategoryHistogram = Field(default_factory=lambda: MappingProxyType({}))
    overall_risk: OverallRisk = OverallRisk.safe
    total_risk_score: int = Field(default=0, ge=0)
    third_party_domains: tuple[str, ...] = Field(default=())
    scan_completed: bool = True
    error: str | None = None

    def merge(self, other: SandboxSummary) -> SandboxSummary:
        """Combine two partial summaries; order of the operands is irrelevant."""
        histogram = dict(self.category_histogram)
        for tag, count in other.category_histogram.items():
            histogram[tag] = histogram.get(tag, 0) + count
        overall = max(self.overall_risk, other.overall_risk, key=lambda r: r.rank)
        errors = sorted(
            part
            for e in (self.error, other.error)
            if e
            for part in e.split(ERROR_SEPARATOR)
        )
        return SandboxSummary(
            total_requests=self.total_requests + other.total_requests,
            suspicious_count=self.suspicious_count + other.suspicious_count,
            critical_count=self.critical_count + other.critical_count,
            high_count=self.high_count + other.high_count,
            category_histogram=dict(sorted(histogram.items(), key=lambda kv: kv[0].value)),
            overall_risk=overall,
            total_risk_score=self.total_risk_score + other.total_risk_score,
            third_party_domains=tuple(
                sorted(set(self.third_party_domains) | set(other.third_party_domains))
            ),
            scan_completed=self.scan_completed and other.scan_completed,
            error=ERROR_SEPARATOR.join(errors) or None,
        )


class RequestSetAnalysis(FrozenModel):
    """Aggregator output: every classification, the suspicious ones, the summary."""

    classified: tuple[ClassifiedRequest, ...] = Field(default=())
    suspicious: tuple[ClassifiedRequest, ...] = Field(default=())
    summary: SandboxSummary = Field(default_factory=SandboxSummary)


# ---------------------------------------------------------------------------
# Check results (produced by external probes)
# ---------------------------------------------------------------------------


class WhoisResult(FrozenModel):
    created_date: str = ""
    age_in_days: int
    registrar: str = ""


class SslResult(FrozenModel):
    valid: bool
    issuer: str = ""
    expires_on: str = ""
    days_until_expiry: int | None = None
    protocol: str | None = Field(default=None, description="Negotiated TLS version, e.g. TLSv1.3")
    cipher_strength: Literal["strong", "moderate", "weak"] | None = None


class GeolocationResult(FrozenModel):
    ip: str = ""
    city: str = ""
    country: str = ""
    isp: str = ""
    org: str = ""


class SafeBrowsingResult(FrozenModel):
    is_safe: bool
    threats: tuple[str, ...] = ()
    threat_types: tuple[str, ...] = ()


class ReverseDnsResult(FrozenModel):
    hostname: str = ""
    ip: str = ""
    matches: bool
    hostnames: tuple[str, ...] = ()


class PortScanResult(FrozenModel):
    ip: str = ""
    open_ports: tuple[int, ...] = ()
    suspicious_ports: tuple[int, ...] = ()
    is_suspicious: bool = False

    @property
    def has_suspicious_ports(self) -> bool:
        return self.is_suspicious or bool(self.suspicious_ports)


class IpReputationResult(FrozenModel):
    ip: str = ""
    abuse_confidence_score: int = Field(default=0, ge=0, le=100)
    is_whitelisted: bool = False
    country_code: str = ""
    isp: str = ""
    domain: str = ""
    total_reports: int = Field(default=0, ge=0)
    last_reported_at: str | None = None
    is_suspicious: bool = False


class HeaderStatus(FrozenModel):
    name: str
    value: str | None = None
    status: Literal["present", "missing", "weak"] = "missing"
    description: str = ""


class SecurityHeadersResult(FrozenModel):
    headers: tuple[HeaderStatus, ...] = ()
    score: int = Field(default=0, ge=0, le=100)
    grade: Literal["A", "B", "C", "D", "F"] | None = None


class CookieFinding(FrozenModel):
    name: str
    secure: bool = False
    http_only: bool = False
    same_site: str | None = None
    issues: tuple[str, ...] = ()


class CookieSecurityResult(FrozenModel):
    cookies: tuple[CookieFinding, ...] = ()
    total_cookies: int = Field(default=0, ge=0)
    secure_cookies: int = Field(default=0, ge=0)
    has_issues: bool = False

    @property
    def secure_ratio(self) -> float:
        if self.total_cookies == 0:
            return 1.0
        return self.secure_cookies / self.total_cookies


Severity = Literal["critical", "high", "medium", "low"]


class ExposedFile(FrozenModel):
    path: str
    type: str = ""
    severity: Severity = "medium"
    description: str = ""


class SensitiveFilesResult(FrozenModel):
    exposed_files: tuple[ExposedFile, ...] = ()
    robots_txt_paths: tuple[str, ...] = ()
    has_vulnerabilities: bool = False
    critical_count: int = Field(default=0, ge=0)
    high_count: int = Field(default=0, ge=0)


class VersionHeader(FrozenModel):
    name: str
    value: str


class VersionDisclosureResult(FrozenModel):
    server_version: str | None = None
    powered_by: str | None = None
    asp_net_version: str | None = None
    php_version: str | None = None
    all_headers: tuple[VersionHeader, ...] = ()
    has_disclosure: bool = False
    risk_level: Literal["high", "medium", "low", "none"] = "none"


class AdminPanel(FrozenModel):
    path: str
    type: Literal["admin", "login", "dashboard", "api", "debug"] = "admin"


class AdminPanelsResult(FrozenModel):
    found_panels: tuple[AdminPanel, ...] = ()
    has_exposed_panels: bool = False


# ---------------------------------------------------------------------------
# Scan result
# ---------------------------------------------------------------------------


class ScanChecks(FrozenModel):
    """At most one result per check; any subset may be absent."""

    whois: WhoisResult | None = None
    ssl: SslResult | None = None
    geolocation: GeolocationResult | None = None
    safe_browsing: SafeBrowsingResult | None = None
    reverse_dns: ReverseDnsResult | None = None
    port_scan: PortScanResult | None = None
    ip_reputation: IpReputationResult | None = None
    security_headers: SecurityHeadersResult | None = None
    cookie_security: CookieSecurityResult | None = None
    sensitive_files: SensitiveFilesResult | None = None
    version_disclosure: VersionDisclosureResult | None = None
    admin_panels: AdminPanelsResult | None = None
    sandbox: SandboxSummary | None = None

    def present(self) -> list[str]:
        """Names of the checks that produced a result."""
        return [name for name in type(self).model_fields if getattr(self, name) is not None]


class ScanResult(FrozenModel):
    url: str
    score: int = Field(default=100, ge=0, le=100)
    checks: ScanChecks = Field(default_factory=ScanChecks)


class Deduction(FrozenModel):
    """One row of the scorer's audit trail."""

    check: str
    reason: str
    points: int = Field(ge=0)


class ScoreReport(FrozenModel):
    """Auditable outcome of scoring one scan."""

    url: str
    score: int = Field(ge=0, le=100)
    fail_fast: bool = False
    deductions: tuple[Deduction, ...] = ()

    @property
    def total_deducted(self) -> int:
        return sum(d.points for d in self.deductions)
