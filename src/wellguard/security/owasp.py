"""OWASP 2023 compliance: API Top 10, ASVS 4.0, SAMM 2.0 and industry standards."""

import ipaddress
import logging
import os
import re
import socket
from dataclasses import dataclass
from pathlib import Path
from typing import Any
from urllib.parse import urlparse

from wellguard.reporting import (
    FAILED,
    NOT_TESTED,
    PASSED,
    WARNING,
    read_json_report,
    utc_now_iso,
    write_json_report,
)

logger = logging.getLogger(__name__)

REPORT_PATH = Path("reports") / "owasp-2023" / "owasp-2023-compliance-report.json"
API_REPORT_PATH = Path("security-reports") / "api-security-report.json"
PASSING_PERCENT = 85

SOURCE_DIRS = ("apps", "packages", "libs", "src")
SOURCE_SUFFIXES = {".ts", ".tsx", ".js", ".jsx", ".mjs", ".json", ".yml", ".yaml"}
IGNORED_DIRS = {"node_modules", ".git", "dist", "build", ".next", "coverage", ".turbo"}
MAX_SOURCE_BYTES = 512 * 1024

# ---------------------------------------------------------------------------
# SSRF guard
# ---------------------------------------------------------------------------

BLOCKED_NETWORKS = [
    ipaddress.ip_network(n)
    for n in (
        "127.0.0.0/8",
        "10.0.0.0/8",
        "172.16.0.0/12",
        "192.168.0.0/16",
        "169.254.0.0/16",
        "::1/128",
    )
]
BLOCKED_SCHEMES = {"file", "ftp"}
# Shorthand, decimal, octal and hex IPv4 forms that resolvers accept ("127.1", "2130706433")
NUMERIC_HOST = re.compile(r"^(0x[0-9a-f]*|\d+)(\.(0x[0-9a-f]*|\d+)){0,3}$")

# (url, blocked)
SSRF_CORPUS = [
    ("http://localhost:8080/admin", True),
    ("http://169.254.169.254/latest/meta-data/", True),
    ("http://10.0.0.1/internal-api", True),
    ("http://172.20.1.5/scada", True),
    ("http://192.168.1.10/plc", True),
    ("http://[::1]/", True),
    ("http://[::ffff:127.0.0.1]/", True),
    ("http://[::ffff:169.254.169.254]/latest/meta-data/", True),
    ("http://127.1/", True),
    ("http://2130706433/", True),
    ("http://0x7f.0.0.1/", True),
    ("http://0.0.0.0/", True),
    ("http://localhost./admin", True),
    ("file:///etc/passwd", True),
    ("ftp://internal.company.com/sensitive-data", True),
    ("https://api.weather.gov/points/31.9686,-99.9018", False),
    ("https://www.rrc.texas.gov/", False),
    ("http://172.32.0.1/", False),
]


def is_ssrf_blocked(url: str) -> bool:
    """Return True when an outbound request to ``url`` must be refused."""
    parsed = urlparse(url)
    scheme = parsed.scheme.lower()
    if scheme in BLOCKED_SCHEMES:
        return True
    if scheme not in ("http", "https"):
        return True
    host = (parsed.hostname or "").lower().rstrip(".")
    if not host:
        return True
    if host == "localhost" or host.endswith(".localhost"):
        return True
    if NUMERIC_HOST.match(host):
        try:
            address = ipaddress.ip_address(socket.inet_aton(host))
        except OSError:
            return True
    else:
        try:
            address = ipaddress.ip_address(host)
        except ValueError:
            return False
    if address.version == 6 and address.ipv4_mapped:
        address = address.ipv4_mapped
    if address.is_unspecified:
        return True
    return any(address.version == net.version and address in net for net in BLOCKED_NETWORKS)


# ---------------------------------------------------------------------------
# Repository evidence
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class Evidence:
    """A required item, found either in file paths or in source contents."""

    label: str
    pattern: str
    kind: str = "content"  # "content" or "path"


API_TOP_10 = {
    "API1:2023": "Broken Object Level Authorization",
    "API2:2023": "Broken Authentication",
    "API3:2023": "Broken Object Property Level Authorization",
    "API4:2023": "Unrestricted Resource Consumption",
    "API5:2023": "Broken Function Level Authorization",
    "API6:2023": "Unrestricted Access to Sensitive Business Flows",
    "API7:2023": "Server Side Request Forgery",
    "API8:2023": "Security Misconfiguration",
    "API9:2023": "Improper Inventory Management",
    "API10:2023": "Unsafe Consumption of APIs",
}

ASVS_CATEGORIES: dict[str, tuple[str, list[Evidence]]] = {
    "V1": (
        "Architecture, Design and Threat Modeling",
        [Evidence("security policy or threat model", r"(^|/)(SECURITY\.md|.*threat[-_ ]?model)", "path")],
    ),
    "V2": (
        "Authentication",
        [
            Evidence("password hashing (bcrypt/argon2)", r"\b(bcrypt|argon2)"),
            Evidence("account lockout", r"(lockout|failedLoginAttempts|maxLoginAttempts|lockedUntil)"),
        ],
    ),
    "V3": (
        "Session Management",
        [
            Evidence("JWT expiry configuration", r"expiresIn"),
            Evidence("refresh token handling", r"refresh[_-]?token"),
        ],
    ),
    "V4": (
        "Access Control",
        [Evidence("authorization guards", r"(@UseGuards|RolesGuard|@Roles\(|casl)")],
    ),
    "V5": (
        "Validation, Sanitization and Encoding",
        [Evidence("input validation", r"(class-validator|ValidationPipe|\bzod\b)")],
    ),
    "V7": (
        "Error Handling and Logging",
        [
            Evidence("exception filters", r"(ExceptionFilter|@Catch\()"),
            Evidence("structured logging", r"\b(winston|pino|Logger)\b"),
        ],
    ),
    "V8": ("Data Protection", [Evidence("encryption at rest", r"(createCipheriv|encrypt\w*\()")]),
    "V9": ("Communication", [Evidence("HSTS / helmet", r"(Strict-Transport-Security|helmet)")]),
    "V10": (
        "Malicious Code",
        [
            Evidence(
                "dependency lockfile",
                r"(^|/)(pnpm-lock\.yaml|package-lock\.json|yarn\.lock)$",
                "path",
            )
        ],
    ),
    "V11": ("Business Logic", [Evidence("rate limiting", r"(ThrottlerGuard|@Throttle|rateLimit)")]),
    "V12": (
        "Files and Resources",
        [Evidence("upload limits", r"(fileFilter|MaxFileSizeValidator|fileSize)")],
    ),
    "V13": ("API and Web Service", [Evidence("API schema", r"(@nestjs/swagger|ApiProperty|openapi)")]),
    "V14": (
        "Configuration",
        [
            Evidence("configuration module", r"(ConfigModule|@nestjs/config)"),
            Evidence("environment template", r"(^|/)\.env\.example$", "path"),
        ],
    ),
}

SAMM_DOMAINS: dict[str, dict[str, Evidence]] = {
    "Governance": {
        "Strategy & Metrics": Evidence("security policy", r"(^|/)SECURITY\.md$", "path"),
        "Policy & Compliance": Evidence(
            "license policy", r"(\.license-exceptions\.yml|(^|/)LICENSE|license-check)", "path"
        ),
        "Education & Guidance": Evidence("contributor docs", r"(CONTRIBUTING\.md|^docs/)", "path"),
    },
    "Design": {
        "Threat Assessment": Evidence("threat model", r"threat[-_ ]?model", "path"),
        "Security Requirements": Evidence(
            "security requirements", r"(^|/)(SECURITY\.md|.*security-requirements)", "path"
        ),
        "Security Architecture": Evidence("security middleware", r"(helmet|ThrottlerGuard|UseGuards)"),
    },
    "Implementation": {
        "Secure Build": Evidence("CI workflows", r"^\.github/workflows/.+\.ya?ml$", "path"),
        "Secure Deployment": Evidence("container definitions", r"(Dockerfile|docker-compose)", "path"),
        "Defect Management": Evidence(
            "dependency automation", r"(dependabot\.yml|renovate\.json|ISSUE_TEMPLATE)", "path"
        ),
    },
    "Verification": {
        "Architecture Assessment": Evidence("architecture docs", r"(architecture|/adr/)", "path"),
        "Requirements Testing": Evidence("automated tests", r"\.(spec|test)\.[jt]sx?$", "path"),
        "Security Testing": Evidence(
            "security scanning", r"(\.github/workflows/.*security|codeql|semgrep)", "path"
        ),
    },
    "Operations": {
        "Incident Management": Evidence("incident runbooks", r"(incident|runbook)", "path"),
        "Environment Management": Evidence(
            "environment definitions", r"(\.env\.example|docker-compose)", "path"
        ),
        "Operational Management": Evidence("monitoring", r"(@sentry/|prometheus|opentelemetry)"),
    },
}

# standard -> required ASVS / API categories and SAMM domains at level >= 2
INDUSTRY_STANDARDS: dict[str, dict[str, list[str]]] = {
    "NIST Cybersecurity Framework 2.0": {
        "asvs": ["V1", "V2", "V4", "V7", "V8"],
        "api": ["API1:2023", "API2:2023", "API5:2023"],
        "samm": ["Governance"],
    },
    "IEC 62443": {"asvs": ["V4", "V9", "V14"], "api": ["API8:2023"], "samm": ["Implementation"]},
    "API 1164": {"asvs": ["V9"], "api": ["API4:2023", "API7:2023"], "samm": []},
    "NERC CIP": {"asvs": ["V2", "V7"], "api": [], "samm": ["Operations"]},
    "TSA Pipeline Security": {"asvs": ["V8", "V9"], "api": [], "samm": ["Implementation"]},
    "CISA Cross-Sector CPGs": {"asvs": ["V2", "V10", "V14"], "api": ["API7:2023"], "samm": []},
}


class RepositoryIndex:
    """Relative paths and readable source contents of a repository."""

    def __init__(self, root: Path):
        self.root = Path(root)
        self.paths: list[str] = []
        self.sources: dict[str, str] = {}
        for current, dirs, files in os.walk(self.root):
            dirs[:] = sorted(d for d in dirs if d not in IGNORED_DIRS)
            for name in sorted(files):
                path = Path(current) / name
                relative = path.relative_to(self.root).as_posix()
                self.paths.append(relative)
                if (
                    relative.split("/", 1)[0] in SOURCE_DIRS
                    and path.suffix in SOURCE_SUFFIXES
                    and path.stat().st_size <= MAX_SOURCE_BYTES
                ):
                    self.sources[relative] = path.read_text(encoding="utf-8", errors="replace")

    def find(self, evidence: Evidence) -> str | None:
        """Return the first path proving ``evidence``, or None."""
        pattern = re.compile(evidence.pattern, re.IGNORECASE)
        if evidence.kind == "path":
            return next((p for p in self.paths if pattern.search(p)), None)
        return next((p for p, text in self.sources.items() if pattern.search(text)), None)


def _tally(statuses: list[str]) -> dict[str, Any]:
    passed = statuses.count(PASSED)
    counted = sum(1 for s in statuses if s != NOT_TESTED)
    return {
        "passed": passed,
        "failed": counted - passed,
        "not_tested": statuses.count(NOT_TESTED),
        "percentage": round(passed * 100 / counted, 1) if counted else 0.0,
    }


class OwaspComplianceTester:
    """Evaluates OWASP 2023 compliance from the API report and repository evidence."""

    def __init__(self, project_root: Path, api_report: dict[str, Any] | None = None):
        self.project_root = Path(project_root)
        if api_report is None:
            path = self.project_root / API_REPORT_PATH
            api_report = read_json_report(path) if path.exists() else None
        self.api_report = api_report
        self.index = RepositoryIndex(self.project_root)
        self.results: dict[str, Any] = {}

    def evaluate_api_security(self) -> dict[str, dict[str, Any]]:
        statuses = {}
        if self.api_report:
            statuses = self.api_report.get("compliance", {}).get("owasp_api_top_10", {})
        results = {}
        for key, name in API_TOP_10.items():
            status = statuses.get(key.split(":")[0], NOT_TESTED)
            if status not in (PASSED, FAILED, WARNING):
                status = NOT_TESTED
            evidence = "api-security-report.json" if status != NOT_TESTED else "no API test evidence"
            results[key] = {"name": name, "status": status, "evidence": evidence}
        return results

    def evaluate_asvs(self) -> dict[str, dict[str, Any]]:
        results = {}
        has_sources = bool(self.index.sources)
        for key, (name, required) in ASVS_CATEGORIES.items():
            needs_sources = any(e.kind == "content" for e in required)
            if needs_sources and not has_sources:
                results[key] = {"name": name, "status": NOT_TESTED, "evidence": [], "missing": []}
                continue
            found, missing = [], []
            for item in required:
                location = self.index.find(item)
                if location:
                    found.append(f"{item.label}: {location}")
                else:
                    missing.append(item.label)
            results[key] = {
                "name": name,
                "status": FAILED if missing else PASSED,
                "evidence": found,
                "missing": missing,
            }
        return results

    def evaluate_samm(self) -> dict[str, dict[str, Any]]:
        results = {}
        for domain, practices in SAMM_DOMAINS.items():
            assessed = {}
            for practice, evidence in practices.items():
                location = self.index.find(evidence)
                assessed[practice] = {
                    "status": PASSED if location else FAILED,
                    "evidence": location or f"missing {evidence.label}",
                }
            level = sum(1 for p in assessed.values() if p["status"] == PASSED)
            results[domain] = {"level": level, "practices": assessed}
        return results

    def evaluate_ssrf_guard(self) -> dict[str, Any]:
        details = [
            {"url": url, "expected_blocked": expected, "blocked": is_ssrf_blocked(url)}
            for url, expected in SSRF_CORPUS
        ]
        correct = sum(1 for d in details if d["blocked"] == d["expected_blocked"])
        return {
            "status": PASSED if correct == len(details) else FAILED,
            "passed": correct,
            "total": len(details),
            "details": details,
        }

    def evaluate_industry(self) -> dict[str, dict[str, Any]]:
        api = self.results["apiSecurity"]
        asvs = self.results["asvs"]
        samm = self.results["samm"]
        results = {}
        for standard, required in INDUSTRY_STANDARDS.items():
            statuses = [asvs[k]["status"] for k in required["asvs"]]
            statuses += [api[k]["status"] for k in required["api"]]
            statuses += [PASSED if samm[d]["level"] >= 2 else FAILED for d in required["samm"]]
            tested = [s for s in statuses if s != NOT_TESTED]
            if not tested:
                status = NOT_TESTED
            elif all(s == PASSED for s in tested):
                status = PASSED
            else:
                status = FAILED
            results[standard] = {"status": status, "compliant": status == PASSED}
        return results

    def summarize(self) -> dict[str, Any]:
        frameworks = {
            "api_security": [r["status"] for r in self.results["apiSecurity"].values()],
            "asvs": [r["status"] for r in self.results["asvs"].values()],
            "samm": [
                p["status"]
                for domain in self.results["samm"].values()
                for p in domain["practices"].values()
            ],
            "ssrf_protection": [self.results["ssrfProtection"]["status"]],
        }
        summary = {name: _tally(statuses) for name, statuses in frameworks.items()}
        overall = _tally([s for statuses in frameworks.values() for s in statuses])
        overall["compliant"] = overall["percentage"] >= PASSING_PERCENT
        summary["overall"] = overall
        summary["not_tested"] = [
            key
            for section in ("apiSecurity", "asvs")
            for key, result in self.results[section].items()
            if result["status"] == NOT_TESTED
        ]
        return summary

    def run(self) -> dict[str, Any]:
        logger.info("Evaluating OWASP 2023 compliance for %s", self.project_root)
        if self.api_report is None:
            logger.warning("No API security report found; API Top 10 is not tested")
        self.results["apiSecurity"] = self.evaluate_api_security()
        self.results["asvs"] = self.evaluate_asvs()
        self.results["samm"] = self.evaluate_samm()
        self.results["ssrfProtection"] = self.evaluate_ssrf_guard()
        self.results["industryStandards"] = self.evaluate_industry()
        report = {"timestamp": utc_now_iso(), **self.results, "summary": self.summarize()}
        path = write_json_report(self.project_root / REPORT_PATH, report)
        report["report_file"] = str(path)
        overall = report["summary"]["overall"]
        logger.info("OWASP 2023 overall compliance: %.1f%%", overall["percentage"])
        return report

    @property
    def failed(self) -> bool:
        return not self.results or self.summarize()["overall"]["percentage"] < PASSING_PERCENT
