"""API security testing against the OWASP API Security Top 10 (2023)."""

import asyncio
import json
import logging
import os
import re
from pathlib import Path
from typing import Any

import httpx

from wellguard.reporting import (
    FAILED,
    INFO,
    NOT_TESTED,
    PASSED,
    WARNING,
    MarkdownBuilder,
    TestResult,
    check_mark,
    summarize_results,
    utc_now_iso,
    worst_status,
    write_json_report,
    write_markdown_report,
)
from wellguard.runtime import (
    CommandRunner,
    resolve_binary,
    run_command,
    start_background,
    stop_background,
)
from wellguard.tools.http import HTTPClient, HTTPResponse, check_security_headers, wait_for_server

logger = logging.getLogger(__name__)

REPORT_DIR = "security-reports"
OWASP_API_CATEGORIES = [f"API{n}" for n in range(1, 11)]
HEALTH_PATHS = ("/health", "/", "/health/database")

SENSITIVE_FIELDS = ("password", "secret", "token", "ssn", "credit_card", "api_key")
METADATA_URL = "http://169.254.169.254/latest/meta-data/"
METADATA_MARKERS = ("ami-id", "instance-id", "iam/", "security-credentials")
INJECTION_PAYLOADS = {
    "{{7*7}}": "49",
    "${7*7}": "49",
    "<%= 2*7 %>": "14",
    "' OR '1'='1": None,
    "'; DROP TABLE wells; --": None,
}
STACK_TRACE_MARKERS = ("    at ", "Traceback (most recent call last)", '"stack"', "Error: ")
RATE_LIMIT_BURST = 100
LOGIN_BURST = 20

INDUSTRIAL_ENDPOINTS = {
    "/modbus/read": "high",
    "/dnp3/data": "high",
    "/scada/commands": "high",
    "/plc/status": "high",
    "/scada/hmi": "critical",
    "/historian": "critical",
    "/alarms": "critical",
    "/ot/devices": "high",
    "/ot/networks": "high",
    "/ot/protocols": "high",
}

ENV_SECRET_PATTERN = re.compile(
    r"^\s*[A-Z0-9_]*(SECRET|PASSWORD|API_KEY|TOKEN|PRIVATE_KEY)[A-Z0-9_]*\s*=\s*"
    r"['\"]?(?!\$\{)[^\s'\"#]{8,}",
    re.MULTILINE,
)
ENV_TEMPLATE_SUFFIXES = (".example", ".sample", ".template")
NEXT_CONFIG_HEADERS = ("X-Frame-Options", "X-Content-Type-Options", "Content-Security-Policy")
RISKY_DOC_PATHS = re.compile(r"/(admin|debug|test)\b", re.IGNORECASE)
IGNORED_DIRS = {"node_modules", ".git", "dist", "build", ".next", "coverage"}

RECOMMENDATIONS = {
    "API1": "Enforce object-level authorization on every resource lookup",
    "API2": "Harden authentication: reject default and empty credentials, add lockout",
    "API3": "Filter response DTOs and whitelist writable properties",
    "API4": "Add rate limiting (for example @nestjs/throttler) to every route",
    "API5": "Require role checks on administrative endpoints",
    "API6": "Throttle login and other sensitive business flows",
    "API7": "Validate outbound URLs and block internal address ranges",
    "API8": "Add security headers, restrict CORS and hide stack traces",
    "API9": "Remove or protect documentation and debug endpoints in production",
    "API10": "Validate and parameterize all input reaching queries and templates",
    "industrial": "Keep SCADA, PLC and OT interfaces off the public API surface",
    "transport": "Serve the API over HTTPS only",
    "static": "Resolve the findings from configuration, secrets and dependency audits",
}


def _has_any(text: str, markers) -> bool:
    return any(marker in text for marker in markers)


class ApiSecurityTester:
    """Runs network probes and static checks against the WellFlow API."""

    def __init__(
        self,
        base_url: str,
        project_root: Path,
        start_command: list[str] | None = None,
        command_runner: CommandRunner | None = None,
        timeout: float = 5.0,
        startup_timeout: float = 120.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.project_root = Path(project_root)
        self.start_command = start_command
        self.timeout = timeout
        self.startup_timeout = startup_timeout
        self._runner = command_runner or run_command
        self.output_dir = self.project_root / REPORT_DIR
        self.results: list[TestResult] = []
        self.notes: list[dict[str, str]] = []
        self.api_available = False
        self._client: HTTPClient | None = None
        self._server = None

    # ------------------------------------------------------------------
    # Result recording
    # ------------------------------------------------------------------

    def add(self, test: str, status: str, severity: str, message: str, category: str) -> None:
        if status == PASSED:
            severity = "info"
        result = TestResult(test, status, severity, message, category=category)
        self.results.append(result)
        log = {FAILED: logger.error, WARNING: logger.warning}.get(status, logger.info)
        log("%s %s: %s", status, test, message)

    def note(self, test: str, status: str, message: str, category: str = "") -> None:
        self.notes.append(
            {"test": test, "status": status, "message": message, "category": category}
        )
        logger.info("%s %s: %s", status, test, message)

    def url(self, path: str) -> str:
        return f"{self.base_url}{path}"

    async def _send(self, method: str, path: str, **kwargs) -> HTTPResponse | None:
        try:
            return await self._client.request(method, self.url(path), **kwargs)
        except httpx.HTTPError as exc:
            logger.debug("%s %s failed: %s", method, path, exc)
            return None

    # ------------------------------------------------------------------
    # Orchestration
    # ------------------------------------------------------------------

    async def run(self) -> dict[str, Any]:
        logger.info("Testing API security of %s", self.base_url)
        try:
            async with HTTPClient(timeout=self.timeout) as client:
                self._client = client
                self.api_available = await self.check_availability()
                if self.api_available:
                    await self.run_network_checks()
                else:
                    self.note(
                        "Network security tests",
                        INFO,
                        "API unavailable; network checks skipped, static analysis only",
                    )
        finally:
            self._client = None
            await stop_background(self._server)
            self._server = None
        self.check_transport()
        await self.run_static_checks()
        return self.write_report()

    async def check_availability(self) -> bool:
        response = await self._send("GET", "/health")
        if response is not None and response.status_code == 200:
            self.add("API Availability", PASSED, "info", "API is accessible", "availability")
            return True
        if not self.start_command:
            return False
        logger.info("API not accessible, starting: %s", " ".join(self.start_command))
        try:
            self._server = await start_background(self.start_command, cwd=self.project_root)
        except OSError as exc:
            logger.warning("Failed to start API server: %s", exc)
            return False
        ready = await wait_for_server(
            [self.url(p) for p in HEALTH_PATHS], timeout=self.startup_timeout
        )
        if ready is None:
            return False
        self.add("API Availability", PASSED, "info", f"API started, ready at {ready}", "availability")
        return True

    async def run_network_checks(self) -> None:
        await self.check_object_authorization()
        await self.check_authentication()
        await self.check_property_exposure()
        await self.check_rate_limiting()
        await self.check_function_authorization()
        await self.check_business_flows()
        await self.check_ssrf()
        await self.check_misconfiguration()
        await self.check_inventory()
        await self.check_unsafe_consumption()
        await self.check_industrial_endpoints()

    # ------------------------------------------------------------------
    # OWASP API Top 10
    # ------------------------------------------------------------------

    async def check_object_authorization(self) -> None:
        for path in ("/wells/1", "/wells/999999", "/operators/1/wells"):
            response = await self._send("GET", path)
            test = f"Object level authorization {path}"
            if response is None:
                self.add(test, WARNING, "medium", "No response", "API1")
            elif response.status_code in (401, 403):
                self.add(test, PASSED, "info", "Access properly restricted", "API1")
            elif response.status_code == 200:
                self.add(test, FAILED, "high", "Object accessible without authorization", "API1")
            else:
                self.add(test, WARNING, "medium", f"Unexpected status {response.status_code}", "API1")

    async def check_authentication(self) -> None:
        probes = [
            ("Default credentials rejected", {"username": "admin", "password": "admin"}, "critical"),
            ("Empty credentials rejected", {"username": "", "password": ""}, "high"),
        ]
        for test, body, severity in probes:
            response = await self._send("POST", "/auth/login", json=body)
            if response is not None and response.status_code == 200:
                self.add(test, FAILED, severity, "Login succeeded", "API2")
            else:
                status = response.status_code if response is not None else "no response"
                self.add(test, PASSED, "info", f"Login refused ({status})", "API2")

    async def check_property_exposure(self) -> None:
        for path in ("/wells", "/operators", "/production-data", "/users"):
            response = await self._send("GET", path)
            if response is None or response.status_code != 200:
                continue
            body = response.body.lower()
            exposed = [f for f in SENSITIVE_FIELDS if f'"{f}"' in body]
            test = f"Sensitive property exposure {path}"
            if exposed:
                self.add(test, FAILED, "high", f"Exposes: {', '.join(exposed)}", "API3")
            else:
                self.add(test, PASSED, "info", "No sensitive fields in response", "API3")

        response = await self._send("PATCH", "/users/1", json={"role": "admin"})
        if response is not None and response.status_code == 200:
            self.add("Mass assignment protection", FAILED, "high", "role accepted on update", "API3")
        else:
            self.add("Mass assignment protection", PASSED, "info", "role update rejected", "API3")

    async def check_rate_limiting(self) -> None:
        responses = await asyncio.gather(
            *(self._send("GET", "/health") for _ in range(RATE_LIMIT_BURST)),
            return_exceptions=True,
        )
        limited = sum(
            1
            for r in responses
            if isinstance(r, HTTPResponse) and r.status_code in (429, 503)
        )
        if limited:
            self.add("Rate limiting", PASSED, "info", f"{limited} requests throttled", "API4")
        else:
            self.add(
                "Rate limiting",
                FAILED,
                "medium",
                f"No throttling across {RATE_LIMIT_BURST} concurrent requests",
                "API4",
            )

    async def check_function_authorization(self) -> None:
        for path in ("/admin", "/admin/users", "/users"):
            response = await self._send("GET", path)
            test = f"Function level authorization {path}"
            if response is not None and response.status_code == 200:
                self.add(test, FAILED, "high", "Endpoint accessible without authorization", "API5")
            else:
                self.add(test, PASSED, "info", "Endpoint restricted", "API5")

    async def check_business_flows(self) -> None:
        throttled = False
        for attempt in range(LOGIN_BURST):
            response = await self._send(
                "POST",
                "/auth/login",
                json={"username": f"probe{attempt}@example.com", "password": "invalid"},
            )
            if response is not None and response.status_code == 429:
                throttled = True
                break
        if throttled:
            self.add("Login flow throttling", PASSED, "info", "Login attempts throttled", "API6")
        else:
            self.add(
                "Login flow throttling",
                WARNING,
                "medium",
                f"{LOGIN_BURST} rapid login attempts were not throttled",
                "API6",
            )

    async def check_ssrf(self) -> None:
        for param in ("url", "callback"):
            response = await self._send("GET", "/wells", params={param: METADATA_URL})
            test = f"SSRF via {param} parameter"
            if (
                response is not None
                and response.status_code == 200
                and _has_any(response.body, METADATA_MARKERS)
            ):
                self.add(test, FAILED, "critical", "Cloud metadata content returned", "API7")
            else:
                self.add(test, PASSED, "info", "Metadata URL not fetched", "API7")

    async def check_misconfiguration(self) -> None:
        response = await self._send("GET", "/health")
        if response is not None:
            headers = check_security_headers(response)
            if headers["missing_headers"]:
                self.add(
                    "Security headers",
                    WARNING,
                    "medium",
                    f"Missing: {', '.join(headers['missing_headers'])}",
                    "API8",
                )
            else:
                self.add("Security headers", PASSED, "info", "All security headers present", "API8")
            if headers["disclosed"]:
                disclosed = ", ".join(f"{k}: {v}" for k, v in headers["disclosed"].items())
                self.add("Server information disclosure", WARNING, "low", disclosed, "API8")

        origin = "https://evil.example.com"
        response = await self._send("GET", "/health", headers={"Origin": origin})
        if response is not None:
            allow_origin = response.header("Access-Control-Allow-Origin")
            credentials = response.header("Access-Control-Allow-Credentials").lower() == "true"
            if allow_origin in ("*", origin) and credentials:
                self.add(
                    "CORS policy",
                    FAILED,
                    "high",
                    f"Origin {allow_origin} allowed with credentials",
                    "API8",
                )
            else:
                self.add("CORS policy", PASSED, "info", "Cross-origin credentials restricted", "API8")

        response = await self._send("GET", "/wellguard-nonexistent-route")
        if response is not None and _has_any(response.body, STACK_TRACE_MARKERS):
            self.add("Verbose error messages", WARNING, "medium", "Stack trace in 404 body", "API8")
        else:
            self.add("Verbose error messages", PASSED, "info", "No stack traces exposed", "API8")

    async def check_inventory(self) -> None:
        exposed = []
        for path in ("/swagger", "/api-docs", "/docs", "/debug", "/test"):
            response = await self._send("GET", path)
            if response is not None and response.status_code == 200:
                exposed.append(path)
        if exposed:
            self.add(
                "API inventory exposure",
                WARNING,
                "medium",
                f"Reachable: {', '.join(exposed)}",
                "API9",
            )
        else:
            self.add("API inventory exposure", PASSED, "info", "No documentation endpoints", "API9")

    async def check_unsafe_consumption(self) -> None:
        for payload, evaluated in INJECTION_PAYLOADS.items():
            response = await self._send("GET", "/wells", params={"search": payload})
            test = f"Input handling {payload!r}"
            if response is None:
                continue
            if response.status_code >= 500:
                self.add(test, FAILED, "critical", "Server error on injection payload", "API10")
            elif evaluated and evaluated in response.body and payload not in response.body:
                self.add(test, FAILED, "high", f"Payload evaluated to {evaluated}", "API10")
            else:
                self.add(test, PASSED, "info", "Payload handled safely", "API10")

    async def check_industrial_endpoints(self) -> None:
        for path, severity in INDUSTRIAL_ENDPOINTS.items():
            response = await self._send("GET", path)
            test = f"Industrial endpoint {path}"
            if response is not None and response.status_code == 200:
                self.add(test, WARNING, severity, "Endpoint reachable without auth", "industrial")
            else:
                self.add(test, PASSED, "info", "Endpoint not exposed", "industrial")

    def check_transport(self) -> None:
        if self.base_url.startswith("https://"):
            self.add("Transport security", PASSED, "info", "API served over HTTPS", "transport")
        else:
            self.add("Transport security", WARNING, "medium", "API served over plain HTTP", "transport")

    # ------------------------------------------------------------------
    # Static analysis
    # ------------------------------------------------------------------

    async def run_static_checks(self) -> None:
        self.check_next_config()
        self.check_env_files()
        await self.check_dependency_audit()
        self.check_api_documents()

    def check_next_config(self) -> None:
        path = self.project_root / "apps" / "web" / "next.config.js"
        if not path.exists():
            self.note("Next.js security headers", NOT_TESTED, "next.config.js not found", "static")
            return
        content = path.read_text(encoding="utf-8", errors="replace")
        missing = [h for h in NEXT_CONFIG_HEADERS if h not in content]
        if missing:
            self.add(
                "Next.js security headers",
                WARNING,
                "medium",
                f"Not configured: {', '.join(missing)}",
                "static",
            )
        else:
            self.add("Next.js security headers", PASSED, "info", "Headers configured", "static")

    def env_files(self) -> list[Path]:
        found = []
        for current, dirs, files in os.walk(self.project_root):
            dirs[:] = [d for d in dirs if d not in IGNORED_DIRS]
            for name in files:
                if name.startswith(".env") and not name.endswith(ENV_TEMPLATE_SUFFIXES):
                    found.append(Path(current) / name)
        return sorted(found)

    def check_env_files(self) -> None:
        leaking = [
            path.relative_to(self.project_root).as_posix()
            for path in self.env_files()
            if ENV_SECRET_PATTERN.search(path.read_text(encoding="utf-8", errors="replace"))
        ]
        if leaking:
            self.add(
                "Environment file secrets",
                WARNING,
                "medium",
                f"Literal secrets in: {', '.join(leaking)}",
                "static",
            )
        else:
            self.add("Environment file secrets", PASSED, "info", "No literal secrets", "static")

    async def check_dependency_audit(self) -> None:
        if resolve_binary("pnpm") is None:
            self.note("Dependency audit", NOT_TESTED, "pnpm not installed", "static")
            return
        try:
            result = await self._runner(
                ["pnpm", "audit", "--json"],
                timeout=120,
                allowed_exit_codes=(0, 1),
                cwd=self.project_root,
            )
            data = json.loads(result.stdout or "{}")
        except (RuntimeError, json.JSONDecodeError) as exc:
            self.note("Dependency audit", NOT_TESTED, f"pnpm audit failed: {exc}", "static")
            return
        counts = data.get("metadata", {}).get("vulnerabilities", {})
        critical, high = int(counts.get("critical", 0)), int(counts.get("high", 0))
        if critical:
            self.add("Dependency audit", FAILED, "critical", f"{critical} critical advisories", "static")
        elif high:
            self.add("Dependency audit", WARNING, "high", f"{high} high advisories", "static")
        else:
            self.add("Dependency audit", PASSED, "info", "No critical or high advisories", "static")

    def check_api_documents(self) -> None:
        documents = []
        for current, dirs, files in os.walk(self.project_root):
            dirs[:] = [d for d in dirs if d not in IGNORED_DIRS]
            documents.extend(
                Path(current) / n for n in files if n in ("swagger.json", "openapi.json")
            )
        if not documents:
            self.note("API documentation review", NOT_TESTED, "No OpenAPI document", "static")
            return
        risky = []
        for path in sorted(documents):
            try:
                spec = json.loads(path.read_text(encoding="utf-8"))
            except (OSError, json.JSONDecodeError):
                logger.warning("Unreadable API document %s", path)
                continue
            risky.extend(p for p in spec.get("paths", {}) if RISKY_DOC_PATHS.search(p))
        if risky:
            self.add(
                "API documentation review",
                WARNING,
                "medium",
                f"Sensitive paths documented: {', '.join(sorted(set(risky)))}",
                "static",
            )
        else:
            self.add("API documentation review", PASSED, "info", "No sensitive paths", "static")

    # ------------------------------------------------------------------
    # Report
    # ------------------------------------------------------------------

    def owasp_status(self) -> dict[str, str]:
        return {
            category: worst_status(r.status for r in self.results if r.category == category)
            or NOT_TESTED
            for category in OWASP_API_CATEGORIES
        }

    def recommendations(self) -> list[str]:
        flagged = {r.category for r in self.results if r.status != PASSED}
        return [advice for key, advice in RECOMMENDATIONS.items() if key in flagged]

    def write_report(self) -> dict[str, Any]:
        summary = summarize_results(self.results)
        report = {
            "timestamp": utc_now_iso(),
            "baseUrl": self.base_url,
            "api_available": self.api_available,
            "tests": [r.to_dict() for r in self.results],
            "notes": self.notes,
            "summary": summary,
            "compliance": {
                "owasp_api_top_10": self.owasp_status(),
                "nist_cybersecurity": summary["critical"] == 0 and summary["high"] == 0,
                "iec_62443": summary["critical"] == 0,
                "api_1164": summary["critical"] == 0,
            },
            "recommendations": self.recommendations(),
        }
        write_json_report(self.output_dir / "api-security-report.json", report)
        write_markdown_report(self.output_dir / "api-security-report.md", render_markdown(report))
        logger.info("API security report generated in %s", self.output_dir)
        return report

    @property
    def failed(self) -> bool:
        severities = [r.severity for r in self.results if r.status != PASSED]
        if "critical" in severities:
            return True
        return self.api_available and "high" in severities


def render_markdown(report: dict[str, Any]) -> str:
    summary = report["summary"]
    compliance = report["compliance"]
    md = MarkdownBuilder()
    md.heading("WellFlow API Security Report", 1)
    md.paragraph(f"**Generated:** {report['timestamp']}  \n**Target:** {report['baseUrl']}")
    md.heading("Executive Summary")
    md.bullets(
        [
            f"**API Available:** {'Yes' if report['api_available'] else 'No (static analysis only)'}",
            f"**Total Tests:** {summary['total']}",
            f"**Passed:** {summary['passed']}",
            f"**Failed:** {summary['failed']}",
            f"**Warnings:** {summary['warnings']}",
        ]
    )
    md.heading("Severity Breakdown")
    md.table(
        ["Severity", "Count"],
        [(sev.capitalize(), summary[sev]) for sev in ("critical", "high", "medium", "low", "info")],
    )
    md.heading("Industry Compliance")
    md.bullets(
        [
            f"{check_mark(compliance['nist_cybersecurity'])} **NIST Cybersecurity Framework**",
            f"{check_mark(compliance['iec_62443'])} **IEC 62443**",
            f"{check_mark(compliance['api_1164'])} **API 1164**",
        ]
    )
    md.table(
        ["OWASP API Top 10 (2023)", "Status"],
        [(f"{key}:2023", status) for key, status in compliance["owasp_api_top_10"].items()],
    )
    md.heading("Detailed Test Results")
    md.table(
        ["Test", "Category", "Status", "Severity", "Message"],
        [
            (t["test"], t.get("category", ""), t["status"], t["severity"].upper(), t["message"])
            for t in report["tests"]
        ],
    )
    if report["notes"]:
        md.bullets(f"{n['status']} {n['test']}: {n['message']}" for n in report["notes"])
    md.heading("Recommendations")
    md.numbered(report["recommendations"] or ["Keep running API security tests in CI"])
    return md.render()
