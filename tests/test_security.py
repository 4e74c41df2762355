"""Tests for the infrastructure, license, OWASP and API security scanners."""

import json
from pathlib import Path

import httpx
import pytest
import respx
from httpx import Response

from wellguard.runtime import MissingToolError
from wellguard.security import (
    ApiSecurityTester,
    InfrastructureScanner,
    LicenseChecker,
    OwaspComplianceTester,
    classify_license,
    discover_files,
    is_ssrf_blocked,
    normalize_license,
    scan_file,
)
from wellguard.security.licenses import LicenseException, load_exceptions, split_package
from wellguard.security.owasp import SSRF_CORPUS, _tally

SECURE_HEADERS = {
    "X-Frame-Options": "DENY",
    "X-Content-Type-Options": "nosniff",
    "Content-Security-Policy": "default-src 'self'",
    "Strict-Transport-Security": "max-age=31536000",
    "Referrer-Policy": "no-referrer",
    "Permissions-Policy": "camera=()",
}


def _write(root: Path, relative: str, content: str) -> Path:
    path = root / relative
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content)
    return path


def _rule_ids(findings) -> list[str]:
    return sorted(f.rule_id for f in findings)


class TestInfrastructureRules:
    """Line and file rules per IaC type."""

    def test_discover_files(self, repo_dir: Path):
        _write(repo_dir, "apps/api/Dockerfile", "FROM node:20\n")
        _write(repo_dir, "deploy/k8s/api.yaml", "kind: Deployment\n")
        _write(repo_dir, "manifests/web.yaml", "apiVersion: v1\nkind: Service\n")
        _write(repo_dir, "infra/main.tf", "")
        _write(repo_dir, "docker-compose.yml", "services: {}\n")
        _write(repo_dir, ".github/workflows/ci.yml", "on: push\n")
        _write(repo_dir, "config/settings.yaml", "debug: false\n")
        _write(repo_dir, "node_modules/pkg/Dockerfile", "FROM scratch\n")

        found = discover_files(repo_dir)

        relative = {k: [p.relative_to(repo_dir).as_posix() for p in v] for k, v in found.items()}
        assert relative == {
            "docker": ["apps/api/Dockerfile"],
            "kubernetes": ["deploy/k8s/api.yaml", "manifests/web.yaml"],
            "terraform": ["infra/main.tf"],
            "compose": ["docker-compose.yml"],
            "github_actions": [".github/workflows/ci.yml"],
        }

    def test_dockerfile_rules(self, temp_dir: Path):
        path = _write(
            temp_dir,
            "Dockerfile",
            "FROM node:20\n"
            "# USER root is commented out\n"
            "RUN sudo apt-get update\n"
            "RUN curl http://example.com/install.sh | sh\n"
            "ADD https://example.com/tool.tgz /opt/\n"
            "USER root\n",
        )
        findings = scan_file(path, "docker", temp_dir)
        assert _rule_ids(findings) == ["DKR001", "DKR002", "DKR003", "DKR004", "DKR006"]
        assert next(f for f in findings if f.rule_id == "DKR001").line == 6

    def test_dockerfile_with_non_root_user_is_clean(self, temp_dir: Path):
        path = _write(temp_dir, "Dockerfile", "FROM node:20\nRUN npm ci\nUSER node\n")
        assert scan_file(path, "docker", temp_dir) == []

    def test_terraform_rules(self, temp_dir: Path):
        path = _write(
            temp_dir,
            "main.tf",
            'password = "hunter2"\n'
            "admin_password = var.db_password\n"
            'cidr_blocks = ["0.0.0.0/0"]\n',
        )
        findings = scan_file(path, "terraform", temp_dir)
        assert _rule_ids(findings) == ["TF001", "TF002"]
        assert {f.severity for f in findings} == {"critical", "high"}

    def test_workflow_credentials(self, temp_dir: Path):
        path = _write(
            temp_dir,
            "ci.yml",
            "on:\n"
            "  pull_request_target:\n"
            "permissions:\n"
            "  id-token: write\n"
            "jobs:\n"
            "  deploy:\n"
            "    steps:\n"
            "      - with:\n"
            "          token: ${{ secrets.DEPLOY_TOKEN }}\n"
            "          api_token: abc123def456\n",
        )
        findings = scan_file(path, "github_actions", temp_dir)
        assert _rule_ids(findings) == ["GHA001", "GHA002"]
        assert next(f for f in findings if f.rule_id == "GHA001").line == 10

    def test_kubernetes_without_resources(self, temp_dir: Path):
        path = _write(
            temp_dir,
            "pod.yaml",
            "apiVersion: v1\n"
            "kind: Pod\n"
            "spec:\n"
            "  hostNetwork: true\n"
            "  containers:\n"
            "    - name: api\n"
            "      image: wellflow/api:latest\n",
        )
        findings = scan_file(path, "kubernetes", temp_dir)
        assert _rule_ids(findings) == ["K8S003", "K8S005"]
        assert next(f for f in findings if f.rule_id == "K8S005").line == 7


class TestInfrastructureScanner:
    """Full scans and report output."""

    async def test_scan_reports_findings(self, repo_dir: Path, fake_runner):
        _write(repo_dir, "apps/api/Dockerfile", "FROM node:20\nUSER root\n")
        _write(repo_dir, "apps/web/Dockerfile", "FROM node:20\nUSER node\n")

        report = await InfrastructureScanner(repo_dir, fake_runner()).run(external=False)

        assert report["failed"] is True
        assert report["summary"]["total_files"] == 2
        assert report["summary"]["high"] == 2
        assert report["scans"]["docker"]["passed"] == 1
        assert report["scans"]["docker"]["failed"] == 1
        assert report["compliance"]["nist"] is False
        assert report["compliance"]["iec_62443"] is True
        assert report["external_tools"] == {}
        assert len(report["recommendations"]) == 1
        output = repo_dir / "security-reports"
        assert json.loads((output / "infrastructure-security-report.json").read_text())["summary"]
        markdown = (output / "infrastructure-security-report.md").read_text()
        assert "❌ ACTION REQUIRED" in markdown
        assert "DKR001" in markdown

    async def test_clean_repository_passes(self, repo_dir: Path, fake_runner):
        report = await InfrastructureScanner(repo_dir, fake_runner()).run(external=False)
        assert report["failed"] is False
        assert report["summary"]["total_issues"] == 0
        assert all(report["compliance"].values())

    async def test_external_tools(self, repo_dir: Path, monkeypatch, fake_runner):
        monkeypatch.setattr(
            "wellguard.security.infrastructure.resolve_binary", lambda name: f"/usr/bin/{name}"
        )
        runner = fake_runner(
            {
                ("checkov",): json.dumps([{"summary": {"failed": 2}}, {"summary": {"failed": 1}}]),
                ("trivy",): json.dumps({"Results": [{"Misconfigurations": [{}, {}]}, {}]}),
            }
        )

        tools = await InfrastructureScanner(repo_dir, runner).run_external_tools()

        assert tools["checkov"]["failed_checks"] == 3
        assert tools["trivy"]["failed_checks"] == 2
        assert Path(tools["checkov"]["output"]).exists()
        assert all(kw["cwd"] == repo_dir for kw in runner.kwargs)

    async def test_external_tools_missing_or_broken(self, repo_dir: Path, monkeypatch, fake_runner):
        monkeypatch.setattr(
            "wellguard.security.infrastructure.resolve_binary",
            lambda name: "/usr/bin/checkov" if name == "checkov" else None,
        )
        runner = fake_runner({("checkov",): "not json"})

        tools = await InfrastructureScanner(repo_dir, runner).run_external_tools()

        assert tools["checkov"]["status"] == "error"
        assert tools["trivy"] == {"status": "not_installed"}


class TestLicenseClassification:
    """normalize_license and classify_license."""

    def test_normalize(self):
        assert normalize_license("(MIT OR Apache-2.0)") == "mitorapache-2.0"
        assert normalize_license(["MIT", "ISC"]) == "mitisc"

    @pytest.mark.parametrize(
        "value,outcome",
        [
            ("MIT", "compliant"),
            ("BSD-3-Clause", "compliant"),
            (["MIT", "Apache-2.0"], "compliant"),
            ("(MIT OR GPL-3.0)", "compliant"),
            ("GPL-3.0", "violation"),
            ("AGPL-3.0-only", "violation"),
            ("CC-BY-4.0", "review"),
            ("Permit-License", "unknown"),
            ("", "unknown"),
            (None, "unknown"),
        ],
    )
    def test_classify(self, value, outcome):
        assert classify_license(value)[0] == outcome

    def test_violation_severity_and_reason(self):
        assert classify_license("GPL-2.0") == (
            "violation",
            "HIGH",
            "Forbidden license for commercial use",
        )

    def test_exception_overrides(self, repo_dir: Path):
        _write(
            repo_dir,
            ".license-exceptions.yml",
            "exceptions:\n"
            "  - name: caniuse-lite\n"
            "    reason: Browser data, CC-BY attribution in NOTICE\n",
        )
        exceptions = load_exceptions(repo_dir)
        outcome, severity, reason = classify_license("CC-BY-4.0", "caniuse-lite@1.0.3", exceptions)
        assert (outcome, severity) == ("compliant", None)
        assert reason.startswith("Browser data")

    def test_exception_matches_exact_package_name(self):
        exceptions = [LicenseException("lib", "vetted")]

        assert classify_license("GPL-3.0", "lib@2.0.0", exceptions)[0] == "compliant"
        assert classify_license("GPL-3.0", "evil-lib@2.0.0", exceptions)[0] == "violation"
        assert classify_license("GPL-3.0", "lib-extra@1.0.0", exceptions)[0] == "violation"

    def test_scoped_exception_with_version(self):
        exceptions = [LicenseException("@wellflow/maps", "internal", version="1.2.0")]

        assert classify_license("UNLICENSED", "@wellflow/maps@1.2.0", exceptions)[0] == "compliant"
        assert classify_license("GPL-3.0", "@wellflow/maps@1.3.0", exceptions)[0] == "violation"
        assert classify_license("GPL-3.0", "@other/maps@1.2.0", exceptions)[0] == "violation"

    def test_split_package(self):
        assert split_package("caniuse-lite@1.0.3") == ("caniuse-lite", "1.0.3")
        assert split_package("@types/node@20.1.0") == ("@types/node", "20.1.0")
        assert split_package("@types/node") == ("@types/node", "")
        assert split_package("lodash") == ("lodash", "")

    def test_exceptions_as_list(self, repo_dir: Path):
        content = "- name: pkg\n  reason: vetted\n- reason: nameless\n"
        _write(repo_dir, ".license-exceptions.yml", content)
        assert [e.name for e in load_exceptions(repo_dir)] == ["pkg"]


def _license_output(command, kwargs):
    packages = {
        "web": {
            "react@18.2.0": {"licenses": "MIT", "path": "/r"},
            "gpl-lib@1.0.0": {"licenses": "GPL-3.0", "repository": "https://git.test/gpl"},
        },
        "api": {
            "@nestjs/core@10.0.0": {"licenses": "MIT"},
            "fonts@1.0.0": {"licenses": "OFL-1.1"},
            "mystery@0.1.0": {"licenses": "Custom: see LICENSE"},
        },
    }
    return json.dumps(packages[Path(kwargs["cwd"]).name])


class TestLicenseChecker:
    """LicenseChecker over the workspaces."""

    async def test_run_classifies_packages(self, repo_dir: Path, monkeypatch, fake_runner):
        monkeypatch.setattr("wellguard.security.licenses.resolve_binary", lambda name: "npx")
        runner = fake_runner({("npx", "license-checker"): _license_output})

        checker = LicenseChecker(repo_dir, runner)
        results = await checker.run()

        assert results["summary"] == {
            "totalPackages": 5,
            "compliantPackages": 2,
            "violationPackages": 1,
            "reviewPackages": 1,
            "unknownPackages": 1,
        }
        violation = results["violations"][0]
        assert violation["name"] == "gpl-lib@1.0.0"
        assert violation["workspace"] == "apps/web"
        assert violation["severity"] == "HIGH"
        assert checker.failed
        assert (repo_dir / "license-reports" / "license-compliance.json").exists()
        assert len(runner.calls) == 2

    async def test_failed_workspace_is_skipped(self, repo_dir: Path, monkeypatch, fake_runner):
        monkeypatch.setattr("wellguard.security.licenses.resolve_binary", lambda name: "npx")
        runner = fake_runner({("npx",): RuntimeError("Command timed out: npx license-checker")})

        checker = LicenseChecker(repo_dir, runner)
        results = await checker.run()

        assert results["summary"]["totalPackages"] == 0
        assert not checker.failed

    async def test_requires_npx(self, repo_dir: Path, monkeypatch, fake_runner):
        monkeypatch.setattr("wellguard.security.licenses.resolve_binary", lambda name: None)
        with pytest.raises(MissingToolError):
            await LicenseChecker(repo_dir, fake_runner()).run()


class TestSsrfGuard:
    @pytest.mark.parametrize("url,blocked", SSRF_CORPUS)
    def test_corpus(self, url, blocked):
        assert is_ssrf_blocked(url) is blocked

    @pytest.mark.parametrize(
        "url", ["gopher://internal/", "http:///path", "http://app.localhost/", "http://127.1.2.3/"]
    )
    def test_additional_blocked(self, url):
        assert is_ssrf_blocked(url)

    def test_public_hostname_allowed(self):
        assert not is_ssrf_blocked("https://wellflow.example.com/api")

    @pytest.mark.parametrize("url", ["http://134744072/", "http://8.8.8.8/", "http://[::ffff:8.8.8.8]/"])
    def test_public_numeric_hosts_allowed(self, url):
        assert not is_ssrf_blocked(url)

    def test_out_of_range_numeric_host_refused(self):
        assert is_ssrf_blocked("http://4294967296/")
        assert is_ssrf_blocked("http://[::]/")


class TestOwaspCompliance:
    """OwaspComplianceTester scoring."""

    def test_tally_excludes_not_tested(self):
        assert _tally(["PASSED", "FAILED", "WARNING", "NOT_TESTED"]) == {
            "passed": 1,
            "failed": 2,
            "not_tested": 1,
            "percentage": 33.3,
        }
        assert _tally(["NOT_TESTED"])["percentage"] == 0.0

    def _seed(self, repo: Path) -> None:
        _write(repo, "SECURITY.md", "# Security policy\n")
        _write(repo, "pnpm-lock.yaml", "lockfileVersion: 9\n")
        _write(
            repo,
            "apps/api/src/auth/auth.service.ts",
            "import * as bcrypt from 'bcrypt';\n"
            "const maxLoginAttempts = 5;\n"
            "sign(payload, { expiresIn: '15m' });\n",
        )

    def test_api_statuses_from_report(self, repo_dir: Path):
        self._seed(repo_dir)
        api_report = {
            "compliance": {
                "owasp_api_top_10": {"API1": "PASSED", "API2": "FAILED", "API3": "NOT_TESTED"}
            }
        }

        tester = OwaspComplianceTester(repo_dir, api_report=api_report)
        report = tester.run()

        api = report["apiSecurity"]
        assert api["API1:2023"]["status"] == "PASSED"
        assert api["API2:2023"]["status"] == "FAILED"
        assert api["API4:2023"]["status"] == "NOT_TESTED"
        assert report["summary"]["api_security"] == {
            "passed": 1,
            "failed": 1,
            "not_tested": 8,
            "percentage": 50.0,
        }
        assert "API3:2023" in report["summary"]["not_tested"]

        asvs = report["asvs"]
        assert asvs["V2"]["status"] == "PASSED"
        assert asvs["V3"]["missing"] == ["refresh token handling"]
        assert asvs["V10"]["status"] == "PASSED"
        assert report["samm"]["Governance"]["practices"]["Strategy & Metrics"]["status"] == "PASSED"
        assert report["ssrfProtection"]["status"] == "PASSED"
        assert report["industryStandards"]["API 1164"]["compliant"] is False
        assert tester.failed
        assert Path(report["report_file"]) == (
            repo_dir / "reports" / "owasp-2023" / "owasp-2023-compliance-report.json"
        )

    def test_reads_saved_api_report(self, repo_dir: Path):
        _write(
            repo_dir,
            "security-reports/api-security-report.json",
            json.dumps({"compliance": {"owasp_api_top_10": {"API7": "PASSED"}}}),
        )
        report = OwaspComplianceTester(repo_dir).run()
        assert report["apiSecurity"]["API7:2023"]["status"] == "PASSED"

    def test_without_api_report_everything_untested(self, repo_dir: Path):
        report = OwaspComplianceTester(repo_dir).run()
        assert report["summary"]["api_security"]["percentage"] == 0.0
        assert len([k for k in report["summary"]["not_tested"] if k.startswith("API")]) == 10


def _secure_api(request: httpx.Request, counters: dict[str, int]) -> Response:
    path = request.url.path
    counters[path] = counters.get(path, 0) + 1
    if path == "/health":
        status = 429 if counters[path] > 50 else 200
        return Response(status, headers=SECURE_HEADERS, json={"status": "ok"})
    if path == "/auth/login":
        return Response(429 if counters[path] > 5 else 401)
    if path.startswith(("/wells", "/operators", "/users", "/admin", "/production-data")):
        return Response(401, json={"message": "Unauthorized"})
    return Response(404, json={"statusCode": 404, "message": "Not Found"})


def _vulnerable_api(request: httpx.Request) -> Response:
    path = request.url.path
    if path == "/health":
        return Response(
            200,
            headers={
                "Server": "Express/4.18.2",
                "Access-Control-Allow-Origin": "*",
                "Access-Control-Allow-Credentials": "true",
            },
            json={"status": "ok"},
        )
    if path in ("/auth/login", "/wells/1", "/users", "/docs"):
        return Response(200, json={"id": 1, "password": "plain"})
    return Response(404, text="Error: not found\n    at Router.handle (router.js:12)")


class TestApiSecurityTester:
    """ApiSecurityTester against mocked APIs."""

    @respx.mock
    async def test_hardened_api_passes(self, repo_dir: Path, monkeypatch, fake_runner):
        monkeypatch.setattr("wellguard.security.api.resolve_binary", lambda name: None)
        counters: dict[str, int] = {}
        respx.route(host="api.test").mock(side_effect=lambda req: _secure_api(req, counters))

        tester = ApiSecurityTester("https://api.test/", repo_dir, command_runner=fake_runner())
        report = await tester.run()

        assert report["api_available"] is True
        assert report["summary"]["failed"] == 0
        assert report["summary"]["warnings"] == 0
        assert set(report["compliance"]["owasp_api_top_10"].values()) == {"PASSED"}
        assert report["recommendations"] == []
        assert not tester.failed
        assert {n["test"] for n in report["notes"]} == {
            "Next.js security headers",
            "Dependency audit",
            "API documentation review",
        }
        assert (repo_dir / "security-reports" / "api-security-report.md").exists()

    @respx.mock
    async def test_vulnerable_api_fails(self, repo_dir: Path, monkeypatch, fake_runner):
        monkeypatch.setattr("wellguard.security.api.resolve_binary", lambda name: None)
        respx.route(host="api.test").mock(side_effect=_vulnerable_api)

        tester = ApiSecurityTester("http://api.test", repo_dir, command_runner=fake_runner())
        report = await tester.run()

        statuses = report["compliance"]["owasp_api_top_10"]
        assert statuses["API1"] == "FAILED"
        assert statuses["API2"] == "FAILED"
        assert statuses["API3"] == "FAILED"
        assert statuses["API8"] == "FAILED"
        assert statuses["API9"] == "WARNING"
        assert report["compliance"]["iec_62443"] is False
        tests = {t["test"]: t for t in report["tests"]}
        assert tests["Default credentials rejected"]["severity"] == "critical"
        assert tests["Transport security"]["status"] == "WARNING"
        assert tests["Verbose error messages"]["status"] == "WARNING"
        assert "Express/4.18.2" in tests["Server information disclosure"]["message"]
        assert "Sensitive property exposure /users" in tests
        assert report["recommendations"][0].startswith("Enforce object-level authorization")
        assert tester.failed

    @respx.mock
    async def test_unavailable_api_runs_static_checks(
        self, repo_dir: Path, monkeypatch, fake_runner
    ):
        monkeypatch.setattr("wellguard.security.api.resolve_binary", lambda name: "/usr/bin/pnpm")
        respx.route(host="api.test").mock(side_effect=httpx.ConnectError("refused"))
        _write(repo_dir, ".env", "JWT_SECRET=supersecretvalue123\n")
        _write(repo_dir, ".env.example", "JWT_SECRET=changeme-placeholder\n")
        _write(
            repo_dir,
            "apps/web/next.config.js",
            "headers: ['X-Frame-Options', 'X-Content-Type-Options', 'Content-Security-Policy']\n",
        )
        _write(repo_dir, "apps/api/openapi.json", json.dumps({"paths": {"/admin/users": {}}}))
        runner = fake_runner(
            {("pnpm", "audit"): json.dumps({"metadata": {"vulnerabilities": {"high": 2}}})}
        )

        tester = ApiSecurityTester("http://api.test", repo_dir, command_runner=runner)
        report = await tester.run()

        assert report["api_available"] is False
        assert report["notes"][0]["test"] == "Network security tests"
        tests = {t["test"]: t["status"] for t in report["tests"]}
        assert tests == {
            "Transport security": "WARNING",
            "Next.js security headers": "PASSED",
            "Environment file secrets": "WARNING",
            "Dependency audit": "WARNING",
            "API documentation review": "WARNING",
        }
        assert set(report["compliance"]["owasp_api_top_10"].values()) == {"NOT_TESTED"}
        # high findings only fail the run when the API itself was tested
        assert not tester.failed
        assert runner.kwargs[0]["cwd"] == repo_dir

    @respx.mock
    async def test_critical_audit_fails_without_api(self, repo_dir: Path, monkeypatch, fake_runner):
        monkeypatch.setattr("wellguard.security.api.resolve_binary", lambda name: "/usr/bin/pnpm")
        respx.route(host="api.test").mock(side_effect=httpx.ConnectError("refused"))
        runner = fake_runner(
            {("pnpm", "audit"): json.dumps({"metadata": {"vulnerabilities": {"critical": 1}}})}
        )

        tester = ApiSecurityTester("http://api.test", repo_dir, command_runner=runner)
        await tester.run()

        assert tester.failed
