"""Infrastructure-as-code scanner for Dockerfiles, manifests, Terraform and workflows."""

import json
import logging
import os
import re
from collections.abc import Iterator
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from wellguard.reporting import (
    Finding,
    MarkdownBuilder,
    check_mark,
    exceeds_threshold,
    summarize_findings,
    utc_now_iso,
    write_json_report,
    write_markdown_report,
)
from wellguard.runtime import CommandRunner, resolve_binary, run_command

logger = logging.getLogger(__name__)

REPORT_DIR = "security-reports"
IGNORED_DIRS = {"node_modules", "dist", "build", ".git", ".next", "coverage", ".venv"}
SCAN_TYPES = ("docker", "kubernetes", "terraform", "compose", "github_actions")


@dataclass(frozen=True)
class LineRule:
    """A regex checked against every line of a file of one type."""

    rule_id: str
    severity: str
    pattern: re.Pattern
    title: str
    remediation: str
    unless: re.Pattern | None = None

    def matches(self, line: str) -> bool:
        if not self.pattern.search(line):
            return False
        return not (self.unless and self.unless.search(line))


def _rule(rule_id, severity, pattern, title, remediation, unless=None) -> LineRule:
    return LineRule(
        rule_id,
        severity,
        re.compile(pattern, re.IGNORECASE),
        title,
        remediation,
        re.compile(unless, re.IGNORECASE) if unless else None,
    )


LINE_RULES: dict[str, list[LineRule]] = {
    "docker": [
        _rule("DKR001", "high", r"^\s*USER\s+(root|0)\s*$", "Container runs as root user",
              "Create and switch to a non-root user"),
        _rule("DKR002", "medium", r"\bsudo\b", "sudo used in container build",
              "Remove sudo; run privileged steps before switching user"),
        _rule("DKR003", "medium", r"\bcurl\b.*http://", "Download over insecure HTTP",
              "Use HTTPS for downloads"),
        _rule("DKR004", "medium", r"^\s*ADD\s+https?://", "ADD used with remote URL",
              "Use COPY, or curl with checksum verification"),
        _rule("DKR005", "critical", r"--privileged", "Privileged mode requested",
              "Remove --privileged and grant only required capabilities"),
    ],
    "kubernetes": [
        _rule("K8S001", "critical", r"^\s*privileged:\s*true", "Privileged container",
              "Set privileged: false"),
        _rule("K8S002", "high", r"^\s*runAsUser:\s*0\s*$", "Container runs as root (UID 0)",
              "Set runAsUser to a non-zero UID and runAsNonRoot: true"),
        _rule("K8S003", "high", r"^\s*hostNetwork:\s*true", "Host network namespace shared",
              "Set hostNetwork: false"),
        _rule("K8S004", "high", r"^\s*hostPID:\s*true", "Host PID namespace shared",
              "Set hostPID: false"),
    ],
    "terraform": [
        _rule("TF001", "critical", r"password\s*=", "Hardcoded password",
              "Use a variable or secret manager reference",
              unless=r"var\.|random_|data\.|local\."),
        _rule("TF002", "high", r"0\.0\.0\.0/0|::/0", "Ingress open to the internet",
              "Restrict CIDR blocks to known networks"),
    ],
    "compose": [
        _rule("DC001", "critical", r"^\s*privileged:\s*true", "Privileged service",
              "Remove privileged: true"),
        _rule("DC002", "high", r"^\s*network_mode:\s*[\"']?host", "Host network mode",
              "Use a bridge network with explicit port mappings"),
    ],
    "github_actions": [
        _rule("GHA001", "critical", r"^\s*[\w-]*(password|token)\s*:\s*\S+",
              "Hardcoded credential in workflow", "Reference secrets via ${{ secrets.NAME }}",
              unless=r"\$\{\{|secrets\.|permissions|id-token|:\s*(read|write|none)\s*$"),
        _rule("GHA002", "medium", r"^\s*pull_request_target\s*:", "pull_request_target trigger",
              "Use pull_request, or never check out untrusted code under pull_request_target"),
    ],
}


def classify(path: Path, root: Path) -> str | None:
    """Return the scan type of ``path`` or None when it is not IaC."""
    name = path.name
    lower = name.lower()
    relative = path.relative_to(root).as_posix().lower()
    if lower.startswith("dockerfile") or lower.endswith(".dockerfile"):
        return "docker"
    if path.suffix in (".tf", ".tfvars", ".hcl"):
        return "terraform"
    if path.suffix not in (".yml", ".yaml"):
        return None
    if lower.startswith("docker-compose") or lower.startswith("compose."):
        return "compose"
    if relative.startswith(".github/workflows/"):
        return "github_actions"
    if "k8s/" in relative or "kubernetes/" in relative:
        return "kubernetes"
    try:
        content = path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return None
    if "apiVersion:" in content and ("kind:" in content or "metadata:" in content):
        return "kubernetes"
    return None


def discover_files(root: Path) -> dict[str, list[Path]]:
    """Walk ``root`` and group IaC files by scan type."""
    found: dict[str, list[Path]] = {scan_type: [] for scan_type in SCAN_TYPES}
    for current, dirs, files in os.walk(root):
        dirs[:] = sorted(d for d in dirs if d not in IGNORED_DIRS)
        for name in sorted(files):
            path = Path(current) / name
            scan_type = classify(path, root)
            if scan_type:
                found[scan_type].append(path)
    return found


def _file_rules(scan_type: str, lines: list[str], relative: str) -> Iterator[Finding]:
    if scan_type == "docker":
        users = [
            line.split(None, 1)[1].strip()
            for line in lines
            if line.strip().upper().startswith("USER ") and len(line.split(None, 1)) > 1
        ]
        if not users or users[-1].lower() in ("root", "0"):
            yield Finding("DKR006", "high", "No non-root USER instruction", relative, 0,
                          "docker", "Add a USER instruction for a non-root user")
    elif scan_type == "kubernetes":
        content = "\n".join(lines)
        if "containers:" in content and "resources:" not in content:
            in_containers = False
            for number, line in enumerate(lines, 1):
                if "containers:" in line:
                    in_containers = True
                elif in_containers and re.match(r"^\s*-?\s*image:", line):
                    yield Finding("K8S005", "medium", "Container without resource limits",
                                  relative, number, "kubernetes",
                                  "Define resources.requests and resources.limits")


def scan_file(path: Path, scan_type: str, root: Path) -> list[Finding]:
    """Apply the line and file rules of ``scan_type`` to one file."""
    relative = path.relative_to(root).as_posix()
    try:
        lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    except OSError:
        logger.warning("Could not read %s", relative, exc_info=True)
        return []
    findings = []
    for number, line in enumerate(lines, 1):
        if line.lstrip().startswith("#"):
            continue
        for rule in LINE_RULES.get(scan_type, []):
            if rule.matches(line):
                findings.append(
                    Finding(rule.rule_id, rule.severity, rule.title, relative, number,
                            scan_type, rule.remediation)
                )
    findings.extend(_file_rules(scan_type, lines, relative))
    return findings


def compliance_status(summary: dict[str, int]) -> dict[str, bool]:
    critical, high = summary["critical"], summary["high"]
    return {
        "nist": critical == 0 and high == 0,
        "iec_62443": critical == 0,
        "cis": critical == 0 and high <= 2,
        "owasp_infrastructure": critical == 0 and high == 0,
    }


RECOMMENDATIONS = {
    "docker": "Harden Dockerfiles: non-root USER, HTTPS downloads, no privileged flags",
    "kubernetes": "Apply pod security standards: non-root, no host namespaces, resource limits",
    "terraform": "Move credentials to variables or a secret manager and restrict CIDR ranges",
    "compose": "Avoid privileged services and host networking in compose files",
    "github_actions": "Use repository secrets and avoid pull_request_target with untrusted code",
}


class InfrastructureScanner:
    """Scans a repository for infrastructure misconfigurations."""

    def __init__(self, root: Path, command_runner: CommandRunner | None = None):
        self.root = Path(root)
        self._runner = command_runner or run_command
        self.output_dir = self.root / REPORT_DIR

    async def run(self, external: bool = True) -> dict[str, Any]:
        logger.info("Scanning infrastructure files in %s", self.root)
        discovered = discover_files(self.root)
        scans: dict[str, Any] = {}
        findings: list[Finding] = []
        for scan_type, files in discovered.items():
            type_findings: list[Finding] = []
            failed_files = 0
            for path in files:
                file_findings = scan_file(path, scan_type, self.root)
                failed_files += 1 if file_findings else 0
                type_findings.extend(file_findings)
            scans[scan_type] = {
                "files": [p.relative_to(self.root).as_posix() for p in files],
                "issues": [f.to_dict() for f in type_findings],
                "passed": len(files) - failed_files,
                "failed": failed_files,
            }
            findings.extend(type_findings)
            logger.info("%s: %d files, %d issues", scan_type, len(files), len(type_findings))

        summary = {"total_files": sum(len(f) for f in discovered.values())}
        summary.update(summarize_findings(findings))
        report = {
            "timestamp": utc_now_iso(),
            "scans": scans,
            "summary": summary,
            "issues": [f.to_dict() for f in findings],
            "compliance": compliance_status(summary),
            "external_tools": await self.run_external_tools() if external else {},
            "recommendations": [RECOMMENDATIONS[t] for t in SCAN_TYPES if scans[t]["issues"]],
        }
        json_path = write_json_report(
            self.output_dir / "infrastructure-security-report.json", report
        )
        md_path = write_markdown_report(
            self.output_dir / "infrastructure-security-report.md", render_markdown(report)
        )
        logger.info("Infrastructure report generated: %s, %s", json_path, md_path)
        report["failed"] = exceeds_threshold((f.severity for f in findings), "high")
        return report

    async def run_external_tools(self) -> dict[str, Any]:
        results: dict[str, Any] = {}
        if resolve_binary("checkov"):
            results["checkov"] = await self._external(
                "checkov",
                [
                    "checkov", "-d", ".", "--framework",
                    "dockerfile,kubernetes,terraform,github_actions", "--output", "json",
                ],
                "checkov-results.json",
                _count_checkov_failures,
            )
        else:
            results["checkov"] = {"status": "not_installed"}
        if resolve_binary("trivy"):
            results["trivy"] = await self._external(
                "trivy",
                ["trivy", "config", ".", "--format", "json"],
                "trivy-results.json",
                _count_trivy_failures,
            )
        else:
            results["trivy"] = {"status": "not_installed"}
        return results

    async def _external(self, name, command, output_name, counter) -> dict[str, Any]:
        logger.info("Running %s", name)
        try:
            result = await self._runner(
                command, timeout=600, allowed_exit_codes=(0, 1), cwd=self.root
            )
            data = json.loads(result.stdout or "{}")
        except (RuntimeError, json.JSONDecodeError) as exc:
            logger.warning("%s failed: %s", name, exc)
            return {"status": "error", "error": str(exc)}
        output = self.output_dir / output_name
        write_json_report(output, data if isinstance(data, dict) else {"results": data})
        return {"status": "completed", "failed_checks": counter(data), "output": str(output)}


def _count_checkov_failures(data: Any) -> int:
    blocks = data if isinstance(data, list) else [data]
    return sum(int(b.get("summary", {}).get("failed", 0)) for b in blocks if isinstance(b, dict))


def _count_trivy_failures(data: Any) -> int:
    results = data.get("Results", []) if isinstance(data, dict) else []
    return sum(len(r.get("Misconfigurations") or []) for r in results)


def render_markdown(report: dict[str, Any]) -> str:
    summary = report["summary"]
    blocked = summary["critical"] or summary["high"]
    md = MarkdownBuilder()
    md.heading("WellFlow Infrastructure Security Report", 1)
    md.paragraph(f"**Generated:** {report['timestamp']}")
    md.heading("Executive Summary")
    md.bullets(
        [
            f"**Files Scanned:** {summary['total_files']}",
            f"**Total Issues:** {summary['total_issues']}",
            f"**Status:** {'❌ ACTION REQUIRED' if blocked else '✅ PASSED'}",
        ]
    )
    md.heading("Severity Breakdown")
    md.table(
        ["Severity", "Count"],
        [(sev.capitalize(), summary[sev]) for sev in ("critical", "high", "medium", "low", "info")],
    )
    md.heading("Infrastructure Components Scanned")
    md.table(
        ["Component", "Files", "Passed", "Failed"],
        [
            (name, len(scan["files"]), scan["passed"], scan["failed"])
            for name, scan in report["scans"].items()
        ],
    )
    md.heading("Industry Compliance")
    labels = {
        "nist": "NIST Cybersecurity Framework",
        "iec_62443": "IEC 62443",
        "cis": "CIS Benchmarks",
        "owasp_infrastructure": "OWASP Infrastructure",
    }
    md.bullets(f"{check_mark(ok)} **{labels[key]}**" for key, ok in report["compliance"].items())
    md.heading("Detailed Issues")
    if report["issues"]:
        md.table(
            ["Rule", "Severity", "File", "Line", "Issue"],
            [
                (i["rule_id"], i["severity"].upper(), i["file"], i["line"], i["title"])
                for i in report["issues"]
            ],
        )
    else:
        md.paragraph("No issues found.")
    md.heading("Recommendations")
    md.bullets(report["recommendations"] or ["Keep scanning infrastructure changes in CI"])
    return md.render()
