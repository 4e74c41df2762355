"""Dependency license compliance for the JavaScript workspaces."""

import json
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from wellguard.reporting import write_json_report
from wellguard.runtime import CommandRunner, MissingToolError, resolve_binary, run_command
from wellguard.tools.registry import install_hint

logger = logging.getLogger(__name__)

ALLOWED_LICENSES = (
    "MIT",
    "Apache-2.0",
    "BSD-2-Clause",
    "BSD-3-Clause",
    "ISC",
    "CC0-1.0",
    "Unlicense",
    "WTFPL",
    "0BSD",
    "BlueOak-1.0.0",
    "Python-2.0",
)
FORBIDDEN_LICENSES = (
    "GPL-2.0",
    "GPL-3.0",
    "AGPL-1.0",
    "AGPL-3.0",
    "LGPL-2.0",
    "LGPL-2.1",
    "LGPL-3.0",
    "EUPL-1.1",
    "EUPL-1.2",
    "CDDL-1.0",
    "CDDL-1.1",
    "EPL-1.0",
    "EPL-2.0",
    "MPL-1.1",
    "MPL-2.0",
    "SSPL-1.0",
    "BUSL-1.1",
)
REVIEW_LICENSES = ("CC-BY-4.0", "CC-BY-SA-4.0", "OFL-1.1", "Artistic-2.0", "Ruby", "Zlib")

WORKSPACES = ("apps/web", "apps/api", "apps/docs")
EXCEPTIONS_FILE = ".license-exceptions.yml"
REPORT_PATH = Path("license-reports") / "license-compliance.json"
SCAN_TIMEOUT = 60

COMPLIANT = "compliant"
VIOLATION = "violation"
REVIEW = "review"
UNKNOWN = "unknown"

_SEPARATORS = re.compile(r"[\s()/,;]+")


def normalize_license(value: Any) -> str:
    """Lowercase and strip everything outside ``[a-z0-9.-]``."""
    if isinstance(value, (list, tuple)):
        value = " ".join(str(v) for v in value)
    return re.sub(r"[^a-z0-9.-]", "", str(value).lower())


def _tokens(value: Any) -> list[str]:
    if isinstance(value, (list, tuple)):
        value = " ".join(str(v) for v in value)
    return [t for t in (normalize_license(p) for p in _SEPARATORS.split(str(value))) if t]


def _matches(value: Any, ids: tuple[str, ...]) -> bool:
    # An id must start a token or follow a non-letter, so lgpl-2.1 never matches gpl-2.1.
    for token in _tokens(value):
        for license_id in ids:
            needle = normalize_license(license_id)
            start = token.find(needle)
            while start != -1:
                if start == 0 or not token[start - 1].isalpha():
                    return True
                start = token.find(needle, start + 1)
    return False


def is_license_allowed(value: Any) -> bool:
    return bool(value) and _matches(value, ALLOWED_LICENSES)


def is_license_forbidden(value: Any) -> bool:
    return bool(value) and _matches(value, FORBIDDEN_LICENSES)


def is_license_review_required(value: Any) -> bool:
    return bool(value) and _matches(value, REVIEW_LICENSES)


@dataclass
class LicenseException:
    name: str
    reason: str
    version: str = ""

    def covers(self, package: str) -> bool:
        name, version = split_package(package)
        return name == self.name and (not self.version or version == self.version)


def split_package(package: str) -> tuple[str, str]:
    """Split ``name@version`` (scoped names keep their leading ``@``)."""
    name, sep, version = package.rpartition("@")
    if not sep or not name:
        return package, ""
    return name, version


def load_exceptions(project_root: Path) -> list[LicenseException]:
    """Read ``.license-exceptions.yml`` (a list of name/reason/version entries)."""
    path = Path(project_root) / EXCEPTIONS_FILE
    if not path.exists():
        return []
    data = yaml.safe_load(path.read_text(encoding="utf-8")) or []
    if isinstance(data, dict):
        data = data.get("exceptions") or []
    return [
        LicenseException(str(e["name"]), str(e.get("reason", "")), str(e.get("version", "")))
        for e in data
        if isinstance(e, dict) and e.get("name")
    ]


def classify_license(
    license_value: Any, package: str = "", exceptions: list[LicenseException] | None = None
) -> tuple[str, str | None, str | None]:
    """Classify a package license.

    Returns:
        (outcome, severity, reason); outcome is one of compliant, violation,
        review or unknown.
    """
    for exception in exceptions or []:
        if exception.covers(package):
            return COMPLIANT, None, exception.reason
    if is_license_allowed(license_value):
        return COMPLIANT, None, None
    if is_license_forbidden(license_value):
        return VIOLATION, "HIGH", "Forbidden license for commercial use"
    if is_license_review_required(license_value):
        return REVIEW, "MEDIUM", "License requires manual review"
    return UNKNOWN, "LOW", "Unknown license, requires investigation"


class LicenseChecker:
    """Runs license-checker per workspace and classifies every package."""

    def __init__(self, project_root: Path, command_runner: CommandRunner | None = None):
        self.project_root = Path(project_root)
        self._runner = command_runner or run_command
        self.exceptions = load_exceptions(self.project_root)
        self.results: dict[str, Any] = {
            "compliant": [],
            "violations": [],
            "reviewRequired": [],
            "unknown": [],
            "summary": {
                "totalPackages": 0,
                "compliantPackages": 0,
                "violationPackages": 0,
                "reviewPackages": 0,
                "unknownPackages": 0,
            },
        }

    def workspaces(self) -> list[str]:
        return [w for w in WORKSPACES if (self.project_root / w / "package.json").exists()]

    async def run(self) -> dict[str, Any]:
        if resolve_binary("npx") is None:
            raise MissingToolError("npx", install_hint("npx"))
        for workspace in self.workspaces():
            logger.info("Scanning %s", workspace)
            await self.scan_workspace(workspace)
        path = write_json_report(self.project_root / REPORT_PATH, self.results)
        self.results["report_file"] = str(path)
        summary = self.results["summary"]
        logger.info(
            "License scan: %d packages, %d violations, %d for review, %d unknown",
            summary["totalPackages"],
            summary["violationPackages"],
            summary["reviewPackages"],
            summary["unknownPackages"],
        )
        return self.results

    async def scan_workspace(self, workspace: str) -> None:
        try:
            result = await self._runner(
                ["npx", "license-checker", "--json", "--production"],
                timeout=SCAN_TIMEOUT,
                cwd=self.project_root / workspace,
            )
            packages = json.loads(result.stdout or "{}")
        except (RuntimeError, json.JSONDecodeError) as exc:
            logger.warning("Failed to scan %s: %s", workspace, exc)
            return
        for name, info in packages.items():
            self.add_package(name, info, workspace)

    def add_package(self, name: str, info: dict[str, Any], workspace: str) -> None:
        license_value = info.get("licenses")
        entry: dict[str, Any] = {
            "name": name,
            "license": license_value,
            "path": info.get("path"),
            "repository": info.get("repository"),
            "workspace": workspace,
        }
        outcome, severity, reason = classify_license(license_value, name, self.exceptions)
        summary = self.results["summary"]
        summary["totalPackages"] += 1
        if outcome == COMPLIANT:
            if reason:
                entry["exception"] = reason
            self.results["compliant"].append(entry)
            summary["compliantPackages"] += 1
            return
        entry["severity"] = severity
        entry["reason"] = reason
        bucket, counter = {
            VIOLATION: ("violations", "violationPackages"),
            REVIEW: ("reviewRequired", "reviewPackages"),
            UNKNOWN: ("unknown", "unknownPackages"),
        }[outcome]
        self.results[bucket].append(entry)
        summary[counter] += 1

    @property
    def failed(self) -> bool:
        return bool(self.results["violations"])
