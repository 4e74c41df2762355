"""Lighthouse runner and accessibility plugin."""

import json
from collections.abc import Callable
from typing import Any

from wellguard.runtime import CommandRunner, MissingToolError, resolve_binary, run_command
from wellguard.tools.registry import install_hint

from .base import COMPLETED, AccessibilityPlugin, Page, PageResult

CHROME_FLAGS = "--chrome-flags=--headless --no-sandbox"
AUDIT_PASS_SCORE = 0.9


async def run_lighthouse(
    url: str,
    category: str,
    command_runner: CommandRunner | None = None,
    timeout: float = 60.0,
) -> dict[str, Any]:
    """Run lighthouse for one category and return the parsed JSON result."""
    if resolve_binary("npx") is None:
        raise MissingToolError("npx", install_hint("npx"))
    runner = command_runner or run_command
    result = await runner(
        [
            "npx",
            "lighthouse",
            url,
            f"--only-categories={category}",
            "--output=json",
            "--quiet",
            CHROME_FLAGS,
        ],
        timeout=timeout,
    )
    try:
        return json.loads(result.stdout)
    except json.JSONDecodeError as exc:
        raise RuntimeError(f"lighthouse produced invalid JSON: {exc}") from exc


def category_score(data: dict[str, Any], category: str) -> int:
    score = (data.get("categories", {}).get(category) or {}).get("score") or 0
    return round(score * 100)


class LighthouseAccessibilityPlugin(AccessibilityPlugin):
    """Lighthouse accessibility category; only the first page is audited."""

    name = "lighthouse"
    first_page_only = True

    def __init__(self, command_runner: Callable[..., object] | None = None, timeout: float = 120.0):
        self._runner = command_runner
        self.timeout = timeout

    async def audit(self, page: Page) -> PageResult:
        data = await run_lighthouse(page.url, "accessibility", self._runner, self.timeout)
        audits = {
            audit_id: audit
            for audit_id, audit in data.get("audits", {}).items()
            if audit.get("score") is not None
        }
        passed = sum(1 for a in audits.values() if a["score"] >= AUDIT_PASS_SCORE)
        return PageResult(
            url=page.url,
            name=page.name,
            status=COMPLETED,
            score=category_score(data, "accessibility"),
            counts={
                "totalAudits": len(audits),
                "passedAudits": passed,
                "failedAudits": len(audits) - passed,
            },
            details={
                "failed": sorted(k for k, a in audits.items() if a["score"] < AUDIT_PASS_SCORE)
            },
        )
