"""Pa11y WCAG 2 AA plugin."""

import json
from collections.abc import Callable

from wellguard.runtime import CommandResult, MissingToolError, resolve_binary, run_command
from wellguard.tools.registry import install_hint

from .base import COMPLETED, AccessibilityPlugin, Page, PageResult

STANDARD = "WCAG2AA"


def score_pa11y(errors: int, warnings: int) -> int:
    return max(0, 100 - 10 * errors - 2 * warnings)


class Pa11yAccessibilityPlugin(AccessibilityPlugin):
    """Run pa11y with the JSON reporter; exit code 2 means issues were found."""

    name = "pa11y"

    def __init__(self, command_runner: Callable[..., object] | None = None, timeout: float = 120.0):
        self._runner = command_runner or run_command
        self.timeout = timeout

    async def audit(self, page: Page) -> PageResult:
        if resolve_binary("npx") is None:
            raise MissingToolError("npx", install_hint("npx"))
        result = await self._runner(
            ["npx", "pa11y", "--reporter", "json", "--standard", STANDARD, page.url],
            timeout=self.timeout,
            allowed_exit_codes=(0, 2),
        )
        assert isinstance(result, CommandResult)
        return self._parse_output(result.stdout, page)

    def _parse_output(self, output: str, page: Page) -> PageResult:
        try:
            issues = json.loads(output or "[]")
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"pa11y produced invalid JSON: {exc}") from exc
        if isinstance(issues, dict):
            issues = issues.get("issues", [])
        error_codes = {i.get("code", "") for i in issues if i.get("type") == "error"}
        counts = {
            "errors": sum(1 for i in issues if i.get("type") == "error"),
            "warnings": sum(1 for i in issues if i.get("type") == "warning"),
            "notices": sum(1 for i in issues if i.get("type") == "notice"),
        }
        return PageResult(
            url=page.url,
            name=page.name,
            status=COMPLETED,
            score=score_pa11y(counts["errors"], counts["warnings"]),
            counts=counts,
            details={"codes": sorted(error_codes)},
        )
