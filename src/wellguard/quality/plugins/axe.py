"""axe-core accessibility plugin."""

import json
from collections.abc import Callable

from wellguard.runtime import CommandResult, MissingToolError, resolve_binary, run_command
from wellguard.tools.registry import install_hint

from .base import COMPLETED, AccessibilityPlugin, Page, PageResult

IMPACTS = ("critical", "serious", "moderate", "minor")


def score_axe(passes: int, violations: int) -> int:
    """Share of passing rules, 0-100."""
    total = passes + violations
    return round(100 * passes / total) if total else 100


class AxeAccessibilityPlugin(AccessibilityPlugin):
    """Run @axe-core/cli and score passes against violations."""

    name = "axe"

    def __init__(self, command_runner: Callable[..., object] | None = None, timeout: float = 120.0):
        self._runner = command_runner or run_command
        self.timeout = timeout

    async def audit(self, page: Page) -> PageResult:
        if resolve_binary("npx") is None:
            raise MissingToolError("npx", install_hint("npx"))
        result = await self._runner(
            ["npx", "@axe-core/cli", page.url, "--stdout"], timeout=self.timeout
        )
        assert isinstance(result, CommandResult)
        return self._parse_output(result.stdout, page)

    def _parse_output(self, output: str, page: Page) -> PageResult:
        try:
            data = json.loads(output)
        except json.JSONDecodeError as exc:
            raise RuntimeError(f"axe produced invalid JSON: {exc}") from exc
        if isinstance(data, list):
            data = data[0] if data else {}
        violations = data.get("violations", [])
        passes = data.get("passes", [])
        incomplete = data.get("incomplete", [])

        counts = {
            "violations": len(violations),
            "passes": len(passes),
            "incomplete": len(incomplete),
        }
        for impact in IMPACTS:
            counts[f"{impact}Issues"] = sum(1 for v in violations if v.get("impact") == impact)
        return PageResult(
            url=page.url,
            name=page.name,
            status=COMPLETED,
            score=score_axe(len(passes), len(violations)),
            counts=counts,
            details={"violations": [v.get("id") for v in violations]},
        )
