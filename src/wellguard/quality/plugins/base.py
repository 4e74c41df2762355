"""Base contract for accessibility audit plugins."""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

COMPLETED = "completed"
SKIPPED = "skipped"
ERROR = "error"


@dataclass(frozen=True)
class Page:
    name: str
    url: str


@dataclass
class PageResult:
    """One tool's outcome for one page."""

    url: str
    name: str
    status: str
    score: float | None = None
    counts: dict[str, int] = field(default_factory=dict)
    details: dict[str, Any] = field(default_factory=dict)
    reason: str = ""
    error: str = ""

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {"url": self.url, "name": self.name, "status": self.status}
        if self.status == COMPLETED:
            data["score"] = self.score
            data.update(self.counts)
            if self.details:
                data["details"] = self.details
        if self.reason:
            data["reason"] = self.reason
        if self.error:
            data["error"] = self.error
        return data


class AccessibilityPlugin(ABC):
    """Plugin interface for accessibility audit tools."""

    name: str
    first_page_only: bool = False

    @abstractmethod
    async def audit(self, page: Page) -> PageResult:
        """Audit one page; raise RuntimeError when the tool fails."""
