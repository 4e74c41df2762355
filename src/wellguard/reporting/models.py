"""Report data models shared by every command."""

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from typing import Any

SEVERITY_ORDER = ["critical", "high", "medium", "low", "info"]

# Statuses counted in a test-style summary
PASSED = "PASSED"
FAILED = "FAILED"
WARNING = "WARNING"
COUNTED_STATUSES = (PASSED, FAILED, WARNING)

# Statuses recorded as notes only
INFO = "INFO"
UNKNOWN = "UNKNOWN"
NOT_TESTED = "NOT_TESTED"


def utc_now_iso() -> str:
    """Return the current UTC time as ISO-8601 with a ``Z`` suffix."""
    now = datetime.now(UTC)
    return now.strftime("%Y-%m-%dT%H:%M:%S.") + f"{now.microsecond // 1000:03d}Z"


def timestamp_slug(moment: datetime | None = None) -> str:
    """Return a ``%Y%m%d_%H%M%S`` slug for file names."""
    return (moment or datetime.now(UTC)).strftime("%Y%m%d_%H%M%S")


def normalize_severity(value: str) -> str:
    """Map a free-form severity onto ``SEVERITY_ORDER`` (unknown -> info)."""
    lowered = str(value or "").strip().lower()
    aliases = {"serious": "high", "moderate": "medium", "minor": "low", "error": "high"}
    lowered = aliases.get(lowered, lowered)
    return lowered if lowered in SEVERITY_ORDER else "info"


@dataclass
class TestResult:
    """Outcome of one check in a test-style report."""

    __test__ = False

    test: str
    status: str  # PASSED, FAILED, WARNING (INFO/UNKNOWN go to notes)
    severity: str
    message: str
    category: str = ""
    details: dict[str, Any] = field(default_factory=dict)
    timestamp: str = field(default_factory=utc_now_iso)

    def __post_init__(self) -> None:
        self.severity = normalize_severity(self.severity)

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        if not data["details"]:
            data.pop("details")
        if not data["category"]:
            data.pop("category")
        return data


@dataclass
class Finding:
    """A rule violation found in a scanned file."""

    rule_id: str
    severity: str
    title: str
    file: str
    line: int
    category: str = ""
    remediation: str = ""

    def __post_init__(self) -> None:
        self.severity = normalize_severity(self.severity)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Recommendation:
    """A prioritized group of follow-up actions."""

    category: str
    priority: str
    actions: list[str]

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
