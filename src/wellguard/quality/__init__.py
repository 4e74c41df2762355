"""Web quality checks: accessibility, performance and budgets."""

from .accessibility import AccessibilityAuditor
from .analysis import PerformanceAnalyzer, analyze_bundles, core_web_vitals
from .budget import check_budget, load_budget
from .performance import PerformanceTester
from .routes import Route, discover_routes

__all__ = [
    "AccessibilityAuditor",
    "PerformanceAnalyzer",
    "PerformanceTester",
    "Route",
    "analyze_bundles",
    "check_budget",
    "core_web_vitals",
    "discover_routes",
    "load_budget",
]
