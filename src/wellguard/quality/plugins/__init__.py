"""Accessibility audit plugins."""

from .axe import AxeAccessibilityPlugin
from .base import AccessibilityPlugin, Page, PageResult
from .lighthouse import LighthouseAccessibilityPlugin
from .pa11y import Pa11yAccessibilityPlugin

__all__ = [
    "AccessibilityPlugin",
    "AxeAccessibilityPlugin",
    "LighthouseAccessibilityPlugin",
    "Pa11yAccessibilityPlugin",
    "Page",
    "PageResult",
]
