"""Small Markdown builder used by every Markdown report."""

from collections.abc import Iterable


class MarkdownBuilder:
    """Accumulates Markdown blocks separated by blank lines."""

    def __init__(self) -> None:
        self._blocks: list[str] = []

    def heading(self, text: str, level: int = 2) -> "MarkdownBuilder":
        self._blocks.append(f"{'#' * level} {text}")
        return self

    def paragraph(self, text: str) -> "MarkdownBuilder":
        self._blocks.append(text)
        return self

    def bullets(self, items: Iterable[str]) -> "MarkdownBuilder":
        lines = [f"- {item}" for item in items]
        if lines:
            self._blocks.append("\n".join(lines))
        return self

    def numbered(self, items: Iterable[str]) -> "MarkdownBuilder":
        lines = [f"{i}. {item}" for i, item in enumerate(items, 1)]
        if lines:
            self._blocks.append("\n".join(lines))
        return self

    def table(self, headers: list[str], rows: Iterable[Iterable[object]]) -> "MarkdownBuilder":
        lines = [
            "| " + " | ".join(headers) + " |",
            "|" + "|".join("-" * (len(h) + 2) for h in headers) + "|",
        ]
        for row in rows:
            cells = [str(cell).replace("|", "\\|").replace("\n", " ") for cell in row]
            lines.append("| " + " | ".join(cells) + " |")
        self._blocks.append("\n".join(lines))
        return self

    def rule(self) -> "MarkdownBuilder":
        self._blocks.append("---")
        return self

    def render(self) -> str:
        return "\n\n".join(self._blocks) + "\n"


def check_mark(ok: bool) -> str:
    return "✅" if ok else "❌"
