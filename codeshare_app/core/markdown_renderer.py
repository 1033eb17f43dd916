"""Markdown rendering for task descriptions shown to web clients.

Architecture note:
    Descriptions are authored as markdown in the task file and rendered on the
    server, so every client shows identical HTML and the editor/preview
    widgets never need a markdown engine of their own. Raw HTML inside the
    markdown is disabled: descriptions often quote tags such as ``<h1>`` and
    those must display as text rather than render.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from markdown_it import MarkdownIt


@dataclass(slots=True)
class MarkdownRenderer:
    """Converts markdown into HTML fragments."""

    enable_html: bool = False
    _markdown: MarkdownIt = field(init=False, repr=False)

    def __post_init__(self) -> None:
        self._markdown = (
            MarkdownIt("commonmark", {"html": self.enable_html})
            .enable("table")
            .enable("strikethrough")
        )

    def render_fragment(self, markdown_text: str) -> str:
        """Render a markdown string into an HTML fragment."""

        sanitized = markdown_text.strip() or ""
        if not sanitized:
            return "<p><em>No description provided.</em></p>"
        return self._markdown.render(sanitized)


renderer = MarkdownRenderer()
# MarkdownIt is safe for concurrent read-only renders, so the HTTP worker
# threads share this instance.
