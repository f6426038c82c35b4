"""Markdown rendering for Folio.

Markdown fields are rendered to HTML while the object is loaded. Every link
and image target goes through a rewrite function so that root-relative
source links keep working from wherever the owning page is written.

Key classes:
- MarkdownRenderer: Renders Markdown to HTML with link rewriting.
"""

from __future__ import annotations

from collections.abc import Callable

import mistune

LinkRewriter = Callable[[str], str]


class _LinkRewritingRenderer(mistune.HTMLRenderer):
    """HTML renderer that passes link and image targets through a rewriter.

    Attributes:
        rewrite: Function mapping a source link to its output link.
    """

    def __init__(self, rewrite: LinkRewriter):
        super().__init__(escape=False)
        self.rewrite = rewrite

    def link(self, text: str, url: str, title: str | None = None) -> str:
        return super().link(text, self.rewrite(url), title)

    def image(self, text: str, url: str, title: str | None = None) -> str:
        return super().image(text, self.rewrite(url), title)


class MarkdownRenderer:
    """Renders Markdown content to HTML.

    The rewrite function is supplied per call because the same field renders
    differently depending on where its page is written.
    """

    plugins = ["strikethrough", "table", "url"]

    def render(self, content: str, rewrite: LinkRewriter | None = None) -> str:
        """Render Markdown source to HTML.

        Args:
            content: Markdown source.
            rewrite: Optional link rewriter; links are left alone without one.

        Returns:
            Rendered HTML.
        """
        renderer = _LinkRewritingRenderer(rewrite or (lambda link: link))
        markdown = mistune.create_markdown(renderer=renderer, plugins=self.plugins)
        return markdown(content)


default_markdown_renderer = MarkdownRenderer()
