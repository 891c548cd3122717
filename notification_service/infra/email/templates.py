"""Email template rendering with Jinja2.

The renderer keeps its own compiled-template cache keyed by template name,
including negative entries for templates that do not exist, so repeated
lookups for types without a dedicated template do not hit the filesystem.
"""

from __future__ import annotations

from html import unescape
import logging
from pathlib import Path
import re
from typing import Any

from jinja2 import Environment, FileSystemLoader, Template, TemplateNotFound, select_autoescape

logger = logging.getLogger(__name__)


class TemplateRenderer:
    """Jinja2-based email template renderer.

    Example:
        renderer = TemplateRenderer(settings.template_dir)
        html = renderer.render("task/assigned.html", {"taskTitle": "Ship it"})
        renderer.clear()  # after templates change on disk
    """

    def __init__(self, template_dir: str | Path, default_context: dict[str, Any] | None = None) -> None:
        self.template_dir = Path(template_dir)
        self.env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            autoescape=select_autoescape(["html", "xml"]),
            trim_blocks=True,
            lstrip_blocks=True,
        )
        self.env.filters["html_to_text"] = html_to_text
        self.default_context = default_context or {}
        self._cache: dict[str, Template | None] = {}

        logger.info(
            "Email template renderer initialized",
            extra={"template_dir": str(self.template_dir)},
        )

    def get_template(self, name: str) -> Template | None:
        """Return the compiled template, or None when it does not exist."""
        if name in self._cache:
            return self._cache[name]

        template: Template | None
        try:
            template = self.env.get_template(name)
        except TemplateNotFound:
            logger.debug("No email template found", extra={"template": name})
            template = None

        self._cache[name] = template
        return template

    def template_exists(self, name: str) -> bool:
        return self.get_template(name) is not None

    def render(self, name: str, context: dict[str, Any]) -> str | None:
        """Render a template by name; None when the template is missing."""
        template = self.get_template(name)
        if template is None:
            return None
        return template.render(**{**self.default_context, **context})

    def render_string(self, source: str, context: dict[str, Any]) -> str:
        """Render an inline template string with the same environment."""
        return self.env.from_string(source).render(**{**self.default_context, **context})

    def clear(self) -> None:
        """Drop every compiled template, including Jinja2's own cache."""
        self._cache.clear()
        if self.env.cache is not None:
            self.env.cache.clear()

    @property
    def cached_count(self) -> int:
        return len(self._cache)


def html_to_text(html: str) -> str:
    """Convert HTML to plain text.

    Links become ``text (url)``, block elements become blank lines, tags are
    stripped and entities decoded.
    """
    html = re.sub(
        r'<a[^>]+href=["\']([^"\']+)["\'][^>]*>([^<]+)</a>',
        r"\2 (\1)",
        html,
        flags=re.IGNORECASE,
    )
    html = re.sub(r"<(style|head)[^>]*>.*?</\1>", "", html, flags=re.IGNORECASE | re.DOTALL)
    html = re.sub(r"</?(p|div|h[1-6]|tr|table)[^>]*>", "\n\n", html, flags=re.IGNORECASE)
    html = re.sub(r"<br\s*/?>", "\n", html, flags=re.IGNORECASE)
    html = re.sub(r"<li[^>]*>", "\n  * ", html, flags=re.IGNORECASE)
    html = re.sub(r"<[^>]+>", "", html)

    text = unescape(html)
    text = re.sub(r"[ \t]+", " ", text)
    text = re.sub(r"\n\s*\n", "\n\n", text)
    return text.strip()
