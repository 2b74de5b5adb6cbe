"""
Default page renderer for the dev server.

Markdown sources go through `markdown`, Jinja sources through Jinja2, anything
else is served as written. Pages can be wrapped in a Jinja2 layout.
"""

import logging
import os
import re
from typing import Any, Dict, List, Optional, Protocol, Tuple

import markdown
import yaml
from jinja2 import Environment, FileSystemLoader, TemplateNotFound, select_autoescape
from markupsafe import Markup

from sitegraph.sitemap.store import MARKDOWN_EXTENSIONS, TEMPLATE_EXTENSIONS

log = logging.getLogger(f"mkdocs.plugins.{__name__}")

FM_PATTERN = re.compile(r"^---\s*\n(.*?)\n---\s*\n?", re.DOTALL)


class Renderer(Protocol):
    def render(self, resource) -> bytes:
        ...


def split_front_matter(source_text: str) -> Tuple[Dict[str, Any], str]:
    """
    Return (front_matter_dict, body_text). If no FM, dict={} and body=source_text.
    """
    m = FM_PATTERN.match(source_text)
    if not m:
        return {}, source_text
    try:
        fm = yaml.safe_load(m.group(1)) or {}
    except yaml.YAMLError as e:
        log.warning(f"[render] ignoring invalid front matter: {e}")
        fm = {}
    if not isinstance(fm, dict):
        fm = {}
    return fm, source_text[m.end():]


class TemplateRenderer:
    """Render resources from their source files."""

    def __init__(
        self,
        layouts_dir: Optional[str] = None,
        markdown_extensions: Optional[List[str]] = None,
        default_layout: Optional[str] = None,
    ):
        self.layouts_dir = layouts_dir
        self.markdown_extensions = markdown_extensions or []
        self.default_layout = default_layout
        loader = FileSystemLoader(layouts_dir) if layouts_dir else None
        self.env = Environment(
            loader=loader,
            autoescape=select_autoescape(enabled_extensions=("html", "htm", "xml")),
        )

    def render(self, resource) -> bytes:
        source_file = resource.source_file
        if not source_file or not os.path.isfile(source_file):
            raise TemplateNotFound(source_file or resource.path)

        with open(source_file, "r", encoding="utf-8") as f:
            text = f.read()

        front_matter, body = split_front_matter(text)
        locals_ = dict(front_matter.pop("locals", None) or {})
        locals_.update(resource.locals)
        options = dict(front_matter)
        options.update(resource.options)

        context = dict(locals_)
        context["current_resource"] = resource
        context["page"] = options

        ext = os.path.splitext(source_file)[1].lower()
        if ext in MARKDOWN_EXTENSIONS:
            content = markdown.markdown(body, extensions=self.markdown_extensions)
        elif ext in TEMPLATE_EXTENSIONS:
            content = self.env.from_string(body).render(**context)
        else:
            content = body

        layout = options.get("layout", self.default_layout)
        if layout:
            content = self.render_layout(layout, content, context)

        log.debug(f"[render] rendered {resource.path} from {source_file}")
        return content.encode("utf-8")

    def render_layout(self, layout: str, content: str, context: Dict[str, Any]) -> str:
        if self.env.loader is None:
            raise TemplateNotFound(layout, message=f"No layouts directory to find layout '{layout}'")
        template = self.env.get_template(layout)
        return template.render(dict(context, content=Markup(content)))
