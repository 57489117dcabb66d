from __future__ import annotations

import re
import xml.etree.ElementTree as etree
from pathlib import Path
from typing import Callable, Mapping
from urllib.parse import quote

import markdown
from jinja2 import Environment
from markdown.extensions import Extension
from markdown.inlinepatterns import InlineProcessor
from markdown.preprocessors import Preprocessor
from markupsafe import Markup

from .tree import ParseTree, render_to_text
from .utils import join_url

DEFAULT_TEMPLATE = Path(__file__).parent / "assets" / "template.html"

RE_WIKI_LINK = r"\[\[(?P<page>[^\[\]|\n]+)(?:\|(?P<alias>[^\[\]\n]*))?\]\]"
RE_HASHTAG = r"(?<![\w#&/])#(?P<tag>\w[\w/-]*)"
COMMENT_RE = re.compile(r"(?P<code>`+[^`\n]*`+)|<!--.*?-->|%%.*?%%", re.DOTALL)
URL_ATTR_RE = re.compile(
    r'<(?P<tag>img|a)(?P<attrs>\s(?:[^>]*?\s)?)(?P<attr>src|href)="(?P<url>[^"]+)"',
    re.IGNORECASE,
)
ABSOLUTE_PREFIXES = ("http://", "https://", "data:", "mailto:", "#", "/")

TEMPLATE_ENV = Environment(autoescape=True, keep_trailing_newline=True)


def page_url(page: str) -> str:
    return "/" + quote(page.split("@")[0], safe="/")


class WikiLinkProcessor(InlineProcessor):
    def handleMatch(self, m, data):
        page = m.group("page").strip()
        alias = (m.group("alias") or "").strip()
        el = etree.Element("a")
        el.set("href", page_url(page))
        el.set("class", "wiki-link")
        el.set("data-ref", page)
        el.text = alias or page
        return el, m.start(0), m.end(0)


class HashtagProcessor(InlineProcessor):
    def handleMatch(self, m, data):
        el = etree.Element("span")
        el.set("class", "hashtag")
        el.text = m.group(0)
        return el, m.start(0), m.end(0)


class CommentPreprocessor(Preprocessor):
    """Drop ``<!-- -->`` and ``%% %%`` comments outside of code."""

    def run(self, lines):
        text = "\n".join(lines)
        text = COMMENT_RE.sub(lambda m: m.group("code") or "", text)
        return text.split("\n")


class SpaceExtension(Extension):
    def extendMarkdown(self, md):
        # after fenced_code (25) has stashed code blocks, before html_block (20)
        md.preprocessors.register(CommentPreprocessor(md), "space_comments", 22)
        md.inlinePatterns.register(WikiLinkProcessor(RE_WIKI_LINK, md), "wiki_link", 175)
        md.inlinePatterns.register(HashtagProcessor(RE_HASHTAG, md), "hashtag", 70)


def fix_relative_urls(html_text: str, prefix: str) -> str:
    def repl(match: re.Match) -> str:
        url = match.group("url")
        if url.startswith(ABSOLUTE_PREFIXES) or "://" in url:
            return match.group(0)
        return f'<{match.group("tag")}{match.group("attrs")}{match.group("attr")}="{join_url(prefix, url)}"'

    return URL_ATTR_RE.sub(repl, html_text)


def render_markdown_to_html(
    tree: ParseTree, smart_hard_break: bool = True, attachment_url_prefix: str = "/"
) -> str:
    extensions = ["fenced_code", "tables", "codehilite", SpaceExtension()]
    if smart_hard_break:
        extensions.append("nl2br")
    md = markdown.Markdown(
        extensions=extensions,
        extension_configs={"codehilite": {"guess_lang": False}},
    )
    html_text = md.convert(render_to_text(tree, skip_types={"FrontMatter"}))
    return fix_relative_urls(html_text, attachment_url_prefix)


def read_template(path: Path) -> str:
    return path.read_text(encoding="utf-8")


def compile_template(source: str) -> Callable[[Mapping], str]:
    """Compile a Jinja2 page template.

    The returned callable takes ``pageName``, ``config`` and ``body``; ``body``
    is already rendered HTML and is inserted without escaping.
    """
    template = TEMPLATE_ENV.from_string(source)

    def render(data: Mapping) -> str:
        context = dict(data)
        context["body"] = Markup(context.get("body", ""))
        return template.render(**context)

    return render
