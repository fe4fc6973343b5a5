"""
HTML preprocessing using BeautifulSoup.

Turns HTML into Markdown-like text so the semantic chunker can treat it the
same way as Markdown:
- h1-h6 become `#`-prefixed lines
- list items become `- ` lines
- img elements become `![alt](src)` so image detection still sees them
- script, style, navigation and other non-content elements are removed
- every other tag is dropped, keeping its text
"""

import html as html_lib
import logging
import re

from bs4 import BeautifulSoup
from bs4.element import Comment, Declaration, Doctype, NavigableString, ProcessingInstruction, Tag

logger = logging.getLogger(__name__)

NOISE_TAGS = ["script", "style", "nav", "footer", "iframe", "noscript", "head", "template"]

HEADING_TAGS = {"h1", "h2", "h3", "h4", "h5", "h6"}

BLOCK_TAGS = {
    "address", "article", "aside", "blockquote", "body", "dd", "details", "dialog",
    "div", "dl", "dt", "fieldset", "figcaption", "figure", "form", "header", "hr",
    "html", "main", "ol", "p", "pre", "section", "summary", "table", "tbody", "td",
    "tfoot", "th", "thead", "tr", "ul",
}

_SKIPPED_STRINGS = (Comment, Declaration, Doctype, ProcessingInstruction)


def _collapse(text: str) -> str:
    return re.sub(r"\s+", " ", text).strip()


def _image_markdown(src: str, alt: str = "") -> str:
    """Render an image reference as `![alt](src)`; empty when there is no src."""
    src = (src or "").strip().replace(" ", "%20").replace(")", "%29")
    if not src:
        return ""
    alt = _collapse(html_lib.unescape(alt or "")).replace("]", "")
    return f"![{alt}]({src})"


class _MarkdownWriter:
    """Accumulates paragraphs while walking the soup."""

    def __init__(self):
        self.blocks: list[str] = []
        self.inline: list[str] = []

    def text(self, value: str) -> None:
        self.inline.append(value)

    def flush(self) -> None:
        text = _collapse("".join(self.inline))
        if text:
            self.blocks.append(text)
        self.inline = []

    def block(self, value: str) -> None:
        self.flush()
        if value:
            self.blocks.append(value)

    def render(self) -> str:
        self.flush()
        return "\n\n".join(self.blocks)


def _walk(node: Tag, out: _MarkdownWriter) -> None:
    for child in node.children:
        if isinstance(child, _SKIPPED_STRINGS):
            continue
        if isinstance(child, NavigableString):
            out.text(str(child))
            continue
        if not isinstance(child, Tag):
            continue

        name = (child.name or "").lower()

        if name in HEADING_TAGS:
            heading = _inline_text(child)
            if heading:
                out.block(f"{'#' * int(name[1])} {heading}")
            else:
                out.flush()
            continue

        if name == "li":
            item = _inline_text(child)
            if item:
                out.block(f"- {item}")
            else:
                out.flush()
            continue

        if name == "img":
            image = _image_markdown(child.get("src", ""), child.get("alt", ""))
            if image:
                out.text(f" {image} ")
            continue

        if name == "br":
            out.text(" ")
            continue

        if name == "pre":
            code = child.get_text().strip("\n")
            if code.strip():
                out.block(code)
            continue

        if name in BLOCK_TAGS:
            out.flush()
            _walk(child, out)
            out.flush()
        else:
            _walk(child, out)


def _inline_text(node: Tag) -> str:
    inner = _MarkdownWriter()
    _walk(node, inner)
    return _collapse(inner.render())


def _attribute(tag: str, name: str) -> str:
    match = re.search(rf"\b{name}\s*=\s*[\"']([^\"']*)[\"']", tag, flags=re.IGNORECASE)
    return match.group(1) if match else ""


def _regex_fallback(raw: str) -> str:
    """Best-effort extraction when the parser gives up."""
    text = re.sub(r"<(script|style|nav|footer|iframe)[\s\S]*?</\1>", " ", raw, flags=re.IGNORECASE)
    text = re.sub(
        r"<img\b[^>]*>",
        lambda m: f" {_image_markdown(_attribute(m.group(0), 'src'), _attribute(m.group(0), 'alt'))} ",
        text,
        flags=re.IGNORECASE,
    )
    text = re.sub(
        r"<h([1-6])[^>]*>(.*?)</h\1>",
        lambda m: f"\n\n{'#' * int(m.group(1))} {_collapse(re.sub(r'<[^>]+>', ' ', m.group(2)))}\n\n",
        text,
        flags=re.IGNORECASE | re.DOTALL,
    )
    text = re.sub(
        r"<li[^>]*>(.*?)</li>",
        lambda m: f"\n\n- {_collapse(re.sub(r'<[^>]+>', ' ', m.group(1)))}\n\n",
        text,
        flags=re.IGNORECASE | re.DOTALL,
    )
    text = re.sub(r"</?(p|div|ul|ol|section|article|table|tr|blockquote)[^>]*>", "\n\n", text, flags=re.IGNORECASE)
    text = re.sub(r"<[^>]+>", " ", text)
    text = html_lib.unescape(text)
    paragraphs = [_collapse(p) for p in re.split(r"\n\s*\n", text)]
    return "\n\n".join(p for p in paragraphs if p)


def preprocess_html(raw: str) -> str:
    """Convert HTML into Markdown-like text. Never raises."""
    if not raw or not raw.strip():
        return ""

    try:
        soup = BeautifulSoup(raw, "html.parser")

        for tag in soup(NOISE_TAGS):
            tag.decompose()
        for tag in soup.find_all(attrs={"role": "navigation"}):
            tag.decompose()

        out = _MarkdownWriter()
        _walk(soup, out)
        return out.render()
    except Exception as e:  # includes RecursionError on deep nesting
        logger.warning(f"HTML parsing failed, falling back to regex extraction: {e}")
        return _regex_fallback(raw)
