"""Lightweight feature detection on chunk text.

Finds embedded image references (Markdown and HTML) and a few other cheap
signals that become chunk tags and feed the search boosts.
"""

import re
from dataclasses import dataclass
from typing import Literal, Optional

MARKDOWN_IMAGE_PATTERN = re.compile(r"!\[([^\]]*)\]\(([^)]+)\)")
HTML_IMAGE_PATTERN = re.compile(r"<img\s+[^>]*?src\s*=\s*[\"']([^\"']+)[\"'][^>]*>", re.IGNORECASE)
HTML_ALT_PATTERN = re.compile(r"alt\s*=\s*[\"']([^\"']*)[\"']", re.IGNORECASE)
FENCED_CODE_PATTERN = re.compile(r"^(```|~~~)", re.MULTILINE)
TODO_PATTERN = re.compile(r"\b(TODO|FIXME)\b")

MAX_IMAGE_KEYWORDS = 20


@dataclass(frozen=True)
class DetectedImage:
    """An image reference found in text."""
    type: Literal["markdown", "html"]
    url: str
    alt: Optional[str]
    position: int


def _markdown_url(target: str) -> str:
    # ![alt](url "title") -> url
    url = target.strip().split()[0] if target.strip() else ""
    return url.strip("<>")


def detect_images(text: str) -> list[DetectedImage]:
    """Return image references in left-to-right order of occurrence."""
    if not text:
        return []

    found: list[DetectedImage] = []

    for match in MARKDOWN_IMAGE_PATTERN.finditer(text):
        found.append(DetectedImage(
            type="markdown",
            url=_markdown_url(match.group(2)),
            alt=match.group(1) or None,
            position=match.start(),
        ))

    for match in HTML_IMAGE_PATTERN.finditer(text):
        alt_match = HTML_ALT_PATTERN.search(match.group(0))
        found.append(DetectedImage(
            type="html",
            url=match.group(1),
            alt=(alt_match.group(1) or None) if alt_match else None,
            position=match.start(),
        ))

    found.sort(key=lambda img: img.position)
    return found


def detect_feature_tags(text: str, images: Optional[list[DetectedImage]] = None) -> set[str]:
    """Tags describing content features of a chunk."""
    if images is None:
        images = detect_images(text)

    tags: set[str] = set()
    if images:
        tags.update({"has-image", "image"})
    if FENCED_CODE_PATTERN.search(text):
        tags.add("has-code")
    if TODO_PATTERN.search(text):
        tags.add("todo")
    return tags


def image_keywords(images: list[DetectedImage]) -> list[str]:
    """Keywords taken from image alt text, first occurrence order."""
    words: list[str] = []
    seen: set[str] = set()
    for image in images[:MAX_IMAGE_KEYWORDS]:
        if not image.alt:
            continue
        for word in image.alt.split():
            word = word.strip().lower()
            if len(word) > 2 and word not in seen:
                seen.add(word)
                words.append(word)
    return words
