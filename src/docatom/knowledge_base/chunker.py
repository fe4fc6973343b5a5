"""
Document chunking.

Two strategies cut documents into bounded units:
- markdown-semantic: sections anchored at headings, oversized sections split
  at paragraph boundaries, undersized ones merged into a neighbor
- pdf-sliding-window: overlapping fixed-size token windows with estimated
  page ranges, for extracted text without reliable headings

Both enforce a hard per-document chunk cap by merging, never dropping.
Chunking is a pure function of the document and configuration.
"""

import hashlib
import logging
import math
import re
from collections import Counter
from dataclasses import dataclass
from typing import Callable, Optional
from uuid import NAMESPACE_URL, uuid5

from docatom.config import ChunkingConfig, DocatomSettings, SlidingWindowConfig
from docatom.errors import ConfigurationError

from .features import detect_feature_tags, detect_images, image_keywords
from .models import Chunk, ChunkMetadata, ChunkStrategy, DocFormat, Document
from .preprocess import preprocess_html
from .tokens import estimate_tokens, tokenize

logger = logging.getLogger(__name__)

HEADING_PATTERN = re.compile(r"^(#{1,6})\s+(.+?)(?:\s+#+)?\s*$")
FENCE_PATTERN = re.compile(r"^\s*(```|~~~)")
PARAGRAPH_BREAK = re.compile(r"\n\s*\n")

KEYWORD_STOPWORDS = {"this", "that", "with", "from", "have", "were", "which", "there", "their", "about", "would"}


def normalize_text(text: str) -> str:
    """Normalize line endings and tabs."""
    if not text:
        return ""
    return text.replace("\r\n", "\n").replace("\r", "\n").replace("\t", "  ")


@dataclass
class DraftChunk:
    """A chunk before index, tags and ids are assigned."""
    content: str
    tokens: int
    heading: Optional[str] = None
    token_start: Optional[int] = None
    token_end: Optional[int] = None
    page_start: Optional[int] = None
    page_end: Optional[int] = None


def _min_opt(a: Optional[int], b: Optional[int]) -> Optional[int]:
    values = [v for v in (a, b) if v is not None]
    return min(values) if values else None


def _max_opt(a: Optional[int], b: Optional[int]) -> Optional[int]:
    values = [v for v in (a, b) if v is not None]
    return max(values) if values else None


def merge_drafts(first: DraftChunk, second: DraftChunk) -> DraftChunk:
    """Concatenate two adjacent drafts."""
    return DraftChunk(
        content=f"{first.content}\n\n{second.content}".strip(),
        tokens=first.tokens + second.tokens,
        heading=first.heading or second.heading,
        token_start=_min_opt(first.token_start, second.token_start),
        token_end=_max_opt(first.token_end, second.token_end),
        page_start=_min_opt(first.page_start, second.page_start),
        page_end=_max_opt(first.page_end, second.page_end),
    )


def merge_small_drafts(drafts: list[DraftChunk], min_tokens: int) -> list[DraftChunk]:
    """Merge drafts below `min_tokens` into the following draft, or the preceding one if last."""
    merged = list(drafts)
    i = 0
    while len(merged) > 1 and i < len(merged):
        if merged[i].tokens >= min_tokens:
            i += 1
            continue
        if i + 1 < len(merged):
            merged[i] = merge_drafts(merged[i], merged[i + 1])
            del merged[i + 1]
        else:
            merged[i - 1] = merge_drafts(merged[i - 1], merged[i])
            del merged[i]
            i -= 1
    return merged


def enforce_chunk_cap(
    drafts: list[DraftChunk],
    max_chunks: int,
    merge: Callable[[DraftChunk, DraftChunk], DraftChunk] = merge_drafts,
) -> list[DraftChunk]:
    """Merge the smallest adjacent pair (leftmost on ties) until at most `max_chunks` remain."""
    merged = list(drafts)
    while len(merged) > max(1, max_chunks):
        best = 0
        best_size = merged[0].tokens + merged[1].tokens
        for i in range(1, len(merged) - 1):
            size = merged[i].tokens + merged[i + 1].tokens
            if size < best_size:
                best, best_size = i, size
        merged[best] = merge(merged[best], merged[best + 1])
        del merged[best + 1]
    return merged


# ============ Strategies ============

class SemanticSectionChunker:
    """Split heading-structured text into heading-aligned chunks."""

    strategy_id = ChunkStrategy.MARKDOWN_SEMANTIC.value

    def __init__(self, config: Optional[ChunkingConfig] = None):
        self.config = config or ChunkingConfig()
        if self.config.min_tokens_per_chunk > self.config.max_tokens_per_chunk:
            raise ConfigurationError("min_tokens_per_chunk must not exceed max_tokens_per_chunk")

    def supports(self, document: Document) -> bool:
        return document.format in (DocFormat.MARKDOWN, DocFormat.TXT, DocFormat.HTML)

    def prepare(self, document: Document) -> str:
        """Retained text of the document (HTML is converted first)."""
        content = document.content
        if document.format == DocFormat.HTML:
            content = preprocess_html(content)
        return normalize_text(content)

    def split(self, text: str, document: Optional[Document] = None) -> list[DraftChunk]:
        if not text.strip():
            return []

        drafts: list[DraftChunk] = []
        for heading, content in self._parse_sections(text):
            tokens = estimate_tokens(content)
            if tokens <= self.config.max_tokens_per_chunk:
                drafts.append(DraftChunk(content=content, tokens=tokens, heading=heading))
            else:
                for piece in self._split_oversized(content):
                    drafts.append(DraftChunk(content=piece, tokens=estimate_tokens(piece), heading=heading))

        drafts = merge_small_drafts(drafts, self.config.min_tokens_per_chunk)
        return enforce_chunk_cap(drafts, self.config.max_chunks_per_document)

    def _parse_sections(self, text: str) -> list[tuple[Optional[str], str]]:
        """Sections as (heading, content); content includes the heading line."""
        sections: list[tuple[Optional[str], list[str]]] = []
        current_heading: Optional[str] = None
        current_lines: list[str] = []
        in_fence = False

        for line in text.split("\n"):
            if FENCE_PATTERN.match(line):
                in_fence = not in_fence
                current_lines.append(line)
                continue

            match = None if in_fence else HEADING_PATTERN.match(line)
            if match:
                sections.append((current_heading, current_lines))
                current_heading = match.group(2).strip()
                current_lines = [line]
                continue

            current_lines.append(line)

        sections.append((current_heading, current_lines))

        result = []
        for heading, lines in sections:
            content = "\n".join(lines).strip()
            if content:
                result.append((heading, content))
        return result

    def _split_oversized(self, content: str) -> list[str]:
        """Pack paragraphs into pieces within the token ceiling."""
        limit = self.config.max_tokens_per_chunk
        units: list[tuple[str, int]] = []

        for paragraph in PARAGRAPH_BREAK.split(content):
            paragraph = paragraph.strip()
            if not paragraph:
                continue
            tokens = estimate_tokens(paragraph)
            if tokens <= limit:
                units.append((paragraph, tokens))
            else:
                units.extend(self._split_paragraph(paragraph))

        pieces: list[str] = []
        current: list[str] = []
        current_tokens = 0
        for text, tokens in units:
            if current and current_tokens + tokens > limit:
                pieces.append("\n\n".join(current))
                current, current_tokens = [], 0
            current.append(text)
            current_tokens += tokens
        if current:
            pieces.append("\n\n".join(current))
        return pieces

    def _split_paragraph(self, paragraph: str) -> list[tuple[str, int]]:
        """Split a paragraph on lines, then words, when it alone exceeds the ceiling."""
        limit = self.config.max_tokens_per_chunk
        out: list[tuple[str, int]] = []
        current: list[str] = []
        current_tokens = 0

        def flush() -> None:
            nonlocal current, current_tokens
            if current:
                out.append(("\n".join(current), current_tokens))
            current, current_tokens = [], 0

        for line in paragraph.split("\n"):
            tokens = estimate_tokens(line)
            if tokens > limit:
                flush()
                words = tokenize(line)
                for start in range(0, len(words), limit):
                    window = words[start:start + limit]
                    out.append((" ".join(window), len(window)))
                continue
            if current and current_tokens + tokens > limit:
                flush()
            current.append(line)
            current_tokens += tokens
        flush()
        return out


class SlidingWindowChunker:
    """Split unstructured text into overlapping token windows."""

    strategy_id = ChunkStrategy.PDF_SLIDING_WINDOW.value

    def __init__(
        self,
        config: Optional[SlidingWindowConfig] = None,
        max_chunks_per_document: int = 40,
    ):
        self.config = config or SlidingWindowConfig()
        if self.config.window_tokens < 1:
            raise ConfigurationError("window_tokens must be at least 1")
        if self.config.overlap_tokens < 0 or self.config.overlap_tokens >= self.config.window_tokens:
            raise ConfigurationError(
                f"overlap_tokens ({self.config.overlap_tokens}) must be in [0, window_tokens "
                f"({self.config.window_tokens}))"
            )
        if max_chunks_per_document < 1:
            raise ConfigurationError("max_chunks_per_document must be at least 1")
        self.max_chunks_per_document = max_chunks_per_document

    def supports(self, document: Document) -> bool:
        return document.format == DocFormat.PDF

    def prepare(self, document: Document) -> str:
        return normalize_text(document.content)

    def split(self, text: str, document: Optional[Document] = None) -> list[DraftChunk]:
        tokens = tokenize(text)
        if not tokens:
            return []

        total = len(tokens)
        numpages = document.numpages if document is not None else None

        if total < self.config.min_tokens_to_chunk:
            page_start, page_end = estimate_page_range(0, total - 1, total, numpages)
            return [DraftChunk(
                content=text.strip(),
                tokens=total,
                token_start=0,
                token_end=total - 1,
                page_start=page_start,
                page_end=page_end,
            )]

        drafts = [
            self._window(tokens, start, end, numpages)
            for start, end in token_windows(total, self.config.window_tokens, self.config.overlap_tokens)
        ]

        def merge(first: DraftChunk, second: DraftChunk) -> DraftChunk:
            return self._window(tokens, first.token_start, second.token_end + 1, numpages)

        return enforce_chunk_cap(drafts, self.max_chunks_per_document, merge)

    def _window(self, tokens: list[str], start: int, end: int, numpages: Optional[int]) -> DraftChunk:
        page_start, page_end = estimate_page_range(start, end - 1, len(tokens), numpages)
        return DraftChunk(
            content=" ".join(tokens[start:end]),
            tokens=end - start,
            token_start=start,
            token_end=end - 1,
            page_start=page_start,
            page_end=page_end,
        )


class SingleChunkStrategy:
    """Fallback: the whole document as one chunk."""

    strategy_id = ChunkStrategy.SINGLE_CHUNK.value

    def supports(self, document: Document) -> bool:
        return True

    def prepare(self, document: Document) -> str:
        if document.format == DocFormat.HTML:
            return normalize_text(preprocess_html(document.content))
        return normalize_text(document.content)

    def split(self, text: str, document: Optional[Document] = None) -> list[DraftChunk]:
        content = text.strip()
        if not content:
            return []
        return [DraftChunk(content=content, tokens=estimate_tokens(content))]


def token_windows(total: int, window: int, overlap: int) -> list[tuple[int, int]]:
    """(start, end_exclusive) pairs; the last window is clipped, never padded."""
    step = window - overlap
    windows = []
    for start in range(0, total, step):
        end = min(total, start + window)
        windows.append((start, end))
        if end >= total:
            break
    return windows


def expected_window_count(total: int, window: int, overlap: int) -> int:
    """ceil((total - overlap) / (window - overlap)), at least one window for non-empty text."""
    if total <= 0:
        return 0
    return max(1, math.ceil((total - overlap) / (window - overlap)))


def estimate_page_range(
    token_start: int,
    token_end: int,
    total_tokens: int,
    numpages: Optional[int],
) -> tuple[Optional[int], Optional[int]]:
    """Linear page interpolation from token offsets, clamped to [1, numpages]."""
    if not numpages or total_tokens <= 0:
        return None, None

    page_start = math.floor(token_start / total_tokens * numpages) + 1
    page_start = max(1, min(numpages, page_start))
    page_end = math.floor(token_end / total_tokens * numpages) + 1
    page_end = max(page_start, min(numpages, page_end))
    return page_start, page_end


# ============ Orchestration ============

class DocumentChunker:
    """Chooses a strategy per document and turns drafts into Chunks."""

    def __init__(self, settings: Optional[DocatomSettings] = None):
        self.settings = settings or DocatomSettings()
        chunking = self.settings.chunking
        self.fallback = SingleChunkStrategy()
        self.strategies = [
            SlidingWindowChunker(self.settings.sliding_window, chunking.max_chunks_per_document),
            SemanticSectionChunker(chunking),
            self.fallback,
        ]

    def select_strategy(self, document: Document):
        for strategy in self.strategies:
            if strategy.supports(document):
                return strategy
        return self.fallback

    def chunk_document(self, document: Document) -> list[Chunk]:
        """Chunk a document. Malformed input degrades to a single chunk instead of raising."""
        strategy = self.select_strategy(document)
        try:
            text = strategy.prepare(document)
            drafts = strategy.split(text, document)
        except Exception:
            logger.warning(
                f"Chunking strategy {strategy.strategy_id} failed for document {document.id}; "
                f"falling back to a single chunk",
                exc_info=True,
            )
            strategy = self.fallback
            drafts = self.fallback.split(normalize_text(document.content), document)

        chunks = self._build_chunks(document, strategy.strategy_id, drafts)
        logger.info(f"Created {len(chunks)} chunks ({strategy.strategy_id}) from document: {document.id}")
        return chunks

    def _build_chunks(self, document: Document, strategy_id: str, drafts: list[DraftChunk]) -> list[Chunk]:
        count = len(drafts)
        threshold = self.settings.chunking.large_document_threshold
        chunks: list[Chunk] = []

        for index, draft in enumerate(drafts):
            images = detect_images(draft.content)
            tags = {f"chunk-strategy-{strategy_id}"} | detect_feature_tags(draft.content, images)
            if count > 1:
                tags.add("chunked")
            if count > threshold:
                tags.add("large-document")

            metadata = ChunkMetadata(
                strategy=strategy_id,
                chunk_index=index,
                chunk_count=count,
                heading=draft.heading,
                page_start=draft.page_start,
                page_end=draft.page_end,
                token_start=draft.token_start,
                token_end=draft.token_end,
                image_count=len(images),
            )

            keywords = _extract_keywords(draft.content)
            for word in image_keywords(images):
                if word not in keywords:
                    keywords.append(word)

            chunks.append(Chunk(
                id=chunk_id(document.id, index, draft.content),
                parent_document_id=document.id,
                index=index,
                content=draft.content,
                title=f"{document.title}{_title_suffix(metadata)}",
                context=_context_label(document, metadata),
                tags=tags,
                keywords=keywords,
                format=document.format,
                metadata=metadata,
                timestamp=document.created,
            ))

        return chunks


def chunk_id(document_id: str, index: int, content: str) -> str:
    """Stable id derived from the parent, position and content."""
    digest = hashlib.sha256(content.encode()).hexdigest()[:16]
    return str(uuid5(NAMESPACE_URL, f"docatom:{document_id}:{index}:{digest}"))


def _title_suffix(metadata: ChunkMetadata) -> str:
    if metadata.heading:
        return f" - {metadata.heading[:80]}"
    if metadata.page_start is not None and metadata.page_end is not None and metadata.chunk_count > 1:
        return f" - pp. {metadata.page_start}-{metadata.page_end}"
    if metadata.chunk_count > 1:
        return f" - chunk {metadata.chunk_index + 1}"
    return ""


def _context_label(document: Document, metadata: ChunkMetadata) -> str:
    context = f"From document: {document.title or document.id}"
    parts = []
    if metadata.chunk_count > 1:
        parts.append(f"chunk {metadata.chunk_index + 1}/{metadata.chunk_count}")
    if metadata.page_start is not None and metadata.page_end is not None:
        parts.append(f"pp. {metadata.page_start}-{metadata.page_end}")
    if parts:
        context = f"{context} ({' • '.join(parts)})"
    return context


def _extract_keywords(content: str, limit: int = 5) -> list[str]:
    """Most frequent words longer than three characters."""
    words = [
        w for w in re.findall(r"\b\w+\b", content.lower())
        if len(w) > 3 and not w.isdigit() and w not in KEYWORD_STOPWORDS
    ]
    return [word for word, _ in Counter(words).most_common(limit)]


def chunk_document(document: Document, settings: Optional[DocatomSettings] = None) -> list[Chunk]:
    """Chunk one document with the given (or default) settings."""
    return DocumentChunker(settings).chunk_document(document)
