"""
Pydantic models for documents and the chunks (atomic units) cut from them.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, model_validator


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class DocFormat(str, Enum):
    """Supported document formats."""
    MARKDOWN = "markdown"
    HTML = "html"
    PDF = "pdf"
    TXT = "txt"


class ChunkStrategy(str, Enum):
    """Chunking strategy identifiers (also used in `chunk-strategy-*` tags)."""
    MARKDOWN_SEMANTIC = "markdown-semantic"
    PDF_SLIDING_WINDOW = "pdf-sliding-window"
    SINGLE_CHUNK = "single-chunk"


# ============ Document metadata (tagged by format) ============

class _MetadataBase(BaseModel):
    """Fields shared by every format. Unknown keys are kept as extras."""
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    source_id: Optional[str] = Field(default=None, alias="sourceId", description="Connector that produced the document")
    url: Optional[str] = None


class MarkdownMetadata(_MetadataBase):
    format: Literal["markdown"] = "markdown"


class HtmlMetadata(_MetadataBase):
    format: Literal["html"] = "html"


class PdfMetadata(_MetadataBase):
    format: Literal["pdf"] = "pdf"
    numpages: Optional[int] = Field(default=None, ge=1, description="Total page count declared by the extractor")


class TextMetadata(_MetadataBase):
    format: Literal["txt"] = "txt"


DocumentMetadata = Annotated[
    Union[MarkdownMetadata, HtmlMetadata, PdfMetadata, TextMetadata],
    Field(discriminator="format"),
]


class Document(BaseModel):
    """An input document. Treated as immutable by the chunkers."""
    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    content: str = ""
    format: DocFormat
    metadata: DocumentMetadata
    created: datetime = Field(default_factory=utcnow)

    @model_validator(mode="before")
    @classmethod
    def _default_metadata(cls, data: Any) -> Any:
        """Tag metadata with the document's format when the caller omitted it."""
        if not isinstance(data, dict):
            return data
        fmt = data.get("format")
        fmt_value = fmt.value if isinstance(fmt, DocFormat) else fmt
        metadata = data.get("metadata")
        if metadata is None:
            metadata = {}
        if isinstance(metadata, dict) and "format" not in metadata and fmt_value is not None:
            data = {**data, "metadata": {**metadata, "format": fmt_value}}
        return data

    @model_validator(mode="after")
    def _check_metadata_format(self) -> "Document":
        if self.metadata.format != self.format.value:
            raise ValueError(
                f"metadata format '{self.metadata.format}' does not match document format '{self.format.value}'"
            )
        return self

    @property
    def numpages(self) -> Optional[int]:
        return getattr(self.metadata, "numpages", None)


# ============ Chunks ============

class ChunkMetadata(BaseModel):
    """Position of a chunk within its document."""
    strategy: str
    chunk_index: int
    chunk_count: int
    heading: Optional[str] = None
    page_start: Optional[int] = None
    page_end: Optional[int] = None
    token_start: Optional[int] = None
    token_end: Optional[int] = None
    image_count: int = 0


class Chunk(BaseModel):
    """A bounded sub-span of a document, retrievable on its own."""
    id: str
    parent_document_id: Optional[str] = None
    conversation_id: Optional[str] = None
    index: int
    content: str
    title: str = ""
    context: str = ""
    tags: set[str] = Field(default_factory=set)
    keywords: list[str] = Field(default_factory=list)
    format: Optional[DocFormat] = None
    metadata: ChunkMetadata
    timestamp: datetime = Field(default_factory=utcnow)


class ParentDocument(BaseModel):
    """Parent-document fields the search filters need."""
    id: str
    format: str
    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def source_id(self) -> Optional[str]:
        return self.metadata.get("sourceId")


# ============ Search request models ============

class SearchWeights(BaseModel):
    """Weights for the two ranked lists fused by RRF."""
    lexical: float = Field(default=0.6, ge=0.0)
    semantic: float = Field(default=0.4, ge=0.0)


class SearchFilter(BaseModel):
    """Optional per-query filters."""
    date_from: Optional[datetime] = None
    date_to: Optional[datetime] = None
    source: Optional[str] = None
    format: Optional[str] = None

    @property
    def needs_parent(self) -> bool:
        return bool(self.source or self.format)

    @property
    def has_date_range(self) -> bool:
        return self.date_from is not None or self.date_to is not None
