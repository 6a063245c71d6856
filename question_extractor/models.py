"""
Data Models
===========
Pydantic models for the extraction pipeline and its JSON output.
Content items are transient (one parse call); questions are handed
to the caller for review before anything is persisted.
"""

from __future__ import annotations

import hashlib
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Union

from pydantic import BaseModel, Field, computed_field


def new_id() -> str:
    """Process-unique identifier for questions and options."""
    return uuid.uuid4().hex


# ─── Enums ────────────────────────────────────────────────────────────────────


class BlockType(str, Enum):
    """Type of content item extracted from a PDF page."""
    TEXT = "text"
    IMAGE = "image"


class ExtractionMode(str, Enum):
    """Which pass produced the questions."""
    STRICT = "strict"
    FALLBACK = "fallback"
    NONE = "none"
    REMOTE = "remote"


class QuestionType(str, Enum):
    """Question types declared by the remote extraction contract."""
    MCQ = "MCQ"
    MULTIMCQ = "MULTIMCQ"
    INTEGER = "INTEGER"
    MATRIX = "MATRIX"


# ─── Content Items ────────────────────────────────────────────────────────────


class TextRun(BaseModel):
    """
    A run of text from the page's text layer.
    (x, y) is the baseline origin in PDF user space (y grows upward).
    """
    type: BlockType = BlockType.TEXT
    content: str
    x: float
    y: float
    width: float = 0.0
    height: float = 0.0
    ends_line: bool = False
    page_number: int = Field(default=1, ge=1)


class ImageBlock(BaseModel):
    """
    A decoded raster image placed on the page.
    (x, y) is the TOP-left corner in PDF user space, so the box
    spans y - height .. y.
    """
    type: BlockType = BlockType.IMAGE
    src: str = Field(description="PNG data URL")
    x: float
    y: float
    width: float
    height: float
    page_number: int = Field(default=1, ge=1)


ContentItem = Union[TextRun, ImageBlock]


# ─── Question Models ──────────────────────────────────────────────────────────


class Option(BaseModel):
    """An answer option. Correctness is never inferred from layout."""
    id: str = Field(default_factory=new_id)
    text: str = ""
    image: Optional[str] = None
    is_correct: bool = False


class Question(BaseModel):
    """A reconstructed question ready for human review."""
    id: str = Field(default_factory=new_id)
    text: str = ""
    image: Optional[str] = None
    multi_select: bool = False
    options: list[Option] = Field(default_factory=list)

    # Filled only by the remote extraction path
    section: Optional[str] = None
    question_number: Optional[str] = None
    question_type: Optional[str] = None
    has_diagram: bool = False
    correct_answer: Optional[str] = None
    explanation: Optional[str] = None

    @computed_field
    @property
    def has_image(self) -> bool:
        return self.image is not None or any(
            o.image is not None for o in self.options
        )


# ─── Parse Result Models ──────────────────────────────────────────────────────


class DocumentMetadata(BaseModel):
    """Metadata about the source PDF."""
    source_pdf: str = ""
    total_pages: int = 0
    file_hash: str = ""
    file_size_bytes: int = 0

    @staticmethod
    def compute_hash(data: bytes) -> str:
        """SHA-256 of the raw document bytes."""
        return hashlib.sha256(data).hexdigest()


class ParseVersion(BaseModel):
    """Version and volume tracking for a parse run."""
    parser_version: str = "1.0.0"
    parse_timestamp: str = Field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )
    raw_item_count: int = 0
    filtered_item_count: int = 0
    question_count: int = 0


class ExtractionReport(BaseModel):
    """Post-parse summary of what was recovered."""
    mode: ExtractionMode = ExtractionMode.NONE
    total_questions: int = 0
    dropped_candidates: int = 0
    questions_with_images: int = 0
    options_with_images: int = 0
    questions_without_text: int = 0
    option_count_breakdown: dict[str, int] = Field(default_factory=dict)

    @computed_field
    @property
    def empty(self) -> bool:
        return self.total_questions == 0


class ParseResult(BaseModel):
    """
    Complete output of a parse run.
    This is the top-level JSON structure returned to callers.
    """
    document: DocumentMetadata
    parse_version: ParseVersion
    mode: ExtractionMode = ExtractionMode.NONE
    questions: list[Question] = Field(default_factory=list)
    report: ExtractionReport = Field(default_factory=ExtractionReport)
