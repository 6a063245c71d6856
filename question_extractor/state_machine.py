"""
State Machine Parser
====================
Deterministic state machine that turns the merged content stream into
multiple-choice questions, based on question / option text anchors.

A looser chunking pass takes over when the strict pass finds nothing.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Callable, Optional, Sequence

from .models import (
    ContentItem,
    ExtractionMode,
    ImageBlock,
    Option,
    Question,
)

logger = logging.getLogger(__name__)

# ─── Anchor Patterns ──────────────────────────────────────────────────────────

# Checked in order, and always before the option patterns.
QUESTION_PATTERNS = [
    # "1.", "1)", "Q1.", "Question 12)", "Ex 3.", "Example 4)"
    re.compile(r"^(?:Q|Question|Ex|Example)?\s*\d+[.)]", re.IGNORECASE),
    # "(1)"
    re.compile(r"^\(\d+\)"),
    # "1 ) A small mass..."
    re.compile(r"^\d+\s*[.)]\s*[A-Z]"),
]

OPTION_PATTERNS = [
    # "a)", "B.", "iv)", "II."
    re.compile(r"^(?:[a-d]|[iv]+)[.)]", re.IGNORECASE),
    # "(a)", "(C)"
    re.compile(r"^\([a-d]\)", re.IGNORECASE),
]

# Fallback chunk boundary: "3. " / "3) "
CHUNK_START_PATTERN = re.compile(r"^\d+[.)]\s")

PLACEHOLDER_OPTIONS = ("Option A", "Option B", "Option C", "Option D")

_WHITESPACE = re.compile(r"\s+")


def normalize_whitespace(text: str) -> str:
    return _WHITESPACE.sub(" ", text).strip()


def is_question_start(text: str) -> bool:
    return any(p.match(text) for p in QUESTION_PATTERNS)


def is_option_start(text: str) -> bool:
    return any(p.match(text) for p in OPTION_PATTERNS)


class ParserState(Enum):
    """Reconstruction states."""
    NO_CURRENT_QUESTION = "NO_CURRENT_QUESTION"
    BUILDING_QUESTION = "BUILDING_QUESTION"
    BUILDING_OPTION = "BUILDING_OPTION"


class QuestionReconstructor:
    """
    Finite state machine over an ordered sequence of ContentItems.

    Holds one current question and one current option; a new question
    anchor flushes the current question into the output list.
    """

    def __init__(
        self,
        fallback_min_chars: int = 10,
        log: Optional[Callable[[str], None]] = None,
    ):
        self.fallback_min_chars = fallback_min_chars
        self._log = log or (lambda msg: None)
        self.reset()

    @property
    def state(self) -> ParserState:
        if self.current_question is None:
            return ParserState.NO_CURRENT_QUESTION
        if self.current_option is None:
            return ParserState.BUILDING_QUESTION
        return ParserState.BUILDING_OPTION

    def reset(self):
        """Reset the state machine for a fresh parsing run."""
        self.current_question: Optional[Question] = None
        self.current_option: Optional[Option] = None
        self.questions: list[Question] = []
        self.mode = ExtractionMode.NONE
        self.dropped = 0

    def parse(self, items: Sequence[ContentItem]) -> list[Question]:
        """Parse items into questions, falling back to chunking if needed."""
        self.reset()

        for item in items:
            self._process_item(item)
        self._flush_question()

        candidates = [self._normalized(q) for q in self.questions]
        valid = [q for q in candidates if len(q.options) >= 2]
        self.dropped = len(candidates) - len(valid)
        self.questions = valid

        if valid:
            self.mode = ExtractionMode.STRICT
            return valid

        if items:
            self._log("Strict parsing failed. Attempting fallback mode...")
            self.questions = self.parse_fallback(items)
            if self.questions:
                self.mode = ExtractionMode.FALLBACK

        return self.questions

    def _process_item(self, item: ContentItem):
        if isinstance(item, ImageBlock):
            self._assign_image(item)
            return

        text = normalize_whitespace(item.content)
        if not text:
            return

        if is_question_start(text):
            self._start_new_question(text)
        elif is_option_start(text) and self.current_question is not None:
            self._start_new_option(text)
        else:
            self._append_text(text)

    def _start_new_question(self, text: str):
        """Finalize previous and start fresh state."""
        self._flush_question()
        logger.debug(f"Detected question start: {text[:40]!r}")
        self.current_question = Question(text=text)
        self.current_option = None

    def _start_new_option(self, text: str):
        self.current_option = Option(text=text)
        self.current_question.options.append(self.current_option)

    def _append_text(self, text: str):
        """Append continuation text to the active option or question."""
        if self.current_option is not None:
            self.current_option.text += " " + text
        elif self.current_question is not None:
            self.current_question.text += " " + text
        # No question context yet: preamble, discard

    def _assign_image(self, image: ImageBlock):
        """First image wins; later images in the same context are dropped."""
        if self.current_option is not None:
            if self.current_option.image is None:
                self.current_option.image = image.src
        elif self.current_question is not None:
            if self.current_question.image is None:
                self.current_question.image = image.src
        else:
            logger.debug(f"Skipping orphan image on page {image.page_number}")

    def _flush_question(self):
        if self.current_question is not None:
            self.questions.append(self.current_question)
        self.current_question = None
        self.current_option = None

    @staticmethod
    def _normalized(question: Question) -> Question:
        question.text = normalize_whitespace(question.text)
        for option in question.options:
            option.text = normalize_whitespace(option.text)
        return question

    # ─── Fallback ─────────────────────────────────────────────────────────

    def parse_fallback(self, items: Sequence[ContentItem]) -> list[Question]:
        """
        Chunk the stream on numbered lines and give each chunk four
        placeholder options. Images are collected regardless of position.
        """
        chunks: list[tuple[str, list[str]]] = []
        chunk_text = ""
        chunk_images: list[str] = []

        for item in items:
            if isinstance(item, ImageBlock):
                chunk_images.append(item.src)
                continue

            text = item.content.strip()
            if not text:
                continue

            if CHUNK_START_PATTERN.match(text):
                if chunk_text:
                    chunks.append((chunk_text, chunk_images))
                chunk_text, chunk_images = text, []
            else:
                chunk_text += " " + text

        if chunk_text:
            chunks.append((chunk_text, chunk_images))

        questions = []
        for text, images in chunks:
            text = normalize_whitespace(text)
            if len(text) <= self.fallback_min_chars:
                continue
            questions.append(Question(
                text=text,
                image=images[0] if images else None,
                options=[
                    Option(id=str(idx), text=label)
                    for idx, label in enumerate(PLACEHOLDER_OPTIONS, start=1)
                ],
            ))
        return questions
