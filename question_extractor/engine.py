"""
Question Extraction Engine
==========================
Main orchestrator that combines page extraction, shadow-text filtering,
merging, state machine reconstruction and validation into one pass.

Usage:
    engine = ParserEngine(config)
    result = engine.parse("path/to/exam.pdf")
    # result is a ParseResult with structured JSON output

Architecture:
    PDF → PageContentExtractor → per-page items → filter_shadow_text →
    merge_pages → QuestionReconstructor → ValidationEngine → ParseResult
"""

from __future__ import annotations

import json
import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Optional

from . import __version__
from .exceptions import DocumentUnreadableError
from .models import (
    ContentItem,
    DocumentMetadata,
    ParseResult,
    ParseVersion,
    Question,
)
from .page_extractor import PageContentExtractor, PdfSource
from .spatial import filter_shadow_text, merge_pages
from .state_machine import QuestionReconstructor
from .validator import ValidationEngine

logger = logging.getLogger(__name__)

ProgressCallback = Callable[[str], None]

LOG_FORMAT = "[%(asctime)s] %(levelname)-8s %(name)s: %(message)s"
LOG_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass
class ParserConfig:
    """Configuration for the parser engine."""

    # Extraction thresholds
    min_image_size: int = 30
    shadow_text_max_length: int = 5
    fallback_min_chars: int = 10

    # Output settings (None = keep results in memory only)
    output_dir: Optional[str] = None
    save_raw_items: bool = False

    # Logging
    log_level: str = "INFO"
    log_file: Optional[str] = None


class ParserEngine:
    """
    Main PDF question extraction engine.

    Orchestrates the full pipeline:
        1. Page content extraction (text runs + images)
        2. Shadow-text filtering and page merge
        3. Question reconstruction (strict, then fallback)
        4. Validation
        5. Optional JSON snapshot

    Every parse call builds its own extractor and reconstructor, so one
    engine can serve concurrent callers.
    """

    def __init__(self, config: Optional[ParserConfig] = None):
        self.config = config or ParserConfig()
        self._setup_logging()

    def _setup_logging(self):
        """Configure the package logger based on config."""
        log_level = getattr(logging, self.config.log_level.upper(), logging.INFO)

        pkg_logger = logging.getLogger("question_extractor")
        pkg_logger.setLevel(log_level)

        if not any(
            type(h) is logging.StreamHandler for h in pkg_logger.handlers
        ):
            console = logging.StreamHandler()
            console.setFormatter(
                logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
            )
            pkg_logger.addHandler(console)
        for handler in pkg_logger.handlers:
            handler.setLevel(log_level)

        if self.config.log_file:
            log_path = Path(self.config.log_file).absolute()
            already = any(
                isinstance(h, logging.FileHandler)
                and Path(h.baseFilename) == log_path
                for h in pkg_logger.handlers
            )
            if not already:
                log_path.parent.mkdir(parents=True, exist_ok=True)
                file_handler = logging.FileHandler(log_path, encoding="utf-8")
                file_handler.setLevel(log_level)
                file_handler.setFormatter(
                    logging.Formatter(LOG_FORMAT, datefmt=LOG_DATE_FORMAT)
                )
                pkg_logger.addHandler(file_handler)

    def parse(
        self,
        source: PdfSource,
        progress_callback: Optional[ProgressCallback] = None,
        source_name: Optional[str] = None,
    ) -> ParseResult:
        """
        Parse a PDF into structured questions.

        Args:
            source: Path to the PDF, or its raw bytes.
            progress_callback: Called synchronously with human-readable
                progress strings, in pipeline order.
            source_name: Display name for byte sources.

        Returns:
            ParseResult with questions, metadata and report. Zero
            questions is a valid result, not an error.

        Raises:
            DocumentUnreadableError: If the PDF cannot be loaded.
        """
        def log(msg: str):
            logger.info(msg)
            if progress_callback:
                progress_callback(msg)

        start_time = time.time()
        log("Starting parse...")

        data, name = self._read_source(source, source_name)
        log("File loaded to buffer")

        extractor = PageContentExtractor(
            min_image_size=self.config.min_image_size,
            log=log,
        )

        pages: list[list[ContentItem]] = []
        raw_count = 0
        doc = extractor.open_document(data)
        try:
            total_pages = doc.page_count
            log(f"PDF loaded. Pages: {total_pages}")

            for page_idx in range(total_pages):
                page_number = page_idx + 1
                log(f"Processing page {page_number}...")
                runs, images = extractor.extract_page(doc[page_idx], page_number)
                raw_count += len(runs) + len(images)

                runs, removed = filter_shadow_text(
                    runs, images, self.config.shadow_text_max_length
                )
                if removed:
                    log(f"Page {page_number}: Filtered {removed} overlapping text items")

                pages.append([*runs, *images])
        finally:
            doc.close()

        items = merge_pages(pages)

        log("Parsing items to questions...")
        reconstructor = QuestionReconstructor(
            fallback_min_chars=self.config.fallback_min_chars,
            log=log,
        )
        questions = reconstructor.parse(items)
        log(f"Found {len(questions)} questions")

        report = ValidationEngine().validate(
            questions, mode=reconstructor.mode, dropped=reconstructor.dropped
        )

        result = ParseResult(
            document=DocumentMetadata(
                source_pdf=name,
                total_pages=total_pages,
                file_hash=DocumentMetadata.compute_hash(data),
                file_size_bytes=len(data),
            ),
            parse_version=ParseVersion(
                parser_version=__version__,
                raw_item_count=raw_count,
                filtered_item_count=len(items),
                question_count=len(questions),
            ),
            mode=report.mode,
            questions=questions,
            report=report,
        )

        elapsed = time.time() - start_time
        logger.info(
            f"Parse complete in {elapsed:.2f}s — "
            f"{len(questions)} questions extracted ({report.mode.value})"
        )

        if self.config.output_dir:
            self._save_outputs(result, items)

        return result

    def extract_questions(
        self,
        source: PdfSource,
        progress_callback: Optional[ProgressCallback] = None,
    ) -> list[Question]:
        """Parse and return only the question list."""
        return self.parse(source, progress_callback).questions

    def _read_source(
        self, source: PdfSource, source_name: Optional[str]
    ) -> tuple[bytes, str]:
        if isinstance(source, bytes):
            return source, source_name or "upload.pdf"

        path = Path(source)
        if not path.is_file():
            raise DocumentUnreadableError(f"PDF not found: {path}", source=str(path))
        return path.read_bytes(), source_name or path.name

    def _save_outputs(self, result: ParseResult, items: list[ContentItem]):
        output_dir = Path(self.config.output_dir)
        output_dir.mkdir(parents=True, exist_ok=True)
        stem = self._output_stem(result.document.source_pdf)

        self._save_json(result.model_dump(mode="json"), output_dir / f"{stem}_parsed.json")
        if self.config.save_raw_items:
            self._save_json(
                [item.model_dump(mode="json") for item in items],
                output_dir / f"{stem}_raw_items.json",
            )
        logger.info(f"Output saved to: {output_dir}")

    @staticmethod
    def _output_stem(name: str) -> str:
        """Filesystem-safe stem derived from the source name."""
        stem = os.path.splitext(name)[0]
        clean = "".join(c if c.isalnum() or c in "-_" else "_" for c in stem)
        return clean[:50] or "document"

    def _save_json(self, data, filepath: Path):
        try:
            with open(filepath, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, ensure_ascii=False, default=str)
            logger.info(f"Saved JSON: {filepath}")
        except Exception as e:
            logger.error(f"Failed to save JSON {filepath}: {e}")
