"""
Validation Engine
=================
Post-parse summary of the extracted questions.

Reports:
    - Extraction mode (strict / fallback / none / remote)
    - Total questions and dropped strict candidates
    - Questions and options carrying images
    - Questions without text
    - Option count breakdown

Zero questions is a reportable outcome, never an error.
"""

from __future__ import annotations

import logging
from collections import Counter

from .models import ExtractionMode, ExtractionReport, Question

logger = logging.getLogger(__name__)


class ValidationEngine:
    """
    Summarises parsed questions into an ExtractionReport.
    """

    def validate(
        self,
        questions: list[Question],
        mode: ExtractionMode = ExtractionMode.STRICT,
        dropped: int = 0,
    ) -> ExtractionReport:
        report = ExtractionReport(mode=mode, dropped_candidates=dropped)

        if not questions:
            logger.warning("No questions detected")
            if mode != ExtractionMode.REMOTE:
                report.mode = ExtractionMode.NONE
            return report

        report.total_questions = len(questions)
        report.questions_with_images = sum(
            1 for q in questions if q.image is not None
        )
        report.options_with_images = sum(
            1 for q in questions for o in q.options if o.image is not None
        )
        report.questions_without_text = sum(
            1 for q in questions if not q.text.strip()
        )
        report.option_count_breakdown = {
            str(count): n
            for count, n in sorted(Counter(len(q.options) for q in questions).items())
        }

        logger.info("=" * 60)
        logger.info("EXTRACTION REPORT")
        logger.info("=" * 60)
        logger.info(f"Mode: {report.mode.value}")
        logger.info(f"Total Questions: {report.total_questions}")
        logger.info(f"Dropped Candidates: {report.dropped_candidates}")
        logger.info(f"Questions With Images: {report.questions_with_images}")
        logger.info(f"Options With Images: {report.options_with_images}")
        if report.questions_without_text:
            logger.warning(
                f"Questions Without Text: {report.questions_without_text}"
            )
        logger.info("=" * 60)

        return report
