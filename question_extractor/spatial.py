"""
Spatial Deduplicator / Merger
=============================
Removes short text fragments lying on top of images (OCR shadow text
under formula graphics) and merges all pages into one reading order.

Pure data transformation: no I/O, deterministic.
"""

from __future__ import annotations

import logging
from typing import Sequence

from .models import ContentItem, ImageBlock, TextRun

logger = logging.getLogger(__name__)

# Fallback box size for runs reporting zero width / height
DEFAULT_RUN_WIDTH = 50.0
DEFAULT_RUN_HEIGHT = 10.0


def overlaps_image(run: TextRun, image: ImageBlock) -> bool:
    """
    Bounding-box intersection in PDF user space (y up).

    The run spans x .. x + width and y .. y + height (baseline upward).
    The image is anchored at its top-left corner, so it spans
    x .. x + width and y - height .. y. Touching edges count as overlap.
    """
    run_right = run.x + (run.width or DEFAULT_RUN_WIDTH)
    run_top = run.y + (run.height or DEFAULT_RUN_HEIGHT)
    image_right = image.x + image.width
    image_bottom = image.y - image.height

    x_overlap = not (run.x > image_right or run_right < image.x)
    y_overlap = not (run.y > image.y or run_top < image_bottom)
    return x_overlap and y_overlap


def filter_shadow_text(
    runs: Sequence[TextRun],
    images: Sequence[ImageBlock],
    max_length: int = 5,
) -> tuple[list[TextRun], int]:
    """
    Drop short runs overlapping any image on the same page.
    Runs of max_length characters or more are kept (captions).

    Returns:
        (kept runs, number removed)
    """
    if not images:
        return list(runs), 0

    kept = [
        run for run in runs
        if len(run.content.strip()) >= max_length
        or not any(overlaps_image(run, img) for img in images)
    ]
    return kept, len(runs) - len(kept)


def merge_pages(pages: Sequence[Sequence[ContentItem]]) -> list[ContentItem]:
    """
    Merge per-page item lists into a single reading-order stream.

    Pages stay in document order; within a page items run top-to-bottom
    (descending y), then left-to-right (ascending x). Ties keep their
    original relative order. Multi-column layouts interleave here.
    """
    keyed = [
        (page_idx, item)
        for page_idx, items in enumerate(pages)
        for item in items
    ]
    keyed.sort(key=lambda pair: (pair[0], -pair[1].y, pair[1].x))
    return [item for _, item in keyed]
