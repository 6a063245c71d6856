"""
Page Content Extractor
======================
Extracts positioned text runs and raster images from PDF pages using
PyMuPDF (fitz).

All coordinates are converted to PDF user space (origin bottom-left,
y grows upward) so later stages never mix conventions.
"""

from __future__ import annotations

import base64
import logging
import os
from pathlib import Path
from typing import Callable, Optional, Union

import fitz  # PyMuPDF

from .exceptions import DocumentUnreadableError
from .models import ImageBlock, TextRun

logger = logging.getLogger(__name__)

PdfSource = Union[str, os.PathLike, bytes]


def image_placement(
    info: dict, page_height: float
) -> tuple[float, float, float, float]:
    """
    Return the painted image box as (x, top_y, width, height) in PDF
    user space.

    PyMuPDF reports `bbox` as the unit square mapped through the paint
    transform (top-left origin, y down). Without it the raw transform is
    applied; without either, identity.
    """
    if info.get("bbox"):
        rect = fitz.Rect(info["bbox"])
    else:
        transform = info.get("transform")
        matrix = fitz.Matrix(transform) if transform else fitz.Identity
        rect = fitz.Rect(0, 0, 1, 1) * matrix
    return rect.x0, page_height - rect.y0, rect.width, rect.height


class PageContentExtractor:
    """
    Handles PDF ingestion and per-page content extraction.

    Extracts:
        - Text runs (one per span) with baseline position and size
        - Images decoded to RGBA PNG data URLs with page-space boxes
    """

    def __init__(
        self,
        min_image_size: int = 30,
        log: Optional[Callable[[str], None]] = None,
    ):
        self.min_image_size = min_image_size
        self._log = log or (lambda msg: None)

    def open_document(self, source: PdfSource) -> fitz.Document:
        """
        Open a PDF from a path or byte buffer.

        Raises:
            DocumentUnreadableError: If the document cannot be loaded.
        """
        label = "<bytes>" if isinstance(source, bytes) else str(source)
        try:
            if isinstance(source, bytes):
                doc = fitz.open(stream=source, filetype="pdf")
            else:
                if not Path(source).exists():
                    raise DocumentUnreadableError(
                        f"PDF not found: {source}", source=label
                    )
                doc = fitz.open(str(source))
        except DocumentUnreadableError:
            raise
        except Exception as e:
            raise DocumentUnreadableError(
                f"Cannot open PDF {label}: {e}", source=label
            ) from e

        if not doc.is_pdf or doc.page_count == 0:
            doc.close()
            raise DocumentUnreadableError(
                f"Not a readable PDF: {label}", source=label
            )
        return doc

    def extract_page(
        self, page: fitz.Page, page_number: int
    ) -> tuple[list[TextRun], list[ImageBlock]]:
        """Extract text runs and image blocks from a single page."""
        runs = self._extract_text_runs(page, page_number)
        self._log(f"Page {page_number}: Found {len(runs)} text items")

        images = self._extract_images(page, page_number)
        self._log(f"Page {page_number}: Found {len(images)} images")

        return runs, images

    def _extract_text_runs(
        self, page: fitz.Page, page_number: int
    ) -> list[TextRun]:
        page_height = page.rect.height
        runs: list[TextRun] = []

        page_dict = page.get_text("dict", flags=fitz.TEXTFLAGS_DICT)
        for block in page_dict.get("blocks", []):
            if block.get("type") != 0:  # Text only
                continue
            for line in block.get("lines", []):
                spans = line.get("spans", [])
                for idx, span in enumerate(spans):
                    text = span.get("text", "")
                    if not text:
                        continue
                    x0, y0, x1, y1 = span["bbox"]
                    origin_x, origin_y = span.get("origin", (x0, y1))
                    runs.append(TextRun(
                        content=text,
                        x=origin_x,
                        y=page_height - origin_y,
                        width=x1 - x0,
                        height=y1 - y0,
                        ends_line=idx == len(spans) - 1,
                        page_number=page_number,
                    ))
        return runs

    def _extract_images(
        self, page: fitz.Page, page_number: int
    ) -> list[ImageBlock]:
        """Replay the page's image paints in order and decode each one."""
        doc = page.parent
        page_height = page.rect.height
        images: list[ImageBlock] = []

        for info in page.get_image_info(xrefs=True):
            xref = info.get("xref", 0)
            width, height = info.get("width", 0), info.get("height", 0)

            # Bullets / icons
            if width < self.min_image_size or height < self.min_image_size:
                continue

            if not xref:
                logger.debug(
                    f"Skipping inline image without xref on page {page_number}"
                )
                continue

            try:
                src = self._decode_image(doc, xref)
            except Exception as e:
                logger.warning(
                    f"Failed decoding image {xref} on page {page_number}: {e}"
                )
                continue

            if src is None:
                continue

            x, y, w, h = image_placement(info, page_height)
            images.append(ImageBlock(
                src=src,
                x=x,
                y=y,
                width=w,
                height=h,
                page_number=page_number,
            ))

        return images

    def _decode_image(self, doc: fitz.Document, xref: int) -> Optional[str]:
        """
        Decode an image object into an RGBA PNG data URL.
        Returns None for unsupported pixel formats or undersized images.
        """
        pix = fitz.Pixmap(doc, xref)
        is_rgb = pix.colorspace is not None and pix.colorspace.n == 3
        if is_rgb and pix.alpha:
            rgba = pix
        elif is_rgb:
            rgba = fitz.Pixmap(pix, 1)  # opaque alpha
        else:
            logger.debug(
                f"Unsupported pixel format for image {xref} "
                f"(n={pix.n}, alpha={pix.alpha})"
            )
            return None

        if rgba.width < self.min_image_size or rgba.height < self.min_image_size:
            return None

        data = base64.b64encode(rgba.tobytes("png")).decode("ascii")
        return f"data:image/png;base64,{data}"
