"""
Integration tests: small PDFs are built with PyMuPDF and pushed through
the extractor, the engine, the CLI and the HTTP service.
"""

from __future__ import annotations

import base64
import io
import json
import logging
from unittest.mock import patch

import fitz  # PyMuPDF
import pytest
from click.testing import CliRunner

from question_extractor.cli import cli
from question_extractor.engine import ParserConfig, ParserEngine
from question_extractor.exceptions import DocumentUnreadableError, RemoteExtractionError
from question_extractor.models import ExtractionMode, ImageBlock, Question, TextRun
from question_extractor.page_extractor import PageContentExtractor
from question_extractor.server import create_app

PAGE_W, PAGE_H = 595, 842


def _solid_pixmap(size: int, color=(200, 30, 30)) -> fitz.Pixmap:
    pix = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, size, size), False)
    pix.set_rect(pix.irect, color)
    return pix


def _build_pdf(pages: list[list[tuple]]) -> bytes:
    """
    Build a PDF. Each page is a list of
    ("text", x, y, string) or ("image", x0, y0, x1, y1, pixel_size | pixmap),
    with y measured from the top of the page.
    """
    doc = fitz.open()
    for entries in pages:
        page = doc.new_page(width=PAGE_W, height=PAGE_H)
        for entry in entries:
            if entry[0] == "text":
                _, x, y, text = entry
                page.insert_text((x, y), text, fontsize=11)
            else:
                _, x0, y0, x1, y1, pixmap = entry
                if not isinstance(pixmap, fitz.Pixmap):
                    pixmap = _solid_pixmap(pixmap)
                page.insert_image(fitz.Rect(x0, y0, x1, y1), pixmap=pixmap)
    data = doc.tobytes()
    doc.close()
    return data


MCQ_PAGE = [
    ("text", 72, 100, "1. What is 2+2?"),
    ("text", 72, 120, "a) 3"),
    ("text", 72, 140, "b) 4"),
    ("text", 72, 160, "c) 5"),
    ("text", 72, 180, "d) 6"),
]

DIAGRAM_PAGE = [
    ("text", 72, 100, "2. Which shape is shown?"),
    ("image", 72, 120, 172, 220, 64),
    ("text", 100, 170, "x2"),              # shadow text on the diagram
    ("image", 300, 120, 310, 130, 10),     # icon, below size threshold
    ("text", 72, 260, "a) Square"),
    ("text", 72, 280, "b) Circle"),
]


@pytest.fixture
def mcq_pdf() -> bytes:
    return _build_pdf([MCQ_PAGE])


@pytest.fixture
def two_page_pdf() -> bytes:
    return _build_pdf([MCQ_PAGE, DIAGRAM_PAGE])


@pytest.fixture
def engine() -> ParserEngine:
    return ParserEngine(ParserConfig(log_level="WARNING"))


# ═══════════════════════════════════════════════════════════════════════════════
# PAGE EXTRACTOR
# ═══════════════════════════════════════════════════════════════════════════════


class TestPageContentExtractor:

    def test_text_runs_in_user_space(self, mcq_pdf):
        extractor = PageContentExtractor()
        doc = extractor.open_document(mcq_pdf)
        try:
            runs, images = extractor.extract_page(doc[0], 1)
        finally:
            doc.close()

        assert images == []
        contents = [r.content.strip() for r in runs]
        assert contents == ["1. What is 2+2?", "a) 3", "b) 4", "c) 5", "d) 6"]
        first = runs[0]
        assert isinstance(first, TextRun)
        assert first.x == pytest.approx(72, abs=1)
        assert first.y == pytest.approx(PAGE_H - 100, abs=1)
        assert first.width > 0 and first.height > 0
        assert first.ends_line is True
        # y grows upward: later lines sit lower
        assert runs[0].y > runs[-1].y

    def test_images_decoded_and_placed(self, two_page_pdf):
        extractor = PageContentExtractor()
        doc = extractor.open_document(two_page_pdf)
        try:
            _, images = extractor.extract_page(doc[1], 2)
        finally:
            doc.close()

        assert len(images) == 1  # icon skipped
        img = images[0]
        assert isinstance(img, ImageBlock)
        assert img.src.startswith("data:image/png;base64,")
        assert img.page_number == 2
        assert img.x == pytest.approx(72, abs=1)
        assert img.y == pytest.approx(PAGE_H - 120, abs=1)
        assert img.width == pytest.approx(100, abs=1)
        assert img.height == pytest.approx(100, abs=1)

    def test_progress_messages(self, mcq_pdf):
        messages = []
        extractor = PageContentExtractor(log=messages.append)
        doc = extractor.open_document(mcq_pdf)
        try:
            extractor.extract_page(doc[0], 1)
        finally:
            doc.close()

        assert messages == ["Page 1: Found 5 text items", "Page 1: Found 0 images"]

    def test_text_outside_mediabox_clipped(self):
        pdf = _build_pdf([MCQ_PAGE + [
            ("text", 72, PAGE_H + 40, "e) below the page"),
            ("text", -300, 300, "f) left of the page"),
        ]])
        extractor = PageContentExtractor()
        doc = extractor.open_document(pdf)
        try:
            runs, _ = extractor.extract_page(doc[0], 1)
        finally:
            doc.close()

        assert [r.content.strip() for r in runs] == [
            "1. What is 2+2?", "a) 3", "b) 4", "c) 5", "d) 6",
        ]

    def test_rgba_source_keeps_its_alpha(self):
        rgba = fitz.Pixmap(fitz.csRGB, fitz.IRect(0, 0, 64, 64), True)
        rgba.set_rect(rgba.irect, (200, 30, 30, 128))
        extractor = PageContentExtractor()

        with patch(
            "question_extractor.page_extractor.fitz.Pixmap", return_value=rgba
        ) as mock_pixmap:
            src = extractor._decode_image(None, 7)

        # No alpha conversion: the only Pixmap built is the source itself
        mock_pixmap.assert_called_once_with(None, 7)
        decoded = fitz.Pixmap(base64.b64decode(src.split(",", 1)[1]))
        assert decoded.alpha == 1
        assert decoded.pixel(0, 0)[3] == 128

    def test_rgb_source_gets_opaque_alpha(self, two_page_pdf):
        extractor = PageContentExtractor()
        doc = extractor.open_document(two_page_pdf)
        try:
            _, images = extractor.extract_page(doc[1], 2)
        finally:
            doc.close()

        decoded = fitz.Pixmap(base64.b64decode(images[0].src.split(",", 1)[1]))
        assert decoded.alpha == 1
        assert decoded.pixel(0, 0)[3] == 255

    def test_unsupported_pixel_format_skipped(self):
        gray = fitz.Pixmap(fitz.csGRAY, fitz.IRect(0, 0, 64, 64), False)
        gray.set_rect(gray.irect, (128,))
        pdf = _build_pdf([MCQ_PAGE + [("image", 300, 100, 400, 200, gray)]])
        extractor = PageContentExtractor()
        doc = extractor.open_document(pdf)
        try:
            runs, images = extractor.extract_page(doc[0], 1)
        finally:
            doc.close()

        assert images == []
        assert len(runs) == 5

    def test_failed_decode_skips_only_that_image(self, caplog):
        pdf = _build_pdf([MCQ_PAGE + [
            ("image", 300, 100, 400, 200, 64),
            ("image", 300, 300, 400, 400, _solid_pixmap(64, (30, 30, 200))),
        ]])
        real_decode = PageContentExtractor._decode_image
        calls = []

        def flaky_decode(self, doc, xref):
            calls.append(xref)
            if len(calls) == 1:
                raise RuntimeError("corrupt image stream")
            return real_decode(self, doc, xref)

        extractor = PageContentExtractor()
        doc = extractor.open_document(pdf)
        try:
            with patch.object(
                PageContentExtractor, "_decode_image",
                autospec=True, side_effect=flaky_decode,
            ), caplog.at_level(logging.WARNING, logger="question_extractor"):
                runs, images = extractor.extract_page(doc[0], 1)
        finally:
            doc.close()

        assert len(calls) == 2
        assert len(images) == 1
        assert images[0].src.startswith("data:image/png;base64,")
        assert [r.content.strip() for r in runs] == [
            "1. What is 2+2?", "a) 3", "b) 4", "c) 5", "d) 6",
        ]
        assert f"Failed decoding image {calls[0]} on page 1" in caplog.text
        assert "corrupt image stream" in caplog.text

    @pytest.mark.parametrize("source", [b"", b"definitely not a pdf"])
    def test_unreadable_bytes(self, source):
        with pytest.raises(DocumentUnreadableError):
            PageContentExtractor().open_document(source)

    def test_missing_file(self, tmp_path):
        with pytest.raises(DocumentUnreadableError):
            PageContentExtractor().open_document(tmp_path / "missing.pdf")


# ═══════════════════════════════════════════════════════════════════════════════
# ENGINE
# ═══════════════════════════════════════════════════════════════════════════════


class TestParserEngine:

    def test_single_question(self, engine, mcq_pdf):
        result = engine.parse(mcq_pdf)

        assert result.mode == ExtractionMode.STRICT
        assert result.document.total_pages == 1
        assert len(result.questions) == 1
        q = result.questions[0]
        assert q.text == "1. What is 2+2?"
        assert [o.text for o in q.options] == ["a) 3", "b) 4", "c) 5", "d) 6"]
        assert all(not o.is_correct for o in q.options)

    def test_diagram_attached_and_shadow_text_removed(self, engine, two_page_pdf):
        messages = []
        result = engine.parse(two_page_pdf, progress_callback=messages.append)

        assert [q.text for q in result.questions] == [
            "1. What is 2+2?",
            "2. Which shape is shown?",
        ]
        diagram_q = result.questions[1]
        assert diagram_q.image is not None
        assert diagram_q.image.startswith("data:image/png;base64,")
        assert all("x2" not in o.text for o in diagram_q.options)
        assert "x2" not in diagram_q.text
        assert "Page 2: Filtered 1 overlapping text items" in messages
        assert messages[-1] == "Found 2 questions"
        assert result.parse_version.raw_item_count - result.parse_version.filtered_item_count == 1

    def test_idempotent(self, engine, two_page_pdf):
        first = engine.parse(two_page_pdf).questions
        second = engine.parse(two_page_pdf).questions

        def content(qs):
            return [
                (q.text, q.image, [(o.text, o.image) for o in q.options])
                for q in qs
            ]

        assert content(first) == content(second)

    def test_fallback_document(self, engine):
        pdf = _build_pdf([[
            ("text", 72, 100, "Some long introductory paragraph with no numbering."),
        ]])

        result = engine.parse(pdf)

        assert result.mode == ExtractionMode.FALLBACK
        assert len(result.questions) == 1
        assert [o.text for o in result.questions[0].options] == [
            "Option A", "Option B", "Option C", "Option D",
        ]

    def test_no_questions_is_not_an_error(self, engine):
        result = engine.parse(_build_pdf([[("text", 72, 100, "Hi")]]))

        assert result.questions == []
        assert result.mode == ExtractionMode.NONE
        assert result.report.empty is True

    def test_unreadable_document(self, engine):
        with pytest.raises(DocumentUnreadableError):
            engine.parse(b"%PDF-garbage")

    def test_path_source_and_snapshots(self, tmp_path, two_page_pdf):
        pdf_path = tmp_path / "mock exam.pdf"
        pdf_path.write_bytes(two_page_pdf)
        out_dir = tmp_path / "out"
        engine = ParserEngine(ParserConfig(
            output_dir=str(out_dir),
            save_raw_items=True,
            log_level="WARNING",
        ))

        questions = engine.extract_questions(str(pdf_path))

        assert len(questions) == 2
        parsed = json.loads((out_dir / "mock_exam_parsed.json").read_text(encoding="utf-8"))
        assert parsed["document"]["source_pdf"] == "mock exam.pdf"
        assert len(parsed["questions"]) == 2
        raw = json.loads((out_dir / "mock_exam_raw_items.json").read_text(encoding="utf-8"))
        assert {item["type"] for item in raw} == {"text", "image"}


# ═══════════════════════════════════════════════════════════════════════════════
# CLI
# ═══════════════════════════════════════════════════════════════════════════════


class TestCli:

    def test_parse_json_output(self, tmp_path, mcq_pdf):
        pdf_path = tmp_path / "exam.pdf"
        pdf_path.write_bytes(mcq_pdf)

        result = CliRunner().invoke(cli, ["parse", str(pdf_path), "--json-output"])

        assert result.exit_code == 0, result.output
        data = json.loads(result.stdout)
        assert data["mode"] == "strict"
        assert data["questions"][0]["text"] == "1. What is 2+2?"

    def test_parse_table_output(self, tmp_path, mcq_pdf):
        pdf_path = tmp_path / "exam.pdf"
        pdf_path.write_bytes(mcq_pdf)

        result = CliRunner().invoke(cli, ["parse", str(pdf_path), "--log-level", "ERROR"])

        assert result.exit_code == 0, result.output
        assert "Found 1 Questions" in result.output

    def test_parse_unreadable(self, tmp_path):
        pdf_path = tmp_path / "broken.pdf"
        pdf_path.write_bytes(b"not a pdf")

        result = CliRunner().invoke(cli, ["parse", str(pdf_path), "--log-level", "ERROR"])

        assert result.exit_code == 1
        assert "Document unreadable" in result.output

    def test_ai_extract_remote_error(self, tmp_path, mcq_pdf):
        pdf_path = tmp_path / "exam.pdf"
        pdf_path.write_bytes(mcq_pdf)

        with patch(
            "question_extractor.cli.GeminiExtractor.extract",
            side_effect=RemoteExtractionError("API Error: 500", status_code=500),
        ):
            result = CliRunner().invoke(
                cli, ["ai-extract", str(pdf_path), "--api-key", "k"]
            )

        assert result.exit_code == 1
        assert "Remote service error" in result.output


# ═══════════════════════════════════════════════════════════════════════════════
# HTTP SERVICE
# ═══════════════════════════════════════════════════════════════════════════════


@pytest.fixture
def client():
    app = create_app({"TESTING": True, "LOG_LEVEL": "WARNING", "GEMINI_API_KEY": "k"})
    return app.test_client()


def _upload(client, data: bytes, mimetype: str = "application/pdf", **form):
    return client.post(
        "/api/extract",
        data={"file": (io.BytesIO(data), "exam.pdf", mimetype), **form},
        content_type="multipart/form-data",
    )


class TestServer:

    def test_health(self, client):
        resp = client.get("/api/health")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "healthy"

    def test_missing_file(self, client):
        resp = client.post("/api/extract", data={}, content_type="multipart/form-data")
        assert resp.status_code == 400

    def test_rejects_non_pdf_mime(self, client, mcq_pdf):
        resp = _upload(client, mcq_pdf, mimetype="text/plain")
        assert resp.status_code == 415

    def test_unreadable_pdf(self, client):
        resp = _upload(client, b"garbage")
        assert resp.status_code == 422
        assert resp.get_json()["error"] == "Document unreadable"

    def test_heuristic_extract(self, client, two_page_pdf):
        resp = _upload(client, two_page_pdf)

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["total_questions"] == 2
        assert body["total_pages"] == 2
        assert body["mode"] == "strict"
        assert body["questions"][1]["image"].startswith("data:image/png;base64,")
        assert "Found 2 questions" in body["logs"]

    def test_no_questions_message(self, client):
        resp = _upload(client, _build_pdf([[("text", 72, 100, "Hi")]]))

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["total_questions"] == 0
        assert body["message"] == "No questions detected"

    def test_ai_extract(self, client, mcq_pdf):
        questions = [Question(text="Q", multi_select=True)]
        with patch(
            "question_extractor.server.GeminiExtractor.extract",
            return_value=questions,
        ):
            resp = _upload(client, mcq_pdf, method="ai")

        assert resp.status_code == 200
        body = resp.get_json()
        assert body["mode"] == "remote"
        assert body["questions"][0]["multi_select"] is True

    def test_ai_remote_failure(self, client, mcq_pdf):
        with patch(
            "question_extractor.server.GeminiExtractor.extract",
            side_effect=RemoteExtractionError("quota", status_code=429),
        ):
            resp = _upload(client, mcq_pdf, method="ai")

        assert resp.status_code == 502
        assert resp.get_json()["status_code"] == 429


@pytest.fixture
def bare_client(monkeypatch):
    """Client for the module-level app as served directly, without create_app()."""
    from question_extractor import server

    for key in ("GEMINI_API_KEY", "GEMINI_MODEL", "MIN_IMAGE_SIZE", "OUTPUT_DIR", "LOG_LEVEL"):
        monkeypatch.delitem(server.app.config, key, raising=False)
    return server.app.test_client()


class TestServerWithoutFactory:

    def test_heuristic_extract(self, bare_client, mcq_pdf):
        resp = _upload(bare_client, mcq_pdf)

        assert resp.status_code == 200
        assert resp.get_json()["total_questions"] == 1

    def test_ai_extract_reads_key_from_environment(self, bare_client, mcq_pdf, monkeypatch):
        monkeypatch.setenv("GEMINI_API_KEY", "env-key")
        with patch("question_extractor.server.GeminiExtractor") as mock_cls:
            mock_cls.return_value.extract.return_value = []
            resp = _upload(bare_client, mcq_pdf, method="ai")

        assert resp.status_code == 200
        assert resp.get_json()["mode"] == "remote"
        remote_config = mock_cls.call_args.args[0]
        assert remote_config.api_key == "env-key"
        assert remote_config.model == "gemini-1.5-pro"
