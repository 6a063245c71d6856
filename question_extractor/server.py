"""
HTTP Microservice
=================
Flask-based HTTP API used by the exam-authoring frontend to import
questions from an uploaded PDF.

Endpoints:
    POST   /api/extract   → Extract questions from an uploaded PDF
    GET    /api/health    → Health check
    GET    /api/info      → Extractor version info

Error statuses keep the outcomes apart for the UI:
    400 no file, 415 not a PDF, 422 unreadable PDF, 502 remote failure.
A document without questions is a 200 with an empty list.
"""

from __future__ import annotations

import logging
import os

from flask import Flask, jsonify, request
from flask_cors import CORS

from . import __version__
from .engine import ParserConfig, ParserEngine
from .exceptions import DocumentUnreadableError, RemoteExtractionError
from .llm_extractor import GeminiExtractor, RemoteConfig
from .models import ExtractionMode

logger = logging.getLogger(__name__)

PDF_MIME_TYPE = "application/pdf"
NO_QUESTIONS_MESSAGE = "No questions detected"

app = Flask(__name__)
CORS(app)


def create_app(config: dict = None) -> Flask:
    """Create and configure the Flask app."""
    if config:
        app.config.update(config)

    app.config.setdefault("MAX_CONTENT_LENGTH", 50 * 1024 * 1024)  # 50MB
    app.config.setdefault("OUTPUT_DIR", None)
    app.config.setdefault("MIN_IMAGE_SIZE", 30)
    app.config.setdefault("LOG_LEVEL", "INFO")
    app.config.setdefault("GEMINI_API_KEY", os.environ.get("GEMINI_API_KEY", ""))
    app.config.setdefault("GEMINI_MODEL", "gemini-1.5-pro")

    return app


# ─── Health Check ─────────────────────────────────────────────────────────────


@app.route("/api/health", methods=["GET"])
def health():
    """Health check endpoint."""
    return jsonify({
        "status": "healthy",
        "service": "question-extractor",
        "version": __version__,
    })


@app.route("/api/info", methods=["GET"])
def info():
    """Extractor version and capability info."""
    return jsonify({
        "version": __version__,
        "engine": "PyMuPDF",
        "methods": ["heuristic", "ai"],
        "capabilities": [
            "text_extraction",
            "image_extraction",
            "shadow_text_filtering",
            "question_reconstruction",
            "fallback_chunking",
            "remote_answer_linking",
        ],
        "supported_formats": ["pdf"],
    })


# ─── Extract Endpoint ─────────────────────────────────────────────────────────


@app.route("/api/extract", methods=["POST"])
def extract():
    """
    Extract questions from an uploaded PDF (multipart field `file`).

    Form fields:
        method: "heuristic" (default) or "ai"
    """
    file = request.files.get("file")
    if file is None or not file.filename:
        return jsonify({"error": "No file selected"}), 400

    if file.mimetype != PDF_MIME_TYPE:
        return jsonify({
            "error": "Please upload a valid PDF file.",
            "mimetype": file.mimetype,
        }), 415

    method = request.form.get("method", "heuristic")
    if method not in ("heuristic", "ai"):
        return jsonify({"error": f"Unknown method: {method}"}), 400

    pdf_bytes = file.read()
    logs: list[str] = []

    try:
        if method == "ai":
            extractor = GeminiExtractor(RemoteConfig(
                api_key=app.config.get(
                    "GEMINI_API_KEY", os.environ.get("GEMINI_API_KEY", "")
                ),
                model=app.config.get("GEMINI_MODEL", "gemini-1.5-pro"),
            ))
            questions = extractor.extract(pdf_bytes, progress_callback=logs.append)
            mode = ExtractionMode.REMOTE
            total_pages = None
        else:
            engine = ParserEngine(ParserConfig(
                min_image_size=app.config.get("MIN_IMAGE_SIZE", 30),
                output_dir=app.config.get("OUTPUT_DIR"),
                log_level=app.config.get("LOG_LEVEL", "INFO"),
            ))
            result = engine.parse(
                pdf_bytes,
                progress_callback=logs.append,
                source_name=file.filename,
            )
            questions = result.questions
            mode = result.mode
            total_pages = result.document.total_pages

    except DocumentUnreadableError as e:
        logger.warning(f"Unreadable upload {file.filename}: {e}")
        return jsonify({
            "error": "Document unreadable",
            "detail": str(e),
            "logs": logs,
        }), 422
    except RemoteExtractionError as e:
        logger.error(f"Remote extraction failed for {file.filename}: {e}")
        return jsonify({
            "error": "Remote service error",
            "detail": str(e),
            "status_code": e.status_code,
            "logs": logs,
        }), 502

    body = {
        "questions": [q.model_dump(mode="json") for q in questions],
        "total_questions": len(questions),
        "total_pages": total_pages,
        "mode": mode.value,
        "logs": logs,
    }
    if not questions:
        body["message"] = NO_QUESTIONS_MESSAGE
    return jsonify(body), 200


# ─── Run Server ──────────────────────────────────────────────────────────────


def run_server(
    host: str = "0.0.0.0",
    port: int = 5000,
    debug: bool = False,
):
    """Start the microservice server."""
    create_app()
    app.run(host=host, port=port, debug=debug)


if __name__ == "__main__":
    run_server(debug=True)
