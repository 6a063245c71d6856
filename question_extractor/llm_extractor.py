"""
Remote Extractor
================
Alternative extraction path: the whole PDF is sent to a remote
document-understanding model (Gemini generateContent) together with a
fixed instruction asking for a strict JSON array of questions, with the
answer key linked to each question.

Contract:
    - Up to `max_retries` attempts, sleeping backoff_seconds × attempt
      between them, on non-2xx responses or transport errors
    - Code fences are stripped before JSON parsing
    - Malformed JSON is an error, never coerced
"""

from __future__ import annotations

import base64
import json
import logging
import os
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional

import requests

from .exceptions import RemoteExtractionError, RemoteResponseError
from .models import Option, Question, QuestionType

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"

EXTRACTION_PROMPT = """
You are an expert Educational Content Digitizer.
Your task is to extract exam questions from the provided PDF document.

CRITICAL INSTRUCTION:
You have the ENTIRE PDF. You must look at the questions (usually at the start) AND the Answer Key (usually at the very end of the PDF).
You must link the matching answer to the specific question.

DATA EXTRACTION RULES:
1. **Sections**: Identify the current Subject (Physics, Chemistry, Math) and Section (Section I, Part A, etc.).
2. **Question Text**: Extract the full text. Preserve LaTeX math notation (use $...$ for inline, $$...$$ for block).
3. **Diagrams**: If a question contains a visual diagram/graph/figure, set "has_diagram" to true and append "[DIAGRAM]" to the end of the question text.
4. **Options**: Extract options. If it's an Integer type question, leave options empty.
5. **Answer Linking**: Scroll to the end of the document, find the Answer Key table, and map the correct answer to this question number.

JSON OUTPUT STRUCTURE:
Return ONLY a JSON array. No markdown formatting.
[
    {
        "id": 1,
        "section": "Physics - Section I",
        "question_number": "1",
        "question_type": "MCQ" | "MULTIMCQ" | "INTEGER" | "MATRIX",
        "question_text": "The full text of the question... [DIAGRAM]",
        "has_diagram": true,
        "options": [
            { "id": "A", "text": "Option A text", "is_correct": false },
            { "id": "B", "text": "Option B text", "is_correct": true }
        ],
        "correct_answer_value": "B",
        "explanation": "Brief explanation if context implies it"
    }
]
"""

_CODE_FENCE = re.compile(r"```(?:json)?", re.IGNORECASE)


@dataclass
class RemoteConfig:
    """Configuration for the remote extraction call."""
    api_key: str = field(default_factory=lambda: os.environ.get("GEMINI_API_KEY", ""))
    model: str = "gemini-1.5-pro"
    base_url: str = DEFAULT_BASE_URL
    max_retries: int = 5
    backoff_seconds: float = 2.0
    timeout: float = 300.0
    temperature: float = 0.1
    max_output_tokens: int = 55000


def strip_code_fences(text: str) -> str:
    return _CODE_FENCE.sub("", text).strip()


def parse_response_text(text: str) -> list[dict]:
    """
    Parse the model's text output into a list of raw question dicts.

    Raises:
        RemoteResponseError: If the text is not valid JSON, or not a list
            of question objects with object options.
    """
    try:
        data = json.loads(strip_code_fences(text))
    except json.JSONDecodeError as e:
        raise RemoteResponseError(
            f"Failed to parse remote response as JSON: {e}"
        ) from e

    entries = data if isinstance(data, list) else [data]
    for entry in entries:
        if not isinstance(entry, dict):
            raise RemoteResponseError(
                "Remote response is not a list of question objects"
            )
        options = entry.get("options") or []
        if not isinstance(options, list) or not all(
            isinstance(opt, dict) for opt in options
        ):
            raise RemoteResponseError(
                "Remote response is not a list of question objects"
            )
    return entries


def map_question(raw: dict[str, Any], index: int) -> Question:
    """Map one raw model question onto the Question shape."""
    raw_type = (raw.get("question_type") or "mcq").lower()
    raw_options = raw.get("options") or []

    options = [
        Option(
            id=str(opt.get("id") or chr(65 + idx)),
            text=str(opt.get("text") or ""),
            is_correct=bool(opt.get("is_correct", False)),
        )
        for idx, opt in enumerate(raw_options)
    ]
    multi_select = (
        raw_type == QuestionType.MULTIMCQ.value.lower()
        or sum(1 for o in options if o.is_correct) > 1
    )
    correct = raw.get("correct_answer_value")

    return Question(
        text=str(raw.get("question_text") or ""),
        multi_select=multi_select,
        options=options,
        section=raw.get("section") or "General",
        question_number=str(raw.get("question_number") or index + 1),
        question_type="mcq" if raw_type == "multimcq" else raw_type,
        has_diagram=bool(raw.get("has_diagram", False)),
        correct_answer=None if correct is None else str(correct),
        explanation=raw.get("explanation") or "",
    )


class GeminiExtractor:
    """
    Client for the remote extraction path.
    Network I/O goes through `requests`; one instance per config.
    """

    def __init__(self, config: Optional[RemoteConfig] = None):
        self.config = config or RemoteConfig()

    def extract(
        self,
        pdf_bytes: bytes,
        progress_callback: Optional[Callable[[str], None]] = None,
    ) -> list[Question]:
        """
        Send the PDF to the model and map its answer into questions.

        Raises:
            RemoteExtractionError: Missing key, exhausted retries, or an
                empty response.
            RemoteResponseError: Malformed JSON in a successful response.
        """
        def log(msg: str):
            logger.info(msg)
            if progress_callback:
                progress_callback(msg)

        if not self.config.api_key:
            raise RemoteExtractionError(
                "Gemini API key is required (set GEMINI_API_KEY)"
            )

        log("Preparing PDF for analysis...")
        payload = self.build_payload(pdf_bytes)

        log("Uploading PDF to remote model...")
        body = self._post_with_retry(payload)

        log("Analysis complete. Parsing JSON...")
        text = self._candidate_text(body)
        if not text:
            raise RemoteExtractionError("Remote model returned empty response")

        questions = [
            map_question(raw, idx)
            for idx, raw in enumerate(parse_response_text(text))
        ]
        log(f"Successfully extracted {len(questions)} questions with linked answers.")
        return questions

    def build_payload(self, pdf_bytes: bytes) -> dict:
        return {
            "contents": [{
                "parts": [
                    {"text": EXTRACTION_PROMPT},
                    {
                        "inline_data": {
                            "mime_type": "application/pdf",
                            "data": base64.b64encode(pdf_bytes).decode("ascii"),
                        }
                    },
                ]
            }],
            "generationConfig": {
                "temperature": self.config.temperature,
                "response_mime_type": "application/json",
                "maxOutputTokens": self.config.max_output_tokens,
            },
        }

    def _post_with_retry(self, payload: dict) -> dict:
        url = f"{self.config.base_url}/models/{self.config.model}:generateContent"
        last_error: Optional[RemoteExtractionError] = None

        for attempt in range(1, self.config.max_retries + 1):
            try:
                resp = requests.post(
                    url,
                    params={"key": self.config.api_key},
                    json=payload,
                    headers={"Content-Type": "application/json"},
                    timeout=self.config.timeout,
                )
                if resp.ok:
                    try:
                        return resp.json()
                    except ValueError as e:
                        raise RemoteResponseError(
                            f"Remote response is not JSON: {e}"
                        ) from e

                last_error = RemoteExtractionError(
                    self._error_message(resp), status_code=resp.status_code
                )
            except requests.exceptions.RequestException as e:
                last_error = RemoteExtractionError(f"Network error: {e}")

            logger.warning(
                f"Remote extraction attempt {attempt}/{self.config.max_retries} "
                f"failed: {last_error}"
            )
            if attempt < self.config.max_retries:
                time.sleep(self.config.backoff_seconds * attempt)

        raise last_error or RemoteExtractionError("No attempts were made")

    @staticmethod
    def _error_message(resp: requests.Response) -> str:
        try:
            message = resp.json().get("error", {}).get("message")
        except (ValueError, AttributeError):
            message = None
        return message or f"API Error: {resp.status_code}"

    @staticmethod
    def _candidate_text(body: dict) -> str:
        try:
            return body["candidates"][0]["content"]["parts"][0]["text"] or ""
        except (KeyError, IndexError, TypeError):
            return ""
