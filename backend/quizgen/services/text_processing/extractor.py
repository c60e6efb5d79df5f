"""Text extraction from uploaded documents.

Every extractor returns a standard ``ExtractionResult`` dict:

    {
      "text":        str,
      "status":      "success" | "failed",
      "source":      str,
      "word_count":  int,
      "metadata":    dict,
      "error":       str | None,   # only on failure
    }

Extraction is blocking I/O; async callers run it via ``asyncio.to_thread``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Any, Callable, Dict

import chardet

logger = logging.getLogger(__name__)

# Type alias
ExtractionResult = Dict[str, Any]


# ── Result builders ───────────────────────────────────────────────────────────


def _ok(text: str, source: str, **metadata) -> ExtractionResult:
    text = text.replace("\x00", "").strip()
    return {
        "text":       text,
        "status":     "success",
        "source":     source,
        "word_count": len(text.split()) if text else 0,
        "metadata":   metadata,
    }


def _fail(source: str, error: str) -> ExtractionResult:
    return {
        "text":     "",
        "status":   "failed",
        "source":   source,
        "error":    error,
        "metadata": {},
    }


# ── Extractor registry ────────────────────────────────────────────────────────

_DOC_EXTRACTORS: Dict[str, Callable[[str], ExtractionResult]] = {}


def _register(*exts: str):
    """Decorator: register an extractor for one or more file extensions."""
    def wrapper(fn):
        for ext in exts:
            _DOC_EXTRACTORS[ext] = fn
        return fn
    return wrapper


# ── Format extractors ─────────────────────────────────────────────────────────


@_register("pdf")
def _extract_pdf(path: str) -> ExtractionResult:
    from pypdf import PdfReader

    reader = PdfReader(path)
    pages = []
    for page in reader.pages:
        page_text = page.extract_text() or ""
        if page_text.strip():
            pages.append(page_text)
    return _ok("\n".join(pages), path, pages=len(reader.pages), method="pypdf")


@_register("docx", "doc")
def _extract_word(path: str) -> ExtractionResult:
    """DOCX paragraphs and tables via python-docx."""
    from docx import Document

    doc = Document(path)
    parts = [p.text.strip() for p in doc.paragraphs if p.text.strip()]
    for table in doc.tables:
        rows = []
        for i, row in enumerate(table.rows):
            cells = [c.text.strip() for c in row.cells]
            if any(cells):
                rows.append("| " + " | ".join(cells) + " |")
                if i == 0:
                    rows.append("|" + "|".join(["---"] * len(cells)) + "|")
        if rows:
            parts.append("\n" + "\n".join(rows) + "\n")
    return _ok("\n".join(parts), path, paragraphs=len(doc.paragraphs), method="python-docx")


@_register("txt", "md")
def _extract_text_file(path: str) -> ExtractionResult:
    """Plain text and Markdown."""
    raw = Path(path).read_bytes()
    enc = chardet.detect(raw).get("encoding") or "utf-8"
    text = raw.decode(enc, errors="replace")
    return _ok(text, path, encoding=enc, method="chardet")


# ── Generic text fallback ─────────────────────────────────────────────────────


def _generic_text_fallback(path: str) -> ExtractionResult:
    """Last-resort: try to read any file as text. Fails if alpha ratio < 5%."""
    raw = Path(path).read_bytes()
    enc = chardet.detect(raw).get("encoding") or "utf-8"
    text = raw.decode(enc, errors="replace").replace("\x00", "")

    alpha = sum(c.isalpha() for c in text) / len(text) if text else 0
    if alpha < 0.05:
        return _fail(
            path,
            f"File appears to be binary (alpha ratio={alpha:.3f}). "
            "No readable text content could be extracted.",
        )
    return _ok(text, path, encoding=enc, method="generic_fallback")


# ── Public API ────────────────────────────────────────────────────────────────


def extract_document(path: str) -> ExtractionResult:
    """Extract text from a local document, choosing the extractor by extension."""
    if not os.path.exists(path):
        return _fail(path, f"File not found: {path}")

    ext = Path(path).suffix.lower().lstrip(".")
    logger.info("Extracting file: %s  ext=%s", path, ext)

    extractor_fn = _DOC_EXTRACTORS.get(ext)
    try:
        if extractor_fn is None:
            logger.info("No registered extractor for ext=%s; trying generic text fallback", ext)
            return _generic_text_fallback(path)
        try:
            return extractor_fn(path)
        except Exception as exc:
            # Legacy .doc files and mislabelled uploads land here
            logger.warning("Registered extractor for %s failed: %s; trying generic fallback", ext, exc)
            return _generic_text_fallback(path)
    except OSError as exc:
        logger.error("Extraction failed for %s: %s", path, exc)
        return _fail(path, str(exc))