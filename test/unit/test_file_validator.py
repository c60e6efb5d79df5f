"""
Unit tests for backend/quizgen/services/file_validator.py
Tests: filename sanitisation, extension allowlist, size limits,
validate_upload metadata
Uses pytest tmp_path; no DB or network required.
"""

import sys
import os
import pytest

BACKEND_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", "..", "backend"))
sys.path.insert(0, BACKEND_DIR)

os.environ.setdefault("GOOGLE_API_KEY", "test-google-key")

from quizgen.core.errors import ValidationError
from quizgen.core.config import settings
from quizgen.services.file_validator import (
    FileValidationError,
    sanitize_filename,
    validate_extension,
    validate_file_size,
    validate_upload,
)


class TestSanitizeFilename:

    def test_plain_name_unchanged(self):
        assert sanitize_filename("biology_notes.pdf") == "biology_notes.pdf"

    def test_directories_stripped(self):
        assert sanitize_filename("/etc/uploads/notes.txt") == "notes.txt"

    def test_spaces_and_symbols_collapsed(self):
        assert sanitize_filename("my  notes (v2)!.md") == "my_notes_v2_.md"

    def test_null_bytes_removed(self):
        assert sanitize_filename("notes\x00.txt") == "notes.txt"

    def test_double_dot_rejected(self):
        with pytest.raises(FileValidationError):
            sanitize_filename("notes..txt")

    def test_long_name_truncated_keeps_extension(self):
        safe = sanitize_filename("a" * 300 + ".pdf")
        assert len(safe) <= 255
        assert safe.endswith(".pdf")


class TestValidateExtension:

    @pytest.mark.parametrize("name,ext", [
        ("notes.pdf", "pdf"),
        ("NOTES.DOCX", "docx"),
        ("readme.md", "md"),
    ])
    def test_supported(self, name, ext):
        assert validate_extension(name) == ext

    @pytest.mark.parametrize("name", ["virus.exe", "slides.pptx", "noextension"])
    def test_unsupported(self, name):
        with pytest.raises(FileValidationError, match="Unsupported file type"):
            validate_extension(name)


class TestValidateFileSize:

    def test_within_limit(self):
        validate_file_size(1024)

    def test_empty_rejected(self):
        with pytest.raises(FileValidationError, match="empty"):
            validate_file_size(0)

    def test_too_large_rejected(self):
        with pytest.raises(FileValidationError, match="too large"):
            validate_file_size(settings.max_upload_bytes + 1)


class TestValidateUpload:

    def test_valid_upload(self, tmp_path):
        path = tmp_path / "upload_123.tmp"
        path.write_text("Photosynthesis notes", encoding="utf-8")
        meta = validate_upload(str(path), filename="Bio Notes.txt")
        assert meta == {
            "original_filename": "Bio Notes.txt",
            "safe_filename": "Bio_Notes.txt",
            "file_extension": "txt",
            "file_size": 20,
        }

    def test_name_taken_from_path(self, tmp_path):
        path = tmp_path / "notes.md"
        path.write_text("# Cells", encoding="utf-8")
        assert validate_upload(str(path))["file_extension"] == "md"

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileValidationError, match="not found"):
            validate_upload(str(tmp_path / "missing.txt"))

    def test_empty_file(self, tmp_path):
        path = tmp_path / "empty.txt"
        path.write_bytes(b"")
        with pytest.raises(FileValidationError, match="empty"):
            validate_upload(str(path))

    def test_is_a_validation_error(self, tmp_path):
        path = tmp_path / "tool.exe"
        path.write_bytes(b"MZ")
        with pytest.raises(ValidationError) as exc_info:
            validate_upload(str(path))
        assert exc_info.value.code == "INVALID_FILE"
        assert exc_info.value.status_code == 400


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
