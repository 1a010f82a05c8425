"""Tests for text extraction and chunking."""

import io

import pytest
from docx import Document

from shared.helper.text_chunker import (
    MIME_DEFAULT,
    MIME_DOCX,
    MIME_PDF,
    chunk_text,
    extract_text,
    get_mime_type,
    process_file_for_indexing,
)
from conftest import CHARACTER_ID, USER_ID


# =============================================================================
# MIME detection
# =============================================================================

class TestMimeType:

    def test_known_extensions(self):
        assert get_mime_type("notes.md") == "text/markdown"
        assert get_mime_type("REPORT.PDF") == MIME_PDF
        assert get_mime_type("letter.docx") == MIME_DOCX
        assert get_mime_type("config.yml") == "text/yaml"

    def test_unknown_or_missing_extension(self):
        assert get_mime_type("archive.xyz") == MIME_DEFAULT
        assert get_mime_type("Makefile") == MIME_DEFAULT


# =============================================================================
# Chunking
# =============================================================================

class TestChunkText:

    def test_blank_text_yields_no_chunks(self):
        assert chunk_text("", 100, 10) == []
        assert chunk_text("   \n\t  ", 100, 10) == []

    def test_short_text_is_a_single_chunk(self):
        chunks = chunk_text("  Hello world.  ", 100, 10)
        assert len(chunks) == 1
        assert chunks[0].content == "Hello world."
        assert (chunks[0].index, chunks[0].start_char, chunks[0].end_char) == (0, 0, 12)

    def test_normalizes_line_endings_tabs_and_spaces(self):
        chunks = chunk_text("a\r\nb\tc    d\re", 100, 10)
        assert chunks[0].content == "a\nb c d\ne"

    def test_breaks_after_sentence(self):
        text = "".join(f"Sentence number {i} is here. " for i in range(40))
        chunks = chunk_text(text, 100, 10)

        assert chunks[0].content.endswith(".")
        assert chunks[0].end_char == 80

    def test_windows_overlap_and_cover_the_text(self):
        text = "".join(f"Sentence number {i} is here. " for i in range(40))
        normalized = text.strip()
        chunks = chunk_text(text, 100, 10)

        assert len(chunks) > 1
        assert [c.index for c in chunks] == list(range(len(chunks)))
        assert chunks[0].start_char == 0
        assert chunks[-1].end_char == len(normalized)
        for previous, current in zip(chunks, chunks[1:]):
            assert current.start_char == previous.end_char - 10
        assert all(len(c.content) <= 100 for c in chunks)

    def test_prefers_latest_boundary_in_window(self):
        text = "a" * 60 + "\n\n" + "b" * 27 + ". " + "c" * 200
        chunks = chunk_text(text, 100, 10)

        assert chunks[0].end_char == 90
        assert chunks[0].content.endswith("b.")

    def test_ignores_boundaries_in_first_half(self):
        text = "a" * 20 + ". " + "b" * 300
        chunks = chunk_text(text, 100, 10)

        assert chunks[0].end_char == 100

    def test_hard_cut_without_boundaries(self):
        chunks = chunk_text("x" * 250, 100, 10)

        assert [(c.start_char, c.end_char) for c in chunks] == [(0, 100), (90, 190), (180, 250)]

    def test_oversized_overlap_still_terminates(self):
        chunks = chunk_text("x" * 30, 10, 50)

        assert chunks[-1].end_char == 30
        starts = [c.start_char for c in chunks]
        assert starts == sorted(set(starts))


# =============================================================================
# Extraction
# =============================================================================

class TestExtractText:

    @pytest.mark.asyncio
    async def test_plain_text_is_decoded_with_replacement(self, storage):
        stored = await storage.store(USER_ID, CHARACTER_ID, "Grüße\n".encode("utf-8") + b"\xff", "notes.txt", "text/plain")

        text = await extract_text(storage, stored.path, "text/plain")

        assert text.startswith("Grüße\n")
        assert "�" in text

    @pytest.mark.asyncio
    async def test_unknown_type_is_decoded_as_utf8(self, storage):
        stored = await storage.store(USER_ID, CHARACTER_ID, b"raw bytes", "blob.bin", MIME_DEFAULT)

        assert await extract_text(storage, stored.path, None) == "raw bytes"

    @pytest.mark.asyncio
    async def test_unparseable_pdf_falls_back_to_printable_bytes(self, storage):
        stored = await storage.store(USER_ID, CHARACTER_ID, b"%PDF-1.4 Hello\x00\x01 World", "broken.pdf", MIME_PDF)

        text = await extract_text(storage, stored.path, MIME_PDF)

        assert "Hello World" in text
        assert "\x00" not in text

    @pytest.mark.asyncio
    async def test_docx_paragraphs(self, storage):
        document = Document()
        document.add_paragraph("First paragraph.")
        document.add_paragraph("Second paragraph.")
        buffer = io.BytesIO()
        document.save(buffer)
        stored = await storage.store(USER_ID, CHARACTER_ID, buffer.getvalue(), "doc.docx", MIME_DOCX)

        text = await extract_text(storage, stored.path, MIME_DOCX)

        assert text == "First paragraph.\n\nSecond paragraph."

    @pytest.mark.asyncio
    async def test_unparseable_docx_falls_back_to_text_runs(self, storage):
        data = b'<w:t>Hello</w:t><w:t xml:space="preserve">World</w:t>'
        stored = await storage.store(USER_ID, CHARACTER_ID, data, "broken.docx", MIME_DOCX)

        assert await extract_text(storage, stored.path, MIME_DOCX) == "Hello World"

    @pytest.mark.asyncio
    async def test_process_file_for_indexing(self, storage):
        stored = await storage.store(USER_ID, CHARACTER_ID, b"x" * 250, "long.txt", "text/plain")

        chunks = await process_file_for_indexing(storage, stored.path, "text/plain", chunk_size=100, overlap=10)

        assert len(chunks) == 3
