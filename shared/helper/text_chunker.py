"""Text extraction and chunking for knowledge-base indexing."""

import io
import re

from docx import Document as DocxDocument
from pypdf import PdfReader

from shared.clients.storage.FileStorageInterface import FileStorageInterface
from shared.models.knowledge_base import TextChunk

MIME_PDF = "application/pdf"
MIME_DOCX = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"
MIME_DEFAULT = "application/octet-stream"

_TEXT_MIME_TYPES = {"application/json", "application/xml"}

_MIME_TYPES_BY_EXTENSION = {
    "txt": "text/plain",
    "md": "text/markdown",
    "json": "application/json",
    "pdf": MIME_PDF,
    "doc": "application/msword",
    "docx": MIME_DOCX,
    "html": "text/html",
    "htm": "text/html",
    "csv": "text/csv",
    "xml": "application/xml",
    "js": "text/javascript",
    "ts": "text/typescript",
    "py": "text/x-python",
    "java": "text/x-java",
    "c": "text/x-c",
    "cpp": "text/x-c++",
    "h": "text/x-c",
    "css": "text/css",
    "sql": "text/x-sql",
    "sh": "text/x-shellscript",
    "yaml": "text/yaml",
    "yml": "text/yaml",
}

_NON_PRINTABLE = re.compile(r"[^\x20-\x7E\n\r\t]")
_WHITESPACE_RUN = re.compile(r"\s{2,}")
_SPACE_RUN = re.compile(r" {2,}")
_DOCX_TEXT_RUN = re.compile(r"<w:t[^>]*>([^<]*)</w:t>")


def get_mime_type(file_name: str) -> str:
    """Map a file name to a MIME type by its extension, application/octet-stream if unknown."""
    ext = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    return _MIME_TYPES_BY_EXTENSION.get(ext, MIME_DEFAULT)


##########################################
############### EXTRACTION ###############
##########################################

def _decode(data: bytes) -> str:
    return data.decode("utf-8", errors="replace")


def _extract_pdf_placeholder(data: bytes) -> str:
    text = _NON_PRINTABLE.sub(" ", _decode(data))
    return _WHITESPACE_RUN.sub(" ", text)


def _extract_docx_placeholder(data: bytes) -> str:
    runs = _DOCX_TEXT_RUN.findall(_decode(data))
    return _WHITESPACE_RUN.sub(" ", " ".join(runs))


def _extract_pdf(data: bytes, logger=None) -> str:
    try:
        reader = PdfReader(io.BytesIO(data))
        text = "\n\n".join(page.extract_text() or "" for page in reader.pages).strip()
    except Exception as exc:
        if logger:
            logger.warning("PDF could not be parsed, falling back to byte filtering: %s", exc)
        return _extract_pdf_placeholder(data)
    if not text:
        if logger:
            logger.warning("PDF contains no extractable text, falling back to byte filtering.")
        return _extract_pdf_placeholder(data)
    return text


def _extract_docx(data: bytes, logger=None) -> str:
    try:
        document = DocxDocument(io.BytesIO(data))
    except Exception as exc:
        if logger:
            logger.warning("DOCX could not be parsed, falling back to tag scanning: %s", exc)
        return _extract_docx_placeholder(data)
    return "\n\n".join(p.text for p in document.paragraphs if p.text.strip())


async def extract_text(
    storage: FileStorageInterface,
    storage_path: str,
    declared_mime_type: str | None,
    logger=None,
) -> str:
    """Read a stored file and return its text content.

    Text-like types are decoded as UTF-8 with invalid bytes replaced. PDF and
    DOCX are parsed with pypdf and python-docx; if parsing fails the heuristic
    byte/tag filters are used instead. Unknown or missing types are decoded
    as UTF-8.

    Args:
        storage (FileStorageInterface): Blob store holding the file.
        storage_path (str): Path returned by the storage on upload.
        declared_mime_type (str | None): MIME type recorded for the file.
        logger: Optional logger for parser fallbacks.

    Returns:
        str: Extracted text, possibly empty.
    """
    data = await storage.read(storage_path)
    mime_type = declared_mime_type or "text/plain"

    if mime_type.startswith("text/") or mime_type in _TEXT_MIME_TYPES:
        return _decode(data)
    if mime_type == MIME_PDF:
        return _extract_pdf(data, logger)
    if mime_type == MIME_DOCX:
        return _extract_docx(data, logger)
    return _decode(data)


##########################################
################ CHUNKING ################
##########################################

def _normalize_text(text: str) -> str:
    text = text.replace("\r\n", "\n").replace("\r", "\n").replace("\t", " ")
    return _SPACE_RUN.sub(" ", text).strip()


def _find_break(text: str, start: int, end: int, chunk_size: int) -> int:
    """Latest paragraph, sentence or line boundary in the back half of the window, else end."""
    candidates = [
        text.rfind("\n\n", 0, end + 2),
        text.rfind(". ", 0, end + 2) + 1,  # cut after the period
        text.rfind("\n", 0, end + 1),
    ]
    valid = [bp for bp in candidates if start + chunk_size / 2 < bp <= end]
    return max(valid) if valid else end


def chunk_text(text: str, chunk_size: int, overlap: int) -> list[TextChunk]:
    """Split text into overlapping chunks that prefer natural boundaries.

    The text is normalized first (line endings, tabs, runs of spaces, outer
    whitespace). Offsets refer to the normalized text.

    Args:
        text (str): Raw text.
        chunk_size (int): Maximum chunk length in characters.
        overlap (int): Characters shared between adjacent windows.

    Returns:
        list[TextChunk]: Chunks in document order, empty for blank input.
    """
    chunk_size = max(1, chunk_size)
    overlap = min(max(0, overlap), chunk_size - 1)

    clean = _normalize_text(text)
    length = len(clean)
    if length == 0:
        return []
    if length <= chunk_size:
        return [TextChunk(content=clean, index=0, start_char=0, end_char=length)]

    chunks: list[TextChunk] = []
    start = 0
    while start < length:
        end = min(start + chunk_size, length)
        if end < length:
            end = _find_break(clean, start, end, chunk_size)

        content = clean[start:end].strip()
        if content:
            chunks.append(TextChunk(content=content, index=len(chunks), start_char=start, end_char=end))

        if end >= length:
            break
        # always move forward, even when the overlap would swallow a short window
        start = end - overlap if end - overlap > start else end

    return chunks


async def process_file_for_indexing(
    storage: FileStorageInterface,
    storage_path: str,
    mime_type: str | None,
    chunk_size: int,
    overlap: int,
    logger=None,
) -> list[TextChunk]:
    """Extract a stored file's text and split it into chunks."""
    text = await extract_text(storage, storage_path, mime_type, logger=logger)
    return chunk_text(text, chunk_size, overlap)
