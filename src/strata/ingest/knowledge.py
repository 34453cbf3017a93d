"""Extract chunkable text and embedding inputs from uploaded knowledge files."""

from __future__ import annotations

import base64
import mimetypes
from dataclasses import dataclass, field
from pathlib import Path

import fitz  # PyMuPDF
from loguru import logger

from strata.types import ContentKind, EmbeddingItem

TEXT_SUFFIXES = {".txt", ".text", ".log", ".csv", ".json", ".yaml", ".yml", ".rst", ".html", ".xml"}
MARKDOWN_SUFFIXES = {".md", ".markdown"}
IMAGE_SUFFIXES = {".png", ".jpg", ".jpeg", ".webp", ".gif", ".bmp"}
MAX_PDF_PAGE_IMAGES = 5


@dataclass
class KnowledgeExtraction:
    text: str
    kind: ContentKind = ContentKind.TEXT
    structured: bool = False
    embedding_inputs: list[EmbeddingItem] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


def extract_knowledge(path: Path | str) -> KnowledgeExtraction:
    path = Path(path)
    suffix = path.suffix.lower()
    if suffix in MARKDOWN_SUFFIXES:
        return KnowledgeExtraction(
            text=_wrap(path, "Markdown", _read_text(path)),
            structured=True,
        )
    if suffix == ".pdf":
        return _extract_pdf(path)
    if suffix in IMAGE_SUFFIXES:
        return KnowledgeExtraction(
            text=_wrap(path, "Image", "Image file; embedded from its pixels."),
            kind=ContentKind.NON_TEXT,
            embedding_inputs=[EmbeddingItem.image(_data_url(path.read_bytes(), _mime(path)))],
        )
    if suffix and suffix not in TEXT_SUFFIXES:
        logger.debug(f"Treating {path.name} as plain text")
    return KnowledgeExtraction(text=_wrap(path, "Text", _read_text(path)))


def _extract_pdf(path: Path) -> KnowledgeExtraction:
    doc = fitz.open(path)
    try:
        text = ""
        for page in doc:
            text += page.get_text("text") + "\n"
        text = text.strip()
        if text:
            return KnowledgeExtraction(text=_wrap(path, "PDF", text))

        warning = f"{path.name} has no text layer; embedding page images instead"
        logger.warning(warning)
        images = []
        for i, page in enumerate(doc):
            if i >= MAX_PDF_PAGE_IMAGES:
                break
            pix = page.get_pixmap(dpi=110)
            images.append(EmbeddingItem.image(_data_url(pix.tobytes("png"), "image/png")))
        body = f"Scanned PDF with {doc.page_count} pages and no extractable text."
        return KnowledgeExtraction(
            text=_wrap(path, "PDF (scanned)", body),
            kind=ContentKind.NON_TEXT,
            embedding_inputs=images,
            warnings=[warning],
        )
    finally:
        doc.close()


def _wrap(path: Path, label: str, body: str) -> str:
    return f"Source file: {path.name}\nFile type: {label}\n\n{body.strip()}"


def _read_text(path: Path) -> str:
    return path.read_bytes().decode("utf-8", errors="replace")


def _mime(path: Path) -> str:
    return mimetypes.guess_type(path.name)[0] or "application/octet-stream"


def _data_url(data: bytes, mime: str) -> str:
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"
