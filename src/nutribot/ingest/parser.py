"""Parsing interfaces and concrete parsers for paginated documents."""

from __future__ import annotations

from abc import ABC, abstractmethod
from pathlib import Path

from pypdf import PdfReader
from pypdf.errors import PyPdfError

from nutribot.errors import IngestError
from nutribot.types import ParsedDocument

PAGE_BREAK = "\f"


class Parser(ABC):
    """Base parser interface used by the ingest pipeline."""

    extensions: tuple[str, ...] = ()

    @abstractmethod
    def parse(self, path: Path, *, doc_id: str | None = None) -> ParsedDocument:
        """Parse a file into per-page text + metadata."""


class TextParser(Parser):
    """Parser for plain text and markdown; form feeds separate pages."""

    extensions = (".txt", ".md", ".markdown")

    def parse(self, path: Path, *, doc_id: str | None = None) -> ParsedDocument:
        try:
            text = path.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise IngestError(f"Cannot read {path}: {exc}") from exc
        return ParsedDocument(
            doc_id=doc_id or path.stem,
            pages=text.split(PAGE_BREAK),
            metadata={"source": str(path), "format": "text"},
        )


class PdfParser(Parser):
    """Reads a PDF page by page with pypdf."""

    extensions = (".pdf",)

    def parse(self, path: Path, *, doc_id: str | None = None) -> ParsedDocument:
        try:
            reader = PdfReader(path)
            pages = [page.extract_text() or "" for page in reader.pages]
        except (PyPdfError, OSError, ValueError) as exc:
            raise IngestError(f"Cannot parse PDF {path}: {exc}") from exc
        return ParsedDocument(
            doc_id=doc_id or path.stem,
            pages=pages,
            metadata={"source": str(path), "format": "pdf", "page_count": len(pages)},
        )


class ParserRegistry:
    """Maps file extension to parser implementation."""

    def __init__(self, parsers: list[Parser] | None = None) -> None:
        self._parsers: dict[str, Parser] = {}
        for parser in parsers or [TextParser(), PdfParser()]:
            self.register(parser)

    def register(self, parser: Parser) -> None:
        for extension in parser.extensions:
            self._parsers[extension.lower()] = parser

    def parse_path(self, path: str | Path, *, doc_id: str | None = None) -> ParsedDocument:
        file_path = Path(path)
        if not file_path.is_file():
            raise IngestError(f"Document not found: {file_path}")
        parser = self._parsers.get(file_path.suffix.lower())
        if parser is None:
            raise IngestError(f"No parser registered for extension: {file_path.suffix}")

        document = parser.parse(file_path, doc_id=doc_id)
        if not any(page.strip() for page in document.pages):
            raise IngestError(f"Document has no extractable text: {file_path}")
        return document
