"""Plain-text extraction from uploaded knowledge-base files."""

import csv
import io
import json

import docx
from bs4 import BeautifulSoup
from openpyxl import load_workbook
from pypdf import PdfReader

from shared.errors import UnsupportedContentError

_TEXT_TYPES = ("text/plain", "text/markdown", "text/x-markdown")
_CSV_TYPES = ("text/csv", "application/csv")
_JSON_TYPES = ("application/json",)
_HTML_TYPES = ("text/html", "application/xhtml+xml")
_PDF_TYPES = ("application/pdf",)
_DOCX_TYPES = ("application/vnd.openxmlformats-officedocument.wordprocessingml.document",)
_XLSX_TYPES = ("application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",)


class ContentExtractor:
    """Turns the raw bytes of an uploaded file into plain text.

    Supports plain text, markdown, CSV, JSON, HTML, PDF, DOCX and XLSX.
    Anything else, and office files that cannot be parsed, raise
    UnsupportedContentError, which the sync counts as a failed record.
    """

    def extract_content(self, data: bytes, file_type: str | None) -> str:
        """Extract plain text from a file.

        Args:
            data (bytes): Raw file contents.
            file_type (str | None): MIME type, parameters such as "; charset=utf-8" are ignored.

        Returns:
            str: The extracted text, stripped.

        Raises:
            UnsupportedContentError: If the file type has no extractor or the file cannot be read.
        """
        mime = (file_type or "application/octet-stream").split(";")[0].strip().lower()

        # binary formats are parsed from the raw bytes
        if mime in _PDF_TYPES:
            return self._read_binary(self._extract_pdf, data, "PDF")
        if mime in _DOCX_TYPES:
            return self._read_binary(self._extract_docx, data, "DOCX")
        if mime in _XLSX_TYPES:
            return self._read_binary(self._extract_xlsx, data, "XLSX")

        text = self._decode(data)
        if mime in _TEXT_TYPES:
            return text.strip()
        if mime in _CSV_TYPES:
            return self._extract_csv(text)
        if mime in _JSON_TYPES:
            return self._extract_json(text)
        if mime in _HTML_TYPES:
            return self._extract_html(text)
        raise UnsupportedContentError(f"Unsupported file type for text extraction: '{mime}'")

    def _decode(self, data: bytes) -> str:
        try:
            return data.decode("utf-8-sig")
        except UnicodeDecodeError:
            return data.decode("latin-1")

    def _read_binary(self, extract, data: bytes, label: str) -> str:
        try:
            return extract(io.BytesIO(data)).strip()
        except Exception as exc:
            raise UnsupportedContentError(f"Could not read {label} file: {exc}") from exc

    def _extract_pdf(self, stream: io.BytesIO) -> str:
        reader = PdfReader(stream)
        pages = [page.extract_text() or "" for page in reader.pages]
        return "\n\n".join(page.strip() for page in pages if page.strip())

    def _extract_docx(self, stream: io.BytesIO) -> str:
        document = docx.Document(stream)
        blocks = [paragraph.text.strip() for paragraph in document.paragraphs]
        for table in document.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells if cell.text.strip()]
                if cells:
                    blocks.append(" | ".join(cells))
        return "\n".join(block for block in blocks if block)

    def _extract_xlsx(self, stream: io.BytesIO) -> str:
        workbook = load_workbook(stream, read_only=True, data_only=True)
        sheets = []
        try:
            for sheet in workbook.worksheets:
                rows = []
                for row in sheet.iter_rows(values_only=True):
                    cells = [str(value).strip() for value in row if value is not None and str(value).strip()]
                    if cells:
                        rows.append(" | ".join(cells))
                if rows:
                    sheets.append(f"[Sheet: {sheet.title}]\n" + "\n".join(rows))
        finally:
            workbook.close()
        return "\n\n".join(sheets)

    def _extract_csv(self, text: str) -> str:
        rows = []
        for row in csv.reader(io.StringIO(text)):
            cells = [cell.strip() for cell in row if cell and cell.strip()]
            if cells:
                rows.append(" | ".join(cells))
        return "\n".join(rows)

    def _extract_json(self, text: str) -> str:
        try:
            parsed = json.loads(text)
        except json.JSONDecodeError:
            return text.strip()
        return json.dumps(parsed, indent=2, ensure_ascii=False)

    def _extract_html(self, text: str) -> str:
        soup = BeautifulSoup(text, "html.parser")
        for tag in soup(["script", "style"]):
            tag.decompose()
        lines = [line.strip() for line in soup.get_text("\n").splitlines()]
        return "\n".join(line for line in lines if line)
