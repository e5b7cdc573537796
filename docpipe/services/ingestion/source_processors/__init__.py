"""Format-specific text extractors.

Each processor exposes ``format_name`` and ``extract_pages(data) ->
list[str]`` and raises :class:`UnreadableDocumentError` when the bytes
cannot be parsed.  :class:`~docpipe.services.ingestion.extractor.DocumentExtractor`
chooses one by file extension or magic bytes.
"""

from docpipe.services.ingestion.source_processors.docx_processor import DocxProcessor
from docpipe.services.ingestion.source_processors.pdf_processor import PDFProcessor
from docpipe.services.ingestion.source_processors.text_processor import TextProcessor
from docpipe.services.ingestion.source_processors.xlsx_processor import XlsxProcessor

__all__ = ["DocxProcessor", "PDFProcessor", "TextProcessor", "XlsxProcessor"]
