"""Source processor for Word (.docx) documents.

python-docx exposes no page layout, so a DOCX is always a single page:
paragraph text followed by table cells (one row per line, cells joined
with `` | ``).
"""

from __future__ import annotations

import io

import structlog
from docx import Document

from docpipe.utils.errors import UnreadableDocumentError

logger = structlog.get_logger(logger_name=__name__)


class DocxProcessor:

    format_name = "docx"

    def extract_pages(self, data: bytes) -> list[str]:
        try:
            doc = Document(io.BytesIO(data))
        except Exception as exc:
            logger.error("docx_open_failed", size=len(data), error=str(exc))
            raise UnreadableDocumentError(
                message=f"DOCX could not be opened: {exc}",
                provider_name="python-docx",
            ) from exc

        lines = [p.text.strip() for p in doc.paragraphs if p.text.strip()]
        for table in doc.tables:
            for row in table.rows:
                cells = [cell.text.strip() for cell in row.cells]
                if any(cells):
                    lines.append(" | ".join(cells))

        return ["\n".join(lines)]
