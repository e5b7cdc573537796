"""Source processor for Excel (.xlsx) workbooks.

Each worksheet becomes one page, headed ``=== Sheet: <name> ===`` and
followed by its rows as comma-separated values.  Formula cells contribute
their cached values (``data_only=True``).
"""

from __future__ import annotations

import csv
import io

import openpyxl
import structlog

from docpipe.utils.errors import UnreadableDocumentError

logger = structlog.get_logger(logger_name=__name__)


class XlsxProcessor:

    format_name = "xlsx"

    def extract_pages(self, data: bytes) -> list[str]:
        try:
            workbook = openpyxl.load_workbook(io.BytesIO(data), read_only=True, data_only=True)
        except Exception as exc:
            logger.error("xlsx_open_failed", size=len(data), error=str(exc))
            raise UnreadableDocumentError(
                message=f"XLSX could not be opened: {exc}",
                provider_name="openpyxl",
            ) from exc

        pages: list[str] = []
        try:
            for sheet in workbook.worksheets:
                buffer = io.StringIO()
                writer = csv.writer(buffer, lineterminator="\n")
                for row in sheet.iter_rows(values_only=True):
                    if all(value is None for value in row):
                        continue
                    writer.writerow(["" if value is None else value for value in row])
                pages.append(f"=== Sheet: {sheet.title} ===\n\n{buffer.getvalue().strip()}")
        finally:
            workbook.close()

        logger.debug("xlsx_sheets_extracted", sheets=len(pages))
        return pages
