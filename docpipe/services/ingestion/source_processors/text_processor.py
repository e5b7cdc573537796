"""Source processor for plain text and markdown files."""

from __future__ import annotations

from docpipe.utils.errors import UnreadableDocumentError


class TextProcessor:

    format_name = "text"

    def extract_pages(self, data: bytes) -> list[str]:
        """Decode as UTF-8 (BOM tolerated), falling back to Latin-1.

        A form feed (``\\f``) separates pages when present.
        """
        if b"\x00" in data[:1024]:
            raise UnreadableDocumentError(message="Binary content in a text document")
        try:
            text = data.decode("utf-8-sig")
        except UnicodeDecodeError:
            text = data.decode("latin-1")
        return [page.strip() for page in text.split("\f")]
