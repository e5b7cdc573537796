"""Chunking strategies: fixed character windows and LLM-driven sections.

Both strategies implement :class:`~docpipe.interfaces.chunking_strategy.IChunkingStrategy`
and emit :class:`~docpipe.models.chunk.ChunkDraft` objects whose
``chunk_index``, ``token_count`` and ``page_number`` are final.

1. **DeterministicChunkingStrategy** -- contiguous, non-overlapping
   windows of ``window_chars`` characters covering the whole text.  Title,
   summary and keywords come from the window text itself.

2. **SemanticChunkingStrategy** -- the text is cut into raw blocks of
   ``block_chars`` characters and each block is sent to the LLM, which
   returns a JSON array of sections.  Responses are parsed defensively: the
   array is located with a regex, typographic quotes are normalised, and
   each item is validated on its own.  A block whose response cannot be
   used at all is dropped and counted.  If every block is dropped the
   whole document falls back to deterministic windows.
"""

from __future__ import annotations

import asyncio
import json
import re
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from docpipe.interfaces.chunking_strategy import IChunkingStrategy
from docpipe.models.chunk import ChunkDraft, ChunkingResult
from docpipe.utils.concurrency import settle_all
from docpipe.utils.errors import ChunkingError, ConfigurationError
from docpipe.utils.text import (
    estimate_tokens,
    extract_keywords,
    heuristic_summary,
    heuristic_title,
    infer_page_number,
    normalize_quotes,
)

if TYPE_CHECKING:
    from docpipe.config.app_config import ChunkingConfig
    from docpipe.interfaces.llm_provider import ILLMProvider

logger = structlog.get_logger(logger_name=__name__)

_JSON_ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)

_SEGMENT_SYSTEM_PROMPT = (
    "You split documents into coherent sections for a retrieval index. "
    "Respond with a JSON array only, no prose."
)

_SEGMENT_USER_PROMPT = """Split the text below into sections of roughly 150-300 words each,
following the document's own structure where it has one.

Return a JSON array where every element has exactly these keys:
  "section_title": short title for the section
  "content": the section text, copied from the input
  "summary": one or two sentence summary
  "keywords": list of up to 7 keywords
  "section_level": 1 for top-level sections, 2 for subsections, and so on
  "start_char": offset of the section's first character in the text below
  "end_char": offset one past the section's last character

TEXT:
{text}"""


class DeterministicChunkingStrategy(IChunkingStrategy):
    """Fixed-size character windows with heuristic metadata.

    Parameters
    ----------
    window_chars:
        Characters per window (default 1000).  The last window may be
        shorter.
    """

    def __init__(self, window_chars: int = 1000) -> None:
        if window_chars < 1:
            raise ConfigurationError(message="window_chars must be positive")
        self._window_chars = window_chars

    def get_strategy_name(self) -> str:
        return "deterministic"

    async def chunk(self, text: str, page_boundaries: list[int]) -> ChunkingResult:
        return ChunkingResult(
            chunks=self.split(text, page_boundaries),
            strategy=self.get_strategy_name(),
        )

    def split(self, text: str, page_boundaries: list[int]) -> list[ChunkDraft]:
        """Synchronous core of :meth:`chunk`, also used as semantic fallback."""
        drafts: list[ChunkDraft] = []
        for start in range(0, len(text), self._window_chars):
            window = text[start : start + self._window_chars]
            # Whitespace-only windows carry nothing worth indexing.
            if not window.strip():
                continue
            drafts.append(
                ChunkDraft(
                    chunk_index=len(drafts),
                    content=window,
                    token_count=estimate_tokens(window),
                    start_char=start,
                    end_char=start + len(window),
                    page_number=infer_page_number(start, page_boundaries),
                    section_title=heuristic_title(window),
                    summary=heuristic_summary(window),
                    keywords=extract_keywords(window),
                )
            )
        return drafts


class _SemanticSection(BaseModel):
    """One element of the LLM's JSON array, before offsetting."""

    model_config = ConfigDict(extra="ignore")

    section_title: str = ""
    content: str = Field(min_length=1)
    summary: str = ""
    keywords: list[str] = Field(default_factory=list)
    section_level: int = Field(default=1, ge=1)
    start_char: int = 0
    end_char: int = 0

    @field_validator("content")
    @classmethod
    def _content_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("content is blank")
        return value

    def locate(self, block: str, search_from: int = 0) -> tuple[int, int] | None:
        """Return the span of this section's text inside *block*.

        The reported offsets are used when they select exactly ``content``.
        Otherwise the stripped content is searched for, first after
        *search_from* and then from the start of the block.  ``None`` when
        the text does not occur in the block at all.
        """
        start = min(max(self.start_char, 0), len(block))
        end = min(max(self.end_char, start), len(block))
        if block[start:end] == self.content:
            return start, end

        needle = self.content.strip()
        found = block.find(needle, search_from)
        if found < 0:
            found = block.find(needle)
        if found < 0:
            return None
        return found, found + len(needle)


class SemanticChunkingStrategy(IChunkingStrategy):
    """LLM-segmented sections with deterministic fallback.

    Parameters
    ----------
    llm:
        Completion provider used to segment each block.
    config:
        Block size, LLM token cap and block concurrency.
    fallback:
        Strategy used when no block produced usable sections.
    temperature:
        Sampling temperature for segmentation calls.
    """

    def __init__(
        self,
        llm: ILLMProvider,
        config: ChunkingConfig,
        fallback: DeterministicChunkingStrategy | None = None,
        temperature: float = 0.1,
    ) -> None:
        self._llm = llm
        self._block_chars = config.block_chars
        self._max_tokens = config.llm_max_tokens
        self._semaphore = asyncio.Semaphore(config.max_concurrent_blocks)
        self._fallback = fallback or DeterministicChunkingStrategy(config.window_chars)
        self._temperature = temperature

    def get_strategy_name(self) -> str:
        return "semantic"

    async def chunk(self, text: str, page_boundaries: list[int]) -> ChunkingResult:
        if not text.strip():
            return ChunkingResult(chunks=[], strategy=self.get_strategy_name())

        blocks = [
            (start, text[start : start + self._block_chars])
            for start in range(0, len(text), self._block_chars)
        ]
        jobs = {
            str(index): self._segment_block(start, block)
            for index, (start, block) in enumerate(blocks)
            if block.strip()
        }
        successes, failures = await settle_all(
            jobs,
            semaphore=self._semaphore,
            logger=logger,
            error_event="semantic_block_dropped",
        )

        if not successes:
            logger.warning(
                "semantic_chunking_fallback",
                blocks=len(blocks),
                dropped_blocks=len(failures),
                llm_provider=self._llm.get_provider_name(),
            )
            return ChunkingResult(
                chunks=self._fallback.split(text, page_boundaries),
                strategy=self.get_strategy_name(),
                dropped_blocks=len(failures),
                fell_back=True,
            )

        drafts: list[ChunkDraft] = []
        for label in sorted(successes, key=int):
            for section, start, end in successes[label]:
                drafts.append(
                    ChunkDraft(
                        chunk_index=len(drafts),
                        content=section.content,
                        token_count=estimate_tokens(section.content),
                        start_char=start,
                        end_char=end,
                        page_number=infer_page_number(start, page_boundaries),
                        section_title=section.section_title or heuristic_title(section.content),
                        summary=section.summary or heuristic_summary(section.content),
                        keywords=section.keywords or extract_keywords(section.content),
                        section_level=section.section_level,
                    )
                )

        logger.info(
            "semantic_chunking_complete",
            blocks=len(blocks),
            dropped_blocks=len(failures),
            chunks=len(drafts),
        )
        return ChunkingResult(
            chunks=drafts,
            strategy=self.get_strategy_name(),
            dropped_blocks=len(failures),
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _segment_block(
        self, block_start: int, block: str
    ) -> list[tuple[_SemanticSection, int, int]]:
        """Segment one block; returns sections with absolute spans.

        Raises
        ------
        ChunkingError
            If the response holds no JSON array or no valid section.
        docpipe.utils.errors.LLMError
            Propagated from the provider.
        """
        response = await self._llm.complete(
            system_prompt=_SEGMENT_SYSTEM_PROMPT,
            user_prompt=_SEGMENT_USER_PROMPT.format(text=block),
            temperature=self._temperature,
            max_tokens=self._max_tokens,
        )
        items = self.parse_sections(response)

        sections: list[tuple[_SemanticSection, int, int]] = []
        cursor = 0
        for item in items:
            try:
                section = _SemanticSection.model_validate(item)
            except ValidationError as exc:
                logger.debug("semantic_section_invalid", error_count=exc.error_count())
                continue
            span = section.locate(block, search_from=cursor)
            if span is None:
                logger.debug("semantic_section_not_in_block", block_start=block_start)
                continue
            start, end = span
            cursor = end
            # Stored content is always the source text at the stored offsets.
            section = section.model_copy(update={"content": block[start:end]})
            sections.append((section, block_start + start, block_start + end))

        if not sections:
            raise ChunkingError(
                message=f"No valid sections in block at offset {block_start}",
                provider_name=self._llm.get_provider_name(),
            )
        return sections

    @staticmethod
    def parse_sections(response: str) -> list[object]:
        """Locate and decode the JSON array in an LLM response.

        Raises
        ------
        ChunkingError
            If no array is present or it does not decode to a list.
        """
        match = _JSON_ARRAY_RE.search(normalize_quotes(response))
        if match is None:
            raise ChunkingError(message="LLM response contains no JSON array")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            logger.warning("json_parse_failed", response_preview=response[:200])
            raise ChunkingError(message=f"LLM response is not valid JSON: {exc}") from exc
        if not isinstance(data, list):
            raise ChunkingError(message="LLM response JSON is not a list")
        return data


def build_chunking_strategy(
    config: ChunkingConfig,
    llm: ILLMProvider | None = None,
) -> IChunkingStrategy:
    """Return the strategy named by ``config.strategy``.

    Raises
    ------
    ConfigurationError
        If the semantic strategy is configured without an LLM provider.
    """
    deterministic = DeterministicChunkingStrategy(config.window_chars)
    if config.strategy == "deterministic":
        return deterministic
    if llm is None:
        raise ConfigurationError(
            message="chunking.strategy is 'semantic' but no LLM provider is configured",
        )
    return SemanticChunkingStrategy(llm=llm, config=config, fallback=deterministic)
