"""Question answering and report generation over indexed documents.

Both operations follow the same retrieval-augmented flow:

  1. RETRIEVE -- embed the question (or the report's focus query) and pull
                 the top-k candidates for the requested documents.
  2. SELECT   -- keep a token-budgeted, relevance-capped prefix of the
                 ranked candidates (:func:`select_context`).
  3. GENERATE -- label each fragment with its document and page, and send
                 the assembled context to the LLM.

When retrieval finds nothing the question is answered with a fixed
message and no LLM call is made.  Prompt wording is deliberately short;
callers that need different phrasing can subclass and override the
``_SYSTEM_PROMPT`` / ``_REPORT_FOCUS`` attributes.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from docpipe.models.retrieval import (
    AnswerResult,
    ChatMessage,
    Citation,
    RetrievalCandidate,
    ReportType,
)
from docpipe.services.retriever import Retriever, select_context
from docpipe.utils.errors import InvalidInputError
from docpipe.utils.logging import get_logger

if TYPE_CHECKING:
    from docpipe.config.app_config import RetrievalConfig
    from docpipe.interfaces.llm_provider import ILLMProvider
    from docpipe.models.document import Visibility

logger: structlog.BoundLogger = get_logger(__name__)

NO_CONTEXT_ANSWER = (
    "I could not find any relevant content in the selected documents to answer this question."
)


class QAService:
    """Answers questions and writes reports from retrieved document context.

    Parameters
    ----------
    llm:
        Completion provider used for the final answer.
    retriever:
        Ranked candidate source.
    config:
        Token budgets, ``top_k`` and the history window.
    temperature:
        Sampling temperature for generation calls.
    """

    _SYSTEM_PROMPT = (
        "You answer questions using only the document excerpts provided. "
        "Cite excerpts by their [document, page] label. "
        "If the excerpts do not contain the answer, say so."
    )

    _REPORT_SYSTEM_PROMPT = (
        "You write structured reports from document excerpts. "
        "Use only the excerpts provided and cite them by their [document, page] label."
    )

    # Retrieval query used to gather context for each report type.
    _REPORT_FOCUS: dict[ReportType, str] = {
        ReportType.OVERVIEW: "Overall purpose, scope, key findings and conclusions of the document.",
        ReportType.INPUTS: "Inputs, materials, resources, quantities and costs described in the document.",
        ReportType.SUSTAINABILITY: "Environmental, social and sustainability impacts, risks and measures.",
    }

    def __init__(
        self,
        llm: ILLMProvider,
        retriever: Retriever,
        config: RetrievalConfig,
        temperature: float = 0.3,
    ) -> None:
        self._llm = llm
        self._retriever = retriever
        self._config = config
        self._temperature = temperature

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def ask(
        self,
        question: str,
        document_ids: list[str] | None,
        visibility: Visibility,
        history: list[ChatMessage] | None = None,
    ) -> AnswerResult:
        """Answer *question* from the given documents.

        Parameters
        ----------
        question:
            The user's natural-language question.
        document_ids:
            Restrict retrieval to these documents; ``None`` searches every
            document of *visibility*.
        visibility:
            Ownership partition to search.
        history:
            Earlier conversation turns; only the most recent
            ``history_messages`` are forwarded.

        Raises
        ------
        InvalidInputError
            If *question* is blank.
        """
        if not question or not question.strip():
            raise InvalidInputError(message="question must not be empty")

        context = await self._gather_context(
            question, document_ids, visibility, self._config.qa_token_budget
        )
        if not context:
            logger.info("qa_no_context", documents=len(document_ids or []))
            return AnswerResult(answer=NO_CONTEXT_ANSWER)

        window = self._config.history_messages
        recent = (history or [])[-window:] if window else []
        user_prompt = f"EXCERPTS:\n\n{self._format_context(context)}\n\nQUESTION: {question.strip()}"
        answer = await self._llm.complete(
            system_prompt=self._SYSTEM_PROMPT,
            user_prompt=user_prompt,
            temperature=self._temperature,
            history=recent,
        )
        return self._build_result(answer, context)

    async def generate_report(
        self,
        document_ids: list[str],
        visibility: Visibility,
        report_type: ReportType | str,
    ) -> AnswerResult:
        """Write a report of *report_type* over *document_ids*.

        Raises
        ------
        InvalidInputError
            If *report_type* is unknown or no document ids are given.
        """
        try:
            kind = ReportType(report_type)
        except ValueError as exc:
            allowed = ", ".join(t.value for t in ReportType)
            raise InvalidInputError(
                message=f"Unknown report_type {report_type!r}; expected one of: {allowed}",
            ) from exc
        if not document_ids:
            raise InvalidInputError(message="document_ids must not be empty")

        focus = self._REPORT_FOCUS[kind]
        context = await self._gather_context(
            focus, document_ids, visibility, self._config.report_token_budget
        )
        if not context:
            logger.info("report_no_context", report_type=kind.value, documents=len(document_ids))
            return AnswerResult(answer=NO_CONTEXT_ANSWER)

        user_prompt = (
            f"Write a report of type '{kind.value}'.\nFocus: {focus}\n\n"
            f"EXCERPTS:\n\n{self._format_context(context)}"
        )
        report = await self._llm.complete(
            system_prompt=self._REPORT_SYSTEM_PROMPT,
            user_prompt=user_prompt,
            temperature=self._temperature,
        )
        logger.info(
            "report_generated",
            report_type=kind.value,
            documents=len(document_ids),
            fragments=len(context),
        )
        return self._build_result(report, context)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _gather_context(
        self,
        query: str,
        document_ids: list[str] | None,
        visibility: Visibility,
        token_limit: int,
    ) -> list[RetrievalCandidate]:
        candidates = await self._retriever.retrieve(
            query, document_ids, visibility, top_k=self._config.top_k
        )
        selected = select_context(
            candidates,
            token_limit=token_limit,
            max_chunk_tokens=self._config.max_chunk_tokens,
            relevance_ceiling=self._config.relevance_ceiling,
        )
        logger.debug(
            "context_selected",
            candidates=len(candidates),
            selected=len(selected),
            tokens=sum(c.token_count for c in selected),
            token_limit=token_limit,
        )
        return selected

    @staticmethod
    def _format_context(context: list[RetrievalCandidate]) -> str:
        parts = []
        for candidate in context:
            page = candidate.page_number if candidate.page_number is not None else "?"
            parts.append(f"[{candidate.document_id}, page {page}]\n{candidate.content}")
        return "\n\n---\n\n".join(parts)

    @staticmethod
    def _build_result(text: str, context: list[RetrievalCandidate]) -> AnswerResult:
        return AnswerResult(
            answer=text.strip(),
            citations=[
                Citation(
                    chunk_id=c.chunk_id,
                    document_id=c.document_id,
                    page_number=c.page_number,
                    section_title=c.section_title,
                    relevance_score=c.relevance_score,
                )
                for c in context
            ],
            context_tokens=sum(c.token_count for c in context),
        )
