"""Unit tests for the chunking strategies."""

from __future__ import annotations

import json

import pytest

from docpipe.config.app_config import ChunkingConfig
from docpipe.services.ingestion.chunker import (
    DeterministicChunkingStrategy,
    SemanticChunkingStrategy,
    build_chunking_strategy,
)
from docpipe.utils.errors import ChunkingError, ConfigurationError, LLMError

# ---------------------------------------------------------------------------
# Deterministic windows
# ---------------------------------------------------------------------------


class TestDeterministicChunking:
    async def test_3000_chars_make_three_windows(self) -> None:
        text = ("lorem ipsum dolor sit amet " * 200)[:3000]
        result = await DeterministicChunkingStrategy(window_chars=1000).chunk(text, [3000])

        assert result.strategy == "deterministic"
        assert [c.chunk_index for c in result.chunks] == [0, 1, 2]
        assert [c.start_char for c in result.chunks] == [0, 1000, 2000]
        assert all(c.token_count == 250 for c in result.chunks)

    async def test_windows_cover_text_without_overlap(self, sample_report_text: str) -> None:
        strategy = DeterministicChunkingStrategy(window_chars=64)
        result = await strategy.chunk(sample_report_text, [len(sample_report_text)])

        assert "".join(c.content for c in result.chunks) == sample_report_text
        for previous, current in zip(result.chunks, result.chunks[1:], strict=False):
            assert previous.end_char == current.start_char

    async def test_page_numbers_follow_boundaries(self) -> None:
        text = "x" * 300
        result = await DeterministicChunkingStrategy(window_chars=100).chunk(text, [150, 300])
        assert [c.page_number for c in result.chunks] == [1, 1, 2]

    async def test_empty_text_produces_no_chunks(self) -> None:
        result = await DeterministicChunkingStrategy().chunk("", [])
        assert result.chunks == []

    async def test_whitespace_windows_are_skipped_and_indices_stay_contiguous(self) -> None:
        text = "a" * 10 + " " * 10 + "b" * 10
        result = await DeterministicChunkingStrategy(window_chars=10).chunk(text, [])
        assert [c.content for c in result.chunks] == ["a" * 10, "b" * 10]
        assert [c.chunk_index for c in result.chunks] == [0, 1]

    async def test_heuristic_metadata(self, sample_report_text: str) -> None:
        result = await DeterministicChunkingStrategy(window_chars=5000).chunk(
            sample_report_text, []
        )
        chunk = result.chunks[0]
        assert chunk.section_title.startswith("Project Overview")
        assert chunk.summary
        assert "reservoir" in chunk.keywords

    def test_rejects_non_positive_window(self) -> None:
        with pytest.raises(ConfigurationError):
            DeterministicChunkingStrategy(window_chars=0)


# ---------------------------------------------------------------------------
# Semantic sections
# ---------------------------------------------------------------------------


def _semantic(llm, **overrides) -> SemanticChunkingStrategy:
    config = ChunkingConfig(
        **{"strategy": "semantic", "block_chars": 100, "window_chars": 60, **overrides}
    )
    return SemanticChunkingStrategy(llm=llm, config=config)


_BLOCKED_TEXT = "a" * 100 + "b" * 100 + "c" * 50


def _respond_per_block(system_prompt: str, user_prompt: str, **kwargs) -> str:
    if "aaaa" in user_prompt:
        return "Here you go:\n" + json.dumps(
            [{"section_title": "A", "content": "a" * 100, "start_char": 0, "end_char": 100}]
        )
    if "bbbb" in user_prompt:
        return "Sorry, I cannot help with that."
    return json.dumps(
        [
            {"content": "", "start_char": 0, "end_char": 5},
            {"content": "c" * 40, "summary": "Cs", "start_char": 10, "end_char": 500},
        ]
    )


class TestSemanticChunking:
    async def test_malformed_block_is_dropped(self, mock_llm_provider) -> None:
        mock_llm_provider.complete.side_effect = _respond_per_block
        result = await _semantic(mock_llm_provider).chunk(_BLOCKED_TEXT, [150, 250])

        assert result.strategy == "semantic"
        assert result.dropped_blocks == 1
        assert result.fell_back is False
        assert [c.chunk_index for c in result.chunks] == [0, 1]

        first, second = result.chunks
        assert first.section_title == "A"
        assert (first.start_char, first.end_char, first.page_number) == (0, 100, 1)
        # Offsets are made absolute and clamped to the block.
        assert (second.start_char, second.end_char, second.page_number) == (210, 250, 2)
        assert second.summary == "Cs"
        assert second.section_title == "c" * 40

    async def test_llm_error_counts_as_dropped_block(self, mock_llm_provider) -> None:
        def _fail_on_b(system_prompt: str, user_prompt: str, **kwargs) -> str:
            if "bbbb" in user_prompt:
                raise LLMError(message="timeout", provider_name="mock-llm")
            return _respond_per_block(system_prompt, user_prompt, **kwargs)

        mock_llm_provider.complete.side_effect = _fail_on_b
        result = await _semantic(mock_llm_provider).chunk(_BLOCKED_TEXT, [])
        assert result.dropped_blocks == 1
        assert len(result.chunks) == 2

    async def test_all_blocks_failing_falls_back_to_windows(self, mock_llm_provider) -> None:
        mock_llm_provider.complete.return_value = "not json at all"
        result = await _semantic(mock_llm_provider).chunk(_BLOCKED_TEXT, [])

        assert result.fell_back is True
        assert result.dropped_blocks == 3
        assert [c.start_char for c in result.chunks] == [0, 60, 120, 180, 240]
        assert [c.chunk_index for c in result.chunks] == [0, 1, 2, 3, 4]

    async def test_blank_text_makes_no_llm_calls(self, mock_llm_provider) -> None:
        result = await _semantic(mock_llm_provider).chunk("   ", [])
        assert result.chunks == []
        mock_llm_provider.complete.assert_not_awaited()

    async def test_passes_token_cap_to_llm(self, mock_llm_provider) -> None:
        mock_llm_provider.complete.return_value = json.dumps([{"content": "a" * 100}])
        await _semantic(mock_llm_provider, llm_max_tokens=1234).chunk("a" * 100, [])
        assert mock_llm_provider.complete.await_args.kwargs["max_tokens"] == 1234


class TestSemanticSpans:
    _TEXT = "Site survey notes. Materials list: cement, sand and pipe. Labour is extra."

    async def test_whitespace_only_section_is_rejected(self, mock_llm_provider) -> None:
        mock_llm_provider.complete.return_value = json.dumps(
            [
                {"content": "  \n\t ", "start_char": 0, "end_char": 5},
                {"content": "Site survey notes.", "start_char": 0, "end_char": 18},
            ]
        )
        result = await _semantic(mock_llm_provider, block_chars=1000).chunk(self._TEXT, [])

        assert [c.content for c in result.chunks] == ["Site survey notes."]
        assert result.dropped_blocks == 0

    async def test_wrong_offsets_are_reanchored_to_the_content(self, mock_llm_provider) -> None:
        mock_llm_provider.complete.return_value = json.dumps(
            [{"content": " Materials list: cement, sand and pipe.\n", "start_char": 0, "end_char": 12}]
        )
        result = await _semantic(mock_llm_provider, block_chars=1000).chunk(
            self._TEXT, [40, len(self._TEXT)]
        )

        (chunk,) = result.chunks
        assert chunk.content == "Materials list: cement, sand and pipe."
        assert self._TEXT[chunk.start_char : chunk.end_char] == chunk.content
        assert chunk.start_char == self._TEXT.index("Materials")
        assert chunk.page_number == 1

    async def test_repeated_text_anchors_after_previous_section(self, mock_llm_provider) -> None:
        text = "Total: 40. Notes follow. Total: 40."
        mock_llm_provider.complete.return_value = json.dumps(
            [
                {"content": "Total: 40. Notes follow.", "start_char": 0, "end_char": 24},
                {"content": "Total: 40.", "start_char": 0, "end_char": 3},
            ]
        )
        result = await _semantic(mock_llm_provider, block_chars=1000).chunk(text, [])

        assert [(c.start_char, c.end_char) for c in result.chunks] == [(0, 24), (25, 35)]

    async def test_content_missing_from_block_is_dropped(self, mock_llm_provider) -> None:
        mock_llm_provider.complete.return_value = json.dumps(
            [{"content": "Invented summary of the survey.", "start_char": 0, "end_char": 30}]
        )
        result = await _semantic(mock_llm_provider, block_chars=1000, window_chars=100).chunk(
            self._TEXT, []
        )

        assert result.fell_back is True
        assert result.dropped_blocks == 1
        assert [c.content for c in result.chunks] == [self._TEXT]


class TestParseSections:
    def test_typographic_quotes_are_normalised(self) -> None:
        raw = "[{“content”: “Inputs”, “keywords”: [“cement”]}]"
        assert SemanticChunkingStrategy.parse_sections(raw) == [
            {"content": "Inputs", "keywords": ["cement"]}
        ]

    def test_array_is_found_inside_prose(self) -> None:
        raw = 'Sure! ```json\n[{"content": "x"}]\n``` Hope that helps.'
        assert SemanticChunkingStrategy.parse_sections(raw) == [{"content": "x"}]

    @pytest.mark.parametrize("raw", ["no array", "[not json]", '{"content": "x"}'])
    def test_unusable_response_raises(self, raw: str) -> None:
        with pytest.raises(ChunkingError):
            SemanticChunkingStrategy.parse_sections(raw)


# ---------------------------------------------------------------------------
# Factory
# ---------------------------------------------------------------------------


class TestBuildChunkingStrategy:
    def test_deterministic_by_default(self) -> None:
        strategy = build_chunking_strategy(ChunkingConfig())
        assert strategy.get_strategy_name() == "deterministic"

    def test_semantic_with_llm(self, mock_llm_provider) -> None:
        strategy = build_chunking_strategy(ChunkingConfig(strategy="semantic"), mock_llm_provider)
        assert strategy.get_strategy_name() == "semantic"

    def test_semantic_without_llm_is_a_configuration_error(self) -> None:
        with pytest.raises(ConfigurationError):
            build_chunking_strategy(ChunkingConfig(strategy="semantic"), llm=None)
