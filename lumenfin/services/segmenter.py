# =============================================================================
# Text Segmenter — Recursive Character Splitting
# =============================================================================
#
# Splits extracted document text into overlapping chunks of at most
# `chunk_size` characters, preferring natural boundaries. Separators are
# tried in priority order and a piece that is still too large descends to
# the next tier:
#
#   "\n\n"  paragraph break
#   "\n"    line break
#   ". "    sentence break
#   " "     word break
#   ""      character boundary (last resort)
#
# Consecutive chunks share up to `chunk_overlap` characters so a sentence
# that straddles a boundary is present, at least in part, in both chunks.
#
# ALGORITHM: LangChain's RecursiveCharacterTextSplitter, the same splitter
# the web upload path has always used, configured with the tiers above.
# Separators stay attached to the end of the text they terminate.
#
# Token counts use tiktoken's cl100k_base so stored chunk statistics line up
# with what OpenAI-family models see.
# =============================================================================

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator
from dataclasses import dataclass, field

import tiktoken
from langchain_text_splitters import RecursiveCharacterTextSplitter

from lumenfin.exceptions import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_SEPARATORS: tuple[str, ...] = ("\n\n", "\n", ". ", " ", "")


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class Segment:
    """A single chunk ready for embedding, with its position in the document."""

    content: str
    page_number: int  # 1-indexed source page (or segment position fallback)
    chunk_index: int  # 0-indexed position within the whole document
    token_count: int
    metadata: dict = field(default_factory=dict)


class Segments:
    """
    Lazy, finite, restartable sequence of chunk strings for one text.

    Nothing is split until iteration starts, and each new iteration splits
    again from the beginning, yielding an identical sequence.
    """

    def __init__(self, splitter: RecursiveCharacterTextSplitter, text: str) -> None:
        self._splitter = splitter
        self._text = text

    def __iter__(self) -> Iterator[str]:
        if not self._text:
            return
        yield from self._splitter.split_text(self._text)


# ---------------------------------------------------------------------------
# Tiktoken Encoder — Cached Singleton
# ---------------------------------------------------------------------------

_encoder: tiktoken.Encoding | None = None


def _get_encoder() -> tiktoken.Encoding:
    """Lazily initialize and cache the tiktoken encoder."""
    global _encoder
    if _encoder is None:
        _encoder = tiktoken.get_encoding("cl100k_base")
    return _encoder


def count_tokens(text: str) -> int:
    return len(_get_encoder().encode(text, disallowed_special=()))


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------


class TextSegmenter:
    """
    Recursive, overlap-preserving character splitter.

    Args:
        chunk_size: Maximum characters per chunk (default 1000).
        chunk_overlap: Characters shared between consecutive chunks
            (default 200). Must satisfy 0 <= overlap < chunk_size.
        separators: Boundary tiers, highest priority first.

    Raises:
        ConfigurationError: If the size/overlap combination is invalid.
    """

    def __init__(
        self,
        chunk_size: int = 1000,
        chunk_overlap: int = 200,
        separators: Iterable[str] = DEFAULT_SEPARATORS,
    ) -> None:
        if chunk_size <= 0:
            raise ConfigurationError(f"chunk_size must be positive, got {chunk_size}")
        if not 0 <= chunk_overlap < chunk_size:
            raise ConfigurationError(
                f"chunk_overlap must satisfy 0 <= overlap < chunk_size "
                f"(got overlap={chunk_overlap}, size={chunk_size})"
            )

        self.chunk_size = chunk_size
        self.chunk_overlap = chunk_overlap
        self._splitter = RecursiveCharacterTextSplitter(
            chunk_size=chunk_size,
            chunk_overlap=chunk_overlap,
            separators=list(separators),
            keep_separator="end",
            length_function=len,
        )

    def segment(self, text: str) -> Segments:
        """Split one text. Empty input yields zero chunks."""
        return Segments(self._splitter, text)

    def segment_pages(
        self,
        pages: Iterable[tuple[int, str]],
        page_metadata: dict[int, dict] | None = None,
    ) -> list[Segment]:
        """
        Segment each page independently, keeping page attribution exact.

        Chunks never span two pages. `chunk_index` runs across the whole
        document in page order.
        """
        segments: list[Segment] = []
        for page_number, text in pages:
            extra = (page_metadata or {}).get(page_number, {})
            for content in self.segment(text):
                segments.append(Segment(
                    content=content,
                    page_number=page_number,
                    chunk_index=len(segments),
                    token_count=count_tokens(content),
                    metadata=dict(extra),
                ))

        logger.info(
            "Segmented %d pages into %d chunks (size=%d, overlap=%d)",
            len({s.page_number for s in segments}),
            len(segments),
            self.chunk_size,
            self.chunk_overlap,
        )
        return segments

    def segment_unpaged(self, text: str) -> list[Segment]:
        """
        Segment text that carries no page attribution.

        The 1-based segment position stands in for the page number.
        """
        segments = [
            Segment(
                content=content,
                page_number=index + 1,
                chunk_index=index,
                token_count=count_tokens(content),
                metadata={"page_is_segment_index": True},
            )
            for index, content in enumerate(self.segment(text))
        ]
        logger.info(
            "Segmented unpaged text into %d chunks (size=%d, overlap=%d)",
            len(segments), self.chunk_size, self.chunk_overlap,
        )
        return segments
