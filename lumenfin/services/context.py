# =============================================================================
# Context Assembler — Citation-Annotated Context Block
# =============================================================================
#
# Formats ranked results for the inference step:
#
#   [Source 1: AAPL_10K_2024.pdf, Page 12]
#   Revenue increased 8% year over year...
#
#   [Source 2: AAPL_10K_2024.pdf, Page 31]
#   ...
#
# Sources are numbered by rank and never reordered; this numbering is what
# the user sees as citations. No results → a fixed sentinel, never "".
# =============================================================================

from __future__ import annotations

from collections.abc import Sequence

from lumenfin.services.chunk_store import SearchResult

NO_RESULTS_CONTEXT = "No relevant documents found."


def format_source_label(index: int, result: SearchResult) -> str:
    return f"[Source {index}: {result.file_name}, Page {result.page_number}]"


def assemble(results: Sequence[SearchResult]) -> str:
    """Join results into one context string, in rank order."""
    if not results:
        return NO_RESULTS_CONTEXT

    return "\n\n".join(
        f"{format_source_label(i, result)}\n{result.content}"
        for i, result in enumerate(results, start=1)
    )
