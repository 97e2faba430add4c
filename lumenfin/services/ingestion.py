# =============================================================================
# Ingestion Pipeline — Extract → Segment → Embed → Persist (Batched)
# =============================================================================
#
# Turns one uploaded file into persisted, searchable chunks for one tenant.
#
# PIPELINE:
#   1. Extract   — Docling parse; unsupported/unparseable input aborts and
#                  nothing is persisted
#   2. Segment   — each page independently, so every chunk keeps its source
#                  page; zero chunks is a valid, reported outcome ("empty")
#   3. Partition — fixed-size batches (default 50 chunks)
#   4. For each batch, strictly in order: embed_batch, then insert_many.
#                  Batch N+1 is not embedded until batch N is persisted.
#   5. On a batch failure, stop. Batches already written stay written.
#
# PARTIAL PROGRESS:
#   failure in batch 1          → the classified error propagates unchanged
#   failure in batch N (N > 1)  → PartialIngestionError(committed, total, cause)
#
# The tenant id is attached to every record here, at write time. Retrieval
# can only filter on what ingestion stored.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Sequence
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from lumenfin.config import Settings, settings as default_settings
from lumenfin.exceptions import LumenFinError, PartialIngestionError
from lumenfin.services.chunk_store import ChunkRecord, ChunkStore
from lumenfin.services.embedder import EmbeddingClient
from lumenfin.services.parser import PDF_MIME_TYPE, ParsedDocument, parse_pdf
from lumenfin.services.segmenter import Segment, TextSegmenter

logger = logging.getLogger(__name__)

Parser = Callable[..., ParsedDocument]


@dataclass
class IngestionResult:
    """
    Outcome of a fully successful ingestion.

    status is "completed" when every chunk was indexed, or "empty" when the
    document produced no chunks at all.
    """

    file_name: str
    user_id: str
    total_chunks: int
    indexed_chunks: int
    batches: int
    status: str

    def to_dict(self) -> dict:
        return asdict(self)


class IngestionPipeline:
    """
    Orchestrates one file's ingestion against injected collaborators.

    Args:
        embedder: Embedding client (anything with `embed_batch` and `model`).
        store: Chunk store to persist into.
        segmenter: Text segmenter; defaults to the configured size/overlap.
        parser: Callable (bytes, file_name, mime_type) → ParsedDocument.
        batch_size: Chunks per embed+persist batch.
    """

    def __init__(
        self,
        embedder: EmbeddingClient,
        store: ChunkStore,
        segmenter: TextSegmenter | None = None,
        parser: Parser = parse_pdf,
        batch_size: int | None = None,
        config: Settings | None = None,
    ) -> None:
        config = config or default_settings
        self._embedder = embedder
        self._store = store
        self._segmenter = segmenter or TextSegmenter(
            chunk_size=config.chunk_size,
            chunk_overlap=config.chunk_overlap,
        )
        self._parser = parser
        self._batch_size = batch_size or config.ingest_batch_size
        if self._batch_size <= 0:
            raise ValueError(f"batch_size must be positive, got {self._batch_size}")

    async def ingest(
        self,
        data: bytes,
        file_name: str,
        user_id: str,
        mime_type: str | None = PDF_MIME_TYPE,
    ) -> IngestionResult:
        """
        Run the full pipeline for one uploaded file.

        Raises:
            UnsupportedFileTypeError / ExtractionError: Nothing was persisted.
            PartialIngestionError: Some batches were persisted, then one failed.
            Any other LumenFinError: Raised by the first batch; nothing persisted.
        """
        logger.info(
            "Ingesting '%s' for user=%s (%d bytes)", file_name, user_id, len(data),
        )

        # --- Step 1: Extract (Docling is CPU-bound and synchronous) ---
        logger.info("Step 1/4: Extracting text from '%s'...", file_name)
        parsed = await asyncio.to_thread(self._parser, data, file_name, mime_type)

        # --- Step 2: Segment ---
        logger.info("Step 2/4: Segmenting '%s'...", file_name)
        segments = self.segment(parsed)

        # --- Steps 3-4: Batch, embed, persist ---
        return await self.index_segments(segments, file_name, user_id)

    def segment(self, parsed: ParsedDocument) -> list[Segment]:
        """
        Segment a parsed document page by page.

        Text with no page attribution at all is segmented as one blob, with
        the segment position standing in for the page number.
        """
        if parsed.page_count == 0:
            text = "\n\n".join(e.text for e in parsed.elements if e.text.strip())
            return self._segmenter.segment_unpaged(text)

        pages = parsed.pages()
        page_metadata = {
            page: {
                "section_title": parsed.section_for_page(page),
                "contains_table": parsed.page_has_table(page),
            }
            for page, _ in pages
        }
        return self._segmenter.segment_pages(pages, page_metadata)

    async def index_segments(
        self,
        segments: Sequence[Segment],
        file_name: str,
        user_id: str,
    ) -> IngestionResult:
        """Embed and persist segments batch by batch, strictly in order."""
        total = len(segments)
        if total == 0:
            logger.warning(
                "No extractable text in '%s' for user=%s; indexed 0 chunks",
                file_name, user_id,
            )
            return IngestionResult(
                file_name=file_name,
                user_id=user_id,
                total_chunks=0,
                indexed_chunks=0,
                batches=0,
                status="empty",
            )

        uploaded_at = datetime.now(timezone.utc)
        batch_count = (total + self._batch_size - 1) // self._batch_size
        committed = 0

        logger.info(
            "Step 3/4: Indexing %d chunks in %d batches of up to %d (model=%s)",
            total, batch_count, self._batch_size, self._embedder.model,
        )

        for batch_number, start in enumerate(range(0, total, self._batch_size), start=1):
            batch = segments[start:start + self._batch_size]
            try:
                vectors = await self._embedder.embed_batch([s.content for s in batch])
                records = [
                    ChunkRecord(
                        user_id=user_id,
                        file_name=file_name,
                        page_number=segment.page_number,
                        chunk_index=segment.chunk_index,
                        content=segment.content,
                        embedding=vector,
                        embedding_model=self._embedder.model,
                        uploaded_at=uploaded_at,
                        token_count=segment.token_count,
                        metadata=segment.metadata,
                    )
                    for segment, vector in zip(batch, vectors, strict=True)
                ]
                committed += await self._store.insert_many(records)
            except LumenFinError as exc:
                logger.error(
                    "Batch %d/%d failed for '%s' (user=%s) after %d of %d chunks: %s",
                    batch_number, batch_count, file_name, user_id, committed, total, exc,
                )
                if committed == 0:
                    raise
                raise PartialIngestionError(file_name, committed, total, exc) from exc

            logger.info(
                "Batch %d/%d persisted (%d/%d chunks)",
                batch_number, batch_count, committed, total,
            )

        logger.info(
            "Step 4/4: Ingestion complete for '%s' (user=%s): %d chunks",
            file_name, user_id, committed,
        )
        return IngestionResult(
            file_name=file_name,
            user_id=user_id,
            total_chunks=total,
            indexed_chunks=committed,
            batches=batch_count,
            status="completed",
        )
