# =============================================================================
# Services Package — Ingestion and Retrieval Core
# =============================================================================
#   - parser.py: PDF extraction with Docling (page-attributed, table-aware)
#   - segmenter.py: Recursive character splitting with overlap
#   - embedder.py: Hosted embedding client (OpenAI-compatible API)
#   - chunk_store.py: Tenant-scoped persistence (pgvector, ChromaDB)
#   - similarity.py: Exact cosine similarity for full-scan ranking
#   - ingestion.py: Extract → segment → embed → persist, batch by batch
#   - retrieval.py: Query → tenant-scoped top-K (index or exact mode)
#   - context.py: Citation-annotated context block
#   - llm.py: Multi-provider LLM abstraction (Anthropic, OpenAI-compatible)
# =============================================================================
