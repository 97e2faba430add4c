# =============================================================================
# Search & Chat API — Retrieval-Augmented Answers
# =============================================================================
#
# ENDPOINTS:
#   POST /search — ranked chunks + assembled context block (top_k default 4)
#   POST /chat   — messages → query → retrieval (top_k default 25) →
#                  context → LLM answer with sources
#
# FLOW (POST /chat):
#   1. resolve_query(): latest user message → one plain-string query
#   2. RetrievalEngine.retrieve(): tenant-scoped top-K chunks
#   3. assemble(): "[Source i: file, Page p]" context (or the sentinel)
#   4. LLM completion with the context in the system prompt
#
# The prompt is owned here; the context assembler only formats sources.
# =============================================================================

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends

from lumenfin.api.deps import get_llm, get_retrieval_engine, get_tenant_id
from lumenfin.config import Settings, get_settings
from lumenfin.models.requests import ChatRequest, SearchRequest, resolve_query
from lumenfin.models.responses import ChatResponse, SearchResponse, SourceChunk
from lumenfin.services.context import assemble
from lumenfin.services.llm import LLMProvider
from lumenfin.services.retrieval import RetrievalEngine

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Search"])

SYSTEM_PROMPT_TEMPLATE = (
    "You are a financial analysis assistant. Use the following context from "
    "uploaded documents to answer the user's question. If the context doesn't "
    "contain relevant information, say so.\n\n"
    "Context:\n"
    "{context}\n\n"
    "Instructions:\n"
    "- Provide clear, concise financial analysis\n"
    "- Cite sources as [Source n] matching the context labels, with page numbers\n"
    "- If the context doesn't contain the answer, acknowledge that\n"
    "- Be precise with financial figures; never round or estimate\n"
    "- Format numbers and financial data clearly"
)

NO_QUERY_ANSWER = "Please ask a question about your uploaded documents."


# ---------------------------------------------------------------------------
# POST /search
# ---------------------------------------------------------------------------


@router.post(
    "/search",
    response_model=SearchResponse,
    summary="Search the caller's documents",
)
async def search_documents(
    request: SearchRequest,
    user_id: str = Depends(get_tenant_id),
    engine: RetrievalEngine = Depends(get_retrieval_engine),
    config: Settings = Depends(get_settings),
) -> SearchResponse:
    top_k = request.top_k or config.citation_top_k
    results = await engine.retrieve(request.query, user_id=user_id, top_k=top_k)
    return SearchResponse(
        query=request.query,
        results=SourceChunk.from_results(results),
        context=assemble(results),
        retrieval_count=len(results),
    )


# ---------------------------------------------------------------------------
# POST /chat
# ---------------------------------------------------------------------------


@router.post(
    "/chat",
    response_model=ChatResponse,
    summary="Answer a question from the caller's documents",
)
async def chat(
    request: ChatRequest,
    user_id: str = Depends(get_tenant_id),
    engine: RetrievalEngine = Depends(get_retrieval_engine),
    llm: LLMProvider = Depends(get_llm),
    config: Settings = Depends(get_settings),
) -> ChatResponse:
    query = resolve_query(request.messages).strip()
    if not query:
        return ChatResponse(
            answer=NO_QUERY_ANSWER, sources=[], query="", model=None, retrieval_count=0,
        )

    top_k = request.top_k or config.retrieval_top_k
    results = await engine.retrieve(query, user_id=user_id, top_k=top_k)
    context = assemble(results)

    # Earlier turns give the model conversational context; system turns are ours
    history = [
        {"role": m.role, "content": m.text()}
        for m in request.messages
        if m.role in ("user", "assistant") and m.text().strip()
    ]
    response = await llm.complete(
        messages=history,
        system=SYSTEM_PROMPT_TEMPLATE.format(context=context),
        temperature=config.llm_temperature,
    )

    logger.info(
        "Answered chat for user=%s with %d sources (model=%s, tokens=%d/%d)",
        user_id, len(results), response.model,
        response.input_tokens, response.output_tokens,
    )
    return ChatResponse(
        answer=response.content,
        sources=SourceChunk.from_results(results),
        query=query,
        model=response.model,
        retrieval_count=len(results),
    )
