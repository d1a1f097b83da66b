"""Search API routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException

from study_grounding.api.dependencies import get_document_store, get_user_id, get_vector_search
from study_grounding.core.errors import EmbeddingProviderError, StoreUnavailable
from study_grounding.core.metrics import REQUEST_COUNT
from study_grounding.db.stores import DocumentStore
from study_grounding.models.dto import SearchRequest, SearchResponse, SearchResultItem
from study_grounding.retrieval.search import VectorSearch, format_search_results

router = APIRouter()


@router.post("/search", response_model=SearchResponse, summary="Semantic search within a study")
async def search(
    request: SearchRequest,
    user_id: str = Depends(get_user_id),
    documents: DocumentStore = Depends(get_document_store),
    vector_search: VectorSearch = Depends(get_vector_search),
) -> SearchResponse:
    study = await documents.get_study(request.study_id)
    if study is None or study.user_id != user_id:
        raise HTTPException(status_code=404, detail="Study not found")
    if request.document_ids and not await documents.documents_in_study(request.document_ids, request.study_id):
        raise HTTPException(status_code=404, detail="Document not found")
    if not request.query.strip():
        raise HTTPException(status_code=400, detail="Search query cannot be empty")

    try:
        results = await vector_search.find_relevant_chunks(
            request.query,
            study_id=request.study_id,
            document_ids=request.document_ids,
            limit=request.limit,
            min_similarity=request.min_similarity,
        )
    except StoreUnavailable as exc:
        REQUEST_COUNT.labels(endpoint="search", method="POST", status="503").inc()
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    except EmbeddingProviderError as exc:
        REQUEST_COUNT.labels(endpoint="search", method="POST", status="502").inc()
        raise HTTPException(status_code=502, detail=str(exc)) from exc
    REQUEST_COUNT.labels(endpoint="search", method="POST", status="200").inc()
    return SearchResponse(
        results=[SearchResultItem(**result.to_dict()) for result in results],
        formatted=format_search_results(results),
    )


@router.get("/studies/{study_id}/stats", summary="Embedding coverage for a study")
async def study_stats(
    study_id: str,
    user_id: str = Depends(get_user_id),
    documents: DocumentStore = Depends(get_document_store),
    vector_search: VectorSearch = Depends(get_vector_search),
) -> dict[str, int]:
    study = await documents.get_study(study_id)
    if study is None or study.user_id != user_id:
        raise HTTPException(status_code=404, detail="Study not found")
    return await vector_search.embedding_stats(study_id)
