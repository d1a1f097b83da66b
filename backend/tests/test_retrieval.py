"""Tests for retrieval utilities."""

from __future__ import annotations

import pytest

from study_grounding.core.errors import DimensionMismatchError, StoreUnavailable
from study_grounding.db.stores import DocumentStore, SQLiteChunkStore
from study_grounding.ingest.embeddings import serialize_embedding
from study_grounding.models.entities import ChunkCandidate
from study_grounding.retrieval import (
    SearchOptions,
    SearchResult,
    VectorSearch,
    cosine_similarity,
    format_search_results,
    rank_candidates,
)
from study_grounding.retrieval.tools import (
    SEARCH_TOOL_DEFINITIONS,
    SearchTools,
    SearchToolResult,
    format_search_tool_results,
    validate_search_parameters,
)

QUERY = [0.8, 0.1, 0.1]
VECTORS = [[0.9, 0.05, 0.05], [0.1, 0.8, 0.1], [0.7, 0.2, 0.1]]


def _candidate(index: int, vector, document_id: str = "doc_a") -> ChunkCandidate:
    return ChunkCandidate(
        chunk_id=f"chk_{index}",
        document_id=document_id,
        document_name=f"{document_id}.pdf",
        study_id="study-1",
        chunk_index=index,
        content=f"content {index}",
        embedding=serialize_embedding(vector) if vector is not None else None,
    )


def _result(index: int, similarity: float, name: str = "notes.pdf") -> SearchResult:
    return SearchResult(
        chunk_id=f"chk_{index}",
        document_id="doc_a",
        document_name=name,
        content=f"Passage number {index}",
        chunk_index=index,
        similarity=similarity,
    )


class FakeChunkStore:
    def __init__(self, candidates=None, error: Exception | None = None) -> None:
        self.candidates = candidates or []
        self.error = error
        self.calls: list[dict] = []

    async def fetch_candidates(self, study_id=None, document_ids=None, exclude_chunk_id=None):
        self.calls.append({"study_id": study_id, "document_ids": document_ids, "exclude_chunk_id": exclude_chunk_id})
        if self.error:
            raise self.error
        return list(self.candidates)

    async def get_chunk(self, chunk_id):
        return next((item for item in self.candidates if item.chunk_id == chunk_id), None)

    async def save_chunks(self, records) -> None:
        raise NotImplementedError


def test_cosine_similarity_properties() -> None:
    a = [0.3, -1.2, 2.5]
    b = [1.0, 0.4, -0.7]
    assert cosine_similarity(a, a) == pytest.approx(1.0)
    assert cosine_similarity(a, [-value for value in a]) == pytest.approx(-1.0)
    assert cosine_similarity([1.0, 0.0], [0.0, 1.0]) == pytest.approx(0.0)
    assert cosine_similarity(a, b) == cosine_similarity(b, a)
    assert cosine_similarity([0.0, 0.0], [1.0, 1.0]) == 0.0


def test_cosine_similarity_rejects_mismatched_lengths() -> None:
    with pytest.raises(DimensionMismatchError, match="Vectors must have the same length"):
        cosine_similarity([1.0, 2.0], [1.0, 2.0, 3.0])


def test_rank_candidates_filters_and_orders() -> None:
    candidates = [_candidate(index, vector) for index, vector in enumerate(VECTORS)]
    results = rank_candidates(QUERY, candidates, SearchOptions(min_similarity=0.5))
    assert [result.chunk_id for result in results] == ["chk_0", "chk_2"]
    assert all(result.similarity > 0.5 for result in results)
    assert results[0].similarity >= results[1].similarity


def test_rank_candidates_keeps_store_order_for_ties_and_limits() -> None:
    candidates = [_candidate(index, [1.0, 0.0, 0.0]) for index in range(4)]
    results = rank_candidates([1.0, 0.0, 0.0], candidates, SearchOptions(limit=3))
    assert [result.chunk_id for result in results] == ["chk_0", "chk_1", "chk_2"]


def test_rank_candidates_skips_missing_and_corrupt_embeddings() -> None:
    corrupt = _candidate(1, None)
    corrupt.embedding = b"\x00\x01\x02"
    candidates = [_candidate(0, [1.0, 0.0, 0.0]), corrupt, _candidate(2, None)]
    results = rank_candidates([1.0, 0.0, 0.0], candidates, SearchOptions())
    assert [result.chunk_id for result in results] == ["chk_0"]


def test_rank_candidates_wrong_dimension_raises() -> None:
    with pytest.raises(DimensionMismatchError):
        rank_candidates([1.0, 0.0, 0.0], [_candidate(0, [1.0, 0.0])], SearchOptions())


@pytest.mark.asyncio
async def test_find_relevant_chunks_ranks_store_candidates(static_client) -> None:
    store = FakeChunkStore([_candidate(index, vector) for index, vector in enumerate(VECTORS)])
    search = VectorSearch(store, static_client(QUERY))
    results = await search.find_relevant_chunks(
        "navigation problems", study_id="study-1", document_ids=["doc_a"], min_similarity=0.5
    )
    assert [result.chunk_id for result in results] == ["chk_0", "chk_2"]
    assert store.calls == [{"study_id": "study-1", "document_ids": ("doc_a",), "exclude_chunk_id": None}]


@pytest.mark.asyncio
async def test_find_relevant_chunks_empty_scope(static_client) -> None:
    search = VectorSearch(FakeChunkStore([]), static_client(QUERY))
    assert await search.find_relevant_chunks("anything") == []


@pytest.mark.asyncio
async def test_find_relevant_chunks_rejects_blank_query(static_client) -> None:
    search = VectorSearch(FakeChunkStore([]), static_client(QUERY))
    with pytest.raises(ValueError):
        await search.find_relevant_chunks("   ")


@pytest.mark.asyncio
async def test_store_failure_propagates(static_client) -> None:
    search = VectorSearch(FakeChunkStore(error=StoreUnavailable("db locked")), static_client(QUERY))
    with pytest.raises(StoreUnavailable):
        await search.find_relevant_chunks("query")


@pytest.mark.asyncio
async def test_find_similar_chunks_excludes_source(database, seed_study, static_client) -> None:
    seeded = await seed_study(
        {
            "a.pdf": [("alpha", [1.0, 0.0, 0.0]), ("alpha again", [0.9, 0.1, 0.0])],
            "b.pdf": [("beta", [0.0, 1.0, 0.0])],
        }
    )
    source_id = seeded["a.pdf"][1][0]
    search = VectorSearch(SQLiteChunkStore(database), static_client(QUERY))
    results = await search.find_similar_chunks(source_id, min_similarity=0.5)
    assert [result.chunk_id for result in results] == [seeded["a.pdf"][1][1]]

    with pytest.raises(LookupError):
        await search.find_similar_chunks("chk_missing")


@pytest.mark.asyncio
async def test_sqlite_store_scopes_by_study_and_documents(database, seed_study, static_client) -> None:
    seeded = await seed_study({"a.pdf": [("alpha", [1.0, 0.0, 0.0])], "b.pdf": [("beta", [0.9, 0.1, 0.0])]})
    await seed_study({"c.pdf": [("gamma", [1.0, 0.0, 0.0])]}, study_id="study-2")
    search = VectorSearch(SQLiteChunkStore(database), static_client([1.0, 0.0, 0.0]))

    in_study = await search.find_relevant_chunks("q", study_id="study-1")
    assert {result.document_name for result in in_study} == {"a.pdf", "b.pdf"}

    one_document = await search.find_relevant_chunks("q", study_id="study-1", document_ids=[seeded["b.pdf"][0]])
    assert [result.document_name for result in one_document] == ["b.pdf"]


@pytest.mark.asyncio
async def test_embedding_stats(database, seed_study, static_client) -> None:
    await seed_study({"a.pdf": [("1234", [1.0, 0.0]), ("123456", [0.0, 1.0])], "b.pdf": [("12", [1.0, 1.0])]})
    search = VectorSearch(SQLiteChunkStore(database), static_client([1.0, 0.0]))
    stats = await search.embedding_stats("study-1")
    assert stats == {
        "total_chunks": 3,
        "chunks_with_embeddings": 3,
        "documents_with_embeddings": 2,
        "average_chunk_length": 4,
    }


def test_format_search_results() -> None:
    assert format_search_results([]) == "No relevant content found."

    single = format_search_results([_result(1, 0.876)])
    assert "---" not in single
    assert single.startswith("[1] notes.pdf (88% match)\nPassage number 1")

    several = format_search_results([_result(1, 0.9), _result(2, 0.5)])
    assert several.count("\n---\n") == 1
    assert "[2] notes.pdf (50% match)" in several


def test_validate_search_parameters() -> None:
    assert validate_search_parameters("search_all_documents", {"query": "usability"}) == []
    errors = validate_search_parameters("search_all_documents", {"query": "", "limit": 99, "minSimilarity": 2})
    assert len(errors) == 3
    errors = validate_search_parameters("search_specific_documents", {"query": "q", "documentIds": []})
    assert errors == ["At least one document ID is required for specific document search"]
    assert validate_search_parameters("search_web", {"query": "q"}) == ["Unknown search tool: search_web"]


def test_tool_definitions_describe_both_tools() -> None:
    assert set(SEARCH_TOOL_DEFINITIONS) == {"search_all_documents", "search_specific_documents"}
    specific = SEARCH_TOOL_DEFINITIONS["search_specific_documents"]["parameters"]
    assert specific["required"] == ["query", "documentIds"]


@pytest.mark.asyncio
async def test_search_tools_retain_structured_results(database, seed_study, static_client) -> None:
    seeded = await seed_study({"ux.pdf": [("Users struggled with navigation.", [1.0, 0.0, 0.0])]})
    search = VectorSearch(SQLiteChunkStore(database), static_client([1.0, 0.0, 0.0]))
    tools = SearchTools(search, DocumentStore(database), "study-1")

    record = await tools.execute("search_all_documents", {"query": "navigation"})
    assert record.tool_name == "search_all_documents"
    assert [result.chunk_id for result in record.results] == seeded["ux.pdf"][1]
    assert "**1. ux.pdf** (100% relevance)" in record.output

    document_id = seeded["ux.pdf"][0]
    record = await tools.execute("search_specific_documents", {"query": "navigation", "documentIds": [document_id]})
    assert record.input["documentIds"] == [document_id]
    assert "1 specified documents" in record.output


@pytest.mark.asyncio
async def test_specific_search_rejects_filenames_and_foreign_documents(database, seed_study, static_client) -> None:
    await seed_study({"mine.pdf": [("text", [1.0, 0.0, 0.0])]})
    other = await seed_study({"theirs.pdf": [("text", [1.0, 0.0, 0.0])]}, study_id="study-2", user_id="user-2")
    search = VectorSearch(SQLiteChunkStore(database), static_client([1.0, 0.0, 0.0]))
    tools = SearchTools(search, DocumentStore(database), "study-1")

    with pytest.raises(ValueError, match="cannot be filenames"):
        await tools.search_specific_documents("q", ["report.pdf"])
    with pytest.raises(PermissionError):
        await tools.search_specific_documents("q", [other["theirs.pdf"][0]])


def test_format_search_tool_results_no_results() -> None:
    text = format_search_tool_results(SearchToolResult(results=[], search_scope="all"))
    assert text.startswith("No relevant content found in all documents.")
    assert "minSimilarity: 0.05" in text


def test_percent_rounds_half_up() -> None:
    assert format_search_results([_result(1, 0.125)]).startswith("[1] notes.pdf (13% match)")


class RecordingSearch:
    def __init__(self) -> None:
        self.options: list[dict] = []

    async def find_relevant_chunks(self, query: str, **options):
        self.options.append(options)
        return []


@pytest.mark.asyncio
async def test_search_tools_forward_zero_min_similarity(database) -> None:
    search = RecordingSearch()
    tools = SearchTools(search, DocumentStore(database), "study-1")

    await tools.execute("search_all_documents", {"query": "q", "minSimilarity": 0})
    await tools.execute("search_all_documents", {"query": "q"})

    assert search.options[0]["min_similarity"] == 0
    assert search.options[1] == {"study_id": "study-1", "limit": 3, "min_similarity": 0.1}
