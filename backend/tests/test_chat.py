"""Tests for the chat grounding service."""

from __future__ import annotations

import asyncio

import pytest

from study_grounding.chat.service import ChatGroundingService, build_context_prompt
from study_grounding.citations import SynthesisCitation
from study_grounding.core.errors import EmbeddingProviderError, MessageExistsError, StoreUnavailable
from study_grounding.db.stores import MessageStore, SQLiteChunkStore
from study_grounding.retrieval import SearchResult, VectorSearch


class SlowSearch:
    async def find_relevant_chunks(self, query: str, **options):
        await asyncio.sleep(5)
        return []


class FailingSearch:
    def __init__(self, error: Exception) -> None:
        self.error = error

    async def find_relevant_chunks(self, query: str, **options):
        raise self.error


def _result(index: int, similarity: float) -> SearchResult:
    return SearchResult(
        chunk_id=f"chk_{index}",
        document_id="doc_a",
        document_name="interviews.pdf",
        content=f"Participant {index} found onboarding slow.",
        chunk_index=index,
        similarity=similarity,
    )


@pytest.mark.asyncio
async def test_retrieval_timeout_yields_no_context(database) -> None:
    service = ChatGroundingService(SlowSearch(), MessageStore(database), retrieval_timeout=0.05)
    assert await service.retrieve_context("onboarding", "study-1") == []


@pytest.mark.asyncio
@pytest.mark.parametrize("error", [StoreUnavailable("locked"), EmbeddingProviderError("quota")])
async def test_retrieval_failure_yields_no_context(database, error) -> None:
    service = ChatGroundingService(FailingSearch(error), MessageStore(database))
    assert await service.retrieve_context("onboarding", "study-1") == []


@pytest.mark.asyncio
async def test_blank_query_skips_retrieval(database) -> None:
    service = ChatGroundingService(FailingSearch(AssertionError("called")), MessageStore(database))
    assert await service.retrieve_context("  ", "study-1") == []


@pytest.mark.asyncio
async def test_retrieve_context_returns_ranked_chunks(database, seed_study, static_client) -> None:
    await seed_study({"ux.pdf": [("Navigation confused users.", [1.0, 0.0]), ("Pricing notes.", [0.0, 1.0])]})
    search = VectorSearch(SQLiteChunkStore(database), static_client([1.0, 0.0]))
    service = ChatGroundingService(search, MessageStore(database))
    results = await service.retrieve_context("navigation", "study-1")
    assert [result.content for result in results] == ["Navigation confused users."]


def test_build_context_prompt() -> None:
    assert build_context_prompt([]) == ""
    prompt = build_context_prompt([_result(1, 0.9), _result(2, 0.4)])
    assert prompt.startswith("Relevant excerpts from the study documents:\n\n[1] interviews.pdf (90% match)")
    assert "[2] interviews.pdf (40% match)" in prompt
    assert "only cite excerpts listed above" in prompt


@pytest.mark.asyncio
async def test_finalize_turn_freezes_validated_citations(database, seed_study, static_client) -> None:
    seeded = await seed_study(
        {"ux.pdf": [("Users struggled with navigation.", [1.0, 0.0])], "pricing.pdf": [("Too pricey.", [0.0, 1.0])]}
    )
    search = VectorSearch(SQLiteChunkStore(database), static_client([1.0, 0.0]))
    messages = MessageStore(database)
    service = ChatGroundingService(search, messages)

    message = await service.finalize_turn(
        message_id="msg_1",
        chat_id="chat-1",
        study_id="study-1",
        answer="Navigation was hard [1]. Pricing was fine [4].",
        tool_calls=[{"tool_name": "search_all_documents", "input": {"query": "navigation", "minSimilarity": 0.5}}],
    )

    assert message.role == "ASSISTANT"
    assert list(message.citations) == ["1"]
    assert message.citations["1"]["chunk_id"] == seeded["ux.pdf"][1][0]
    assert message.citations["1"]["kind"] == "retrieval"
    assert message.tool_calls[0]["tool_name"] == "search_all_documents"

    stored = await messages.get_owned_message("msg_1", "user-1")
    assert stored is not None
    assert stored.citations == message.citations
    assert await messages.get_owned_message("msg_1", "user-2") is None


@pytest.mark.asyncio
async def test_finalize_turn_without_evidence_stores_no_citations(database, seed_study, static_client) -> None:
    await seed_study({"ux.pdf": [("Users struggled with navigation.", [1.0, 0.0])]})
    search = VectorSearch(SQLiteChunkStore(database), static_client([1.0, 0.0]))
    service = ChatGroundingService(search, MessageStore(database))

    message = await service.finalize_turn(None, "chat-1", "study-1", "A made up claim [1].")

    assert message.id.startswith("msg_")
    assert message.citations is None
    assert message.tool_calls is None


@pytest.mark.asyncio
async def test_finalize_turn_appends_validated_synthesis_citations(database, seed_study, static_client) -> None:
    seeded = await seed_study({"ux.pdf": [("Most users struggled with navigation menus.", [1.0, 0.0])]})
    document_id, chunk_ids = seeded["ux.pdf"]
    search = VectorSearch(SQLiteChunkStore(database), static_client([1.0, 0.0]))
    service = ChatGroundingService(search, MessageStore(database))
    quoted = SynthesisCitation(
        id="doc_1", document_id=document_id, document_name="ux.pdf", relevant_text="struggled with navigation"
    )
    unretrieved = SynthesisCitation(id="doc_2", document_id="doc_other", document_name="x.pdf", relevant_text="x")

    message = await service.finalize_turn(
        None,
        "chat-1",
        "study-1",
        "Users struggled {{cite:doc_1}} with navigation [1].",
        tool_calls=[{"tool_name": "search_all_documents", "input": {"query": "navigation"}}],
        synthesis_citations=[quoted, unretrieved],
    )

    assert list(message.citations) == ["1", "2"]
    assert message.citations["1"]["kind"] == "retrieval"
    assert message.citations["2"]["kind"] == "synthesis"
    assert message.citations["2"]["chunk_id"] == chunk_ids[0]


@pytest.mark.asyncio
async def test_finalize_turn_never_overwrites_a_stored_message(database, seed_study, static_client) -> None:
    await seed_study({"ux.pdf": [("Users struggled with navigation.", [1.0, 0.0])]})
    search = VectorSearch(SQLiteChunkStore(database), static_client([1.0, 0.0]))
    messages = MessageStore(database)
    service = ChatGroundingService(search, messages)
    tool_calls = [{"tool_name": "search_all_documents", "input": {"query": "navigation"}}]

    await service.finalize_turn("msg_1", "chat-1", "study-1", "Navigation [1].", tool_calls=tool_calls)
    with pytest.raises(MessageExistsError):
        await service.finalize_turn("msg_1", "chat-1", "study-1", "Rewritten.", tool_calls=tool_calls)

    stored = await messages.get_owned_message("msg_1", "user-1")
    assert stored.content == "Navigation [1]."
    assert list(stored.citations) == ["1"]
