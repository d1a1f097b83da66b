"""Search tools exposed to the LLM through function calling.

The tools return the text the model reads, and also keep the structured
results on a :class:`ToolCallRecord` so citation validation can use exactly
the evidence the model was shown.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Any, Sequence

from study_grounding.db.stores import DocumentStore
from study_grounding.retrieval.search import VectorSearch, percent
from study_grounding.retrieval.types import SearchResult, ToolCallRecord

SEARCH_ALL_DOCUMENTS = "search_all_documents"
SEARCH_SPECIFIC_DOCUMENTS = "search_specific_documents"
SEARCH_TOOL_NAMES = frozenset({SEARCH_ALL_DOCUMENTS, SEARCH_SPECIFIC_DOCUMENTS})

TOOL_DEFAULT_LIMIT = 3
TOOL_MAX_LIMIT = 15

_FILENAME_RE = re.compile(r"\.(txt|pdf|docx|doc|md)$", re.IGNORECASE)

_QUERY_PARAMETERS: dict[str, Any] = {
    "query": {"type": "string", "description": "The search query to find relevant content"},
    "limit": {
        "type": "number",
        "description": f"Maximum number of results to return (default: {TOOL_DEFAULT_LIMIT})",
        "minimum": 1,
        "maximum": TOOL_MAX_LIMIT,
    },
    "minSimilarity": {
        "type": "number",
        "description": "Minimum similarity score for results (default: 0.1)",
        "minimum": 0,
        "maximum": 1,
    },
}

SEARCH_TOOL_DEFINITIONS: dict[str, dict[str, Any]] = {
    SEARCH_ALL_DOCUMENTS: {
        "description": "Search across all documents in the current study for relevant content",
        "parameters": {
            "type": "object",
            "properties": dict(_QUERY_PARAMETERS),
            "required": ["query"],
        },
    },
    SEARCH_SPECIFIC_DOCUMENTS: {
        "description": (
            "Search within specific documents only. Use when the user mentions specific "
            "document names or wants to search particular files."
        ),
        "parameters": {
            "type": "object",
            "properties": {
                **_QUERY_PARAMETERS,
                "documentIds": {
                    "type": "array",
                    "items": {"type": "string"},
                    "description": "Array of document IDs to search within",
                },
            },
            "required": ["query", "documentIds"],
        },
    },
}


@dataclass(slots=True)
class SearchToolResult:
    results: list[SearchResult]
    search_scope: str
    document_names: dict[str, str] = field(default_factory=dict)
    tool_used: str = SEARCH_ALL_DOCUMENTS

    @property
    def total_found(self) -> int:
        return len(self.results)


class SearchTools:
    """Executes search tool calls for one study."""

    def __init__(self, search: VectorSearch, documents: DocumentStore, study_id: str) -> None:
        if not study_id:
            raise ValueError("Study ID is required")
        self.search = search
        self.documents = documents
        self.study_id = study_id

    async def search_all_documents(
        self,
        query: str,
        limit: int = TOOL_DEFAULT_LIMIT,
        min_similarity: float = 0.1,
    ) -> SearchToolResult:
        if not query.strip():
            raise ValueError("Search query cannot be empty")
        results = await self.search.find_relevant_chunks(
            query, study_id=self.study_id, limit=limit, min_similarity=min_similarity
        )
        names = await self.documents.document_names(list(dict.fromkeys(r.document_id for r in results)))
        return SearchToolResult(results=results, search_scope="all", document_names=names)

    async def search_specific_documents(
        self,
        query: str,
        document_ids: Sequence[str],
        limit: int = TOOL_DEFAULT_LIMIT,
        min_similarity: float = 0.1,
    ) -> SearchToolResult:
        if not query.strip():
            raise ValueError("Search query cannot be empty")
        if not document_ids:
            raise ValueError("No document IDs provided for specific search")
        filenames = [doc_id for doc_id in document_ids if _FILENAME_RE.search(doc_id)]
        if filenames:
            raise ValueError(
                "Document IDs cannot be filenames. Found potential filenames: " + ", ".join(filenames)
            )
        if not await self.documents.documents_in_study(document_ids, self.study_id):
            raise PermissionError("Access denied to one or more specified documents")
        results = await self.search.find_relevant_chunks(
            query,
            study_id=self.study_id,
            document_ids=document_ids,
            limit=limit,
            min_similarity=min_similarity,
        )
        names = await self.documents.document_names(document_ids)
        return SearchToolResult(
            results=results,
            search_scope="specific",
            document_names=names,
            tool_used=SEARCH_SPECIFIC_DOCUMENTS,
        )

    async def execute(self, tool_name: str, arguments: dict[str, Any]) -> ToolCallRecord:
        """Run a tool call and return the record persisted with the message."""
        errors = validate_search_parameters(tool_name, arguments)
        if errors:
            raise ValueError("; ".join(errors))
        limit = arguments.get("limit")
        limit = TOOL_DEFAULT_LIMIT if limit is None else int(limit)
        min_similarity = arguments.get("minSimilarity")
        min_similarity = 0.1 if min_similarity is None else float(min_similarity)
        if tool_name == SEARCH_SPECIFIC_DOCUMENTS:
            result = await self.search_specific_documents(
                arguments["query"], arguments["documentIds"], limit=limit, min_similarity=min_similarity
            )
        else:
            result = await self.search_all_documents(arguments["query"], limit=limit, min_similarity=min_similarity)
        return ToolCallRecord(
            tool_name=tool_name,
            input=dict(arguments),
            output=format_search_tool_results(result),
            results=list(result.results),
        )


def format_search_tool_results(result: SearchToolResult) -> str:
    """Text the model reads back from a search tool call."""
    if result.total_found == 0:
        searched = ", ".join(result.document_names.values())
        scope = "all documents" if result.search_scope == "all" or not searched else searched
        return (
            f"No relevant content found in {scope}.\n\n"
            "Suggestions:\n"
            "- Try different search terms or synonyms\n"
            "- Use broader, more general terms\n"
            "- Lower the similarity threshold (try minSimilarity: 0.05)"
        )

    count = len(result.document_names)
    scope = f"all documents ({count} matched)" if result.search_scope == "all" else f"{count} specified documents"
    parts = [f"Found {result.total_found} relevant passages in {scope}:\n\n"]
    for index, item in enumerate(result.results):
        name = result.document_names.get(item.document_id, item.document_name)
        parts.append(f"**{index + 1}. {name}** ({percent(item.similarity)}% relevance)\n")
        parts.append(f"{item.content.strip()}\n\n")
        if index < result.total_found - 1:
            parts.append("---\n\n")
    return "".join(parts)


def validate_search_parameters(tool_name: str, parameters: dict[str, Any]) -> list[str]:
    """Return human-readable problems with a tool call's arguments."""
    errors: list[str] = []
    if tool_name not in SEARCH_TOOL_NAMES:
        errors.append(f"Unknown search tool: {tool_name}")
    query = parameters.get("query")
    if not query or not isinstance(query, str):
        errors.append("Query is required and must be a string")

    limit = parameters.get("limit")
    if limit is not None and (
        isinstance(limit, bool) or not isinstance(limit, (int, float)) or not 1 <= limit <= TOOL_MAX_LIMIT
    ):
        errors.append(f"Limit must be a number between 1 and {TOOL_MAX_LIMIT}")

    min_similarity = parameters.get("minSimilarity")
    if min_similarity is not None and (
        isinstance(min_similarity, bool)
        or not isinstance(min_similarity, (int, float))
        or not 0 <= min_similarity <= 1
    ):
        errors.append("MinSimilarity must be a number between 0 and 1")

    if tool_name == SEARCH_SPECIFIC_DOCUMENTS:
        document_ids = parameters.get("documentIds")
        if not isinstance(document_ids, list):
            errors.append("DocumentIds is required for specific document search and must be an array")
        elif not document_ids:
            errors.append("At least one document ID is required for specific document search")
    return errors


__all__ = [
    "SEARCH_ALL_DOCUMENTS",
    "SEARCH_SPECIFIC_DOCUMENTS",
    "SEARCH_TOOL_NAMES",
    "SEARCH_TOOL_DEFINITIONS",
    "SearchToolResult",
    "SearchTools",
    "format_search_tool_results",
    "validate_search_parameters",
]
