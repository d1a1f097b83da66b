"""Search value objects."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from typing import Any


@dataclass(frozen=True, slots=True)
class SearchOptions:
    limit: int = 5
    min_similarity: float = 0.1
    study_id: str | None = None
    document_ids: tuple[str, ...] | None = None
    exclude_chunk_id: str | None = None

    def merged(self, **overrides: Any) -> "SearchOptions":
        values = {key: value for key, value in overrides.items() if value is not None}
        if "document_ids" in values:
            values["document_ids"] = tuple(values["document_ids"])
        return replace(self, **values) if values else self


DEFAULT_SEARCH_OPTIONS = SearchOptions()


@dataclass(slots=True)
class SearchResult:
    chunk_id: str
    document_id: str
    document_name: str
    content: str
    chunk_index: int
    similarity: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SearchResult":
        return cls(
            chunk_id=data["chunk_id"],
            document_id=data["document_id"],
            document_name=data["document_name"],
            content=data["content"],
            chunk_index=int(data["chunk_index"]),
            similarity=float(data["similarity"]),
        )


@dataclass(slots=True)
class ToolCallRecord:
    """A tool call made by the LLM during one turn.

    ``output`` is what the model saw (a serialized string). ``results`` keeps
    the structured search results when the tool ran in-process; records
    restored from storage may lack them.
    """

    tool_name: str
    input: dict[str, Any] = field(default_factory=dict)
    output: str | None = None
    results: list[SearchResult] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "tool_name": self.tool_name,
            "input": self.input,
            "output": self.output,
            "results": [item.to_dict() for item in self.results] if self.results is not None else None,
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "ToolCallRecord":
        raw_results = data.get("results")
        return cls(
            tool_name=data["tool_name"],
            input=dict(data.get("input") or {}),
            output=data.get("output"),
            results=[SearchResult.from_dict(item) for item in raw_results] if raw_results is not None else None,
        )


__all__ = ["SearchOptions", "DEFAULT_SEARCH_OPTIONS", "SearchResult", "ToolCallRecord"]
