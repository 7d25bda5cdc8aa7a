"""Pydantic models for structured LLM responses."""

from __future__ import annotations

from pydantic import BaseModel, Field

from convodoc.types import UpdateType

__all__ = [
    "ClassificationResponse",
    "CondenseResponse",
    "ProposalItem",
    "ProposalResponse",
    "RagCriteriaItem",
    "ReformatResponse",
    "ThreadItem",
]


class RagCriteriaItem(BaseModel):
    keywords: list[str] = Field(default_factory=list)
    semantic_query: str = ""


class ThreadItem(BaseModel):
    category: str
    messages: list[int]
    summary: str
    doc_value_reason: str = ""
    rag_search_criteria: RagCriteriaItem = Field(default_factory=RagCriteriaItem)


class ClassificationResponse(BaseModel):
    threads: list[ThreadItem] = Field(default_factory=list)


class ProposalItem(BaseModel):
    update_type: UpdateType
    page: str
    section: str = ""
    suggested_text: str | None = None
    reasoning: str = ""
    source_messages: list[int] = Field(default_factory=list)


class ProposalResponse(BaseModel):
    proposals: list[ProposalItem] = Field(default_factory=list)
    proposals_rejected: bool = False
    rejection_reason: str = ""


class ReformatResponse(BaseModel):
    reformatted_content: str
    changes_description: str = ""


class CondenseResponse(BaseModel):
    condensed_content: str
