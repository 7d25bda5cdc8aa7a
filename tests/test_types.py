"""Tests for convodoc.types module — pipeline data contracts."""

from __future__ import annotations

import dataclasses

import pytest

from convodoc.types import (
    BatchWindow,
    ProcessingStatus,
    PromptLogEntry,
    Proposal,
    RagSearchCriteria,
    StepLogEntry,
    StepStatus,
    StepType,
    UpdateType,
)


class TestUnifiedMessage:
    def test_frozen(self, make_message):
        msg = make_message(0)
        with pytest.raises(dataclasses.FrozenInstanceError):
            msg.content = "changed"  # type: ignore[misc]

    def test_defaults(self, make_message):
        msg = make_message(0)
        assert msg.id == 0
        assert msg.channel == ""
        assert msg.reply_to_id == ""
        assert msg.processing_status == ProcessingStatus.PENDING


class TestProposal:
    def test_defaults(self):
        p = Proposal(update_type=UpdateType.INSERT, page="a.md", reasoning="r")
        assert p.section == ""
        assert p.suggested_text is None
        assert p.source_messages == ()
        assert p.warnings == ()

    def test_update_type_from_string(self):
        assert UpdateType("DELETE") is UpdateType.DELETE
        assert str(StepType.CONDENSE) == "condense"


class TestBatchWindow:
    def test_empty(self, t0):
        assert BatchWindow(stream_id="s1", batch_start=t0, batch_end=t0).is_empty

    def test_not_empty(self, t0, make_message):
        window = BatchWindow(
            stream_id="s1", batch_start=t0, batch_end=t0, messages=(make_message(0),)
        )
        assert not window.is_empty


class TestRagSearchCriteria:
    def test_semantic_query_wins(self):
        criteria = RagSearchCriteria(keywords=("a", "b"), semantic_query="reset the hub")
        assert criteria.query() == "reset the hub"

    def test_falls_back_to_keywords(self):
        assert RagSearchCriteria(keywords=("reset", "hub")).query() == "reset hub"
        assert RagSearchCriteria().query() == ""


class TestLogEntries:
    def test_step_entry_omits_empty_fields(self):
        entry = StepLogEntry(step_name="f", step_type="filter", input_count=3, output_count=2)
        assert entry.to_dict() == {
            "stepName": "f",
            "stepType": "filter",
            "status": "completed",
            "durationMs": 0,
            "inputCount": 3,
            "outputCount": 2,
        }

    def test_step_entry_with_error_and_prompts(self):
        prompt = PromptLogEntry(label="LLM Call", entry_type="llm-call", prompt_id="p")
        entry = StepLogEntry(
            step_name="g",
            step_type="generate",
            status=StepStatus.FAILED,
            error="boom",
            prompt_entries=[prompt],
        )
        d = entry.to_dict()
        assert d["status"] == "failed"
        assert d["error"] == "boom"
        assert d["promptEntries"][0]["promptId"] == "p"

    def test_rag_query_entry(self):
        entry = PromptLogEntry(
            label="RAG",
            entry_type="rag-query",
            query="reset",
            results=[{"filePath": "a.md"}],
        )
        assert entry.to_dict() == {
            "label": "RAG",
            "entryType": "rag-query",
            "query": "reset",
            "resultCount": 1,
            "results": [{"filePath": "a.md"}],
        }
