"""Tests for display-text extraction."""

from __future__ import annotations

from a2a.types import TaskState

from a2a_dashboard.extract import (
    EXTRACTORS,
    extract_artifacts_block,
    extract_display_text,
    extract_error_summary,
    extract_text_from_parts,
    format_json,
    task_state_fallback,
)

from .conftest import make_artifact, make_message, make_task


class TestTextParts:
    def test_first_text_part_wins(self):
        parts = [
            {"kind": "data", "data": {"a": 1}},
            {"kind": "text", "text": "first"},
            {"kind": "text", "text": "second"},
        ]
        assert extract_text_from_parts(parts) == "first"

    def test_no_text(self):
        assert extract_text_from_parts([{"kind": "file"}]) is None
        assert extract_text_from_parts(None) is None


class TestErrorSummary:
    def test_code_and_message(self):
        payload = {"error": {"code": -32601, "message": "Method not found"}}
        assert extract_display_text(payload) == "Agent error -32601: Method not found"

    def test_degrades(self):
        assert extract_error_summary({"error": {"message": "boom"}}) == (
            "Agent error: boom"
        )
        assert extract_error_summary({"error": {"code": 500}}) == "Agent error 500"
        assert extract_error_summary({"error": {}}) == "Agent returned an error."

    def test_nested_under_data(self):
        payload = {"data": {"error": {"code": 1, "message": "nested"}}}
        assert extract_error_summary(payload) == "Agent error 1: nested"

    def test_no_error(self):
        assert extract_error_summary({"result": "ok"}) is None
        assert extract_error_summary("text") is None

    def test_string_error_returned_as_is(self):
        assert extract_display_text({"error": "Request timed out"}) == (
            "Request timed out"
        )


class TestTaskExtraction:
    def test_status_message_first(self):
        task = make_task(status_text="From status", history=["From history"])
        assert extract_display_text(task) == "From status"

    def test_plain_string_status_message(self):
        task = {"kind": "task", "status": {"state": "working", "message": "Thinking"}}
        assert extract_display_text(task) == "Thinking"

    def test_latest_agent_history_entry(self):
        task = make_task(history=["older", "newest"])
        task["history"].append(make_message("user text", role="user"))
        assert extract_display_text(task) == "newest"

    def test_text_with_artifact(self):
        task = make_task(
            status_text="Done.",
            artifacts=[make_artifact('{"total": 3}', name="report")],
        )
        assert extract_display_text(task) == (
            "Done.\n\n**Artifact:**\n\n"
            '> 📎 **report**\n>\n> ```json\n> {"total": 3}\n> ```'
        )

    def test_artifacts_only_has_no_lead_in(self):
        task = make_task(artifacts=[make_artifact("a"), make_artifact("b", name="b")])
        text = extract_display_text(task)

        assert text.startswith("\n\n**Artifacts:**\n\n> 📎 **artifact**")
        assert "> 📎 **b**" in text

    def test_multiline_artifact_is_quoted(self):
        artifact = make_artifact("l1\nl2").model_dump(mode="json", by_alias=True)
        block = extract_artifacts_block([artifact])
        assert "> l1\n> l2" in block

    def test_state_fallbacks(self):
        for state, expected in (
            (TaskState.submitted, "Task submitted, waiting for agent..."),
            (TaskState.working, "Agent is working on your request..."),
            (TaskState.input_required, "Agent requires additional input."),
            (TaskState.completed, "Task completed."),
            (TaskState.failed, "Task failed."),
            (TaskState.canceled, "Task was canceled."),
            (TaskState.rejected, "Task status: rejected"),
        ):
            assert extract_display_text(make_task(state=state)) == expected

    def test_unknown_state(self):
        assert task_state_fallback(None) == "Task status: unknown"
        assert extract_display_text({"kind": "task"}) == "Task status: unknown"


class TestOtherShapes:
    def test_plain_string(self):
        assert extract_display_text("hello") == "hello"

    def test_message(self):
        assert extract_display_text(make_message("hi there")) == "hi there"

    def test_legacy_result_fields(self):
        assert extract_display_text({"result": "direct"}) == "direct"
        assert extract_display_text({"result": {"message": "m"}}) == "m"
        assert extract_display_text({"result": {"content": "c"}}) == "c"
        assert extract_display_text({"result": {"text": "t"}}) == "t"

    def test_json_fallback(self):
        payload = {"unexpected": [1, 2]}
        assert extract_display_text(payload) == format_json(payload)
        assert format_json(payload) == '{\n  "unexpected": [\n    1,\n    2\n  ]\n}'

    def test_never_fails(self):
        for payload in (None, 3, [], {"kind": "message", "parts": []}, object()):
            assert isinstance(extract_display_text(payload), str)

    def test_chain_order(self):
        assert [f.__name__ for f in EXTRACTORS] == [
            "_from_string",
            "_from_error",
            "_from_task",
            "_from_message",
            "_from_legacy_result",
        ]
