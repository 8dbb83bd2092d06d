"""Tests for stream-json parsing."""

from promptty.agent.parser import (
    extract_final_result,
    extract_tools,
    parse_stream_line,
    to_stream_update,
)


class TestParseStreamLine:
    """Line decoding."""

    def test_json_object(self):
        assert parse_stream_line('{"type": "system"}\n') == {"type": "system"}

    def test_blank_and_garbage_lines(self):
        assert parse_stream_line("   ") is None
        assert parse_stream_line("Loading...") is None

    def test_non_object_json(self):
        assert parse_stream_line("[1, 2, 3]") is None


class TestToStreamUpdate:
    """Event conversion."""

    def test_assistant_text_and_tools(self):
        update = to_stream_update(
            {
                "type": "assistant",
                "message": {
                    "content": [
                        {"type": "text", "text": "Let me look"},
                        {"type": "tool_use", "id": "t1", "name": "Grep", "input": {"pattern": "x"}},
                    ]
                },
            }
        )
        assert update.type == "assistant"
        assert update.content == "Let me look"
        assert update.tool_calls == [
            {"tool_name": "Grep", "tool_id": "t1", "input": {"pattern": "x"}}
        ]

    def test_error_event(self):
        update = to_stream_update({"type": "error", "error": {"message": "overloaded"}})
        assert update.type == "error"
        assert update.content == "overloaded"

    def test_unknown_type(self):
        assert to_stream_update({"type": "mystery"}) is None


class TestExtractFinalResult:
    """Final answer selection."""

    def test_result_event_wins(self):
        final = extract_final_result(
            [
                {"type": "assistant", "message": {"content": [{"type": "text", "text": "draft"}]}},
                {
                    "type": "result",
                    "result": "final answer",
                    "session_id": "agent-1",
                    "num_turns": 3,
                    "total_cost_usd": 0.25,
                },
            ]
        )
        assert final.output == "final answer"
        assert final.session_id == "agent-1"
        assert final.is_error is False
        assert final.num_turns == 3
        assert final.cost == 0.25

    def test_error_result(self):
        final = extract_final_result(
            [{"type": "result", "result": "max turns", "is_error": True}]
        )
        assert final.is_error is True
        assert final.output == "max turns"

    def test_falls_back_to_assistant_text(self):
        final = extract_final_result(
            [
                {"type": "system", "session_id": "agent-2"},
                {"type": "assistant", "message": {"content": [{"type": "text", "text": "one"}]}},
                {"type": "assistant", "message": {"content": [{"type": "text", "text": "two"}]}},
            ]
        )
        assert final.output == "one\ntwo"
        assert final.session_id == "agent-2"

    def test_error_event_without_result(self):
        final = extract_final_result([{"type": "error", "error": {"message": "bad"}}])
        assert final.is_error is True
        assert final.output == "Error: bad"


def test_extract_tools():
    tools = extract_tools(
        [
            {
                "type": "assistant",
                "message": {"content": [{"type": "tool_use", "id": "a", "name": "Bash", "input": {}}]},
            },
            {"type": "user", "message": {"content": "ok"}},
        ]
    )
    assert [t["tool_name"] for t in tools] == ["Bash"]
