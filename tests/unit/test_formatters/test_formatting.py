"""Tests for message formatting."""

import pytest

from promptty.formatters import slack as slack_fmt
from promptty.formatters import teams as teams_fmt
from promptty.formatters.common import format_duration, split_message, truncate_with_ellipsis
from promptty.platforms.types import UpdateType
from promptty.utils.constants import SLACK_MAX_MESSAGE_LENGTH


class TestCommon:
    """Shared helpers."""

    @pytest.mark.parametrize(
        "ms,expected",
        [(850, "850ms"), (1500, "1.5s"), (59_000, "59.0s"), (125_000, "2m 5s")],
    )
    def test_format_duration(self, ms, expected):
        assert format_duration(ms) == expected

    def test_truncate(self):
        assert truncate_with_ellipsis("short", 10) == "short"
        truncated = truncate_with_ellipsis("x" * 20, 10)
        assert truncated == "x" * 7 + "..."
        assert len(truncated) == 10

    def test_split_short_message(self):
        assert split_message("short text", 100) == ["short text"]

    def test_split_prefers_paragraph_boundaries(self):
        text = "A" * 60 + "\n\n" + "B" * 60
        assert split_message(text, 100) == ["A" * 60, "B" * 60]

    def test_split_without_boundaries_is_hard(self):
        chunks = split_message("A" * 250, 100)
        assert [len(c) for c in chunks] == [100, 100, 50]


class TestSlackMrkdwn:
    """Markdown to Slack mrkdwn conversion."""

    def test_bold_italic_links(self):
        text = "**bold** and *italic* see [docs](https://example.com)"
        assert (
            slack_fmt.markdown_to_slack_mrkdwn(text)
            == "*bold* and _italic_ see <https://example.com|docs>"
        )

    def test_headers_and_strikethrough(self):
        assert slack_fmt.markdown_to_slack_mrkdwn("## Title\n~~old~~") == "*Title*\n~old~"

    def test_code_is_left_alone(self):
        text = "Run `a < b` then:\n```python\nx = **not bold**\n```"
        converted = slack_fmt.markdown_to_slack_mrkdwn(text)
        assert "`a < b`" in converted
        assert "x = **not bold**" in converted

    def test_escapes_special_characters(self):
        assert slack_fmt.markdown_to_slack_mrkdwn("a & b <c>") == "a &amp; b &lt;c&gt;"


class TestSlackMessages:
    """Slack message builders."""

    def test_acknowledgement(self):
        ack = slack_fmt.format_acknowledgement()
        assert "Processing" in ack.text
        assert ack.blocks[0]["type"] == "section"

    def test_response_single_chunk_with_footer(self):
        messages = slack_fmt.format_response("Done!", duration_ms=1500)
        assert len(messages) == 1
        assert messages[0].text.startswith("Done!")
        assert messages[0].text.endswith("_:stopwatch: Completed in 1.5s_")
        assert messages[0].blocks is None

    def test_long_response_is_chunked(self):
        output = "\n\n".join(["paragraph " + "x" * 1000] * 10)
        messages = slack_fmt.format_response(output, duration_ms=2000)
        assert len(messages) > 1
        assert all(len(m.text) <= SLACK_MAX_MESSAGE_LENGTH for m in messages)
        assert "Completed in" in messages[-1].text
        assert "Completed in" not in messages[0].text

    def test_empty_response(self):
        assert slack_fmt.format_response("   ")[0].text == "_(No output)_"

    def test_error_truncated_and_escaped(self):
        error = slack_fmt.format_error("<boom> " + "x" * 1000)
        assert error.text.startswith(":x: *Error*\n&lt;boom&gt;")
        assert len(error.text) < 600

    def test_update_prefix(self):
        update = slack_fmt.format_update("Tests failing", UpdateType.WARNING)
        assert update.text == ":warning: Tests failing"
        assert update.blocks[0]["text"]["text"] == update.text


class TestTeamsCards:
    """Adaptive Card builders."""

    def test_card_shape(self):
        card = teams_fmt.create_adaptive_card([{"type": "TextBlock", "text": "hi"}])
        assert card["type"] == "AdaptiveCard"
        assert card["version"] == "1.4"
        assert "actions" not in card

    def test_response_code_blocks_and_footer(self):
        card = teams_fmt.format_response(
            "# Result\nAll good\n```python\nprint('hi')\n```\nBye", duration_ms=125_000
        )
        body = card["body"]
        assert body[0]["text"].startswith("**Result**")
        assert body[1]["type"] == "Container"
        assert body[1]["items"][0]["text"] == "print('hi')"
        assert body[1]["items"][0]["fontType"] == "monospace"
        assert body[-1]["text"] == "⏱️ Completed in 2m 5s"

    def test_error_card(self):
        card = teams_fmt.format_error("x" * 1000)
        assert card["body"][0]["color"] == "attention"
        assert len(card["body"][1]["text"]) == 500

    def test_progress_card(self):
        card = teams_fmt.format_progress("Deployed", UpdateType.SUCCESS)
        block = card["body"][0]
        assert block["text"] == "✅ Deployed"
        assert block["color"] == "good"
