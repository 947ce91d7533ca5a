"""Unit tests for text and date helpers."""

from datetime import datetime, timezone

from mail_todo_agent.utils.dates import format_iso, parse_datetime, to_iso, to_timestamp
from mail_todo_agent.utils.text import (
    plain_text_to_html,
    split_html_reply_tail,
    split_reply_tail,
    strip_code_fence,
    strip_html,
    truncate_text,
)


class TestTextHelpers:
    """Test suite for text helpers."""

    def test_truncate_with_suffix_stays_within_limit(self) -> None:
        text = truncate_text("a" * 50, 20, "\n\n[...]")

        assert len(text) <= 20
        assert text.endswith("[...]")

    def test_truncate_short_text_untouched(self) -> None:
        assert truncate_text("  short \r\n", 20) == "short"

    def test_strip_html_keeps_block_breaks(self) -> None:
        text = strip_html("<div>Hello&nbsp;there</div><p>Line <b>two</b></p><script>x()</script>")

        assert text == "Hello there\nLine two"

    def test_strip_code_fence(self) -> None:
        assert strip_code_fence('```json\n{"a": 1}\n```') == '{"a": 1}'
        assert strip_code_fence("plain") == "plain"

    def test_plain_text_to_html_escapes(self) -> None:
        assert plain_text_to_html("a < b\nnext") == "<div>a &lt; b<br>next</div>"


class TestReplyTail:
    """Representative compose bodies for the signature/quote heuristics."""

    def test_plain_signature(self) -> None:
        head, tail = split_reply_tail("old draft\n-- \nJan Kowalski\nACME")

        assert head == "old draft"
        assert tail == "-- \nJan Kowalski\nACME"

    def test_plain_attribution_and_quote(self) -> None:
        head, tail = split_reply_tail("\nOn Mon, 1 Jan 2025, Anna wrote:\n> Please send it")

        assert head == ""
        assert tail.startswith("On Mon, 1 Jan 2025, Anna wrote:")

    def test_plain_without_tail(self) -> None:
        assert split_reply_tail("just text") == ("just text", "")

    def test_html_signature_and_quote(self) -> None:
        body = '<p>draft</p><div class="moz-signature">Jan</div><blockquote>quoted</blockquote>'

        head, tail = split_html_reply_tail(body)

        assert head == "<p>draft</p>"
        assert tail.startswith('<div class="moz-signature">')

    def test_html_gmail_quote(self) -> None:
        head, tail = split_html_reply_tail('<div>x</div><div class="gmail_quote">On ... wrote</div>')

        assert head == "<div>x</div>"
        assert "gmail_quote" in tail


class TestDates:
    """Test suite for timestamp helpers."""

    def test_format_iso_uses_milliseconds_and_z(self) -> None:
        value = datetime(2025, 1, 2, 3, 4, 5, 678901, tzinfo=timezone.utc)

        assert format_iso(value) == "2025-01-02T03:04:05.678Z"

    def test_parse_accepts_common_shapes(self) -> None:
        expected = datetime(2025, 1, 1, 12, 0, tzinfo=timezone.utc)

        assert parse_datetime("2025-01-01T12:00:00Z") == expected
        assert parse_datetime("Wed, 01 Jan 2025 13:00:00 +0100") == expected
        assert parse_datetime(1735732800000) == expected
        assert parse_datetime(datetime(2025, 1, 1, 12, 0)) == expected

    def test_unparseable_values(self) -> None:
        assert parse_datetime("yesterday") is None
        assert parse_datetime(True) is None
        assert to_iso("") == ""
        assert to_timestamp(None) == 0.0
