"""
Tests for IMAP response parsing
"""
import pytest

from pocket_mail.core.imap.fetch import window_range
from pocket_mail.core.imap.protocol import (
    decode_text,
    parse_fetch_records,
    parse_select_response,
    status_text,
)
from pocket_mail.utils.errors import ProtocolError, ValidationError

ENVELOPE_LINE = (
    b'4 FETCH (UID 204 ENVELOPE ("Tue, 2 Jan 2024 09:00:00 +0000" "Quarterly report" '
    b'(("Alice Smith" NIL "alice" "example.com")) (("Alice Smith" NIL "alice" "example.com")) '
    b'(("Alice Smith" NIL "alice" "example.com")) ((NIL NIL "bob" "example.com")) '
    b'NIL NIL NIL "<r1@example.com>"))'
)


class TestWindowRange:
    """Tests for window_range"""

    @pytest.mark.parametrize(
        "total, max_count, expected",
        [
            (3, 10, (1, 3)),
            (25, 10, (16, 25)),
            (10, 10, (1, 10)),
            (1, 1, (1, 1)),
            (100, 1, (100, 100)),
        ],
    )
    def test_ranges(self, total, max_count, expected):
        """Test the clamped most-recent window"""
        assert window_range(total, max_count) == expected

    def test_empty_mailbox(self):
        """Test that an empty mailbox has no window"""
        assert window_range(0, 10) is None

    @pytest.mark.parametrize("max_count", [0, -1, True, 2.5, "10"])
    def test_invalid_window_size(self, max_count):
        """Test that non-positive or non-integer sizes are rejected"""
        with pytest.raises(ValidationError):
            window_range(10, max_count)


class TestParseFetchRecords:
    """Tests for parse_fetch_records"""

    def test_envelope_record(self):
        """Test parsing UID and ENVELOPE"""
        records = parse_fetch_records([ENVELOPE_LINE, b"FETCH completed"])

        assert len(records) == 1
        record = records[0]
        assert record.sequence == 4
        assert record.uid == 204
        assert record.envelope.subject == "Quarterly report"
        assert record.envelope.from_[0].address == "alice@example.com"
        assert record.envelope.from_[0].name == "Alice Smith"
        assert record.envelope.message_id == "<r1@example.com>"

    def test_literal_body(self):
        """Test a BODY[] literal split across lines"""
        raw = b"Subject: Hi\r\n\r\nline one\r\nline two (with parens)\r\n"
        lines = [
            b"1 FETCH (UID 55 BODY[] {%d}" % len(raw),
            bytearray(raw),
            b")",
            b"UID FETCH completed",
        ]

        records = parse_fetch_records(lines)

        assert len(records) == 1
        assert records[0].uid == 55
        assert records[0].body == raw

    def test_literal_followed_by_more_items(self):
        """Test items after a literal on the continuation line"""
        raw = b"x" * 5
        lines = [b"2 FETCH (BODY[] {5}", raw, b" UID 9)", b"done"]

        record = parse_fetch_records(lines)[0]

        assert record.body == raw
        assert record.uid == 9

    def test_literal_subject_in_envelope(self):
        """Test an envelope string sent as a literal"""
        lines = [
            b'3 FETCH (UID 77 ENVELOPE (NIL {9}',
            bytearray(b"Re: \"hi\")"),
            b' (("A" NIL "a" "example.com")) NIL NIL NIL NIL NIL NIL NIL))',
            b"FETCH completed",
        ]

        record = parse_fetch_records(lines)[0]

        assert record.envelope.subject == 'Re: "hi")'
        assert record.envelope.from_[0].address == "a@example.com"

    def test_records_in_received_order(self):
        """Test that several records keep their order"""
        lines = [
            b'2 FETCH (UID 12 ENVELOPE (NIL "b" NIL NIL NIL NIL NIL NIL NIL NIL))',
            b'1 FETCH (UID 11 ENVELOPE (NIL "a" NIL NIL NIL NIL NIL NIL NIL NIL))',
            b"FETCH completed",
        ]

        assert [r.uid for r in parse_fetch_records(lines)] == [12, 11]

    def test_unsolicited_and_other_lines_skipped(self):
        """Test that non-FETCH lines and flag updates carry no envelope"""
        lines = [b"3 EXISTS", b"5 FETCH (FLAGS (\\Seen))", ENVELOPE_LINE, b"FETCH completed"]

        records = parse_fetch_records(lines)

        assert [r.sequence for r in records] == [5, 4]
        assert records[0].envelope is None
        assert records[0].uid is None

    def test_nil_sender(self):
        """Test an envelope without a From address"""
        line = b'1 FETCH (UID 3 ENVELOPE (NIL "No sender" NIL NIL NIL NIL NIL NIL NIL NIL))'
        record = parse_fetch_records([line, b"done"])[0]
        assert record.envelope.from_ == []

    def test_address_without_host(self):
        """Test that a missing host renders the mailbox alone"""
        line = b'1 FETCH (UID 3 ENVELOPE (NIL "x" ((NIL NIL "postmaster" NIL)) NIL NIL NIL NIL NIL NIL NIL))'
        record = parse_fetch_records([line, b"done"])[0]
        assert record.envelope.from_[0].address == "postmaster"

    def test_encoded_words_decoded(self):
        """Test RFC 2047 subjects"""
        line = (
            b'1 FETCH (UID 3 ENVELOPE (NIL "=?utf-8?q?Caf=C3=A9?=" '
            b'(("=?utf-8?b?w4lsb2lzZQ==?=" NIL "e" "example.com")) NIL NIL NIL NIL NIL NIL NIL))'
        )
        record = parse_fetch_records([line, b"done"])[0]
        assert record.envelope.subject == "Café"
        assert record.envelope.from_[0].name == "Éloise"

    def test_escaped_quotes(self):
        """Test backslash escapes in quoted strings"""
        line = b'1 FETCH (UID 3 ENVELOPE (NIL "say \\"hi\\"" NIL NIL NIL NIL NIL NIL NIL NIL))'
        record = parse_fetch_records([line, b"done"])[0]
        assert record.envelope.subject == 'say "hi"'

    def test_truncated_literal(self):
        """Test that a short literal is a protocol error"""
        with pytest.raises(ProtocolError):
            parse_fetch_records([b"1 FETCH (BODY[] {50}", bytearray(b"short"), b")"])

    def test_malformed_envelope(self):
        """Test that a short ENVELOPE list is a protocol error"""
        with pytest.raises(ProtocolError) as exc_info:
            parse_fetch_records([b'1 FETCH (UID 1 ENVELOPE (NIL "x"))', b"done"])
        assert exc_info.value.details["phase"] == "fetch"

    def test_empty_response(self):
        """Test a FETCH that matched nothing"""
        assert parse_fetch_records([b"FETCH completed"]) == []


class TestParseSelectResponse:
    """Tests for parse_select_response"""

    def test_exists_and_uidvalidity(self):
        """Test the message count and UIDVALIDITY"""
        lines = [
            b"FLAGS (\\Seen \\Deleted)",
            b"172 EXISTS",
            b"1 RECENT",
            b"OK [UIDVALIDITY 3857529045] UIDs valid",
            b"[READ-WRITE] SELECT completed",
        ]

        info = parse_select_response("INBOX", lines)

        assert info.name == "INBOX"
        assert info.total == 172
        assert info.uid_validity == 3857529045

    def test_empty_mailbox(self):
        """Test a zero count"""
        info = parse_select_response("Archive", [b"0 EXISTS", b"SELECT completed"])
        assert info.total == 0
        assert info.uid_validity is None

    def test_missing_exists(self):
        """Test that a response without EXISTS is rejected"""
        with pytest.raises(ProtocolError) as exc_info:
            parse_select_response("INBOX", [b"SELECT completed"])
        assert exc_info.value.details["phase"] == "select"


class TestHelpers:
    """Tests for small text helpers"""

    def test_status_text_uses_last_line(self):
        assert status_text([b"1 EXISTS", b"SELECT completed"]) == "SELECT completed"

    def test_status_text_empty(self):
        assert status_text([]) == "No response"

    def test_decode_text_nil(self):
        assert decode_text(None) == ""

    def test_decode_text_bad_encoded_word(self):
        """Test that undecodable encoded-words are returned as-is"""
        assert decode_text(b"=?bogus-charset?q?abc?=") == "=?bogus-charset?q?abc?="
