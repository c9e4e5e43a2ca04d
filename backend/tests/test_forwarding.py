"""
Forwarded-message recovery tests.

Covers:
  - forward detection heuristic
  - boundary / header matchers for Gmail, Apple Mail and Outlook blocks
  - the HTML line view (inline tags, entities, <br>)
  - ForwardingFacts for forwarded and direct messages, honeytrap handling
  - banner stripping for text and HTML
"""

from datetime import datetime, timezone

import pytest

from app.config import RedactionConfig
from app.models.inbound_email import ForwardingFacts, NormalizedMessage
from app.services.forwarding import (
    detect_forwarded,
    extract_original_date,
    extract_original_from_line,
    extract_original_sender,
    html_to_lines,
    match_date_header,
    match_forward_boundary,
    match_from_header,
    parse_email_address,
    recover_forwarding_facts,
    resolve_sender_id,
    strip_forward_banner,
    strip_forward_banner_html,
    to_lines,
    validate_from_line,
)

NOW = datetime(2026, 2, 1, tzinfo=timezone.utc)
EMPTY_CONFIG = RedactionConfig()
TRAP_CONFIG = RedactionConfig.from_values(emails=["trap@decoy.org"], ids=["TRK-991"])


# ---------------------------------------------------------------------------
# Message builders
# ---------------------------------------------------------------------------

def _make_gmail_body(
    original_from: str = "Jane Doe <jane@example.org>",
    date: str = "Mon, Jan 5, 2026 at 3:00 PM",
) -> str:
    return (
        "\n"
        "---------- Forwarded message ---------\n"
        f"From: {original_from}\n"
        f"Date: {date}\n"
        "Subject: Help us win\n"
        "To: <forwarder@example.com>\n"
        "\n"
        "Chip in $5 before midnight: https://secure.actblue.com/donate/x\n"
    )


def _make_message(**overrides) -> NormalizedMessage:
    values = {
        "envelope_sender": "forwarder@example.com",
        "subject": "Fwd: Help us win",
        "body_plain": _make_gmail_body(),
        "body_html": None,
    }
    values.update(overrides)
    return NormalizedMessage(**values)


# ===========================================================================
# Detection
# ===========================================================================

class TestDetectForwarded:
    """Subject prefixes and body markers identify a forward."""

    @pytest.mark.parametrize("subject", ["Fwd: Help us win", "fwd: hi", "FW: hi", "Re: FW: hi"])
    def test_subject_markers(self, subject):
        assert detect_forwarded(subject, "", None)

    def test_body_marker(self):
        assert detect_forwarded("Help us win", "---------- Forwarded message ---------", None)

    def test_apple_marker_in_html(self):
        assert detect_forwarded("", "", "<div>Begin forwarded message:</div>")

    def test_direct_message(self):
        assert not detect_forwarded("Help us win", "Chip in $5", "<p>Chip in</p>")

    def test_fw_substring_anywhere_counts(self):
        # Known false positive of the heuristic
        assert detect_forwarded("Our new fw: firmware update", "", None)


# ===========================================================================
# Matchers
# ===========================================================================

class TestMatchers:
    """Pure line matchers."""

    def test_boundary_styles(self):
        assert match_forward_boundary("---------- Forwarded message ---------") == "gmail"
        assert match_forward_boundary("Begin forwarded message:") == "apple"
        assert match_forward_boundary("From: Jane Doe <jane@example.org>") == "outlook"
        assert match_forward_boundary("Chip in $5") is None

    def test_outlook_boundary_needs_an_address(self):
        assert match_forward_boundary("From: Jane Doe") is None

    def test_from_header(self):
        assert match_from_header("From: Jane Doe <jane@example.org>") == "Jane Doe <jane@example.org>"
        assert match_from_header("from:   jane@example.org  ") == "jane@example.org"
        assert match_from_header("Reply-To: jane@example.org") is None

    def test_date_and_sent_headers(self):
        assert match_date_header("Date: Mon, Jan 5, 2026 at 3:00 PM") == "Mon, Jan 5, 2026 at 3:00 PM"
        assert match_date_header("Sent: Monday, January 5, 2026 3:00 PM") == "Monday, January 5, 2026 3:00 PM"
        assert match_date_header("Subject: Date: tomorrow") is None

    @pytest.mark.parametrize(
        "value, expected",
        [
            ("Jane Doe <jane@example.org>", "jane@example.org"),
            ('"Doe, Jane" <jane.doe+news@mail.example.org>', "jane.doe+news@mail.example.org"),
            ("jane@example.org", "jane@example.org"),
            ("Jane Doe", None),
            (None, None),
        ],
    )
    def test_parse_email_address(self, value, expected):
        assert parse_email_address(value) == expected


# ===========================================================================
# Line views
# ===========================================================================

class TestLineViews:
    """Plain and HTML bodies become comparable line lists."""

    def test_quote_markers_are_stripped(self):
        lines = to_lines("> ---------- Forwarded message ---------\r\n>> From: a@b.org\n")
        assert lines[0] == "---------- Forwarded message ---------"
        assert lines[1] == "From: a@b.org"

    def test_html_inline_tags_and_entities(self):
        html = (
            '<div class="gmail_attr">---------- Forwarded message ---------<br>'
            'From: <strong class="gmail_sendername">Jane Doe</strong> '
            '<span>&lt;<a href="mailto:jane@example.org">jane@example.org</a>&gt;</span><br>'
            "Date: Mon, Jan 5, 2026 at 3:00&nbsp;PM<br></div>"
        )
        lines = html_to_lines(html)
        assert "---------- Forwarded message ---------" in lines
        assert "From: Jane Doe <jane@example.org>" in lines
        assert "Date: Mon, Jan 5, 2026 at 3:00 PM" in lines

    def test_block_closings_split_lines(self):
        assert html_to_lines("<p>one</p><p>two</p>")[:2] == ["one", "two"]

    def test_empty(self):
        assert to_lines(None) == []
        assert html_to_lines("") == []


# ===========================================================================
# Header extraction
# ===========================================================================

class TestExtractOriginalFromLine:
    """From line recovery inside the header window."""

    def test_gmail(self):
        lines = to_lines(_make_gmail_body())
        assert extract_original_from_line(lines, EMPTY_CONFIG) == "Jane Doe <jane@example.org>"

    def test_apple(self):
        body = (
            "Begin forwarded message:\n"
            "\n"
            "From: Jane Doe <jane@example.org>\n"
            "Subject: Help us win\n"
            "Date: January 5, 2026 at 3:00:12 PM EST\n"
        )
        assert extract_original_from_line(to_lines(body), EMPTY_CONFIG) == "Jane Doe <jane@example.org>"

    def test_outlook(self):
        body = (
            "From: Jane Doe <jane@example.org>\n"
            "Sent: Monday, January 5, 2026 3:00 PM\n"
            "To: forwarder@example.com\n"
        )
        assert extract_original_from_line(to_lines(body), EMPTY_CONFIG) == "Jane Doe <jane@example.org>"

    def test_no_boundary(self):
        assert extract_original_from_line(to_lines("Chip in $5\nThanks"), EMPTY_CONFIG) is None

    def test_honeytrap_from_is_discarded(self):
        lines = to_lines(_make_gmail_body(original_from="List <TRAP@decoy.org>"))
        assert extract_original_from_line(lines, TRAP_CONFIG) is None

    def test_only_first_from_is_considered(self):
        body = _make_gmail_body(original_from="List <trap@decoy.org>") + (
            "\n---------- Forwarded message ---------\n"
            "From: Someone Else <else@example.org>\n"
        )
        assert extract_original_from_line(to_lines(body), TRAP_CONFIG) is None


class TestValidateFromLine:
    """Structural checks on recovered From values."""

    def test_requires_at_sign(self):
        assert validate_from_line("Jane Doe", EMPTY_CONFIG) is None

    def test_requires_more_than_five_chars(self):
        assert validate_from_line("a@b.c", EMPTY_CONFIG) is None

    def test_strips_whitespace(self):
        assert validate_from_line("  jane@example.org ", EMPTY_CONFIG) == "jane@example.org"


class TestExtractOriginalDate:
    """Date recovery inside the header window."""

    def test_gmail_date(self):
        lines = to_lines(_make_gmail_body())
        expected = datetime(2026, 1, 5, 15, 0).astimezone(timezone.utc)
        assert extract_original_date(lines, now=NOW) == expected

    def test_outlook_sent(self):
        body = (
            "From: Jane Doe <jane@example.org>\n"
            "Sent: Thu, 1 Jan 2026 10:30:00 -0500\n"
            "To: forwarder@example.com\n"
        )
        expected = datetime(2026, 1, 1, 15, 30, tzinfo=timezone.utc)
        assert extract_original_date(to_lines(body), now=NOW) == expected

    def test_date_outside_window_is_rejected(self):
        lines = to_lines(_make_gmail_body(date="Thu, 3 Jan 2019 10:00:00 +0000"))
        assert extract_original_date(lines, now=NOW) is None

    def test_date_beyond_header_window_is_ignored(self):
        filler = "".join(f"X-Header-{n}: value\n" for n in range(25))
        body = (
            "---------- Forwarded message ---------\n"
            "From: Jane Doe <jane@example.org>\n"
            f"{filler}"
            "Date: Thu, 1 Jan 2026 10:30:00 -0500\n"
        )
        assert extract_original_date(to_lines(body), now=NOW) is None

    def test_date_without_boundary_is_ignored(self):
        lines = to_lines("Date: Thu, 1 Jan 2026 10:30:00 -0500\nChip in")
        assert extract_original_date(lines, now=NOW) is None


class TestExtractOriginalSender:
    """Fallback search for a bare From: line."""

    def test_quoted_display_name(self):
        text = 'Hello\nFrom: "Jane Doe" <jane@example.org>\n'
        assert extract_original_sender(text) == "jane@example.org"

    def test_bare_address(self):
        assert extract_original_sender("From: jane@example.org") == "jane@example.org"

    def test_skips_honeytrap(self):
        text = "From: trap@decoy.org\nFrom: jane@example.org\n"
        assert extract_original_sender(text, TRAP_CONFIG) == "jane@example.org"

    def test_only_first_fifty_lines(self):
        text = "line\n" * 60 + "From: jane@example.org\n"
        assert extract_original_sender(text) is None


# ===========================================================================
# ForwardingFacts
# ===========================================================================

class TestRecoverForwardingFacts:
    """End-to-end fact recovery for a single message."""

    def test_gmail_forward(self):
        facts = recover_forwarding_facts(_make_message(), EMPTY_CONFIG, now=NOW)

        assert facts == ForwardingFacts(
            is_forwarded=True,
            original_from_line="Jane Doe <jane@example.org>",
            original_sender_address="jane@example.org",
            original_sent_at=datetime(2026, 1, 5, 15, 0).astimezone(timezone.utc),
            forwarder_address="forwarder@example.com",
        )

    def test_html_only_forward(self):
        html = (
            '<div dir="ltr"><div class="gmail_quote"><div dir="ltr" class="gmail_attr">'
            "---------- Forwarded message ---------<br>"
            'From: <strong class="gmail_sendername" dir="auto">Jane Doe</strong> '
            '<span dir="auto">&lt;<a href="mailto:jane@example.org">jane@example.org</a>&gt;</span><br>'
            "Date: Mon, Jan 5, 2026 at 3:00 PM<br>"
            "Subject: Help us win<br>"
            'To: &lt;<a href="mailto:forwarder@example.com">forwarder@example.com</a>&gt;<br>'
            "</div><br><br><p>Chip in $5</p></div></div>"
        )
        facts = recover_forwarding_facts(
            _make_message(body_plain="", body_html=html), EMPTY_CONFIG, now=NOW
        )

        assert facts.is_forwarded
        assert facts.original_from_line == "Jane Doe <jane@example.org>"
        assert facts.original_sender_address == "jane@example.org"
        assert facts.original_sent_at == datetime(2026, 1, 5, 15, 0).astimezone(timezone.utc)

    def test_forward_without_header_block_has_no_sender(self):
        message = _make_message(body_plain="Look at this one\n\nChip in $5")
        facts = recover_forwarding_facts(message, EMPTY_CONFIG, now=NOW)

        assert facts.is_forwarded
        assert facts.original_from_line is None
        assert facts.original_sender_address is None
        assert facts.original_sent_at is None
        assert facts.forwarder_address == "forwarder@example.com"

    def test_recovered_from_equal_to_forwarder_is_dropped(self):
        message = _make_message(
            body_plain=_make_gmail_body(original_from="Me <Forwarder@Example.com>")
        )
        facts = recover_forwarding_facts(message, EMPTY_CONFIG, now=NOW)

        assert facts.original_from_line is None
        assert facts.original_sender_address is None

    def test_honeytrap_original_from_is_not_recovered(self):
        message = _make_message(
            body_plain=_make_gmail_body(original_from="Campaign <trap@decoy.org>")
        )
        facts = recover_forwarding_facts(message, TRAP_CONFIG, now=NOW)

        assert facts.original_from_line is None
        assert facts.original_sender_address is None

    def test_honeytrap_forwarder_is_not_recorded(self):
        message = _make_message(envelope_sender="trap@decoy.org")
        facts = recover_forwarding_facts(message, TRAP_CONFIG, now=NOW)

        assert facts.is_forwarded
        assert facts.forwarder_address is None
        assert facts.original_sender_address == "jane@example.org"

    def test_direct_message_uses_envelope_sender(self):
        message = _make_message(
            subject="Help us win",
            body_plain="Chip in $5 before midnight",
            envelope_sender="Campaign <news@campaign.org>",
        )
        facts = recover_forwarding_facts(message, EMPTY_CONFIG, now=NOW)

        assert not facts.is_forwarded
        assert facts.original_from_line == "Campaign <news@campaign.org>"
        assert facts.original_sender_address == "news@campaign.org"
        assert facts.original_sent_at is None
        assert facts.forwarder_address is None

    def test_direct_message_from_honeytrap_sender(self):
        config = RedactionConfig.from_values(emails=["sender@decoy.org"])
        message = _make_message(
            subject="Help us win",
            body_plain="Chip in $5, sender@decoy.org",
            envelope_sender="sender@decoy.org",
        )
        facts = recover_forwarding_facts(message, config, now=NOW)

        assert not facts.is_forwarded
        assert facts.original_from_line == "sender@decoy.org"
        assert facts.forwarder_address is None

    def test_old_original_date_falls_back_to_none(self):
        message = _make_message(
            body_plain=_make_gmail_body(date="Thu, 3 Jan 2019 10:00:00 +0000")
        )
        facts = recover_forwarding_facts(message, EMPTY_CONFIG, now=NOW)

        assert facts.original_from_line == "Jane Doe <jane@example.org>"
        assert facts.original_sent_at is None


class TestResolveSenderId:
    """Sender id handed to ingestion."""

    def test_prefers_original_sender(self):
        facts = ForwardingFacts(is_forwarded=True, original_sender_address="jane@example.org")
        assert resolve_sender_id(facts, "forwarder@example.com") == "jane@example.org"

    def test_falls_back_to_envelope_address(self):
        facts = ForwardingFacts(is_forwarded=True)
        assert resolve_sender_id(facts, "Me <forwarder@example.com>") == "forwarder@example.com"

    def test_nothing_known(self):
        assert resolve_sender_id(ForwardingFacts(), "") is None


# ===========================================================================
# Banner stripping
# ===========================================================================

class TestStripForwardBanner:
    """The Gmail divider goes; the header lines stay."""

    def test_plain(self):
        stripped = strip_forward_banner(_make_gmail_body())
        assert "Forwarded message" not in stripped
        assert "From: Jane Doe <jane@example.org>" in stripped
        assert "Date: Mon, Jan 5, 2026 at 3:00 PM" in stripped

    def test_quoted_banner(self):
        stripped = strip_forward_banner("> ---------- Forwarded message ---------\n> From: a@b.org")
        assert stripped == "> From: a@b.org"

    def test_none(self):
        assert strip_forward_banner(None) == ""

    def test_html_banner_with_br(self):
        html = '<div class="gmail_attr">---------- Forwarded message ---------<br>From: a@b.org<br></div>'
        stripped = strip_forward_banner_html(html)
        assert "Forwarded message" not in stripped
        assert stripped == '<div class="gmail_attr">From: a@b.org<br></div>'

    def test_html_none(self):
        assert strip_forward_banner_html(None) is None
