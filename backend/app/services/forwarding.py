"""
Forwarded-message detection and original header recovery.

The webhook only describes the forwarding transmission: its sender is the
forwarder and its headers carry the forward time. The true author and send
time live inside the body, in the header block each mail client writes
below its forward banner:

    ---------- Forwarded message ---------        (Gmail)
    From: Jane Doe <jane@example.org>
    Date: Mon, Jan 5, 2026 at 3:00 PM

    Begin forwarded message:                       (Apple Mail)

    From: Jane Doe <jane@example.org>
    Date: January 5, 2026 at 3:00:12 PM EST

    From: Jane Doe <jane@example.org>              (Outlook, no banner)
    Sent: Monday, January 5, 2026 3:00 PM

Recovery works on a line-oriented view of the body and a small ordered set
of pure matchers, each returning an optional value:

  1. match_forward_boundary  - is this line a forward boundary?
  2. match_from_header       - is this line "From: ..."?
  3. match_date_header       - is this line "Date: ..." or "Sent: ..."?

Header values are only accepted inside a bounded window after a boundary so
that From/Date lines further down a quoted reply chain are never picked up.
"""

import html
import logging
import re
from datetime import datetime
from typing import Iterator, Optional

from app.config import RedactionConfig
from app.models.inbound_email import ForwardingFacts, NormalizedMessage
from app.services.date_normalizer import parse_email_date

logger = logging.getLogger(__name__)

# Lines scanned for a forward boundary
BOUNDARY_SCAN_LINES = 100
# Lines searched for a header after a boundary (extra Cc/Reply-To lines fit)
HEADER_WINDOW = 20
# Lines scanned by the bare "From:" sender fallback
SENDER_SCAN_LINES = 50

_QUOTE_PREFIX_RE = re.compile(r"^[\s>]+")
_LINE_SPLIT_RE = re.compile(r"\r?\n")

_BOUNDARY_PATTERNS: list[tuple[str, re.Pattern]] = [
    ("gmail", re.compile(r"^-+\s*Forwarded message\s*-+", re.IGNORECASE)),
    ("apple", re.compile(r"^Begin forwarded message:", re.IGNORECASE)),
    ("outlook", re.compile(r"^From:\s+.+@.+", re.IGNORECASE)),
]

_FROM_HEADER_RE = re.compile(r"^From:\s+(.+)$", re.IGNORECASE)
_DATE_HEADER_RE = re.compile(r"^(?:Date|Sent):\s*(.+)$", re.IGNORECASE)

_EMAIL_RE = re.compile(r"([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})")
_BARE_FROM_RE = re.compile(
    r"^From:\s*(?:\"[^\"]*\"\s*)?<?([a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,})>?",
    re.IGNORECASE,
)

_FORWARD_MARKER_RE = re.compile(r"forwarded message|begin forwarded message", re.IGNORECASE)

# HTML -> line view
_BR_RE = re.compile(r"<br\s*/?\s*>", re.IGNORECASE)
_BLOCK_END_RE = re.compile(r"</(?:p|div|tr|li|blockquote|h[1-6])\s*>", re.IGNORECASE)
_INLINE_TAG_RE = re.compile(r"</?(?:a|span|strong|b|i|em|u|font|small)\b[^>]*>", re.IGNORECASE)
_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RUN_RE = re.compile(r"[ \t\u00a0]+")
_WHITESPACE_RUN_RE = re.compile(r"\s+")

# Gmail banner removal (the header lines below it are kept)
_BANNER_BLOCK_RE = re.compile(
    r"^[\s>]*-+\s*Forwarded message\s*-+\s*(?:\r?\n)+", re.IGNORECASE | re.MULTILINE
)
_BANNER_LINE_RE = re.compile(
    r"^[\s>]*-+\s*Forwarded message\s*-+\s*$", re.IGNORECASE | re.MULTILINE
)
_HTML_BANNER_BLOCK_RE = re.compile(
    r"^[\s>]*-+\s*Forwarded message\s*-+\s*(?:<br\s*/?\s*>|\r?\n)+",
    re.IGNORECASE | re.MULTILINE,
)
_HTML_BANNER_INLINE_RE = re.compile(
    r"(^|>)[ \t]*-+\s*Forwarded message\s*-+[ \t]*(?:<br\s*/?\s*>)?",
    re.IGNORECASE | re.MULTILINE,
)


# ---------------------------------------------------------------------------
# Text views
# ---------------------------------------------------------------------------

def strip_html(body_html: Optional[str]) -> str:
    """Strip tags and collapse whitespace into a single line of text."""
    if not body_html:
        return ""
    return _WHITESPACE_RUN_RE.sub(" ", _TAG_RE.sub(" ", body_html)).strip()


def to_lines(text: Optional[str]) -> list[str]:
    """Split text into lines with leading quote markers and whitespace removed."""
    if not text:
        return []
    return [_QUOTE_PREFIX_RE.sub("", line).rstrip() for line in _LINE_SPLIT_RE.split(text)]


def html_to_lines(body_html: Optional[str]) -> list[str]:
    """
    Line view of an HTML body.

    <br> and block closings become line breaks, inline tags vanish so that
    "<strong>Jane</strong> &lt;jane@x.org&gt;" reads "Jane <jane@x.org>",
    other tags become spaces and entities are decoded.
    """
    if not body_html:
        return []
    text = _BR_RE.sub("\n", body_html)
    text = _BLOCK_END_RE.sub("\n", text)
    text = _INLINE_TAG_RE.sub("", text)
    text = _TAG_RE.sub(" ", text)
    text = html.unescape(text)
    return [_SPACE_RUN_RE.sub(" ", line).strip() for line in to_lines(text)]


def plain_text_view(message: NormalizedMessage) -> str:
    """The plain body, or the tag-stripped HTML when there is no plain body."""
    return message.body_plain or strip_html(message.body_html)


# ---------------------------------------------------------------------------
# Matchers
# ---------------------------------------------------------------------------

def match_forward_boundary(line: str) -> Optional[str]:
    """Return the client style ("gmail", "apple", "outlook") of a boundary line."""
    for style, pattern in _BOUNDARY_PATTERNS:
        if pattern.match(line):
            return style
    return None


def match_from_header(line: str) -> Optional[str]:
    m = _FROM_HEADER_RE.match(line)
    return m.group(1).strip() if m else None


def match_date_header(line: str) -> Optional[str]:
    m = _DATE_HEADER_RE.match(line)
    return m.group(1).strip() if m else None


def parse_email_address(value: Optional[str]) -> Optional[str]:
    """
    Return the bare address from "Name <a@b.com>", "\"Name\" <a@b.com>" or
    "a@b.com", or None when value holds no address.
    """
    if not value:
        return None
    m = _EMAIL_RE.search(value)
    return m.group(1) if m else None


def iter_header_values(lines: list[str], matcher, min_gap: int = 1) -> Iterator[str]:
    """
    Yield header values found in the window after each forward boundary.

    For a boundary at line i, lines i .. i+HEADER_WINDOW-1 are searched. The
    window closes early at a blank line j once j >= i + min_gap (end of the
    header block).
    """
    for i, line in enumerate(lines[:BOUNDARY_SCAN_LINES]):
        if match_forward_boundary(line) is None:
            continue
        for j in range(i, min(i + HEADER_WINDOW, len(lines))):
            value = matcher(lines[j])
            if value:
                yield value
            if not lines[j].strip() and j >= i + min_gap:
                break


# ---------------------------------------------------------------------------
# Recovery
# ---------------------------------------------------------------------------

def validate_from_line(candidate: Optional[str], config: RedactionConfig) -> Optional[str]:
    """
    Keep a recovered From value only if it looks like an address line
    (contains "@", longer than 5 chars) and is not a honeytrap address.
    """
    if not candidate:
        return None
    cleaned = candidate.strip()
    if "@" not in cleaned or len(cleaned) <= 5:
        return None
    if config.matches_honeytrap_email(cleaned):
        logger.info("Discarded recovered From line matching a honeytrap address")
        return None
    return cleaned


def extract_original_from_line(lines: list[str], config: RedactionConfig) -> Optional[str]:
    """
    Return the From value of the first header block after a forward boundary.

    Only the first From line found is considered; if it fails validation the
    result is None rather than a From line from deeper in the thread.
    """
    first = next(iter_header_values(lines, match_from_header, min_gap=1), None)
    return validate_from_line(first, config)


def extract_original_date(lines: list[str], now: Optional[datetime] = None) -> Optional[datetime]:
    """Return the first Date:/Sent: value after a boundary that parses in range."""
    for value in iter_header_values(lines, match_date_header, min_gap=2):
        parsed = parse_email_date(value, now=now)
        if parsed is not None:
            return parsed
    return None


def extract_original_sender(
    text: Optional[str],
    config: Optional[RedactionConfig] = None,
) -> Optional[str]:
    """
    Fallback sender search: the first bare 'From: addr' or
    'From: "Name" <addr>' line among the first 50 lines. Honeytrap
    addresses are skipped.
    """
    if not text:
        return None
    for line in text.split("\n")[:SENDER_SCAN_LINES]:
        m = _BARE_FROM_RE.match(line)
        if not m:
            continue
        if config is not None and config.matches_honeytrap_email(m.group(1)):
            continue
        return m.group(1)
    return None


def detect_forwarded(subject: Optional[str], body_text: Optional[str], body_html: Optional[str]) -> bool:
    """
    Heuristic forward detection.

    True when the subject starts with "fwd:" or contains "fw:" (which also
    catches unrelated subjects containing "fw:"), or either body mentions
    "forwarded message" / "begin forwarded message". Manually retyped
    forwards are missed.
    """
    subj = (subject or "").lower()
    if subj.startswith("fwd:") or "fw:" in subj:
        return True
    return bool(
        _FORWARD_MARKER_RE.search(body_text or "")
        or _FORWARD_MARKER_RE.search(body_html or "")
    )


def _same_address(a: Optional[str], b: Optional[str]) -> bool:
    return bool(a and b and a.lower() == b.lower())


def recover_forwarding_facts(
    message: NormalizedMessage,
    config: RedactionConfig,
    now: Optional[datetime] = None,
) -> ForwardingFacts:
    """
    Derive ForwardingFacts for one message.

    Plain text is tried before the HTML view for both From and Date. A
    non-forwarded message with no recoverable From line falls back to its
    envelope sender; a forwarded one never does, since that address belongs
    to the forwarder.
    """
    raw_text = plain_text_view(message)
    is_forwarded = detect_forwarded(message.subject, raw_text, message.body_html)
    envelope = message.envelope_sender
    envelope_address = parse_email_address(envelope) or envelope or None

    plain_lines = to_lines(message.body_plain)
    html_lines = html_to_lines(message.body_html)

    from_line = extract_original_from_line(plain_lines, config)
    if not from_line and html_lines:
        from_line = extract_original_from_line(html_lines, config)

    if from_line and is_forwarded and _same_address(parse_email_address(from_line), envelope_address):
        logger.info("Discarded recovered From line equal to the forwarder address")
        from_line = None

    if not from_line and envelope and not is_forwarded:
        from_line = envelope

    sender_address = parse_email_address(from_line)
    if not sender_address:
        fallback = extract_original_sender(raw_text, config)
        if fallback and not (is_forwarded and _same_address(fallback, envelope_address)):
            sender_address = fallback

    sent_at = extract_original_date(plain_lines, now=now)
    if sent_at is None and html_lines:
        sent_at = extract_original_date(html_lines, now=now)

    forwarder: Optional[str] = None
    if is_forwarded and envelope_address:
        if not config.matches_honeytrap_email(envelope_address):
            forwarder = envelope_address

    return ForwardingFacts(
        is_forwarded=is_forwarded,
        original_from_line=from_line,
        original_sender_address=sender_address,
        original_sent_at=sent_at,
        forwarder_address=forwarder,
    )


def resolve_sender_id(facts: ForwardingFacts, envelope_sender: str) -> Optional[str]:
    """
    Sender id handed to ingestion: the recovered original address, then the
    envelope address, then the raw envelope value.
    """
    return (
        facts.original_sender_address
        or parse_email_address(envelope_sender)
        or envelope_sender
        or None
    )


# ---------------------------------------------------------------------------
# Banner stripping
# ---------------------------------------------------------------------------

def strip_forward_banner(text: Optional[str]) -> str:
    """
    Remove the Gmail "---------- Forwarded message ---------" divider line(s)
    while keeping the From/Date/Subject/To lines that follow.
    """
    if not text:
        return ""
    text = _BANNER_BLOCK_RE.sub("", text, count=1)
    return _BANNER_LINE_RE.sub("", text)


def strip_forward_banner_html(body_html: Optional[str]) -> Optional[str]:
    """HTML counterpart of strip_forward_banner(); the divider may end in <br>."""
    if body_html is None:
        return None
    body_html = _HTML_BANNER_BLOCK_RE.sub("", body_html, count=1)
    return _HTML_BANNER_INLINE_RE.sub(r"\1", body_html)
