"""
Ingestion collaborator backed by the Supabase submissions table.

Persists one TextSubmission per logical message and reports back what the
webhook needs to decide its next step:

  - duplicate      a submission with the same content hash already exists
  - is_fundraising keyword / donation-link heuristic over the cleaned text
  - landing_url    first donation-platform link (ActBlue, WinRed)

Duplicate detection keys on sha256(sender_id + cleaned_text), stored in the
content_hash column. The webhook treats duplicates as a normal outcome.
"""

import hashlib
import logging
import re
from datetime import datetime, timezone
from typing import Optional

from app.db import get_supabase_admin
from app.models.inbound_email import IngestionOutcome, TextSubmission

logger = logging.getLogger(__name__)

SUBMISSIONS_TABLE = "submissions"

_LANDING_URL_RE = re.compile(
    r"https?://(?:[a-z0-9-]+\.)*(?:actblue\.com|winred\.com)/[^\s\"'<>)\]]*",
    re.IGNORECASE,
)

_FUNDRAISING_KEYWORDS = (
    "donate",
    "donation",
    "chip in",
    "contribute",
    "contribution",
    "matching gift",
    "match your gift",
    "triple-match",
    "fundraising deadline",
    "end-of-quarter",
    "end of quarter",
    "paid for by",
)

# Keyword hits required when no donation link is present
_MIN_KEYWORD_HITS = 2


def compute_content_hash(sender_id: Optional[str], cleaned_text: str) -> str:
    """Stable duplicate key for a submission."""
    basis = f"{(sender_id or '').strip().lower()}\n{cleaned_text.strip()}"
    return hashlib.sha256(basis.encode("utf-8")).hexdigest()


def detect_landing_url(*sources: Optional[str]) -> Optional[str]:
    """Return the first donation-platform URL found in the given sources."""
    for source in sources:
        if not source:
            continue
        m = _LANDING_URL_RE.search(source)
        if m:
            return m.group(0).rstrip(".,;")
    return None


def classify_fundraising(
    cleaned_text: str,
    subject: Optional[str],
    landing_url: Optional[str],
) -> tuple[bool, str]:
    """
    Cheap first-pass fundraising heuristic.

    Returns (is_fundraising, label). The AI classifier triggered afterwards
    makes the final call; this only decides whether to trigger it.
    """
    if landing_url:
        return True, "donation_link"

    haystack = f"{subject or ''}\n{cleaned_text}".lower()
    hits = sum(1 for keyword in _FUNDRAISING_KEYWORDS if keyword in haystack)
    if hits >= _MIN_KEYWORD_HITS:
        return True, f"keywords:{hits}"
    return False, "no_signal"


def _find_existing(client, content_hash: str) -> Optional[str]:
    result = (
        client.table(SUBMISSIONS_TABLE)
        .select("id")
        .eq("content_hash", content_hash)
        .limit(1)
        .execute()
    )
    if result.data:
        return result.data[0]["id"]
    return None


def ingest_text_submission(submission: TextSubmission) -> IngestionOutcome:
    """
    Insert a submission row, or report the existing row as a duplicate.

    Never raises for database failures: they are logged and returned as
    ok=False with no id, which the webhook answers with ingest_failed.
    """
    if not submission.cleaned_text.strip() and not submission.email_body:
        logger.warning("Rejected inbound submission with empty body")
        return IngestionOutcome(ok=False, error="empty_message")

    content_hash = compute_content_hash(submission.sender_id, submission.cleaned_text)

    try:
        client = get_supabase_admin()
        existing_id = _find_existing(client, content_hash)
    except Exception as e:
        logger.error(f"Duplicate lookup failed for submission: {e}")
        return IngestionOutcome(ok=False, error="db_error")

    if existing_id:
        return IngestionOutcome(ok=False, id=existing_id, duplicate=True, error="duplicate")

    landing_url = detect_landing_url(submission.email_body_original, submission.raw_text)
    is_fundraising, heuristic = classify_fundraising(
        submission.cleaned_text, submission.email_subject, landing_url
    )

    now_iso = datetime.now(timezone.utc).isoformat()
    row: dict = {
        "text": submission.cleaned_text,
        "raw_text": submission.raw_text,
        "sender_id": submission.sender_id,
        "message_type": submission.message_type,
        "image_url": submission.image_url_placeholder,
        "email_subject": submission.email_subject,
        "email_body": submission.email_body,
        "email_body_original": submission.email_body_original,
        "email_from": submission.email_from,
        "forwarder_email": submission.forwarder_email,
        "submission_token": submission.submission_token,
        "email_sent_at": submission.email_sent_at.isoformat() if submission.email_sent_at else None,
        "content_hash": content_hash,
        "is_fundraising": is_fundraising,
        "heuristic": heuristic,
        "landing_url": landing_url,
        "created_at": now_iso,
    }

    try:
        result = client.table(SUBMISSIONS_TABLE).insert(row).execute()
    except Exception as e:
        logger.error(f"Failed to insert submission: {e}")
        return IngestionOutcome(ok=False, error="db_error")

    if not result.data:
        logger.error("submissions insert returned no data")
        return IngestionOutcome(ok=False, error="db_insert_failed")

    return IngestionOutcome(
        ok=True,
        id=str(result.data[0]["id"]),
        is_fundraising=is_fundraising,
        landing_url=landing_url,
        heuristic=heuristic,
    )
