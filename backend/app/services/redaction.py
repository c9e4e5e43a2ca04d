"""
Honeytrap redaction.

Operators plant decoy email addresses and tracking ids in the mailing lists
they subscribe to. Those identifiers must never appear in stored or
displayed text, otherwise senders could learn which addresses are decoys.

Every configured honeytrap email is replaced (case-insensitive, literal match)
with EMAIL_PLACEHOLDER, which keeps the shape of an address but carries no
identifying content. Every honeytrap id is replaced with ID_PLACEHOLDER.

Redaction is applied to the subject, the cleaned body text and the sanitized
HTML independently. It is not applied to the original HTML kept for landing
URL extraction.
"""

import re
from functools import lru_cache
from typing import Optional

from app.config import RedactionConfig

EMAIL_PLACEHOLDER = "*******@*******.com"
ID_PLACEHOLDER = "########"


@lru_cache(maxsize=32)
def _literal_pattern(values: frozenset[str]) -> Optional[re.Pattern]:
    """
    Compile one case-insensitive alternation for a set of literals.

    Longer literals come first so that an address containing another
    configured address is replaced as a whole.
    """
    if not values:
        return None
    ordered = sorted(values, key=lambda v: (-len(v), v))
    return re.compile("|".join(re.escape(v) for v in ordered), re.IGNORECASE)


def redact(text: Optional[str], config: RedactionConfig) -> str:
    """
    Replace every honeytrap email and id in text.

    Idempotent: redacting already-redacted text returns it unchanged.
    None is treated as "".
    """
    if not text:
        return ""

    result = text
    email_pattern = _literal_pattern(config.honeytrap_emails)
    if email_pattern is not None:
        result = email_pattern.sub(EMAIL_PLACEHOLDER, result)

    id_pattern = _literal_pattern(config.honeytrap_ids)
    if id_pattern is not None:
        result = id_pattern.sub(ID_PLACEHOLDER, result)

    return result


def redact_optional(text: Optional[str], config: RedactionConfig) -> Optional[str]:
    """Like redact(), but keeps None as None (used for the HTML body)."""
    if text is None:
        return None
    return redact(text, config)


def contains_honeytrap(text: Optional[str], config: RedactionConfig) -> bool:
    """Return True when any honeytrap email or id occurs in text (any case)."""
    if not text:
        return False
    for values in (config.honeytrap_emails, config.honeytrap_ids):
        pattern = _literal_pattern(values)
        if pattern is not None and pattern.search(text):
            return True
    return False
