"""
Text cleaner for classifier input.

Marketing emails are full of noise that wastes model context and skews
heuristics: zero-width preheader padding, tracking redirect URLs several
hundred characters long, and runs of blank lines left behind by HTML-to-text
conversion. clean_text_for_ai() removes that noise. It is a pure function;
redaction happens before it is called.
"""

import re
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from app.services.forwarding import strip_forward_banner

# Longer URLs are replaced with a short host marker
MAX_URL_LENGTH = 200

_INVISIBLE_RE = re.compile("[\u00ad\u034f\u061c\u115f\u1160\u17b4\u17b5\u180e\u200b-\u200f\u202a-\u202e\u2060-\u2064\u206a-\u206f\u3164\ufeff\uffa0]")
_URL_RE = re.compile(r"https?://[^\s<>\"')\]]+", re.IGNORECASE)
_SPACE_RUN_RE = re.compile(r"[ \t\u00a0]+")
_BLANK_RUN_RE = re.compile(r"\n{3,}")

# Query parameters that only identify the campaign send or the recipient
_TRACKING_PARAM_PREFIXES = ("utm_", "mc_", "_hs", "mkt_", "vero_")
_TRACKING_PARAMS = {"fbclid", "gclid", "dclid", "msclkid", "ems_l", "oly_enc_id", "oly_anon_id", "ck_subscriber_id"}


def _is_tracking_param(name: str) -> bool:
    lowered = name.lower()
    return lowered in _TRACKING_PARAMS or lowered.startswith(_TRACKING_PARAM_PREFIXES)


def strip_tracking_params(url: str) -> str:
    """Drop campaign/recipient tracking parameters from a URL."""
    try:
        parts = urlsplit(url)
    except ValueError:
        return url
    if not parts.query:
        return url
    pairs = parse_qsl(parts.query, keep_blank_values=True)
    kept = [(k, v) for k, v in pairs if not _is_tracking_param(k)]
    if len(kept) == len(pairs):
        return url
    return urlunsplit(parts._replace(query=urlencode(kept)))


def _clean_url(match: re.Match) -> str:
    url = strip_tracking_params(match.group(0))
    if len(url) <= MAX_URL_LENGTH:
        return url
    host = urlsplit(url).netloc or "link"
    return f"[link: {host}]"


def clean_text_for_ai(text: Optional[str]) -> str:
    """
    Return text with invisible characters, tracking noise in URLs, the
    forward banner and excess whitespace removed.
    """
    if not text:
        return ""
    cleaned = text.replace("\r\n", "\n").replace("\r", "\n")
    cleaned = _INVISIBLE_RE.sub("", cleaned)
    cleaned = strip_forward_banner(cleaned)
    cleaned = _URL_RE.sub(_clean_url, cleaned)
    lines = [_SPACE_RUN_RE.sub(" ", line).strip() for line in cleaned.split("\n")]
    cleaned = "\n".join(lines)
    return _BLANK_RUN_RE.sub("\n\n", cleaned).strip()
