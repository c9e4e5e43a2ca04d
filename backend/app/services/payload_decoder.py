"""
Inbound webhook payload decoder.

Normalizes the raw body of an email-forwarding webhook (Mailgun-style routes)
into a single NormalizedMessage, whatever encoding the provider used.

Supported encodings, selected by content-type:
  - application/x-www-form-urlencoded  (Mailgun default)
  - multipart/form-data                (Mailgun with attachments)
  - application/json
  - anything else: best-effort URL-encoded parse of the body

Form bodies go through Starlette's form parsers (python-multipart), the same
layer FastAPI uses for Form/File parameters.

Field aliases (first non-empty value wins)
-----------------------------------------
  sender    sender, from, From
  subject   subject, Subject
  plain     body-plain, stripped-text, text
  html      body-html, stripped-html, html
  headers   message-headers

Adding a new encoding:
  1. Write an async _fields_from_<encoding>(body, content_type) -> dict function.
  2. Register it in _DECODERS with the content-type marker it handles.

The decoder never raises: a malformed body is logged and degrades to empty
fields, so the caller always receives a NormalizedMessage. A field that
cannot be decoded with its charset falls back to latin-1 instead of
dropping the other fields.
"""

import json
import logging
from typing import AsyncIterator, Awaitable, Callable, Mapping

from starlette.datastructures import FormData, Headers
from starlette.formparsers import FormParser, MultiPartParser

from app.models.inbound_email import NormalizedMessage

logger = logging.getLogger(__name__)


SENDER_KEYS = ("sender", "from", "From")
SUBJECT_KEYS = ("subject", "Subject")
PLAIN_KEYS = ("body-plain", "stripped-text", "text")
HTML_KEYS = ("body-html", "stripped-html", "html")
HEADER_KEYS = ("message-headers",)


# ---------------------------------------------------------------------------
# Per-encoding field extraction
# ---------------------------------------------------------------------------

def _decode_text(body: bytes) -> str:
    return body.decode("utf-8", errors="replace")


async def _body_stream(body: bytes) -> AsyncIterator[bytes]:
    # Same shape as Request.stream(): the body, then an empty terminating chunk
    yield body
    yield b""


async def _form_to_fields(form: FormData) -> dict[str, str]:
    """
    Flatten parsed form data into a str -> str mapping.

    Repeated keys keep their first value, matching URLSearchParams.get().
    File parts (attachments) are skipped; only plain form fields are kept.
    """
    fields: dict[str, str] = {}
    try:
        for key, value in form.multi_items():
            if isinstance(value, str):
                fields.setdefault(key, value)
    finally:
        await form.close()
    return fields


async def _fields_from_urlencoded(body: bytes, content_type: str) -> dict[str, str]:
    """Parse an application/x-www-form-urlencoded body."""
    headers = Headers({"content-type": content_type or "application/x-www-form-urlencoded"})
    form = await FormParser(headers, _body_stream(body)).parse()
    return await _form_to_fields(form)


async def _fields_from_multipart(body: bytes, content_type: str) -> dict[str, str]:
    """Parse a multipart/form-data body; the boundary comes from content_type."""
    headers = Headers({"content-type": content_type})
    form = await MultiPartParser(headers, _body_stream(body)).parse()
    return await _form_to_fields(form)


def _coerce_json_value(value: object) -> str:
    if value is None or value is False:
        return ""
    if isinstance(value, str):
        return value
    if isinstance(value, (dict, list)):
        return json.dumps(value)
    return str(value)


async def _fields_from_json(body: bytes, content_type: str) -> dict[str, str]:
    """Parse a JSON object body; non-string values are coerced to strings."""
    data = json.loads(_decode_text(body) or "{}")
    if not isinstance(data, dict):
        raise ValueError(f"JSON payload is a {type(data).__name__}, expected an object")
    return {str(key): _coerce_json_value(value) for key, value in data.items()}


# ---------------------------------------------------------------------------
# Registry and dispatcher
# ---------------------------------------------------------------------------

_FieldDecoder = Callable[[bytes, str], Awaitable[dict[str, str]]]

# Order matters: the first marker found in the content-type wins.
_DECODERS: list[tuple[str, _FieldDecoder]] = [
    ("application/x-www-form-urlencoded", _fields_from_urlencoded),
    ("multipart/form-data", _fields_from_multipart),
    ("application/json", _fields_from_json),
]


def _first_non_empty(fields: Mapping[str, str], keys: tuple[str, ...]) -> str:
    for key in keys:
        value = fields.get(key)
        if value:
            return value
    return ""


def fields_to_message(fields: Mapping[str, str]) -> NormalizedMessage:
    """Apply the alias priority lists to a flat field mapping."""
    body_html = _first_non_empty(fields, HTML_KEYS)
    return NormalizedMessage(
        envelope_sender=_first_non_empty(fields, SENDER_KEYS),
        subject=_first_non_empty(fields, SUBJECT_KEYS),
        body_plain=_first_non_empty(fields, PLAIN_KEYS),
        body_html=body_html or None,
        raw_headers=_first_non_empty(fields, HEADER_KEYS),
    )


async def decode_payload(body: bytes, content_type: str | None) -> NormalizedMessage:
    """
    Decode a raw webhook body into a NormalizedMessage.

    The decoder is chosen by content-type; unknown or missing content-types
    fall back to a best-effort URL-encoded parse. Parse failures are logged
    (DecodeDegraded) and produce a message with empty fields.
    """
    content_type = content_type or ""
    lowered = content_type.lower()

    decoder: _FieldDecoder = _fields_from_urlencoded
    encoding = "best_effort"
    for marker, candidate in _DECODERS:
        if marker in lowered:
            decoder = candidate
            encoding = marker
            break

    try:
        fields = await decoder(body or b"", content_type)
    except Exception as e:
        logger.warning(
            f"inbound-email:decode_degraded encoding={encoding} "
            f"body_len={len(body or b'')}: {e}"
        )
        fields = {}

    return fields_to_message(fields)
