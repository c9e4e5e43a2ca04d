"""
Inbound email router.

Receives the email-forwarding webhook (Mailgun routes) for solicitations that
users forward to the intake address, and runs them through the intake
pipeline:

  Received -> Decoded -> FactsExtracted -> Redacted -> Ingested
      -> Duplicate | IngestFailed | PipelinesTriggered -> Responded

Environment variables
---------------------
SUPABASE_SERVICE_KEY   Required. Without it the webhook answers 400
                       service_key_missing and nothing is ingested.
HONEYTRAP_EMAILS       Decoy addresses redacted from all stored text.
HONEYTRAP_IDS          Decoy tracking ids redacted from all stored text.
SITE_URL               Base URL of the pipeline endpoints.

Endpoints:
  POST /inbound-email   - provider webhook (form, multipart or JSON body)

Responses:
  200 {"ok": true, "id": ...}
  200 {"ok": true, "duplicate": true, "id": ...}
  400 {"error": "service_key_missing"}
  500 {"error": "ingest_failed"} / {"error": "internal_error"}
"""

import logging
import re
import secrets
import time
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Request
from fastapi.responses import JSONResponse

from app.config import RedactionConfig, get_service_key, load_redaction_config
from app.models.inbound_email import InboundState, NormalizedMessage, TextSubmission
from app.services.forwarding import (
    plain_text_view,
    recover_forwarding_facts,
    resolve_sender_id,
    strip_forward_banner,
    strip_forward_banner_html,
)
from app.services.html_sanitizer import sanitize_email_html
from app.services.ingestion import ingest_text_submission
from app.services.payload_decoder import decode_payload
from app.services.pipelines import (
    send_non_fundraising_notice,
    trigger_pipelines,
    trigger_screenshot,
)
from app.services.redaction import contains_honeytrap, redact, redact_optional
from app.services.text_cleaner import clean_text_for_ai

logger = logging.getLogger(__name__)

router = APIRouter()

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

# Bytes of entropy in the one-time submission token
_SUBMISSION_TOKEN_BYTES = 32

# Subject characters included in log lines
_LOG_SUBJECT_CHARS = 50

_HREF_RE = re.compile(r"href=[\"']([^\"']+)[\"']", re.IGNORECASE)


# ---------------------------------------------------------------------------
# Internal helpers
# ---------------------------------------------------------------------------

def _respond(state: InboundState, status_code: int, body: dict) -> JSONResponse:
    logger.info(f"inbound-email:{InboundState.RESPONDED.value} from={state.value} status={status_code}")
    return JSONResponse(content=body, status_code=status_code)


def _generate_submission_token() -> str:
    """URL-safe one-time token for the reply/confirmation flow."""
    return secrets.token_urlsafe(_SUBMISSION_TOKEN_BYTES)


def _log_html_metrics(original_html: Optional[str]) -> None:
    """Log how many links the original HTML carried (hrefs themselves are not logged)."""
    if not original_html:
        return
    logger.info(
        f"inbound-email:html_extraction original_html_len={len(original_html)} "
        f"href_count={len(_HREF_RE.findall(original_html))}"
    )


async def _process_inbound_email(
    message: NormalizedMessage,
    background_tasks: BackgroundTasks,
    config: Optional[RedactionConfig] = None,
    now: Optional[datetime] = None,
) -> JSONResponse:
    """
    Core processing for a decoded message.

    Steps:
    1. Refuse early when the storage credential is missing.
    2. Recover forwarding facts (forward flag, original From/Date, forwarder).
    3. Strip the forward banner, redact honeytraps, clean text, sanitize HTML.
    4. Hand the record to the ingestion collaborator.
    5. Branch on the outcome: duplicate, failure, fundraising pipelines or
       the non-fundraising notice.
    """
    # 1. Configuration
    if not get_service_key():
        logger.error("inbound-email:error service_key_missing")
        return _respond(InboundState.CONFIG_ERROR, 400, {"error": "service_key_missing"})

    config = config or load_redaction_config()
    if config.is_empty:
        logger.warning(
            "inbound-email:warning HONEYTRAP_EMAILS/IDS not configured - skipping honeytrap redaction"
        )

    # 2. Forwarding facts (before any banner stripping)
    facts = recover_forwarding_facts(message, config, now=now)
    logger.info(
        f"inbound-email:{InboundState.FACTS_EXTRACTED.value} forwarded={facts.is_forwarded} "
        f"from_line={'yes' if facts.original_from_line else 'no'} "
        f"sent_at={facts.original_sent_at.isoformat() if facts.original_sent_at else None}"
    )

    # 3. Strip banner, then redact every outgoing text field
    raw_text = strip_forward_banner(plain_text_view(message))
    honeytrap_seen = contains_honeytrap(raw_text, config) or contains_honeytrap(message.subject, config)
    raw_text = redact(raw_text, config)
    subject = redact(message.subject, config)
    cleaned_text = clean_text_for_ai(raw_text)

    original_html = message.body_html
    _log_html_metrics(original_html)

    sanitized_html: Optional[str] = None
    if original_html:
        sanitized_html = strip_forward_banner_html(sanitize_email_html(original_html))
        sanitized_html = redact_optional(sanitized_html, config)

    logger.info(
        f"inbound-email:{InboundState.REDACTED.value} honeytrap_seen={honeytrap_seen} "
        f"raw_len={len(raw_text)} cleaned_len={len(cleaned_text)}"
    )

    # 4. Ingestion
    sender_id = resolve_sender_id(facts, message.envelope_sender)
    submission = TextSubmission(
        cleaned_text=cleaned_text,
        raw_text=raw_text,
        sender_id=sender_id,
        email_subject=subject or None,
        email_body=sanitized_html or None,
        email_body_original=original_html or None,
        email_from=facts.original_from_line,
        forwarder_email=facts.forwarder_address,
        submission_token=_generate_submission_token(),
        email_sent_at=facts.original_sent_at,
    )
    outcome = ingest_text_submission(submission)

    logger.info(
        f"inbound-email:{InboundState.INGESTED.value} ok={outcome.ok} id={outcome.id} "
        f"subject={subject[:_LOG_SUBJECT_CHARS]!r} raw_len={len(raw_text)} "
        f"cleaned_len={len(cleaned_text)} is_fundraising={outcome.is_fundraising} "
        f"heuristic={outcome.heuristic}"
    )

    # 5. Branches
    if outcome.duplicate:
        logger.info(f"inbound-email:duplicate existing_id={outcome.id}")
        return _respond(InboundState.DUPLICATE, 200, {"ok": True, "duplicate": True, "id": outcome.id})

    if not outcome.ok and not outcome.id:
        logger.error(f"inbound-email:ingest_failed error={outcome.error}")
        return _respond(InboundState.INGEST_FAILED, 500, {"error": "ingest_failed"})

    if outcome.is_fundraising and outcome.id:
        logger.info(
            f"inbound-email:triggering_pipelines submission_id={outcome.id} "
            f"has_landing_url={bool(outcome.landing_url)}"
        )
        started = time.monotonic()
        # Trigger failures are logged and non-fatal: the submission is already stored, so still 200
        pipelines_ok = await trigger_pipelines(outcome.id)
        elapsed_ms = int((time.monotonic() - started) * 1000)
        logger.info(
            f"inbound-email:pipelines_completed submission_id={outcome.id} "
            f"ok={pipelines_ok} elapsed_ms={elapsed_ms}"
        )

        if outcome.landing_url:
            logger.info(f"inbound-email:triggering_screenshot submission_id={outcome.id}")
            background_tasks.add_task(trigger_screenshot, outcome.id, outcome.landing_url)

        return _respond(InboundState.PIPELINES_TRIGGERED, 200, {"ok": True, "id": outcome.id})

    logger.info(
        f"inbound-email:skipped_triggers_non_fundraising submission_id={outcome.id} "
        f"is_fundraising={outcome.is_fundraising}"
    )
    if outcome.id and facts.is_forwarded and message.envelope_sender and facts.forwarder_address:
        logger.info(f"inbound-email:triggering_non_fundraising_notice submission_id={outcome.id}")
        await send_non_fundraising_notice(outcome.id)

    return _respond(InboundState.INGESTED, 200, {"ok": True, "id": outcome.id})


# ---------------------------------------------------------------------------
# Endpoints
# ---------------------------------------------------------------------------

@router.post("/inbound-email")
async def receive_inbound_email(request: Request, background_tasks: BackgroundTasks) -> JSONResponse:
    """
    Email-forwarding webhook receiver.

    Reads the raw body and decodes it according to its content-type, so the
    same endpoint accepts form-urlencoded, multipart and JSON deliveries.
    Any unexpected error is logged and answered with 500 internal_error.
    """
    content_type = request.headers.get("content-type", "")
    logger.info(f"inbound-email:{InboundState.RECEIVED.value} content_type={content_type or None!r}")
    try:
        body = await request.body()
        message = await decode_payload(body, content_type)
        logger.info(
            f"inbound-email:{InboundState.DECODED.value} "
            f"plain_len={len(message.body_plain)} html_len={len(message.body_html or '')}"
        )
        return await _process_inbound_email(message, background_tasks)
    except Exception:
        logger.exception("inbound-email:exception")
        return JSONResponse(content={"error": "internal_error"}, status_code=500)
