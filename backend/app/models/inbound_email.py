"""
Provider-agnostic inbound email models.

These models represent a forwarded solicitation after the webhook payload has
been decoded. The router and the forwarding-recovery services work
exclusively with these models; only the decoder knows about provider field
names (body-plain, stripped-text, message-headers, ...).
"""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel


class NormalizedMessage(BaseModel):
    """
    Canonical shape of one inbound webhook request.

    envelope_sender is the address that transmitted the webhook. For a
    forwarded email this is the forwarder, not the original author.
    raw_headers is the provider header dump and likewise describes the
    forwarding transmission.
    """

    envelope_sender: str = ""
    subject: str = ""
    body_plain: str = ""
    body_html: Optional[str] = None
    raw_headers: str = ""


class ForwardingFacts(BaseModel):
    """Facts recovered about the embedded (pre-forward) message."""

    model_config = {"frozen": True}

    is_forwarded: bool = False
    original_from_line: Optional[str] = None
    original_sender_address: Optional[str] = None
    original_sent_at: Optional[datetime] = None
    forwarder_address: Optional[str] = None


class TextSubmission(BaseModel):
    """
    Record handed to the ingestion collaborator.

    cleaned_text, email_subject and email_body are redacted. raw_text is the
    redacted pre-cleaning text kept for audit; email_body_original is the
    untouched HTML used for landing URL extraction.
    """

    cleaned_text: str
    raw_text: str
    sender_id: Optional[str] = None
    message_type: str = "email"
    image_url_placeholder: str = "email://no-image"
    email_subject: Optional[str] = None
    email_body: Optional[str] = None
    email_body_original: Optional[str] = None
    email_from: Optional[str] = None
    forwarder_email: Optional[str] = None
    submission_token: str
    email_sent_at: Optional[datetime] = None


class IngestionOutcome(BaseModel):
    """Result reported by the ingestion collaborator."""

    ok: bool
    id: Optional[str] = None
    duplicate: bool = False
    is_fundraising: Optional[bool] = None
    landing_url: Optional[str] = None
    heuristic: Optional[str] = None
    error: Optional[str] = None


class InboundState(str, Enum):
    """Orchestration states of a single webhook request."""

    RECEIVED = "received"
    DECODED = "decoded"
    CONFIG_ERROR = "config_error"
    FACTS_EXTRACTED = "facts_extracted"
    REDACTED = "redacted"
    INGESTED = "ingested"
    DUPLICATE = "duplicate"
    INGEST_FAILED = "ingest_failed"
    PIPELINES_TRIGGERED = "pipelines_triggered"
    RESPONDED = "responded"
