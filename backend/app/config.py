"""
Process configuration for the inbound email service.

Environment variables
---------------------
SUPABASE_URL              Supabase project URL.
SUPABASE_SERVICE_KEY      Service-role key. Required for ingestion; when it is
                          missing the webhook answers 400 service_key_missing.
HONEYTRAP_EMAILS          Comma-separated decoy email addresses to redact.
HONEYTRAP_IDS             Comma-separated decoy tracking ids to redact.
SITE_URL                  Base URL of the web app hosting the pipeline
                          endpoints (classify, sender, screenshot, notice).
PIPELINE_TIMEOUT_SECONDS  Timeout for outbound pipeline calls (default: 30).

Values are read from a .env file when present (python-dotenv).
"""

import logging
import os
from functools import lru_cache
from typing import Iterable, Optional

from dotenv import load_dotenv
from pydantic import BaseModel

load_dotenv()

logger = logging.getLogger(__name__)

_DEFAULT_PIPELINE_TIMEOUT = 30.0


def _split_csv(value: Optional[str]) -> frozenset[str]:
    """Split a comma-separated env value, trimming and dropping empties."""
    if not value:
        return frozenset()
    return frozenset(part.strip() for part in value.split(",") if part.strip())


class RedactionConfig(BaseModel):
    """
    Immutable honeytrap configuration.

    Passed explicitly into the redaction and header recovery services so
    they never read process state themselves.
    """

    model_config = {"frozen": True}

    honeytrap_emails: frozenset[str] = frozenset()
    honeytrap_ids: frozenset[str] = frozenset()

    @classmethod
    def from_values(
        cls,
        emails: Iterable[str] = (),
        ids: Iterable[str] = (),
    ) -> "RedactionConfig":
        return cls(
            honeytrap_emails=frozenset(e.strip() for e in emails if e and e.strip()),
            honeytrap_ids=frozenset(i.strip() for i in ids if i and i.strip()),
        )

    @property
    def is_empty(self) -> bool:
        return not self.honeytrap_emails and not self.honeytrap_ids

    def matches_honeytrap_email(self, value: str) -> bool:
        """Return True when value contains any honeytrap email (case-insensitive)."""
        lowered = value.lower()
        return any(email.lower() in lowered for email in self.honeytrap_emails)


@lru_cache(maxsize=1)
def load_redaction_config() -> RedactionConfig:
    """
    Load the honeytrap lists from HONEYTRAP_EMAILS / HONEYTRAP_IDS.

    Cached for the life of the process; call load_redaction_config.cache_clear()
    after changing the environment (tests do this).
    """
    config = RedactionConfig(
        honeytrap_emails=_split_csv(os.getenv("HONEYTRAP_EMAILS")),
        honeytrap_ids=_split_csv(os.getenv("HONEYTRAP_IDS")),
    )
    logger.info(
        "Loaded redaction config: %d honeytrap emails, %d honeytrap ids",
        len(config.honeytrap_emails),
        len(config.honeytrap_ids),
    )
    return config


def get_service_key() -> str:
    """Return the Supabase service-role key, or "" when unset."""
    return os.getenv("SUPABASE_SERVICE_KEY", "").strip()


def get_site_url() -> str:
    """Return SITE_URL without a trailing slash ("" when unset)."""
    return os.getenv("SITE_URL", "").strip().rstrip("/")


def get_pipeline_timeout() -> float:
    raw = os.getenv("PIPELINE_TIMEOUT_SECONDS", "").strip()
    if not raw:
        return _DEFAULT_PIPELINE_TIMEOUT
    try:
        return float(raw)
    except ValueError:
        logger.warning(
            f"Invalid PIPELINE_TIMEOUT_SECONDS {raw!r}; using {_DEFAULT_PIPELINE_TIMEOUT}"
        )
        return _DEFAULT_PIPELINE_TIMEOUT
