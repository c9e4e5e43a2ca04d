"""
Downstream pipeline triggers.

The classifier, sender extractor, screenshot worker and notice mailer are
HTTP endpoints of the web app at SITE_URL:

  POST /api/classify                   {"submissionId": id}
  POST /api/sender                     {"submissionId": id}
  POST /api/screenshot-actblue         {"caseId": id, "url": landing_url}
  POST /api/send-non-fundraising-notice {"submissionId": id}

Transport errors and non-2xx responses are logged and reported as False;
nothing here retries.
"""

import asyncio
import logging

import httpx

from app.config import get_pipeline_timeout, get_site_url

logger = logging.getLogger(__name__)

CLASSIFY_PATH = "/api/classify"
SENDER_PATH = "/api/sender"
SCREENSHOT_PATH = "/api/screenshot-actblue"
NON_FUNDRAISING_NOTICE_PATH = "/api/send-non-fundraising-notice"

_LOG_BODY_CHARS = 200


async def _post(path: str, payload: dict, event: str) -> bool:
    """POST payload to SITE_URL + path; return True on a 2xx response."""
    base = get_site_url()
    if not base:
        logger.warning(f"inbound-email:{event}_skipped SITE_URL is not configured")
        return False

    url = f"{base}{path}"
    try:
        async with httpx.AsyncClient(timeout=get_pipeline_timeout()) as client:
            response = await client.post(url, json=payload)
    except httpx.HTTPError as e:
        logger.error(f"inbound-email:{event}_error url={url} error={e!r}")
        return False

    logger.info(
        f"inbound-email:{event}_triggered status={response.status_code} "
        f"response={response.text[:_LOG_BODY_CHARS]!r}"
    )
    return response.is_success


async def trigger_pipelines(submission_id: str) -> bool:
    """
    Run classification and sender extraction for a submission.

    Both calls are made concurrently and awaited; returns True only if both
    succeeded.
    """
    payload = {"submissionId": submission_id}
    classify_ok, sender_ok = await asyncio.gather(
        _post(CLASSIFY_PATH, payload, "classify"),
        _post(SENDER_PATH, payload, "sender"),
    )
    return classify_ok and sender_ok


async def trigger_screenshot(case_id: str, url: str) -> None:
    """
    Fire-and-forget screenshot of the landing page.

    Runs as a background task after the response is sent, so every failure
    is logged here and never propagates.
    """
    try:
        await _post(SCREENSHOT_PATH, {"caseId": case_id, "url": url}, "screenshot")
    except Exception as e:
        logger.error(f"inbound-email:screenshot_error submission_id={case_id} error={e!r}")


async def send_non_fundraising_notice(submission_id: str) -> bool:
    """Ask the web app to tell the forwarder their email was not fundraising."""
    return await _post(
        NON_FUNDRAISING_NOTICE_PATH,
        {"submissionId": submission_id},
        "non_fundraising_notice",
    )
