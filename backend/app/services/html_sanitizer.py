"""
HTML sanitizer for the display copy of a forwarded email.

The stored HTML is rendered to the public, so it must not execute anything
and must not carry links that identify the recipient (unsubscribe and
tracking links embed the subscriber address, which may be a honeytrap).

Rules:
  - script-like and form elements are removed entirely
  - event-handler attributes and javascript: URLs are dropped
  - 1x1 / 0x0 tracking pixels are removed
  - anchors keep their href only when it points at a donation platform
    (ActBlue, WinRed); every other anchor is reduced to its text
"""

import logging
from typing import Optional
from urllib.parse import urlsplit

from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

ALLOWED_LINK_DOMAINS = ("actblue.com", "winred.com")

_REMOVED_TAGS = ["script", "iframe", "object", "embed", "form", "input", "button", "meta", "link", "base", "frame", "frameset"]
_URL_ATTRS = ("href", "src", "action", "background", "formaction")
_PIXEL_SIZES = {"0", "1", "0px", "1px"}


def is_allowed_link(href: Optional[str]) -> bool:
    """True for http(s) links on an allowed donation domain or its subdomains."""
    if not href:
        return False
    try:
        parts = urlsplit(href.strip())
    except ValueError:
        return False
    if parts.scheme.lower() not in ("http", "https"):
        return False
    host = (parts.hostname or "").lower()
    return any(host == d or host.endswith("." + d) for d in ALLOWED_LINK_DOMAINS)


def _is_tracking_pixel(tag) -> bool:
    width = str(tag.get("width", "")).strip().lower()
    height = str(tag.get("height", "")).strip().lower()
    return width in _PIXEL_SIZES and height in _PIXEL_SIZES


def sanitize_email_html(body_html: Optional[str]) -> str:
    """Return a display-safe copy of body_html ("" for empty input)."""
    if not body_html:
        return ""

    soup = BeautifulSoup(body_html, "html.parser")

    for tag in soup.find_all(_REMOVED_TAGS):
        if not tag.decomposed:
            tag.decompose()

    for img in soup.find_all("img"):
        if not img.decomposed and _is_tracking_pixel(img):
            img.decompose()

    for tag in soup.find_all(True):
        for attr in list(tag.attrs):
            if attr.lower().startswith("on"):
                del tag[attr]
            elif attr.lower() in _URL_ATTRS:
                value = str(tag.get(attr, "")).strip().lower()
                if value.startswith(("javascript:", "vbscript:", "data:text/html")):
                    del tag[attr]

    removed_links = 0
    for anchor in soup.find_all("a"):
        if is_allowed_link(anchor.get("href")):
            anchor["rel"] = "noopener noreferrer nofollow"
            anchor["target"] = "_blank"
            continue
        anchor.unwrap()
        removed_links += 1

    logger.debug("sanitize_email_html: unwrapped %d non-donation links", removed_links)
    return str(soup)
