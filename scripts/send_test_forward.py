#!/usr/bin/env python3
"""
Dev helper: send a sample forwarded-email webhook to the local intake backend.

Builds a Gmail-style forwarded solicitation (forward banner, original
From/Date header block, donation link) and POSTs it to /api/inbound-email in
the encoding Mailgun would use.

Usage
-----
# Basic - form-urlencoded Gmail forward, targeting localhost:8000
python scripts/send_test_forward.py

# Send as JSON or multipart instead
python scripts/send_test_forward.py --encoding json
python scripts/send_test_forward.py --encoding multipart

# Forwarder address and original sender
python scripts/send_test_forward.py --forwarder me@example.com \
    --original-from "Jane Doe <jane@example.org>"

# Use an Apple Mail or Outlook style header block
python scripts/send_test_forward.py --style apple

# Print the payload without sending it
python scripts/send_test_forward.py --dry-run

Environment / .env
------------------
INTAKE_URL   Backend base URL (default: http://localhost:8000), overridden
             by --url.
"""

import argparse
import json
import os
import sys
import textwrap
from datetime import datetime, timedelta
from pathlib import Path

import httpx
from dotenv import load_dotenv


# ---------------------------------------------------------------------------
# Body builders
# ---------------------------------------------------------------------------

_SOLICITATION = textwrap.dedent("""\
    Friend,

    Our end-of-quarter fundraising deadline is TONIGHT. Chip in $5 now and
    your gift will be triple-matched:

    https://secure.actblue.com/donate/sample-campaign?refcode=fwd-test

    Paid for by Sample Campaign Committee.
""")


def _gmail_header_block(original_from: str, sent: datetime, subject: str, to: str) -> str:
    date_str = sent.strftime("%a, %b %-d, %Y at %-I:%M %p")
    return (
        "---------- Forwarded message ---------\n"
        f"From: {original_from}\n"
        f"Date: {date_str}\n"
        f"Subject: {subject}\n"
        f"To: <{to}>\n"
    )


def _apple_header_block(original_from: str, sent: datetime, subject: str, to: str) -> str:
    date_str = sent.strftime("%B %-d, %Y at %-I:%M:%S %p EST")
    return (
        "Begin forwarded message:\n\n"
        f"From: {original_from}\n"
        f"Subject: {subject}\n"
        f"Date: {date_str}\n"
        f"To: {to}\n"
    )


def _outlook_header_block(original_from: str, sent: datetime, subject: str, to: str) -> str:
    date_str = sent.strftime("%A, %B %-d, %Y %-I:%M %p")
    return (
        f"From: {original_from}\n"
        f"Sent: {date_str}\n"
        f"To: {to}\n"
        f"Subject: {subject}\n"
    )


_HEADER_BUILDERS = {
    "gmail": _gmail_header_block,
    "apple": _apple_header_block,
    "outlook": _outlook_header_block,
}


def _build_fields(args: argparse.Namespace) -> dict:
    """Mailgun route fields for a forwarded solicitation."""
    sent = datetime.now() - timedelta(days=args.days_ago)
    original_subject = args.subject
    header_block = _HEADER_BUILDERS[args.style](
        args.original_from, sent, original_subject, args.forwarder
    )
    body_plain = f"\n{header_block}\n{_SOLICITATION}"
    body_html = "<div dir=\"ltr\">" + body_plain.replace("<", "&lt;").replace(">", "&gt;").replace("\n", "<br>") + "</div>"
    return {
        "sender": args.forwarder,
        "subject": f"Fwd: {original_subject}",
        "body-plain": body_plain,
        "body-html": body_html,
        "message-headers": json.dumps([["Subject", f"Fwd: {original_subject}"]]),
    }


# ---------------------------------------------------------------------------
# Pretty printer
# ---------------------------------------------------------------------------

def _print_response(response: httpx.Response) -> None:
    status = response.status_code
    symbol = "OK" if status == 200 else "FAIL"
    print(f"\n[{symbol}] HTTP {status}")
    try:
        print(json.dumps(response.json(), indent=2))
    except ValueError:
        print(response.text)


# ---------------------------------------------------------------------------
# Main
# ---------------------------------------------------------------------------

def main() -> int:
    project_root = Path(__file__).resolve().parent.parent
    load_dotenv(project_root / ".env")
    load_dotenv(project_root / "backend" / ".env")

    parser = argparse.ArgumentParser(
        prog="send_test_forward.py",
        description="Send a sample forwarded-email webhook to the intake backend.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=textwrap.dedent("""\
            Examples:
              python scripts/send_test_forward.py
              python scripts/send_test_forward.py --encoding multipart
              python scripts/send_test_forward.py --style outlook --days-ago 3
        """),
    )
    parser.add_argument(
        "--url",
        default=os.getenv("INTAKE_URL", "http://localhost:8000"),
        help="Backend base URL (default: http://localhost:8000)",
    )
    parser.add_argument(
        "--encoding",
        default="form",
        choices=["form", "multipart", "json"],
        help="Webhook body encoding (default: form)",
    )
    parser.add_argument(
        "--style",
        default="gmail",
        choices=list(_HEADER_BUILDERS),
        help="Mail client forward style (default: gmail)",
    )
    parser.add_argument(
        "--forwarder",
        default="forwarder@example.com",
        help="Envelope sender, i.e. the person forwarding (default: forwarder@example.com)",
    )
    parser.add_argument(
        "--original-from",
        default="Jane Doe <jane@example.org>",
        help='Original From line (default: "Jane Doe <jane@example.org>")',
    )
    parser.add_argument(
        "--subject",
        default="Help us win",
        help='Original subject (default: "Help us win")',
    )
    parser.add_argument(
        "--days-ago",
        type=int,
        default=2,
        help="How long before now the original was sent (default: 2)",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the payload without sending it.",
    )

    args = parser.parse_args()
    fields = _build_fields(args)
    endpoint = f"{args.url.rstrip('/')}/api/inbound-email"

    print(f"Endpoint  : {endpoint}")
    print(f"Encoding  : {args.encoding}")
    print(f"Style     : {args.style}")
    print(f"Forwarder : {args.forwarder}")
    print(f"Original  : {args.original_from}")

    if args.dry_run:
        print("\n[DRY RUN] Payload:")
        print(json.dumps(fields, indent=2))
        return 0

    try:
        if args.encoding == "json":
            response = httpx.post(endpoint, json=fields, timeout=30)
        elif args.encoding == "multipart":
            files = {name: (None, value) for name, value in fields.items()}
            response = httpx.post(endpoint, files=files, timeout=30)
        else:
            response = httpx.post(endpoint, data=fields, timeout=30)
    except httpx.ConnectError:
        print(
            f"\nERROR: Could not connect to {endpoint}\n"
            "Is the backend running? Start it with:\n"
            "  cd backend && uvicorn app.main:app --reload",
            file=sys.stderr,
        )
        return 1
    except httpx.HTTPError as exc:
        print(f"\nERROR: {exc}", file=sys.stderr)
        return 1

    _print_response(response)
    return 0 if response.status_code == 200 else 1


if __name__ == "__main__":
    sys.exit(main())
