"""
Send a signed test webhook to the StockLoyal receiver.

Usage:
    python scripts/send_test_webhook.py
    python scripts/send_test_webhook.py --event-type points.earned --request-id evt-001
    python scripts/send_test_webhook.py --ack-url https://example.test/ack --bearer
    python scripts/send_test_webhook.py --no-signature
"""
import argparse
import asyncio
import logging
import os
from datetime import datetime, timezone

import httpx

from stockloyal.services.signed_delivery import generate_test_request_id, send_signed_event

logger = logging.getLogger(__name__)

BASE_URL = "http://localhost:8000/webhooks/stockloyal-receiver"


def build_event(event_type: str, request_id: str, ack_url: str | None) -> dict:
    payload = {
        "event_type": event_type,
        "request_id": request_id,
        "member_id": "test-member",
        "points": 100,
        "sent_at": datetime.now(timezone.utc).isoformat(),
    }
    if ack_url:
        payload["ack_url"] = ack_url
    return payload


async def send_test_webhook(
    url: str,
    secret: str,
    event_type: str,
    request_id: str,
    ack_url: str | None = None,
    sign: bool = True,
    bearer: bool = False,
) -> httpx.Response:
    resp = await send_signed_event(
        url, secret, build_event(event_type, request_id, ack_url), sign=sign, bearer=bearer,
    )
    logger.info("Receiver response: %s %s", resp.status_code, resp.text)
    return resp


def main():
    logging.basicConfig(level=logging.INFO)
    parser = argparse.ArgumentParser(description="Send a test webhook to the StockLoyal receiver")
    parser.add_argument("--url", default=os.getenv("WEBHOOK_URL", BASE_URL))
    parser.add_argument("--secret", default=os.getenv("STOCKLOYAL_WEBHOOK_SECRET", ""))
    parser.add_argument("--event-type", default="points.earned")
    parser.add_argument("--request-id", default=None)
    parser.add_argument("--ack-url", default=None)
    parser.add_argument("--no-signature", action="store_true")
    parser.add_argument("--bearer", action="store_true", help="Send the secret as a Bearer token")
    args = parser.parse_args()

    if not args.secret:
        parser.error("--secret or STOCKLOYAL_WEBHOOK_SECRET is required")

    asyncio.run(send_test_webhook(
        url=args.url,
        secret=args.secret,
        event_type=args.event_type,
        request_id=args.request_id or generate_test_request_id(),
        ack_url=args.ack_url,
        sign=not args.no_signature,
        bearer=args.bearer,
    ))


if __name__ == "__main__":
    main()
