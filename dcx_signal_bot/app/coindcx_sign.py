"""Helpers for signing CoinDCX authenticated requests."""

from __future__ import annotations

import hashlib
import hmac
import json
import time
from urllib.parse import urlencode


def build_query(params: dict[str, object]) -> str:
    """Build deterministic query string without None values."""
    filtered = {k: v for k, v in params.items() if v is not None}
    return urlencode(sorted(filtered.items()), doseq=True)


def compact_json(body: dict[str, object]) -> str:
    """Serialize the body exactly as it is sent and signed."""
    return json.dumps(body, separators=(",", ":"))


def sign_payload(secret: str, payload: str) -> str:
    """Return HMAC SHA256 hex digest for payload."""
    return hmac.new(secret.encode("utf-8"), payload.encode("utf-8"), hashlib.sha256).hexdigest()


def signed_body(params: dict[str, object], api_key: str, api_secret: str) -> tuple[str, dict[str, str]]:
    """Add a millisecond timestamp, serialize, and build the auth headers."""
    body = {k: v for k, v in params.items() if v is not None}
    body["timestamp"] = int(time.time() * 1000)
    payload = compact_json(body)
    headers = {
        "Content-Type": "application/json",
        "X-AUTH-APIKEY": api_key,
        "X-AUTH-SIGNATURE": sign_payload(api_secret, payload),
    }
    return payload, headers
