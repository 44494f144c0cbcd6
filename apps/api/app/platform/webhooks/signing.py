from __future__ import annotations

import hashlib
import hmac
import json
from typing import Any


def serialize_payload(payload: Any) -> bytes:
    """Canonical body: compact separators, sorted keys, UTF-8."""
    return json.dumps(payload, separators=(",", ":"), sort_keys=True, default=str).encode("utf-8")


def sign_body(secret: str, body: bytes) -> str:
    return hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()


def verify_signature(secret: str, body: bytes, signature: str) -> bool:
    if not signature:
        return False
    return hmac.compare_digest(sign_body(secret, body), signature.strip().lower())


def body_hash(body: bytes) -> str:
    return hashlib.sha256(body).hexdigest()
