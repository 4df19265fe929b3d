# popclaim/core/signed_payload.py
"""
Payload firmado con HMAC para el QR simplificado (sin handshake de wallet).

Formato: tokenId:issuedAtMillis:expiryMillis:hex(HMAC-SHA256)
"""
from __future__ import annotations

import hashlib
import hmac
import time
from dataclasses import dataclass

from popclaim.core.config import settings


@dataclass(frozen=True)
class PayloadCheck:
    valid: bool
    token_id: int | None = None
    expired: bool = False

    def to_dict(self) -> dict:
        return {"valid": self.valid, "tokenId": self.token_id, "expired": self.expired}


def _now_millis() -> int:
    return int(time.time() * 1000)


def _digest(message: str, secret: str | None = None) -> str:
    key = (secret or settings.qr_signature_secret).encode("utf-8")
    return hmac.new(key, message.encode("utf-8"), hashlib.sha256).hexdigest()


def sign(token_id: int, ttl_minutes: int | None = None, *, now: int | None = None, secret: str | None = None) -> str:
    issued_at = now if now is not None else _now_millis()
    ttl = settings.qr_ttl_minutes if ttl_minutes is None else ttl_minutes
    expiry = issued_at + ttl * 60_000
    body = f"{token_id}:{issued_at}:{expiry}"
    return f"{body}:{_digest(body, secret)}"


def verify(payload: str, *, now: int | None = None, secret: str | None = None) -> PayloadCheck:
    parts = payload.split(":") if isinstance(payload, str) else []
    if len(parts) != 4 or not all(parts):
        return PayloadCheck(valid=False)

    token_str, issued_str, expiry_str, signature = parts
    try:
        token_id = int(token_str)
        int(issued_str)
        expiry = int(expiry_str)
    except ValueError:
        return PayloadCheck(valid=False)

    # Caducidad antes que firma: la UI distingue "caducado" de "manipulado"
    current = now if now is not None else _now_millis()
    if current > expiry:
        return PayloadCheck(valid=False, token_id=token_id, expired=True)

    expected = _digest(f"{token_str}:{issued_str}:{expiry_str}", secret)
    if not hmac.compare_digest(signature.encode("utf-8"), expected.encode("utf-8")):
        return PayloadCheck(valid=False, token_id=token_id)

    return PayloadCheck(valid=True, token_id=token_id)
