# popclaim/core/guard.py
"""
Claim Guard: evaluación de política de reclamación.

Se invoca desde dos sitios: antes de construir la transacción (optimista,
evita construir transacciones condenadas) y dentro de la finalización
(autoritativo). Ambos usan esta misma función.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from popclaim.core.errors import (
    ClaimError,
    TokenNotFound,
    TokenExpired,
    SupplyExhausted,
    NotWhitelisted,
    AlreadyClaimed,
)
from popclaim.db import storage
from popclaim.db.models import Token

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ClaimDecision:
    allowed: bool
    reason: str | None = None
    message: str | None = None


async def check_claim(s: AsyncSession, token_id: int, wallet: str, *, now: datetime | None = None) -> Token:
    """Devuelve el token si `wallet` puede reclamarlo; si no, lanza el primer ClaimError que aplique."""
    now = now or datetime.now(timezone.utc)

    token = await storage.get_token(s, token_id)
    if token is None:
        raise TokenNotFound(token_id=token_id)

    if token.expiry_date is not None and now >= token.expiry_date:
        raise TokenExpired(token_id=token_id)

    if token.claimed >= token.supply:
        raise SupplyExhausted(token_id=token_id)

    if token.whitelist_enabled and not await storage.is_whitelisted_for_token(s, token_id, wallet):
        raise NotWhitelisted(token_id=token_id, wallet=wallet)

    if await storage.has_claimed(s, token_id, wallet):
        raise AlreadyClaimed(token_id=token_id, wallet=wallet)

    return token


async def can_claim(s: AsyncSession, token_id: int, wallet: str, *, now: datetime | None = None) -> ClaimDecision:
    try:
        await check_claim(s, token_id, wallet, now=now)
    except ClaimError as e:
        logger.info("claim denied token=%s wallet=%s reason=%s", token_id, wallet, e.reason)
        return ClaimDecision(allowed=False, reason=e.reason, message=e.message)
    return ClaimDecision(allowed=True)
