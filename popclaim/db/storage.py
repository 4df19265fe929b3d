# popclaim/db/storage.py
from __future__ import annotations

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession

from popclaim.db.models import Token, TokenClaim, WhitelistEntry, CLAIM_COMPLETED


async def get_token(s: AsyncSession, token_id: int) -> Token | None:
    return await s.get(Token, token_id, populate_existing=True)


async def get_completed_claim(s: AsyncSession, token_id: int, wallet: str) -> TokenClaim | None:
    res = await s.execute(
        select(TokenClaim).where(
            TokenClaim.token_id == token_id,
            TokenClaim.wallet_address == wallet,
            TokenClaim.status == CLAIM_COMPLETED,
        )
    )
    return res.scalars().first()


async def has_claimed(s: AsyncSession, token_id: int, wallet: str) -> bool:
    return await get_completed_claim(s, token_id, wallet) is not None


async def is_whitelisted_for_token(s: AsyncSession, token_id: int, wallet: str) -> bool:
    res = await s.execute(
        select(WhitelistEntry.id).where(
            WhitelistEntry.token_id == token_id,
            WhitelistEntry.wallet_address == wallet,
        )
    )
    return res.first() is not None


async def is_whitelisted_for_event(s: AsyncSession, event_id: int, wallet: str) -> bool:
    res = await s.execute(
        select(WhitelistEntry.id).where(
            WhitelistEntry.event_id == event_id,
            WhitelistEntry.wallet_address == wallet,
        )
    )
    return res.first() is not None


async def increment_claimed(s: AsyncSession, token_id: int) -> bool:
    """
    Incremento atómico en la propia BD: sólo avanza si queda supply.
    Devuelve False si la fila no se actualizó (supply agotado).
    """
    res = await s.execute(
        update(Token)
        .where(Token.id == token_id, Token.claimed < Token.supply)
        .values(claimed=Token.claimed + 1)
        .execution_options(synchronize_session=False)
    )
    return res.rowcount == 1


async def count_completed_claims(s: AsyncSession, token_id: int) -> int:
    res = await s.execute(
        select(func.count(TokenClaim.id)).where(
            TokenClaim.token_id == token_id,
            TokenClaim.status == CLAIM_COMPLETED,
        )
    )
    return res.scalar_one()
