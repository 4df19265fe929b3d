# tests/test_guard.py
from datetime import datetime, timedelta, timezone

import pytest
from solders.pubkey import Pubkey

from popclaim.core.errors import (
    AlreadyClaimed,
    NotWhitelisted,
    SupplyExhausted,
    TokenExpired,
    TokenNotFound,
)
from popclaim.core.guard import can_claim, check_claim
from popclaim.db.models import TokenClaim, WhitelistEntry, CLAIM_COMPLETED, CLAIM_FAILED


def _wallet() -> str:
    return str(Pubkey.new_unique())


@pytest.mark.asyncio
async def test_allowed(session_factory, make_token):
    token = await make_token()
    async with session_factory() as s:
        got = await check_claim(s, token.id, _wallet())
        assert got.id == token.id
        assert (await can_claim(s, token.id, _wallet())).allowed is True


@pytest.mark.asyncio
async def test_unknown_token(session_factory):
    async with session_factory() as s:
        with pytest.raises(TokenNotFound):
            await check_claim(s, 999, _wallet())
        decision = await can_claim(s, 999, _wallet())
    assert decision.allowed is False
    assert decision.reason == "TokenNotFound"


@pytest.mark.asyncio
async def test_expiry_boundary_is_inclusive(session_factory, make_token):
    expiry = datetime(2030, 1, 1, tzinfo=timezone.utc)
    token = await make_token(expiry_date=expiry)
    async with session_factory() as s:
        await check_claim(s, token.id, _wallet(), now=expiry - timedelta(seconds=1))
        with pytest.raises(TokenExpired):
            await check_claim(s, token.id, _wallet(), now=expiry)


@pytest.mark.asyncio
async def test_exhausted_supply(session_factory, make_token):
    token = await make_token(supply=2, claimed=2)
    async with session_factory() as s:
        with pytest.raises(SupplyExhausted):
            await check_claim(s, token.id, _wallet())


@pytest.mark.asyncio
async def test_expired_is_reported_before_exhausted(session_factory, make_token):
    past = datetime.now(timezone.utc) - timedelta(days=1)
    token = await make_token(supply=1, claimed=1, expiry_date=past)
    async with session_factory() as s:
        decision = await can_claim(s, token.id, _wallet())
    assert decision.reason == "TokenExpired"


@pytest.mark.asyncio
async def test_whitelist(session_factory, make_token):
    token = await make_token(whitelist_enabled=True)
    allowed, other = _wallet(), _wallet()
    async with session_factory() as s:
        s.add(WhitelistEntry(token_id=token.id, wallet_address=allowed))
        await s.commit()

    async with session_factory() as s:
        await check_claim(s, token.id, allowed)
        with pytest.raises(NotWhitelisted):
            await check_claim(s, token.id, other)


@pytest.mark.asyncio
async def test_only_completed_claims_count(session_factory, make_token):
    token = await make_token()
    wallet = _wallet()
    async with session_factory() as s:
        s.add(TokenClaim(token_id=token.id, wallet_address=wallet, transaction_id="failed-sig", status=CLAIM_FAILED))
        await s.commit()

    async with session_factory() as s:
        # un intento fallido no bloquea
        await check_claim(s, token.id, wallet)
        s.add(TokenClaim(token_id=token.id, wallet_address=wallet, transaction_id="ok-sig", status=CLAIM_COMPLETED))
        await s.commit()

    async with session_factory() as s:
        with pytest.raises(AlreadyClaimed):
            await check_claim(s, token.id, wallet)
