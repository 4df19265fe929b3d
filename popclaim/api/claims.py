# popclaim/api/claims.py
from fastapi import APIRouter, Query
from sqlalchemy import select

from popclaim.core.keys import parse_pubkey
from popclaim.db import storage
from popclaim.db.models import Token, TokenClaim
from popclaim.db.session import SessionLocal

router = APIRouter()


@router.get("/check")
async def check_claimed(tokenId: int = Query(...), walletAddress: str = Query(...)):
    wallet = str(parse_pubkey(walletAddress))
    async with SessionLocal() as s:
        return {"claimed": await storage.has_claimed(s, tokenId, wallet)}


@router.get("/wallet/{wallet_address}")
async def claims_by_wallet(wallet_address: str):
    wallet_address = str(parse_pubkey(wallet_address))
    async with SessionLocal() as s:
        res = await s.execute(
            select(TokenClaim, Token)
            .join(Token, TokenClaim.token_id == Token.id)
            .where(TokenClaim.wallet_address == wallet_address)
            .order_by(TokenClaim.claimed_at.desc())
        )
        return [{**claim.to_dict(), "token": token.to_dict()} for claim, token in res.all()]
