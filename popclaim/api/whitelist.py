# popclaim/api/whitelist.py
from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, model_validator
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from popclaim.core.errors import NotTokenCreator
from popclaim.core.keys import parse_pubkey
from popclaim.db import storage
from popclaim.db.models import Token, WhitelistEntry
from popclaim.db.session import SessionLocal

router = APIRouter()


class _Scope(BaseModel):
    tokenId: int | None = None
    eventId: int | None = None

    @model_validator(mode="after")
    def _exactly_one(self):
        if (self.tokenId is None) == (self.eventId is None):
            raise ValueError("Exactly one of tokenId or eventId must be provided")
        return self


class WhitelistInput(_Scope):
    walletAddress: str
    creatorAddress: str | None = None


class BulkWhitelistInput(_Scope):
    addresses: list[str]
    creatorAddress: str | None = None


def _require_creator(token: Token, creator_address: str | None) -> None:
    # Propiedad "blanda": igualdad de direcciones, sin prueba de firma
    if creator_address != token.creator_address:
        raise NotTokenCreator(token_id=token.id)


async def _owned_token(s, token_id: int, creator_address: str | None) -> Token:
    token = await storage.get_token(s, token_id)
    if token is None:
        raise HTTPException(status_code=404, detail="Token not found")
    _require_creator(token, creator_address)
    return token


@router.post("/whitelist", status_code=201)
async def add_entry(body: WhitelistInput):
    wallet = str(parse_pubkey(body.walletAddress))
    async with SessionLocal() as s:
        if body.tokenId is not None:
            token = await _owned_token(s, body.tokenId, body.creatorAddress)
            # la primera entrada activa el modo whitelist del token
            token.whitelist_enabled = True
        entry = WhitelistEntry(token_id=body.tokenId, event_id=body.eventId, wallet_address=wallet)
        s.add(entry)
        try:
            await s.commit()
        except IntegrityError:
            await s.rollback()
            raise HTTPException(status_code=409, detail="Address already whitelisted")
        return entry.to_dict()


@router.post("/whitelist/bulk", status_code=201)
async def add_entries(body: BulkWhitelistInput):
    if not body.addresses:
        raise HTTPException(status_code=400, detail="addresses must be a non-empty array")
    wallets = list(dict.fromkeys(str(parse_pubkey(a)) for a in body.addresses))

    async with SessionLocal() as s:
        if body.tokenId is not None:
            token = await _owned_token(s, body.tokenId, body.creatorAddress)
            token.whitelist_enabled = True
            scope = WhitelistEntry.token_id == body.tokenId
        else:
            scope = WhitelistEntry.event_id == body.eventId

        res = await s.execute(select(WhitelistEntry.wallet_address).where(scope, WhitelistEntry.wallet_address.in_(wallets)))
        existing = set(res.scalars().all())
        entries = [
            WhitelistEntry(token_id=body.tokenId, event_id=body.eventId, wallet_address=w)
            for w in wallets if w not in existing
        ]
        s.add_all(entries)
        await s.commit()
        return [e.to_dict() for e in entries]


@router.get("/whitelist")
async def list_entries(tokenId: int | None = Query(None), eventId: int | None = Query(None)):
    if (tokenId is None) == (eventId is None):
        raise HTTPException(status_code=400, detail="Exactly one of tokenId or eventId must be provided")
    scope = WhitelistEntry.token_id == tokenId if tokenId is not None else WhitelistEntry.event_id == eventId
    async with SessionLocal() as s:
        res = await s.execute(select(WhitelistEntry).where(scope).order_by(WhitelistEntry.id))
        return [e.to_dict() for e in res.scalars().all()]


@router.get("/whitelist/check")
async def check_entry(
    walletAddress: str = Query(...),
    tokenId: int | None = Query(None),
    eventId: int | None = Query(None),
):
    if (tokenId is None) == (eventId is None):
        raise HTTPException(status_code=400, detail="Exactly one of tokenId or eventId must be provided")
    wallet = str(parse_pubkey(walletAddress))
    async with SessionLocal() as s:
        if tokenId is not None:
            ok = await storage.is_whitelisted_for_token(s, tokenId, wallet)
        else:
            ok = await storage.is_whitelisted_for_event(s, eventId, wallet)
    return {"isWhitelisted": ok}


@router.delete("/whitelist/{entry_id}")
async def delete_entry(entry_id: int, creatorAddress: str | None = Query(None)):
    async with SessionLocal() as s:
        entry = await s.get(WhitelistEntry, entry_id)
        if entry is None:
            raise HTTPException(status_code=404, detail="Whitelist entry not found")
        if entry.token_id is not None:
            await _owned_token(s, entry.token_id, creatorAddress)
        await s.delete(entry)
        await s.commit()
    return {"success": True, "message": "Whitelist entry deleted successfully"}


class ToggleInput(BaseModel):
    enabled: bool
    creatorAddress: str | None = None


@router.post("/tokens/{token_id}/whitelist/toggle")
async def toggle_whitelist(token_id: int, body: ToggleInput):
    async with SessionLocal() as s:
        token = await _owned_token(s, token_id, body.creatorAddress)
        token.whitelist_enabled = body.enabled
        await s.commit()
        return token.to_dict()
