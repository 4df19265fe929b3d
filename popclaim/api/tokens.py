# popclaim/api/tokens.py
from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query
from pydantic import BaseModel, Field
from solders.keypair import Keypair
from sqlalchemy import select

from popclaim.api.deps import get_compression_engine, get_gateway, get_service_keypair
from popclaim.chain.gateway import SolanaGateway
from popclaim.core.keys import parse_pubkey
from popclaim.db.models import Token
from popclaim.db.session import SessionLocal
from popclaim.services.compression import CompressedTransferEngine
from popclaim.services.transfer import transfer_token

router = APIRouter()


class RegisterTokenInput(BaseModel):
    name: str = Field(..., min_length=1, max_length=64)
    symbol: str = Field(..., min_length=1, max_length=16)
    description: str = ""
    supply: int = Field(..., gt=0)
    decimals: int = Field(0, ge=0, le=9)
    mintAddress: str
    creatorAddress: str
    expiryDate: datetime | None = None
    whitelistEnabled: bool = False
    isCompressed: bool = False


@router.post("", status_code=201)
async def register_token(body: RegisterTokenInput):
    # El mint ya existe en cadena: aquí sólo se registra su política
    token = Token(
        name=body.name,
        symbol=body.symbol,
        description=body.description,
        supply=body.supply,
        claimed=0,
        decimals=body.decimals,
        mint_address=str(parse_pubkey(body.mintAddress)),
        creator_address=str(parse_pubkey(body.creatorAddress)),
        expiry_date=body.expiryDate,
        whitelist_enabled=body.whitelistEnabled,
        is_compressed=body.isCompressed,
    )
    async with SessionLocal() as s:
        s.add(token)
        await s.commit()
    return token.to_dict()


@router.get("")
async def list_tokens(creatorAddress: str | None = Query(None)):
    q = select(Token).order_by(Token.id)
    if creatorAddress:
        q = q.where(Token.creator_address == creatorAddress)
    async with SessionLocal() as s:
        res = await s.execute(q)
        return [t.to_dict() for t in res.scalars().all()]


@router.get("/{token_id}")
async def get_token(token_id: int):
    async with SessionLocal() as s:
        token = await s.get(Token, token_id)
        if token is None:
            raise HTTPException(status_code=404, detail="Token not found")
        return token.to_dict()


class TransferInput(BaseModel):
    mintAddress: str
    recipientAddress: str
    amount: int = Field(..., gt=0)


@router.post("/transfer")
async def transfer(
    body: TransferInput,
    gateway: SolanaGateway = Depends(get_gateway),
    service: Keypair = Depends(get_service_keypair),
):
    return await transfer_token(gateway, service, body.mintAddress, body.recipientAddress, body.amount)


@router.post("/transfer/compressed")
async def transfer_compressed(body: TransferInput, engine: CompressedTransferEngine = Depends(get_compression_engine)):
    result = await engine.transfer_compressed(body.mintAddress, body.recipientAddress, body.amount)
    return result.to_dict()
