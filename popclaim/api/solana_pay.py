# popclaim/api/solana_pay.py
from functools import partial
from io import BytesIO

import qrcode
from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import StreamingResponse
from pydantic import BaseModel, Field

from popclaim.chain.gateway import SolanaGateway, explorer_url
from popclaim.core import signed_payload
from popclaim.core.config import settings
from popclaim.core.keys import parse_pubkey
from popclaim.core.reference import derive_reference
from popclaim.db import storage
from popclaim.db.session import SessionLocal
from popclaim.api.deps import get_claim_handler, get_gateway, get_verifier
from popclaim.services.claim_request import ClaimRequestHandler, transaction_request_url
from popclaim.services.verification import VerificationService
from popclaim.services.watcher import ConfirmationWatcher

router = APIRouter()


def _png(data: str) -> StreamingResponse:
    img = qrcode.make(data)
    buf = BytesIO(); img.save(buf, format="PNG"); buf.seek(0)
    return StreamingResponse(buf, media_type="image/png")


async def _token_or_404(token_id: int):
    async with SessionLocal() as s:
        token = await storage.get_token(s, token_id)
    if token is None:
        raise HTTPException(status_code=404, detail="Token not found")
    return token


# --- Transaction Request (QR canónico) ---

@router.get("/token/{token_id}")
async def describe_claim(token_id: int, handler: ClaimRequestHandler = Depends(get_claim_handler)):
    return await handler.describe(token_id)


class ClaimRequestInput(BaseModel):
    account: str


@router.post("/token/{token_id}")
async def build_claim(token_id: int, body: ClaimRequestInput, handler: ClaimRequestHandler = Depends(get_claim_handler)):
    built = await handler.build(token_id, body.account)
    return built.to_dict()


class VerifyInput(BaseModel):
    signature: str


@router.post("/token/{token_id}/verify")
async def verify_claim(token_id: int, body: VerifyInput, verifier: VerificationService = Depends(get_verifier)):
    claim = await verifier.finalize(token_id, body.signature)
    return {
        "success": True,
        "signature": claim.transaction_id,
        "explorerUrl": explorer_url(claim.transaction_id),
        "claim": claim.to_dict(),
    }


@router.get("/token/{token_id}/reference")
async def claim_reference(token_id: int, account: str = Query(...)):
    wallet = parse_pubkey(account)
    return {"reference": str(derive_reference(token_id, str(wallet)))}


def _watcher(token_id: int, account: str, gateway: SolanaGateway, verifier: VerificationService, **kw) -> ConfirmationWatcher:
    wallet = parse_pubkey(account)
    reference = derive_reference(token_id, str(wallet))
    return ConfirmationWatcher(gateway, partial(verifier.finalize, token_id), reference, **kw)


@router.get("/token/{token_id}/status")
async def claim_status(
    token_id: int,
    account: str = Query(...),
    gateway: SolanaGateway = Depends(get_gateway),
    verifier: VerificationService = Depends(get_verifier),
):
    # Comprobación manual ("check now")
    result = await _watcher(token_id, account, gateway, verifier).check_now()
    return result.to_dict()


class WatchInput(BaseModel):
    account: str
    timeout: float | None = Field(None, gt=0, le=300)


@router.post("/token/{token_id}/watch")
async def watch_claim(
    token_id: int,
    body: WatchInput,
    gateway: SolanaGateway = Depends(get_gateway),
    verifier: VerificationService = Depends(get_verifier),
):
    result = await _watcher(token_id, body.account, gateway, verifier, timeout=body.timeout).wait()
    return result.to_dict()


@router.get("/token/{token_id}/qr")
async def claim_qr(token_id: int):
    await _token_or_404(token_id)
    return _png(transaction_request_url(token_id))


# --- Ruta simplificada (legacy): enlace por esquema y payload firmado ---

@router.get("/token/{token_id}/qr/simple")
async def simple_qr(token_id: int):
    token = await _token_or_404(token_id)
    return _png(f"{settings.qr_scheme}://token/{token.id}/{token.symbol}")


@router.get("/token/{token_id}/signed-qr")
async def signed_qr(token_id: int, ttl: int | None = Query(None, gt=0, le=24 * 60)):
    await _token_or_404(token_id)
    payload = signed_payload.sign(token_id, ttl)
    return {"payload": payload, "expiresAt": int(payload.split(":")[2])}


class SignedPayloadInput(BaseModel):
    payload: str


@router.post("/qr/verify")
async def verify_signed_qr(body: SignedPayloadInput):
    return signed_payload.verify(body.payload).to_dict()
