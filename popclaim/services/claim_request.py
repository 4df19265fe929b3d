# popclaim/services/claim_request.py
"""
Transaction Request Handler (patrón "Transaction Request" de Solana Pay).

- describe(): GET del wallet al escanear -> etiqueta e icono.
- build(): POST con la cuenta del reclamante -> transacción parcialmente
  firmada por el servicio, en base64, que el wallet firma y envía.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from urllib.parse import quote

from solders.keypair import Keypair
from sqlalchemy.ext.asyncio import async_sessionmaker
from spl.token.instructions import get_associated_token_address

from popclaim.chain import transactions
from popclaim.chain.gateway import SolanaGateway
from popclaim.core.config import settings
from popclaim.core.errors import CompressedClaimUnsupported, TokenNotFound
from popclaim.core.guard import check_claim
from popclaim.core.keys import parse_pubkey
from popclaim.core.reference import derive_reference
from popclaim.db import storage
from popclaim.db.session import SessionLocal

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuiltClaim:
    transaction: str
    message: str
    reference: str

    def to_dict(self) -> dict:
        return {"transaction": self.transaction, "message": self.message}


def transaction_request_url(token_id: int) -> str:
    """URL `solana:` del Transaction Request que se codifica en el QR canónico."""
    link = f"{settings.public_base_url.rstrip('/')}/token/{token_id}"
    return f"solana:{quote(link, safe='')}"


def claim_memo(symbol: str, token_id: int) -> str:
    return f"Claim 1 {symbol} (token #{token_id})"


class ClaimRequestHandler:
    def __init__(self, gateway: SolanaGateway, service_keypair: Keypair, session_factory: async_sessionmaker = SessionLocal):
        self.gateway = gateway
        self.service = service_keypair
        self.session_factory = session_factory

    async def describe(self, token_id: int) -> dict:
        async with self.session_factory() as s:
            token = await storage.get_token(s, token_id)
        if token is None:
            raise TokenNotFound(token_id=token_id)
        return {"label": f"Claim {token.name} ({token.symbol})", "icon": settings.icon_url}

    async def build(self, token_id: int, account: str) -> BuiltClaim:
        claimant = parse_pubkey(account)

        # Pre-check optimista: sólo evita construir transacciones condenadas.
        # La comprobación que cuenta es la de la finalización.
        async with self.session_factory() as s:
            token = await check_claim(s, token_id, str(claimant))
        if token.is_compressed:
            raise CompressedClaimUnsupported(token_id=token_id)

        mint = parse_pubkey(token.mint_address)
        reference = derive_reference(token_id, str(claimant))
        recipient_ata = get_associated_token_address(claimant, mint)
        needs_ata = not await self.gateway.account_exists(recipient_ata)

        ixs = transactions.claim_instructions(
            service=self.service.pubkey(),
            claimant=claimant,
            mint=mint,
            decimals=token.decimals,
            reference=reference,
            memo=claim_memo(token.symbol, token_id),
            create_recipient_ata=needs_ata,
        )
        blockhash = await self.gateway.latest_blockhash()
        tx = transactions.partially_signed(ixs, self.service, blockhash)

        logger.info(
            "claim transaction built token=%s wallet=%s reference=%s create_ata=%s",
            token_id, claimant, reference, needs_ata,
        )
        return BuiltClaim(
            transaction=transactions.to_base64(tx),
            message=f"Claim your {token.symbol} token!",
            reference=str(reference),
        )
