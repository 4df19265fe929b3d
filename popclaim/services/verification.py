# popclaim/services/verification.py
"""
Verificación y finalización de reclamaciones.

Sólo se confía en la firma que envía el cliente: la transacción se lee de
la cadena, el reclamante se extrae de sus firmantes y el guard se vuelve a
evaluar contra ese wallet. El registro del claim y el incremento del
contador se confirman en una única transacción de BD.
"""
from __future__ import annotations

import logging

from solders.pubkey import Pubkey
from solders.signature import Signature
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from popclaim.chain.gateway import LandedTransaction, SolanaGateway
from popclaim.core.errors import (
    AlreadyClaimed,
    InvalidSignature,
    SupplyExhausted,
    TransactionFailed,
    TransactionMismatch,
    TransactionNotFound,
)
from popclaim.core.guard import check_claim
from popclaim.core.reference import derive_reference
from popclaim.db import storage
from popclaim.db.models import TokenClaim, CLAIM_COMPLETED
from popclaim.db.session import SessionLocal

logger = logging.getLogger(__name__)


def _claimant_of(landed: LandedTransaction, service: Pubkey) -> str:
    service_key = str(service)
    for signer in landed.signers:
        if signer != service_key:
            return signer
    raise TransactionMismatch("Transaction has no claimant signer")


class VerificationService:
    def __init__(self, gateway: SolanaGateway, service_pubkey: Pubkey, session_factory: async_sessionmaker = SessionLocal):
        self.gateway = gateway
        self.service_pubkey = service_pubkey
        self.session_factory = session_factory

    async def _replayed(self, s: AsyncSession, token_id: int, wallet: str, signature: str) -> TokenClaim | None:
        claim = await storage.get_completed_claim(s, token_id, wallet)
        if claim is not None and claim.transaction_id == signature:
            return claim
        return None

    async def finalize(self, token_id: int, signature: str) -> TokenClaim:
        try:
            Signature.from_string(signature)
        except (ValueError, TypeError):
            raise InvalidSignature(f"Invalid transaction signature: {signature}")

        landed = await self.gateway.get_transaction(signature)
        if landed is None:
            raise TransactionNotFound(signature=signature)
        if landed.err is not None:
            raise TransactionFailed(f"Transaction failed on chain: {landed.err}", signature=signature)

        wallet = _claimant_of(landed, self.service_pubkey)
        reference = str(derive_reference(token_id, wallet))
        if reference not in landed.account_keys:
            raise TransactionMismatch(signature=signature, token_id=token_id)

        async with self.session_factory() as s:
            replay = await self._replayed(s, token_id, wallet, signature)
            if replay is not None:
                logger.info("claim replay token=%s wallet=%s signature=%s", token_id, wallet, signature)
                return replay

            # Comprobación autoritativa
            try:
                await check_claim(s, token_id, wallet)
            except AlreadyClaimed:
                # la misma firma pudo confirmarse entre la consulta anterior y ésta
                replay = await self._replayed(s, token_id, wallet, signature)
                if replay is not None:
                    return replay
                raise

            try:
                if not await storage.increment_claimed(s, token_id):
                    raise SupplyExhausted(token_id=token_id)
                claim = TokenClaim(
                    token_id=token_id,
                    wallet_address=wallet,
                    transaction_id=signature,
                    status=CLAIM_COMPLETED,
                )
                s.add(claim)
                await s.commit()
            except IntegrityError:
                # Otra finalización concurrente ganó la carrera por (token, wallet)
                await s.rollback()
                replay = await self._replayed(s, token_id, wallet, signature)
                if replay is not None:
                    return replay
                raise AlreadyClaimed(token_id=token_id, wallet=wallet)
            except SupplyExhausted:
                await s.rollback()
                raise

        logger.info("claim completed token=%s wallet=%s signature=%s", token_id, wallet, signature)
        return claim
