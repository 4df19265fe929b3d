# popclaim/services/compression.py
"""
Compressed Transfer Engine.

Máquina de estados para mover saldo comprimido al destinatario:

    NO_POOL -> (crear pool) -> POOL_READY
    POOL_READY sin saldo suficiente -> (comprimir) -> HAS_COMPRESSED_BALANCE
    HAS_COMPRESSED_BALANCE -> (seleccionar entradas, proof, transferir) -> TRANSFERRED

Cada transición es su propia transacción firmada y enviada. El estado se
recalcula desde la cadena/indexador antes de cada paso, nunca se cachea,
así que el motor puede reinvocarse tras un reinicio a mitad de camino.
"""
from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import Protocol

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from popclaim.chain.gateway import SolanaGateway, explorer_url
from popclaim.chain.light import CompressedTokenAccount, PhotonError, ValidityProof
from popclaim.core.config import settings
from popclaim.core.errors import (
    CompressedTransferFailed,
    CompressionFailed,
    InsufficientCompressedBalance,
    PoolCreationFailed,
    PopClaimError,
    ProofUnavailable,
)
from popclaim.core.keys import parse_pubkey

logger = logging.getLogger(__name__)


class TransferState(str, enum.Enum):
    NO_POOL = "NoPool"
    POOL_READY = "PoolReady"
    HAS_COMPRESSED_BALANCE = "HasCompressedBalance"
    TRANSFERRED = "Transferred"


class StepKind(str, enum.Enum):
    CREATE_POOL = "create_pool"
    COMPRESS = "compress"
    TRANSFER = "transfer"


class CompressionBackend(Protocol):
    async def pool_exists(self, mint: Pubkey) -> bool: ...
    async def create_pool(self, mint: Pubkey) -> str: ...
    async def compressed_accounts(self, owner: Pubkey, mint: Pubkey) -> list[CompressedTokenAccount]: ...
    async def compress(self, mint: Pubkey, amount: int) -> str: ...
    async def validity_proof(self, hashes: list[str]) -> ValidityProof: ...
    async def transfer(self, mint: Pubkey, inputs: list[CompressedTokenAccount], proof: ValidityProof, recipient: Pubkey, amount: int) -> str: ...


@dataclass(frozen=True)
class SubmittedStep:
    kind: StepKind
    signature: str


@dataclass
class CompressedTransferResult:
    state: TransferState
    signature: str
    steps: list[SubmittedStep] = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.state is TransferState.TRANSFERRED,
            "signature": self.signature,
            "explorerUrl": explorer_url(self.signature),
            "steps": [{"type": st.kind.value, "signature": st.signature} for st in self.steps],
        }


def select_inputs(accounts: list[CompressedTokenAccount], amount: int) -> list[CompressedTokenAccount]:
    """Conjunto mínimo de cuentas (mayor saldo primero) que cubre `amount`."""
    selected, total = [], 0
    for account in sorted(accounts, key=lambda a: a.amount, reverse=True):
        if total >= amount:
            break
        selected.append(account)
        total += account.amount
    if total < amount:
        raise InsufficientCompressedBalance(f"Compressed balance {total} is below {amount}")
    return selected


class CompressedTransferEngine:
    # una pasada por transición como máximo
    MAX_STEPS = 3

    def __init__(self, backend: CompressionBackend, gateway: SolanaGateway, payer: Keypair):
        self.backend = backend
        self.gateway = gateway
        self.payer = payer

    async def initialize(self) -> None:
        """Financia el keypair de compresión si está por debajo del mínimo (sólo fuera de mainnet)."""
        if settings.solana_network == "mainnet-beta":
            return
        pubkey = self.payer.pubkey()
        balance = await self.gateway.get_balance(pubkey)
        if balance < settings.compression_min_lamports:
            signature = await self.gateway.request_airdrop(pubkey, settings.compression_min_lamports - balance)
            logger.info("funded compression keypair %s signature=%s", pubkey, signature)

    async def compressed_balance(self, owner: Pubkey, mint: Pubkey) -> int:
        accounts = await self.backend.compressed_accounts(owner, mint)
        return sum(a.amount for a in accounts)

    async def current_state(self, mint: Pubkey, amount: int) -> tuple[TransferState, list[CompressedTokenAccount]]:
        if not await self.backend.pool_exists(mint):
            return TransferState.NO_POOL, []
        accounts = await self.backend.compressed_accounts(self.payer.pubkey(), mint)
        if sum(a.amount for a in accounts) < amount:
            return TransferState.POOL_READY, accounts
        return TransferState.HAS_COMPRESSED_BALANCE, accounts

    async def _create_pool(self, mint: Pubkey) -> str:
        try:
            return await self.backend.create_pool(mint)
        except (PopClaimError, PhotonError) as e:
            raise PoolCreationFailed(f"Token pool creation failed: {e}", mint=str(mint)) from e

    async def _compress(self, mint: Pubkey, amount: int) -> str:
        try:
            return await self.backend.compress(mint, amount)
        except (PopClaimError, PhotonError) as e:
            raise CompressionFailed(f"Compression of {amount} failed: {e}", mint=str(mint)) from e

    async def _transfer(self, mint: Pubkey, accounts: list[CompressedTokenAccount], recipient: Pubkey, amount: int) -> str:
        inputs = select_inputs(accounts, amount)
        try:
            proof = await self.backend.validity_proof([a.hash for a in inputs])
        except (PopClaimError, PhotonError) as e:
            raise ProofUnavailable(f"Validity proof unavailable: {e}", mint=str(mint)) from e
        try:
            return await self.backend.transfer(mint, inputs, proof, recipient, amount)
        except (PopClaimError, PhotonError) as e:
            raise CompressedTransferFailed(f"Compressed transfer failed: {e}", mint=str(mint)) from e

    async def transfer_compressed(self, mint_address: str, recipient_address: str, amount: int) -> CompressedTransferResult:
        mint = parse_pubkey(mint_address)
        recipient = parse_pubkey(recipient_address)
        if amount <= 0:
            raise ValueError("amount must be positive")

        steps: list[SubmittedStep] = []
        done = set()
        for _ in range(self.MAX_STEPS):
            try:
                state, accounts = await self.current_state(mint, amount)
            except PhotonError as e:
                raise CompressionFailed(f"Indexer error: {e}", mint=str(mint)) from e
            logger.info("compressed transfer mint=%s state=%s", mint, state.value)

            if state is TransferState.NO_POOL:
                if StepKind.CREATE_POOL in done:
                    raise PoolCreationFailed("Token pool not visible after creation", mint=str(mint))
                signature = await self._create_pool(mint)
                steps.append(SubmittedStep(StepKind.CREATE_POOL, signature))
                done.add(StepKind.CREATE_POOL)

            elif state is TransferState.POOL_READY:
                if StepKind.COMPRESS in done:
                    raise InsufficientCompressedBalance(mint=str(mint))
                missing = amount - sum(a.amount for a in accounts)
                signature = await self._compress(mint, missing)
                steps.append(SubmittedStep(StepKind.COMPRESS, signature))
                done.add(StepKind.COMPRESS)

            else:
                signature = await self._transfer(mint, accounts, recipient, amount)
                steps.append(SubmittedStep(StepKind.TRANSFER, signature))
                logger.info("compressed transfer done mint=%s recipient=%s amount=%s signature=%s", mint, recipient, amount, signature)
                return CompressedTransferResult(TransferState.TRANSFERRED, signature, steps)

        raise CompressedTransferFailed("Transfer state did not converge", mint=str(mint))
