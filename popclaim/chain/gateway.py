# popclaim/chain/gateway.py
"""
Acceso a Solana para el resto del servicio.

Envuelve el cliente RPC asíncrono de solana-py y devuelve valores simples
(str, int, dataclasses) para que servicios y tests no dependan de los tipos
de respuesta del RPC. Cualquier fallo de red/RPC sale como ChainUnavailable.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import AsyncIterator

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Confirmed
from solana.rpc.core import RPCException
from solana.rpc.types import TxOpts
from solana.rpc.websocket_api import connect
from solders.hash import Hash
from solders.pubkey import Pubkey
from solders.signature import Signature
from solders.transaction import Transaction

from popclaim.core.config import settings
from popclaim.core.errors import ChainUnavailable

logger = logging.getLogger(__name__)

# Offset del campo `decimals` en el layout de una cuenta Mint de SPL Token
_MINT_DECIMALS_OFFSET = 44

_RPC_ERRORS = (SolanaRpcException, RPCException, httpx.HTTPError, OSError)


@dataclass(frozen=True)
class LandedTransaction:
    signature: str
    slot: int
    account_keys: list[str]
    num_required_signatures: int
    err: object | None = None

    @property
    def signers(self) -> list[str]:
        return self.account_keys[: self.num_required_signatures]


@dataclass
class SolanaGateway:
    rpc_url: str = field(default_factory=lambda: settings.solana_rpc_url)
    ws_url: str = field(default_factory=lambda: settings.solana_ws_url)
    client: AsyncClient | None = None

    def __post_init__(self):
        if self.client is None:
            self.client = AsyncClient(self.rpc_url, commitment=Confirmed)

    async def close(self) -> None:
        await self.client.close()

    async def latest_blockhash(self) -> Hash:
        try:
            resp = await self.client.get_latest_blockhash(Confirmed)
        except _RPC_ERRORS as e:
            raise ChainUnavailable(f"getLatestBlockhash failed: {e}") from e
        return resp.value.blockhash

    async def account_exists(self, pubkey: Pubkey) -> bool:
        try:
            resp = await self.client.get_account_info(pubkey)
        except _RPC_ERRORS as e:
            raise ChainUnavailable(f"getAccountInfo failed: {e}") from e
        return resp.value is not None

    async def get_balance(self, pubkey: Pubkey) -> int:
        try:
            resp = await self.client.get_balance(pubkey)
        except _RPC_ERRORS as e:
            raise ChainUnavailable(f"getBalance failed: {e}") from e
        return resp.value

    async def request_airdrop(self, pubkey: Pubkey, lamports: int) -> str:
        try:
            resp = await self.client.request_airdrop(pubkey, lamports)
            await self.client.confirm_transaction(resp.value, Confirmed)
        except _RPC_ERRORS as e:
            raise ChainUnavailable(f"requestAirdrop failed: {e}") from e
        return str(resp.value)

    async def mint_decimals(self, mint: Pubkey) -> int:
        try:
            resp = await self.client.get_account_info(mint)
        except _RPC_ERRORS as e:
            raise ChainUnavailable(f"getAccountInfo failed: {e}") from e
        if resp.value is None or len(resp.value.data) <= _MINT_DECIMALS_OFFSET:
            raise ChainUnavailable(f"mint {mint} not found")
        return resp.value.data[_MINT_DECIMALS_OFFSET]

    async def get_transaction(self, signature: str) -> LandedTransaction | None:
        try:
            resp = await self.client.get_transaction(
                Signature.from_string(signature),
                encoding="base64",
                commitment=Confirmed,
                max_supported_transaction_version=0,
            )
        except _RPC_ERRORS as e:
            raise ChainUnavailable(f"getTransaction failed: {e}") from e
        if resp.value is None:
            return None

        encoded = resp.value.transaction
        message = encoded.transaction.message
        meta = encoded.meta
        return LandedTransaction(
            signature=signature,
            slot=resp.value.slot,
            account_keys=[str(k) for k in message.account_keys],
            num_required_signatures=message.header.num_required_signatures,
            err=meta.err if meta is not None else None,
        )

    async def signatures_for_address(self, pubkey: Pubkey, limit: int = 10) -> list[str]:
        """Firmas que tocan `pubkey`, de la más reciente a la más antigua."""
        try:
            resp = await self.client.get_signatures_for_address(pubkey, limit=limit, commitment=Confirmed)
        except _RPC_ERRORS as e:
            raise ChainUnavailable(f"getSignaturesForAddress failed: {e}") from e
        return [str(r.signature) for r in resp.value]

    async def send_transaction(self, tx: Transaction) -> str:
        try:
            resp = await self.client.send_raw_transaction(
                bytes(tx),
                opts=TxOpts(skip_confirmation=False, preflight_commitment=Confirmed),
            )
        except _RPC_ERRORS as e:
            raise ChainUnavailable(f"sendTransaction failed: {e}") from e
        signature = str(resp.value)
        logger.info("transaction sent signature=%s", signature)
        return signature

    async def watch_account(self, pubkey: Pubkey) -> AsyncIterator[object]:
        """Suscripción websocket a cambios de la cuenta; emite cada notificación."""
        async with connect(self.ws_url) as ws:
            await ws.account_subscribe(pubkey, commitment=Confirmed)
            first = await ws.recv()
            subscription_id = first[0].result
            try:
                async for msgs in ws:
                    for msg in msgs:
                        yield msg
            finally:
                await ws.account_unsubscribe(subscription_id)


def explorer_url(signature: str) -> str:
    return f"https://explorer.solana.com/tx/{signature}?cluster={settings.solana_network}"
