# popclaim/chain/light.py
"""
Backend de ZK compression (Light Protocol, programa compressed-token v1).

- Lecturas vía el indexador Photon (JSON-RPC sobre HTTP con httpx):
  cuentas comprimidas por owner/mint y validity proofs.
- Escrituras: instrucciones `create_token_pool` y `transfer` (variante
  compress y variante transferencia comprimida) firmadas por el payer y
  enviadas con SolanaGateway.

Los layouts siguen la serialización Borsh de los argumentos Anchor del
programa: discriminador de 8 bytes = sha256("global:<nombre>")[:8].
"""
from __future__ import annotations

import hashlib
import itertools
import logging
import struct
from dataclasses import dataclass

import httpx
from solders.compute_budget import set_compute_unit_limit
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.system_program import ID as SYSTEM_PROGRAM_ID
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import get_associated_token_address

from popclaim.chain import transactions
from popclaim.chain.gateway import SolanaGateway
from popclaim.core.config import settings
from popclaim.core.errors import ChainUnavailable

logger = logging.getLogger(__name__)

COMPRESSED_TOKEN_PROGRAM_ID = Pubkey.from_string("cTokenmWW8bLPjZEBAUgYy3zKxQZW6VKi7bqNFEVv3m")
LIGHT_SYSTEM_PROGRAM_ID = Pubkey.from_string("SySTEM1eSU2p4BGQfQpimFEWWSC1XDFeun3Nqzz3rT7")
ACCOUNT_COMPRESSION_PROGRAM_ID = Pubkey.from_string("compr6CUsB5m2jS4Y3831ztGSTnDpnKJTKS95d64XVq")
NOOP_PROGRAM_ID = Pubkey.from_string("noopb9bkMVfRPU8AsbpTUg8AQkHtKwMYZiFUjNRtMmV")

POOL_SEED = b"pool"
CPI_AUTHORITY_SEED = b"cpi_authority"
COMPUTE_UNITS = 350_000


@dataclass(frozen=True)
class CompressedTokenAccount:
    hash: str
    amount: int
    tree: str
    queue: str
    leaf_index: int


@dataclass(frozen=True)
class ValidityProof:
    a: bytes
    b: bytes
    c: bytes
    root_indices: list[int]


class PhotonError(Exception):
    """Error devuelto por el indexador Photon en el cuerpo JSON-RPC."""


# --- PDAs ---

def token_pool_pda(mint: Pubkey) -> Pubkey:
    return Pubkey.find_program_address([POOL_SEED, bytes(mint)], COMPRESSED_TOKEN_PROGRAM_ID)[0]


def cpi_authority_pda() -> Pubkey:
    return Pubkey.find_program_address([CPI_AUTHORITY_SEED], COMPRESSED_TOKEN_PROGRAM_ID)[0]


def registered_program_pda() -> Pubkey:
    return Pubkey.find_program_address([bytes(LIGHT_SYSTEM_PROGRAM_ID)], ACCOUNT_COMPRESSION_PROGRAM_ID)[0]


def account_compression_authority() -> Pubkey:
    return Pubkey.find_program_address([CPI_AUTHORITY_SEED], LIGHT_SYSTEM_PROGRAM_ID)[0]


def discriminator(name: str) -> bytes:
    return hashlib.sha256(f"global:{name}".encode()).digest()[:8]


# --- Borsh ---

class BorshWriter:
    def __init__(self):
        self.buf = bytearray()

    def u8(self, v: int):
        self.buf += struct.pack("<B", v)
        return self

    def u16(self, v: int):
        self.buf += struct.pack("<H", v)
        return self

    def u32(self, v: int):
        self.buf += struct.pack("<I", v)
        return self

    def u64(self, v: int):
        self.buf += struct.pack("<Q", v)
        return self

    def boolean(self, v: bool):
        return self.u8(1 if v else 0)

    def raw(self, data: bytes):
        self.buf += data
        return self

    def none(self):
        return self.u8(0)

    def some(self):
        return self.u8(1)

    def bytes(self) -> bytes:
        return bytes(self.buf)


@dataclass(frozen=True)
class TransferOutput:
    owner: Pubkey
    amount: int
    merkle_tree_index: int


def encode_transfer_data(
    *,
    mint: Pubkey,
    proof: ValidityProof | None,
    inputs: list[tuple[CompressedTokenAccount, int, int, int]],
    outputs: list[TransferOutput],
    compress_amount: int | None = None,
) -> bytes:
    """
    inputs: (cuenta, índice del árbol, índice de la cola, root_index) ya
    empaquetados contra las remaining accounts.
    """
    w = BorshWriter()
    if proof is None:
        w.none()
    else:
        w.some().raw(proof.a).raw(proof.b).raw(proof.c)
    w.raw(bytes(mint))
    w.none()  # delegated_transfer

    w.u32(len(inputs))
    for account, tree_index, queue_index, root_index in inputs:
        w.u64(account.amount)
        w.none()  # delegate_index
        w.u8(tree_index).u8(queue_index).u32(account.leaf_index)
        w.none()  # queue_index
        w.u16(root_index)
        w.none()  # lamports
        w.none()  # tlv

    w.u32(len(outputs))
    for out in outputs:
        w.raw(bytes(out.owner)).u64(out.amount)
        w.none()  # lamports
        w.u8(out.merkle_tree_index)
        w.none()  # tlv

    w.boolean(compress_amount is not None)
    if compress_amount is None:
        w.none()
    else:
        w.some().u64(compress_amount)
    w.none()  # cpi_context
    w.none()  # lamports_change_account_merkle_tree_index

    payload = w.bytes()
    return discriminator("transfer") + struct.pack("<I", len(payload)) + payload


def _transfer_accounts(payer: Pubkey, *, mint: Pubkey | None = None, source_ata: Pubkey | None = None) -> list[AccountMeta]:
    # Las cuentas opcionales de Anchor ausentes se pasan como el id del programa
    placeholder = COMPRESSED_TOKEN_PROGRAM_ID
    compressing = mint is not None
    return [
        AccountMeta(payer, is_signer=True, is_writable=True),
        AccountMeta(payer, is_signer=True, is_writable=False),
        AccountMeta(cpi_authority_pda(), is_signer=False, is_writable=False),
        AccountMeta(LIGHT_SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(registered_program_pda(), is_signer=False, is_writable=False),
        AccountMeta(NOOP_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(account_compression_authority(), is_signer=False, is_writable=False),
        AccountMeta(ACCOUNT_COMPRESSION_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(COMPRESSED_TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(token_pool_pda(mint) if compressing else placeholder, is_signer=False, is_writable=compressing),
        AccountMeta(source_ata if compressing else placeholder, is_signer=False, is_writable=compressing),
        AccountMeta(TOKEN_PROGRAM_ID if compressing else placeholder, is_signer=False, is_writable=False),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
    ]


def create_token_pool_instruction(payer: Pubkey, mint: Pubkey) -> Instruction:
    accounts = [
        AccountMeta(payer, is_signer=True, is_writable=True),
        AccountMeta(token_pool_pda(mint), is_signer=False, is_writable=True),
        AccountMeta(SYSTEM_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(mint, is_signer=False, is_writable=True),
        AccountMeta(TOKEN_PROGRAM_ID, is_signer=False, is_writable=False),
        AccountMeta(cpi_authority_pda(), is_signer=False, is_writable=False),
    ]
    return Instruction(COMPRESSED_TOKEN_PROGRAM_ID, discriminator("create_token_pool"), accounts)


def compress_instruction(payer: Pubkey, mint: Pubkey, amount: int, state_tree: Pubkey) -> Instruction:
    data = encode_transfer_data(
        mint=mint,
        proof=None,
        inputs=[],
        outputs=[TransferOutput(owner=payer, amount=amount, merkle_tree_index=0)],
        compress_amount=amount,
    )
    accounts = _transfer_accounts(payer, mint=mint, source_ata=get_associated_token_address(payer, mint))
    accounts.append(AccountMeta(state_tree, is_signer=False, is_writable=True))
    return Instruction(COMPRESSED_TOKEN_PROGRAM_ID, data, accounts)


def compressed_transfer_instruction(
    payer: Pubkey,
    mint: Pubkey,
    inputs: list[CompressedTokenAccount],
    proof: ValidityProof,
    recipient: Pubkey,
    amount: int,
    output_tree: Pubkey,
) -> Instruction:
    # remaining accounts: árboles y colas únicos, en orden de aparición
    remaining: list[str] = []

    def index_of(key: str) -> int:
        if key not in remaining:
            remaining.append(key)
        return remaining.index(key)

    packed = [
        (account, index_of(account.tree), index_of(account.queue), root_index)
        for account, root_index in zip(inputs, proof.root_indices)
    ]
    out_index = index_of(str(output_tree))
    outputs = [TransferOutput(owner=recipient, amount=amount, merkle_tree_index=out_index)]
    change = sum(a.amount for a in inputs) - amount
    if change > 0:
        outputs.append(TransferOutput(owner=payer, amount=change, merkle_tree_index=out_index))

    data = encode_transfer_data(mint=mint, proof=proof, inputs=packed, outputs=outputs)
    accounts = _transfer_accounts(payer)
    accounts += [AccountMeta(Pubkey.from_string(k), is_signer=False, is_writable=True) for k in remaining]
    return Instruction(COMPRESSED_TOKEN_PROGRAM_ID, data, accounts)


class LightCompressionBackend:
    """Implementación real del backend usada por CompressedTransferEngine."""

    def __init__(self, gateway: SolanaGateway, payer: Keypair, *, photon_url: str | None = None, http: httpx.AsyncClient | None = None):
        self.gateway = gateway
        self.payer = payer
        self.photon_url = photon_url or settings.photon_rpc_url
        self.http = http or httpx.AsyncClient(timeout=20.0)
        self.state_tree = Pubkey.from_string(settings.state_tree)
        self._ids = itertools.count(1)

    async def _photon(self, method: str, params: dict) -> dict:
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = await self.http.post(self.photon_url, json=body)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise ChainUnavailable(f"{method} failed: {e}") from e
        try:
            data = resp.json()
        except ValueError as e:
            raise PhotonError(f"{method}: invalid JSON response") from e
        if not isinstance(data, dict):
            raise PhotonError(f"{method}: unexpected response {data!r}")
        if "error" in data:
            raise PhotonError(f"{method}: {data['error']}")
        if "result" not in data:
            raise PhotonError(f"{method}: response without result")
        return data["result"]

    async def _send(self, *ixs: Instruction) -> str:
        blockhash = await self.gateway.latest_blockhash()
        tx = transactions.fully_signed([set_compute_unit_limit(COMPUTE_UNITS), *ixs], [self.payer], blockhash)
        return await self.gateway.send_transaction(tx)

    async def pool_exists(self, mint: Pubkey) -> bool:
        return await self.gateway.account_exists(token_pool_pda(mint))

    async def create_pool(self, mint: Pubkey) -> str:
        return await self._send(create_token_pool_instruction(self.payer.pubkey(), mint))

    async def compressed_accounts(self, owner: Pubkey, mint: Pubkey) -> list[CompressedTokenAccount]:
        result = await self._photon("getCompressedTokenAccountsByOwner", {"owner": str(owner), "mint": str(mint)})
        try:
            items = result.get("value", {}).get("items", [])
            return [
                CompressedTokenAccount(
                    hash=item["account"]["hash"],
                    amount=int(item["tokenData"]["amount"]),
                    tree=item["account"].get("tree") or settings.state_tree,
                    queue=item["account"].get("queue") or settings.nullifier_queue,
                    leaf_index=int(item["account"]["leafIndex"]),
                )
                for item in items
            ]
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise PhotonError(f"getCompressedTokenAccountsByOwner: malformed item ({e!r})") from e

    async def compress(self, mint: Pubkey, amount: int) -> str:
        return await self._send(compress_instruction(self.payer.pubkey(), mint, amount, self.state_tree))

    async def validity_proof(self, hashes: list[str]) -> ValidityProof:
        result = await self._photon("getValidityProof", {"hashes": hashes})
        try:
            value = result.get("value", result)
            proof = value["compressedProof"]
            return ValidityProof(
                a=bytes(proof["a"]),
                b=bytes(proof["b"]),
                c=bytes(proof["c"]),
                root_indices=[int(i) for i in value["rootIndices"]],
            )
        except (KeyError, ValueError, TypeError, AttributeError) as e:
            raise PhotonError(f"getValidityProof: malformed proof ({e!r})") from e

    async def transfer(self, mint: Pubkey, inputs: list[CompressedTokenAccount], proof: ValidityProof, recipient: Pubkey, amount: int) -> str:
        ix = compressed_transfer_instruction(self.payer.pubkey(), mint, inputs, proof, recipient, amount, self.state_tree)
        return await self._send(ix)

    async def close(self) -> None:
        await self.http.aclose()
