# popclaim/services/transfer.py
"""Transferencia SPL directa firmada íntegramente por la wallet del servicio."""
from __future__ import annotations

import logging

from solders.keypair import Keypair
from spl.token.instructions import create_associated_token_account, get_associated_token_address

from popclaim.chain import transactions
from popclaim.chain.gateway import SolanaGateway, explorer_url
from popclaim.core.errors import ChainUnavailable, TransferFailed
from popclaim.core.keys import parse_pubkey

logger = logging.getLogger(__name__)


async def transfer_token(gateway: SolanaGateway, service: Keypair, mint_address: str, recipient_address: str, amount: int) -> dict:
    """Mueve `amount` unidades enteras (se escalan por los decimales del mint)."""
    mint = parse_pubkey(mint_address)
    recipient = parse_pubkey(recipient_address)

    decimals = await gateway.mint_decimals(mint)
    ixs = []
    if not await gateway.account_exists(get_associated_token_address(recipient, mint)):
        ixs.append(create_associated_token_account(payer=service.pubkey(), owner=recipient, mint=mint))
    ixs.append(transactions.token_transfer_instruction(mint, service.pubkey(), recipient, amount * 10 ** decimals, decimals))

    blockhash = await gateway.latest_blockhash()
    tx = transactions.fully_signed(ixs, [service], blockhash)
    try:
        signature = await gateway.send_transaction(tx)
    except ChainUnavailable as e:
        logger.warning("token transfer failed mint=%s recipient=%s: %s", mint, recipient, e)
        raise TransferFailed(f"Token transfer failed: {e.message}") from e

    return {"success": True, "signature": signature, "explorerUrl": explorer_url(signature)}
