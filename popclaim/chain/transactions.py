# popclaim/chain/transactions.py
"""Construcción de instrucciones/transacciones SPL para reclamaciones y transferencias directas."""
from __future__ import annotations

import base64

from solders.hash import Hash
from solders.instruction import AccountMeta, Instruction
from solders.keypair import Keypair
from solders.message import Message
from solders.pubkey import Pubkey
from solders.system_program import TransferParams, transfer
from solders.transaction import Transaction
from spl.memo.constants import MEMO_PROGRAM_ID
from spl.memo.instructions import MemoParams, create_memo
from spl.token.constants import TOKEN_PROGRAM_ID
from spl.token.instructions import (
    TransferCheckedParams,
    create_associated_token_account,
    get_associated_token_address,
    transfer_checked,
)


def memo_instruction(signer: Pubkey, text: str) -> Instruction:
    return create_memo(MemoParams(program_id=MEMO_PROGRAM_ID, signer=signer, message=text.encode("utf-8")))


def token_transfer_instruction(mint: Pubkey, owner: Pubkey, recipient: Pubkey, amount: int, decimals: int) -> Instruction:
    """transfer_checked entre ATAs; `amount` en unidades base."""
    return transfer_checked(
        TransferCheckedParams(
            program_id=TOKEN_PROGRAM_ID,
            source=get_associated_token_address(owner, mint),
            mint=mint,
            dest=get_associated_token_address(recipient, mint),
            owner=owner,
            amount=amount,
            decimals=decimals,
        )
    )


def reference_instruction(claimant: Pubkey, reference: Pubkey) -> Instruction:
    """
    Transferencia de 0 lamports del reclamante a sí mismo con la referencia
    añadida como cuenta de sólo lectura y no firmante. Hace la transacción
    localizable por la referencia y abre el hueco de firma del reclamante.
    """
    ix = transfer(TransferParams(from_pubkey=claimant, to_pubkey=claimant, lamports=0))
    accounts = list(ix.accounts) + [AccountMeta(pubkey=reference, is_signer=False, is_writable=False)]
    return Instruction(ix.program_id, ix.data, accounts)


def claim_instructions(
    *,
    service: Pubkey,
    claimant: Pubkey,
    mint: Pubkey,
    decimals: int,
    reference: Pubkey,
    memo: str,
    create_recipient_ata: bool,
) -> list[Instruction]:
    ixs = []
    if create_recipient_ata:
        ixs.append(create_associated_token_account(payer=service, owner=claimant, mint=mint))
    ixs.append(memo_instruction(service, memo))
    ixs.append(token_transfer_instruction(mint, service, claimant, 10 ** decimals, decimals))
    ixs.append(reference_instruction(claimant, reference))
    return ixs


def partially_signed(instructions: list[Instruction], fee_payer: Keypair, blockhash: Hash) -> Transaction:
    """Firma sólo con el servicio; el resto de huecos de firma quedan vacíos."""
    message = Message.new_with_blockhash(instructions, fee_payer.pubkey(), blockhash)
    tx = Transaction.new_unsigned(message)
    tx.partial_sign([fee_payer], blockhash)
    return tx


def fully_signed(instructions: list[Instruction], signers: list[Keypair], blockhash: Hash) -> Transaction:
    message = Message.new_with_blockhash(instructions, signers[0].pubkey(), blockhash)
    return Transaction(signers, message, blockhash)


def to_base64(tx: Transaction) -> str:
    return base64.b64encode(bytes(tx)).decode("ascii")
