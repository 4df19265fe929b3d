# popclaim/core/errors.py
"""
Taxonomía de errores del motor de reclamación.

Cada error lleva un `reason` estable (lo que la UI muestra/traduce), el
status HTTP equivalente y si reintentar tiene sentido. Las violaciones del
guard son terminales; los fallos de búsqueda en cadena son transitorios.
"""
from __future__ import annotations


class PopClaimError(Exception):
    reason = "Error"
    status_code = 500
    retryable = False
    default_message = "Unexpected error"

    def __init__(self, message: str | None = None, **context):
        self.message = message or self.default_message
        self.context = context
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {
            "error": self.message,
            "reason": self.reason,
            "message": self.message,
            "retryable": self.retryable,
        }


# --- Claim Guard (terminales) ---

class ClaimError(PopClaimError):
    status_code = 400


class TokenNotFound(ClaimError):
    reason = "TokenNotFound"
    status_code = 404
    default_message = "Token not found"


class TokenExpired(ClaimError):
    reason = "TokenExpired"
    status_code = 410
    default_message = "This token has expired"


class SupplyExhausted(ClaimError):
    reason = "SupplyExhausted"
    status_code = 409
    default_message = "All tokens have already been claimed"


class NotWhitelisted(ClaimError):
    reason = "NotWhitelisted"
    status_code = 403
    default_message = "Your wallet is not whitelisted for this token"


class AlreadyClaimed(ClaimError):
    reason = "AlreadyClaimed"
    status_code = 409
    default_message = "You have already claimed this token"


# --- Entrada ---

class InvalidWalletAddress(PopClaimError):
    reason = "InvalidWalletAddress"
    status_code = 400
    default_message = "Invalid wallet address"


class InvalidSignature(PopClaimError):
    reason = "InvalidSignature"
    status_code = 400
    default_message = "Invalid transaction signature"


class NotTokenCreator(PopClaimError):
    reason = "NotTokenCreator"
    status_code = 403
    default_message = "Only the token creator can modify this token"


class CompressedClaimUnsupported(PopClaimError):
    reason = "CompressedClaimUnsupported"
    status_code = 400
    default_message = "Compressed tokens are distributed through the compressed transfer endpoint"


# --- Verificación en cadena ---

class TransactionNotFound(PopClaimError):
    reason = "TransactionNotFound"
    status_code = 404
    retryable = True
    default_message = "Transaction not found on chain yet"


class TransactionFailed(PopClaimError):
    reason = "TransactionFailed"
    status_code = 400
    default_message = "Transaction failed on chain"


class TransactionMismatch(PopClaimError):
    reason = "TransactionMismatch"
    status_code = 400
    default_message = "Transaction is not a claim for this token"


class ReferenceDerivationError(PopClaimError):
    reason = "ReferenceDerivationError"
    default_message = "Could not derive a valid reference key"


# --- Transferencia comprimida ---

class CompressionError(PopClaimError):
    """Fallo en una transición concreta del motor de transferencia comprimida."""
    status_code = 502
    transition = ""

    def to_dict(self) -> dict:
        out = super().to_dict()
        out["transition"] = self.transition
        return out


class PoolCreationFailed(CompressionError):
    reason = "PoolCreationFailed"
    status_code = 503
    retryable = True
    transition = "create_pool"
    default_message = "Token pool creation failed"


class CompressionFailed(CompressionError):
    reason = "CompressionFailed"
    status_code = 503
    retryable = True
    transition = "compress"
    default_message = "Compressing tokens into the service balance failed"


class InsufficientCompressedBalance(CompressionError):
    reason = "InsufficientCompressedBalance"
    status_code = 409
    transition = "compress"
    default_message = "Compressed balance does not cover the requested amount"


class ProofUnavailable(CompressionError):
    reason = "ProofUnavailable"
    status_code = 503
    retryable = True
    transition = "transfer"
    default_message = "Validity proof unavailable"


class CompressedTransferFailed(CompressionError):
    reason = "CompressedTransferFailed"
    transition = "transfer"
    default_message = "Compressed transfer failed"


class TransferFailed(PopClaimError):
    reason = "TransferFailed"
    status_code = 502
    retryable = True
    default_message = "Token transfer failed"


class ChainUnavailable(PopClaimError):
    reason = "ChainUnavailable"
    status_code = 503
    retryable = True
    default_message = "Solana RPC unavailable"
