# popclaim/core/reference.py
"""
Derivación determinista de la "reference key" de Solana Pay.

La referencia liga un par (token, wallet) a una clave observable en cadena:
se incluye como cuenta de sólo lectura en la transacción de reclamación y
permite localizarla antes de conocer su firma. Cliente y servidor la
calculan por separado y deben obtener los mismos bytes.
"""
from __future__ import annotations

from solders.pubkey import Pubkey

from popclaim.core.errors import ReferenceDerivationError

REFERENCE_SIZE = 32
# Aproximadamente la mitad de los valores de 32 bytes son puntos válidos,
# así que agotar 256 intentos no debería ocurrir nunca.
MAX_REFERENCE_ATTEMPTS = 256
_ROUNDS = 4


def _rotl8(b: int, n: int) -> int:
    n &= 7
    return ((b << n) | (b >> (8 - n))) & 0xFF


def xor_fold(data: bytes) -> bytes:
    """Plegado XOR de `data` a 32 bytes con rondas de difusión (no criptográfico)."""
    state = bytearray((i * 0x9D + 0x3B) & 0xFF for i in range(REFERENCE_SIZE))
    for i, b in enumerate(data):
        j = i % REFERENCE_SIZE
        state[j] ^= _rotl8(b, i // REFERENCE_SIZE) ^ (i & 0xFF)
    # la longitud entra en el estado: "ab" y "ab\x00" no colisionan
    state[0] ^= len(data) & 0xFF
    state[1] ^= (len(data) >> 8) & 0xFF
    for r in range(_ROUNDS):
        for j in range(REFERENCE_SIZE):
            prev = state[(j - 1) % REFERENCE_SIZE]
            nxt = state[(j + 7) % REFERENCE_SIZE]
            state[j] ^= _rotl8(prev, 3 + r) ^ ((nxt + j * 31 + r) & 0xFF)
    return bytes(state)


def _is_on_curve(candidate: bytes) -> bool:
    return Pubkey.from_bytes(candidate).is_on_curve()


def reference_seed(token_id: int, wallet: str) -> str:
    return f"token:{token_id}:wallet:{wallet}"


def derive_reference(token_id: int, wallet: str) -> Pubkey:
    """
    Deriva la referencia para (token_id, wallet).

    Si el plegado no es un punto ed25519 válido se reintenta con un contador
    de sal (":1", ":2", ...) añadido a la entrada. El bucle está acotado por
    MAX_REFERENCE_ATTEMPTS y agotarlo es un error fatal.
    """
    seed = reference_seed(token_id, wallet)
    for attempt in range(MAX_REFERENCE_ATTEMPTS):
        material = seed if attempt == 0 else f"{seed}:{attempt}"
        candidate = xor_fold(material.encode("utf-8"))
        if _is_on_curve(candidate):
            return Pubkey.from_bytes(candidate)
    raise ReferenceDerivationError(
        f"no valid curve point after {MAX_REFERENCE_ATTEMPTS} attempts",
        token_id=token_id,
        wallet=wallet,
    )
