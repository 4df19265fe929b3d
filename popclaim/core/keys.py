# popclaim/core/keys.py
from __future__ import annotations

import json

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from popclaim.core.config import settings
from popclaim.core.errors import InvalidWalletAddress


def keypair_from_json(raw: str) -> Keypair:
    """Carga un keypair desde el array JSON de 64 bytes (formato de solana-keygen)."""
    data = json.loads(raw)
    if not isinstance(data, list) or len(data) != 64:
        raise ValueError("expected a JSON array of 64 bytes")
    return Keypair.from_bytes(bytes(data))


def keypair_to_json(kp: Keypair) -> str:
    return json.dumps(list(bytes(kp)))


def load_service_keypair() -> Keypair:
    if not settings.service_private_key:
        raise RuntimeError("SERVICE_PRIVATE_KEY not configured")
    return keypair_from_json(settings.service_private_key)


def load_compression_keypair() -> Keypair:
    # Sin clave propia, la compresión usa la wallet del servicio
    if settings.compression_private_key:
        return keypair_from_json(settings.compression_private_key)
    return load_service_keypair()


def parse_pubkey(address: str) -> Pubkey:
    try:
        return Pubkey.from_string(address)
    except (ValueError, TypeError):
        raise InvalidWalletAddress(f"Invalid wallet address: {address}")
