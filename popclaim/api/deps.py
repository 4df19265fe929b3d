# popclaim/api/deps.py
# Proveedores para Depends(); los tests los sustituyen con app.dependency_overrides
from functools import lru_cache

from fastapi import Depends
from solders.keypair import Keypair

from popclaim.chain.gateway import SolanaGateway
from popclaim.chain.light import LightCompressionBackend
from popclaim.core.keys import load_compression_keypair, load_service_keypair
from popclaim.services.claim_request import ClaimRequestHandler
from popclaim.services.compression import CompressedTransferEngine
from popclaim.services.verification import VerificationService


@lru_cache
def get_gateway() -> SolanaGateway:
    return SolanaGateway()


@lru_cache
def get_service_keypair() -> Keypair:
    return load_service_keypair()


@lru_cache
def _build_compression_engine() -> CompressedTransferEngine:
    # Construcción explícita; initialize() lo llama el lifespan si procede
    gateway = get_gateway()
    payer = load_compression_keypair()
    return CompressedTransferEngine(LightCompressionBackend(gateway, payer), gateway, payer)


def get_compression_engine() -> CompressedTransferEngine:
    return _build_compression_engine()


def get_claim_handler(
    gateway: SolanaGateway = Depends(get_gateway),
    service: Keypair = Depends(get_service_keypair),
) -> ClaimRequestHandler:
    return ClaimRequestHandler(gateway, service)


def get_verifier(
    gateway: SolanaGateway = Depends(get_gateway),
    service: Keypair = Depends(get_service_keypair),
) -> VerificationService:
    return VerificationService(gateway, service.pubkey())
