# tests/test_compression.py
import json

import httpx
import pytest
from solders.pubkey import Pubkey

from popclaim.chain import light
from popclaim.chain.light import CompressedTokenAccount, LightCompressionBackend, ValidityProof
from popclaim.core.errors import (
    ChainUnavailable,
    CompressedTransferFailed,
    CompressionFailed,
    InsufficientCompressedBalance,
    PoolCreationFailed,
    ProofUnavailable,
)
from popclaim.services.compression import (
    CompressedTransferEngine,
    StepKind,
    TransferState,
    select_inputs,
)


def _account(amount, n=0):
    return CompressedTokenAccount(
        hash=f"h{n}", amount=amount, tree=str(Pubkey.new_unique()), queue=str(Pubkey.new_unique()), leaf_index=n,
    )


@pytest.fixture
def engine_for(chain, service_keypair, backend_factory):
    def _make(**backend_kw):
        backend = backend_factory(**backend_kw)
        return backend, CompressedTransferEngine(backend, chain, service_keypair)

    return _make


MINT = str(Pubkey.new_unique())
RECIPIENT = str(Pubkey.new_unique())


@pytest.mark.asyncio
async def test_from_zero_runs_every_transition(engine_for):
    backend, engine = engine_for()
    result = await engine.transfer_compressed(MINT, RECIPIENT, 5)

    assert backend.submitted == ["create_pool", "compress", "transfer"]
    assert result.state is TransferState.TRANSFERRED
    assert [s.kind for s in result.steps] == [StepKind.CREATE_POOL, StepKind.COMPRESS, StepKind.TRANSFER]
    out = result.to_dict()
    assert out["success"] is True
    assert out["signature"] == result.steps[-1].signature
    assert out["explorerUrl"].endswith(result.signature + "?cluster=devnet")


@pytest.mark.asyncio
async def test_existing_balance_transfers_directly(engine_for):
    backend, engine = engine_for(pool=True, accounts=[_account(10)])
    await engine.transfer_compressed(MINT, RECIPIENT, 3)
    assert backend.submitted == ["transfer"]
    inputs, recipient, amount = backend.transfers[0]
    assert recipient == RECIPIENT
    assert amount == 3


@pytest.mark.asyncio
async def test_compresses_only_the_missing_amount(engine_for):
    backend, engine = engine_for(pool=True, accounts=[_account(2)])
    await engine.transfer_compressed(MINT, RECIPIENT, 5)
    assert backend.submitted == ["compress", "transfer"]
    assert sorted(a.amount for a in backend.accounts) == [2, 3]


@pytest.mark.asyncio
async def test_proof_failure_names_the_transfer_step(engine_for):
    backend, engine = engine_for(pool=True, accounts=[_account(10)])
    backend.fail["validity_proof"] = light.PhotonError("indexer lagging")

    with pytest.raises(ProofUnavailable) as exc:
        await engine.transfer_compressed(MINT, RECIPIENT, 1)
    assert exc.value.to_dict()["transition"] == "transfer"
    assert exc.value.retryable is True
    assert backend.submitted == []


@pytest.mark.asyncio
async def test_pool_failure(engine_for):
    backend, engine = engine_for()
    backend.fail["create_pool"] = ChainUnavailable("rpc down")
    with pytest.raises(PoolCreationFailed) as exc:
        await engine.transfer_compressed(MINT, RECIPIENT, 1)
    assert exc.value.transition == "create_pool"


@pytest.mark.asyncio
async def test_resumes_after_partial_run(engine_for):
    backend, engine = engine_for()
    backend.fail["transfer"] = ChainUnavailable("rpc down")
    with pytest.raises(CompressedTransferFailed):
        await engine.transfer_compressed(MINT, RECIPIENT, 4)
    assert backend.submitted == ["create_pool", "compress"]

    # Reinvocación: el estado se recalcula y sólo falta la transferencia
    del backend.fail["transfer"]
    await engine.transfer_compressed(MINT, RECIPIENT, 4)
    assert backend.submitted == ["create_pool", "compress", "transfer"]


@pytest.mark.asyncio
async def test_compression_not_visible(engine_for):
    backend, engine = engine_for(pool=True, compress_lands=False)
    with pytest.raises(InsufficientCompressedBalance):
        await engine.transfer_compressed(MINT, RECIPIENT, 1)
    assert backend.submitted == ["compress"]


@pytest.mark.asyncio
async def test_amount_must_be_positive(engine_for):
    _, engine = engine_for()
    with pytest.raises(ValueError):
        await engine.transfer_compressed(MINT, RECIPIENT, 0)


@pytest.mark.asyncio
async def test_initialize_airdrops_below_minimum(chain, service_keypair, backend_factory):
    from popclaim.core.config import settings

    chain.balance = 0
    engine = CompressedTransferEngine(backend_factory(), chain, service_keypair)
    await engine.initialize()
    assert chain.airdrops == [(str(service_keypair.pubkey()), settings.compression_min_lamports)]

    chain.airdrops.clear()
    chain.balance = settings.compression_min_lamports
    await engine.initialize()
    assert chain.airdrops == []


@pytest.mark.asyncio
async def test_compressed_balance_sums_accounts(engine_for, service_keypair):
    _, engine = engine_for(pool=True, accounts=[_account(2, 0), _account(5, 1)])
    assert await engine.compressed_balance(service_keypair.pubkey(), Pubkey.from_string(MINT)) == 7


def test_select_inputs_largest_first():
    accounts = [_account(1, 0), _account(7, 1), _account(3, 2)]
    assert [a.amount for a in select_inputs(accounts, 8)] == [7, 3]
    assert [a.amount for a in select_inputs(accounts, 7)] == [7]
    with pytest.raises(InsufficientCompressedBalance):
        select_inputs(accounts, 12)


# --- Codificación de instrucciones Light ---

def test_transfer_instruction_adds_change_output():
    payer, mint, recipient, tree = (Pubkey.new_unique() for _ in range(4))
    inputs = [_account(6, 0), _account(4, 1)]
    proof = ValidityProof(a=bytes(32), b=bytes(64), c=bytes(32), root_indices=[1, 2])

    ix = light.compressed_transfer_instruction(payer, mint, inputs, proof, recipient, 7, tree)

    assert ix.program_id == light.COMPRESSED_TOKEN_PROGRAM_ID
    assert bytes(ix.data[:8]) == light.discriminator("transfer")
    data = bytes(ix.data)
    # salida al destinatario y cambio de vuelta al payer
    assert bytes(recipient) + (7).to_bytes(8, "little") in data
    assert bytes(payer) + (3).to_bytes(8, "little") in data
    # árboles y colas de las entradas más el árbol de salida
    remaining = [m.pubkey for m in ix.accounts[13:]]
    assert len(remaining) == 5
    assert remaining[-1] == tree


def test_pool_instruction_uses_pool_pda():
    payer, mint = Pubkey.new_unique(), Pubkey.new_unique()
    ix = light.create_token_pool_instruction(payer, mint)
    assert bytes(ix.data) == light.discriminator("create_token_pool")
    assert ix.accounts[1].pubkey == light.token_pool_pda(mint)


@pytest.mark.asyncio
async def test_photon_reads(chain, service_keypair):
    owner, mint = Pubkey.new_unique(), Pubkey.new_unique()
    tree = str(Pubkey.new_unique())
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        seen.append(body["method"])
        if body["method"] == "getCompressedTokenAccountsByOwner":
            items = [{"account": {"hash": "abc", "tree": tree, "leafIndex": 4}, "tokenData": {"amount": "25"}}]
            return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": {"value": {"items": items}}})
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "error": {"code": -32000, "message": "stale"}})

    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    backend = LightCompressionBackend(chain, service_keypair, photon_url="https://photon.test", http=http)

    accounts = await backend.compressed_accounts(owner, mint)
    assert accounts[0].amount == 25
    assert accounts[0].tree == tree
    assert accounts[0].leaf_index == 4

    with pytest.raises(light.PhotonError):
        await backend.validity_proof(["abc"])
    assert seen == ["getCompressedTokenAccountsByOwner", "getValidityProof"]
    await backend.close()


def _photon_backend(chain, service_keypair, handler):
    http = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LightCompressionBackend(chain, service_keypair, photon_url="https://photon.test", http=http)


@pytest.mark.asyncio
async def test_malformed_indexer_item_is_a_typed_failure(chain, service_keypair):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        items = [{"account": {}}]
        return httpx.Response(200, json={"jsonrpc": "2.0", "id": body["id"], "result": {"value": {"items": items}}})

    backend = _photon_backend(chain, service_keypair, handler)
    mint = Pubkey.new_unique()
    chain.accounts.add(str(light.token_pool_pda(mint)))
    engine = CompressedTransferEngine(backend, chain, service_keypair)

    with pytest.raises(CompressionFailed) as exc:
        await engine.transfer_compressed(str(mint), RECIPIENT, 1)
    assert exc.value.to_dict()["reason"] == "CompressionFailed"
    assert chain.sent == []
    await backend.close()


@pytest.mark.asyncio
async def test_indexer_bodies_that_are_not_json_rpc(chain, service_keypair):
    bodies = iter([
        httpx.Response(200, content=b"<html>gateway timeout</html>"),
        httpx.Response(200, json=["not", "an", "object"]),
        httpx.Response(200, json={"jsonrpc": "2.0", "id": 3}),
        httpx.Response(200, json={"jsonrpc": "2.0", "id": 4, "result": {"value": {"compressedProof": {"a": [0]}}}}),
    ])
    backend = _photon_backend(chain, service_keypair, lambda request: next(bodies))
    owner, mint = Pubkey.new_unique(), Pubkey.new_unique()

    for _ in range(3):
        with pytest.raises(light.PhotonError):
            await backend.compressed_accounts(owner, mint)
    with pytest.raises(light.PhotonError):
        await backend.validity_proof(["abc"])
    await backend.close()
