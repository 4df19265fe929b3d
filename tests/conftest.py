# tests/conftest.py
import asyncio
import os
import sys
from pathlib import Path

import pytest
import pytest_asyncio
from fastapi.testclient import TestClient

# --- Asegurar que podemos importar 'popclaim' desde la raíz del repo ---
ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from solders.hash import Hash
from solders.keypair import Keypair
from solders.pubkey import Pubkey
from solders.signature import Signature


def _prepare_test_env() -> None:
    tmp = (ROOT / ".pytest_tmp").absolute()
    tmp.mkdir(exist_ok=True)

    # BD SQLite temporal para pruebas (se recrea en cada sesión)
    db_file = tmp / "test.sqlite3"
    if db_file.exists():
        db_file.unlink()
    os.environ["DB_URL"] = f"sqlite+aiosqlite:///{db_file.as_posix()}"

    # Wallet de servicio efímera
    service = Keypair()
    os.environ["SERVICE_PRIVATE_KEY"] = "[" + ",".join(str(b) for b in bytes(service)) + "]"
    os.environ.pop("COMPRESSION_PRIVATE_KEY", None)

    os.environ["QR_SIGNATURE_SECRET"] = "test-secret"
    os.environ["PUBLIC_BASE_URL"] = "https://pop.example"
    os.environ["SOLANA_NETWORK"] = "devnet"
    os.environ["COMPRESSION_AUTOFUND"] = "false"


# Antes de importar cualquier módulo de popclaim (settings se crea al importar)
_prepare_test_env()

from popclaim.chain.gateway import LandedTransaction
from popclaim.chain.light import CompressedTokenAccount, ValidityProof
from popclaim.core.keys import keypair_from_json
from popclaim.core.reference import derive_reference


class FakeGateway:
    """Cadena en memoria con la misma interfaz que SolanaGateway."""

    def __init__(self):
        self.blockhash = Hash.new_unique()
        self.accounts: set[str] = set()
        self.transactions: dict[str, LandedTransaction] = {}
        self.signatures: dict[str, list[str]] = {}
        self.decimals: dict[str, int] = {}
        self.sent = []
        self.airdrops = []
        self.balance = 0
        self.calls: list[str] = []
        self._queue: asyncio.Queue | None = None

    async def latest_blockhash(self):
        self.calls.append("latest_blockhash")
        return self.blockhash

    async def account_exists(self, pubkey):
        self.calls.append("account_exists")
        return str(pubkey) in self.accounts

    async def get_balance(self, pubkey):
        return self.balance

    async def request_airdrop(self, pubkey, lamports):
        self.airdrops.append((str(pubkey), lamports))
        return str(Signature.new_unique())

    async def mint_decimals(self, mint):
        return self.decimals.get(str(mint), 0)

    async def get_transaction(self, signature):
        self.calls.append("get_transaction")
        return self.transactions.get(signature)

    async def signatures_for_address(self, pubkey, limit=10):
        return self.signatures.get(str(pubkey), [])[:limit]

    async def send_transaction(self, tx):
        self.sent.append(tx)
        return str(tx.signatures[0])

    async def watch_account(self, pubkey):
        if self._queue is None:
            self._queue = asyncio.Queue()
        while True:
            yield await self._queue.get()

    def notify(self, item="changed"):
        if self._queue is None:
            self._queue = asyncio.Queue()
        self._queue.put_nowait(item)

    def land(self, token_id, claimant, service, *, err=None, reference=None, extra_signer=None) -> str:
        """Simula que una transacción de reclamación ha llegado a la cadena."""
        signature = str(Signature.new_unique())
        ref = reference if reference is not None else derive_reference(token_id, str(claimant))
        signers = [str(service), str(claimant)] + ([str(extra_signer)] if extra_signer else [])
        keys = signers + [str(Pubkey.new_unique()), str(ref)]
        self.transactions[signature] = LandedTransaction(
            signature=signature,
            slot=100,
            account_keys=keys,
            num_required_signatures=len(signers),
            err=err,
        )
        self.signatures.setdefault(str(ref), []).insert(0, signature)
        return signature


class FakeCompressionBackend:
    """Backend de compresión en memoria; registra el orden de transacciones enviadas."""

    def __init__(self, *, pool=False, accounts=None, compress_lands=True):
        self.pool = pool
        self.accounts: list[CompressedTokenAccount] = list(accounts or [])
        self.compress_lands = compress_lands
        self.submitted: list[str] = []
        self.fail: dict[str, Exception] = {}
        self.proof_requests: list[list[str]] = []
        self.transfers = []

    def _maybe_fail(self, op):
        if op in self.fail:
            raise self.fail[op]

    async def pool_exists(self, mint):
        return self.pool

    async def create_pool(self, mint):
        self._maybe_fail("create_pool")
        self.submitted.append("create_pool")
        self.pool = True
        return str(Signature.new_unique())

    async def compressed_accounts(self, owner, mint):
        return list(self.accounts)

    async def compress(self, mint, amount):
        self._maybe_fail("compress")
        self.submitted.append("compress")
        if self.compress_lands:
            self.accounts.append(
                CompressedTokenAccount(
                    hash=f"hash-{len(self.accounts)}",
                    amount=amount,
                    tree=str(Pubkey.new_unique()),
                    queue=str(Pubkey.new_unique()),
                    leaf_index=len(self.accounts),
                )
            )
        return str(Signature.new_unique())

    async def validity_proof(self, hashes):
        self._maybe_fail("validity_proof")
        self.proof_requests.append(list(hashes))
        return ValidityProof(a=bytes(32), b=bytes(64), c=bytes(32), root_indices=[0] * len(hashes))

    async def transfer(self, mint, inputs, proof, recipient, amount):
        self._maybe_fail("transfer")
        self.submitted.append("transfer")
        self.transfers.append((inputs, str(recipient), amount))
        return str(Signature.new_unique())


@pytest.fixture(scope="session")
def service_keypair() -> Keypair:
    return keypair_from_json(os.environ["SERVICE_PRIVATE_KEY"])


@pytest.fixture(scope="session")
def fake_gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture(scope="session")
def fake_backend() -> FakeCompressionBackend:
    return FakeCompressionBackend()


@pytest.fixture(scope="session")
def client(fake_gateway, fake_backend, service_keypair):
    """
    Cliente de pruebas con entorno efímero:
    - BD sqlite en .pytest_tmp/test.sqlite3
    - Wallet de servicio generada al vuelo
    - Cadena y backend de compresión en memoria (dependency_overrides)
    """
    from popclaim.main import app
    from popclaim.api.deps import get_compression_engine, get_gateway
    from popclaim.services.compression import CompressedTransferEngine

    app.dependency_overrides[get_gateway] = lambda: fake_gateway
    app.dependency_overrides[get_compression_engine] = lambda: CompressedTransferEngine(fake_backend, fake_gateway, service_keypair)
    # Con 'with' forzamos lifespan: crea tablas en startup y cierra engine en shutdown
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


# --- BD aislada para tests de servicio asíncronos ---

@pytest_asyncio.fixture
async def session_factory(tmp_path):
    from sqlalchemy.ext.asyncio import async_sessionmaker, create_async_engine
    from popclaim.db.models import Base

    eng = create_async_engine(f"sqlite+aiosqlite:///{(tmp_path / 'svc.sqlite3').as_posix()}", connect_args={"timeout": 30})
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(eng, expire_on_commit=False)
    await eng.dispose()


@pytest.fixture
def make_token(session_factory):
    from popclaim.db.models import Token

    async def _make(**overrides):
        values = dict(
            name="DevCon Badge",
            symbol="DEVC",
            description="",
            supply=10,
            claimed=0,
            decimals=0,
            mint_address=str(Pubkey.new_unique()),
            creator_address=str(Pubkey.new_unique()),
        )
        values.update(overrides)
        async with session_factory() as s:
            token = Token(**values)
            s.add(token)
            await s.commit()
            return token

    return _make


# --- Dobles frescos por test (los de sesión los comparte el cliente HTTP) ---

@pytest.fixture
def chain() -> FakeGateway:
    return FakeGateway()


@pytest.fixture
def backend_factory():
    return FakeCompressionBackend
