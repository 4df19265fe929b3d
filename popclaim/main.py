# popclaim/main.py
import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

from popclaim.api.solana_pay import router as solana_pay_router
from popclaim.api.tokens import router as tokens_router
from popclaim.api.claims import router as claims_router
from popclaim.api.whitelist import router as whitelist_router
from popclaim.api.deps import get_compression_engine, get_gateway

from popclaim.core.config import settings
from popclaim.core.errors import PopClaimError
from popclaim.core.logging import setup_logging
from popclaim.db.session import engine
from popclaim.db.models import Base

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # === STARTUP ===
    setup_logging()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    if settings.compression_autofund:
        await get_compression_engine().initialize()
    yield
    # === SHUTDOWN ===
    if get_gateway.cache_info().currsize:
        await get_gateway().close()
    await engine.dispose()


app = FastAPI(title="Solana POP claim service", lifespan=lifespan)


@app.exception_handler(PopClaimError)
async def popclaim_error_handler(request: Request, exc: PopClaimError):
    if exc.status_code >= 500:
        logger.warning("%s %s -> %s: %s", request.method, request.url.path, exc.reason, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


app.include_router(solana_pay_router, tags=["solana-pay"])
app.include_router(tokens_router, prefix="/tokens", tags=["tokens"])
app.include_router(claims_router, prefix="/claims", tags=["claims"])
app.include_router(whitelist_router, tags=["whitelist"])


@app.get("/")
def root():
    return {"ok": True}
