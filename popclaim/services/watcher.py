# popclaim/services/watcher.py
"""
Confirmation Watcher: espera a que aparezca en cadena una transacción que
lleve la reference key y la pasa a finalización.

Es best-effort: el nodo puede agrupar o retrasar notificaciones, así que la
suscripción se combina con un sondeo periódico y con check_now() manual.
La idempotencia de la finalización la garantiza VerificationService.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable

from solders.pubkey import Pubkey

from popclaim.chain.gateway import SolanaGateway
from popclaim.core.config import settings
from popclaim.core.errors import ClaimError, PopClaimError
from popclaim.db.models import TokenClaim

logger = logging.getLogger(__name__)

CONFIRMED = "confirmed"
REJECTED = "rejected"
PENDING = "pending"

Finalizer = Callable[[str], Awaitable[TokenClaim]]


@dataclass
class WatchResult:
    status: str
    signature: str | None = None
    claim: TokenClaim | None = None
    reason: str | None = None
    message: str | None = None

    def to_dict(self) -> dict:
        return {
            "status": self.status,
            "signature": self.signature,
            "claim": self.claim.to_dict() if self.claim is not None else None,
            "reason": self.reason,
            "message": self.message,
        }


class ConfirmationWatcher:
    def __init__(
        self,
        gateway: SolanaGateway,
        finalize: Finalizer,
        reference: Pubkey,
        *,
        timeout: float | None = None,
        poll_interval: float | None = None,
    ):
        self.gateway = gateway
        self.finalize = finalize
        self.reference = reference
        self.timeout = settings.watcher_timeout_seconds if timeout is None else timeout
        self.poll_interval = settings.watcher_poll_interval if poll_interval is None else poll_interval
        self._seen: set[str] = set()
        self._last: WatchResult = WatchResult(status=PENDING)

    async def check_now(self) -> WatchResult:
        """Consulta la firma más reciente que toca la referencia y la finaliza si es nueva."""
        try:
            signatures = await self.gateway.signatures_for_address(self.reference, limit=1)
        except PopClaimError as e:
            logger.warning("signature lookup failed reference=%s reason=%s", self.reference, e.reason)
            return self._last

        if not signatures:
            return self._last
        newest = signatures[0]
        if newest in self._seen:
            return self._last

        try:
            claim = await self.finalize(newest)
        except ClaimError as e:
            self._seen.add(newest)
            self._last = WatchResult(status=REJECTED, signature=newest, reason=e.reason, message=e.message)
        except PopClaimError as e:
            if not e.retryable:
                self._seen.add(newest)
                self._last = WatchResult(status=REJECTED, signature=newest, reason=e.reason, message=e.message)
            else:
                # Propagación pendiente: se reintentará en el siguiente aviso/sondeo
                logger.warning("finalize deferred signature=%s reason=%s", newest, e.reason)
                self._last = WatchResult(status=PENDING, signature=newest, reason=e.reason, message=e.message)
        else:
            self._seen.add(newest)
            self._last = WatchResult(status=CONFIRMED, signature=newest, claim=claim)
        return self._last

    async def _notifications(self, wake: asyncio.Event) -> None:
        try:
            async for _ in self.gateway.watch_account(self.reference):
                wake.set()
        except Exception as e:
            # Sin websocket seguimos sólo con sondeo
            logger.warning("account subscription dropped reference=%s error=%s", self.reference, e)

    async def _loop(self) -> WatchResult:
        wake = asyncio.Event()
        listener = asyncio.create_task(self._notifications(wake))
        try:
            while True:
                result = await self.check_now()
                if result.status != PENDING:
                    return result
                try:
                    await asyncio.wait_for(wake.wait(), timeout=self.poll_interval)
                except asyncio.TimeoutError:
                    pass
                wake.clear()
        finally:
            listener.cancel()
            try:
                await listener
            except asyncio.CancelledError:
                pass

    async def wait(self) -> WatchResult:
        """Espera acotada por `timeout`; al vencer devuelve PENDING ("revisar más tarde")."""
        try:
            return await asyncio.wait_for(self._loop(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.info("watch timed out reference=%s after %.0fs", self.reference, self.timeout)
            return WatchResult(
                status=PENDING,
                signature=self._last.signature,
                reason=self._last.reason,
                message="Still pending, check again later",
            )
