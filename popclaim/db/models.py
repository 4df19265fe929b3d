# popclaim/db/models.py
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy import String, Text, Integer, DateTime, Boolean, TypeDecorator, ForeignKey, CheckConstraint, Index, UniqueConstraint, text
from datetime import datetime, timezone

CLAIM_PENDING = "pending"
CLAIM_COMPLETED = "completed"
CLAIM_FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Guarda siempre en UTC y devuelve datetimes aware (SQLite descarta el offset)."""

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        # naive = UTC
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class Base(DeclarativeBase):
    pass


class Token(Base):
    __tablename__ = "tokens"
    __table_args__ = (
        CheckConstraint("supply > 0", name="ck_tokens_supply_positive"),
        CheckConstraint("claimed >= 0 AND claimed <= supply", name="ck_tokens_claimed_le_supply"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(64))
    symbol: Mapped[str] = mapped_column(String(16))
    description: Mapped[str] = mapped_column(Text, default="")
    supply: Mapped[int] = mapped_column(Integer)
    claimed: Mapped[int] = mapped_column(Integer, default=0, server_default="0")
    decimals: Mapped[int] = mapped_column(Integer, default=0)
    mint_address: Mapped[str] = mapped_column(String(44), index=True)
    creator_address: Mapped[str] = mapped_column(String(44), index=True)
    expiry_date: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    whitelist_enabled: Mapped[bool] = mapped_column(Boolean, default=False)
    is_compressed: Mapped[bool] = mapped_column(Boolean, default=False)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "symbol": self.symbol,
            "description": self.description,
            "supply": self.supply,
            "claimed": self.claimed,
            "decimals": self.decimals,
            "mintAddress": self.mint_address,
            "creatorAddress": self.creator_address,
            "expiryDate": self.expiry_date.isoformat() if self.expiry_date else None,
            "whitelistEnabled": self.whitelist_enabled,
            "isCompressed": self.is_compressed,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }


class TokenClaim(Base):
    __tablename__ = "token_claims"
    __table_args__ = (
        # Como mucho un claim completado por (token, wallet)
        Index(
            "uq_token_claims_completed",
            "token_id",
            "wallet_address",
            unique=True,
            sqlite_where=text("status = 'completed'"),
            postgresql_where=text("status = 'completed'"),
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_id: Mapped[int] = mapped_column(ForeignKey("tokens.id"), index=True)
    wallet_address: Mapped[str] = mapped_column(String(44), index=True)
    claimed_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow)
    # Firma de la transacción de transferencia (no de la llamada de verificación)
    transaction_id: Mapped[str | None] = mapped_column(String(88), nullable=True, index=True)
    status: Mapped[str] = mapped_column(String(16), default=CLAIM_PENDING)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tokenId": self.token_id,
            "walletAddress": self.wallet_address,
            "claimedAt": self.claimed_at.isoformat() if self.claimed_at else None,
            "transactionId": self.transaction_id,
            "status": self.status,
        }


class WhitelistEntry(Base):
    __tablename__ = "whitelist_entries"
    __table_args__ = (
        CheckConstraint(
            "(token_id IS NULL) <> (event_id IS NULL)",
            name="ck_whitelist_token_xor_event",
        ),
        UniqueConstraint("token_id", "wallet_address", name="uq_whitelist_token_wallet"),
        UniqueConstraint("event_id", "wallet_address", name="uq_whitelist_event_wallet"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    token_id: Mapped[int | None] = mapped_column(ForeignKey("tokens.id"), nullable=True, index=True)
    event_id: Mapped[int | None] = mapped_column(Integer, nullable=True, index=True)
    wallet_address: Mapped[str] = mapped_column(String(44))
    created_at: Mapped[datetime] = mapped_column(UTCDateTime(), default=_utcnow)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "tokenId": self.token_id,
            "eventId": self.event_id,
            "walletAddress": self.wallet_address,
            "createdAt": self.created_at.isoformat() if self.created_at else None,
        }
