from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # Base de datos
    db_url: str = Field("sqlite+aiosqlite:///./popclaim.sqlite3", alias="DB_URL")

    # Solana RPC
    solana_rpc_url: str = Field("https://api.devnet.solana.com", alias="SOLANA_RPC_URL")
    solana_ws_url: str = Field("wss://api.devnet.solana.com", alias="SOLANA_WS_URL")
    solana_network: str = Field("devnet", alias="SOLANA_NETWORK")

    # Wallet del servicio: array JSON de 64 bytes (ver tools/generate_keypair.py)
    service_private_key: str = Field("", alias="SERVICE_PRIVATE_KEY")
    compression_private_key: str | None = Field(None, alias="COMPRESSION_PRIVATE_KEY")

    # Compresión ZK (indexador Photon + state tree de devnet por defecto)
    photon_rpc_url: str = Field("https://devnet.helius-rpc.com", alias="PHOTON_RPC_URL")
    state_tree: str = Field("smt1NamzXdq4AMqS2fS2F1i5KTYPZRhoHgWx38d8WsT", alias="STATE_TREE")
    nullifier_queue: str = Field("nfq1NvQDJ2GEgnS8zt9prAe8rjjpAW1zFkrvZoBR148", alias="NULLIFIER_QUEUE")
    compression_autofund: bool = Field(False, alias="COMPRESSION_AUTOFUND")
    compression_min_lamports: int = Field(1_000_000_000, alias="COMPRESSION_MIN_LAMPORTS")

    # Códigos QR
    qr_signature_secret: str = Field("default-secret-change-me", alias="QR_SIGNATURE_SECRET")
    qr_ttl_minutes: int = Field(30, alias="QR_TTL_MINUTES")
    qr_scheme: str = Field("solanapop", alias="QR_SCHEME")
    public_base_url: str = Field("http://127.0.0.1:8000", alias="PUBLIC_BASE_URL")
    icon_url: str = Field("http://127.0.0.1:8000/static/logo.png", alias="ICON_URL")

    # Watcher de confirmación
    watcher_timeout_seconds: float = Field(90.0, alias="WATCHER_TIMEOUT_SECONDS")
    watcher_poll_interval: float = Field(5.0, alias="WATCHER_POLL_INTERVAL")

    log_level: str = Field("INFO", alias="LOG_LEVEL")

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        populate_by_name=True,  # permite defaults si no hay variable de entorno
    )


settings = Settings()
