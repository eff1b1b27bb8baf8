import os

from pathlib import Path
from typing import Any, Dict

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]

# Environment overrides for the default RPC endpoints, keyed by chain id.
_RPC_ENV_OVERRIDES: Dict[int, str] = {
    10200: "GNOSIS_CHIADO_RPC",
    11155111: "ETHEREUM_SEPOLIA_RPC",
    84532: "BASE_SEPOLIA_RPC",
}


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Apply per-chain RPC overrides from the legacy environment variables."""

        super().model_post_init(__context)

        overrides = {}
        for chain_id, env_name in _RPC_ENV_OVERRIDES.items():
            value = os.getenv(env_name)
            if value:
                overrides[chain_id] = value
        if overrides:
            object.__setattr__(self, "rpc_urls", {**self.rpc_urls, **overrides})

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=3000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Relayer identity
    relayer_private_key: str = Field(
        default="",
        description="Private key of the funded relayer that pays gas",
        validation_alias=AliasChoices("relayer_private_key", "RELAYER_PRIVATE_KEY"),
    )

    # Chain access
    rpc_urls: Dict[int, str] = Field(
        default_factory=lambda: {
            10200: "https://rpc.chiadochain.net",
            11155111: "https://rpc.sepolia.org",
            84532: "https://sepolia.base.org",
        },
        description="RPC endpoint per chain id",
    )
    rpc_timeout_seconds: float = Field(default=30.0, description="Timeout for a single RPC request")
    gas_multiplier: float = Field(default=1.2, ge=1.0, description="Safety multiplier applied to gas estimates")

    # Confirmation waiting
    confirmation_timeout_seconds: int = Field(
        default=120,
        ge=1,
        description="Maximum seconds to wait for a receipt before reporting a timeout",
    )
    confirmation_poll_interval_seconds: float = Field(
        default=2.0,
        gt=0,
        description="Delay between receipt polls",
    )

    # Permission module
    smart_sessions_module: str = Field(
        default="0x00000000008bDABA73cD9815d79069c247Eb4bDA",
        description="Address of the Smart Sessions permission module",
    )

    # Safe deployment (v1.4.1 canonical deployments)
    safe_proxy_factory: str = Field(
        default="0x4e1DCf7AD4e460CfD30791CCC4F9c8a4f820ec67",
        description="SafeProxyFactory used to deploy new wallets",
    )
    safe_singleton: str = Field(
        default="0x29fcB43b46531BcA003ddC8FCB67FFE91900C762",
        description="SafeL2 singleton new proxies delegate to",
    )
    safe_fallback_handler: str = Field(
        default="0xfd0732Dc9E303f09fCEf3a7388Ad10A83459Ec99",
        description="CompatibilityFallbackHandler set during setup",
    )
    deploy_funding_wei: int = Field(
        default=10**17,
        ge=0,
        description="Native amount the relayer sends to a freshly deployed Safe; 0 disables funding",
    )

    # Session key defaults
    session_key_default_spending_limit_wei: int = Field(
        default=10**17,
        description="Default per-transaction spending limit for new session keys (0.1 native unit)",
    )
    session_key_default_ttl_hours: int = Field(
        default=24,
        ge=1,
        description="Default validity window for new session keys",
    )

    # Backup storage
    storage_dir: Path = Field(
        default=BASE_DIR / "data" / "safe-storage",
        description="Directory holding wallet metadata backups",
    )

    # Realtime notifications
    ws_path: str = Field(default="/api/ws/tx-status", description="WebSocket path for transaction status")

    @property
    def has_relayer_key(self) -> bool:
        return bool(self.relayer_private_key)


# Global settings instance
settings = Settings()
