from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]

DEFAULT_RPC_URL = "https://api.devnet.solana.com"

# Mask of every gameplay instruction a session may sign by default
# (see seeker.core.program.capabilities.DEFAULT_SESSION_CAPABILITIES).
DEFAULT_CAPABILITY_MASK = 0b1_1111_1101_1111


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        env_prefix="SEEKER_",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Fall back to the primary RPC when no fallback endpoint is configured."""

        super().model_post_init(__context)

        if not self.rpc_fallback_url:
            object.__setattr__(self, "rpc_fallback_url", self.rpc_url)

    log_level: str = Field(default="INFO", description="Logging level")

    # Network
    rpc_url: str = Field(default=DEFAULT_RPC_URL, description="Primary Solana RPC endpoint")
    rpc_fallback_url: str = Field(default="", description="Fallback Solana RPC endpoint")
    commitment: str = Field(default="confirmed", description="Commitment used for reads and preflight")
    request_timeout_seconds: float = Field(default=15.0, gt=0, description="Per-request RPC timeout")

    # Program deployment
    program_id: str = Field(
        default="3Ctc2FgnNHQtGAcZftMS4ykLhJYjLzBD3hELKy55DnKo",
        description="Game program that owns session authority records",
    )
    global_pda: str = Field(
        default="9JudM6MujJyg5tBb7YaMw7DSQYVgCYNyzATzfyRSdy7G",
        description="Global config account of the game program",
    )
    token_mint: str = Field(
        default="Dkpjmf6mUxxLyw9HmbdkBKhVf7zjGZZ6jNjruhjYpkiN",
        description="Mint of the token the session spend cap is denominated in",
    )

    # Session defaults
    default_capabilities: int = Field(
        default=DEFAULT_CAPABILITY_MASK,
        ge=0,
        description="Capability mask granted when a session is started without overrides",
    )
    default_spend_cap: int = Field(
        default=200_000_000,
        ge=0,
        description="Maximum cumulative token spend of a session (base units)",
    )
    default_session_minutes: int = Field(default=60, ge=1, description="Session lifetime in minutes")

    # Session signer funding (lamports)
    session_funding_lamports: int = Field(
        default=10_000_000,
        ge=0,
        description="Fee budget transferred to the session key inside begin_session",
    )
    session_signer_min_lamports: int = Field(
        default=5_000_000,
        ge=0,
        description="Balance below which the session key is topped up",
    )
    session_signer_top_up_lamports: int = Field(
        default=10_000_000,
        ge=0,
        description="Minimum amount sent when topping up the session key",
    )

    # Submission policy
    max_attempts_per_endpoint: int = Field(default=2, ge=1, description="Send attempts per RPC endpoint")
    backoff_base_ms: int = Field(default=300, ge=0, description="Transient retry delay, scaled by attempt")
    raw_probe_timeout_seconds: float = Field(default=20.0, gt=0, description="Raw HTTP probe timeout")

    @field_validator("rpc_url", "rpc_fallback_url")
    @classmethod
    def _strip_url(cls, value: str) -> str:
        return (value or "").strip()

    @property
    def has_distinct_fallback(self) -> bool:
        return self.rpc_fallback_url.rstrip("/").lower() != self.rpc_url.rstrip("/").lower()


@dataclass
class EngineOptions:
    """Options injected into the session engine components."""

    rpc_url: str = DEFAULT_RPC_URL
    rpc_fallback_url: Optional[str] = None
    commitment: str = "confirmed"
    request_timeout_seconds: float = 15.0
    program_id: str = "3Ctc2FgnNHQtGAcZftMS4ykLhJYjLzBD3hELKy55DnKo"
    global_pda: str = "9JudM6MujJyg5tBb7YaMw7DSQYVgCYNyzATzfyRSdy7G"
    token_mint: str = "Dkpjmf6mUxxLyw9HmbdkBKhVf7zjGZZ6jNjruhjYpkiN"
    default_capabilities: int = DEFAULT_CAPABILITY_MASK
    default_spend_cap: int = 200_000_000
    default_session_minutes: int = 60
    session_funding_lamports: int = 10_000_000
    session_signer_min_lamports: int = 5_000_000
    session_signer_top_up_lamports: int = 10_000_000
    max_attempts_per_endpoint: int = 2
    backoff_base_ms: int = 300
    raw_probe_timeout_seconds: float = 20.0

    @classmethod
    def from_settings(cls, source: Optional[Settings] = None) -> "EngineOptions":
        source = source or settings
        return cls(
            rpc_url=source.rpc_url,
            rpc_fallback_url=source.rpc_fallback_url or None,
            commitment=source.commitment,
            request_timeout_seconds=source.request_timeout_seconds,
            program_id=source.program_id,
            global_pda=source.global_pda,
            token_mint=source.token_mint,
            default_capabilities=source.default_capabilities,
            default_spend_cap=source.default_spend_cap,
            default_session_minutes=source.default_session_minutes,
            session_funding_lamports=source.session_funding_lamports,
            session_signer_min_lamports=source.session_signer_min_lamports,
            session_signer_top_up_lamports=source.session_signer_top_up_lamports,
            max_attempts_per_endpoint=source.max_attempts_per_endpoint,
            backoff_base_ms=source.backoff_base_ms,
            raw_probe_timeout_seconds=source.raw_probe_timeout_seconds,
        )


# Global settings instance
settings = Settings()
