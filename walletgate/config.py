import os

from pathlib import Path
from typing import Any, List, Literal

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Ensure we pick up legacy environment variable aliases."""

        super().model_post_init(__context)

        if not self.custody_app_id:
            fallback = os.getenv("PRIVY_APP_ID")
            if fallback:
                object.__setattr__(self, "custody_app_id", fallback)

        if not self.custody_app_secret:
            fallback = os.getenv("PRIVY_APP_SECRET")
            if fallback:
                object.__setattr__(self, "custody_app_secret", fallback)

    # Server Settings
    host: str = Field(default="127.0.0.1", description="Server host")
    port: int = Field(default=8000, description="Server port")
    log_level: str = Field(default="INFO", description="Logging level")

    # Custody Service
    custody_app_id: str = Field(default="", description="Custody service application id")
    custody_app_secret: str = Field(default="", description="Custody service application secret")
    custody_base_url: str = Field(
        default="https://api.privy.io/v1",
        description="Base URL of the custody service API",
    )
    custody_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="HTTP timeout for custody service calls",
    )

    # Identity Verification
    identity_verification_key: str = Field(
        default="",
        description="PEM public key used to verify identity tokens",
    )
    identity_issuer: str = Field(default="privy.io", description="Expected identity token issuer")
    identity_audience: str = Field(
        default="",
        description="Expected identity token audience (defaults to the custody app id)",
    )
    identity_algorithms: List[str] = Field(
        default_factory=lambda: ["ES256"],
        description="Accepted identity token signature algorithms",
    )

    # Signing Credential
    signing_credential_mode: Literal["static", "session"] = Field(
        default="static",
        description="Authorization credential mode: 'static' (shared key) or 'session' (per-session keypair)",
    )
    authorization_private_key: str = Field(
        default="",
        description="Authorization private key for static mode (PEM or wallet-auth:<base64>)",
        validation_alias=AliasChoices(
            "authorization_private_key",
            "AUTHORIZATION_PRIVATE_KEY",
            "AUTH_PRIVATE_KEY",
        ),
    )

    # Session Protocol
    chain_type: str = Field(default="ethereum", description="Chain family of resolved wallets")
    verify_before_accept: bool = Field(
        default=True,
        description="Verify the identity token before accepting the websocket upgrade",
    )

    @property
    def has_custody_credentials(self) -> bool:
        return bool(self.custody_app_id and self.custody_app_secret)

    @property
    def has_verification_key(self) -> bool:
        return bool(self.identity_verification_key)

    @property
    def has_authorization_key(self) -> bool:
        return bool(self.authorization_private_key)

    @property
    def resolved_audience(self) -> str:
        return self.identity_audience or self.custody_app_id


# Global settings instance
settings = Settings()
