"""Runtime configuration read from the environment (and an optional .env)."""
from __future__ import annotations

import os
from functools import lru_cache
from typing import Dict

from dotenv import load_dotenv
from pydantic import BaseModel, Field

from .errors import ConfigurationError

load_dotenv()

ROLES = ("user", "admin", "authority")

# Placeholder secret for local runs only; production refuses it.
DEV_JWT_SECRET = "docvault-dev-secret-change-me"


class Settings(BaseModel):
    environment: str = "development"
    database_url: str = "sqlite:///./docvault.db"
    partitions: Dict[str, str] = Field(default_factory=dict)

    jwt_secret: str = DEV_JWT_SECRET
    jwt_algorithm: str = "HS256"
    jwt_ttl_seconds: int = 7 * 24 * 3600
    admin_jwt_ttl_seconds: int = 15 * 60

    kdf_salt: str = "docvault/passkey/v1"
    kdf_iterations: int = 200_000

    ledger_url: str = ""
    ledger_finality_depth: int = 1
    ledger_store_timeout: float = 30.0
    ledger_poll_interval: float = 0.5
    ledger_store_fee: int = 1
    wallet_private_key_hex: str = ""
    wallet_initial_balance: int = 1_000

    verify_base_url: str = "https://verify.docvault.local/verify"
    feed_capacity: int = 100

    log_level: str = "INFO"
    log_format: str = "console"

    celery_broker_url: str = "redis://redis:6379/0"
    celery_result_backend: str = "redis://redis:6379/1"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def partition_for(self, role: str) -> str:
        return self.partitions.get(role) or self.database_url

    def ttl_for(self, role: str) -> int:
        return self.admin_jwt_ttl_seconds if role == "admin" else self.jwt_ttl_seconds

    @classmethod
    def from_env(cls) -> "Settings":
        env = os.environ
        database_url = env.get("DATABASE_URL", "sqlite:///./docvault.db")
        partitions = {
            role: env[f"DOCVAULT_DB_{role.upper()}"]
            for role in ROLES
            if env.get(f"DOCVAULT_DB_{role.upper()}")
        }
        try:
            settings = cls(
                environment=env.get("DOCVAULT_ENV", "development"),
                database_url=database_url,
                partitions=partitions,
                jwt_secret=env.get("JWT_SECRET", DEV_JWT_SECRET),
                jwt_ttl_seconds=int(env.get("JWT_TTL_SECONDS", 7 * 24 * 3600)),
                admin_jwt_ttl_seconds=int(env.get("ADMIN_JWT_TTL_SECONDS", 15 * 60)),
                kdf_salt=env.get("DOCVAULT_KDF_SALT", "docvault/passkey/v1"),
                kdf_iterations=int(env.get("DOCVAULT_KDF_ITERATIONS", 200_000)),
                ledger_url=env.get("LEDGER_URL", ""),
                ledger_finality_depth=int(env.get("LEDGER_FINALITY_DEPTH", 1)),
                ledger_store_timeout=float(env.get("LEDGER_STORE_TIMEOUT", 30.0)),
                ledger_poll_interval=float(env.get("LEDGER_POLL_INTERVAL", 0.5)),
                wallet_private_key_hex=env.get("WALLET_PRIVATE_KEY_HEX", ""),
                verify_base_url=env.get("VERIFY_BASE_URL", "https://verify.docvault.local/verify"),
                feed_capacity=int(env.get("FEED_CAPACITY", 100)),
                log_level=env.get("LOG_LEVEL", "INFO"),
                log_format=env.get("LOG_FORMAT", "console"),
                celery_broker_url=env.get("CELERY_BROKER_URL", "redis://redis:6379/0"),
                celery_result_backend=env.get("CELERY_RESULT_BACKEND", "redis://redis:6379/1"),
            )
        except ValueError as exc:
            raise ConfigurationError(f"invalid configuration: {exc}") from exc
        settings.check()
        return settings

    def check(self) -> None:
        """Refuse settings that would silently weaken authentication."""
        if self.is_production and self.jwt_secret == DEV_JWT_SECRET:
            raise ConfigurationError("JWT_SECRET must be set in production")
        if self.is_production and not self.wallet_private_key_hex:
            raise ConfigurationError("WALLET_PRIVATE_KEY_HEX must be set in production")
        if self.kdf_iterations < 1:
            raise ConfigurationError("DOCVAULT_KDF_ITERATIONS must be positive")


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings.from_env()
