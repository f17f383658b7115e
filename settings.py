"""
Runtime configuration for the Rendiconti backend.

Values come from the environment (optionally a local .env file) so the rest
of the code never reads os.environ directly.
"""

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

load_dotenv()


@dataclass(frozen=True)
class Settings:
    """
    Strongly-typed container for runtime configuration.

    Attributes:
        database_url: MongoDB connection string.
        database_name: Name of the Mongo database holding all collections.
        secret_key: HMAC secret used to sign access tokens.
        token_expire_days: Lifetime of an issued access token.
        environment: "development" or "production". Controls how much
            detail internal errors expose to the caller.
        frontend_url: Origin allowed by CORS.
        upload_dir: Directory where uploaded signature images are written.
        max_signature_bytes: Size ceiling for multipart signature uploads.
        max_signature_data_url_chars: Size ceiling for inline data URLs.
        bcrypt_rounds: Cost factor for password hashing.
        log_level: Root logging level name.
        port: Port used when running main.py directly.
    """

    database_url: str
    database_name: str
    secret_key: str
    token_expire_days: int
    environment: str
    frontend_url: str
    upload_dir: Path
    max_signature_bytes: int
    max_signature_data_url_chars: int
    bcrypt_rounds: int
    log_level: str
    port: int

    @property
    def is_production(self) -> bool:
        return self.environment == "production"


def getenv_with_default(name: str, default: Optional[str] = None) -> Optional[str]:
    value = os.getenv(name)
    if value is not None and value != "":
        return value
    return default


def load_settings() -> Settings:
    """Build a fresh Settings instance from the current environment."""
    project_root = Path(__file__).resolve().parent
    return Settings(
        database_url=getenv_with_default("DATABASE_URL", "mongodb://localhost:27017"),
        database_name=getenv_with_default("DATABASE_NAME", "rendiconto"),
        secret_key=getenv_with_default("SECRET_KEY", "rendiconto-jwt-secret"),
        token_expire_days=int(getenv_with_default("ACCESS_TOKEN_EXPIRE_DAYS", "7")),
        environment=getenv_with_default("APP_ENV", "development").lower(),
        frontend_url=getenv_with_default("FRONTEND_URL", "http://localhost:3000"),
        upload_dir=Path(getenv_with_default("UPLOAD_DIR", str(project_root / "uploads" / "signatures"))),
        max_signature_bytes=int(getenv_with_default("MAX_SIGNATURE_BYTES", str(2 * 1024 * 1024))),
        max_signature_data_url_chars=int(
            getenv_with_default("MAX_SIGNATURE_DATA_URL_CHARS", str(5 * 1024 * 1024))
        ),
        bcrypt_rounds=int(getenv_with_default("BCRYPT_ROUNDS", "12")),
        log_level=getenv_with_default("LOG_LEVEL", "INFO").upper(),
        port=int(getenv_with_default("PORT", "5050")),
    )


@lru_cache
def get_settings() -> Settings:
    return load_settings()
