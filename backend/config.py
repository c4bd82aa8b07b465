"""
config.py - Central configuration for the wallet API
"""
from typing import List, Optional

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    SERVICE_NAME: str = "DID Credential Wallet API"

    # Sessions; a missing secret means tokens die with the process
    SECRET_KEY: Optional[str] = None
    SESSION_TTL_SECONDS: int = 86400

    LOG_LEVEL: str = "INFO"
    CORS_ORIGINS: List[str] = ["*"]

    # Share links look like <PUBLIC_BASE_URL>/verify/<token>
    PUBLIC_BASE_URL: str = "http://localhost:5000"

    GOVERNMENT_ID_VALIDITY_DAYS: int = 5 * 365
    DISCLOSURE_REQUIRES_OWNER: bool = False

    # Default verifier organization, seeded when email and password are both set
    DEFAULT_ADMIN_EMAIL: Optional[str] = None
    DEFAULT_ADMIN_PASSWORD: Optional[str] = None
    DEFAULT_ADMIN_NAME: str = "Default Admin Organization"

    HOST: str = "0.0.0.0"
    PORT: int = 8000

    class Config:
        env_file = ".env"
        env_prefix = "WALLET_"


settings = Settings()
