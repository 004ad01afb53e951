from typing import List

from dotenv import load_dotenv
from pydantic_settings import BaseSettings

load_dotenv(override=True)

class Settings(BaseSettings):
    PROJECT_NAME: str = "DilSe Matchify"
    # Application settings
    PORT: int = 3001
    HOST: str = "127.0.0.1"
    VERSION: str = "1.0.0"
    CORS_ORIGINS: List[str] = ["http://localhost:8080", "http://127.0.0.1:8080"]

    # SSL settings
    SSL_KEY: str | None = None
    SSL_CERT: str | None = None

    # SQLAlchemy database URL
    DATABASE_URL: str = "sqlite:///./matchify.db"

    # Login configuration
    ENCODE_KEY: str | None = None
    ENCODE_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_SECONDS: int = 7 * 24 * 3600 # 7 days
    NONCE_EXPIRY_SECONDS: int = 300 # 5 minutes

    # expired nonces are kept this long before the purge task deletes them
    NONCE_PURGE_GRACE_SECONDS: int = 3600
    # 0 disables the periodic purge
    NONCE_PURGE_INTERVAL_SECONDS: int = 15 * 60

    # wallet-only accounts get a placeholder email under this domain
    PLACEHOLDER_EMAIL_DOMAIN: str = "wallet.dilsematchify.com"

    # Debug settings
    DEBUG: bool = False

    class Config:
        env_file = ".env"

# Instantiate the settings
settings = Settings()
