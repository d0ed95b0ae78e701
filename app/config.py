"""Configuration settings for the OpenSens HTTP service."""
import os
from dotenv import load_dotenv

load_dotenv()


class Settings:
    """Server settings loaded from environment variables.

    Aggregation settings (timeouts, TTLs, credentials) live in
    opensens.core.config.OpensensConfig.
    """

    # Server settings
    HOST: str = os.getenv("HOST", "0.0.0.0")
    PORT: int = int(os.getenv("PORT", 8000))
    DEBUG: bool = os.getenv("DEBUG", "false").lower() == "true"
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    # Comma-separated list; "*" allows any origin
    CORS_ORIGINS: list = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]


settings = Settings()
