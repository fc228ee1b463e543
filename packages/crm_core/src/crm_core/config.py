"""
Foundation settings for the CRM ecosystem.
"""

from typing import Literal

from pydantic import model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class CRMSettings(BaseSettings):
    """
    Core settings for all CRM modules.
    Individual packages (like crm_orm) read their defaults from here.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="allow",
    )

    # --- Basic Environment ---
    DEBUG: bool = True
    ENVIRONMENT: Literal["development", "staging", "production"] = "development"
    LOG_LEVEL: str = "INFO"

    # --- Database Core ---
    DATABASE_URL: str | None = None
    DB_ECHO: bool = False
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20

    # --- ORM Behaviour ---
    # Keep the historical where/having/join merge rules of the repository layer.
    ORM_LEGACY_PARAMS_MERGE: bool = True
    # Rows buffered per round-trip by streamed (sth) collections.
    ORM_STH_BATCH_SIZE: int = 500

    @model_validator(mode="after")
    def validate_database(self) -> "CRMSettings":
        """Ensures non-development environments ship with a database URL."""
        if not self.is_development() and not self.DATABASE_URL:
            raise ValueError("DATABASE_URL is mandatory outside development mode.")
        if self.ORM_STH_BATCH_SIZE < 1:
            raise ValueError("ORM_STH_BATCH_SIZE must be a positive integer.")
        return self

    def is_development(self) -> bool:
        return self.DEBUG or self.ENVIRONMENT == "development"


# Singleton instance for core use
crm_settings = CRMSettings()
