"""
Application Configuration
"""
from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import List
import warnings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    APP_NAME: str = "FinHub"
    APP_VERSION: str = "1.0.0"
    DEBUG: bool = False
    ENVIRONMENT: str = "development"  # development, staging, production
    LOG_LEVEL: str = "INFO"

    # Security
    SECRET_KEY: str = "dev-secret-key-change-in-production"
    SESSION_COOKIE_SECURE: bool = False

    # Upstream REST API
    API_URL: str = "http://localhost:3000/v1"
    API_TIMEOUT_SECONDS: float = 30.0
    REVENUE_CACHE_SECONDS: int = 300

    # Display
    DEFAULT_CURRENCY: str = "USD"

    # Lists
    DEFAULT_PAGE_SIZE: int = 20
    MAX_PAGE_SIZE: int = 100

    # Bulk import
    BULK_IMPORT_MAX_FILES: int = 10
    BULK_IMPORT_MAX_FILE_MB: int = 10
    BULK_IMPORT_ALLOWED_EXTENSIONS: str = "pdf,jpg,jpeg,png,csv,xlsx,xls"
    IMPORT_WIZARD_TTL_MINUTES: int = 60

    # Attachments
    ATTACHMENT_MAX_FILES: int = 10
    ATTACHMENT_MAX_FILE_MB: int = 10
    ATTACHMENT_ALLOWED_EXTENSIONS: str = "jpg,jpeg,png,gif,webp,pdf,doc,docx,xls,xlsx,txt,csv"

    model_config = SettingsConfigDict(env_file=".env", case_sensitive=True, extra="ignore")

    @property
    def allowed_extensions_list(self) -> List[str]:
        return [ext.strip().lower().lstrip(".") for ext in self.BULK_IMPORT_ALLOWED_EXTENSIONS.split(",") if ext.strip()]

    @property
    def attachment_extensions_list(self) -> List[str]:
        return [ext.strip().lower().lstrip(".") for ext in self.ATTACHMENT_ALLOWED_EXTENSIONS.split(",") if ext.strip()]

    @property
    def is_production(self) -> bool:
        """Check if running in production environment"""
        return self.ENVIRONMENT.lower() == "production"

    def validate_security_settings(self):
        """Validate security settings and warn about insecure defaults"""
        default_keys = [
            "dev-secret-key-change-in-production",
            "secret-key",
            "change-me",
        ]

        if self.SECRET_KEY in default_keys:
            if self.is_production:
                raise ValueError(
                    "CRITICAL: Default SECRET_KEY detected in production! "
                    "Set the SECRET_KEY environment variable to a secure random value."
                )
            else:
                warnings.warn(
                    "WARNING: Using default SECRET_KEY. "
                    "Set SECRET_KEY environment variable for production.",
                    UserWarning
                )

        if self.is_production and self.DEBUG:
            raise ValueError(
                "CRITICAL: DEBUG mode is enabled in production! "
                "Set DEBUG=False for production environment."
            )

        if self.is_production and not self.SESSION_COOKIE_SECURE:
            warnings.warn(
                "WARNING: SESSION_COOKIE_SECURE is False in production. "
                "Cookies should be secure when using HTTPS.",
                UserWarning
            )

        return True


settings = Settings()

# Validate security settings on import (but don't crash in development)
try:
    settings.validate_security_settings()
except ValueError as e:
    if settings.is_production:
        raise
    else:
        warnings.warn(str(e), UserWarning)
