"""Centralized configuration management for the ACME companion."""

from functools import lru_cache
from typing import Optional

from pydantic import ConfigDict, Field
from pydantic_settings import BaseSettings


DEFAULT_WEBHOOK_PATH = "/v1/docker-flow-proxy/cert?certName={cert_subject}.pem&distribute=true"
WEBHOOK_METHODS = {"PUT", "POST", "PATCH"}


class Settings(BaseSettings):
    """Configuration loaded from the environment (or a .env file)."""

    # Server Configuration
    debug: bool = False
    log_level: str = "INFO"
    server_host: str = "0.0.0.0"
    http_port: int = 80

    # ACME Configuration
    acme_staging_storage: str = "/acme/staging"
    acme_production_storage: str = "/acme/live"
    acme_staging_url: str = "https://acme-staging-v02.api.letsencrypt.org/directory"
    acme_directory_url: str = "https://acme-v02.api.letsencrypt.org/directory"
    acme_email: Optional[str] = None
    acme_poll_timeout: int = 90
    challenge_ttl: int = 3600
    rsa_key_size: int = 4096

    # Acquisition pipeline
    disable_staging_precontrol: bool = False
    retry_interval: int = 60
    max_retry: int = 10
    acquisition_timeout: float = 600

    # Certificate Management
    renewal_threshold_days: int = 15
    expiry_check_interval: int = 86400  # 24 hours

    # Docker discovery
    docker_polling: bool = True
    docker_polling_interval: int = 60
    docker_host: Optional[str] = None
    docker_label_host: str = "com.df.letsencrypt.host"
    docker_label_email: str = "com.df.letsencrypt.email"

    # Webhook
    webhook_scheme: str = "http"
    webhook_host: str = "proxy_proxy"
    webhook_port: int = 8080
    webhook_path: str = DEFAULT_WEBHOOK_PATH
    webhook_method: str = "PUT"
    webhook_timeout: float = Field(30.0, gt=0)

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )

    @property
    def effective_log_level(self) -> str:
        """Log level after applying the DEBUG flag."""
        return "DEBUG" if self.debug else self.log_level.upper()

    @property
    def webhook_enabled(self) -> bool:
        return bool(self.webhook_host)

    def validate_settings(self) -> None:
        """Validate value ranges that pydantic types alone cannot express."""
        errors = []

        if not (1 <= self.http_port <= 65535):
            errors.append(f"HTTP_PORT must be between 1 and 65535, got {self.http_port}")

        if self.webhook_enabled and not (1 <= self.webhook_port <= 65535):
            errors.append(f"WEBHOOK_PORT must be between 1 and 65535, got {self.webhook_port}")

        if self.webhook_method.upper() not in WEBHOOK_METHODS:
            errors.append(f"WEBHOOK_METHOD must be one of {sorted(WEBHOOK_METHODS)}, got {self.webhook_method}")

        for name in ("retry_interval", "acquisition_timeout", "acme_poll_timeout",
                     "challenge_ttl", "expiry_check_interval", "docker_polling_interval"):
            if getattr(self, name) <= 0:
                errors.append(f"{name.upper()} must be positive")

        if self.max_retry < 0:
            errors.append("MAX_RETRY must not be negative")

        if self.renewal_threshold_days < 0:
            errors.append("RENEWAL_THRESHOLD_DAYS must not be negative")

        if self.rsa_key_size < 2048:
            errors.append(f"RSA_KEY_SIZE must be at least 2048, got {self.rsa_key_size}")

        if errors:
            raise ValueError(f"Configuration errors: {'; '.join(errors)}")


@lru_cache()
def get_config() -> Settings:
    """Get validated configuration instance."""
    settings = Settings()
    settings.validate_settings()
    return settings
