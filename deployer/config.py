"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file and override existing env vars
load_dotenv(override=True)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8080

    # Identity service (Humanitec)
    humanitec_api_url: str = "https://api.humanitec.io"
    humanitec_org_id: str = "canyon-demo"
    humanitec_service_user_api_token: str = Field(default="")
    service_user_prefix: str = "canyon-chat-fly"
    service_user_role: str = "member"
    token_expires_at: str = "2035-01-01T00:00:00Z"
    http_timeout_seconds: float = 30.0

    # Deployment platform (Fly.io)
    flyctl_path: str = "flyctl"
    fly_org: str = "personal"
    fly_region: str = "ams"
    deploy_image: str = "dominicwhitehumanitec/canyonchat:latest"
    app_internal_port: int = 3000
    app_base_domain: str = "canyon-beta.com"

    # Fixed secrets injected into every deployed app
    default_model: str = "gemini-2.5-pro-preview-03-25"
    enable_mcp: str = "true"
    minio_access_key_id: str = Field(default="")
    minio_bucket: str = ""
    minio_endpoint: str = ""
    minio_secret_access_key: str = Field(default="")
    minio_use_ssl: str = "true"

    # Orchestration
    command_timeout_seconds: float | None = None  # None leaves commands unbounded
    subscriber_wait_seconds: float = 5.0
    sse_keepalive_seconds: float = 30.0
    descriptor_dir: str | None = None

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    log_file: str | None = None

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    def app_url(self, app_name: str) -> str:
        """Public URL of a deployed app."""
        return f"https://{app_name}.{self.app_base_domain}"

    def fixed_app_secrets(self) -> dict[str, str]:
        """Deployment defaults set as secrets after the per-request ones."""
        return {
            "DEFAULT_MODEL": self.default_model,
            "ENABLE_MCP": self.enable_mcp,
            "MINIO_ACCESS_KEY_ID": self.minio_access_key_id,
            "MINIO_BUCKET": self.minio_bucket,
            "MINIO_ENDPOINT": self.minio_endpoint,
            "MINIO_SECRET_ACCESS_KEY": self.minio_secret_access_key,
            "MINIO_USE_SSL": self.minio_use_ssl,
        }


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
