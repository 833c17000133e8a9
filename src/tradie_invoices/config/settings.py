"""Configuration settings for the invoicing service."""

from functools import lru_cache
from typing import Literal

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Flat settings loaded from environment variables or a .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # LLM provider selection
    llm_provider: Literal["openai", "claude"] = Field(
        default="openai", validation_alias="LLM_PROVIDER"
    )
    openai_api_key: SecretStr | None = Field(default=None, validation_alias="OPENAI_API_KEY")
    anthropic_api_key: SecretStr | None = Field(
        default=None, validation_alias="ANTHROPIC_API_KEY"
    )
    openai_model: str = Field(default="gpt-4o-mini", validation_alias="OPENAI_MODEL")
    claude_model: str = Field(default="claude-haiku-4-5", validation_alias="CLAUDE_MODEL")

    # LLM parameters
    llm_max_tokens: int = Field(default=4096, validation_alias="LLM_MAX_TOKENS")
    llm_temperature: float = Field(default=0.2, validation_alias="LLM_TEMPERATURE")

    # Supabase (Postgres REST, storage and auth)
    supabase_url: str = Field(
        default="http://localhost:54321", validation_alias="SUPABASE_URL"
    )
    supabase_anon_key: SecretStr = Field(..., validation_alias="SUPABASE_ANON_KEY")
    # Bypasses row level security; used by the reminder sweep and public payment pages
    supabase_service_role_key: SecretStr | None = Field(
        default=None, validation_alias="SUPABASE_SERVICE_ROLE_KEY"
    )
    supabase_timeout: float = Field(default=30.0, validation_alias="SUPABASE_TIMEOUT")
    supabase_max_retries: int = Field(default=3, validation_alias="SUPABASE_MAX_RETRIES")

    # Transactional email (Resend)
    resend_api_key: SecretStr = Field(..., validation_alias="RESEND_API_KEY")
    resend_from_email: str = Field(
        default="invoices@example.com", validation_alias="RESEND_FROM_EMAIL"
    )
    resend_api_url: str = Field(
        default="https://api.resend.com", validation_alias="RESEND_API_URL"
    )

    # Invoicing behaviour
    default_due_days: int = Field(default=14, validation_alias="DEFAULT_DUE_DAYS")
    customer_match_limit: int = Field(default=5, validation_alias="CUSTOMER_MATCH_LIMIT")
    invoice_number_padding: int = Field(default=4, validation_alias="INVOICE_NUMBER_PADDING")
    default_invoice_prefix: str = Field(default="INV-", validation_alias="DEFAULT_INVOICE_PREFIX")
    draft_session_ttl_seconds: float = Field(
        default=12 * 60 * 60, validation_alias="DRAFT_SESSION_TTL_SECONDS"
    )

    # Object storage
    photo_bucket: str = Field(default="invoice-photos", validation_alias="PHOTO_BUCKET")
    pdf_bucket: str = Field(default="invoice-pdfs", validation_alias="PDF_BUCKET")
    signed_url_ttl_seconds: int = Field(default=3600, validation_alias="SIGNED_URL_TTL_SECONDS")

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO", validation_alias="LOG_LEVEL"
    )
    log_format: Literal["json", "console"] = Field(
        default="console", validation_alias="LOG_FORMAT"
    )


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
