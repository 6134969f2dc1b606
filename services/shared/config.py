"""Shared configuration management for the invoice automation service.

Based on Pydantic Settings v2 best practices:
https://docs.pydantic.dev/latest/concepts/pydantic_settings/
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support.

    All settings can be overridden via environment variables with the prefix 'APP_'.
    Example: APP_LOG_LEVEL=debug
    """

    model_config = SettingsConfigDict(
        env_prefix="APP_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    environment: Literal["development", "staging", "production"] = Field(
        default="development",
        description="Deployment environment",
    )
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # Service configuration
    service_name: str = Field(
        default="invoice-automation",
        description="Service identifier for metrics and logs",
    )
    service_version: str = Field(
        default="0.1.0",
        description="Service version",
    )

    # MongoDB configuration
    mongo_url: str = Field(
        default="mongodb://localhost:27017",
        description="MongoDB connection string",
    )
    mongo_database: str = Field(
        default="invoice_automation",
        description="MongoDB database holding invoices, inventory and users",
    )

    # Extraction provider configuration
    extraction_provider: Literal["openai", "ollama"] = Field(
        default="openai",
        description=(
            "Extraction provider: openai (any OpenAI-compatible API), ollama (self-hosted LLM)"
        ),
    )
    openai_model: str = Field(
        default="gpt-4o-mini",
        description="Chat model used for invoice extraction",
    )
    openai_base_url: str | None = Field(
        default=None,
        description=(
            "Base URL of an OpenAI-compatible API (e.g. https://api.groq.com/openai/v1); "
            "None uses api.openai.com"
        ),
    )
    llm_timeout_seconds: float = Field(
        default=60.0,
        gt=0,
        description="Upper bound for a single extraction call",
    )

    # Ollama configuration (for extraction_provider="ollama")
    ollama_base_url: str = Field(
        default="http://localhost:11434",
        description="Ollama server base URL",
    )
    ollama_model: str = Field(
        default="qwen2.5:7b",
        description="Ollama model to use for extraction (e.g., qwen2.5:7b, llama3.1:8b)",
    )

    # Document fetch
    pdf_fetch_timeout_seconds: float = Field(
        default=30.0,
        gt=0,
        description="Upper bound for downloading an invoice PDF",
    )

    # Workflow
    confidence_threshold: int = Field(
        default=50,
        ge=0,
        le=100,
        description="Invoices scoring below this are held as Pending for manual review",
    )

    # Email configuration
    email_provider: Literal["smtp", "mock"] = Field(
        default="mock",
        description="Mail transport: smtp (real delivery) or mock (log and record only)",
    )
    smtp_host: str = Field(default="smtp.gmail.com", description="SMTP server host")
    smtp_port: int = Field(default=587, description="SMTP server port")
    smtp_username: str = Field(
        default="",
        description="SMTP username (use env var APP_SMTP_USERNAME)",
    )
    smtp_password: str = Field(
        default="",
        description="SMTP password (use env var APP_SMTP_PASSWORD)",
    )
    smtp_use_tls: bool = Field(default=True, description="Upgrade the SMTP session with STARTTLS")
    smtp_max_attempts: int = Field(
        default=3,
        ge=1,
        description="Send attempts before a notification is reported as failed",
    )
    mail_from: str = Field(
        default="noreply@invoice-automation.local",
        description="Sender address for outgoing notifications",
    )
    company_name: str = Field(
        default="Invoice Automation",
        description="Company name shown in email subjects and footers",
    )
    app_url: str = Field(
        default="http://localhost:3000",
        description="Dashboard base URL used for review links",
    )
    operator_email: str | None = Field(
        default=None,
        description="Fallback recipient for operator notifications when the user has no email",
    )

    # Queue configuration (arq background processing)
    queue_enabled: bool = Field(
        default=False,
        description="Enable background invoice processing via Redis queue",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for the job queue",
    )
    queue_max_jobs: int = Field(default=10, description="Maximum concurrent jobs per worker")
    queue_job_timeout: int = Field(default=300, description="Job timeout in seconds")


def get_settings() -> Settings:
    """Factory function to get settings instance.

    Returns:
        Configured Settings instance
    """
    return Settings()
