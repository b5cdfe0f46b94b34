"""
Application configuration loaded from environment variables.
Uses pydantic-settings so every value can be overridden via a .env file.
"""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # ── AWS (service's own account: credential + audit tables) ───────────────
    aws_region: str = "us-east-1"
    # Leave blank to use the default credential chain (IAM role, env vars, …)
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""

    # ── DynamoDB ─────────────────────────────────────────────────────────────
    dynamodb_credentials_table: str = "cloud_credentials"
    # Blank keeps audit entries in the application log only
    dynamodb_audit_table: str = ""
    # Set to a local DynamoDB endpoint for development (e.g. http://localhost:8000)
    dynamodb_endpoint_url: str = ""

    # ── Credentials ──────────────────────────────────────────────────────────
    # Fernet key used to decrypt stored provider credentials
    credential_encryption_key: str = ""

    # ── Cache ────────────────────────────────────────────────────────────────
    # Blank disables caching entirely (every read goes to the provider)
    redis_url: str = ""
    cache_ttl_seconds: int = 300

    # ── Events ───────────────────────────────────────────────────────────────
    # "log" writes events to the application log, "redis" publishes them
    event_backend: str = "log"
    event_channel_prefix: str = "cloudnet"

    # ── Long-running operations ──────────────────────────────────────────────
    operation_poll_interval_seconds: float = 5.0
    operation_timeout_seconds: float = 1800.0

    # ── Logging ──────────────────────────────────────────────────────────────
    log_level: str = "INFO"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


settings = Settings()
