"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables once per process.
The settings object is translated into explicit config dataclasses
(StorageConfig, SnowflakeConfig) at startup; nothing below the API
layer reads the environment directly.

Mock modes enable local development without external services.
"""

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like api_keys), use comma-separated values in env.
    """

    # API Configuration
    api_title: str = "HVMS Visitor Check-in API"
    api_version: str = "v1"
    api_keys: str = Field(
        default="dev-key-1,dev-key-2",
        description="Comma-separated API keys for front-desk clients. A list enables key rotation."
    )

    # Object Storage Configuration (R2 or any S3-compatible store)
    storage_account_id: str = Field(
        default="",
        description="Cloudflare account ID, used to build the R2 endpoint"
    )
    storage_access_key_id: str = Field(
        default="",
        description="Access key ID for the object store"
    )
    storage_secret_access_key: str = Field(
        default="",
        description="Secret access key. Also the signing secret for retrieval URLs."
    )
    storage_bucket_name: str = Field(
        default="visitor-ids",
        description="Bucket holding identity-proof images"
    )
    storage_endpoint_url: Optional[str] = Field(
        default=None,
        description="Object store endpoint. Auto-constructed from account_id if not provided."
    )
    storage_region: str = Field(
        default="auto",
        description="Region name. R2 uses 'auto'."
    )
    storage_public_host: str = Field(
        default="storage.localhost",
        description="Host placed in signed URLs when running against the in-memory store"
    )
    storage_mock_mode: bool = Field(
        default=False,
        description="Use in-memory object store instead of R2/S3. Enables local dev without storage."
    )

    # Signed retrieval URLs
    signed_url_lifetime_seconds: int = Field(
        default=300,
        ge=1,
        le=3600,
        description="Lifetime of identity-proof download links. Service constant, never taken from requests."
    )

    # Check-in tokens
    checkin_token_tag: str = Field(
        default="HVMS",
        description="Namespace tag prefixed to every check-in payload"
    )

    # Identity proof uploads
    max_id_proof_size_mb: int = Field(
        default=10,
        description="Maximum identity-proof upload size in MB"
    )
    allowed_id_proof_types: str = Field(
        default="image/jpeg,image/png,image/webp,image/heic,application/pdf",
        description="Comma-separated content types accepted for identity proofs"
    )

    # Snowflake Configuration
    snowflake_account: str = Field(
        default="",
        description="Snowflake account identifier"
    )
    snowflake_user: str = Field(
        default="",
        description="Snowflake service account username"
    )
    snowflake_password: str = Field(
        default="",
        description="Snowflake service account password"
    )
    snowflake_private_key_path: Optional[str] = Field(
        default=None,
        description="Path to RSA private key file for key-pair authentication"
    )
    snowflake_private_key_base64: Optional[str] = Field(
        default=None,
        description="Base64-encoded private key (for deployment, alternative to file path)"
    )
    snowflake_database: str = Field(
        default="HVMS",
        description="Snowflake database name"
    )
    snowflake_schema: str = Field(
        default="VISITS",
        description="Snowflake schema name"
    )
    snowflake_warehouse: str = Field(
        default="COMPUTE_WH",
        description="Snowflake warehouse for query execution"
    )
    snowflake_role: Optional[str] = Field(
        default=None,
        description="Snowflake role to use (optional)"
    )
    snowflake_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of real Snowflake connection. Enables local dev without DB."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origins: str = Field(
        default="http://localhost:3000",
        description="Comma-separated list of allowed CORS origins. Use * for development only."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def api_keys_list(self) -> list[str]:
        """Parse comma-separated API keys into a list."""
        return [key.strip() for key in self.api_keys.split(",") if key.strip()]

    @property
    def allowed_id_proof_types_list(self) -> list[str]:
        """Parse comma-separated content types into a lowercase list."""
        return [
            ctype.strip().lower()
            for ctype in self.allowed_id_proof_types.split(",")
            if ctype.strip()
        ]

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into a list."""
        if self.cors_origins == "*":
            return ["*"]
        return [origin.strip() for origin in self.cors_origins.split(",") if origin.strip()]

    @property
    def storage_endpoint(self) -> str:
        """
        Construct the R2 endpoint URL from the account ID.

        R2 endpoints follow the pattern: https://{account_id}.r2.cloudflarestorage.com
        An explicit storage_endpoint_url (AWS, MinIO) always wins.
        """
        if self.storage_endpoint_url:
            return self.storage_endpoint_url
        return f"https://{self.storage_account_id}.r2.cloudflarestorage.com"

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        This is separate from Pydantic validation because requirements
        depend on whether we're in mock mode.
        """
        missing = []

        # The signing secret is needed in both modes
        if not self.storage_secret_access_key:
            missing.append("STORAGE_SECRET_ACCESS_KEY")

        if not self.storage_mock_mode:
            if not self.storage_access_key_id:
                missing.append("STORAGE_ACCESS_KEY_ID")
            if not self.storage_endpoint_url and not self.storage_account_id:
                missing.append("STORAGE_ACCOUNT_ID or STORAGE_ENDPOINT_URL")

        if not self.snowflake_mock_mode:
            if not self.snowflake_account:
                missing.append("SNOWFLAKE_ACCOUNT")
            if not self.snowflake_user:
                missing.append("SNOWFLAKE_USER")
            if not self.snowflake_password and not self.snowflake_private_key_path:
                missing.append("SNOWFLAKE_PASSWORD or SNOWFLAKE_PRIVATE_KEY_PATH")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Using lru_cache means we only load settings once per process.
    For tests, call get_settings.cache_clear() or pass Settings to create_app.
    """
    return Settings()
