"""
Application configuration using Pydantic settings.

Configuration is loaded from environment variables with sensible defaults.
The defaults describe a local setup: a wildcard CORS origin, header-based
auth, and an upstream API on localhost.

One Settings class covers every deployment variant (bucket-only,
path-parameterized proxy, cookie-forwarding proxy). The variant is picked
with AUTH_MODE and ID_EXTRACTION instead of separate code paths.
"""

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from ..core.options import AuthMode, IdExtraction, RouterOptions, SegmentPartField
from ..infrastructure.storage.client import StorageConfig
from ..infrastructure.upstream.client import UpstreamConfig


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.

    All settings can be overridden via environment variables.
    For lists (like stripped_destination_headers), use comma-separated values.
    """

    # API Configuration
    api_title: str = "Upload Router"
    api_version: str = "v1"

    # Routing behaviour
    auth_mode: Literal["header", "cookie"] = Field(
        default="header",
        description="How the caller authenticates upstream: user-id header only, or header plus session cookie."
    )
    id_extraction: Literal["query", "path"] = Field(
        default="query",
        description="Where proxy upload identifiers come from: query parameters or the request path."
    )
    user_id_header: str = Field(
        default="Procore-Fas-User-Id",
        description="Header carrying the caller's user identifier to the upstream API."
    )
    default_user_id: Optional[str] = Field(
        default=None,
        description="User identifier forwarded when the inbound request carries none."
    )
    stream_part_body: bool = Field(
        default=True,
        description="Stream proxied part bodies to the destination instead of buffering them."
    )
    stripped_destination_headers: str = Field(
        default="content-md5",
        description="Comma-separated descriptor headers that are never forwarded to the part destination."
    )
    segment_part_field: Literal["part_number", "part_id"] = Field(
        default="part_number",
        description="Field name identifying the part inside completion segments."
    )

    # Upstream REST API
    upstream_api_base_url: str = Field(
        default="http://localhost:7000/rest/v2.0",
        description="Base URL of the upstream REST API."
    )
    upstream_company_id: str = Field(
        default="8",
        description="Company identifier used in upstream URLs when not taken from the path."
    )
    upstream_project_id: str = Field(
        default="8",
        description="Project identifier used in upstream URLs when not taken from the path."
    )
    upstream_part_path: str = Field(
        default="/companies/{company_id}/projects/{project_id}/file_uploads/{upload_id}/parts/{part_number}",
        description="Path template for fetching a part destination."
    )
    upstream_upload_path: str = Field(
        default="/companies/{company_id}/projects/{project_id}/file_uploads/{upload_id}",
        description="Path template for patching completed segments."
    )
    upstream_timeout_seconds: Optional[float] = Field(
        default=None,
        description="Timeout for upstream and destination calls. None waits indefinitely."
    )

    # R2/S3 Storage Configuration
    r2_account_id: str = Field(
        default="",
        description="Cloudflare account ID for R2"
    )
    r2_access_key_id: str = Field(
        default="",
        description="R2 access key ID"
    )
    r2_secret_access_key: str = Field(
        default="",
        description="R2 secret access key"
    )
    r2_bucket_name: str = Field(
        default="uploads",
        description="R2 bucket backing the direct multipart actions"
    )
    r2_endpoint_url: Optional[str] = Field(
        default=None,
        description="R2 endpoint URL. Auto-constructed from account_id if not provided."
    )
    r2_mock_mode: bool = Field(
        default=False,
        description="Use in-memory mock instead of real R2. Enables local dev without object storage."
    )

    # Logging
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )

    # CORS
    cors_origin: str = Field(
        default="*",
        description="Value of Access-Control-Allow-Origin. Must be a concrete origin in cookie mode."
    )
    cors_expose_headers: str = Field(
        default="etag",
        description="Comma-separated response headers exposed to the browser."
    )
    cors_max_age: int = Field(
        default=86400,
        description="Seconds a browser may cache a preflight response."
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    @property
    def stripped_destination_headers_list(self) -> list[str]:
        """Parse comma-separated stripped headers into a list."""
        return [h.strip() for h in self.stripped_destination_headers.split(",") if h.strip()]

    @property
    def cors_expose_headers_list(self) -> list[str]:
        """Parse comma-separated exposed headers into a list."""
        return [h.strip() for h in self.cors_expose_headers.split(",") if h.strip()]

    @property
    def r2_endpoint(self) -> str:
        """
        Construct R2 endpoint URL from account ID.

        R2 endpoints follow the pattern: https://{account_id}.r2.cloudflarestorage.com
        """
        if self.r2_endpoint_url:
            return self.r2_endpoint_url
        return f"https://{self.r2_account_id}.r2.cloudflarestorage.com"

    def router_options(self) -> RouterOptions:
        """Build the handler's routing options from these settings."""
        return RouterOptions(
            cors_origin=self.cors_origin,
            auth_mode=AuthMode(self.auth_mode),
            id_extraction=IdExtraction(self.id_extraction),
            user_id_header=self.user_id_header,
            default_user_id=self.default_user_id,
            company_id=self.upstream_company_id,
            project_id=self.upstream_project_id,
            segment_part_field=SegmentPartField(self.segment_part_field),
            stripped_headers=tuple(self.stripped_destination_headers_list),
            expose_headers=tuple(self.cors_expose_headers_list),
            stream_part_body=self.stream_part_body,
            cors_max_age=self.cors_max_age,
        )

    def upstream_config(self) -> UpstreamConfig:
        """Build the upstream API client configuration."""
        return UpstreamConfig(
            base_url=self.upstream_api_base_url,
            part_path=self.upstream_part_path,
            upload_path=self.upstream_upload_path,
            timeout_seconds=self.upstream_timeout_seconds,
        )

    def storage_config(self) -> StorageConfig:
        """Build the R2 storage configuration."""
        return StorageConfig(
            access_key_id=self.r2_access_key_id,
            secret_access_key=self.r2_secret_access_key,
            bucket_name=self.r2_bucket_name,
            endpoint_url=self.r2_endpoint,
        )

    def validate_required_fields(self) -> list[str]:
        """
        Validate that required fields are set based on mock mode settings.

        Returns list of missing required fields.
        This is separate from Pydantic validation because requirements
        depend on whether we're in mock mode.
        """
        missing = []

        if not self.upstream_api_base_url:
            missing.append("UPSTREAM_API_BASE_URL")

        # R2 only required if not in mock mode
        if not self.r2_mock_mode:
            if not self.r2_account_id and not self.r2_endpoint_url:
                missing.append("R2_ACCOUNT_ID")
            if not self.r2_access_key_id:
                missing.append("R2_ACCESS_KEY_ID")
            if not self.r2_secret_access_key:
                missing.append("R2_SECRET_ACCESS_KEY")

        return missing


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Settings are loaded once per process. For tests, call
    get_settings.cache_clear() or override the dependency.
    """
    return Settings()
