"""
Connection settings for the content server.

Uses pydantic-settings for environment variable loading.
"""

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class ForemanSettings(BaseSettings):
    """Foreman/Katello connection configuration loaded from environment."""

    server_url: str = Field(
        default="https://foreman.domain.com", description="Foreman server base URL"
    )
    username: str = Field(default="admin", description="API user")
    password: SecretStr = Field(default=SecretStr("changeme!"), description="API password")

    # Self-signed certificates are the norm on Foreman installs
    validate_certs: bool = Field(default=False, description="Verify TLS certificates")
    timeout: float = Field(default=60.0, description="Request timeout seconds")

    model_config = {"env_prefix": "FOREMAN_"}

    @property
    def api_base(self) -> str:
        """Server URL without trailing slash."""
        return self.server_url.rstrip("/")
