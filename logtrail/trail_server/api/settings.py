"""
HTTP layer settings.

Uses pydantic-settings for environment variable loading.
"""

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Gateway HTTP configuration loaded from environment."""

    host: str = Field(default="0.0.0.0", description="Bind host")
    port: int = Field(default=8080, description="Bind port")

    route_prefix: str = Field(default="/applications", description="Prefix of application routes")

    # Identity is established upstream (session proxy); we only read it.
    user_header: str = Field(default="X-User-ID", description="Header carrying the caller id")
    key_header: str = Field(
        default="X-Application-Key", description="Header carrying an application key"
    )

    cors_origins: list[str] = Field(
        default=["http://localhost:3000", "http://localhost:5173"],
        description="Allowed CORS origins",
    )

    model_config = {"env_prefix": "LOGTRAIL_"}
