"""Pydantic models for configuration validation."""

from pathlib import Path
from typing import Optional, Literal
from pydantic import BaseModel, Field, field_validator, ConfigDict


# Don't hammer the host server
DEFAULT_MAX_CONCURRENT_EXPORTS = 5


class HostConfig(BaseModel):
    """SillyTavern server connection configuration."""

    base_url: str = "http://127.0.0.1:8000"
    timeout_seconds: float = Field(default=30.0, gt=0)
    csrf_enabled: bool = Field(default=True, description="Fetch and send an X-CSRF-Token header")
    username: Optional[str] = Field(default=None, description="Basic auth user (if the server requires it)")
    password: Optional[str] = None

    @field_validator('base_url')
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Ensure URL is properly formatted."""
        if not v.startswith(('http://', 'https://')):
            raise ValueError('base_url must start with http:// or https://')
        return v.rstrip('/')

    @property
    def basic_auth(self) -> Optional[tuple[str, str]]:
        if self.username:
            return (self.username, self.password or "")
        return None


class ExportConfig(BaseModel):
    """Batch export configuration."""

    max_concurrent_exports: int = Field(default=DEFAULT_MAX_CONCURRENT_EXPORTS, gt=0, le=32)
    job_timeout_seconds: Optional[float] = Field(
        default=None,
        gt=0,
        description="Fail a job that has not settled after this many seconds"
    )
    output_dir: Path = Path("exports")
    character_format: Literal["png", "json"] = "png"
    include_character_with_chats: bool = True
    sort_archive_members: bool = Field(
        default=True,
        description="Sort ZIP members by name (results otherwise arrive in completion order)"
    )

    @field_validator('output_dir')
    @classmethod
    def validate_path(cls, v: Path) -> Path:
        """Ensure paths are cross-platform."""
        return Path(v)


class SystemConfig(BaseModel):
    """Top-level system configuration."""

    model_config = ConfigDict(extra='ignore')

    host: HostConfig = Field(default_factory=HostConfig)
    export: ExportConfig = Field(default_factory=ExportConfig)
    debug: bool = False
    log_dir: Path = Path("data/debug_logs")
