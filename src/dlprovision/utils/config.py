"""Configuration management using Pydantic settings."""

from functools import lru_cache
from pathlib import Path

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

DEFAULT_GROUP_DOMAIN = "stefaninisandbox.onmicrosoft.com"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Provisioning
    group_domain: str = Field(
        default=DEFAULT_GROUP_DOMAIN,
        description="Mail domain for new groups and the owner allow-list",
    )

    # Exchange Online PowerShell
    powershell_timeout: int = Field(
        default=120, gt=0, description="Timeout in seconds for each PowerShell call"
    )

    # GitHub Actions step summary file (set by the runner)
    github_step_summary: Path | None = Field(
        default=None, description="Markdown file for the CI step summary"
    )

    @field_validator("group_domain")
    @classmethod
    def _strip_domain(cls, value: str) -> str:
        value = value.strip().lstrip("@").lower()
        if not value:
            raise ValueError("group_domain must not be empty")
        return value

    @field_validator("github_step_summary", mode="before")
    @classmethod
    def _empty_summary_is_none(cls, value: object) -> object:
        if isinstance(value, str) and not value.strip():
            return None
        return value

    @property
    def has_step_summary(self) -> bool:
        """Check if a CI step summary file is configured."""
        return self.github_step_summary is not None


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
