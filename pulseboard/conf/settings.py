from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from .cache import CacheSettings
from .github import GitHubSettings
from .leancloud import LeanCloudSettings


class WebSettings(BaseSettings):
    """Web API configuration settings."""

    cors_allow_origins: list[str] = Field(
        default_factory=list,
        description="Origins allowed to call the JSON API from a browser",
    )


class Settings(CacheSettings, GitHubSettings, LeanCloudSettings, WebSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    project_name: str = "pulseboard"
    debug: bool = False
