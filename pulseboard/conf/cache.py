from pydantic_settings import BaseSettings, SettingsConfigDict


class CacheSettings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
    # Cache control
    cache_enabled: bool = True

    # Default TTLs (in seconds)
    cache_default_ttl: int = 300  # 5 minutes for memory cache
    cache_pr_ttl: int = 600  # 10 minutes for pull request statistics
    cache_permission_ttl: int = 3600  # 1 hour for collaborator permission lookups
