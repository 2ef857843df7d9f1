from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings


class LeanCloudSettings(BaseSettings):
    """LeanCloud feedback store configuration."""

    leancloud_app_id: str | None = Field(
        default=None,
        description="LeanCloud application id (sent as X-LC-Id)",
    )
    leancloud_app_key: SecretStr | None = Field(
        default=None,
        description="LeanCloud application key (sent as X-LC-Key)",
    )
    leancloud_api_url: str = Field(
        default="https://api.leancloud.cn/1.1",
        description="Base URL of the LeanCloud REST API",
    )
    leancloud_class_name: str = Field(
        default="UserFeedback",
        description="LeanCloud class holding documentation feedback objects",
    )
    leancloud_query_limit: int = Field(
        default=1000,
        description="Maximum number of feedback objects returned by a single query",
    )
