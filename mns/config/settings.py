from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    endpoint: str = Field(..., validation_alias="MNS_ENDPOINT")
    access_id: str = Field(..., validation_alias="MNS_ACCESS_ID")
    access_secret: str = Field(..., validation_alias="MNS_ACCESS_SECRET")
    queue_name: str = Field(..., validation_alias="MNS_QUEUE")

    # Max deliveries handed to the delegate at once.
    prefetch_count: int = Field(1, validation_alias="PREFETCH_COUNT")
    receive_wait_seconds: int = Field(30, validation_alias="RECEIVE_WAIT_SECONDS")
    reject_visibility_timeout_seconds: int = Field(1, validation_alias="REJECT_VISIBILITY_TIMEOUT_SECONDS")
    auto_ack: bool = Field(False, validation_alias="AUTO_ACK")

    request_timeout_seconds: float = Field(5.0, validation_alias="REQUEST_TIMEOUT_SECONDS")
    connect_timeout_seconds: float = Field(5.0, validation_alias="CONNECT_TIMEOUT_SECONDS")
    http_backend: str = Field("httpx", validation_alias="HTTP_BACKEND")

    receive_max_attempts: int = Field(5, validation_alias="RECEIVE_MAX_ATTEMPTS")
    initial_backoff_seconds: float = Field(1.0, validation_alias="INITIAL_BACKOFF_SECONDS")
    max_backoff_seconds: float = Field(30.0, validation_alias="MAX_BACKOFF_SECONDS")
    backoff_multiplier: float = Field(2.0, validation_alias="BACKOFF_MULTIPLIER")
