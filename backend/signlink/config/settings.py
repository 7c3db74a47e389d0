from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict
from pydantic import Field


class Settings(BaseSettings):
    # Relay server
    API_HOST: str = Field("0.0.0.0")
    API_PORT: int = Field(8080)
    DEBUG: bool = Field(True)
    LOG_LEVEL: str = Field("INFO")
    CORS_ORIGIN_REGEX: str = Field(r"http://(localhost|127\.0\.0\.1|192\.168\.\d+\.\d+)(:\d+)?")

    # Redis (presence mirror)
    REDIS_HOST: str = Field("redis")
    REDIS_PORT: int = Field(6379)
    REDIS_PASSWORD: str | None = Field(None)
    PRESENCE_MIRROR_ENABLED: bool = Field(True)

    # Metrics
    METRICS_ENABLED: bool = Field(False)
    METRICS_PORT: int = Field(8001)

    # Client
    RELAY_URL: str = Field("ws://localhost:8080/ws")
    RECONNECT_ATTEMPTS: int = Field(5)
    RECONNECT_DELAY_SEC: float = Field(1.0)
    HEARTBEAT_INTERVAL_SEC: float = Field(30.0)
    CALL_ANSWER_TIMEOUT_SEC: float = Field(30.0)
    STUN_SERVERS: List[str] = Field(default_factory=lambda: [
        "stun:stun.l.google.com:19302",
        "stun:stun1.l.google.com:19302",
        "stun:stun2.l.google.com:19302",
        "stun:stun3.l.google.com:19302",
        "stun:stun4.l.google.com:19302",
    ])

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
        env_file_encoding="utf-8"
    )


settings = Settings()
