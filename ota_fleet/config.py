from functools import lru_cache

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    app_name: str = Field(default="OTA Fleet Server", alias="APP_NAME")
    database_url: str = Field(default="sqlite:///./ota_fleet.db", alias="DATABASE_URL")
    jwt_secret: str = Field(alias="JWT_SECRET")
    jwt_algorithm: str = Field(default="HS256", alias="JWT_ALGORITHM")
    token_ttl_hours: int = Field(default=24, alias="TOKEN_TTL_HOURS")
    master_key: SecretStr = Field(alias="MASTER_KEY")
    firmware_storage_dir: str = Field(default="./storage/firmwares", alias="FIRMWARE_STORAGE_DIR")
    encrypt_at_rest: bool = Field(default=True, alias="ENCRYPT_AT_REST")
    max_upload_bytes: int = Field(default=50 * 1024 * 1024, alias="MAX_UPLOAD_BYTES")
    job_start_delay_seconds: float = Field(default=1.0, ge=0, alias="JOB_START_DELAY_SECONDS")
    job_tick_seconds: float = Field(default=2.0, ge=0, alias="JOB_TICK_SECONDS")
    parallel_concurrency: int = Field(default=10, ge=1, alias="PARALLEL_CONCURRENCY")
    rolling_batch_size: int = Field(default=3, ge=1, alias="ROLLING_BATCH_SIZE")
    job_failure_policy: str = Field(default="strict", pattern=r"^(strict|best_effort)$", alias="JOB_FAILURE_POLICY")
    simulated_failure_rate: float = Field(default=0.0, ge=0, le=1, alias="SIMULATED_FAILURE_RATE")
    device_online_window_seconds: int = Field(default=300, alias="DEVICE_ONLINE_WINDOW_SECONDS")
    subscriber_queue_size: int = Field(default=100, ge=1, alias="SUBSCRIBER_QUEUE_SIZE")
    rate_limit_login_per_minute: int = Field(default=10, alias="RATE_LIMIT_LOGIN_PER_MINUTE")
    allow_insecure_http: bool = Field(default=False, alias="ALLOW_INSECURE_HTTP")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")

    @property
    def master_key_bytes(self) -> bytes:
        return self.master_key.get_secret_value().encode("utf-8")


@lru_cache
def get_settings() -> Settings:
    return Settings()
