from functools import lru_cache
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    host: str = Field(default="0.0.0.0", alias="HOST")
    port: int = Field(default=3005, alias="PORT")
    log_dir: str = Field(default="logs", alias="LOG_DIR")
    log_file_name: str = Field(default="main.log", alias="LOG_FILE_NAME")
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    failure_rate: float = Field(default=0.5, ge=0.0, le=1.0, alias="FAILURE_RATE")
    metrics_prefix: str = Field(default="app", alias="METRICS_PREFIX")

    @property
    def log_path(self) -> Path:
        return Path(self.log_dir)

    @property
    def log_file_path(self) -> Path:
        return self.log_path / self.log_file_name


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
