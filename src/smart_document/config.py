from __future__ import annotations

import os
from pathlib import Path

from loguru import logger
from pydantic import BaseModel, Field, ValidationError, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
)

from smart_document import errors
from smart_document.infrastructure.config_sources import (
    PrefixedEnvSource,
    deep_merge,
    find_config_file,
    read_yaml,
)

ENV_PREFIX = "SD"
LOG_LEVELS = ("debug", "info", "warn", "warning", "error", "fatal", "panic")


class ServerConfig(BaseModel):
    host: str = "0.0.0.0"
    port: int = 8080
    read_timeout: int = 30
    write_timeout: int = 30


class DatabaseConfig(BaseModel):
    driver: str = "postgres"
    host: str = "localhost"
    port: int = 5432
    username: str = "postgres"
    password: str = "postgres"
    database: str = "smart_document"
    ssl_mode: str = "disable"
    max_idle: int = 10
    max_open: int = 100


class RedisConfig(BaseModel):
    host: str = "localhost"
    port: int = 6379
    password: str = ""
    database: int = 0


class KafkaConfig(BaseModel):
    brokers: list[str] = Field(default_factory=lambda: ["localhost:9092"])
    group_id: str = "smart-document"


class JWTConfig(BaseModel):
    secret: str = "your-secret-key"
    expires_in: int = 3600


class LoggingConfig(BaseModel):
    level: str = "info"
    format: str = "json"
    output: str = "stdout"
    file: str = "logs/app.log"
    max_size: int = Field(default=100, ge=0, description="Megabytes before rotation")
    max_backups: int = Field(default=3, ge=0)
    max_age: int = Field(default=28, ge=0, description="Days to keep rotated files")
    compress: bool = True

    @field_validator("level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        level = v.strip().lower()
        if level not in LOG_LEVELS:
            raise ValueError(f"unknown log level: {v}")
        return level

    @field_validator("format", "output")
    @classmethod
    def _lower(cls, v: str) -> str:
        return v.strip().lower()


class MinioConfig(BaseModel):
    endpoint: str = "localhost:9000"
    access_key_id: str = "minioadmin"
    secret_access_key: str = "minioadmin"
    use_ssl: bool = False
    bucket_name: str = "documents"


class StorageConfig(BaseModel):
    type: str = "minio"
    minio: MinioConfig = Field(default_factory=MinioConfig)
    local_path: str = "./uploads"


class Settings(BaseSettings):
    environment: str = "development"
    server: ServerConfig = Field(default_factory=ServerConfig)
    database: DatabaseConfig = Field(default_factory=DatabaseConfig)
    redis: RedisConfig = Field(default_factory=RedisConfig)
    kafka: KafkaConfig = Field(default_factory=KafkaConfig)
    jwt: JWTConfig = Field(default_factory=JWTConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)

    model_config = SettingsConfigDict(extra="ignore")

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        # Environment beats values read from YAML files (passed as init kwargs).
        return (PrefixedEnvSource(settings_cls, ENV_PREFIX), init_settings)


def load_config(config_dir: str | Path, service_name: str) -> Settings:
    """Load settings for *service_name*.

    Precedence, lowest first: defaults, ``<service_name>.yaml``,
    ``config-<environment>.yaml``, ``SD_*`` environment variables.
    Missing files are skipped; unreadable or invalid ones raise ``AppError``.
    """
    base_file = find_config_file(f"{service_name}.yaml", config_dir)
    data = read_yaml(base_file)
    if base_file is None:
        logger.debug("No {}.yaml found, using defaults and environment", service_name)

    environment = (
        os.getenv(f"{ENV_PREFIX}_ENVIRONMENT")
        or data.get("environment")
        or "development"
    )
    env_file = find_config_file(f"config-{environment}.yaml", config_dir)
    if env_file is not None:
        data = deep_merge(data, read_yaml(env_file))

    try:
        return Settings(**data)
    except ValidationError as exc:
        source = env_file or base_file
        raise errors.internal(exc, "failed to unmarshal config").with_context(
            "path", str(source) if source else None
        ) from exc


def get_env(key: str, default: str) -> str:
    return os.getenv(key) or default


def must_get_env(key: str) -> str:
    value = os.getenv(key)
    if not value:
        raise RuntimeError(f"required environment variable {key} is not set")
    return value
