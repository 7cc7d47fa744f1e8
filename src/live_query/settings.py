from __future__ import annotations

import re
from typing import Literal

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

_NAME_PATTERN = re.compile(r"^[A-Za-z0-9_.:-]+$")

NonMatchingPolicy = Literal["leave_pending", "acknowledge"]


def _sql_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


class Settings(BaseSettings):
    model_config = SettingsConfigDict(case_sensitive=False)

    redis_url: str = Field(alias="REDIS_URL")
    client_id: str = Field(alias="LIVE_CLIENT_ID")
    namespace: str = Field(default="live", alias="LIVE_NAMESPACE")
    read_count: int = Field(default=5, alias="LIVE_READ_COUNT")
    block_ms: int = Field(default=0, alias="LIVE_BLOCK_MS")
    empty_backoff_s: float = Field(default=1.0, alias="LIVE_EMPTY_BACKOFF_S")
    non_matching: NonMatchingPolicy = Field(default="leave_pending", alias="LIVE_NON_MATCHING")
    schema_path: str | None = Field(default=None, alias="LIVE_SCHEMA_PATH")

    ensure_replica_identity: bool = Field(default=True, alias="LIVE_ENSURE_REPLICA_IDENTITY")
    pghost: str | None = Field(default=None, alias="PGHOST")
    pgport: int = Field(default=5432, alias="PGPORT")
    pguser: str | None = Field(default=None, alias="PGUSER")
    pgpassword: str | None = Field(default=None, alias="PGPASSWORD")
    pgdatabase: str | None = Field(default=None, alias="PGDATABASE")
    connect_timeout_s: int = Field(default=5, alias="CONNECT_TIMEOUT_S")

    @field_validator("client_id", "namespace")
    @classmethod
    def _validate_name(cls, value: str) -> str:
        if not _NAME_PATTERN.fullmatch(value):
            raise ValueError(
                "LIVE_CLIENT_ID and LIVE_NAMESPACE must only contain ASCII letters, numbers, "
                "'_', '.', ':' and '-'"
            )
        return value

    @field_validator("read_count")
    @classmethod
    def _validate_read_count(cls, value: int) -> int:
        if value < 1 or value > 1000:
            raise ValueError("LIVE_READ_COUNT must be between 1 and 1000")
        return value

    @field_validator("block_ms")
    @classmethod
    def _validate_block(cls, value: int) -> int:
        if value < 0:
            raise ValueError("LIVE_BLOCK_MS must be >= 0")
        return value

    @field_validator("empty_backoff_s")
    @classmethod
    def _validate_backoff(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("LIVE_EMPTY_BACKOFF_S must be > 0")
        return value

    @model_validator(mode="after")
    def _validate_postgres_for_replica_identity(self) -> Settings:
        if not self.ensure_replica_identity:
            return self
        missing = [
            alias
            for alias, value in (
                ("PGHOST", self.pghost),
                ("PGUSER", self.pguser),
                ("PGPASSWORD", self.pgpassword),
                ("PGDATABASE", self.pgdatabase),
            )
            if not value
        ]
        if missing:
            raise ValueError(
                f"{', '.join(missing)} required when LIVE_ENSURE_REPLICA_IDENTITY is enabled"
            )
        return self

    @property
    def postgres_conninfo(self) -> str:
        # Passed unchanged to psycopg by the replica-identity preparer; the password is quoted.
        return (
            f"host={self.pghost} port={self.pgport} user={self.pguser} "
            f"password={_sql_quote(self.pgpassword or '')} dbname={self.pgdatabase} "
            f"connect_timeout={self.connect_timeout_s}"
        )
