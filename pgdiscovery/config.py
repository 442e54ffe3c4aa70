"""Configuration models for the discovery providers.

Raw provider configs arrive as plain mappings (already parsed from YAML or
JSON by the host application) and are validated here with pydantic.
"""

from __future__ import annotations

import os
from typing import Any, Literal

import psycopg2
from psycopg2.extensions import parse_dsn
from pydantic import BaseModel, Field, ValidationError, field_validator

from pgdiscovery.errors import DiscoveryConfigError
from pgdiscovery.validators import is_env_name, is_regular_file, parse_ttl


class Label(BaseModel):
    name: str
    value: str = ""


class Env(BaseModel):
    name: str
    value: str = ""

    @field_validator("name")
    @classmethod
    def _env_name(cls, v: str) -> str:
        if not is_env_name(v):
            raise ValueError(f"invalid environment variable name {v!r}")
        return v


class ClusterFilterConfig(BaseModel):
    """Cluster matching rule; ``db=None`` means every database."""

    name: str = ".*"
    db: str | None = None
    exclude_name: str | None = None
    exclude_db: str | None = None


def labels_to_dict(labels: list[Label] | None) -> dict[str, str]:
    return {label.name: label.value for label in labels or []}


class YandexConfig(BaseModel):
    authorized_key: str
    folder_id: str
    user: str = ""
    password: str = ""
    password_from_env: str = ""
    refresh_interval: int = Field(default=1, ge=1)  # minutes
    clusters: list[ClusterFilterConfig] = Field(default_factory=list)
    target_labels: list[Label] | None = None

    def resolve_password(self) -> None:
        if self.password_from_env:
            self.password = os.environ.get(self.password_from_env, "")


class PostgresConfig(BaseModel):
    conninfo: str
    db: str | None = None
    exclude_db: str | None = None
    password_from_env: str | None = None
    refresh_interval: int = Field(default=10, ge=0)  # seconds, 0 means default
    target_labels: list[Label] | None = None

    @field_validator("conninfo")
    @classmethod
    def _conninfo(cls, v: str) -> str:
        try:
            parse_dsn(v)
        except psycopg2.Error as exc:
            raise ValueError(f"invalid conninfo: {exc}") from exc
        return v

    @field_validator("password_from_env")
    @classmethod
    def _env_name(cls, v: str | None) -> str | None:
        if v and not is_env_name(v):
            raise ValueError(f"invalid environment variable name {v!r}")
        return v


class ScriptConfig(BaseModel):
    script: str
    output_format: Literal["plain", ""] = "plain"
    execution_timeout: str | int
    refresh_interval: str | int
    args: list[str] = Field(default_factory=list)
    env: list[Env] = Field(default_factory=list)
    labels: list[Label] | None = None
    target_labels: list[Label] | None = None
    debug: bool = False

    @field_validator("script")
    @classmethod
    def _regular_file(cls, v: str) -> str:
        if not is_regular_file(v):
            raise ValueError(f"script {v!r} is not a regular file")
        return os.path.normpath(v)

    @field_validator("execution_timeout", "refresh_interval")
    @classmethod
    def _ttl(cls, v: str | int) -> str | int:
        parse_ttl(v)
        return v

    @property
    def execution_timeout_seconds(self) -> float:
        return parse_ttl(self.execution_timeout)

    @property
    def refresh_interval_seconds(self) -> float:
        return parse_ttl(self.refresh_interval)


def parse_config(model: type[BaseModel], raw: Any) -> Any:
    """Validate *raw* into *model*, raising :class:`DiscoveryConfigError`."""
    if isinstance(raw, model):
        return raw
    try:
        return model.model_validate(raw)
    except ValidationError as exc:
        raise DiscoveryConfigError(f"Invalid {model.__name__}: {exc}") from exc


def parse_config_list(model: type[BaseModel], raw: Any) -> list[Any]:
    """Validate a list of *model* configs (a single mapping is accepted too)."""
    if raw is None:
        raise DiscoveryConfigError(f"Missing {model.__name__} list")
    if isinstance(raw, (dict, model)):
        raw = [raw]
    if not isinstance(raw, (list, tuple)):
        raise DiscoveryConfigError(f"Expected a list of {model.__name__}, got {type(raw).__name__}")
    return [parse_config(model, item) for item in raw]
