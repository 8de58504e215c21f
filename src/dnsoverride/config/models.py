"""Typed configuration models for each top-level config section."""

from __future__ import annotations

from typing import Any, Dict, Optional

from pydantic import BaseModel, Field


class ListenConfig(BaseModel):
    """Brief: UDP listener address.

    Inputs:
      - host: Bind address (default 127.0.0.1).
      - port: Bind port (default 5333).

    Outputs:
      - ListenConfig instance.
    """

    host: str = "127.0.0.1"
    port: int = Field(default=5333, ge=0, le=65535)

    class Config:
        extra = "forbid"


class UpstreamConfig(BaseModel):
    """Brief: The single upstream resolver used for unanswered queries."""

    host: str
    port: int = Field(default=53, ge=1, le=65535)

    class Config:
        extra = "forbid"


class OverrideStoreConfig(BaseModel):
    """Brief: Connection settings for the authoritative override store.

    Inputs:
      - backend: "mysql" (default) or "static".
      - url: Optional mysql:// URL; explicit fields override its parts.
      - host/port/user/password/database: Discrete connection settings.
      - table: Override table name.
      - pool_size: Connection pool size.
      - connect_timeout: Connect timeout in seconds.
      - records: Static backend records, name -> {type, value}.

    Outputs:
      - OverrideStoreConfig instance.
    """

    backend: str = "mysql"
    url: Optional[str] = None
    host: Optional[str] = None
    port: Optional[int] = Field(default=None, ge=1, le=65535)
    user: Optional[str] = None
    password: Optional[str] = None
    database: Optional[str] = None
    table: str = Field(default="dns-override", pattern=r"^[A-Za-z0-9_$-]+$")
    pool_size: int = Field(default=4, ge=1)
    connect_timeout: int = Field(default=5, ge=0)
    records: Dict[str, Dict[str, str]] = Field(default_factory=dict)

    class Config:
        extra = "forbid"


class CacheConfig(BaseModel):
    """Brief: Durable override cache snapshot location."""

    file: str = "./dns_cache.json"

    class Config:
        extra = "forbid"


class ResolverConfig(BaseModel):
    """Brief: Override resolver behaviour.

    Inputs:
      - mode: "cache_first" or "store_first".
      - ttl: TTL applied to records learned from the store.
      - max_alias_hops: Maximum CNAME records followed per question.

    Outputs:
      - ResolverConfig instance.
    """

    mode: str = Field(default="cache_first", pattern=r"^(cache_first|store_first)$")
    ttl: int = Field(default=3600, ge=0, le=0xFFFFFFFF)
    max_alias_hops: int = Field(default=8, ge=0, le=64)

    class Config:
        extra = "forbid"


def load_section(model_cls, raw: Any):
    """Brief: Validate one config section into its model.

    Inputs:
      - model_cls: Pydantic model class.
      - raw: Section mapping (None means defaults).

    Outputs:
      - Model instance.

    Raises:
      - ValueError: When the section fails validation.
    """
    try:
        return model_cls(**dict(raw or {}))
    except Exception as exc:
        raise ValueError(f"Invalid {model_cls.__name__}: {exc}") from exc


def section_dict(model: BaseModel) -> Dict[str, Any]:
    """Return a plain mapping for a model, on pydantic v1 or v2."""
    for attr in ("model_dump", "dict"):
        method = getattr(model, attr, None)
        if callable(method):
            return dict(method())
    return dict(model)  # pragma: no cover
