"""
Configuration loading and validation.

Loads chatsub configuration from a YAML file. The Redis URL may be overridden
through an environment variable so credentials stay out of config files.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, Field, field_validator


class RedisConfig(BaseModel):
    url: str = "redis://localhost:6379/0"
    url_env: str = "CHATSUB_REDIS_URL"

    @property
    def resolved_url(self) -> str:
        return os.environ.get(self.url_env) or self.url


class KeysConfig(BaseModel):
    users_key: str = "users"
    topics_key: str = "channels"
    user_topics_format: str = "user:{identity}:channels"

    @field_validator("user_topics_format")
    @classmethod
    def _has_identity_field(cls, value: str) -> str:
        if "{identity}" not in value:
            raise ValueError("user_topics_format must contain '{identity}'")
        return value

    def user_topics(self, identity: str) -> str:
        return self.user_topics_format.format(identity=identity)


class SessionConfig(BaseModel):
    queue_size: int = Field(default=100, ge=0)


class LoggingConfig(BaseModel):
    level: str = "info"
    format: Literal["json", "text"] = "text"


class ChatConfig(BaseModel):
    redis: RedisConfig = Field(default_factory=RedisConfig)
    keys: KeysConfig = Field(default_factory=KeysConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)


def load_config(path: str | Path) -> ChatConfig:
    """Load and validate chatsub configuration from a YAML file."""
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path) as f:
        raw = yaml.safe_load(f) or {}

    return ChatConfig.model_validate(raw)
