"""Tests for configuration loading."""

import pytest
import yaml
from pydantic import ValidationError

from chatsub.config import ChatConfig, KeysConfig, load_config


def test_load_config_from_yaml(tmp_path):
    config_data = {
        "redis": {"url": "redis://cache:6379/2"},
        "keys": {"users_key": "chat:users", "user_topics_format": "chat:{identity}:topics"},
        "session": {"queue_size": 10},
    }
    path = tmp_path / "config.yaml"
    path.write_text(yaml.dump(config_data))

    cfg = load_config(path)
    assert cfg.redis.url == "redis://cache:6379/2"
    assert cfg.keys.users_key == "chat:users"
    assert cfg.keys.user_topics("alice") == "chat:alice:topics"
    assert cfg.session.queue_size == 10


def test_load_config_defaults():
    cfg = ChatConfig()
    assert cfg.redis.url == "redis://localhost:6379/0"
    assert cfg.keys.users_key == "users"
    assert cfg.keys.topics_key == "channels"
    assert cfg.keys.user_topics("bob") == "user:bob:channels"
    assert cfg.logging.format == "text"


def test_load_empty_file(tmp_path):
    path = tmp_path / "empty.yaml"
    path.write_text("")
    assert load_config(path) == ChatConfig()


def test_load_config_file_not_found():
    with pytest.raises(FileNotFoundError):
        load_config("/nonexistent/path.yaml")


def test_redis_url_from_environment(monkeypatch):
    cfg = ChatConfig()
    monkeypatch.setenv("CHATSUB_REDIS_URL", "redis://other:6380/1")
    assert cfg.redis.resolved_url == "redis://other:6380/1"

    monkeypatch.delenv("CHATSUB_REDIS_URL")
    assert cfg.redis.resolved_url == "redis://localhost:6379/0"


def test_user_topics_format_requires_identity():
    with pytest.raises(ValidationError):
        KeysConfig(user_topics_format="user:channels")


def test_negative_queue_size_rejected():
    with pytest.raises(ValidationError):
        ChatConfig.model_validate({"session": {"queue_size": -1}})
