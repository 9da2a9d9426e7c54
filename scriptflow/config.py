from __future__ import annotations

import os
from typing import Optional

import yaml
from pydantic import BaseModel, Field


class StorageConfig(BaseModel):
    """Where pipeline definitions are persisted."""

    database_url: Optional[str] = None
    data_path: Optional[str] = None
    connect_timeout: float = 5.0


class WebhookConfig(BaseModel):
    """Webhook authentication policy."""

    require_hmac: bool = False
    timestamp_tolerance_ms: int = 5 * 60 * 1000


class EngineConfig(BaseModel):
    enabled: bool = True


class LLMConfig(BaseModel):
    """Settings for the LLM-backed text transformer."""

    api_key: Optional[str] = None
    model: str = "gpt-4o-mini"
    base_url: Optional[str] = None


class FetchConfig(BaseModel):
    """Limits applied when a run pulls its content from a URL."""

    timeout: float = 15.0
    max_bytes: int = 2 * 1024 * 1024


class ScriptflowConfig(BaseModel):
    """Top-level configuration model."""

    storage: StorageConfig = Field(default_factory=StorageConfig)
    webhook: WebhookConfig = Field(default_factory=WebhookConfig)
    engine: EngineConfig = Field(default_factory=EngineConfig)
    llm: LLMConfig = Field(default_factory=LLMConfig)
    fetch: FetchConfig = Field(default_factory=FetchConfig)


def _env_flag(value: str) -> bool:
    return value.strip().lower() in {"1", "true", "yes", "on"}


def load_config(path: Optional[str] = None) -> ScriptflowConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to SCRIPTFLOW_CONFIG env
            variable or 'scriptflow.yaml' in the current directory.
    """

    config_path = path or os.getenv("SCRIPTFLOW_CONFIG", "scriptflow.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = ScriptflowConfig(**data)
    else:
        config = ScriptflowConfig()

    env_db_url = os.getenv("SCRIPTFLOW_DATABASE_URL") or os.getenv("DATABASE_URL")
    if env_db_url:
        config.storage.database_url = env_db_url
    env_data_path = os.getenv("SCRIPTFLOW_DATA_PATH")
    if env_data_path:
        config.storage.data_path = env_data_path
    if os.getenv("WEBHOOK_REQUIRE_HMAC"):
        config.webhook.require_hmac = os.getenv("WEBHOOK_REQUIRE_HMAC") == "1"
    if os.getenv("SCRIPTFLOW_ENGINE_ENABLED"):
        config.engine.enabled = _env_flag(os.environ["SCRIPTFLOW_ENGINE_ENABLED"])
    env_api_key = os.getenv("OPENAI_API_KEY")
    if env_api_key and env_api_key.strip():
        config.llm.api_key = env_api_key.strip()
    env_model = os.getenv("SCRIPTFLOW_LLM_MODEL")
    if env_model:
        config.llm.model = env_model
    return config
