from __future__ import annotations

import os
from typing import Dict, Optional

import yaml
from pydantic import BaseModel, Field

DEFAULT_API_URL = "http://localhost:8080"


class ApiConfig(BaseModel):
    """Configuration for the dashboard REST API."""

    base_url: str = DEFAULT_API_URL
    timeout: Optional[float] = 30.0
    headers: Dict[str, str] = Field(default_factory=dict)


class StreamConfig(BaseModel):
    """Configuration for the live event stream."""

    path: str = "/api/events/live"
    read_timeout: Optional[float] = None


class FlowdeckConfig(BaseModel):
    """Top-level configuration model."""

    api: ApiConfig = Field(default_factory=ApiConfig)
    stream: StreamConfig = Field(default_factory=StreamConfig)


def load_config(path: Optional[str] = None) -> FlowdeckConfig:
    """Load configuration from YAML file.

    Args:
        path: Optional path to config file. Falls back to FLOWDECK_CONFIG env
            variable or 'flowdeck.yaml' in the current directory.
    """

    config_path = path or os.getenv("FLOWDECK_CONFIG", "flowdeck.yaml")
    if os.path.exists(config_path):
        with open(config_path) as f:
            data = yaml.safe_load(f) or {}
        config = FlowdeckConfig(**data)
    else:
        config = FlowdeckConfig()

    env_api_url = os.getenv("FLOWDECK_API_URL") or os.getenv("VITE_API_URL")
    if env_api_url:
        config.api.base_url = env_api_url
    return config
