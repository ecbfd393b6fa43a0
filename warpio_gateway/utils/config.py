# warpio_gateway/utils/config.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
import os
from pathlib import Path
from typing import List

import yaml
from dotenv import load_dotenv
from pydantic_settings import BaseSettings

CONFIG_PATH = Path(__file__).parent.parent / "serviceconfig.yaml"

STATIC_TOOLS = [
    "adios-mcp",
    "ndp-mcp",
    "pandas-mcp",
    "compression-mcp",
    "arxiv-mcp",
    "plot-mcp",
    "lmod-mcp",
    "node-hardware-mcp",
]


def load_yaml_config(config_path: str | Path | None = None):
    target = Path(config_path) if config_path else CONFIG_PATH
    if target.exists():
        with open(target, "r", encoding="utf-8") as f:
            return yaml.safe_load(f) or {}
    return {}


class Settings(BaseSettings):
    APP_NAME: str = "Warpio Gateway"
    APP_VERSION: str = "0.1.0"
    ENV: str = "development"
    LOG_LEVEL: str = "INFO"
    LOG_DIR: str = "logs"

    SERVER_HOST: str = "127.0.0.1"
    SERVER_PORT: int = 3003
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:3003,http://localhost:5173"

    # Credential & session store
    REGISTRY_PATH: str = "storage/users.db"
    HOME_ROOT: str = "data/homes"
    SESSION_SECRET: str = ""
    SESSION_TTL_SECONDS: int = 24 * 60 * 60
    SESSION_COOKIE: str = "auth_token"
    COOKIE_SECURE: bool = False

    # Interactive engine
    TERMINAL_COMMAND: str = "warpio"
    TERMINAL_ARGS: str = "--debug"
    TERMINAL_NAME: str = "xterm-256color"
    TERMINAL_COLS: int = 80
    TERMINAL_ROWS: int = 24
    API_KEY_ENV: str = "GEMINI_API_KEY"
    DEFAULT_API_KEY: str = ""
    STARTUP_NOTICE_INTERVAL: float = 5.0

    # Tool provisioning
    TOOL_DISCOVERY: str = "live"
    DEFAULT_TOOLS: List[str] = STATIC_TOOLS
    MCP_SERVERS: str = ""
    TOOL_DISCOVERY_TIMEOUT: float = 10.0
    TOOL_INSTALL_COMMAND: str = "uvx iowarp-mcps {package} --help"
    TOOL_INSTALL_TIMEOUT: float = 120.0

    # File endpoints
    UPLOAD_MAX_BYTES: int = 100 * 1024 * 1024

    class Config:
        env_prefix = "WARPIO_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    @property
    def cors_origins(self) -> List[str]:
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def default_api_key(self) -> str:
        return self.DEFAULT_API_KEY or os.getenv(self.API_KEY_ENV, "")


def load_settings(config_path: str | Path | None = None, **overrides) -> Settings:
    load_dotenv(Settings.Config.env_file)
    yaml_config = load_yaml_config(config_path)
    section = yaml_config.get("gateway") or {}
    # Environment (.env included) wins over the yaml file; explicit overrides win over both.
    values = {k: v for k, v in section.items() if f"WARPIO_{k}" not in os.environ}
    values.update(overrides)
    return Settings(**values)


settings = load_settings()
