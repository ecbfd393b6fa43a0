# warpio_gateway/core/context.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
from dataclasses import dataclass
from typing import Optional

from ..db import UserRegistry
from ..services.user_service import UserService
from ..utils.config import Settings, settings
from ..utils.logger import get_logger
from .session import SessionRegistry
from .tokens import SessionTokens, resolve_session_secret
from .tools import ToolProvisioner, build_tool_catalog


@dataclass
class GatewayContext:
    config: Settings
    logger: any
    users: Optional[UserService] = None
    tokens: Optional[SessionTokens] = None
    provisioner: Optional[ToolProvisioner] = None
    sessions: Optional[SessionRegistry] = None

    def configure(self, config: Settings) -> "GatewayContext":
        """(Re)build every shared service from one settings object."""
        self.config = config
        self.users = UserService(UserRegistry(config.REGISTRY_PATH), home_root=config.HOME_ROOT)
        self.tokens = SessionTokens(
            resolve_session_secret(config.SESSION_SECRET),
            ttl_seconds=config.SESSION_TTL_SECONDS,
        )
        self.provisioner = ToolProvisioner(
            build_tool_catalog(config),
            install_command=config.TOOL_INSTALL_COMMAND,
            timeout=config.TOOL_INSTALL_TIMEOUT,
        )
        self.sessions = SessionRegistry()
        return self


context = GatewayContext(
    config=settings,
    logger=get_logger("warpio_gateway"),
)
