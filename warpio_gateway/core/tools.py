# warpio_gateway/core/tools.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
import asyncio
import os
import shlex
from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Iterable, List, Optional

from ..utils.logger import get_logger

logger = get_logger("warpio_gateway.tools")

TOOL_SUFFIX = "-mcp"

ProgressSink = Callable[[str], Awaitable[None]]


def normalize_tool_id(name: str) -> str:
    name = name.strip()
    return name if name.endswith(TOOL_SUFFIX) else f"{name}{TOOL_SUFFIX}"


def parse_tool_list(raw: str) -> List[str]:
    return [normalize_tool_id(item) for item in raw.split(",") if item.strip()]


class ToolCatalog(ABC):
    """Answers which auxiliary tools a session should have installed."""

    @abstractmethod
    async def discover(self) -> List[str]:
        raise NotImplementedError


class StaticToolCatalog(ToolCatalog):
    def __init__(self, tools: Iterable[str]):
        self.tools = [t for t in tools if t]

    async def discover(self) -> List[str]:
        return list(self.tools)


class LiveToolCatalog(ToolCatalog):
    """Ask the engine for its declared tool list; fall back to a static catalog."""

    def __init__(self, command: List[str], fallback: ToolCatalog, timeout: float = 10.0):
        self.command = command
        self.fallback = fallback
        self.timeout = timeout

    async def discover(self) -> List[str]:
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.info("Tool discovery unavailable (%s), using fallback list", exc)
            return await self.fallback.discover()

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
        except asyncio.TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning("Tool discovery timed out after %.1fs, using fallback list", self.timeout)
            return await self.fallback.discover()
        except asyncio.CancelledError:
            proc.kill()
            raise

        tools = [line.strip() for line in stdout.decode("utf-8", "replace").splitlines() if line.strip()]
        if proc.returncode != 0 or not tools:
            logger.info("Tool discovery returned nothing (rc=%s), using fallback list", proc.returncode)
            return await self.fallback.discover()
        return tools


def build_tool_catalog(config) -> ToolCatalog:
    """Operator allow-list wins; otherwise live or static discovery as configured."""
    if config.MCP_SERVERS.strip():
        return StaticToolCatalog(parse_tool_list(config.MCP_SERVERS))
    static = StaticToolCatalog(config.DEFAULT_TOOLS)
    if config.TOOL_DISCOVERY.strip().lower() == "static":
        return static
    command = [config.TERMINAL_COMMAND, "--list-mcp-servers"]
    return LiveToolCatalog(command, fallback=static, timeout=config.TOOL_DISCOVERY_TIMEOUT)


class ToolProvisioner:
    def __init__(
        self,
        catalog: ToolCatalog,
        install_command: str = "uvx iowarp-mcps {package} --help",
        timeout: float = 120.0,
        cwd: Optional[str] = None,
    ):
        self.catalog = catalog
        self.install_command = install_command
        self.timeout = timeout
        self.cwd = cwd

    async def discover_available_tools(self) -> List[str]:
        try:
            return await self.catalog.discover()
        except Exception:
            logger.exception("Tool discovery failed")
            return []

    def _install_argv(self, tool: str) -> List[str]:
        package = tool[: -len(TOOL_SUFFIX)] if tool.endswith(TOOL_SUFFIX) else tool
        return shlex.split(self.install_command.format(package=package, tool=tool))

    async def install(self, tool: str) -> bool:
        """Run the installer for one tool; True only on a clean exit within the timeout."""
        argv = self._install_argv(tool)
        cwd = self.cwd or os.getenv("HOME") or None
        try:
            proc = await asyncio.create_subprocess_exec(
                *argv,
                cwd=cwd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
            )
        except OSError as exc:
            logger.warning("Installer for %s could not start: %s", tool, exc)
            return False

        try:
            returncode = await asyncio.wait_for(proc.wait(), timeout=self.timeout)
        except asyncio.TimeoutError:
            logger.warning("Installer for %s timed out after %.1fs", tool, self.timeout)
            proc.kill()
            await proc.wait()
            return False
        except asyncio.CancelledError:
            proc.kill()
            raise
        return returncode == 0

    async def provision(self, tools: Iterable[str], progress: ProgressSink) -> None:
        tools = list(tools)
        if not tools:
            return
        await progress("\r\nInstalling MCP servers...\r\n")
        for tool in tools:
            await progress(f"Installing {tool}...\r\n")
            try:
                ok = await self.install(tool)
            except Exception:
                logger.exception("Installer for %s failed", tool)
                ok = False
            if ok:
                await progress(f"{tool} installed\r\n")
            else:
                await progress(f"{tool} install attempted (may be slow)\r\n")
        await progress("MCP server installation complete\r\n\r\n")
