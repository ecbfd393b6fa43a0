# warpio_gateway/core/session.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
import asyncio
import codecs
import os
import shlex
import subprocess
import uuid
from abc import ABC, abstractmethod
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional

from ..models.user import SessionClaims
from ..utils.logger import get_logger
from .pty_process import PtyProcess
from .tokens import SessionTokens
from .tools import ToolProvisioner

logger = get_logger("warpio_gateway.session")

MAX_TERMINAL_DIMENSION = 1000
EXIT_DRAIN_SECONDS = 1.0
EXIT_DRAIN_IDLE_SECONDS = 0.2

Spawner = Callable[..., Awaitable[Any]]


class SessionState(str, Enum):
    CONNECTED = "connected"
    AUTHENTICATING = "authenticating"
    PROVISIONING = "provisioning"
    ACTIVE = "active"
    TERMINATED = "terminated"


class Transport(ABC):
    """Bidirectional event channel to one client."""

    @abstractmethod
    async def send(self, event: Dict[str, Any]) -> None:
        raise NotImplementedError

    @abstractmethod
    async def receive(self) -> Optional[Dict[str, Any]]:
        """Next client event, or None once the client has gone away."""
        raise NotImplementedError


def build_process_env(claims: SessionClaims, config) -> Dict[str, str]:
    env = dict(os.environ)
    env["TERM"] = config.TERMINAL_NAME
    env["COLORTERM"] = "truecolor"
    api_key = claims.api_key or config.default_api_key
    if api_key:
        env[config.API_KEY_ENV] = api_key
    return env


def build_process_argv(config) -> List[str]:
    return [config.TERMINAL_COMMAND, *shlex.split(config.TERMINAL_ARGS or "")]


class TerminalSession:
    """
    Owns one client connection and at most one interactive process.

    Two pumps move bytes: the inbound pump (client -> process, also handling
    auth and resize events) and the output pump (process -> client). Either
    side finishing ends the session; teardown kills the process.
    """

    def __init__(
        self,
        transport: Transport,
        *,
        tokens: SessionTokens,
        provisioner: ToolProvisioner,
        config,
        spawner: Optional[Spawner] = None,
        connection_id: Optional[str] = None,
    ):
        self.connection_id = connection_id or uuid.uuid4().hex
        self.transport = transport
        self.tokens = tokens
        self.provisioner = provisioner
        self.config = config
        self.spawner = spawner or PtyProcess.spawn

        self.state = SessionState.CONNECTED
        self.claims: Optional[SessionClaims] = None
        self.process = None
        self.cols = config.TERMINAL_COLS
        self.rows = config.TERMINAL_ROWS

        self._send_lock = asyncio.Lock()
        self._finished = asyncio.Event()
        self._startup_task: Optional[asyncio.Task] = None
        self._output_task: Optional[asyncio.Task] = None
        self._notice_task: Optional[asyncio.Task] = None

    @property
    def username(self) -> Optional[str]:
        return self.claims.username if self.claims else None

    async def _send(self, event: Dict[str, Any]) -> None:
        async with self._send_lock:
            await self.transport.send(event)

    async def _progress(self, line: str) -> None:
        await self._send({"type": "progress", "data": line})

    # --- Lifecycle ---
    async def run(self) -> None:
        logger.info(f"[{self.connection_id}] terminal client connected")
        inbound = asyncio.create_task(self._pump_inbound(), name=f"terminal-{self.connection_id}-inbound")
        finished = asyncio.create_task(self._finished.wait())
        try:
            await asyncio.wait({inbound, finished}, return_when=asyncio.FIRST_COMPLETED)
        finally:
            inbound.cancel()
            finished.cancel()
            await self.teardown()
        if inbound.done() and not inbound.cancelled() and inbound.exception():
            logger.error(f"[{self.connection_id}] inbound pump failed", exc_info=inbound.exception())

    async def teardown(self) -> None:
        if self.state is SessionState.TERMINATED and self._finished.is_set():
            return
        self.state = SessionState.TERMINATED
        self._finished.set()

        if self.process is not None:
            if self.process.is_alive():
                logger.info(f"[{self.connection_id}] killing process pid={self.process.pid}")
            self.process.kill()

        current = asyncio.current_task()
        pending = [
            t for t in (self._startup_task, self._output_task, self._notice_task)
            if t is not None and t is not current
        ]
        for task in pending:
            if not task.done():
                task.cancel()
        results = await asyncio.gather(*pending, return_exceptions=True)
        for result in results:
            if isinstance(result, Exception):
                logger.error(f"[{self.connection_id}] session task failed", exc_info=result)
        logger.info(f"[{self.connection_id}] terminal session closed (user={self.username})")

    # --- Client -> process ---
    async def _pump_inbound(self) -> None:
        while not self._finished.is_set():
            message = await self.transport.receive()
            if message is None:
                logger.info(f"[{self.connection_id}] terminal client disconnected")
                return
            await self.handle_message(message)

    async def handle_message(self, message: Dict[str, Any]) -> None:
        kind = message.get("type")
        if kind == "auth":
            await self._on_auth(message)
        elif kind == "data":
            await self._on_data(message)
        elif kind == "resize":
            self._on_resize(message)
        else:
            logger.debug(f"[{self.connection_id}] ignoring event {kind!r}")

    async def _on_auth(self, message: Dict[str, Any]) -> None:
        if self.state is not SessionState.CONNECTED:
            logger.info(f"[{self.connection_id}] auth ignored in state {self.state.value}")
            return
        self.state = SessionState.AUTHENTICATING
        claims = self.tokens.verify(message.get("token"))
        if not claims:
            self.state = SessionState.CONNECTED
            logger.warning(f"[{self.connection_id}] terminal authentication failed")
            await self._send({"type": "auth-failed", "reason": "Invalid token"})
            return

        self.claims = claims
        self.state = SessionState.PROVISIONING
        logger.info(f"[{self.connection_id}] authenticated as {claims.username}")
        await self._send({"type": "auth-success", "user": claims.public()})
        self._startup_task = asyncio.create_task(
            self._provision_and_spawn(), name=f"terminal-{self.connection_id}-startup"
        )

    async def _on_data(self, message: Dict[str, Any]) -> None:
        if self.state is not SessionState.ACTIVE or self.process is None:
            return
        data = message.get("data")
        if isinstance(data, str):
            data = data.encode("utf-8")
        if not isinstance(data, (bytes, bytearray)) or not data:
            return
        await self.process.write(bytes(data))

    def _on_resize(self, message: Dict[str, Any]) -> None:
        try:
            cols = int(message.get("cols"))
            rows = int(message.get("rows"))
        except (TypeError, ValueError):
            return
        if not (0 < cols <= MAX_TERMINAL_DIMENSION and 0 < rows <= MAX_TERMINAL_DIMENSION):
            return
        self.cols, self.rows = cols, rows
        if self.process is not None and self.state is SessionState.ACTIVE:
            try:
                self.process.resize(cols, rows)
            except OSError as exc:
                logger.warning(f"[{self.connection_id}] resize failed: {exc}")

    # --- Startup ---
    async def _provision_and_spawn(self) -> None:
        tools = await self.provisioner.discover_available_tools()
        logger.info(f"[{self.connection_id}] provisioning tools: {tools}")
        await self.provisioner.provision(tools, self._progress)

        name = self.config.TERMINAL_COMMAND
        await self._progress(f"Starting {name} (this may take 30+ seconds)...\r\n")
        await self._progress("Initializing MCP servers, please wait...\r\n\r\n")

        argv = build_process_argv(self.config)
        try:
            self.process = await self.spawner(
                argv,
                cwd=self.claims.working_directory,
                env=build_process_env(self.claims, self.config),
                cols=self.cols,
                rows=self.rows,
            )
        except (OSError, subprocess.SubprocessError) as exc:
            self.state = SessionState.ACTIVE
            logger.error(f"[{self.connection_id}] failed to start {name}: {exc}")
            await self._send({"type": "error", "message": f"Failed to start {name}"})
            return

        self.state = SessionState.ACTIVE
        await self._send({"type": "ready"})
        self._output_task = asyncio.create_task(
            self._pump_output(), name=f"terminal-{self.connection_id}-output"
        )
        if self.config.STARTUP_NOTICE_INTERVAL > 0:
            self._notice_task = asyncio.create_task(self._startup_notices())

    async def _startup_notices(self) -> None:
        while True:
            await asyncio.sleep(self.config.STARTUP_NOTICE_INTERVAL)
            await self._progress(f"Still starting {self.config.TERMINAL_COMMAND}...\r\n")

    def _stop_notices(self) -> None:
        if self._notice_task is not None and not self._notice_task.done():
            self._notice_task.cancel()

    # --- Process -> client ---
    async def _forward(self, decoder, chunk: bytes) -> None:
        self._stop_notices()
        text = decoder.decode(chunk)
        if text:
            await self._send({"type": "data", "data": text})

    async def _drain_output(self, decoder) -> None:
        """Forward output still queued after the child exited, for a bounded time."""
        loop = asyncio.get_running_loop()
        deadline = loop.time() + EXIT_DRAIN_SECONDS
        while True:
            remaining = deadline - loop.time()
            if remaining <= 0:
                return
            try:
                chunk = await asyncio.wait_for(self.process.read(), timeout=min(remaining, EXIT_DRAIN_IDLE_SECONDS))
            except asyncio.TimeoutError:
                return
            if chunk is None:
                return
            await self._forward(decoder, chunk)

    async def _pump_output(self) -> None:
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        # Descendants may keep the terminal open after the child exits: its exit ends the session.
        exit_task = asyncio.create_task(self.process.wait())
        read_task = None
        try:
            while True:
                read_task = asyncio.create_task(self.process.read())
                done, _ = await asyncio.wait({read_task, exit_task}, return_when=asyncio.FIRST_COMPLETED)
                if read_task in done:
                    chunk = read_task.result()
                    if chunk is None:
                        break
                    await self._forward(decoder, chunk)
                    continue
                read_task.cancel()
                await self._drain_output(decoder)
                break
            tail = decoder.decode(b"", final=True)
            if tail:
                await self._send({"type": "data", "data": tail})

            self._stop_notices()
            code = await exit_task
        finally:
            for task in (read_task, exit_task):
                if task is not None and not task.done():
                    task.cancel()
        logger.info(f"[{self.connection_id}] process exited with code {code}")
        await self._send({"type": "exit", "code": code})
        self._finished.set()


class SessionRegistry:
    """
    Live sessions, kept for shutdown and status reporting only.
    Mutated from the event loop thread alone; sessions never look each other up.
    """

    def __init__(self):
        self._sessions: Dict[str, TerminalSession] = {}

    def add(self, session: TerminalSession) -> None:
        self._sessions[session.connection_id] = session

    def remove(self, session: TerminalSession) -> None:
        self._sessions.pop(session.connection_id, None)

    def __len__(self) -> int:
        return len(self._sessions)

    def snapshot(self) -> List[Dict[str, Any]]:
        return [
            {"connection_id": s.connection_id, "username": s.username, "state": s.state.value}
            for s in self._sessions.values()
        ]

    async def shutdown(self) -> None:
        sessions = list(self._sessions.values())
        if sessions:
            logger.info(f"Tearing down {len(sessions)} terminal sessions")
        await asyncio.gather(*(s.teardown() for s in sessions), return_exceptions=True)
        self._sessions.clear()
