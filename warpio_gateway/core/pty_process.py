# warpio_gateway/core/pty_process.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
import asyncio
import errno
import fcntl
import os
import signal
import struct
import subprocess
import termios
from typing import Dict, List, Optional

from ..utils.logger import get_logger

logger = get_logger("warpio_gateway.pty")

READ_CHUNK_SIZE = 4096


def set_terminal_size(fd: int, cols: int, rows: int) -> None:
    safe_cols = max(1, int(cols))
    safe_rows = max(1, int(rows))
    fcntl.ioctl(fd, termios.TIOCSWINSZ, struct.pack("HHHH", safe_rows, safe_cols, 0, 0))


class PtyProcess:
    """
    One child process attached to a pseudo-terminal.

    Output is read from the master side by an event-loop reader and handed to
    consumers through ``read()``; ``None`` marks end of output.
    """

    def __init__(self, proc: subprocess.Popen, master_fd: int):
        self.proc = proc
        self.master_fd = master_fd
        self._loop = asyncio.get_running_loop()
        self._output: asyncio.Queue = asyncio.Queue()
        self._closed = False
        os.set_blocking(master_fd, False)
        self._loop.add_reader(master_fd, self._on_readable)

    @classmethod
    async def spawn(
        cls,
        argv: List[str],
        *,
        cwd: str,
        env: Dict[str, str],
        cols: int = 80,
        rows: int = 24,
    ) -> "PtyProcess":
        master_fd, slave_fd = os.openpty()
        try:
            set_terminal_size(slave_fd, cols, rows)
            proc = subprocess.Popen(
                argv,
                stdin=slave_fd,
                stdout=slave_fd,
                stderr=slave_fd,
                cwd=cwd,
                env=env,
                close_fds=True,
                start_new_session=True,
            )
        except Exception:
            os.close(master_fd)
            os.close(slave_fd)
            raise
        os.close(slave_fd)
        logger.info("Spawned %s (pid=%s, cwd=%s)", argv[0], proc.pid, cwd)
        return cls(proc, master_fd)

    @property
    def pid(self) -> int:
        return self.proc.pid

    def _on_readable(self):
        try:
            data = os.read(self.master_fd, READ_CHUNK_SIZE)
        except BlockingIOError:
            return
        except OSError as exc:
            # EIO is how Linux reports that every slave handle is gone.
            if exc.errno not in (errno.EIO, errno.EBADF):
                logger.warning("PTY read failed for pid=%s: %s", self.pid, exc)
            data = b""
        if data:
            self._output.put_nowait(data)
            return
        self._loop.remove_reader(self.master_fd)
        self._output.put_nowait(None)

    async def read(self) -> Optional[bytes]:
        return await self._output.get()

    async def write(self, data: bytes) -> None:
        view = memoryview(data)
        while view and not self._closed:
            try:
                written = os.write(self.master_fd, view)
            except BlockingIOError:
                await asyncio.sleep(0.01)
                continue
            except OSError as exc:
                logger.warning("PTY write failed for pid=%s: %s", self.pid, exc)
                return
            view = view[written:]

    def resize(self, cols: int, rows: int) -> None:
        if self._closed:
            return
        set_terminal_size(self.master_fd, cols, rows)
        try:
            os.killpg(self.proc.pid, signal.SIGWINCH)
        except ProcessLookupError:
            pass

    def is_alive(self) -> bool:
        return self.proc.poll() is None

    async def wait(self) -> int:
        return await asyncio.to_thread(self.proc.wait)

    def kill(self) -> None:
        """SIGKILL the whole process group and release the master side.

        The group is signalled even when the leader has already exited: its
        descendants keep the process group alive.
        """
        try:
            os.killpg(self.proc.pid, signal.SIGKILL)
        except ProcessLookupError:
            pass
        except PermissionError:
            if self.is_alive():
                self.proc.kill()
        if self.proc.returncode is None:
            # Reap in the background so the killed child does not linger as a zombie.
            self._loop.run_in_executor(None, self.proc.wait)
        self.close()

    def close(self) -> None:
        if self._closed:
            return
        self._closed = True
        self._loop.remove_reader(self.master_fd)
        os.close(self.master_fd)
