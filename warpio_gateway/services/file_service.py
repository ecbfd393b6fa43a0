# warpio_gateway/services/file_service.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
import asyncio
import os
import shutil
from datetime import datetime, timezone
from pathlib import Path
from typing import BinaryIO, Dict, List, Optional

from ..core.sandbox import AccessDenied, resolve
from ..utils.logger import get_logger

logger = get_logger("warpio_gateway.files")

BINARY_EXTENSIONS = {
    ".jpg", ".jpeg", ".png", ".gif", ".pdf", ".zip", ".tar", ".gz",
    ".exe", ".bin", ".so", ".dll",
}
BINARY_SNIFF_BYTES = 1024
UPLOAD_CHUNK_SIZE = 1024 * 1024


class UploadTooLargeError(ValueError):
    pass


def _iso_mtime(stat_result) -> str:
    return datetime.fromtimestamp(stat_result.st_mtime, tz=timezone.utc).isoformat()


def is_likely_binary(path: Path) -> bool:
    try:
        with open(path, "rb") as fh:
            sample = fh.read(BINARY_SNIFF_BYTES)
    except OSError:
        return False
    if b"\x00" in sample:
        return True
    return path.suffix.lower() in BINARY_EXTENSIONS


class SandboxFileService:
    """
    File operations confined to one user's home directory.
    Every public method routes its path argument through the sandbox resolver.
    """

    def __init__(self, root_path: str, max_upload_bytes: int = 100 * 1024 * 1024):
        self.root_path = Path(root_path).resolve()
        self.max_upload_bytes = max_upload_bytes

    def _resolve_path(self, relative_path: Optional[str]) -> Path:
        return resolve(self.root_path, relative_path)

    def _relative(self, path: Path) -> str:
        return os.path.relpath(path, self.root_path)

    # --- Working with directories ---
    async def list_dir(self, relative_path: Optional[str] = None) -> Dict:
        path = self._resolve_path(relative_path)
        if not path.exists():
            raise FileNotFoundError(f"{relative_path} does not exist")
        if not path.is_dir():
            raise NotADirectoryError(f"{relative_path} is not a directory")
        items = await asyncio.to_thread(self._scan_dir, path)
        return {"path": self._relative(path), "items": items}

    def _scan_dir(self, path: Path) -> List[Dict]:
        items = []
        for entry in os.scandir(path):
            if entry.name.startswith("."):
                continue
            try:
                stat_result = entry.stat()
            except OSError:
                # Dangling symlink or entry removed mid-scan
                continue
            is_dir = entry.is_dir()
            items.append({
                "name": entry.name,
                "type": "directory" if is_dir else "file",
                "size": None if is_dir else stat_result.st_size,
                "modified": _iso_mtime(stat_result),
                "relativePath": self._relative(Path(entry.path)),
            })
        items.sort(key=lambda item: (item["type"] != "directory", item["name"]))
        return items

    # --- Working with files ---
    async def read_file(self, relative_path: str) -> Dict:
        path = self._resolve_path(relative_path)
        if not path.exists():
            raise FileNotFoundError(f"{relative_path} does not exist")
        if path.is_dir():
            raise IsADirectoryError(f"{relative_path} is a directory, not a file")
        stat_result = path.stat()
        meta = {
            "path": relative_path,
            "size": stat_result.st_size,
            "modified": _iso_mtime(stat_result),
        }
        if await asyncio.to_thread(is_likely_binary, path):
            return {**meta, "type": "binary"}
        content = await asyncio.to_thread(path.read_text, encoding="utf-8", errors="replace")
        return {**meta, "type": "text", "content": content}

    async def write_file(self, relative_path: str, content: str) -> Dict:
        path = self._resolve_path(relative_path)
        if path == self.root_path or path.is_dir():
            raise IsADirectoryError(f"{relative_path} is a directory, not a file")
        path.parent.mkdir(parents=True, exist_ok=True)
        await asyncio.to_thread(path.write_text, content, encoding="utf-8")
        logger.info(f"File written: {path}")
        stat_result = path.stat()
        return {"path": relative_path, "size": stat_result.st_size, "modified": _iso_mtime(stat_result)}

    async def save_upload(self, relative_path: str, source: BinaryIO) -> Dict:
        path = self._resolve_path(relative_path)
        if path == self.root_path or path.is_dir():
            raise IsADirectoryError(f"{relative_path} is a directory, not a file")
        path.parent.mkdir(parents=True, exist_ok=True)
        try:
            written = await asyncio.to_thread(self._copy_capped, source, path)
        except UploadTooLargeError:
            path.unlink(missing_ok=True)
            raise
        logger.info(f"File uploaded: {path} ({written} bytes)")
        stat_result = path.stat()
        return {"path": relative_path, "size": stat_result.st_size, "modified": _iso_mtime(stat_result)}

    def _copy_capped(self, source: BinaryIO, target: Path) -> int:
        written = 0
        with open(target, "wb") as out:
            while True:
                chunk = source.read(UPLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                written += len(chunk)
                if written > self.max_upload_bytes:
                    raise UploadTooLargeError(f"Upload exceeds {self.max_upload_bytes} bytes")
                out.write(chunk)
        return written

    async def delete(self, relative_path: str) -> Dict:
        path = self._resolve_path(relative_path)
        if path == self.root_path:
            logger.warning("Refused to delete sandbox root %s", self.root_path)
            raise AccessDenied("Access denied")
        if not path.exists():
            raise FileNotFoundError(f"{relative_path} does not exist")
        if path.is_dir():
            await asyncio.to_thread(shutil.rmtree, path)
            logger.info(f"Directory deleted: {path}")
        else:
            await asyncio.to_thread(path.unlink)
            logger.info(f"File deleted: {path}")
        return {"path": relative_path}
