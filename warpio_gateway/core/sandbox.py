# warpio_gateway/core/sandbox.py
# Copyright (c) 2026 Monolink Systems
# Licensed under AGPLv3
from pathlib import Path
from typing import Optional, Union

from ..utils.logger import get_logger

logger = get_logger("warpio_gateway.sandbox")


class AccessDenied(PermissionError):
    """Requested path falls outside the user's sandbox."""


def resolve(sandbox_root: Union[str, Path], requested: Optional[str] = None) -> Path:
    """
    Safely convert a user-relative path to an absolute one,
    ensuring that the sandbox root cannot be exceeded.

    An empty or missing request resolves to the root itself. Symlinks are
    followed before the containment check, so a link pointing outside the
    sandbox is refused as well.
    """
    root = Path(sandbox_root).resolve()
    if not requested:
        return root
    if "\x00" in requested:
        logger.warning("Sandbox violation: NUL byte in path under %s", root)
        raise AccessDenied("Access denied")

    try:
        path = (root / requested).resolve()
    except (RuntimeError, OSError) as exc:
        # Symlink loops surface as RuntimeError or ELOOP depending on the interpreter.
        logger.warning("Sandbox violation: %r cannot be resolved under %s: %s", requested, root, exc)
        raise AccessDenied("Access denied") from exc
    if path != root and root not in path.parents:
        logger.warning("Sandbox violation: %r escapes %s", requested, root)
        raise AccessDenied("Access denied")
    return path
