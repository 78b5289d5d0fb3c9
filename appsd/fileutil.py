"""Local configuration file helpers."""

from __future__ import annotations

import hashlib
import logging
import os
import shutil
import tempfile
import time
from pathlib import Path
from typing import Optional

from appsd.errors import FileIOFailure

logger = logging.getLogger(__name__)

CONF_SUFFIX = ".conf"


def conf_path(conf_dir: Path, app_name: str) -> Path:
    return conf_dir / f"{app_name}{CONF_SUFFIX}"


def check_file_exists(path: Path) -> bool:
    if not path.is_absolute():
        raise FileIOFailure(f"file path must be absolute path: {path}")
    try:
        path.stat()
    except FileNotFoundError:
        return False
    except OSError as e:
        raise FileIOFailure(f"cannot stat {path}: {e}") from e
    return True


def read_file(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except OSError as e:
        raise FileIOFailure(f"cannot read {path}: {e}") from e


def write_file_atomic(path: Path, content: str, mode: int = 0o640) -> None:
    """Write *content* to a temp file in the same directory, then rename over *path*"""
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(content)
                f.flush()
                os.fsync(f.fileno())
            os.chmod(tmp, mode)
            os.replace(tmp, path)
        except BaseException:
            Path(tmp).unlink(missing_ok=True)
            raise
    except OSError as e:
        raise FileIOFailure(f"cannot write {path}: {e}") from e


def backup_file(path: Path, now: Optional[float] = None) -> Path:
    """Copy *path* to ``<path>.<unix-epoch-seconds>`` and return the backup path.

    The original stays in place until it is replaced.
    """
    stamp = int(now if now is not None else time.time())
    backup = path.with_name(f"{path.name}.{stamp}")
    try:
        shutil.copy2(path, backup)
    except OSError as e:
        raise FileIOFailure(f"cannot back up {path} to {backup}: {e}") from e
    logger.info(f"Backed up {path} to {backup}")
    return backup


def hash_content(content: str) -> str:
    return hashlib.sha256(content.encode("utf-8")).hexdigest()


def contents_equal(old: str, new: str) -> bool:
    """Compare by SHA-256 digest; empty vs empty is equal"""
    if not old and not new:
        return True
    return hash_content(old) == hash_content(new)
