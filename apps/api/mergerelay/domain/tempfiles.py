"""Ownership and release of per-request scratch files."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
import logging
from pathlib import Path
import threading
import time
from uuid import uuid4

logger = logging.getLogger(__name__)


class TempFileState(str, Enum):
    CREATED = "CREATED"
    IN_USE = "IN_USE"
    RELEASED = "RELEASED"


def new_temp_name(extension: str) -> str:
    """Time-based prefix plus a random identifier, so requests never collide."""
    ext = extension if extension.startswith(".") or not extension else f".{extension}"
    return f"{int(time.time() * 1000)}-{uuid4()}{ext}"


@dataclass(slots=True, eq=False)
class LocalTempFile:
    path: Path
    state: TempFileState = TempFileState.CREATED

    def mark_in_use(self) -> None:
        if self.state is TempFileState.RELEASED:
            raise RuntimeError(f"Temp file already released: {self.path}")
        self.state = TempFileState.IN_USE

    def size(self) -> int:
        return self.path.stat().st_size

    def release(self) -> bool:
        """Delete the file once. Returns False if it was already released."""
        if self.state is TempFileState.RELEASED:
            return False
        self.state = TempFileState.RELEASED
        try:
            self.path.unlink(missing_ok=True)
        except OSError as exc:
            logger.warning("tempfile.release_failed path=%s reason=%s", self.path, exc)
        return True


class TempFileScope:
    """Owns every temp file created for one request until released or transferred."""

    def __init__(self, scratch_dir: Path) -> None:
        self._scratch_dir = Path(scratch_dir)
        self._files: list[LocalTempFile] = []
        self._lock = threading.Lock()
        self._closed = False

    @property
    def files(self) -> list[LocalTempFile]:
        with self._lock:
            return list(self._files)

    def create(self, extension: str) -> LocalTempFile:
        with self._lock:
            if self._closed:
                raise RuntimeError("Temp file scope is closed")
            self._scratch_dir.mkdir(parents=True, exist_ok=True)
            handle = LocalTempFile(path=self._scratch_dir / new_temp_name(extension))
            self._files.append(handle)
            return handle

    def transfer(self) -> TempFileScope:
        """Move ownership of all files to a new scope; this scope becomes empty and closed."""
        with self._lock:
            receiver = TempFileScope(self._scratch_dir)
            receiver._files = self._files
            self._files = []
            self._closed = True
            return receiver

    def release_all(self) -> int:
        with self._lock:
            files, self._files = self._files, []
            self._closed = True
        released = sum(1 for handle in files if handle.release())
        if released:
            logger.info("tempfile.cleanup released=%s", released)
        return released

    def __enter__(self) -> TempFileScope:
        return self

    def __exit__(self, *_exc_info) -> None:
        self.release_all()
