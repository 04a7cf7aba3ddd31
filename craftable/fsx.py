"""File system abstraction and its local disk implementation."""

from __future__ import annotations

import errno
import mimetypes
import os
import shutil
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import BinaryIO, Protocol, runtime_checkable


@dataclass
class FileInfo:
    """Information about a file or directory."""

    name: str
    size: int = 0
    mod_time: datetime = field(default_factory=lambda: datetime.min.replace(tzinfo=timezone.utc))
    is_dir: bool = False
    content_type: str = ""
    metadata: dict[str, str] = field(default_factory=dict)


@runtime_checkable
class FileSystem(Protocol):
    """Reading, writing, deleting and path operations on a file store."""

    def read_file(self, path: str) -> bytes: ...

    def read_file_stream(self, path: str) -> BinaryIO: ...

    def stat(self, path: str) -> FileInfo: ...

    def list(self, path: str) -> list[FileInfo]: ...

    def exists(self, path: str) -> bool: ...

    def write_file(self, path: str, data: bytes) -> None: ...

    def write_file_stream(self, path: str, stream: BinaryIO) -> None: ...

    def create_dir(self, path: str) -> None: ...

    def delete_file(self, path: str) -> None: ...

    def delete_dir(self, path: str, recursive: bool) -> None: ...

    def join(self, *elems: str) -> str: ...


def _join(*elems: str) -> str:
    parts = [elem for elem in elems if elem]
    if not parts:
        return ""
    return os.path.normpath(os.sep.join(parts))


def _file_info(st: os.stat_result, name: str, is_dir: bool) -> FileInfo:
    content_type = ""
    if not is_dir:
        content_type = mimetypes.guess_type("x" + os.path.splitext(name)[1])[0] or ""
    return FileInfo(
        name=name,
        size=st.st_size,
        mod_time=datetime.fromtimestamp(st.st_mtime, tz=timezone.utc),
        is_dir=is_dir,
        content_type=content_type,
        metadata={},
    )


class LocalFS:
    """File system on local disk, optionally confined beneath a root directory."""

    def __init__(self, root: str = "") -> None:
        self.root = os.path.normpath(root) if root else ""

    def _resolve(self, path: str) -> str:
        if not self.root:
            return os.path.normpath(path)
        return _join(self.root, path)

    def read_file(self, path: str) -> bytes:
        with open(self._resolve(path), "rb") as fh:
            return fh.read()

    def read_file_stream(self, path: str) -> BinaryIO:
        """Open the file for binary reading; the caller closes it."""
        return open(self._resolve(path), "rb")

    def stat(self, path: str) -> FileInfo:
        full = self._resolve(path)
        st = os.stat(full)
        return _file_info(st, os.path.basename(full) or full, os.path.isdir(full))

    def list(self, path: str) -> list[FileInfo]:
        """Directory entries sorted by name."""
        with os.scandir(self._resolve(path)) as entries:
            items = sorted(entries, key=lambda entry: entry.name)
            return [
                _file_info(
                    entry.stat(follow_symlinks=False),
                    entry.name,
                    entry.is_dir(follow_symlinks=False),
                )
                for entry in items
            ]

    def exists(self, path: str) -> bool:
        try:
            os.stat(self._resolve(path))
        except FileNotFoundError:
            return False
        return True

    def _ensure_parent(self, full: str) -> None:
        parent = os.path.dirname(full)
        if parent:
            os.makedirs(parent, mode=0o755, exist_ok=True)

    def write_file(self, path: str, data: bytes) -> None:
        full = self._resolve(path)
        self._ensure_parent(full)
        with open(full, "wb") as fh:
            fh.write(data)

    def write_file_stream(self, path: str, stream: BinaryIO) -> None:
        full = self._resolve(path)
        self._ensure_parent(full)
        with open(full, "wb") as fh:
            shutil.copyfileobj(stream, fh)

    def create_dir(self, path: str) -> None:
        os.makedirs(self._resolve(path), mode=0o755, exist_ok=True)

    def delete_file(self, path: str) -> None:
        full = self._resolve(path)
        if os.path.isdir(full):
            raise IsADirectoryError(errno.EISDIR, f"cannot delete a directory as a file: {path}", path)
        os.stat(full)
        os.remove(full)

    def delete_dir(self, path: str, recursive: bool = False) -> None:
        full = self._resolve(path)
        os.stat(full)
        if not os.path.isdir(full):
            raise NotADirectoryError(errno.ENOTDIR, f"not a directory: {path}", path)
        if recursive:
            shutil.rmtree(full)
            return
        if os.listdir(full):
            raise OSError(errno.ENOTEMPTY, f"directory not empty: {path}", path)
        os.rmdir(full)

    def join(self, *elems: str) -> str:
        """Join path elements, dropping empty ones and cleaning the result."""
        return _join(*elems)