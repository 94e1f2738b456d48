"""In-memory files and registries used by the fake file system."""

from __future__ import annotations

import copy
import ntpath
import os
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import ContextManager, Optional, Protocol

_IS_WINDOWS = os.name == "nt"


class FakeFileType(str, Enum):
    FILE = "file"
    SYMLINK = "symlink"
    DIR = "dir"


@dataclass
class FakeFileStats:
    """Everything the fake file system knows about one path."""

    file_type: Optional[FakeFileType] = None
    file_mode: int = 0
    flags: int = 0
    username: str = ""
    groupname: str = ""
    mod_time: Optional[datetime] = None
    open: bool = False
    symlink_target: str = ""
    content: bytes = b""

    def string_contents(self) -> str:
        return self.content.decode()


def _clean(path: str) -> str:
    if path == "":
        return "."
    rooted = path.startswith("/")
    parts: list[str] = []
    for segment in path.split("/"):
        if segment in ("", "."):
            continue
        if segment == "..":
            if parts and parts[-1] != "..":
                parts.pop()
            elif not rooted:
                parts.append("..")
            continue
        parts.append(segment)
    joined = "/".join(parts)
    if rooted:
        return "/" + joined
    return joined or "."


def unified_path(path: str) -> str:
    """Return the registry key for a path: volume stripped, cleaned, slash separated."""
    if _IS_WINDOWS:
        drive, _ = ntpath.splitdrive(path)
        path = path[len(drive):]
    if path == "":
        return ""
    cleaned = _clean(path)
    if _IS_WINDOWS:
        cleaned = cleaned.replace("\\", "/")
    return cleaned


class FakeFileStatsRegistry:
    """Maps unified paths to file stats."""

    def __init__(self) -> None:
        self._files: dict[str, FakeFileStats] = {}

    def register(self, path: str, stats: FakeFileStats) -> None:
        self._files[unified_path(path)] = stats

    def get(self, path: str) -> Optional[FakeFileStats]:
        return self._files.get(unified_path(path))

    def get_all(self) -> dict[str, FakeFileStats]:
        return self._files

    def remove(self, path: str) -> None:
        self._files.pop(unified_path(path), None)


class FakeFileRegistry:
    """Maps unified paths to open fake files."""

    def __init__(self) -> None:
        self._files: dict[str, "FakeFile"] = {}

    def register(self, path: str, file: "FakeFile") -> None:
        self._files[unified_path(path)] = file

    def get(self, path: str) -> Optional["FakeFile"]:
        return self._files.get(unified_path(path))

    def remove(self, path: str) -> None:
        self._files.pop(unified_path(path), None)


class FileStore(Protocol):
    """What a fake file needs from the file system that owns it."""

    file_registry: FakeFileStatsRegistry
    open_file_registry: FakeFileRegistry
    files_lock: ContextManager

    def get_or_create_file(self, path: str) -> FakeFileStats: ...


class FakeFileInfo:
    """File information taken from a fake file."""

    def __init__(self, file: "FakeFile") -> None:
        self._file = file

    def mode(self) -> int:
        stats = self._file.stats
        return stats.file_mode if stats is not None else 0

    def mod_time(self) -> Optional[datetime]:
        stats = self._file.stats
        return stats.mod_time if stats is not None else None

    def size(self) -> int:
        return len(self._file.contents)

    def is_dir(self) -> bool:
        stats = self._file.stats
        return stats is not None and stats.file_type == FakeFileType.DIR


class FakeFile:
    """An open file whose writes land in the owning store."""

    def __init__(self, path: str, fs: FileStore) -> None:
        self._path = path
        self._fs = fs
        self.stats: Optional[FakeFileStats] = None
        self.contents: bytes = b""
        self.write_err: Optional[BaseException] = None
        self.read_err: Optional[BaseException] = None
        self.read_at_err: Optional[BaseException] = None
        self.close_err: Optional[BaseException] = None
        self.stat_err: Optional[BaseException] = None
        self._read_index = 0

        existing = fs.file_registry.get(path)
        if existing is not None:
            self.contents = existing.content
            self.stats = existing
            self.stats.open = True

    def name(self) -> str:
        return self._path

    def write(self, contents: bytes) -> int:
        if self.write_err is not None:
            raise self.write_err
        data = bytes(contents)
        with self._fs.files_lock:
            stats = self._fs.get_or_create_file(self._path)
            stats.content = data
        self.contents = data
        return len(data)

    def read(self, size: int = -1) -> bytes:
        """Return the whole content once; b"" afterwards until seek()."""
        if self._read_index >= len(self.contents):
            return b""
        data = self.contents if size < 0 else self.contents[:size]
        self._read_index = len(self.contents)
        if self.read_err is not None:
            raise self.read_err
        return bytes(data)

    def read_at(self, size: int, offset: int) -> bytes:
        data = self.contents[offset:][:size]
        if self.read_at_err is not None:
            raise self.read_at_err
        return bytes(data)

    def write_at(self, data: bytes, offset: int) -> int:
        return len(data)

    def seek(self, offset: int, whence: int = os.SEEK_SET) -> int:
        if whence != os.SEEK_SET:
            raise ValueError('Invalid argument for "whence": only SeekStart is supported')
        self._read_index = offset
        return self._read_index

    def close(self) -> None:
        if self.stats is not None:
            self.stats.open = False
        self._fs.open_file_registry.remove(self._path)
        if self.close_err is not None:
            raise self.close_err

    def stat(self) -> FakeFileInfo:
        if self.stat_err is not None:
            raise self.stat_err
        return FakeFileInfo(copy.copy(self))

    def __enter__(self) -> "FakeFile":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()