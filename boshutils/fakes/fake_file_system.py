"""An in-memory file system for tests that records calls and injects errors."""

from __future__ import annotations

import errno
import ntpath
import os
import posixpath
import stat as _stat
import threading
import uuid
from typing import Any, Callable, Optional

from boshutils.fakes.fake_file import (
    FakeFile,
    FakeFileInfo,
    FakeFileRegistry,
    FakeFileStats,
    FakeFileStatsRegistry,
    FakeFileType,
    unified_path,
)
from boshutils.system.os_file_system import (
    ConvergeFileContentsOpts,
    FileSystem,
    FileSystemError,
    ReadOpts,
    StatOpts,
    WalkFunc,
)

_IS_WINDOWS = os.name == "nt"

RemoveAllFn = Callable[[str], object]
RenameFn = Callable[[str, str], object]
GlobFn = Callable[[str], list]


def _clean(path: str) -> str:
    """Lexically clean a slash-separated path."""
    if not path:
        return "."
    cleaned = posixpath.normpath(path)
    if cleaned.startswith("//"):
        cleaned = "/" + cleaned.lstrip("/")
    return cleaned


def _join(path: str) -> str:
    return "" if path == "" else _clean(path)


def _posix_dir(path: str) -> str:
    return _clean(posixpath.dirname(path))


def _os_clean(path: str) -> str:
    if _IS_WINDOWS:
        return ntpath.normpath(path) if path else "."
    return _clean(path)


def _os_join(path: str) -> str:
    return "" if path == "" else _os_clean(path)


def _os_dir(path: str) -> str:
    return _os_clean(os.path.dirname(path))


def _volume_name(path: str) -> str:
    return ntpath.splitdrive(path)[0] if _IS_WINDOWS else ""


def _at_root(path: str) -> bool:
    return path == "/" or path == _volume_name(path) + "\\"


def _file_name(file: Any) -> str:
    name = file.name
    return name() if callable(name) else name


class FakeFileSystem(FileSystem):
    """A file system kept in memory, with knobs for errors and canned answers."""

    def __init__(self) -> None:
        self.file_registry = FakeFileStatsRegistry()
        self.open_file_registry = FakeFileRegistry()
        self.files_lock = threading.RLock()

        self.home_dir_username = ""
        self.home_dir_home_path = ""

        self.expand_path_path = ""
        self.expand_path_expanded = ""
        self.expand_path_err: Optional[BaseException] = None

        self.open_file_err: Optional[BaseException] = None

        self.read_file_error: Optional[BaseException] = None
        self.read_file_with_opts_call_count = 0
        self._read_file_error_by_path: dict[str, BaseException] = {}

        self.write_file_error: Optional[BaseException] = None
        self.write_file_errors: dict[str, BaseException] = {}
        self.write_file_call_count = 0
        self.write_file_quietly_call_count = 0

        self.symlink_error: Optional[BaseException] = None

        self.mkdir_all_error: Optional[BaseException] = None
        self._mkdir_all_error_by_path: dict[str, BaseException] = {}
        self.mkdir_all_call_count = 0

        self.change_temp_root_err: Optional[BaseException] = None

        self.chown_err: Optional[BaseException] = None
        self.chown_call_count = 0
        self.chmod_err: Optional[BaseException] = None
        self.chmod_call_count = 0

        self.copy_file_error: Optional[BaseException] = None
        self.copy_file_call_count = 0

        self.copy_dir_error: Optional[BaseException] = None

        self.rename_stub: Optional[RenameFn] = None
        self.rename_error: Optional[BaseException] = None
        self.rename_old_paths: list[str] = []
        self.rename_new_paths: list[str] = []

        self.remove_all_stub: Optional[RemoveAllFn] = None

        self.read_and_follow_link_error: Optional[BaseException] = None
        self.readlink_error: Optional[BaseException] = None

        self.stat_with_opts_call_count = 0
        self.stat_call_count = 0

        self.temp_file_error: Optional[BaseException] = None
        self.temp_file_errors_by_prefix: dict[str, BaseException] = {}
        self.return_temp_file: Optional[Any] = None
        self.return_temp_files: list[Any] = []
        self.return_temp_files_by_prefix: Optional[dict[str, Any]] = None

        self.temp_dir_dir = ""
        self.temp_dir_dirs: Optional[list[str]] = None
        self.temp_dir_error: Optional[BaseException] = None

        self.glob_err: Optional[BaseException] = None
        self.glob_stub: Optional[GlobFn] = None
        self.glob_errs: dict[str, BaseException] = {}
        self._globs_map: dict[str, list[list[str]]] = {}

        self.walk_err: Optional[BaseException] = None

        self.temp_root_path = ""
        self._strict_temp_root = False

    def get_or_create_file(self, path: str) -> FakeFileStats:
        stats = self.file_registry.get(path)
        if stats is None:
            stats = FakeFileStats()
            self.file_registry.register(path, stats)
        return stats

    def get_file_test_stat(self, path: str) -> Optional[FakeFileStats]:
        with self.files_lock:
            return self.file_registry.get(path)

    def home_dir(self, username: str) -> str:
        self.home_dir_username = username
        return self.home_dir_home_path

    def expand_path(self, path: str) -> str:
        self.expand_path_path = path
        if self.expand_path_err is not None:
            raise self.expand_path_err
        return self.expand_path_expanded or self.expand_path_path

    def register_mkdir_all_error(self, path: str, err: BaseException) -> None:
        path = _join(path)
        if path in self._mkdir_all_error_by_path:
            raise ValueError(f"MkdirAll error is already set for path: {path}")
        self._mkdir_all_error_by_path[path] = err

    def mkdir_all(self, path: str, perm: int = 0o777) -> None:
        self.mkdir_all_call_count += 1
        with self.files_lock:
            if self.mkdir_all_error is not None:
                raise self.mkdir_all_error
            path = _join(path)
            err = self._mkdir_all_error_by_path.get(path)
            if err is not None:
                raise err
            self._mkdir(path, perm)

    def _mkdir(self, path: str, perm: int) -> None:
        if path == ".":
            return
        if not _at_root(path):
            parent = _os_dir(path)
            parent_stats = self.file_registry.get(parent)
            if parent_stats is not None and parent_stats.file_type == FakeFileType.FILE:
                raise NotADirectoryError(f"cannot create a directory in a file ({path})")
            if parent_stats is None:
                self._mkdir(parent, perm)

        stats = self.get_or_create_file(path)
        stats.file_mode = perm
        stats.file_type = FakeFileType.DIR
        self.file_registry.register(path, stats)

    def register_open_file(self, path: str, file: FakeFile) -> None:
        self.open_file_registry.register(_join(path), file)

    def find_file_stats(self, path: str) -> FakeFileStats:
        stats = self.file_registry.get(path)
        if stats is None:
            raise FileNotFoundError(f"Path does not exist: {path}")
        return stats

    def open_file(self, path: str, flags: int, perm: int = 0o666) -> FakeFile:
        with self.files_lock:
            if self.open_file_err is not None:
                raise self.open_file_err

            stats = self.get_or_create_file(path)
            stats.file_mode = perm
            stats.flags = flags
            stats.file_type = FakeFileType.FILE

            existing = self.open_file_registry.get(path)
            if existing is not None:
                return existing
            file = FakeFile(path, self)
            self.register_open_file(path, file)
            return file

    def stat(self, path: str) -> FakeFileInfo:
        self.stat_call_count += 1
        return self._stat_helper(path)

    def stat_with_opts(self, path: str, opts: StatOpts) -> FakeFileInfo:
        self.stat_with_opts_call_count += 1
        return self._stat_helper(path)

    def _stat_helper(self, path: str) -> FakeFileInfo:
        with self.files_lock:
            open_file = self.open_file_registry.get(path)
            if open_file is not None:
                return open_file.stat()

            stats = self.file_registry.get(path)
            if stats is None:
                raise RuntimeError(f"Unexpected Stat call for path '{path}' that does not exist")

            if stats.file_type == FakeFileType.SYMLINK:
                if self.file_registry.get(stats.symlink_target) is None:
                    raise FileNotFoundError(f"stat: {path}: no such file or directory")

            return FakeFile(path, self).stat()

    def readlink(self, symlink_path: str) -> str:
        target = self._readlink(symlink_path)
        # Report absolute targets the way the host file system would.
        if target.startswith("/"):
            return os.path.abspath(target)
        return target

    def _readlink(self, path: str) -> str:
        if self.readlink_error is not None:
            raise self.readlink_error
        with self.files_lock:
            stats = self.file_registry.get(path)
            if stats is None:
                raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), path)
            if stats.file_type != FakeFileType.SYMLINK:
                raise OSError("cannot readlink of non-symlink")
            return stats.symlink_target

    def lstat(self, path: str) -> FakeFileInfo:
        with self.files_lock:
            open_file = self.open_file_registry.get(path)
            if open_file is not None:
                return open_file.stat()
            if self.file_registry.get(path) is None:
                raise RuntimeError(f"Unexpected Stat call for path '{path}' that does not exist")
            return FakeFile(path, self).stat()

    def chown(self, path: str, owner: str) -> None:
        self.chown_call_count += 1
        with self.files_lock:
            if self.chown_err is not None:
                raise self.chown_err
            stats = self.find_file_stats(path)
            user, sep, group = owner.partition(":")
            stats.username = user
            stats.groupname = group.split(":")[0] if sep else user

    def chmod(self, path: str, perm: int) -> None:
        self.chmod_call_count += 1
        with self.files_lock:
            if self.chmod_err is not None:
                raise self.chmod_err
            self.find_file_stats(path).file_mode = perm

    def write_file_string(self, path: str, content: str) -> None:
        self.write_file(path, content.encode())

    def write_file_quietly(self, path: str, content: bytes) -> None:
        self.write_file_quietly_call_count += 1
        self._write_file(path, content)

    def write_file(self, path: str, content: bytes) -> None:
        self.write_file_call_count += 1
        self._write_file(path, content)

    def _write_file(self, path: str, content: bytes) -> None:
        with self.files_lock:
            if self.write_file_error is not None:
                raise self.write_file_error
            err = self.write_file_errors.get(path)
            if err is not None:
                raise err

            path = unified_path(path)
            parent = _posix_dir(path)
            if parent != ".":
                self._write_dir(parent)

            stats = self.get_or_create_file(path)
            stats.file_type = FakeFileType.FILE
            stats.content = bytes(content)

    def _write_dir(self, path: str) -> None:
        parent = _posix_dir(path)
        if _posix_dir(parent) != parent:
            self._write_dir(parent)
        self.get_or_create_file(path).file_type = FakeFileType.DIR

    def converge_file_contents(
        self, path: str, content: bytes, opts: Optional[ConvergeFileContentsOpts] = None
    ) -> bool:
        content = bytes(content)
        with self.files_lock:
            if self.write_file_error is not None:
                raise self.write_file_error
            err = self.write_file_errors.get(path)
            if err is not None:
                raise err

            if opts is not None and opts.dry_run:
                stats = self.file_registry.get(path)
                if stats is None:
                    return True
                return stats.content != content

            stats = self.get_or_create_file(path)
            stats.file_type = FakeFileType.FILE
            if stats.content != content:
                stats.content = content
                return True
            return False

    def read_file_string(self, path: str) -> str:
        return self.read_file(path).decode()

    def register_read_file_error(self, path: str, err: BaseException) -> None:
        if path in self._read_file_error_by_path:
            raise ValueError(f"ReadFile error is already set for path: {path}")
        self._read_file_error_by_path[path] = err

    def unregister_read_file_error(self, path: str) -> None:
        self._read_file_error_by_path.pop(path, None)

    def read_file_with_opts(self, path: str, opts: ReadOpts) -> bytes:
        self.read_file_with_opts_call_count += 1
        return self.read_file(path)

    def read_file(self, path: str) -> bytes:
        stats = self.get_file_test_stat(path)
        if stats is None:
            cause = FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), path)
            raise FileSystemError("Not found", cause) from cause
        if self.read_file_error is not None:
            raise self.read_file_error
        err = self._read_file_error_by_path.get(path)
        if err is not None:
            raise err
        return stats.content

    def file_exists(self, path: str) -> bool:
        return self.get_file_test_stat(path) is not None

    def _move_tree(self, src: str, dst: str) -> None:
        for file_path, stats in list(self.file_registry.get_all().items()):
            if file_path == src:
                self.file_registry.register(dst, stats)
            elif file_path.startswith(src + "/"):
                self.file_registry.register(_clean(dst + file_path[len(src):]), stats)

    def rename(self, old_path: str, new_path: str) -> None:
        with self.files_lock:
            if self.rename_stub is not None:
                self.rename_stub(old_path, new_path)
            if self.rename_error is not None:
                raise self.rename_error

            old_path = unified_path(old_path)
            new_path = unified_path(new_path)

            parent = _posix_dir(new_path)
            if parent != "." and self.file_registry.get(parent) is None:
                raise FileNotFoundError("Parent directory does not exist")
            if self.file_registry.get(old_path) is None:
                raise FileNotFoundError("Old path did not exist")

            self.rename_old_paths.append(old_path)
            self.rename_new_paths.append(new_path)
            self._move_tree(old_path, new_path)
            self._remove_all(old_path)

    def symlink(self, old_path: str, new_path: str) -> None:
        with self.files_lock:
            if self.symlink_error is not None:
                raise self.symlink_error
            stats = self.get_or_create_file(new_path)
            stats.file_mode |= _stat.S_IFLNK
            stats.file_type = FakeFileType.SYMLINK
            stats.symlink_target = unified_path(old_path)

    def read_and_follow_link(self, symlink_path: str) -> str:
        target = self._read_and_follow_link(symlink_path)
        if target.startswith("/"):
            return os.path.abspath(target)
        return target

    def _read_and_follow_link(self, symlink_path: str) -> str:
        if self.read_and_follow_link_error is not None:
            raise self.read_and_follow_link_error

        if symlink_path == "\\":
            symlink_path = "/"
        if symlink_path in ("", "/") or symlink_path == _volume_name(symlink_path) + "\\":
            return symlink_path
        if symlink_path == ".":
            return unified_path(".")

        symlink_path = _os_join(symlink_path)
        stats = self.get_file_test_stat(symlink_path)
        if stats is None:
            raise FileNotFoundError(errno.ENOENT, os.strerror(errno.ENOENT), symlink_path)

        if stats.file_type != FakeFileType.SYMLINK:
            dir_path = self._read_and_follow_link(_os_dir(symlink_path))
            return _clean(posixpath.join(dir_path, os.path.basename(symlink_path)))

        if posixpath.isabs(stats.symlink_target):
            return self._read_and_follow_link(stats.symlink_target)

        dir_path = self._read_and_follow_link(_os_dir(symlink_path))
        return self._read_and_follow_link(_clean(posixpath.join(dir_path, stats.symlink_target)))

    def copy_file(self, src_path: str, dst_path: str) -> None:
        self.copy_file_call_count += 1
        with self.files_lock:
            if self.copy_file_error is not None:
                raise self.copy_file_error
            src = self.file_registry.get(src_path)
            if src is None:
                raise FileNotFoundError(f"{src_path} doesn't exist")
            self.file_registry.register(dst_path, src)

    def copy_dir(self, src_path: str, dst_path: str) -> None:
        with self.files_lock:
            if self.copy_dir_error is not None:
                raise self.copy_dir_error
            self._move_tree(unified_path(src_path), unified_path(dst_path))

    def change_temp_root(self, path: str) -> None:
        if self.change_temp_root_err is not None:
            raise self.change_temp_root_err
        self.temp_root_path = path

    def enable_strict_temp_root_behavior(self) -> None:
        self._strict_temp_root = True

    def temp_file(self, prefix: str) -> Any:
        with self.files_lock:
            if self.temp_file_error is not None:
                raise self.temp_file_error
            err = self.temp_file_errors_by_prefix.get(prefix)
            if err is not None:
                raise err
            if self._strict_temp_root and not self.temp_root_path:
                raise FileSystemError("Temp file was requested without having set a temp root")

            if self.return_temp_files_by_prefix is not None:
                file = self.return_temp_files_by_prefix[prefix]
            elif self.return_temp_file is not None:
                file = self.return_temp_file
            elif self.return_temp_files:
                file = self.return_temp_files.pop(0)
            else:
                try:
                    file = open(os.devnull, "rb")  # noqa: SIM115 - handed to the caller
                except OSError as exc:
                    raise FileSystemError(f"Opening {os.devnull}", exc) from exc

            self.get_or_create_file(_file_name(file)).file_type = FakeFileType.FILE
            return file

    def temp_dir(self, prefix: str) -> str:
        with self.files_lock:
            if self.temp_dir_error is not None:
                raise self.temp_dir_error
            if self._strict_temp_root and not self.temp_root_path:
                raise FileSystemError("Temp file was requested without having set a temp root")

            if self.temp_dir_dir:
                path = self.temp_dir_dir
            elif self.temp_dir_dirs is not None:
                if not self.temp_dir_dirs:
                    raise FileSystemError("Failed to create new temp dir: TempDirDirs is empty")
                path = self.temp_dir_dirs.pop(0)
            else:
                path = str(uuid.uuid4())

            self.get_or_create_file(path).file_type = FakeFileType.DIR
            return path

    def remove_all(self, path: str) -> None:
        if path == "":
            raise ValueError("RemoveAll requires path")
        if self.remove_all_stub is not None:
            self.remove_all_stub(path)
        with self.files_lock:
            self._remove_all(unified_path(path))

    def _remove_all(self, path: str) -> None:
        info = self.file_registry.get(path)
        if info is not None:
            self.file_registry.remove(path)
            if info.file_type != FakeFileType.DIR:
                return
        prefix = path + "/"
        for name in [n for n in self.file_registry.get_all() if n.startswith(prefix)]:
            self.file_registry.remove(name)

    def glob(self, pattern: str) -> list[str]:
        if self.glob_stub is not None:
            return self.glob_stub(pattern)

        remaining = self._globs_map.get(pattern)
        if remaining is not None:
            matches = remaining[0]
            if len(remaining) > 1:
                self._globs_map[pattern] = remaining[1:]
        else:
            matches = []

        if pattern in self.glob_errs:
            raise self.glob_errs[pattern]
        if self.glob_err is not None:
            raise self.glob_err
        return matches

    def recursive_glob(self, pattern: str) -> list[str]:
        return self.glob(pattern)

    def ls(self, root: str) -> list[str]:
        """Return every path below root, in lexical order."""
        matches: list[str] = []

        def collect(path: str, _info: object, err: Optional[BaseException]) -> None:
            if err is not None:
                raise err
            if path != root:
                matches.append(path)

        self.walk(root, collect)
        return matches

    def walk(self, root: str, walk_func: WalkFunc) -> None:
        if self.walk_err is not None:
            walk_func("", None, self.walk_err)
            return

        clean_root = _join(root)
        prefix = clean_root + "/"
        for path in sorted(self.file_registry.get_all()):
            stats = self.file_registry.get(path)
            if _join(path) == clean_root or path.startswith(prefix):
                fake = FakeFile(path, self)
                fake.stats = stats
                walk_func(path, fake.stat(), None)

    def set_glob(self, pattern: str, *args: list[str]) -> None:
        self._globs_map[pattern] = list(args)