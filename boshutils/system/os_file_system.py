"""File system access with debug logging of every operation."""

from __future__ import annotations

import abc
import contextlib
import getpass
import glob as _glob
import logging
import os
import shutil
import stat as _stat
import tempfile
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, Iterator, Optional, Union

try:
    import pwd
except ImportError:  # not available on Windows
    pwd = None  # type: ignore[assignment]

LOG_TAG = "File System"

_IS_WINDOWS = os.name == "nt"
_ACCESS_MASK = getattr(os, "O_ACCMODE", 3)
_BINARY = getattr(os, "O_BINARY", 0)

PathLike = Union[str, os.PathLike]
WalkFunc = Callable[[str, Optional[os.stat_result], Optional[BaseException]], object]


class FileSystemError(Exception):
    """A file system operation failed; the underlying error is kept as the cause."""

    def __init__(self, message: str, cause: Optional[BaseException] = None) -> None:
        self.message = message
        self.cause = cause
        super().__init__(f"{message}: {cause}" if cause is not None else message)


@dataclass(frozen=True)
class StatOpts:
    """Options for stat_with_opts."""

    quiet: bool = False


@dataclass(frozen=True)
class ReadOpts:
    """Options for read_file_with_opts."""

    quiet: bool = False


@dataclass(frozen=True)
class ConvergeFileContentsOpts:
    """Options for converge_file_contents."""

    dry_run: bool = False


@contextlib.contextmanager
def _wrapped(message: str, *kinds: type) -> Iterator[None]:
    catch = kinds or (OSError,)
    try:
        yield
    except catch as exc:  # type: ignore[misc]
        raise FileSystemError(message, exc) from exc


def _open_mode(flags: int) -> str:
    access = flags & _ACCESS_MASK
    append = bool(flags & os.O_APPEND)
    if access == os.O_RDWR:
        return "a+b" if append else "r+b"
    if access == os.O_WRONLY:
        return "ab" if append else "wb"
    return "rb"


def _parent_dir(path: str) -> str:
    return os.path.dirname(path) or "."


def _abs_path(path: str) -> str:
    if os.path.isabs(path):
        return os.path.normpath(path)
    cwd = os.getcwd()
    if path and path[0] in "\\/":
        return os.path.join(os.path.splitdrive(cwd)[0], path)
    return os.path.join(cwd, path)


class FileSystem(abc.ABC):
    """Operations on files and directories."""

    @abc.abstractmethod
    def home_dir(self, username: str) -> str:
        """Return the home directory of a user."""

    @abc.abstractmethod
    def expand_path(self, path: str) -> str:
        """Expand a leading ~ and return an absolute path."""

    @abc.abstractmethod
    def mkdir_all(self, path: str, perm: int = 0o777) -> None:
        """Create a directory and its parents; existing ones keep their permissions."""

    @abc.abstractmethod
    def remove_all(self, path: str) -> None:
        """Remove a file or a directory tree; a missing path is not an error."""

    @abc.abstractmethod
    def chown(self, path: str, owner: str) -> None:
        """Change the owner, given as "user" or "user:group"."""

    @abc.abstractmethod
    def chmod(self, path: str, perm: int) -> None:
        """Change permission bits."""

    @abc.abstractmethod
    def open_file(self, path: str, flags: int, perm: int = 0o666) -> IO[bytes]:
        """Open a file with os.open flags and return a binary file object."""

    @abc.abstractmethod
    def write_file_string(self, path: str, content: str) -> None:
        """Write text to a file, creating parent directories."""

    @abc.abstractmethod
    def write_file(self, path: str, content: bytes) -> None:
        """Write bytes to a file, creating parent directories."""

    @abc.abstractmethod
    def write_file_quietly(self, path: str, content: bytes) -> None:
        """Write bytes to a file without logging the path or content."""

    @abc.abstractmethod
    def converge_file_contents(
        self, path: str, content: bytes, opts: Optional[ConvergeFileContentsOpts] = None
    ) -> bool:
        """Make the file hold content; return whether it had to change."""

    @abc.abstractmethod
    def read_file_string(self, path: str) -> str:
        """Read a file as text."""

    @abc.abstractmethod
    def read_file(self, path: str) -> bytes:
        """Read a file."""

    @abc.abstractmethod
    def read_file_with_opts(self, path: str, opts: ReadOpts) -> bytes:
        """Read a file with options."""

    @abc.abstractmethod
    def file_exists(self, path: str) -> bool:
        """Return whether anything exists at path."""

    @abc.abstractmethod
    def stat(self, path: str) -> os.stat_result:
        """Stat a path, following symlinks."""

    @abc.abstractmethod
    def stat_with_opts(self, path: str, opts: StatOpts) -> os.stat_result:
        """Stat a path with options."""

    @abc.abstractmethod
    def lstat(self, path: str) -> os.stat_result:
        """Stat a path without following symlinks."""

    @abc.abstractmethod
    def rename(self, old_path: str, new_path: str) -> None:
        """Move old_path to new_path, replacing whatever is there."""

    @abc.abstractmethod
    def symlink(self, old_path: str, new_path: str) -> None:
        """Make new_path a symlink to old_path, replacing whatever is there."""

    @abc.abstractmethod
    def read_and_follow_link(self, symlink_path: str) -> str:
        """Resolve every symlink in a path."""

    @abc.abstractmethod
    def readlink(self, symlink_path: str) -> str:
        """Return the target of a symlink."""

    @abc.abstractmethod
    def copy_file(self, src_path: str, dst_path: str) -> None:
        """Copy a file."""

    @abc.abstractmethod
    def copy_dir(self, src_path: str, dst_path: str) -> None:
        """Copy a directory tree."""

    @abc.abstractmethod
    def temp_file(self, prefix: str) -> IO[bytes]:
        """Create a unique temporary file whose name starts with prefix."""

    @abc.abstractmethod
    def temp_dir(self, prefix: str) -> str:
        """Create a unique temporary directory whose name starts with prefix."""

    @abc.abstractmethod
    def change_temp_root(self, path: str) -> None:
        """Create temporary files and directories under path from now on."""

    @abc.abstractmethod
    def glob(self, pattern: str) -> list[str]:
        """Return paths matching a shell pattern."""

    @abc.abstractmethod
    def recursive_glob(self, pattern: str) -> list[str]:
        """Return paths matching a pattern in which ** spans directories."""

    @abc.abstractmethod
    def walk(self, root: str, walk_func: WalkFunc) -> None:
        """Call walk_func for root and everything below it, in lexical order."""


class OsFileSystem(FileSystem):
    """The real file system of the host."""

    def __init__(
        self, logger: Optional[logging.Logger] = None, *, requires_temp_root: bool = False
    ) -> None:
        self._logger = logger or logging.getLogger("boshutils.system")
        self._temp_root = ""
        self._requires_temp_root = requires_temp_root

    def _debug(self, message: str, *args: object) -> None:
        self._logger.debug(message, *args, extra={"tag": LOG_TAG})

    def _debug_with_details(self, message: str, details: object) -> None:
        self._logger.debug(message, extra={"tag": LOG_TAG, "details": details})

    def home_dir(self, username: str) -> str:
        self._debug("Getting HomeDir for %s", username)
        directory = self._home_dir(username)
        self._debug("HomeDir is %s", directory)
        return directory

    def _home_dir(self, username: str) -> str:
        if _IS_WINDOWS:
            if username and username.lower() != getpass.getuser().lower():
                raise FileSystemError(f"Failed to get user '{username}' home directory")
            return str(Path.home())
        home = os.path.expanduser(f"~{username}")
        if home.startswith("~"):
            raise FileSystemError(f"Failed to get user '{username}' home directory")
        return home

    def expand_path(self, path: str) -> str:
        self._debug("Expanding path for '%s'", path)
        if path.startswith("~"):
            with _wrapped("Getting current user home dir", OSError, RuntimeError, KeyError):
                home = str(Path.home())
            path = os.path.join(home, path[1:].lstrip("/\\"))
        with _wrapped("Getting absolute path"):
            return os.path.abspath(path)

    def mkdir_all(self, path: str, perm: int = 0o777) -> None:
        self._debug("Making dir %s with perm %#o", path, perm)
        os.makedirs(path, mode=perm, exist_ok=True)

    def remove_all(self, path: str) -> None:
        self._debug("Remove all %s", path)
        try:
            if os.path.isdir(path) and not os.path.islink(path):
                shutil.rmtree(path)
            else:
                os.remove(path)
        except FileNotFoundError:
            pass

    def chown(self, path: str, owner: str) -> None:
        self._debug("Chown %s to user %s", path, owner)
        if _IS_WINDOWS:
            return
        if owner == "":
            raise FileSystemError("Failed to lookup user ''")

        user, _, group_name = owner.partition(":")
        group: Union[str, int]
        if ":" in owner:
            group = group_name
        else:
            try:
                group = pwd.getpwnam(user).pw_gid
            except KeyError as exc:
                raise FileSystemError(f"Failed to lookup user '{user}'", exc) from exc

        with _wrapped("Failed to chown", OSError, LookupError):
            shutil.chown(path, user=user, group=group)

    def chmod(self, path: str, perm: int) -> None:
        self._debug("Chmod %s to %d", path, perm)
        os.chmod(path, perm)

    def open_file(self, path: str, flags: int, perm: int = 0o666) -> IO[bytes]:
        fd = os.open(path, flags | _BINARY, perm)
        try:
            return os.fdopen(fd, _open_mode(flags))
        except BaseException:
            os.close(fd)
            raise

    def stat_with_opts(self, path: str, opts: StatOpts) -> os.stat_result:
        if not opts.quiet:
            self._debug("Stat '%s'", path)
        return os.stat(path)

    def stat(self, path: str) -> os.stat_result:
        return self.stat_with_opts(path, StatOpts())

    def lstat(self, path: str) -> os.stat_result:
        self._debug("Lstat '%s'", path)
        return os.lstat(path)

    def write_file_string(self, path: str, content: str) -> None:
        self.write_file(path, content.encode())

    def write_file_quietly(self, path: str, content: bytes) -> None:
        self._write_file(path, bytes(content), log=False)

    def write_file(self, path: str, content: bytes) -> None:
        self._write_file(path, bytes(content), log=True)

    def _write_file(self, path: str, content: bytes, *, log: bool) -> None:
        if log:
            self._debug("Writing %s", path)

        with _wrapped("Creating dir to write file"):
            self.mkdir_all(_parent_dir(path), 0o777)

        with _wrapped(f"Creating file {path}"):
            file = self.open_file(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o666)

        with file:
            if log:
                self._debug_with_details("Write content", content)
            with _wrapped(f"Writing content to file {path}"):
                file.write(content)

    def converge_file_contents(
        self, path: str, content: bytes, opts: Optional[ConvergeFileContentsOpts] = None
    ) -> bool:
        content = bytes(content)
        actually_converge = not (opts is not None and opts.dry_run)

        try:
            size = self.stat(path).st_size
        except OSError:
            size = None

        if size != len(content):
            if actually_converge:
                self.write_file(path, content)
            return True

        with _wrapped(f"Creating file {path}"):
            file = self.open_file(path, os.O_RDONLY, 0o666)
        with file:
            with _wrapped(f"Reading file {path}"):
                current = file.read()

        if current == content:
            self._debug("Skipping writing %s because contents are identical", path)
            return False

        if actually_converge:
            self._debug("File %s will be overwritten", path)
            self.write_file(path, content)
        return True

    def read_file_string(self, path: str) -> str:
        return self.read_file(path).decode()

    def read_file_with_opts(self, path: str, opts: ReadOpts) -> bytes:
        if not opts.quiet:
            self._debug("Reading file %s", path)

        with _wrapped(f"Opening file {path}"):
            file = self.open_file(path, os.O_RDONLY, 0)
        with file:
            with _wrapped(f"Reading file content {path}"):
                content = file.read()

        if not opts.quiet:
            self._debug_with_details("Read content", content)
        return content

    def read_file(self, path: str) -> bytes:
        return self.read_file_with_opts(path, ReadOpts())

    def file_exists(self, path: str) -> bool:
        self._debug("Checking if file exists %s", path)
        try:
            self.stat(path)
        except FileNotFoundError:
            return False
        except OSError:
            return True
        return True

    def rename(self, old_path: str, new_path: str) -> None:
        self._debug("Renaming %s to %s", old_path, new_path)
        with contextlib.suppress(OSError):
            self.remove_all(new_path)
        os.rename(old_path, new_path)

    def _symlink_paths(self, old_path: str, new_path: str) -> tuple[str, str]:
        if _IS_WINDOWS:
            return _abs_path(old_path), _abs_path(new_path)
        return old_path, new_path

    def symlink(self, old_path: str, new_path: str) -> None:
        self._debug("Symlinking oldPath %s with newPath %s", old_path, new_path)

        source, target = self._symlink_paths(old_path, new_path)

        try:
            info = self.lstat(target)
        except OSError:
            info = None

        if info is not None:
            if _stat.S_ISLNK(info.st_mode):
                with _wrapped(f"Reading link for {target}"):
                    current = self.readlink(target)
                if os.path.normpath(source) == os.path.normpath(current):
                    return
            with _wrapped(f"Removing new path at {target}"):
                self.remove_all(target)

        containing_dir = _parent_dir(target)
        if not self.file_exists(containing_dir):
            with contextlib.suppress(OSError):
                self.mkdir_all(containing_dir, 0o700)

        os.symlink(source, target, target_is_directory=os.path.isdir(source))

    def read_and_follow_link(self, symlink_path: str) -> str:
        return os.path.realpath(symlink_path, strict=True)

    def readlink(self, symlink_path: str) -> str:
        return os.readlink(symlink_path)

    def copy_file(self, src_path: str, dst_path: str) -> None:
        self._debug("Copying file '%s' to '%s'", src_path, dst_path)

        with _wrapped("Opening source path"):
            src = self.open_file(src_path, os.O_RDONLY, 0)
        with src:
            with _wrapped("Stating source path"):
                mode = _stat.S_IMODE(self.stat(src_path).st_mode)
            with _wrapped("Creating destination file"):
                dst = self.open_file(dst_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, mode)
            with dst:
                with _wrapped("Copying file"):
                    shutil.copyfileobj(src, dst)

    def copy_dir(self, src_path: str, dst_path: str) -> None:
        self._debug("Copying dir '%s' to '%s'", src_path, dst_path)

        with _wrapped(f"Reading dir stats for '{src_path}'"):
            source_info = self.stat(src_path)

        with _wrapped(f"Making destination dir '{dst_path}'"):
            self.mkdir_all(dst_path, _stat.S_IMODE(source_info.st_mode))

        with _wrapped(f"Listing contents of source dir '{src_path}'"):
            with os.scandir(src_path) as entries:
                listing = sorted(
                    ((entry.name, entry.is_dir(follow_symlinks=False)) for entry in entries)
                )

        for name, is_dir in listing:
            file_src = os.path.join(src_path, name)
            file_dst = os.path.join(dst_path, name)
            if is_dir:
                with _wrapped(
                    f"Copying sub-dir '{file_src}' to '{file_dst}'", OSError, FileSystemError
                ):
                    self.copy_dir(file_src, file_dst)
            else:
                with _wrapped(
                    f"Copying file '{file_src}' to '{file_dst}'", OSError, FileSystemError
                ):
                    self.copy_file(file_src, file_dst)

    def temp_file(self, prefix: str) -> IO[bytes]:
        self._debug("Creating temp file with prefix %s", prefix)
        if not self._temp_root and self._requires_temp_root:
            raise FileSystemError(
                "Set a temp directory root with ChangeTempRoot before making temp files"
            )
        return tempfile.NamedTemporaryFile(
            mode="w+b", prefix=prefix, dir=self._temp_root or None, delete=False
        )

    def temp_dir(self, prefix: str) -> str:
        self._debug("Creating temp dir with prefix %s", prefix)
        if not self._temp_root and self._requires_temp_root:
            raise FileSystemError(
                "Set a temp directory root with ChangeTempRoot before making temp directories"
            )
        return tempfile.mkdtemp(prefix=prefix, dir=self._temp_root or None)

    def change_temp_root(self, path: str) -> None:
        self.mkdir_all(path, 0o777)
        self._temp_root = path

    def glob(self, pattern: str) -> list[str]:
        self._debug("Glob '%s'", pattern)
        return sorted(_glob.glob(pattern))

    def recursive_glob(self, pattern: str) -> list[str]:
        self._debug("RecursiveGlob '%s'", pattern)
        return sorted(_glob.glob(pattern, recursive=True))

    def walk(self, root: str, walk_func: WalkFunc) -> None:
        try:
            info = os.lstat(root)
        except OSError as exc:
            walk_func(root, None, exc)
            return
        self._walk(root, info, walk_func)

    def _walk(self, path: str, info: os.stat_result, walk_func: WalkFunc) -> None:
        walk_func(path, info, None)
        if not _stat.S_ISDIR(info.st_mode):
            return
        try:
            names = sorted(os.listdir(path))
        except OSError as exc:
            walk_func(path, info, exc)
            return
        for name in names:
            child = os.path.join(path, name)
            try:
                child_info = os.lstat(child)
            except OSError as exc:
                walk_func(child, None, exc)
                continue
            self._walk(child, child_info, walk_func)