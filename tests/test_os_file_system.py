import logging
import os
import random
import stat
import string
import uuid

import pytest

from boshutils.system.os_file_system import (
    ConvergeFileContentsOpts,
    FileSystemError,
    OsFileSystem,
    ReadOpts,
    StatOpts,
)

LONG_PATH_LENGTH = 240


class _Recorder(logging.Handler):
    def __init__(self):
        super().__init__(logging.DEBUG)
        self.records = []

    def emit(self, record):
        self.records.append(record)

    def debug_count(self):
        return sum(1 for r in self.records if not hasattr(r, "details"))

    def details_count(self):
        return sum(1 for r in self.records if hasattr(r, "details"))


@pytest.fixture
def recorded():
    logger = logging.getLogger(f"boshutils.test.{uuid.uuid4()}")
    logger.setLevel(logging.DEBUG)
    logger.propagate = False
    handler = _Recorder()
    logger.addHandler(handler)
    yield logger, handler
    logger.removeHandler(handler)


@pytest.fixture
def fs():
    return OsFileSystem()


def rand_seq(n):
    return "".join(random.choice(string.ascii_letters) for _ in range(n))


def long_dir(root):
    parts = [c * 4 for _ in range(2) for c in string.ascii_uppercase]
    return os.path.join(str(root), *parts, rand_seq(10))


def read(path):
    with open(path, "rb") as f:
        return f.read().decode()


def test_home_dir_of_root(fs):
    assert "/root" in fs.home_dir("root")


def test_home_dir_of_missing_user(fs):
    with pytest.raises(FileSystemError, match="Failed to get user 'no-such-user-zz9' home directory"):
        fs.home_dir("no-such-user-zz9")


def test_expand_path(fs, tmp_path, monkeypatch):
    monkeypatch.setenv("HOME", str(tmp_path))
    monkeypatch.setenv("USERPROFILE", str(tmp_path))
    assert fs.expand_path("~/fake-dir/fake-file.txt") == os.path.join(
        str(tmp_path), "fake-dir", "fake-file.txt"
    )
    assert fs.expand_path("/fake-dir//fake-file.txt") == os.path.abspath("/fake-dir/fake-file.txt")
    work = tmp_path / "work"
    work.mkdir()
    monkeypatch.chdir(work)
    assert fs.expand_path("./fake-file.txt") == os.path.join(os.getcwd(), "fake-file.txt")


def test_walk_recursively_traverses(fs, tmp_path):
    test_path = str(tmp_path / "WalkPath")
    fs.mkdir_all(os.path.join(test_path, "foo", "bam", "bang"), 0o700)
    fs.mkdir_all(os.path.join(test_path, "foo", "baz"), 0o700)

    seen = []

    def collect(path, info, err):
        if err is not None:
            raise err
        seen.append(path)

    fs.walk(os.path.join(test_path, "foo"), collect)
    assert seen == [
        os.path.join(test_path, "foo"),
        os.path.join(test_path, "foo", "bam"),
        os.path.join(test_path, "foo", "bam", "bang"),
        os.path.join(test_path, "foo", "baz"),
    ]


def test_walk_reports_missing_root(fs, tmp_path):
    errors = []
    fs.walk(str(tmp_path / "missing"), lambda p, i, e: errors.append((p, i, e)))
    assert len(errors) == 1
    assert errors[0][1] is None
    assert isinstance(errors[0][2], FileNotFoundError)


def test_mkdir_all(fs, tmp_path):
    path = str(tmp_path / "MkdirAllTestDir" / "bar" / "baz")
    assert fs.file_exists(path) is False
    fs.mkdir_all(path, 0o700)
    assert stat.S_ISDIR(fs.stat(path).st_mode) is True
    fs.mkdir_all(path, 0o700)
    assert stat.S_ISDIR(fs.stat(path).st_mode) is True
    assert fs.file_exists(path) is True


def test_chmod(fs, tmp_path):
    path = tmp_path / "ChmodTestDir"
    path.write_bytes(b"")
    os.chmod(path, 0o666)
    fs.chmod(str(path), 0o644)
    assert stat.S_IMODE(os.stat(path).st_mode) == 0o644


def test_open_file(fs, tmp_path):
    path = str(tmp_path / "OpenFileTestFile")
    with fs.open_file(path, os.O_RDWR | os.O_CREAT | os.O_TRUNC, 0o644) as f:
        f.write(b"testing new file")
    assert read(path) == "testing new file"


def test_stat_returns_file_info(fs, tmp_path):
    path = str(tmp_path / "OpenFileTestFile")
    with fs.open_file(path, os.O_RDWR | os.O_CREAT | os.O_TRUNC, 0o644):
        assert os.path.samestat(fs.stat(path), os.stat(path))


def test_converge_file(fs, tmp_path):
    path = str(tmp_path / "subDir" / "ConvergeFileContentsTestFile")
    assert fs.converge_file_contents(path, b"initial write") is True
    assert read(path) == "initial write"
    assert fs.converge_file_contents(path, b"second write") is True
    assert read(path) == "second write"
    assert fs.converge_file_contents(path, b"second write") is False
    assert read(path) == "second write"


def test_converge_dry_run_does_not_create(fs, tmp_path):
    path = str(tmp_path / "subDir" / "ConvergeFileContentsTestFile")
    written = fs.converge_file_contents(path, b"initial write", ConvergeFileContentsOpts(dry_run=True))
    assert written is True
    assert fs.file_exists(path) is False


def test_converge_dry_run_does_not_change(fs, tmp_path):
    path = str(tmp_path / "subDir" / "ConvergeFileContentsTestFile")
    assert fs.converge_file_contents(path, b"initial write") is True
    assert read(path) == "initial write"

    dry = ConvergeFileContentsOpts(dry_run=True)
    assert fs.converge_file_contents(path, b"second write", dry) is True
    assert read(path) == "initial write"
    assert fs.converge_file_contents(path, b"initial wNOTe", dry) is True
    assert read(path) == "initial write"


def test_writes_to_write_only_file(fs, tmp_path):
    path = str(tmp_path / "ConvergeFileContentsTestFile")
    fd = os.open(path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o200)
    os.close(fd)
    fs.write_file(path, b"test")
    os.chmod(path, 0o600)
    assert read(path) == "test"


def test_writes_when_parent_missing(fs, tmp_path):
    path = str(tmp_path / "subDirNew" / "ConvergeFileContentsTestFile")
    fs.write_file(path, b"test")
    assert read(path) == "test"


def test_stat_quietly_logs_nothing(recorded, tmp_path):
    logger, handler = recorded
    quiet_fs = OsFileSystem(logger)
    path = str(tmp_path / "OpenFileTestFile")
    with quiet_fs.open_file(path, os.O_RDWR | os.O_CREAT | os.O_TRUNC, 0o644):
        info = quiet_fs.stat_with_opts(path, StatOpts(quiet=True))
    assert os.path.samestat(info, os.stat(path))
    assert handler.debug_count() == 0
    assert handler.details_count() == 0


def test_write_quietly_logs_only_mkdir(recorded, tmp_path):
    logger, handler = recorded
    quiet_fs = OsFileSystem(logger)
    path = str(tmp_path / "subDir" / "ConvergeFileContentsTestFile")
    quiet_fs.write_file_quietly(path, b"test")
    assert handler.debug_count() == 1
    assert handler.details_count() == 0
    assert quiet_fs.read_file_string(path) == "test"


def test_read_quietly_logs_nothing(recorded, tmp_path):
    logger, handler = recorded
    quiet_fs = OsFileSystem(logger)
    path = str(tmp_path / "ReadFileTestFile")
    quiet_fs.write_file_quietly(path, b"some contents")
    before = len(handler.records)
    assert quiet_fs.read_file_with_opts(path, ReadOpts(quiet=True)) == b"some contents"
    assert len(handler.records) - before == 0


def test_read_logs_content_by_default(recorded, tmp_path):
    logger, handler = recorded
    loud_fs = OsFileSystem(logger)
    path = str(tmp_path / "ReadFileTestFile")
    loud_fs.write_file_quietly(path, b"some contents")
    debug_before = handler.debug_count()
    details_before = handler.details_count()
    assert loud_fs.read_file(path) == b"some contents"
    assert handler.debug_count() - debug_before == 1
    assert handler.details_count() - details_before == 1


def test_read_missing_file_raises(fs, tmp_path):
    path = str(tmp_path / "missing")
    with pytest.raises(FileSystemError, match="Opening file") as info:
        fs.read_file(path)
    assert isinstance(info.value.__cause__, FileNotFoundError)


def test_file_exists(fs, tmp_path):
    path = str(tmp_path / "FileExistsTestFile")
    assert fs.file_exists(path) is False
    fs.write_file_string(path, "initial write")
    assert fs.file_exists(path) is True


def test_rename(fs, tmp_path):
    old = tmp_path / "old"
    old.mkdir()
    (old / "test.txt").write_bytes(b"")
    new = str(tmp_path / "new")
    fs.rename(str(old), new)
    assert fs.file_exists(new) is True
    assert fs.file_exists(os.path.join(new, "test.txt")) is True
    assert fs.file_exists(str(old)) is False


def test_symlink_creates(fs, tmp_path):
    file_path = str(tmp_path / "SymlinkTestFile")
    link = str(tmp_path / "SubDir" / "SymlinkTestSymlink")
    fs.write_file_string(file_path, "some content")
    fs.symlink(file_path, link)
    assert stat.S_ISLNK(os.lstat(link).st_mode)
    assert read(link) == "some content"


def test_symlink_is_not_modified_when_already_correct(fs, tmp_path):
    file_path = str(tmp_path / "SymlinkTestIdempotent1File")
    link = str(tmp_path / "SymlinkTestIdempotent1Symlink")
    fs.write_file_string(file_path, "some content")
    fs.symlink(file_path, link)
    first = os.lstat(link)
    fs.symlink(file_path, link)
    second = os.lstat(link)
    assert first.st_mtime_ns == second.st_mtime_ns
    assert first.st_ino == second.st_ino


def test_symlink_replaces_link_to_other_path(fs, tmp_path):
    file_path = str(tmp_path / "File")
    other = str(tmp_path / "OtherFile")
    link = str(tmp_path / "Symlink")
    fs.write_file_string(file_path, "some content")
    fs.write_file_string(other, "other content")
    fs.symlink(other, link)
    fs.symlink(file_path, link)
    assert stat.S_ISLNK(os.lstat(link).st_mode)
    assert read(link) == "some content"


def test_symlink_replaces_regular_file(fs, tmp_path):
    file_path = str(tmp_path / "File")
    link = str(tmp_path / "Symlink")
    fs.write_file_string(file_path, "some content")
    fs.write_file_string(link, "some other content")
    fs.symlink(file_path, link)
    assert stat.S_ISLNK(os.lstat(link).st_mode)
    assert read(link) == "some content"


def test_symlink_replaces_broken_link(fs, tmp_path):
    file_a = str(tmp_path / "file_a")
    file_b = str(tmp_path / "file_b")
    link = str(tmp_path / "symlink")
    fs.write_file_string(file_a, "file a")
    fs.write_file_string(file_b, "file b")
    fs.symlink(file_a, link)
    os.remove(file_a)
    fs.symlink(file_b, link)
    assert stat.S_ISLNK(os.lstat(link).st_mode)
    assert read(link) == "file b"


def test_symlink_to_directory(fs, tmp_path):
    source_dir = str(tmp_path / "dir_a")
    target_dir = str(tmp_path / "dir_b")
    fs.mkdir_all(source_dir, 0o700)
    fs.symlink(source_dir, target_dir)

    fs.write_file_string(os.path.join(target_dir, "file.txt"), "Hello!")
    assert fs.read_file_string(os.path.join(target_dir, "file.txt")) == "Hello!"
    assert fs.read_file_string(os.path.join(source_dir, "file.txt")) == "Hello!"
    assert os.listdir(target_dir) == ["file.txt"]


def test_read_and_follow_link(fs, tmp_path):
    target = str(tmp_path / "SymlinkTestFile")
    link = str(tmp_path / "SubDir" / "SymlinkTestSymlink")
    fs.write_file_string(target, "some content")
    fs.symlink(target, link)
    assert fs.read_and_follow_link(link) == os.path.realpath(target)


def test_read_and_follow_missing_link_raises(fs, tmp_path):
    with pytest.raises(OSError):
        fs.read_and_follow_link(str(tmp_path / "nothing-here"))


def test_readlink_missing_link_raises(fs, tmp_path):
    link = str(tmp_path / "SymlinkTestFile")
    assert fs.file_exists(link) is False
    with pytest.raises(OSError):
        fs.readlink(link)


def test_readlink_with_missing_target(fs, tmp_path):
    link = str(tmp_path / "SymlinkTestFile")
    target = str(tmp_path / "SubDir" / "TestSymlinkTarget")
    fs.symlink(target, link)
    assert fs.file_exists(target) is False
    assert fs.readlink(link) == target


def test_readlink_with_existing_target(fs, tmp_path):
    link = str(tmp_path / "SymlinkTestFile")
    containing = str(tmp_path / "SubDir")
    target = os.path.join(containing, "TestSymlinkTarget")
    fs.mkdir_all(containing, 0o700)
    fs.write_file_string(target, "test-data")
    fs.symlink(target, link)
    assert fs.file_exists(target) is True
    assert fs.readlink(link) == target


def test_temp_files_are_unique(fs):
    first = fs.temp_file("fake-prefix")
    second = fs.temp_file("fake-prefix")
    try:
        assert first.name != second.name
        assert os.path.basename(first.name).startswith("fake-prefix")
    finally:
        for f in (first, second):
            f.close()
            os.remove(f.name)


def test_temp_dirs_are_unique(fs):
    first = fs.temp_dir("fake-prefix")
    second = fs.temp_dir("fake-prefix")
    try:
        assert first != second
        assert os.path.isdir(first) and os.path.isdir(second)
    finally:
        os.rmdir(first)
        os.rmdir(second)


def test_temp_file_under_temp_root(fs, tmp_path):
    fs.change_temp_root(str(tmp_path))
    with fs.temp_file("some-file-prefix") as f:
        assert f.name.startswith(os.path.join(str(tmp_path), "some-file-prefix"))


def test_temp_dir_under_temp_root(fs, tmp_path):
    root = str(tmp_path / "root")
    fs.change_temp_root(root)
    assert os.path.isdir(root)
    assert fs.temp_dir("some-dir-prefix").startswith(os.path.join(root, "some-dir-prefix"))


def test_strict_temp_root_requires_root():
    strict = OsFileSystem(requires_temp_root=True)
    with pytest.raises(FileSystemError, match="ChangeTempRoot"):
        strict.temp_file("some-prefix")
    with pytest.raises(FileSystemError, match="ChangeTempRoot"):
        strict.temp_dir("some-prefix")


def test_copy_file(fs, tmp_path):
    src = str(tmp_path / "foo.txt")
    fs.write_file_string(src, "foo\n")
    dst = str(tmp_path / "CopyFileTestFile")
    fs.copy_file(src, dst)
    assert fs.read_file_string(dst) == fs.read_file_string(src)


def test_copy_dir_recursively(fs, tmp_path):
    src = tmp_path / "test_copy_dir_entries"
    fixtures = {"foo.txt": "foo", "bar/bar.txt": "bar", "bar/baz/.gitkeep": ""}
    for name, content in fixtures.items():
        fs.write_file_string(str(src / name), content)
    dst = fs.temp_dir("CopyDirTestDir")
    try:
        fs.copy_dir(str(src), dst)
        for name in fixtures:
            assert fs.read_file(os.path.join(dst, name)) == fs.read_file(str(src / name))
    finally:
        fs.remove_all(dst)


def test_copy_dir_keeps_permissions(fs, tmp_path):
    src = str(tmp_path / "CopyDirTestSrc")
    dst = str(tmp_path / "CopyDirTestDest")
    readonly = os.path.join(src, "readonly.txt")
    fs.write_file_string(readonly, "readonly")
    fs.chmod(readonly, 0o400)
    fs.copy_dir(src, dst)
    copied = os.path.join(dst, "readonly.txt")
    assert stat.S_IMODE(fs.stat(copied).st_mode) == 0o400
    assert read(copied) == "readonly"


def test_copy_dir_missing_source(fs, tmp_path):
    with pytest.raises(FileSystemError, match="Reading dir stats"):
        fs.copy_dir(str(tmp_path / "missing"), str(tmp_path / "dst"))


def test_remove_all(fs):
    f = fs.temp_file("CopyFileTestFile")
    f.close()
    assert fs.file_exists(f.name) is True
    fs.remove_all(f.name)
    assert fs.file_exists(f.name) is False


def test_remove_all_directory_and_missing(fs, tmp_path):
    directory = str(tmp_path / "d")
    fs.write_file_string(str(tmp_path / "d" / "e" / "f.txt"), "x")
    assert fs.file_exists(directory) is True
    fs.remove_all(directory)
    assert fs.file_exists(directory) is False
    fs.remove_all(directory)
    assert fs.file_exists(directory) is False


def test_glob_and_recursive_glob(fs, tmp_path):
    for name in ("a.txt", "b.txt", "sub/c.txt", "sub/deep/d.txt", "e.log"):
        fs.write_file_string(str(tmp_path / name), "x")
    assert fs.glob(str(tmp_path / "*.txt")) == [str(tmp_path / "a.txt"), str(tmp_path / "b.txt")]
    assert fs.recursive_glob(str(tmp_path / "**" / "*.txt")) == sorted(
        str(tmp_path / n) for n in ("a.txt", "b.txt", "sub/c.txt", "sub/deep/d.txt")
    )


def test_chown_empty_owner(fs, tmp_path):
    with pytest.raises(FileSystemError, match="Failed to lookup user ''"):
        fs.chown(str(tmp_path), "")


def test_chown_missing_path(fs):
    with pytest.raises(FileSystemError):
        fs.chown("/path-that-does-not-exist", "root")


def test_chown_missing_user(fs, tmp_path):
    with pytest.raises(FileSystemError, match="Failed to lookup user 'garbage-foo'"):
        fs.chown(str(tmp_path), "garbage-foo")


def test_chown_missing_group(fs, tmp_path):
    with pytest.raises(FileSystemError, match="Failed to chown"):
        fs.chown(str(tmp_path), "root:not-a-group")


def test_long_dir_create_and_delete(fs, tmp_path):
    directory = long_dir(tmp_path)
    fs.mkdir_all(directory, 0o755)
    fs.remove_all(directory)
    assert fs.file_exists(directory) is False

    nested = os.path.join(directory, "NEW_DIR")
    fs.mkdir_all(nested, 0o755)
    path = os.path.join(nested, "a.txt")
    fs.write_file_string(path, "abc")
    assert fs.read_file_string(path) == "abc"


def test_long_path_write_read_and_exists(fs, tmp_path):
    path = str(tmp_path / rand_seq(LONG_PATH_LENGTH))
    fs.write_file(path, b"abc")
    assert fs.read_file(path) == b"abc"
    assert fs.file_exists(path) is True
    fs.chmod(path, 0o644)
    assert stat.S_IMODE(fs.lstat(path).st_mode) == 0o644
    fs.remove_all(path)
    assert fs.file_exists(path) is False


def test_long_path_rename_symlink_copy(fs, tmp_path):
    path = str(tmp_path / rand_seq(LONG_PATH_LENGTH))
    renamed = str(tmp_path / ("r" + rand_seq(LONG_PATH_LENGTH - 1)))
    fs.write_file_string(path, "abc")
    fs.rename(path, renamed)
    assert fs.file_exists(renamed) is True

    link = str(tmp_path / ("l" + rand_seq(LONG_PATH_LENGTH - 1)))
    fs.symlink(renamed, link)
    assert fs.readlink(link) == renamed

    copy = str(tmp_path / ("c" + rand_seq(LONG_PATH_LENGTH - 1)))
    fs.copy_file(renamed, copy)
    assert fs.read_file_string(copy) == "abc"


def test_long_path_copy_dir(fs, tmp_path):
    root = tmp_path / "root"
    directory = long_dir(root)
    fs.mkdir_all(directory, 0o755)
    fs.write_file_string(os.path.join(directory, "a.txt"), "abc")
    new_root = str(tmp_path / "new_root")
    fs.copy_dir(str(root), new_root)
    relative = os.path.relpath(directory, str(root))
    assert fs.read_file_string(os.path.join(new_root, relative, "a.txt")) == "abc"


def test_long_path_converge(fs, tmp_path):
    path = str(tmp_path / rand_seq(LONG_PATH_LENGTH))
    fs.write_file_string(path, "abcdefghijkl")
    assert fs.converge_file_contents(path, b"abcdefghijkl") is False
    assert fs.converge_file_contents(path, b"CBA") is True
    assert fs.read_file_string(path) == "CBA"