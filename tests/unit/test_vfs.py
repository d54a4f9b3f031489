"""Unit tests for vfs.py: the FUSE operations over an OpenDriveFS."""

import errno
import os

import pytest

from opendrive_fs.errors import (
    ApiError,
    CallCancelledError,
    DirectoryNotEmpty,
    DirectoryNotFound,
    ObjectNotFound,
    ProtocolError,
    SameNameCopyError,
)

try:
    from fuse import FuseOSError
    from opendrive_fs.vfs import DriveMountFS, errno_for
except (ImportError, OSError):  # fusepy raises OSError when libfuse is missing
    pytest.skip("libfuse not available", allow_module_level=True)


@pytest.fixture
def mount(drive_fs, tmp_path):
    return DriveMountFS(drive_fs, str(tmp_path / "cache"))


def _write_file(mount, path, data):
    fh = mount.create(path, 0o644)
    mount.write(path, data, 0, fh)
    mount.release(path, fh)


# ---------------------------------------------------------------------------
# errno_for()
# ---------------------------------------------------------------------------


class TestErrnoFor:
    @pytest.mark.parametrize("exc,code", [
        (ObjectNotFound("x"), errno.ENOENT),
        (DirectoryNotFound("x"), errno.ENOENT),
        (DirectoryNotEmpty("x"), errno.ENOTEMPTY),
        (SameNameCopyError("x"), errno.EEXIST),
        (CallCancelledError("x"), errno.EINTR),
        (ApiError(500, "x"), errno.EIO),
        (ProtocolError("x"), errno.EIO),
    ])
    def test_mapping(self, exc, code):
        assert errno_for(exc) == code


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------


class TestMountOperations:
    def test_getattr_root(self, mount):
        assert mount.getattr("/")["st_nlink"] == 2

    def test_getattr_missing(self, mount):
        with pytest.raises(FuseOSError) as exc_info:
            mount.getattr("/nothing")
        assert exc_info.value.errno == errno.ENOENT

    def test_mkdir_and_readdir(self, mount, server):
        mount.mkdir("/music", 0o755)
        server.add_file(server.folder_named("0", "music"), "song.mp3", b"la")

        assert list(mount.readdir("/music", None)) == [".", "..", "song.mp3"]
        assert mount.getattr("/music/song.mp3")["st_size"] == 2

    def test_write_uploads_on_release(self, mount, server):
        _write_file(mount, "/notes.txt", b"remember")

        file_id = server.file_named("0", "notes.txt")
        assert server.files[file_id]["data"] == b"remember"
        assert mount.pending_uploads == {}

    def test_read_downloads(self, mount, server, tmp_path):
        server.add_file("0", "r.txt", b"remote bytes")

        fh = mount.open("/r.txt", os.O_RDONLY)
        try:
            assert mount.read("/r.txt", 6, 7, fh) == b"bytes"
        finally:
            mount.release("/r.txt", fh)
        assert (tmp_path / "cache" / "r.txt").read_bytes() == b"remote bytes"

    def test_rmdir_not_empty(self, mount, server):
        folder = server.add_folder("0", "busy")
        server.add_file(folder, "f", b"")
        with pytest.raises(FuseOSError) as exc_info:
            mount.rmdir("/busy")
        assert exc_info.value.errno == errno.ENOTEMPTY

    def test_unlink(self, mount, server):
        _write_file(mount, "/bye.txt", b"x")
        mount.unlink("/bye.txt")
        assert server.files == {}

    def test_rename_into_folder_is_server_side(self, mount, server):
        _write_file(mount, "/old.txt", b"x")
        file_id = server.file_named("0", "old.txt")

        mount.rename("/old.txt", "/sub/old.txt")

        assert server.file_named(server.folder_named("0", "sub"), "old.txt") == file_id
        assert server.count("POST", "/file/move_copy.json") == 1

    def test_rename_to_new_name_goes_through_cache(self, mount, server):
        _write_file(mount, "/a.txt", b"contents")

        mount.rename("/a.txt", "/b.txt")

        assert server.file_named("0", "a.txt") is None
        assert server.files[server.file_named("0", "b.txt")]["data"] == b"contents"

    def test_rename_directory_is_unsupported(self, mount, server):
        server.add_folder("0", "dir")
        with pytest.raises(FuseOSError) as exc_info:
            mount.rename("/dir", "/dir2")
        assert exc_info.value.errno == errno.ENOSYS
