import errno
import logging
import os
import stat
import threading
import time

from fuse import FUSE, FuseOSError, Operations

from opendrive_fs.errors import (
    CallCancelledError,
    CantCopyError,
    ConflictError,
    DirectoryNotEmpty,
    DirectoryNotFound,
    NotFoundError,
    ObjectNotFound,
    OpenDriveError,
)
from opendrive_fs.objects.base import DirEntry
from opendrive_fs.objects.drive import ObjectInfo

logger = logging.getLogger(__name__)


def errno_for(exc: Exception) -> int:
    """Maps adapter errors onto what the kernel expects."""
    if isinstance(exc, NotFoundError):
        return errno.ENOENT
    if isinstance(exc, DirectoryNotEmpty):
        return errno.ENOTEMPTY
    if isinstance(exc, ConflictError):
        return errno.EEXIST
    if isinstance(exc, CallCancelledError):
        return errno.EINTR
    return errno.EIO


def _dir_attrs(mtime):
    return dict(st_mode=(stat.S_IFDIR | 0o755), st_nlink=2, st_size=0,
                st_ctime=mtime, st_mtime=mtime, st_atime=mtime)


def _file_attrs(size, mtime):
    return dict(st_mode=(stat.S_IFREG | 0o644), st_nlink=1, st_size=size,
                st_ctime=mtime, st_mtime=mtime, st_atime=mtime)


class DriveMountFS(Operations):
    """
    A FUSE filesystem over an OpenDriveFS.

    Reads download the whole file into the local cache on open. Writes go to
    the cache and are uploaded with put() when the file is released.
    """

    def __init__(self, fs, root_cache_dir):
        self.fs = fs
        self.root_cache = root_cache_dir
        os.makedirs(self.root_cache, exist_ok=True)

        # Cache for getattr results: { '/path': {'timestamp': 123, 'attrs': {...}} }
        self.getattr_cache = {}
        self.GETATTR_CACHE_TTL = 5

        # Pending uploads: virtual path -> local cache path
        self.pending_uploads = {}
        self._lock = threading.Lock()

    @staticmethod
    def _remote(path):
        return path.strip('/')

    def _local_path(self, path):
        return os.path.join(self.root_cache, path.lstrip('/'))

    def _cache_attrs(self, path, attrs):
        with self._lock:
            self.getattr_cache[path] = {'timestamp': time.time(), 'attrs': attrs}

    def _invalidate(self, *paths):
        with self._lock:
            for path in paths:
                self.getattr_cache.pop(path, None)

    def _fail(self, op, path, exc):
        code = errno_for(exc)
        if code == errno.ENOENT:
            logger.debug(f"[{op}] {path}: {exc}")
        else:
            logger.error(f"{op} error for {path}: {exc}")
        raise FuseOSError(code) from exc

    def _is_dir(self, path):
        try:
            self.fs.dir_cache.find_dir(self._remote(path), False)
        except DirectoryNotFound:
            return False
        return True

    # --- attributes ---

    def getattr(self, path, fh=None):
        now = time.time()
        if path == '/':
            return _dir_attrs(now)

        with self._lock:
            entry = self.getattr_cache.get(path)
            pending = self.pending_uploads.get(path)
        if pending and os.path.exists(pending):
            st = os.lstat(pending)
            return _file_attrs(st.st_size, st.st_mtime)
        if entry and now - entry['timestamp'] < self.GETATTR_CACHE_TTL:
            return entry['attrs']

        remote = self._remote(path)
        try:
            self.fs.dir_cache.find_dir(remote, False)
            attrs = _dir_attrs(now)
        except DirectoryNotFound:
            try:
                obj = self.fs.new_object(remote)
            except OpenDriveError as e:
                self._fail('getattr', path, e)
            attrs = _file_attrs(obj.size, obj.mod_time or now)
        except OpenDriveError as e:
            self._fail('getattr', path, e)
        self._cache_attrs(path, attrs)
        return attrs

    def readdir(self, path, fh):
        yield '.'
        yield '..'
        try:
            entries = list(self.fs.list(self._remote(path), depth=1))
        except OpenDriveError as e:
            self._fail('readdir', path, e)
        for entry in entries:
            name = entry.remote.rsplit('/', 1)[-1]
            full_path = '/' + entry.remote
            if isinstance(entry, DirEntry):
                attrs = _dir_attrs(entry.mod_time)
            else:
                attrs = _file_attrs(entry.size, entry.mod_time)
            self._cache_attrs(full_path, attrs)
            yield name

    # --- directories ---

    def mkdir(self, path, mode):
        try:
            self.fs.mkdir(self._remote(path))
        except OpenDriveError as e:
            self._fail('mkdir', path, e)
        self._invalidate(path)
        return 0

    def rmdir(self, path):
        try:
            self.fs.rmdir(self._remote(path))
        except OpenDriveError as e:
            self._fail('rmdir', path, e)
        self._invalidate(path)
        return 0

    # --- files ---

    def unlink(self, path):
        with self._lock:
            self.pending_uploads.pop(path, None)
        try:
            self.fs.new_object(self._remote(path)).remove()
        except ObjectNotFound:
            pass
        except OpenDriveError as e:
            self._fail('unlink', path, e)
        local_path = self._local_path(path)
        if os.path.exists(local_path):
            os.remove(local_path)
        self._invalidate(path)

    def _move_via_cache(self, old, new, src):
        local_path = self._ensure_downloaded(old)
        with open(local_path, 'rb') as f:
            self.fs.put(f, ObjectInfo(remote=self._remote(new),
                                      size=os.path.getsize(local_path), mod_time=src.mod_time))
        src.remove()

    def rename(self, old, new):
        """Only files can be moved; OpenDrive has no folder move here."""
        try:
            src = self.fs.new_object(self._remote(old))
            try:
                self.fs.move(src, self._remote(new))
            except CantCopyError:
                # a server side move can't rename
                self._move_via_cache(old, new, src)
        except ObjectNotFound as e:
            if self._is_dir(old):
                raise FuseOSError(errno.ENOSYS) from e
            self._fail('rename', old, e)
        except OpenDriveError as e:
            self._fail('rename', old, e)
        old_local, new_local = self._local_path(old), self._local_path(new)
        if os.path.exists(old_local):
            os.makedirs(os.path.dirname(new_local), exist_ok=True)
            os.replace(old_local, new_local)
        self._invalidate(old, new)
        return 0

    def _ensure_downloaded(self, path):
        local_path = self._local_path(path)
        with self._lock:
            if path in self.pending_uploads:
                return local_path
        obj = self.fs.new_object(self._remote(path))
        if os.path.exists(local_path) and os.path.getsize(local_path) == obj.size:
            return local_path
        logger.info(f"Downloading {path} ({obj.size} bytes)...")
        os.makedirs(os.path.dirname(local_path), exist_ok=True)
        temp_path = f"{local_path}.part"
        stream = obj.open()
        try:
            with open(temp_path, 'wb') as f:
                for chunk in iter(lambda: stream.read(1024 * 1024), b''):
                    f.write(chunk)
        finally:
            stream.close()
        os.replace(temp_path, local_path)
        return local_path

    def open(self, path, flags):
        try:
            local_path = self._ensure_downloaded(path)
        except OpenDriveError as e:
            self._fail('open', path, e)
        if flags & (os.O_WRONLY | os.O_RDWR):
            with self._lock:
                self.pending_uploads[path] = local_path
        return os.open(local_path, flags & ~os.O_CREAT)

    def create(self, path, mode, fi=None):
        local_path = self._local_path(path)
        os.makedirs(os.path.dirname(local_path), exist_ok=True)
        with self._lock:
            self.pending_uploads[path] = local_path
        self._invalidate(path)
        return os.open(local_path, os.O_RDWR | os.O_CREAT | os.O_TRUNC, 0o644)

    def read(self, path, length, offset, fh):
        os.lseek(fh, offset, os.SEEK_SET)
        return os.read(fh, length)

    def write(self, path, buf, offset, fh):
        os.lseek(fh, offset, os.SEEK_SET)
        return os.write(fh, buf)

    def truncate(self, path, length, fh=None):
        try:
            local_path = self._ensure_downloaded(path)
        except OpenDriveError as e:
            self._fail('truncate', path, e)
        with open(local_path, 'r+b') as f:
            f.truncate(length)
        with self._lock:
            self.pending_uploads[path] = local_path

    def _maybe_upload(self, path):
        with self._lock:
            local_path = self.pending_uploads.get(path)
        if not local_path or not os.path.exists(local_path):
            return
        remote = self._remote(path)
        with open(local_path, 'rb') as f:
            self.fs.put(f, ObjectInfo.from_local(local_path, remote))
        with self._lock:
            if self.pending_uploads.get(path) == local_path:
                del self.pending_uploads[path]
        self._invalidate(path)
        logger.info(f"Uploaded {path}")

    def flush(self, path, fh):
        return 0

    def release(self, path, fh):
        os.close(fh)
        try:
            self._maybe_upload(path)
        except OpenDriveError as e:
            self._fail('release', path, e)
        return 0

    def fsync(self, path, datasync, fh):
        try:
            self._maybe_upload(path)
        except OpenDriveError as e:
            self._fail('fsync', path, e)
        return 0

    def utimens(self, path, times=None):
        mtime = times[1] if times else time.time()
        with self._lock:
            pending = path in self.pending_uploads
        if pending:
            os.utime(self._local_path(path), (mtime, mtime))
            return 0
        try:
            self.fs.new_object(self._remote(path)).set_mod_time(mtime)
        except OpenDriveError as e:
            self._fail('utimens', path, e)
        self._invalidate(path)
        return 0

    def destroy(self, path):
        logger.info("Unmounting...")
        self.fs.shutdown()


def mount_daemon(fs, mount_point, cache_dir, foreground=True):
    if not os.path.exists(mount_point):
        os.makedirs(mount_point)

    logger.info("Initializing FUSE driver...")

    # Silence per-request noise
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("requests").setLevel(logging.WARNING)

    FUSE(DriveMountFS(fs, cache_dir), mount_point, foreground=foreground, nothreads=False)
