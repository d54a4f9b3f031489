import logging
import os
import time
from dataclasses import dataclass
from typing import BinaryIO, Optional

from opendrive_fs.errors import DirectoryNotFound, HashUnsupportedError, ObjectNotFound
from opendrive_fs.objects.base import RemoteFile

logger = logging.getLogger(__name__)

HASH_MD5 = "md5"


@dataclass
class ObjectInfo:
    """What put/update need to know about the source of an upload."""
    remote: str
    size: int
    mod_time: float

    @classmethod
    def from_local(cls, local_path: str, remote: str) -> "ObjectInfo":
        st = os.stat(local_path)
        return cls(remote=remote, size=st.st_size, mod_time=st.st_mtime)


class DriveObject:
    """
    A file on the remote, addressed by its path relative to the adapter root.

    Built either from a listing record (no network) or from a path alone, in
    which case read_meta_data() looks it up by name in its parent folder.
    """

    def __init__(self, fs, remote: str, record: Optional[RemoteFile] = None):
        self.fs = fs
        self.remote = remote
        self.id = ""
        self._size = 0
        self._mod_time = 0.0
        self.md5 = ""
        if record is not None:
            self._set_from_record(record)

    def __str__(self):
        return self.remote

    def __repr__(self):
        return f"<DriveObject {self.remote!r} id={self.id!r}>"

    def _set_from_record(self, record: RemoteFile):
        self.id = record.file_id
        self._size = record.size
        self._mod_time = float(record.mod_time)
        self.md5 = record.content_hash

    # --- metadata ---

    @property
    def size(self) -> int:
        return self._size

    @property
    def mod_time(self) -> float:
        return self._mod_time

    def hash(self, kind: str = HASH_MD5) -> str:
        """Lowercase hex MD5, empty when the server did not report one."""
        if kind != HASH_MD5:
            raise HashUnsupportedError(f"hash type {kind!r} not supported")
        return self.md5

    def read_meta_data(self):
        try:
            leaf, directory_id = self.fs.dir_cache.find_root_and_path(self.remote, False)
        except DirectoryNotFound as e:
            raise ObjectNotFound(f"object not found: {self.remote}") from e
        listing = self.fs.api.item_by_name(directory_id, leaf)
        if not listing.files:
            raise ObjectNotFound(f"object not found: {self.remote}")
        self._set_from_record(listing.files[0])

    # --- operations ---

    def set_mod_time(self, mod_time: float):
        logger.debug(f"[set_mod_time] {self.remote} -> {mod_time}")
        self.fs.api.set_mod_time(self.id, int(mod_time))
        self._mod_time = float(int(mod_time))

    def open(self) -> BinaryIO:
        """Returns a readable stream of the file contents. Close it when done."""
        logger.debug(f"[open] {self.remote}")
        response = self.fs.api.download(self.id)
        response.raw.decode_content = True
        return response.raw

    def remove(self):
        logger.debug(f"[remove] {self.remote} (ID: {self.id})")
        self.fs.api.delete_file(self.id)

    def update(self, stream: BinaryIO, src: ObjectInfo):
        """
        Replaces the contents with size bytes from stream. On failure the
        object is left without an ID so a later put starts from scratch.
        """
        logger.debug(f"[update] {self.remote} (ID: {self.id})")
        try:
            info = self.fs.uploader.upload(self.id, stream, src.size, src.mod_time,
                                           file_name=os.path.basename(self.remote))
        except Exception:
            self.id = ""
            self._size = 0
            self.md5 = ""
            raise
        self.apply_file_info(info, src.mod_time)

    def apply_file_info(self, info, mod_time: Optional[float]):
        """Takes ID, size and hash from a server response, which is authoritative."""
        self.id = info.file_id
        self._size = info.size
        self.md5 = info.content_hash
        self._mod_time = float(int(mod_time)) if mod_time is not None else time.time()
