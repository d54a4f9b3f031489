import logging
import threading
from typing import BinaryIO, Callable, Iterator, List, Optional, Tuple

from opendrive_fs.config.api_config import CHUNK_SIZE, DEFAULT_ENDPOINT, PRECISION, ROOT_FOLDER_ID
from opendrive_fs.config.manager import PacerSettings, RemoteProfile
from opendrive_fs.dircache import DirCache, ListDirJob, normalize, split_path
from opendrive_fs.errors import (
    CantCopyError,
    DirectoryNotEmpty,
    DirectoryNotFound,
    ObjectNotFound,
    OpenDriveError,
    RootPurgeError,
    SameNameCopyError,
)
from opendrive_fs.objects.base import DirEntry
from opendrive_fs.objects.drive import HASH_MD5, DriveObject, ObjectInfo
from opendrive_fs.opendrive_client.client import OpenDriveClient
from opendrive_fs.opendrive_client.opendrive_api import OpenDriveApi
from opendrive_fs.pacer import Pacer
from opendrive_fs.upload import UploadEngine

logger = logging.getLogger(__name__)


class OpenDriveFS:
    """
    An OpenDrive account (or a folder inside it) seen as a filesystem.

    Paths are relative to root. The instance owns the session, the path cache,
    the pacer and the upload engine; nothing is shared between instances.
    """

    def __init__(self, name: str, root: str, api: OpenDriveApi,
                 chunk_size: int = CHUNK_SIZE,
                 cancel_event: Optional[threading.Event] = None):
        self.name = name
        self.root = normalize(root)
        self.api = api
        self.cancel_event = cancel_event or threading.Event()
        if self.api.pacer.cancel_event is None:
            self.api.pacer.cancel_event = self.cancel_event
        self.dir_cache = DirCache(self.root, api, ROOT_FOLDER_ID)
        self.uploader = UploadEngine(api, chunk_size)
        self.root_is_file = False

    def __str__(self):
        return f"OpenDrive root '{self.root}'"

    @property
    def precision(self) -> float:
        return PRECISION

    @property
    def hashes(self):
        return {HASH_MD5}

    def root_slash(self) -> str:
        return self.root + "/" if self.root else ""

    def shutdown(self):
        """Stops in-flight retry loops, which raise CallCancelledError, and closes the HTTP session."""
        self.cancel_event.set()
        self.api.close()

    # --- directories ---

    def mkdir(self, dir: str = ""):
        logger.debug(f"[mkdir] '{dir}'")
        self.dir_cache.find_root(True)
        if normalize(dir):
            self.dir_cache.find_dir(dir, True)

    def _purge_check(self, dir: str, check: bool):
        dir = normalize(dir)
        if not normalize(f"{self.root}/{dir}"):
            raise RootPurgeError("can't purge root directory")
        self.dir_cache.find_root(False)
        folder_id = self.dir_cache.find_dir(dir, False)
        if check:
            listing = self.api.list_folder(folder_id)
            if not listing.is_empty():
                raise DirectoryNotEmpty(f"folder not empty: {dir or self.root}")
        self.api.remove_folder(folder_id)
        self.dir_cache.flush(dir)

    def rmdir(self, dir: str = ""):
        """Removes an empty directory."""
        logger.debug(f"[rmdir] '{self.root_slash()}{dir}'")
        self._purge_check(dir, True)

    def purge(self, dir: str = ""):
        """Removes a directory and everything in it."""
        logger.debug(f"[purge] '{self.root_slash()}{dir}'")
        self._purge_check(dir, False)

    # --- listing ---

    def list_dir(self, job: ListDirJob,
                 include_directory: Optional[Callable[[str], bool]] = None) -> Tuple[List, List[ListDirJob]]:
        """Reads one folder. Returns (entries, jobs for the subfolders to descend into)."""
        logger.debug(f"[list_dir] {job}")
        listing = self.api.list_folder(job.dir_id)
        entries = []
        jobs = []
        for folder in listing.folders:
            remote = job.path + folder.name
            if include_directory is not None and not include_directory(remote):
                continue
            entries.append(DirEntry(remote=remote, folder_id=folder.folder_id, mod_time=folder.mod_time))
            # a listed folder's ID is as good as a resolved one
            self.dir_cache.put(remote, folder.folder_id)
            if job.depth is None or job.depth > 0:
                jobs.append(ListDirJob(folder.folder_id, remote + "/",
                                       None if job.depth is None else job.depth - 1))
        for record in listing.files:
            entries.append(DriveObject(self, job.path + record.name, record))
        return entries, jobs

    def list(self, dir: str = "", depth: Optional[int] = 1,
             include_directory: Optional[Callable[[str], bool]] = None) -> Iterator:
        """
        Yields DirEntry and DriveObject items under dir. depth=None recurses
        without limit; include_directory(remote) returning False skips that
        directory and everything below it.
        """
        return self.dir_cache.walk(lambda job: self.list_dir(job, include_directory), dir, depth)

    # --- objects ---

    def new_object(self, remote: str) -> DriveObject:
        """Finds the object at remote, raising ObjectNotFound if absent."""
        logger.debug(f"[new_object] '{remote}'")
        obj = DriveObject(self, normalize(remote))
        obj.read_meta_data()
        return obj

    def _create_object(self, remote: str) -> Tuple[DriveObject, str, str]:
        """Makes sure the parent exists. Returns (object, leaf, directory_id)."""
        remote = normalize(remote)
        leaf, directory_id = self.dir_cache.find_root_and_path(remote, True)
        return DriveObject(self, remote), leaf, directory_id

    def put(self, stream: BinaryIO, src: ObjectInfo) -> DriveObject:
        """Uploads stream to src.remote, creating the file if needed."""
        logger.debug(f"[put] '{src.remote}'")
        obj, leaf, directory_id = self._create_object(src.remote)
        try:
            obj.read_meta_data()
        except ObjectNotFound:
            pass
        if not obj.id:
            obj.id = self.api.create_file(directory_id, leaf)
            logger.debug(f"[put] created file '{src.remote}' (ID: {obj.id})")
        obj.update(stream, src)
        return obj

    def _check_not_same_name(self, src: DriveObject, remote: str):
        src_path = src.fs.root_slash() + src.remote
        dst_path = self.root_slash() + normalize(remote)
        if src_path.lower() == dst_path.lower():
            raise SameNameCopyError(f"Can't copy {src_path!r} -> {dst_path!r} as are same name when lowercase")

    def _move_copy(self, src, remote: str, move: bool) -> DriveObject:
        if not isinstance(src, DriveObject) or not isinstance(src.fs, OpenDriveFS):
            raise CantCopyError("Can't copy - not same remote type")
        self._check_not_same_name(src, remote)
        # move_copy keeps the source name
        if split_path(normalize(remote))[1] != split_path(src.remote)[1]:
            raise CantCopyError("Can't copy - destination name differs from source")
        src.read_meta_data()

        dst, _, directory_id = self._create_object(remote)
        info = self.api.move_copy(src.id, directory_id, move=move)
        dst.apply_file_info(info, src.mod_time)
        if not dst.md5:
            dst.md5 = src.md5
        return dst

    def copy(self, src: DriveObject, remote: str) -> DriveObject:
        """Server side copy of src to remote, overwriting whatever is there."""
        logger.debug(f"[copy] '{src}' -> '{remote}'")
        return self._move_copy(src, remote, move=False)

    def move(self, src: DriveObject, remote: str) -> DriveObject:
        """Server side move of src to remote. src is gone afterwards."""
        logger.debug(f"[move] '{src}' -> '{remote}'")
        dst = self._move_copy(src, remote, move=True)
        src.id = ""
        return dst


def connect(profile: RemoteProfile,
            pacer_settings: Optional[PacerSettings] = None,
            chunk_size: int = CHUNK_SIZE,
            endpoint: str = DEFAULT_ENDPOINT,
            client: Optional[OpenDriveClient] = None) -> OpenDriveFS:
    """
    Logs in and returns the filesystem for profile.

    If the profile's root names a file rather than a folder, the returned
    filesystem points at the parent folder and has root_is_file set.
    """
    settings = pacer_settings or PacerSettings()
    cancel_event = threading.Event()
    pacer = Pacer(
        min_sleep=settings.min_sleep,
        max_sleep=settings.max_sleep,
        decay_constant=settings.decay_constant,
        max_retries=settings.max_retries,
        call_timeout=settings.call_timeout,
        cancel_event=cancel_event,
    )
    api = OpenDriveApi(client or OpenDriveClient(endpoint), pacer)
    try:
        api.login(profile.username, profile.password)
    except OpenDriveError as e:
        raise OpenDriveError(f"failed to create session: {e}") from e

    fs = OpenDriveFS(profile.name, profile.root, api, chunk_size, cancel_event)
    try:
        fs.dir_cache.find_root(False)
    except DirectoryNotFound:
        new_root, leaf = split_path(fs.root)
        if not leaf:
            return fs
        parent_fs = OpenDriveFS(profile.name, new_root, api, chunk_size, cancel_event)
        try:
            parent_fs.dir_cache.find_root(False)
            parent_fs.new_object(leaf)
        except (DirectoryNotFound, ObjectNotFound):
            # nothing there yet, mkdir/put will create it
            return fs
        parent_fs.root_is_file = True
        logger.info(f"Root '{fs.root}' is a file, using parent '{new_root}'")
        return parent_fs
    return fs
