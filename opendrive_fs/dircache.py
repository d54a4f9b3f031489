"""
Path -> folder ID cache.

OpenDrive addresses folders by ID only, so every path has to be walked one
segment at a time from the root. Resolved IDs are memoized here for the life
of the process and flushed when a folder goes away.
"""
import logging
import threading
from collections import deque
from dataclasses import dataclass
from typing import Callable, Dict, Iterator, List, Optional, Tuple

from opendrive_fs.config.api_config import ROOT_FOLDER_ID
from opendrive_fs.errors import DirectoryNotFound
from opendrive_fs.objects.base import FolderList

logger = logging.getLogger(__name__)


def split_path(path: str) -> Tuple[str, str]:
    """'a/b/c' -> ('a/b', 'c'), 'c' -> ('', 'c')"""
    path = path.strip("/")
    if "/" not in path:
        return "", path
    directory, leaf = path.rsplit("/", 1)
    return directory, leaf


def normalize(path: str) -> str:
    return "/".join(p for p in path.split("/") if p)


@dataclass(frozen=True)
class ListDirJob:
    """List folder dir_id, whose entries live under path; depth None is unbounded."""
    dir_id: str
    path: str
    depth: Optional[int]


class DirCache:
    """
    Maps paths (relative to the adapter root) to folder IDs.

    api needs list_folder(folder_id) and create_folder(parent_id, name).
    """

    def __init__(self, root: str, api, true_root_id: str = ROOT_FOLDER_ID):
        self.root = normalize(root)
        self.true_root_id = true_root_id
        self._api = api

        self._cache: Dict[str, str] = {}
        self._cache_lock = threading.Lock()
        # one lock per path so lookup-then-create never runs twice for it
        self._path_locks: Dict[str, threading.Lock] = {}

        self._root_lock = threading.Lock()
        self.root_id: Optional[str] = None
        self.found_root = False

    # --- raw map access ---

    def get(self, path: str) -> Optional[str]:
        with self._cache_lock:
            return self._cache.get(path)

    def put(self, path: str, folder_id: str):
        with self._cache_lock:
            self._cache[path] = folder_id

    def _lock_for(self, path: str) -> threading.Lock:
        with self._cache_lock:
            lock = self._path_locks.get(path)
            if lock is None:
                lock = self._path_locks[path] = threading.Lock()
            return lock

    def flush(self, path: str = ""):
        """Forget path and everything below it. flush('') forgets everything."""
        path = normalize(path)
        # per-path locks are kept; a resolver may still hold one
        with self._cache_lock:
            if path == "":
                self._cache.clear()
            else:
                prefix = path + "/"
                for key in [k for k in self._cache if k == path or k.startswith(prefix)]:
                    del self._cache[key]
        if path == "":
            with self._root_lock:
                self.found_root = False
                self.root_id = None
        logger.debug(f"[flush] Flushed '{path}'")

    def __len__(self):
        with self._cache_lock:
            return len(self._cache)

    # --- network operations ---

    def list_directory(self, folder_id: str) -> FolderList:
        return self._api.list_folder(folder_id)

    def find_leaf(self, parent_id: str, leaf: str) -> Tuple[Optional[str], bool]:
        """Finds the folder named leaf (case sensitive) directly inside parent_id."""
        logger.debug(f"[find_leaf] parent_id:{parent_id}; leaf:{leaf}")
        if parent_id == self.true_root_id and leaf == "":
            return parent_id, True
        listing = self.list_directory(parent_id)
        for folder in listing.folders:
            if folder.name == leaf:
                return folder.folder_id, True
        return None, False

    def create_dir(self, parent_id: str, leaf: str) -> str:
        logger.debug(f"[create_dir] parent_id:{parent_id}; leaf:{leaf}")
        return self._api.create_folder(parent_id, leaf)

    # --- path resolution ---

    def _find_dir(self, path: str, create: bool, base_id: str) -> str:
        """Resolves path below base_id, whose own path is ''."""
        if path == "":
            return base_id
        cached = self.get(path)
        if cached is not None:
            return cached

        directory, leaf = split_path(path)
        parent_id = self._find_dir(directory, create, base_id)

        with self._lock_for(path):
            # someone may have resolved it while we waited
            cached = self.get(path)
            if cached is not None:
                return cached
            folder_id, found = self.find_leaf(parent_id, leaf)
            if not found:
                if not create:
                    raise DirectoryNotFound(f"directory not found: {path}")
                folder_id = self.create_dir(parent_id, leaf)
                logger.info(f"Created folder '{path}' (ID: {folder_id})")
            self.put(path, folder_id)
            return folder_id

    def find_root(self, create: bool):
        """Resolves the adapter root once. Raises DirectoryNotFound if absent."""
        if self.found_root:
            return
        with self._root_lock:
            if self.found_root:
                return
            # the root is resolved against the store root with its own keys
            walked = self.true_root_id
            for segment in [s for s in self.root.split("/") if s]:
                folder_id, found = self.find_leaf(walked, segment)
                if not found:
                    if not create:
                        raise DirectoryNotFound(f"root directory not found: {self.root}")
                    folder_id = self.create_dir(walked, segment)
                    logger.info(f"Created root folder segment '{segment}' (ID: {folder_id})")
                walked = folder_id
            self.root_id = walked
            self.found_root = True
            logger.debug(f"[find_root] root:'{self.root}'; root_id:{self.root_id}")

    def find_dir(self, path: str, create: bool) -> str:
        self.find_root(create)
        return self._find_dir(normalize(path), create, self.root_id)

    def find_root_and_path(self, path: str, create: bool) -> Tuple[str, str]:
        """Returns (leaf, parent folder ID) for path, e.g. a file to be written."""
        self.find_root(create)
        directory, leaf = split_path(normalize(path))
        return leaf, self._find_dir(directory, create, self.root_id)

    # --- enumeration ---

    def walk(self, list_dir: Callable[[ListDirJob], Tuple[List, List[ListDirJob]]],
             path: str = "", depth: Optional[int] = None) -> Iterator:
        """
        Lists path and, depth permitting, everything below it.

        list_dir(job) returns (entries, more_jobs) for one folder. Entries are
        yielded as each folder is read rather than after the whole tree.
        depth=1 lists only the folder itself; None means no limit.
        """
        path = normalize(path)
        dir_id = self.find_dir(path, False)
        prefix = path + "/" if path else ""
        jobs = deque([ListDirJob(dir_id, prefix, None if depth is None else depth - 1)])
        while jobs:
            job = jobs.popleft()
            entries, more = list_dir(job)
            for entry in entries:
                yield entry
            jobs.extend(more)
