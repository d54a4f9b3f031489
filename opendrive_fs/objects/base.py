import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List

from opendrive_fs.errors import ProtocolError
from opendrive_fs.opendrive_client.names import restore_reserved_chars

logger = logging.getLogger(__name__)

# OpenDrive JSON field names
FIELD_FOLDER_ID = "FolderID"
FIELD_FILE_ID = "FileID"
FIELD_NAME = "Name"
FIELD_SIZE = "Size"
FIELD_DATE_MODIFIED = "DateModified"
FIELD_FILE_HASH = "FileHash"
FIELD_FOLDERS = "Folders"
FIELD_FILES = "Files"
FIELD_TEMP_LOCATION = "TempLocation"


def _as_int(value: Any, what: str) -> int:
    # Size and DateModified arrive as strings on some endpoints and ints on others
    if value is None or value == "":
        return 0
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise ProtocolError(f"bad {what} in response: {value!r}") from e


def _require(raw: Dict[str, Any], key: str) -> str:
    value = raw.get(key)
    if value is None or value == "":
        raise ProtocolError(f"response is missing {key}")
    return str(value)


@dataclass
class RemoteFolder:
    """A folder as the server lists it."""
    folder_id: str
    name: str
    mod_time: int = 0

    @classmethod
    def from_json(cls, raw: Dict[str, Any]) -> "RemoteFolder":
        return cls(
            folder_id=_require(raw, FIELD_FOLDER_ID),
            name=restore_reserved_chars(str(raw.get(FIELD_NAME, ""))),
            mod_time=_as_int(raw.get(FIELD_DATE_MODIFIED), FIELD_DATE_MODIFIED),
        )


@dataclass
class RemoteFile:
    """
    A file record as the server lists it. content_hash is the MD5 hex digest,
    empty when the server did not say.
    """
    file_id: str
    name: str
    size: int = 0
    mod_time: int = 0
    content_hash: str = ""

    @classmethod
    def from_json(cls, raw: Dict[str, Any]) -> "RemoteFile":
        size = _as_int(raw.get(FIELD_SIZE), FIELD_SIZE)
        if size < 0:
            raise ProtocolError(f"negative size in response: {size}")
        return cls(
            file_id=_require(raw, FIELD_FILE_ID),
            name=restore_reserved_chars(str(raw.get(FIELD_NAME, ""))),
            size=size,
            mod_time=_as_int(raw.get(FIELD_DATE_MODIFIED), FIELD_DATE_MODIFIED),
            content_hash=str(raw.get(FIELD_FILE_HASH) or "").lower(),
        )


@dataclass
class FolderList:
    """Immediate children of one folder."""
    folders: List[RemoteFolder] = field(default_factory=list)
    files: List[RemoteFile] = field(default_factory=list)

    @classmethod
    def from_json(cls, raw: Any) -> "FolderList":
        if raw is None:
            return cls()
        if not isinstance(raw, dict):
            raise ProtocolError("folder listing is not a JSON object")
        return cls(
            folders=[RemoteFolder.from_json(f) for f in raw.get(FIELD_FOLDERS) or []],
            files=[RemoteFile.from_json(f) for f in raw.get(FIELD_FILES) or []],
        )

    def is_empty(self) -> bool:
        return not self.folders and not self.files


@dataclass
class DirEntry:
    """A directory yielded by a listing."""
    remote: str
    folder_id: str
    mod_time: int = 0
    is_dir: bool = True
