# opendrive_fs/opendrive_client/opendrive_api.py
import logging
from dataclasses import dataclass
from typing import Optional

from requests import Response

from opendrive_fs.errors import ProtocolError, SetupError
from opendrive_fs.objects.base import (
    FIELD_FILE_HASH,
    FIELD_FILE_ID,
    FIELD_FOLDER_ID,
    FIELD_SIZE,
    FIELD_TEMP_LOCATION,
    FolderList,
)
from opendrive_fs.opendrive_client.client import OpenDriveClient, UserSessionInfo
from opendrive_fs.opendrive_client.names import replace_reserved_chars
from opendrive_fs.pacer import Pacer

LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileInfo:
    """FileID / Size / FileHash as returned by close-upload and copy."""
    file_id: str
    size: int
    content_hash: str = ""

    @classmethod
    def from_json(cls, data) -> "FileInfo":
        if not isinstance(data, dict) or not data.get(FIELD_FILE_ID):
            raise ProtocolError("response did not contain a FileID")
        try:
            size = int(data.get(FIELD_SIZE) or 0)
        except (TypeError, ValueError) as e:
            raise ProtocolError(f"bad Size in response: {data.get(FIELD_SIZE)!r}") from e
        return cls(
            file_id=str(data[FIELD_FILE_ID]),
            size=size,
            content_hash=str(data.get(FIELD_FILE_HASH) or "").lower(),
        )


class OpenDriveApi:
    """
    The OpenDrive endpoints the filesystem needs. Every method is a single
    paced call; names are escaped here and nowhere else.
    """

    def __init__(self, client: OpenDriveClient, pacer: Pacer):
        if not client:
            raise ValueError("OpenDriveClient is required.")
        self._client = client
        self.pacer = pacer
        self.session: Optional[UserSessionInfo] = None

    @property
    def session_id(self) -> str:
        if self.session is None:
            raise SetupError("not logged in")
        return self.session.session_id

    def login(self, username: str, password: str) -> UserSessionInfo:
        LOGGER.debug(f"Logging in as {username}")
        self.session = self.pacer.call(self._client.login, username, password)
        LOGGER.info(f"Starting OpenDrive session with ID: {self.session.session_id}")
        return self.session

    def close(self):
        LOGGER.debug("Closing OpenDrive HTTP session")
        self._client.close()

    # --- Folders ---

    def list_folder(self, folder_id: str) -> FolderList:
        data = self.pacer.call(
            self._client.call_json, "GET", f"/folder/list.json/{self.session_id}/{folder_id}")
        return FolderList.from_json(data)

    def item_by_name(self, folder_id: str, name: str) -> FolderList:
        data = self.pacer.call(
            self._client.call_json, "GET",
            f"/folder/itembyname.json/{self.session_id}/{folder_id}",
            params={"name": replace_reserved_chars(name)})
        return FolderList.from_json(data)

    def create_folder(self, parent_id: str, name: str) -> str:
        LOGGER.info(f"Creating folder '{name}' in parent ID: {parent_id}")
        body = {
            "session_id": self.session_id,
            "folder_name": replace_reserved_chars(name),
            "folder_sub_parent": parent_id,
            "folder_is_public": 0,
            "folder_public_upl": 0,
            "folder_public_display": 0,
            "folder_public_dnl": 0,
        }
        data = self.pacer.call(self._client.call_json, "POST", "/folder.json", body)
        if not isinstance(data, dict) or not data.get(FIELD_FOLDER_ID):
            raise ProtocolError(f"create folder '{name}' did not return a FolderID")
        return str(data[FIELD_FOLDER_ID])

    def remove_folder(self, folder_id: str) -> None:
        LOGGER.info(f"Removing folder ID: {folder_id}")
        body = {"session_id": self.session_id, "folder_id": folder_id}
        self.pacer.call(self._client.call_json, "POST", "/folder/remove.json", body)

    # --- Files ---

    def create_file(self, folder_id: str, name: str) -> str:
        body = {
            "session_id": self.session_id,
            "folder_id": folder_id,
            "file_name": replace_reserved_chars(name),
        }
        data = self.pacer.call(self._client.call_json, "POST", "/upload/create_file.json", body)
        if not isinstance(data, dict) or not data.get(FIELD_FILE_ID):
            raise ProtocolError(f"create file '{name}' did not return a FileID")
        return str(data[FIELD_FILE_ID])

    def set_mod_time(self, file_id: str, mod_time: int) -> None:
        body = {
            "session_id": self.session_id,
            "file_id": file_id,
            "file_modification_time": str(int(mod_time)),
        }
        self.pacer.call(self._client.call_json, "PUT", "/file/filesettings.json", body)

    def move_copy(self, src_file_id: str, dst_folder_id: str, move: bool = False) -> FileInfo:
        body = {
            "session_id": self.session_id,
            "src_file_id": src_file_id,
            "dst_folder_id": dst_folder_id,
            "move": "true" if move else "false",
            "overwrite_if_exists": "true",
        }
        data = self.pacer.call(self._client.call_json, "POST", "/file/move_copy.json", body)
        return FileInfo.from_json(data)

    def download(self, file_id: str) -> Response:
        return self.pacer.call(
            self._client.call, "GET", f"/download/file.json/{file_id}",
            params={"session_id": self.session_id}, stream=True)

    def delete_file(self, file_id: str) -> None:
        LOGGER.info(f"Deleting file ID: {file_id}")
        response = self.pacer.call(
            self._client.call, "DELETE", f"/file.json/{self.session_id}/{file_id}")
        response.close()

    # --- Upload protocol ---

    def open_upload(self, file_id: str, size: int) -> str:
        body = {"session_id": self.session_id, "file_id": file_id, "file_size": size}
        data = self.pacer.call(self._client.call_json, "POST", "/upload/open_file_upload.json", body)
        if not isinstance(data, dict) or FIELD_TEMP_LOCATION not in data:
            raise ProtocolError("open upload did not return a TempLocation")
        return str(data[FIELD_TEMP_LOCATION])

    def upload_chunk(self, file_id: str, temp_location: str, offset: int, chunk: bytes,
                     file_name: str = "file") -> None:
        """Sends one chunk. The same bytes are resent if the pacer retries."""
        fields = {
            "session_id": self.session_id,
            "file_id": file_id,
            "temp_location": temp_location,
            "chunk_offset": str(offset),
            "chunk_size": str(len(chunk)),
        }

        def send():
            files = {"file_data": (file_name, chunk, "application/octet-stream")}
            return self._client.call("POST", "/upload/upload_file_chunk.json", data=fields, files=files)

        response = self.pacer.call(send)
        response.close()

    def close_upload(self, file_id: str, size: int, temp_location: str) -> FileInfo:
        body = {
            "session_id": self.session_id,
            "file_id": file_id,
            "file_size": size,
            "temp_location": temp_location,
        }
        data = self.pacer.call(self._client.call_json, "POST", "/upload/close_file_upload.json", body)
        return FileInfo.from_json(data)
