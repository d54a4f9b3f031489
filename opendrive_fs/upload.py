import logging
from dataclasses import dataclass
from typing import BinaryIO, Optional

from opendrive_fs.config.api_config import CHUNK_SIZE
from opendrive_fs.config.upload_states import (
    UPLOAD_STATE_CHUNK_SENT,
    UPLOAD_STATE_CLOSED,
    UPLOAD_STATE_DONE,
    UPLOAD_STATE_FAILED,
    UPLOAD_STATE_IDLE,
    UPLOAD_STATE_METADATA_SET,
    UPLOAD_STATE_OPENED,
)
from opendrive_fs.errors import ProtocolError
from opendrive_fs.opendrive_client.opendrive_api import FileInfo

logger = logging.getLogger(__name__)


def read_exactly(stream: BinaryIO, n: int) -> bytes:
    """Reads n bytes unless the stream ends first; short reads are retried."""
    parts = []
    remaining = n
    while remaining > 0:
        data = stream.read(remaining)
        if not data:
            break
        parts.append(data)
        remaining -= len(data)
    return b"".join(parts)


@dataclass
class UploadSession:
    """State of one in-flight upload. Discarded when the upload ends."""
    file_id: str
    total_size: int
    temp_location: str = ""
    chunk_offset: int = 0
    chunk_index: int = 0
    state: str = UPLOAD_STATE_IDLE


class UploadEngine:
    """
    Drives open -> chunk* -> close -> set mtime for a single file.

    Chunks go strictly in offset order, one at a time. Each network step is
    retried by the pacer inside the api; a step that still fails aborts the
    whole upload, there is no resume.
    """

    def __init__(self, api, chunk_size: int = CHUNK_SIZE):
        if chunk_size <= 0:
            raise ValueError("chunk_size must be positive")
        self._api = api
        self.chunk_size = chunk_size

    def upload(self, file_id: str, stream: BinaryIO, size: int, mod_time: Optional[float] = None,
               file_name: str = "file") -> FileInfo:
        """
        Uploads size bytes from stream into file_id. Returns the FileInfo the
        server reported on close, which is authoritative for ID and size.
        """
        if size < 0:
            raise ValueError(f"invalid size {size}")
        upload = UploadSession(file_id=file_id, total_size=size)
        try:
            return self._run(upload, stream, mod_time, file_name)
        except Exception:
            failed_in = upload.state
            upload.state = UPLOAD_STATE_FAILED
            logger.error(f"Upload of {file_name} failed in state {failed_in} at chunk {upload.chunk_index} "
                         f"(offset {upload.chunk_offset}/{size})")
            raise

    def _run(self, upload: UploadSession, stream: BinaryIO, mod_time, file_name) -> FileInfo:
        upload.temp_location = self._api.open_upload(upload.file_id, upload.total_size)
        upload.state = UPLOAD_STATE_OPENED
        logger.debug(f"Opened upload for {file_name}: temp_location={upload.temp_location}")

        remaining = upload.total_size
        while remaining > 0:
            want = min(self.chunk_size, remaining)
            chunk = read_exactly(stream, want)
            if len(chunk) != want:
                raise ProtocolError(
                    f"upload truncated: expected {upload.total_size} bytes, "
                    f"stream ended after {upload.chunk_offset + len(chunk)}")
            logger.debug(f"Chunk {upload.chunk_index}: offset={upload.chunk_offset} "
                         f"size={want} remain={remaining - want}")
            self._api.upload_chunk(upload.file_id, upload.temp_location, upload.chunk_offset,
                                   chunk, file_name=file_name)
            upload.chunk_offset += len(chunk)
            upload.chunk_index += 1
            upload.state = UPLOAD_STATE_CHUNK_SENT
            remaining -= len(chunk)

        if stream.read(1):
            raise ProtocolError(f"stream holds more than the declared {upload.total_size} bytes")

        info = self._api.close_upload(upload.file_id, upload.total_size, upload.temp_location)
        upload.state = UPLOAD_STATE_CLOSED
        if info.size != upload.total_size:
            logger.warning(f"Server reports size {info.size} for {file_name}, sent {upload.total_size}")
        logger.debug(f"Closed upload for {file_name}: file_id={info.file_id} size={info.size}")

        if mod_time is not None:
            self._api.set_mod_time(info.file_id, int(mod_time))
            upload.state = UPLOAD_STATE_METADATA_SET

        upload.state = UPLOAD_STATE_DONE
        logger.info(f"Uploaded {file_name} ({info.size} bytes in {upload.chunk_index} chunks)")
        return info
