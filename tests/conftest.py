"""Shared fixtures: an in-memory OpenDrive server standing in for the HTTP client."""

import hashlib
import io
import itertools
import threading
from collections import Counter

import pytest

from opendrive_fs.config.manager import RemoteProfile
from opendrive_fs.errors import ApiError, AuthError
from opendrive_fs.fs.opendriveFS import OpenDriveFS
from opendrive_fs.opendrive_client.client import UserSessionInfo
from opendrive_fs.opendrive_client.opendrive_api import OpenDriveApi
from opendrive_fs.pacer import Pacer

SESSION_ID = "sess-123"
USERNAME = "alice@example.com"
PASSWORD = "s3cret"


class FakeRaw(io.BytesIO):
    decode_content = False


class FakeResponse:
    def __init__(self, content=b"", status_code=200):
        self.raw = FakeRaw(content)
        self.status_code = status_code
        self.ok = 200 <= status_code < 300
        self.closed = False

    def close(self):
        self.closed = True


class FakeOpenDrive:
    """
    Mimics the OpenDrive endpoints used by the adapter, at the level of
    OpenDriveClient.call_json / call / login.

    Folder "0" is the root. Failures can be queued per path prefix with
    fail(prefix, exc) and are raised on the next matching request.
    """

    def __init__(self):
        self.folders = {"0": {"name": "", "parent": None, "mtime": 1_500_000_000}}
        self.files = {}
        self.uploads = {}
        self.chunks = []
        self.requests = []
        self.failures = []
        self._ids = itertools.count(1)
        self._lock = threading.RLock()
        self.closed = False

    # --- helpers for tests ---

    def fail(self, prefix, exc, times=1):
        for _ in range(times):
            self.failures.append((prefix, exc))

    def count(self, method, prefix):
        return sum(1 for m, p, _ in self.requests if m == method and p.startswith(prefix))

    def calls(self):
        return Counter((m, p.split("/" + SESSION_ID)[0]) for m, p, _ in self.requests)

    def add_folder(self, parent, name, mtime=1_500_000_100):
        with self._lock:
            folder_id = f"fo{next(self._ids)}"
            self.folders[folder_id] = {"name": name, "parent": parent, "mtime": mtime}
            return folder_id

    def add_file(self, parent, name, data=b"", mtime=1_500_000_200):
        with self._lock:
            file_id = f"fi{next(self._ids)}"
            self.files[file_id] = {"name": name, "parent": parent, "data": data, "mtime": mtime}
            return file_id

    def folder_named(self, parent, name):
        for fid, f in self.folders.items():
            if f["parent"] == parent and f["name"] == name:
                return fid
        return None

    def file_named(self, parent, name):
        for fid, f in self.files.items():
            if f["parent"] == parent and f["name"] == name:
                return fid
        return None

    # --- wire helpers ---

    def _record(self, method, path, payload):
        with self._lock:
            self.requests.append((method, path, payload))
            for i, (prefix, exc) in enumerate(self.failures):
                if path.startswith(prefix):
                    del self.failures[i]
                    raise exc

    def _check_session(self, session_id):
        if session_id != SESSION_ID:
            raise AuthError(401, "session expired")

    def _file_json(self, file_id):
        f = self.files[file_id]
        return {
            "FileID": file_id,
            "Name": f["name"],
            "Size": str(len(f["data"])),
            "DateModified": str(f["mtime"]),
            "FileHash": hashlib.md5(f["data"]).hexdigest(),
        }

    def _listing(self, folder_id):
        if folder_id not in self.folders:
            raise ApiError(404, "Folder not found")
        return {
            "Folders": [
                {"FolderID": fid, "Name": f["name"], "DateModified": f["mtime"]}
                for fid, f in self.folders.items() if f["parent"] == folder_id
            ],
            "Files": [self._file_json(fid) for fid, f in self.files.items() if f["parent"] == folder_id],
        }

    def _remove_folder(self, folder_id):
        for fid in [k for k, f in self.folders.items() if f["parent"] == folder_id]:
            self._remove_folder(fid)
        for fid in [k for k, f in self.files.items() if f["parent"] == folder_id]:
            del self.files[fid]
        del self.folders[folder_id]

    # --- OpenDriveClient interface ---

    def close(self):
        self.closed = True

    def login(self, username, password):
        self._record("POST", "/session/login.json", {"username": username})
        if (username, password) != (USERNAME, PASSWORD):
            raise ApiError(403, "wrong credentials")
        return UserSessionInfo(session_id=SESSION_ID, user_name=username)

    def call_json(self, method, path, body=None, params=None):
        self._record(method, path, body if body is not None else params)
        with self._lock:
            parts = path.strip("/").split("/")

            if method == "GET" and path.startswith("/folder/list.json/"):
                self._check_session(parts[2])
                return self._listing(parts[3])

            if method == "GET" and path.startswith("/folder/itembyname.json/"):
                self._check_session(parts[2])
                folder_id = parts[3]
                if folder_id not in self.folders:
                    raise ApiError(404, "Folder not found")
                name = params["name"]
                file_id = self.file_named(folder_id, name)
                return {"Folders": [], "Files": [self._file_json(file_id)] if file_id else []}

            self._check_session(body.get("session_id"))

            if path == "/folder.json":
                parent = body["folder_sub_parent"]
                if parent not in self.folders:
                    raise ApiError(404, "Parent folder not found")
                if self.folder_named(parent, body["folder_name"]):
                    raise ApiError(409, "Folder already exists")
                return {"FolderID": self.add_folder(parent, body["folder_name"]), "Name": body["folder_name"]}

            if path == "/folder/remove.json":
                if body["folder_id"] not in self.folders:
                    raise ApiError(404, "Folder not found")
                self._remove_folder(body["folder_id"])
                return {"DirUpdateTime": 0}

            if path == "/upload/create_file.json":
                file_id = self.add_file(body["folder_id"], body["file_name"])
                return {"FileID": file_id, "Name": body["file_name"], "Size": "0"}

            if path == "/upload/open_file_upload.json":
                temp = f"tmp-{body['file_id']}-{next(self._ids)}"
                self.uploads[temp] = {"file_id": body["file_id"], "size": body["file_size"], "data": b""}
                return {"TempLocation": temp, "RequireCompression": False}

            if path == "/upload/close_file_upload.json":
                upload = self.uploads.pop(body["temp_location"])
                if len(upload["data"]) != body["file_size"]:
                    raise ApiError(400, "size mismatch")
                f = self.files[body["file_id"]]
                f["data"] = upload["data"]
                return {"FileID": body["file_id"], "Size": str(len(f["data"])),
                        "FileHash": hashlib.md5(f["data"]).hexdigest()}

            if path == "/file/filesettings.json":
                self.files[body["file_id"]]["mtime"] = int(body["file_modification_time"])
                return None

            if path == "/file/move_copy.json":
                src = self.files[body["src_file_id"]]
                dst_folder = body["dst_folder_id"]
                existing = self.file_named(dst_folder, src["name"])
                if existing and existing != body["src_file_id"]:
                    del self.files[existing]
                if body["move"] == "true":
                    src["parent"] = dst_folder
                    new_id = body["src_file_id"]
                else:
                    new_id = self.add_file(dst_folder, src["name"], src["data"], src["mtime"])
                return {"FileID": new_id, "Size": str(len(src["data"]))}

        raise ApiError(404, f"unknown endpoint {method} {path}")

    def call(self, method, path, params=None, data=None, files=None, headers=None, stream=False):
        self._record(method, path, {"params": params, "data": data, "files": files})
        with self._lock:
            parts = path.strip("/").split("/")

            if method == "POST" and path == "/upload/upload_file_chunk.json":
                self._check_session(data["session_id"])
                upload = self.uploads[data["temp_location"]]
                chunk = files["file_data"][1]
                if int(data["chunk_offset"]) != len(upload["data"]) or int(data["chunk_size"]) != len(chunk):
                    raise ApiError(400, "bad chunk")
                upload["data"] += chunk
                self.chunks.append((int(data["chunk_offset"]), len(chunk)))
                return FakeResponse(b"{}")

            if method == "GET" and path.startswith("/download/file.json/"):
                self._check_session(params["session_id"])
                file_id = parts[2]
                if file_id not in self.files:
                    raise ApiError(404, "File not found")
                return FakeResponse(self.files[file_id]["data"])

            if method == "DELETE" and path.startswith("/file.json/"):
                self._check_session(parts[1])
                if parts[2] not in self.files:
                    raise ApiError(404, "File not found")
                del self.files[parts[2]]
                return FakeResponse()

        raise ApiError(404, f"unknown endpoint {method} {path}")


def make_pacer(**kwargs):
    """A pacer that never really sleeps."""
    kwargs.setdefault("min_sleep", 0.001)
    kwargs.setdefault("max_sleep", 0.01)
    kwargs.setdefault("sleeper", lambda seconds: None)
    return Pacer(**kwargs)


@pytest.fixture
def server():
    return FakeOpenDrive()


@pytest.fixture
def api(server):
    api = OpenDriveApi(server, make_pacer())
    api.login(USERNAME, PASSWORD)
    server.requests.clear()
    return api


@pytest.fixture
def drive_fs(api):
    return OpenDriveFS("test", "", api, chunk_size=4)


@pytest.fixture
def pacer_factory():
    return make_pacer


@pytest.fixture
def profile():
    return RemoteProfile(name="od", username=USERNAME, password=PASSWORD)
