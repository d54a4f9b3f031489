# opendrive_fs/config/upload_states.py

UPLOAD_STATE_IDLE = "idle"
UPLOAD_STATE_OPENED = "opened"
UPLOAD_STATE_CHUNK_SENT = "chunk_sent"
UPLOAD_STATE_CLOSED = "closed"
UPLOAD_STATE_METADATA_SET = "metadata_set"
UPLOAD_STATE_DONE = "done"
UPLOAD_STATE_FAILED = "failed"
