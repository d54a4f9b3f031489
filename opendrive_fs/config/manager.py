import copy
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import keyring
import keyring.errors
import yaml

from opendrive_fs.config.api_config import (
    CHUNK_SIZE,
    DECAY_CONSTANT,
    MAX_RETRIES,
    MAX_SLEEP,
    MIN_SLEEP,
)
from opendrive_fs.config.obscure import obscure, reveal
from opendrive_fs.errors import SetupError

logger = logging.getLogger(__name__)

CONFIG_DIR = Path(os.path.expanduser("~/.config/opendrive_fs"))
CONFIG_FILE = CONFIG_DIR / "config.yaml"

# Service name for keyring storage
KEYRING_SERVICE_NAME = "OpenDrive-FS"

DEFAULT_CONFIG = {
    "remotes": {},
    "pacer": {
        "min_sleep": MIN_SLEEP,
        "max_sleep": MAX_SLEEP,
        "decay_constant": DECAY_CONSTANT,
        "max_retries": MAX_RETRIES,
        "call_timeout": None,
    },
    "upload": {
        "chunk_size": CHUNK_SIZE,
    },
    "cache_dir": str(Path.home() / ".cache/opendrive_fs"),
}


@dataclass(frozen=True)
class RemoteProfile:
    name: str
    username: str
    password: str
    root: str = ""


@dataclass(frozen=True)
class PacerSettings:
    min_sleep: float = MIN_SLEEP
    max_sleep: float = MAX_SLEEP
    decay_constant: int = DECAY_CONSTANT
    max_retries: Optional[int] = MAX_RETRIES
    call_timeout: Optional[float] = None


class ConfigManager:
    """
    Reads the YAML config file holding remote profiles and tuning knobs.
    One instance per adapter; nothing is shared at module level.
    """

    def __init__(self, config_path: Optional[str] = None):
        self.config_path = Path(os.path.expanduser(config_path)) if config_path else CONFIG_FILE
        self._load()

    def _load(self):
        self._config = copy.deepcopy(DEFAULT_CONFIG)
        if not self.config_path.exists():
            logger.info(f"No config file at {self.config_path}, using defaults.")
            return
        try:
            with open(self.config_path, 'r') as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise SetupError(f"Failed to parse config {self.config_path}: {e}") from e
        if not isinstance(data, dict):
            raise SetupError(f"Config {self.config_path} must be a mapping")
        for key, value in data.items():
            if isinstance(value, dict) and isinstance(self._config.get(key), dict):
                self._config[key].update(value)
            else:
                self._config[key] = value

    def save(self):
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, 'w') as f:
            yaml.safe_dump(self._config, f, default_flow_style=False, sort_keys=False)

    def get(self, key):
        return self._config.get(key)

    def remote_names(self):
        return sorted((self._config.get("remotes") or {}).keys())

    def _remote_section(self, name: str) -> Dict[str, Any]:
        remotes = self._config.get("remotes") or {}
        section = remotes.get(name)
        if section is None:
            raise SetupError(f"remote {name!r} not found in {self.config_path}")
        return section

    def set_remote(self, name: str, username: str, password: str, root: str = ""):
        """Store a remote profile, obscuring the password."""
        remotes = self._config.setdefault("remotes", {})
        remotes[name] = {"username": username, "password": obscure(password)}
        if root:
            remotes[name]["root"] = root
        self.save()

    def load_remote(self, name: str) -> RemoteProfile:
        """
        Returns the credentials for a remote.
        The password comes from the config file (obscured) or, failing that,
        from the system keyring.
        """
        section = self._remote_section(name)

        username = section.get("username")
        if not username:
            raise SetupError("username not found")

        obscured = section.get("password")
        if obscured:
            password = reveal(str(obscured))
        else:
            password = self._get_password_from_keyring(username)
        if not password:
            raise SetupError("password not found")

        logger.debug(f"Loaded remote '{name}' for user {username}")
        return RemoteProfile(name=name, username=username, password=password,
                             root=str(section.get("root") or ""))

    def _get_password_from_keyring(self, username: str) -> Optional[str]:
        try:
            password = keyring.get_password(KEYRING_SERVICE_NAME, username)
        except keyring.errors.KeyringError as e:
            logger.warning(f"Could not retrieve password from keyring: {e}")
            return None
        if password:
            logger.info("Password retrieved from system keyring.")
        return password

    @property
    def pacer(self) -> PacerSettings:
        section = self._config.get("pacer") or {}
        max_retries = section.get("max_retries", MAX_RETRIES)
        call_timeout = section.get("call_timeout")
        return PacerSettings(
            min_sleep=float(section.get("min_sleep", MIN_SLEEP)),
            max_sleep=float(section.get("max_sleep", MAX_SLEEP)),
            decay_constant=int(section.get("decay_constant", DECAY_CONSTANT)),
            max_retries=None if max_retries is None else int(max_retries),
            call_timeout=None if call_timeout is None else float(call_timeout),
        )

    @property
    def chunk_size(self) -> int:
        return int((self._config.get("upload") or {}).get("chunk_size", CHUNK_SIZE))

    @property
    def cache_dir(self) -> str:
        return os.path.expanduser(self.get("cache_dir"))
