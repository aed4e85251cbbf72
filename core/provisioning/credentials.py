"""
Reader credential provisioning.

Reader account values are kept in a persistent key/value store so repeated
runs reuse what the first successful run generated.

Usage:
    from core.provisioning.credentials import JsonKeyValueStore, ensure_reader_credentials

    store = JsonKeyValueStore(Path("data/reader_credentials.json"))
    reader = ensure_reader_credentials(store, "ACME_READER", "dbhost:1521/SMG")
"""

import json
import logging
import secrets
import string
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Mapping, Optional

from core.sql_client import Credentials

logger = logging.getLogger(__name__)

READER_USERNAME_KEY = "reader-username"
READER_PASSWORD_KEY = "reader-password"
READER_SERVER_KEY = "reader-server-name"

PASSWORD_LENGTH = 20
# Oracle passwords must start with a letter when unquoted
_PASSWORD_HEAD = string.ascii_letters
_PASSWORD_TAIL = string.ascii_letters + string.digits + "_#"


@dataclass(frozen=True)
class ReaderCredentials(Credentials):
    """Reader login plus the server name it is registered for."""

    server_name: str = ""


class KeyValueStore:
    """
    Persistent string key/value store.

    Subclasses implement _load() and _persist(); update() persists all
    changed keys in a single write.
    """

    def get(self, key: str) -> Optional[str]:
        return self._load().get(key)

    def set(self, key: str, value: str) -> None:
        self.update({key: value})

    def update(self, values: Mapping[str, str]) -> None:
        if not values:
            return
        data = dict(self._load())
        data.update(values)
        self._persist(data)

    def _load(self) -> Dict[str, str]:
        raise NotImplementedError

    def _persist(self, data: Dict[str, str]) -> None:
        raise NotImplementedError


class InMemoryKeyValueStore(KeyValueStore):
    """Store for dry runs and tests; counts persists."""

    def __init__(self, initial: Optional[Mapping[str, str]] = None):
        self._data: Dict[str, str] = dict(initial or {})
        self.persist_count = 0

    def _load(self) -> Dict[str, str]:
        return self._data

    def _persist(self, data: Dict[str, str]) -> None:
        self._data = data
        self.persist_count += 1


class JsonKeyValueStore(KeyValueStore):
    """
    JSON file store with atomic writes.

    The file is written to a temp sibling and moved into place, so a crash
    never leaves a half-written store behind.
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._lock = threading.RLock()

    def _load(self) -> Dict[str, str]:
        if not self.path.exists():
            return {}
        try:
            with open(self.path, "r", encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Corrupted credential store {self.path}: {e}") from e
        if not isinstance(data, dict):
            raise ValueError(f"Credential store {self.path} must contain a JSON object")
        return {str(k): str(v) for k, v in data.items()}

    def _persist(self, data: Dict[str, str]) -> None:
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            temp_file = self.path.with_suffix(".tmp")
            with open(temp_file, "w", encoding="utf-8") as f:
                json.dump(data, f, indent=2, sort_keys=True)
            temp_file.replace(self.path)


def generate_password(length: int = PASSWORD_LENGTH) -> str:
    """Random password valid as an unquoted Oracle identifier."""
    head = secrets.choice(_PASSWORD_HEAD)
    tail = "".join(secrets.choice(_PASSWORD_TAIL) for _ in range(length - 1))
    return head + tail


def ensure_reader_credentials(
    store: KeyValueStore,
    default_username: str,
    default_server: str,
) -> Credentials:
    """
    Look up reader credentials, creating and persisting missing values.

    Values already in the store always win. Missing values are filled in
    (username and server name from the given defaults, password generated)
    and persisted together in one write. Calling this again with the same
    store returns identical credentials and writes nothing.

    Args:
        store: Persistent key/value store
        default_username: Username to use when none is stored
        default_server: Server name to use when none is stored

    Returns:
        Reader credentials (never SYSDBA)
    """
    existing = {
        key: store.get(key)
        for key in (READER_USERNAME_KEY, READER_PASSWORD_KEY, READER_SERVER_KEY)
    }

    missing: Dict[str, str] = {}
    if not existing[READER_USERNAME_KEY]:
        missing[READER_USERNAME_KEY] = default_username
    if not existing[READER_PASSWORD_KEY]:
        missing[READER_PASSWORD_KEY] = generate_password()
    if not existing[READER_SERVER_KEY]:
        missing[READER_SERVER_KEY] = default_server

    if missing:
        store.update(missing)
        logger.info(f"Persisted reader values: {', '.join(sorted(missing))}")
    else:
        logger.info("Reusing stored reader credentials")

    values = {**existing, **missing}
    return ReaderCredentials(
        username=values[READER_USERNAME_KEY],
        password=values[READER_PASSWORD_KEY],
        server_name=values[READER_SERVER_KEY],
    )
