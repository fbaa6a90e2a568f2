import json
import logging
import os
import uuid
from abc import ABC, abstractmethod
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

from auth import generate_token, hash_password, verify_password
from config import QUOTA_RETRY_KEEP
from errors import DuplicateUsername, InvalidCredential, StorageQuotaExceeded, UserNotFound
from storage import HistoryEntry, SessionRecord, StorageAdapter, UserRecord

logger = logging.getLogger(__name__)

USERS_KEY = "photo_analysis_users"
SESSION_KEY = "current_session"
HISTORY_KEY_PREFIX = "photo_analysis_history_"


class QuotaExceededError(Exception):
    """The key-value store has no room for the value being written."""


class KeyValueStore(ABC):
    """
    String-to-string store with an optional byte quota covering keys and
    values together. A rejected ``set`` leaves the previous value in place.
    """

    def __init__(self, quota_bytes: Optional[int] = None):
        self.quota_bytes = quota_bytes or None

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str) -> None:
        ...

    @abstractmethod
    def remove(self, key: str) -> None:
        ...

    @abstractmethod
    def usage(self, exclude: Optional[str] = None) -> int:
        """Bytes in use, optionally ignoring one key."""

    def _check_quota(self, key: str, value: str) -> None:
        if self.quota_bytes is None:
            return
        needed = len(key.encode("utf-8")) + len(value.encode("utf-8"))
        if self.usage(exclude=key) + needed > self.quota_bytes:
            raise QuotaExceededError(
                f"writing {key!r} needs {needed} bytes, quota is {self.quota_bytes}"
            )


class MemoryKeyValueStore(KeyValueStore):
    def __init__(self, quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes)
        self._data: Dict[str, str] = {}

    def get(self, key: str) -> Optional[str]:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._check_quota(key, value)
        self._data[key] = value

    def remove(self, key: str) -> None:
        self._data.pop(key, None)

    def usage(self, exclude: Optional[str] = None) -> int:
        return sum(
            len(k.encode("utf-8")) + len(v.encode("utf-8"))
            for k, v in self._data.items()
            if k != exclude
        )


class FileKeyValueStore(KeyValueStore):
    """One ``<key>.json`` file per key under ``directory``."""

    def __init__(self, directory, quota_bytes: Optional[int] = None):
        super().__init__(quota_bytes)
        self.directory = Path(directory)
        self.directory.mkdir(parents=True, exist_ok=True)

    def _path(self, key: str) -> Path:
        return self.directory / f"{key}.json"

    def get(self, key: str) -> Optional[str]:
        path = self._path(key)
        if not path.is_file():
            return None
        return path.read_text(encoding="utf-8")

    def set(self, key: str, value: str) -> None:
        self._check_quota(key, value)
        path = self._path(key)
        tmp = path.with_suffix(".tmp")
        tmp.write_text(value, encoding="utf-8")
        os.replace(tmp, path)

    def remove(self, key: str) -> None:
        self._path(key).unlink(missing_ok=True)

    def usage(self, exclude: Optional[str] = None) -> int:
        total = 0
        for path in self.directory.glob("*.json"):
            key = path.stem
            if key == exclude:
                continue
            total += len(key.encode("utf-8")) + path.stat().st_size
        return total


def _to_millis(value: datetime) -> int:
    return int(value.timestamp() * 1000)


def _from_millis(value: int) -> datetime:
    return datetime.fromtimestamp(value / 1000, tz=timezone.utc)


def _new_id() -> str:
    return uuid.uuid4().hex


class LocalStorage(StorageAdapter):
    """
    Storage contract on top of a KeyValueStore, one JSON blob per collection:
    every account under ``photo_analysis_users``, the current identity under
    ``current_session`` and each user's records, newest first, under
    ``photo_analysis_history_<user>``.

    Passwords are kept as entered unless ``hash_credentials`` is set.
    Writers in separate processes are not coordinated; the last
    whole-collection write wins.
    """

    def __init__(self, store: KeyValueStore, hash_credentials: bool = False):
        self.store = store
        self.hash_credentials = hash_credentials

    # ---------------- Blob helpers ----------------

    def _read(self, key: str, default):
        raw = self.store.get(key)
        if raw is None:
            return default
        return json.loads(raw)

    def _dump(self, key: str, value) -> None:
        self.store.set(key, json.dumps(value, ensure_ascii=False))

    def _write(self, key: str, value) -> None:
        try:
            self._dump(key, value)
        except QuotaExceededError as exc:
            logger.error("Local storage full writing %s: %s", key, exc)
            raise StorageQuotaExceeded() from exc

    def _users(self) -> Dict[str, Dict[str, Any]]:
        return self._read(USERS_KEY, {})

    def _history_key(self, user_id: str) -> str:
        return f"{HISTORY_KEY_PREFIX}{user_id}"

    def _records(self, user_id: str) -> List[Dict[str, Any]]:
        return self._read(self._history_key(user_id), [])

    @staticmethod
    def _user_record(data: Dict[str, Any]) -> UserRecord:
        return UserRecord(
            id=data["id"],
            username=data["username"],
            nickname=data.get("nickname") or "",
            avatar=data.get("avatar") or "",
            email=data.get("email") or "",
            created_at=_from_millis(data["createdAt"]),
        )

    @staticmethod
    def _entry(user_id: str, data: Dict[str, Any]) -> HistoryEntry:
        return HistoryEntry(
            id=data["id"],
            user_id=user_id,
            image_data=data.get("imageData") or "",
            analysis_image=data.get("analysisImage") or "",
            result=data.get("result"),
            created_at=_from_millis(data["timestamp"]),
        )

    # ---------------- Users ----------------

    def create_user(self, username: str, password: str) -> UserRecord:
        users = self._users()
        if username in users:
            raise DuplicateUsername()

        data = {
            "id": _new_id(),
            "username": username,
            "nickname": "",
            "avatar": "",
            "email": "",
            "createdAt": _to_millis(datetime.now(timezone.utc)),
        }
        if self.hash_credentials:
            data["passwordHash"] = hash_password(password)
        else:
            data["password"] = password
        users[username] = data
        self._write(USERS_KEY, users)
        logger.info("Created local user %s", username)
        return self._user_record(data)

    def find_user_by_username(self, username: str) -> Optional[UserRecord]:
        data = self._users().get(username)
        return self._user_record(data) if data else None

    def find_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        for data in self._users().values():
            if data["id"] == user_id:
                return self._user_record(data)
        return None

    def verify_credential(self, username: str, password: str) -> UserRecord:
        data = self._users().get(username)
        if not data:
            raise InvalidCredential()
        if "passwordHash" in data:
            ok = verify_password(password, data["passwordHash"])
        else:
            ok = data.get("password") == password
        if not ok:
            raise InvalidCredential()
        return self._user_record(data)

    def update_user(self, user_id: str, nickname: str, avatar: str, email: str) -> UserRecord:
        users = self._users()
        for data in users.values():
            if data["id"] == user_id:
                data["nickname"] = nickname or ""
                data["avatar"] = avatar or ""
                data["email"] = email or ""
                self._write(USERS_KEY, users)
                return self._user_record(data)
        raise UserNotFound()

    # ---------------- Sessions ----------------

    def _pointer(self) -> Optional[Dict[str, Any]]:
        return self._read(SESSION_KEY, None)

    def create_session(self, user_id: str, device_info: str = "") -> SessionRecord:
        # Only one pointer exists, so overwriting it is the whole
        # single-session rule.
        pointer = {
            "id": _new_id(),
            "userId": user_id,
            "token": f"local_{generate_token()}",
            "deviceInfo": device_info or "",
            "createdAt": _to_millis(datetime.now(timezone.utc)),
        }
        self._write(SESSION_KEY, pointer)
        return self._session_record(pointer)

    @staticmethod
    def _session_record(pointer: Dict[str, Any]) -> SessionRecord:
        return SessionRecord(
            id=pointer["id"],
            user_id=pointer["userId"],
            token=pointer["token"],
            device_info=pointer.get("deviceInfo", ""),
            created_at=_from_millis(pointer["createdAt"]),
        )

    def find_session_by_token(self, token: str) -> Optional[SessionRecord]:
        pointer = self._pointer()
        if pointer and pointer["token"] == token:
            return self._session_record(pointer)
        return None

    def delete_session(self, token: str) -> None:
        pointer = self._pointer()
        if pointer and pointer["token"] == token:
            self.store.remove(SESSION_KEY)

    def delete_all_sessions_for_user(self, user_id: str) -> int:
        pointer = self._pointer()
        if pointer and pointer["userId"] == user_id:
            self.store.remove(SESSION_KEY)
            return 1
        return 0

    # ---------------- History ----------------

    def count_history(self, user_id: str) -> int:
        return len(self._records(user_id))

    def list_history(self, user_id: str, limit: int) -> List[HistoryEntry]:
        records = sorted(self._records(user_id), key=lambda r: r["timestamp"], reverse=True)
        return [self._entry(user_id, r) for r in records[:limit]]

    def get_history(self, user_id: str, record_id: str) -> Optional[HistoryEntry]:
        for record in self._records(user_id):
            if record["id"] == record_id:
                return self._entry(user_id, record)
        return None

    def insert_history(self, user_id: str, entry: HistoryEntry) -> HistoryEntry:
        key = self._history_key(user_id)
        record = {
            "id": entry.id,
            "imageData": entry.image_data,
            "analysisImage": entry.analysis_image or "",
            "result": entry.result,
            "timestamp": _to_millis(entry.created_at),
        }
        records = [record] + self._records(user_id)
        try:
            self._dump(key, records)
        except QuotaExceededError as exc:
            logger.warning(
                "Local storage full for user %s (%s), keeping the newest %d records",
                user_id, exc, QUOTA_RETRY_KEEP,
            )
            records.sort(key=lambda r: r["timestamp"], reverse=True)
            try:
                self._dump(key, records[:QUOTA_RETRY_KEEP])
            except QuotaExceededError as retry_exc:
                logger.error("Local storage still full after trimming: %s", retry_exc)
                raise StorageQuotaExceeded() from retry_exc
        return self._entry(user_id, record)

    def delete_history(self, user_id: str, record_id: str) -> bool:
        records = self._records(user_id)
        kept = [r for r in records if r["id"] != record_id]
        if len(kept) == len(records):
            return False
        self._write(self._history_key(user_id), kept)
        return True

    def sweep_expired_history(self, user_id: str, max_age: timedelta, now: datetime) -> int:
        records = self._records(user_id)
        now_ms = _to_millis(now)
        max_age_ms = max_age.total_seconds() * 1000
        kept = [r for r in records if now_ms - r["timestamp"] < max_age_ms]
        removed = len(records) - len(kept)
        if removed:
            self._write(self._history_key(user_id), kept)
        return removed
