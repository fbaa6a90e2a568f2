import logging
from typing import Any, Dict, Optional, Tuple

import config
from database import make_engine
from errors import ValidationError
from history import HistoryStore
from image_utils import compress_image
from local_storage import FileKeyValueStore, KeyValueStore, LocalStorage
from sessions import SessionManager
from sql_storage import SQLStorage
from storage import HistoryEntry, StorageAdapter
from validation import validate_credentials

logger = logging.getLogger(__name__)

SERVER_MODE = "server"
LOCAL_MODE = "local"


class PhotoCritiqueService:
    """Token-based API over one storage adapter, shared by the HTTP routes and LocalClient."""

    def __init__(self, storage: StorageAdapter, history: HistoryStore, mode: str):
        self.storage = storage
        self.history = history
        self.sessions = SessionManager(storage)
        self.mode = mode

    # ---------------- Accounts ----------------

    def register(self, username: Any, password: Any, device_info: str = "") -> Tuple[str, Dict[str, Any]]:
        """Create an account and log it in. Returns ``(token, user)``."""
        validate_credentials(username, password)
        user = self.storage.create_user(username, password)
        session = self.sessions.open_session(user, device_info)
        return session.token, user.to_public()

    def login(self, username: Any, password: Any, device_info: str = "") -> Tuple[str, Dict[str, Any]]:
        """
        Check the credentials and start a new session; every earlier
        session of the account stops working.
        """
        if not username or not password:
            raise ValidationError("Username and password are required.")
        if not isinstance(username, str) or not isinstance(password, str):
            raise ValidationError("Username and password must be strings.")
        user = self.storage.verify_credential(username, password)
        session = self.sessions.open_session(user, device_info)
        return session.token, user.to_public()

    def logout(self, token: Optional[str]) -> None:
        self.sessions.authenticate(token)
        self.sessions.close_session(token)

    def verify(self, token: Optional[str]) -> Dict[str, Any]:
        return self.sessions.authenticate(token).to_public()

    def get_user(self, token: Optional[str]) -> Dict[str, Any]:
        return self.sessions.authenticate(token).to_public()

    def update_user(self, token: Optional[str], info: Dict[str, Any]) -> Dict[str, Any]:
        user = self.sessions.authenticate(token)
        updated = self.storage.update_user(
            user.id,
            nickname=info.get("nickname") or "",
            avatar=info.get("avatar") or "",
            email=info.get("email") or "",
        )
        return updated.to_public()

    # ---------------- History ----------------

    def list_history(self, token: Optional[str]) -> list:
        user = self.sessions.authenticate(token)
        return self.history.list(user.id)

    def get_history(self, token: Optional[str], record_id: str) -> HistoryEntry:
        user = self.sessions.authenticate(token)
        return self.history.get(user.id, record_id)

    def add_history(self, token: Optional[str], image_data: str, analysis_image: Optional[str], result: Any) -> HistoryEntry:
        user = self.sessions.authenticate(token)
        return self.history.add(user.id, image_data, analysis_image, result)

    def delete_history(self, token: Optional[str], record_id: str) -> bool:
        user = self.sessions.authenticate(token)
        return self.history.delete(user.id, record_id)

    def cleanup_history(self, token: Optional[str]) -> int:
        user = self.sessions.authenticate(token)
        return self.history.sweep(user.id)


def build_server_service(database_url: Optional[str] = None, capacity: Optional[int] = None) -> PhotoCritiqueService:
    storage = SQLStorage(make_engine(database_url or config.DATABASE_URL))
    history = HistoryStore(storage, capacity=capacity or config.SERVER_HISTORY_CAPACITY)
    return PhotoCritiqueService(storage, history, SERVER_MODE)


def build_local_service(
    store: Optional[KeyValueStore] = None,
    capacity: Optional[int] = None,
    hash_credentials: bool = False,
) -> PhotoCritiqueService:
    if store is None:
        store = FileKeyValueStore(config.LOCAL_STORAGE_DIR, quota_bytes=config.LOCAL_STORAGE_QUOTA_BYTES)
    storage = LocalStorage(store, hash_credentials=hash_credentials)
    history = HistoryStore(
        storage,
        capacity=capacity or config.LOCAL_HISTORY_CAPACITY,
        compressor=compress_image,
    )
    return PhotoCritiqueService(storage, history, LOCAL_MODE)


def build_service(mode: Optional[str] = None) -> PhotoCritiqueService:
    """Wire up the backend named by ``mode`` (default ``config.STORAGE_MODE``)."""
    mode = mode or config.STORAGE_MODE
    logger.info("Using %s storage", mode)
    if mode == SERVER_MODE:
        return build_server_service()
    if mode == LOCAL_MODE:
        return build_local_service()
    raise ValueError(f"Unknown storage mode: {mode!r}")
