from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional


@dataclass
class UserRecord:
    id: str
    username: str
    nickname: str = ""
    avatar: str = ""
    email: str = ""
    created_at: Optional[datetime] = None

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "username": self.username,
            "nickname": self.nickname or "",
            "avatar": self.avatar or "",
            "email": self.email or "",
        }


@dataclass
class SessionRecord:
    user_id: str
    token: str
    device_info: str = ""
    created_at: Optional[datetime] = None
    id: Optional[str] = None


@dataclass
class HistoryEntry:
    id: str
    image_data: str
    analysis_image: str
    result: Dict[str, Any]
    created_at: datetime
    user_id: Optional[str] = None

    def to_public(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "imageData": self.image_data,
            "analysisImage": self.analysis_image,
            "result": self.result,
            "timestamp": int(self.created_at.timestamp() * 1000),
        }


class StorageAdapter(ABC):
    """
    Persistence operations both backends implement with identical
    observable behaviour.

    User ids are strings on this side of the contract whatever the
    backend uses internally.
    Neither backend returns the stored credential.
    """

    # users

    @abstractmethod
    def create_user(self, username: str, password: str) -> UserRecord:
        """Store a new user. Raises ``DuplicateUsername``."""

    @abstractmethod
    def find_user_by_username(self, username: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    def find_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        ...

    @abstractmethod
    def verify_credential(self, username: str, password: str) -> UserRecord:
        """Return the user if the password matches, else raise ``InvalidCredential``."""

    @abstractmethod
    def update_user(self, user_id: str, nickname: str, avatar: str, email: str) -> UserRecord:
        """Replace the profile fields. Raises ``UserNotFound``."""

    # sessions

    @abstractmethod
    def create_session(self, user_id: str, device_info: str = "") -> SessionRecord:
        """Start a session, invalidating every earlier session of the user."""

    @abstractmethod
    def find_session_by_token(self, token: str) -> Optional[SessionRecord]:
        ...

    @abstractmethod
    def delete_session(self, token: str) -> None:
        ...

    @abstractmethod
    def delete_all_sessions_for_user(self, user_id: str) -> int:
        ...

    # history

    @abstractmethod
    def count_history(self, user_id: str) -> int:
        ...

    @abstractmethod
    def list_history(self, user_id: str, limit: int) -> List[HistoryEntry]:
        """Newest first, at most ``limit`` entries."""

    @abstractmethod
    def get_history(self, user_id: str, record_id: str) -> Optional[HistoryEntry]:
        ...

    @abstractmethod
    def insert_history(self, user_id: str, entry: HistoryEntry) -> HistoryEntry:
        ...

    @abstractmethod
    def delete_history(self, user_id: str, record_id: str) -> bool:
        """Delete one record. Absent or foreign ids are a no-op returning False."""

    @abstractmethod
    def sweep_expired_history(self, user_id: str, max_age: timedelta, now: datetime) -> int:
        """Delete records whose age is at least ``max_age``; return how many."""
