import json
import logging
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError

from auth import generate_token, hash_password, verify_password
from database import db_session, init_db, make_session_factory
from errors import DuplicateUsername, InvalidCredential, UserNotFound
from models import History, User, UserSession
from storage import HistoryEntry, SessionRecord, StorageAdapter, UserRecord

logger = logging.getLogger(__name__)

TOKEN_ATTEMPTS = 3


def _as_utc(value: datetime) -> datetime:
    # SQLite hands DateTime columns back without tzinfo; everything we
    # write is UTC.
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _pk(user_id: str) -> Optional[int]:
    try:
        return int(user_id)
    except (TypeError, ValueError):
        return None


def _user_record(user: User) -> UserRecord:
    return UserRecord(
        id=str(user.id),
        username=user.username,
        nickname=user.nickname or "",
        avatar=user.avatar or "",
        email=user.email or "",
        created_at=_as_utc(user.created_at),
    )


def _session_record(row: UserSession) -> SessionRecord:
    return SessionRecord(
        id=str(row.id),
        user_id=str(row.user_id),
        token=row.token,
        device_info=row.device_info or "",
        created_at=_as_utc(row.created_at),
    )


def _history_entry(row: History) -> HistoryEntry:
    return HistoryEntry(
        id=row.record_id,
        user_id=str(row.user_id),
        image_data=row.image_data or "",
        analysis_image=row.analysis_image or "",
        result=json.loads(row.result) if row.result else None,
        created_at=_as_utc(row.created_at),
    )


class SQLStorage(StorageAdapter):
    """
    Relational backend. Every public method runs in its own short-lived
    SQLAlchemy session; there is no transaction spanning two calls.
    """

    def __init__(self, engine: Engine):
        self.engine = engine
        self.SessionLocal = make_session_factory(engine)
        init_db(engine)

    # ---------------- Users ----------------

    def create_user(self, username: str, password: str) -> UserRecord:
        with db_session(self.SessionLocal) as db:
            existing = db.query(User.id).filter(User.username == username).first()
            if existing:
                raise DuplicateUsername()

        pwd_hash = hash_password(password)
        try:
            with db_session(self.SessionLocal) as db:
                user = User(username=username, password_hash=pwd_hash)
                db.add(user)
                db.flush()
                record = _user_record(user)
        except IntegrityError as exc:
            # Lost a race with a concurrent registration of the same name.
            raise DuplicateUsername() from exc
        logger.info("Created user %s (id=%s)", username, record.id)
        return record

    def find_user_by_username(self, username: str) -> Optional[UserRecord]:
        with db_session(self.SessionLocal) as db:
            user = db.query(User).filter(User.username == username).first()
            return _user_record(user) if user else None

    def find_user_by_id(self, user_id: str) -> Optional[UserRecord]:
        pk = _pk(user_id)
        if pk is None:
            return None
        with db_session(self.SessionLocal) as db:
            user = db.get(User, pk)
            return _user_record(user) if user else None

    def verify_credential(self, username: str, password: str) -> UserRecord:
        with db_session(self.SessionLocal) as db:
            user = db.query(User).filter(User.username == username).first()
            if not user or not verify_password(password, user.password_hash):
                raise InvalidCredential()
            return _user_record(user)

    def update_user(self, user_id: str, nickname: str, avatar: str, email: str) -> UserRecord:
        pk = _pk(user_id)
        with db_session(self.SessionLocal) as db:
            user = db.get(User, pk) if pk is not None else None
            if not user:
                raise UserNotFound()
            user.nickname = nickname or ""
            user.avatar = avatar or ""
            user.email = email or ""
            db.flush()
            return _user_record(user)

    # ---------------- Sessions ----------------

    def create_session(self, user_id: str, device_info: str = "") -> SessionRecord:
        # Two statements, not one transaction: two logins racing for the
        # same account can both survive until the next login.
        self.delete_all_sessions_for_user(user_id)

        for attempt in range(TOKEN_ATTEMPTS):
            try:
                with db_session(self.SessionLocal) as db:
                    row = UserSession(
                        user_id=int(user_id),
                        token=generate_token(),
                        device_info=device_info or "",
                    )
                    db.add(row)
                    db.flush()
                    return _session_record(row)
            except IntegrityError:
                if attempt == TOKEN_ATTEMPTS - 1:
                    raise
                logger.warning("Session token collision for user %s, retrying", user_id)

    def find_session_by_token(self, token: str) -> Optional[SessionRecord]:
        with db_session(self.SessionLocal) as db:
            row = db.query(UserSession).filter(UserSession.token == token).first()
            return _session_record(row) if row else None

    def delete_session(self, token: str) -> None:
        with db_session(self.SessionLocal) as db:
            db.query(UserSession).filter(UserSession.token == token).delete()

    def delete_all_sessions_for_user(self, user_id: str) -> int:
        pk = _pk(user_id)
        if pk is None:
            return 0
        with db_session(self.SessionLocal) as db:
            return db.query(UserSession).filter(UserSession.user_id == pk).delete()

    # ---------------- History ----------------

    def count_history(self, user_id: str) -> int:
        pk = _pk(user_id)
        if pk is None:
            return 0
        with db_session(self.SessionLocal) as db:
            return db.query(History).filter(History.user_id == pk).count()

    def list_history(self, user_id: str, limit: int) -> List[HistoryEntry]:
        pk = _pk(user_id)
        if pk is None:
            return []
        with db_session(self.SessionLocal) as db:
            rows = (
                db.query(History)
                .filter(History.user_id == pk)
                .order_by(History.created_at.desc(), History.id.desc())
                .limit(limit)
                .all()
            )
            return [_history_entry(row) for row in rows]

    def get_history(self, user_id: str, record_id: str) -> Optional[HistoryEntry]:
        pk = _pk(user_id)
        if pk is None:
            return None
        with db_session(self.SessionLocal) as db:
            row = (
                db.query(History)
                .filter(History.user_id == pk, History.record_id == record_id)
                .first()
            )
            return _history_entry(row) if row else None

    def insert_history(self, user_id: str, entry: HistoryEntry) -> HistoryEntry:
        with db_session(self.SessionLocal) as db:
            row = History(
                user_id=int(user_id),
                record_id=entry.id,
                image_data=entry.image_data,
                analysis_image=entry.analysis_image or "",
                result=json.dumps(entry.result, ensure_ascii=False),
                created_at=_as_utc(entry.created_at),
            )
            db.add(row)
            db.flush()
            return _history_entry(row)

    def delete_history(self, user_id: str, record_id: str) -> bool:
        pk = _pk(user_id)
        if pk is None:
            return False
        with db_session(self.SessionLocal) as db:
            deleted = (
                db.query(History)
                .filter(History.user_id == pk, History.record_id == record_id)
                .delete()
            )
        return deleted > 0

    def sweep_expired_history(self, user_id: str, max_age: timedelta, now: datetime) -> int:
        pk = _pk(user_id)
        if pk is None:
            return 0
        cutoff = _as_utc(now) - max_age
        with db_session(self.SessionLocal) as db:
            return (
                db.query(History)
                .filter(History.user_id == pk, History.created_at <= cutoff)
                .delete(synchronize_session=False)
            )
