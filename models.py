from datetime import datetime, timezone

from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint

from database import Base


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class User(Base):
    """
    Registered account. ``password_hash`` is a passlib hash; the plain
    password is never stored.
    """

    __tablename__ = "users"
    __table_args__ = (UniqueConstraint("username", name="uq_user_username"),)

    id = Column(Integer, primary_key=True, index=True)
    username = Column(String(20), nullable=False, index=True)
    password_hash = Column(String(256), nullable=False)
    nickname = Column(String(64), nullable=False, default="")
    avatar = Column(Text, nullable=False, default="")
    email = Column(String(256), nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class UserSession(Base):
    """Live login. At most one row per user is expected at any time."""

    __tablename__ = "sessions"
    __table_args__ = (UniqueConstraint("token", name="uq_session_token"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    token = Column(String(128), nullable=False, index=True)
    device_info = Column(Text, nullable=False, default="")
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)


class History(Base):
    """
    One stored analysis. ``record_id`` is the id handed to callers; the
    integer primary key never leaves the adapter. ``result`` holds the
    analysis document as JSON text.
    """

    __tablename__ = "history"
    __table_args__ = (UniqueConstraint("record_id", name="uq_history_record_id"),)

    id = Column(Integer, primary_key=True, index=True)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    record_id = Column(String(64), nullable=False, index=True)
    image_data = Column(Text, nullable=False, default="")
    analysis_image = Column(Text, nullable=False, default="")
    result = Column(Text, nullable=False)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
