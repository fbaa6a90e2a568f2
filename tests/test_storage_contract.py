from datetime import datetime, timedelta, timezone

import pytest

from errors import DuplicateUsername, InvalidCredential, UserNotFound
from helpers import make_result
from storage import HistoryEntry

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


def entry(record_id, age=timedelta(0), image="data:image/png;base64,AAAA"):
    return HistoryEntry(
        id=record_id,
        image_data=image,
        analysis_image="data:image/png;base64,BBBB",
        result=make_result(),
        created_at=NOW - age,
    )


def test_create_and_find_user(storage):
    user = storage.create_user("alice", "secret1")

    assert user.username == "alice"
    assert storage.find_user_by_username("alice").id == user.id
    assert storage.find_user_by_id(user.id).username == "alice"
    assert storage.find_user_by_username("bob") is None
    assert storage.find_user_by_id("does-not-exist") is None


def test_user_record_never_carries_the_secret(storage):
    user = storage.create_user("alice", "secret1")

    public = user.to_public()
    assert set(public) == {"id", "username", "nickname", "avatar", "email"}
    assert "secret1" not in repr(user)


def test_duplicate_username_rejected_regardless_of_password(storage):
    storage.create_user("alice", "secret1")

    with pytest.raises(DuplicateUsername):
        storage.create_user("alice", "another-password")


def test_verify_credential(storage):
    user = storage.create_user("alice", "secret1")

    assert storage.verify_credential("alice", "secret1").id == user.id
    with pytest.raises(InvalidCredential):
        storage.verify_credential("alice", "wrong-password")
    with pytest.raises(InvalidCredential):
        storage.verify_credential("nobody", "secret1")


def test_update_user(storage):
    user = storage.create_user("alice", "secret1")

    updated = storage.update_user(user.id, nickname="Al", avatar="", email="al@example.com")

    assert updated.nickname == "Al"
    assert updated.email == "al@example.com"
    assert storage.find_user_by_id(user.id).nickname == "Al"
    with pytest.raises(UserNotFound):
        storage.update_user("does-not-exist", "x", "", "")


def test_new_session_replaces_previous_one(storage):
    user = storage.create_user("alice", "secret1")

    first = storage.create_session(user.id, "phone")
    second = storage.create_session(user.id, "laptop")

    assert first.token != second.token
    assert storage.find_session_by_token(first.token) is None
    found = storage.find_session_by_token(second.token)
    assert found.user_id == user.id
    assert found.device_info == "laptop"


def test_delete_session(storage):
    user = storage.create_user("alice", "secret1")
    session = storage.create_session(user.id)

    storage.delete_session(session.token)

    assert storage.find_session_by_token(session.token) is None
    storage.delete_session(session.token)


def test_delete_all_sessions_for_user(storage):
    user = storage.create_user("alice", "secret1")
    session = storage.create_session(user.id)

    assert storage.delete_all_sessions_for_user(user.id) == 1
    assert storage.find_session_by_token(session.token) is None
    assert storage.delete_all_sessions_for_user(user.id) == 0


def test_insert_then_get_is_field_equal(storage):
    user = storage.create_user("alice", "secret1")
    submitted = entry("rec-1")

    storage.insert_history(user.id, submitted)
    fetched = storage.get_history(user.id, "rec-1")

    assert fetched.id == "rec-1"
    assert fetched.image_data == submitted.image_data
    assert fetched.analysis_image == submitted.analysis_image
    assert fetched.result == submitted.result
    assert fetched.created_at == submitted.created_at


def test_list_history_newest_first_and_limited(storage):
    user = storage.create_user("alice", "secret1")
    for i in range(5):
        storage.insert_history(user.id, entry(f"rec-{i}", age=timedelta(hours=5 - i)))

    listed = storage.list_history(user.id, limit=3)

    assert [e.id for e in listed] == ["rec-4", "rec-3", "rec-2"]
    assert storage.count_history(user.id) == 5


def test_history_is_scoped_to_its_owner(storage):
    alice = storage.create_user("alice", "secret1")
    bob = storage.create_user("bob", "secret2")
    storage.insert_history(alice.id, entry("rec-a"))

    assert storage.get_history(bob.id, "rec-a") is None
    assert storage.list_history(bob.id, limit=50) == []
    assert storage.delete_history(bob.id, "rec-a") is False
    assert storage.get_history(alice.id, "rec-a") is not None


def test_delete_history(storage):
    user = storage.create_user("alice", "secret1")
    storage.insert_history(user.id, entry("rec-1"))
    storage.insert_history(user.id, entry("rec-2", age=timedelta(minutes=1)))

    assert storage.delete_history(user.id, "rec-1") is True
    assert storage.delete_history(user.id, "missing") is False
    assert [e.id for e in storage.list_history(user.id, limit=50)] == ["rec-2"]


def test_sweep_partitions_by_age(storage):
    user = storage.create_user("alice", "secret1")
    storage.insert_history(user.id, entry("young", age=timedelta(hours=23)))
    storage.insert_history(user.id, entry("just-over", age=timedelta(hours=24, seconds=1)))
    storage.insert_history(user.id, entry("old", age=timedelta(hours=48)))

    removed = storage.sweep_expired_history(user.id, timedelta(hours=24), NOW)

    assert removed == 2
    assert [e.id for e in storage.list_history(user.id, limit=50)] == ["young"]
    assert storage.sweep_expired_history(user.id, timedelta(hours=24), NOW) == 0
