from datetime import timedelta

import pytest

from errors import CapacityExceeded, NotFound, ValidationError
from helpers import make_data_url, make_result
from history import HistoryStore
from local_storage import LocalStorage, MemoryKeyValueStore

IMAGE = "data:image/png;base64,AAAA"


@pytest.fixture
def user(storage):
    return storage.create_user("alice", "secret1")


def test_add_and_get_round_trip(storage, user, clock):
    history = HistoryStore(storage, capacity=5, clock=clock)
    result = make_result(improvement="Lower the horizon.")

    added = history.add(user.id, IMAGE, "data:image/png;base64,BBBB", result)
    fetched = history.get(user.id, added.id)

    assert fetched.image_data == IMAGE
    assert fetched.analysis_image == "data:image/png;base64,BBBB"
    assert fetched.result == result
    assert fetched.created_at == clock.now


def test_record_ids_are_unique(storage, user, clock):
    history = HistoryStore(storage, capacity=10, clock=clock)

    ids = {history.add(user.id, IMAGE, "", make_result()).id for _ in range(5)}

    assert len(ids) == 5


def test_capacity_boundary(storage, user, clock):
    history = HistoryStore(storage, capacity=3, clock=clock)
    for _ in range(3):
        history.add(user.id, IMAGE, "", make_result())
        clock.advance(timedelta(minutes=1))

    with pytest.raises(CapacityExceeded) as excinfo:
        history.add(user.id, IMAGE, "", make_result())

    assert "3" in str(excinfo.value)
    assert storage.count_history(user.id) == 3


def test_capacity_is_per_user(storage, clock):
    history = HistoryStore(storage, capacity=1, clock=clock)
    alice = storage.create_user("alice", "secret1")
    bob = storage.create_user("bob", "secret2")

    history.add(alice.id, IMAGE, "", make_result())
    history.add(bob.id, IMAGE, "", make_result())


def test_incomplete_or_invalid_input_rejected_before_write(storage, user, clock):
    history = HistoryStore(storage, capacity=5, clock=clock)
    broken = make_result()
    del broken["lighting"]

    with pytest.raises(ValidationError):
        history.add(user.id, "", "", make_result())
    with pytest.raises(ValidationError):
        history.add(user.id, IMAGE, "", None)
    with pytest.raises(ValidationError, match="lighting"):
        history.add(user.id, IMAGE, "", broken)

    assert storage.count_history(user.id) == 0


def test_list_is_newest_first_and_capped(storage, user, clock):
    history = HistoryStore(storage, capacity=10, return_limit=4, clock=clock)
    added = []
    for _ in range(6):
        added.append(history.add(user.id, IMAGE, "", make_result()).id)
        clock.advance(timedelta(minutes=1))

    assert [e.id for e in history.list(user.id)] == list(reversed(added))[:4]


def test_get_missing_record(storage, user, clock):
    history = HistoryStore(storage, capacity=5, clock=clock)

    with pytest.raises(NotFound):
        history.get(user.id, "missing")


def test_delete_removes_from_listing(storage, user, clock):
    history = HistoryStore(storage, capacity=5, clock=clock)
    keep = history.add(user.id, IMAGE, "", make_result())
    clock.advance(timedelta(minutes=1))
    drop = history.add(user.id, IMAGE, "", make_result())

    assert history.delete(user.id, drop.id) is True
    assert history.delete(user.id, "missing") is False
    assert [e.id for e in history.list(user.id)] == [keep.id]


def test_sweep_removes_records_a_day_old(storage, user, clock):
    history = HistoryStore(storage, capacity=5, clock=clock)
    old = history.add(user.id, IMAGE, "", make_result())
    clock.advance(timedelta(hours=1))
    fresh = history.add(user.id, IMAGE, "", make_result())
    clock.advance(timedelta(hours=23, minutes=30))

    assert history.sweep(user.id) == 1
    assert [e.id for e in history.list(user.id)] == [fresh.id]


def test_records_are_not_swept_without_a_sweep(storage, user, clock):
    history = HistoryStore(storage, capacity=5, clock=clock)
    history.add(user.id, IMAGE, "", make_result())
    clock.advance(timedelta(days=3))

    assert len(history.list(user.id)) == 1


def test_compressor_applied_to_both_images(clock):
    storage = LocalStorage(MemoryKeyValueStore())
    user = storage.create_user("alice", "secret1")
    history = HistoryStore(storage, capacity=5, compressor=lambda s: f"small:{s}", clock=clock)

    added = history.add(user.id, "img", "overlay", make_result())

    assert added.image_data == "small:img"
    assert added.analysis_image == "small:overlay"


def test_real_compression_shrinks_large_images(clock):
    from image_utils import compress_image

    storage = LocalStorage(MemoryKeyValueStore())
    user = storage.create_user("alice", "secret1")
    history = HistoryStore(storage, capacity=5, compressor=compress_image, clock=clock)
    original = make_data_url(1000, 800)

    added = history.add(user.id, original, "", make_result())

    assert added.image_data.startswith("data:image/jpeg;base64,")
    assert len(added.image_data) < len(original)
    assert added.analysis_image == ""
