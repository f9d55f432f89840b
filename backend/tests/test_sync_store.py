from __future__ import annotations

from cardsync.services.sync_store import SyncStore


def test_read_without_blob_is_version_zero(db_session, users):
    user, _ = users
    snapshot = SyncStore(db_session).read(user.id)

    assert snapshot.version == 0
    assert snapshot.data is None
    assert snapshot.exists is False


def test_first_write_creates_blob(db_session, users, clock):
    user, _ = users
    store = SyncStore(db_session, clock=clock)

    assert store.write(user.id, 1, {"iv": "abc", "data": "ciphertext"}) is True
    db_session.commit()

    snapshot = store.read(user.id)
    assert snapshot.version == 1
    assert snapshot.data == {"iv": "abc", "data": "ciphertext"}
    assert snapshot.updated_at == clock()


def test_write_requires_strictly_greater_version(db_session, users):
    user, _ = users
    store = SyncStore(db_session)
    assert store.write(user.id, 5, {"data": "five"}) is True
    db_session.commit()

    assert store.write(user.id, 3, {"data": "three"}) is False
    assert store.write(user.id, 5, {"data": "five again"}) is False
    assert store.current_version(user.id) == 5
    assert store.read(user.id).data == {"data": "five"}

    assert store.write(user.id, 6, {"data": "six"}) is True
    db_session.commit()
    assert store.read(user.id).data == {"data": "six"}


def test_versions_may_skip_ahead(db_session, users):
    user, _ = users
    store = SyncStore(db_session)
    store.write(user.id, 1, {"data": "one"})
    assert store.write(user.id, 42, {"data": "forty-two"}) is True
    assert store.current_version(user.id) == 42


def test_blobs_are_isolated_per_user(db_session, users):
    user, other = users
    store = SyncStore(db_session)
    store.write(user.id, 10, {"data": "mine"})
    db_session.commit()

    assert store.write(other.id, 1, {"data": "theirs"}) is True
    assert store.current_version(user.id) == 10
    assert store.current_version(other.id) == 1


def test_delete_resets_to_version_zero(db_session, users):
    user, _ = users
    store = SyncStore(db_session)
    store.write(user.id, 7, {"data": "x"})
    db_session.commit()

    assert store.delete(user.id) == 1
    assert store.delete(user.id) == 0
    db_session.commit()

    assert store.read(user.id).version == 0
    assert store.write(user.id, 1, {"data": "fresh"}) is True
