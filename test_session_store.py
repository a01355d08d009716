"""
Tests for the session store.
"""
import gc
import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import sessionmaker

from berries.database import init_db
from berries.errors import NotFound, PersistenceError
from berries.models.chat_session import ChatSession
from berries.services import session_store
from berries.services.session_store import SessionStore, Turn


def test_get_or_create_is_idempotent(store):
    first = store.get_or_create_session("new@example.com")
    second = store.get_or_create_session("new@example.com")
    assert first.id == second.id
    assert first.title == "New Chart"
    assert first.is_pinned is False
    assert len(store.list_sessions("new@example.com")) == 1


def test_get_or_create_separates_identities(store):
    a = store.get_or_create_session("a@example.com")
    b = store.get_or_create_session("b@example.com")
    assert a.id != b.id


def test_get_or_create_returns_most_recent_session(store):
    store.create_session("alice@example.com", "Older")
    newest = store.create_session("alice@example.com", "Newer")
    assert store.get_or_create_session("alice@example.com").id == newest.id


def test_concurrent_first_access_creates_one_session(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    init_db(engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    workers = 8
    barrier = threading.Barrier(workers)
    ids = []
    errors = []

    def worker():
        db = factory()
        try:
            barrier.wait()
            ids.append(SessionStore(db).get_or_create_session("race@example.com").id)
        except Exception as e:  # surfaced through the assertion below
            errors.append(e)
        finally:
            db.close()

    threads = [threading.Thread(target=worker) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert errors == []
    assert len(set(ids)) == 1
    db = factory()
    assert db.query(ChatSession).filter(ChatSession.user_id == "race@example.com").count() == 1
    db.close()
    engine.dispose()


def test_fresh_session_has_no_turns(store):
    session = store.get_or_create_session("alice@example.com")
    assert store.list_turns(session.id) == []


def test_turns_replay_in_order_with_roles(store):
    session = store.get_or_create_session("alice@example.com")
    store.append_turn(session.id, Turn(role="user", kind="text", content="hi"))
    store.append_turn(session.id, Turn(role="assistant", kind="text", content="hello"))

    turns = store.list_turns(session.id)
    assert [(t.role, t.content) for t in turns] == [("user", "hi"), ("assistant", "hello")]


def test_append_turns_keeps_pair_order_with_same_timestamp(store):
    session = store.get_or_create_session("alice@example.com")
    chart = {"chartType": "pie", "title": "Share", "labels": ["a"], "data": [1]}
    store.append_turns(
        session.id,
        [
            Turn(role="user", kind="text", content="pie please"),
            Turn(role="assistant", kind="chart", content=chart),
        ],
    )
    turns = store.list_turns(session.id)
    assert turns[0].created_at == turns[1].created_at
    assert [t.role for t in turns] == ["user", "assistant"]
    assert turns[1].kind == "chart"
    assert turns[1].content == chart


def test_unknown_session_raises_not_found(store):
    with pytest.raises(NotFound):
        store.append_turn("missing", Turn(role="user", kind="text", content="hi"))
    with pytest.raises(NotFound):
        store.list_turns("missing")
    with pytest.raises(NotFound):
        store.rename("missing", "title")
    with pytest.raises(NotFound):
        store.set_pinned("missing", True)


def test_get_session_hides_other_identities(store):
    session = store.create_session("alice@example.com")
    assert store.get_session(session.id, "alice@example.com").id == session.id
    with pytest.raises(NotFound):
        store.get_session(session.id, "mallory@example.com")


def test_rename_is_visible_in_listing(store):
    session = store.get_or_create_session("alice@example.com")
    store.rename(session.id, "  Quarterly revenue  ")
    store.rename(session.id, "Quarterly revenue")
    [listed] = store.list_sessions("alice@example.com")
    assert listed.title == "Quarterly revenue"


def test_rename_with_blank_title_keeps_current(store):
    session = store.get_or_create_session("alice@example.com")
    store.rename(session.id, "   ")
    assert store.get_session(session.id).title == "New Chart"


def test_set_pinned_is_idempotent_and_toggle_flips(store):
    session = store.get_or_create_session("alice@example.com")
    assert store.set_pinned(session.id, True).is_pinned is True
    assert store.set_pinned(session.id, True).is_pinned is True

    assert store.toggle_pinned(session.id).is_pinned is False
    assert store.toggle_pinned(session.id).is_pinned is True
    assert store.toggle_pinned(session.id).is_pinned is False


def test_list_sessions_pinned_first(store):
    older = store.create_session("alice@example.com", "Older")
    store.create_session("alice@example.com", "Newer")
    store.set_pinned(older.id, True)
    titles = [s.title for s in store.list_sessions("alice@example.com")]
    assert titles == ["Older", "Newer"]


def test_delete_session_removes_turns(store):
    session = store.get_or_create_session("alice@example.com")
    store.append_turn(session.id, Turn(role="user", kind="text", content="hi"))
    store.delete_session(session.id)
    with pytest.raises(NotFound):
        store.list_turns(session.id)
    assert store.list_sessions("alice@example.com") == []


def test_store_failures_become_persistence_errors(store, monkeypatch):
    session = store.get_or_create_session("alice@example.com")

    def broken_commit():
        raise OperationalError("COMMIT", {}, Exception("database is locked"))

    monkeypatch.setattr(store.db, "commit", broken_commit)
    with pytest.raises(PersistenceError):
        store.append_turn(session.id, Turn(role="user", kind="text", content="hi"))


def test_lock_registry_does_not_grow_with_identities(store):
    gc.collect()
    before = len(session_store._locks)

    for n in range(50):
        session = store.get_or_create_session(f"user{n}@example.com")
        store.append_turn(session.id, Turn(role="user", kind="text", content="hi"))

    gc.collect()
    assert len(session_store._locks) == before


def test_lock_is_shared_while_held():
    held = session_store._lock_for("session:abc")
    assert session_store._lock_for("session:abc") is held
    assert session_store._lock_for("session:other") is not held
