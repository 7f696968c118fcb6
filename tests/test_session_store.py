from sqlalchemy.exc import OperationalError

from app.domain.sto.repository import StoRepository
from app.domain.sto.session_store import SessionStore


class BrokenSession:
    """Database session whose every query fails"""

    def query(self, *args, **kwargs):
        raise OperationalError("SELECT 1", {}, Exception("database is locked"))

    def rollback(self):
        pass

    def close(self):
        pass


def test_session_validity_lifecycle(session_store, clock):
    assert not session_store.is_session_valid()
    assert session_store.get_current_session() is None

    session_store.set_session(session_store.new_session("JSESSIONID=abc"))
    assert session_store.is_session_valid()

    clock.advance(minutes=29, seconds=59)
    assert session_store.is_session_valid()

    clock.advance(seconds=1)
    assert not session_store.is_session_valid()

    # An expired session is never extended back to life
    assert session_store.extend() is None
    clock.advance(minutes=5)
    assert not session_store.is_session_valid()


def test_persist_encrypts_and_reloads(session_factory, session_store, clock):
    session = session_store.new_session("JSESSIONID=abc; SCOUTER=x1")

    assert session_store.persist(session) is True

    db = session_factory()
    try:
        stored = StoRepository.get_session_row(db).cookies
    finally:
        db.close()
    assert "JSESSIONID" not in stored

    fresh_store = SessionStore(session_factory, clock=clock)
    loaded = fresh_store.load_from_durable_store()
    assert loaded.cookies == "JSESSIONID=abc; SCOUTER=x1"
    assert loaded.expires_at == session.expires_at

    assert fresh_store.restore() is True
    assert fresh_store.is_session_valid()


def test_load_skips_expired_row(session_factory, session_store, clock):
    session_store.persist(session_store.new_session("JSESSIONID=abc"))
    clock.advance(minutes=31)

    assert SessionStore(session_factory, clock=clock).load_from_durable_store() is None


def test_load_with_no_row(session_store):
    assert session_store.load_from_durable_store() is None
    assert session_store.restore() is False


def test_persist_failure_is_swallowed(clock):
    store = SessionStore(lambda: BrokenSession(), clock=clock)
    session = store.new_session("JSESSIONID=abc")
    store.set_session(session)

    assert store.persist(session) is False
    assert store.is_session_valid()
    assert store.load_from_durable_store() is None


def test_invalidate_clears_memory_and_row(session_factory, session_store, clock):
    session = session_store.new_session("JSESSIONID=abc")
    session_store.set_session(session)
    session_store.persist(session)

    session_store.invalidate()

    assert not session_store.is_session_valid()
    assert SessionStore(session_factory, clock=clock).load_from_durable_store() is None


def test_extend_moves_expiry_in_memory_and_row(session_factory, session_store, clock):
    session = session_store.new_session("JSESSIONID=abc")
    session_store.set_session(session)
    session_store.persist(session)

    clock.advance(minutes=20)
    extended = session_store.extend()

    assert extended.expires_at == clock.now + session_store.lifetime
    db = session_factory()
    try:
        row = StoRepository.get_session_row(db)
        assert row.last_keepalive_at is not None
    finally:
        db.close()
    assert SessionStore(session_factory, clock=clock).load_from_durable_store().expires_at == extended.expires_at


def test_record_and_read_last_sync_time(session_store, clock):
    session_store.persist(session_store.new_session("JSESSIONID=abc"))

    session_store.record_sync(clock.now)

    assert session_store.last_sync_time() == clock.now
