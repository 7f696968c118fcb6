import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

# Test environment must be in place before anything under app/ is imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SECRET_KEY"] = "test-secret-key"
for _var in (
    "REDIS_URL",
    "CRON_SECRET",
    "STO_EMAIL",
    "STO_PASSWORD",
    "RESEND_API_KEY",
    "KAKAOWORK_BOT_KEY",
    "FIREBASE_PROJECT_ID",
    "ADMIN_NOTIFICATION_EMAILS",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "GOOGLE_REFRESH_TOKEN",
):
    os.environ[_var] = ""

sys.path.insert(0, str(Path(__file__).resolve().parent.parent))

import pytest  # noqa: E402
from sqlalchemy.orm import sessionmaker  # noqa: E402

from app import models  # noqa: E402,F401
from app.database import Base, build_engine  # noqa: E402
from app.domain.sto.session_store import SessionStore  # noqa: E402


class FakeClock:
    """Wall clock that only moves when told to"""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def session_factory():
    engine = build_engine("sqlite://")
    Base.metadata.create_all(bind=engine)
    factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)
    yield factory
    engine.dispose()


@pytest.fixture
def clock():
    # 10:00 KST on a weekday
    return FakeClock(datetime(2026, 3, 10, 1, 0, tzinfo=timezone.utc))


@pytest.fixture
def session_store(session_factory, clock):
    return SessionStore(session_factory, clock=clock)


@pytest.fixture
def logged_in_store(session_store):
    session_store.set_session(session_store.new_session("JSESSIONID=abc123"))
    return session_store
