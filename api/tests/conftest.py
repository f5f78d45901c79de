from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from prayer_partners.database import Base
from prayer_partners.models import Member

NOW = datetime(2026, 3, 9, 6, 0, tzinfo=timezone.utc)


@pytest.fixture()
def session_factory():
    engine = create_engine(
        "sqlite://",
        future=True,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    factory = sessionmaker(bind=engine, autoflush=False, autocommit=False, future=True)
    yield factory
    engine.dispose()


@pytest.fixture()
def add_member(session_factory):
    def _add(member_id: str, days_ago: int = 60, name: str | None = None, partner_id: str | None = None, active: bool = True):
        with session_factory() as db:
            db.add(
                Member(
                    id=member_id,
                    display_name=name if name is not None else member_id.title(),
                    joined_at=NOW - timedelta(days=days_ago),
                    is_active=active,
                    current_partner_id=partner_id,
                    paired_this_week=partner_id is not None,
                    last_paired_with_id=partner_id,
                )
            )
            db.commit()

    return _add


class RecordingDispatcher:
    def __init__(self, fail_for: set[str] | None = None):
        self.sent = []
        self.fail_for = fail_for or set()

    def dispatch(self, recipient_member_id, title, body, data):
        if recipient_member_id in self.fail_for:
            raise RuntimeError(f"push rejected for {recipient_member_id}")
        self.sent.append({"to": recipient_member_id, "title": title, "body": body, "data": data})


@pytest.fixture()
def dispatcher():
    return RecordingDispatcher()
