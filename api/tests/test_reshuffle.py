import random
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker

from prayer_partners.models import Member, PairingEvent, PartnershipRecord
from prayer_partners.services import reshuffle as reshuffle_module
from prayer_partners.services.errors import ConcurrencyConflict, ReshuffleTimeout, StorageFailure
from prayer_partners.services.ledger import insert_partnership
from prayer_partners.services.matching import STATUS_INSUFFICIENT
from prayer_partners.services.notifications import InlineNotificationQueue
from prayer_partners.services.reshuffle import STATUS_COMPLETED, ReshuffleOrchestrator
from prayer_partners.services.scoring import ScoringConfig
from prayer_partners.services.state_machine import IDLE, PairingGate

NOW = datetime(2026, 3, 9, 6, 0, tzinfo=timezone.utc)


def _orchestrator(session_factory, dispatcher, **kwargs):
    return ReshuffleOrchestrator(
        session_factory,
        InlineNotificationQueue(dispatcher),
        cfg=kwargs.pop("cfg", ScoringConfig(jitter_max=0)),
        rng=kwargs.pop("rng", random.Random(7)),
        **kwargs,
    )


def _members(session_factory):
    with session_factory() as db:
        return {m.id: m for m in db.execute(select(Member)).scalars().all()}


def _records(session_factory, active=None):
    with session_factory() as db:
        stmt = select(PartnershipRecord)
        if active is not None:
            stmt = stmt.where(PartnershipRecord.is_active.is_(active))
        return db.execute(stmt).scalars().all()


def test_reshuffle_commits_symmetric_pairs_and_notifies(session_factory, add_member, dispatcher):
    for mid in ("a", "b", "c", "d"):
        add_member(mid)
    outcome = _orchestrator(session_factory, dispatcher).trigger_reshuffle(now=NOW)

    assert outcome.status == STATUS_COMPLETED
    assert outcome.pairs_created == 2
    assert outcome.leftover_member_id is None
    members = _members(session_factory)
    for m in members.values():
        assert m.current_partner_id is not None
        assert members[m.current_partner_id].current_partner_id == m.id
        assert m.paired_this_week is True

    active = _records(session_factory, active=True)
    assert len(active) == 2
    assert all(r.member1_id < r.member2_id and r.notes == "automatic" for r in active)
    assert all((r.year, r.week_number) == (2026, 11) for r in active)
    assert sorted(n["to"] for n in dispatcher.sent) == ["a", "b", "c", "d"]
    assert {n["data"]["type"] for n in dispatcher.sent} == {"prayer_partner_assigned"}


def test_odd_pool_leaves_one_member_unpaired(session_factory, add_member, dispatcher):
    for mid in ("a", "b", "c"):
        add_member(mid, partner_id=None)
    outcome = _orchestrator(session_factory, dispatcher).trigger_reshuffle(now=NOW)

    assert outcome.pairs_created == 1
    members = _members(session_factory)
    leftover = members[outcome.leftover_member_id]
    assert leftover.current_partner_id is None
    assert leftover.paired_this_week is False
    with session_factory() as db:
        events = db.execute(select(PairingEvent).where(PairingEvent.event_type == "solo_week")).scalars().all()
    assert [e.member_id for e in events] == [leftover.id]


def test_previous_week_records_deactivated_but_kept(session_factory, add_member, dispatcher):
    for mid in ("a", "b", "c", "d"):
        add_member(mid)
    with session_factory() as db:
        insert_partnership(db, "a", "b", week_number=10, year=2026, pair_date=NOW - timedelta(days=7), notes="automatic")
        db.commit()

    outcome = _orchestrator(session_factory, dispatcher).trigger_reshuffle(now=NOW)

    assert outcome.run_stats.deactivated_records == 1
    assert outcome.run_stats.history_keys == 2
    old = [r for r in _records(session_factory) if r.week_number == 10]
    assert len(old) == 1 and old[0].is_active is False
    assert len(_records(session_factory, active=True)) == 2


def test_inactive_members_are_excluded(session_factory, add_member, dispatcher):
    add_member("a")
    add_member("b")
    add_member("gone", active=False)
    outcome = _orchestrator(session_factory, dispatcher).trigger_reshuffle(now=NOW)
    assert outcome.pairs_created == 1
    assert _members(session_factory)["gone"].current_partner_id is None


def test_insufficient_pool_changes_nothing(session_factory, add_member, dispatcher):
    add_member("solo")
    with session_factory() as db:
        insert_partnership(db, "solo", "x", week_number=10, year=2026, pair_date=NOW - timedelta(days=7), notes="automatic")
        db.commit()

    orch = _orchestrator(session_factory, dispatcher)
    outcome = orch.trigger_reshuffle(now=NOW)

    assert outcome.status == STATUS_INSUFFICIENT
    assert outcome.pairs_created == 0
    assert outcome.leftover_member_id == "solo"
    assert len(_records(session_factory, active=True)) == 1
    assert dispatcher.sent == []
    assert orch.state == IDLE


def test_concurrent_trigger_rejected(session_factory, add_member, dispatcher):
    add_member("a")
    add_member("b")
    gate = PairingGate()
    gate.begin_run(drain_timeout=0.1)
    orch = _orchestrator(session_factory, dispatcher, gate=gate)
    with pytest.raises(ConcurrencyConflict, match="reshuffle already in progress"):
        orch.trigger_reshuffle(now=NOW)
    gate.end_run()
    assert orch.trigger_reshuffle(now=NOW).pairs_created == 1


def test_failure_during_commit_rolls_back_everything(session_factory, add_member, dispatcher, monkeypatch):
    for mid in ("a", "b", "c", "d"):
        add_member(mid, partner_id=None)
    with session_factory() as db:
        insert_partnership(db, "a", "b", week_number=10, year=2026, pair_date=NOW - timedelta(days=7), notes="automatic")
        db.commit()

    calls = {"n": 0}
    real_assign = reshuffle_module.assign_partner

    def flaky_assign(db, member_id, partner_id):
        calls["n"] += 1
        if calls["n"] == 3:
            from sqlalchemy.exc import OperationalError

            raise OperationalError("UPDATE member", {}, Exception("disk I/O error"))
        real_assign(db, member_id, partner_id)

    monkeypatch.setattr(reshuffle_module, "assign_partner", flaky_assign)
    orch = _orchestrator(session_factory, dispatcher)
    with pytest.raises(StorageFailure):
        orch.trigger_reshuffle(now=NOW)

    active = _records(session_factory, active=True)
    assert [(r.member1_id, r.member2_id, r.week_number) for r in active] == [("a", "b", 10)]
    assert all(m.current_partner_id is None for m in _members(session_factory).values())
    assert dispatcher.sent == []
    assert orch.state == IDLE
    assert orch.recent_runs()[0]["status"] == "failed"


def test_notification_failure_does_not_affect_commit(session_factory, add_member, dispatcher):
    for mid in ("a", "b", "c", "d"):
        add_member(mid)
    dispatcher.fail_for = {"a"}
    outcome = _orchestrator(session_factory, dispatcher).trigger_reshuffle(now=NOW)
    assert outcome.status == STATUS_COMPLETED
    assert len(_records(session_factory, active=True)) == 2
    assert sorted(n["to"] for n in dispatcher.sent) == ["b", "c", "d"]


def test_timeout_reports_failure_and_discards_work(session_factory, add_member, dispatcher, monkeypatch):
    add_member("a")
    add_member("b")
    release = threading.Event()
    real_fetch = reshuffle_module.fetch_active_members

    def slow_fetch(db):
        release.wait(2)
        return real_fetch(db)

    monkeypatch.setattr(reshuffle_module, "fetch_active_members", slow_fetch)
    orch = _orchestrator(session_factory, dispatcher, timeout_seconds=0.05)
    with pytest.raises(ReshuffleTimeout):
        orch.trigger_reshuffle(now=NOW)
    assert orch.recent_runs()[0]["status"] == "failed"

    release.set()
    for _ in range(100):
        if orch.state == IDLE:
            break
        threading.Event().wait(0.02)
    assert orch.state == IDLE
    assert _records(session_factory, active=True) == []
    assert dispatcher.sent == []
    assert [r["status"] for r in orch.recent_runs()] == ["failed"]


class _SlowCommitSession(Session):
    def commit(self):
        time.sleep(0.5)
        super().commit()


def test_timeout_inside_store_commit_reports_committed_run(session_factory, add_member, dispatcher, caplog):
    for mid in ("a", "b", "c", "d"):
        add_member(mid)
    slow_factory = sessionmaker(
        bind=session_factory.kw["bind"], class_=_SlowCommitSession, autoflush=False, future=True
    )
    orch = _orchestrator(slow_factory, dispatcher, timeout_seconds=0.2)

    outcome = orch.trigger_reshuffle(now=NOW)

    assert outcome.status == STATUS_COMPLETED
    assert [r["status"] for r in orch.recent_runs()] == ["completed"]
    assert len(_records(session_factory, active=True)) == 2
    assert sorted(n["to"] for n in dispatcher.sent) == ["a", "b", "c", "d"]
    assert orch.state == IDLE
    assert "still inside the store commit" in caplog.text


def test_abandoned_run_never_commits_or_notifies(session_factory, add_member, dispatcher, monkeypatch):
    for mid in ("a", "b", "c", "d"):
        add_member(mid)
    with session_factory() as db:
        insert_partnership(db, "a", "b", week_number=10, year=2026, pair_date=NOW - timedelta(days=7), notes="automatic")
        db.commit()

    release = threading.Event()
    real_match = reshuffle_module.match_members

    def slow_match(*args, **kwargs):
        release.wait(2)
        return real_match(*args, **kwargs)

    monkeypatch.setattr(reshuffle_module, "match_members", slow_match)
    orch = _orchestrator(session_factory, dispatcher, timeout_seconds=0.05)
    with pytest.raises(ReshuffleTimeout):
        orch.trigger_reshuffle(now=NOW)
    logged = orch.recent_runs()[0]

    release.set()
    for _ in range(100):
        if orch.state == IDLE:
            break
        time.sleep(0.02)

    assert orch.state == IDLE
    assert orch.recent_runs() == [logged]
    assert logged["status"] == "failed" and logged["pairs_created"] == 0
    active = _records(session_factory, active=True)
    assert [(r.member1_id, r.member2_id, r.week_number) for r in active] == [("a", "b", 10)]
    assert dispatcher.sent == []
