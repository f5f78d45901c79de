from datetime import datetime, timezone

import pytest
from sqlalchemy import select

from prayer_partners.engine import PairingEngine
from prayer_partners.models import Member, PartnershipRecord
from prayer_partners.services import overrides as overrides_module
from prayer_partners.services.errors import ConcurrencyConflict, InvalidOverride, MemberNotFound
from prayer_partners.services.ledger import insert_partnership
from prayer_partners.services.members import assign_partner, clear_partner
from prayer_partners.services.notifications import InlineNotificationQueue

NOW = datetime(2026, 3, 9, 6, 0, tzinfo=timezone.utc)


@pytest.fixture()
def engine(session_factory, dispatcher):
    return PairingEngine(session_factory, notifications=InlineNotificationQueue(dispatcher))


def _partners(session_factory):
    with session_factory() as db:
        return {m.id: m.current_partner_id for m in db.execute(select(Member)).scalars().all()}


def _active_records(session_factory):
    with session_factory() as db:
        return db.execute(select(PartnershipRecord).where(PartnershipRecord.is_active.is_(True))).scalars().all()


def test_manual_pair_sets_both_pointers_and_records(engine, session_factory, add_member, dispatcher):
    add_member("a", name="Ann")
    add_member("b", name="Ben")
    entry = engine.create_manual_pair("b", "a", now=NOW)

    assert (entry.member1_id, entry.member2_id, entry.notes) == ("a", "b", "manual")
    assert _partners(session_factory) == {"a": "b", "b": "a"}
    assert {n["to"]: n["data"]["partner_name"] for n in dispatcher.sent} == {"a": "Ben", "b": "Ann"}
    assert {n["data"]["type"] for n in dispatcher.sent} == {"prayer_partner_manual"}


def test_manual_pair_rejected_when_member_already_paired(engine, session_factory, add_member):
    add_member("a", partner_id="c")
    add_member("b")
    add_member("c", partner_id="a")
    before = _partners(session_factory)

    with pytest.raises(InvalidOverride, match="already paired"):
        engine.create_manual_pair("a", "b", now=NOW)

    assert _partners(session_factory) == before
    assert _active_records(session_factory) == []


def test_manual_pair_validation(engine, add_member):
    add_member("a")
    add_member("off", active=False)
    with pytest.raises(InvalidOverride):
        engine.create_manual_pair("a", "a", now=NOW)
    with pytest.raises(MemberNotFound):
        engine.create_manual_pair("a", "ghost", now=NOW)
    with pytest.raises(InvalidOverride, match="not active"):
        engine.create_manual_pair("a", "off", now=NOW)


def test_manual_pair_rejected_during_reshuffle(engine, add_member):
    add_member("a")
    add_member("b")
    engine.gate.begin_run(drain_timeout=0.1)
    try:
        with pytest.raises(ConcurrencyConflict):
            engine.create_manual_pair("a", "b", now=NOW)
    finally:
        engine.gate.end_run()


def test_remove_pair_clears_pointers_and_deactivates(engine, session_factory, add_member):
    add_member("a")
    add_member("b")
    engine.create_manual_pair("a", "b", now=NOW)

    out = engine.remove_pair("b", "a", now=NOW)

    assert out["deactivated_records"] == 1
    assert _partners(session_factory) == {"a": None, "b": None}
    assert _active_records(session_factory) == []
    with session_factory() as db:
        assert len(db.execute(select(PartnershipRecord)).scalars().all()) == 1


def test_remove_pair_requires_mutual_partners(engine, add_member):
    add_member("a", partner_id="b")
    add_member("b", partner_id="c")
    add_member("c", partner_id="b")
    with pytest.raises(InvalidOverride, match="not currently paired"):
        engine.remove_pair("a", "b", now=NOW)
    with pytest.raises(MemberNotFound):
        engine.remove_pair("a", "ghost", now=NOW)


def test_repair_same_week_after_unpair(engine, session_factory, add_member):
    add_member("a")
    add_member("b")
    first = engine.create_manual_pair("a", "b", now=NOW)
    engine.remove_pair("a", "b", now=NOW)
    second = engine.create_manual_pair("a", "b", now=NOW)
    assert second.id == first.id
    assert len(_active_records(session_factory)) == 1


def test_get_current_pairs_is_stable(engine, add_member):
    add_member("a", name="Ann")
    add_member("b", name="Ben")
    add_member("c", name="Cal")
    engine.create_manual_pair("a", "b", now=NOW)

    first = engine.get_current_pairs()
    second = engine.get_current_pairs()

    assert first == second
    assert [(p["member1_name"], p["member2_name"]) for p in first["active_pairs"]] == [("Ann", "Ben")]
    assert [m["id"] for m in first["unpaired_members"]] == ["c"]


def test_pairing_history_is_clamped(engine, session_factory):
    with session_factory() as db:
        for week in range(1, 6):
            insert_partnership(db, "a", "b", week_number=week, year=2026, pair_date=NOW.replace(day=week), notes="automatic")
        db.commit()
    rows = engine.get_pairing_history(limit=2)
    assert [r["week_number"] for r in rows] == [5, 4]
    assert len(engine.get_pairing_history(limit=0)) == 1


def test_release_member_frees_partner(engine, session_factory, add_member):
    add_member("a")
    add_member("b")
    engine.create_manual_pair("a", "b", now=NOW)

    out = engine.release_member("a", now=NOW)

    assert out == {"member_id": "a", "partners_unpaired": 1, "records_deactivated": 1, "requests_expired": 0}
    assert _partners(session_factory) == {"a": None, "b": None}
    with session_factory() as db:
        assert db.get(Member, "a").is_active is False


def test_integrity_report_and_fix(engine, session_factory, add_member):
    add_member("a", partner_id="ghost")
    add_member("b", partner_id="c")
    add_member("c", partner_id="d")
    add_member("d", partner_id="c")

    report = engine.verify_integrity()
    assert report["orphaned_partners"] == [{"member_id": "a", "orphaned_partner_id": "ghost"}]
    assert len(report["inconsistent_pairs"]) == 1
    assert report["issues_found"] == 2

    fixed = engine.fix_integrity()
    assert fixed["fixed"] == {"orphans_fixed": 1, "inconsistencies_fixed": 1}
    partners = _partners(session_factory)
    assert partners["a"] is None
    assert partners["b"] is None
    assert (partners["c"], partners["d"]) == ("d", "c")
    assert engine.verify_integrity()["issues_found"] == 0


def test_summary_reports_pairing_rate(engine, add_member):
    for mid in ("a", "b", "c", "d"):
        add_member(mid)
    engine.create_manual_pair("a", "b", now=NOW)
    summary = engine.summary()
    assert summary["active_members"] == 4
    assert summary["paired_members"] == 2
    assert summary["pairing_rate"] == "50.0%"
    assert summary["records_by_source"] == {"manual": 1}
    assert summary["reshuffle_state"] == "idle"


def _write_after_read(monkeypatch, member_id, write):
    real_get = overrides_module.get_member

    def get_then_write(db, mid):
        snapshot = real_get(db, mid)
        if mid == member_id:
            write(db)
        return snapshot

    monkeypatch.setattr(overrides_module, "get_member", get_then_write)


def test_manual_pair_loses_race_with_concurrent_pairing(engine, session_factory, add_member, dispatcher, monkeypatch):
    add_member("a")
    add_member("b")
    add_member("c")
    _write_after_read(monkeypatch, "b", lambda db: assign_partner(db, "b", "c"))

    with pytest.raises(ConcurrencyConflict, match="concurrent update"):
        engine.create_manual_pair("a", "b", now=NOW)

    assert _partners(session_factory) == {"a": None, "b": None, "c": None}
    assert _active_records(session_factory) == []
    assert dispatcher.sent == []


def test_unpair_loses_race_with_concurrent_change(engine, session_factory, add_member, monkeypatch):
    add_member("a")
    add_member("b")
    engine.create_manual_pair("a", "b", now=NOW)
    _write_after_read(monkeypatch, "b", lambda db: clear_partner(db, "a"))

    with pytest.raises(ConcurrencyConflict, match="changed during the unpair"):
        engine.remove_pair("a", "b", now=NOW)

    assert _partners(session_factory) == {"a": "b", "b": "a"}
    assert len(_active_records(session_factory)) == 1
