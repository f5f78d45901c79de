import json

from prayer_partners.services.events import log_pair_events, log_pairing_event


class FakeDB:
    def __init__(self):
        self.calls = []

    def execute(self, stmt, params):
        self.calls.append((str(stmt), params))


def test_log_pairing_event_inserts_expected_payload_shape():
    db = FakeDB()
    log_pairing_event(
        db=db,
        member_id="m-123",
        week_number=11,
        year=2026,
        event_type="solo_week",
        payload={"reason": "odd_pool"},
    )
    assert len(db.calls) == 1
    sql, params = db.calls[0]
    assert "INSERT INTO pairing_event" in sql
    assert params["event_type"] == "solo_week"
    assert params["member_id"] == "m-123"
    assert json.loads(params["payload"]) == {"reason": "odd_pool"}


def test_log_pair_events_writes_one_row_per_member():
    db = FakeDB()
    log_pair_events(db, "a", "b", 11, 2026, "paired", {"notes": "manual"})
    assert [c[1]["member_id"] for c in db.calls] == ["a", "b"]
    payloads = [json.loads(c[1]["payload"]) for c in db.calls]
    assert payloads == [{"partner_id": "b", "notes": "manual"}, {"partner_id": "a", "notes": "manual"}]
