from prayer_partners.services.notifications import (
    NotificationQueue,
    manual_pairing_notice,
    newcomer_pairing_notice,
    request_accepted_notice,
    request_received_notice,
    weekly_pairing_notice,
    welcomer_pairing_notice,
)


def test_notice_payloads_carry_partner_and_week():
    notice = weekly_pairing_notice("a", "b", "Ben", 11, 2026)
    assert notice.recipient_member_id == "a"
    assert notice.data == {
        "type": "prayer_partner_assigned",
        "partner_id": "b",
        "partner_name": "Ben",
        "week_number": 11,
        "year": 2026,
    }
    assert "Ben" in notice.body


def test_newcomer_and_welcomer_copy_differ():
    newcomer = newcomer_pairing_notice("new", "old", "Olive", 11, 2026)
    welcomer = welcomer_pairing_notice("old", "new", "Nia", 11, 2026)
    assert newcomer.title != welcomer.title
    assert "Welcome" in newcomer.title
    assert "Nia" in welcomer.body


def test_manual_notice_is_tagged_without_touching_weekly_copy():
    manual = manual_pairing_notice("a", "b", "", 11, 2026)
    assert manual.data["type"] == "prayer_partner_manual"
    assert manual.data["partner_name"] == "a fellow member"
    assert weekly_pairing_notice("a", "b", "", 11, 2026).data["type"] == "prayer_partner_assigned"


def test_queue_isolates_failing_recipient(dispatcher, caplog):
    dispatcher.fail_for = {"b"}
    queue = NotificationQueue(dispatcher, workers=2)
    futures = queue.submit_all(
        [
            weekly_pairing_notice("a", "b", "Ben", 11, 2026),
            weekly_pairing_notice("b", "a", "Ann", 11, 2026),
        ]
    )
    results = [f.result(timeout=2) for f in futures]
    queue.shutdown()

    assert results == [True, False]
    assert [n["to"] for n in dispatcher.sent] == ["a"]
    assert "Delivery failed for member=b" in caplog.text


def test_queue_drops_after_shutdown(dispatcher):
    queue = NotificationQueue(dispatcher, workers=1)
    queue.shutdown()
    assert queue.submit(weekly_pairing_notice("a", "b", "Ben", 11, 2026)) is None


def test_request_notices_carry_request_and_partner():
    received = request_received_notice("b", "req-1", "a", "Ann", "Pray with me?")
    assert received.recipient_member_id == "b"
    assert received.data == {"type": "prayer_partner_request", "request_id": "req-1", "requester_id": "a", "requester_name": "Ann"}
    assert "Pray with me?" in received.body

    accepted = request_accepted_notice("a", "b", "", 11, 2026)
    assert accepted.data["type"] == "prayer_partner_request_accepted"
    assert accepted.data["partner_name"] == "a fellow member"
    assert "accepted" in accepted.body
