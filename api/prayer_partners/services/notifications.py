from __future__ import annotations

import logging
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Protocol

logger = logging.getLogger(__name__)


class NotificationDispatcher(Protocol):
    def dispatch(self, recipient_member_id: str, title: str, body: str, data: dict[str, Any]) -> None:
        ...


class LoggingNotificationDispatcher:
    """Default dispatcher when no push transport is wired in."""

    def dispatch(self, recipient_member_id: str, title: str, body: str, data: dict[str, Any]) -> None:
        logger.info("[NOTIFY] to=%s title=%r data=%s", recipient_member_id, title, data)


@dataclass
class NotificationRequest:
    recipient_member_id: str
    title: str
    body: str
    data: dict[str, Any] = field(default_factory=dict)


def weekly_pairing_notice(recipient_id: str, partner_id: str, partner_name: str, week_number: int, year: int) -> NotificationRequest:
    name = partner_name or "a fellow member"
    return NotificationRequest(
        recipient_member_id=recipient_id,
        title="Your prayer partner for this week",
        body=f"You have been paired with {name} for week {week_number}. Take time to pray together.",
        data={
            "type": "prayer_partner_assigned",
            "partner_id": partner_id,
            "partner_name": name,
            "week_number": week_number,
            "year": year,
        },
    )


def newcomer_pairing_notice(recipient_id: str, partner_id: str, partner_name: str, week_number: int, year: int) -> NotificationRequest:
    name = partner_name or "a fellow member"
    return NotificationRequest(
        recipient_member_id=recipient_id,
        title="Welcome! Meet your prayer partner",
        body=f"Welcome to the family. {name} will be your prayer partner for the rest of week {week_number}.",
        data={
            "type": "prayer_partner_welcome",
            "partner_id": partner_id,
            "partner_name": name,
            "week_number": week_number,
            "year": year,
        },
    )


def welcomer_pairing_notice(recipient_id: str, partner_id: str, partner_name: str, week_number: int, year: int) -> NotificationRequest:
    name = partner_name or "a new member"
    return NotificationRequest(
        recipient_member_id=recipient_id,
        title="A new member needs a prayer partner",
        body=f"{name} just joined us. You have been paired together for week {week_number}; please reach out and welcome them.",
        data={
            "type": "prayer_partner_newcomer",
            "partner_id": partner_id,
            "partner_name": name,
            "week_number": week_number,
            "year": year,
        },
    )


def manual_pairing_notice(recipient_id: str, partner_id: str, partner_name: str, week_number: int, year: int) -> NotificationRequest:
    notice = weekly_pairing_notice(recipient_id, partner_id, partner_name, week_number, year)
    notice.title = "You have a new prayer partner"
    notice.data["type"] = "prayer_partner_manual"
    return notice


def request_received_notice(recipient_id: str, request_id: str, requester_id: str, requester_name: str, message: str) -> NotificationRequest:
    name = requester_name or "A fellow member"
    body = f"{name} would like to be your prayer partner."
    if message:
        body = f"{body} \"{message}\""
    return NotificationRequest(
        recipient_member_id=recipient_id,
        title="New prayer partner request",
        body=body,
        data={"type": "prayer_partner_request", "request_id": request_id, "requester_id": requester_id, "requester_name": name},
    )


def request_accepted_notice(recipient_id: str, partner_id: str, partner_name: str, week_number: int, year: int) -> NotificationRequest:
    notice = weekly_pairing_notice(recipient_id, partner_id, partner_name, week_number, year)
    notice.title = "Your prayer partner request was accepted"
    notice.body = f"{notice.data['partner_name']} accepted your request. You are prayer partners for week {week_number}."
    notice.data["type"] = "prayer_partner_request_accepted"
    return notice


class NotificationQueue:
    """Hands notification requests to the dispatcher off the caller's thread.

    Each request is delivered independently; a failure is logged for that
    recipient and never reaches the pairing code that queued it.
    """

    def __init__(self, dispatcher: NotificationDispatcher | None = None, workers: int = 4) -> None:
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()
        self._executor = ThreadPoolExecutor(max_workers=max(1, workers), thread_name_prefix="notify")

    def _deliver(self, request: NotificationRequest) -> bool:
        try:
            self.dispatcher.dispatch(request.recipient_member_id, request.title, request.body, request.data)
            return True
        except Exception:
            logger.exception("[NOTIFY] Delivery failed for member=%s type=%s", request.recipient_member_id, request.data.get("type"))
            return False

    def submit(self, request: NotificationRequest) -> Future | None:
        try:
            return self._executor.submit(self._deliver, request)
        except RuntimeError:
            logger.warning("[NOTIFY] Queue closed; dropped notification for member=%s", request.recipient_member_id)
            return None

    def submit_all(self, requests: list[NotificationRequest]) -> list[Future]:
        futures = []
        for request in requests:
            fut = self.submit(request)
            if fut is not None:
                futures.append(fut)
        return futures

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


class InlineNotificationQueue(NotificationQueue):
    """Delivers on the calling thread; used by tests and scripts."""

    def __init__(self, dispatcher: NotificationDispatcher | None = None) -> None:
        self.dispatcher = dispatcher or LoggingNotificationDispatcher()

    def submit(self, request: NotificationRequest) -> Future | None:
        fut: Future = Future()
        fut.set_result(self._deliver(request))
        return fut

    def shutdown(self, wait: bool = True) -> None:
        return None
