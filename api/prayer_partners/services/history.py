from __future__ import annotations

import logging
from datetime import datetime, timedelta

from sqlalchemy.exc import SQLAlchemyError

from .clock import week_index
from .ledger import fetch_since

logger = logging.getLogger(__name__)

HistoryIndex = dict[tuple[str, str], int]


def pair_key(member_a: str, member_b: str) -> tuple[str, str]:
    return (member_a, member_b)


def index_records(records) -> HistoryIndex:
    index: HistoryIndex = {}
    for record in records:
        week = week_index(record.year, record.week_number)
        for key in (pair_key(record.member1_id, record.member2_id), pair_key(record.member2_id, record.member1_id)):
            if week > index.get(key, week - 1):
                index[key] = week
    return index


def build_history_index(db, now: datetime, lookback_weeks: int) -> HistoryIndex:
    """Map each recently paired ordered pair to the week index it was last paired in.

    Reads every record with ``pair_date`` inside the lookback window, active or not.
    A storage error yields an empty index so the reshuffle still runs without
    repeat-avoidance.
    """
    since = now - timedelta(days=7 * lookback_weeks)
    try:
        records = fetch_since(db, since)
    except SQLAlchemyError:
        logger.exception(
            "[HISTORY] Failed to load partnership history since %s; reshuffle continues WITHOUT repeat-avoidance",
            since.isoformat(),
        )
        return {}
    index = index_records(records)
    logger.info("[HISTORY] Built index from %s records since %s (%s keys)", len(records), since.isoformat(), len(index))
    return index
