from __future__ import annotations

import random
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from ..config import DEFAULT_SCORING_CONFIG
from .history import HistoryIndex, pair_key
from .members import MemberSnapshot


@dataclass(frozen=True)
class ScoringConfig:
    base_score: float = 100.0
    self_pair_score: float = -1000.0
    recency_threshold_weeks: int = 4
    penalty_per_week: float = 25.0
    new_member_window_days: int = 7
    new_member_bonus: float = 50.0
    mixed_pair_bonus: float = 25.0
    jitter_max: float = 10.0

    @classmethod
    def from_mapping(cls, cfg: dict[str, Any] | None = None) -> "ScoringConfig":
        cfg = cfg or {}
        return cls(
            base_score=float(cfg.get("BASE_SCORE", 100.0)),
            self_pair_score=float(cfg.get("SELF_PAIR_SCORE", -1000.0)),
            recency_threshold_weeks=int(cfg.get("RECENCY_THRESHOLD_WEEKS", 4)),
            penalty_per_week=float(cfg.get("PENALTY_PER_WEEK", 25.0)),
            new_member_window_days=int(cfg.get("NEW_MEMBER_WINDOW_DAYS", 7)),
            new_member_bonus=float(cfg.get("NEW_MEMBER_BONUS", 50.0)),
            mixed_pair_bonus=float(cfg.get("MIXED_PAIR_BONUS", 25.0)),
            jitter_max=float(cfg.get("JITTER_MAX", 10.0)),
        )


def default_scoring_config() -> ScoringConfig:
    return ScoringConfig.from_mapping(DEFAULT_SCORING_CONFIG)


def is_new_member(member: MemberSnapshot, now: datetime, window_days: int) -> bool:
    if member.joined_at is None:
        return False
    return now - member.joined_at <= timedelta(days=window_days)


def recency_penalty(gap: int, cfg: ScoringConfig) -> float:
    if gap >= cfg.recency_threshold_weeks:
        return 0.0
    return (cfg.recency_threshold_weeks - gap) * cfg.penalty_per_week


def score_pair(
    a: MemberSnapshot,
    b: MemberSnapshot,
    history: HistoryIndex,
    current_week: int,
    is_new_member_pass: bool,
    *,
    now: datetime,
    cfg: ScoringConfig | None = None,
    rng: random.Random | None = None,
) -> float:
    cfg = cfg or default_scoring_config()
    if a.id == b.id:
        return cfg.self_pair_score

    score = cfg.base_score

    last_week = history.get(pair_key(a.id, b.id))
    if last_week is not None:
        score -= recency_penalty(current_week - last_week, cfg)

    if is_new_member_pass:
        a_new = is_new_member(a, now, cfg.new_member_window_days)
        b_new = is_new_member(b, now, cfg.new_member_window_days)
        if a_new or b_new:
            score += cfg.new_member_bonus
        if a_new != b_new:
            score += cfg.mixed_pair_bonus

    if cfg.jitter_max > 0:
        score += (rng or random).uniform(0.0, cfg.jitter_max)
    return score
