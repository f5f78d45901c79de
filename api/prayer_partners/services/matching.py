from __future__ import annotations

import random
from dataclasses import dataclass, field
from datetime import datetime

from .history import HistoryIndex
from .members import MemberSnapshot
from .scoring import ScoringConfig, default_scoring_config, is_new_member, score_pair

STATUS_OK = "ok"
STATUS_INSUFFICIENT = "insufficient_members"


@dataclass
class MatchedPair:
    member1: MemberSnapshot
    member2: MemberSnapshot
    score: float
    phase: int


@dataclass
class MatchResult:
    pairs: list[MatchedPair] = field(default_factory=list)
    leftover: MemberSnapshot | None = None
    status: str = STATUS_OK

    @property
    def average_score(self) -> float | None:
        if not self.pairs:
            return None
        return round(sum(p.score for p in self.pairs) / len(self.pairs), 4)


def _best_candidate(
    member: MemberSnapshot,
    candidates: list[MemberSnapshot],
    consumed: set[str],
    history: HistoryIndex,
    current_week: int,
    is_new_member_pass: bool,
    now: datetime,
    cfg: ScoringConfig,
    rng: random.Random,
) -> tuple[MemberSnapshot | None, float]:
    best: MemberSnapshot | None = None
    best_score = float("-inf")
    for candidate in candidates:
        if candidate.id == member.id or candidate.id in consumed:
            continue
        s = score_pair(member, candidate, history, current_week, is_new_member_pass, now=now, cfg=cfg, rng=rng)
        if s > best_score:
            best, best_score = candidate, s
    return best, best_score


def match_members(
    members: list[MemberSnapshot],
    history: HistoryIndex,
    current_week: int,
    *,
    now: datetime,
    cfg: ScoringConfig | None = None,
    rng: random.Random | None = None,
) -> MatchResult:
    """Two-phase greedy pairing: newcomers pick first, then everyone else in shuffled order.

    Not a maximum-weight matching. Each member takes the best partner still available
    when their turn comes, so an early pick can leave a later member a worse option.
    """
    cfg = cfg or default_scoring_config()
    rng = rng or random.Random()

    pool: list[MemberSnapshot] = []
    seen: set[str] = set()
    for m in members:
        if m.id not in seen:
            seen.add(m.id)
            pool.append(m)

    if len(pool) < 2:
        return MatchResult(pairs=[], leftover=pool[0] if pool else None, status=STATUS_INSUFFICIENT)

    consumed: set[str] = set()
    pairs: list[MatchedPair] = []

    newcomers = [m for m in pool if is_new_member(m, now, cfg.new_member_window_days)]
    existing = [m for m in pool if not is_new_member(m, now, cfg.new_member_window_days)]

    for newcomer in newcomers:
        if newcomer.id in consumed:
            continue
        partner, s = _best_candidate(newcomer, existing, consumed, history, current_week, True, now, cfg, rng)
        if partner is None:
            partner, s = _best_candidate(newcomer, newcomers, consumed, history, current_week, True, now, cfg, rng)
        if partner is None:
            continue
        consumed.update((newcomer.id, partner.id))
        pairs.append(MatchedPair(member1=newcomer, member2=partner, score=s, phase=1))

    remaining = [m for m in pool if m.id not in consumed]
    rng.shuffle(remaining)
    for member in remaining:
        if member.id in consumed:
            continue
        partner, s = _best_candidate(member, remaining, consumed, history, current_week, False, now, cfg, rng)
        if partner is None:
            continue
        consumed.update((member.id, partner.id))
        pairs.append(MatchedPair(member1=member, member2=partner, score=s, phase=2))

    leftovers = [m for m in pool if m.id not in consumed]
    return MatchResult(pairs=pairs, leftover=leftovers[0] if leftovers else None, status=STATUS_OK)
