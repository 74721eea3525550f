from __future__ import annotations
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable, Iterable, Mapping, Any
import structlog

log = structlog.get_logger()

UNKNOWN_CATEGORY = "unknown"


@dataclass(frozen=True)
class ChallengeRef:
    id: Any
    title: str
    category: str
    difficulty: str | None = None
    points: int | None = 0
    is_active: bool = True


@dataclass(frozen=True)
class SubmissionEvent:
    user_id: Any
    challenge_id: Any
    created_at: datetime
    is_correct: bool
    is_first_blood: bool = False
    challenge: ChallengeRef | None = None  # set when the log already joined the catalog


@dataclass(frozen=True)
class SolvedEntry:
    challenge_id: Any
    challenge: ChallengeRef | None
    solved_at: datetime
    is_first_blood: bool

    @property
    def points(self) -> int:
        return int(self.challenge.points or 0) if self.challenge else 0

    @property
    def category(self) -> str:
        return (self.challenge.category or UNKNOWN_CATEGORY) if self.challenge else UNKNOWN_CATEGORY


@dataclass(frozen=True)
class ProfileStats:
    total_points: int = 0
    solved_count: int = 0
    rank: int | None = None
    first_blood_count: int = 0
    completion_percent: int = 0
    category_breakdown: dict[str, int] = field(default_factory=dict)
    solved_challenges: list[SolvedEntry] = field(default_factory=list)
    # Challenge ids referenced by submissions but missing from the catalog
    unresolved_challenge_ids: list[Any] = field(default_factory=list)


def completion_percent(solved: int, total: int) -> int:
    """round(100 * solved / total), halves rounded up; 0 when there is nothing to solve."""
    if total <= 0:
        return 0
    return (200 * solved + total) // (2 * total)


def _newest_first(entries: Iterable[SolvedEntry]) -> list[SolvedEntry]:
    # Two stable passes: id ascending, then timestamp descending
    by_id = sorted(entries, key=lambda e: str(e.challenge_id))
    return sorted(by_id, key=lambda e: e.solved_at, reverse=True)


def compute_stats(
    user_id,
    submissions: Iterable[SubmissionEvent],
    *,
    total_active_challenges: int,
    catalog: Mapping[Any, ChallengeRef] | None = None,
    rank_lookup: Callable[[Any], int | None] | None = None,
) -> ProfileStats:
    """
    Derive a user's standing from their correct submissions.

    Pure: no I/O, and every aggregate except the solve history is independent
    of input order. Submissions whose challenge cannot be joined count toward
    the "unknown" category with zero points.
    """
    catalog = catalog or {}
    entries: list[SolvedEntry] = []
    dropped = 0
    for ev in submissions:
        if not ev.is_correct or str(ev.user_id) != str(user_id):
            dropped += 1
            continue
        entries.append(SolvedEntry(
            challenge_id=ev.challenge_id,
            challenge=ev.challenge or catalog.get(ev.challenge_id),
            solved_at=ev.created_at,
            is_first_blood=bool(ev.is_first_blood),
        ))
    if dropped:
        log.warning("stats_input_filtered", user_id=str(user_id), dropped=dropped)

    unresolved = sorted({e.challenge_id for e in entries if e.challenge is None}, key=str)
    if unresolved:
        log.warning("join_inconsistency", user_id=str(user_id),
                    challenge_ids=[str(c) for c in unresolved])

    solved = len(entries)
    return ProfileStats(
        total_points=sum(e.points for e in entries),
        solved_count=solved,
        rank=rank_lookup(user_id) if rank_lookup else None,
        first_blood_count=sum(1 for e in entries if e.is_first_blood),
        completion_percent=completion_percent(solved, total_active_challenges),
        category_breakdown=dict(sorted(Counter(e.category for e in entries).items())),
        solved_challenges=_newest_first(entries),
        unresolved_challenge_ids=unresolved,
    )
