"""
Single-elimination bracket helpers for 8 and 16 player tournaments.

These are pure functions over plain values so the bracket rules can be
tested without a database.
"""

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional, Sequence

BRACKET_SIZES = (8, 16)


@dataclass
class MatchSlot:
    round_number: int
    match_number: int
    participant1_id: Optional[int] = None
    participant2_id: Optional[int] = None


@dataclass
class Placements:
    first: Optional[int] = None
    second: Optional[int] = None
    third: Optional[int] = None
    fourth: Optional[int] = None


def round_count(size: int) -> int:
    return int(math.log2(size))


def generate_bracket(participant_ids: Sequence[int]) -> list[MatchSlot]:
    """Round 1 pairs entrants in order; later rounds start empty."""
    size = len(participant_ids)
    if size not in BRACKET_SIZES:
        raise ValueError(f"Invalid participant count: {size}. Must be 8 or 16.")

    slots = []
    for i in range(0, size, 2):
        slots.append(
            MatchSlot(
                round_number=1,
                match_number=i // 2 + 1,
                participant1_id=participant_ids[i],
                participant2_id=participant_ids[i + 1],
            )
        )

    matches_in_round = size // 2
    for round_number in range(2, round_count(size) + 1):
        matches_in_round //= 2
        for match_number in range(1, matches_in_round + 1):
            slots.append(MatchSlot(round_number=round_number, match_number=match_number))
    return slots


def next_slot(match_number: int) -> tuple[int, str]:
    """Where the winner of `match_number` plays next: (match number, slot field)."""
    index = match_number - 1
    field = "participant1_id" if index % 2 == 0 else "participant2_id"
    return index // 2 + 1, field


def loser_of(match) -> Optional[int]:
    if match.winner_id is None:
        return None
    return match.participant2_id if match.winner_id == match.participant1_id else match.participant1_id


def final_placements(final, semifinals: Sequence) -> Placements:
    """1st/2nd from the final; 3rd and 4th are the semifinal losers in match order."""
    placements = Placements(first=final.winner_id, second=loser_of(final))
    losers = [loser_of(m) for m in sorted(semifinals, key=lambda m: m.match_number) if m.winner_id]
    losers = [p for p in losers if p is not None]
    if losers:
        placements.third = losers[0]
    if len(losers) > 1:
        placements.fourth = losers[1]
    return placements


def tournament_state(status: str, start_at: datetime, now: Optional[datetime] = None) -> str:
    """upcoming / live / completed as shown on tournament cards."""
    now = now or datetime.now(timezone.utc)
    if status in ("completed", "cancelled"):
        return "completed"
    if status in ("in_progress", "registration_closed") or now >= start_at:
        return "live"
    return "upcoming"
