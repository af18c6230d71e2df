"""
Single elimination draw: seed numbering and the first knockout round.
"""
import logging
import math
from typing import List, Optional, Tuple

from engine.errors import (
    DrawAlreadyGenerated, InsufficientRegistrations, RoundAlreadyExists, ValidationError,
)
from engine.models import DrawPolicy, Match, Phase, Registration, RoundType, Team, Tournament
from engine.repository import Store

logger = logging.getLogger(__name__)

MAX_ENTRANTS = 128

Pairing = Tuple[str, Optional[str]]


def calculate_bracket_size(num_teams: int) -> int:
    """Calculate the bracket size (next power of 2)."""
    if num_teams <= 0:
        return 0
    return 2 ** math.ceil(math.log2(num_teams))


def calculate_rounds(num_teams: int) -> int:
    """Number of knockout rounds needed to get down to one winner."""
    return int(math.log2(calculate_bracket_size(num_teams))) if num_teams > 1 else 0


def calculate_num_seeds(num_teams: int) -> int:
    """Default seed count: one per eight entrants, at least a quarter of the field."""
    return max(max(1, num_teams // 8), min(num_teams // 4, num_teams // 2))


def is_power_of_two(n: int) -> bool:
    return n > 0 and n & (n - 1) == 0


def _generate_bracket_order(bracket_size: int) -> List[int]:
    """
    Generate the standard tournament bracket order.
    This ensures that if all higher seeds win, they meet in the proper rounds.

    For 8 teams: [1, 8, 4, 5, 2, 7, 3, 6]
    This gives matchups: 1v8, 4v5, 2v7, 3v6
    Winners: 1v4 side, 2v3 side
    Final: 1v2 (if chalk)
    """
    if bracket_size == 1:
        return [1]
    if bracket_size == 2:
        return [1, 2]

    half_size = bracket_size // 2
    upper_half = _generate_bracket_order(half_size)
    lower_half = [bracket_size + 1 - seed for seed in upper_half]

    result = []
    for u, l in zip(upper_half, lower_half):
        result.extend([u, l])
    return result


def _fold_order(size: int) -> List[int]:
    """1 vs N, 2 vs N-1, ... for fields that are not a power of two."""
    order = []
    for seed in range(1, size // 2 + 1):
        order.extend([seed, size + 1 - seed])
    return order


def _pair_even(entrant_ids: List[str]) -> List[Pairing]:
    size = len(entrant_ids)
    order = _generate_bracket_order(size) if is_power_of_two(size) else _fold_order(size)
    return [(entrant_ids[order[i] - 1], entrant_ids[order[i + 1] - 1]) for i in range(0, size, 2)]


def build_first_round(entrant_ids: List[str], policy: DrawPolicy = DrawPolicy.COMPACT) -> List[Pairing]:
    """
    Pair entrants (best first) into first round matchups, in match order.

    A pairing with None as second member is a bye.

    compact: an odd field gives its top seed the one bye, listed last so the
    same slot keeps the bye if the next round is odd too.
    padded: the field is padded to a power of two and the highest seeds get
    byes at their standard bracket positions.
    """
    if len(entrant_ids) < 2:
        return []

    if DrawPolicy(policy) == DrawPolicy.PADDED:
        bracket_size = calculate_bracket_size(len(entrant_ids))
        order = _generate_bracket_order(bracket_size)
        by_seed = {seed: rid for seed, rid in enumerate(entrant_ids, start=1)}
        pairings = []
        for i in range(0, bracket_size, 2):
            first, second = by_seed.get(order[i]), by_seed.get(order[i + 1])
            if first is None and second is None:
                continue
            if first is None:
                first, second = second, None
            pairings.append((first, second))
        return pairings

    if len(entrant_ids) % 2 == 1:
        top_seed, rest = entrant_ids[0], entrant_ids[1:]
        return _pair_even(rest) + [(top_seed, None)]
    return _pair_even(entrant_ids)


def first_round_type(num_teams: int) -> RoundType:
    return RoundType.for_rounds_remaining(calculate_rounds(num_teams))


class BracketSeeder:
    def __init__(self, store: Store):
        self.store = store

    def assign_seeds(self, tournament: Tournament, entrants: List[Registration], renumber: bool = False):
        """Number the top of the field as seeds unless the club already did."""
        if not renumber and any(r.is_seed and r.seed_number is not None for r in entrants):
            return
        for registration in entrants:
            registration.is_seed = False
            registration.seed_number = None
        num_seeds = tournament.num_seeds or calculate_num_seeds(len(entrants))
        for seed_number, registration in enumerate(entrants[:num_seeds], start=1):
            registration.is_seed = True
            registration.seed_number = seed_number

    def seed(self, tournament: Tournament, entrants: List[Registration],
             renumber_seeds: bool = False) -> List[Match]:
        """
        Build and store round 1 of the knockout draw.

        `entrants` must already be in seeding order, best first. With
        `renumber_seeds` the seed numbers follow that order even when the
        club seeded pairs by hand, as after pool play.
        """
        if len(entrants) < 2:
            raise InsufficientRegistrations()
        if len(entrants) > MAX_ENTRANTS:
            raise ValidationError(f'A knockout draw holds at most {MAX_ENTRANTS} pairs')

        with self.store.lock(tournament.id):
            existing = self.store.matches.list(tournament.id)
            if any(m.round_type != RoundType.POOL for m in existing):
                raise DrawAlreadyGenerated()

            round_type = first_round_type(len(entrants))
            pairings = build_first_round([r.id for r in entrants], tournament.draw_policy)
            matches = []
            for match_order, (first, second) in enumerate(pairings, start=1):
                if second is None:
                    matches.append(Match.bye(tournament.id, round_type, match_order, first))
                else:
                    matches.append(Match(tournament.id, round_type, match_order, Team(first), Team(second)))

            self.assign_seeds(tournament, entrants, renumber_seeds)
            for registration in entrants:
                registration.phase = Phase.MAIN_DRAW
            try:
                self.store.matches.insert_round(tournament.id, matches)
            except RoundAlreadyExists:
                raise DrawAlreadyGenerated()
            self.store.registrations.save_all(tournament.id, entrants)

        byes = sum(1 for m in matches if m.is_bye)
        logger.info(f'Knockout draw for tournament {tournament.id}: {len(entrants)} pairs, '
                    f'{round_type.value}, {len(matches) - byes} matches, {byes} byes')
        return matches
