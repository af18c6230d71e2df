"""
Knockout round progression.

A round can be advanced once every one of its matches has a winner and the
following round does not exist yet. Winners are taken in match order and
paired consecutively; an odd winner count leaves the last winner with a bye.
"""
import logging
from itertools import groupby
from typing import Dict, List, Optional, Tuple

from engine.errors import (
    BracketIntegrityError, InsufficientWinners, NoAdvanceableRound, NotFoundError,
    RoundAlreadyExists, StateError,
)
from engine.models import KNOCKOUT_ROUNDS, PLAY_STATUSES, Match, RoundType, Team
from engine.repository import Store

logger = logging.getLogger(__name__)


def group_knockout_rounds(matches: List[Match]) -> Dict[RoundType, List[Match]]:
    """Knockout matches grouped by round, each round sorted by match order."""
    knockout = [m for m in matches if m.pool_id is None and m.round_type.is_knockout]
    knockout.sort(key=lambda m: (m.round_type.rank, m.match_order))
    return {round_type: list(group) for round_type, group in groupby(knockout, key=lambda m: m.round_type)}


def find_advanceable_round(rounds: Dict[RoundType, List[Match]]) -> Optional[RoundType]:
    for round_type in KNOCKOUT_ROUNDS:
        if round_type.is_terminal or round_type not in rounds:
            continue
        if not all(m.is_decided for m in rounds[round_type]):
            continue
        if round_type.next_round() in rounds:
            continue
        return round_type
    return None


def pair_winners(winners: List[str]) -> List[Tuple[str, Optional[str]]]:
    return [(winners[i], winners[i + 1] if i + 1 < len(winners) else None)
            for i in range(0, len(winners), 2)]


class RoundAdvancer:
    def __init__(self, store: Store):
        self.store = store

    def advance(self, tournament_id: str) -> List[Match]:
        """Generate the next knockout round and return the new matches."""
        with self.store.lock(tournament_id):
            tournament = self.store.tournaments.require(tournament_id)
            if tournament.status not in PLAY_STATUSES:
                raise StateError(f'Rounds cannot be advanced while the tournament is {tournament.status.value}')
            rounds = group_knockout_rounds(self.store.matches.list(tournament_id))
            if not rounds:
                raise NotFoundError('This tournament has no knockout matches')

            current = find_advanceable_round(rounds)
            if current is None:
                raise NoAdvanceableRound()
            target = current.next_round()

            winners = [m.winner_registration_id for m in rounds[current]]
            if len(winners) < 2:
                raise InsufficientWinners()
            if target.is_terminal and len(winners) != 2:
                raise BracketIntegrityError(
                    f'A final needs exactly two finalists, {current.value} produced {len(winners)} winners')
            if len(winners) % 2 == 1:
                logger.warning(f'Tournament {tournament_id}: {len(winners)} winners in {current.value}, '
                               f'{winners[-1]} gets a bye into {target.value}')

            new_matches = []
            for match_order, (first, second) in enumerate(pair_winners(winners), start=1):
                if second is None:
                    new_matches.append(Match.bye(tournament_id, target, match_order, first))
                else:
                    new_matches.append(Match(tournament_id, target, match_order, Team(first), Team(second)))

            if target.is_terminal and tournament.third_place_match:
                losers = [m.loser_registration_id for m in rounds[current]]
                if all(losers):
                    new_matches.append(Match(tournament_id, RoundType.THIRD_PLACE, 1,
                                             Team(losers[0]), Team(losers[1])))
                else:
                    logger.warning(f'Tournament {tournament_id}: no third place match, '
                                   f'a semi-final was a bye')

            try:
                self.store.matches.insert_round(tournament_id, new_matches)
            except RoundAlreadyExists:
                raise NoAdvanceableRound()

        logger.info(f'Tournament {tournament_id}: advanced {current.value} -> {target.value} '
                    f'({len(new_matches)} matches)')
        return new_matches
