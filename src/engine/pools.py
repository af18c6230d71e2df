"""
Pool play: partition pairs into pools, round-robin fixtures, standings and
qualifiers for the knockout stage.
"""
import logging
import math
import random
from itertools import combinations
from typing import Dict, List, Optional, Tuple

from engine.errors import (
    DrawAlreadyGenerated, InsufficientRegistrations, PoolsNotCompleted, RoundAlreadyExists,
    ValidationError,
)
from engine.models import (
    Match, MatchStatus, Phase, Pool, PoolStatus, Registration, RoundType, Team, Tournament,
)
from engine.repository import Store
from engine.scoring import score_tally

logger = logging.getLogger(__name__)

POOL_SIZES = (3, 4)


def split_into_pools(items: List, pool_size: int) -> List[List]:
    """
    Cut `items` into ceil(n / pool_size) contiguous chunks whose sizes differ
    by at most one; the first n % num_pools chunks take the extra member.
    """
    if not items:
        return []
    num_pools = math.ceil(len(items) / pool_size)
    base, extra = divmod(len(items), num_pools)
    chunks, start = [], 0
    for index in range(num_pools):
        size = base + (1 if index < extra else 0)
        chunks.append(items[start:start + size])
        start += size
    return chunks


def generate_pool_play_matches(tournament_id: str, pool: Pool) -> List[Match]:
    matches = []
    for match_order, (team1, team2) in enumerate(combinations(pool.registration_ids, 2), start=1):
        matches.append(Match(tournament_id, RoundType.POOL, match_order, Team(team1), Team(team2),
                             pool_id=pool.id))
    return matches


def calculate_pool_standings(pool: Pool, matches: List[Match],
                             registrations: Dict[str, Registration]) -> List[Dict]:
    """
    Standings of one pool from its decided matches.

    Ranking: wins -> set difference -> game difference -> lighter pair -> id
    """
    team_stats = {}
    for registration_id in pool.registration_ids:
        registration = registrations.get(registration_id)
        team_stats[registration_id] = {
            'registration_id': registration_id,
            'pair_weight': registration.pair_weight if registration else 0,
            'wins': 0,
            'losses': 0,
            'sets_won': 0,
            'sets_lost': 0,
            'games_won': 0,
            'games_lost': 0,
            'matches_played': 0,
        }

    for match in matches:
        if match.pool_id != pool.id or not match.is_decided:
            continue
        team1, team2 = match.team_ids
        if team1 not in team_stats or team2 not in team_stats:
            continue
        winner = match.winner_registration_id
        loser = team2 if winner == team1 else team1
        team_stats[winner]['wins'] += 1
        team_stats[loser]['losses'] += 1
        for registration_id in (team1, team2):
            team_stats[registration_id]['matches_played'] += 1

        if match.score and match.status == MatchStatus.COMPLETED:
            sets1, sets2, games1, games2 = score_tally(match.score)
            team_stats[team1]['sets_won'] += sets1
            team_stats[team1]['sets_lost'] += sets2
            team_stats[team1]['games_won'] += games1
            team_stats[team1]['games_lost'] += games2
            team_stats[team2]['sets_won'] += sets2
            team_stats[team2]['sets_lost'] += sets1
            team_stats[team2]['games_won'] += games2
            team_stats[team2]['games_lost'] += games1

    rows = list(team_stats.values())
    for row in rows:
        row['set_diff'] = row['sets_won'] - row['sets_lost']
        row['game_diff'] = row['games_won'] - row['games_lost']
    rows.sort(key=lambda r: (-r['wins'], -r['set_diff'], -r['game_diff'], r['pair_weight'],
                             r['registration_id']))
    for position, row in enumerate(rows, start=1):
        row['position'] = position
    return rows


def seed_teams_from_pools(pools: List[Pool], standings: Dict[str, List[Dict]],
                          advance_per_pool: int) -> List[Tuple[str, int, int]]:
    """
    Seeded list of pairs advancing from pools as (registration_id, seed, pool_number).

    All pool winners get the top seeds in pool order, then all runners-up, etc.
    """
    seeded = []
    ordered_pools = sorted(pools, key=lambda p: p.pool_number)
    seed = 1
    for position in range(1, advance_per_pool + 1):
        for pool in ordered_pools:
            rows = standings.get(pool.id, [])
            if len(rows) >= position:
                seeded.append((rows[position - 1]['registration_id'], seed, pool.pool_number))
                seed += 1
    return seeded


class PoolAssigner:
    def __init__(self, store: Store, rng: Optional[random.Random] = None):
        self.store = store
        self.rng = rng or random.Random()

    def assign(self, tournament: Tournament, registrations: List[Registration]) -> List[Pool]:
        """Shuffle confirmed pairs into pools and store the round-robin fixtures."""
        if tournament.pool_size not in POOL_SIZES:
            raise ValidationError('pool_size must be 3 or 4')
        if len(registrations) < 2:
            raise InsufficientRegistrations()

        with self.store.lock(tournament.id):
            if self.store.pools.list(tournament.id):
                raise DrawAlreadyGenerated()

            shuffled = list(registrations)
            self.rng.shuffle(shuffled)

            pools, fixtures = [], []
            for pool_number, members in enumerate(split_into_pools(shuffled, tournament.pool_size), start=1):
                pool = Pool(tournament.id, pool_number, [r.id for r in members],
                            format=tournament.match_format)
                pools.append(pool)
                fixtures.extend(generate_pool_play_matches(tournament.id, pool))
                for registration in members:
                    registration.pool_id = pool.id
                    registration.division = pool_number
                    registration.phase = Phase.QUALIFICATIONS

            try:
                self.store.pools.insert_all(tournament.id, pools)
            except RoundAlreadyExists:
                raise DrawAlreadyGenerated()
            self.store.matches.insert_round(tournament.id, fixtures)
            self.store.registrations.save_all(tournament.id, shuffled)

        logger.info(f'Tournament {tournament.id}: {len(registrations)} pairs in {len(pools)} pools, '
                    f'{len(fixtures)} pool matches')
        return pools

    def standings(self, tournament_id: str) -> Dict[str, List[Dict]]:
        pools = self.store.pools.list(tournament_id)
        matches = [m for m in self.store.matches.list(tournament_id) if m.round_type == RoundType.POOL]
        registrations = {r.id: r for r in self.store.registrations.list(tournament_id)}
        return {pool.id: calculate_pool_standings(pool, matches, registrations) for pool in pools}

    def qualifiers(self, tournament: Tournament) -> List[Registration]:
        """Pairs advancing to the knockout stage, best seed first."""
        pools = self.store.pools.list(tournament.id)
        if not pools:
            raise PoolsNotCompleted('This tournament has no pools')
        unfinished = [p.pool_number for p in pools if p.status != PoolStatus.COMPLETED]
        if unfinished:
            raise PoolsNotCompleted(f'Pools not completed: {", ".join(str(n) for n in unfinished)}')

        registrations = {r.id: r for r in self.store.registrations.list(tournament.id)}
        seeded = seed_teams_from_pools(pools, self.standings(tournament.id), tournament.advance_per_pool)
        return [registrations[registration_id] for registration_id, _, _ in seeded]
