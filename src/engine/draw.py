"""
Draw generation per tournament format.
"""
import logging
import random
from typing import Dict, Optional

from engine.errors import InsufficientRegistrations, StateError
from engine.models import Phase, TournamentFormat, TournamentStatus, now_iso
from engine.pools import PoolAssigner
from engine.registrations import RegistrationStore
from engine.repository import Store
from engine.seeding import BracketSeeder

logger = logging.getLogger(__name__)


class DrawService:
    def __init__(self, store: Store, registrations: RegistrationStore,
                 rng: Optional[random.Random] = None):
        self.store = store
        self.registrations = registrations
        self.seeder = BracketSeeder(store)
        self.pool_assigner = PoolAssigner(store, rng)

    def generate(self, tournament_id: str) -> Dict:
        """Publish the draw of a tournament whose registrations are closed."""
        with self.store.lock(tournament_id):
            tournament = self.store.tournaments.require(tournament_id)
            if tournament.status != TournamentStatus.REGISTRATION_CLOSED:
                raise StateError('Close registrations before generating the draw')

            entrants = self.registrations.ranked(tournament_id)
            if len(entrants) < 2:
                raise InsufficientRegistrations()

            result = {'format': tournament.format.value}
            if tournament.format == TournamentFormat.KNOCKOUT:
                result['matches'] = self.seeder.seed(tournament, entrants)
            elif tournament.format == TournamentFormat.POOLS_KNOCKOUT:
                result['pools'] = self.pool_assigner.assign(tournament, entrants)
                result['matches'] = [m for m in self.store.matches.list(tournament_id) if m.pool_id]
            else:
                raise StateError(f'Draw generation is not available for {tournament.format.value} tournaments')

            tournament.status = TournamentStatus.DRAW_PUBLISHED
            tournament.draw_published_at = now_iso()
            self.store.tournaments.save(tournament)

        logger.info(f'Draw published for tournament {tournament_id} ({tournament.format.value})')
        return result

    def pools_to_knockout(self, tournament_id: str) -> Dict:
        """Seed the knockout stage from completed pools."""
        with self.store.lock(tournament_id):
            tournament = self.store.tournaments.require(tournament_id)
            if tournament.format != TournamentFormat.POOLS_KNOCKOUT:
                raise StateError('This tournament has no pool stage')
            if tournament.status not in (TournamentStatus.DRAW_PUBLISHED, TournamentStatus.IN_PROGRESS):
                raise StateError(f'The final draw cannot be made while the tournament is {tournament.status.value}')

            qualifiers = self.pool_assigner.qualifiers(tournament)
            matches = self.seeder.seed(tournament, qualifiers, renumber_seeds=True)

            qualified = {r.id for r in qualifiers}
            eliminated = []
            for registration in self.registrations.list(tournament_id):
                if registration.pool_id and registration.id not in qualified:
                    registration.phase = Phase.ELIMINATED
                    eliminated.append(registration)
            self.store.registrations.save_all(tournament_id, eliminated)

        logger.info(f'Tournament {tournament_id}: {len(qualifiers)} pairs qualified from pools')
        return {'qualified': qualifiers, 'matches': matches}
