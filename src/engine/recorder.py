"""
Recording match results: scores, forfeits and their knock-on effects on
pools, registrations and the tournament status.
"""
import logging
from typing import Dict, Optional, Union

from engine.discipline import FORFEIT_POINTS, DisciplinaryTracker
from engine.errors import MatchAlreadyDecided, NotFoundError, StateError, ValidationError
from engine.models import (
    PLAY_STATUSES, DisciplinaryPoints, Match, MatchScore, MatchStatus, Phase, PoolStatus, RoundType,
    Tournament, TournamentStatus, ForfeitType, now_iso,
)
from engine.repository import Store
from engine.scoring import determine_winner, format_final_score, get_format, parse_score

logger = logging.getLogger(__name__)


class MatchRecorder:
    def __init__(self, store: Store, tracker: DisciplinaryTracker):
        self.store = store
        self.tracker = tracker

    def record(self, tournament_id: str, match_id: str,
               score: Union[Dict, MatchScore, None] = None,
               forfeit: Optional[Dict] = None) -> Match:
        """
        Record the result of a match from either a score or a forfeit.

        forfeit: {'registration_id': <side that forfeits>, 'forfeit_type': <ForfeitType>}
        """
        if (score is None) == (forfeit is None):
            raise ValidationError('Give either a score or a forfeit')

        with self.store.lock(tournament_id):
            tournament = self.store.tournaments.require(tournament_id)
            if tournament.status not in PLAY_STATUSES:
                raise StateError(f'Results cannot be recorded while the tournament is {tournament.status.value}')

            match = self.store.matches.get(tournament_id, match_id)
            if match is None:
                raise NotFoundError(f'Match {match_id} not found')
            if match.winner_registration_id is not None:
                raise MatchAlreadyDecided()
            if match.status == MatchStatus.CANCELLED:
                raise StateError('This match was cancelled')

            penalty = None
            if score is not None:
                self._apply_score(tournament, match, score)
            else:
                penalty = self._record_penalty(match, self._apply_forfeit(match, forfeit))

            match.completed_at = now_iso()
            self.store.matches.update_if_undecided(match)
            self._update_registrations(match, penalty)
            if match.pool_id:
                self._update_pool(match)
            self._update_tournament(tournament, match)

        logger.info(f'Tournament {tournament_id}: {match.round_type.value} #{match.match_order} '
                    f'won by {match.winner_registration_id} ({match.status.value})')
        return match

    def _match_format(self, tournament: Tournament, match: Match) -> str:
        if match.pool_id:
            for pool in self.store.pools.list(tournament.id):
                if pool.id == match.pool_id:
                    return pool.format
        return tournament.match_format

    def _apply_score(self, tournament: Tournament, match: Match, score):
        if match.is_bye:
            raise StateError('A bye has no score')
        if not isinstance(score, MatchScore):
            score = parse_score(score)
        fmt = get_format(self._match_format(tournament, match))
        side = determine_winner(score, fmt, punto_de_oro=tournament.punto_de_oro)
        score.final_score = format_final_score(score)
        match.score = score
        match.status = MatchStatus.COMPLETED
        match.winner_registration_id = match.team_ids[side - 1]

    def _apply_forfeit(self, match: Match, forfeit: Dict) -> str:
        if not isinstance(forfeit, dict):
            raise ValidationError('forfeit must be an object')
        forfeiting = forfeit.get('registration_id')
        if forfeiting not in match.team_ids or match.is_bye:
            logger.warning(f'Rejected forfeit for match {match.id}: {forfeiting} is not playing it')
            raise ValidationError('The forfeiting pair does not play this match')
        try:
            forfeit_type = ForfeitType(forfeit.get('forfeit_type', ForfeitType.NOT_EXCUSED.value))
        except ValueError:
            raise ValidationError('Unknown forfeit_type')
        if forfeit_type not in FORFEIT_POINTS:
            raise ValidationError(f'{forfeit_type.value} is not a forfeit')

        match.status = MatchStatus.FORFEIT
        match.forfeit_team_id = forfeiting
        match.forfeit_type = forfeit_type
        match.winner_registration_id = next(rid for rid in match.team_ids if rid != forfeiting)
        return forfeiting

    def _record_penalty(self, match: Match, forfeiting: str) -> DisciplinaryPoints:
        # Written before the match and keyed by it: a failed match write
        # leaves the match open, and recording the forfeit again replaces
        # this row instead of adding a second one.
        registration = self.store.registrations.get(match.tournament_id, forfeiting)
        if registration is None:
            raise NotFoundError(f'Registration {forfeiting} not found')
        return self.tracker.record_forfeit(registration, match.forfeit_type,
                                           entry_id=f'forfeit-{match.id}')

    def _update_registrations(self, match: Match, penalty: Optional[DisciplinaryPoints]):
        changed = []
        if penalty:
            registration = self.store.registrations.get(match.tournament_id, penalty.registration_id)
            registration.forfeit_type = match.forfeit_type
            registration.forfeit_date = now_iso()
            registration.disciplinary_points += penalty.points
            changed.append(registration)
        if match.round_type not in (RoundType.POOL, RoundType.THIRD_PLACE):
            loser_id = match.loser_registration_id
            loser = next((r for r in changed if r.id == loser_id), None) or \
                self.store.registrations.get(match.tournament_id, loser_id)
            if loser is not None:
                loser.phase = Phase.ELIMINATED
                if loser not in changed:
                    changed.append(loser)
        if changed:
            self.store.registrations.save_all(match.tournament_id, changed)

    def _update_pool(self, match: Match):
        pool = next((p for p in self.store.pools.list(match.tournament_id) if p.id == match.pool_id), None)
        if pool is None:
            return
        fixtures = [m for m in self.store.matches.list(match.tournament_id) if m.pool_id == pool.id]
        if all(m.is_decided for m in fixtures):
            pool.status = PoolStatus.COMPLETED
            pool.completed_at = now_iso()
            logger.info(f'Pool {pool.pool_number} of tournament {match.tournament_id} completed')
        else:
            pool.status = PoolStatus.IN_PROGRESS
        self.store.pools.save(pool)

    def _update_tournament(self, tournament: Tournament, match: Match):
        changed = False
        if tournament.status == TournamentStatus.DRAW_PUBLISHED:
            tournament.status = TournamentStatus.IN_PROGRESS
            changed = True
        if match.round_type in (RoundType.FINAL, RoundType.THIRD_PLACE):
            matches = self.store.matches.list(tournament.id)
            finals = [m for m in matches if m.round_type == RoundType.FINAL]
            third_place = [m for m in matches if m.round_type == RoundType.THIRD_PLACE]
            if finals and all(m.is_decided for m in finals + third_place):
                tournament.status = TournamentStatus.COMPLETED
                tournament.completed_at = now_iso()
                changed = True
                logger.info(f'Tournament {tournament.id} completed, winner {finals[0].winner_registration_id}')
        if changed:
            self.store.tournaments.save(tournament)
