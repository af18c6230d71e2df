"""
Pair registrations: sign-up, admin validation and withdrawal.
"""
import logging
from typing import Dict, List

from engine.discipline import DisciplinaryTracker
from engine.errors import AuthorizationError, NotFoundError, StateError, ValidationError
from engine.models import (
    ACTIVE_REGISTRATION_STATUSES, PaymentStatus, Phase, Registration, RegistrationStatus,
    TournamentStatus, now_iso,
)
from engine.repository import Store

logger = logging.getLogger(__name__)

ADMIN_FIELDS = {
    'status', 'rank1', 'rank2', 'is_seed', 'seed_number', 'is_wild_card', 'phase',
    'rejection_reason', 'payment_status',
}


def ranking_key(registration: Registration):
    """Explicit seeds first by seed number, then lightest pair, then sign-up order."""
    if registration.is_seed and registration.seed_number is not None:
        return (0, registration.seed_number, registration.pair_weight, registration.registration_order)
    return (1, 0, registration.pair_weight, registration.registration_order)


def _rank(value, field: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise ValidationError(f'{field} must be a non-negative integer')
    return value


def _enum_value(enum_cls, value, field: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ', '.join(e.value for e in enum_cls)
        raise ValidationError(f'{field} must be one of: {allowed}')


class RegistrationStore:
    def __init__(self, store: Store, tracker: DisciplinaryTracker):
        self.store = store
        self.tracker = tracker

    def register(self, tournament_id: str, caller_id: str, player2_id: str,
                 rank1: int = 0, rank2: int = 0) -> Registration:
        """Sign up a pair. The caller is always player 1."""
        if not player2_id or not isinstance(player2_id, str):
            raise ValidationError('player2_id is required')
        if player2_id == caller_id:
            raise ValidationError('A pair needs two different players')
        rank1, rank2 = _rank(rank1, 'rank1'), _rank(rank2, 'rank2')

        with self.store.lock(tournament_id):
            tournament = self.store.tournaments.require(tournament_id)
            if tournament.status != TournamentStatus.OPEN:
                raise StateError('Registrations are not open for this tournament')

            for player_id in (caller_id, player2_id):
                if self.tracker.is_suspended(player_id):
                    raise StateError(f'Player {player_id} is suspended for disciplinary reasons')

            existing = self.store.registrations.list(tournament_id)
            active = [r for r in existing if r.status in ACTIVE_REGISTRATION_STATUSES]
            for registration in active:
                if {caller_id, player2_id} & set(registration.player_ids):
                    raise ValidationError('One of the players is already registered in this tournament')

            entered = [r for r in active if r.status != RegistrationStatus.WAITING_LIST]
            full = tournament.max_teams is not None and len(entered) >= tournament.max_teams
            registration = Registration(
                tournament_id, caller_id, player2_id, rank1=rank1, rank2=rank2,
                registration_order=len(existing) + 1,
                status=RegistrationStatus.WAITING_LIST if full else RegistrationStatus.PENDING,
            )
            self.store.registrations.save(registration)

        logger.info(f'Registration {registration.id} ({caller_id}/{player2_id}) '
                    f'for tournament {tournament_id}: {registration.status.value}')
        return registration

    def get(self, tournament_id: str, registration_id: str) -> Registration:
        registration = self.store.registrations.get(tournament_id, registration_id)
        if registration is None:
            raise NotFoundError(f'Registration {registration_id} not found')
        return registration

    def update(self, tournament_id: str, registration_id: str, changes: Dict, actor_id: str,
               is_admin: bool) -> Registration:
        if not isinstance(changes, dict) or not changes:
            raise ValidationError('No changes given')
        if not is_admin:
            if set(changes) == {'status'} and changes['status'] == RegistrationStatus.WITHDRAWN.value:
                return self.withdraw(tournament_id, registration_id, actor_id)
            raise AuthorizationError('Players may only withdraw their own registration')

        unknown = set(changes) - ADMIN_FIELDS
        if unknown:
            raise ValidationError(f'Unknown or read-only fields: {", ".join(sorted(unknown))}')

        with self.store.lock(tournament_id):
            tournament = self.store.tournaments.require(tournament_id)
            registration = self.get(tournament_id, registration_id)

            if 'rank1' in changes or 'rank2' in changes:
                registration.set_ranks(
                    _rank(changes['rank1'], 'rank1') if 'rank1' in changes else None,
                    _rank(changes['rank2'], 'rank2') if 'rank2' in changes else None,
                )
            if 'status' in changes:
                registration.status = _enum_value(RegistrationStatus, changes['status'], 'status')
            if 'rejection_reason' in changes:
                registration.rejection_reason = changes['rejection_reason']
            if 'phase' in changes:
                registration.phase = _enum_value(Phase, changes['phase'], 'phase')
            if 'is_wild_card' in changes:
                registration.is_wild_card = bool(changes['is_wild_card'])
            if 'is_seed' in changes:
                registration.is_seed = bool(changes['is_seed'])
                if not registration.is_seed:
                    registration.seed_number = None
            if 'seed_number' in changes:
                seed_number = changes['seed_number']
                if seed_number is not None:
                    if isinstance(seed_number, bool) or not isinstance(seed_number, int) or seed_number < 1:
                        raise ValidationError('seed_number must be a positive integer')
                    registration.is_seed = True
                registration.seed_number = seed_number
            if 'payment_status' in changes:
                registration.payment_status = _enum_value(PaymentStatus, changes['payment_status'],
                                                           'payment_status')
                if registration.payment_status == PaymentStatus.PAID:
                    registration.paid_at = now_iso()
                    registration.amount_paid = tournament.inscription_fee

            self.store.registrations.save(registration)

        logger.info(f'Registration {registration_id} updated by {actor_id}: {sorted(changes)}')
        return registration

    def withdraw(self, tournament_id: str, registration_id: str, caller_id: str) -> Registration:
        with self.store.lock(tournament_id):
            tournament = self.store.tournaments.require(tournament_id)
            registration = self.get(tournament_id, registration_id)
            if registration.player1_id != caller_id:
                raise AuthorizationError('Only the player who registered the pair can withdraw it')
            if tournament.status in (TournamentStatus.IN_PROGRESS, TournamentStatus.COMPLETED):
                raise StateError('The tournament has started, registrations can no longer be withdrawn')
            if registration.status == RegistrationStatus.CONFIRMED:
                raise StateError('A confirmed registration can only be withdrawn by the club')
            if registration.status == RegistrationStatus.WITHDRAWN:
                raise StateError('This registration is already withdrawn')
            registration.status = RegistrationStatus.WITHDRAWN
            self.store.registrations.save(registration)

        logger.info(f'Registration {registration_id} withdrawn from tournament {tournament_id}')
        return registration

    def list(self, tournament_id: str) -> List[Registration]:
        return sorted(self.store.registrations.list(tournament_id), key=lambda r: r.registration_order)

    def confirmed(self, tournament_id: str) -> List[Registration]:
        return [r for r in self.list(tournament_id) if r.status == RegistrationStatus.CONFIRMED]

    def ranked(self, tournament_id: str) -> List[Registration]:
        return sorted(self.confirmed(tournament_id), key=ranking_key)
