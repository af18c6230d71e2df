"""
Domain model for padel tournaments: tournaments, pair registrations, pools,
matches and disciplinary points.

Objects round-trip through plain dicts (to_dict / from_dict) so the stores can
persist them as YAML.
"""
import uuid
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple


def new_id() -> str:
    return uuid.uuid4().hex


def now_iso() -> str:
    return datetime.now().isoformat()


class TournamentFormat(str, Enum):
    KNOCKOUT = 'knockout'
    POOLS_KNOCKOUT = 'pools+knockout'
    AMERICANO = 'americano'
    MEXICANO = 'mexicano'
    CUSTOM = 'custom'


class TournamentStatus(str, Enum):
    DRAFT = 'draft'
    OPEN = 'open'
    REGISTRATION_CLOSED = 'registration_closed'
    DRAW_PUBLISHED = 'draw_published'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'


# Transitions an admin may request. draw_published is set by draw generation
# and completed by the engine once the final is decided.
ADMIN_TRANSITIONS = {
    TournamentStatus.DRAFT: {TournamentStatus.OPEN, TournamentStatus.CANCELLED},
    TournamentStatus.OPEN: {TournamentStatus.REGISTRATION_CLOSED, TournamentStatus.DRAFT,
                            TournamentStatus.CANCELLED},
    TournamentStatus.REGISTRATION_CLOSED: {TournamentStatus.OPEN, TournamentStatus.CANCELLED},
    TournamentStatus.DRAW_PUBLISHED: {TournamentStatus.IN_PROGRESS, TournamentStatus.CANCELLED},
    TournamentStatus.IN_PROGRESS: {TournamentStatus.CANCELLED},
    TournamentStatus.COMPLETED: set(),
    TournamentStatus.CANCELLED: set(),
}

# Statuses in which results are recorded and rounds advanced.
PLAY_STATUSES = {TournamentStatus.DRAW_PUBLISHED, TournamentStatus.IN_PROGRESS}


class DrawPolicy(str, Enum):
    COMPACT = 'compact'
    PADDED = 'padded'


class RegistrationStatus(str, Enum):
    PENDING = 'pending'
    CONFIRMED = 'confirmed'
    WAITING_LIST = 'waiting_list'
    REJECTED = 'rejected'
    WITHDRAWN = 'withdrawn'


ACTIVE_REGISTRATION_STATUSES = {
    RegistrationStatus.PENDING, RegistrationStatus.CONFIRMED, RegistrationStatus.WAITING_LIST,
}


class Phase(str, Enum):
    WAITING_LIST = 'waiting_list'
    QUALIFICATIONS = 'qualifications'
    MAIN_DRAW = 'main_draw'
    ELIMINATED = 'eliminated'


class PaymentStatus(str, Enum):
    PENDING = 'pending'
    PAID = 'paid'
    REFUNDED = 'refunded'
    FAILED = 'failed'


class ForfeitType(str, Enum):
    NONE = 'none'
    EXCUSED = 'excused'
    NOT_EXCUSED = 'not_excused'
    ABANDON = 'abandon'
    NO_SHOW = 'no_show'


class PoolStatus(str, Enum):
    PENDING = 'pending'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'


class MatchStatus(str, Enum):
    SCHEDULED = 'scheduled'
    READY = 'ready'
    IN_PROGRESS = 'in_progress'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    FORFEIT = 'forfeit'


DECIDED_MATCH_STATUSES = {MatchStatus.COMPLETED, MatchStatus.FORFEIT}


class RoundType(str, Enum):
    """Stage of a tournament, declared in playing order."""
    POOL = 'pool'
    QUALIFICATIONS = 'qualifications'
    ROUND_OF_64 = 'round_of_64'
    ROUND_OF_32 = 'round_of_32'
    ROUND_OF_16 = 'round_of_16'
    QUARTERS = 'quarters'
    SEMIS = 'semis'
    FINAL = 'final'
    THIRD_PLACE = 'third_place'

    @property
    def rank(self) -> int:
        return _ROUND_ORDER.index(self)

    @property
    def is_terminal(self) -> bool:
        return self is RoundType.FINAL

    @property
    def is_knockout(self) -> bool:
        return self in KNOCKOUT_ROUNDS

    def next_round(self) -> Optional['RoundType']:
        """Knockout round fed by this round's winners, None when nothing follows."""
        if self not in KNOCKOUT_ROUNDS or self.is_terminal:
            return None
        return KNOCKOUT_ROUNDS[KNOCKOUT_ROUNDS.index(self) + 1]

    @classmethod
    def for_rounds_remaining(cls, rounds: int) -> 'RoundType':
        """Name of a round that is `rounds` rounds away from the end (1 = final)."""
        if rounds < 1 or rounds > len(KNOCKOUT_ROUNDS):
            raise ValueError(f'No knockout round is {rounds} rounds from the final')
        return KNOCKOUT_ROUNDS[len(KNOCKOUT_ROUNDS) - rounds]


_ROUND_ORDER = list(RoundType)
KNOCKOUT_ROUNDS = [
    RoundType.QUALIFICATIONS,
    RoundType.ROUND_OF_64,
    RoundType.ROUND_OF_32,
    RoundType.ROUND_OF_16,
    RoundType.QUARTERS,
    RoundType.SEMIS,
    RoundType.FINAL,
]


class Team:
    """A registered pair taking one side of a match."""

    def __init__(self, registration_id: str):
        self.registration_id = registration_id

    def __eq__(self, other):
        return isinstance(other, Team) and other.registration_id == self.registration_id

    def __hash__(self):
        return hash(('team', self.registration_id))

    def __repr__(self):
        return f"Team({self.registration_id})"


class _Bye:
    """The empty side of a bye match."""

    def __repr__(self):
        return 'BYE'

    def __bool__(self):
        return False


BYE = _Bye()


def opponent_from_id(registration_id: Optional[str]):
    return Team(registration_id) if registration_id else BYE


class SetScore:
    def __init__(self, team1: int, team2: int, tiebreak: Optional[Tuple[int, int]] = None):
        self.team1 = team1
        self.team2 = team2
        self.tiebreak = tiebreak

    def to_dict(self) -> Dict:
        data = {'team1': self.team1, 'team2': self.team2}
        if self.tiebreak is not None:
            data['tiebreak'] = {'team1': self.tiebreak[0], 'team2': self.tiebreak[1]}
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'SetScore':
        tiebreak = data.get('tiebreak')
        return cls(data['team1'], data['team2'],
                   (tiebreak['team1'], tiebreak['team2']) if tiebreak else None)

    def __repr__(self):
        return f"SetScore({self.team1}-{self.team2}, tiebreak={self.tiebreak})"


class MatchScore:
    def __init__(self, sets: List[SetScore], super_tiebreak: Optional[Tuple[int, int]] = None,
                 punto_de_oro_used: bool = False, final_score: str = ''):
        self.sets = sets
        self.super_tiebreak = super_tiebreak
        self.punto_de_oro_used = punto_de_oro_used
        self.final_score = final_score

    def to_dict(self) -> Dict:
        data = {
            'sets': [s.to_dict() for s in self.sets],
            'punto_de_oro_used': self.punto_de_oro_used,
            'final_score': self.final_score,
        }
        if self.super_tiebreak is not None:
            data['super_tiebreak'] = {'team1': self.super_tiebreak[0], 'team2': self.super_tiebreak[1]}
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'MatchScore':
        stb = data.get('super_tiebreak')
        return cls(
            sets=[SetScore.from_dict(s) for s in data.get('sets', [])],
            super_tiebreak=(stb['team1'], stb['team2']) if stb else None,
            punto_de_oro_used=bool(data.get('punto_de_oro_used', False)),
            final_score=data.get('final_score', ''),
        )

    def __repr__(self):
        return f"MatchScore({self.final_score or self.sets})"


class Tournament:
    def __init__(self, club_id: str, name: str, category: str = '',
                 format: TournamentFormat = TournamentFormat.KNOCKOUT, match_format: str = 'A1',
                 status: TournamentStatus = TournamentStatus.DRAFT, start_date: str = None,
                 end_date: str = None, courts: List[int] = None, pool_size: int = 4,
                 advance_per_pool: int = 2, num_seeds: Optional[int] = None,
                 third_place_match: bool = False, draw_policy: DrawPolicy = DrawPolicy.COMPACT,
                 max_teams: Optional[int] = None, inscription_fee: float = 0,
                 punto_de_oro: bool = False, created_by: str = None, id: str = None,
                 created_at: str = None, draw_published_at: str = None, completed_at: str = None):
        self.id = id or new_id()
        self.club_id = club_id
        self.name = name
        self.category = category
        self.format = TournamentFormat(format)
        self.match_format = match_format
        self.status = TournamentStatus(status)
        self.start_date = start_date
        self.end_date = end_date
        self.courts = list(courts or [])
        self.pool_size = pool_size
        self.advance_per_pool = advance_per_pool
        self.num_seeds = num_seeds
        self.third_place_match = third_place_match
        self.draw_policy = DrawPolicy(draw_policy)
        self.max_teams = max_teams
        self.inscription_fee = inscription_fee
        self.punto_de_oro = punto_de_oro
        self.created_by = created_by
        self.created_at = created_at or now_iso()
        self.draw_published_at = draw_published_at
        self.completed_at = completed_at

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'club_id': self.club_id,
            'name': self.name,
            'category': self.category,
            'format': self.format.value,
            'match_format': self.match_format,
            'status': self.status.value,
            'start_date': self.start_date,
            'end_date': self.end_date,
            'courts': list(self.courts),
            'pool_size': self.pool_size,
            'advance_per_pool': self.advance_per_pool,
            'num_seeds': self.num_seeds,
            'third_place_match': self.third_place_match,
            'draw_policy': self.draw_policy.value,
            'max_teams': self.max_teams,
            'inscription_fee': self.inscription_fee,
            'punto_de_oro': self.punto_de_oro,
            'created_by': self.created_by,
            'created_at': self.created_at,
            'draw_published_at': self.draw_published_at,
            'completed_at': self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Tournament':
        return cls(**data)

    def __repr__(self):
        return f"Tournament(id={self.id}, name={self.name}, status={self.status.value})"


class Registration:
    """A pair of players entered in a tournament."""

    def __init__(self, tournament_id: str, player1_id: str, player2_id: str, rank1: int = 0,
                 rank2: int = 0, registration_order: int = 0, is_seed: bool = False,
                 seed_number: Optional[int] = None, is_wild_card: bool = False,
                 phase: Phase = Phase.WAITING_LIST,
                 status: RegistrationStatus = RegistrationStatus.PENDING,
                 rejection_reason: str = None, payment_status: PaymentStatus = PaymentStatus.PENDING,
                 paid_at: str = None, amount_paid: float = None, pool_id: str = None,
                 division: Optional[int] = None, forfeit_type: ForfeitType = ForfeitType.NONE,
                 forfeit_date: str = None, disciplinary_points: int = 0, id: str = None,
                 created_at: str = None, pair_weight: int = None):
        # pair_weight is accepted for round-tripping stored rows and ignored:
        # it is always derived from the two ranks.
        self.id = id or new_id()
        self.tournament_id = tournament_id
        self.player1_id = player1_id
        self.player2_id = player2_id
        self.rank1 = rank1
        self.rank2 = rank2
        self.registration_order = registration_order
        self.is_seed = is_seed
        self.seed_number = seed_number
        self.is_wild_card = is_wild_card
        self.phase = Phase(phase)
        self.status = RegistrationStatus(status)
        self.rejection_reason = rejection_reason
        self.payment_status = PaymentStatus(payment_status)
        self.paid_at = paid_at
        self.amount_paid = amount_paid
        self.pool_id = pool_id
        self.division = division
        self.forfeit_type = ForfeitType(forfeit_type)
        self.forfeit_date = forfeit_date
        self.disciplinary_points = disciplinary_points
        self.created_at = created_at or now_iso()

    @property
    def pair_weight(self) -> int:
        return self.rank1 + self.rank2

    @property
    def player_ids(self) -> Tuple[str, str]:
        return (self.player1_id, self.player2_id)

    def set_ranks(self, rank1: int = None, rank2: int = None):
        if rank1 is not None:
            self.rank1 = rank1
        if rank2 is not None:
            self.rank2 = rank2

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'player1_id': self.player1_id,
            'player2_id': self.player2_id,
            'rank1': self.rank1,
            'rank2': self.rank2,
            'pair_weight': self.pair_weight,
            'registration_order': self.registration_order,
            'is_seed': self.is_seed,
            'seed_number': self.seed_number,
            'is_wild_card': self.is_wild_card,
            'phase': self.phase.value,
            'status': self.status.value,
            'rejection_reason': self.rejection_reason,
            'payment_status': self.payment_status.value,
            'paid_at': self.paid_at,
            'amount_paid': self.amount_paid,
            'pool_id': self.pool_id,
            'division': self.division,
            'forfeit_type': self.forfeit_type.value,
            'forfeit_date': self.forfeit_date,
            'disciplinary_points': self.disciplinary_points,
            'created_at': self.created_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Registration':
        return cls(**data)

    def __repr__(self):
        return (f"Registration(id={self.id}, players=({self.player1_id}, {self.player2_id}), "
                f"pair_weight={self.pair_weight}, status={self.status.value})")


class Pool:
    def __init__(self, tournament_id: str, pool_number: int, registration_ids: List[str],
                 format: str = 'D1', status: PoolStatus = PoolStatus.PENDING, id: str = None,
                 created_at: str = None, completed_at: str = None, num_teams: int = None):
        self.id = id or new_id()
        self.tournament_id = tournament_id
        self.pool_number = pool_number
        self.registration_ids = list(registration_ids)
        self.format = format
        self.status = PoolStatus(status)
        self.created_at = created_at or now_iso()
        self.completed_at = completed_at

    @property
    def num_teams(self) -> int:
        return len(self.registration_ids)

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'pool_number': self.pool_number,
            'num_teams': self.num_teams,
            'registration_ids': list(self.registration_ids),
            'format': self.format,
            'status': self.status.value,
            'created_at': self.created_at,
            'completed_at': self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Pool':
        return cls(**data)

    def __repr__(self):
        return f"Pool(number={self.pool_number}, teams={self.num_teams}, status={self.status.value})"


class Match:
    def __init__(self, tournament_id: str, round_type: RoundType, match_order: int, team1: Team,
                 team2, pool_id: str = None, status: MatchStatus = MatchStatus.SCHEDULED,
                 winner_registration_id: str = None, score: MatchScore = None,
                 forfeit_team_id: str = None, forfeit_type: ForfeitType = None, id: str = None,
                 created_at: str = None, completed_at: str = None):
        if team2 is BYE and winner_registration_id is None:
            raise ValueError('A bye advances its lone team on creation, build it with Match.bye()')
        self.id = id or new_id()
        self.tournament_id = tournament_id
        self.round_type = RoundType(round_type)
        self.match_order = match_order
        self.team1 = team1
        self.team2 = team2
        self.pool_id = pool_id
        self.status = MatchStatus(status)
        self.winner_registration_id = winner_registration_id
        self.score = score
        self.forfeit_team_id = forfeit_team_id
        self.forfeit_type = ForfeitType(forfeit_type) if forfeit_type else None
        self.created_at = created_at or now_iso()
        self.completed_at = completed_at

    @classmethod
    def bye(cls, tournament_id: str, round_type: RoundType, match_order: int,
            registration_id: str) -> 'Match':
        """A bye is decided on creation: the lone team advances."""
        stamp = now_iso()
        return cls(tournament_id, round_type, match_order, Team(registration_id), BYE,
                   status=MatchStatus.COMPLETED, winner_registration_id=registration_id,
                   created_at=stamp, completed_at=stamp)

    @property
    def is_bye(self) -> bool:
        return self.team2 is BYE

    @property
    def is_decided(self) -> bool:
        return self.status in DECIDED_MATCH_STATUSES and self.winner_registration_id is not None

    @property
    def teams(self) -> List[Team]:
        return [side for side in (self.team1, self.team2) if isinstance(side, Team)]

    @property
    def team_ids(self) -> List[str]:
        return [team.registration_id for team in self.teams]

    @property
    def loser_registration_id(self) -> Optional[str]:
        if self.is_bye or self.winner_registration_id is None:
            return None
        return next(rid for rid in self.team_ids if rid != self.winner_registration_id)

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'tournament_id': self.tournament_id,
            'pool_id': self.pool_id,
            'round_type': self.round_type.value,
            'match_order': self.match_order,
            'team1_registration_id': self.team1.registration_id if isinstance(self.team1, Team) else None,
            'team2_registration_id': self.team2.registration_id if isinstance(self.team2, Team) else None,
            'is_bye': self.is_bye,
            'status': self.status.value,
            'winner_registration_id': self.winner_registration_id,
            'score': self.score.to_dict() if self.score else None,
            'forfeit_team_id': self.forfeit_team_id,
            'forfeit_type': self.forfeit_type.value if self.forfeit_type else None,
            'created_at': self.created_at,
            'completed_at': self.completed_at,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Match':
        return cls(
            id=data['id'],
            tournament_id=data['tournament_id'],
            pool_id=data.get('pool_id'),
            round_type=data['round_type'],
            match_order=data['match_order'],
            team1=opponent_from_id(data.get('team1_registration_id')),
            team2=opponent_from_id(data.get('team2_registration_id')),
            status=data['status'],
            winner_registration_id=data.get('winner_registration_id'),
            score=MatchScore.from_dict(data['score']) if data.get('score') else None,
            forfeit_team_id=data.get('forfeit_team_id'),
            forfeit_type=data.get('forfeit_type'),
            created_at=data.get('created_at'),
            completed_at=data.get('completed_at'),
        )

    def __repr__(self):
        return (f"Match({self.round_type.value} #{self.match_order}: {self.team1} vs {self.team2}, "
                f"status={self.status.value}, winner={self.winner_registration_id})")


class DisciplinaryPoints:
    def __init__(self, player_ids: List[str], points: int, reason: str,
                 tournament_id: str = None, registration_id: str = None,
                 incident_date: datetime = None, expires_at: datetime = None,
                 is_active: bool = True, id: str = None):
        self.id = id or new_id()
        self.player_ids = list(player_ids)
        self.points = points
        self.reason = reason
        self.tournament_id = tournament_id
        self.registration_id = registration_id
        self.incident_date = incident_date or datetime.now()
        self.expires_at = expires_at
        self.is_active = is_active

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def counts_at(self, now: datetime) -> bool:
        return self.is_active and not self.is_expired(now)

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'player_ids': list(self.player_ids),
            'points': self.points,
            'reason': self.reason,
            'tournament_id': self.tournament_id,
            'registration_id': self.registration_id,
            'incident_date': self.incident_date.isoformat(),
            'expires_at': self.expires_at.isoformat() if self.expires_at else None,
            'is_active': self.is_active,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'DisciplinaryPoints':
        data = dict(data)
        data['incident_date'] = datetime.fromisoformat(data['incident_date'])
        if data.get('expires_at'):
            data['expires_at'] = datetime.fromisoformat(data['expires_at'])
        return cls(**data)

    def __repr__(self):
        return f"DisciplinaryPoints(players={self.player_ids}, points={self.points}, reason={self.reason})"
