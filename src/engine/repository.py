"""
Repository interfaces and the in-memory store.

Repositories hand out copies: a caller mutating a returned object changes
nothing until it saves it back. The file-backed implementation lives in
yaml_store.py and shares these interfaces.
"""
import threading
from contextlib import contextmanager
from typing import Dict, Iterable, List, Optional

from engine.errors import MatchAlreadyDecided, NotFoundError, RoundAlreadyExists
from engine.models import DisciplinaryPoints, Match, Pool, Registration, RoundType, Tournament


def _clone(obj):
    return type(obj).from_dict(obj.to_dict())


class TournamentRepository:
    def get(self, tournament_id: str) -> Optional[Tournament]:
        raise NotImplementedError

    def list(self, club_ids: Iterable[str] = None) -> List[Tournament]:
        raise NotImplementedError

    def save(self, tournament: Tournament):
        raise NotImplementedError

    def require(self, tournament_id: str) -> Tournament:
        tournament = self.get(tournament_id)
        if tournament is None:
            raise NotFoundError(f'Tournament {tournament_id} not found')
        return tournament


class RegistrationRepository:
    def list(self, tournament_id: str) -> List[Registration]:
        raise NotImplementedError

    def save_all(self, tournament_id: str, registrations: List[Registration]):
        raise NotImplementedError

    def get(self, tournament_id: str, registration_id: str) -> Optional[Registration]:
        for registration in self.list(tournament_id):
            if registration.id == registration_id:
                return registration
        return None

    def save(self, registration: Registration):
        self.save_all(registration.tournament_id, [registration])


class PoolRepository:
    def list(self, tournament_id: str) -> List[Pool]:
        raise NotImplementedError

    def insert_all(self, tournament_id: str, pools: List[Pool]):
        """Store the pools of a tournament; refuses when pools already exist."""
        raise NotImplementedError

    def save(self, pool: Pool):
        raise NotImplementedError


class MatchRepository:
    def list(self, tournament_id: str) -> List[Match]:
        raise NotImplementedError

    def insert_round(self, tournament_id: str, matches: List[Match]):
        """
        Insert a batch of matches in one write.

        Raises RoundAlreadyExists when any knockout round type in the batch is
        already stored, so two concurrent advances cannot both land.
        """
        raise NotImplementedError

    def update_if_undecided(self, match: Match):
        """Replace a match only if the stored copy has no winner yet."""
        raise NotImplementedError

    def get(self, tournament_id: str, match_id: str) -> Optional[Match]:
        for match in self.list(tournament_id):
            if match.id == match_id:
                return match
        return None


class DisciplinaryRepository:
    def list(self, player_id: str = None) -> List[DisciplinaryPoints]:
        raise NotImplementedError

    def add(self, entry: DisciplinaryPoints):
        raise NotImplementedError

    def save_all(self, entries: List[DisciplinaryPoints]):
        raise NotImplementedError


class ClubAdminRepository:
    def club_ids_for(self, user_id: str) -> List[str]:
        raise NotImplementedError

    def add(self, club_id: str, user_id: str):
        raise NotImplementedError

    def is_admin(self, user_id: str, club_id: str) -> bool:
        return club_id in self.club_ids_for(user_id)


def _check_new_rounds(existing: List[Match], tournament_id: str, batch: List[Match]):
    stored_rounds = {m.round_type for m in existing if m.round_type is not RoundType.POOL}
    for match in batch:
        if match.round_type in stored_rounds:
            raise RoundAlreadyExists(tournament_id, match.round_type)


def _check_undecided(existing: Match):
    if existing.winner_registration_id is not None:
        raise MatchAlreadyDecided()


class Store:
    """Bundle of repositories plus the per-tournament lock."""

    tournaments: TournamentRepository
    registrations: RegistrationRepository
    pools: PoolRepository
    matches: MatchRepository
    discipline: DisciplinaryRepository
    club_admins: ClubAdminRepository

    def lock(self, tournament_id: str):
        raise NotImplementedError


# In-memory implementation

class InMemoryTournamentRepository(TournamentRepository):
    def __init__(self):
        self._rows: Dict[str, Tournament] = {}

    def get(self, tournament_id):
        row = self._rows.get(tournament_id)
        return _clone(row) if row else None

    def list(self, club_ids=None):
        rows = self._rows.values()
        if club_ids is not None:
            club_ids = set(club_ids)
            rows = [t for t in rows if t.club_id in club_ids]
        return [_clone(t) for t in rows]

    def save(self, tournament):
        self._rows[tournament.id] = _clone(tournament)


class InMemoryRegistrationRepository(RegistrationRepository):
    def __init__(self):
        self._rows: Dict[str, Dict[str, Registration]] = {}

    def list(self, tournament_id):
        return [_clone(r) for r in self._rows.get(tournament_id, {}).values()]

    def save_all(self, tournament_id, registrations):
        rows = self._rows.setdefault(tournament_id, {})
        for registration in registrations:
            rows[registration.id] = _clone(registration)


class InMemoryPoolRepository(PoolRepository):
    def __init__(self):
        self._rows: Dict[str, Dict[str, Pool]] = {}

    def list(self, tournament_id):
        pools = [_clone(p) for p in self._rows.get(tournament_id, {}).values()]
        return sorted(pools, key=lambda p: p.pool_number)

    def insert_all(self, tournament_id, pools):
        if self._rows.get(tournament_id):
            raise RoundAlreadyExists(tournament_id, 'pool')
        self._rows[tournament_id] = {p.id: _clone(p) for p in pools}

    def save(self, pool):
        self._rows.setdefault(pool.tournament_id, {})[pool.id] = _clone(pool)


class InMemoryMatchRepository(MatchRepository):
    def __init__(self):
        self._rows: Dict[str, Dict[str, Match]] = {}
        self._write_lock = threading.Lock()

    def list(self, tournament_id):
        return [_clone(m) for m in self._rows.get(tournament_id, {}).values()]

    def insert_round(self, tournament_id, matches):
        with self._write_lock:
            rows = self._rows.setdefault(tournament_id, {})
            _check_new_rounds(list(rows.values()), tournament_id, matches)
            for match in matches:
                rows[match.id] = _clone(match)

    def update_if_undecided(self, match):
        with self._write_lock:
            rows = self._rows.get(match.tournament_id, {})
            if match.id not in rows:
                raise NotFoundError(f'Match {match.id} not found')
            _check_undecided(rows[match.id])
            rows[match.id] = _clone(match)


class InMemoryDisciplinaryRepository(DisciplinaryRepository):
    def __init__(self):
        self._rows: Dict[str, DisciplinaryPoints] = {}

    def list(self, player_id=None):
        rows = [_clone(e) for e in self._rows.values()]
        if player_id is not None:
            rows = [e for e in rows if player_id in e.player_ids]
        return rows

    def add(self, entry):
        self._rows[entry.id] = _clone(entry)

    def save_all(self, entries):
        for entry in entries:
            self._rows[entry.id] = _clone(entry)


class InMemoryClubAdminRepository(ClubAdminRepository):
    def __init__(self):
        self._rows: Dict[str, List[str]] = {}

    def club_ids_for(self, user_id):
        return list(self._rows.get(user_id, []))

    def add(self, club_id, user_id):
        clubs = self._rows.setdefault(user_id, [])
        if club_id not in clubs:
            clubs.append(club_id)


class InMemoryStore(Store):
    def __init__(self):
        self.tournaments = InMemoryTournamentRepository()
        self.registrations = InMemoryRegistrationRepository()
        self.pools = InMemoryPoolRepository()
        self.matches = InMemoryMatchRepository()
        self.discipline = InMemoryDisciplinaryRepository()
        self.club_admins = InMemoryClubAdminRepository()
        self._locks: Dict[str, threading.RLock] = {}
        self._locks_guard = threading.Lock()

    @contextmanager
    def lock(self, tournament_id):
        with self._locks_guard:
            tournament_lock = self._locks.setdefault(tournament_id, threading.RLock())
        with tournament_lock:
            yield
