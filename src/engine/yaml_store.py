"""
File-backed store: one YAML file per collection, guarded by file locks.

Layout under the data directory:

    tournaments.yaml
    club_admins.yaml
    disciplinary_points.yaml
    tournaments/<id>/registrations.yaml
    tournaments/<id>/pools.yaml
    tournaments/<id>/matches.yaml
    tournaments/<id>/.lock

Every write replaces its file atomically, so a batch of matches lands in a
single os.replace.
"""
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from typing import Dict, List

import yaml
from filelock import FileLock, Timeout

from engine.errors import NotFoundError, PersistenceError, RoundAlreadyExists
from engine.models import DisciplinaryPoints, Match, Pool, Registration, Tournament
from engine.repository import (
    ClubAdminRepository, DisciplinaryRepository, MatchRepository, PoolRepository,
    RegistrationRepository, Store, TournamentRepository, _check_new_rounds, _check_undecided,
)

logger = logging.getLogger(__name__)


class YamlFiles:
    """Low-level helpers shared by the YAML repositories."""

    def __init__(self, data_dir: str, lock_timeout: float = 10):
        self.data_dir = data_dir
        self.lock_timeout = lock_timeout
        self._locks: Dict[str, FileLock] = {}
        self._locks_guard = threading.Lock()

    def path(self, *parts) -> str:
        return os.path.join(self.data_dir, *parts)

    def tournament_dir(self, tournament_id: str) -> str:
        return self.path('tournaments', tournament_id)

    def load(self, path: str, key: str) -> List[dict]:
        if not os.path.exists(path):
            return []
        try:
            with open(path, 'r', encoding='utf-8') as f:
                data = yaml.safe_load(f)
        except (OSError, yaml.YAMLError) as e:
            logger.error(f'Failed to read {path}: {e}')
            raise PersistenceError(f'Could not read {os.path.basename(path)}') from e
        if not data:
            return []
        rows = (data.get(key) or []) if isinstance(data, dict) else None
        if not isinstance(rows, list):
            logger.error(f'Unexpected layout in {path}: expected a mapping with a {key} list')
            raise PersistenceError(f'Could not read {os.path.basename(path)}')
        return rows

    def dump(self, path: str, key: str, rows: List[dict]):
        directory = os.path.dirname(path)
        try:
            os.makedirs(directory, exist_ok=True)
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix='.tmp')
            try:
                with os.fdopen(fd, 'w', encoding='utf-8') as f:
                    yaml.dump({key: rows}, f, default_flow_style=False, sort_keys=False)
                os.replace(tmp_path, path)
            except BaseException:
                if os.path.exists(tmp_path):
                    os.remove(tmp_path)
                raise
        except (OSError, yaml.YAMLError) as e:
            logger.error(f'Failed to write {path}: {e}')
            raise PersistenceError(f'Could not write {os.path.basename(path)}') from e

    def file_lock(self, path: str) -> FileLock:
        with self._locks_guard:
            lock = self._locks.get(path)
            if lock is None:
                os.makedirs(os.path.dirname(path), exist_ok=True)
                lock = FileLock(path, timeout=self.lock_timeout)
                self._locks[path] = lock
            return lock

    @contextmanager
    def locked(self, path: str):
        try:
            with self.file_lock(path):
                yield
        except Timeout as e:
            logger.error(f'Timed out waiting for {path}')
            raise PersistenceError('The tournament store is busy, try again') from e

    def data_lock(self):
        return self.locked(self.path('.lock'))

    def tournament_lock(self, tournament_id: str):
        return self.locked(os.path.join(self.tournament_dir(tournament_id), '.lock'))


class YamlTournamentRepository(TournamentRepository):
    def __init__(self, files: YamlFiles):
        self._files = files
        self._path = files.path('tournaments.yaml')

    def _load(self) -> List[Tournament]:
        return [Tournament.from_dict(row) for row in self._files.load(self._path, 'tournaments')]

    def get(self, tournament_id):
        for tournament in self._load():
            if tournament.id == tournament_id:
                return tournament
        return None

    def list(self, club_ids=None):
        tournaments = self._load()
        if club_ids is not None:
            club_ids = set(club_ids)
            tournaments = [t for t in tournaments if t.club_id in club_ids]
        return tournaments

    def save(self, tournament):
        with self._files.data_lock():
            rows = [t for t in self._load() if t.id != tournament.id]
            rows.append(tournament)
            self._files.dump(self._path, 'tournaments', [t.to_dict() for t in rows])


class YamlRegistrationRepository(RegistrationRepository):
    def __init__(self, files: YamlFiles):
        self._files = files

    def _path(self, tournament_id):
        return os.path.join(self._files.tournament_dir(tournament_id), 'registrations.yaml')

    def list(self, tournament_id):
        rows = self._files.load(self._path(tournament_id), 'registrations')
        return [Registration.from_dict(row) for row in rows]

    def save_all(self, tournament_id, registrations):
        with self._files.tournament_lock(tournament_id):
            by_id = {r.id: r for r in self.list(tournament_id)}
            for registration in registrations:
                by_id[registration.id] = registration
            self._files.dump(self._path(tournament_id), 'registrations',
                             [r.to_dict() for r in by_id.values()])


class YamlPoolRepository(PoolRepository):
    def __init__(self, files: YamlFiles):
        self._files = files

    def _path(self, tournament_id):
        return os.path.join(self._files.tournament_dir(tournament_id), 'pools.yaml')

    def list(self, tournament_id):
        pools = [Pool.from_dict(row) for row in self._files.load(self._path(tournament_id), 'pools')]
        return sorted(pools, key=lambda p: p.pool_number)

    def insert_all(self, tournament_id, pools):
        with self._files.tournament_lock(tournament_id):
            if self.list(tournament_id):
                raise RoundAlreadyExists(tournament_id, 'pool')
            self._files.dump(self._path(tournament_id), 'pools', [p.to_dict() for p in pools])

    def save(self, pool):
        with self._files.tournament_lock(pool.tournament_id):
            rows = [p for p in self.list(pool.tournament_id) if p.id != pool.id]
            rows.append(pool)
            rows.sort(key=lambda p: p.pool_number)
            self._files.dump(self._path(pool.tournament_id), 'pools', [p.to_dict() for p in rows])


class YamlMatchRepository(MatchRepository):
    def __init__(self, files: YamlFiles):
        self._files = files

    def _path(self, tournament_id):
        return os.path.join(self._files.tournament_dir(tournament_id), 'matches.yaml')

    def list(self, tournament_id):
        return [Match.from_dict(row) for row in self._files.load(self._path(tournament_id), 'matches')]

    def _write(self, tournament_id, matches):
        self._files.dump(self._path(tournament_id), 'matches', [m.to_dict() for m in matches])

    def insert_round(self, tournament_id, matches):
        with self._files.tournament_lock(tournament_id):
            existing = self.list(tournament_id)
            _check_new_rounds(existing, tournament_id, matches)
            self._write(tournament_id, existing + list(matches))

    def update_if_undecided(self, match):
        with self._files.tournament_lock(match.tournament_id):
            existing = self.list(match.tournament_id)
            for index, stored in enumerate(existing):
                if stored.id == match.id:
                    _check_undecided(stored)
                    existing[index] = match
                    self._write(match.tournament_id, existing)
                    return
            raise NotFoundError(f'Match {match.id} not found')


class YamlDisciplinaryRepository(DisciplinaryRepository):
    def __init__(self, files: YamlFiles):
        self._files = files
        self._path = files.path('disciplinary_points.yaml')

    def _load(self) -> List[DisciplinaryPoints]:
        rows = self._files.load(self._path, 'disciplinary_points')
        return [DisciplinaryPoints.from_dict(row) for row in rows]

    def list(self, player_id=None):
        entries = self._load()
        if player_id is not None:
            entries = [e for e in entries if player_id in e.player_ids]
        return entries

    def add(self, entry):
        self.save_all([entry])

    def save_all(self, entries):
        with self._files.data_lock():
            by_id = {e.id: e for e in self._load()}
            for entry in entries:
                by_id[entry.id] = entry
            self._files.dump(self._path, 'disciplinary_points', [e.to_dict() for e in by_id.values()])


class YamlClubAdminRepository(ClubAdminRepository):
    """Roster of club admins: `club_admins: [{club_id, user_id, is_active}]`."""

    def __init__(self, files: YamlFiles):
        self._files = files
        self._path = files.path('club_admins.yaml')

    def club_ids_for(self, user_id):
        rows = self._files.load(self._path, 'club_admins')
        return [row['club_id'] for row in rows
                if row.get('user_id') == user_id and row.get('is_active', True)]

    def add(self, club_id, user_id):
        with self._files.data_lock():
            rows = self._files.load(self._path, 'club_admins')
            if not any(r['club_id'] == club_id and r['user_id'] == user_id for r in rows):
                rows.append({'club_id': club_id, 'user_id': user_id, 'is_active': True})
                self._files.dump(self._path, 'club_admins', rows)


class YamlStore(Store):
    def __init__(self, data_dir: str, lock_timeout: float = 10):
        self.files = YamlFiles(data_dir, lock_timeout)
        self.tournaments = YamlTournamentRepository(self.files)
        self.registrations = YamlRegistrationRepository(self.files)
        self.pools = YamlPoolRepository(self.files)
        self.matches = YamlMatchRepository(self.files)
        self.discipline = YamlDisciplinaryRepository(self.files)
        self.club_admins = YamlClubAdminRepository(self.files)

    def lock(self, tournament_id):
        return self.files.tournament_lock(tournament_id)
