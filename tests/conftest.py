"""
Shared pytest fixtures for the bracket engine tests.

Running tests:
    pytest tests/
"""
import pytest
import sys
import os
import yaml

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))
os.environ.setdefault('SECRET_KEY', 'test-secret-key')

from engine.discipline import DisciplinaryTracker
from engine.models import Registration, RegistrationStatus, Tournament, TournamentStatus
from engine.recorder import MatchRecorder
from engine.registrations import RegistrationStore
from engine.repository import InMemoryStore

CLUB_ID = 'club-1'


@pytest.fixture
def store():
    return InMemoryStore()


@pytest.fixture
def tracker(store):
    return DisciplinaryTracker(store.discipline, suspension_threshold=12, validity_days=365)


@pytest.fixture
def registration_store(store, tracker):
    return RegistrationStore(store, tracker)


@pytest.fixture
def recorder(store, tracker):
    return MatchRecorder(store, tracker)


@pytest.fixture
def make_tournament(store):
    """Factory: store a tournament with sensible defaults."""
    def _make(**overrides):
        settings = {'club_id': CLUB_ID, 'name': 'Open de Printemps', 'match_format': 'A1',
                    'status': TournamentStatus.REGISTRATION_CLOSED}
        settings.update(overrides)
        tournament = Tournament(**settings)
        store.tournaments.save(tournament)
        return tournament
    return _make


@pytest.fixture
def add_pairs(store):
    """Factory: store `count` confirmed pairs, lightest pair first."""
    def _add(tournament, count, status=RegistrationStatus.CONFIRMED):
        pairs = []
        for i in range(1, count + 1):
            registration = Registration(tournament.id, f'p{i}a', f'p{i}b', rank1=i * 10, rank2=i * 10,
                                        registration_order=i, status=status)
            pairs.append(registration)
        store.registrations.save_all(tournament.id, pairs)
        return pairs
    return _add


@pytest.fixture
def win():
    """Record a straight-sets win for side 1 or 2 of a match."""
    def _win(recorder, match, side=1):
        sets = [{'team1': 6, 'team2': 2}, {'team1': 6, 'team2': 3}]
        if side == 2:
            sets = [{'team1': s['team2'], 'team2': s['team1']} for s in sets]
        return recorder.record(match.tournament_id, match.id, score={'sets': sets})
    return _win


@pytest.fixture
def temp_data_dir(tmp_path, monkeypatch):
    """Point the app at a temporary data directory where testuser administers club-1."""
    import app as app_module

    club_admins = tmp_path / 'club_admins.yaml'
    club_admins.write_text(yaml.dump({'club_admins': [
        {'club_id': CLUB_ID, 'user_id': 'testuser', 'is_active': True},
        {'club_id': 'club-2', 'user_id': 'otheradmin', 'is_active': True},
    ]}, default_flow_style=False))

    monkeypatch.setattr(app_module, 'DATA_DIR', str(tmp_path))
    return str(tmp_path)


@pytest.fixture
def client(temp_data_dir):
    """Create an authenticated test client."""
    from app import app
    app.config['TESTING'] = True
    with app.test_client() as client:
        with client.session_transaction() as sess:
            sess['user'] = 'testuser'
        yield client


@pytest.fixture
def anon_client(temp_data_dir):
    from app import app
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client
