"""
Flask JSON API for the padel tournament bracket engine.
"""
import os
import logging
from datetime import timedelta
from functools import wraps
from flask import Flask, request, jsonify, session, g
from flask.logging import default_handler
from werkzeug.exceptions import HTTPException

from engine.advancement import RoundAdvancer
from engine.discipline import DisciplinaryTracker
from engine.draw import DrawService
from engine.errors import AuthorizationError, EngineError, InvalidTransition, NotFoundError, PersistenceError, ValidationError
from engine.models import (
    ADMIN_TRANSITIONS, DrawPolicy, RoundType, Tournament, TournamentFormat, TournamentStatus,
)
from engine.pools import PoolAssigner
from engine.recorder import MatchRecorder
from engine.registrations import RegistrationStore
from engine.scoring import FORMATS
from engine.yaml_store import YamlStore

app = Flask(__name__)


def _get_or_create_secret_key() -> bytes:
    """Get SECRET_KEY from env, or generate and persist to file."""
    env_key = os.environ.get('SECRET_KEY')
    if env_key:
        return env_key.encode() if isinstance(env_key, str) else env_key
    key_file = os.path.join(DATA_DIR, '.secret_key')
    if os.path.exists(key_file):
        with open(key_file, 'rb') as f:
            return f.read()
    key = os.urandom(24)
    os.makedirs(os.path.dirname(key_file), exist_ok=True)
    with open(key_file, 'wb') as f:
        f.write(key)
    return key


BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.environ.get('PADEL_DATA_DIR', os.path.join(BASE_DIR, 'data'))
LOCK_TIMEOUT = float(os.environ.get('PADEL_LOCK_TIMEOUT', '10'))
SUSPENSION_POINTS = int(os.environ.get('PADEL_SUSPENSION_POINTS', '12'))
POINTS_VALIDITY_DAYS = int(os.environ.get('PADEL_POINTS_VALIDITY_DAYS', '365'))
LOG_LEVEL = os.environ.get('LOG_LEVEL', 'INFO').upper()

app.secret_key = _get_or_create_secret_key()
app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(days=3650)

app.logger.setLevel(LOG_LEVEL)
engine_logger = logging.getLogger('engine')
engine_logger.setLevel(LOG_LEVEL)
engine_logger.addHandler(default_handler)
engine_logger.propagate = False

TOURNAMENT_SETTINGS = {
    'name', 'category', 'format', 'match_format', 'start_date', 'end_date', 'courts', 'pool_size',
    'advance_per_pool', 'num_seeds', 'third_place_match', 'draw_policy', 'max_teams',
    'inscription_fee', 'punto_de_oro',
}
EDITABLE_STATUSES = {TournamentStatus.DRAFT, TournamentStatus.OPEN, TournamentStatus.REGISTRATION_CLOSED}


def get_store() -> YamlStore:
    """One store per request, rooted at the configured data directory."""
    if 'store' not in g:
        g.store = YamlStore(DATA_DIR, lock_timeout=LOCK_TIMEOUT)
    return g.store


def get_tracker() -> DisciplinaryTracker:
    return DisciplinaryTracker(get_store().discipline, SUSPENSION_POINTS, POINTS_VALIDITY_DAYS)


def get_registrations() -> RegistrationStore:
    return RegistrationStore(get_store(), get_tracker())


def current_user() -> str:
    return session['user']


def login_required(f):
    """Reject the request with 401 when no user is signed in."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'user' not in session:
            return jsonify({'error': 'Authentication required', 'code': 'unauthorized'}), 401
        return f(*args, **kwargs)
    return decorated_function


def admin_tournament(tournament_id: str) -> Tournament:
    """Load a tournament the signed-in user administers.

    Callers who administer no club get 403 whether or not the tournament
    exists, so they cannot probe for tournament ids.
    """
    store = get_store()
    club_ids = store.club_admins.club_ids_for(current_user())
    tournament = store.tournaments.get(tournament_id)
    if not club_ids:
        raise AuthorizationError('You are not an admin of any club')
    if tournament is None:
        raise NotFoundError(f'Tournament {tournament_id} not found')
    if tournament.club_id not in club_ids:
        raise AuthorizationError('You are not an admin of this tournament\'s club')
    return tournament


def json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('Expected a JSON object body')
    return data


def _int_field(data, field, low=None, high=None, optional=False):
    value = data.get(field)
    if value is None and optional:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f'{field} must be an integer')
    if (low is not None and value < low) or (high is not None and value > high):
        raise ValidationError(f'{field} must be between {low} and {high}')
    return value


def parse_tournament_settings(data: dict) -> dict:
    """Validate the tournament settings present in a payload."""
    unknown = set(data) - TOURNAMENT_SETTINGS - {'club_id', 'status'}
    if unknown:
        raise ValidationError(f'Unknown fields: {", ".join(sorted(unknown))}')
    settings = {}
    if 'name' in data:
        name = data['name']
        if not isinstance(name, str) or not name.strip():
            raise ValidationError('name is required')
        settings['name'] = name.strip()
    for field in ('category', 'start_date', 'end_date'):
        if field in data:
            if data[field] is not None and not isinstance(data[field], str):
                raise ValidationError(f'{field} must be a string')
            settings[field] = data[field]
    if 'format' in data:
        try:
            settings['format'] = TournamentFormat(data['format'])
        except ValueError:
            raise ValidationError('format must be one of: ' + ', '.join(f.value for f in TournamentFormat))
    if 'draw_policy' in data:
        try:
            settings['draw_policy'] = DrawPolicy(data['draw_policy'])
        except ValueError:
            raise ValidationError('draw_policy must be compact or padded')
    if 'match_format' in data:
        if data['match_format'] not in FORMATS:
            raise ValidationError('match_format must be one of: ' + ', '.join(sorted(FORMATS)))
        settings['match_format'] = data['match_format']
    if 'pool_size' in data:
        settings['pool_size'] = _int_field(data, 'pool_size', 3, 4)
    if 'advance_per_pool' in data:
        settings['advance_per_pool'] = _int_field(data, 'advance_per_pool', 1, 4)
    if 'num_seeds' in data:
        settings['num_seeds'] = _int_field(data, 'num_seeds', 1, 64, optional=True)
    if 'max_teams' in data:
        settings['max_teams'] = _int_field(data, 'max_teams', 4, 128, optional=True)
    if 'courts' in data:
        courts = data['courts']
        if not isinstance(courts, list) or any(isinstance(c, bool) or not isinstance(c, int) for c in courts):
            raise ValidationError('courts must be a list of court numbers')
        settings['courts'] = courts
    if 'inscription_fee' in data:
        fee = data['inscription_fee']
        if isinstance(fee, bool) or not isinstance(fee, (int, float)) or fee < 0:
            raise ValidationError('inscription_fee must be a non-negative number')
        settings['inscription_fee'] = fee
    for field in ('third_place_match', 'punto_de_oro'):
        if field in data:
            if not isinstance(data[field], bool):
                raise ValidationError(f'{field} must be true or false')
            settings[field] = data[field]
    return settings


def serialize_matches(matches):
    return [m.to_dict() for m in sorted(matches, key=lambda m: (m.round_type.rank, m.pool_id or '', m.match_order))]


@app.errorhandler(EngineError)
def handle_engine_error(e):
    if isinstance(e, PersistenceError):
        app.logger.error(f'Persistence failure on {request.method} {request.path}: {e}')
    return jsonify({'error': str(e), 'code': e.code}), e.status_code


@app.errorhandler(HTTPException)
def handle_http_error(e):
    return jsonify({'error': e.description, 'code': e.name.lower().replace(' ', '_')}), e.code


@app.route('/tournaments', methods=['POST'])
@login_required
def create_tournament():
    data = json_body()
    store = get_store()
    club_ids = store.club_admins.club_ids_for(current_user())
    if not club_ids:
        raise AuthorizationError('You are not an admin of any club')
    club_id = data.get('club_id') or (club_ids[0] if len(club_ids) == 1 else None)
    if club_id is None:
        raise ValidationError('club_id is required when you administer several clubs')
    if club_id not in club_ids:
        raise AuthorizationError('You are not an admin of this club')
    if 'status' in data:
        raise ValidationError('A new tournament always starts as a draft')

    settings = parse_tournament_settings(data)
    if 'name' not in settings:
        raise ValidationError('name is required')
    tournament = Tournament(club_id=club_id, created_by=current_user(), **settings)
    store.tournaments.save(tournament)
    app.logger.info(f'Tournament {tournament.id} "{tournament.name}" created by {current_user()}')
    return jsonify(tournament.to_dict()), 201


@app.route('/tournaments', methods=['GET'])
@login_required
def list_tournaments():
    store = get_store()
    club_ids = store.club_admins.club_ids_for(current_user())
    if not club_ids:
        raise AuthorizationError('You are not an admin of any club')
    tournaments = sorted(store.tournaments.list(club_ids), key=lambda t: t.created_at, reverse=True)
    return jsonify({'tournaments': [t.to_dict() for t in tournaments]})


@app.route('/tournaments/<tournament_id>', methods=['GET'])
@login_required
def get_tournament(tournament_id):
    return jsonify(admin_tournament(tournament_id).to_dict())


@app.route('/tournaments/<tournament_id>', methods=['PATCH'])
@login_required
def update_tournament(tournament_id):
    tournament = admin_tournament(tournament_id)
    data = json_body()
    if 'club_id' in data:
        raise ValidationError('A tournament cannot move to another club')
    settings = parse_tournament_settings(data)
    store = get_store()

    with store.lock(tournament_id):
        tournament = store.tournaments.require(tournament_id)
        if settings:
            if tournament.status not in EDITABLE_STATUSES:
                raise InvalidTransition('Settings are frozen once the draw is published')
            for field, value in settings.items():
                setattr(tournament, field, value)
        if 'status' in data:
            try:
                target = TournamentStatus(data['status'])
            except ValueError:
                raise ValidationError('Unknown status')
            if target not in ADMIN_TRANSITIONS[tournament.status]:
                raise InvalidTransition(f'Cannot move from {tournament.status.value} to {target.value}')
            app.logger.info(f'Tournament {tournament_id}: {tournament.status.value} -> {target.value}')
            tournament.status = target
        store.tournaments.save(tournament)
    return jsonify(tournament.to_dict())


@app.route('/tournaments/<tournament_id>/register', methods=['POST'])
@login_required
def register_pair(tournament_id):
    data = json_body()
    registration = get_registrations().register(
        tournament_id, current_user(), data.get('player2_id'),
        rank1=data.get('rank1', 0), rank2=data.get('rank2', 0),
    )
    return jsonify(registration.to_dict()), 201


@app.route('/tournaments/<tournament_id>/register/<registration_id>', methods=['DELETE'])
@login_required
def withdraw_registration(tournament_id, registration_id):
    registration = get_registrations().withdraw(tournament_id, registration_id, current_user())
    return jsonify(registration.to_dict())


@app.route('/tournaments/<tournament_id>/registrations', methods=['GET'])
@login_required
def list_registrations(tournament_id):
    admin_tournament(tournament_id)
    registrations = get_registrations().list(tournament_id)
    status = request.args.get('status')
    if status:
        registrations = [r for r in registrations if r.status.value == status]
    return jsonify({'registrations': [r.to_dict() for r in registrations]})


@app.route('/tournaments/<tournament_id>/registrations/<registration_id>', methods=['PATCH'])
@login_required
def update_registration(tournament_id, registration_id):
    data = json_body()
    store = get_store()
    tournament = store.tournaments.get(tournament_id)
    is_admin = tournament is not None and store.club_admins.is_admin(current_user(), tournament.club_id)
    if not is_admin:
        # Players may only withdraw; anything else needs admin rights.
        if set(data) != {'status'} or data['status'] != 'withdrawn':
            admin_tournament(tournament_id)
    registration = get_registrations().update(tournament_id, registration_id, data,
                                              current_user(), is_admin)
    return jsonify(registration.to_dict())


@app.route('/tournaments/<tournament_id>/generate', methods=['POST'])
@login_required
def generate_draw(tournament_id):
    admin_tournament(tournament_id)
    store = get_store()
    result = DrawService(store, get_registrations()).generate(tournament_id)
    app.logger.info(f'Draw generated for tournament {tournament_id} by {current_user()}')
    body = {'format': result['format'], 'matches': serialize_matches(result['matches'])}
    if 'pools' in result:
        body['pools'] = [p.to_dict() for p in result['pools']]
    return jsonify(body)


@app.route('/tournaments/<tournament_id>/pools', methods=['GET'])
@login_required
def list_pools(tournament_id):
    admin_tournament(tournament_id)
    assigner = PoolAssigner(get_store())
    standings = assigner.standings(tournament_id)
    pools = []
    for pool in get_store().pools.list(tournament_id):
        row = pool.to_dict()
        row['standings'] = standings.get(pool.id, [])
        pools.append(row)
    return jsonify({'pools': pools})


@app.route('/tournaments/<tournament_id>/matches', methods=['GET'])
@login_required
def list_matches(tournament_id):
    admin_tournament(tournament_id)
    matches = get_store().matches.list(tournament_id)
    round_type = request.args.get('round_type')
    if round_type:
        try:
            round_type = RoundType(round_type)
        except ValueError:
            raise ValidationError('Unknown round_type')
        matches = [m for m in matches if m.round_type == round_type]
    return jsonify({'matches': serialize_matches(matches)})


@app.route('/tournaments/<tournament_id>/matches/<match_id>', methods=['PATCH'])
@login_required
def record_match(tournament_id, match_id):
    admin_tournament(tournament_id)
    data = json_body()
    match = MatchRecorder(get_store(), get_tracker()).record(
        tournament_id, match_id, score=data.get('score'), forfeit=data.get('forfeit'))
    return jsonify(match.to_dict())


@app.route('/tournaments/<tournament_id>/advance/final-next-round', methods=['POST'])
@login_required
def advance_next_round(tournament_id):
    admin_tournament(tournament_id)
    matches = RoundAdvancer(get_store()).advance(tournament_id)
    round_type = next(m.round_type for m in matches if m.round_type != RoundType.THIRD_PLACE)
    return jsonify({
        'round_type': round_type.value,
        'matches_created': len(matches),
        'matches': serialize_matches(matches),
    }), 201


@app.route('/tournaments/<tournament_id>/advance/pools-final', methods=['POST'])
@login_required
def advance_pools_final(tournament_id):
    admin_tournament(tournament_id)
    result = DrawService(get_store(), get_registrations()).pools_to_knockout(tournament_id)
    return jsonify({
        'qualified': [r.to_dict() for r in result['qualified']],
        'matches': serialize_matches(result['matches']),
    }), 201


@app.route('/players/<player_id>/disciplinary-points', methods=['GET'])
@login_required
def disciplinary_points(player_id):
    tracker = get_tracker()
    active = tracker.active_points(player_id)
    return jsonify({
        'player_id': player_id,
        'active_points': active,
        'suspended': active >= tracker.suspension_threshold,
        'entries': [e.to_dict() for e in tracker.history(player_id)],
    })


if __name__ == '__main__':
    app.run(debug=True, port=5000)
