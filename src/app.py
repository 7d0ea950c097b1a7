"""
Flask web application for Beach Tournament Manager.

JSON REST backend: tournaments, registrations, pools, elimination brackets
and the King formats. Data lives in YAML documents under DATA_DIR.
"""
import os
import re
import random
import shutil
import yaml
from datetime import datetime, timedelta
from functools import wraps
from filelock import FileLock
from flask import Flask, request, jsonify, session, g

from engine import flexible_king, king, team_king
from engine.elimination import (
    BracketError, generate_elimination_bracket, record_elimination_result,
    get_bracket_rounds, get_champion, calculate_bracket_structure,
)
from engine.models import LEVELS, ROLES, TOURNAMENT_FORMATS, TOURNAMENT_TYPES, MIXITY_TYPES, MATCH_FORMATS
from engine.phases import PhaseError, phase_progress, find_phase, CONFIGURED, IN_PROGRESS
from engine.pools import (
    assign_teams_to_pools, create_pool, generate_pool_matches, calculate_pool_rankings,
    select_qualified_teams,
)
from engine.registration import (
    RegistrationError, create_team, join_team, leave_team, delete_team, transfer_captain, new_team_id,
    set_recruitment, register_free_player, leave_free_players, join_waiting_list,
    leave_waiting_list, promote_from_waiting_list, assign_free_player, find_team,
)
from engine.scoring import (
    parse_sets, apply_match_result, sets_to_win_for, calculate_final_ranking,
    build_player_points, build_individual_player_points, calculate_player_global_ranking,
)
from engine.status import (
    count_teams, calculate_tournament_status, get_user_registration_status,
    get_user_tournament_status, calculate_guaranteed_matches,
)

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
DATA_DIR = os.environ.get('TOURNAMENT_DATA_DIR', os.path.join(BASE_DIR, 'data'))

app.secret_key = _get_or_create_secret_key()
app.config['PERMANENT_SESSION_LIFETIME'] = timedelta(days=30)

USERS_FILE = os.path.join(DATA_DIR, 'users.yaml')
PLAYER_POINTS_FILE = os.path.join(DATA_DIR, 'player_points.yaml')
TOURNAMENTS_DIR = os.path.join(DATA_DIR, 'tournaments')
os.makedirs(DATA_DIR, exist_ok=True)
_data_lock = FileLock(os.path.join(DATA_DIR, '.lock'), timeout=10)

KING_FILES = {
    'king': 'king.yaml',
    'flexible_king': 'flexible_king.yaml',
    'team_king': 'team_king.yaml',
}


# ---------------------------------------------------------------------------
# Documents
# ---------------------------------------------------------------------------

def _load_doc(path: str, default):
    """Load a YAML document, falling back to default when missing or unreadable."""
    if not os.path.exists(path):
        return default
    try:
        with open(path, 'r', encoding='utf-8') as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        app.logger.warning(f'Failed to parse {path}: {e}')
        return default
    return data if data is not None else default


def _save_doc(path: str, data):
    os.makedirs(os.path.dirname(path), exist_ok=True)
    with open(path, 'w', encoding='utf-8') as f:
        yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)


def _tournament_dir(tournament_id: str) -> str:
    return os.path.join(TOURNAMENTS_DIR, tournament_id)


def _doc_path(tournament_id: str, filename: str) -> str:
    return os.path.join(_tournament_dir(tournament_id), filename)


def load_users() -> list:
    """Load user registry from YAML."""
    return _load_doc(USERS_FILE, {}).get('users', [])


def save_users(users: list):
    """Save user registry to YAML."""
    _save_doc(USERS_FILE, {'users': users})


def find_user(username: str):
    username = (username or '').lower().strip()
    for user in load_users():
        if user['username'] == username:
            return user
    return None


def public_user(user: dict) -> dict:
    """User fields safe to send to clients."""
    return {k: v for k, v in user.items() if k != 'password_hash'}


def create_user(username: str, password: str, pseudo: str = None, level: str = 'Intermediate',
                is_virtual: bool = False) -> tuple:
    """Create a new user. Returns (success, message). The first account is an admin."""
    from werkzeug.security import generate_password_hash
    username = username.lower().strip()
    if not re.match(r'^[a-z0-9][a-z0-9-]*$', username) or len(username) < 2:
        return False, 'Username must be at least 2 characters: letters, numbers, hyphens.'
    if len(password) < 4:
        return False, 'Password must be at least 4 characters.'
    if level not in LEVELS:
        return False, f'Level must be one of: {", ".join(LEVELS)}.'
    with _data_lock:
        users = load_users()
        if any(u['username'] == username for u in users):
            return False, 'Username already taken.'
        users.append({
            'username': username,
            'pseudo': (pseudo or username).strip(),
            'level': level,
            'role': 'admin' if not users else 'player',
            'is_virtual': is_virtual,
            'password_hash': generate_password_hash(password),
            'created': datetime.now().isoformat()
        })
        save_users(users)
    return True, 'Account created.'


def authenticate_user(username: str, password: str) -> bool:
    """Check username/password. Returns True if valid."""
    from werkzeug.security import check_password_hash
    user = find_user(username)
    if not user:
        return False
    return check_password_hash(user['password_hash'], password)


def get_default_tournament() -> dict:
    """Return default tournament settings."""
    return {
        'name': '',
        'date': None,
        'location': '',
        'description': '',
        'type': '4v4',
        'mixity': 'mixed',
        'level': 'Intermediate',
        'fields': 3,
        'price': 0,
        'max_teams': 16,
        'players_per_team': 4,
        'min_players_per_team': 4,
        'registration_start': None,
        'registration_end': None,
        'waiting_list_size': 0,
        'waiting_list_enabled': False,
        'max_teams_per_pool': 4,
        'teams_qualified_per_pool': 2,
        'sets_per_match_pool': 1,
        'points_per_set_pool': 21,
        'tie_break_enabled_pools': False,
        'elimination_enabled': True,
        'sets_per_match_elimination': 3,
        'points_per_set_elimination': 21,
        'tie_break_enabled_elimination': False,
        'match_format': 'single',
        'tournament_format': 'standard',
        'is_active': True,
        'is_ranking_frozen': False,
        'is_finished': False,
    }


def load_tournament(tournament_id: str):
    """Load a tournament merged with defaults, or None when it does not exist."""
    data = _load_doc(_doc_path(tournament_id, 'tournament.yaml'), None)
    if not data:
        return None
    return {**get_default_tournament(), **data}


def save_tournament(tournament: dict):
    _save_doc(_doc_path(tournament['id'], 'tournament.yaml'), tournament)


def list_tournaments() -> list:
    if not os.path.isdir(TOURNAMENTS_DIR):
        return []
    tournaments = []
    for entry in sorted(os.listdir(TOURNAMENTS_DIR)):
        tournament = load_tournament(entry)
        if tournament:
            tournaments.append(tournament)
    return sorted(tournaments, key=lambda t: str(t.get('date') or ''))


def _load_list(tournament_id: str, filename: str, key: str) -> list:
    return _load_doc(_doc_path(tournament_id, filename), {}).get(key, [])


def _save_list(tournament_id: str, filename: str, key: str, items: list):
    _save_doc(_doc_path(tournament_id, filename), {key: items})


def load_teams(tournament_id: str) -> list:
    return _load_list(tournament_id, 'teams.yaml', 'teams')


def save_teams(tournament_id: str, teams: list):
    _save_list(tournament_id, 'teams.yaml', 'teams', teams)


def load_free_players(tournament_id: str) -> list:
    return _load_list(tournament_id, 'players.yaml', 'players')


def save_free_players(tournament_id: str, players: list):
    _save_list(tournament_id, 'players.yaml', 'players', players)


def load_waiting_list(tournament_id: str) -> list:
    return _load_list(tournament_id, 'waiting_list.yaml', 'teams')


def save_waiting_list(tournament_id: str, waiting_list: list):
    _save_list(tournament_id, 'waiting_list.yaml', 'teams', waiting_list)


def load_pools(tournament_id: str) -> list:
    return _load_list(tournament_id, 'pools.yaml', 'pools')


def save_pools(tournament_id: str, pools: list):
    _save_list(tournament_id, 'pools.yaml', 'pools', pools)


def load_bracket(tournament_id: str) -> list:
    return _load_list(tournament_id, 'elimination.yaml', 'matches')


def save_bracket(tournament_id: str, matches: list):
    _save_list(tournament_id, 'elimination.yaml', 'matches', matches)


def load_final_ranking(tournament_id: str) -> list:
    return _load_list(tournament_id, 'ranking.yaml', 'ranking')


def save_final_ranking(tournament_id: str, ranking: list):
    _save_list(tournament_id, 'ranking.yaml', 'ranking', ranking)


def load_king_doc(tournament_id: str, kind: str):
    return _load_doc(_doc_path(tournament_id, KING_FILES[kind]), None)


def save_king_doc(tournament_id: str, kind: str, data: dict):
    _save_doc(_doc_path(tournament_id, KING_FILES[kind]), data)


def load_player_points() -> list:
    return _load_doc(PLAYER_POINTS_FILE, {}).get('records', [])


def save_player_points(records: list):
    _save_doc(PLAYER_POINTS_FILE, {'records': records})


def _slugify(name: str) -> str:
    """Convert tournament name to filesystem-safe slug."""
    slug = name.lower().strip()
    slug = re.sub(r'[^a-z0-9\s-]', '', slug)
    slug = re.sub(r'[\s-]+', '-', slug)
    slug = slug.strip('-')
    return slug or 'tournament'


def _unique_tournament_id(name: str) -> str:
    base = _slugify(name)
    candidate = base
    counter = 2
    while os.path.exists(_tournament_dir(candidate)):
        candidate = f'{base}-{counter}'
        counter += 1
    return candidate


# ---------------------------------------------------------------------------
# Tournament settings
# ---------------------------------------------------------------------------

def _int_field(data: dict, key: str, minimum: int = 0):
    value = data[key]
    try:
        value = int(value)
    except (TypeError, ValueError):
        raise ValueError(f'{key} must be a number.')
    if value < minimum:
        raise ValueError(f'{key} must be at least {minimum}.')
    return value


def _normalize_datetime(value, default_time: str):
    """Store datetimes as ISO strings; a bare date gets default_time."""
    if value in (None, ''):
        return None
    text = str(value).strip()
    if re.match(r'^\d{4}-\d{2}-\d{2}$', text):
        text = f'{text}T{default_time}'
    try:
        return datetime.fromisoformat(text).isoformat()
    except ValueError:
        raise ValueError(f'Invalid date: {value}.')


def build_tournament(payload: dict, existing: dict = None) -> dict:
    """
    Merge a create/update payload into tournament settings and validate them.

    Raises:
        ValueError: a field is missing or out of range.
    """
    tournament = dict(existing) if existing else get_default_tournament()
    for key in get_default_tournament():
        if key in payload:
            tournament[key] = payload[key]

    tournament['name'] = str(tournament.get('name') or '').strip()
    if not tournament['name']:
        raise ValueError('Tournament name is required.')

    for key, minimum in (('max_teams', 2), ('players_per_team', 1), ('min_players_per_team', 1),
                         ('fields', 1), ('waiting_list_size', 0), ('max_teams_per_pool', 2),
                         ('teams_qualified_per_pool', 0), ('sets_per_match_pool', 1),
                         ('points_per_set_pool', 1), ('sets_per_match_elimination', 1),
                         ('points_per_set_elimination', 1)):
        tournament[key] = _int_field(tournament, key, minimum)

    if 'min_players_per_team' not in payload and not existing:
        tournament['min_players_per_team'] = tournament['players_per_team']
    if tournament['min_players_per_team'] > tournament['players_per_team']:
        raise ValueError('min_players_per_team cannot exceed players_per_team.')
    if tournament['teams_qualified_per_pool'] > tournament['max_teams_per_pool']:
        raise ValueError('teams_qualified_per_pool cannot exceed max_teams_per_pool.')

    for key, allowed in (('match_format', MATCH_FORMATS), ('tournament_format', TOURNAMENT_FORMATS),
                         ('type', TOURNAMENT_TYPES), ('mixity', MIXITY_TYPES), ('level', LEVELS)):
        if tournament[key] not in allowed:
            raise ValueError(f'{key} must be one of: {", ".join(allowed)}.')

    tournament['date'] = _normalize_datetime(tournament.get('date'), '09:00:00')
    tournament['registration_start'] = _normalize_datetime(tournament.get('registration_start'), '00:00:00')
    tournament['registration_end'] = _normalize_datetime(tournament.get('registration_end'), '23:59:00')
    if (tournament['registration_start'] and tournament['registration_end']
            and tournament['registration_start'] > tournament['registration_end']):
        raise ValueError('Registration start must be before registration end.')

    tournament['waiting_list_enabled'] = tournament['waiting_list_size'] > 0
    tournament['elimination_enabled'] = bool(tournament['elimination_enabled'])
    return tournament


def _registered_players(tournament_id: str) -> list:
    """Every individual registered to a tournament: team members then free players."""
    players = []
    seen = set()
    for team in load_teams(tournament_id):
        for member in team.get('members', []):
            if member['id'] not in seen:
                players.append(member)
                seen.add(member['id'])
    for player in load_free_players(tournament_id):
        if player['id'] not in seen:
            players.append(player)
            seen.add(player['id'])
    return players


def tournament_summary(tournament: dict) -> dict:
    teams = load_teams(tournament['id'])
    complete, total = count_teams(teams, tournament['min_players_per_team'])
    return {
        **tournament,
        'complete_teams_count': complete,
        'teams_count': total,
        'guaranteed_matches': calculate_guaranteed_matches(tournament),
        'status': calculate_tournament_status(tournament, complete, total),
    }


def tournament_details(tournament: dict, username: str = None) -> dict:
    tid = tournament['id']
    teams = load_teams(tid)
    players = load_free_players(tid)
    waiting_list = load_waiting_list(tid)
    pools = load_pools(tid)
    bracket = load_bracket(tid)
    complete, total = count_teams(teams, tournament['min_players_per_team'])
    user_status = get_user_registration_status(teams, players, waiting_list, username)
    rankings = calculate_pool_rankings(pools)
    return {
        **tournament_summary(tournament),
        'teams': teams,
        'free_players': players,
        'waiting_list': [{'id': e['id'], 'name': e['name'], 'captain_id': e['captain_id']} for e in waiting_list],
        'pools': [{**pool, 'ranking': rankings.get(pool['id'], [])} for pool in pools],
        'elimination': {'rounds': get_bracket_rounds(bracket), 'champion': get_champion(bracket)},
        'final_ranking': load_final_ranking(tid),
        'user_registration': user_status,
        'user_status': get_user_tournament_status(tournament, user_status, complete, total, len(waiting_list)),
    }


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------

def _error(message: str, status: int = 400):
    return jsonify({'success': False, 'error': message}), status


def _json_body() -> dict:
    return request.get_json(silent=True) or {}


def login_required(f):
    """Reject the request with 401 if no user is logged in."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not g.get('user'):
            return _error('Authentication required.', 401)
        return f(*args, **kwargs)
    return decorated_function


def admin_required(f):
    """Reject the request unless the logged-in user is an admin."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if not g.get('user'):
            return _error('Authentication required.', 401)
        if g.user.get('role') != 'admin':
            return _error('Admin access required.', 403)
        return f(*args, **kwargs)
    return decorated_function


def _tournament_or_404(tournament_id: str):
    tournament = load_tournament(tournament_id)
    if not tournament:
        return None, _error('Tournament not found.', 404)
    return tournament, None


@app.before_request
def load_current_user():
    """Set g.user from the session (None for anonymous requests)."""
    g.user = None
    username = session.get('user')
    if username:
        user = find_user(username)
        if user:
            g.user = user
        else:
            session.clear()


@app.errorhandler(404)
def not_found(e):
    return _error('Not found.', 404)


@app.errorhandler(405)
def method_not_allowed(e):
    return _error('Method not allowed.', 405)


# ---------------------------------------------------------------------------
# Authentication
# ---------------------------------------------------------------------------

@app.route('/api/auth/register', methods=['POST'])
def api_register():
    data = _json_body()
    username = str(data.get('username', '')).lower().strip()
    ok, msg = create_user(username, str(data.get('password', '')),
                          data.get('pseudo'), data.get('level', 'Intermediate'))
    if not ok:
        return _error(msg)
    session['user'] = username
    session.permanent = True
    return jsonify({'success': True, 'message': msg, 'user': public_user(find_user(session['user']))})


@app.route('/api/auth/login', methods=['POST'])
def api_login():
    data = _json_body()
    username = str(data.get('username', ''))
    if not authenticate_user(username, str(data.get('password', ''))):
        return _error('Invalid username or password.', 401)
    session['user'] = username.lower().strip()
    session.permanent = True
    return jsonify({'success': True, 'user': public_user(find_user(username))})


@app.route('/api/auth/logout', methods=['POST'])
def api_logout():
    session.clear()
    return jsonify({'success': True})


@app.route('/api/auth/me', methods=['GET'])
@login_required
def api_me():
    return jsonify({'success': True, 'user': public_user(g.user)})


@app.route('/api/auth/change-password', methods=['POST'])
@login_required
def api_change_password():
    from werkzeug.security import generate_password_hash
    data = _json_body()
    if not authenticate_user(g.user['username'], str(data.get('current_password', ''))):
        return _error('Current password is incorrect.')
    new_password = str(data.get('new_password', ''))
    if len(new_password) < 4:
        return _error('Password must be at least 4 characters.')
    with _data_lock:
        users = load_users()
        for user in users:
            if user['username'] == g.user['username']:
                user['password_hash'] = generate_password_hash(new_password)
        save_users(users)
    return jsonify({'success': True})


@app.route('/api/auth/profile', methods=['PUT'])
@login_required
def api_update_profile():
    data = _json_body()
    if 'level' in data and data['level'] not in LEVELS:
        return _error(f'Level must be one of: {", ".join(LEVELS)}.')
    with _data_lock:
        users = load_users()
        for user in users:
            if user['username'] == g.user['username']:
                if data.get('pseudo'):
                    user['pseudo'] = str(data['pseudo']).strip()
                if 'level' in data:
                    user['level'] = data['level']
                g.user = user
        save_users(users)
    return jsonify({'success': True, 'user': public_user(g.user)})


def _member_from_user(user: dict) -> dict:
    return {
        'id': user['username'],
        'pseudo': user.get('pseudo', user['username']),
        'level': user.get('level', 'Intermediate'),
        'is_virtual': user.get('is_virtual', False),
    }


# ---------------------------------------------------------------------------
# Public tournaments and registration
# ---------------------------------------------------------------------------

@app.route('/api/tournaments', methods=['GET'])
def api_list_tournaments():
    tournaments = [tournament_summary(t) for t in list_tournaments() if t.get('is_active')]
    return jsonify({'success': True, 'tournaments': tournaments})


@app.route('/api/tournaments/<tournament_id>', methods=['GET'])
def api_tournament_details(tournament_id):
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    username = g.user['username'] if g.user else None
    return jsonify({'success': True, 'tournament': tournament_details(tournament, username)})


def _registration_action(tournament_id: str, action):
    """Run a registration change on the loaded lists under the data lock, then persist."""
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    with _data_lock:
        teams = load_teams(tournament_id)
        players = load_free_players(tournament_id)
        waiting_list = load_waiting_list(tournament_id)
        try:
            result = action(tournament, teams, players, waiting_list)
        except RegistrationError as e:
            return _error(str(e))
        promoted = promote_from_waiting_list(tournament, teams, waiting_list)
        if promoted:
            app.logger.info(f"Team {promoted['name']} promoted from waiting list of {tournament_id}")
        save_teams(tournament_id, teams)
        save_free_players(tournament_id, players)
        save_waiting_list(tournament_id, waiting_list)
    return jsonify({'success': True, 'result': result})


@app.route('/api/tournaments/<tournament_id>/register-player', methods=['POST'])
@login_required
def api_register_player(tournament_id):
    member = _member_from_user(g.user)
    return _registration_action(tournament_id, lambda t, teams, players, wl:
                                register_free_player(t, teams, players, wl, member))


@app.route('/api/tournaments/<tournament_id>/leave', methods=['POST'])
@login_required
def api_leave_free_players(tournament_id):
    username = g.user['username']
    return _registration_action(tournament_id, lambda t, teams, players, wl:
                                leave_free_players(players, username))


@app.route('/api/tournaments/<tournament_id>/teams', methods=['POST'])
@login_required
def api_create_team(tournament_id):
    member = _member_from_user(g.user)
    name = str(_json_body().get('name', ''))
    return _registration_action(tournament_id, lambda t, teams, players, wl:
                                create_team(t, teams, players, wl, member, name))


@app.route('/api/tournaments/<tournament_id>/teams/<team_id>/join', methods=['POST'])
@login_required
def api_join_team(tournament_id, team_id):
    member = _member_from_user(g.user)
    return _registration_action(tournament_id, lambda t, teams, players, wl:
                                join_team(t, teams, players, wl, team_id, member))


@app.route('/api/tournaments/<tournament_id>/teams/<team_id>/leave', methods=['POST'])
@login_required
def api_leave_team(tournament_id, team_id):
    username = g.user['username']
    return _registration_action(tournament_id, lambda t, teams, players, wl:
                                leave_team(teams, team_id, username))


@app.route('/api/tournaments/<tournament_id>/teams/<team_id>', methods=['PUT'])
@login_required
def api_update_own_team(tournament_id, team_id):
    """Captain settings: recruitment and captaincy transfer."""
    data = _json_body()
    username = g.user['username']

    def update(t, teams, players, wl):
        team = find_team(teams, team_id)
        if 'recruitment_open' in data:
            set_recruitment(team, data['recruitment_open'], username)
        if data.get('captain_id'):
            transfer_captain(team, data['captain_id'], username)
        return team
    return _registration_action(tournament_id, update)


@app.route('/api/tournaments/<tournament_id>/teams/<team_id>', methods=['DELETE'])
@login_required
def api_unregister_team(tournament_id, team_id):
    username = g.user['username']
    return _registration_action(tournament_id, lambda t, teams, players, wl:
                                delete_team(teams, team_id, username))


@app.route('/api/tournaments/<tournament_id>/waiting-list', methods=['POST'])
@login_required
def api_join_waiting_list(tournament_id):
    member = _member_from_user(g.user)
    name = str(_json_body().get('name', ''))
    return _registration_action(tournament_id, lambda t, teams, players, wl:
                                join_waiting_list(t, teams, players, wl, member, name))


@app.route('/api/tournaments/<tournament_id>/waiting-list', methods=['DELETE'])
@login_required
def api_leave_waiting_list(tournament_id):
    username = g.user['username']
    return _registration_action(tournament_id, lambda t, teams, players, wl:
                                leave_waiting_list(wl, username))


# ---------------------------------------------------------------------------
# Match scores
# ---------------------------------------------------------------------------

def _record_score(tournament: dict, match_id: str, raw_sets, username: str = None):
    """
    Record the sets of a pool or elimination match.

    username restricts the change to the captains of the two teams; None is
    an admin recording the score.
    """
    if tournament.get('is_ranking_frozen'):
        raise ValueError('The ranking of this tournament is frozen.')
    sets = parse_sets(raw_sets)
    tid = tournament['id']

    def check_captain(match):
        if username is None:
            return
        captains = set()
        for team in load_teams(tid):
            if match.get('team1') and team['id'] == match['team1']['id']:
                captains.add(team['captain_id'])
            if match.get('team2') and team['id'] == match['team2']['id']:
                captains.add(team['captain_id'])
        if username not in captains:
            raise RegistrationError('Only the captains of the two teams can submit scores.')

    with _data_lock:
        pools = load_pools(tid)
        for pool in pools:
            for match in pool.get('matches', []):
                if match['id'] == match_id:
                    check_captain(match)
                    apply_match_result(match, sets, sets_to_win_for(tournament['sets_per_match_pool']),
                                       tournament['points_per_set_pool'], tournament['tie_break_enabled_pools'])
                    save_pools(tid, pools)
                    return match

        bracket = load_bracket(tid)
        for match in bracket:
            if match['id'] == match_id:
                check_captain(match)
                record_elimination_result(bracket, match_id, sets)
                save_bracket(tid, bracket)
                return match
    raise BracketError(f'Match {match_id} not found.')


@app.route('/api/tournaments/<tournament_id>/matches/<match_id>/scores', methods=['POST'])
@login_required
def api_submit_scores(tournament_id, match_id):
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    username = None if g.user.get('role') == 'admin' else g.user['username']
    try:
        match = _record_score(tournament, match_id, _json_body().get('sets'), username)
    except ValueError as e:
        return _error(str(e))
    return jsonify({'success': True, 'match': match})


@app.route('/api/rankings/players', methods=['GET'])
def api_player_rankings():
    return jsonify({'success': True, 'ranking': calculate_player_global_ranking(load_player_points())})


@app.route('/api/tournaments/<tournament_id>/phases', methods=['GET'])
def api_public_phases(tournament_id):
    """Public view of the King data of a tournament."""
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    kind = tournament['tournament_format']
    if kind not in KING_FILES:
        return _error('This tournament has no King phases.')
    return jsonify({'success': True, 'format': kind, 'data': load_king_doc(tournament_id, kind)})


# ---------------------------------------------------------------------------
# Admin: dashboard, users, tournaments, teams
# ---------------------------------------------------------------------------

@app.route('/api/admin/dashboard', methods=['GET'])
@admin_required
def api_admin_dashboard():
    tournaments = list_tournaments()
    now = datetime.now().isoformat()
    upcoming = [tournament_summary(t) for t in tournaments if t.get('date') and t['date'] >= now]
    return jsonify({
        'success': True,
        'tournaments_count': len(tournaments),
        'active_tournaments_count': sum(1 for t in tournaments if t.get('is_active')),
        'users_count': len(load_users()),
        'teams_count': sum(len(load_teams(t['id'])) for t in tournaments),
        'upcoming': upcoming[:5],
    })


@app.route('/api/admin/users', methods=['GET'])
@admin_required
def api_admin_users():
    return jsonify({'success': True, 'users': [public_user(u) for u in load_users()]})


@app.route('/api/admin/users/<username>', methods=['PUT'])
@admin_required
def api_admin_update_user(username):
    data = _json_body()
    if 'role' in data and data['role'] not in ROLES:
        return _error(f'Role must be one of: {", ".join(ROLES)}.')
    if 'level' in data and data['level'] not in LEVELS:
        return _error(f'Level must be one of: {", ".join(LEVELS)}.')
    with _data_lock:
        users = load_users()
        user = next((u for u in users if u['username'] == username), None)
        if not user:
            return _error('User not found.', 404)
        for key in ('role', 'level', 'pseudo'):
            if key in data:
                user[key] = data[key]
        save_users(users)
    return jsonify({'success': True, 'user': public_user(user)})


@app.route('/api/admin/users/<username>', methods=['DELETE'])
@admin_required
def api_admin_delete_user(username):
    if username == g.user['username']:
        return _error('You cannot delete your own account.')
    with _data_lock:
        users = load_users()
        remaining = [u for u in users if u['username'] != username]
        if len(remaining) == len(users):
            return _error('User not found.', 404)
        save_users(remaining)
    return jsonify({'success': True})


@app.route('/api/admin/tournaments', methods=['GET'])
@admin_required
def api_admin_tournaments():
    return jsonify({'success': True, 'tournaments': [tournament_summary(t) for t in list_tournaments()]})


@app.route('/api/admin/tournaments', methods=['POST'])
@admin_required
def api_admin_create_tournament():
    try:
        tournament = build_tournament(_json_body())
    except ValueError as e:
        return _error(str(e))
    with _data_lock:
        tournament['id'] = _unique_tournament_id(tournament['name'])
        tournament['created_at'] = datetime.now().isoformat()
        save_tournament(tournament)
    app.logger.info(f"Tournament {tournament['id']} created")
    return jsonify({'success': True, 'tournament': tournament}), 201


@app.route('/api/admin/tournaments/<tournament_id>', methods=['GET'])
@admin_required
def api_admin_tournament(tournament_id):
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    return jsonify({'success': True, 'tournament': tournament_details(tournament, g.user['username'])})


@app.route('/api/admin/tournaments/<tournament_id>', methods=['PUT'])
@admin_required
def api_admin_update_tournament(tournament_id):
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    try:
        updated = build_tournament(_json_body(), tournament)
    except ValueError as e:
        return _error(str(e))
    updated['id'] = tournament_id
    with _data_lock:
        save_tournament(updated)
    return jsonify({'success': True, 'tournament': updated})


@app.route('/api/admin/tournaments/<tournament_id>', methods=['DELETE'])
@admin_required
def api_admin_delete_tournament(tournament_id):
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    with _data_lock:
        shutil.rmtree(_tournament_dir(tournament_id))
        records = [r for r in load_player_points() if r['tournament_id'] != tournament_id]
        save_player_points(records)
    app.logger.info(f'Tournament {tournament_id} deleted')
    return jsonify({'success': True})


@app.route('/api/admin/tournaments/<tournament_id>/clone', methods=['POST'])
@admin_required
def api_admin_clone_tournament(tournament_id):
    """Copy the settings of a tournament (no registrations or results)."""
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    data = _json_body()
    clone = {k: v for k, v in tournament.items() if k in get_default_tournament()}
    clone.update(name=data.get('name') or f"{tournament['name']} (copy)", is_ranking_frozen=False,
                 is_finished=False)
    try:
        clone = build_tournament(clone)
    except ValueError as e:
        return _error(str(e))
    with _data_lock:
        clone['id'] = _unique_tournament_id(clone['name'])
        clone['created_at'] = datetime.now().isoformat()
        save_tournament(clone)
    return jsonify({'success': True, 'tournament': clone}), 201


@app.route('/api/admin/tournaments/<tournament_id>/teams', methods=['GET'])
@admin_required
def api_admin_teams(tournament_id):
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    return jsonify({
        'success': True,
        'teams': load_teams(tournament_id),
        'free_players': load_free_players(tournament_id),
        'waiting_list': load_waiting_list(tournament_id),
    })


@app.route('/api/admin/tournaments/<tournament_id>/teams', methods=['POST'])
@admin_required
def api_admin_create_team(tournament_id):
    """Create a team for registered users, bypassing the registration window."""
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    data = _json_body()
    name = str(data.get('name', '')).strip()
    usernames = data.get('members') or []
    if not name or not usernames:
        return _error('A team needs a name and at least one member.')
    members = []
    for username in usernames:
        user = find_user(username)
        if not user:
            return _error(f'Unknown user: {username}.')
        members.append(_member_from_user(user))
    if len(members) > tournament['players_per_team']:
        return _error('Too many members for this tournament.')

    with _data_lock:
        teams = load_teams(tournament_id)
        players = load_free_players(tournament_id)
        if any(t['name'].lower() == name.lower() for t in teams):
            return _error(f'A team named "{name}" already exists.')
        registered = {m['id'] for t in teams for m in t['members']}
        if any(m['id'] in registered for m in members):
            return _error('A member is already in another team.')
        team = {
            'id': new_team_id(),
            'name': name,
            'captain_id': members[0]['id'],
            'members': members,
            'recruitment_open': True,
            'pool_id': None,
            'registered_at': datetime.now().isoformat(),
        }
        teams.append(team)
        member_ids = {m['id'] for m in members}
        save_teams(tournament_id, teams)
        save_free_players(tournament_id, [p for p in players if p['id'] not in member_ids])
    return jsonify({'success': True, 'team': team}), 201


@app.route('/api/admin/tournaments/<tournament_id>/teams/<team_id>', methods=['PUT'])
@admin_required
def api_admin_update_team(tournament_id, team_id):
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    data = _json_body()
    with _data_lock:
        teams = load_teams(tournament_id)
        team = next((t for t in teams if t['id'] == team_id), None)
        if not team:
            return _error('Team not found.', 404)
        if data.get('name'):
            team['name'] = str(data['name']).strip()
        if 'recruitment_open' in data:
            team['recruitment_open'] = bool(data['recruitment_open'])
        if data.get('captain_id'):
            if not any(m['id'] == data['captain_id'] for m in team['members']):
                return _error('The new captain must be a team member.')
            team['captain_id'] = data['captain_id']
        if data.get('remove_member'):
            try:
                leave_team(teams, team_id, data['remove_member'])
            except RegistrationError as e:
                return _error(str(e))
        save_teams(tournament_id, teams)
    return jsonify({'success': True, 'team': team})


@app.route('/api/admin/tournaments/<tournament_id>/teams/<team_id>', methods=['DELETE'])
@admin_required
def api_admin_delete_team(tournament_id, team_id):
    username = g.user['username']
    return _registration_action(tournament_id, lambda t, teams, players, wl:
                                delete_team(teams, team_id, username, is_admin=True))


@app.route('/api/admin/tournaments/<tournament_id>/players/<player_id>', methods=['DELETE'])
@admin_required
def api_admin_remove_free_player(tournament_id, player_id):
    return _registration_action(tournament_id, lambda t, teams, players, wl:
                                leave_free_players(players, player_id))


@app.route('/api/admin/tournaments/<tournament_id>/players/<player_id>/assign', methods=['POST'])
@admin_required
def api_admin_assign_free_player(tournament_id, player_id):
    team_id = _json_body().get('team_id')
    return _registration_action(tournament_id, lambda t, teams, players, wl:
                                assign_free_player(t, teams, players, player_id, team_id))


@app.route('/api/admin/tournaments/<tournament_id>/waiting-list/promote', methods=['POST'])
@admin_required
def api_admin_promote_waiting_team(tournament_id):
    """Move the first waiting team in, even past max_teams."""
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    with _data_lock:
        teams = load_teams(tournament_id)
        waiting_list = load_waiting_list(tournament_id)
        if not waiting_list:
            return _error('The waiting list is empty.')
        team = waiting_list.pop(0)
        teams.append(team)
        save_teams(tournament_id, teams)
        save_waiting_list(tournament_id, waiting_list)
    return jsonify({'success': True, 'team': team})


# ---------------------------------------------------------------------------
# Admin: pools, bracket, final ranking
# ---------------------------------------------------------------------------

def _random_sets(sets_per_match: int, points_per_set: int, rng=random) -> list:
    """Valid random set scores for a full match, for testing."""
    needed = sets_to_win_for(sets_per_match)
    winner = rng.choice([1, 2])
    wins = {1: 0, 2: 0}
    sets = []
    while wins[winner] < needed:
        set_winner = winner if wins[3 - winner] == needed - 1 or rng.random() < 0.7 else 3 - winner
        losing_score = rng.randint(0, points_per_set - 2)
        if set_winner == 1:
            sets.append({'score1': points_per_set, 'score2': losing_score})
        else:
            sets.append({'score1': losing_score, 'score2': points_per_set})
        wins[set_winner] += 1
    return sets


def _pool_match_config(tournament: dict) -> dict:
    return {
        'match_format': tournament['match_format'],
        'sets_per_match': tournament['sets_per_match_pool'],
        'points_per_set': tournament['points_per_set_pool'],
    }


def _sync_team_pools(tournament_id: str, pools: list):
    pool_by_team = {t['id']: pool['id'] for pool in pools for t in pool['teams']}
    teams = load_teams(tournament_id)
    for team in teams:
        team['pool_id'] = pool_by_team.get(team['id'])
    save_teams(tournament_id, teams)


@app.route('/api/admin/tournaments/<tournament_id>/pools', methods=['GET'])
@admin_required
def api_admin_pools(tournament_id):
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    pools = load_pools(tournament_id)
    rankings = calculate_pool_rankings(pools)
    return jsonify({'success': True, 'pools': [{**p, 'ranking': rankings[p['id']]} for p in pools]})


@app.route('/api/admin/tournaments/<tournament_id>/pools/auto', methods=['POST'])
@admin_required
def api_admin_auto_pools(tournament_id):
    """Deal every complete team into pools and generate the pool matches."""
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    if tournament.get('is_ranking_frozen'):
        return _error('The ranking of this tournament is frozen.')
    teams = [t for t in load_teams(tournament_id)
             if len(t['members']) >= tournament['min_players_per_team']]
    if len(teams) < 2:
        return _error('At least 2 complete teams are needed to build pools.')
    pools = assign_teams_to_pools(teams, tournament['max_teams_per_pool'],
                                  shuffle=bool(_json_body().get('shuffle')))
    config = _pool_match_config(tournament)
    for pool in pools:
        pool['matches'] = generate_pool_matches(pool, **config)
    with _data_lock:
        save_pools(tournament_id, pools)
        save_bracket(tournament_id, [])
        _sync_team_pools(tournament_id, pools)
    app.logger.info(f'{len(pools)} pools generated for {tournament_id}')
    return jsonify({'success': True, 'pools': pools})


@app.route('/api/admin/tournaments/<tournament_id>/pools', methods=['POST'])
@admin_required
def api_admin_create_pool(tournament_id):
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    with _data_lock:
        pools = load_pools(tournament_id)
        if len(pools) >= 26:
            return _error('Too many pools.')
        pool = create_pool(len(pools))
        pools.append(pool)
        save_pools(tournament_id, pools)
    return jsonify({'success': True, 'pool': pool}), 201


@app.route('/api/admin/tournaments/<tournament_id>/pools/<pool_id>/teams', methods=['PUT'])
@admin_required
def api_admin_assign_pool_teams(tournament_id, pool_id):
    """Replace the teams of a pool; its matches are cleared."""
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    team_ids = _json_body().get('team_ids') or []
    teams = {t['id']: t for t in load_teams(tournament_id)}
    unknown = [tid for tid in team_ids if tid not in teams]
    if unknown:
        return _error(f"Unknown teams: {', '.join(unknown)}.")
    if len(team_ids) > tournament['max_teams_per_pool']:
        return _error(f"A pool holds at most {tournament['max_teams_per_pool']} teams.")
    with _data_lock:
        pools = load_pools(tournament_id)
        pool = next((p for p in pools if p['id'] == pool_id), None)
        if not pool:
            return _error('Pool not found.', 404)
        for other in pools:
            if other['id'] != pool_id and any(t['id'] in team_ids for t in other['teams']):
                return _error(f"A team is already in {other['name']}.")
        pool['teams'] = [{'id': teams[tid]['id'], 'name': teams[tid]['name']} for tid in team_ids]
        pool['matches'] = []
        save_pools(tournament_id, pools)
        _sync_team_pools(tournament_id, pools)
    return jsonify({'success': True, 'pool': pool})


@app.route('/api/admin/tournaments/<tournament_id>/pools/<pool_id>/matches', methods=['POST'])
@admin_required
def api_admin_generate_pool_matches(tournament_id, pool_id):
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    with _data_lock:
        pools = load_pools(tournament_id)
        pool = next((p for p in pools if p['id'] == pool_id), None)
        if not pool:
            return _error('Pool not found.', 404)
        if len(pool['teams']) < 2:
            return _error('A pool needs at least 2 teams.')
        pool['matches'] = generate_pool_matches(pool, **_pool_match_config(tournament))
        save_pools(tournament_id, pools)
    return jsonify({'success': True, 'matches': pool['matches']})


@app.route('/api/admin/tournaments/<tournament_id>/pools/<pool_id>', methods=['DELETE'])
@admin_required
def api_admin_delete_pool(tournament_id, pool_id):
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    with _data_lock:
        pools = load_pools(tournament_id)
        remaining = [p for p in pools if p['id'] != pool_id]
        if len(remaining) == len(pools):
            return _error('Pool not found.', 404)
        save_pools(tournament_id, remaining)
        _sync_team_pools(tournament_id, remaining)
    return jsonify({'success': True})


@app.route('/api/admin/tournaments/<tournament_id>/pools/random-scores', methods=['POST'])
@admin_required
def api_admin_random_pool_scores(tournament_id):
    """Fill every unplayed pool match with random scores (testing helper)."""
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    count = 0
    with _data_lock:
        pools = load_pools(tournament_id)
        for pool in pools:
            for match in pool['matches']:
                if match['status'] != 'completed':
                    sets = _random_sets(tournament['sets_per_match_pool'], tournament['points_per_set_pool'])
                    apply_match_result(match, sets, sets_to_win_for(tournament['sets_per_match_pool']),
                                       tournament['points_per_set_pool'])
                    count += 1
        save_pools(tournament_id, pools)
    return jsonify({'success': True, 'updated': count})


@app.route('/api/admin/tournaments/<tournament_id>/elimination', methods=['POST'])
@admin_required
def api_admin_generate_bracket(tournament_id):
    """Seed the qualified teams (automatic or manual selection) into a bracket."""
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    if not tournament['elimination_enabled']:
        return _error('The elimination phase is disabled for this tournament.')
    qualified_team_ids = _json_body().get('qualified_team_ids')
    try:
        qualified = select_qualified_teams(load_pools(tournament_id), tournament['teams_qualified_per_pool'],
                                           qualified_team_ids)
        matches = generate_elimination_bracket(qualified, {
            'sets_per_match': tournament['sets_per_match_elimination'],
            'points_per_set': tournament['points_per_set_elimination'],
            'tie_break_enabled': tournament['tie_break_enabled_elimination'],
        })
    except BracketError as e:
        return _error(str(e))
    with _data_lock:
        save_bracket(tournament_id, matches)
    app.logger.info(f'Elimination bracket generated for {tournament_id}: {len(qualified)} teams')
    return jsonify({
        'success': True,
        'structure': calculate_bracket_structure(len(qualified)),
        'qualified': qualified,
        'rounds': get_bracket_rounds(matches),
    })


@app.route('/api/admin/tournaments/<tournament_id>/elimination', methods=['DELETE'])
@admin_required
def api_admin_delete_bracket(tournament_id):
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    with _data_lock:
        save_bracket(tournament_id, [])
    return jsonify({'success': True})


@app.route('/api/admin/tournaments/<tournament_id>/matches/<match_id>/scores', methods=['POST'])
@admin_required
def api_admin_record_scores(tournament_id, match_id):
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    try:
        match = _record_score(tournament, match_id, _json_body().get('sets'))
    except ValueError as e:
        return _error(str(e))
    return jsonify({'success': True, 'match': match})


@app.route('/api/admin/tournaments/<tournament_id>/freeze-ranking', methods=['POST'])
@admin_required
def api_admin_freeze_ranking(tournament_id):
    """Store the final ranking and award player points."""
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return error
    if tournament.get('is_ranking_frozen'):
        return _error('The ranking is already frozen.')
    bracket = load_bracket(tournament_id)
    if tournament['elimination_enabled'] and (not bracket or not get_champion(bracket)):
        return _error('The final must be played before freezing the ranking.')

    ranking = calculate_final_ranking(bracket, calculate_pool_rankings(load_pools(tournament_id)))
    records = build_player_points(ranking, load_teams(tournament_id), tournament_id, tournament['name'])
    with _data_lock:
        save_final_ranking(tournament_id, ranking)
        all_records = [r for r in load_player_points() if r['tournament_id'] != tournament_id]
        save_player_points(all_records + records)
        tournament.update(is_ranking_frozen=True, is_finished=True)
        save_tournament(tournament)
    app.logger.info(f'Ranking frozen for {tournament_id}: {len(records)} player point records')
    return jsonify({'success': True, 'ranking': ranking})


# ---------------------------------------------------------------------------
# Admin: classic King
# ---------------------------------------------------------------------------

def _king_tournament(tournament_id: str, kind: str):
    tournament, error = _tournament_or_404(tournament_id)
    if error:
        return None, error
    if tournament['tournament_format'] != kind:
        return None, _error(f'This tournament is not in {kind} format.')
    return tournament, None


@app.route('/api/admin/tournaments/<tournament_id>/king', methods=['GET'])
@admin_required
def api_admin_king(tournament_id):
    tournament, error = _king_tournament(tournament_id, 'king')
    if error:
        return error
    data = load_king_doc(tournament_id, 'king') or king.initialize_king()
    return jsonify({
        'success': True,
        'king': data,
        'status': king.get_king_status(data),
        'progress': [phase_progress(p) for p in data['phases']],
        'registered_players': len(_registered_players(tournament_id)),
    })


@app.route('/api/admin/tournaments/<tournament_id>/king/phases/<int:phase_number>/start', methods=['POST'])
@admin_required
def api_admin_king_start(tournament_id, phase_number):
    tournament, error = _king_tournament(tournament_id, 'king')
    if error:
        return error
    with _data_lock:
        data = load_king_doc(tournament_id, 'king') or king.initialize_king()
        try:
            phase = king.start_phase(data, phase_number, _registered_players(tournament_id), tournament)
        except PhaseError as e:
            return _error(str(e))
        save_king_doc(tournament_id, 'king', data)
    app.logger.info(f'King phase {phase_number} started for {tournament_id}')
    return jsonify({'success': True, 'phase': phase, 'status': king.get_king_status(data)})


@app.route('/api/admin/tournaments/<tournament_id>/king/phases/<int:phase_number>/reset', methods=['POST'])
@admin_required
def api_admin_king_reset(tournament_id, phase_number):
    tournament, error = _king_tournament(tournament_id, 'king')
    if error:
        return error
    with _data_lock:
        data = load_king_doc(tournament_id, 'king') or king.initialize_king()
        king.reset_phase(data, phase_number)
        save_king_doc(tournament_id, 'king', data)
    return jsonify({'success': True, 'status': king.get_king_status(data)})


@app.route('/api/admin/tournaments/<tournament_id>/king/phases/<int:phase_number>/matches/<match_id>/result',
           methods=['POST'])
@admin_required
def api_admin_king_result(tournament_id, phase_number, match_id):
    tournament, error = _king_tournament(tournament_id, 'king')
    if error:
        return error
    body = _json_body()
    with _data_lock:
        data = load_king_doc(tournament_id, 'king') or king.initialize_king()
        try:
            phase = next((p for p in data['phases'] if p['phase_number'] == phase_number), None)
            if not phase:
                raise PhaseError(f'Phase {phase_number} not started.')
            match = king.record_king_match_result(phase, match_id, int(body.get('sets_won_team1', 0)),
                                                  int(body.get('sets_won_team2', 0)))
        except (TypeError, ValueError) as e:
            return _error(str(e))
        data['winner'] = king.get_king_winner(data)
        save_king_doc(tournament_id, 'king', data)
    return jsonify({'success': True, 'match': match, 'status': king.get_king_status(data)})


@app.route('/api/admin/tournaments/<tournament_id>/king/random-scores', methods=['POST'])
@admin_required
def api_admin_king_random_scores(tournament_id):
    tournament, error = _king_tournament(tournament_id, 'king')
    if error:
        return error
    with _data_lock:
        data = load_king_doc(tournament_id, 'king') or king.initialize_king()
        phase = next((p for p in data['phases'] if p['status'] == IN_PROGRESS), None)
        if not phase:
            return _error('No phase in progress.')
        pending = [m for m in phase['matches'] if m['status'] != 'completed']
        for match in pending:
            first = random.choice([1, 0])
            king.record_king_match_result(phase, match['id'], first, 1 - first)
        data['winner'] = king.get_king_winner(data)
        save_king_doc(tournament_id, 'king', data)
    return jsonify({'success': True, 'updated': len(pending)})


# ---------------------------------------------------------------------------
# Admin: Flexible King
# ---------------------------------------------------------------------------

def _flexible_config(payload: dict, phase_number: int) -> dict:
    return flexible_king.build_phase_config(
        phase_number,
        payload.get('phase_format', flexible_king.KOB),
        _int_field(payload, 'total_teams', 2),
        _int_field(payload, 'number_of_pools', 1),
        _int_field(payload, 'players_per_team', 1),
        _int_field(payload, 'total_qualified', 1),
        _int_field(payload, 'estimated_rounds', 1) if payload.get('estimated_rounds') else None,
        payload.get('phase_label', ''),
    )


def _flexible_response(data: dict, **extra):
    return jsonify({
        'success': True,
        'flexible_king': data,
        'progress': [phase_progress(p) for p in data['phases']],
        'configuration_errors': flexible_king.validate_phases_configuration(data['phases']),
        **extra,
    })


def _flexible_action(tournament_id: str, action, **extra):
    """Load the Flexible King document, apply action under the lock and persist it."""
    tournament, error = _king_tournament(tournament_id, 'flexible_king')
    if error:
        return error
    with _data_lock:
        data = load_king_doc(tournament_id, 'flexible_king')
        if not data:
            return _error('Flexible King is not initialized.')
        try:
            result = action(data)
        except (KeyError, TypeError, ValueError) as e:
            return _error(str(e))
        save_king_doc(tournament_id, 'flexible_king', data)
    return _flexible_response(data, result=result, **extra)


@app.route('/api/admin/tournaments/<tournament_id>/flexible-king', methods=['GET'])
@admin_required
def api_admin_flexible_king(tournament_id):
    tournament, error = _king_tournament(tournament_id, 'flexible_king')
    if error:
        return error
    data = load_king_doc(tournament_id, 'flexible_king')
    if not data:
        return jsonify({'success': True, 'flexible_king': None,
                        'registered_players': len(_registered_players(tournament_id))})
    return _flexible_response(data, registered_players=len(_registered_players(tournament_id)))


@app.route('/api/admin/tournaments/<tournament_id>/flexible-king/preview', methods=['POST'])
@admin_required
def api_admin_flexible_king_preview(tournament_id):
    """Suggested phase cascades for the registered (or given) number of players."""
    tournament, error = _king_tournament(tournament_id, 'flexible_king')
    if error:
        return error
    body = _json_body()
    defaults = {'player_count': len(_registered_players(tournament_id)), 'fields': tournament['fields']}
    values = {key: body.get(key) or default for key, default in defaults.items()}
    try:
        player_count = _int_field(values, 'player_count', 0)
        fields = _int_field(values, 'fields', 1)
    except ValueError as e:
        return _error(str(e))
    return jsonify({'success': True, 'player_count': player_count,
                    'suggestions': flexible_king.suggest_configurations(player_count, fields)})


@app.route('/api/admin/tournaments/<tournament_id>/flexible-king/init', methods=['POST'])
@admin_required
def api_admin_flexible_king_init(tournament_id):
    tournament, error = _king_tournament(tournament_id, 'flexible_king')
    if error:
        return error
    phases = _json_body().get('phases') or []
    if not phases:
        return _error('At least one phase is required.')
    try:
        configs = [_flexible_config(p, i + 1) for i, p in enumerate(phases)]
    except (KeyError, ValueError) as e:
        return _error(str(e))
    data = flexible_king.initialize_flexible_king(configs)
    for phase in data['phases']:
        phase['status'] = CONFIGURED
    with _data_lock:
        save_king_doc(tournament_id, 'flexible_king', data)
    return _flexible_response(data)


@app.route('/api/admin/tournaments/<tournament_id>/flexible-king/phases/<int:phase_number>/config',
           methods=['PUT'])
@admin_required
def api_admin_flexible_king_config(tournament_id, phase_number):
    payload = _json_body()
    return _flexible_action(tournament_id, lambda data: flexible_king.update_phase_configuration(
        data, phase_number, _flexible_config(payload, phase_number))['phases'][phase_number - 1])


@app.route('/api/admin/tournaments/<tournament_id>/flexible-king/phases/<int:phase_number>/start',
           methods=['POST'])
@admin_required
def api_admin_flexible_king_start(tournament_id, phase_number):
    players = _registered_players(tournament_id)
    return _flexible_action(tournament_id, lambda data: flexible_king.start_phase(data, phase_number, players))


@app.route('/api/admin/tournaments/<tournament_id>/flexible-king/phases/<int:phase_number>/complete',
           methods=['POST'])
@admin_required
def api_admin_flexible_king_complete(tournament_id, phase_number):
    return _flexible_action(tournament_id, lambda data: flexible_king.complete_phase(data, phase_number))


@app.route('/api/admin/tournaments/<tournament_id>/flexible-king/phases/<int:phase_number>/withdrawals',
           methods=['PUT'])
@admin_required
def api_admin_flexible_king_withdrawals(tournament_id, phase_number):
    withdrawn = _json_body().get('withdrawn_ids')
    if not isinstance(withdrawn, list):
        return _error('withdrawn_ids must be a list.')
    return _flexible_action(tournament_id, lambda data: flexible_king.set_withdrawals(data, phase_number, withdrawn))


@app.route('/api/admin/tournaments/<tournament_id>/flexible-king/phases/<int:phase_number>/repechages',
           methods=['PUT'])
@admin_required
def api_admin_flexible_king_repechages(tournament_id, phase_number):
    repeched = _json_body().get('repeched_ids')
    if not isinstance(repeched, list):
        return _error('repeched_ids must be a list.')
    return _flexible_action(tournament_id, lambda data: flexible_king.set_repechages(data, phase_number, repeched))


@app.route('/api/admin/tournaments/<tournament_id>/flexible-king/phases/<int:phase_number>/repechage-candidates',
           methods=['GET'])
@admin_required
def api_admin_flexible_king_candidates(tournament_id, phase_number):
    tournament, error = _king_tournament(tournament_id, 'flexible_king')
    if error:
        return error
    data = load_king_doc(tournament_id, 'flexible_king')
    if not data:
        return _error('Flexible King is not initialized.')
    try:
        phase = find_phase(data, phase_number)
    except PhaseError as e:
        return _error(str(e))
    candidates = flexible_king.calculate_repechage_candidates(phase['pools'], phase['matches'],
                                                              phase['qualified_ids'])
    return jsonify({'success': True, 'candidates': candidates, 'qualified_count': len(phase['qualified_ids'])})


@app.route('/api/admin/tournaments/<tournament_id>/flexible-king/phases/<int:phase_number>/reset',
           methods=['POST'])
@admin_required
def api_admin_flexible_king_reset(tournament_id, phase_number):
    return _flexible_action(tournament_id, lambda data: flexible_king.reset_phase(data, phase_number)['current_phase_number'])


@app.route('/api/admin/tournaments/<tournament_id>/flexible-king/phases/<int:phase_number>/matches/<match_id>/result',
           methods=['POST'])
@admin_required
def api_admin_flexible_king_result(tournament_id, phase_number, match_id):
    body = _json_body()
    return _flexible_action(tournament_id, lambda data: flexible_king.record_match_result(
        data, phase_number, match_id, int(body.get('sets_won_team1', 0)), int(body.get('sets_won_team2', 0))))


@app.route('/api/admin/tournaments/<tournament_id>/flexible-king/random-scores', methods=['POST'])
@admin_required
def api_admin_flexible_king_random_scores(tournament_id):
    def fill(data):
        number = data.get('current_phase_number')
        if not number:
            raise PhaseError('No phase in progress.')
        phase = find_phase(data, number)
        pending = [m for m in phase['matches'] if m['status'] != 'completed']
        for match in pending:
            first = random.choice([1, 0])
            flexible_king.record_match_result(data, number, match['id'], first, 1 - first)
        return len(pending)
    return _flexible_action(tournament_id, fill)


@app.route('/api/admin/tournaments/<tournament_id>/flexible-king/freeze', methods=['POST'])
@admin_required
def api_admin_flexible_king_freeze(tournament_id):
    response = _flexible_action(tournament_id, lambda data: flexible_king.freeze(data)['winner'])
    if isinstance(response, tuple):
        return response
    with _data_lock:
        tournament = load_tournament(tournament_id)
        data = load_king_doc(tournament_id, 'flexible_king')
        last = max(data['phases'], key=lambda p: p['phase_number'])
        records = build_individual_player_points(last['ranking'], _registered_players(tournament_id),
                                                 tournament_id, tournament['name'])
        all_records = [r for r in load_player_points() if r['tournament_id'] != tournament_id]
        save_player_points(all_records + records)
        tournament.update(is_ranking_frozen=True, is_finished=True)
        save_tournament(tournament)
    app.logger.info(f'Flexible King frozen for {tournament_id}: {len(records)} player point records')
    return response


# ---------------------------------------------------------------------------
# Admin: Team King
# ---------------------------------------------------------------------------

def _team_king_config(payload: dict, phase_number: int) -> dict:
    return team_king.build_phase_config(
        phase_number,
        _int_field(payload, 'total_teams', 2),
        _int_field(payload, 'number_of_pools', 1),
        _int_field(payload, 'total_qualified', 1),
        _int_field(payload, 'estimated_rounds', 1) if payload.get('estimated_rounds') else None,
        payload.get('phase_label', ''),
    )


def _team_king_response(data: dict, **extra):
    return jsonify({
        'success': True,
        'team_king': data,
        'progress': [phase_progress(p) for p in data['phases']],
        'configuration_errors': team_king.validate_phases_configuration(data['phases']),
        **extra,
    })


def _team_king_action(tournament_id: str, action):
    tournament, error = _king_tournament(tournament_id, 'team_king')
    if error:
        return error
    with _data_lock:
        data = load_king_doc(tournament_id, 'team_king')
        if not data:
            return _error('Team King is not initialized.')
        try:
            result = action(data)
        except (KeyError, TypeError, ValueError) as e:
            return _error(str(e))
        save_king_doc(tournament_id, 'team_king', data)
    return _team_king_response(data, result=result)


@app.route('/api/admin/tournaments/<tournament_id>/team-king', methods=['GET'])
@admin_required
def api_admin_team_king(tournament_id):
    tournament, error = _king_tournament(tournament_id, 'team_king')
    if error:
        return error
    data = load_king_doc(tournament_id, 'team_king')
    teams_count = len(load_teams(tournament_id))
    if not data:
        return jsonify({'success': True, 'team_king': None, 'registered_teams': teams_count})
    return _team_king_response(data, registered_teams=teams_count)


@app.route('/api/admin/tournaments/<tournament_id>/team-king/init', methods=['POST'])
@admin_required
def api_admin_team_king_init(tournament_id):
    tournament, error = _king_tournament(tournament_id, 'team_king')
    if error:
        return error
    body = _json_body()
    try:
        configs = [_team_king_config(p, i + 1) for i, p in enumerate(body.get('phases') or [])]
        data = team_king.initialize_team_king(
            body.get('game_mode', tournament['type']),
            int(body.get('sets_per_match', 2)),
            int(body.get('points_per_set', 21)),
            bool(body.get('tie_break_enabled', False)),
            configs,
        )
    except (KeyError, ValueError) as e:
        return _error(str(e))
    with _data_lock:
        save_king_doc(tournament_id, 'team_king', data)
    return _team_king_response(data)


@app.route('/api/admin/tournaments/<tournament_id>/team-king/phases/<int:phase_number>/config', methods=['PUT'])
@admin_required
def api_admin_team_king_config(tournament_id, phase_number):
    payload = _json_body()

    def configure(data):
        config = _team_king_config(payload, phase_number)
        existing = next((p for p in data['phases'] if p['phase_number'] == phase_number), None)
        if existing:
            if existing['status'] != 'configured':
                raise PhaseError(f'Phase {phase_number} is {existing["status"]}.')
            existing['config'] = config
            return existing
        if phase_number != len(data['phases']) + 1:
            raise PhaseError(f'Phase {len(data["phases"]) + 1} must be configured next.')
        phase = team_king.create_phase(phase_number, config)
        data['phases'].append(phase)
        return phase
    return _team_king_action(tournament_id, configure)


@app.route('/api/admin/tournaments/<tournament_id>/team-king/phases/<int:phase_number>/start', methods=['POST'])
@admin_required
def api_admin_team_king_start(tournament_id, phase_number):
    min_players = (load_tournament(tournament_id) or {}).get('min_players_per_team', 1)
    teams = [t for t in load_teams(tournament_id) if len(t['members']) >= min_players]
    return _team_king_action(tournament_id, lambda data: team_king.start_phase(data, phase_number, teams))


@app.route('/api/admin/tournaments/<tournament_id>/team-king/phases/<int:phase_number>/complete', methods=['POST'])
@admin_required
def api_admin_team_king_complete(tournament_id, phase_number):
    return _team_king_action(tournament_id, lambda data: team_king.complete_phase(data, phase_number))


@app.route('/api/admin/tournaments/<tournament_id>/team-king/phases/<int:phase_number>/reset', methods=['POST'])
@admin_required
def api_admin_team_king_reset(tournament_id, phase_number):
    return _team_king_action(tournament_id, lambda data: team_king.reset_phase(data, phase_number)['current_phase_number'])


@app.route('/api/admin/tournaments/<tournament_id>/team-king/phases/<int:phase_number>/matches/<match_id>/result',
           methods=['POST'])
@admin_required
def api_admin_team_king_result(tournament_id, phase_number, match_id):
    body = _json_body()

    def record(data):
        sets = parse_sets(body['sets']) if body.get('sets') else None
        won1, won2 = int(body.get('sets_won_team1', 0)), int(body.get('sets_won_team2', 0))
        if sets is not None and 'sets_won_team1' not in body:
            won1 = sum(1 for s in sets if s['score1'] > s['score2'])
            won2 = sum(1 for s in sets if s['score2'] > s['score1'])
        return team_king.record_match_result(data, phase_number, match_id, won1, won2, sets)
    return _team_king_action(tournament_id, record)


@app.route('/api/admin/tournaments/<tournament_id>/team-king/random-scores', methods=['POST'])
@admin_required
def api_admin_team_king_random_scores(tournament_id):
    def fill(data):
        number = data.get('current_phase_number')
        if not number:
            raise PhaseError('No phase in progress.')
        phase = find_phase(data, number)
        pending = [m for m in phase['matches'] if m['status'] != 'completed']
        for match in pending:
            sets = []
            for _ in range(data['sets_per_match']):
                loser = random.randint(0, data['points_per_set'] - 2)
                sets.append(random.choice([{'score1': data['points_per_set'], 'score2': loser},
                                           {'score1': loser, 'score2': data['points_per_set']}]))
            won1 = sum(1 for s in sets if s['score1'] > s['score2'])
            team_king.record_match_result(data, number, match['id'], won1, len(sets) - won1, sets)
        return len(pending)
    return _team_king_action(tournament_id, fill)


@app.route('/api/admin/tournaments/<tournament_id>/team-king/freeze', methods=['POST'])
@admin_required
def api_admin_team_king_freeze(tournament_id):
    response = _team_king_action(tournament_id, lambda data: team_king.freeze(data)['winner_team'])
    if isinstance(response, tuple):
        return response
    with _data_lock:
        tournament = load_tournament(tournament_id)
        data = load_king_doc(tournament_id, 'team_king')
        ranking = [{'team_id': r['team_id'], 'team_name': r['team_name'], 'rank': r['rank'],
                    'stage': 'team_king', 'points': r['wins']} for r in data['final_rankings']]
        save_final_ranking(tournament_id, ranking)
        tournament.update(is_ranking_frozen=True, is_finished=True)
        save_tournament(tournament)
    return response


if __name__ == '__main__':
    app.run(debug=True, port=5000)
