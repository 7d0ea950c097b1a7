"""
Shared pytest fixtures for tournament manager tests.

Running tests:
    pytest tests/
"""
import pytest
import sys
import os
import yaml
from filelock import FileLock

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))


@pytest.fixture
def temp_data_dir(tmp_path, monkeypatch):
    """Point every data path of the app at a temporary directory with two users."""
    import app as app_module
    from werkzeug.security import generate_password_hash

    users_file = tmp_path / "users.yaml"
    users_file.write_text(yaml.dump({'users': [
        {'username': 'admin', 'pseudo': 'Admin', 'level': 'Expert', 'role': 'admin',
         'is_virtual': False, 'password_hash': generate_password_hash('adminpass'), 'created': '2026-01-01'},
        {'username': 'testuser', 'pseudo': 'Tester', 'level': 'Intermediate', 'role': 'player',
         'is_virtual': False, 'password_hash': generate_password_hash('testpass'), 'created': '2026-01-01'},
    ]}, default_flow_style=False))

    monkeypatch.setattr(app_module, 'DATA_DIR', str(tmp_path))
    monkeypatch.setattr(app_module, 'USERS_FILE', str(users_file))
    monkeypatch.setattr(app_module, 'PLAYER_POINTS_FILE', str(tmp_path / 'player_points.yaml'))
    monkeypatch.setattr(app_module, 'TOURNAMENTS_DIR', str(tmp_path / 'tournaments'))
    monkeypatch.setattr(app_module, '_data_lock', FileLock(str(tmp_path / '.lock'), timeout=10))
    return tmp_path


@pytest.fixture
def client(temp_data_dir):
    """Create a test client logged in as a regular player."""
    from app import app
    app.config['TESTING'] = True
    client = app.test_client()
    with client.session_transaction() as sess:
        sess['user'] = 'testuser'
    yield client


@pytest.fixture
def admin_client(temp_data_dir):
    """Create a test client logged in as the admin."""
    from app import app
    app.config['TESTING'] = True
    client = app.test_client()
    with client.session_transaction() as sess:
        sess['user'] = 'admin'
    yield client


@pytest.fixture
def anonymous_client(temp_data_dir):
    from app import app
    app.config['TESTING'] = True
    yield app.test_client()


def make_player(player_id, pseudo=None, level='Intermediate', is_virtual=False):
    return {'id': player_id, 'pseudo': pseudo or player_id, 'level': level, 'is_virtual': is_virtual}


def make_team(team_id, name=None, members=None, captain_id=None):
    members = members if members is not None else [make_player(f"{team_id}-p1")]
    return {
        'id': team_id,
        'name': name or team_id,
        'captain_id': captain_id or (members[0]['id'] if members else None),
        'members': members,
        'recruitment_open': True,
        'pool_id': None,
    }


@pytest.fixture
def sample_players():
    """36 players, enough for a classic King phase 1 on 3 fields."""
    return [make_player(f"p{i:02d}") for i in range(36)]


@pytest.fixture
def sample_teams():
    """Eight complete 2-player teams."""
    return [make_team(f"t{i}", f"Team {i}", [make_player(f"t{i}-a"), make_player(f"t{i}-b")])
            for i in range(1, 9)]
