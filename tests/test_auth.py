"""
Tests for user accounts, sessions and access control.
"""
import pytest
import sys
import os
import yaml
from filelock import FileLock

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from app import app, create_user, authenticate_user, load_users, find_user


@pytest.fixture
def auth_dir(tmp_path, monkeypatch):
    """Set up temp directory with an empty user registry."""
    import app as app_module

    users_file = tmp_path / 'users.yaml'
    users_file.write_text(yaml.dump({'users': []}, default_flow_style=False))

    monkeypatch.setattr(app_module, 'DATA_DIR', str(tmp_path))
    monkeypatch.setattr(app_module, 'USERS_FILE', str(users_file))
    monkeypatch.setattr(app_module, 'PLAYER_POINTS_FILE', str(tmp_path / 'player_points.yaml'))
    monkeypatch.setattr(app_module, 'TOURNAMENTS_DIR', str(tmp_path / 'tournaments'))
    monkeypatch.setattr(app_module, '_data_lock', FileLock(str(tmp_path / '.lock'), timeout=10))

    return tmp_path


@pytest.fixture
def client():
    """Create a test client (unauthenticated by default)."""
    app.config['TESTING'] = True
    with app.test_client() as c:
        yield c


class TestUserCreation:
    """Tests for user registration."""

    def test_create_user_success(self, auth_dir):
        ok, msg = create_user('alice', 'pass1234', pseudo='Ali', level='Advanced')
        assert ok is True
        assert 'created' in msg.lower()
        user = find_user('alice')
        assert user['pseudo'] == 'Ali'
        assert user['level'] == 'Advanced'
        assert 'pass1234' not in user['password_hash']

    def test_first_user_is_admin(self, auth_dir):
        create_user('alice', 'pass1234')
        create_user('bob', 'pass1234')
        roles = {u['username']: u['role'] for u in load_users()}
        assert roles == {'alice': 'admin', 'bob': 'player'}

    @pytest.mark.parametrize('username', ['a', 'bad name', 'no_underscore', '-dash'])
    def test_create_user_invalid_username(self, auth_dir, username):
        ok, _ = create_user(username, 'pass1234')
        assert ok is False

    def test_create_user_short_password(self, auth_dir):
        ok, _ = create_user('alice', 'abc')
        assert ok is False

    def test_create_user_unknown_level(self, auth_dir):
        ok, msg = create_user('alice', 'pass1234', level='Pro')
        assert ok is False
        assert 'Level' in msg

    def test_create_user_duplicate_case_insensitive(self, auth_dir):
        create_user('alice', 'pass1234')
        ok, msg = create_user('Alice', 'other123')
        assert ok is False
        assert 'taken' in msg.lower()


class TestAuthentication:

    def test_authenticate_valid(self, auth_dir):
        create_user('alice', 'pass1234')
        assert authenticate_user('alice', 'pass1234') is True

    def test_authenticate_wrong_password(self, auth_dir):
        create_user('alice', 'pass1234')
        assert authenticate_user('alice', 'wrong') is False

    def test_authenticate_nonexistent_user(self, auth_dir):
        assert authenticate_user('nobody', 'pass1234') is False

    def test_authenticate_case_insensitive(self, auth_dir):
        create_user('alice', 'pass1234')
        assert authenticate_user('ALICE', 'pass1234') is True


class TestAuthRoutes:

    def test_me_requires_login(self, auth_dir, client):
        response = client.get('/api/auth/me')
        assert response.status_code == 401
        assert response.get_json()['success'] is False

    def test_register_logs_in(self, auth_dir, client):
        response = client.post('/api/auth/register', json={'username': 'alice', 'password': 'pass1234'})
        data = response.get_json()
        assert data['success'] is True
        assert 'password_hash' not in data['user']
        me = client.get('/api/auth/me').get_json()
        assert me['user']['username'] == 'alice'

    def test_register_numeric_username(self, auth_dir, client):
        response = client.post('/api/auth/register', json={'username': 12345, 'password': 'pass1234'})
        assert response.status_code == 200
        assert response.get_json()['user']['username'] == '12345'
        me = client.get('/api/auth/me').get_json()
        assert me['user']['username'] == '12345'

    def test_register_normalizes_username_case(self, auth_dir, client):
        client.post('/api/auth/register', json={'username': '  Alice ', 'password': 'pass1234'})
        assert client.get('/api/auth/me').get_json()['user']['username'] == 'alice'

    def test_register_rejects_invalid(self, auth_dir, client):
        response = client.post('/api/auth/register', json={'username': 'a', 'password': 'pass1234'})
        assert response.status_code == 400

    def test_login_success(self, auth_dir, client):
        create_user('alice', 'pass1234')
        response = client.post('/api/auth/login', json={'username': 'alice', 'password': 'pass1234'})
        assert response.status_code == 200
        with client.session_transaction() as sess:
            assert sess['user'] == 'alice'

    def test_login_failure(self, auth_dir, client):
        create_user('alice', 'pass1234')
        response = client.post('/api/auth/login', json={'username': 'alice', 'password': 'nope'})
        assert response.status_code == 401

    def test_logout_clears_session(self, auth_dir, client):
        create_user('alice', 'pass1234')
        client.post('/api/auth/login', json={'username': 'alice', 'password': 'pass1234'})
        client.post('/api/auth/logout')
        assert client.get('/api/auth/me').status_code == 401

    def test_session_for_deleted_user_is_cleared(self, auth_dir, client):
        with client.session_transaction() as sess:
            sess['user'] = 'ghost'
        assert client.get('/api/auth/me').status_code == 401
        with client.session_transaction() as sess:
            assert 'user' not in sess

    def test_change_password(self, auth_dir, client):
        create_user('alice', 'pass1234')
        client.post('/api/auth/login', json={'username': 'alice', 'password': 'pass1234'})
        bad = client.post('/api/auth/change-password',
                          json={'current_password': 'wrong', 'new_password': 'newpass'})
        assert bad.status_code == 400
        ok = client.post('/api/auth/change-password',
                         json={'current_password': 'pass1234', 'new_password': 'newpass'})
        assert ok.get_json()['success'] is True
        assert authenticate_user('alice', 'newpass') is True

    def test_update_profile(self, auth_dir, client):
        create_user('alice', 'pass1234')
        client.post('/api/auth/login', json={'username': 'alice', 'password': 'pass1234'})
        response = client.put('/api/auth/profile', json={'pseudo': 'Ace', 'level': 'Expert'})
        assert response.get_json()['user']['pseudo'] == 'Ace'
        assert find_user('alice')['level'] == 'Expert'
        assert client.put('/api/auth/profile', json={'level': 'Pro'}).status_code == 400


class TestAccessControl:

    def test_admin_routes_reject_players(self, auth_dir, client):
        create_user('alice', 'pass1234')
        create_user('bob', 'pass1234')
        client.post('/api/auth/login', json={'username': 'bob', 'password': 'pass1234'})
        assert client.get('/api/admin/dashboard').status_code == 403

    def test_admin_routes_reject_anonymous(self, auth_dir, client):
        assert client.get('/api/admin/users').status_code == 401

    def test_admin_routes_accept_admin(self, auth_dir, client):
        create_user('alice', 'pass1234')
        client.post('/api/auth/login', json={'username': 'alice', 'password': 'pass1234'})
        response = client.get('/api/admin/dashboard')
        assert response.status_code == 200
        assert response.get_json()['users_count'] == 1

    def test_unknown_route_is_json_404(self, auth_dir, client):
        response = client.get('/api/nothing-here')
        assert response.status_code == 404
        assert response.get_json() == {'success': False, 'error': 'Not found.'}
