"""
Tests for the maintenance scripts in scripts/.
"""
import pytest
import random
import sys
import os
import yaml

# Add scripts directory to path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'scripts'))

import create_dummy_players
import reset_tournament


@pytest.fixture
def data_dir(tmp_path):
    """Data directory holding one tournament with played results."""
    tournament_dir = tmp_path / 'tournaments' / 'summer-cup'
    tournament_dir.mkdir(parents=True)
    (tournament_dir / 'tournament.yaml').write_text(yaml.dump(
        {'id': 'summer-cup', 'name': 'Summer Cup', 'is_ranking_frozen': True, 'is_finished': True}))
    (tournament_dir / 'teams.yaml').write_text(yaml.dump({'teams': [
        {'id': 't1', 'name': 'Sharks', 'pool_id': 'pool-A', 'members': [{'id': 'alice'}]},
    ]}))
    (tournament_dir / 'players.yaml').write_text(yaml.dump({'players': [
        {'id': 'virtual-001', 'pseudo': 'Virtual 001', 'is_virtual': True},
    ]}))
    for name in ('pools.yaml', 'elimination.yaml', 'ranking.yaml'):
        (tournament_dir / name).write_text('{}\n')
    (tmp_path / 'player_points.yaml').write_text(yaml.dump({'records': [
        {'player_id': 'alice', 'tournament_id': 'summer-cup', 'points': 25},
        {'player_id': 'alice', 'tournament_id': 'spring-cup', 'points': 10},
    ]}))
    return tmp_path


def _read(path):
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f)


class TestCreateDummyPlayers:

    def test_build_players_skips_existing_ids(self):
        players = create_dummy_players.build_players(3, {'virtual-002'}, 'Expert', random.Random(1))
        assert [p['id'] for p in players] == ['virtual-001', 'virtual-003', 'virtual-004']
        assert all(p['is_virtual'] and p['level'] == 'Expert' for p in players)

    def test_random_levels_are_valid(self):
        players = create_dummy_players.build_players(10, set(), rng=random.Random(7))
        assert {p['level'] for p in players} <= set(create_dummy_players.LEVELS)

    def test_levels_match_user_levels(self):
        from engine.models import LEVELS
        assert create_dummy_players.LEVELS is LEVELS

    def test_add_players_appends(self, data_dir):
        created = create_dummy_players.add_players(str(data_dir), 'summer-cup', 4)
        assert len(created) == 4
        players = _read(data_dir / 'tournaments' / 'summer-cup' / 'players.yaml')['players']
        ids = [p['id'] for p in players]
        assert len(ids) == 5
        assert len(set(ids)) == 5

    def test_unknown_tournament_exits(self, data_dir):
        with pytest.raises(SystemExit) as exc:
            create_dummy_players.add_players(str(data_dir), 'missing', 4)
        assert exc.value.code == 2

    def test_main(self, data_dir, capsys):
        code = create_dummy_players.main(['summer-cup', '--count', '2', '--data-dir', str(data_dir)])
        assert code == 0
        assert 'Added 2 virtual players' in capsys.readouterr().out

    def test_main_rejects_zero_count(self, data_dir):
        with pytest.raises(SystemExit) as exc:
            create_dummy_players.main(['summer-cup', '--count', '0', '--data-dir', str(data_dir)])
        assert exc.value.code == 1


class TestResetTournament:

    def test_reset_removes_results(self, data_dir):
        tournament_dir = data_dir / 'tournaments' / 'summer-cup'
        removed = reset_tournament.reset_tournament(str(data_dir), 'summer-cup')
        assert removed == ['pools.yaml', 'elimination.yaml', 'ranking.yaml']
        assert not (tournament_dir / 'pools.yaml').exists()
        assert (tournament_dir / 'players.yaml').exists()
        assert _read(tournament_dir / 'teams.yaml')['teams'][0]['pool_id'] is None
        tournament = _read(tournament_dir / 'tournament.yaml')
        assert tournament['is_ranking_frozen'] is False
        assert tournament['is_finished'] is False
        records = _read(data_dir / 'player_points.yaml')['records']
        assert [r['tournament_id'] for r in records] == ['spring-cup']

    def test_keep_points(self, data_dir):
        reset_tournament.reset_tournament(str(data_dir), 'summer-cup', keep_points=True)
        assert len(_read(data_dir / 'player_points.yaml')['records']) == 2

    def test_unknown_tournament_exits(self, data_dir):
        with pytest.raises(SystemExit) as exc:
            reset_tournament.reset_tournament(str(data_dir), 'missing')
        assert exc.value.code == 2

    def test_main_cancelled(self, data_dir, monkeypatch, capsys):
        monkeypatch.setattr('builtins.input', lambda prompt: 'no')
        assert reset_tournament.main(['summer-cup', '--data-dir', str(data_dir)]) == 0
        assert 'cancelled' in capsys.readouterr().out
        assert (data_dir / 'tournaments' / 'summer-cup' / 'pools.yaml').exists()

    def test_main_force(self, data_dir, capsys):
        assert reset_tournament.main(['summer-cup', '--data-dir', str(data_dir), '--force']) == 0
        assert 'removed pools.yaml' in capsys.readouterr().out
