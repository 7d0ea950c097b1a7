"""
Tests for the pool match generation command-line tool.
"""
import pytest
import sys
import os
import yaml

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from generate_matches import load_pools, generate_pool_play_matches, bracket_preview, main


@pytest.fixture
def pools_file(tmp_path):
    path = tmp_path / 'pools.yaml'
    path.write_text(yaml.dump({
        'A': ['Sharks', 'Waves', 'Dunes'],
        'B': ['Reefs', 'Tides', 'Palms'],
    }, default_flow_style=False, sort_keys=False))
    return path


class TestLoadPools:

    def test_load_pools(self, pools_file):
        pools = load_pools(str(pools_file))
        assert [p['name'] for p in pools] == ['Pool A', 'Pool B']
        assert [t['name'] for t in pools[0]['teams']] == ['Sharks', 'Waves', 'Dunes']
        assert pools[0]['matches'] == []

    def test_load_empty_file(self, tmp_path):
        path = tmp_path / 'empty.yaml'
        path.write_text('')
        assert load_pools(str(path)) == []


class TestMatchGeneration:

    def test_every_pair_once(self, pools_file):
        matches = generate_pool_play_matches(load_pools(str(pools_file)))
        pairs = {frozenset((m['team1']['name'], m['team2']['name'])) for m in matches['Pool A']}
        assert pairs == {frozenset(('Sharks', 'Waves')), frozenset(('Sharks', 'Dunes')),
                         frozenset(('Waves', 'Dunes'))}

    def test_double_format(self, pools_file):
        matches = generate_pool_play_matches(load_pools(str(pools_file)), 'double')
        assert len(matches['Pool B']) == 6

    def test_small_pool_skipped_with_warning(self, tmp_path, capsys):
        path = tmp_path / 'pools.yaml'
        path.write_text(yaml.dump({'A': ['Solo'], 'B': ['X', 'Y']}))
        matches = generate_pool_play_matches(load_pools(str(path)))
        assert list(matches) == ['Pool B']
        assert 'fewer than 2 teams' in capsys.readouterr().err


class TestBracketPreview:

    def test_preview_labels_pool_winners(self, pools_file):
        pools = load_pools(str(pools_file))
        rounds = bracket_preview(pools, 2)
        assert [r['name'] for r in rounds] == ['Semifinal', 'Third Place', 'Final']
        assert len(rounds[0]['matches']) == 2


class TestMain:

    def test_prints_matches(self, pools_file, capsys):
        assert main([str(pools_file)]) == 0
        out = capsys.readouterr().out
        assert '# Pool A' in out
        assert 'Sharks vs Waves' in out
        assert out.count(' vs ') == 6

    def test_prints_bracket(self, pools_file, capsys):
        assert main([str(pools_file), '2']) == 0
        out = capsys.readouterr().out
        assert '# Final' in out
        assert 'Winner M1 vs Winner M2' in out

    def test_no_pools(self, tmp_path):
        path = tmp_path / 'pools.yaml'
        path.write_text('')
        assert main([str(path)]) == 1

    def test_bracket_needs_two_qualified_teams(self, tmp_path, capsys):
        path = tmp_path / 'pools.yaml'
        path.write_text(yaml.dump({'A': ['Sharks', 'Waves']}))
        assert main([str(path), '1']) == 1
        captured = capsys.readouterr()
        assert 'At least 2 qualified teams' in captured.err
        assert 'Sharks vs Waves' in captured.out

    def test_qualified_count_must_be_a_number(self, pools_file, capsys):
        assert main([str(pools_file), 'two']) == 1
        assert 'must be a number' in capsys.readouterr().err
