"""
Tests for pool creation, round-robin generation and qualification.
"""
import pytest
import random
import sys
import os
from itertools import combinations

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from engine.elimination import BracketError
from engine.pools import (
    pool_id, pool_name, distribute_teams_in_pools, distribute_qualified_in_pools, create_pool,
    assign_teams_to_pools, generate_pool_matches, calculate_pool_rankings, select_qualified_teams,
)
from engine.scoring import apply_match_result


def _teams(count):
    return [{'id': f"t{i}", 'name': f"Team {i}"} for i in range(1, count + 1)]


def _play(pool, results):
    """results maps (team1_id, team2_id) -> (score1, score2), single set."""
    for match in pool['matches']:
        key = (match['team1']['id'], match['team2']['id'])
        if key in results:
            score1, score2 = results[key]
            apply_match_result(match, [{'score1': score1, 'score2': score2}], 1, 21)


class TestDistribution:

    def test_pool_labels(self):
        assert pool_id(0) == 'pool-A'
        assert pool_name(2) == 'Pool C'

    def test_even_split(self):
        assert distribute_teams_in_pools(12, 3) == [4, 4, 4]

    def test_larger_pools_first(self):
        assert distribute_teams_in_pools(10, 3) == [4, 3, 3]
        assert distribute_qualified_in_pools(5, 2) == [3, 2]

    def test_no_pools(self):
        assert distribute_teams_in_pools(10, 0) == []


class TestAssignment:

    def test_pool_count_and_sizes(self):
        pools = assign_teams_to_pools(_teams(10), 4)
        assert len(pools) == 3
        assert sorted(len(p['teams']) for p in pools) == [3, 3, 4]

    def test_snake_order(self):
        """First teams go A, B then back B, A."""
        pools = assign_teams_to_pools(_teams(4), 2)
        assert [t['id'] for t in pools[0]['teams']] == ['t1', 't4']
        assert [t['id'] for t in pools[1]['teams']] == ['t2', 't3']

    def test_shuffle_keeps_every_team(self):
        pools = assign_teams_to_pools(_teams(9), 3, shuffle=True, rng=random.Random(7))
        ids = sorted(t['id'] for p in pools for t in p['teams'])
        assert ids == sorted(t['id'] for t in _teams(9))

    def test_empty(self):
        assert assign_teams_to_pools([], 4) == []


class TestPoolMatches:

    def test_single_round_robin(self):
        pool = create_pool(0, _teams(4))
        matches = generate_pool_matches(pool)
        assert len(matches) == 6
        pairs = {frozenset((m['team1']['id'], m['team2']['id'])) for m in matches}
        assert pairs == {frozenset(p) for p in combinations(['t1', 't2', 't3', 't4'], 2)}
        assert matches[0]['id'] == 'pool-A-m1'
        assert all(m['status'] == 'pending' for m in matches)

    def test_double_round_robin_swaps_sides(self):
        pool = create_pool(0, _teams(3))
        matches = generate_pool_matches(pool, 'double', sets_per_match=3, points_per_set=25)
        assert len(matches) == 6
        sides = [(m['team1']['id'], m['team2']['id']) for m in matches]
        assert ('t1', 't2') in sides and ('t2', 't1') in sides
        assert matches[0]['sets_per_match'] == 3
        assert matches[0]['points_per_set'] == 25

    def test_too_few_teams(self):
        assert generate_pool_matches(create_pool(0, _teams(1))) == []


class TestQualification:

    def _played_pools(self):
        pool_a = create_pool(0, _teams(3))
        pool_a['matches'] = generate_pool_matches(pool_a)
        _play(pool_a, {('t1', 't2'): (21, 10), ('t1', 't3'): (21, 12), ('t2', 't3'): (21, 19)})
        pool_b = create_pool(1, [{'id': 'u1', 'name': 'U1'}, {'id': 'u2', 'name': 'U2'}])
        pool_b['matches'] = generate_pool_matches(pool_b)
        _play(pool_b, {('u1', 'u2'): (15, 21)})
        return [pool_a, pool_b]

    def test_rankings_per_pool(self):
        rankings = calculate_pool_rankings(self._played_pools())
        assert [r['team_id'] for r in rankings['pool-A']] == ['t1', 't2', 't3']
        assert [r['team_id'] for r in rankings['pool-B']] == ['u2', 'u1']

    def test_automatic_selection_seeds(self):
        qualified = select_qualified_teams(self._played_pools(), 1)
        # t1 has two wins, u2 one
        assert [q['team_id'] for q in qualified] == ['t1', 'u2']
        assert [q['seed'] for q in qualified] == [1, 2]
        assert qualified[1]['pool_name'] == 'Pool B'

    def test_manual_selection(self):
        qualified = select_qualified_teams(self._played_pools(), 1, ['t3', 'u1', 't2'])
        assert {q['team_id'] for q in qualified} == {'t2', 't3', 'u1'}

    def test_not_enough_qualified(self):
        with pytest.raises(BracketError):
            select_qualified_teams(self._played_pools(), 0)
