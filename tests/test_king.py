"""
Tests for the classic King of the Beach format (three fixed phases).
"""
import pytest
import random
import sys
import os
from itertools import combinations

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from engine import king
from engine.phases import PhaseError

TOURNAMENT = {'fields': 3}


def _players(count):
    return [{'id': f"p{i:02d}", 'pseudo': f"Player {i}"} for i in range(count)]


def _play_all(phase):
    """Team 1 wins every match."""
    for match in list(phase['matches']):
        if match['status'] != 'completed':
            king.record_king_match_result(phase, match['id'], 1, 0)


class TestGrids:

    def test_3v3_grid_uses_six_players_each_round(self):
        for side1, side2 in king.KOB_3V3_GRID:
            assert sorted(side1 + side2) == list(range(6))

    def test_2v2_grid_every_pair_partners_once(self):
        partners = []
        for round_matches in king.KOB_2V2_GRID:
            players = [p for match in round_matches for side in match for p in side]
            assert sorted(players) == list(range(8))
            for side1, side2 in round_matches:
                partners.extend([frozenset(side1), frozenset(side2)])
        assert len(partners) == 28
        assert set(partners) == {frozenset(pair) for pair in combinations(range(8), 2)}


class TestPhaseGeneration:

    def test_random_teams(self):
        teams = king.form_random_teams(_players(12), 4, 3, random.Random(3))
        assert len(teams) == 3
        ids = [m['id'] for t in teams for m in t['members']]
        assert sorted(ids) == sorted(p['id'] for p in _players(12))

    def test_phase1_one_pool_per_field(self):
        phase = king.generate_phase1(_players(36), TOURNAMENT, random.Random(1))
        assert [p['id'] for p in phase['pools']] == ['pool-A', 'pool-B', 'pool-C']
        assert all(len(p['players']) == 12 for p in phase['pools'])
        # 3 rounds of 3 matches per pool
        assert len(phase['matches']) == 27
        assert all(len(m['team1']['members']) == 4 for m in phase['matches'])
        assert phase['status'] == 'in_progress'

    def test_phase1_two_fields(self):
        phase = king.generate_phase1(_players(24), {'fields': 2}, random.Random(1))
        assert len(phase['pools']) == 2
        assert len(phase['matches']) == 18

    def test_phase1_not_enough_players(self):
        with pytest.raises(PhaseError):
            king.generate_phase1(_players(20), TOURNAMENT)

    def test_phase2_pools_d_and_e(self):
        phase = king.generate_phase2(_players(12), TOURNAMENT, random.Random(2))
        assert [p['name'] for p in phase['pools']] == ['Pool D', 'Pool E']
        assert len(phase['matches']) == 10
        assert all(m['format'] == '3v3' for m in phase['matches'])

    def test_phase3_needs_eight(self):
        with pytest.raises(PhaseError):
            king.generate_phase3(_players(6), TOURNAMENT)
        phase = king.generate_phase3(_players(8), TOURNAMENT)
        assert len(phase['matches']) == 14
        assert phase['pools'][0]['id'] == 'final-pool'


class TestKingFlow:

    def test_full_tournament(self):
        data = king.initialize_king()
        rng = random.Random(5)
        assert king.get_king_status(data) == 'not_started'

        phase1 = king.start_phase(data, 1, _players(36), TOURNAMENT, rng)
        assert king.get_king_status(data) == 'phase1_in_progress'
        _play_all(phase1)
        assert phase1['status'] == 'completed'
        assert len(phase1['qualified_ids']) == 12
        assert king.get_king_status(data) == 'phase1_completed'

        phase2 = king.start_phase(data, 2, [], TOURNAMENT, rng)
        assert {p['id'] for pool in phase2['pools'] for p in pool['players']} == set(phase1['qualified_ids'])
        _play_all(phase2)
        assert len(phase2['qualified_ids']) == 8

        phase3 = king.start_phase(data, 3, [], TOURNAMENT, rng)
        assert king.get_king_winner(data) is None
        _play_all(phase3)
        assert king.get_king_status(data) == 'completed'
        winner = king.get_king_winner(data)
        # Finalist 7 sits in team 1 of the first match of every round
        assert winner['wins'] == 7

    def test_phase_order_enforced(self):
        data = king.initialize_king()
        with pytest.raises(PhaseError):
            king.start_phase(data, 2, [], TOURNAMENT)
        king.start_phase(data, 1, _players(36), TOURNAMENT, random.Random(1))
        with pytest.raises(PhaseError):
            king.start_phase(data, 1, _players(36), TOURNAMENT)
        with pytest.raises(PhaseError):
            king.start_phase(data, 2, [], TOURNAMENT)
        with pytest.raises(PhaseError):
            king.start_phase(data, 4, [], TOURNAMENT)

    def test_result_on_completed_phase_rejected(self):
        data = king.initialize_king()
        phase = king.start_phase(data, 1, _players(36), TOURNAMENT, random.Random(1))
        _play_all(phase)
        with pytest.raises(PhaseError):
            king.record_king_match_result(phase, phase['matches'][0]['id'], 0, 1)

    def test_reset_drops_later_phases(self):
        data = king.initialize_king()
        phase = king.start_phase(data, 1, _players(36), TOURNAMENT, random.Random(1))
        _play_all(phase)
        king.start_phase(data, 2, [], TOURNAMENT, random.Random(1))
        king.reset_phase(data, 2)
        assert [p['phase_number'] for p in data['phases']] == [1]
        assert king.get_king_status(data) == 'phase1_completed'
        king.reset_phase(data, 1)
        assert king.get_king_status(data) == 'not_started'
