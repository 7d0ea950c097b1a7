"""
Tests for the Flexible King format: configurable phases, withdrawals and repechage.
"""
import pytest
import random
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from engine import flexible_king as fk
from engine.phases import PhaseError


def _players(count):
    return [{'id': f"p{i:02d}", 'pseudo': f"Player {i}"} for i in range(count)]


def _two_phase_configs():
    return [
        fk.build_phase_config(1, fk.KOB, 8, 2, 3, 8),
        fk.build_phase_config(2, fk.KOB, 4, 1, 2, 1),
    ]


def _play_all(data, phase_number):
    phase = data['phases'][phase_number - 1]
    for match in phase['matches']:
        fk.record_match_result(data, phase_number, match['id'], 1, 0)


class TestConfiguration:

    def test_kob_rounds(self):
        assert fk.calculate_kob_rounds(2) == 1
        assert fk.calculate_kob_rounds(4) == 5
        assert fk.calculate_kob_rounds(6) == 9

    def test_total_matches(self):
        assert fk.calculate_total_matches(fk.ROUND_ROBIN, 3, 2, 3) == 2 * 3 * 3
        assert fk.calculate_total_matches(fk.KOB, 4, 2, 5) == 2 * 2 * 5

    def test_build_config_derives_distributions(self):
        config = fk.build_phase_config(1, fk.KOB, 10, 3, 3, 9)
        assert config['pool_distribution'] == [4, 3, 3]
        assert config['qualified_per_pool_distribution'] == [3, 3, 3]
        assert config['estimated_rounds'] == 5
        assert config['phase_label'] == '3v3'

    @pytest.mark.parametrize('args', [
        ('relay', 8, 2, 3, 8),
        (fk.KOB, 1, 1, 3, 1),
        (fk.KOB, 8, 5, 3, 8),
        (fk.KOB, 8, 2, 3, 25),
        (fk.KOB, 8, 2, 3, 0),
    ])
    def test_build_config_invalid(self, args):
        with pytest.raises(PhaseError):
            fk.build_phase_config(1, *args)

    def test_chaining_validation(self):
        configs = _two_phase_configs()
        data = fk.initialize_flexible_king(configs)
        assert fk.validate_phases_configuration(data['phases']) == []
        data['phases'][0]['config']['total_qualified'] = 6
        errors = fk.validate_phases_configuration(data['phases'])
        assert len(errors) == 1
        assert 'expects 8 players' in errors[0]

    def test_suggestions_chain(self):
        for player_count in (24, 36, 12, 16):
            for suggestion in fk.suggest_configurations(player_count):
                phases = [{'phase_number': c['phase_number'], 'config': c} for c in suggestion['phases']]
                first = suggestion['phases'][0]
                assert first['total_teams'] * first['players_per_team'] == player_count
                assert fk.validate_phases_configuration(phases) == []

    def test_no_suggestion_for_tiny_groups(self):
        assert fk.suggest_configurations(3) == []

    def test_update_configuration(self):
        data = fk.initialize_flexible_king(_two_phase_configs())
        fk.update_phase_configuration(data, 2, fk.build_phase_config(2, fk.ROUND_ROBIN, 4, 2, 2, 2))
        assert data['phases'][1]['status'] == 'configured'
        assert data['phases'][1]['config']['phase_format'] == fk.ROUND_ROBIN


class TestGeneration:

    def test_kob_grid_teams_never_overlap(self):
        for player_count, size in ((12, 3), (8, 2), (16, 4)):
            rounds = fk.calculate_kob_rounds(player_count // size)
            for round_matches in fk.kob_rotation_grid(player_count, size, rounds):
                used = []
                for start1, start2 in round_matches:
                    used += [(start1 + i) % player_count for i in range(size)]
                    used += [(start2 + i) % player_count for i in range(size)]
                assert len(used) == len(set(used))

    def test_phase_pools_and_matches(self):
        data = fk.initialize_flexible_king(_two_phase_configs())
        phase = fk.start_phase(data, 1, _players(24), random.Random(3))
        assert phase['status'] == 'in_progress'
        assert [p['player_count'] for p in phase['pools']] == [12, 12]
        assert len(phase['matches']) == phase['config']['total_matches'] == 20
        assert data['current_phase_number'] == 1

    def test_round_robin_phase(self):
        config = fk.build_phase_config(1, fk.ROUND_ROBIN, 6, 2, 2, 4, estimated_rounds=2)
        data = fk.initialize_flexible_king([config])
        phase = fk.start_phase(data, 1, _players(12), random.Random(3))
        # 3 teams per pool -> 3 matches per round
        assert len(phase['matches']) == 2 * 3 * 2

    def test_wrong_player_count(self):
        data = fk.initialize_flexible_king(_two_phase_configs())
        with pytest.raises(PhaseError):
            fk.start_phase(data, 1, _players(20))


class TestProgression:

    def _completed_first_phase(self):
        data = fk.initialize_flexible_king(_two_phase_configs())
        fk.start_phase(data, 1, _players(24), random.Random(8))
        _play_all(data, 1)
        fk.complete_phase(data, 1)
        return data

    def test_complete_requires_all_matches(self):
        data = fk.initialize_flexible_king(_two_phase_configs())
        fk.start_phase(data, 1, _players(24), random.Random(8))
        with pytest.raises(PhaseError):
            fk.complete_phase(data, 1)

    def test_qualifiers_and_candidates(self):
        data = self._completed_first_phase()
        phase = data['phases'][0]
        assert len(phase['qualified_ids']) == 8
        assert len(phase['repechage_candidates']) == 16
        assert not set(phase['qualified_ids']) & {c['player_id'] for c in phase['repechage_candidates']}

    def test_next_phase_takes_qualifiers(self):
        data = self._completed_first_phase()
        phase2 = fk.start_phase(data, 2, _players(24), random.Random(1))
        assert sorted(phase2['participant_ids']) == sorted(data['phases'][0]['qualified_ids'])

    def test_withdrawal_replaced_by_repechage(self):
        data = self._completed_first_phase()
        phase1 = data['phases'][0]
        withdrawn = phase1['qualified_ids'][0]
        repeched = phase1['repechage_candidates'][0]['player_id']
        fk.set_withdrawals(data, 1, [withdrawn])
        fk.set_repechages(data, 1, [repeched])
        phase2 = fk.start_phase(data, 2, _players(24), random.Random(1))
        assert withdrawn not in phase2['participant_ids']
        assert repeched in phase2['participant_ids']

    def test_withdrawal_without_replacement_blocks_start(self):
        data = self._completed_first_phase()
        fk.set_withdrawals(data, 1, data['phases'][0]['qualified_ids'][:1])
        with pytest.raises(PhaseError):
            fk.start_phase(data, 2, _players(24))

    def test_invalid_withdrawal_and_repechage(self):
        data = self._completed_first_phase()
        phase1 = data['phases'][0]
        with pytest.raises(PhaseError):
            fk.set_withdrawals(data, 1, [phase1['repechage_candidates'][0]['player_id']])
        with pytest.raises(PhaseError):
            fk.set_repechages(data, 1, [phase1['qualified_ids'][0]])

    def test_second_phase_needs_first_completed(self):
        data = fk.initialize_flexible_king(_two_phase_configs())
        fk.start_phase(data, 1, _players(24), random.Random(8))
        with pytest.raises(PhaseError):
            fk.start_phase(data, 2, _players(24))

    def test_freeze_and_reset(self):
        data = self._completed_first_phase()
        fk.start_phase(data, 2, _players(24), random.Random(1))
        with pytest.raises(PhaseError):
            fk.freeze(data)
        _play_all(data, 2)
        fk.complete_phase(data, 2)
        fk.freeze(data)
        assert data['is_frozen'] is True
        assert data['winner']['rank'] == 1
        with pytest.raises(PhaseError):
            fk.reset_phase(data, 2)

    def test_reset_clears_later_phases(self):
        data = self._completed_first_phase()
        fk.start_phase(data, 2, _players(24), random.Random(1))
        fk.reset_phase(data, 1)
        assert all(p['status'] == 'configured' for p in data['phases'])
        assert all(p['matches'] == [] for p in data['phases'])
        assert data['current_phase_number'] is None
