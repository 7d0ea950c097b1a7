"""
Unit tests for single elimination bracket generation and propagation.
"""
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from engine.elimination import (
    BracketError,
    get_round_name,
    calculate_bracket_size,
    calculate_bracket_structure,
    generate_elimination_bracket,
    record_elimination_result,
    propagate_match_result,
    get_bracket_rounds,
    get_champion,
    find_match,
    _generate_bracket_order,
)

WIN = [{'score1': 21, 'score2': 15}, {'score1': 21, 'score2': 17}]
LOSS = [{'score1': 15, 'score2': 21}, {'score1': 17, 'score2': 21}]


def _seeded(count):
    return [{'team_id': f"s{i}", 'team_name': f"Seed {i}"} for i in range(1, count + 1)]


def _sides(match):
    return (match['team1']['id'] if match['team1'] else None,
            match['team2']['id'] if match['team2'] else None)


class TestBracketHelpers:
    """Tests for bracket helper functions."""

    def test_round_names(self):
        assert get_round_name(2) == "Final"
        assert get_round_name(4) == "Semifinal"
        assert get_round_name(8) == "Quarterfinal"
        assert get_round_name(16) == "Round of 16"

    def test_bracket_size(self):
        assert calculate_bracket_size(0) == 0
        assert calculate_bracket_size(2) == 2
        assert calculate_bracket_size(5) == 8
        assert calculate_bracket_size(16) == 16

    def test_structure_with_byes(self):
        """6 teams: 2 byes, 4 teams play 2 preliminary matches."""
        structure = calculate_bracket_structure(6)
        assert structure['total_slots'] == 8
        assert structure['byes'] == 2
        assert structure['teams_playing_preliminary'] == 4
        assert structure['preliminary_matches'] == 2
        assert structure['first_main_round_name'] == 'Semifinal'

    def test_structure_needs_two_teams(self):
        with pytest.raises(BracketError):
            calculate_bracket_structure(1)

    def test_bracket_order(self):
        assert _generate_bracket_order(2) == [1, 2]
        assert _generate_bracket_order(4) == [1, 4, 2, 3]
        assert _generate_bracket_order(8) == [1, 8, 4, 5, 2, 7, 3, 6]


class TestBracketGeneration:

    def test_two_teams_single_final(self):
        matches = generate_elimination_bracket(_seeded(2))
        assert len(matches) == 1
        assert matches[0]['round'] == 'Final'
        assert matches[0]['is_final'] is True
        assert _sides(matches[0]) == ('s1', 's2')

    def test_four_teams_semis_third_place_final(self):
        matches = generate_elimination_bracket(_seeded(4), {'sets_per_match': 3})
        rounds = [m['round'] for m in matches]
        assert rounds == ['Semifinal', 'Semifinal', 'Third Place', 'Final']
        assert _sides(matches[0]) == ('s1', 's4')
        assert _sides(matches[1]) == ('s2', 's3')
        third = matches[2]
        assert third['is_third_place'] is True
        assert third['team1_label'] == 'Loser M1'
        assert matches[3]['team1_label'] == 'Winner M1'
        assert matches[0]['next_match_id'] == 'M4'
        assert matches[0]['next_loser_match_id'] == 'M3'

    def test_six_teams_byes_meet_preliminary_winners(self):
        matches = generate_elimination_bracket(_seeded(6))
        preliminary = [m for m in matches if m['round'] == 'Preliminary Round']
        assert [_sides(m) for m in preliminary] == [('s3', 's6'), ('s4', 's5')]
        semis = [m for m in matches if m['round'] == 'Semifinal']
        assert semis[0]['team1']['id'] == 's1'
        assert semis[0]['team2_label'] == 'Winner M2'
        assert semis[1]['team1']['id'] == 's2'
        assert semis[1]['team2_label'] == 'Winner M1'
        assert sum(1 for m in matches if m['is_third_place']) == 1

    def test_eight_teams_top_seeds_apart(self):
        matches = generate_elimination_bracket(_seeded(8))
        quarters = [m for m in matches if m['round'] == 'Quarterfinal']
        assert [_sides(m) for m in quarters] == [('s1', 's8'), ('s2', 's7'), ('s3', 's6'), ('s4', 's5')]
        semis = [m for m in matches if m['round'] == 'Semifinal']
        assert {semis[0]['team1_label'], semis[0]['team2_label']} == {'Winner M1', 'Winner M4'}
        assert len(matches) == 8

    def test_three_teams_no_third_place(self):
        matches = generate_elimination_bracket(_seeded(3))
        assert [m['round'] for m in matches] == ['Preliminary Round', 'Final']
        assert not any(m['is_third_place'] for m in matches)

    def test_match_count_is_teams_minus_one_plus_third_place(self):
        for count in (5, 7, 12, 16):
            matches = generate_elimination_bracket(_seeded(count))
            assert len(matches) == count - 1 + 1

    def test_config_applied(self):
        matches = generate_elimination_bracket(_seeded(4), {'sets_per_match': 5, 'points_per_set': 25,
                                                            'tie_break_enabled': True})
        assert all(m['sets_per_match'] == 5 and m['points_per_set'] == 25 for m in matches)
        assert all(m['tie_break_enabled'] for m in matches)


class TestBracketProgress:

    def test_winner_and_loser_propagate(self):
        matches = generate_elimination_bracket(_seeded(4))
        record_elimination_result(matches, 'M1', WIN)
        record_elimination_result(matches, 'M2', LOSS)
        final = find_match(matches, 'M4')
        third = find_match(matches, 'M3')
        assert _sides(final) == ('s1', 's3')
        assert _sides(third) == ('s4', 's2')

    def test_champion(self):
        matches = generate_elimination_bracket(_seeded(4))
        assert get_champion(matches) is None
        record_elimination_result(matches, 'M1', WIN)
        record_elimination_result(matches, 'M2', WIN)
        record_elimination_result(matches, 'M4', LOSS)
        assert get_champion(matches)['id'] == 's2'

    def test_match_waiting_for_teams(self):
        matches = generate_elimination_bracket(_seeded(4))
        with pytest.raises(BracketError):
            record_elimination_result(matches, 'M4', WIN)

    def test_unknown_match(self):
        with pytest.raises(BracketError):
            record_elimination_result(generate_elimination_bracket(_seeded(2)), 'M9', WIN)

    def test_changed_result_blocked_by_played_next_match(self):
        """A winner cannot change once the next match has been played with the old winner."""
        matches = generate_elimination_bracket(_seeded(4))
        record_elimination_result(matches, 'M1', WIN)
        record_elimination_result(matches, 'M2', WIN)
        record_elimination_result(matches, 'M4', WIN)
        with pytest.raises(BracketError):
            record_elimination_result(matches, 'M1', LOSS)

    def test_reopened_result_withdraws_teams(self):
        """A result reopened to an unfinished score takes its teams back out of the next matches."""
        matches = generate_elimination_bracket(_seeded(4), {'sets_per_match': 3})
        semi = record_elimination_result(matches, 'M1', WIN)
        final = find_match(matches, semi['next_match_id'])
        slot = semi['next_match_slot']
        assert final[f'team{slot}']['id'] == semi['winner_id']

        record_elimination_result(matches, 'M1', WIN[:1])
        assert semi['status'] == 'in_progress'
        assert final[f'team{slot}'] is None
        assert find_match(matches, 'M3')['team1'] is None

    def test_reopened_result_blocked_by_played_next_match(self):
        matches = generate_elimination_bracket(_seeded(4), {'sets_per_match': 3})
        record_elimination_result(matches, 'M1', WIN)
        record_elimination_result(matches, 'M2', WIN)
        record_elimination_result(matches, 'M4', WIN)
        with pytest.raises(BracketError):
            record_elimination_result(matches, 'M1', WIN[:1])

    def test_propagate_ignores_pending(self):
        matches = generate_elimination_bracket(_seeded(4))
        propagate_match_result(matches, 'M1')
        assert find_match(matches, 'M4')['team1'] is None

    def test_rounds_grouping(self):
        rounds = get_bracket_rounds(generate_elimination_bracket(_seeded(6)))
        assert [r['name'] for r in rounds] == ['Preliminary Round', 'Semifinal', 'Third Place', 'Final']
