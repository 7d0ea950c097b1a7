"""
Classic King of the Beach: three fixed phases for individual players.

Phase 1 (4v4): pools of 12, teams redrawn every round, top 4 per pool go on.
Phase 2 (3v3): two pools of 6 on a fixed rotation grid, top 4 per pool go on.
Phase 3 (2v2): the 8 finalists each partner every other finalist once; the
player with the most wins is King.
"""
import logging
import random
from datetime import datetime
from typing import List, Dict, Optional

from engine.phases import (
    PhaseError, COMPLETED, IN_PROGRESS, shuffle_list, pool_label, find_match,
    all_matches_completed, calculate_player_ranking, top_players_per_pool,
    record_sets_won, king_match, player_ref,
)


logger = logging.getLogger(__name__)

PHASE1_TEAMS_PER_POOL = 3
PHASE1_TEAM_SIZE = 4
PHASE1_ROUNDS_PER_POOL = 3
PHASE1_PLAYERS_PER_POOL = 12
PHASE1_QUALIFIERS_PER_POOL = 4

PHASE2_POOLS = 2
PHASE2_TEAM_SIZE = 3
PHASE2_ROUNDS = 5
PHASE2_QUALIFIERS_PER_POOL = 4

PHASE3_TEAM_SIZE = 2
PHASE3_ROUNDS = 7
PHASE3_FINALISTS = 8

# 6 players, one match per round
KOB_3V3_GRID = [
    [[0, 1, 2], [3, 4, 5]],
    [[0, 3, 4], [1, 2, 5]],
    [[0, 1, 5], [2, 3, 4]],
    [[0, 2, 3], [1, 4, 5]],
    [[0, 4, 5], [1, 2, 3]],
]

# 8 players, two matches per round; every pair of players partners exactly once
KOB_2V2_GRID = [
    [[[0, 7], [1, 6]], [[2, 5], [3, 4]]],
    [[[1, 7], [0, 2]], [[3, 6], [4, 5]]],
    [[[2, 7], [1, 3]], [[0, 4], [5, 6]]],
    [[[3, 7], [2, 4]], [[1, 5], [0, 6]]],
    [[[4, 7], [3, 5]], [[2, 6], [0, 1]]],
    [[[5, 7], [4, 6]], [[0, 3], [1, 2]]],
    [[[6, 7], [0, 5]], [[1, 4], [2, 3]]],
]


def form_random_teams(players: List[Dict], team_size: int, number_of_teams: int,
                      rng: Optional[random.Random] = None) -> List[Dict]:
    """Shuffle players and cut them into number_of_teams teams of team_size."""
    shuffled = shuffle_list(players, rng)
    return [
        {'name': f"Team {i + 1}", 'members': [player_ref(p) for p in shuffled[i * team_size:(i + 1) * team_size]]}
        for i in range(number_of_teams)
    ]


def _grid_team(name: str, players: List[Dict], indices: List[int]) -> Dict:
    return {'name': name, 'members': [player_ref(players[i]) for i in indices if i < len(players)]}


def generate_phase1(players: List[Dict], tournament: Dict, rng: Optional[random.Random] = None) -> Dict:
    """
    4v4 phase: one pool per field, every round redraws teams inside the pool
    and the teams play a round robin.
    """
    number_of_pools = tournament.get('fields') or 3
    players_per_pool = len(players) // number_of_pools
    teams_per_pool = tournament.get('phase1_teams_per_pool', PHASE1_TEAMS_PER_POOL)
    team_size = tournament.get('phase1_team_size', PHASE1_TEAM_SIZE)
    rounds = tournament.get('phase1_rounds_per_pool', PHASE1_ROUNDS_PER_POOL)
    if players_per_pool < team_size * teams_per_pool:
        raise PhaseError(
            f'Phase 1 needs {team_size * teams_per_pool * number_of_pools} players, got {len(players)}.')

    pools = []
    matches = []
    for index in range(number_of_pools):
        pid, name = pool_label(index)
        pool_players = players[index * players_per_pool:(index + 1) * players_per_pool]
        number = 1
        for round_number in range(1, rounds + 1):
            teams = form_random_teams(pool_players, team_size, teams_per_pool, rng)
            for i in range(len(teams)):
                for j in range(i + 1, len(teams)):
                    matches.append(king_match(f"match-{pid}-{number}", number, pid, round_number,
                                              f"Phase 1 - Round {round_number}", teams[i], teams[j], '4v4'))
                    number += 1
        pools.append({'id': pid, 'name': name, 'players': [player_ref(p) for p in pool_players]})

    logger.info('King phase 1: %d matches in %d pools', len(matches), len(pools))
    return _phase(1, '4v4 filter', pools, matches)


def generate_phase2(qualified: List[Dict], tournament: Dict, rng: Optional[random.Random] = None) -> Dict:
    """3v3 phase: two pools (D and E) of six on the KOB 3v3 grid."""
    players_per_pool = len(qualified) // PHASE2_POOLS
    if players_per_pool < 6:
        raise PhaseError(f'Phase 2 needs {6 * PHASE2_POOLS} players, got {len(qualified)}.')
    shuffled = shuffle_list(qualified, rng)

    pools = []
    matches = []
    for index in range(PHASE2_POOLS):
        pid, name = pool_label(index, offset=3)
        pool_players = shuffled[index * players_per_pool:(index + 1) * players_per_pool]
        for round_index, (side1, side2) in enumerate(KOB_3V3_GRID[:PHASE2_ROUNDS]):
            round_number = round_index + 1
            matches.append(king_match(
                f"match-{pid}-{round_number}", round_number, pid, round_number,
                f"Phase 2 - Round {round_number}",
                _grid_team(f"{name} - Round {round_number}A", pool_players, side1),
                _grid_team(f"{name} - Round {round_number}B", pool_players, side2),
                '3v3'))
        pools.append({'id': pid, 'name': name, 'players': [player_ref(p) for p in pool_players]})

    logger.info('King phase 2: %d matches in %d pools', len(matches), len(pools))
    return _phase(2, '3v3 selection', pools, matches)


def generate_phase3(finalists: List[Dict], tournament: Dict) -> Dict:
    """2v2 final: the 8 finalists on the KOB 2v2 grid, 2 matches per round."""
    if len(finalists) != PHASE3_FINALISTS:
        raise PhaseError(f'The final needs {PHASE3_FINALISTS} players, got {len(finalists)}.')
    pid, name = 'final-pool', 'Final Pool'
    matches = []
    number = 1
    for round_index, round_matches in enumerate(KOB_2V2_GRID[:PHASE3_ROUNDS]):
        round_number = round_index + 1
        for match_index, (side1, side2) in enumerate(round_matches):
            label = f"Final {round_number}-{match_index + 1}"
            matches.append(king_match(
                f"match-final-{number}", number, pid, round_number, f"Final - Round {round_number}",
                _grid_team(f"{label}A", finalists, side1), _grid_team(f"{label}B", finalists, side2), '2v2'))
            number += 1
    pools = [{'id': pid, 'name': name, 'players': [player_ref(p) for p in finalists]}]
    logger.info('King phase 3: %d matches', len(matches))
    return _phase(3, '2v2 final', pools, matches)


def _phase(number: int, description: str, pools: List[Dict], matches: List[Dict]) -> Dict:
    return {
        'phase_number': number,
        'description': description,
        'status': IN_PROGRESS,
        'pools': pools,
        'matches': matches,
        'ranking': [],
        'qualified_ids': [],
        'created_at': datetime.now().isoformat(),
    }


def get_phase_qualifiers(pools: List[Dict], matches: List[Dict], qualifiers_per_pool: int) -> List[Dict]:
    """Top qualifiers_per_pool players of each pool by individual wins."""
    return top_players_per_pool(pools, matches, [qualifiers_per_pool] * len(pools))


def calculate_king_ranking(matches: List[Dict]) -> List[Dict]:
    """Individual ranking over a phase: wins, set diff, sets won."""
    return calculate_player_ranking(matches)


def record_king_match_result(phase: Dict, match_id: str, sets_won_team1: int, sets_won_team2: int) -> Dict:
    if phase['status'] != IN_PROGRESS:
        raise PhaseError(f"Phase {phase['phase_number']} is not in progress.")
    match = find_match(phase['matches'], match_id)
    record_sets_won(match, sets_won_team1, sets_won_team2)
    if all_matches_completed(phase['matches']):
        _complete(phase)
    return match


def _complete(phase: Dict):
    qualifiers_per_pool = {1: PHASE1_QUALIFIERS_PER_POOL, 2: PHASE2_QUALIFIERS_PER_POOL}.get(phase['phase_number'], 0)
    phase['status'] = COMPLETED
    phase['ranking'] = calculate_king_ranking(phase['matches'])
    if qualifiers_per_pool:
        qualified = get_phase_qualifiers(phase['pools'], phase['matches'], qualifiers_per_pool)
        phase['qualified_ids'] = [p['id'] for p in qualified]
    logger.info('King phase %d completed', phase['phase_number'])


def initialize_king() -> Dict:
    return {'phases': [], 'winner': None}


def get_king_status(king_data: Dict) -> str:
    """not_started, phaseN_in_progress or completed."""
    phases = king_data.get('phases', [])
    if not phases:
        return 'not_started'
    last = max(phases, key=lambda p: p['phase_number'])
    if last['phase_number'] == 3 and last['status'] == COMPLETED:
        return 'completed'
    if last['status'] == COMPLETED:
        return f"phase{last['phase_number']}_completed"
    return f"phase{last['phase_number']}_in_progress"


def start_phase(king_data: Dict, phase_number: int, players: List[Dict], tournament: Dict,
                rng: Optional[random.Random] = None) -> Dict:
    """
    Generate and attach a phase.

    Phase 1 takes the registered players; later phases take the qualifiers
    of the completed previous phase.
    """
    if phase_number not in (1, 2, 3):
        raise PhaseError(f'Phase {phase_number} does not exist.')
    if any(p['phase_number'] == phase_number for p in king_data['phases']):
        raise PhaseError(f'Phase {phase_number} already started.')

    if phase_number == 1:
        phase = generate_phase1(shuffle_list(players, rng), tournament, rng)
    else:
        previous = next((p for p in king_data['phases'] if p['phase_number'] == phase_number - 1), None)
        if not previous or previous['status'] != COMPLETED:
            raise PhaseError(f'Phase {phase_number - 1} must be completed first.')
        by_id = {}
        for pool in previous['pools']:
            for player in pool['players']:
                by_id[player['id']] = player
        qualified = [by_id[pid] for pid in previous['qualified_ids']]
        if phase_number == 2:
            phase = generate_phase2(qualified, tournament, rng)
        else:
            phase = generate_phase3(qualified, tournament)

    king_data['phases'].append(phase)
    return phase


def reset_phase(king_data: Dict, phase_number: int) -> Dict:
    """Drop a phase and every phase after it."""
    king_data['phases'] = [p for p in king_data['phases'] if p['phase_number'] < phase_number]
    king_data['winner'] = None
    return king_data


def get_king_winner(king_data: Dict) -> Optional[Dict]:
    """The King: first of the completed final phase."""
    final = next((p for p in king_data.get('phases', []) if p['phase_number'] == 3), None)
    if not final or final['status'] != COMPLETED or not final['ranking']:
        return None
    return final['ranking'][0]
