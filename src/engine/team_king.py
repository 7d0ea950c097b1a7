"""
Team King: registered teams stay together through every phase.

Each phase splits the participating teams into pools where they meet on a
KOB rotation (circle method); the best teams of each pool go on.
"""
import logging
import random
from datetime import datetime
from typing import List, Dict, Optional

from engine.phases import (
    PhaseError, CONFIGURED, IN_PROGRESS, COMPLETED,
    shuffle_list, pool_label, find_phase, require_status, previous_phase, previous_phase_completed,
    find_match, all_matches_completed, record_sets_won,
)
from engine.pools import distribute_teams_in_pools, distribute_qualified_in_pools


logger = logging.getLogger(__name__)

GAME_MODES = {'6v6': 6, '5v5': 5, '4v4': 4, '3v3': 3, '2v2': 2}
DEFAULT_ROUNDS = 5


def calculate_kob_rounds(teams_per_pool: int) -> int:
    """Rounds for every team to meet every other once: n - 1 when even, n when odd."""
    if teams_per_pool <= 1:
        return 0
    if teams_per_pool == 2:
        return 1
    if teams_per_pool % 2 == 0:
        return teams_per_pool - 1
    return teams_per_pool


def calculate_total_matches(teams_per_pool: int, number_of_pools: int, estimated_rounds: int,
                            pool_distribution: Optional[List[int]] = None) -> int:
    sizes = pool_distribution or [teams_per_pool] * number_of_pools
    return sum((teams // 2) * estimated_rounds for teams in sizes)


def team_ref(team: Dict) -> Dict:
    return {
        'id': team['id'],
        'name': team['name'],
        'captain_id': team.get('captain_id'),
        'member_count': len(team.get('members', [])),
    }


def generate_kob_matches(pool_teams: List[Dict], pool_id: str, pool_name: str, rounds: int) -> List[Dict]:
    """
    Circle method: slot 0 stays put while the others rotate one place per
    round, and slot k meets slot n-1-k. An odd pool gets an empty slot, so
    one team rests each round.
    """
    count = len(pool_teams)
    if count < 2:
        return []
    slots = list(range(count)) + ([None] if count % 2 else [])
    size = len(slots)
    matches = []
    number = 1
    for round_index in range(rounds):
        shift = round_index % (size - 1)
        rotated = [slots[0]] + [slots[((i - 1 + shift) % (size - 1)) + 1] for i in range(1, size)]
        for k in range(size // 2):
            first, second = rotated[k], rotated[size - 1 - k]
            if first is None or second is None:
                continue
            matches.append({
                'id': f"match-{pool_id}-{number}",
                'match_number': number,
                'pool_id': pool_id,
                'pool_name': pool_name,
                'round_number': round_index + 1,
                'round_name': f"Round {round_index + 1}",
                'team1': pool_teams[first],
                'team2': pool_teams[second],
                'sets': [],
                'sets_won_team1': 0,
                'sets_won_team2': 0,
                'winner_team': None,
                'status': 'pending',
            })
            number += 1
    return matches


def generate_phase_pools_and_matches(phase: Dict, registered_teams: List[Dict],
                                     rng: Optional[random.Random] = None) -> Dict:
    """
    Raises:
        PhaseError: a participating team id does not match a registered team.
    """
    config = phase['config']
    participating = phase['participating_team_ids']
    teams = [team_ref(t) for t in registered_teams if t['id'] in participating]
    if len(teams) != len(participating):
        raise PhaseError(f'Team count mismatch: expected {len(participating)}, got {len(teams)}.')

    shuffled = shuffle_list(teams, rng)
    distribution = config.get('pool_distribution') or distribute_teams_in_pools(
        config['total_teams'], config['number_of_pools'])
    rounds = config.get('estimated_rounds') or DEFAULT_ROUNDS

    pools = []
    matches = []
    start = 0
    for index in range(config['number_of_pools']):
        pid, name = pool_label(index)
        pool_teams = shuffled[start:start + distribution[index]]
        start += distribution[index]
        pools.append({'id': pid, 'name': name, 'teams': pool_teams, 'team_count': len(pool_teams)})
        matches.extend(generate_kob_matches(pool_teams, pid, name, rounds))

    logger.info('Team King phase %d: %d matches generated (%d pools)',
                config['phase_number'], len(matches), len(pools))
    return {'pools': pools, 'matches': matches}


def calculate_team_rankings(pools: List[Dict], matches: List[Dict]) -> List[Dict]:
    """
    Rank teams across all pools.

    Ranking: wins -> set differential -> point differential
    """
    scores = {}
    for pool in pools:
        for team in pool['teams']:
            scores[team['id']] = {
                'team_id': team['id'],
                'team_name': team['name'],
                'captain_id': team.get('captain_id'),
                'pool_id': pool['id'],
                'pool_name': pool['name'],
                'wins': 0,
                'losses': 0,
                'sets_won': 0,
                'sets_lost': 0,
                'set_diff': 0,
                'points_won': 0,
                'points_lost': 0,
                'point_diff': 0,
            }

    for match in matches:
        if match.get('status') != COMPLETED:
            continue
        first = scores.get(match['team1']['id'])
        second = scores.get(match['team2']['id'])
        if not first or not second:
            continue
        won1 = match.get('sets_won_team1', 0)
        won2 = match.get('sets_won_team2', 0)
        if won1 > won2:
            first['wins'] += 1
            second['losses'] += 1
        elif won2 > won1:
            second['wins'] += 1
            first['losses'] += 1
        first['sets_won'] += won1
        first['sets_lost'] += won2
        second['sets_won'] += won2
        second['sets_lost'] += won1
        for set_score in match.get('sets') or []:
            first['points_won'] += set_score['score1']
            first['points_lost'] += set_score['score2']
            second['points_won'] += set_score['score2']
            second['points_lost'] += set_score['score1']

    for entry in scores.values():
        entry['set_diff'] = entry['sets_won'] - entry['sets_lost']
        entry['point_diff'] = entry['points_won'] - entry['points_lost']

    rankings = sorted(scores.values(), key=lambda x: (-x['wins'], -x['set_diff'], -x['point_diff']))
    for index, entry in enumerate(rankings):
        entry['rank'] = index + 1
    return rankings


def calculate_phase_qualifiers(pools: List[Dict], matches: List[Dict],
                               qualified_per_pool_distribution: List[int]) -> List[str]:
    """Ids of the best teams of each pool, per the pool's quota."""
    rankings = calculate_team_rankings(pools, matches)
    qualified = []
    for index, pool in enumerate(pools):
        quota = qualified_per_pool_distribution[index] if index < len(qualified_per_pool_distribution) else 0
        pool_rankings = [r for r in rankings if r['pool_id'] == pool['id']]
        qualified.extend(r['team_id'] for r in pool_rankings[:quota])
    logger.info('Team King: %d qualified teams', len(qualified))
    return qualified


def get_eliminated_teams(participating_team_ids: List[str], qualified_team_ids: List[str]) -> List[str]:
    return [tid for tid in participating_team_ids if tid not in qualified_team_ids]


def build_phase_config(phase_number: int, total_teams: int, number_of_pools: int, total_qualified: int,
                       estimated_rounds: Optional[int] = None, phase_label: str = '') -> Dict:
    if total_teams < 2 or number_of_pools < 1:
        raise PhaseError('A phase needs at least 2 teams and 1 pool.')
    if number_of_pools > total_teams // 2:
        raise PhaseError('Every pool needs at least 2 teams.')
    if total_qualified < 1 or total_qualified > total_teams:
        raise PhaseError(f'Qualified teams must be between 1 and {total_teams}.')
    distribution = distribute_teams_in_pools(total_teams, number_of_pools)
    if estimated_rounds is None:
        estimated_rounds = calculate_kob_rounds(distribution[0]) or DEFAULT_ROUNDS
    return {
        'phase_number': phase_number,
        'phase_label': phase_label or f'Phase {phase_number}',
        'total_teams': total_teams,
        'number_of_pools': number_of_pools,
        'teams_per_pool': distribution[0],
        'total_qualified': total_qualified,
        'estimated_rounds': estimated_rounds,
        'pool_distribution': distribution,
        'qualified_per_pool_distribution': distribute_qualified_in_pools(total_qualified, number_of_pools),
        'total_matches': calculate_total_matches(distribution[0], number_of_pools, estimated_rounds, distribution),
    }


def create_phase(phase_number: int, config: Dict, participating_team_ids: Optional[List[str]] = None) -> Dict:
    now = datetime.now().isoformat()
    return {
        'id': f"phase-{phase_number}",
        'phase_number': phase_number,
        'status': CONFIGURED,
        'config': config,
        'participating_team_ids': list(participating_team_ids or []),
        'qualified_team_ids': [],
        'eliminated_team_ids': [],
        'pools': [],
        'matches': [],
        'rankings': [],
        'created_at': now,
        'configured_at': now,
    }


def initialize_team_king(game_mode: str = '4v4', sets_per_match: int = 2, points_per_set: int = 21,
                         tie_break_enabled: bool = False, phase_configs: Optional[List[Dict]] = None) -> Dict:
    if game_mode not in GAME_MODES:
        raise PhaseError(f'Unknown game mode: {game_mode}.')
    return {
        'game_mode': game_mode,
        'players_per_team': GAME_MODES[game_mode],
        'sets_per_match': sets_per_match,
        'points_per_set': points_per_set,
        'tie_break_enabled': tie_break_enabled,
        'phases': [create_phase(c['phase_number'], c) for c in (phase_configs or [])],
        'current_phase_number': None,
        'winner_team': None,
        'final_rankings': [],
        'is_frozen': False,
        'created_at': datetime.now().isoformat(),
    }


def validate_phases_configuration(phases: List[Dict]) -> List[str]:
    errors = []
    ordered = sorted(phases, key=lambda p: p['phase_number'])
    for current, following in zip(ordered, ordered[1:]):
        if current['config']['total_qualified'] != following['config']['total_teams']:
            errors.append(f"Phase {current['phase_number']} qualifies {current['config']['total_qualified']} teams, "
                          f"but Phase {following['phase_number']} expects {following['config']['total_teams']} teams")
    return errors


def start_phase(data: Dict, phase_number: int, registered_teams: List[Dict],
                rng: Optional[random.Random] = None) -> Dict:
    """Phase 1 takes every registered team; later phases the previous phase's qualifiers."""
    if data.get('is_frozen'):
        raise PhaseError('The tournament ranking is frozen.')
    phase = find_phase(data, phase_number)
    require_status(phase, CONFIGURED)
    if not previous_phase_completed(data, phase_number):
        raise PhaseError(f'Phase {phase_number - 1} must be completed first.')
    previous = previous_phase(data, phase_number)
    if previous is None:
        phase['participating_team_ids'] = [t['id'] for t in registered_teams]
    else:
        phase['participating_team_ids'] = list(previous['qualified_team_ids'])

    expected = phase['config']['total_teams']
    if len(phase['participating_team_ids']) != expected:
        raise PhaseError(f"Expected {expected} teams, but got {len(phase['participating_team_ids'])}.")

    phase.update(generate_phase_pools_and_matches(phase, registered_teams, rng))
    phase['status'] = IN_PROGRESS
    phase['started_at'] = datetime.now().isoformat()
    data['current_phase_number'] = phase_number
    return phase


def record_match_result(data: Dict, phase_number: int, match_id: str, sets_won_team1: int,
                        sets_won_team2: int, sets: Optional[List[Dict]] = None) -> Dict:
    phase = find_phase(data, phase_number)
    require_status(phase, IN_PROGRESS)
    return record_sets_won(find_match(phase['matches'], match_id), sets_won_team1, sets_won_team2, sets)


def complete_phase(data: Dict, phase_number: int) -> Dict:
    phase = find_phase(data, phase_number)
    require_status(phase, IN_PROGRESS)
    if not all_matches_completed(phase['matches']):
        raise PhaseError(f'Phase {phase_number} still has matches to play.')
    config = phase['config']
    quotas = config.get('qualified_per_pool_distribution') or distribute_qualified_in_pools(
        config['total_qualified'], config['number_of_pools'])
    phase['rankings'] = calculate_team_rankings(phase['pools'], phase['matches'])
    phase['qualified_team_ids'] = calculate_phase_qualifiers(phase['pools'], phase['matches'], quotas)
    phase['eliminated_team_ids'] = get_eliminated_teams(phase['participating_team_ids'], phase['qualified_team_ids'])
    phase['status'] = COMPLETED
    phase['completed_at'] = datetime.now().isoformat()
    return phase


def reset_phase(data: Dict, phase_number: int) -> Dict:
    if data.get('is_frozen'):
        raise PhaseError('The tournament ranking is frozen.')
    find_phase(data, phase_number)
    for phase in data['phases']:
        if phase['phase_number'] >= phase_number:
            phase.update(status=CONFIGURED, participating_team_ids=[], qualified_team_ids=[],
                         eliminated_team_ids=[], pools=[], matches=[], rankings=[])
    data['current_phase_number'] = phase_number - 1 if phase_number > 1 else None
    data['winner_team'] = None
    return data


def freeze(data: Dict) -> Dict:
    """Store the winner (first of the final phase) and the final rankings."""
    if not data.get('phases'):
        raise PhaseError('No phases configured.')
    last = max(data['phases'], key=lambda p: p['phase_number'])
    if last['status'] != COMPLETED:
        raise PhaseError(f"Phase {last['phase_number']} must be completed first.")
    winner = next((r for r in last['rankings'] if r['rank'] == 1), None)
    data['winner_team'] = winner
    data['final_rankings'] = last['rankings']
    data['is_frozen'] = True
    data['frozen_at'] = datetime.now().isoformat()
    return data
