"""
Flexible King: individual players progress through admin-configured phases.

Each phase sets a team size, a number of pools and a qualification quota.
Teams are redrawn inside each pool (round robin) or rotated on a grid (KOB).
Between phases the admin may register withdrawals of qualified players and
bring back non-qualified players through repechage.
"""
import logging
import random
from datetime import datetime
from typing import List, Dict, Optional

from engine.phases import (
    PhaseError, NOT_CONFIGURED, CONFIGURED, IN_PROGRESS, COMPLETED,
    shuffle_list, pool_label, find_phase, require_status, previous_phase, previous_phase_completed,
    find_match, all_matches_completed, calculate_player_ranking,
    top_players_per_pool, record_sets_won, king_match, player_ref,
)
from engine.pools import distribute_teams_in_pools, distribute_qualified_in_pools


logger = logging.getLogger(__name__)

ROUND_ROBIN = 'round_robin'
KOB = 'kob'
PHASE_FORMATS = [ROUND_ROBIN, KOB]


def calculate_kob_rounds(teams_per_pool: int) -> int:
    """Rounds needed for a KOB pool: 1 for two teams or fewer, else 2N - 3."""
    if teams_per_pool <= 2:
        return 1
    return teams_per_pool * 2 - 3


def calculate_total_matches(phase_format: str, teams_per_pool: int, number_of_pools: int,
                            estimated_rounds: int, pool_distribution: Optional[List[int]] = None) -> int:
    """Matches a phase will generate; uses the exact distribution when given."""
    sizes = pool_distribution or [teams_per_pool] * number_of_pools
    total = 0
    for teams in sizes:
        if phase_format == ROUND_ROBIN:
            per_round = teams * (teams - 1) // 2
        else:
            per_round = teams // 2
        total += per_round * estimated_rounds
    return total


def build_phase_config(phase_number: int, phase_format: str, total_teams: int, number_of_pools: int,
                       players_per_team: int, total_qualified: int,
                       estimated_rounds: Optional[int] = None, phase_label: str = '') -> Dict:
    """
    Validate and complete a phase configuration.

    Pool and qualification distributions are derived when not given;
    estimated rounds default to the KOB round count of the largest pool.
    """
    if phase_format not in PHASE_FORMATS:
        raise PhaseError(f'Unknown phase format: {phase_format}.')
    if total_teams < 2 or number_of_pools < 1 or players_per_team < 1:
        raise PhaseError('A phase needs at least 2 teams, 1 pool and 1 player per team.')
    if number_of_pools > total_teams // 2:
        raise PhaseError('Every pool needs at least 2 teams.')
    participants = total_teams * players_per_team
    if total_qualified < 1 or total_qualified > participants:
        raise PhaseError(f'Qualified players must be between 1 and {participants}.')

    distribution = distribute_teams_in_pools(total_teams, number_of_pools)
    if estimated_rounds is None:
        estimated_rounds = calculate_kob_rounds(distribution[0])
    return {
        'phase_number': phase_number,
        'phase_label': phase_label or f'{players_per_team}v{players_per_team}',
        'phase_format': phase_format,
        'total_teams': total_teams,
        'number_of_pools': number_of_pools,
        'players_per_team': players_per_team,
        'teams_per_pool': distribution[0],
        'total_qualified': total_qualified,
        'estimated_rounds': estimated_rounds,
        'pool_distribution': distribution,
        'qualified_per_pool_distribution': distribute_qualified_in_pools(total_qualified, number_of_pools),
        'total_matches': calculate_total_matches(phase_format, distribution[0], number_of_pools,
                                                 estimated_rounds, distribution),
    }


def suggest_configurations(player_count: int, fields: int = 3) -> List[Dict]:
    """
    Propose phase cascades whose participant counts chain exactly.

    Returns [{'name', 'phases': [config, ...]}]; empty when no cascade fits.
    """
    suggestions = []
    if player_count < 4 or fields < 1:
        return suggestions

    def pools_for(teams):
        return max(1, min(fields, teams // 3))

    if player_count % 4 == 0 and player_count >= 24:
        teams1 = player_count // 4
        finalists = 8
        semis = max(12, (player_count // 2) // 6 * 6)
        if semis < player_count and semis // 3 >= 4:
            suggestions.append({'name': '4v4 > 3v3 > 2v2', 'phases': [
                build_phase_config(1, ROUND_ROBIN, teams1, pools_for(teams1), 4, semis),
                build_phase_config(2, KOB, semis // 3, 2, 3, finalists),
                build_phase_config(3, KOB, finalists // 2, 1, 2, 1),
            ]})

    if player_count % 3 == 0 and player_count >= 12:
        teams1 = player_count // 3
        finalists = 8 if player_count >= 16 else 4
        suggestions.append({'name': '3v3 > 2v2', 'phases': [
            build_phase_config(1, KOB, teams1, pools_for(teams1), 3, finalists),
            build_phase_config(2, KOB, finalists // 2, 1, 2, 1),
        ]})

    if player_count % 2 == 0 and player_count >= 8:
        teams1 = player_count // 2
        suggestions.append({'name': '2v2', 'phases': [
            build_phase_config(1, KOB, teams1, pools_for(teams1), 2, 1),
        ]})
    return suggestions


def _round_robin_matches(players: List[Dict], pool_id: str, team_size: int, teams_in_pool: int,
                         rounds: int, phase_number: int, rng: Optional[random.Random]) -> List[Dict]:
    matches = []
    number = 1
    for round_number in range(1, rounds + 1):
        shuffled = shuffle_list(players, rng)
        teams = [
            {'name': f"Team {i + 1}", 'members': [player_ref(p) for p in shuffled[i * team_size:(i + 1) * team_size]]}
            for i in range(teams_in_pool)
        ]
        for i in range(len(teams)):
            for j in range(i + 1, len(teams)):
                matches.append(king_match(f"match-{pool_id}-{number}", number, pool_id, round_number,
                                          f"Phase {phase_number} - Round {round_number}",
                                          teams[i], teams[j], f"{team_size}v{team_size}"))
                number += 1
    return matches


def kob_rotation_grid(player_count: int, team_size: int, rounds: int) -> List[List[List[int]]]:
    """
    Starting player index of each team, per round and match.

    Round r, match m: teams start at r + 2m*size and r + (2m+1)*size
    (modulo player_count); a team is team_size consecutive players.
    """
    matches_per_round = player_count // (2 * team_size)
    grid = []
    for r in range(rounds):
        grid.append([
            [(r + 2 * m * team_size) % player_count, (r + (2 * m + 1) * team_size) % player_count]
            for m in range(matches_per_round)
        ])
    return grid


def _kob_matches(players: List[Dict], pool_id: str, pool_name: str, team_size: int, rounds: int,
                 phase_number: int) -> List[Dict]:
    count = len(players)
    matches = []
    number = 1
    for round_index, round_matches in enumerate(kob_rotation_grid(count, team_size, rounds)):
        round_number = round_index + 1
        for start1, start2 in round_matches:
            side1 = [player_ref(players[(start1 + i) % count]) for i in range(team_size)]
            side2 = [player_ref(players[(start2 + i) % count]) for i in range(team_size)]
            matches.append(king_match(
                f"match-{pool_id}-{number}", number, pool_id, round_number,
                f"Phase {phase_number} - Round {round_number}",
                {'name': f"{pool_name} - Round {round_number}-{number}A", 'members': side1},
                {'name': f"{pool_name} - Round {round_number}-{number}B", 'members': side2},
                f"{team_size}v{team_size}"))
            number += 1
    return matches


def generate_phase_pools_and_matches(phase: Dict, registered_players: List[Dict],
                                     rng: Optional[random.Random] = None) -> Dict:
    """
    Deal the phase participants into pools and generate every match.

    Raises:
        PhaseError: a participant id does not match a registered player.
    """
    config = phase['config']
    participant_ids = phase['participant_ids']
    participants = [p for p in registered_players if p['id'] in participant_ids]
    if len(participants) != len(participant_ids):
        raise PhaseError(f'Player count mismatch: expected {len(participant_ids)}, got {len(participants)}.')

    shuffled = shuffle_list(participants, rng)
    distribution = config.get('pool_distribution') or distribute_teams_in_pools(
        config['total_teams'], config['number_of_pools'])
    team_size = config['players_per_team']

    pools = []
    matches = []
    start = 0
    for index in range(config['number_of_pools']):
        pid, name = pool_label(index)
        teams_in_pool = distribution[index]
        pool_players = shuffled[start:start + teams_in_pool * team_size]
        start += teams_in_pool * team_size

        if config['phase_format'] == ROUND_ROBIN:
            pool_matches = _round_robin_matches(pool_players, pid, team_size, teams_in_pool,
                                                config['estimated_rounds'], config['phase_number'], rng)
        else:
            pool_matches = _kob_matches(pool_players, pid, name, team_size,
                                        config['estimated_rounds'], config['phase_number'])
        pools.append({'id': pid, 'name': name, 'players': [player_ref(p) for p in pool_players],
                      'player_count': len(pool_players)})
        matches.extend(pool_matches)

    logger.info('Flexible King phase %d: %d matches generated (%d pools)',
                config['phase_number'], len(matches), len(pools))
    return {'pools': pools, 'matches': matches}


def calculate_phase_qualifiers(pools: List[Dict], matches: List[Dict],
                               qualified_per_pool_distribution: List[int]) -> List[Dict]:
    """Top players of each pool by wins, per the qualification quota of the pool."""
    qualifiers = top_players_per_pool(pools, matches, qualified_per_pool_distribution)
    logger.info('Flexible King: %d qualifiers', len(qualifiers))
    return qualifiers


def calculate_repechage_candidates(pools: List[Dict], matches: List[Dict], qualified_ids: List[str]) -> List[Dict]:
    """Players who did not qualify, best first by wins."""
    players = [p for pool in pools for p in pool['players'] if p['id'] not in qualified_ids]
    relevant = [p['id'] for p in players]
    ranking = [entry for entry in calculate_player_ranking(matches, players) if entry['player_id'] in relevant]
    ranking.sort(key=lambda x: -x['wins'])
    for index, entry in enumerate(ranking):
        entry['rank'] = index + 1
    return ranking


def initialize_flexible_king(phase_configs: List[Dict]) -> Dict:
    phases = []
    for index, config in enumerate(phase_configs):
        phases.append({
            'id': f"phase-{index + 1}",
            'phase_number': config['phase_number'],
            'status': NOT_CONFIGURED,
            'config': config,
            'participant_ids': [],
            'qualified_ids': [],
            'withdrawn_ids': [],
            'repeched_ids': [],
            'pools': [],
            'matches': [],
            'ranking': [],
            'repechage_candidates': [],
        })
    return {
        'phases': phases,
        'current_phase_number': None,
        'winner': None,
        'is_frozen': False,
        'created_at': datetime.now().isoformat(),
    }


def update_phase_configuration(data: Dict, phase_number: int, config: Dict) -> Dict:
    phase = find_phase(data, phase_number)
    require_status(phase, NOT_CONFIGURED, CONFIGURED)
    phase['config'] = config
    phase['status'] = CONFIGURED
    phase['configured_at'] = datetime.now().isoformat()
    return data


def validate_phase_start(phase: Dict):
    """
    Raises:
        PhaseError: the phase already ran, or its participants do not fill its teams.
    """
    if phase['status'] not in (CONFIGURED, NOT_CONFIGURED):
        raise PhaseError(f"Phase {phase['phase_number']} is already {phase['status']}.")
    config = phase['config']
    expected = config['total_teams'] * config['players_per_team']
    if len(phase['participant_ids']) != expected:
        raise PhaseError(f"Expected {expected} players, but got {len(phase['participant_ids'])}.")


def validate_phases_configuration(phases: List[Dict]) -> List[str]:
    """Return the errors in the chaining of phases (empty when coherent)."""
    errors = []
    ordered = sorted(phases, key=lambda p: p['phase_number'])
    for current, following in zip(ordered, ordered[1:]):
        qualified = current['config']['total_qualified']
        expected = following['config']['total_teams'] * following['config']['players_per_team']
        if qualified != expected:
            errors.append(f"Phase {current['phase_number']} qualifies {qualified} players, "
                          f"but Phase {following['phase_number']} expects {expected} players")
    return errors


def advancing_ids(phase: Dict) -> List[str]:
    """Players moving on from a completed phase: qualified minus withdrawn, plus repeched."""
    withdrawn = set(phase.get('withdrawn_ids', []))
    ids = [pid for pid in phase['qualified_ids'] if pid not in withdrawn]
    ids += [pid for pid in phase.get('repeched_ids', []) if pid not in ids]
    return ids


def start_phase(data: Dict, phase_number: int, registered_players: List[Dict],
                rng: Optional[random.Random] = None) -> Dict:
    """
    Fill the phase participants and generate its pools and matches.

    Phase 1 takes every registered player; later phases take the players
    advancing from the completed previous phase.
    """
    if data.get('is_frozen'):
        raise PhaseError('The tournament ranking is frozen.')
    phase = find_phase(data, phase_number)
    if not previous_phase_completed(data, phase_number):
        raise PhaseError(f'Phase {phase_number - 1} must be completed first.')
    previous = previous_phase(data, phase_number)
    if previous is None:
        phase['participant_ids'] = [p['id'] for p in registered_players]
        pool_source = registered_players
    else:
        phase['participant_ids'] = advancing_ids(previous)
        pool_source = [p for pool in previous['pools'] for p in pool['players']]

    validate_phase_start(phase)
    generated = generate_phase_pools_and_matches(phase, pool_source, rng)
    phase.update(generated)
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
    """
    Close a phase once every match is played and compute who goes on.

    Stores qualified_ids, the phase ranking and the repechage candidates.
    """
    phase = find_phase(data, phase_number)
    require_status(phase, IN_PROGRESS)
    if not all_matches_completed(phase['matches']):
        raise PhaseError(f'Phase {phase_number} still has matches to play.')

    config = phase['config']
    quotas = config.get('qualified_per_pool_distribution') or distribute_qualified_in_pools(
        config['total_qualified'], config['number_of_pools'])
    qualifiers = calculate_phase_qualifiers(phase['pools'], phase['matches'], quotas)
    phase['qualified_ids'] = [p['id'] for p in qualifiers]
    phase['ranking'] = calculate_player_ranking(phase['matches'])
    phase['repechage_candidates'] = calculate_repechage_candidates(
        phase['pools'], phase['matches'], phase['qualified_ids'])
    phase['status'] = COMPLETED
    phase['completed_at'] = datetime.now().isoformat()
    logger.info('Flexible King phase %d completed: %d qualifiers', phase_number, len(phase['qualified_ids']))
    return phase


def set_withdrawals(data: Dict, phase_number: int, withdrawn_ids: List[str]) -> Dict:
    """Mark qualified players of a completed phase who will not play the next one."""
    phase = find_phase(data, phase_number)
    require_status(phase, COMPLETED)
    unknown = [pid for pid in withdrawn_ids if pid not in phase['qualified_ids']]
    if unknown:
        raise PhaseError(f"Not qualified in phase {phase_number}: {', '.join(unknown)}.")
    phase['withdrawn_ids'] = list(withdrawn_ids)
    return phase


def set_repechages(data: Dict, phase_number: int, repeched_ids: List[str]) -> Dict:
    """Bring non-qualified players of a completed phase into the next one."""
    phase = find_phase(data, phase_number)
    require_status(phase, COMPLETED)
    candidates = {c['player_id'] for c in phase.get('repechage_candidates', [])}
    unknown = [pid for pid in repeched_ids if pid not in candidates]
    if unknown:
        raise PhaseError(f"Not eligible for repechage: {', '.join(unknown)}.")
    phase['repeched_ids'] = list(repeched_ids)
    return phase


def reset_phase(data: Dict, phase_number: int) -> Dict:
    """Return a phase (and any later started phase) to configured."""
    if data.get('is_frozen'):
        raise PhaseError('The tournament ranking is frozen.')
    find_phase(data, phase_number)
    for phase in data['phases']:
        if phase['phase_number'] < phase_number or phase['status'] == NOT_CONFIGURED:
            continue
        phase.update(status=CONFIGURED, participant_ids=[], qualified_ids=[], withdrawn_ids=[],
                     repeched_ids=[], pools=[], matches=[], ranking=[], repechage_candidates=[])
    data['current_phase_number'] = phase_number - 1 if phase_number > 1 else None
    data['winner'] = None
    return data


def freeze(data: Dict) -> Dict:
    """Lock the results once the last phase is completed and store the winner."""
    if not data.get('phases'):
        raise PhaseError('No phases configured.')
    last = max(data['phases'], key=lambda p: p['phase_number'])
    if last['status'] != COMPLETED:
        raise PhaseError(f"Phase {last['phase_number']} must be completed first.")
    data['winner'] = last['ranking'][0] if last['ranking'] else None
    data['is_frozen'] = True
    data['frozen_at'] = datetime.now().isoformat()
    return data
