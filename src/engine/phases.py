"""
Building blocks shared by the King formats: phase lookup and status checks,
pool labels, individual player standings and per-pool qualification.
"""
import random
import string
from typing import List, Dict, Optional, Tuple


NOT_CONFIGURED = 'not_configured'
CONFIGURED = 'configured'
IN_PROGRESS = 'in_progress'
COMPLETED = 'completed'


class PhaseError(ValueError):
    """Raised when a phase operation is not allowed in the current state."""


def shuffle_list(items: List, rng: Optional[random.Random] = None) -> List:
    """Return a shuffled copy of items."""
    shuffled = list(items)
    (rng or random).shuffle(shuffled)
    return shuffled


def pool_label(index: int, offset: int = 0) -> Tuple[str, str]:
    """Return (pool_id, pool_name) for the index-th pool, e.g. ('pool-A', 'Pool A')."""
    letter = string.ascii_uppercase[index + offset]
    return f"pool-{letter}", f"Pool {letter}"


def find_phase(data: Dict, phase_number: int) -> Dict:
    for phase in data.get('phases', []):
        if phase['phase_number'] == phase_number:
            return phase
    raise PhaseError(f'Phase {phase_number} not found.')


def require_status(phase: Dict, *allowed: str):
    if phase['status'] not in allowed:
        raise PhaseError(f"Phase {phase['phase_number']} is {phase['status']}.")


def previous_phase(data: Dict, phase_number: int) -> Optional[Dict]:
    """The phase before phase_number, or None for the first phase."""
    if phase_number <= 1:
        return None
    return find_phase(data, phase_number - 1)


def previous_phase_completed(data: Dict, phase_number: int) -> bool:
    """True for the first phase, or when the phase before phase_number is completed."""
    previous = previous_phase(data, phase_number)
    return previous is None or previous['status'] == COMPLETED


def all_matches_completed(matches: List[Dict]) -> bool:
    return bool(matches) and all(m.get('status') == COMPLETED for m in matches)


def phase_progress(phase: Dict) -> Dict:
    matches = phase.get('matches', [])
    completed = sum(1 for m in matches if m.get('status') == COMPLETED)
    return {
        'phase_number': phase['phase_number'],
        'status': phase['status'],
        'completed_matches': completed,
        'total_matches': len(matches),
    }


def find_match(matches: List[Dict], match_id: str) -> Dict:
    for match in matches:
        if match['id'] == match_id:
            return match
    raise PhaseError(f'Match {match_id} not found.')


def record_sets_won(match: Dict, sets_won_team1: int, sets_won_team2: int,
                    sets: Optional[List[Dict]] = None) -> Dict:
    """
    Record a result given as sets won by each side.

    The side with more sets wins; equal counts are a draw (winner_team None).
    """
    if sets_won_team1 < 0 or sets_won_team2 < 0:
        raise PhaseError('Sets won cannot be negative.')
    match['sets_won_team1'] = sets_won_team1
    match['sets_won_team2'] = sets_won_team2
    if sets is not None:
        match['sets'] = sets
    if sets_won_team1 > sets_won_team2:
        match['winner_team'] = 1
    elif sets_won_team2 > sets_won_team1:
        match['winner_team'] = 2
    else:
        match['winner_team'] = None
    match['status'] = COMPLETED
    return match


def _player_entry(player: Dict, pool_id: Optional[str] = None) -> Dict:
    return {
        'player_id': player['id'],
        'pseudo': player.get('pseudo', player['id']),
        'pool_id': pool_id,
        'matches_played': 0,
        'wins': 0,
        'losses': 0,
        'sets_won': 0,
        'sets_lost': 0,
        'set_diff': 0,
    }


def calculate_player_ranking(matches: List[Dict], players: Optional[List[Dict]] = None,
                             pool_id: Optional[str] = None) -> List[Dict]:
    """
    Individual standings from completed matches.

    Every member of a team shares the team's result. Players listed in
    players appear even without a completed match.
    Ranking: wins -> set differential -> sets won
    """
    scores = {}
    for player in players or []:
        scores[player['id']] = _player_entry(player, pool_id)

    for match in matches:
        if match.get('status') != COMPLETED:
            continue
        won = {1: match.get('sets_won_team1', 0), 2: match.get('sets_won_team2', 0)}
        for side, other in ((1, 2), (2, 1)):
            for member in match[f'team{side}']['members']:
                entry = scores.setdefault(member['id'], _player_entry(member, match.get('pool_id')))
                entry['matches_played'] += 1
                entry['sets_won'] += won[side]
                entry['sets_lost'] += won[other]
                if match.get('winner_team') == side:
                    entry['wins'] += 1
                elif match.get('winner_team') == other:
                    entry['losses'] += 1

    for entry in scores.values():
        entry['set_diff'] = entry['sets_won'] - entry['sets_lost']

    ranking = sorted(scores.values(), key=lambda x: (-x['wins'], -x['set_diff'], -x['sets_won']))
    for index, entry in enumerate(ranking):
        entry['rank'] = index + 1
    return ranking


def top_players_per_pool(pools: List[Dict], matches: List[Dict], quotas: List[int]) -> List[Dict]:
    """
    Take the best quotas[i] players of the i-th pool, ranked by wins.

    Players level on wins keep their pool order.
    """
    qualifiers = []
    for index, pool in enumerate(pools):
        quota = quotas[index] if index < len(quotas) else 0
        pool_matches = [m for m in matches if m.get('pool_id') == pool['id']]
        ranking = calculate_player_ranking(pool_matches, pool['players'], pool['id'])
        order = {p['id']: i for i, p in enumerate(pool['players'])}
        ranking.sort(key=lambda x: (-x['wins'], order.get(x['player_id'], len(order))))
        by_id = {p['id']: p for p in pool['players']}
        qualifiers.extend(by_id[entry['player_id']] for entry in ranking[:quota]
                          if entry['player_id'] in by_id)
    return qualifiers


def king_match(match_id: str, number: int, pool_id: str, round_number: int, round_name: str,
               team1: Dict, team2: Dict, team_format: str) -> Dict:
    """A pending match between two teams of individual players."""
    return {
        'id': match_id,
        'match_number': number,
        'pool_id': pool_id,
        'round_number': round_number,
        'round_name': round_name,
        'format': team_format,
        'team1': team1,
        'team2': team2,
        'sets': [],
        'sets_won_team1': 0,
        'sets_won_team2': 0,
        'winner_team': None,
        'status': 'pending',
    }


def player_ref(player: Dict) -> Dict:
    return {'id': player['id'], 'pseudo': player.get('pseudo', player['id'])}
