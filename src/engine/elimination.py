"""
Single elimination bracket generation and result propagation.

Qualified teams arrive seeded (best first). When the count is not a power of
two, the lowest seeds play a preliminary round while the top seeds get byes.
"""
import logging
import math
from typing import List, Dict, Optional

from engine.scoring import apply_match_result, sets_to_win_for


logger = logging.getLogger(__name__)

PRELIMINARY_ROUND = 'Preliminary Round'
THIRD_PLACE = 'Third Place'


class BracketError(ValueError):
    """Raised when a bracket cannot be built or updated."""


def get_round_name(teams_in_round: int) -> str:
    """Get the name of a round based on number of teams."""
    if teams_in_round == 2:
        return "Final"
    elif teams_in_round == 4:
        return "Semifinal"
    elif teams_in_round == 8:
        return "Quarterfinal"
    else:
        return f"Round of {teams_in_round}"


def calculate_bracket_size(num_teams: int) -> int:
    """Calculate the bracket size (next power of 2)."""
    if num_teams <= 0:
        return 0
    return 2 ** math.ceil(math.log2(num_teams))


def calculate_bracket_structure(num_teams: int) -> Dict:
    """
    Describe the shape of a bracket for num_teams.

    Returns dict with:
    - 'total_slots': next power of two
    - 'byes': teams skipping the preliminary round
    - 'teams_playing_preliminary', 'preliminary_matches'
    - 'main_bracket_size': entries in the first main round
    - 'first_main_round_name'
    """
    if num_teams < 2:
        raise BracketError('At least 2 teams are needed for an elimination bracket.')

    total_slots = calculate_bracket_size(num_teams)
    byes = total_slots - num_teams
    teams_playing_preliminary = num_teams - byes
    main_bracket_size = total_slots // 2
    return {
        'total_slots': total_slots,
        'byes': byes,
        'teams_playing_preliminary': teams_playing_preliminary,
        'preliminary_matches': teams_playing_preliminary // 2,
        'main_bracket_size': main_bracket_size,
        'first_main_round_name': get_round_name(main_bracket_size) if main_bracket_size > 1 else None,
    }


def _generate_bracket_order(bracket_size: int) -> List[int]:
    """
    Generate the standard tournament bracket order.

    For 8 entries: [1, 8, 4, 5, 2, 7, 3, 6]
    Pairs 1v8, 4v5, 2v7, 3v6; consecutive winners then meet so that
    seeds 1 and 2 can only meet in the final.
    """
    if bracket_size <= 2:
        return list(range(1, bracket_size + 1))
    upper_half = _generate_bracket_order(bracket_size // 2)
    result = []
    for seed in upper_half:
        result.extend([seed, bracket_size + 1 - seed])
    return result


def _team_ref(team: Dict) -> Dict:
    return {'id': team.get('team_id', team.get('id')), 'name': team.get('team_name', team.get('name'))}


def _new_match(number: int, round_name: str, round_index: int, config: Dict) -> Dict:
    return {
        'id': f"M{number}",
        'match_number': number,
        'round': round_name,
        'round_index': round_index,
        'team1': None,
        'team2': None,
        'team1_label': None,
        'team2_label': None,
        'sets_per_match': config.get('sets_per_match', 3),
        'points_per_set': config.get('points_per_set', 21),
        'tie_break_enabled': config.get('tie_break_enabled', False),
        'sets': [],
        'sets_won_team1': 0,
        'sets_won_team2': 0,
        'status': 'pending',
        'winner_id': None,
        'loser_id': None,
        'next_match_id': None,
        'next_match_slot': None,
        'next_loser_match_id': None,
        'next_loser_slot': None,
        'is_final': False,
        'is_third_place': False,
    }


def _fill_slot(match: Dict, slot: int, entry: Dict):
    """Place a bracket entry (a team or the winner of an earlier match) in a slot."""
    if entry['kind'] == 'team':
        match[f'team{slot}'] = entry['team']
        match[f'team{slot}_label'] = entry['team']['name']
    else:
        source = entry['match']
        source['next_match_id'] = match['id']
        source['next_match_slot'] = slot
        match[f'team{slot}_label'] = f"Winner {source['id']}"


def generate_elimination_bracket(qualified_teams: List[Dict], config: Optional[Dict] = None) -> List[Dict]:
    """
    Build every match of a single elimination bracket.

    Args:
        qualified_teams: seeded list (best first) of {'team_id', 'team_name'} or {'id', 'name'}
        config: {'sets_per_match', 'points_per_set', 'tie_break_enabled'}

    Returns:
        Matches in play order. Each match links its winner to the next match
        (next_match_id / next_match_slot); semifinal losers are linked to the
        third place match.
    """
    config = config or {}
    structure = calculate_bracket_structure(len(qualified_teams))
    teams = [_team_ref(t) for t in qualified_teams]
    byes = structure['byes']
    n = len(teams)

    matches = []
    counter = 1
    round_index = 0

    # Preliminary round: seed byes+i meets seed n-1-i
    first_round_name = PRELIMINARY_ROUND if byes else get_round_name(structure['total_slots'])
    preliminary = []
    for i in range(structure['preliminary_matches']):
        match = _new_match(counter, first_round_name, round_index, config)
        _fill_slot(match, 1, {'kind': 'team', 'team': teams[byes + i]})
        _fill_slot(match, 2, {'kind': 'team', 'team': teams[n - 1 - i]})
        preliminary.append(match)
        counter += 1
    matches.extend(preliminary)

    entries = [{'kind': 'team', 'team': team} for team in teams[:byes]]
    entries += [{'kind': 'match', 'match': m} for m in preliminary]

    if len(entries) == 1:
        preliminary[0]['round'] = get_round_name(2)
        preliminary[0]['is_final'] = True
        logger.info('Generated elimination bracket: 1 match for 2 teams')
        return matches

    # First main round: entry i meets entry size-1-i, laid out in bracket order
    order = _generate_bracket_order(len(entries))
    current = [(entries[order[k] - 1], entries[order[k + 1] - 1]) for k in range(0, len(order), 2)]

    semifinals = preliminary if len(preliminary) == 2 and len(entries) == 2 else []
    while current:
        round_index += 1
        round_name = get_round_name(len(current) * 2)
        round_matches = []
        is_final_round = len(current) == 1
        if is_final_round and len(semifinals) == 2:
            third = _new_match(counter, THIRD_PLACE, round_index, config)
            third['is_third_place'] = True
            for slot, semi in enumerate(semifinals, start=1):
                semi['next_loser_match_id'] = third['id']
                semi['next_loser_slot'] = slot
                third[f'team{slot}_label'] = f"Loser {semi['id']}"
            matches.append(third)
            counter += 1

        for first, second in current:
            match = _new_match(counter, round_name, round_index, config)
            _fill_slot(match, 1, first)
            _fill_slot(match, 2, second)
            match['is_final'] = is_final_round
            round_matches.append(match)
            counter += 1
        matches.extend(round_matches)

        if is_final_round:
            break
        semifinals = round_matches if len(round_matches) == 2 else []
        winners = [{'kind': 'match', 'match': m} for m in round_matches]
        current = [(winners[k], winners[k + 1]) for k in range(0, len(winners), 2)]

    logger.info('Generated elimination bracket: %d matches for %d teams (%d byes)', len(matches), n, byes)
    return matches


def find_match(matches: List[Dict], match_id: str) -> Dict:
    for match in matches:
        if match['id'] == match_id:
            return match
    raise BracketError(f'Match {match_id} not found.')


def _team_by_id(match: Dict, team_id) -> Optional[Dict]:
    for slot in ('team1', 'team2'):
        if match.get(slot) and match[slot]['id'] == team_id:
            return match[slot]
    return None


def _place(matches: List[Dict], target_id: Optional[str], slot: Optional[int], team: Optional[Dict]):
    if not target_id or not slot or not team:
        return
    target = find_match(matches, target_id)
    current = target.get(f'team{slot}')
    if current and current['id'] == team['id']:
        return
    if target['status'] == 'completed':
        raise BracketError(f"Match {target['id']} is already completed; reset it before changing its teams.")
    target[f'team{slot}'] = dict(team)


def _unplace(matches: List[Dict], target_id: Optional[str], slot: Optional[int], source: Dict):
    if not target_id or not slot:
        return
    target = find_match(matches, target_id)
    current = target.get(f'team{slot}')
    source_ids = {(source.get(f'team{s}') or {}).get('id') for s in (1, 2)}
    if not current or current['id'] not in source_ids:
        return
    if target['status'] == 'completed':
        raise BracketError(f"Match {target['id']} is already completed; reset it before changing its teams.")
    target[f'team{slot}'] = None


def propagate_match_result(matches: List[Dict], match_id: str) -> List[Dict]:
    """
    Send the winner (and, for semifinals, the loser) of a completed match to its next matches.

    A match that is no longer completed takes its teams back out of the next matches.
    """
    match = find_match(matches, match_id)
    if match['status'] != 'completed' or not match.get('winner_id'):
        _unplace(matches, match.get('next_match_id'), match.get('next_match_slot'), match)
        _unplace(matches, match.get('next_loser_match_id'), match.get('next_loser_slot'), match)
        return matches
    winner = _team_by_id(match, match['winner_id'])
    loser = _team_by_id(match, match['loser_id'])
    _place(matches, match.get('next_match_id'), match.get('next_match_slot'), winner)
    _place(matches, match.get('next_loser_match_id'), match.get('next_loser_slot'), loser)
    return matches


def record_elimination_result(matches: List[Dict], match_id: str, sets: List[Dict]) -> Dict:
    """
    Score an elimination match and propagate its outcome.

    Raises:
        BracketError: the match is unknown or still waits for a team.
    """
    match = find_match(matches, match_id)
    if not match.get('team1') or not match.get('team2'):
        raise BracketError(f'Match {match_id} is waiting for its teams.')
    apply_match_result(match, sets, sets_to_win_for(match['sets_per_match']),
                       match['points_per_set'], match.get('tie_break_enabled', False))
    propagate_match_result(matches, match_id)
    return match


def get_bracket_rounds(matches: List[Dict]) -> List[Dict]:
    """Group matches by round in play order: [{'name', 'matches'}, ...]."""
    rounds = {}
    for match in sorted(matches, key=lambda m: (m['round_index'], m['match_number'])):
        key = (match['round_index'], match['round'])
        rounds.setdefault(key, []).append(match)
    return [{'name': name, 'matches': round_matches} for (_, name), round_matches in rounds.items()]


def get_champion(matches: List[Dict]) -> Optional[Dict]:
    """Winner of the completed final, or None."""
    for match in matches:
        if match.get('is_final') and match['status'] == 'completed':
            return _team_by_id(match, match['winner_id'])
    return None
