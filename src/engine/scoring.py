"""
Set and match scoring, pool standings and final rankings.

Matches are plain dicts:
    {'id', 'team1': {'id', 'name'}, 'team2': {...}, 'sets': [{'score1', 'score2'}],
     'status', 'sets_won_team1', 'sets_won_team2', 'winner_id', 'loser_id', ...}
"""
from typing import List, Dict, Optional


TIE_BREAK_POINTS = 15
WIN_POINTS = 3
PARTICIPATION_BONUS = 1
PLACEMENT_BONUS = {1: 15, 2: 9, 3: 4}


def sets_to_win_for(sets_per_match: int) -> int:
    """Sets needed to take a match played over sets_per_match sets (best of)."""
    return sets_per_match // 2 + 1


def calculate_set_outcome(score1: int, score2: int, points_per_set: int) -> Optional[int]:
    """
    Return 1 or 2 for the team that won the set, None while the set is unfinished.

    A set is won by reaching points_per_set with a lead of at least two points.
    """
    if score1 >= points_per_set and score1 - score2 >= 2:
        return 1
    if score2 >= points_per_set and score2 - score1 >= 2:
        return 2
    return None


def parse_sets(raw_sets) -> List[Dict]:
    """
    Normalize submitted set scores to [{'score1': int, 'score2': int}, ...].

    Accepts dicts keyed score1/score2 or scoreTeam1/scoreTeam2, and [a, b] pairs.
    Raises ValueError for anything that is not a list of numeric scores.
    """
    if not isinstance(raw_sets, list):
        raise ValueError('Sets must be a list.')
    parsed = []
    for raw in raw_sets:
        if isinstance(raw, dict):
            score1 = raw.get('score1', raw.get('scoreTeam1'))
            score2 = raw.get('score2', raw.get('scoreTeam2'))
        elif isinstance(raw, (list, tuple)) and len(raw) >= 2:
            score1, score2 = raw[0], raw[1]
        else:
            raise ValueError('Invalid set score format.')
        if score1 is None or score2 is None:
            raise ValueError('Each set needs two scores.')
        try:
            score1, score2 = int(score1), int(score2)
        except (TypeError, ValueError):
            raise ValueError('Set scores must be numbers.')
        if score1 < 0 or score2 < 0:
            raise ValueError('Set scores cannot be negative.')
        parsed.append({'score1': score1, 'score2': score2})
    return parsed


def _points_for_set(index: int, sets_to_win: int, points_per_set: int, tie_break_enabled: bool) -> int:
    deciding_set = index == 2 * sets_to_win - 2
    if tie_break_enabled and sets_to_win > 1 and deciding_set:
        return TIE_BREAK_POINTS
    return points_per_set


def determine_match_result(sets: List[Dict], sets_to_win: int, points_per_set: int,
                           team1_id=None, team2_id=None, tie_break_enabled: bool = False) -> Dict:
    """
    Score a match from its sets.

    Returns:
        {'sets_won_team1', 'sets_won_team2', 'status', 'winner_id', 'loser_id'}
        where status is 'completed' once a side reached sets_to_win (or every
        possible set was played with an unequal count), 'in_progress' otherwise.
    """
    won1 = 0
    won2 = 0
    for index, set_score in enumerate(sets):
        target = _points_for_set(index, sets_to_win, points_per_set, tie_break_enabled)
        outcome = calculate_set_outcome(set_score['score1'], set_score['score2'], target)
        if outcome == 1:
            won1 += 1
        elif outcome == 2:
            won2 += 1

    result = {
        'sets_won_team1': won1,
        'sets_won_team2': won2,
        'status': 'in_progress',
        'winner_id': None,
        'loser_id': None,
    }

    all_sets_played = len(sets) == sets_to_win * 2 - 1 and won1 != won2
    if won1 >= sets_to_win or (all_sets_played and won1 > won2):
        result.update(status='completed', winner_id=team1_id, loser_id=team2_id)
    elif won2 >= sets_to_win or all_sets_played:
        result.update(status='completed', winner_id=team2_id, loser_id=team1_id)
    return result


def apply_match_result(match: Dict, sets: List[Dict], sets_to_win: int, points_per_set: int,
                       tie_break_enabled: bool = False) -> Dict:
    """Store sets and the computed outcome on the match dict and return it."""
    team1_id = match['team1']['id'] if match.get('team1') else None
    team2_id = match['team2']['id'] if match.get('team2') else None
    result = determine_match_result(sets, sets_to_win, points_per_set,
                                    team1_id, team2_id, tie_break_enabled)
    match['sets'] = sets
    match.update(result)
    return match


def _empty_stats(team: Dict) -> Dict:
    return {
        'team_id': team['id'],
        'team_name': team.get('name', team['id']),
        'rank': 0,
        'matches_played': 0,
        'wins': 0,
        'losses': 0,
        'sets_won': 0,
        'sets_lost': 0,
        'set_diff': 0,
        'points_won': 0,
        'points_lost': 0,
        'point_diff': 0,
    }


def calculate_pool_ranking(teams: List[Dict], matches: List[Dict], points_per_set: int = 21) -> List[Dict]:
    """
    Calculate the standings of one pool from its completed matches.

    Ranking: wins -> set differential -> point differential -> points won -> name
    """
    stats = {team['id']: _empty_stats(team) for team in teams}

    for match in matches:
        if match.get('status') != 'completed' or not match.get('sets'):
            continue
        team1_id = match['team1']['id']
        team2_id = match['team2']['id']
        if team1_id not in stats or team2_id not in stats:
            continue

        target = match.get('points_per_set', points_per_set)
        won1 = won2 = 0
        points1 = points2 = 0
        for set_score in match['sets']:
            outcome = calculate_set_outcome(set_score['score1'], set_score['score2'], target)
            if outcome == 1:
                won1 += 1
            elif outcome == 2:
                won2 += 1
            points1 += set_score['score1'] or 0
            points2 += set_score['score2'] or 0

        # Stored counts already reflect tie-break set targets
        won1 = match.get('sets_won_team1', won1)
        won2 = match.get('sets_won_team2', won2)

        for team_id, sw, sl, pw, pl in ((team1_id, won1, won2, points1, points2),
                                        (team2_id, won2, won1, points2, points1)):
            stats[team_id]['matches_played'] += 1
            stats[team_id]['sets_won'] += sw
            stats[team_id]['sets_lost'] += sl
            stats[team_id]['points_won'] += pw
            stats[team_id]['points_lost'] += pl

        if won1 > won2:
            stats[team1_id]['wins'] += 1
            stats[team2_id]['losses'] += 1
        elif won2 > won1:
            stats[team2_id]['wins'] += 1
            stats[team1_id]['losses'] += 1

    for entry in stats.values():
        entry['set_diff'] = entry['sets_won'] - entry['sets_lost']
        entry['point_diff'] = entry['points_won'] - entry['points_lost']

    ranking = sorted(
        stats.values(),
        key=lambda x: (-x['wins'], -x['set_diff'], -x['point_diff'], -x['points_won'], x['team_name'])
    )
    for index, entry in enumerate(ranking):
        entry['rank'] = index + 1
    return ranking


def _placement_from(match: Optional[Dict]):
    """Return (winner_id, loser_id) of a completed match, or (None, None)."""
    if not match or match.get('status') != 'completed':
        return None, None
    return match.get('winner_id'), match.get('loser_id')


def calculate_elimination_ranking(matches: List[Dict]) -> List[Dict]:
    """
    Rank the teams that played in the elimination bracket.

    Each win is worth 3 points, every team that played gets 1 bonus point,
    and the podium gets +15 / +9 / +4 (final and third place match).
    Ordered by points, then sets won (desc), then sets lost (asc).
    """
    stats = {}

    def entry_for(team):
        if team['id'] not in stats:
            stats[team['id']] = {
                'team_id': team['id'],
                'team_name': team.get('name', team['id']),
                'matches_played': 0,
                'wins': 0,
                'losses': 0,
                'sets_won': 0,
                'sets_lost': 0,
                'points_scored': 0,
                'points_conceded': 0,
                'bonus_points': 0,
                'points': 0,
            }
        return stats[team['id']]

    for match in matches:
        if match.get('status') != 'completed' or not match.get('team1') or not match.get('team2'):
            continue
        first = entry_for(match['team1'])
        second = entry_for(match['team2'])
        won1 = match.get('sets_won_team1', 0)
        won2 = match.get('sets_won_team2', 0)
        scored1 = sum(s['score1'] or 0 for s in match.get('sets', []))
        scored2 = sum(s['score2'] or 0 for s in match.get('sets', []))

        for entry, sw, sl, ps, pc in ((first, won1, won2, scored1, scored2),
                                      (second, won2, won1, scored2, scored1)):
            entry['matches_played'] += 1
            entry['sets_won'] += sw
            entry['sets_lost'] += sl
            entry['points_scored'] += ps
            entry['points_conceded'] += pc

        if won1 > won2:
            first['wins'] += 1
            first['points'] += WIN_POINTS
            second['losses'] += 1
        elif won2 > won1:
            second['wins'] += 1
            second['points'] += WIN_POINTS
            first['losses'] += 1

    final = next((m for m in matches if m.get('is_final')), None)
    third_place = next((m for m in matches if m.get('is_third_place')), None)
    champion, runner_up = _placement_from(final)
    third, _ = _placement_from(third_place)

    for entry in stats.values():
        if entry['matches_played'] > 0:
            entry['bonus_points'] += PARTICIPATION_BONUS
    for place, team_id in ((1, champion), (2, runner_up), (3, third)):
        if team_id in stats:
            stats[team_id]['bonus_points'] += PLACEMENT_BONUS[place]
    for entry in stats.values():
        entry['points'] += entry['bonus_points']

    ranking = sorted(stats.values(), key=lambda x: (-x['points'], -x['sets_won'], x['sets_lost']))
    for index, entry in enumerate(ranking):
        entry['rank'] = index + 1
    return ranking


def calculate_final_ranking(elimination_matches: List[Dict], pool_rankings: Dict[str, List[Dict]]) -> List[Dict]:
    """
    Build the final tournament placement.

    Teams that reached the bracket come first in elimination ranking order;
    the remaining teams follow, best pool finishers first, then by wins,
    set diff and point diff.
    """
    final = []
    placed = set()
    for entry in calculate_elimination_ranking(elimination_matches):
        final.append({'team_id': entry['team_id'], 'team_name': entry['team_name'],
                      'stage': 'elimination', 'points': entry['points']})
        placed.add(entry['team_id'])

    leftovers = []
    for pool_id in sorted(pool_rankings):
        for entry in pool_rankings[pool_id]:
            if entry['team_id'] not in placed:
                leftovers.append(entry)
    leftovers.sort(key=lambda x: (x['rank'], -x['wins'], -x['set_diff'], -x['point_diff'], x['team_name']))
    for entry in leftovers:
        final.append({'team_id': entry['team_id'], 'team_name': entry['team_name'],
                      'stage': 'pool', 'points': entry['wins'] * WIN_POINTS})
        placed.add(entry['team_id'])

    for index, entry in enumerate(final):
        entry['rank'] = index + 1
    return final


def get_points_for_rank(rank: int) -> int:
    """Player ranking points earned for a final tournament placement."""
    if rank == 1:
        return 100
    if rank == 2:
        return 80
    if rank == 3:
        return 65
    if rank == 4:
        return 55
    if rank <= 8:
        return 40
    if rank <= 16:
        return 25
    if rank <= 32:
        return 15
    return 10


def build_player_points(final_ranking: List[Dict], teams: List[Dict], tournament_id: str,
                        tournament_name: str = '') -> List[Dict]:
    """
    Turn a final team ranking into per-player point records.

    Virtual players (generated for testing) earn nothing.
    """
    teams_by_id = {t['id']: t for t in teams}
    records = []
    for entry in final_ranking:
        team = teams_by_id.get(entry['team_id'])
        if not team:
            continue
        points = get_points_for_rank(entry['rank'])
        for member in team.get('members', []):
            if member.get('is_virtual'):
                continue
            records.append({
                'player_id': member['id'],
                'pseudo': member.get('pseudo', member['id']),
                'tournament_id': tournament_id,
                'tournament_name': tournament_name,
                'team_name': entry['team_name'],
                'rank': entry['rank'],
                'points': points,
            })
    return records


def build_individual_player_points(ranking: List[Dict], players: List[Dict], tournament_id: str,
                                   tournament_name: str = '') -> List[Dict]:
    """Point records for an individual ranking; virtual players earn nothing."""
    virtual_ids = {p['id'] for p in players if p.get('is_virtual')}
    return [{
        'player_id': entry['player_id'],
        'pseudo': entry.get('pseudo', entry['player_id']),
        'tournament_id': tournament_id,
        'tournament_name': tournament_name,
        'team_name': '',
        'rank': entry['rank'],
        'points': get_points_for_rank(entry['rank']),
    } for entry in ranking if entry['player_id'] not in virtual_ids]


def calculate_player_global_ranking(records: List[Dict]) -> List[Dict]:
    """Aggregate point records into the global player leaderboard."""
    players = {}
    for record in records:
        entry = players.setdefault(record['player_id'], {
            'player_id': record['player_id'],
            'pseudo': record.get('pseudo', record['player_id']),
            'total_points': 0,
            'tournaments_played': 0,
            'best_rank': None,
        })
        entry['total_points'] += record['points']
        entry['tournaments_played'] += 1
        if entry['best_rank'] is None or record['rank'] < entry['best_rank']:
            entry['best_rank'] = record['rank']

    ranking = sorted(players.values(), key=lambda x: (-x['total_points'], x['pseudo']))
    for index, entry in enumerate(ranking):
        entry['average_points'] = round(entry['total_points'] / entry['tournaments_played'], 1)
        entry['rank'] = index + 1
    return ranking
