"""
Pool stage: distributing teams into pools, round-robin match generation
and picking the teams that advance to the elimination bracket.
"""
import logging
import math
import random
import string
from itertools import combinations
from typing import List, Dict, Optional

from engine.elimination import BracketError
from engine.scoring import calculate_pool_ranking


logger = logging.getLogger(__name__)


def pool_id(index: int) -> str:
    return f"pool-{string.ascii_uppercase[index]}"


def pool_name(index: int) -> str:
    return f"Pool {string.ascii_uppercase[index]}"


def distribute_teams_in_pools(total_teams: int, number_of_pools: int) -> List[int]:
    """
    Split total_teams as evenly as possible, larger pools first.

    Example: 10 teams into 3 pools -> [4, 3, 3]
    """
    if number_of_pools <= 0:
        return []
    base, remainder = divmod(total_teams, number_of_pools)
    return [base + 1 if i < remainder else base for i in range(number_of_pools)]


def distribute_qualified_in_pools(total_qualified: int, number_of_pools: int) -> List[int]:
    """Split a qualification quota across pools, same rule as teams."""
    return distribute_teams_in_pools(total_qualified, number_of_pools)


def create_pool(index: int, teams: Optional[List[Dict]] = None) -> Dict:
    return {
        'id': pool_id(index),
        'name': pool_name(index),
        'teams': [{'id': t['id'], 'name': t['name']} for t in (teams or [])],
        'matches': [],
    }


def assign_teams_to_pools(teams: List[Dict], max_teams_per_pool: int, shuffle: bool = False,
                          rng: Optional[random.Random] = None) -> List[Dict]:
    """
    Create ceil(teams / max_teams_per_pool) pools and deal teams into them.

    Teams are dealt in snake order (A, B, C, C, B, A, ...) so that teams listed
    first (registration order or seeding) are spread across pools.
    """
    if not teams or max_teams_per_pool <= 0:
        return []
    ordered = list(teams)
    if shuffle:
        (rng or random).shuffle(ordered)

    number_of_pools = math.ceil(len(ordered) / max_teams_per_pool)
    buckets = [[] for _ in range(number_of_pools)]
    for position, team in enumerate(ordered):
        lap, offset = divmod(position, number_of_pools)
        index = offset if lap % 2 == 0 else number_of_pools - 1 - offset
        buckets[index].append(team)

    pools = [create_pool(i, bucket) for i, bucket in enumerate(buckets)]
    logger.info('Assigned %d teams to %d pools', len(ordered), len(pools))
    return pools


def generate_pool_matches(pool: Dict, match_format: str = 'single', sets_per_match: int = 1,
                          points_per_set: int = 21) -> List[Dict]:
    """
    Generate the round-robin matches of one pool.

    Every pair of teams meets once; the 'double' format adds the return leg
    with the teams swapped. Matches start pending with no sets played.
    """
    teams = pool.get('teams', [])
    if len(teams) < 2:
        return []

    pairs = list(combinations(teams, 2))
    if match_format == 'double':
        pairs += [(second, first) for first, second in pairs]

    matches = []
    for number, (team1, team2) in enumerate(pairs, start=1):
        matches.append({
            'id': f"{pool['id']}-m{number}",
            'match_number': number,
            'pool_id': pool['id'],
            'pool_name': pool['name'],
            'team1': {'id': team1['id'], 'name': team1['name']},
            'team2': {'id': team2['id'], 'name': team2['name']},
            'sets_per_match': sets_per_match,
            'points_per_set': points_per_set,
            'sets': [],
            'sets_won_team1': 0,
            'sets_won_team2': 0,
            'status': 'pending',
            'winner_id': None,
            'loser_id': None,
        })
    return matches


def calculate_pool_rankings(pools: List[Dict]) -> Dict[str, List[Dict]]:
    """Return {pool_id: ranking} for every pool."""
    return {pool['id']: calculate_pool_ranking(pool.get('teams', []), pool.get('matches', []))
            for pool in pools}


def select_qualified_teams(pools: List[Dict], teams_qualified_per_pool: int,
                           qualified_team_ids: Optional[List[str]] = None) -> List[Dict]:
    """
    Pick the teams that advance from the pool stage.

    Automatic selection keeps the top teams_qualified_per_pool of each pool;
    a manual selection keeps exactly the listed team ids. The result is the
    seeding order: wins, set diff, point diff (all descending).

    Raises:
        BracketError: fewer than two teams qualify.
    """
    rankings = calculate_pool_rankings(pools)
    names = {pool['id']: pool['name'] for pool in pools}

    qualified = []
    for pid, ranking in rankings.items():
        for entry in ranking:
            if qualified_team_ids is not None:
                keep = entry['team_id'] in qualified_team_ids
            else:
                keep = entry['rank'] <= teams_qualified_per_pool
            if keep:
                qualified.append({**entry, 'pool_id': pid, 'pool_name': names[pid]})

    if len(qualified) < 2:
        raise BracketError('At least 2 qualified teams are needed for an elimination bracket.')

    qualified.sort(key=lambda x: (-x['wins'], -x['set_diff'], -x['point_diff'], x['rank']))
    for seed, entry in enumerate(qualified, start=1):
        entry['seed'] = seed
    return qualified
