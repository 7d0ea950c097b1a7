import yaml
import os
import sys
from engine.pools import create_pool, generate_pool_matches, select_qualified_teams
from engine.elimination import BracketError, generate_elimination_bracket, get_bracket_rounds


def load_pools(file_path):
    """Read a {pool name: [team names]} YAML file into pool documents."""
    pools = []
    with open(file_path, mode='r', encoding='utf-8') as file:
        pools_data = yaml.safe_load(file) or {}
        for index, (pool_name, team_names) in enumerate(pools_data.items()):
            teams = [{'id': name, 'name': name} for name in team_names or []]
            pool = create_pool(index, teams)
            pool['name'] = f"Pool {pool_name}"
            pools.append(pool)
    return pools


def generate_pool_play_matches(pools, match_format='single'):
    matches_by_pool = {}
    for pool in pools:
        if len(pool['teams']) < 2:
            print(f"Warning: {pool['name']} has fewer than 2 teams ({len(pool['teams'])} found). "
                  f"Skipping match generation.", file=sys.stderr)
            continue
        pool['matches'] = generate_pool_matches(pool, match_format)
        matches_by_pool[pool['name']] = pool['matches']
    return matches_by_pool


def bracket_preview(pools, qualified_per_pool):
    """Rounds of the bracket the pool winners would play, with placeholder labels."""
    qualified = select_qualified_teams(pools, qualified_per_pool)
    return get_bracket_rounds(generate_elimination_bracket(qualified, {}))


def _side(match, slot):
    team = match.get(slot)
    return team['name'] if team else match.get(f'{slot}_label') or 'TBD'


def main(argv=None):
    argv = sys.argv[1:] if argv is None else argv
    base_dir = os.path.dirname(os.path.dirname(__file__))

    # Use command line argument if provided, otherwise use default path
    pools_file = argv[0] if argv else os.path.join(base_dir, 'data', 'pools.yaml')
    try:
        qualified_per_pool = int(argv[1]) if len(argv) > 1 else 0
    except ValueError:
        print(f"Error: qualified teams per pool must be a number, got {argv[1]!r}.", file=sys.stderr)
        return 1

    pools = load_pools(pools_file)
    if not pools:
        return 1

    matches_by_pool = generate_pool_play_matches(pools)
    first_pool = True
    for pool_name, matches in matches_by_pool.items():
        if not first_pool:
            print()
        print(f"# {pool_name}")
        for match in matches:
            print(f"{match['team1']['name']} vs {match['team2']['name']}")
        first_pool = False

    if qualified_per_pool:
        try:
            rounds = bracket_preview(pools, qualified_per_pool)
        except BracketError as e:
            print(f"Error: {e}", file=sys.stderr)
            return 1
        # Seeding only: every pool team is unranked until results exist
        for round_info in rounds:
            print()
            print(f"# {round_info['name']}")
            for match in round_info['matches']:
                print(f"{_side(match, 'team1')} vs {_side(match, 'team2')}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
