#!/usr/bin/env python3
"""
Virtual Player Generator

Adds virtual free players to a tournament so King phases and pools can be
tried out without real registrations. Virtual players never earn ranking
points.

Usage:
    python scripts/create_dummy_players.py <tournament_id> --count 36
    python scripts/create_dummy_players.py <tournament_id> --count 8 --level Advanced --data-dir /home/data

Exit codes:
    0: Success
    1: Invalid arguments
    2: Tournament not found
    3: Write failure
"""
import argparse
import os
import random
import sys
import yaml
from datetime import datetime
from filelock import FileLock

sys.path.insert(0, os.path.join(os.path.dirname(os.path.abspath(__file__)), '..', 'src'))

from engine.models import LEVELS


def error(message: str, code: int = 1):
    """Print error and exit."""
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(code)


def default_data_dir() -> str:
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    return os.environ.get('TOURNAMENT_DATA_DIR', os.path.join(base_dir, 'data'))


def build_players(count: int, existing_ids: set, level: str = None, rng=random) -> list:
    """Virtual player entries with ids that do not clash with existing_ids."""
    players = []
    number = 1
    now = datetime.now().isoformat()
    while len(players) < count:
        player_id = f"virtual-{number:03d}"
        number += 1
        if player_id in existing_ids:
            continue
        players.append({
            'id': player_id,
            'pseudo': f"Virtual {number - 1:03d}",
            'level': level or rng.choice(LEVELS),
            'is_virtual': True,
            'registered_at': now,
        })
    return players


def add_players(data_dir: str, tournament_id: str, count: int, level: str = None) -> list:
    tournament_dir = os.path.join(data_dir, 'tournaments', tournament_id)
    if not os.path.exists(os.path.join(tournament_dir, 'tournament.yaml')):
        error(f"Tournament not found: {tournament_id}", code=2)

    players_file = os.path.join(tournament_dir, 'players.yaml')
    teams_file = os.path.join(tournament_dir, 'teams.yaml')
    with FileLock(os.path.join(data_dir, '.lock'), timeout=10):
        players = []
        if os.path.exists(players_file):
            with open(players_file, 'r', encoding='utf-8') as f:
                players = (yaml.safe_load(f) or {}).get('players', [])
        teams = []
        if os.path.exists(teams_file):
            with open(teams_file, 'r', encoding='utf-8') as f:
                teams = (yaml.safe_load(f) or {}).get('teams', [])

        existing = {p['id'] for p in players} | {m['id'] for t in teams for m in t.get('members', [])}
        created = build_players(count, existing, level)
        try:
            with open(players_file, 'w', encoding='utf-8') as f:
                yaml.dump({'players': players + created}, f, default_flow_style=False,
                          allow_unicode=True, sort_keys=False)
        except OSError as e:
            error(f"Failed to write {players_file}: {e}", code=3)
    return created


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Add virtual free players to a tournament',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/create_dummy_players.py summer-king --count 36
  python scripts/create_dummy_players.py summer-king --count 8 --level Expert
        """
    )
    parser.add_argument('tournament_id', help='Tournament id (directory name under tournaments/)')
    parser.add_argument('--count', type=int, default=36, help='Number of players to add (default: 36)')
    parser.add_argument('--level', choices=LEVELS, help='Level of every player (default: random)')
    parser.add_argument('--data-dir', default=default_data_dir(), help='Data directory')

    args = parser.parse_args(argv)
    if args.count < 1:
        error("--count must be at least 1")

    created = add_players(args.data_dir, args.tournament_id, args.count, args.level)
    print(f"Added {len(created)} virtual players to {args.tournament_id}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
