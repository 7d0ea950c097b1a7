#!/usr/bin/env python3
"""
Tournament Reset Tool

Clears the played part of a tournament (pools, elimination bracket, final
ranking and King phases) while keeping its settings and registrations.
The player points earned in the tournament are removed as well.

Usage:
    python scripts/reset_tournament.py <tournament_id>
    python scripts/reset_tournament.py <tournament_id> --keep-points --force

Exit codes:
    0: Success (or cancelled)
    2: Tournament not found
    3: Write failure
"""
import argparse
import os
import sys
import yaml
from filelock import FileLock

RESULT_FILES = [
    'pools.yaml',
    'elimination.yaml',
    'ranking.yaml',
    'king.yaml',
    'flexible_king.yaml',
    'team_king.yaml',
]


def error(message: str, code: int = 1):
    """Print error and exit."""
    print(f"Error: {message}", file=sys.stderr)
    sys.exit(code)


def default_data_dir() -> str:
    base_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
    return os.environ.get('TOURNAMENT_DATA_DIR', os.path.join(base_dir, 'data'))


def _load(path: str, default):
    if not os.path.exists(path):
        return default
    with open(path, 'r', encoding='utf-8') as f:
        return yaml.safe_load(f) or default


def _dump(path: str, data):
    with open(path, 'w', encoding='utf-8') as f:
        yaml.dump(data, f, default_flow_style=False, allow_unicode=True, sort_keys=False)


def reset_tournament(data_dir: str, tournament_id: str, keep_points: bool = False) -> list:
    """Remove result documents and unfreeze the tournament. Returns the removed file names."""
    tournament_dir = os.path.join(data_dir, 'tournaments', tournament_id)
    tournament_file = os.path.join(tournament_dir, 'tournament.yaml')
    if not os.path.exists(tournament_file):
        error(f"Tournament not found: {tournament_id}", code=2)

    removed = []
    with FileLock(os.path.join(data_dir, '.lock'), timeout=10):
        try:
            for name in RESULT_FILES:
                path = os.path.join(tournament_dir, name)
                if os.path.exists(path):
                    os.remove(path)
                    removed.append(name)

            teams_file = os.path.join(tournament_dir, 'teams.yaml')
            teams = _load(teams_file, {}).get('teams', [])
            for team in teams:
                team['pool_id'] = None
            if teams:
                _dump(teams_file, {'teams': teams})

            tournament = _load(tournament_file, {})
            tournament.update(is_ranking_frozen=False, is_finished=False)
            _dump(tournament_file, tournament)

            if not keep_points:
                points_file = os.path.join(data_dir, 'player_points.yaml')
                records = _load(points_file, {}).get('records', [])
                remaining = [r for r in records if r.get('tournament_id') != tournament_id]
                if len(remaining) != len(records):
                    _dump(points_file, {'records': remaining})
        except OSError as e:
            error(f"Reset failed: {e}", code=3)
    return removed


def main(argv=None):
    parser = argparse.ArgumentParser(
        description='Clear pools, bracket, ranking and King phases of a tournament',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python scripts/reset_tournament.py summer-cup
  python scripts/reset_tournament.py summer-cup --keep-points --force
        """
    )
    parser.add_argument('tournament_id', help='Tournament id (directory name under tournaments/)')
    parser.add_argument('--data-dir', default=default_data_dir(), help='Data directory')
    parser.add_argument('--keep-points', action='store_true',
                        help='Keep the player points already awarded for this tournament')
    parser.add_argument('--force', action='store_true', help='Skip confirmation prompt')

    args = parser.parse_args(argv)

    if not args.force:
        response = input(f"Type 'RESET' to clear every result of {args.tournament_id}: ")
        if response != 'RESET':
            print("Reset cancelled.")
            return 0

    removed = reset_tournament(args.data_dir, args.tournament_id, args.keep_points)
    print(f"Reset {args.tournament_id}: removed {', '.join(removed) or 'nothing'}")
    return 0


if __name__ == '__main__':
    sys.exit(main())
