"""
Tournament status computed from registration dates and team counts.
"""
import math
from datetime import datetime, date
from typing import Dict, List, Optional, Tuple


STATUS_OPEN = 'open'
STATUS_FULL = 'full'
STATUS_WAITING_LIST = 'waiting_list'
STATUS_FINISHED = 'finished'
STATUS_REGISTERED = 'registered'
STATUS_ON_WAITING_LIST = 'on_waiting_list'
STATUS_UPCOMING = 'upcoming'
STATUS_CLOSED = 'closed'
STATUS_WAITING_LIST_AVAILABLE = 'waiting_list_available'

_BEGINNING_OF_TIME = datetime.min
_END_OF_TIME = datetime.max


def to_datetime(value, default: datetime) -> datetime:
    """Parse a stored date value (ISO string, date or datetime); missing values give default."""
    if value is None or value == '':
        return default
    if isinstance(value, date) and not isinstance(value, datetime):
        return datetime(value.year, value.month, value.day)
    parsed = value if isinstance(value, datetime) else datetime.fromisoformat(str(value))
    # Offsets are converted to local time so every comparison is naive local time
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def _window(tournament: Dict) -> Tuple[datetime, datetime, datetime]:
    starts = to_datetime(tournament.get('registration_start'), _BEGINNING_OF_TIME)
    ends = to_datetime(tournament.get('registration_end'), _END_OF_TIME)
    played = to_datetime(tournament.get('date'), _END_OF_TIME)
    return starts, ends, played


def count_teams(teams: List[Dict], min_players_per_team: int) -> Tuple[int, int]:
    """Return (complete_teams, total_teams); a team is complete with min_players_per_team members."""
    complete = sum(1 for t in teams if len(t.get('members', [])) >= min_players_per_team)
    return complete, len(teams)


def calculate_tournament_status(tournament: Dict, complete_teams_count: int, total_teams_count: int,
                                now: Optional[datetime] = None) -> Dict:
    """
    Status shown in the public tournament listing.

    Returns:
        {'status', 'message', 'registrations_are_open', 'is_full_by_complete_teams'}
    """
    now = now or datetime.now()
    starts, ends, played = _window(tournament)
    max_teams = tournament.get('max_teams', 0)

    registrations_are_open = starts <= now <= ends
    is_full_by_complete_teams = complete_teams_count >= max_teams
    is_full_by_total_teams = total_teams_count >= max_teams

    if now > played:
        status, message = STATUS_FINISHED, 'This tournament is finished.'
    elif now < starts:
        status = STATUS_OPEN
        message = f"Registrations open on {starts.strftime('%d/%m/%Y')}."
    elif now > ends:
        status, message = STATUS_FULL, 'Registrations are closed.'
    elif is_full_by_complete_teams:
        waiting_list_usable = (tournament.get('waiting_list_enabled')
                               and tournament.get('waiting_list_size', 0) > 0
                               and not is_full_by_total_teams)
        if waiting_list_usable:
            status, message = STATUS_WAITING_LIST, 'The tournament is full, a waiting list is available.'
        else:
            status, message = STATUS_FULL, 'The tournament is full.'
    else:
        status, message = STATUS_OPEN, 'Registrations are open.'

    return {
        'status': status,
        'message': message,
        'registrations_are_open': registrations_are_open,
        'is_full_by_complete_teams': is_full_by_complete_teams,
    }


def get_user_registration_status(teams: List[Dict], players: List[Dict], waiting_list: List[Dict],
                                 user_id) -> Dict:
    """Describe how (and whether) a user is registered to a tournament."""
    status = {
        'is_registered': False,
        'registration_type': None,
        'team_name': None,
        'team_id': None,
        'is_captain': False,
        'is_on_waiting_list': False,
    }
    if not user_id:
        return status

    for team in teams:
        if any(m['id'] == user_id for m in team.get('members', [])):
            status.update(is_registered=True, registration_type='team',
                          team_name=team['name'], team_id=team['id'],
                          is_captain=team.get('captain_id') == user_id)
            return status

    if any(p['id'] == user_id for p in players):
        status.update(is_registered=True, registration_type='free_player')
        return status

    for entry in waiting_list:
        if entry.get('captain_id') == user_id or any(m['id'] == user_id for m in entry.get('members', [])):
            status.update(is_on_waiting_list=True, team_name=entry.get('name'), team_id=entry.get('id'))
            return status
    return status


def get_user_tournament_status(tournament: Dict, user_status: Dict, complete_teams_count: int,
                               total_teams_count: int, waiting_list_count: int = 0,
                               now: Optional[datetime] = None) -> Dict:
    """
    Status shown on the tournament detail page for the current user, with the
    actions the page should offer.
    """
    now = now or datetime.now()
    starts, ends, played = _window(tournament)
    max_teams = tournament.get('max_teams', 0)
    waiting_list_size = tournament.get('waiting_list_size', 0)

    registrations_are_open = starts <= now <= ends
    is_full = complete_teams_count >= max_teams
    waiting_list_has_room = waiting_list_count < waiting_list_size

    flags = {
        'show_unregister_button': False,
        'show_join_waiting_list_button': False,
        'show_leave_waiting_list_button': False,
        'show_create_team_button': False,
        'show_register_player_button': False,
        'show_join_team_form': False,
    }

    if now > played:
        status, message = STATUS_FINISHED, 'This tournament is finished.'
    elif user_status.get('is_registered'):
        status = STATUS_REGISTERED
        if user_status.get('registration_type') == 'team':
            message = f"You are registered with team {user_status.get('team_name')}."
        else:
            message = 'You are registered as a free player.'
        flags['show_unregister_button'] = registrations_are_open
    elif user_status.get('is_on_waiting_list'):
        status, message = STATUS_ON_WAITING_LIST, 'You are on the waiting list.'
        flags['show_leave_waiting_list_button'] = True
    elif now < starts:
        status = STATUS_UPCOMING
        message = f"Registrations open on {starts.strftime('%d/%m/%Y')}."
    elif now > ends:
        status, message = STATUS_CLOSED, 'Registrations are closed.'
    elif is_full:
        if tournament.get('waiting_list_enabled') and waiting_list_has_room:
            status, message = STATUS_WAITING_LIST_AVAILABLE, 'The tournament is full, a waiting list is available.'
            flags['show_join_waiting_list_button'] = True
        else:
            status, message = STATUS_FULL, 'The tournament is full.'
    else:
        status, message = STATUS_OPEN, 'Registrations are open.'
        flags['show_create_team_button'] = total_teams_count < max_teams
        flags['show_register_player_button'] = True
        flags['show_join_team_form'] = True

    return {'status': status, 'message': message, 'registrations_are_open': registrations_are_open, **flags}


def calculate_guaranteed_matches(tournament: Dict) -> int:
    """
    Total number of matches the tournament schedules when it is full.

    Pool stage: ceil(max_teams / max_teams_per_pool) pools of max_teams_per_pool
    teams, each playing a round robin (twice with the 'double' format).
    Elimination: qualified teams - 1.
    """
    max_teams = tournament.get('max_teams') or 0
    per_pool = tournament.get('max_teams_per_pool') or 0
    if max_teams <= 0 or per_pool <= 0:
        return 0

    pools = math.ceil(max_teams / per_pool)
    matches_per_pool = per_pool * (per_pool - 1) // 2
    if tournament.get('match_format') == 'double':
        matches_per_pool *= 2
    total = pools * matches_per_pool

    qualified_per_pool = tournament.get('teams_qualified_per_pool') or 0
    if tournament.get('elimination_enabled') and qualified_per_pool > 0:
        qualified = pools * qualified_per_pool
        if qualified > 1:
            total += qualified - 1
    return total
