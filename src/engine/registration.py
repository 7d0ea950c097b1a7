"""
Registration rules: teams, free players and the waiting list.

All functions work on the loaded document lists and mutate them in place;
the caller persists the result.
"""
import uuid
from datetime import datetime
from typing import List, Dict, Optional

from engine.status import to_datetime


class RegistrationError(ValueError):
    """Raised when a registration request breaks a tournament rule."""


def _member(user: Dict) -> Dict:
    return {
        'id': user['id'],
        'pseudo': user.get('pseudo', user['id']),
        'level': user.get('level', 'Intermediate'),
        'is_virtual': user.get('is_virtual', False),
    }


def new_team_id() -> str:
    return uuid.uuid4().hex[:12]


def check_registrations_open(tournament: Dict, now: Optional[datetime] = None):
    now = now or datetime.now()
    starts = to_datetime(tournament.get('registration_start'), datetime.min)
    ends = to_datetime(tournament.get('registration_end'), datetime.max)
    played = to_datetime(tournament.get('date'), datetime.max)
    if now > played:
        raise RegistrationError('This tournament is finished.')
    if now < starts:
        raise RegistrationError('Registrations are not open yet.')
    if now > ends:
        raise RegistrationError('Registrations are closed.')


def find_team(teams: List[Dict], team_id: str) -> Dict:
    for team in teams:
        if team['id'] == team_id:
            return team
    raise RegistrationError('Team not found.')


def ensure_not_registered(user_id: str, teams: List[Dict], players: List[Dict], waiting_list: List[Dict]):
    """A user holds at most one registration per tournament."""
    if any(m['id'] == user_id for t in teams for m in t.get('members', [])):
        raise RegistrationError('You are already registered in a team.')
    if any(p['id'] == user_id for p in players):
        raise RegistrationError('You are already registered as a free player.')
    if any(m['id'] == user_id for e in waiting_list for m in e.get('members', [])):
        raise RegistrationError('You are already on the waiting list.')


def _ensure_name_available(name: str, teams: List[Dict], waiting_list: List[Dict]):
    wanted = name.strip().lower()
    if any(t['name'].strip().lower() == wanted for t in teams + waiting_list):
        raise RegistrationError(f'A team named "{name}" already exists.')


def _new_team(name: str, user: Dict) -> Dict:
    return {
        'id': new_team_id(),
        'name': name.strip(),
        'captain_id': user['id'],
        'members': [_member(user)],
        'recruitment_open': True,
        'pool_id': None,
        'registered_at': datetime.now().isoformat(),
    }


def create_team(tournament: Dict, teams: List[Dict], players: List[Dict], waiting_list: List[Dict],
                user: Dict, name: str, now: Optional[datetime] = None) -> Dict:
    """Register a new team with the user as captain and only member."""
    check_registrations_open(tournament, now)
    if not name or not name.strip():
        raise RegistrationError('Team name is required.')
    ensure_not_registered(user['id'], teams, players, waiting_list)
    _ensure_name_available(name, teams, waiting_list)
    if len(teams) >= tournament.get('max_teams', 0):
        raise RegistrationError('The tournament is full; join the waiting list instead.')
    team = _new_team(name, user)
    teams.append(team)
    return team


def join_team(tournament: Dict, teams: List[Dict], players: List[Dict], waiting_list: List[Dict],
              team_id: str, user: Dict, now: Optional[datetime] = None) -> Dict:
    check_registrations_open(tournament, now)
    team = find_team(teams, team_id)
    if not team.get('recruitment_open', True):
        raise RegistrationError('This team is not recruiting.')
    if len(team['members']) >= tournament.get('players_per_team', 0):
        raise RegistrationError('This team is full.')
    # A free player may move straight into a team
    free = [p for p in players if p['id'] == user['id']]
    ensure_not_registered(user['id'], teams, [], waiting_list)
    for entry in free:
        players.remove(entry)
    team['members'].append(_member(user))
    return team


def leave_team(teams: List[Dict], team_id: str, user_id: str) -> Optional[Dict]:
    """
    Remove a member from a team.

    Captaincy passes to the next member; an empty team is removed and
    None is returned.
    """
    team = find_team(teams, team_id)
    if not any(m['id'] == user_id for m in team['members']):
        raise RegistrationError('You are not a member of this team.')
    team['members'] = [m for m in team['members'] if m['id'] != user_id]
    if not team['members']:
        teams.remove(team)
        return None
    if team['captain_id'] == user_id:
        team['captain_id'] = team['members'][0]['id']
    return team


def delete_team(teams: List[Dict], team_id: str, user_id: str, is_admin: bool = False):
    """Unregister a whole team; only its captain (or an admin) may do it."""
    team = find_team(teams, team_id)
    if team['captain_id'] != user_id and not is_admin:
        raise RegistrationError('Only the captain can unregister the team.')
    teams.remove(team)
    return team


def transfer_captain(team: Dict, new_captain_id: str, user_id: str):
    if team['captain_id'] != user_id:
        raise RegistrationError('Only the captain can hand over the captaincy.')
    if not any(m['id'] == new_captain_id for m in team['members']):
        raise RegistrationError('The new captain must be a team member.')
    team['captain_id'] = new_captain_id
    return team


def set_recruitment(team: Dict, is_open: bool, user_id: str):
    if team['captain_id'] != user_id:
        raise RegistrationError('Only the captain can change recruitment.')
    team['recruitment_open'] = bool(is_open)
    return team


def register_free_player(tournament: Dict, teams: List[Dict], players: List[Dict], waiting_list: List[Dict],
                         user: Dict, now: Optional[datetime] = None) -> Dict:
    """Register a user without a team; admins later place free players."""
    check_registrations_open(tournament, now)
    ensure_not_registered(user['id'], teams, players, waiting_list)
    entry = {**_member(user), 'registered_at': datetime.now().isoformat()}
    players.append(entry)
    return entry


def leave_free_players(players: List[Dict], user_id: str):
    remaining = [p for p in players if p['id'] != user_id]
    if len(remaining) == len(players):
        raise RegistrationError('You are not registered as a free player.')
    players[:] = remaining


def join_waiting_list(tournament: Dict, teams: List[Dict], players: List[Dict], waiting_list: List[Dict],
                      user: Dict, name: str, now: Optional[datetime] = None) -> Dict:
    """Queue a new team once the tournament is full."""
    check_registrations_open(tournament, now)
    if not tournament.get('waiting_list_enabled'):
        raise RegistrationError('This tournament has no waiting list.')
    if len(teams) < tournament.get('max_teams', 0):
        raise RegistrationError('The tournament still has room; register a team instead.')
    if len(waiting_list) >= tournament.get('waiting_list_size', 0):
        raise RegistrationError('The waiting list is full.')
    if not name or not name.strip():
        raise RegistrationError('Team name is required.')
    ensure_not_registered(user['id'], teams, players, waiting_list)
    _ensure_name_available(name, teams, waiting_list)
    entry = _new_team(name, user)
    waiting_list.append(entry)
    return entry


def leave_waiting_list(waiting_list: List[Dict], user_id: str):
    remaining = [e for e in waiting_list if e['captain_id'] != user_id]
    if len(remaining) == len(waiting_list):
        raise RegistrationError('You have no team on the waiting list.')
    waiting_list[:] = remaining


def promote_from_waiting_list(tournament: Dict, teams: List[Dict], waiting_list: List[Dict]) -> Optional[Dict]:
    """Move the first waiting team into the tournament when a place is free."""
    if not waiting_list or len(teams) >= tournament.get('max_teams', 0):
        return None
    team = waiting_list.pop(0)
    teams.append(team)
    return team


def assign_free_player(tournament: Dict, teams: List[Dict], players: List[Dict], player_id: str,
                       team_id: str) -> Dict:
    """Admin placement of a free player into a team."""
    entry = next((p for p in players if p['id'] == player_id), None)
    if not entry:
        raise RegistrationError('Free player not found.')
    team = find_team(teams, team_id)
    if len(team['members']) >= tournament.get('players_per_team', 0):
        raise RegistrationError('This team is full.')
    players.remove(entry)
    team['members'].append({k: entry[k] for k in ('id', 'pseudo', 'level', 'is_virtual') if k in entry})
    return team
