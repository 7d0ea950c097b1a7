"""
Domain records shared by the engine and the web layer.
"""
from datetime import datetime


LEVELS = ['Beginner', 'Intermediate', 'Advanced', 'Expert']
ROLES = ['player', 'admin']
TOURNAMENT_FORMATS = ['standard', 'king', 'flexible_king', 'team_king']
TOURNAMENT_TYPES = ['2v2', '3v3', '4v4', '6v6']
MIXITY_TYPES = ['male', 'female', 'mixed']
MATCH_FORMATS = ['single', 'double']


class Player:
    def __init__(self, id, pseudo, level='Intermediate', is_virtual=False):
        self.id = id
        self.pseudo = pseudo
        self.level = level
        self.is_virtual = is_virtual

    def to_dict(self):
        return {
            'id': self.id,
            'pseudo': self.pseudo,
            'level': self.level,
            'is_virtual': self.is_virtual,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            pseudo=data.get('pseudo', data['id']),
            level=data.get('level', 'Intermediate'),
            is_virtual=data.get('is_virtual', False),
        )

    def __eq__(self, other):
        return isinstance(other, Player) and other.id == self.id

    def __hash__(self):
        return hash(self.id)

    def __repr__(self):
        return f"Player(id={self.id}, pseudo={self.pseudo}, level={self.level})"


class Team:
    def __init__(self, id, name, captain_id, members=None, recruitment_open=True,
                 pool_id=None, registered_at=None):
        self.id = id
        self.name = name
        self.captain_id = captain_id
        self.members = members if members else []
        self.recruitment_open = recruitment_open
        self.pool_id = pool_id
        self.registered_at = registered_at or datetime.now().isoformat()

    def is_complete(self, min_players: int) -> bool:
        """A team counts toward capacity once it has at least min_players members."""
        return len(self.members) >= min_players

    def has_member(self, user_id) -> bool:
        return any(m.id == user_id for m in self.members)

    def captain(self):
        for member in self.members:
            if member.id == self.captain_id:
                return member
        return None

    def to_dict(self):
        return {
            'id': self.id,
            'name': self.name,
            'captain_id': self.captain_id,
            'members': [m.to_dict() for m in self.members],
            'recruitment_open': self.recruitment_open,
            'pool_id': self.pool_id,
            'registered_at': self.registered_at,
        }

    @classmethod
    def from_dict(cls, data):
        return cls(
            id=data['id'],
            name=data['name'],
            captain_id=data.get('captain_id'),
            members=[Player.from_dict(m) for m in data.get('members', [])],
            recruitment_open=data.get('recruitment_open', True),
            pool_id=data.get('pool_id'),
            registered_at=data.get('registered_at'),
        )

    def __repr__(self):
        return f"Team(name={self.name}, captain={self.captain_id}, members={len(self.members)})"
