from typing import Dict, List, Optional

from engine.phases import MatchPhase


PENALTY_SIDES = ('home', 'away')


class Team:
    def __init__(self, id, name, code, confederation=None):
        self.id = id
        self.name = name
        self.code = code
        self.confederation = confederation

    def to_dict(self):
        return {'id': self.id, 'name': self.name, 'code': self.code, 'confederation': self.confederation}

    def __repr__(self):
        return f"Team(id={self.id}, name={self.name}, code={self.code})"


class Group:
    def __init__(self, id, letter, team_ids):
        self.id = id
        self.letter = letter
        self.team_ids = list(team_ids)

    def __repr__(self):
        return f"Group(id={self.id}, letter={self.letter}, team_ids={self.team_ids})"


class Match:
    """A fixture. Knockout fixtures carry placeholders until resolved."""

    def __init__(self, id, match_number, phase, group_id=None, home_team_id=None, away_team_id=None,
                 home_placeholder=None, away_placeholder=None, depends_on=None,
                 home_score=None, away_score=None):
        self.id = id
        self.match_number = match_number
        self.phase = phase if isinstance(phase, MatchPhase) else MatchPhase(phase)
        self.group_id = group_id
        self.home_team_id = home_team_id
        self.away_team_id = away_team_id
        self.home_placeholder = home_placeholder
        self.away_placeholder = away_placeholder
        self.depends_on = list(depends_on) if depends_on else []
        self.home_score = home_score
        self.away_score = away_score
        self._validate()

    def _validate(self):
        if not 1 <= self.match_number <= 104:
            raise ValueError(f"Match number must be between 1 and 104, got {self.match_number}")
        if self.is_group_stage():
            if not self.group_id:
                raise ValueError(f"Group stage match {self.match_number} must have a group")
            if not self.home_team_id or not self.away_team_id:
                raise ValueError(f"Group stage match {self.match_number} must have both teams")
        elif self.group_id:
            raise ValueError(f"Knockout match {self.match_number} cannot belong to a group")
        if len(self.depends_on) not in (0, 2):
            raise ValueError(f"Match {self.match_number} must depend on 0 or 2 matches, got {len(self.depends_on)}")

    def is_group_stage(self):
        return self.phase == MatchPhase.GROUP_STAGE

    def __repr__(self):
        home = self.home_team_id or self.home_placeholder
        away = self.away_team_id or self.away_placeholder
        return f"Match(number={self.match_number}, phase={self.phase.value}, {home} vs {away})"


class MatchPrediction:
    """One user's guessed outcome for one fixture.

    Knockout predictions also remember the teams they were made for, since
    those teams are derived from earlier predictions rather than stored on
    the fixture.
    """

    def __init__(self, match_id, home_score, away_score, home_score_et=None, away_score_et=None,
                 penalties_winner=None, home_team_id=None, away_team_id=None):
        self.match_id = match_id
        self.home_score = home_score
        self.away_score = away_score
        self.home_score_et = home_score_et
        self.away_score_et = away_score_et
        self.penalties_winner = penalties_winner or None
        self.home_team_id = home_team_id
        self.away_team_id = away_team_id

    def is_draw(self) -> bool:
        return self.home_score == self.away_score

    def has_extra_time(self) -> bool:
        return self.home_score_et is not None and self.away_score_et is not None

    def has_penalties(self) -> bool:
        return self.penalties_winner is not None

    def regulation_winner(self) -> Optional[str]:
        """'home', 'away' or None for a draw after 90 minutes."""
        if self.home_score > self.away_score:
            return 'home'
        if self.away_score > self.home_score:
            return 'away'
        return None

    def final_winner(self) -> Optional[str]:
        """'home', 'away' or None when the prediction leaves the tie unresolved."""
        if self.penalties_winner in PENALTY_SIDES:
            return self.penalties_winner
        if self.has_extra_time():
            if self.home_score_et > self.away_score_et:
                return 'home'
            if self.away_score_et > self.home_score_et:
                return 'away'
            return None
        return self.regulation_winner()

    def score_display(self) -> str:
        display = f"{self.home_score}-{self.away_score}"
        if self.has_extra_time():
            display += f" ({self.home_score_et}-{self.away_score_et} ET)"
        if self.has_penalties():
            display += f" [{self.penalties_winner.capitalize()} on pens]"
        return display

    def with_teams(self, home_team_id, away_team_id) -> 'MatchPrediction':
        data = self.to_dict()
        data['home_team_id'] = home_team_id
        data['away_team_id'] = away_team_id
        return MatchPrediction.from_dict(data)

    def to_dict(self) -> Dict:
        return {
            'match_id': self.match_id,
            'home_score': self.home_score,
            'away_score': self.away_score,
            'home_score_et': self.home_score_et,
            'away_score_et': self.away_score_et,
            'penalties_winner': self.penalties_winner,
            'home_team_id': self.home_team_id,
            'away_team_id': self.away_team_id,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'MatchPrediction':
        return cls(
            match_id=data['match_id'],
            home_score=data['home_score'],
            away_score=data['away_score'],
            home_score_et=data.get('home_score_et'),
            away_score_et=data.get('away_score_et'),
            penalties_winner=data.get('penalties_winner'),
            home_team_id=data.get('home_team_id'),
            away_team_id=data.get('away_team_id'),
        )

    def __repr__(self):
        return f"MatchPrediction(match_id={self.match_id}, score={self.score_display()})"


STAT_FIELDS = ('points', 'played', 'wins', 'draws', 'losses', 'goals_for', 'goals_against', 'goal_difference')


class RankedRow:
    """Statistics and tie-break metadata shared by group and third-place rows."""

    def __init__(self, team_id, position, points=0, played=0, wins=0, draws=0, losses=0,
                 goals_for=0, goals_against=0, goal_difference=0, has_tiebreak_conflict=False,
                 tiebreak_group=None, manual_tiebreak_order=None):
        self.team_id = team_id
        self.position = position
        self.points = points
        self.played = played
        self.wins = wins
        self.draws = draws
        self.losses = losses
        self.goals_for = goals_for
        self.goals_against = goals_against
        self.goal_difference = goal_difference
        self.has_tiebreak_conflict = has_tiebreak_conflict
        self.tiebreak_group = tiebreak_group
        self.manual_tiebreak_order = manual_tiebreak_order

    def invariant_errors(self) -> List[str]:
        errors = []
        if self.points != 3 * self.wins + self.draws:
            errors.append(f"Team {self.team_id}: points {self.points} != 3*wins + draws")
        if self.goal_difference != self.goals_for - self.goals_against:
            errors.append(f"Team {self.team_id}: goal difference {self.goal_difference} != goals for - goals against")
        if self.has_tiebreak_conflict and self.tiebreak_group is None:
            errors.append(f"Team {self.team_id}: tie-break conflict without a tie-break group")
        return errors

    def stats(self) -> Dict:
        return {field: getattr(self, field) for field in STAT_FIELDS}

    def to_dict(self) -> Dict:
        data = {'team_id': self.team_id, 'position': self.position}
        data.update(self.stats())
        data['has_tiebreak_conflict'] = self.has_tiebreak_conflict
        data['tiebreak_group'] = self.tiebreak_group
        data['manual_tiebreak_order'] = self.manual_tiebreak_order
        return data

    @staticmethod
    def _common_kwargs(data: Dict) -> Dict:
        kwargs = {field: data.get(field, 0) for field in STAT_FIELDS}
        kwargs['has_tiebreak_conflict'] = bool(data.get('has_tiebreak_conflict', False))
        kwargs['tiebreak_group'] = data.get('tiebreak_group')
        kwargs['manual_tiebreak_order'] = data.get('manual_tiebreak_order')
        return kwargs


class GroupStandingPrediction(RankedRow):
    """One team's row in one group's predicted table."""

    def __init__(self, group_id, team_id, position, **kwargs):
        super().__init__(team_id, position, **kwargs)
        self.group_id = group_id

    def copy(self, **changes) -> 'GroupStandingPrediction':
        data = self.to_dict()
        data.update(changes)
        return GroupStandingPrediction.from_dict(data)

    def to_dict(self) -> Dict:
        data = {'group_id': self.group_id}
        data.update(super().to_dict())
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'GroupStandingPrediction':
        return cls(data['group_id'], data['team_id'], data['position'], **cls._common_kwargs(data))

    def __repr__(self):
        return (f"GroupStandingPrediction(group={self.group_id}, team={self.team_id}, pos={self.position}, "
                f"pts={self.points}, gd={self.goal_difference}, gf={self.goals_for})")


class BestThirdPlacePrediction(RankedRow):
    """One of the eight qualifying third-placed teams, ranked 1-8."""

    def __init__(self, team_id, from_group_id, ranking_position, **kwargs):
        super().__init__(team_id, ranking_position, **kwargs)
        self.from_group_id = from_group_id

    @property
    def ranking_position(self):
        return self.position

    @ranking_position.setter
    def ranking_position(self, value):
        self.position = value

    def copy(self, **changes) -> 'BestThirdPlacePrediction':
        data = self.to_dict()
        data.update(changes)
        return BestThirdPlacePrediction.from_dict(data)

    def to_dict(self) -> Dict:
        data = super().to_dict()
        data['ranking_position'] = data.pop('position')
        data['from_group_id'] = self.from_group_id
        return data

    @classmethod
    def from_dict(cls, data: Dict) -> 'BestThirdPlacePrediction':
        position = data.get('ranking_position', data.get('position'))
        return cls(data['team_id'], data['from_group_id'], position, **cls._common_kwargs(data))

    def __repr__(self):
        return (f"BestThirdPlacePrediction(rank={self.ranking_position}, team={self.team_id}, "
                f"group={self.from_group_id}, pts={self.points})")


class Prediction:
    """A user's whole prediction for one pool entry."""

    def __init__(self, id, user_id, entry_id, groups_completed=False, knockouts_completed=False,
                 is_locked=False, champion_team_id=None):
        self.id = id
        self.user_id = user_id
        self.entry_id = entry_id
        self.groups_completed = groups_completed
        self.knockouts_completed = knockouts_completed
        self.is_locked = is_locked
        self.champion_team_id = champion_team_id

    def can_be_edited(self) -> bool:
        return not self.is_locked

    def completion_percentage(self) -> int:
        done = sum([self.groups_completed, self.knockouts_completed, self.champion_team_id is not None])
        return round(done * 100 / 3)

    def to_dict(self) -> Dict:
        return {
            'id': self.id,
            'user_id': self.user_id,
            'entry_id': self.entry_id,
            'groups_completed': self.groups_completed,
            'knockouts_completed': self.knockouts_completed,
            'is_locked': self.is_locked,
            'champion_team_id': self.champion_team_id,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'Prediction':
        return cls(
            id=data['id'],
            user_id=data['user_id'],
            entry_id=data['entry_id'],
            groups_completed=bool(data.get('groups_completed', False)),
            knockouts_completed=bool(data.get('knockouts_completed', False)),
            is_locked=bool(data.get('is_locked', False)),
            champion_team_id=data.get('champion_team_id'),
        )

    def __repr__(self):
        return f"Prediction(id={self.id}, user_id={self.user_id}, entry_id={self.entry_id})"
