"""
Reference data loading: teams, groups, fixtures and the third-place
allocation table.
"""
import logging
import os
from typing import Dict, List, Optional

import yaml

from engine.exceptions import DomainInvariantError
from engine.models import Group, Match, Team
from engine.phases import KnockoutPhase, MatchPhase
from engine.standings import round_robin_pairs

logger = logging.getLogger(__name__)

GROUP_LETTERS = 'ABCDEFGHIJKL'


def group_id_for(letter: str) -> str:
    return f"group-{letter}"


def match_id_for(number: int) -> str:
    return f"M{number}"


class TournamentData:
    """Read-only roster and fixture list for one tournament."""

    def __init__(self, teams: List[Team], groups: List[Group], matches: List[Match]):
        self.teams = {team.id: team for team in teams}
        self.groups = {group.id: group for group in groups}
        self.matches = sorted(matches, key=lambda m: m.match_number)
        self._by_id = {m.id: m for m in self.matches}
        self._by_number = {m.match_number: m for m in self.matches}

    def team(self, team_id: str) -> Optional[Team]:
        return self.teams.get(team_id)

    def group(self, group_id: str) -> Optional[Group]:
        return self.groups.get(group_id)

    def group_letter(self, group_id: str) -> Optional[str]:
        group = self.groups.get(group_id)
        return group.letter if group else None

    def groups_in_order(self) -> List[Group]:
        return sorted(self.groups.values(), key=lambda g: g.letter)

    def match(self, match_id: str) -> Optional[Match]:
        return self._by_id.get(match_id)

    def match_by_number(self, number: int) -> Optional[Match]:
        return self._by_number.get(number)

    def matches_for_group(self, group_id: str) -> List[Match]:
        return [m for m in self.matches if m.group_id == group_id]

    def matches_for_phase(self, phase) -> List[Match]:
        if isinstance(phase, KnockoutPhase):
            phase = phase.match_phase
        return [m for m in self.matches if m.phase == phase]

    def knockout_matches(self) -> List[Match]:
        return [m for m in self.matches if not m.is_group_stage()]


def generate_group_matches(groups: List[Group], first_number: int = 1) -> List[Match]:
    """Round robin fixtures for every group, numbered in group-letter order."""
    matches = []
    number = first_number
    for group in sorted(groups, key=lambda g: g.letter):
        for home, away in round_robin_pairs(group.team_ids):
            matches.append(Match(
                id=match_id_for(number),
                match_number=number,
                phase=MatchPhase.GROUP_STAGE,
                group_id=group.id,
                home_team_id=home,
                away_team_id=away,
            ))
            number += 1
    return matches


def parse_tournament(data: Dict) -> TournamentData:
    teams = [Team(t['id'], t['name'], t['code'], t.get('confederation')) for t in data.get('teams', [])]
    known = {team.id for team in teams}

    groups = []
    for letter, team_ids in sorted((data.get('groups') or {}).items()):
        letter = str(letter)
        missing = [t for t in team_ids if t not in known]
        if missing:
            raise DomainInvariantError(f"Group {letter} references unknown teams: {missing}")
        groups.append(Group(group_id_for(letter), letter, team_ids))

    matches = generate_group_matches(groups)
    for fixture in data.get('knockout', []):
        number = int(fixture['number'])
        matches.append(Match(
            id=match_id_for(number),
            match_number=number,
            phase=MatchPhase(fixture['phase']),
            home_placeholder=fixture.get('home'),
            away_placeholder=fixture.get('away'),
            depends_on=fixture.get('depends_on'),
        ))
    return TournamentData(teams, groups, matches)


def load_tournament(file_path: str) -> TournamentData:
    with open(file_path, mode='r', encoding='utf-8') as file:
        data = yaml.safe_load(file) or {}
    return parse_tournament(data)


def load_allocation_table(file_path: str) -> Dict[str, Dict[str, str]]:
    """Load the third-place allocation table; a missing file means no entries."""
    if not os.path.exists(file_path):
        logger.info('No allocation table at %s, every third-place slot uses the fallback', file_path)
        return {}
    with open(file_path, mode='r', encoding='utf-8') as file:
        data = yaml.safe_load(file) or {}
    table = {}
    for combination, slots in data.items():
        table[str(combination)] = {str(slot): str(group) for slot, group in (slots or {}).items()}
    return table
