"""
Round of 32 resolution: turns fixture placeholders into concrete teams.

Placeholders come in three forms:
- "Group A winners"
- "Group B runners-up"
- "Group A/B/C/D/F third place" (one of the listed groups' third-placed team)

Third-place slots are filled greedily in ascending match number order.
For each slot the allocation table is consulted first; when it has nothing
usable the best-ranked qualifying third among the listed groups is taken,
and failing that the best-ranked qualifying third from anywhere. Each third
is placed at most once.
"""
import logging
import re
from typing import Callable, Dict, List, Mapping, Optional, Sequence, Set, Tuple, Union

from engine.exceptions import DomainInvariantError
from engine.models import BestThirdPlacePrediction, GroupStandingPrediction, Match
from engine.phases import MatchPhase
from engine.standings import effective_order
from engine.third_places import QUALIFYING_THIRDS

logger = logging.getLogger(__name__)

WINNERS_PATTERN = re.compile(r'^Group ([A-L]) winners$')
RUNNERS_UP_PATTERN = re.compile(r'^Group ([A-L]) runners-up$')
THIRD_PLACE_PATTERN = re.compile(r'^Group ([A-L](?:/[A-L])+) third place$')

ROUND_OF_32_MATCH_COUNT = 16

AllocationTable = Mapping[str, Mapping[str, str]]


def parse_placeholder(placeholder: Optional[str]) -> Tuple[str, List[str]]:
    """
    Classify a placeholder.

    Returns ('winner', [letter]), ('runner_up', [letter]) or
    ('third', [letters...]).
    """
    if not placeholder:
        raise DomainInvariantError('Placeholder is required for Round of 32 matches')
    text = placeholder.strip()
    match = WINNERS_PATTERN.match(text)
    if match:
        return 'winner', [match.group(1)]
    match = RUNNERS_UP_PATTERN.match(text)
    if match:
        return 'runner_up', [match.group(1)]
    match = THIRD_PLACE_PATTERN.match(text)
    if match:
        return 'third', match.group(1).split('/')
    raise DomainInvariantError(f"Unknown placeholder format: {placeholder}")


def combination_key(letters) -> str:
    """Allocation table key for a set of qualifying groups, e.g. 'ABCDEFGH'."""
    return ''.join(sorted(letters))


class KnockoutBracketResolver:
    """
    Resolve the sixteen Round of 32 fixtures for one prediction.

    ``group_letters`` maps a group id to its letter, either as a mapping or
    as a callable. Lookups are memoised for the lifetime of the resolver;
    group letters never change once the tournament is loaded.
    """

    def __init__(self, group_letters: Union[Mapping[str, str], Callable[[str], Optional[str]]],
                 allocation_table: Optional[AllocationTable] = None):
        if callable(group_letters):
            self._lookup = group_letters
        else:
            self._lookup = dict(group_letters).get
        self.allocation_table = allocation_table or {}
        self._letter_cache: Dict[str, str] = {}

    def group_letter(self, group_id: str) -> str:
        if group_id in self._letter_cache:
            return self._letter_cache[group_id]
        letter = self._lookup(group_id)
        if not letter:
            raise DomainInvariantError(f"Group not found: {group_id}")
        self._letter_cache[group_id] = letter
        return letter

    def resolve_round_of_32(self, group_standings: Sequence[GroupStandingPrediction],
                            best_third_places: Sequence[BestThirdPlacePrediction],
                            fixtures: Sequence[Match]) -> Dict[str, Tuple[str, str]]:
        """Map each fixture id to its (home team id, away team id)."""
        if len(fixtures) != ROUND_OF_32_MATCH_COUNT:
            raise DomainInvariantError(
                f"Expected {ROUND_OF_32_MATCH_COUNT} Round of 32 matches, found {len(fixtures)}")
        for fixture in fixtures:
            if fixture.phase != MatchPhase.ROUND_OF_32:
                raise DomainInvariantError(f"Match {fixture.match_number} is not a Round of 32 match")

        winners, runners_up, thirds = self._build_position_maps(group_standings)
        third_ranks = self._build_third_place_ranks(best_third_places)
        qualifying = set(third_ranks)
        if len(qualifying) != QUALIFYING_THIRDS:
            raise DomainInvariantError(
                f"Expected {QUALIFYING_THIRDS} qualifying third places, found {len(qualifying)}")

        allocation = self.allocation_table.get(combination_key(qualifying))
        if allocation is None:
            logger.debug('No allocation table entry for %s, using ranking fallback', combination_key(qualifying))

        used: Set[str] = set()
        resolved = {}
        for fixture in sorted(fixtures, key=lambda f: f.match_number):
            home = self._resolve_placeholder(fixture.home_placeholder, winners, runners_up, thirds,
                                             third_ranks, used, allocation)
            away = self._resolve_placeholder(fixture.away_placeholder, winners, runners_up, thirds,
                                             third_ranks, used, allocation)
            resolved[fixture.id] = (home, away)
        return resolved

    def _build_position_maps(self, group_standings):
        by_group = {}
        for row in group_standings:
            by_group.setdefault(row.group_id, []).append(row)

        winners, runners_up, thirds = {}, {}, {}
        for group_id, rows in by_group.items():
            ordered = effective_order(rows)
            letter = self.group_letter(group_id)
            if len(ordered) > 0:
                winners[letter] = ordered[0].team_id
            if len(ordered) > 1:
                runners_up[letter] = ordered[1].team_id
            if len(ordered) > 2:
                thirds[letter] = ordered[2].team_id
        return winners, runners_up, thirds

    def _build_third_place_ranks(self, best_third_places) -> Dict[str, int]:
        ranks = {}
        for row in best_third_places:
            if row.ranking_position <= QUALIFYING_THIRDS:
                ranks[self.group_letter(row.from_group_id)] = row.ranking_position
        return ranks

    def _resolve_placeholder(self, placeholder, winners, runners_up, thirds, third_ranks, used, allocation) -> str:
        kind, letters = parse_placeholder(placeholder)
        if kind == 'winner':
            team_id = winners.get(letters[0])
            if not team_id:
                raise DomainInvariantError(f"No winner found for group {letters[0]}")
            return team_id
        if kind == 'runner_up':
            team_id = runners_up.get(letters[0])
            if not team_id:
                raise DomainInvariantError(f"No runner-up found for group {letters[0]}")
            return team_id

        slot_key = '/'.join(letters)
        group = self.choose_third_place_group(slot_key, letters, third_ranks, used, allocation)
        team_id = thirds.get(group)
        if not team_id:
            raise DomainInvariantError(f"No third place found for group {group}")
        used.add(group)
        return team_id

    @staticmethod
    def choose_third_place_group(slot_key: str, candidates: Sequence[str], third_ranks: Dict[str, int],
                                 used: Set[str], allocation: Optional[Mapping[str, str]] = None) -> str:
        """Pick the qualifying group whose third fills one slot. Does not mark it used."""
        if allocation:
            assigned = allocation.get(slot_key)
            if assigned and assigned in third_ranks and assigned not in used:
                logger.debug('Slot %s assigned group %s from allocation table', slot_key, assigned)
                return assigned

        available = [g for g in candidates if g in third_ranks and g not in used]
        if available:
            best = min(available, key=lambda g: third_ranks[g])
            logger.debug('Slot %s assigned best-ranked candidate group %s', slot_key, best)
            return best

        anywhere = [g for g in third_ranks if g not in used]
        if anywhere:
            best = min(anywhere, key=lambda g: third_ranks[g])
            logger.debug('Slot %s has no eligible candidate, assigned group %s', slot_key, best)
            return best

        raise DomainInvariantError(
            f"No third place available. Possible: {slot_key}, already used: {','.join(sorted(used))}")
