"""
Ranking of the twelve third-placed teams across groups.
"""
from typing import Dict, List, Sequence

from engine.exceptions import ValidationError
from engine.models import BestThirdPlacePrediction, GroupStandingPrediction
from engine.standings import assign_tie_clusters, effective_order, ranking_key


GROUP_COUNT = 12
QUALIFYING_THIRDS = 8


def rank_best_third_places(third_places: Sequence[GroupStandingPrediction]) -> List[BestThirdPlacePrediction]:
    """
    Rank one third-placed row per group and keep the best eight.

    Uses the same ordering and tie detection as a group table. Ties are
    detected among the eight kept rows only, so a row level with one that
    missed the cut is not flagged.
    """
    if len(third_places) != GROUP_COUNT:
        raise ValidationError(
            f"Must provide exactly {GROUP_COUNT} third place teams (one per group), got {len(third_places)}")

    errors = []
    for row in third_places:
        if row.position != 3:
            errors.append(f"Team {row.team_id} of group {row.group_id} is at position {row.position}, not 3")
    group_ids = [row.group_id for row in third_places]
    if len(set(group_ids)) != GROUP_COUNT:
        errors.append(f"Third places must come from {GROUP_COUNT} different groups")
    if errors:
        raise ValidationError('Invalid third place rows', errors)

    ranked = []
    for row in sorted(third_places, key=ranking_key):
        ranked.append(BestThirdPlacePrediction(
            row.team_id,
            row.group_id,
            0,
            points=row.points,
            played=row.played,
            wins=row.wins,
            draws=row.draws,
            losses=row.losses,
            goals_for=row.goals_for,
            goals_against=row.goals_against,
            goal_difference=row.goal_difference,
        ))
    for index, row in enumerate(ranked):
        row.ranking_position = index + 1

    return assign_tie_clusters(ranked[:QUALIFYING_THIRDS])


def select_third_places(standings_by_group: Dict[str, Sequence[GroupStandingPrediction]]) -> List[GroupStandingPrediction]:
    """Pick each group's third-placed row, honouring manual tie-break orders."""
    thirds = []
    for group_id in sorted(standings_by_group):
        rows = effective_order(standings_by_group[group_id])
        if len(rows) >= 3:
            thirds.append(rows[2])
    return thirds
