"""
Group table calculation and tie detection.

Ranking: points -> goal difference -> goals for. Nothing further is applied;
rows still level after those three keys form a tie cluster that only a
manual order can break.
"""
from itertools import combinations
from typing import Dict, List, Sequence

from engine.exceptions import ValidationError
from engine.models import STAT_FIELDS, GroupStandingPrediction, MatchPrediction


GROUP_SIZE = 4
GROUP_MATCH_COUNT = 6


def ranking_key(row):
    """Sort key putting the best row first."""
    return (-row.points, -row.goal_difference, -row.goals_for)


def tie_signature(row):
    return (row.points, row.goal_difference, row.goals_for)


def assign_tie_clusters(rows: List, first_cluster_id: int = 1) -> List:
    """Flag every maximal run of level rows in an already sorted list.

    Each run gets a fresh cluster id; rows outside a run are cleared.
    Returns the same list for chaining.
    """
    cluster_id = first_cluster_id
    i = 0
    while i < len(rows):
        j = i + 1
        while j < len(rows) and tie_signature(rows[j]) == tie_signature(rows[i]):
            j += 1
        run = rows[i:j]
        if len(run) > 1:
            for row in run:
                row.has_tiebreak_conflict = True
                row.tiebreak_group = cluster_id
            cluster_id += 1
        else:
            run[0].has_tiebreak_conflict = False
            run[0].tiebreak_group = None
        i = j
    return rows


def calculate_group_standings(group_id: str, team_ids: Sequence[str],
                              predictions: Sequence[MatchPrediction]) -> List[GroupStandingPrediction]:
    """
    Build a group's ranked table from its six predicted scorelines.

    Each prediction must carry ``home_team_id`` and ``away_team_id``. The
    result is ordered 1st to 4th; level rows keep the order the teams were
    given in and are flagged as a tie cluster rather than separated.
    """
    team_ids = list(team_ids)
    if len(team_ids) != GROUP_SIZE or len(set(team_ids)) != GROUP_SIZE:
        raise ValidationError(f"Group must have exactly {GROUP_SIZE} distinct teams, got {len(team_ids)}")
    if len(predictions) != GROUP_MATCH_COUNT:
        raise ValidationError(f"Group stage must have exactly {GROUP_MATCH_COUNT} matches, got {len(predictions)}")

    stats = {}
    for team_id in team_ids:
        stats[team_id] = {field: 0 for field in STAT_FIELDS}

    pairs_seen = set()
    for prediction in predictions:
        home, away = prediction.home_team_id, prediction.away_team_id
        if not home or not away:
            raise ValidationError(f"Match prediction {prediction.match_id} must include both teams")
        if home not in stats or away not in stats:
            raise ValidationError(f"Match {prediction.match_id} contains teams not in the group: {home}, {away}")
        pair = frozenset((home, away))
        if len(pair) != 2 or pair in pairs_seen:
            raise ValidationError(f"Match {prediction.match_id} repeats a pairing or pits a team against itself")
        pairs_seen.add(pair)
        if prediction.home_score is None or prediction.away_score is None:
            raise ValidationError(f"Match {prediction.match_id} is missing a score")
        if prediction.home_score < 0 or prediction.away_score < 0:
            raise ValidationError(f"Match {prediction.match_id}: scores cannot be negative")

        _record_result(stats[home], prediction.home_score, prediction.away_score)
        _record_result(stats[away], prediction.away_score, prediction.home_score)

    rows = []
    for team_id in team_ids:
        team_stats = stats[team_id]
        team_stats['goal_difference'] = team_stats['goals_for'] - team_stats['goals_against']
        rows.append(GroupStandingPrediction(group_id, team_id, 0, **team_stats))

    rows.sort(key=ranking_key)
    for index, row in enumerate(rows):
        row.position = index + 1

    return assign_tie_clusters(rows)


def _record_result(team_stats: Dict, scored: int, conceded: int):
    team_stats['played'] += 1
    team_stats['goals_for'] += scored
    team_stats['goals_against'] += conceded
    if scored > conceded:
        team_stats['wins'] += 1
        team_stats['points'] += 3
    elif scored == conceded:
        team_stats['draws'] += 1
        team_stats['points'] += 1
    else:
        team_stats['losses'] += 1


def cluster_spans(rows: Sequence) -> Dict[int, range]:
    """Positions covered by each tie cluster, e.g. {1: range(2, 4)}."""
    spans = {}
    for row in rows:
        if row.tiebreak_group is None:
            continue
        positions = [r.position for r in rows if r.tiebreak_group == row.tiebreak_group]
        spans[row.tiebreak_group] = range(min(positions), max(positions) + 1)
    return spans


def effective_order(rows: Sequence) -> List:
    """Rows in final order: manual tie-break order wins inside a cluster."""
    spans = cluster_spans(rows)

    def key(row):
        if row.tiebreak_group is not None and row.tiebreak_group in spans:
            start = spans[row.tiebreak_group].start
            inner = row.manual_tiebreak_order if row.manual_tiebreak_order is not None else row.position
            return (start, 0 if row.manual_tiebreak_order is not None else 1, inner)
        return (row.position, 0, 0)

    return sorted(rows, key=key)


def apply_manual_order(rows: Sequence, tiebreak_group: int, ordered_team_ids: Sequence[str]) -> List:
    """
    Break one tie cluster with a user-chosen order.

    Returns copies of ``rows`` where the cluster members get
    ``manual_tiebreak_order`` 1..n and their positions are renumbered inside
    the span the cluster already occupies. Other rows are untouched.
    """
    members = [row for row in rows if row.tiebreak_group == tiebreak_group]
    if not members:
        raise ValidationError(f"No tie-break group {tiebreak_group} in this table")
    member_ids = {row.team_id for row in members}
    ordered_team_ids = list(ordered_team_ids)
    if len(ordered_team_ids) != len(member_ids) or set(ordered_team_ids) != member_ids:
        raise ValidationError(
            f"Tie-break group {tiebreak_group} must be ordered using exactly its teams",
            [f"expected {sorted(member_ids)}, got {ordered_team_ids}"],
        )

    start = min(row.position for row in members)
    updated = []
    for row in rows:
        new_row = row.copy()
        if row.tiebreak_group == tiebreak_group:
            order = ordered_team_ids.index(row.team_id) + 1
            new_row.manual_tiebreak_order = order
            new_row.position = start + order - 1
        updated.append(new_row)
    return sorted(updated, key=lambda r: r.position)


def compare_standings(submitted: Sequence, calculated: Sequence) -> List[str]:
    """
    List every difference between a caller's table and the recomputed one.

    Statistics and tie metadata must match exactly. A submitted position may
    differ from the computed one only by a permutation inside a tie cluster,
    and manual orders inside a cluster must be 1..n and agree with the
    submitted positions.
    """
    errors = []
    if len(submitted) != len(calculated):
        return [f"Must have exactly {len(calculated)} teams, got {len(submitted)}"]

    team_errors = _team_set_errors(submitted, calculated)
    if team_errors:
        return team_errors

    positions = sorted(row.position for row in submitted)
    expected_positions = sorted(row.position for row in calculated)
    if positions != expected_positions:
        return [f"Positions must be {expected_positions}, got {positions}"]

    by_team = {row.team_id: row for row in calculated}
    spans = cluster_spans(calculated)
    for provided in submitted:
        computed = by_team[provided.team_id]
        for field in STAT_FIELDS:
            provided_value = getattr(provided, field)
            calculated_value = getattr(computed, field)
            if provided_value != calculated_value:
                errors.append(f"Team {provided.team_id}: {field} mismatch "
                              f"(provided={provided_value}, calculated={calculated_value})")
        if bool(provided.has_tiebreak_conflict) != computed.has_tiebreak_conflict:
            errors.append(f"Team {provided.team_id}: has_tiebreak_conflict mismatch "
                          f"(provided={provided.has_tiebreak_conflict}, calculated={computed.has_tiebreak_conflict})")
        if provided.tiebreak_group != computed.tiebreak_group:
            errors.append(f"Team {provided.team_id}: tiebreak_group mismatch "
                          f"(provided={provided.tiebreak_group}, calculated={computed.tiebreak_group})")

        allowed = spans.get(computed.tiebreak_group, range(computed.position, computed.position + 1))
        if provided.position not in allowed:
            errors.append(f"Team {provided.team_id}: position mismatch "
                          f"(provided={provided.position}, calculated={_describe_span(allowed)})")
        if provided.manual_tiebreak_order is not None and computed.tiebreak_group is None:
            errors.append(f"Team {provided.team_id}: manual_tiebreak_order given without a tie")

    if not errors:
        errors.extend(_manual_order_errors(submitted))
    return errors


def _team_set_errors(submitted: Sequence, calculated: Sequence) -> List[str]:
    """Each calculated team must appear exactly once in the submission."""
    submitted_ids = [row.team_id for row in submitted]
    expected_ids = {row.team_id for row in calculated}
    errors = []
    duplicated = sorted({t for t in submitted_ids if submitted_ids.count(t) > 1})
    if duplicated:
        errors.append(f"Teams listed more than once: {', '.join(duplicated)}")
    missing = sorted(expected_ids - set(submitted_ids))
    if missing:
        errors.append(f"Teams missing from the table: {', '.join(missing)}")
    unknown = sorted(set(submitted_ids) - expected_ids)
    if unknown:
        errors.append(f"Teams not in this group: {', '.join(unknown)}")
    return errors


def _manual_order_errors(rows: Sequence) -> List[str]:
    errors = []
    clusters = {}
    for row in rows:
        if row.tiebreak_group is not None:
            clusters.setdefault(row.tiebreak_group, []).append(row)
    for cluster_id, members in sorted(clusters.items()):
        orders = [row.manual_tiebreak_order for row in members]
        if all(order is None for order in orders):
            continue
        if sorted(o for o in orders if o is not None) != list(range(1, len(members) + 1)):
            errors.append(f"Tie-break group {cluster_id}: manual orders must be 1..{len(members)}, got {orders}")
            continue
        by_position = sorted(members, key=lambda r: r.position)
        by_manual = sorted(members, key=lambda r: r.manual_tiebreak_order)
        if [r.team_id for r in by_position] != [r.team_id for r in by_manual]:
            errors.append(f"Tie-break group {cluster_id}: positions disagree with manual order")
    return errors


def _describe_span(span: range) -> str:
    if len(span) == 1:
        return str(span.start)
    return f"{span.start}-{span[-1]}"


def validate_submitted_standings(group_id: str, team_ids: Sequence[str], predictions: Sequence[MatchPrediction],
                                 submitted: Sequence[GroupStandingPrediction]) -> List[GroupStandingPrediction]:
    """Recompute a group table and reject a submission that disagrees.

    Returns the submitted rows in position order once accepted.
    """
    calculated = calculate_group_standings(group_id, team_ids, predictions)
    errors = compare_standings(submitted, calculated)
    if errors:
        raise ValidationError('Group standings validation failed', errors)
    return sorted(submitted, key=lambda r: r.position)


def round_robin_pairs(team_ids: Sequence[str]):
    """Every unordered pairing in a group, in roster order."""
    return list(combinations(team_ids, 2))
