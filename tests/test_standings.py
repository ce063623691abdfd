"""
Unit tests for group table calculation, tie detection and manual tie-breaks.
"""
import pytest
import sys
import os

sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from engine.exceptions import ValidationError
from engine.models import GroupStandingPrediction, MatchPrediction
from engine.standings import (
    apply_manual_order,
    calculate_group_standings,
    cluster_spans,
    compare_standings,
    effective_order,
    round_robin_pairs,
    validate_submitted_standings,
)

TEAMS = ['t1', 't2', 't3', 't4']


def predictions_from(scores):
    """Build predictions over the round robin of TEAMS from (home, away) goal pairs."""
    predictions = []
    for i, ((home, away), (home_score, away_score)) in enumerate(zip(round_robin_pairs(TEAMS), scores)):
        predictions.append(MatchPrediction(f"M{i + 1}", home_score, away_score,
                                           home_team_id=home, away_team_id=away))
    return predictions


ALL_HOME_WINS = [(1, 0)] * 6
ALL_DRAWS = [(1, 1)] * 6
# t1 wins everything; t2 and t3 draw each other and both beat t4
TWO_WAY_TIE = [(1, 0), (1, 0), (1, 0), (0, 0), (1, 0), (1, 0)]


class TestCalculateGroupStandings:
    """Tests for building a ranked group table."""

    def test_strict_ranking(self):
        """Test every 1-0 home win gives a 9/6/3/0 table with no ties."""
        rows = calculate_group_standings('group-A', TEAMS, predictions_from(ALL_HOME_WINS))
        assert [r.team_id for r in rows] == TEAMS
        assert [r.position for r in rows] == [1, 2, 3, 4]
        assert [r.points for r in rows] == [9, 6, 3, 0]
        assert all(not r.has_tiebreak_conflict for r in rows)
        assert all(r.tiebreak_group is None for r in rows)

    def test_row_statistics(self):
        """Test the accumulated statistics of the winner."""
        rows = calculate_group_standings('group-A', TEAMS, predictions_from(ALL_HOME_WINS))
        winner = rows[0]
        assert winner.played == 3
        assert winner.wins == 3
        assert winner.draws == 0
        assert winner.losses == 0
        assert winner.goals_for == 3
        assert winner.goals_against == 0
        assert winner.goal_difference == 3
        assert winner.group_id == 'group-A'

    def test_table_totals(self):
        """Test goals for equal goals against across the table and each team plays three times."""
        scores = [(3, 1), (0, 2), (2, 2), (1, 0), (4, 4), (0, 5)]
        rows = calculate_group_standings('group-A', TEAMS, predictions_from(scores))
        assert sum(r.goals_for for r in rows) == sum(r.goals_against for r in rows)
        assert sum(r.goal_difference for r in rows) == 0
        assert all(r.played == 3 for r in rows)
        assert all(r.invariant_errors() == [] for r in rows)

    def test_points_total_matches_results(self):
        """Test total points equal 3 per decisive match plus 2 per draw."""
        scores = [(3, 1), (0, 2), (2, 2), (1, 0), (4, 4), (0, 5)]
        rows = calculate_group_standings('group-A', TEAMS, predictions_from(scores))
        draws = sum(1 for h, a in scores if h == a)
        assert sum(r.points for r in rows) == 3 * (6 - draws) + 2 * draws

    def test_goal_difference_breaks_points_tie(self):
        """Test goal difference ranks teams level on points."""
        # t1 beats t2 and t3 heavily but loses to t4; t4 beats t1 and t2 narrowly
        scores = [(5, 0), (5, 0), (0, 1), (1, 0), (0, 1), (1, 0)]
        rows = calculate_group_standings('group-A', TEAMS, predictions_from(scores))
        assert rows[0].team_id == 't1'
        assert rows[0].points == rows[1].points == 6
        assert rows[0].goal_difference > rows[1].goal_difference
        assert not rows[0].has_tiebreak_conflict

    def test_goals_for_breaks_goal_difference_tie(self):
        """Test goals scored separates teams level on points and goal difference."""
        # t1: W t2 3-2, L t3 0-1, D t4 0-0 -> 4 pts, gd 0, gf 3
        # t3: W t1 1-0, L t2 0-1, D t4 0-0 -> 4 pts, gd 0, gf 1
        scores = [(3, 2), (0, 1), (0, 0), (1, 0), (0, 2), (0, 0)]
        rows = calculate_group_standings('group-A', TEAMS, predictions_from(scores))
        t1 = next(r for r in rows if r.team_id == 't1')
        t3 = next(r for r in rows if r.team_id == 't3')
        assert (t1.points, t1.goal_difference) == (t3.points, t3.goal_difference)
        assert t1.position < t3.position
        assert not t1.has_tiebreak_conflict

    def test_two_way_tie_is_flagged(self):
        """Test two teams level on all keys form one cluster spanning their positions."""
        rows = calculate_group_standings('group-A', TEAMS, predictions_from(TWO_WAY_TIE))
        assert [r.team_id for r in rows] == TEAMS
        assert rows[0].tiebreak_group is None
        assert rows[1].tiebreak_group == rows[2].tiebreak_group == 1
        assert rows[1].has_tiebreak_conflict and rows[2].has_tiebreak_conflict
        assert rows[3].tiebreak_group is None
        assert cluster_spans(rows) == {1: range(2, 4)}

    def test_four_way_tie(self):
        """Test all draws put the whole group in one cluster in roster order."""
        rows = calculate_group_standings('group-A', TEAMS, predictions_from(ALL_DRAWS))
        assert [r.team_id for r in rows] == TEAMS
        assert {r.tiebreak_group for r in rows} == {1}
        assert all(r.points == 3 for r in rows)

    def test_two_separate_clusters(self):
        """Test two independent ties get distinct cluster ids."""
        # t1/t2 draw and both beat t3/t4 1-0; t3/t4 draw
        scores = [(1, 1), (1, 0), (1, 0), (1, 0), (1, 0), (1, 1)]
        rows = calculate_group_standings('group-A', TEAMS, predictions_from(scores))
        assert rows[0].tiebreak_group == rows[1].tiebreak_group == 1
        assert rows[2].tiebreak_group == rows[3].tiebreak_group == 2

    def test_tie_detection_ignores_roster_order(self):
        """Test reordering the roster keeps the same cluster membership."""
        forward = calculate_group_standings('group-A', TEAMS, predictions_from(TWO_WAY_TIE))
        reversed_rows = calculate_group_standings('group-A', list(reversed(TEAMS)), predictions_from(TWO_WAY_TIE))

        def members(rows):
            return {r.team_id for r in rows if r.has_tiebreak_conflict}
        assert members(forward) == members(reversed_rows) == {'t2', 't3'}

    def test_recalculation_is_stable(self):
        """Test recomputing the same input yields the same order."""
        first = calculate_group_standings('group-A', TEAMS, predictions_from(ALL_DRAWS))
        second = calculate_group_standings('group-A', TEAMS, predictions_from(ALL_DRAWS))
        assert [r.to_dict() for r in first] == [r.to_dict() for r in second]

    def test_wrong_prediction_count(self):
        """Test fewer than six predictions is rejected."""
        with pytest.raises(ValidationError, match="exactly 6 matches"):
            calculate_group_standings('group-A', TEAMS, predictions_from(ALL_HOME_WINS)[:5])

    def test_wrong_team_count(self):
        """Test a group needs four distinct teams."""
        with pytest.raises(ValidationError, match="4 distinct teams"):
            calculate_group_standings('group-A', TEAMS[:3], predictions_from(ALL_HOME_WINS))

    def test_team_outside_group(self):
        """Test a prediction naming a foreign team is rejected."""
        predictions = predictions_from(ALL_HOME_WINS)
        predictions[0].away_team_id = 'zz'
        with pytest.raises(ValidationError, match="not in the group"):
            calculate_group_standings('group-A', TEAMS, predictions)

    def test_missing_team(self):
        """Test a prediction missing a team id is rejected."""
        predictions = predictions_from(ALL_HOME_WINS)
        predictions[0].home_team_id = None
        with pytest.raises(ValidationError, match="must include both teams"):
            calculate_group_standings('group-A', TEAMS, predictions)

    def test_repeated_pairing(self):
        """Test the same pairing twice is rejected."""
        predictions = predictions_from(ALL_HOME_WINS)
        predictions[5].home_team_id, predictions[5].away_team_id = 't1', 't2'
        with pytest.raises(ValidationError, match="repeats a pairing"):
            calculate_group_standings('group-A', TEAMS, predictions)

    def test_negative_score(self):
        """Test negative scores are rejected."""
        predictions = predictions_from(ALL_HOME_WINS)
        predictions[2].away_score = -1
        with pytest.raises(ValidationError, match="negative"):
            calculate_group_standings('group-A', TEAMS, predictions)


class TestManualOrder:
    """Tests for breaking a tie cluster by hand."""

    def test_apply_manual_order_swaps_cluster(self):
        """Test reversing a two-team cluster renumbers positions inside its span."""
        rows = calculate_group_standings('group-A', TEAMS, predictions_from(TWO_WAY_TIE))
        updated = apply_manual_order(rows, 1, ['t3', 't2'])
        assert [r.team_id for r in updated] == ['t1', 't3', 't2', 't4']
        assert [r.position for r in updated] == [1, 2, 3, 4]
        t3 = next(r for r in updated if r.team_id == 't3')
        t2 = next(r for r in updated if r.team_id == 't2')
        assert (t3.manual_tiebreak_order, t2.manual_tiebreak_order) == (1, 2)
        assert t3.has_tiebreak_conflict and t3.tiebreak_group == 1

    def test_apply_manual_order_does_not_mutate_input(self):
        """Test manual ordering returns new rows."""
        rows = calculate_group_standings('group-A', TEAMS, predictions_from(TWO_WAY_TIE))
        apply_manual_order(rows, 1, ['t3', 't2'])
        assert [r.team_id for r in rows] == TEAMS
        assert all(r.manual_tiebreak_order is None for r in rows)

    def test_apply_manual_order_unknown_cluster(self):
        """Test ordering a cluster that does not exist."""
        rows = calculate_group_standings('group-A', TEAMS, predictions_from(TWO_WAY_TIE))
        with pytest.raises(ValidationError, match="No tie-break group 2"):
            apply_manual_order(rows, 2, ['t1', 't2'])

    def test_apply_manual_order_wrong_teams(self):
        """Test an ordering naming a team outside the cluster is rejected."""
        rows = calculate_group_standings('group-A', TEAMS, predictions_from(TWO_WAY_TIE))
        with pytest.raises(ValidationError):
            apply_manual_order(rows, 1, ['t2', 't4'])

    def test_effective_order_uses_manual_order(self):
        """Test effective order follows manual orders even if positions were not renumbered."""
        rows = calculate_group_standings('group-A', TEAMS, predictions_from(TWO_WAY_TIE))
        rows[1].manual_tiebreak_order = 2
        rows[2].manual_tiebreak_order = 1
        assert [r.team_id for r in effective_order(rows)] == ['t1', 't3', 't2', 't4']


class TestSubmittedStandings:
    """Tests for checking a caller's table against the recomputation."""

    def _copies(self, rows):
        return [row.copy() for row in rows]

    def test_matching_table_accepted(self):
        """Test an identical table is accepted."""
        predictions = predictions_from(ALL_HOME_WINS)
        calculated = calculate_group_standings('group-A', TEAMS, predictions)
        accepted = validate_submitted_standings('group-A', TEAMS, predictions, self._copies(calculated))
        assert [r.team_id for r in accepted] == TEAMS

    def test_stat_mismatch_reported(self):
        """Test a wrong points total names the field and both values."""
        predictions = predictions_from(ALL_HOME_WINS)
        submitted = self._copies(calculate_group_standings('group-A', TEAMS, predictions))
        submitted[0].points = 7
        with pytest.raises(ValidationError) as exc_info:
            validate_submitted_standings('group-A', TEAMS, predictions, submitted)
        assert exc_info.value.message == 'Group standings validation failed'
        assert "Team t1: points mismatch (provided=7, calculated=9)" in exc_info.value.errors

    def test_every_mismatch_listed(self):
        """Test all offending fields are collected rather than the first only."""
        predictions = predictions_from(ALL_HOME_WINS)
        submitted = self._copies(calculate_group_standings('group-A', TEAMS, predictions))
        submitted[0].points = 7
        submitted[1].goals_for = 9
        errors = compare_standings(submitted, calculate_group_standings('group-A', TEAMS, predictions))
        assert len(errors) == 2

    def test_swapped_positions_outside_tie_rejected(self):
        """Test untied teams cannot swap positions."""
        predictions = predictions_from(ALL_HOME_WINS)
        submitted = self._copies(calculate_group_standings('group-A', TEAMS, predictions))
        submitted[0].position, submitted[1].position = 2, 1
        errors = compare_standings(submitted, calculate_group_standings('group-A', TEAMS, predictions))
        assert any("position mismatch" in e for e in errors)

    def test_permutation_inside_cluster_accepted(self):
        """Test tied teams may be reordered when manual orders agree."""
        predictions = predictions_from(TWO_WAY_TIE)
        calculated = calculate_group_standings('group-A', TEAMS, predictions)
        submitted = apply_manual_order(calculated, 1, ['t3', 't2'])
        accepted = validate_submitted_standings('group-A', TEAMS, predictions, submitted)
        assert [r.team_id for r in accepted] == ['t1', 't3', 't2', 't4']

    def test_manual_order_disagreeing_with_positions_rejected(self):
        """Test manual orders must agree with positions."""
        predictions = predictions_from(TWO_WAY_TIE)
        calculated = calculate_group_standings('group-A', TEAMS, predictions)
        submitted = apply_manual_order(calculated, 1, ['t3', 't2'])
        for row in submitted:
            if row.team_id == 't3':
                row.manual_tiebreak_order = 2
            elif row.team_id == 't2':
                row.manual_tiebreak_order = 1
        errors = compare_standings(submitted, calculated)
        assert errors == ["Tie-break group 1: positions disagree with manual order"]

    def test_manual_order_without_tie_rejected(self):
        """Test a manual order on an untied row is rejected."""
        predictions = predictions_from(ALL_HOME_WINS)
        calculated = calculate_group_standings('group-A', TEAMS, predictions)
        submitted = self._copies(calculated)
        submitted[0].manual_tiebreak_order = 1
        errors = compare_standings(submitted, calculated)
        assert errors == ["Team t1: manual_tiebreak_order given without a tie"]

    def test_missing_conflict_flag_rejected(self):
        """Test tie metadata must match."""
        predictions = predictions_from(TWO_WAY_TIE)
        calculated = calculate_group_standings('group-A', TEAMS, predictions)
        submitted = self._copies(calculated)
        submitted[1].has_tiebreak_conflict = False
        errors = compare_standings(submitted, calculated)
        assert any("has_tiebreak_conflict mismatch" in e for e in errors)

    def test_wrong_row_count(self):
        """Test a table with too few rows."""
        predictions = predictions_from(ALL_HOME_WINS)
        calculated = calculate_group_standings('group-A', TEAMS, predictions)
        errors = compare_standings(self._copies(calculated)[:3], calculated)
        assert errors == ["Must have exactly 4 teams, got 3"]

    def test_submitted_rows_from_dicts(self):
        """Test a table rebuilt from plain dicts validates."""
        predictions = predictions_from(ALL_HOME_WINS)
        calculated = calculate_group_standings('group-A', TEAMS, predictions)
        submitted = [GroupStandingPrediction.from_dict(r.to_dict()) for r in calculated]
        assert compare_standings(submitted, calculated) == []

    def test_team_listed_twice_in_tie_rejected(self):
        """Test a tied team repeated at both tied positions is rejected and the missing team named."""
        predictions = predictions_from(TWO_WAY_TIE)
        calculated = calculate_group_standings('group-A', TEAMS, predictions)
        submitted = self._copies(calculated)
        duplicate = submitted[1].copy()
        duplicate.position = 3
        submitted[2] = duplicate
        assert [r.team_id for r in submitted] == ['t1', 't2', 't2', 't4']
        errors = compare_standings(submitted, calculated)
        assert errors == ["Teams listed more than once: t2", "Teams missing from the table: t3"]
        with pytest.raises(ValidationError):
            validate_submitted_standings('group-A', TEAMS, predictions, submitted)

    def test_team_from_other_group_rejected(self):
        """Test a team outside the group is rejected."""
        predictions = predictions_from(ALL_HOME_WINS)
        calculated = calculate_group_standings('group-A', TEAMS, predictions)
        submitted = self._copies(calculated)
        submitted[3].team_id = 't9'
        errors = compare_standings(submitted, calculated)
        assert errors == ["Teams missing from the table: t4", "Teams not in this group: t9"]
