"""
Prediction workflows: saving group and knockout predictions, resolving the
bracket and reporting progress.

The engine modules stay pure; this layer fetches what they need from the
reference data and the store, and writes their results back inside a single
store transaction.
"""
import logging
from typing import Dict, List, Optional, Sequence

from engine.bracket import KnockoutBracketResolver
from engine.exceptions import ValidationError
from engine.knockout import KnockoutPhaseValidator, validate_prediction_result
from engine.models import GroupStandingPrediction, MatchPrediction
from engine.phases import KnockoutPhase
from engine.standings import (
    GROUP_MATCH_COUNT,
    apply_manual_order,
    calculate_group_standings,
    validate_submitted_standings,
)
from engine.third_places import GROUP_COUNT, QUALIFYING_THIRDS, rank_best_third_places, select_third_places

logger = logging.getLogger(__name__)


class PredictionService:
    def __init__(self, tournament, store, allocation_table=None):
        self.tournament = tournament
        self.store = store
        self.resolver = KnockoutBracketResolver(tournament.group_letter, allocation_table)

    # ------------------------------------------------------------------
    # Prediction aggregate
    # ------------------------------------------------------------------

    def get_or_create_prediction(self, user_id: str, entry_id: str):
        return self.store.get_or_create(user_id, entry_id)

    def get_prediction(self, prediction_id: str):
        return self.store.get(prediction_id)

    def update_champion(self, prediction_id: str, team_id: str):
        if self.tournament.team(team_id) is None:
            raise ValidationError(f"Unknown team {team_id}")
        with self.store.transaction(prediction_id) as record:
            record.prediction.champion_team_id = team_id
        return record.prediction

    def get_prediction_stats(self, prediction_id: str) -> Dict:
        record = self.store.load(prediction_id)
        saved = record.match_predictions()
        phases = {}
        group_matches = [m for m in self.tournament.matches if m.is_group_stage()]
        phases['GROUP_STAGE'] = {
            'predicted': sum(1 for m in group_matches if m.id in saved),
            'expected': len(group_matches),
        }
        for phase in KnockoutPhase.ordered():
            fixtures = self.tournament.matches_for_phase(phase)
            phases[phase.value] = {
                'predicted': sum(1 for m in fixtures if m.id in saved),
                'expected': phase.expected_match_count,
            }
        prediction = record.prediction
        return {
            'prediction_id': prediction.id,
            'groups_completed': record.completed_group_count(),
            'best_third_places': len(record.best_third_places()),
            'phases': phases,
            'champion_team_id': prediction.champion_team_id,
            'completion_percentage': prediction.completion_percentage(),
            'is_locked': prediction.is_locked,
        }

    # ------------------------------------------------------------------
    # Group stage
    # ------------------------------------------------------------------

    def _group_or_error(self, group_id: str):
        group = self.tournament.group(group_id)
        if group is None:
            raise ValidationError(f"Group {group_id} not found")
        return group

    def _enrich_group_predictions(self, group, match_predictions: Sequence[MatchPrediction]) -> List[MatchPrediction]:
        """Attach each fixture's teams and check every match belongs to the group."""
        if len(match_predictions) != GROUP_MATCH_COUNT:
            raise ValidationError(
                f"Group stage must have exactly {GROUP_MATCH_COUNT} matches, got {len(match_predictions)}")

        enriched = []
        errors = []
        for prediction in match_predictions:
            fixture = self.tournament.match(prediction.match_id)
            if fixture is None:
                errors.append(f"Match {prediction.match_id} not found")
                continue
            if fixture.group_id != group.id:
                errors.append(f"Match {prediction.match_id} does not belong to group {group.letter}")
                continue
            if prediction.home_score_et is not None or prediction.away_score_et is not None \
                    or prediction.penalties_winner is not None:
                errors.append(f"Match {prediction.match_id}: group matches have no extra time or penalties")
                continue
            enriched.append(prediction.with_teams(fixture.home_team_id, fixture.away_team_id))
        if errors:
            raise ValidationError(f"Invalid predictions for group {group.letter}", errors)
        return enriched

    def calculate_group_standings(self, group_id: str,
                                  match_predictions: Sequence[MatchPrediction]) -> List[GroupStandingPrediction]:
        """Compute a group table without saving anything."""
        group = self._group_or_error(group_id)
        enriched = self._enrich_group_predictions(group, match_predictions)
        return calculate_group_standings(group.id, group.team_ids, enriched)

    def save_group_predictions(self, prediction_id: str, group_id: str, match_predictions: Sequence[MatchPrediction],
                               submitted_standings: Optional[Sequence[GroupStandingPrediction]] = None) -> Dict:
        """
        Save a group's six scorelines and replace its table.

        ``submitted_standings`` is the table the caller rendered, possibly with
        tied teams reordered; it is stored only if it agrees with the
        recomputation. When every group has a table the best thirds are
        recomputed too.
        """
        group = self._group_or_error(group_id)
        enriched = self._enrich_group_predictions(group, match_predictions)
        if submitted_standings:
            submitted = [row.copy(group_id=group.id) for row in submitted_standings]
            try:
                standings = validate_submitted_standings(group.id, group.team_ids, enriched, submitted)
            except ValidationError as e:
                logger.warning('Rejected standings for group %s in prediction %s: %s', group.letter, prediction_id, e)
                raise
        else:
            standings = calculate_group_standings(group.id, group.team_ids, enriched)

        with self.store.transaction(prediction_id) as record:
            record.save_match_predictions(enriched)
            record.replace_group_standings(group.id, standings)
            logger.info('Replaced standings for group %s in prediction %s', group.letter, prediction_id)
            best_thirds = self._refresh_best_third_places(record)
            total = record.completed_group_count()
            groups_completed = record.prediction.groups_completed

        return {
            'success': True,
            'message': 'Group predictions saved successfully',
            'standings': standings,
            'groups_completed': groups_completed,
            'total_groups_completed': total,
            'best_third_places': best_thirds,
        }

    def _refresh_best_third_places(self, record):
        """Recompute the best thirds inside an open transaction once all groups are in."""
        if record.completed_group_count() < GROUP_COUNT:
            return None
        thirds = select_third_places(record.all_group_standings())
        best = rank_best_third_places(thirds)
        record.replace_best_third_places(best)
        record.prediction.groups_completed = True
        logger.info('Replaced best third places in prediction %s', record.prediction.id)
        return best

    def resolve_group_tie(self, prediction_id: str, group_id: str, tiebreak_group: int,
                          ordered_team_ids: Sequence[str]) -> List[GroupStandingPrediction]:
        group = self._group_or_error(group_id)
        with self.store.transaction(prediction_id) as record:
            rows = record.group_standings(group.id)
            if not rows:
                raise ValidationError(f"Group {group.letter} has not been predicted yet")
            updated = apply_manual_order(rows, tiebreak_group, ordered_team_ids)
            record.replace_group_standings(group.id, updated)
            self._refresh_best_third_places(record)
        return updated

    def get_group_standings(self, prediction_id: str, group_id: str) -> List[GroupStandingPrediction]:
        group = self._group_or_error(group_id)
        return self.store.load(prediction_id).group_standings(group.id)

    def get_best_third_places(self, prediction_id: str):
        return self.store.load(prediction_id).best_third_places()

    def resolve_third_place_tie(self, prediction_id: str, tiebreak_group: int, ordered_team_ids: Sequence[str]):
        with self.store.transaction(prediction_id) as record:
            rows = record.best_third_places()
            if not rows:
                raise ValidationError('Best third places have not been calculated yet')
            updated = apply_manual_order(rows, tiebreak_group, ordered_team_ids)
            record.replace_best_third_places(updated)
        return updated

    # ------------------------------------------------------------------
    # Knockout stage
    # ------------------------------------------------------------------

    def _resolve_round_of_32(self, record) -> Dict:
        if not record.prediction.groups_completed:
            return {}
        standings = [row for rows in record.all_group_standings().values() for row in rows]
        best_thirds = record.best_third_places()
        if len(best_thirds) != QUALIFYING_THIRDS:
            return {}
        fixtures = self.tournament.matches_for_phase(KnockoutPhase.ROUND_OF_32)
        return self.resolver.resolve_round_of_32(standings, best_thirds, fixtures)

    def get_resolved_round_of_32(self, prediction_id: str) -> List[Dict]:
        """The sixteen Round of 32 fixtures with this prediction's teams."""
        record = self.store.load(prediction_id)
        resolved = self._resolve_round_of_32(record)
        if not resolved:
            return []
        matches = []
        for fixture in self.tournament.matches_for_phase(KnockoutPhase.ROUND_OF_32):
            home_id, away_id = resolved[fixture.id]
            matches.append({
                'id': fixture.id,
                'match_number': fixture.match_number,
                'phase': fixture.phase.value,
                'home_team': self.tournament.team(home_id),
                'away_team': self.tournament.team(away_id),
                'home_placeholder': fixture.home_placeholder,
                'away_placeholder': fixture.away_placeholder,
            })
        return matches

    def _validator(self, record) -> KnockoutPhaseValidator:
        return KnockoutPhaseValidator(self.tournament.knockout_matches(), record.match_predictions())

    def get_knockout_bracket(self, prediction_id: str, phase) -> List[Dict]:
        """Matchups for one phase as currently implied by the prediction."""
        phase = KnockoutPhase.parse(phase)
        record = self.store.load(prediction_id)
        if phase.is_first_phase():
            resolved = self._resolve_round_of_32(record)
        else:
            validator = self._validator(record)
            resolved = {f.id: validator.expected_teams(f) for f in validator.fixtures_for(phase)}

        saved = record.match_predictions()
        bracket = []
        for fixture in self.tournament.matches_for_phase(phase):
            home_id, away_id = resolved.get(fixture.id, (None, None))
            prediction = saved.get(fixture.id)
            bracket.append({
                'id': fixture.id,
                'match_number': fixture.match_number,
                'home_team_id': home_id,
                'away_team_id': away_id,
                'home_placeholder': fixture.home_placeholder,
                'away_placeholder': fixture.away_placeholder,
                'prediction': prediction,
            })
        return bracket

    def get_previous_phase_winners(self, prediction_id: str, phase) -> Dict[str, str]:
        phase = KnockoutPhase.parse(phase)
        return self._validator(self.store.load(prediction_id)).previous_phase_winners(phase)

    def save_knockout_predictions(self, prediction_id: str, phase, predictions: Sequence[MatchPrediction]):
        """
        Validate and save every prediction of one knockout phase.

        Round of 32 predictions take their teams from the resolved bracket;
        later rounds must name the predicted winners of their feeder matches.
        """
        try:
            phase = KnockoutPhase.parse(phase)
        except ValueError as e:
            raise ValidationError(str(e)) from None

        with self.store.transaction(prediction_id) as record:
            validator = self._validator(record)
            validator.validate_phase_can_be_predicted(phase)

            expected = phase.expected_match_count
            if len(predictions) != expected:
                raise ValidationError(
                    f"Invalid number of predictions for {phase.value}. Expected {expected}, got {len(predictions)}")
            match_ids = [p.match_id for p in predictions]
            if len(set(match_ids)) != len(match_ids):
                raise ValidationError(f"Duplicate matches in {phase.value} predictions")

            resolved = {}
            if phase.is_first_phase():
                resolved = self._resolve_round_of_32(record)
                if not resolved:
                    raise ValidationError('Cannot predict ROUND_OF_32 before all groups are completed')

            to_save = []
            for prediction in predictions:
                fixture = validator.fixture(prediction.match_id)
                if fixture.phase != phase.match_phase:
                    raise ValidationError(f"Match {fixture.match_number} does not belong to phase {phase.value}")
                validate_prediction_result(prediction)
                if phase.is_first_phase():
                    home, away = resolved[fixture.id]
                    prediction = prediction.with_teams(home, away)
                else:
                    validator.validate_match_teams(phase, prediction.match_id,
                                                   prediction.home_team_id, prediction.away_team_id)
                to_save.append(prediction)

            record.save_match_predictions(to_save)
            if self._all_phases_complete(record):
                record.prediction.knockouts_completed = True

        logger.info('Saved %d %s predictions for prediction %s', len(to_save), phase.value, prediction_id)
        return to_save

    def _all_phases_complete(self, record) -> bool:
        saved = record.match_predictions()
        for phase in KnockoutPhase.ordered():
            fixtures = self.tournament.matches_for_phase(phase)
            if sum(1 for f in fixtures if f.id in saved) != phase.expected_match_count:
                return False
        return True
