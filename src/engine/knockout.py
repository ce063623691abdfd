"""
Knockout phase validation.

A knockout round can only be predicted once the previous round is complete
and every match in it has a definite winner. Scorelines must follow the
regulation -> extra time -> penalties cascade.
"""
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from engine.exceptions import DomainInvariantError, ValidationError
from engine.models import PENALTY_SIDES, Match, MatchPrediction
from engine.phases import KnockoutPhase


def validate_match_result(home_score: int, away_score: int, home_score_et: Optional[int] = None,
                          away_score_et: Optional[int] = None, penalties_winner: Optional[str] = None) -> None:
    """Reject a knockout scoreline that is not physically consistent."""
    if home_score is None or away_score is None:
        raise ValidationError('Regular time scores are required')
    if home_score < 0 or away_score < 0:
        raise ValidationError('Scores cannot be negative')
    if (home_score_et is not None and home_score_et < 0) or (away_score_et is not None and away_score_et < 0):
        raise ValidationError('Extra time scores cannot be negative')

    if home_score != away_score:
        if home_score_et is not None or away_score_et is not None:
            raise ValidationError('Extra time scores should not be provided when there is a winner in regular time')
        if penalties_winner is not None:
            raise ValidationError('Penalties winner should not be provided when there is a winner in regular time')
        return

    if home_score_et is None or away_score_et is None:
        raise ValidationError('Extra time scores are required when regular time ends in a draw')
    if home_score_et < home_score or away_score_et < away_score:
        raise ValidationError('Extra time scores must be greater than or equal to regular time scores')

    if home_score_et != away_score_et:
        if penalties_winner is not None:
            raise ValidationError('Penalties winner should not be provided when there is a winner in extra time')
        return

    if penalties_winner is None:
        raise ValidationError('Penalties winner is required when extra time ends in a draw')
    if penalties_winner not in PENALTY_SIDES:
        raise ValidationError('Penalties winner must be either "home" or "away"')


def validate_prediction_result(prediction: MatchPrediction) -> None:
    validate_match_result(prediction.home_score, prediction.away_score, prediction.home_score_et,
                          prediction.away_score_et, prediction.penalties_winner)


def match_teams(prediction: MatchPrediction, fixture: Match) -> Tuple[Optional[str], Optional[str]]:
    """Teams a prediction was made for, falling back to the fixture's own."""
    home = prediction.home_team_id or fixture.home_team_id
    away = prediction.away_team_id or fixture.away_team_id
    return home, away


def determine_winner(prediction: MatchPrediction, fixture: Match) -> Optional[str]:
    """
    Winning team id of a predicted knockout match, or None.

    Precedence: penalties winner, then a decisive extra time, then a
    decisive regulation score. None means an unresolved draw or unknown
    teams, which only stored data that skipped validation can produce.
    """
    home, away = match_teams(prediction, fixture)
    if not home or not away:
        return None

    if prediction.penalties_winner:
        return home if prediction.penalties_winner == 'home' else away

    if prediction.has_extra_time():
        if prediction.home_score_et > prediction.away_score_et:
            return home
        if prediction.away_score_et > prediction.home_score_et:
            return away
        return None

    if prediction.home_score > prediction.away_score:
        return home
    if prediction.away_score > prediction.home_score:
        return away
    return None


class KnockoutPhaseValidator:
    """
    Gatekeeper for knockout predictions of one prediction.

    ``fixtures`` are the tournament's knockout fixtures; ``predictions`` maps
    fixture id to the prediction already saved for it. Both are read-only
    snapshots taken by the caller.
    """

    def __init__(self, fixtures: Iterable[Match], predictions: Mapping[str, MatchPrediction]):
        self.fixtures = list(fixtures)
        self.predictions = predictions
        self._by_id = {f.id: f for f in self.fixtures}
        self._by_number = {f.match_number: f for f in self.fixtures}

    def fixtures_for(self, phase: KnockoutPhase) -> List[Match]:
        return sorted((f for f in self.fixtures if f.phase == phase.match_phase), key=lambda f: f.match_number)

    def fixture(self, match_id: str) -> Match:
        fixture = self._by_id.get(match_id)
        if fixture is None:
            raise ValidationError(f"Match {match_id} not found")
        return fixture

    def validate_phase_can_be_predicted(self, phase: KnockoutPhase) -> None:
        if phase.is_first_phase():
            return

        previous = phase.previous
        expected = previous.expected_match_count
        previous_fixtures = self.fixtures_for(previous)
        if len(previous_fixtures) != expected:
            raise ValidationError(
                f"Cannot predict {phase.value}. Expected {expected} matches in {previous.value}, "
                f"found {len(previous_fixtures)}")

        saved = [self.predictions[f.id] for f in previous_fixtures if f.id in self.predictions]
        if len(saved) != expected:
            raise ValidationError(
                f"Cannot predict {phase.value}. Previous phase {previous.value} is not complete. "
                f"Expected {expected} predictions, found {len(saved)}")

        unresolved = [f.match_number for f in previous_fixtures
                      if determine_winner(self.predictions[f.id], f) is None]
        if unresolved:
            raise ValidationError(
                f"Cannot predict {phase.value}. Some matches in {previous.value} have no winner defined",
                [f"match {number} has no winner" for number in unresolved])

    def expected_teams(self, fixture: Match) -> Tuple[Optional[str], Optional[str]]:
        """Predicted winners of the two matches feeding ``fixture``."""
        if len(fixture.depends_on) != 2:
            raise DomainInvariantError(f"Match {fixture.match_number} has invalid dependencies")
        winners = []
        for number in fixture.depends_on:
            feeder = self._by_number.get(number)
            if feeder is None:
                raise DomainInvariantError(f"Match {fixture.match_number} depends on unknown match {number}")
            prediction = self.predictions.get(feeder.id)
            winners.append(determine_winner(prediction, feeder) if prediction else None)
        return winners[0], winners[1]

    def validate_match_teams(self, phase: KnockoutPhase, match_id: str, home_team_id: str, away_team_id: str) -> None:
        if phase.is_first_phase():
            return

        fixture = self.fixture(match_id)
        if fixture.phase != phase.match_phase:
            raise ValidationError(f"Match {fixture.match_number} does not belong to phase {phase.value}")

        home_winner, away_winner = self.expected_teams(fixture)
        if not home_winner or not away_winner:
            raise ValidationError(f"Cannot determine winners from feeding matches of match {fixture.match_number}")

        home_feeder, away_feeder = fixture.depends_on
        if home_team_id != home_winner:
            raise ValidationError(
                f"Invalid home team. Expected winner of match {home_feeder}, "
                f"but got {home_team_id} instead of {home_winner}")
        if away_team_id != away_winner:
            raise ValidationError(
                f"Invalid away team. Expected winner of match {away_feeder}, "
                f"but got {away_team_id} instead of {away_winner}")

    def previous_phase_winners(self, phase: KnockoutPhase) -> Dict[str, str]:
        """Fixture id -> predicted winner for the round before ``phase``."""
        previous = phase.previous
        if previous is None:
            return {}
        winners = {}
        for fixture in self.fixtures_for(previous):
            prediction = self.predictions.get(fixture.id)
            if prediction is None:
                continue
            winner = determine_winner(prediction, fixture)
            if winner:
                winners[fixture.id] = winner
        return winners
