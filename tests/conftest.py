"""
Shared pytest fixtures for prediction pool tests.

Running tests:
    pytest tests/
"""
import pytest
import sys
import os

# Add src directory to path for imports
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..', 'src'))

from engine.models import MatchPrediction
from engine.phases import KnockoutPhase
from predictions import PredictionService
from store import PredictionStore
from tournament_data import load_allocation_table, load_tournament

DATA_DIR = os.path.join(os.path.dirname(__file__), '..', 'data')
TOURNAMENT_FILE = os.path.join(DATA_DIR, 'tournament.yaml')
ALLOCATION_FILE = os.path.join(DATA_DIR, 'third_place_allocation.yaml')

# Third-placed team's winning margin over the fourth, per group. Larger
# margins rank higher, so groups A-H qualify in this order.
DEFAULT_THIRD_MARGINS = {letter: 13 - i for i, letter in enumerate('ABCDEFGHIJKL')}


def strict_group_predictions(tournament, group, third_margin=1):
    """Six predictions where every team beats those listed after it.

    Gives a 9/6/3/0 table in roster order. The third-placed team beats the
    fourth by ``third_margin`` goals; every other match ends 1-0.
    """
    third, fourth = group.team_ids[2], group.team_ids[3]
    predictions = []
    for match in tournament.matches_for_group(group.id):
        home_score = third_margin if (match.home_team_id, match.away_team_id) == (third, fourth) else 1
        predictions.append(MatchPrediction(match.id, home_score, 0))
    return predictions


def scored_predictions(tournament, group, scores):
    """Predictions for a group's fixtures from (home goals, away goals) pairs in fixture order."""
    fixtures = tournament.matches_for_group(group.id)
    return [MatchPrediction(match.id, home, away) for match, (home, away) in zip(fixtures, scores)]


@pytest.fixture
def tournament():
    """The reference roster and fixture list shipped in data/."""
    return load_tournament(TOURNAMENT_FILE)


@pytest.fixture
def allocation_table():
    return load_allocation_table(ALLOCATION_FILE)


@pytest.fixture
def store(tmp_path):
    return PredictionStore(str(tmp_path / "predictions"))


@pytest.fixture
def service(tournament, store, allocation_table):
    return PredictionService(tournament, store, allocation_table)


@pytest.fixture
def prediction(service):
    """An empty prediction for one user in one pool entry."""
    return service.get_or_create_prediction('user-1', 'entry-1')


@pytest.fixture
def save_all_groups(service, tournament):
    """Save strict predictions for every group; returns a callable taking the prediction id."""
    def _save(prediction_id, margins=None):
        margins = margins or DEFAULT_THIRD_MARGINS
        result = None
        for group in tournament.groups_in_order():
            predictions = strict_group_predictions(tournament, group, margins[group.letter])
            result = service.save_group_predictions(prediction_id, group.id, predictions)
        return result
    return _save


@pytest.fixture
def predict_phase(service):
    """Predict a 1-0 home win for every match of one phase, using the current bracket."""
    def _predict(prediction_id, phase):
        phase = KnockoutPhase.parse(phase)
        predictions = []
        for match in service.get_knockout_bracket(prediction_id, phase):
            predictions.append(MatchPrediction(match['id'], 1, 0,
                                               home_team_id=match['home_team_id'],
                                               away_team_id=match['away_team_id']))
        return service.save_knockout_predictions(prediction_id, phase, predictions)
    return _predict


@pytest.fixture
def completed_groups(prediction, save_all_groups):
    """A prediction with all twelve groups saved."""
    save_all_groups(prediction.id)
    return prediction


@pytest.fixture
def temp_data_dir(tmp_path, monkeypatch):
    """Point the web app at a temporary prediction directory."""
    import app as app_module

    data_dir = tmp_path / "predictions"
    data_dir.mkdir()
    monkeypatch.setattr(app_module, 'DATA_DIR', str(data_dir))
    monkeypatch.setattr(app_module, 'TOURNAMENT_FILE', TOURNAMENT_FILE)
    monkeypatch.setattr(app_module, 'ALLOCATION_FILE', ALLOCATION_FILE)
    return str(data_dir)


@pytest.fixture
def client(temp_data_dir):
    """Create a test client backed by a temporary data directory."""
    from app import app
    app.config['TESTING'] = True
    with app.test_client() as client:
        yield client
