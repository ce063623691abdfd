"""
Flask web application for the prediction pool.
"""
import os
import logging
from flask import Flask, jsonify, request
from engine.exceptions import (
    DomainInvariantError,
    PredictionLockedError,
    PredictionNotFoundError,
    ValidationError,
)
from engine.models import GroupStandingPrediction, MatchPrediction
from engine.phases import KnockoutPhase
from predictions import PredictionService
from store import PredictionStore
from tournament_data import load_allocation_table, load_tournament

app = Flask(__name__)

BASE_DIR = os.path.dirname(os.path.dirname(__file__))
DATA_DIR = os.environ.get('PREDICTION_DATA_DIR', os.path.join(BASE_DIR, 'data', 'predictions'))
TOURNAMENT_FILE = os.environ.get('TOURNAMENT_FILE', os.path.join(BASE_DIR, 'data', 'tournament.yaml'))
ALLOCATION_FILE = os.environ.get('ALLOCATION_FILE', os.path.join(BASE_DIR, 'data', 'third_place_allocation.yaml'))


def _get_or_create_secret_key() -> bytes:
    """Get SECRET_KEY from env, or generate and persist to file."""
    env_key = os.environ.get('SECRET_KEY')
    if env_key:
        return env_key.encode() if isinstance(env_key, str) else env_key
    key_file = os.path.join(DATA_DIR, '.secret_key')
    if os.path.exists(key_file):
        with open(key_file, 'rb') as f:
            return f.read()
    key = os.urandom(24)
    os.makedirs(os.path.dirname(key_file), exist_ok=True)
    with open(key_file, 'wb') as f:
        f.write(key)
    return key


app.secret_key = _get_or_create_secret_key()

# Services are built on first use so tests can point the paths elsewhere
_service_cache = {}


def get_service() -> PredictionService:
    key = (DATA_DIR, TOURNAMENT_FILE, ALLOCATION_FILE)
    service = _service_cache.get(key)
    if service is None:
        tournament = load_tournament(TOURNAMENT_FILE)
        allocation_table = load_allocation_table(ALLOCATION_FILE)
        service = PredictionService(tournament, PredictionStore(DATA_DIR), allocation_table)
        _service_cache.clear()
        _service_cache[key] = service
    return service


def _to_serializable(obj):
    """Convert models (and containers of them) to JSON-friendly values."""
    if hasattr(obj, 'to_dict'):
        return _to_serializable(obj.to_dict())
    if isinstance(obj, dict):
        return {k: _to_serializable(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_to_serializable(item) for item in obj]
    return obj


def _require_int(item: dict, field: str, required: bool = True):
    value = item.get(field)
    if value is None:
        if required:
            raise ValidationError(f'{field} is required')
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(f'{field} must be an integer')
    return value


def _parse_match_predictions(items) -> list:
    if not isinstance(items, list):
        raise ValidationError('Predictions must be a list')
    predictions = []
    for item in items:
        if not isinstance(item, dict) or not item.get('match_id'):
            raise ValidationError('Each prediction needs a match_id')
        predictions.append(MatchPrediction(
            match_id=item['match_id'],
            home_score=_require_int(item, 'home_score'),
            away_score=_require_int(item, 'away_score'),
            home_score_et=_require_int(item, 'home_score_et', required=False),
            away_score_et=_require_int(item, 'away_score_et', required=False),
            penalties_winner=item.get('penalties_winner'),
            home_team_id=item.get('home_team_id'),
            away_team_id=item.get('away_team_id'),
        ))
    return predictions


def _parse_standings(items, group_id: str) -> list:
    if items is None:
        return None
    if not isinstance(items, list):
        raise ValidationError('Group standings must be a list')
    rows = []
    for item in items:
        if not isinstance(item, dict) or not item.get('team_id') or 'position' not in item:
            raise ValidationError('Each standing needs a team_id and a position')
        data = dict(item)
        data['group_id'] = group_id
        rows.append(GroupStandingPrediction.from_dict(data))
    return rows


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise ValidationError('No data provided')
    return data


@app.errorhandler(ValidationError)
def handle_validation_error(error):
    return jsonify({'success': False, 'error': error.message, 'errors': error.errors}), 400


@app.errorhandler(PredictionNotFoundError)
def handle_not_found(error):
    return jsonify({'success': False, 'error': str(error)}), 404


@app.errorhandler(PredictionLockedError)
def handle_locked(error):
    return jsonify({'success': False, 'error': str(error)}), 403


@app.errorhandler(DomainInvariantError)
def handle_domain_invariant(error):
    app.logger.error(f'Domain invariant violated: {error}')
    return jsonify({'success': False, 'error': 'Tournament data is inconsistent'}), 500


@app.route('/api/teams', methods=['GET'])
def api_teams():
    """List every team in the tournament."""
    tournament = get_service().tournament
    return jsonify({'success': True, 'teams': _to_serializable(list(tournament.teams.values()))})


@app.route('/api/groups', methods=['GET'])
def api_groups():
    """List groups with their teams and fixtures."""
    tournament = get_service().tournament
    groups = []
    for group in tournament.groups_in_order():
        groups.append({
            'id': group.id,
            'letter': group.letter,
            'teams': _to_serializable([tournament.team(t) for t in group.team_ids]),
            'matches': [{'id': m.id, 'match_number': m.match_number,
                         'home_team_id': m.home_team_id, 'away_team_id': m.away_team_id}
                        for m in tournament.matches_for_group(group.id)],
        })
    return jsonify({'success': True, 'groups': groups})


@app.route('/api/groups/<group_id>/standings/preview', methods=['POST'])
def api_preview_standings(group_id):
    """Compute a group table from scorelines without saving."""
    data = _json_body()
    predictions = _parse_match_predictions(data.get('match_predictions'))
    standings = get_service().calculate_group_standings(group_id, predictions)
    return jsonify({'success': True, 'standings': _to_serializable(standings)})


@app.route('/api/predictions', methods=['POST'])
def api_get_or_create_prediction():
    """Get or create the prediction for a user's pool entry."""
    data = _json_body()
    user_id = str(data.get('user_id', '')).strip()
    entry_id = str(data.get('entry_id', '')).strip()
    if not user_id or not entry_id:
        return jsonify({'success': False, 'error': 'user_id and entry_id are required'}), 400
    prediction = get_service().get_or_create_prediction(user_id, entry_id)
    return jsonify({'success': True, 'prediction': prediction.to_dict()})


@app.route('/api/predictions/<prediction_id>', methods=['GET'])
def api_get_prediction(prediction_id):
    prediction = get_service().get_prediction(prediction_id)
    return jsonify({'success': True, 'prediction': prediction.to_dict()})


@app.route('/api/predictions/<prediction_id>/stats', methods=['GET'])
def api_prediction_stats(prediction_id):
    return jsonify({'success': True, 'stats': get_service().get_prediction_stats(prediction_id)})


@app.route('/api/predictions/<prediction_id>/champion', methods=['PATCH'])
def api_update_champion(prediction_id):
    data = _json_body()
    team_id = str(data.get('team_id', '')).strip()
    if not team_id:
        return jsonify({'success': False, 'error': 'team_id is required'}), 400
    prediction = get_service().update_champion(prediction_id, team_id)
    return jsonify({'success': True, 'prediction': prediction.to_dict()})


@app.route('/api/predictions/<prediction_id>/groups/<group_id>', methods=['GET'])
def api_get_group_standings(prediction_id, group_id):
    standings = get_service().get_group_standings(prediction_id, group_id)
    return jsonify({'success': True, 'standings': _to_serializable(standings)})


@app.route('/api/predictions/<prediction_id>/groups/<group_id>', methods=['POST'])
def api_save_group_predictions(prediction_id, group_id):
    """Save a group's six predictions, optionally with the rendered table."""
    data = _json_body()
    predictions = _parse_match_predictions(data.get('match_predictions'))
    standings = _parse_standings(data.get('group_standings'), group_id)
    result = get_service().save_group_predictions(prediction_id, group_id, predictions, standings)
    return jsonify(_to_serializable(result))


@app.route('/api/predictions/<prediction_id>/groups/<group_id>/tiebreak', methods=['POST'])
def api_resolve_group_tie(prediction_id, group_id):
    data = _json_body()
    tiebreak_group = _require_int(data, 'tiebreak_group')
    team_ids = data.get('team_ids') or []
    standings = get_service().resolve_group_tie(prediction_id, group_id, tiebreak_group, team_ids)
    return jsonify({'success': True, 'standings': _to_serializable(standings)})


@app.route('/api/predictions/<prediction_id>/best-third-places', methods=['GET'])
def api_best_third_places(prediction_id):
    rows = get_service().get_best_third_places(prediction_id)
    return jsonify({'success': True, 'best_third_places': _to_serializable(rows)})


@app.route('/api/predictions/<prediction_id>/best-third-places/tiebreak', methods=['POST'])
def api_resolve_third_place_tie(prediction_id):
    data = _json_body()
    tiebreak_group = _require_int(data, 'tiebreak_group')
    team_ids = data.get('team_ids') or []
    rows = get_service().resolve_third_place_tie(prediction_id, tiebreak_group, team_ids)
    return jsonify({'success': True, 'best_third_places': _to_serializable(rows)})


@app.route('/api/predictions/<prediction_id>/round-of-32', methods=['GET'])
def api_round_of_32(prediction_id):
    """Round of 32 fixtures with the teams this prediction sends through."""
    matches = get_service().get_resolved_round_of_32(prediction_id)
    return jsonify({'success': True, 'matches': _to_serializable(matches)})


@app.route('/api/predictions/<prediction_id>/knockout/<phase>', methods=['GET'])
def api_knockout_bracket(prediction_id, phase):
    try:
        phase = KnockoutPhase.parse(phase)
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    bracket = get_service().get_knockout_bracket(prediction_id, phase)
    return jsonify({'success': True, 'phase': phase.value, 'matches': _to_serializable(bracket)})


@app.route('/api/predictions/<prediction_id>/knockout/<phase>/previous-winners', methods=['GET'])
def api_previous_phase_winners(prediction_id, phase):
    try:
        phase = KnockoutPhase.parse(phase)
    except ValueError as e:
        return jsonify({'success': False, 'error': str(e)}), 400
    winners = get_service().get_previous_phase_winners(prediction_id, phase)
    return jsonify({'success': True, 'winners': winners})


@app.route('/api/predictions/<prediction_id>/knockout/<phase>', methods=['POST'])
def api_save_knockout_predictions(prediction_id, phase):
    """Save every prediction of one knockout phase."""
    data = _json_body()
    predictions = _parse_match_predictions(data.get('predictions'))
    saved = get_service().save_knockout_predictions(prediction_id, phase, predictions)
    return jsonify({'success': True, 'predictions': _to_serializable(saved)})


if __name__ == '__main__':
    logging.basicConfig(level=logging.INFO)
    app.run(debug=True, port=5000)
