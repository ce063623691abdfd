"""
YAML-file persistence for predictions.

One file per prediction. Every change goes through ``transaction()``, which
holds the data-directory lock, hands out the whole record, and swaps the file
in one ``os.replace`` when the block exits cleanly. A block that raises
writes nothing, so a group's standings or the best-thirds list are replaced
as a whole or not at all.
"""
import logging
import os
import tempfile
import uuid
from contextlib import contextmanager
from typing import Dict, List, Optional

import yaml
from filelock import FileLock

from engine.exceptions import PredictionLockedError, PredictionNotFoundError
from engine.models import BestThirdPlacePrediction, GroupStandingPrediction, MatchPrediction, Prediction

logger = logging.getLogger(__name__)

INDEX_FILE = 'index.yaml'


class PredictionRecord:
    """In-memory copy of everything stored for one prediction."""

    def __init__(self, prediction: Prediction, match_predictions=None, group_standings=None, best_third_places=None):
        self.prediction = prediction
        self._match_predictions = dict(match_predictions or {})
        self._group_standings = dict(group_standings or {})
        self._best_third_places = list(best_third_places or [])

    def match_predictions(self) -> Dict[str, MatchPrediction]:
        return {match_id: MatchPrediction.from_dict(data) for match_id, data in self._match_predictions.items()}

    def match_prediction(self, match_id: str) -> Optional[MatchPrediction]:
        data = self._match_predictions.get(match_id)
        return MatchPrediction.from_dict(data) if data else None

    def save_match_predictions(self, predictions: List[MatchPrediction]):
        for prediction in predictions:
            self._match_predictions[prediction.match_id] = prediction.to_dict()

    def group_standings(self, group_id: str) -> List[GroupStandingPrediction]:
        rows = [GroupStandingPrediction.from_dict(data) for data in self._group_standings.get(group_id, [])]
        return sorted(rows, key=lambda r: r.position)

    def all_group_standings(self) -> Dict[str, List[GroupStandingPrediction]]:
        return {group_id: self.group_standings(group_id) for group_id in sorted(self._group_standings)}

    def completed_group_count(self) -> int:
        return len(self._group_standings)

    def replace_group_standings(self, group_id: str, rows: List[GroupStandingPrediction]):
        self._group_standings[group_id] = [row.to_dict() for row in rows]

    def best_third_places(self) -> List[BestThirdPlacePrediction]:
        rows = [BestThirdPlacePrediction.from_dict(data) for data in self._best_third_places]
        return sorted(rows, key=lambda r: r.ranking_position)

    def replace_best_third_places(self, rows: List[BestThirdPlacePrediction]):
        self._best_third_places = [row.to_dict() for row in rows]

    def to_dict(self) -> Dict:
        return {
            'prediction': self.prediction.to_dict(),
            'match_predictions': self._match_predictions,
            'group_standings': self._group_standings,
            'best_third_places': self._best_third_places,
        }

    @classmethod
    def from_dict(cls, data: Dict) -> 'PredictionRecord':
        return cls(
            Prediction.from_dict(data['prediction']),
            match_predictions=data.get('match_predictions'),
            group_standings=data.get('group_standings'),
            best_third_places=data.get('best_third_places'),
        )


class PredictionStore:
    def __init__(self, data_dir: str, lock_timeout: int = 10):
        self.data_dir = data_dir
        os.makedirs(data_dir, exist_ok=True)
        self._lock = FileLock(os.path.join(data_dir, '.lock'), timeout=lock_timeout)

    def _path(self, prediction_id: str) -> str:
        return os.path.join(self.data_dir, f"{prediction_id}.yaml")

    def _read_yaml(self, path: str) -> Optional[Dict]:
        if not os.path.exists(path):
            return None
        with open(path, 'r', encoding='utf-8') as f:
            try:
                return yaml.safe_load(f)
            except yaml.YAMLError as e:
                logger.warning('Failed to parse %s: %s', path, e)
                raise

    def _write_yaml(self, path: str, data: Dict):
        fd, temp_path = tempfile.mkstemp(dir=self.data_dir, suffix='.tmp')
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                yaml.safe_dump(data, f, default_flow_style=False, sort_keys=True)
            os.replace(temp_path, path)
        except BaseException:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise

    def load(self, prediction_id: str) -> PredictionRecord:
        data = self._read_yaml(self._path(prediction_id))
        if not data:
            raise PredictionNotFoundError(f"Prediction {prediction_id} not found")
        return PredictionRecord.from_dict(data)

    def get(self, prediction_id: str) -> Prediction:
        return self.load(prediction_id).prediction

    def get_or_create(self, user_id: str, entry_id: str) -> Prediction:
        """One prediction per (user, entry) pairing."""
        key = f"{user_id}:{entry_id}"
        with self._lock:
            index_path = os.path.join(self.data_dir, INDEX_FILE)
            index = self._read_yaml(index_path) or {}
            prediction_id = index.get(key)
            if prediction_id and os.path.exists(self._path(prediction_id)):
                return self.load(prediction_id).prediction

            prediction = Prediction(str(uuid.uuid4()), user_id, entry_id)
            self._write_yaml(self._path(prediction.id), PredictionRecord(prediction).to_dict())
            index[key] = prediction.id
            self._write_yaml(index_path, index)
            logger.info('Created prediction %s for user %s in entry %s', prediction.id, user_id, entry_id)
            return prediction

    @contextmanager
    def transaction(self, prediction_id: str, require_editable: bool = True):
        """Yield the prediction's record and persist it if the block succeeds."""
        with self._lock:
            record = self.load(prediction_id)
            if require_editable and not record.prediction.can_be_edited():
                raise PredictionLockedError('Predictions are locked. The deadline has passed.')
            yield record
            self._write_yaml(self._path(prediction_id), record.to_dict())

    def set_locked(self, prediction_id: str, locked: bool = True):
        with self.transaction(prediction_id, require_editable=False) as record:
            record.prediction.is_locked = locked
