"""Inference on new inputs with a trained or loaded model"""
from typing import Optional, Sequence, Union

import numpy as np

from .data_operations import round_to_2_decimals
from .exceptions import PredictionError
from .ml_models import LinearModel


class PredictionService:
    """
    Holds at most one model and serves single-point predictions.

    The model takes raw (original-scale) inputs; trained models arrive with
    their normalization already folded into the weights.
    """

    def __init__(self, model: Optional[LinearModel] = None) -> None:
        self._model = model
        self._last_prediction: Optional[float] = None

    @property
    def model(self) -> Optional[LinearModel]:
        return self._model

    @property
    def has_model(self) -> bool:
        return self._model is not None

    @property
    def last_prediction(self) -> Optional[float]:
        return self._last_prediction

    def set_model(self, model: LinearModel) -> None:
        """Replace the served model."""
        self._model = model

    def predict(self, data: Union[float, Sequence[float]]) -> float:
        """
        Predict the first output for ONE data point.

        Args:
            data: A scalar (single-input model) or a sequence with one value
                per input column. Not a batch.

        Returns:
            The prediction rounded to 2 decimals, also kept as ``last_prediction``.
        """
        if self._model is None:
            raise PredictionError("No model is loaded. Load or train a model before predicting.")

        try:
            if isinstance(data, (list, tuple, np.ndarray)):
                row = np.asarray(data, dtype=float).reshape(1, -1)
            else:
                row = np.array([[float(data)]])
        except (TypeError, ValueError) as e:
            raise PredictionError(f"Prediction input must be numeric: {e}") from e

        if row.shape[1] != self._model.input_dim:
            raise PredictionError(
                f"Model expects {self._model.input_dim} input value(s), got {row.shape[1]}"
            )

        preds = self._model.predict(row)
        self._last_prediction = round_to_2_decimals(preds[0, 0])
        return self._last_prediction
