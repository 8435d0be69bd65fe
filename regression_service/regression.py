"""One regression instance: training lifecycle, result, chart payload and prediction"""
import math
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field

from .config import config
from .data_operations import Dataset, prepare_training_data, round_to_2_decimals
from .exceptions import ConcurrentTrainingError, PredictionError, RegressionError
from .ml_models import EQUATION_STYLES, TrainParam, best_accuracy, format_equation, train
from .model_store import ModelStore, model_path
from .prediction import PredictionService

BLOCK_CLASSES = [
    "ai_learning_train",
    "ai_learning_regression",
    "regression_attr_1",
    "regression_attr_2",
    "regression_attr_3",
    "ai_learning_train_chart",
]


class TrainingState(str, Enum):
    IDLE = "idle"
    TRAINING = "training"
    TRAINED = "trained"


class ModelState(str, Enum):
    UNINITIALIZED = "uninitialized"
    LOADING = "loading"
    READY = "ready"


class ProgressSink(Protocol):
    def report(self, percent: int) -> None:
        ...


class TrainResult(BaseModel):
    """Summary of the latest training run, serialized with camelCase keys."""
    model_config = ConfigDict(populate_by_name=True)

    accuracy: float = 0.0
    equation: str = ""
    graph_data: List[Dict[str, float]] = Field(default_factory=list, alias="graphData")
    predicted_points: List[Dict[str, float]] = Field(default_factory=list, alias="predictedPoints")
    a: List[float] = Field(default_factory=list)
    b: float = 0.0
    equations: List[str] = Field(default_factory=list)
    coefficients: List[Dict[str, Any]] = Field(default_factory=list)
    history: Dict[str, List[Optional[float]]] = Field(default_factory=dict)


def _finite_or_none(values: Sequence[float]) -> List[Optional[float]]:
    return [float(v) if math.isfinite(v) else None for v in values]


class Regression:
    """
    A user's regression over selected table columns.

    Two independent state machines run side by side: the served model
    (uninitialized -> loading -> ready) and training (idle -> training ->
    trained). Only one training run may be in flight per instance.
    """

    def __init__(
        self,
        name: str,
        model_id: str,
        table: Union[Dataset, Dict[str, Any]],
        train_param: Optional[Union[TrainParam, Dict[str, Any]]] = None,
        result: Optional[Union[TrainResult, Dict[str, Any]]] = None,
        model_store: Optional[ModelStore] = None,
        progress_sink: Optional[ProgressSink] = None,
        equation_style: Optional[str] = None,
        max_graph_points: Optional[int] = None
    ) -> None:
        self.name = name
        self.model_id = model_id
        self._table = table if isinstance(table, Dataset) else Dataset.model_validate(table)
        if isinstance(train_param, TrainParam):
            self._train_param = train_param
        else:
            self._train_param = TrainParam.model_validate(train_param or {})
        if result is None:
            self._result = TrainResult()
        elif isinstance(result, TrainResult):
            self._result = result
        else:
            self._result = TrainResult.model_validate(result)

        self._equation_style = equation_style or config.EQUATION_STYLE
        if self._equation_style not in EQUATION_STYLES:
            raise ValueError(f"Unknown equation style: {self._equation_style}. Expected one of {EQUATION_STYLES}")
        self._max_graph_points = max_graph_points if max_graph_points is not None else config.MAX_GRAPH_POINTS

        self._model_store = model_store
        self._progress_sink = progress_sink
        self._prediction = PredictionService()
        self._model_state = ModelState.UNINITIALIZED
        self._training_state = TrainingState.TRAINED if result is not None else TrainingState.IDLE
        self._cancel_requested = False
        self._chart_open = False
        self.percent = 0

        self._attr_length = len(self._table.input_columns)
        self._chart_enabled = self._attr_length == 1

    @classmethod
    async def restore(cls, name: str, model_id: str, table: Union[Dataset, Dict[str, Any]], model_store: ModelStore, **kwargs: Any) -> "Regression":
        """Create an instance and load its persisted model."""
        regression = cls(name, model_id, table, model_store=model_store, **kwargs)
        await regression.load()
        return regression

    # ------------------------------------------------------------------
    # Capabilities
    # ------------------------------------------------------------------

    @property
    def attr_length(self) -> int:
        return self._attr_length

    @property
    def chart_enabled(self) -> bool:
        return self._chart_enabled

    @property
    def training_state(self) -> TrainingState:
        return self._training_state

    @property
    def model_state(self) -> ModelState:
        return self._model_state

    def is_trained(self) -> bool:
        return self._training_state == TrainingState.TRAINED

    def unlocked_block_classes(self) -> List[str]:
        """Editor block classes this regression makes available."""
        classes = ["ai_learning_train", "ai_learning_regression", f"regression_attr_{self._attr_length}"]
        if self._chart_enabled:
            classes.append("ai_learning_train_chart")
        return classes

    def locked_block_classes(self) -> List[str]:
        unlocked = self.unlocked_block_classes()
        return [name for name in BLOCK_CLASSES if name not in unlocked]

    # ------------------------------------------------------------------
    # Options and results
    # ------------------------------------------------------------------

    def set_train_option(self, name: str, value: Any) -> None:
        self._train_param.set_option(name, value)

    def get_train_option(self) -> TrainParam:
        return self._train_param

    def get_train_result(self) -> TrainResult:
        return self._result

    def get_result(self) -> Optional[float]:
        """Last prediction, or None before the first predict()."""
        return self._prediction.last_prediction

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def _report_progress(self, percent: int) -> None:
        self.percent = percent
        if self._progress_sink is not None:
            self._progress_sink.report(percent)

    def cancel_training(self) -> bool:
        """Request the in-flight training run to stop at its next batch."""
        if self._training_state != TrainingState.TRAINING:
            return False
        self._cancel_requested = True
        return True

    async def train(self) -> TrainResult:
        """
        Fit a fresh model on the selected columns and replace the served model.

        Raises:
            ConcurrentTrainingError: a run is already in flight on this instance
            TrainingError: empty data or numerical divergence
            TrainingCancelledError: cancel_training() was called mid-run
        """
        if self._training_state == TrainingState.TRAINING:
            raise ConcurrentTrainingError(f"Regression '{self.name}' is already training")

        previous_state = self._training_state
        self._training_state = TrainingState.TRAINING
        self._cancel_requested = False
        self._chart_open = False
        self.percent = 0

        param = self._train_param
        completed = False
        try:
            prepared = prepare_training_data(self._table, epochs=param.epochs, batch_size=param.batch_size)
            total_data_size = max(prepared.total_data_size, 1)

            def on_batch_end(batch_count: int) -> None:
                self._report_progress(min(math.floor(batch_count / total_data_size * 100), 100))

            outcome = await train(
                prepared,
                param,
                on_batch_end=on_batch_end,
                should_stop=lambda: self._cancel_requested,
            )

            a_rows = [[round_to_2_decimals(v) for v in row] for row in outcome.a]
            b_values = [round_to_2_decimals(v) for v in outcome.b]
            equations = [format_equation(a, b, self._equation_style) for a, b in zip(a_rows, b_values)]
            result = TrainResult(
                accuracy=best_accuracy(outcome.history),
                equation=equations[0],
                graph_data=outcome.original_points[:self._max_graph_points],
                predicted_points=outcome.predicted_points,
                a=a_rows[0],
                b=b_values[0],
                equations=equations,
                coefficients=[{"a": a, "b": b} for a, b in zip(a_rows, b_values)],
                history={key: _finite_or_none(values) for key, values in outcome.history.items()},
            )
            if self.percent != 100:
                self._report_progress(100)
            completed = True
        finally:
            self._cancel_requested = False
            if not completed:
                self._training_state = previous_state

        self._result = result
        self._prediction.set_model(outcome.serving_model)
        self._model_state = ModelState.READY
        self._training_state = TrainingState.TRAINED
        return self._result

    # ------------------------------------------------------------------
    # Model persistence and prediction
    # ------------------------------------------------------------------

    def _require_store(self) -> ModelStore:
        if self._model_store is None:
            raise RegressionError("No model store configured for this regression")
        return self._model_store

    async def load(self, path: Optional[str] = None) -> None:
        """Load a persisted model; predictions fail until loading completes."""
        store = self._require_store()
        previous_state = self._model_state
        self._model_state = ModelState.LOADING
        try:
            model = await store.load(path or model_path(self.model_id))
        except BaseException:
            self._model_state = previous_state
            raise
        self._prediction.set_model(model)
        self._model_state = ModelState.READY

    def save(self, path: Optional[str] = None) -> str:
        """Persist the served model and return the path it was written to."""
        store = self._require_store()
        if self._prediction.model is None:
            raise RegressionError("No model to save. Train or load a model first.")
        target = path or model_path(self.model_id)
        store.save(target, self._prediction.model)
        return target

    def predict(self, data: Union[float, Sequence[float]]) -> float:
        if self._model_state == ModelState.LOADING:
            raise PredictionError("Model is still loading")
        if self._model_state != ModelState.READY:
            raise PredictionError("No model is loaded. Load or train a model before predicting.")
        return self._prediction.predict(data)

    # ------------------------------------------------------------------
    # Chart
    # ------------------------------------------------------------------

    def open_chart(self) -> Optional[Dict[str, Any]]:
        """Chart payload for the renderer, or None when charting is not available."""
        if not self._chart_enabled:
            return None
        self._chart_open = True
        return self.chart_data

    def close_chart(self) -> None:
        self._chart_open = False

    @property
    def chart_open(self) -> bool:
        return self._chart_open

    @property
    def chart_data(self) -> Dict[str, Any]:
        points: List[Dict[str, float]] = [
            {"x": p["x"], "y": p["y"]} for p in self._result.graph_data
        ]
        points.extend({"x": p["x"], "equation": p["y"]} for p in self._result.predicted_points)
        return {
            "data": {
                "json": points,
                "keys": {"value": ["equation", "y"], "x": "x"},
                "types": {
                    "y": "scatter",
                    "equation": "line",
                },
            },
            "options": {
                "legend": {"show": False},
                "line": {"connectNull": True, "point": False},
                "axis": {"x": {"tick": {"fit": False, "count": 15}}},
                "grid": {"x": {"show": True}, "y": {"show": True}},
            },
        }
