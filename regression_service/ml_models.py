"""Machine Learning Model Training Functions

The linear layer and its Adam optimizer are written in numpy rather than taken
from Keras or scikit-learn so that a run can yield to the event loop and be cancelled
between any two batches.
"""
import asyncio
import math
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

import numpy as np
from pydantic import BaseModel, ConfigDict, Field
from sklearn.metrics import r2_score

from .data_operations import Normalizer, NormalizationStats, PreparedData, round_to_2_decimals
from .exceptions import TrainingCancelledError, TrainingError

# Adam hyper-parameters (Keras defaults)
ADAM_BETA_1 = 0.9
ADAM_BETA_2 = 0.999
ADAM_EPSILON = 1e-7

TEST_POINT_COUNT = 2

EQUATION_STYLES = ("indexed", "power")


class TrainParam(BaseModel):
    """
    Training options with their defaults.

    Fields accept either their camelCase alias (``batchSize``) or their
    snake_case name, and are re-validated on every assignment.
    """
    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    epochs: int = Field(default=1, ge=1)
    batch_size: int = Field(default=1, ge=1, alias="batchSize")
    learning_rate: float = Field(default=0.001, gt=0.0, alias="learningRate")
    shuffle: bool = True
    validation_rate: float = Field(default=0.0, ge=0.0, lt=1.0, alias="validationRate")
    seed: Optional[int] = None

    def set_option(self, name: str, value: Any) -> None:
        """Set one option by field name or alias; raises ValueError when invalid."""
        for field_name, info in type(self).model_fields.items():
            if name in (field_name, info.alias):
                setattr(self, field_name, value)
                return
        raise ValueError(f"Unknown training option: {name}")


@dataclass
class LinearModel:
    """Single dense layer without activation: ``y = W x + bias``."""
    weights: np.ndarray  # shape (n_outputs, n_inputs)
    bias: np.ndarray     # shape (n_outputs,)

    @property
    def input_dim(self) -> int:
        return int(self.weights.shape[1])

    @property
    def output_dim(self) -> int:
        return int(self.weights.shape[0])

    @classmethod
    def initialize(cls, n_inputs: int, n_outputs: int, rng: np.random.Generator) -> "LinearModel":
        # Glorot uniform kernel, zero bias
        limit = math.sqrt(6.0 / (n_inputs + n_outputs))
        return cls(
            weights=rng.uniform(-limit, limit, size=(n_outputs, n_inputs)),
            bias=np.zeros(n_outputs, dtype=float),
        )

    def predict(self, inputs: np.ndarray) -> np.ndarray:
        """Predict for a (n_samples, n_inputs) matrix; returns (n_samples, n_outputs)."""
        return inputs @ self.weights.T + self.bias


class AdamOptimizer:
    """Adam with bias-corrected moment estimates, one state pair per parameter."""

    def __init__(self, learning_rate: float, model: LinearModel) -> None:
        self.learning_rate = learning_rate
        self.iterations = 0
        self._m_weights = np.zeros_like(model.weights)
        self._v_weights = np.zeros_like(model.weights)
        self._m_bias = np.zeros_like(model.bias)
        self._v_bias = np.zeros_like(model.bias)

    def _update(self, value: np.ndarray, grad: np.ndarray, m: np.ndarray, v: np.ndarray) -> None:
        m *= ADAM_BETA_1
        m += (1.0 - ADAM_BETA_1) * grad
        v *= ADAM_BETA_2
        v += (1.0 - ADAM_BETA_2) * grad ** 2
        m_hat = m / (1.0 - ADAM_BETA_1 ** self.iterations)
        v_hat = v / (1.0 - ADAM_BETA_2 ** self.iterations)
        value -= self.learning_rate * m_hat / (np.sqrt(v_hat) + ADAM_EPSILON)

    def step(self, model: LinearModel, grad_weights: np.ndarray, grad_bias: np.ndarray) -> None:
        self.iterations += 1
        self._update(model.weights, grad_weights, self._m_weights, self._v_weights)
        self._update(model.bias, grad_bias, self._m_bias, self._v_bias)


def _mse(model: LinearModel, inputs: np.ndarray, outputs: np.ndarray) -> float:
    with np.errstate(over="raise", invalid="raise"):
        return float(np.mean((model.predict(inputs) - outputs) ** 2))


def _train_batch(model: LinearModel, optimizer: AdamOptimizer, x: np.ndarray, y: np.ndarray) -> float:
    """Run one optimizer update on a batch and return the batch loss."""
    try:
        with np.errstate(over="raise", invalid="raise", divide="raise"):
            error = model.predict(x) - y
            loss = float(np.mean(error ** 2))
            # d(mean squared error) / d(prediction)
            grad = 2.0 * error / error.size
            optimizer.step(model, grad.T @ x, grad.sum(axis=0))
    except FloatingPointError as e:
        raise TrainingError(f"Training diverged: {e}. Try a smaller learning rate.") from e

    if not (math.isfinite(loss) and np.all(np.isfinite(model.weights)) and np.all(np.isfinite(model.bias))):
        raise TrainingError("Training diverged: loss or weights are no longer finite. Try a smaller learning rate.")
    return loss


def _accuracy(model: LinearModel, inputs: np.ndarray, outputs: np.ndarray) -> float:
    """Coefficient of determination on the (normalized) training rows."""
    if len(inputs) < 2:
        return float("nan")
    return float(r2_score(outputs, model.predict(inputs)))


async def train_linear_model(
    inputs: np.ndarray,
    outputs: np.ndarray,
    train_param: TrainParam,
    on_batch_end: Optional[Callable[[int], None]] = None,
    should_stop: Optional[Callable[[], bool]] = None
) -> Tuple[LinearModel, Dict[str, List[float]]]:
    """
    Fit a linear layer with Adam on normalized data.

    Args:
        inputs: Normalized inputs, shape (n_rows, n_inputs)
        outputs: Normalized targets, shape (n_rows, n_outputs)
        train_param: Epochs, batch size, learning rate, shuffling, validation fraction
        on_batch_end: Called after every batch with the running batch count
        should_stop: Polled before every batch; training is cancelled when it returns True

    Returns:
        Fitted model and per-epoch history with "loss", "acc" and, when a
        validation fraction is held out, "val_loss".
    """
    n_rows, n_inputs = inputs.shape
    n_outputs = outputs.shape[1]
    if n_rows == 0:
        raise TrainingError("Dataset is empty")
    if n_inputs == 0 or n_outputs == 0:
        raise TrainingError("At least one input column and one output column must be selected")

    # Validation rows are taken from the end of the table, before shuffling
    split_at = int(math.floor(n_rows * (1.0 - train_param.validation_rate)))
    if split_at == 0:
        raise TrainingError(
            f"validationRate {train_param.validation_rate} leaves no rows for training "
            f"({n_rows} row(s) in dataset)"
        )
    x_train, y_train = inputs[:split_at], outputs[:split_at]
    x_val, y_val = inputs[split_at:], outputs[split_at:]

    rng = np.random.default_rng(train_param.seed)
    model = LinearModel.initialize(n_inputs, n_outputs, rng)
    optimizer = AdamOptimizer(train_param.learning_rate, model)

    history: Dict[str, List[float]] = {"loss": [], "acc": []}
    if len(x_val):
        history["val_loss"] = []

    batch_count = 0
    for _ in range(train_param.epochs):
        order = rng.permutation(split_at) if train_param.shuffle else np.arange(split_at)
        loss_sum = 0.0
        for start in range(0, split_at, train_param.batch_size):
            if should_stop is not None and should_stop():
                raise TrainingCancelledError(f"Training cancelled after {batch_count} batch(es)")
            batch = order[start:start + train_param.batch_size]
            loss_sum += _train_batch(model, optimizer, x_train[batch], y_train[batch]) * len(batch)
            batch_count += 1
            if on_batch_end is not None:
                on_batch_end(batch_count)
            await asyncio.sleep(0)

        history["loss"].append(loss_sum / split_at)
        history["acc"].append(_accuracy(model, x_train, y_train))
        if len(x_val):
            try:
                history["val_loss"].append(_mse(model, x_val, y_val))
            except FloatingPointError as e:
                raise TrainingError(f"Training diverged: {e}") from e

    return model, history


def best_accuracy(history: Dict[str, List[float]]) -> float:
    """Best (maximum) finite accuracy in the history, 0.0 when there is none."""
    finite = [value for value in history.get("acc", []) if math.isfinite(value)]
    return max(finite) if finite else 0.0


# ============================================================================
# COEFFICIENTS AND EQUATION
# ============================================================================

def extract_coefficients(model: LinearModel, stats: NormalizationStats) -> Tuple[np.ndarray, np.ndarray]:
    """
    Recover original-scale coefficients from a model fitted on normalized data.

        scale_i = (outMax - outMin) / (inMax_i - inMin_i)
        a_i     = w_i * scale_i
        b       = bias * (outMax - outMin) + outMin - sum_i a_i * inMin_i

    Ranges of constant dimensions are 1, matching the Normalizer.

    Returns:
        a with shape (n_outputs, n_inputs) and b with shape (n_outputs,), unrounded.
    """
    scale = stats.output_range[:, np.newaxis] / stats.input_range[np.newaxis, :]
    a = model.weights * scale
    b = model.bias * stats.output_range + stats.output_min - a @ stats.input_min
    return a, b


def format_number(value: float) -> str:
    """Render with at most 2 decimals and no trailing zeros: 2.0 -> '2', 1.50 -> '1.5'."""
    return np.format_float_positional(round_to_2_decimals(value), precision=2, trim="-")


def add_sign(value: float) -> str:
    """Prefix non-negative values with '+'; negatives keep their '-'."""
    rounded = round_to_2_decimals(value)
    text = format_number(rounded)
    return text if rounded < 0 else f"+{text}"


def _term_name(index: int, n_terms: int, style: str) -> str:
    if style == "power":
        return "X" if index == 0 else f"X^{index + 1}"
    return "X" if n_terms == 1 else f"X{index + 1}"


def format_equation(a: List[float], b: float, style: str = "indexed") -> str:
    """
    Build the human-readable equation, e.g. ``Y = 2X +0`` or ``Y = 1.5X1-2X2 +3``.

    The first term carries no explicit sign; later terms and the intercept
    do. ``style`` selects per-feature names ("indexed") or the legacy
    exponent notation ("power"); both describe independent linear inputs.
    """
    if style not in EQUATION_STYLES:
        raise ValueError(f"Unknown equation style: {style}. Expected one of {EQUATION_STYLES}")
    terms = [
        f"{format_number(coef) if i == 0 else add_sign(coef)}{_term_name(i, len(a), style)}"
        for i, coef in enumerate(a)
    ]
    return f"Y = {''.join(terms)} {add_sign(b)}"


# ============================================================================
# VISUALIZATION SAMPLES
# ============================================================================

def generate_test_samples(model: LinearModel, normalizer: Normalizer, attr_length: int) -> List[Dict[str, float]]:
    """Evenly spaced fitted-line points in original units (single-input models only)."""
    if attr_length != 1:
        return []
    xs = np.linspace(0.0, 1.0, TEST_POINT_COUNT).reshape(TEST_POINT_COUNT, 1)
    preds = model.predict(xs)
    un_norm_xs = normalizer.denormalize_inputs(xs)
    un_norm_preds = normalizer.denormalize_outputs(preds)
    return [
        {"x": float(x), "y": float(y)}
        for x, y in zip(un_norm_xs[:, 0], un_norm_preds[:, 0])
    ]


def original_points(prepared: PreparedData) -> List[Dict[str, float]]:
    """Observed (x, y) pairs for single-input data, straight from the table."""
    if prepared.inputs.shape[0] != 1 or prepared.outputs.shape[0] == 0:
        return []
    return [
        {"x": float(x), "y": float(y)}
        for x, y in zip(prepared.inputs[0], prepared.outputs[0])
    ]


@dataclass
class TrainingOutcome:
    """Everything one training run produces."""
    model: LinearModel            # fitted on normalized data
    serving_model: LinearModel    # normalization folded into the weights; takes raw inputs
    history: Dict[str, List[float]]
    a: np.ndarray
    b: np.ndarray
    normalizer: Normalizer
    original_points: List[Dict[str, float]] = field(default_factory=list)
    predicted_points: List[Dict[str, float]] = field(default_factory=list)


async def train(
    prepared: PreparedData,
    train_param: TrainParam,
    on_batch_end: Optional[Callable[[int], None]] = None,
    should_stop: Optional[Callable[[], bool]] = None
) -> TrainingOutcome:
    """Normalize, fit, and derive coefficients and chart points for one run."""
    if prepared.row_count == 0:
        raise TrainingError("Dataset is empty")
    raw_inputs = prepared.inputs.T
    raw_outputs = prepared.outputs.T
    if raw_inputs.shape[1] == 0 or raw_outputs.shape[1] == 0:
        raise TrainingError("At least one input column and one output column must be selected")
    if not (np.isfinite(raw_inputs).all() and np.isfinite(raw_outputs).all()):
        raise TrainingError("Dataset contains non-finite values (inf or a number too large for float64)")

    normalizer = Normalizer().fit(raw_inputs, raw_outputs)
    model, history = await train_linear_model(
        normalizer.normalize_inputs(raw_inputs),
        normalizer.normalize_outputs(raw_outputs),
        train_param,
        on_batch_end=on_batch_end,
        should_stop=should_stop,
    )

    stats = normalizer.stats
    a, b = extract_coefficients(model, stats)
    attr_length = raw_inputs.shape[1]
    return TrainingOutcome(
        model=model,
        serving_model=LinearModel(weights=a, bias=b),
        history=history,
        a=a,
        b=b,
        normalizer=normalizer,
        original_points=original_points(prepared),
        predicted_points=generate_test_samples(model, normalizer, attr_length),
    )
