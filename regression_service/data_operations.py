"""Data operations using pandas: table conversion and min-max normalization"""
import math
from dataclasses import dataclass
from typing import Any, List

import numpy as np
import pandas as pd
from pydantic import BaseModel, Field
from sklearn.preprocessing import MinMaxScaler


class Dataset(BaseModel):
    """Raw table plus the column selection ``[input_columns, output_columns]``."""
    select: List[List[int]] = Field(default_factory=lambda: [[0], [1]], min_length=2, max_length=2)
    data: List[List[Any]] = Field(default_factory=list)

    @property
    def input_columns(self) -> List[int]:
        return self.select[0]

    @property
    def output_columns(self) -> List[int]:
        return self.select[1]


@dataclass
class PreparedData:
    """Numeric feature/target sequences, one row per selected column."""
    inputs: np.ndarray   # shape (n_inputs, n_rows)
    outputs: np.ndarray  # shape (n_outputs, n_rows)
    total_data_size: int

    @property
    def row_count(self) -> int:
        return int(self.inputs.shape[1]) if self.inputs.ndim == 2 else 0


def round_to_2_decimals(value: Any) -> float:
    """Round a numeric value to 2 decimal places; negative zero becomes 0.0."""
    return round(float(value), 2) + 0.0


def compute_total_data_size(row_count: int, batch_size: int, epochs: int) -> int:
    """Number of batches a full training run will process."""
    return math.ceil(row_count / batch_size) * epochs


# Leading decimal number of a text cell, e.g. "12abc" -> "12", " 3 " -> "3"
FLOAT_PREFIX_PATTERN = r"^\s*([+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?)"


def _numeric_column(df: pd.DataFrame, index: int) -> np.ndarray:
    """
    Parse one table column as floats.

    Text cells contribute their leading number ("12abc" is 12). Booleans,
    missing cells and cells without a leading number become 0.0. A column
    index past the end of every row yields a column of zeros.
    """
    if index not in df.columns:
        return np.zeros(len(df), dtype=float)
    column = df[index].astype(object)
    is_bool = column.map(lambda value: isinstance(value, (bool, np.bool_))).astype(bool)
    is_text = column.map(lambda value: isinstance(value, str)).astype(bool)

    # Convert to numeric, coercing errors to NaN
    values = pd.to_numeric(column.where(~(is_bool | is_text)), errors="coerce").astype(float)
    if is_text.any():
        prefix = column[is_text].astype(str).str.extract(FLOAT_PREFIX_PATTERN, expand=False)
        values.loc[is_text] = pd.to_numeric(prefix, errors="coerce")
    return values.fillna(0.0).to_numpy(dtype=float)


def prepare_training_data(dataset: Dataset, epochs: int = 1, batch_size: int = 1) -> PreparedData:
    """
    Convert a raw table into per-column numeric sequences.

    Args:
        dataset: Table rows and the selected input/output column indices
        epochs: Configured number of epochs
        batch_size: Configured batch size

    Returns:
        PreparedData with:
            - inputs: one float sequence per selected input column
            - outputs: one float sequence per selected output column
            - total_data_size: ceil(rows / batch_size) * epochs, the number
              of batches used to scale progress into a percentage
    """
    df = pd.DataFrame(dataset.data)
    row_count = len(dataset.data)

    inputs = [_numeric_column(df, i) for i in dataset.input_columns]
    outputs = [_numeric_column(df, i) for i in dataset.output_columns]

    return PreparedData(
        inputs=np.array(inputs, dtype=float).reshape(len(inputs), row_count),
        outputs=np.array(outputs, dtype=float).reshape(len(outputs), row_count),
        total_data_size=compute_total_data_size(row_count, batch_size, epochs),
    )


@dataclass
class NormalizationStats:
    """Per-dimension minimum and maximum for inputs and outputs."""
    input_min: np.ndarray
    input_max: np.ndarray
    output_min: np.ndarray
    output_max: np.ndarray
    input_range: np.ndarray   # max - min, with 1.0 for constant dimensions
    output_range: np.ndarray


class Normalizer:
    """
    Min-max scaling of feature and target columns into [0, 1].

    Uses scikit-learn's MinMaxScaler, which substitutes a range of 1 for
    constant dimensions: such a dimension normalizes to 0.0 and inverts back
    to its minimum. The same guarded range is exposed through ``stats`` so
    coefficient recovery stays consistent with the transforms.

    All arrays are sample-major: shape (n_rows, n_dimensions).
    """

    def __init__(self) -> None:
        self._input_scaler = MinMaxScaler()
        self._output_scaler = MinMaxScaler()
        self._fitted = False

    def fit(self, inputs: np.ndarray, outputs: np.ndarray) -> "Normalizer":
        self._input_scaler.fit(inputs)
        self._output_scaler.fit(outputs)
        self._fitted = True
        return self

    def _check_fitted(self) -> None:
        if not self._fitted:
            raise ValueError("Normalizer has not been fitted")

    def normalize_inputs(self, inputs: np.ndarray) -> np.ndarray:
        self._check_fitted()
        return self._input_scaler.transform(inputs)

    def normalize_outputs(self, outputs: np.ndarray) -> np.ndarray:
        self._check_fitted()
        return self._output_scaler.transform(outputs)

    def denormalize_inputs(self, normalized: np.ndarray) -> np.ndarray:
        # d * (max - min) + min
        self._check_fitted()
        return self._input_scaler.inverse_transform(normalized)

    def denormalize_outputs(self, normalized: np.ndarray) -> np.ndarray:
        self._check_fitted()
        return self._output_scaler.inverse_transform(normalized)

    @property
    def stats(self) -> NormalizationStats:
        self._check_fitted()
        return NormalizationStats(
            input_min=self._input_scaler.data_min_.copy(),
            input_max=self._input_scaler.data_max_.copy(),
            output_min=self._output_scaler.data_min_.copy(),
            output_max=self._output_scaler.data_max_.copy(),
            input_range=1.0 / self._input_scaler.scale_,
            output_range=1.0 / self._output_scaler.scale_,
        )
