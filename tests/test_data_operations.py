from __future__ import annotations

import math

import numpy as np
import pytest

from regression_service.data_operations import (
    Dataset,
    Normalizer,
    compute_total_data_size,
    prepare_training_data,
    round_to_2_decimals,
)


def test_prepare_yields_one_sequence_per_column_of_row_length(doubling_table: Dataset) -> None:
    prepared = prepare_training_data(doubling_table)

    assert prepared.inputs.shape == (1, 3)
    assert prepared.outputs.shape == (1, 3)
    assert prepared.inputs[0].tolist() == [1.0, 2.0, 3.0]
    assert prepared.outputs[0].tolist() == [2.0, 4.0, 6.0]
    assert prepared.row_count == 3


def test_prepare_coerces_unparseable_cells_to_zero() -> None:
    dataset = Dataset(select=[[0], [1]], data=[["1.5", "x"], ["abc", "4"], [None, "6"], ["", 8]])

    prepared = prepare_training_data(dataset)

    assert prepared.inputs[0].tolist() == [1.5, 0.0, 0.0, 0.0]
    assert prepared.outputs[0].tolist() == [0.0, 4.0, 6.0, 8.0]


def test_prepare_tolerates_short_rows_and_missing_columns() -> None:
    dataset = Dataset(select=[[0, 1], [5]], data=[[1], [2, 4]])

    prepared = prepare_training_data(dataset)

    assert prepared.inputs.tolist() == [[1.0, 2.0], [0.0, 4.0]]
    assert prepared.outputs.tolist() == [[0.0, 0.0]]


def test_prepare_multiple_outputs() -> None:
    dataset = Dataset(select=[[0], [1, 2]], data=[[1, 2, 3], [4, 5, 6]])

    prepared = prepare_training_data(dataset)

    assert prepared.outputs.tolist() == [[2.0, 5.0], [3.0, 6.0]]


def test_default_selection_is_first_column_to_second() -> None:
    dataset = Dataset(data=[[1, 2]])

    assert dataset.input_columns == [0]
    assert dataset.output_columns == [1]


def test_total_data_size_counts_batches_over_all_epochs() -> None:
    assert compute_total_data_size(3, 2, 4) == 8
    assert compute_total_data_size(10, 1, 1) == 10

    prepared = prepare_training_data(Dataset(data=[[1, 2]] * 5), epochs=3, batch_size=2)
    assert prepared.total_data_size == 9


def test_round_to_2_decimals() -> None:
    assert round_to_2_decimals(1.234) == 1.23
    assert round_to_2_decimals(np.float64(2.0)) == 2.0
    assert math.copysign(1.0, round_to_2_decimals(-0.001)) == 1.0


def test_normalizer_maps_each_dimension_into_unit_range() -> None:
    inputs = np.array([[1.0, 10.0], [2.0, 30.0], [3.0, 20.0]])
    outputs = np.array([[5.0], [7.0], [9.0]])

    normalizer = Normalizer().fit(inputs, outputs)

    np.testing.assert_allclose(normalizer.normalize_inputs(inputs), [[0.0, 0.0], [0.5, 1.0], [1.0, 0.5]], atol=1e-12)
    assert normalizer.normalize_outputs(outputs)[:, 0].tolist() == [0.0, 0.5, 1.0]
    stats = normalizer.stats
    assert stats.input_min.tolist() == [1.0, 10.0]
    assert stats.input_max.tolist() == [3.0, 30.0]
    assert stats.output_min.tolist() == [5.0]
    assert stats.output_max.tolist() == [9.0]


def test_normalizer_round_trip() -> None:
    rng = np.random.default_rng(7)
    inputs = rng.normal(50.0, 20.0, size=(25, 3))
    outputs = rng.uniform(-1000.0, 1000.0, size=(25, 2))
    normalizer = Normalizer().fit(inputs, outputs)

    restored_inputs = normalizer.denormalize_inputs(normalizer.normalize_inputs(inputs))
    restored_outputs = normalizer.denormalize_outputs(normalizer.normalize_outputs(outputs))

    np.testing.assert_allclose(restored_inputs, inputs, atol=1e-6)
    np.testing.assert_allclose(restored_outputs, outputs, atol=1e-6)


def test_constant_dimension_normalizes_to_zero_without_nan() -> None:
    inputs = np.array([[4.0, 1.0], [4.0, 2.0], [4.0, 3.0]])
    outputs = np.array([[7.0], [7.0], [7.0]])
    normalizer = Normalizer().fit(inputs, outputs)

    normalized_inputs = normalizer.normalize_inputs(inputs)
    normalized_outputs = normalizer.normalize_outputs(outputs)

    assert normalized_inputs[:, 0].tolist() == [0.0, 0.0, 0.0]
    assert normalized_outputs[:, 0].tolist() == [0.0, 0.0, 0.0]
    assert np.all(np.isfinite(normalized_inputs))
    assert normalizer.denormalize_inputs(normalized_inputs)[:, 0].tolist() == [4.0, 4.0, 4.0]
    assert normalizer.denormalize_outputs(normalized_outputs)[:, 0].tolist() == [7.0, 7.0, 7.0]
    stats = normalizer.stats
    assert stats.input_range.tolist() == [1.0, 2.0]
    assert stats.output_range.tolist() == [1.0]


def test_normalizer_requires_fit() -> None:
    with pytest.raises(ValueError):
        Normalizer().normalize_inputs(np.array([[1.0]]))


def test_prepare_reads_leading_number_of_text_cells() -> None:
    dataset = Dataset(data=[["12abc", " 3 "], ["3px", "-.5e1x"], ["abc12", "7 apples"]])

    prepared = prepare_training_data(dataset)

    assert prepared.inputs[0].tolist() == [12.0, 3.0, 0.0]
    assert prepared.outputs[0].tolist() == [3.0, -5.0, 7.0]


def test_prepare_maps_booleans_to_zero() -> None:
    dataset = Dataset(data=[[True, 1], [False, 2], [4, True]])

    prepared = prepare_training_data(dataset)

    assert prepared.inputs[0].tolist() == [0.0, 0.0, 4.0]
    assert prepared.outputs[0].tolist() == [1.0, 2.0, 0.0]
