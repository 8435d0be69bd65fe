from __future__ import annotations

from pathlib import Path

import pytest
from fastapi.testclient import TestClient

from regression_service.data_operations import Dataset
from regression_service.main import app
from regression_service.model_store import FileModelStore

DOUBLING_ROWS = [[1, 2], [2, 4], [3, 6]]


class RecordingSink:
    def __init__(self) -> None:
        self.values: list[int] = []

    def report(self, percent: int) -> None:
        self.values.append(percent)


@pytest.fixture
def doubling_table() -> Dataset:
    return Dataset(select=[[0], [1]], data=DOUBLING_ROWS)


@pytest.fixture
def two_input_table() -> Dataset:
    # y = 3 * x0 - 2 * x1 + 5
    rows = [[x0, x1, 3 * x0 - 2 * x1 + 5] for x0, x1 in [(0, 1), (1, 3), (2, 2), (4, 0), (5, 5), (3, 1)]]
    return Dataset(select=[[0, 1], [2]], data=rows)


@pytest.fixture
def sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def client(tmp_path: Path) -> TestClient:
    app.state.model_store = FileModelStore(str(tmp_path))
    app.state.regressions = {}
    return TestClient(app)
