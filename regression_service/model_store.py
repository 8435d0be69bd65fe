"""Model persistence: one JSON artifact per regression instance"""
import asyncio
from pathlib import Path
from typing import List, Literal, Protocol

import numpy as np
from pydantic import BaseModel, model_validator

from .exceptions import ModelNotFoundError
from .ml_models import LinearModel


def model_path(model_id: str) -> str:
    """Conventional artifact path for a regression instance."""
    return f"/uploads/{model_id}/model.json"


class ModelArtifact(BaseModel):
    """Serialized linear model; weights are (n_outputs x n_inputs)."""
    format: Literal["linear-regression"] = "linear-regression"
    weights: List[List[float]]
    bias: List[float]

    @model_validator(mode="after")
    def check_shapes(self) -> "ModelArtifact":
        if not self.weights or not self.weights[0]:
            raise ValueError("weights must contain at least one output row and one input column")
        width = len(self.weights[0])
        if any(len(row) != width for row in self.weights):
            raise ValueError("every weight row must have the same number of inputs")
        if len(self.bias) != len(self.weights):
            raise ValueError(f"bias has {len(self.bias)} value(s) but weights have {len(self.weights)} row(s)")
        return self

    @classmethod
    def from_model(cls, model: LinearModel) -> "ModelArtifact":
        return cls(weights=model.weights.tolist(), bias=model.bias.tolist())

    def to_model(self) -> LinearModel:
        return LinearModel(
            weights=np.array(self.weights, dtype=float),
            bias=np.array(self.bias, dtype=float),
        )


class ModelStore(Protocol):
    async def load(self, path: str) -> LinearModel:
        ...

    def save(self, path: str, model: LinearModel) -> None:
        ...


class FileModelStore:
    """Stores artifacts on disk; absolute-looking paths resolve under ``root``."""

    def __init__(self, root: str) -> None:
        self.root = Path(root).resolve()

    def resolve(self, path: str) -> Path:
        resolved = (self.root / path.lstrip("/")).resolve()
        if resolved != self.root and self.root not in resolved.parents:
            raise ValueError(f"Model path escapes the model root: {path}")
        return resolved

    async def load(self, path: str) -> LinearModel:
        file_path = self.resolve(path)
        if not file_path.is_file():
            raise ModelNotFoundError(f"No model found at {path}")
        text = await asyncio.to_thread(file_path.read_text, encoding="utf-8")
        return ModelArtifact.model_validate_json(text).to_model()

    def save(self, path: str, model: LinearModel) -> None:
        file_path = self.resolve(path)
        file_path.parent.mkdir(parents=True, exist_ok=True)
        file_path.write_text(ModelArtifact.from_model(model).model_dump_json(), encoding="utf-8")
