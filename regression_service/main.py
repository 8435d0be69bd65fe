"""FastAPI application for the Regression Service"""
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional, Union
import uvicorn
from .config import config
from .data_operations import Dataset
from .exceptions import (
    ConcurrentTrainingError,
    ModelNotFoundError,
    PredictionError,
    RegressionError,
    TrainingCancelledError,
    TrainingError,
)
from .ml_models import TrainParam
from .model_store import FileModelStore
from .regression import Regression
import traceback

app = FastAPI(title="Regression Service", version="1.0.0")

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=config.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Live regression instances and their model store
app.state.regressions = {}
app.state.model_store = FileModelStore(config.MODEL_ROOT)


# Request/Response models
class CreateRegressionRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(min_length=1, max_length=128, pattern=r"^[A-Za-z0-9_-]+$")
    name: Optional[str] = None
    table: Dataset
    train_param: TrainParam = Field(default_factory=TrainParam, alias="trainParam")
    load_model: bool = Field(default=False, alias="loadModel")


class TrainOptionRequest(BaseModel):
    name: str
    value: Any


class PredictRequest(BaseModel):
    data: Union[float, List[float]]


def _get_regression(regression_id: str) -> Regression:
    regression = app.state.regressions.get(regression_id)
    if regression is None:
        raise HTTPException(status_code=404, detail=f"Regression '{regression_id}' not found")
    return regression


def _describe(regression_id: str, regression: Regression) -> Dict[str, Any]:
    return {
        "id": regression_id,
        "name": regression.name,
        "attrLength": regression.attr_length,
        "chartEnabled": regression.chart_enabled,
        "unlockedBlocks": regression.unlocked_block_classes(),
        "lockedBlocks": regression.locked_block_classes(),
        "trainingState": regression.training_state.value,
        "modelState": regression.model_state.value,
        "isTrained": regression.is_trained(),
        "trainParam": regression.get_train_option().model_dump(by_alias=True),
        "progress": regression.percent,
    }


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    return {"status": "ok", "service": "regression"}


@app.post("/regressions")
async def create_regression_endpoint(request: CreateRegressionRequest):
    """Create a regression over the selected table columns"""
    try:
        if len(request.table.data) > config.MAX_ROWS:
            raise HTTPException(
                status_code=400,
                detail=f"Data exceeds maximum rows limit of {config.MAX_ROWS}"
            )
        if request.id in app.state.regressions:
            raise HTTPException(status_code=409, detail=f"Regression '{request.id}' already exists")

        regression = Regression(
            name=request.name or request.id,
            model_id=request.id,
            table=request.table,
            train_param=request.train_param,
            model_store=app.state.model_store,
        )
        if request.load_model:
            await regression.load()
            print(f"Loaded model for regression '{request.id}'")

        app.state.regressions[request.id] = regression
        return _describe(request.id, regression)
    except HTTPException:
        raise
    except ModelNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        print(f"Error in create_regression: {traceback.format_exc()}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@app.get("/regressions/{regression_id}")
async def get_regression_endpoint(regression_id: str):
    """Capabilities and lifecycle state of a regression"""
    return _describe(regression_id, _get_regression(regression_id))


@app.delete("/regressions/{regression_id}")
async def delete_regression_endpoint(regression_id: str):
    """Forget a regression instance"""
    regression = _get_regression(regression_id)
    regression.cancel_training()
    del app.state.regressions[regression_id]
    return {"id": regression_id, "deleted": True}


@app.put("/regressions/{regression_id}/train-options")
async def set_train_option_endpoint(regression_id: str, request: TrainOptionRequest):
    """Set one training option before the next run"""
    regression = _get_regression(regression_id)
    try:
        regression.set_train_option(request.name, request.value)
        return regression.get_train_option().model_dump(by_alias=True)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


@app.post("/regressions/{regression_id}/train")
async def train_endpoint(regression_id: str):
    """Train the regression and return its result"""
    regression = _get_regression(regression_id)
    try:
        param = regression.get_train_option()
        print(f"Training regression '{regression_id}': epochs={param.epochs}, batch_size={param.batch_size}, learning_rate={param.learning_rate}")
        result = await regression.train()
        print(f"Trained regression '{regression_id}': {result.equation} (accuracy={result.accuracy:.4f})")
        return result.model_dump(by_alias=True)
    except (ConcurrentTrainingError, TrainingCancelledError) as e:
        raise HTTPException(status_code=409, detail=str(e))
    except (TrainingError, ValueError) as e:
        print(f"TrainingError in train: {str(e)}")
        print(f"Request details: regression_id={regression_id}, train_param={regression.get_train_option().model_dump(by_alias=True)}")
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        print(f"Error in train: {traceback.format_exc()}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@app.post("/regressions/{regression_id}/cancel")
async def cancel_training_endpoint(regression_id: str):
    """Stop an in-flight training run at its next batch"""
    regression = _get_regression(regression_id)
    return {"id": regression_id, "cancelled": regression.cancel_training()}


@app.get("/regressions/{regression_id}/progress")
async def progress_endpoint(regression_id: str):
    """Training progress in percent"""
    regression = _get_regression(regression_id)
    return {
        "percent": regression.percent,
        "trainingState": regression.training_state.value,
    }


@app.get("/regressions/{regression_id}/result")
async def train_result_endpoint(regression_id: str):
    """Latest training result"""
    return _get_regression(regression_id).get_train_result().model_dump(by_alias=True)


@app.post("/regressions/{regression_id}/predict")
async def predict_endpoint(regression_id: str, request: PredictRequest):
    """Predict the output for one data point"""
    regression = _get_regression(regression_id)
    try:
        return {"result": regression.predict(request.data)}
    except PredictionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        print(f"Error in predict: {traceback.format_exc()}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@app.get("/regressions/{regression_id}/chart")
async def chart_endpoint(regression_id: str):
    """Chart payload (single-input regressions only)"""
    regression = _get_regression(regression_id)
    chart = regression.open_chart()
    if chart is None:
        raise HTTPException(
            status_code=404,
            detail=f"Chart is only available for regressions with 1 input column (this one has {regression.attr_length})"
        )
    return chart


@app.post("/regressions/{regression_id}/load")
async def load_model_endpoint(regression_id: str):
    """Load the persisted model for a regression"""
    regression = _get_regression(regression_id)
    try:
        await regression.load()
        print(f"Loaded model for regression '{regression_id}'")
        return _describe(regression_id, regression)
    except ModelNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except Exception as e:
        print(f"Error in load_model: {traceback.format_exc()}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@app.post("/regressions/{regression_id}/save")
async def save_model_endpoint(regression_id: str):
    """Persist the current model of a regression"""
    regression = _get_regression(regression_id)
    try:
        path = regression.save()
        print(f"Saved model for regression '{regression_id}' to {path}")
        return {"id": regression_id, "path": path}
    except RegressionError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except Exception as e:
        print(f"Error in save_model: {traceback.format_exc()}")
        raise HTTPException(status_code=500, detail=f"Internal server error: {str(e)}")


@app.exception_handler(Exception)
async def global_exception_handler(request: Request, exc: Exception):
    """Global exception handler"""
    print(f"Unhandled exception: {traceback.format_exc()}")
    return JSONResponse(
        status_code=500,
        content={"detail": f"Internal server error: {str(exc)}"}
    )


if __name__ == "__main__":
    uvicorn.run(
        "regression_service.main:app",
        host=config.HOST,
        port=config.PORT,
        reload=True
    )
