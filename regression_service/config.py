"""Configuration for the Regression Service"""
import os


class Config:
    """Service configuration"""
    # Server configuration
    HOST: str = os.getenv("REGRESSION_SERVICE_HOST", "0.0.0.0")
    PORT: int = int(os.getenv("REGRESSION_SERVICE_PORT", "8002"))

    # CORS configuration
    CORS_ORIGINS: list[str] = os.getenv(
        "CORS_ORIGINS",
        "http://localhost:3000,http://localhost:5173"
    ).split(",")

    # Timeout configuration
    REQUEST_TIMEOUT: int = int(os.getenv("REQUEST_TIMEOUT", "300"))  # 5 minutes

    # Data processing limits
    MAX_ROWS: int = int(os.getenv("MAX_ROWS", "100000"))
    MAX_GRAPH_POINTS: int = int(os.getenv("MAX_GRAPH_POINTS", "1000"))

    # Model persistence
    MODEL_ROOT: str = os.getenv("MODEL_ROOT", "./data")

    # Equation rendering: "indexed" (X1, X2, ...) or "power" (X, X^2, ...)
    EQUATION_STYLE: str = os.getenv("EQUATION_STYLE", "indexed")

config = Config()
