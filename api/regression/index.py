"""Vercel entrypoint for the Regression FastAPI service."""
import os
import sys

# Ensure the regression_service package is importable when bundled
ROOT_DIR = os.path.abspath(os.path.join(os.path.dirname(__file__), "..", ".."))
if ROOT_DIR not in sys.path:
    sys.path.insert(0, ROOT_DIR)

# Import the pre-built FastAPI app (keeps logic in one place for local + Vercel)
from regression_service.main import app as fastapi_app  # type: ignore  # pragma: no cover

# Vercel's Python runtime automatically detects ASGI apps exposed as `app`
app = fastapi_app
