"""FastAPI application and routes."""
from .main import app
from .schemas import CreateChargeRequest, CreateChargeResponse

__all__ = [
    "app",
    "CreateChargeRequest",
    "CreateChargeResponse",
]
