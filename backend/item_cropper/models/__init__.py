"""Pydantic models for request/response schemas."""

from .schemas import (
    Detection,
    DetectionResponse,
    CropBoxRequest,
    CroppedMoulding,
    CropResponse,
    ErrorResponse,
    HealthResponse,
)

__all__ = [
    "Detection",
    "DetectionResponse",
    "CropBoxRequest",
    "CroppedMoulding",
    "CropResponse",
    "ErrorResponse",
    "HealthResponse",
]
