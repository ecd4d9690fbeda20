"""Pydantic schemas for API requests and responses."""

from pydantic import BaseModel, Field
from typing import Optional


class Detection(BaseModel):
    """One item-number candidate in original image pixels."""
    text: str
    x: int
    y: int
    w: int
    h: int
    conf: float = Field(ge=0.0, le=100.0)


class DetectionResponse(BaseModel):
    """Result of item-number detection for one image."""
    detections: list[Detection] = []
    item_numbers: list[str] = Field(default_factory=list, alias="itemNumbers")
    image_width: int = Field(0, alias="imageWidth")
    image_height: int = Field(0, alias="imageHeight")
    strategy_used: str = Field("primary", alias="strategyUsed")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "detections": [
                    {"text": "10452", "x": 118, "y": 902, "w": 96, "h": 31, "conf": 91.4}
                ],
                "itemNumbers": ["10452"],
                "imageWidth": 2480,
                "imageHeight": 3508,
                "strategyUsed": "primary",
            }
        }


class CropBoxRequest(BaseModel):
    """A box to extract, as sent by the cropping UI."""
    x: float
    y: float
    width: float = Field(gt=0)
    height: float = Field(gt=0)
    rotation: float = 0.0
    item_number: str = Field("", alias="itemNumber")
    flip_vertical: bool = Field(False, alias="flipVertical")

    class Config:
        populate_by_name = True
        json_schema_extra = {
            "example": {
                "x": 50,
                "y": 50,
                "width": 420,
                "height": 120,
                "rotation": -0.3,
                "itemNumber": "PR10452",
                "flipVertical": False,
            }
        }


class CroppedMoulding(BaseModel):
    """A persisted crop."""
    id: str
    image_url: str = Field(alias="imageUrl")
    detected_number: str = Field(alias="detectedNumber")

    class Config:
        populate_by_name = True


class CropResponse(BaseModel):
    """Response for multi-box extraction."""
    cropped_mouldings: list[CroppedMoulding] = Field(default_factory=list, alias="croppedMouldings")

    class Config:
        populate_by_name = True


class ErrorResponse(BaseModel):
    """Standard error response."""
    success: bool = False
    error: str
    detail: Optional[str] = None

    class Config:
        json_schema_extra = {
            "example": {
                "success": False,
                "error": "No image uploaded",
                "detail": "Send the bitmap as the catalogImage form field"
            }
        }


class HealthResponse(BaseModel):
    """Health check response."""
    status: str
    version: str
    ocr_ready: bool
