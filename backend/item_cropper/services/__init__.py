"""Services for box editing, OCR detection, seeding, and crop extraction."""

from .preprocessing import ImagePreprocessor, PreparedImage
from .ocr import OCRService, OCRResult, OCRBox, RecognizerPool
from .view import ViewState, ViewTransform
from .boxes import CropBox, ImageSession, InputMode, Workspace, format_item_number, resolve_vendor_prefix
from .interaction import InteractionController, HitResult, hit_test
from .render import render, RenderFrame, DrawCommand
from .detection import (
    DetectionEngine,
    DetectionOutcome,
    DetectionCandidate,
    Strategy,
    resolve_strategy,
)
from .seeding import seed_session
from .cropping import CropRequest, CropResult, ExtractionEngine
from .batch import SaveBatchProcessor, SaveBatchResult, SaveItem, engine_extract_fn

__all__ = [
    "ImagePreprocessor",
    "PreparedImage",
    "OCRService",
    "OCRResult",
    "OCRBox",
    "RecognizerPool",
    "ViewState",
    "ViewTransform",
    "CropBox",
    "ImageSession",
    "InputMode",
    "Workspace",
    "format_item_number",
    "resolve_vendor_prefix",
    "InteractionController",
    "HitResult",
    "hit_test",
    "render",
    "RenderFrame",
    "DrawCommand",
    "DetectionEngine",
    "DetectionOutcome",
    "DetectionCandidate",
    "Strategy",
    "resolve_strategy",
    "seed_session",
    "CropRequest",
    "CropResult",
    "ExtractionEngine",
    "SaveBatchProcessor",
    "SaveBatchResult",
    "SaveItem",
    "engine_extract_fn",
]
