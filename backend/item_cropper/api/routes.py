"""API route definitions."""

import json
import time
from fastapi import APIRouter, UploadFile, File, Form, Header, Query, HTTPException
from fastapi.concurrency import run_in_threadpool
from pydantic import TypeAdapter, ValidationError
from typing import Optional, List
import logging

from ..models import (
    Detection,
    DetectionResponse,
    CropBoxRequest,
    CroppedMoulding,
    CropResponse,
    ErrorResponse,
    HealthResponse,
)
from ..services import (
    ImagePreprocessor,
    OCRService,
    DetectionEngine,
    DetectionOutcome,
    ExtractionEngine,
    CropRequest,
    resolve_strategy,
)
from ..errors import ValidationFailure
from .. import __version__

logger = logging.getLogger(__name__)
router = APIRouter()

# Initialize services
preprocessor = ImagePreprocessor()
ocr_service = OCRService()
detection_engine = DetectionEngine(ocr_service, preprocessor)
extraction_engine = ExtractionEngine(preprocessor=preprocessor)

crop_list_adapter = TypeAdapter(List[CropBoxRequest])


def _to_response(outcome: DetectionOutcome) -> DetectionResponse:
    return DetectionResponse(
        detections=[Detection(**d.to_dict()) for d in outcome.detections],
        item_numbers=outcome.item_numbers,
        image_width=outcome.image_width,
        image_height=outcome.image_height,
        strategy_used=outcome.strategy_used.value,
    )


async def _read_upload(upload: Optional[UploadFile]) -> Optional[bytes]:
    if upload is None:
        return None
    try:
        data = await upload.read()
    except Exception as e:
        logger.error(f"Failed to read uploaded file {upload.filename}: {e}")
        return None
    return data or None


def parse_crop_boxes(raw: Optional[str]) -> List[CropRequest]:
    """
    Decode the multipleCrops form field.

    Raises:
        ValidationFailure: if the JSON is malformed or a box is invalid
    """
    if not raw:
        raise ValidationFailure("multipleCrops is required", component="api")
    try:
        items = crop_list_adapter.validate_python(json.loads(raw))
    except (json.JSONDecodeError, ValidationError) as e:
        raise ValidationFailure("Invalid multipleCrops payload", component="api", original_error=e) from e
    return [
        CropRequest(
            x=item.x,
            y=item.y,
            width=item.width,
            height=item.height,
            rotation=item.rotation,
            label=item.item_number,
            flip_vertical=item.flip_vertical,
        )
        for item in items
    ]


@router.get("/health", response_model=HealthResponse, tags=["System"])
async def health_check():
    """Check API health and OCR readiness."""
    return HealthResponse(
        status="healthy",
        version=__version__,
        ocr_ready=ocr_service.is_ready
    )


@router.post(
    "/detect-item-numbers",
    response_model=DetectionResponse,
    tags=["Detection"]
)
async def detect_item_numbers(
    image: Optional[UploadFile] = File(None, description="Catalog page or screenshot"),
    strategy_form: Optional[str] = Form(None, alias="strategy"),
    strategy_query: Optional[str] = Query(None, alias="strategy"),
    x_ocr_strategy: Optional[str] = Header(None),
):
    """
    Detect item numbers on a whole image.

    Strategy is read from the query string, then the form, then the
    x-ocr-strategy header. Faults never surface as errors: the response is
    simply empty and the client seeds a placeholder box.
    """
    strategy = resolve_strategy(strategy_query, strategy_form, x_ocr_strategy)
    image_bytes = await _read_upload(image)
    if image_bytes is None:
        logger.info("Detection called without an image")
        return _to_response(DetectionOutcome.empty(strategy=strategy))

    is_valid, error_msg = preprocessor.validate_image(image_bytes, image.filename or "upload")
    if not is_valid:
        logger.warning(f"Detection input rejected: {error_msg}")
        return _to_response(DetectionOutcome.empty(strategy=strategy))

    outcome = await run_in_threadpool(detection_engine.detect, image_bytes, strategy)
    return _to_response(outcome)


@router.post(
    "/detect-item-numbers-screenshot",
    response_model=DetectionResponse,
    tags=["Detection"]
)
async def detect_item_numbers_screenshot(
    image: Optional[UploadFile] = File(None, description="Two-column product screenshot"),
    roiImages: Optional[List[UploadFile]] = File(None, description="Per-column item-number regions"),
):
    """
    Detect one item number per screenshot column.

    itemNumbers is positional: entry i belongs to column i and is empty
    when that column had no match.
    """
    image_bytes = await _read_upload(image)
    if image_bytes is None:
        return _to_response(DetectionOutcome.empty())

    roi_bytes = []
    for upload in roiImages or []:
        roi_bytes.append(await _read_upload(upload))

    outcome = await run_in_threadpool(detection_engine.detect_screenshot, image_bytes, roi_bytes)
    return _to_response(outcome)


@router.post(
    "/multiple-crop-mouldings",
    response_model=CropResponse,
    responses={
        400: {"model": ErrorResponse, "description": "Missing image or malformed boxes"},
        500: {"model": ErrorResponse, "description": "Processing error"}
    },
    tags=["Extraction"]
)
async def multiple_crop_mouldings(
    catalogImage: Optional[UploadFile] = File(None, description="Source bitmap"),
    multipleCrops: Optional[str] = Form(None, description="JSON array of boxes"),
    vendorId: Optional[str] = Form(None),
):
    """
    Extract and persist every labelled box of one image.

    Boxes without a label are skipped. A box that fails is logged and left
    out of the response; the others are still saved.
    """
    start_time = time.time()

    image_bytes = await _read_upload(catalogImage)
    if image_bytes is None:
        raise HTTPException(status_code=400, detail="No catalogImage")

    is_valid, error_msg = preprocessor.validate_image(image_bytes, catalogImage.filename or "upload")
    if not is_valid:
        raise HTTPException(status_code=400, detail=error_msg)

    try:
        boxes = parse_crop_boxes(multipleCrops)
    except ValidationFailure as e:
        logger.warning(f"Rejected crop request: {e}")
        raise HTTPException(status_code=400, detail=e.message)

    # vendorId is informational; labels already carry their prefix
    logger.info(f"Cropping {len(boxes)} box(es), vendor={vendorId or '-'}")

    try:
        results = await run_in_threadpool(extraction_engine.extract, image_bytes, boxes)
    except ValidationFailure as e:
        raise HTTPException(status_code=400, detail=e.message)
    except Exception as e:
        logger.exception(f"Crop failed: {e}")
        raise HTTPException(status_code=500, detail=f"Crop failed: {str(e)}")

    total_time = int((time.time() - start_time) * 1000)
    logger.info(f"Saved {len(results)}/{len(boxes)} crops ({total_time}ms)")

    return CropResponse(
        cropped_mouldings=[
            CroppedMoulding(id=r.id, image_url=r.image_url, detected_number=r.detected_number)
            for r in results
        ]
    )
