"""Save-all processing across every open image."""

import time
import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from ..config import get_settings
from .boxes import ImageSession
from .cropping import CropRequest, ExtractionEngine

logger = logging.getLogger(__name__)

SUCCESS_TEMPLATE = "Saved {saved} cropped images."
PARTIAL_TEMPLATE = "Saved {saved} cropped images; {failed} image(s) failed."
FAILURE_TEXT = "Failed to save crops. Please try again."

# (image_bytes, payload) -> saved crops
ExtractFn = Callable[[bytes, List[Dict[str, Any]]], Sequence[Any]]


@dataclass
class SaveItem:
    """One open image: its source bytes and box store."""
    image_bytes: bytes
    session: ImageSession

    @property
    def filename(self) -> str:
        return self.session.name


@dataclass
class SaveBatchResult:
    """Outcome of a save-all run."""
    saved: List[Any] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)
    skipped: int = 0
    aborted: bool = False
    processing_time_ms: int = 0

    @property
    def saved_count(self) -> int:
        return len(self.saved)

    @property
    def status_text(self) -> str:
        if self.aborted or (self.failed and not self.saved):
            return FAILURE_TEXT
        if self.failed:
            return PARTIAL_TEMPLATE.format(saved=self.saved_count, failed=len(self.failed))
        return SUCCESS_TEMPLATE.format(saved=self.saved_count)


def engine_extract_fn(engine: ExtractionEngine) -> ExtractFn:
    """Adapt an ExtractionEngine to the batch's extraction callable."""
    def extract(image_bytes: bytes, payload: List[Dict[str, Any]]):
        return engine.extract(image_bytes, [CropRequest.from_payload(item) for item in payload])
    return extract


class SaveBatchProcessor:
    """
    Extract every labelled box of every image, one image at a time.

    Images are processed in upload order; each extraction finishes before
    the next image starts.
    """

    def __init__(self, extract: ExtractFn, abort_on_failure: Optional[bool] = None):
        self.settings = get_settings()
        self.extract = extract
        if abort_on_failure is None:
            abort_on_failure = self.settings.save_abort_on_failure
        self.abort_on_failure = abort_on_failure

    def process_batch(self, items: Sequence[SaveItem]) -> SaveBatchResult:
        start_time = time.time()
        result = SaveBatchResult()

        for index, item in enumerate(items):
            name = item.filename or f"image {index + 1}"
            payload = item.session.crop_payload()
            if not payload:
                logger.info(f"Skipping {name}: no labelled boxes")
                result.skipped += 1
                continue

            try:
                crops = self.extract(item.image_bytes, payload)
            except Exception as e:
                logger.exception(f"Error saving crops for {name}: {e}")
                result.failed.append(name)
                if self.abort_on_failure:
                    result.aborted = True
                    break
                continue

            result.saved.extend(crops)
            logger.info(f"Saved {len(crops)} crop(s) for {name}")

        result.processing_time_ms = int((time.time() - start_time) * 1000)
        logger.info(f"Save batch finished: {result.status_text}")
        return result
