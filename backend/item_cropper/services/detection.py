"""Item-number detection over recognizer output.

Two heuristic strategies turn OCR words into seed candidates:

PRIMARY (catalog pages, whole image)
    3-6 digit numbers hugging the left or right 12% of the page, filtered
    by confidence, height and aspect ratio, one per printed row.

SECONDARY (screenshots, bottom-left region)
    Strong binarization, recognition restricted to the bottom-left corner,
    biggest/lowest numbers first, at most three. Falls back to PRIMARY on
    the whole image when nothing survives.

All candidate coordinates are in original bitmap pixels.
"""

import re
import time
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional, Sequence

from ..config import get_settings, Settings
from ..errors import DetectionFailure
from ..utils import round_half_up
from .ocr import OCRBox, OCRService
from .preprocessing import ImagePreprocessor, PreparedImage
from .seeding import screenshot_roi_rects

logger = logging.getLogger(__name__)

ITEM_NUMBER_PATTERN = re.compile(r"^\d{3,6}$")


class Strategy(str, Enum):
    """Detection strategy (also reported as strategyUsed)."""
    PRIMARY = "primary"
    SECONDARY = "secondary"
    REGION_OF_INTEREST = "roi"


@dataclass
class DetectionCandidate:
    """A recognized digit string and its box in original pixels."""
    text: str
    x: float
    y: float
    w: float
    h: float
    conf: float

    @property
    def cx(self) -> float:
        return self.x + self.w / 2

    @property
    def cy(self) -> float:
        return self.y + self.h / 2

    @property
    def aspect(self) -> float:
        return self.w / self.h if self.w > 0 and self.h > 0 else 0.0

    @classmethod
    def from_box(cls, box: OCRBox) -> "DetectionCandidate":
        return cls(
            text=re.sub(r"\D", "", box.text),
            x=box.left,
            y=box.top,
            w=box.width,
            h=box.height,
            conf=box.confidence,
        )

    def to_dict(self) -> dict:
        return {
            "text": self.text,
            "x": round_half_up(self.x),
            "y": round_half_up(self.y),
            "w": round_half_up(self.w),
            "h": round_half_up(self.h),
            "conf": round(self.conf, 2),
        }


@dataclass
class DetectionOutcome:
    """Detection result for one image."""
    detections: List[DetectionCandidate]
    image_width: int
    image_height: int
    strategy_used: Strategy
    item_numbers: List[str] = field(default_factory=list)
    processing_time_ms: int = 0

    def __post_init__(self):
        if not self.item_numbers:
            self.item_numbers = [d.text for d in self.detections]

    @classmethod
    def empty(cls, width: int = 0, height: int = 0, strategy: Strategy = Strategy.PRIMARY) -> "DetectionOutcome":
        return cls(detections=[], image_width=width, image_height=height, strategy_used=strategy)


def parse_strategy(value: Optional[str], settings: Optional[Settings] = None) -> Optional[Strategy]:
    """Map a selector value (or vendor alias) to a Strategy; None if blank."""
    if not value:
        return None
    settings = settings or get_settings()
    key = value.strip().lower()
    key = settings.strategy_aliases.get(key, key)
    if key == Strategy.SECONDARY.value:
        return Strategy.SECONDARY
    if key != Strategy.PRIMARY.value:
        logger.warning(f"Unknown detection strategy '{value}', using primary")
    return Strategy.PRIMARY


def resolve_strategy(*values: Optional[str]) -> Strategy:
    """First non-blank selector wins; default PRIMARY."""
    for value in values:
        strategy = parse_strategy(value)
        if strategy is not None:
            return strategy
    return Strategy.PRIMARY


def row_merge_gap(image_height: int, settings: Optional[Settings] = None) -> int:
    settings = settings or get_settings()
    return max(round_half_up(image_height * settings.primary_row_merge_pct), settings.primary_row_merge_min)


def dedupe_rows(candidates: Sequence[DetectionCandidate], gap: float) -> List[DetectionCandidate]:
    """
    Collapse candidates on the same printed row.

    Input must be sorted top-down. A candidate whose vertical center is
    within `gap` of the last kept one replaces it only if more confident.
    """
    kept: List[DetectionCandidate] = []
    for candidate in candidates:
        if kept and abs(candidate.cy - kept[-1].cy) < gap:
            if candidate.conf > kept[-1].conf:
                kept[-1] = candidate
            continue
        kept.append(candidate)
    return kept


def select_primary(
    candidates: Sequence[DetectionCandidate],
    image_width: int,
    image_height: int,
    settings: Optional[Settings] = None,
) -> List[DetectionCandidate]:
    """Filter, sort and row-dedupe candidates for catalog pages."""
    s = settings or get_settings()
    left_max = image_width * s.primary_edge_pct
    right_min = image_width * (1 - s.primary_edge_pct)
    min_h = image_height * s.primary_min_height_pct
    max_h = image_height * s.primary_max_height_pct

    kept = [
        c for c in candidates
        if ITEM_NUMBER_PATTERN.match(c.text)
        and c.conf >= s.primary_min_conf
        and (c.cx <= left_max or c.cx >= right_min)
        and min_h <= c.h <= max_h
        and s.primary_min_aspect <= c.aspect <= s.primary_max_aspect
    ]
    kept.sort(key=lambda c: (c.y, c.x))
    return dedupe_rows(kept, row_merge_gap(image_height, s))


def select_secondary(
    candidates: Sequence[DetectionCandidate],
    image_width: int,
    image_height: int,
    settings: Optional[Settings] = None,
) -> List[DetectionCandidate]:
    """Filter and rank candidates from the bottom-left region."""
    s = settings or get_settings()
    min_h = max(s.secondary_min_height, round_half_up(image_height * s.secondary_min_height_pct))
    max_h = round_half_up(image_height * s.secondary_max_height_pct)

    kept = [
        c for c in candidates
        if ITEM_NUMBER_PATTERN.match(c.text)
        and c.conf >= s.secondary_min_conf
        and min_h <= c.h <= max_h
        and s.secondary_min_aspect <= c.aspect <= s.secondary_max_aspect
    ]
    # Lowest first, then leftmost, tallest, most confident
    kept.sort(key=lambda c: (-c.cy, c.x, -c.h, -c.conf))
    return kept[: s.secondary_max_results]


def select_roi_best(
    candidates: Sequence[DetectionCandidate],
    settings: Optional[Settings] = None,
) -> Optional[DetectionCandidate]:
    """Best number inside one screenshot column ROI."""
    s = settings or get_settings()
    kept = [
        c for c in candidates
        if ITEM_NUMBER_PATTERN.match(c.text)
        and c.conf >= s.secondary_min_conf
        and s.secondary_min_aspect <= c.aspect <= s.secondary_max_aspect
    ]
    if not kept:
        return None
    return max(kept, key=lambda c: (c.conf, c.h))


class DetectionEngine:
    """Runs detection strategies against pooled OCR readers."""

    def __init__(self, ocr_service: OCRService, preprocessor: Optional[ImagePreprocessor] = None):
        self.ocr_service = ocr_service
        self.preprocessor = preprocessor or ImagePreprocessor()
        self.settings = get_settings()

    def detect(self, image_bytes: bytes, strategy: Strategy = Strategy.PRIMARY) -> DetectionOutcome:
        """
        Detect item numbers on a whole image.

        Never raises: any fault is logged and yields an empty outcome.
        """
        start_time = time.time()
        try:
            prepared = self.preprocessor.preprocess(image_bytes)
        except Exception as e:
            logger.exception(f"Detection preprocessing failed: {e}")
            return DetectionOutcome.empty(strategy=strategy)

        try:
            outcome = self._detect_prepared(prepared, strategy)
        except Exception as e:
            logger.exception(f"Detection failed ({strategy.value}): {e}")
            outcome = DetectionOutcome.empty(prepared.original_width, prepared.original_height, strategy)

        outcome.processing_time_ms = int((time.time() - start_time) * 1000)
        logger.info(
            f"Detection: strategy={outcome.strategy_used.value}, "
            f"found={len(outcome.detections)}, time={outcome.processing_time_ms}ms"
        )
        return outcome

    def detect_screenshot(
        self,
        image_bytes: bytes,
        roi_images: Optional[Sequence[bytes]] = None,
    ) -> DetectionOutcome:
        """
        Detect one item number per screenshot column.

        Client-supplied ROI crops are recognized when present; otherwise the
        ROIs are cut from the bitmap. item_numbers keeps column positions
        (empty string for a column with no match). With no match in any
        column, falls back to SECONDARY -> PRIMARY on the whole image.
        """
        start_time = time.time()
        try:
            prepared = self.preprocessor.preprocess(image_bytes)
        except Exception as e:
            logger.exception(f"Screenshot preprocessing failed: {e}")
            return DetectionOutcome.empty(strategy=Strategy.REGION_OF_INTEREST)

        width, height = prepared.original_width, prepared.original_height
        try:
            detections: List[DetectionCandidate] = []
            numbers: List[str] = []
            for i, rect in enumerate(screenshot_roi_rects(width, height)):
                supplied = roi_images[i] if roi_images and i < len(roi_images) else None
                candidates = self._recognize_roi(prepared, rect, supplied)
                best = select_roi_best(candidates, self.settings)
                numbers.append(best.text if best else "")
                if best:
                    detections.append(best)

            if detections:
                outcome = DetectionOutcome(
                    detections=detections,
                    image_width=width,
                    image_height=height,
                    strategy_used=Strategy.REGION_OF_INTEREST,
                    item_numbers=numbers,
                )
            else:
                logger.info("No item number in screenshot ROIs, trying whole image")
                outcome = self._detect_prepared(prepared, Strategy.SECONDARY)
        except Exception as e:
            logger.exception(f"Screenshot detection failed: {e}")
            outcome = DetectionOutcome.empty(width, height, Strategy.REGION_OF_INTEREST)

        outcome.processing_time_ms = int((time.time() - start_time) * 1000)
        return outcome

    # --- strategies -------------------------------------------------------

    def _detect_prepared(self, prepared: PreparedImage, strategy: Strategy) -> DetectionOutcome:
        width, height = prepared.original_width, prepared.original_height
        used = strategy
        if strategy == Strategy.SECONDARY:
            detections = self.run_secondary(prepared)
            if not detections:
                logger.info("Secondary strategy found nothing, falling back to primary")
                detections = self.run_primary(prepared)
                used = Strategy.PRIMARY
        else:
            detections = self.run_primary(prepared)
            used = Strategy.PRIMARY
        return DetectionOutcome(
            detections=detections,
            image_width=width,
            image_height=height,
            strategy_used=used,
        )

    def run_primary(self, prepared: PreparedImage) -> List[DetectionCandidate]:
        candidates = self._recognize(prepared.image, scale=prepared.scale)
        return select_primary(candidates, prepared.original_width, prepared.original_height, self.settings)

    def run_secondary(self, prepared: PreparedImage) -> List[DetectionCandidate]:
        strong = self.preprocessor.preprocess_strong(prepared.image)
        work_h, work_w = strong.shape[:2]
        roi_w = max(1, round_half_up(work_w * self.settings.secondary_roi_width_pct))
        roi_h = max(1, round_half_up(work_h * self.settings.secondary_roi_height_pct))
        top = work_h - roi_h

        region, region_scale = self.preprocessor.crop_region(
            strong, 0, top, roi_w, roi_h, max_width=self.settings.secondary_roi_max_width
        )
        boxes = self._recognize_boxes(region)
        # region px -> working px -> original px
        candidates = [
            DetectionCandidate.from_box(b.mapped(region_scale, 0, top).mapped(prepared.scale))
            for b in boxes
        ]
        return select_secondary(candidates, prepared.original_width, prepared.original_height, self.settings)

    # --- recognition helpers ----------------------------------------------

    def _recognize_boxes(self, image) -> List[OCRBox]:
        try:
            return self.ocr_service.recognize(image).boxes
        except DetectionFailure:
            raise
        except Exception as e:
            raise DetectionFailure("Recognition failed", component="detection", original_error=e) from e

    def _recognize(self, image, scale: float = 1.0) -> List[DetectionCandidate]:
        return [DetectionCandidate.from_box(b.mapped(scale)) for b in self._recognize_boxes(image)]

    def _recognize_roi(self, prepared: PreparedImage, rect, supplied: Optional[bytes]) -> List[DetectionCandidate]:
        if supplied:
            region = self.preprocessor.load_gray(supplied)
            region_scale = region.shape[1] / rect.width if rect.width else 1.0
        else:
            s = prepared.scale
            region, _ = self.preprocessor.crop_region(
                prepared.image,
                int(rect.x * s),
                int(rect.y * s),
                max(1, int(rect.width * s)),
                max(1, int(rect.height * s)),
            )
            region_scale = s
        return [
            DetectionCandidate.from_box(b.mapped(region_scale, rect.x, rect.y))
            for b in self._recognize_boxes(region)
        ]
