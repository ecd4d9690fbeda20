"""OCR service using EasyOCR.

Reader instances are expensive to build (model load), so they live in a
bounded pool. Callers check one out with `with pool.lease() as reader:` and
it is returned on every exit path, including recognition errors.

Confidence is reported on a 0-100 scale; EasyOCR's 0-1 scores are rescaled
here so detection thresholds read the same regardless of engine.
"""

import numpy as np
from typing import Optional, List, Callable, Any
from contextlib import contextmanager
from dataclasses import dataclass
import logging
import os
import queue
import threading
import unicodedata
import re

from ..config import get_settings
from ..errors import DetectionFailure

logger = logging.getLogger(__name__)

DIGITS = "0123456789"


@dataclass
class OCRBox:
    """Represents a detected text box with position and confidence."""
    text: str
    confidence: float  # 0-100
    bbox: List[List[float]]  # [[x1,y1], [x2,y2], [x3,y3], [x4,y4]]

    @property
    def top(self) -> float:
        """Top Y coordinate (minimum Y)."""
        return min(p[1] for p in self.bbox)

    @property
    def bottom(self) -> float:
        """Bottom Y coordinate (maximum Y)."""
        return max(p[1] for p in self.bbox)

    @property
    def left(self) -> float:
        """Left X coordinate (minimum X)."""
        return min(p[0] for p in self.bbox)

    @property
    def right(self) -> float:
        """Right X coordinate (maximum X)."""
        return max(p[0] for p in self.bbox)

    @property
    def height(self) -> float:
        """Height of the bounding box."""
        return max(0, self.bottom - self.top)

    @property
    def width(self) -> float:
        """Width of the bounding box."""
        return max(0, self.right - self.left)

    @property
    def center_y(self) -> float:
        return self.top + self.height / 2

    @property
    def center_x(self) -> float:
        return self.left + self.width / 2

    @classmethod
    def from_rect(cls, text: str, confidence: float, x: float, y: float, w: float, h: float) -> "OCRBox":
        return cls(
            text=text,
            confidence=confidence,
            bbox=[[x, y], [x + w, y], [x + w, y + h], [x, y + h]],
        )

    def mapped(self, scale: float = 1.0, offset_x: float = 0.0, offset_y: float = 0.0) -> "OCRBox":
        """
        Map a box from a scaled/cropped working image back to original pixels.

        Args:
            scale: Working pixels per original pixel
            offset_x: Region left edge in original pixels
            offset_y: Region top edge in original pixels
        """
        return OCRBox(
            text=self.text,
            confidence=self.confidence,
            bbox=[[p[0] / scale + offset_x, p[1] / scale + offset_y] for p in self.bbox],
        )


@dataclass
class OCRResult:
    """Result from OCR processing."""
    boxes: List[OCRBox]


class RecognizerPool:
    """Bounded pool of recognizer instances, created lazily."""

    def __init__(self, factory: Callable[[], Any], size: int = 1):
        self._factory = factory
        self.size = max(1, size)
        self._idle: "queue.LifoQueue[Any]" = queue.LifoQueue()
        self._slots = threading.BoundedSemaphore(self.size)
        self._lock = threading.Lock()
        self._created = 0

    @property
    def created(self) -> int:
        return self._created

    def acquire(self, timeout: Optional[float] = None) -> Any:
        """Check out a recognizer, blocking while all are in use."""
        if not self._slots.acquire(timeout=timeout):
            raise DetectionFailure("Timed out waiting for a recognizer", component="ocr")
        try:
            return self._idle.get_nowait()
        except queue.Empty:
            pass
        try:
            with self._lock:
                reader = self._factory()
                self._created += 1
            logger.info(f"Recognizer instance created ({self._created}/{self.size})")
            return reader
        except Exception:
            self._slots.release()
            raise

    def release(self, reader: Any) -> None:
        self._idle.put(reader)
        self._slots.release()

    @contextmanager
    def lease(self, timeout: Optional[float] = None):
        reader = self.acquire(timeout=timeout)
        try:
            yield reader
        finally:
            self.release(reader)


def _create_easyocr_reader():
    """Build an EasyOCR reader (CPU by default)."""
    import easyocr
    import torch

    settings = get_settings()
    num_threads = int(os.environ.get("TORCH_NUM_THREADS", min(4, os.cpu_count() or 2)))
    torch.set_num_threads(num_threads)

    logger.info(f"Initializing EasyOCR engine with {num_threads} threads...")
    kwargs = {"gpu": settings.ocr_gpu, "verbose": False}
    if settings.ocr_model_dir:
        kwargs["model_storage_directory"] = settings.ocr_model_dir
    return easyocr.Reader([settings.ocr_lang], **kwargs)


class OCRService:
    """EasyOCR wrapper that hands out pooled reader instances."""

    def __init__(self, reader_factory: Optional[Callable[[], Any]] = None, pool_size: Optional[int] = None):
        self.settings = get_settings()
        self.pool = RecognizerPool(
            reader_factory or _create_easyocr_reader,
            pool_size or self.settings.ocr_pool_size,
        )
        self._initialized = False

    def initialize(self) -> bool:
        """
        Warm one reader so the first request does not pay for model load.

        Returns:
            True if initialization successful
        """
        try:
            with self.pool.lease():
                pass
            self._initialized = True
            logger.info("OCR engine initialized successfully")
            return True
        except Exception as e:
            logger.error(f"Failed to initialize OCR engine: {e}")
            return False

    @property
    def is_ready(self) -> bool:
        """Check if at least one reader has been built."""
        return self._initialized or self.pool.created > 0

    def recognize(self, image: np.ndarray, allowlist: Optional[str] = DIGITS) -> OCRResult:
        """
        Run one OCR pass on an image.

        Args:
            image: Grayscale or BGR numpy array
            allowlist: Characters the recognizer may emit

        Returns:
            OCRResult with boxes in the image's own pixel coordinates

        Raises:
            DetectionFailure: if the recognizer raises
        """
        kwargs = {
            "decoder": "greedy",
            "batch_size": 1,
            "paragraph": False,
            "detail": 1,
        }
        if allowlist:
            kwargs["allowlist"] = allowlist

        with self.pool.lease() as reader:
            try:
                results = reader.readtext(image, **kwargs)
            except Exception as e:
                raise DetectionFailure("Recognizer failed", component="ocr", original_error=e) from e

        boxes = []
        for detection in results or []:
            bbox_points, text, confidence = detection[0], detection[1], detection[2]
            text = self._normalize_text(str(text))
            if not text:
                continue
            boxes.append(OCRBox(
                text=text,
                confidence=float(confidence) * 100.0,
                bbox=[[float(p[0]), float(p[1])] for p in bbox_points],
            ))

        return OCRResult(boxes=boxes)

    def _normalize_text(self, text: str) -> str:
        """
        Normalize OCR text output.
        - Unicode NFKC normalization
        - Collapse whitespace
        - Strip leading/trailing whitespace
        """
        normalized = unicodedata.normalize("NFKC", text)
        normalized = re.sub(r"\s+", " ", normalized)
        return normalized.strip()
