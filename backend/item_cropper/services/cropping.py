"""Rotation-aware box extraction and crop persistence.

Boxes are authored on the unrotated image with a clockwise-positive
rotation. To extract one, the whole bitmap is rotated by the opposite angle
(theta = -rotation) about its center onto an expanded canvas, the box
center is pushed through the same rotation, and an axis-aligned
width x height window is cut around it.

The canvas and the box placement share one affine map, so cutting the
window at (rx, ry) and pasting it back reproduces the canvas exactly.
"""

import io
import math
import threading
import time
import logging
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

import cv2
import numpy as np
from PIL import Image

from ..config import get_settings
from ..errors import ExtractionFailure, ValidationFailure
from ..utils import round_half_up
from .preprocessing import ImagePreprocessor

logger = logging.getLogger(__name__)

BACKGROUND = (255, 255, 255, 0)  # transparent white


@dataclass
class CropRequest:
    """One box to extract, in original image pixels."""
    x: int
    y: int
    width: int
    height: int
    rotation: float = 0.0
    label: str = ""
    flip_vertical: bool = False

    @classmethod
    def from_payload(cls, item: Dict[str, Any]) -> "CropRequest":
        """Build from a wire-format box (itemNumber / flipVertical keys)."""
        return cls(
            x=item["x"],
            y=item["y"],
            width=item["width"],
            height=item["height"],
            rotation=item.get("rotation") or 0.0,
            label=item.get("itemNumber") or "",
            flip_vertical=bool(item.get("flipVertical", False)),
        )


@dataclass
class CropResult:
    """A persisted crop."""
    id: str  # file name
    image_url: str
    detected_number: str
    path: Path


@dataclass(frozen=True)
class CanvasGeometry:
    """Extent of the bitmap after rotating it by theta about its center."""
    theta: float  # radians, extraction convention
    width: int
    height: int
    min_x: float
    min_y: float
    center_x: float
    center_y: float

    def affine(self) -> np.ndarray:
        """
        2x3 matrix mapping source pixel indices onto canvas pixel indices.

        Geometry is in continuous coordinates (pixel i spans [i, i+1]) while
        warpAffine samples at pixel centers, so the translation is shifted by
        A(0.5, 0.5) - (0.5, 0.5).
        """
        c, s = math.cos(self.theta), math.sin(self.theta)
        cx, cy = self.center_x, self.center_y
        tx = cx - c * cx + s * cy - self.min_x
        ty = cy - s * cx - c * cy - self.min_y
        return np.array([
            [c, -s, tx + 0.5 * (c - s) - 0.5],
            [s, c, ty + 0.5 * (s + c) - 0.5],
        ], dtype=np.float64)


@dataclass(frozen=True)
class Placement:
    """Where a box lands on the rotated canvas."""
    canvas: CanvasGeometry
    rx: int
    ry: int
    width: int
    height: int


def rotate_point(x: float, y: float, cx: float, cy: float, theta: float) -> Tuple[float, float]:
    """Rotate (x, y) by theta radians about (cx, cy); y axis points down."""
    dx, dy = x - cx, y - cy
    return (
        math.cos(theta) * dx - math.sin(theta) * dy + cx,
        math.sin(theta) * dx + math.cos(theta) * dy + cy,
    )


def canvas_geometry(image_width: int, image_height: int, rotation: float) -> CanvasGeometry:
    """Rotated-canvas extent for an authoring rotation in degrees."""
    theta = -math.radians(rotation)
    cx, cy = image_width / 2, image_height / 2
    corners = [
        rotate_point(px, py, cx, cy, theta)
        for px, py in ((0, 0), (image_width, 0), (image_width, image_height), (0, image_height))
    ]
    xs = [p[0] for p in corners]
    ys = [p[1] for p in corners]
    return CanvasGeometry(
        theta=theta,
        width=round_half_up(max(xs) - min(xs)),
        height=round_half_up(max(ys) - min(ys)),
        min_x=min(xs),
        min_y=min(ys),
        center_x=cx,
        center_y=cy,
    )


def place_box(image_width: int, image_height: int, box: CropRequest) -> Placement:
    """
    Locate a box's window on the rotated canvas.

    Raises:
        ExtractionFailure: for geometry that cannot produce a crop
    """
    width = max(1, int(math.floor(box.width)))
    height = max(1, int(math.floor(box.height)))
    x = max(0, int(math.floor(box.x)))
    y = max(0, int(math.floor(box.y)))

    canvas = canvas_geometry(image_width, image_height, box.rotation or 0.0)
    if canvas.width < 1 or canvas.height < 1:
        raise ExtractionFailure(f"Degenerate canvas {canvas.width}x{canvas.height}", box=box)

    ctr_x, ctr_y = rotate_point(
        x + width / 2, y + height / 2, canvas.center_x, canvas.center_y, canvas.theta
    )
    rx = round_half_up(ctr_x - canvas.min_x - width / 2)
    ry = round_half_up(ctr_y - canvas.min_y - height / 2)

    width = min(width, canvas.width)
    height = min(height, canvas.height)
    rx = max(0, min(canvas.width - width, rx))
    ry = max(0, min(canvas.height - height, ry))
    return Placement(canvas=canvas, rx=rx, ry=ry, width=width, height=height)


def rotate_canvas(image: np.ndarray, canvas: CanvasGeometry) -> np.ndarray:
    """Render the bitmap onto its rotated canvas, padding with BACKGROUND."""
    if canvas.theta == 0:
        # Identity map; skip resampling entirely
        return image
    channels = image.shape[2] if image.ndim == 3 else 1
    border = BACKGROUND[:channels] if channels > 1 else BACKGROUND[0]
    return cv2.warpAffine(
        image,
        canvas.affine(),
        (canvas.width, canvas.height),
        flags=cv2.INTER_LINEAR,
        borderMode=cv2.BORDER_CONSTANT,
        borderValue=border,
    )


def cut_window(canvas_image: np.ndarray, placement: Placement, flip_vertical: bool = False) -> np.ndarray:
    """Cut the placement window from a rotated canvas image."""
    crop = canvas_image[
        placement.ry:placement.ry + placement.height,
        placement.rx:placement.rx + placement.width,
    ]
    if crop.shape[0] != placement.height or crop.shape[1] != placement.width:
        raise ExtractionFailure(
            f"Window {placement.width}x{placement.height} at ({placement.rx},{placement.ry}) "
            f"outside canvas {canvas_image.shape[1]}x{canvas_image.shape[0]}"
        )
    if flip_vertical:
        crop = np.flipud(crop)
    return np.ascontiguousarray(crop)


def sanitize_label(label: str) -> str:
    """Alphanumerics only, uppercased."""
    return "".join(ch for ch in (label or "") if ch.isascii() and ch.isalnum()).upper()


def encode_png(image: np.ndarray) -> bytes:
    """Encode an RGBA/RGB/gray array to PNG bytes in memory."""
    buffer = io.BytesIO()
    Image.fromarray(image).save(buffer, format="PNG")
    return buffer.getvalue()


class CropStore:
    """
    Flat directory of crops named after their labels.

    Name resolution (exists? -> NAME_1, NAME_2, ...) is a critical section
    per directory; files are created exclusively inside it.
    """

    _registry_lock = threading.Lock()
    _locks: Dict[str, threading.Lock] = {}

    def __init__(self, directory: Optional[str] = None):
        settings = get_settings()
        self.directory = Path(directory or settings.crops_dir)
        self.directory.mkdir(parents=True, exist_ok=True)
        key = str(self.directory.resolve())
        with self._registry_lock:
            self._lock = self._locks.setdefault(key, threading.Lock())

    def save(self, base_name: str, data: bytes) -> Path:
        """Write data under base_name (suffixed on collision); returns the path."""
        with self._lock:
            suffix = 0
            while True:
                name = f"{base_name}.png" if suffix == 0 else f"{base_name}_{suffix}.png"
                path = self.directory / name
                try:
                    handle = open(path, "xb")
                    break
                except FileExistsError:
                    suffix += 1

        try:
            with handle:
                handle.write(data)
        except Exception:
            path.unlink(missing_ok=True)
            raise
        return path


class ExtractionEngine:
    """Extracts and persists every box of one image."""

    def __init__(
        self,
        output_dir: Optional[str] = None,
        url_prefix: Optional[str] = None,
        workers: Optional[int] = None,
        preprocessor: Optional[ImagePreprocessor] = None,
    ):
        self.settings = get_settings()
        self.store = CropStore(output_dir)
        self.url_prefix = (url_prefix or self.settings.crops_url_prefix).rstrip("/")
        self.workers = max(1, workers or self.settings.extraction_workers)
        self.preprocessor = preprocessor or ImagePreprocessor()

    def extract(self, image_bytes: bytes, boxes: Sequence[CropRequest]) -> List[CropResult]:
        """
        Extract all boxes from an encoded bitmap.

        Raises:
            ValidationFailure: if the bitmap cannot be decoded
        """
        try:
            image = self.preprocessor.load_rgba(image_bytes)
        except Exception as e:
            raise ValidationFailure("Unable to read image", component="extraction", original_error=e) from e
        return self.extract_array(image, boxes)

    def extract_array(self, image: np.ndarray, boxes: Sequence[CropRequest]) -> List[CropResult]:
        """
        Extract boxes from a decoded RGBA array.

        A failing box is logged and left out; results keep input order.
        """
        start_time = time.time()
        canvases: Dict[float, np.ndarray] = {}
        canvas_lock = threading.Lock()

        def canvas_for(placement: Placement, rotation: float) -> np.ndarray:
            with canvas_lock:
                cached = canvases.get(rotation)
            if cached is None:
                cached = rotate_canvas(image, placement.canvas)
                with canvas_lock:
                    canvases[rotation] = cached
            return cached

        def run(box: CropRequest) -> Optional[CropResult]:
            try:
                return self._extract_one(image, box, canvas_for)
            except Exception as e:
                logger.exception(f"Crop failed for '{box.label}': {e}")
                return None

        if self.workers > 1 and len(boxes) > 1:
            with ThreadPoolExecutor(max_workers=self.workers) as pool:
                results = list(pool.map(run, boxes))
        else:
            results = [run(box) for box in boxes]

        saved = [r for r in results if r is not None]
        elapsed = int((time.time() - start_time) * 1000)
        logger.info(f"Extracted {len(saved)}/{len(boxes)} boxes ({elapsed}ms)")
        return saved

    def _extract_one(self, image: np.ndarray, box: CropRequest, canvas_for) -> Optional[CropResult]:
        label = (box.label or "").strip()
        if not label:
            logger.info("Skipping box without label")
            return None

        height, width = image.shape[:2]
        placement = place_box(width, height, box)
        rotation = box.rotation or 0.0
        crop = cut_window(canvas_for(placement, rotation), placement, box.flip_vertical)
        data = encode_png(crop)

        base_name = sanitize_label(label) or f"CROP{int(time.time() * 1000)}"
        path = self.store.save(base_name, data)
        return CropResult(
            id=path.name,
            image_url=f"{self.url_prefix}/{path.name}",
            detected_number=label,
            path=path,
        )
