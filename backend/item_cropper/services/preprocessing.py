"""Image loading, validation and preprocessing for item-number detection.

Two preprocessing levels are provided:
- common: EXIF-orient, clamp width, grayscale, normalize, sharpen
  (used by every detection strategy)
- strong: extra contrast gain, re-normalize, binarize, sharpen
  (used by the region-restricted strategy on bold screenshot numbers)
"""

import cv2
import numpy as np
from PIL import Image, ImageOps
import io
from typing import Tuple, Optional
from dataclasses import dataclass
import logging

from ..config import get_settings

logger = logging.getLogger(__name__)


@dataclass
class PreparedImage:
    """Preprocessed grayscale image plus its mapping to original pixels."""
    image: np.ndarray
    scale: float  # working pixels per original pixel
    original_width: int
    original_height: int
    metadata: dict


class ImagePreprocessor:
    """Handles image decoding and preprocessing for OCR."""

    def __init__(self):
        self.settings = get_settings()

    def preprocess(self, image_bytes: bytes) -> PreparedImage:
        """
        Common preprocessing shared by all detection strategies.

        Pipeline:
        1. Decode + apply EXIF orientation
        2. Downscale to detect_max_width (never upscale)
        3. Grayscale
        4. Normalize to full range
        5. Sharpen

        Args:
            image_bytes: Raw image bytes

        Returns:
            PreparedImage with grayscale working image and scale factor
        """
        image = self.load_image(image_bytes)
        height, width = image.shape[:2]
        metadata = {
            "original_size": (width, height),
            "preprocessing_steps": [],
        }

        image, scale = self._clamp_width(image, self.settings.detect_max_width)
        if scale != 1.0:
            metadata["preprocessing_steps"].append("downscale")
            metadata["resized_to"] = image.shape[:2]

        gray = cv2.cvtColor(image, cv2.COLOR_BGR2GRAY)
        metadata["preprocessing_steps"].append("grayscale")

        gray = self._normalize(gray)
        metadata["preprocessing_steps"].append("normalize")

        gray = self._sharpen(gray)
        metadata["preprocessing_steps"].append("sharpen")

        return PreparedImage(
            image=gray,
            scale=scale,
            original_width=width,
            original_height=height,
            metadata=metadata,
        )

    def preprocess_strong(self, gray: np.ndarray) -> np.ndarray:
        """
        Aggressive contrast + binarization for large bold digits.

        Applied on top of the common pipeline output.
        """
        boosted = cv2.convertScaleAbs(
            gray,
            alpha=self.settings.strong_contrast_gain,
            beta=self.settings.strong_contrast_bias,
        )
        boosted = self._normalize(boosted)
        _, binary = cv2.threshold(boosted, self.settings.strong_threshold, 255, cv2.THRESH_BINARY)
        return self._sharpen(binary)

    def crop_region(
        self,
        image: np.ndarray,
        x: int,
        y: int,
        width: int,
        height: int,
        max_width: Optional[int] = None,
    ) -> Tuple[np.ndarray, float]:
        """
        Cut a region and optionally downscale it.

        Returns:
            Tuple of (region, scale) where scale maps input pixels to region pixels
        """
        img_h, img_w = image.shape[:2]
        x0 = max(0, min(img_w - 1, int(x)))
        y0 = max(0, min(img_h - 1, int(y)))
        x1 = max(x0 + 1, min(img_w, int(x + width)))
        y1 = max(y0 + 1, min(img_h, int(y + height)))
        region = image[y0:y1, x0:x1]
        if max_width:
            return self._clamp_width(region, max_width)
        return region, 1.0

    def _clamp_width(self, image: np.ndarray, max_width: int) -> Tuple[np.ndarray, float]:
        """Downscale so width <= max_width; returns (image, scale)."""
        width = image.shape[1]
        if width <= max_width:
            return image, 1.0
        scale = max_width / width
        new_height = max(1, int(round(image.shape[0] * scale)))
        resized = cv2.resize(image, (max_width, new_height), interpolation=cv2.INTER_AREA)
        return resized, scale

    def _normalize(self, image: np.ndarray) -> np.ndarray:
        """Stretch intensities to the full 0-255 range."""
        return cv2.normalize(image, None, 0, 255, cv2.NORM_MINMAX)

    def _sharpen(self, image: np.ndarray) -> np.ndarray:
        """Apply light sharpening to enhance text edges."""
        # Unsharp masking - gentle sharpening
        gaussian = cv2.GaussianBlur(image, (0, 0), 2.0)
        sharpened = cv2.addWeighted(image, 1.3, gaussian, -0.3, 0)
        return sharpened

    def _open_oriented(self, image_bytes: bytes) -> Image.Image:
        pil_image = Image.open(io.BytesIO(image_bytes))
        return ImageOps.exif_transpose(pil_image)

    def load_image(self, image_bytes: bytes) -> np.ndarray:
        """Load image from bytes as BGR, honoring EXIF orientation."""
        pil_image = self._open_oriented(image_bytes)

        # Convert to RGB if necessary
        if pil_image.mode != "RGB":
            pil_image = pil_image.convert("RGB")

        # Convert to numpy array (BGR for OpenCV)
        image = np.array(pil_image)
        image = cv2.cvtColor(image, cv2.COLOR_RGB2BGR)

        return image

    def load_rgba(self, image_bytes: bytes) -> np.ndarray:
        """Load image as an RGBA array (used for lossless crops)."""
        pil_image = self._open_oriented(image_bytes)
        if pil_image.mode != "RGBA":
            pil_image = pil_image.convert("RGBA")
        return np.array(pil_image)

    def load_gray(self, image_bytes: bytes) -> np.ndarray:
        """Load image as single-channel grayscale."""
        return cv2.cvtColor(self.load_image(image_bytes), cv2.COLOR_BGR2GRAY)

    def get_image_info(self, image_bytes: bytes) -> dict:
        """Get basic image information without full preprocessing."""
        raw = Image.open(io.BytesIO(image_bytes))
        image_format = raw.format
        pil_image = ImageOps.exif_transpose(raw)
        return {
            "format": image_format,
            "mode": pil_image.mode,
            "width": pil_image.width,
            "height": pil_image.height,
            "size_bytes": len(image_bytes),
            "size_mb": len(image_bytes) / (1024 * 1024)
        }

    def validate_image(self, image_bytes: bytes, filename: str = "upload") -> Tuple[bool, str]:
        """
        Validate image meets requirements for upload.

        Acceptance depends on the bytes decoding, not on the file name;
        browsers send unnamed blobs as "blob".

        Returns:
            Tuple of (is_valid, error_message)
        """
        # Check file size against upload limit
        size_mb = len(image_bytes) / (1024 * 1024)
        if size_mb > self.settings.max_upload_size_mb:
            return False, f"Image exceeds {self.settings.max_upload_size_mb}MB upload limit. Please resize or compress."

        # Try to load image
        min_dim = self.settings.min_image_dimension
        try:
            info = self.get_image_info(image_bytes)
            if info["width"] < min_dim or info["height"] < min_dim:
                return False, f"Image too small. Minimum dimensions: {min_dim}x{min_dim} pixels."
        except Exception as e:
            return False, f"Unable to read image {filename}: {str(e)}"

        return True, ""
