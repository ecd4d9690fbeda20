"""Screen <-> image coordinate mapping for the canvas.

Only the focused image is zoomed and panned. Every other image renders at
its base fit-to-canvas scale with no pan.
"""

from dataclasses import dataclass
from typing import Tuple
import logging

from ..config import get_settings

logger = logging.getLogger(__name__)


def base_scale(image_width: int, image_height: int, max_width: int, max_height: int) -> float:
    """Fit-to-canvas scale, never enlarging."""
    if image_width <= 0 or image_height <= 0:
        return 1.0
    return min(max_width / image_width, max_height / image_height, 1.0)


@dataclass
class ViewState:
    """Zoom and pan of the focused image."""
    zoom: float = 1.0
    pan_x: float = 0.0
    pan_y: float = 0.0

    def reset(self) -> None:
        self.zoom = 1.0
        self.pan_x = 0.0
        self.pan_y = 0.0

    def zoom_in(self) -> float:
        settings = get_settings()
        self.zoom = min(settings.zoom_max, round(self.zoom + settings.zoom_step, 2))
        return self.zoom

    def zoom_out(self) -> float:
        settings = get_settings()
        self.zoom = max(settings.zoom_min, round(self.zoom - settings.zoom_step, 2))
        return self.zoom

    def set_pan(self, pan_x: float, pan_y: float) -> None:
        self.pan_x = pan_x
        self.pan_y = pan_y


@dataclass(frozen=True)
class ViewTransform:
    """Scale + pan mapping for one image on screen."""
    scale: float
    pan_x: float = 0.0
    pan_y: float = 0.0

    @classmethod
    def for_image(
        cls,
        image_width: int,
        image_height: int,
        view: ViewState,
        focused: bool,
        max_width: int | None = None,
        max_height: int | None = None,
    ) -> "ViewTransform":
        """
        Build the transform used to draw and hit-test an image.

        Args:
            image_width: Original bitmap width
            image_height: Original bitmap height
            view: Current workspace view state
            focused: Whether this image owns the view state
            max_width: Canvas width limit (defaults to settings)
            max_height: Canvas height limit (defaults to settings)
        """
        settings = get_settings()
        max_width = max_width or settings.max_render_width
        max_height = max_height or settings.max_render_height
        scale = base_scale(image_width, image_height, max_width, max_height)
        if not focused:
            return cls(scale=scale)
        return cls(scale=scale * view.zoom, pan_x=view.pan_x, pan_y=view.pan_y)

    def to_image(self, screen_x: float, screen_y: float) -> Tuple[float, float]:
        """Map a pointer position to image pixels."""
        return (screen_x - self.pan_x) / self.scale, (screen_y - self.pan_y) / self.scale

    def to_screen(self, image_x: float, image_y: float) -> Tuple[float, float]:
        """Map an image pixel to canvas coordinates."""
        return image_x * self.scale + self.pan_x, image_y * self.scale + self.pan_y

    def canvas_size(
        self,
        image_width: int,
        image_height: int,
        max_width: int | None = None,
        max_height: int | None = None,
    ) -> Tuple[float, float]:
        """Visible canvas size for an image drawn with this transform."""
        settings = get_settings()
        max_width = max_width or settings.max_render_width
        max_height = max_height or settings.max_render_height
        cw = min(max_width, image_width * self.scale + abs(self.pan_x))
        ch = min(max_height, image_height * self.scale + abs(self.pan_y))
        return cw, ch
