"""Pointer and keyboard handling for the crop canvas.

All geometry is evaluated in image space: pointer positions are mapped
through the image's ViewTransform before hit-testing, and every edit is
written back through ImageSession so box invariants are re-applied.
"""

from dataclasses import dataclass
from typing import Iterable, Optional, Tuple
import logging

from ..config import get_settings
from ..errors import LastBoxError
from .boxes import CropBox, ImageSession, Workspace
from .view import ViewTransform
from ..utils import round_half_up

logger = logging.getLogger(__name__)


HANDLE_CURSORS = {
    "n": "ns-resize",
    "s": "ns-resize",
    "e": "ew-resize",
    "w": "ew-resize",
    "nw": "nwse-resize",
    "se": "nwse-resize",
    "ne": "nesw-resize",
    "sw": "nesw-resize",
}

ARROW_KEYS = {
    "ArrowLeft": (-1, 0),
    "ArrowRight": (1, 0),
    "ArrowUp": (0, -1),
    "ArrowDown": (0, 1),
}


@dataclass(frozen=True)
class HitResult:
    """Outcome of a pointer-down hit test."""
    action: Optional[str] = None  # "resize", "drag", "pan" or None
    box_id: Optional[int] = None
    handle: Optional[str] = None


def resize_handle_at(
    px: float,
    py: float,
    box: CropBox,
    corner_size: float = 15,
    edge_size: float = 8,
) -> Optional[str]:
    """
    Resize handle under an image-space point, if any.

    Only points within corner_size of the box are considered. Corners win
    over edges.
    """
    if not box.contains(px, py, margin=corner_size):
        return None
    r, b = box.right, box.bottom
    if px >= r - corner_size and py >= b - corner_size:
        return "se"
    if px >= r - corner_size and py <= box.y + corner_size:
        return "ne"
    if px <= box.x + corner_size and py >= b - corner_size:
        return "sw"
    if px <= box.x + corner_size and py <= box.y + corner_size:
        return "nw"
    if r - edge_size <= px <= r + edge_size:
        return "e"
    if box.x - edge_size <= px <= box.x + edge_size:
        return "w"
    if b - edge_size <= py <= b + edge_size:
        return "s"
    if box.y - edge_size <= py <= box.y + edge_size:
        return "n"
    return None


def hit_test(
    px: float,
    py: float,
    boxes: Iterable[CropBox],
    allow_pan: bool = False,
    corner_size: float = 15,
    edge_size: float = 8,
) -> HitResult:
    """
    Resolve a pointer-down in image space.

    Handles of any box take priority over bodies; within each pass the first
    box in insertion order wins.
    """
    boxes = list(boxes)
    for box in boxes:
        handle = resize_handle_at(px, py, box, corner_size, edge_size)
        if handle:
            return HitResult(action="resize", box_id=box.id, handle=handle)
    for box in boxes:
        if box.contains(px, py):
            return HitResult(action="drag", box_id=box.id)
    if allow_pan:
        return HitResult(action="pan")
    return HitResult()


def cursor_for(
    px: float,
    py: float,
    boxes: Iterable[CropBox],
    zoom: float = 1.0,
    shift: bool = False,
    corner_size: float = 15,
    edge_size: float = 8,
) -> str:
    """Cursor affordance for a hover position (first matching box wins)."""
    for box in boxes:
        handle = resize_handle_at(px, py, box, corner_size, edge_size)
        if handle:
            return HANDLE_CURSORS[handle]
        if box.contains(px, py):
            return "move"
    if zoom > 1 or shift:
        return "grab"
    return "default"


def resize_rect(
    start: CropBox,
    handle: str,
    dx: float,
    dy: float,
    image_width: int,
    image_height: int,
    min_width: float = 50,
    min_height: float = 20,
) -> Tuple[float, float, float, float]:
    """
    New rectangle for dragging a handle by (dx, dy) from its start state.

    The edge or corner opposite the handle stays where it was at
    pointer-down unless the image border forces the box inward.
    """
    x, y, width, height = start.x, start.y, start.width, start.height
    nw, nh = width, height
    if "e" in handle:
        nw = width + dx
    if "w" in handle:
        nw = width - dx
    if "s" in handle:
        nh = height + dy
    if "n" in handle:
        nh = height - dy

    nw = min(max(nw, min_width), image_width)
    nh = min(max(nh, min_height), image_height)

    nx, ny = x, y
    if "w" in handle:
        nx = x + width - nw
    if "n" in handle:
        ny = y + height - nh

    nx = max(0, min(image_width - nw, nx))
    ny = max(0, min(image_height - nh, ny))
    return nx, ny, nw, nh


class InteractionController:
    """Turns canvas events into box edits on the focused image."""

    def __init__(self, workspace: Workspace):
        self.workspace = workspace
        self.settings = get_settings()
        self.selected_id: Optional[int] = None
        self._action: Optional[str] = None
        self._handle: Optional[str] = None
        self._grab_offset: Tuple[float, float] = (0.0, 0.0)
        self._resize_anchor: Tuple[float, float] = (0.0, 0.0)
        self._resize_start: Optional[CropBox] = None
        self._pan_anchor: Tuple[float, float] = (0.0, 0.0)

    @property
    def session(self) -> Optional[ImageSession]:
        return self.workspace.focused

    def transform_for(self, index: int) -> ViewTransform:
        session = self.workspace.sessions[index]
        return ViewTransform.for_image(
            session.width,
            session.height,
            self.workspace.view,
            focused=index == self.workspace.active_index,
        )

    def focus(self, index: int) -> None:
        """Thumbnail click: focus the image and drop the selection."""
        self.workspace.focus(index)
        self.selected_id = None
        self.pointer_up()

    def select(self, box_id: Optional[int]) -> None:
        self.selected_id = box_id

    # --- pointer ----------------------------------------------------------

    def pointer_down(self, index: int, screen_x: float, screen_y: float, shift: bool = False) -> HitResult:
        """
        Start a resize, drag or pan on image `index`.

        Clicking an unfocused image focuses it first (which resets zoom/pan).
        """
        if index != self.workspace.active_index:
            self.workspace.focus(index)

        session = self.workspace.sessions[index]
        transform = self.transform_for(index)
        ox, oy = transform.to_image(screen_x, screen_y)

        result = hit_test(
            ox,
            oy,
            session.boxes,
            allow_pan=shift or self.workspace.view.zoom > 1,
            corner_size=self.settings.corner_handle_size,
            edge_size=self.settings.edge_handle_size,
        )

        if result.action == "resize":
            box = session.get(result.box_id)
            self.selected_id = box.id
            self._handle = result.handle
            self._resize_anchor = (ox, oy)
            self._resize_start = box.copy()
        elif result.action == "drag":
            box = session.get(result.box_id)
            self.selected_id = box.id
            self._grab_offset = (ox - box.x, oy - box.y)
        elif result.action == "pan":
            view = self.workspace.view
            self._pan_anchor = (screen_x - view.pan_x, screen_y - view.pan_y)

        self._action = result.action
        return result

    def pointer_move(
        self,
        screen_x: float,
        screen_y: float,
        shift: bool = False,
        index: Optional[int] = None,
    ) -> Optional[str]:
        """
        Continue the active gesture, or return the hover cursor when idle.
        """
        active = self.workspace.active_index
        if index is None:
            index = active

        if self._action == "pan":
            if index == active:
                self.workspace.view.set_pan(screen_x - self._pan_anchor[0], screen_y - self._pan_anchor[1])
            return None

        session = self.workspace.sessions[index]
        ox, oy = self.transform_for(index).to_image(screen_x, screen_y)

        if self._action == "resize" and index == active and self._resize_start is not None:
            dx = ox - self._resize_anchor[0]
            dy = oy - self._resize_anchor[1]
            rect = resize_rect(
                self._resize_start,
                self._handle,
                dx,
                dy,
                session.width,
                session.height,
                self.settings.min_box_width,
                self.settings.min_box_height,
            )
            session.resize(self._resize_start.id, *rect)
            return None

        if self._action == "drag" and index == active and self.selected_id is not None:
            session.move(
                self.selected_id,
                round_half_up(ox - self._grab_offset[0]),
                round_half_up(oy - self._grab_offset[1]),
            )
            return None

        zoom = self.workspace.view.zoom if index == active else 1.0
        return cursor_for(
            ox,
            oy,
            session.boxes,
            zoom=zoom,
            shift=shift,
            corner_size=self.settings.corner_handle_size,
            edge_size=self.settings.edge_handle_size,
        )

    def pointer_up(self) -> None:
        self._action = None
        self._handle = None
        self._resize_start = None
        self._grab_offset = (0.0, 0.0)
        self._resize_anchor = (0.0, 0.0)
        self._pan_anchor = (0.0, 0.0)

    # --- keyboard ---------------------------------------------------------

    def key_down(self, key: str, shift: bool = False) -> bool:
        """
        Keyboard edits for the selected box.

        Returns True when the key changed something.
        """
        session = self.session
        if session is None:
            return False
        box = session.find(self.selected_id)
        if box is None:
            return False

        if key in ARROW_KEYS:
            step = self.settings.nudge_step_large if shift else self.settings.nudge_step
            kx, ky = ARROW_KEYS[key]
            session.move(box.id, box.x + kx * step, box.y + ky * step)
            return True

        if key == "[":
            session.rotate(box.id, -self.settings.rotation_step)
            return True
        if key == "]":
            session.rotate(box.id, self.settings.rotation_step)
            return True

        if key in ("Delete", "Backspace"):
            try:
                session.remove(box.id)
            except LastBoxError:
                logger.info(f"Refusing to delete box #{box.id}: last box in image")
                return False
            self.selected_id = None
            return True

        return False

    # --- view -------------------------------------------------------------

    def zoom_in(self) -> float:
        return self.workspace.view.zoom_in()

    def zoom_out(self) -> float:
        return self.workspace.view.zoom_out()
