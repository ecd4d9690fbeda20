"""Crop boxes and the per-image box store.

Every mutation goes through ImageSession so the size and bounds invariants
hold at all times:
    width >= min_box_width, height >= min_box_height
    0 <= x <= image_width - width, 0 <= y <= image_height - height
"""

from dataclasses import dataclass, field, asdict
from enum import Enum
from typing import List, Optional, Tuple, Dict, Any
import logging
import re

from rapidfuzz import fuzz, process

from ..config import get_settings
from ..errors import LastBoxError, SessionLimitError
from .view import ViewState
from ..utils import round_half_up

logger = logging.getLogger(__name__)


class InputMode(str, Enum):
    """Kind of bitmap being cropped; drives detection and seeding."""
    CATALOG = "catalog"
    SCREENSHOT = "screenshot"


@dataclass
class CropBox:
    """Operator-defined rectangle in original image pixels."""
    id: int
    x: float
    y: float
    width: float
    height: float
    label: str = ""
    color: str = "#00ff00"
    rotation: float = 0.0  # Degrees, clockwise-positive as drawn
    flip_vertical: bool = False

    @property
    def right(self) -> float:
        return self.x + self.width

    @property
    def bottom(self) -> float:
        return self.y + self.height

    @property
    def center(self) -> Tuple[float, float]:
        return self.x + self.width / 2, self.y + self.height / 2

    def contains(self, px: float, py: float, margin: float = 0) -> bool:
        """Point inside the box, optionally grown by margin on every side."""
        return (
            self.x - margin <= px <= self.right + margin and
            self.y - margin <= py <= self.bottom + margin
        )

    def copy(self) -> "CropBox":
        return CropBox(**asdict(self))


def format_item_number(label: str, prefix: Optional[str]) -> str:
    """
    Apply a vendor prefix to an item label.

    Labels already carrying the prefix are left alone; otherwise up to three
    leading capitals (a previous vendor's prefix) are replaced.
    """
    if not prefix:
        return label
    if label.startswith(prefix):
        return label
    clean = re.sub(r"^[A-Z]{1,3}", "", label or "")
    return prefix + clean


def resolve_vendor_prefix(vendor: Optional[str], min_score: float = 85.0) -> str:
    """
    Prefix for a vendor given by 1-based id or by name.

    Names are matched fuzzily against the configured vendor names, so case
    and small spelling differences are tolerated. Unknown vendors get no
    prefix.
    """
    if not vendor:
        return ""
    vendors = get_settings().vendor_prefixes
    key = vendor.strip()
    if key.isdigit():
        names = list(vendors)
        index = int(key) - 1
        return vendors[names[index]] if 0 <= index < len(names) else ""
    match = process.extractOne(key, list(vendors), scorer=fuzz.WRatio, processor=str.lower)
    if match is None or match[1] < min_score:
        logger.warning(f"Unknown vendor '{vendor}'")
        return ""
    return vendors[match[0]]


@dataclass
class ImageSession:
    """Boxes for one uploaded bitmap, in insertion order."""
    width: int
    height: int
    boxes: List[CropBox] = field(default_factory=list)
    name: str = ""

    def __post_init__(self):
        self.settings = get_settings()

    # --- invariants -----------------------------------------------------

    def clamp_size(self, width: float, height: float) -> Tuple[float, float]:
        width = min(max(width, self.settings.min_box_width), self.width)
        height = min(max(height, self.settings.min_box_height), self.height)
        return width, height

    def clamp_origin(self, x: float, y: float, width: float, height: float) -> Tuple[float, float]:
        x = max(0, min(self.width - width, x))
        y = max(0, min(self.height - height, y))
        return x, y

    def clamp_rect(self, x: float, y: float, width: float, height: float) -> Tuple[float, float, float, float]:
        """Clamp a rectangle to minimum size and image bounds."""
        width, height = self.clamp_size(width, height)
        x, y = self.clamp_origin(x, y, width, height)
        return x, y, width, height

    # --- queries --------------------------------------------------------

    def next_id(self) -> int:
        return max((b.id for b in self.boxes), default=0) + 1

    def get(self, box_id: int) -> CropBox:
        for box in self.boxes:
            if box.id == box_id:
                return box
        raise KeyError(f"No box with id {box_id}")

    def find(self, box_id: Optional[int]) -> Optional[CropBox]:
        if box_id is None:
            return None
        return next((b for b in self.boxes if b.id == box_id), None)

    def __len__(self) -> int:
        return len(self.boxes)

    # --- mutations ------------------------------------------------------

    def add(
        self,
        x: float,
        y: float,
        width: float,
        height: float,
        label: str = "",
        rotation: float = 0.0,
        flip_vertical: bool = False,
        color: Optional[str] = None,
    ) -> CropBox:
        """Append a new box with the next free id."""
        box_id = self.next_id()
        if color is None:
            palette = self.settings.box_palette
            color = palette[(box_id - 1) % len(palette)]
        x, y, width, height = self.clamp_rect(x, y, width, height)
        box = CropBox(
            id=box_id,
            x=x,
            y=y,
            width=width,
            height=height,
            label=label,
            color=color,
            rotation=rotation,
            flip_vertical=flip_vertical,
        )
        self.boxes.append(box)
        return box

    def move(self, box_id: int, x: float, y: float) -> CropBox:
        box = self.get(box_id)
        box.x, box.y = self.clamp_origin(x, y, box.width, box.height)
        return box

    def resize(self, box_id: int, x: float, y: float, width: float, height: float) -> CropBox:
        box = self.get(box_id)
        box.x, box.y, box.width, box.height = self.clamp_rect(x, y, width, height)
        return box

    def rotate(self, box_id: int, delta: float) -> CropBox:
        box = self.get(box_id)
        box.rotation = round(box.rotation + delta, 2)
        return box

    def set_label(self, box_id: int, label: str, prefix: Optional[str] = None) -> CropBox:
        box = self.get(box_id)
        box.label = format_item_number(label, prefix)
        return box

    def set_flip(self, box_id: int, flip_vertical: bool) -> CropBox:
        box = self.get(box_id)
        box.flip_vertical = flip_vertical
        return box

    def remove(self, box_id: int) -> None:
        """Remove a box; the last remaining box can never be removed."""
        box = self.get(box_id)
        if len(self.boxes) <= 1:
            raise LastBoxError("A session must keep at least one box", component="boxes")
        self.boxes.remove(box)

    def apply_prefix(self, prefix: Optional[str]) -> None:
        """Re-prefix every non-empty label."""
        if not prefix:
            return
        for box in self.boxes:
            if box.label:
                box.label = format_item_number(box.label, prefix)

    # --- export ---------------------------------------------------------

    def crop_payload(self) -> List[Dict[str, Any]]:
        """
        Boxes ready for extraction: integer-rounded rectangles and trimmed
        labels. Boxes without a label are not extracted.
        """
        payload = []
        for box in self.boxes:
            label = (box.label or "").strip()
            if not label:
                continue
            payload.append({
                "x": round_half_up(box.x),
                "y": round_half_up(box.y),
                "width": round_half_up(box.width),
                "height": round_half_up(box.height),
                "rotation": box.rotation or 0.0,
                "itemNumber": label,
                "flipVertical": bool(box.flip_vertical),
            })
        return payload


class Workspace:
    """Up to max_sessions images, the focused one and its view state."""

    def __init__(self, mode: InputMode = InputMode.CATALOG, vendor_prefix: Optional[str] = None):
        self.settings = get_settings()
        self.mode = mode
        self.vendor_prefix = vendor_prefix
        self.sessions: List[ImageSession] = []
        self.active_index = 0
        self.view = ViewState()

    @property
    def focused(self) -> Optional[ImageSession]:
        if 0 <= self.active_index < len(self.sessions):
            return self.sessions[self.active_index]
        return None

    def load(self, sizes: List[Tuple[int, int]], names: Optional[List[str]] = None) -> List[ImageSession]:
        """Replace all sessions with a new upload batch (extra images dropped)."""
        picked = sizes[: self.settings.max_sessions]
        if len(sizes) > len(picked):
            logger.warning(f"Upload batch truncated to {len(picked)} of {len(sizes)} images")
        names = names or [""] * len(picked)
        self.sessions = [
            ImageSession(width=w, height=h, name=names[i] if i < len(names) else "")
            for i, (w, h) in enumerate(picked)
        ]
        self.active_index = 0
        self.view.reset()
        return self.sessions

    def add_session(self, width: int, height: int, name: str = "") -> ImageSession:
        if len(self.sessions) >= self.settings.max_sessions:
            raise SessionLimitError(
                f"At most {self.settings.max_sessions} images can be open", component="workspace"
            )
        session = ImageSession(width=width, height=height, name=name)
        self.sessions.append(session)
        return session

    def focus(self, index: int) -> bool:
        """Focus an image; returns True when focus actually changed."""
        if not 0 <= index < len(self.sessions):
            raise IndexError(f"No image at index {index}")
        if index == self.active_index:
            return False
        self.active_index = index
        self.view.reset()
        return True

    def clear(self) -> None:
        self.sessions = []
        self.active_index = 0
        self.view.reset()

    def add_box(self, index: Optional[int] = None) -> CropBox:
        """Explicit "add box" action with the default placement."""
        session = self.sessions[self.active_index if index is None else index]
        nid = session.next_id()
        return session.add(
            x=60 + nid * 10,
            y=60 + nid * 10,
            width=self.settings.placeholder_box_width,
            height=self.settings.catalog_box_height,
            label=self.vendor_prefix or "",
            flip_vertical=self.mode == InputMode.SCREENSHOT,
        )

    def set_vendor_prefix(self, prefix: Optional[str]) -> None:
        self.vendor_prefix = prefix
        for session in self.sessions:
            session.apply_prefix(prefix)

    def set_vendor(self, vendor: Optional[str]) -> str:
        """Select a vendor by id or name; returns the applied prefix."""
        prefix = resolve_vendor_prefix(vendor)
        self.set_vendor_prefix(prefix or None)
        return prefix
