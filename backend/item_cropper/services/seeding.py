"""Initial box placement for freshly uploaded images.

Catalog pages get one stacked box per detected item number. Screenshots
always get two fixed column boxes whose labels are filled from detection.
"""

from dataclasses import dataclass
from typing import List, Optional, Sequence
import logging

from ..config import get_settings
from .boxes import ImageSession, InputMode, format_item_number
from ..utils import round_half_up

logger = logging.getLogger(__name__)

SCREENSHOT_COLUMNS = 2


@dataclass(frozen=True)
class Rect:
    x: int
    y: int
    width: int
    height: int


@dataclass(frozen=True)
class ScreenshotLayout:
    """Column geometry shared by screenshot seeding and ROI detection."""
    column_width: int
    pad_x: int
    inner_width: int
    top_y: int
    top_height: int

    @classmethod
    def for_image(cls, width: int, height: int) -> "ScreenshotLayout":
        column_width = width // SCREENSHOT_COLUMNS
        pad_x = round_half_up(column_width * 0.05)
        return cls(
            column_width=column_width,
            pad_x=pad_x,
            inner_width=column_width - pad_x * 2,
            top_y=round_half_up(height * 0.08),
            top_height=round_half_up(height * 0.60),
        )

    def box_rect(self, column: int) -> Rect:
        return Rect(
            x=column * self.column_width + self.pad_x,
            y=self.top_y + round_half_up(self.top_height * 0.05),
            width=self.inner_width,
            height=round_half_up(self.top_height * 0.75),
        )


def screenshot_roi_rects(width: int, height: int) -> List[Rect]:
    """
    Item-number regions of a two-column screenshot.

    Bottom band 18% of the height (ending 2% above the bottom edge), over
    the central 60% of each padded column.
    """
    layout = ScreenshotLayout.for_image(width, height)
    roi_h = round_half_up(height * 0.18)
    roi_y = max(0, height - roi_h - round_half_up(height * 0.02))
    roi_w = round_half_up(layout.inner_width * 0.60)
    roi_x_offset = round_half_up(layout.inner_width * 0.20)
    return [
        Rect(
            x=i * layout.column_width + layout.pad_x + roi_x_offset,
            y=roi_y,
            width=max(1, roi_w),
            height=max(1, roi_h),
        )
        for i in range(SCREENSHOT_COLUMNS)
    ]


def seed_catalog(
    session: ImageSession,
    item_numbers: Sequence[str],
    prefix: Optional[str] = None,
) -> ImageSession:
    """One stacked box per item number, or a single placeholder."""
    settings = get_settings()
    box_h = settings.catalog_box_height
    origin = settings.catalog_origin
    numbers = list(item_numbers) or [""]
    session.boxes = []
    for i, number in enumerate(numbers):
        session.add(
            x=origin,
            y=origin + i * (box_h + settings.catalog_box_margin),
            width=settings.catalog_box_width,
            height=box_h,
            label=format_item_number(number or "", prefix) or (prefix or ""),
        )
    logger.info(f"Seeded {len(session.boxes)} catalog box(es)")
    return session


def seed_placeholder(session: ImageSession, prefix: Optional[str] = None) -> ImageSession:
    """Single default box used when detection itself blew up."""
    settings = get_settings()
    session.boxes = []
    session.add(
        x=settings.catalog_origin,
        y=settings.catalog_origin,
        width=settings.placeholder_box_width,
        height=settings.catalog_box_height,
        label=prefix or "",
    )
    return session


def seed_screenshot(
    session: ImageSession,
    item_numbers: Sequence[str],
    prefix: Optional[str] = None,
) -> ImageSession:
    """
    Two column boxes regardless of detection; labels filled when found.

    item_numbers is read positionally: entry i labels column i, and empty
    entries keep the placeholder label.
    """
    settings = get_settings()
    layout = ScreenshotLayout.for_image(session.width, session.height)
    palette = settings.screenshot_palette
    session.boxes = []
    for i in range(SCREENSHOT_COLUMNS):
        rect = layout.box_rect(i)
        label = prefix or ""
        if i < len(item_numbers) and item_numbers[i]:
            label = format_item_number(item_numbers[i], prefix)
        session.add(
            x=rect.x,
            y=rect.y,
            width=rect.width,
            height=rect.height,
            label=label,
            flip_vertical=True,
            color=palette[i % len(palette)],
        )
    return session


def seed_session(
    session: ImageSession,
    mode: InputMode,
    item_numbers: Optional[Sequence[str]],
    prefix: Optional[str] = None,
) -> ImageSession:
    """
    Seed a session from detection output.

    item_numbers=None means detection failed outright.
    """
    if mode == InputMode.SCREENSHOT:
        return seed_screenshot(session, item_numbers or [], prefix)
    if item_numbers is None:
        return seed_placeholder(session, prefix)
    return seed_catalog(session, item_numbers, prefix)
