"""Tests for initial box placement."""

from item_cropper.config import get_settings
from item_cropper.services.boxes import ImageSession, InputMode
from item_cropper.services.seeding import (
    ScreenshotLayout,
    screenshot_roi_rects,
    seed_session,
)


class TestCatalogSeeding:
    """Test stacked boxes for catalog pages."""

    def test_one_box_per_number(self):
        session = seed_session(ImageSession(width=2000, height=3000), InputMode.CATALOG, ["101", "202"], "PR")

        assert [b.label for b in session.boxes] == ["PR101", "PR202"]
        assert [(b.x, b.y) for b in session.boxes] == [(50, 50), (50, 180)]
        assert all((b.width, b.height) == (420, 120) for b in session.boxes)

    def test_no_numbers_gives_prefixed_placeholder(self):
        session = seed_session(ImageSession(width=2000, height=3000), InputMode.CATALOG, [], "NC")

        (box,) = session.boxes
        assert box.label == "NC"

    def test_detection_failure_gives_default_box(self):
        session = seed_session(ImageSession(width=2000, height=3000), InputMode.CATALOG, None)

        (box,) = session.boxes
        assert (box.x, box.y, box.width, box.height) == (50, 50, 400, 120)
        assert box.label == ""

    def test_stack_stays_inside_short_image(self):
        session = seed_session(ImageSession(width=500, height=300), InputMode.CATALOG, ["1", "2", "3", "4"])

        for box in session.boxes:
            assert box.x + box.width <= 500
            assert box.y + box.height <= 300

    def test_reseeding_replaces_boxes(self):
        session = ImageSession(width=2000, height=3000)
        seed_session(session, InputMode.CATALOG, ["101", "202"])
        seed_session(session, InputMode.CATALOG, ["303"])

        assert [b.label for b in session.boxes] == ["303"]
        assert session.boxes[0].id == 1


class TestScreenshotSeeding:
    """Test fixed two-column layout."""

    def test_always_two_flipped_boxes(self):
        session = seed_session(ImageSession(width=1000, height=1000), InputMode.SCREENSHOT, [])

        assert len(session.boxes) == 2
        assert all(b.flip_vertical for b in session.boxes)
        assert [b.color for b in session.boxes] == get_settings().screenshot_palette

    def test_column_geometry(self):
        session = seed_session(ImageSession(width=1000, height=1000), InputMode.SCREENSHOT, [])

        left, right = session.boxes
        assert (left.x, left.y, left.width, left.height) == (25, 110, 450, 450)
        assert right.x == 525

    def test_labels_are_positional(self):
        session = seed_session(ImageSession(width=1000, height=1000), InputMode.SCREENSHOT, ["", "888"], "MM")

        assert [b.label for b in session.boxes] == ["MM", "MM888"]

    def test_failed_detection_still_seeds_columns(self):
        session = seed_session(ImageSession(width=1000, height=1000), InputMode.SCREENSHOT, None)
        assert len(session.boxes) == 2


class TestScreenshotRegions:
    """Test item-number regions per column."""

    def test_roi_rects(self):
        left, right = screenshot_roi_rects(1000, 1000)

        assert (left.x, left.y, left.width, left.height) == (115, 800, 270, 180)
        assert right.x == 615

    def test_layout(self):
        layout = ScreenshotLayout.for_image(1000, 1000)
        assert (layout.column_width, layout.pad_x, layout.inner_width) == (500, 25, 450)
        assert (layout.top_y, layout.top_height) == (80, 600)
