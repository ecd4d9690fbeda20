"""Tests for pointer/keyboard interaction on the crop canvas."""

import random

import pytest

from item_cropper.config import get_settings
from item_cropper.services.boxes import CropBox, ImageSession, Workspace
from item_cropper.services.interaction import (
    InteractionController,
    cursor_for,
    hit_test,
    resize_handle_at,
    resize_rect,
)


@pytest.fixture
def workspace():
    """One 1000x1000 image."""
    ws = Workspace()
    ws.load([(1000, 1000)])
    return ws


@pytest.fixture
def controller(workspace):
    return InteractionController(workspace)


def screen(controller, x, y, index=0):
    """Image point -> screen point for image `index`."""
    return controller.transform_for(index).to_screen(x, y)


def assert_invariants(session: ImageSession):
    settings = get_settings()
    for box in session.boxes:
        assert box.width >= settings.min_box_width
        assert box.height >= settings.min_box_height
        assert box.x >= 0 and box.x + box.width <= session.width + 1e-9
        assert box.y >= 0 and box.y + box.height <= session.height + 1e-9


class TestHandles:
    """Test resize handle detection."""

    @pytest.fixture
    def box(self):
        return CropBox(id=1, x=100, y=100, width=200, height=100)

    @pytest.mark.parametrize("point,handle", [
        ((300, 200), "se"),
        ((300, 100), "ne"),
        ((100, 200), "sw"),
        ((100, 100), "nw"),
        ((305, 150), "e"),
        ((95, 150), "w"),
        ((200, 204), "s"),
        ((200, 96), "n"),
    ])
    def test_handle_positions(self, box, point, handle):
        assert resize_handle_at(*point, box) == handle

    def test_interior_is_not_a_handle(self, box):
        assert resize_handle_at(200, 150, box) is None

    def test_far_point_is_not_a_handle(self, box):
        assert resize_handle_at(500, 500, box) is None


class TestHitTest:
    """Test pointer-down resolution."""

    def test_first_inserted_box_wins_body_hits(self):
        a = CropBox(id=1, x=0, y=0, width=100, height=100)
        b = CropBox(id=2, x=50, y=50, width=100, height=100)

        assert hit_test(75, 75, [a, b]).box_id == 1
        assert hit_test(75, 75, [b, a]).box_id == 2

    def test_handles_beat_bodies(self):
        outer = CropBox(id=1, x=100, y=100, width=300, height=300)
        inner = CropBox(id=2, x=200, y=200, width=100, height=100)

        result = hit_test(300, 300, [outer, inner])
        assert result.action == "resize"
        assert result.box_id == 2
        assert result.handle == "se"

    def test_empty_area_pans_only_when_allowed(self):
        box = CropBox(id=1, x=0, y=0, width=100, height=100)
        assert hit_test(500, 500, [box]).action is None
        assert hit_test(500, 500, [box], allow_pan=True).action == "pan"


class TestCursor:
    """Test hover affordances."""

    def test_cursor_names(self):
        box = CropBox(id=1, x=100, y=100, width=200, height=100)
        assert cursor_for(300, 200, [box]) == "nwse-resize"
        assert cursor_for(300, 100, [box]) == "nesw-resize"
        assert cursor_for(305, 150, [box]) == "ew-resize"
        assert cursor_for(200, 96, [box]) == "ns-resize"
        assert cursor_for(200, 150, [box]) == "move"
        assert cursor_for(600, 600, [box]) == "default"
        assert cursor_for(600, 600, [box], zoom=1.5) == "grab"
        assert cursor_for(600, 600, [box], shift=True) == "grab"


class TestResizeRect:
    """Test resize geometry."""

    @pytest.fixture
    def start(self):
        return CropBox(id=1, x=100, y=100, width=200, height=100)

    def test_se_grows(self, start):
        assert resize_rect(start, "se", 50, 30, 1000, 1000) == (100, 100, 250, 130)

    def test_nw_keeps_opposite_corner(self, start):
        x, y, w, h = resize_rect(start, "nw", 30, 20, 1000, 1000)
        assert (x, y, w, h) == (130, 120, 170, 80)
        assert (x + w, y + h) == (300, 200)

    def test_nw_below_minimum_keeps_opposite_corner(self, start):
        x, y, w, h = resize_rect(start, "nw", 190, 95, 1000, 1000)
        assert (w, h) == (50, 20)
        assert (x + w, y + h) == (300, 200)

    def test_edge_handle_changes_one_axis(self, start):
        assert resize_rect(start, "e", 40, 999, 1000, 1000) == (100, 100, 240, 100)
        assert resize_rect(start, "n", 999, -40, 1000, 1000) == (100, 60, 200, 140)

    def test_growth_capped_at_image(self, start):
        x, y, w, h = resize_rect(start, "se", 5000, 5000, 1000, 1000)
        assert (w, h) == (1000, 1000)
        assert (x, y) == (0, 0)


class TestInteractionController:
    """Test event handling end to end through screen coordinates."""

    def test_right_edge_drag_stays_in_bounds(self, workspace, controller):
        session = workspace.focused
        box = session.add(940, 10, 60, 30)

        sx, sy = screen(controller, 970, 25)
        result = controller.pointer_down(0, sx, sy)
        assert result.action == "drag"

        tx, ty = screen(controller, 1020, 25)
        controller.pointer_move(tx, ty)
        controller.pointer_up()

        assert box.x == 940
        assert box.y == 10

    def test_drag_moves_box(self, workspace, controller):
        box = workspace.focused.add(100, 100, 200, 100)

        controller.pointer_down(0, *screen(controller, 150, 150))
        controller.pointer_move(*screen(controller, 250, 175))
        controller.pointer_up()

        assert (box.x, box.y) == (200, 125)
        assert controller.selected_id == box.id

    def test_resize_through_handle(self, workspace, controller):
        box = workspace.focused.add(100, 100, 200, 100)

        result = controller.pointer_down(0, *screen(controller, 300, 200))
        assert result.handle == "se"
        controller.pointer_move(*screen(controller, 350, 230))
        controller.pointer_up()

        assert (box.x, box.y) == (100, 100)
        assert box.width == pytest.approx(250)
        assert box.height == pytest.approx(130)

    def test_random_gestures_keep_invariants(self, workspace, controller):
        rng = random.Random(1234)
        session = workspace.focused
        session.add(100, 100, 200, 100)
        session.add(600, 600, 150, 80)

        for _ in range(200):
            box = rng.choice(session.boxes)
            if rng.random() < 0.5:
                start = (box.x + box.width / 2, box.y + box.height / 2)
            else:
                start = (box.right, box.bottom)
            controller.pointer_down(0, *screen(controller, *start))
            for _ in range(3):
                target = (start[0] + rng.uniform(-1500, 1500), start[1] + rng.uniform(-1500, 1500))
                controller.pointer_move(*screen(controller, *target))
                assert_invariants(session)
            controller.pointer_up()

    def test_pan_when_zoomed(self, workspace, controller):
        workspace.focused.add(0, 0, 100, 50)
        controller.zoom_in()

        result = controller.pointer_down(0, 500, 500)
        assert result.action == "pan"
        controller.pointer_move(510, 520)

        assert (workspace.view.pan_x, workspace.view.pan_y) == (10, 20)

    def test_no_pan_at_base_zoom(self, workspace, controller):
        workspace.focused.add(0, 0, 100, 50)
        assert controller.pointer_down(0, 500, 500).action is None
        assert controller.pointer_down(0, 500, 500, shift=True).action == "pan"

    def test_idle_move_reports_cursor(self, workspace, controller):
        workspace.focused.add(100, 100, 200, 100)
        assert controller.pointer_move(*screen(controller, 200, 150)) == "move"

    def test_pointer_down_on_other_image_focuses_it(self):
        ws = Workspace()
        ws.load([(1000, 1000), (800, 800)])
        ws.sessions[1].add(100, 100, 200, 100)
        controller = InteractionController(ws)
        controller.zoom_in()

        result = controller.pointer_down(1, *screen(controller, 150, 150, index=1))

        assert ws.active_index == 1
        assert ws.view.zoom == 1.0
        assert result.action == "drag"

    def test_arrow_keys_nudge(self, workspace, controller):
        box = workspace.focused.add(100, 100, 200, 100)
        controller.select(box.id)

        assert controller.key_down("ArrowRight")
        assert controller.key_down("ArrowDown", shift=True)
        assert (box.x, box.y) == (101, 110)

    def test_bracket_keys_rotate(self, workspace, controller):
        box = workspace.focused.add(100, 100, 200, 100)
        controller.select(box.id)

        controller.key_down("]")
        controller.key_down("]")
        controller.key_down("[")
        assert box.rotation == 0.15

    def test_delete_last_box_refused(self, workspace, controller):
        box = workspace.focused.add(100, 100, 200, 100)
        controller.select(box.id)

        assert controller.key_down("Delete") is False
        assert len(workspace.focused) == 1

    def test_delete_selected_box(self, workspace, controller):
        workspace.focused.add(100, 100, 200, 100)
        second = workspace.focused.add(400, 400, 200, 100)
        controller.select(second.id)

        assert controller.key_down("Backspace") is True
        assert [b.id for b in workspace.focused.boxes] == [1]
        assert controller.selected_id is None

    def test_keys_without_selection_do_nothing(self, workspace, controller):
        workspace.focused.add(100, 100, 200, 100)
        assert controller.key_down("ArrowLeft") is False

    def test_focus_clears_selection(self):
        ws = Workspace()
        ws.load([(1000, 1000), (800, 800)])
        controller = InteractionController(ws)
        controller.select(1)

        controller.focus(1)
        assert controller.selected_id is None
        assert ws.active_index == 1
