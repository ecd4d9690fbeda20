"""Tests for the screen/image view transform."""

import pytest

from item_cropper.services.view import ViewState, ViewTransform, base_scale


class TestBaseScale:
    """Test fit-to-canvas scaling."""

    def test_never_enlarges(self):
        assert base_scale(400, 300, 900, 640) == 1.0

    def test_limited_by_tighter_axis(self):
        assert base_scale(1800, 640, 900, 640) == pytest.approx(0.5)
        assert base_scale(900, 1280, 900, 640) == pytest.approx(0.5)

    def test_degenerate_image(self):
        assert base_scale(0, 100, 900, 640) == 1.0


class TestViewState:
    """Test zoom bounds and reset."""

    def test_zoom_in_clamps_at_max(self):
        view = ViewState()
        for _ in range(20):
            view.zoom_in()
        assert view.zoom == 3.0

    def test_zoom_out_clamps_at_min(self):
        view = ViewState()
        for _ in range(20):
            view.zoom_out()
        assert view.zoom == 0.5

    def test_zoom_steps_do_not_drift(self):
        view = ViewState()
        for _ in range(8):
            view.zoom_in()
        for _ in range(8):
            view.zoom_out()
        assert view.zoom == 1.0

    def test_reset(self):
        view = ViewState(zoom=2.0, pan_x=5, pan_y=-5)
        view.reset()
        assert (view.zoom, view.pan_x, view.pan_y) == (1.0, 0.0, 0.0)


class TestViewTransform:
    """Test coordinate mapping."""

    def test_unfocused_ignores_view(self):
        view = ViewState(zoom=2.0, pan_x=40, pan_y=30)
        transform = ViewTransform.for_image(1800, 1280, view, focused=False)

        assert transform.scale == pytest.approx(0.5)
        assert (transform.pan_x, transform.pan_y) == (0.0, 0.0)

    def test_focused_applies_zoom_and_pan(self):
        view = ViewState(zoom=2.0, pan_x=40, pan_y=30)
        transform = ViewTransform.for_image(1800, 1280, view, focused=True)

        assert transform.scale == pytest.approx(1.0)
        assert (transform.pan_x, transform.pan_y) == (40, 30)

    def test_round_trip(self):
        transform = ViewTransform(scale=0.64, pan_x=-12, pan_y=7)
        sx, sy = transform.to_screen(333, 444)
        ix, iy = transform.to_image(sx, sy)

        assert (ix, iy) == (pytest.approx(333), pytest.approx(444))

    def test_to_image_subtracts_pan_before_scaling(self):
        transform = ViewTransform(scale=2.0, pan_x=10, pan_y=20)
        assert transform.to_image(30, 60) == (10, 20)

    def test_canvas_size_capped(self):
        transform = ViewTransform(scale=1.0, pan_x=100, pan_y=0)
        assert transform.canvas_size(2000, 300) == (900, 300)
