"""Tests for the OCR service and recognizer pool."""

import threading

import numpy as np
import pytest

from item_cropper.errors import DetectionFailure
from item_cropper.services.ocr import OCRBox, OCRService, RecognizerPool


class FailingReader:
    def readtext(self, image, **kwargs):
        raise RuntimeError("boom")


class EchoReader:
    def __init__(self, results):
        self.results = results

    def readtext(self, image, **kwargs):
        return self.results


class TestOCRBox:
    """Test box geometry helpers."""

    def test_geometry(self):
        box = OCRBox.from_rect("123", 90.0, 10, 20, 30, 40)
        assert (box.left, box.top, box.width, box.height) == (10, 20, 30, 40)
        assert (box.center_x, box.center_y) == (25, 40)

    def test_mapped_scales_then_offsets(self):
        box = OCRBox.from_rect("123", 90.0, 10, 20, 30, 40).mapped(scale=0.5, offset_x=100, offset_y=7)
        assert (box.left, box.top, box.width, box.height) == (120, 47, 60, 80)


class TestRecognizerPool:
    """Test bounded checkout."""

    def test_instances_created_lazily_up_to_size(self):
        created = []
        pool = RecognizerPool(lambda: created.append(object()) or created[-1], size=2)
        assert pool.created == 0

        a = pool.acquire()
        b = pool.acquire()
        assert pool.created == 2
        assert a is not b

        pool.release(a)
        assert pool.acquire() is a
        assert pool.created == 2

    def test_acquire_times_out_when_exhausted(self):
        pool = RecognizerPool(object, size=1)
        pool.acquire()
        with pytest.raises(DetectionFailure):
            pool.acquire(timeout=0.05)

    def test_lease_releases_on_error(self):
        pool = RecognizerPool(object, size=1)
        with pytest.raises(ValueError):
            with pool.lease():
                raise ValueError("recognition failed")

        with pool.lease(timeout=0.05) as reader:
            assert reader is not None

    def test_factory_failure_frees_slot(self):
        calls = {"n": 0}

        def flaky():
            calls["n"] += 1
            if calls["n"] == 1:
                raise RuntimeError("model download failed")
            return object()

        pool = RecognizerPool(flaky, size=1)
        with pytest.raises(RuntimeError):
            pool.acquire()
        assert pool.acquire(timeout=0.05) is not None

    def test_concurrent_checkouts_bounded(self):
        pool = RecognizerPool(object, size=2)
        in_use = []
        peak = []
        lock = threading.Lock()

        def work():
            with pool.lease():
                with lock:
                    in_use.append(1)
                    peak.append(len(in_use))
                threading.Event().wait(0.01)
                with lock:
                    in_use.pop()

        threads = [threading.Thread(target=work) for _ in range(8)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert max(peak) <= 2
        assert pool.created <= 2


class TestOCRService:
    """Test OCR service wrapper."""

    def test_confidence_rescaled(self):
        reader = EchoReader([([[0, 0], [30, 0], [30, 10], [0, 10]], " 123 ", 0.87)])
        service = OCRService(reader_factory=lambda: reader, pool_size=1)

        result = service.recognize(np.zeros((50, 50), dtype=np.uint8))

        (box,) = result.boxes
        assert box.text == "123"
        assert box.confidence == pytest.approx(87.0)

    def test_blank_text_dropped(self):
        reader = EchoReader([([[0, 0], [30, 0], [30, 10], [0, 10]], "   ", 0.9)])
        service = OCRService(reader_factory=lambda: reader, pool_size=1)

        assert service.recognize(np.zeros((50, 50), dtype=np.uint8)).boxes == []

    def test_recognizer_error_wrapped_and_reader_returned(self):
        service = OCRService(reader_factory=FailingReader, pool_size=1)
        image = np.zeros((50, 50), dtype=np.uint8)

        with pytest.raises(DetectionFailure):
            service.recognize(image)
        # Reader went back to the pool
        assert service.pool.acquire(timeout=0.05) is not None

    def test_initialize_warms_pool(self):
        service = OCRService(reader_factory=lambda: EchoReader([]), pool_size=1)
        assert service.is_ready is False
        assert service.initialize() is True
        assert service.is_ready is True

    def test_initialize_reports_failure(self):
        def broken():
            raise RuntimeError("no model")

        service = OCRService(reader_factory=broken, pool_size=1)
        assert service.initialize() is False
