"""Tests for the save-all batch processor."""

import io

import numpy as np
import pytest
from PIL import Image

from item_cropper.services.batch import (
    FAILURE_TEXT,
    SaveBatchProcessor,
    SaveItem,
    engine_extract_fn,
)
from item_cropper.services.boxes import ImageSession
from item_cropper.services.cropping import ExtractionEngine


def make_session(name, labels):
    session = ImageSession(width=400, height=300, name=name)
    for i, label in enumerate(labels):
        session.add(10, 10 + i * 40, 100, 30, label=label)
    return session


class RecordingExtractor:
    """Extraction stub: fails for image bytes listed in `failing`."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    def __call__(self, image_bytes, payload):
        self.calls.append((image_bytes, payload))
        if image_bytes in self.failing:
            raise RuntimeError("server returned 500")
        return [item["itemNumber"] for item in payload]


@pytest.fixture
def items():
    return [
        SaveItem(b"one", make_session("one.png", ["PR1", "PR2"])),
        SaveItem(b"two", make_session("two.png", ["PR3"])),
        SaveItem(b"three", make_session("three.png", ["PR4"])),
    ]


class TestSaveBatchProcessor:
    """Test ordering, skipping and the failure policy."""

    def test_all_saved(self, items):
        extractor = RecordingExtractor()
        result = SaveBatchProcessor(extractor, abort_on_failure=True).process_batch(items)

        assert [call[0] for call in extractor.calls] == [b"one", b"two", b"three"]
        assert result.saved == ["PR1", "PR2", "PR3", "PR4"]
        assert result.status_text == "Saved 4 cropped images."

    def test_payload_is_wire_format(self, items):
        extractor = RecordingExtractor()
        SaveBatchProcessor(extractor).process_batch(items[:1])

        payload = extractor.calls[0][1]
        assert payload[0] == {
            "x": 10, "y": 10, "width": 100, "height": 30,
            "rotation": 0.0, "itemNumber": "PR1", "flipVertical": False,
        }

    def test_sessions_without_labels_skipped(self):
        items = [SaveItem(b"blank", make_session("blank.png", ["", "  "]))]
        extractor = RecordingExtractor()
        result = SaveBatchProcessor(extractor).process_batch(items)

        assert extractor.calls == []
        assert result.skipped == 1
        assert result.status_text == "Saved 0 cropped images."

    def test_abort_on_first_failure(self, items):
        extractor = RecordingExtractor(failing={b"two"})
        result = SaveBatchProcessor(extractor, abort_on_failure=True).process_batch(items)

        assert [call[0] for call in extractor.calls] == [b"one", b"two"]
        assert result.aborted is True
        assert result.failed == ["two.png"]
        assert result.status_text == FAILURE_TEXT

    def test_continue_after_failure(self, items):
        extractor = RecordingExtractor(failing={b"two"})
        result = SaveBatchProcessor(extractor, abort_on_failure=False).process_batch(items)

        assert [call[0] for call in extractor.calls] == [b"one", b"two", b"three"]
        assert result.aborted is False
        assert result.saved == ["PR1", "PR2", "PR4"]
        assert result.status_text == "Saved 3 cropped images; 1 image(s) failed."

    def test_continue_with_every_image_failing(self, items):
        extractor = RecordingExtractor(failing={b"one", b"two", b"three"})
        result = SaveBatchProcessor(extractor, abort_on_failure=False).process_batch(items)

        assert len(result.failed) == 3
        assert result.status_text == FAILURE_TEXT

    def test_default_policy_from_settings(self):
        assert SaveBatchProcessor(RecordingExtractor()).abort_on_failure is True


class TestEngineAdapter:
    """Test the batch against the real extraction engine."""

    def test_saves_files(self, tmp_path):
        image = np.full((300, 400, 4), 200, dtype=np.uint8)
        buffer = io.BytesIO()
        Image.fromarray(image).save(buffer, format="PNG")

        engine = ExtractionEngine(output_dir=str(tmp_path))
        processor = SaveBatchProcessor(engine_extract_fn(engine))
        result = processor.process_batch([SaveItem(buffer.getvalue(), make_session("a.png", ["PR10", "PR11"]))])

        assert [r.id for r in result.saved] == ["PR10.png", "PR11.png"]
        assert (tmp_path / "PR11.png").exists()
