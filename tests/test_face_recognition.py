"""Tests for server-side descriptor extraction."""

import asyncio
import io
import time
from concurrent.futures import ThreadPoolExecutor

import numpy as np
import pytest
from PIL import Image

from facelogin import face_recognition
from facelogin.face_recognition import (
    NoUsableFace,
    detect_and_align_face,
    get_descriptor_extractor,
    load_image,
)
from facelogin.main import app


class StubCascade:
    """Cascade returning fixed detections."""

    def __init__(self, faces):
        self.faces = faces

    def detectMultiScale(self, gray, **kwargs):
        return self.faces


class StubExtractor:
    def __init__(self, descriptor=None):
        self.descriptor = descriptor

    def extract(self, image):
        if self.descriptor is None:
            raise NoUsableFace()
        return self.descriptor


def png_bytes(width=200, height=100):
    buffer = io.BytesIO()
    Image.new("RGB", (width, height), color=(120, 80, 40)).save(buffer, format="PNG")
    return buffer.getvalue()


@pytest.fixture
def use_extractor():
    def _use(extractor):
        app.dependency_overrides[get_descriptor_extractor] = lambda: extractor

    yield _use
    app.dependency_overrides.pop(get_descriptor_extractor, None)


class TestImageHelpers:
    """Test cases for image loading and face cropping."""

    def test_load_image(self):
        """PNG bytes open as an RGB image."""
        image = load_image(png_bytes())
        assert image.mode == "RGB"
        assert image.size == (200, 100)

    def test_load_invalid_image(self):
        """Non-image bytes raise ValueError."""
        with pytest.raises(ValueError):
            load_image(b"definitely not an image")

    def test_no_face(self):
        """No detections yields None."""
        image = Image.new("RGB", (200, 100))
        assert detect_and_align_face(image, StubCascade([])) is None

    def test_crops_largest_face_with_margin(self):
        """The largest detection is cropped with a 20% margin."""
        image = Image.new("RGB", (200, 100))
        faces = np.array([[10, 10, 10, 10], [50, 20, 50, 50]])

        face = detect_and_align_face(image, StubCascade(faces))

        # 50px face, 10px margin on each side
        assert face.size == (70, 70)

    def test_crop_clamped_to_image(self):
        """Margins never extend past the image border."""
        image = Image.new("RGB", (100, 100))

        face = detect_and_align_face(image, StubCascade(np.array([[0, 0, 50, 50]])))

        assert face.size == (60, 60)


class TestDescriptorEndpoint:
    """Test cases for POST /api/face/descriptor."""

    def test_returns_descriptor(self, client, use_extractor):
        """A detected face returns its descriptor."""
        use_extractor(StubExtractor([0.25] * 128))

        response = client.post("/api/face/descriptor", files={"file": ("face.png", png_bytes(), "image/png")})

        assert response.status_code == 200
        assert response.json() == {"faceDescriptor": [0.25] * 128}

    def test_no_usable_face(self, client, use_extractor):
        """An image without a face is unprocessable."""
        use_extractor(StubExtractor(None))

        response = client.post("/api/face/descriptor", files={"file": ("face.png", png_bytes(), "image/png")})

        assert response.status_code == 422
        assert response.json()["detail"] == "No usable face detected"

    def test_invalid_image(self, client, use_extractor):
        """Non-image uploads are rejected before extraction."""
        use_extractor(StubExtractor([0.0] * 128))

        response = client.post("/api/face/descriptor", files={"file": ("face.txt", b"hello", "text/plain")})

        assert response.status_code == 400

    def test_extraction_runs_off_event_loop(self, client, use_extractor):
        """The blocking extractor is called from a worker thread."""
        calls = []

        class LoopCheckingExtractor:
            def extract(self, image):
                try:
                    asyncio.get_running_loop()
                    calls.append("event loop")
                except RuntimeError:
                    calls.append("worker thread")
                return [0.0] * 128

        use_extractor(LoopCheckingExtractor())

        response = client.post("/api/face/descriptor", files={"file": ("face.png", png_bytes(), "image/png")})

        assert response.status_code == 200
        assert calls == ["worker thread"]


class TestGetDescriptorExtractor:
    """Test cases for the shared extractor instance."""

    def test_concurrent_first_use_builds_one_extractor(self, monkeypatch):
        """Concurrent first callers share a single extractor."""
        built = []

        class SlowExtractor:
            def __init__(self):
                time.sleep(0.05)
                built.append(self)

        monkeypatch.setattr(face_recognition, "_extractor", None)
        monkeypatch.setattr(face_recognition, "FaceNetDescriptorExtractor", SlowExtractor)

        with ThreadPoolExecutor(max_workers=8) as pool:
            results = list(pool.map(lambda _: face_recognition.get_descriptor_extractor(), range(8)))

        assert len(built) == 1
        assert all(result is built[0] for result in results)
