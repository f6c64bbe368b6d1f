import io
import logging
import threading
from typing import List, Optional

import cv2
import numpy as np
from PIL import Image

from facelogin.config import FACE_MODEL_PRETRAINED

logger = logging.getLogger(__name__)

FACE_SIZE = (160, 160)
MARGIN_PERCENT = 0.2


class NoUsableFace(Exception):
    """The image does not contain a face that can be turned into a descriptor."""


def load_image(image_data: bytes) -> Image.Image:
    """
    Open uploaded bytes as an RGB PIL Image.

    Raises:
        ValueError: if the bytes are not a readable image
    """
    try:
        return Image.open(io.BytesIO(image_data)).convert("RGB")
    except Exception as e:
        logger.error(f"Error opening image from bytes: {str(e)}")
        raise ValueError("Uploaded file is not a valid image") from e


def detect_and_align_face(image: Image.Image, face_cascade) -> Optional[Image.Image]:
    """
    Detect the largest face and crop it with a margin.

    Args:
        image: RGB PIL Image
        face_cascade: loaded OpenCV cascade classifier

    Returns:
        Cropped RGB PIL Image of the largest face, or None if no face is found
    """
    img_array = cv2.cvtColor(np.array(image), cv2.COLOR_RGB2BGR)
    gray = cv2.cvtColor(img_array, cv2.COLOR_BGR2GRAY)
    faces = face_cascade.detectMultiScale(gray, scaleFactor=1.1, minNeighbors=5, minSize=(30, 30))

    if len(faces) == 0:
        logger.warning("No face detected in the image")
        return None

    # Largest face is assumed to be the subject
    x, y, w, h = max(faces, key=lambda rect: rect[2] * rect[3])

    margin_x = int(w * MARGIN_PERCENT)
    margin_y = int(h * MARGIN_PERCENT)

    height, width = img_array.shape[:2]
    x1 = max(0, x - margin_x)
    y1 = max(0, y - margin_y)
    x2 = min(width, x + w + margin_x)
    y2 = min(height, y + h + margin_y)

    face_img = cv2.cvtColor(img_array[y1:y2, x1:x2], cv2.COLOR_BGR2RGB)
    return Image.fromarray(face_img)


class FaceNetDescriptorExtractor:
    """
    Turns a face image into a FaceNet embedding.

    The cascade and the network are loaded on first use so importing this
    module stays cheap.
    """

    def __init__(self, pretrained: str = FACE_MODEL_PRETRAINED):
        self.pretrained = pretrained
        self._model = None
        self._device = None
        self._face_cascade = None
        self._transform = None
        self._load_lock = threading.Lock()

    def _load(self):
        with self._load_lock:
            if self._model is None:
                self._load_model()

    def _load_model(self):
        import torch
        import torchvision.transforms as transforms
        from facenet_pytorch import InceptionResnetV1

        self._device = torch.device("cuda" if torch.cuda.is_available() else "cpu")
        logger.info(f"Using device: {self._device}")

        face_cascade = cv2.CascadeClassifier(cv2.data.haarcascades + "haarcascade_frontalface_default.xml")
        if face_cascade.empty():
            raise RuntimeError("Failed to load Haar cascade classifier")
        self._face_cascade = face_cascade

        self._transform = transforms.Compose([
            transforms.ToTensor(),
            transforms.Normalize(mean=[0.5, 0.5, 0.5], std=[0.5, 0.5, 0.5]),
        ])
        self._model = InceptionResnetV1(pretrained=self.pretrained).eval().to(self._device)
        logger.info(f"FaceNet model loaded successfully (pretrained={self.pretrained})")

    def extract(self, image: Image.Image) -> List[float]:
        """
        Extract a face descriptor from an RGB image.

        Raises:
            NoUsableFace: if no face is detected
        """
        import torch

        self._load()

        face = detect_and_align_face(image, self._face_cascade)
        if face is None:
            raise NoUsableFace()

        face = face.resize(FACE_SIZE)
        image_tensor = self._transform(face).unsqueeze(0).to(self._device)

        with torch.no_grad():
            embedding = self._model(image_tensor).cpu().numpy().flatten()

        logger.info(f"Embedding extracted successfully, shape: {embedding.shape}")
        return embedding.astype(float).tolist()


_extractor: Optional[FaceNetDescriptorExtractor] = None
_extractor_lock = threading.Lock()


def get_descriptor_extractor() -> FaceNetDescriptorExtractor:
    global _extractor
    if _extractor is None:
        with _extractor_lock:
            if _extractor is None:
                _extractor = FaceNetDescriptorExtractor()
    return _extractor
