import logging
from pathlib import Path

import cv2
import numpy as np

from vision.errors import FrameSourceError, StartupError

logger = logging.getLogger(__name__)

# small frame to keep per-tick extraction cheap
DEFAULT_FRAME_SIZE = (320, 240)


class CameraSource:
    """Live frames from a capture device, resized to the session frame size"""

    def __init__(self, device_id: int = 0, frame_size: tuple = DEFAULT_FRAME_SIZE, fps: int = 15):
        self.device_id = device_id
        self.frame_size = frame_size  # (width, height)
        self.fps = fps
        self.capture = None

    def open(self) -> 'CameraSource':
        """Acquire the device. Raises StartupError if it cannot be opened."""
        try:
            self.capture = cv2.VideoCapture(self.device_id)
        except cv2.error as e:
            raise StartupError(f"Failed to initialize camera {self.device_id}: {e}") from e

        if not self.capture.isOpened():
            self.capture.release()
            self.capture = None
            raise StartupError(f"Failed to initialize camera {self.device_id}")

        width, height = self.frame_size
        self.capture.set(cv2.CAP_PROP_FRAME_WIDTH, width)
        self.capture.set(cv2.CAP_PROP_FRAME_HEIGHT, height)
        self.capture.set(cv2.CAP_PROP_FPS, self.fps)
        logger.info("Opened camera %d at %dx%d", self.device_id, width, height)
        return self

    def read(self) -> np.ndarray:
        if self.capture is None:
            raise FrameSourceError("Camera is not open")

        ret, frame = self.capture.read()
        if not ret or frame is None:
            raise FrameSourceError(f"Camera {self.device_id} did not deliver a frame")
        return _resize_to(frame, self.frame_size)

    def release(self):
        if self.capture is not None:
            self.capture.release()
            self.capture = None
            logger.info("Released camera %d", self.device_id)

    def __enter__(self):
        return self.open()

    def __exit__(self, *args):
        self.release()


class ImageSequenceSource:
    """Frames read from an image folder, in name order"""

    def __init__(self, folder: str, frame_size: tuple = DEFAULT_FRAME_SIZE, loop: bool = True,
                 extensions: tuple = ('.jpg', '.png', '.jpeg')):
        self.folder = Path(folder)
        self.frame_size = frame_size
        self.loop = loop
        self.extensions = extensions
        self.paths = []
        self._pos = 0

    def open(self) -> 'ImageSequenceSource':
        if not self.folder.is_dir():
            raise StartupError(f"Input directory does not exist: {self.folder}")

        self.paths = sorted(p for p in self.folder.iterdir() if p.suffix.lower() in self.extensions)
        if not self.paths:
            raise StartupError(f"No images found in {self.folder}")

        self._pos = 0
        logger.info("Opened %d images from %s", len(self.paths), self.folder)
        return self

    def __len__(self):
        return len(self.paths)

    def read(self) -> np.ndarray:
        if self._pos >= len(self.paths):
            if not self.loop or not self.paths:
                raise FrameSourceError("Image sequence exhausted")
            self._pos = 0

        path = self.paths[self._pos]
        self._pos += 1
        img = cv2.imread(str(path))
        if img is None:
            raise FrameSourceError(f"Could not read image {path}")
        return _resize_to(img, self.frame_size)

    def release(self):
        self.paths = []
        self._pos = 0

    def __enter__(self):
        return self.open()

    def __exit__(self, *args):
        self.release()


def load_image(path: str, frame_size: tuple = DEFAULT_FRAME_SIZE) -> np.ndarray:
    """Read a single BGR image at the session frame size"""
    img = cv2.imread(str(path))
    if img is None:
        raise StartupError(f"Could not read image {path}")
    return _resize_to(img, frame_size)


def _resize_to(image: np.ndarray, frame_size: tuple) -> np.ndarray:
    """Resize image to frame_size (width, height) if it differs"""
    if frame_size is None:
        return image

    h, w = image.shape[:2]
    if (w, h) == tuple(frame_size):
        return image
    return cv2.resize(image, tuple(frame_size), interpolation=cv2.INTER_AREA)
